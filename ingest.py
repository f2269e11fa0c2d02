#!/usr/bin/env python3
"""
Varberg Event Import
====================

Command-line interface for importing scraped event listings.

Scraping adapters drop one JSON file per source in the inbox directory
(``<inbox_dir>/<source id>.json``); this tool deduplicates, categorizes,
scores and stores them.

Usage:
    python ingest.py run                           # Import all enabled sources
    python ingest.py run --source arena-varberg    # Import one source
    python ingest.py run -s visit-varberg --events events.json
    python ingest.py list-sources                  # List configured sources
    python ingest.py validate                      # Check configuration
    python ingest.py status                        # Show last import results
"""

import json
import sys
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import click
import yaml

from eventimport.classifier import (
    CLASSIFIER_RATE_KEY,
    CategoryAssigner,
    KeywordCategoryClassifier,
    OpenAICategoryClassifier,
)
from eventimport.config import (
    ConfigurationError,
    PipelineSettings,
    Source,
    load_config,
    load_sources_config,
    validate_sources_config,
)
from eventimport.deduplicator import EventDeduplicator
from eventimport.importer import EventImporter
from eventimport.logger import get_logger, setup_logging
from eventimport.models import RawEvent
from eventimport.organizer_matcher import OrganizerDirectory, OrganizerMatcher
from eventimport.progress import JsonlProgressSink, ProgressLogger
from eventimport.quality import OpenAIModerator, QualityAssessor, TrustedOrganizerPolicy
from eventimport.storage import InfrastructureError, JsonlDuplicateLogSink, MarkdownEventStore
from eventimport.utils import ApiClient, IdentifierGenerator, RateLimiter

LOCAL_TZ = ZoneInfo("Europe/Stockholm")

# Status file for tracking import results
STATUS_FILE = ".import_status.json"


def setup_logging_from_config(
    settings: PipelineSettings,
    config_dir: Path,
    log_level_override: str | None = None,
    log_file_override: Path | None = None,
) -> None:
    """Configure logging based on config file and CLI overrides."""
    logging_cfg = settings.logging
    effective_log_file = log_file_override or logging_cfg.log_file

    setup_logging(
        level=log_level_override or logging_cfg.log_level,
        log_file=str(effective_log_file) if effective_log_file else None,
        log_dir=config_dir if effective_log_file else None,
        log_format=logging_cfg.log_format,
        max_bytes=logging_cfg.max_file_size,
        backup_count=logging_cfg.backup_count,
    )


def save_status(config_dir: Path, status: dict) -> None:
    """Save import status to file."""
    status_path = config_dir / STATUS_FILE
    status["timestamp"] = datetime.now(LOCAL_TZ).isoformat()
    with open(status_path, "w", encoding="utf-8") as f:
        json.dump(status, f, indent=2, ensure_ascii=False)


def load_status(config_dir: Path) -> dict | None:
    """Load last import status from file."""
    status_path = config_dir / STATUS_FILE
    if not status_path.exists():
        return None
    with open(status_path, encoding="utf-8") as f:
        return json.load(f)


def load_events(events_path: Path) -> list[RawEvent]:
    """
    Read adapter output: a JSON list of events or ``{"events": [...]}``.

    Raises:
        ValueError: If the file is not valid adapter output
    """
    with open(events_path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("events", [])
    if not isinstance(data, list):
        raise ValueError(f"Expected a list of events in {events_path}")
    return [RawEvent.from_dict(item) for item in data if isinstance(item, dict)]


def build_importer(
    settings: PipelineSettings, config_dir: Path, api_client: ApiClient | None
) -> EventImporter:
    """
    Wire the pipeline services from settings.

    Without an API client the keyword classifier is used and content
    moderation is skipped.

    Raises:
        InfrastructureError: If the event store or organizer file is unusable
    """
    logger = get_logger(__name__)

    store = MarkdownEventStore(settings.resolve(config_dir, settings.content_dir))
    logger.info(f"Event store initialized: {store.get_stats()}")
    directory = OrganizerDirectory.load(settings.resolve(config_dir, settings.organizers_file))

    rate_limiter = RateLimiter()
    if settings.classifier.provider == "openai" and api_client is not None:
        classifier = OpenAICategoryClassifier(api_client, model=settings.classifier.model)
        rate_limiter.set_delay(CLASSIFIER_RATE_KEY, settings.classifier.delay_ms / 1000)
    else:
        logger.info("Using offline keyword classifier")
        classifier = KeywordCategoryClassifier(
            default_category=settings.classifier.default_category
        )
        # No external call to pace
        rate_limiter.set_delay(CLASSIFIER_RATE_KEY, 0.0)

    moderator = None
    if settings.moderation.enabled and api_client is not None:
        moderator = OpenAIModerator(api_client, model=settings.moderation.model)
    elif settings.moderation.enabled:
        logger.warning("No API key configured, content moderation disabled")

    return EventImporter(
        deduplicator=EventDeduplicator(store),
        category_assigner=CategoryAssigner(
            classifier, rate_limiter, default_category=settings.classifier.default_category
        ),
        quality_assessor=QualityAssessor(
            moderator=moderator,
            trusted_policy=TrustedOrganizerPolicy.of(settings.quality.trusted_organizers),
        ),
        organizer_matcher=OrganizerMatcher(directory),
        identifier_generator=IdentifierGenerator(
            store,
            max_length=settings.identifier.max_length,
            strip_prefixes=settings.identifier.strip_prefixes,
        ),
        store=store,
        progress_logger=ProgressLogger(
            JsonlProgressSink(settings.resolve(config_dir, settings.progress_log_file))
        ),
        duplicate_log_sink=JsonlDuplicateLogSink(
            settings.resolve(config_dir, settings.duplicate_log_file)
        ),
        import_progress_interval=settings.progress.import_interval,
    )


@click.group(invoke_without_command=True)
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    default=Path(__file__).parent / "config.yaml",
    help="Path to configuration file",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(
        ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False
    ),
    default=None,
    help="Override log level from config",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Override log file path from config",
)
@click.version_option(version="1.0.0", prog_name="eventimport")
@click.pass_context
def cli(ctx, config: Path, log_level: str | None, log_file: Path | None):
    """
    Varberg Event Import - Turn scraped listings into catalog events.

    Reads adapter output per source, removes duplicates, assigns categories,
    scores quality, resolves organizers and writes event files.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["config_dir"] = config.parent
    ctx.obj["log_level"] = log_level
    ctx.obj["log_file"] = log_file

    try:
        ctx.obj["config"] = load_config(config)
        ctx.obj["settings"] = PipelineSettings.from_config(ctx.obj["config"])
    except ConfigurationError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option(
    "--source",
    "-s",
    type=str,
    default=None,
    help="Import only specified source (by source ID)",
)
@click.option(
    "--events",
    "-e",
    "events_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read events from this file instead of the inbox (requires --source)",
)
@click.option(
    "--run-id",
    type=str,
    default=None,
    help="Run identifier for progress telemetry",
)
@click.pass_context
def run(ctx, source: str | None, events_file: Path | None, run_id: str | None):
    """
    Run the import pipeline.

    By default, imports the inbox file of every enabled source. Use --source
    to import a single source. Progress telemetry is written only when
    --run-id is given.
    """
    settings: PipelineSettings = ctx.obj["settings"]
    config_dir = ctx.obj["config_dir"]
    log_level = ctx.obj["log_level"]

    setup_logging_from_config(settings, config_dir, log_level, ctx.obj["log_file"])
    logger = get_logger(__name__)
    effective_log_level = (log_level or settings.logging.log_level).upper()

    if events_file and not source:
        logger.error("--events requires --source")
        sys.exit(2)

    sources_file = settings.resolve(config_dir, settings.sources_file)
    try:
        sources_config = load_sources_config(sources_file)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    if source:
        src = sources_config.get_source_by_id(source)
        if not src:
            logger.error(f"No source found with ID: {source}")
            sys.exit(1)
        sources_list = [src]
    else:
        sources_list = sources_config.get_enabled_sources()

    if not sources_list:
        logger.warning("No sources to process")
        return

    logger.info("Varberg event import starting...")

    api_key = settings.openai.api_key
    api_client = None
    if api_key:
        api_client = ApiClient(
            base_url=settings.openai.base_url,
            api_key=api_key,
            timeout=settings.openai.timeout,
            retry_count=settings.openai.retry_count,
            retry_delay=settings.openai.retry_delay,
        )

    try:
        try:
            importer = build_importer(settings, config_dir, api_client)
        except InfrastructureError as e:
            logger.error(f"Cannot start import: {e}")
            sys.exit(1)

        results = _run_sources(
            importer,
            sources_list,
            settings.resolve(config_dir, settings.inbox_dir),
            events_file,
            run_id,
            effective_log_level == "DEBUG",
        )
    finally:
        if api_client is not None:
            api_client.close()

    imported = sum(r["events_imported"] for r in results)
    duplicates = sum(r["duplicates_skipped"] for r in results)
    errors = sum(len(r["errors"]) for r in results)
    aborted = [r for r in results if not r["success"]]

    click.echo("\n" + "=" * 50)
    click.echo(click.style("IMPORT SUMMARY", bold=True))
    click.echo("=" * 50)
    click.echo(f"  Sources processed:  {len(results)}/{len(sources_list)}")
    click.echo(f"  Events imported:    {imported}")
    click.echo(f"  Duplicates skipped: {duplicates}")
    click.echo(f"  Event errors:       {errors}")
    click.echo(f"  Aborted runs:       {len(aborted)}")
    click.echo("=" * 50)

    save_status(
        config_dir,
        {
            "run_id": run_id,
            "sources_processed": len(results),
            "sources_total": len(sources_list),
            "events_imported": imported,
            "duplicates_skipped": duplicates,
            "errors": errors,
            "aborted": len(aborted),
            "results": results,
        },
    )

    sys.exit(1 if aborted else 0)


def _run_sources(
    importer: EventImporter,
    sources_list: list[Source],
    inbox_dir: Path,
    events_file: Path | None,
    run_id: str | None,
    debug: bool,
) -> list[dict]:
    """Import each source in turn; an aborted source does not stop the others."""
    logger = get_logger(__name__)
    results = []

    for i, src in enumerate(sources_list, 1):
        click.echo(f"\n[{i}/{len(sources_list)}] Importing: {src.name} ({src.id})")

        events_path = events_file or inbox_dir / f"{src.id}.json"
        if not events_path.exists():
            logger.warning(f"No events file for {src.name}: {events_path}")
            continue

        source_run_id = run_id
        if run_id and len(sources_list) > 1:
            source_run_id = f"{run_id}-{src.id}"

        try:
            events = load_events(events_path)
            result = importer.import_events(events, src, run_id=source_run_id)
        except Exception as e:
            logger.error(f"Error importing {src.name}: {e}")
            if debug:
                logger.exception("Full traceback:")
            results.append(
                {
                    "source": src.name,
                    "success": False,
                    "events_found": 0,
                    "events_imported": 0,
                    "duplicates_skipped": 0,
                    "errors": [str(e)],
                    "statistics": {},
                }
            )
            continue

        click.echo(
            f"    -> {result.events_imported}/{result.events_found} imported, "
            f"{result.duplicates_skipped} duplicates, {len(result.errors)} errors"
        )
        results.append(result.to_dict())

    return results


@cli.command("list-sources")
@click.pass_context
def list_sources(ctx):
    """
    List all configured event sources.

    Shows source ID, name, organizer and enabled status for each source.
    """
    settings: PipelineSettings = ctx.obj["settings"]
    sources_file = settings.resolve(ctx.obj["config_dir"], settings.sources_file)

    try:
        sources_config = load_sources_config(sources_file)
    except ConfigurationError as e:
        click.echo(click.style(f"Configuration error: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo("\nConfigured sources:")
    click.echo("-" * 78)
    click.echo(f"{'ID':<20} {'NAME':<30} {'STATUS':<10} {'ORGANIZER':<10} {'MULTI':<5}")
    click.echo("-" * 78)

    for src in sources_config.sources:
        status = (
            click.style("enabled", fg="green")
            if src.enabled
            else click.style("disabled", fg="red")
        )
        multi = "yes" if src.multi_organizer else ""
        click.echo(f"{src.id:<20} {src.name:<30} {status:<19} {src.organizer_id:<10} {multi:<5}")

    click.echo("-" * 78)
    enabled_count = len(sources_config.get_enabled_sources())
    total_count = len(sources_config.sources)
    click.echo(f"Total: {total_count} sources ({enabled_count} enabled)")


@cli.command()
@click.pass_context
def validate(ctx):
    """
    Validate configuration files.

    Checks config.yaml, sources.yaml and organizers.yaml for errors.
    Reports any validation issues found.
    """
    cfg = ctx.obj["config"]
    settings: PipelineSettings = ctx.obj["settings"]
    config_path = ctx.obj["config_path"]
    config_dir = ctx.obj["config_dir"]

    errors = []
    warnings = []

    click.echo("\nValidating configuration files...\n")

    # 1. Main config.yaml
    click.echo(f"  Checking {config_path.name}...")
    for key in ["sources_file", "organizers_file"]:
        if key not in cfg:
            errors.append(f"Missing required key in config.yaml: {key}")

    for key in ["content_dir", "inbox_dir", "logging", "classifier", "quality"]:
        if key not in cfg:
            warnings.append(f"Missing recommended key in config.yaml: {key}")

    if not errors:
        click.echo(click.style("    ✓ config.yaml is valid", fg="green"))

    # 2. sources.yaml
    sources_file = settings.resolve(config_dir, settings.sources_file)
    click.echo(f"  Checking {sources_file.name}...")

    if not sources_file.exists():
        errors.append(f"Sources file not found: {sources_file}")
    else:
        try:
            with open(sources_file, encoding="utf-8") as f:
                sources_cfg = yaml.safe_load(f) or {}

            try:
                validate_sources_config(sources_cfg, sources_file.parent)
                click.echo(click.style("    ✓ sources.yaml is valid", fg="green"))
            except ConfigurationError as e:
                errors.append(f"Sources validation error: {e}")

        except yaml.YAMLError as e:
            errors.append(f"Invalid YAML in sources.yaml: {e}")

    # 3. organizers.yaml
    organizers_file = settings.resolve(config_dir, settings.organizers_file)
    click.echo(f"  Checking {organizers_file.name}...")
    try:
        directory = OrganizerDirectory.load(organizers_file)
        click.echo(
            click.style(
                f"    ✓ {len(directory.organizers)} organizers loaded", fg="green"
            )
        )
        trusted = set(settings.quality.trusted_organizers)
        unknown = trusted - {org.id for org in directory.organizers}
        for organizer_id in sorted(unknown):
            warnings.append(f"Trusted organizer {organizer_id} is not in {organizers_file.name}")
    except InfrastructureError as e:
        errors.append(str(e))

    # 4. Directories and credentials
    click.echo("  Checking directories...")
    for value, name in [(settings.content_dir, "content_dir"), (settings.inbox_dir, "inbox_dir")]:
        dir_path = settings.resolve(config_dir, value)
        if dir_path.exists():
            click.echo(click.style(f"    ✓ {name} exists: {dir_path}", fg="green"))
        else:
            warnings.append(f"{name} does not exist: {dir_path}")
            click.echo(click.style(f"    ! {name} not found: {dir_path}", fg="yellow"))

    if not settings.openai.api_key:
        warnings.append(
            "OPENAI_API_KEY not set: keyword classifier will be used, moderation disabled"
        )

    click.echo("\n" + "=" * 50)
    if errors:
        click.echo(click.style("VALIDATION FAILED", fg="red", bold=True))
        click.echo("=" * 50)
        click.echo("\nErrors:")
        for error in errors:
            click.echo(click.style(f"  ✗ {error}", fg="red"))
    else:
        click.echo(click.style("VALIDATION PASSED", fg="green", bold=True))
        click.echo("=" * 50)

    if warnings:
        click.echo("\nWarnings:")
        for warning in warnings:
            click.echo(click.style(f"  ! {warning}", fg="yellow"))

    click.echo()

    sys.exit(1 if errors else 0)


@cli.command()
@click.pass_context
def status(ctx):
    """
    Show last import results.

    Displays summary statistics from the most recent import run.
    """
    status_data = load_status(ctx.obj["config_dir"])

    if not status_data:
        click.echo("No previous import status found.")
        click.echo("Run 'python ingest.py run' to perform an import.")
        return

    click.echo("\n" + "=" * 50)
    click.echo(click.style("LAST IMPORT STATUS", bold=True))
    click.echo("=" * 50)

    click.echo(f"  Timestamp:          {status_data.get('timestamp', 'Unknown')}")
    if status_data.get("run_id"):
        click.echo(f"  Run ID:             {status_data['run_id']}")
    click.echo(
        f"  Sources processed:  {status_data.get('sources_processed', 0)}/{status_data.get('sources_total', 0)}"
    )
    click.echo(f"  Events imported:    {status_data.get('events_imported', 0)}")
    click.echo(f"  Duplicates skipped: {status_data.get('duplicates_skipped', 0)}")
    click.echo(f"  Event errors:       {status_data.get('errors', 0)}")

    for result in status_data.get("results", []):
        stats = result.get("statistics") or {}
        if stats:
            click.echo(
                f"    {result['source']}: published {stats.get('published', 0)}, "
                f"pending {stats.get('pending_approval', 0)}, draft {stats.get('draft', 0)}, "
                f"avg score {stats.get('avg_score', 0)}"
            )

    if status_data.get("aborted", 0) > 0:
        click.echo(click.style("  Status:             ABORTED RUNS", fg="red"))
    elif status_data.get("errors", 0) > 0:
        click.echo(click.style("  Status:             COMPLETED WITH ERRORS", fg="yellow"))
    else:
        click.echo(click.style("  Status:             SUCCESS", fg="green"))

    click.echo("=" * 50)


if __name__ == "__main__":
    cli()
