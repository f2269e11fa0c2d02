"""Configuration loading and validation for the import pipeline."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

import jsonschema
import yaml

from .classifier import DEFAULT_CATEGORY
from .logger import get_logger

logger = get_logger(__name__)

API_KEY_ENV = "OPENAI_API_KEY"


class ConfigurationError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class Source:
    """Configuration for a single event source."""

    name: str
    id: str
    url: str
    organizer_id: int
    enabled: bool = True
    default_category: str | None = None
    multi_organizer: bool = False

    def __post_init__(self):
        """Apply environment variable overrides."""
        env_prefix = f"EVENTIMPORT_SOURCE_{self.id.upper().replace('-', '_')}"

        url_override = os.environ.get(f"{env_prefix}_URL")
        if url_override:
            logger.debug(f"Overriding URL for {self.id} from environment")
            self.url = url_override

        enabled_override = os.environ.get(f"{env_prefix}_ENABLED")
        if enabled_override is not None:
            self.enabled = enabled_override.lower() in ("true", "1", "yes")
            logger.debug(f"Overriding enabled for {self.id}: {self.enabled}")


@dataclass
class SourcesConfig:
    """Configuration for all event sources."""

    sources: list[Source]

    def get_enabled_sources(self) -> list[Source]:
        return [s for s in self.sources if s.enabled]

    def get_source_by_id(self, source_id: str) -> Source | None:
        for source in self.sources:
            if source.id == source_id:
                return source
        return None


def load_sources_config(config_path: Path) -> SourcesConfig:
    """
    Load and validate sources configuration from YAML file.

    Args:
        config_path: Path to sources.yaml file

    Returns:
        SourcesConfig object with validated configuration

    Raises:
        ConfigurationError: If configuration is invalid
    """
    if not config_path.exists():
        raise ConfigurationError(f"Sources config file not found: {config_path}")

    logger.info(f"Loading sources configuration from {config_path}")

    try:
        with open(config_path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in sources config: {e}") from e

    if not raw_config:
        raise ConfigurationError("Sources config file is empty")

    validate_sources_config(raw_config, config_path.parent)

    defaults = raw_config.get("defaults", {}) or {}
    raw_sources = raw_config.get("sources", [])
    if not raw_sources:
        raise ConfigurationError("No sources defined in configuration")

    sources = []
    for i, raw_source in enumerate(raw_sources):
        try:
            sources.append(_parse_source(raw_source, defaults))
        except (KeyError, TypeError, ValueError, ConfigurationError) as e:
            source_name = raw_source.get("name", f"source #{i + 1}")
            raise ConfigurationError(f"Invalid source '{source_name}': {e}") from e

    ids = [s.id for s in sources]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate source ids: {', '.join(duplicates)}")

    logger.info(f"Loaded {len(sources)} sources ({len([s for s in sources if s.enabled])} enabled)")

    return SourcesConfig(sources=sources)


def _parse_source(raw: dict, defaults: dict) -> Source:
    for required in ["name", "id", "url", "organizer_id"]:
        if required not in raw:
            raise ConfigurationError(f"Missing required field: {required}")

    return Source(
        name=raw["name"],
        id=raw["id"],
        url=raw["url"],
        organizer_id=int(raw["organizer_id"]),
        enabled=raw.get("enabled", defaults.get("enabled", True)),
        default_category=raw.get("default_category", defaults.get("default_category")),
        multi_organizer=raw.get("multi_organizer", False),
    )


def validate_sources_config(config: dict, config_dir: Path) -> None:
    """
    Validate configuration against JSON Schema.

    Args:
        config: Parsed configuration dictionary
        config_dir: Directory containing schema file

    Raises:
        ConfigurationError: If validation fails
    """
    schema_path = config_dir / "sources.schema.json"

    if not schema_path.exists():
        logger.warning(f"Schema file not found: {schema_path}, skipping validation")
        return

    try:
        with open(schema_path, encoding="utf-8") as f:
            schema = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON schema: {e}") from e

    try:
        jsonschema.validate(instance=config, schema=schema)
    except jsonschema.ValidationError as e:
        path = " -> ".join(str(p) for p in e.absolute_path) if e.absolute_path else "root"
        raise ConfigurationError(f"Configuration validation failed at '{path}': {e.message}") from e

    logger.debug("Configuration validated against schema")


def load_config(config_path: Path) -> dict:
    """
    Load the main config.yaml.

    Raises:
        ConfigurationError: If the file is missing or not a YAML mapping
    """
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    try:
        with open(config_path, encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path.name}: {e}") from e

    if not isinstance(cfg, dict):
        raise ConfigurationError(f"{config_path.name} must contain a mapping")
    return cfg


@dataclass
class LoggingSettings:
    log_level: str = "INFO"
    log_file: str | None = None
    log_format: str = "text"
    max_file_size: int = 10 * 1024 * 1024
    backup_count: int = 5


@dataclass
class ClassifierSettings:
    provider: str = "openai"  # "openai" or "keyword"
    model: str = "gpt-4o-mini"
    delay_ms: int = 500
    default_category: str = DEFAULT_CATEGORY


@dataclass
class ModerationSettings:
    enabled: bool = True
    model: str = "omni-moderation-latest"


@dataclass
class QualitySettings:
    trusted_organizers: list[int] = field(default_factory=list)


@dataclass
class IdentifierSettings:
    max_length: int = 80
    strip_prefixes: list[str] = field(default_factory=list)


@dataclass
class OpenAISettings:
    base_url: str = "https://api.openai.com/v1"
    timeout: float = 30
    retry_count: int = 4
    retry_delay: float = 3.0

    @property
    def api_key(self) -> str | None:
        return os.environ.get(API_KEY_ENV) or None


@dataclass
class ProgressSettings:
    import_interval: int = 10


@dataclass
class PipelineSettings:
    """Typed view of config.yaml. Paths are relative to the config file."""

    sources_file: str = "config/sources.yaml"
    organizers_file: str = "data/organizers.yaml"
    content_dir: str = "content/events"
    inbox_dir: str = "inbox"
    duplicate_log_file: str = "logs/duplicates.jsonl"
    progress_log_file: str = "logs/progress.jsonl"
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    classifier: ClassifierSettings = field(default_factory=ClassifierSettings)
    moderation: ModerationSettings = field(default_factory=ModerationSettings)
    quality: QualitySettings = field(default_factory=QualitySettings)
    identifier: IdentifierSettings = field(default_factory=IdentifierSettings)
    openai: OpenAISettings = field(default_factory=OpenAISettings)
    progress: ProgressSettings = field(default_factory=ProgressSettings)

    @classmethod
    def from_config(cls, cfg: dict | None) -> "PipelineSettings":
        """
        Build settings from a parsed config.yaml mapping.

        Missing keys keep their defaults.

        Raises:
            ConfigurationError: If a section has the wrong shape
        """
        cfg = cfg or {}
        try:
            settings = cls(
                **{
                    key: str(cfg[key])
                    for key in (
                        "sources_file",
                        "organizers_file",
                        "content_dir",
                        "inbox_dir",
                        "duplicate_log_file",
                        "progress_log_file",
                    )
                    if cfg.get(key)
                },
                logging=LoggingSettings(**_section(cfg, "logging")),
                classifier=ClassifierSettings(**_section(cfg, "classifier")),
                moderation=ModerationSettings(**_section(cfg, "moderation")),
                quality=QualitySettings(**_section(cfg, "quality")),
                identifier=IdentifierSettings(**_section(cfg, "identifier")),
                openai=OpenAISettings(**_section(cfg, "openai")),
                progress=ProgressSettings(**_section(cfg, "progress")),
            )
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        if settings.classifier.provider not in ("openai", "keyword"):
            raise ConfigurationError(
                f"Unknown classifier provider: {settings.classifier.provider}"
            )
        if settings.progress.import_interval < 1:
            raise ConfigurationError("progress.import_interval must be at least 1")
        settings.quality.trusted_organizers = [
            int(i) for i in settings.quality.trusted_organizers
        ]
        return settings

    def resolve(self, config_dir: Path, value: str) -> Path:
        """Resolve a configured path against the config file's directory."""
        path = Path(value)
        return path if path.is_absolute() else config_dir / path


def _section(cfg: dict, name: str) -> dict:
    section = cfg.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Config section '{name}' must be a mapping")
    return section
