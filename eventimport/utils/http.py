"""HTTP access to external JSON APIs, with retries and request pacing."""

import time
from collections.abc import Callable
from typing import Any

import httpx

from ..logger import get_logger

logger = get_logger(__name__)


class ApiError(Exception):
    """Raised when an API request fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimiter:
    """
    Minimum-interval gate keyed by caller.

    ``wait(key)`` blocks until at least the configured delay has passed
    since the previous ``wait`` for the same key. The first call for a key
    never blocks.
    """

    def __init__(
        self,
        default_delay: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            default_delay: Delay in seconds between calls for the same key
            clock: Monotonic time source
            sleep: Function used to block
        """
        self.default_delay = default_delay
        self._clock = clock
        self._sleep = sleep
        self._last_request: dict[str, float] = {}
        self._delays: dict[str, float] = {}

    def set_delay(self, key: str, delay: float) -> None:
        self._delays[key] = delay

    def wait(self, key: str) -> float:
        """
        Block if needed; return the number of seconds waited.
        """
        delay = self._delays.get(key, self.default_delay)
        waited = 0.0

        if key in self._last_request:
            elapsed = self._clock() - self._last_request[key]
            if elapsed < delay:
                waited = delay - elapsed
                logger.debug(f"Rate limiting [{key}]: waiting {waited:.2f}s")
                self._sleep(waited)

        self._last_request[key] = self._clock()
        return waited


class ApiClient:
    """
    JSON-over-HTTPS client for OpenAI-compatible endpoints.

    Retries with exponential backoff on 429, 5xx and transport errors.
    Other 4xx responses fail immediately.
    """

    def __init__(
        self,
        base_url: str = "https://api.openai.com/v1",
        api_key: str | None = None,
        timeout: float = 30.0,
        retry_count: int = 4,
        retry_delay: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Args:
            base_url: API root URL
            api_key: Bearer token
            timeout: Request timeout in seconds
            retry_count: Retries after the first attempt
            retry_delay: Base backoff delay in seconds (doubles per attempt)
            sleep: Function used to wait between attempts
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.retry_count = retry_count
        self.retry_delay = retry_delay
        self._sleep = sleep

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        client_kwargs: dict[str, Any] = {"timeout": timeout, "headers": headers}
        if transport is not None:
            client_kwargs["transport"] = transport
        self._client = httpx.Client(**client_kwargs)

    def post_json(self, path: str, payload: dict) -> dict:
        """
        POST a JSON payload and return the decoded JSON response.

        Raises:
            ApiError: On a non-retryable error or when retries run out
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        last_error: ApiError | None = None

        for attempt in range(self.retry_count + 1):
            try:
                logger.debug(f"POST {url} (attempt {attempt + 1})")
                response = self._client.post(url, json=payload)
            except httpx.RequestError as e:
                last_error = ApiError(f"Request error: {e}")
                logger.warning(f"Request error for {url}: {e}, retrying...")
            else:
                status = response.status_code
                if response.is_success:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise ApiError(f"Invalid JSON from {url}: {e}", status) from e

                last_error = ApiError(f"HTTP {status} for {url}", status)
                if 400 <= status < 500 and status != 429:
                    logger.error(f"HTTP {status} for {url}: {response.text[:200]}")
                    raise last_error
                logger.warning(f"HTTP {status} for {url}, retrying...")

            if attempt < self.retry_count:
                delay = self.retry_delay * (2**attempt)
                logger.debug(f"Waiting {delay:.1f}s before retry")
                self._sleep(delay)

        logger.error(f"All retries failed for {url}")
        raise last_error

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
