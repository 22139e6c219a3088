from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from isil_tagger.__version__ import __version__ as VERSION

T = TypeVar("T")

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 15
DEFAULT_READ_TIMEOUT = 300
DEFAULT_TIMEOUT = (DEFAULT_CONNECT_TIMEOUT, DEFAULT_READ_TIMEOUT)
DEFAULT_RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


@dataclass
class RetryConfig:
    max_attempts: int = 3
    backoff_base: float = 2.0
    backoff_max: float = 60.0


def build_user_agent(name: str = "isil-tagger", version: str = VERSION) -> str:
    """Build a default User-Agent string."""
    return f"{name}/{version}"


def create_retry_session(
    *,
    total_retries: int = 3,
    backoff_factor: float = 0.5,
    status_forcelist: set[int] | None = None,
) -> requests.Session:
    """Create a requests session with connection-level retry/backoff handling."""
    status_list = status_forcelist or DEFAULT_RETRY_STATUS_CODES
    retries = Retry(
        total=total_retries,
        backoff_factor=backoff_factor,
        status_forcelist=list(status_list),
        allowed_methods=("GET", "HEAD"),
        raise_on_status=False,
    )
    session = requests.Session()
    session.headers["User-Agent"] = build_user_agent()
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def _is_retryable_http_exception(exc: Exception, retry_on_429: bool = True) -> bool:
    """Check if an HTTP exception is retryable.

    Server errors, rate limiting and connection level failures are transient;
    any other HTTP status (404, 401, ...) will not fix itself on retry.
    """
    if isinstance(exc, requests.exceptions.HTTPError):
        status_code = exc.response.status_code if exc.response is not None else None
        if status_code is None:
            return False
        if status_code >= 500:
            return True
        if status_code == 429 and retry_on_429:
            return True
        return False
    return isinstance(
        exc,
        (
            requests.exceptions.ConnectionError,
            requests.exceptions.Timeout,
            requests.exceptions.ChunkedEncodingError,
            requests.exceptions.ContentDecodingError,
            requests.exceptions.TooManyRedirects,
        ),
    )


def _with_retries(
    fn: Callable[[], T],
    *,
    max_attempts: int = 3,
    backoff_base: float = 2.0,
    backoff_max: float = 60.0,
    on_retry: Callable[[int, Exception], None] | None = None,
    retry_on_429: bool = True,
) -> T:
    """Execute a function with retry logic.

    Args:
        fn: The function to execute
        max_attempts: Maximum number of attempts
        backoff_base: Base for exponential backoff (seconds)
        backoff_max: Maximum backoff time (seconds)
        on_retry: Optional callback called on each retry with (attempt_num, exception)
        retry_on_429: Whether to retry on HTTP 429 Too Many Requests

    Returns:
        The result of fn()

    Raises:
        Exception: The last exception if all retries fail
    """
    attempts = max(1, max_attempts)
    for attempt in range(attempts):
        try:
            return fn()
        except Exception as exc:
            is_retryable = _is_retryable_http_exception(exc, retry_on_429=retry_on_429)
            if not is_retryable or attempt >= attempts - 1:
                raise
            if on_retry:
                on_retry(attempt + 1, exc)
            sleep_time = min(backoff_base**attempt, backoff_max)
            time.sleep(sleep_time)
    raise RuntimeError("unreachable")
