"""
Retry/backoff executor for remote writes.

Every remote operation goes through RetryExecutor.call. Transient errors
(rate limiting, timeouts, unavailable service, dropped connections) are
retried with a bounded linear backoff; anything else fails that single
operation immediately.
"""

import logging
import re
import threading
import time
from typing import Any, Callable, Optional

import psycopg2
import requests

from .errors import StoreError, TransientStoreError, WriteFailure

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 429, 503, 504}

_TRANSIENT_MESSAGE = re.compile(
    r"\b429\b|too many requests|rate limit|timed out|timeout|fetch failed|network|"
    r"connection reset|connection refused|connection aborted|econnreset|"
    r"service unavailable|\b503\b",
    re.IGNORECASE,
)


def _status_of(exc: BaseException) -> Optional[int]:
    for attr in ("status", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def _library_transient(exc: BaseException) -> bool:
    """psycopg2 / requests errors that signal a lost or overloaded peer."""
    return isinstance(exc, (psycopg2.OperationalError, psycopg2.InterfaceError,
                            requests.Timeout, requests.ConnectionError))


def is_retryable(exc: BaseException) -> bool:
    """Classify an error as transient (retry) or fatal."""
    if isinstance(exc, WriteFailure):
        return False
    if isinstance(exc, TransientStoreError):
        return True
    if isinstance(exc, StoreError):
        return exc.status in RETRYABLE_STATUS
    status = _status_of(exc)
    if status is not None:
        return status in RETRYABLE_STATUS
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    if _library_transient(exc):
        return True
    return bool(_TRANSIENT_MESSAGE.search(str(exc)))


class RetryExecutor:
    """
    Bounded retry wrapper.

    Args:
        max_attempts: total attempts per operation (first try included)
        backoff_base: seconds; the wait after attempt n is base * n
        backoff_max: upper bound for a single wait
        row_pause: fixed pause between independent operations
        sleep: injectable sleep function (tests pass a no-op)
    """

    def __init__(self, max_attempts: int = 3, backoff_base: float = 0.4,
                 backoff_max: float = 4.0, row_pause: float = 0.25,
                 sleep: Callable[[float], None] = time.sleep):
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.row_pause = row_pause
        self._sleep = sleep
        self._lock = threading.Lock()
        self.retries = 0

    @classmethod
    def from_config(cls, config, sleep: Callable[[float], None] = time.sleep) -> "RetryExecutor":
        return cls(max_attempts=config.max_attempts,
                   backoff_base=config.backoff_base,
                   backoff_max=config.backoff_max,
                   row_pause=config.row_pause,
                   sleep=sleep)

    def backoff(self, attempt: int) -> float:
        return min(self.backoff_base * attempt, self.backoff_max)

    def call(self, fn: Callable[..., Any], *args, description: str = "", **kwargs) -> Any:
        """
        Run fn(*args, **kwargs) with retries.

        Raises:
            WriteFailure: the error was fatal or retries were exhausted
        """
        label = description or getattr(fn, "__name__", "operation")
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                if attempt >= self.max_attempts or not is_retryable(e):
                    logger.warning("%s gave up after %d attempt(s): %s", label, attempt, e)
                    raise WriteFailure(label, attempt, e) from e
                wait = self.backoff(attempt)
                with self._lock:
                    self.retries += 1
                logger.warning("%s failed (attempt %d/%d), retrying in %.2fs: %s",
                               label, attempt, self.max_attempts, wait, e)
                self._sleep(wait)

    def pause(self):
        if self.row_pause > 0:
            self._sleep(self.row_pause)
