"""
Retry logic with exponential backoff and jitter.

Each retry i (1-based) waits ``2 ** i + uniform(0, 1)`` seconds, so a run
with the default five retries waits roughly 2, 4, 8, 16 and 32 seconds. The
jitter keeps a large worker pool from retrying in lock step.

Errors whose ``retryable`` attribute is False (for example a malformed ACL
rule) are raised on the first attempt; no amount of retrying fixes them.

Usage:
    from gcs_publish.utils.retry import with_retry, retry_with_backoff

    with_retry(lambda: upload_file(key, path, options, store), max_attempts=5)

    @retry_with_backoff(max_attempts=3)
    def flaky_call():
        ...
"""

import time
import random
import functools
from dataclasses import dataclass
from typing import Callable, Optional, Any, TypeVar

from gcs_publish.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5


@dataclass
class RetryStats:
    """
    Bookkeeping for one ``with_retry`` call.

    Attributes:
        attempts: Number of times the wrapped function was called
        last_error: Most recent failure (None after a first-try success)
    """

    attempts: int = 0
    last_error: Optional[BaseException] = None


def calculate_backoff_delay(attempt: int) -> float:
    """
    Calculate the delay before retry number ``attempt``.

    Formula:
        delay = 2 ** attempt + random.uniform(0, 1)

    Args:
        attempt: Retry number, starting at 1

    Returns:
        Delay in seconds
    """
    return 2 ** attempt + random.uniform(0, 1)


def is_retryable(error: BaseException) -> bool:
    """Errors without a ``retryable`` attribute are treated as transient."""
    return getattr(error, "retryable", True)


def with_retry(
    func: Callable[[], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    sleep: Callable[[float], Any] = time.sleep,
    on_retry: Optional[Callable[[int, Exception, float], Any]] = None,
    stats: Optional[RetryStats] = None,
    name: Optional[str] = None,
) -> T:
    """
    Call ``func`` until it succeeds or the retry budget runs out.

    ``func`` is called once, then retried up to ``max_attempts`` times, so
    it runs at most ``max_attempts + 1`` times. The first success is
    returned immediately. Non-retryable errors propagate without retrying.
    When every attempt fails the last error is raised.

    Args:
        func: Zero-argument callable performing one attempt
        max_attempts: Number of retries after the initial call
        sleep: Function used to wait between attempts
        on_retry: Optional callback ``(retry_number, error, delay)`` invoked
            before each backoff sleep
        stats: Optional RetryStats updated in place
        name: Label used in log messages

    Returns:
        Whatever ``func`` returns

    Raises:
        Exception: The non-retryable error, or the last error observed
    """
    if max_attempts < 0:
        raise ValueError(f"max_attempts must be >= 0, got {max_attempts}")

    label = name or getattr(func, "__name__", "operation")
    stats = stats if stats is not None else RetryStats()

    for attempt in range(max_attempts + 1):
        if attempt > 0:
            delay = calculate_backoff_delay(attempt)
            logger.warning(
                f"{label} failed on attempt {attempt}: {stats.last_error}. "
                f"Retrying in {delay:.2f}s ({attempt}/{max_attempts})"
            )
            if on_retry:
                on_retry(attempt, stats.last_error, delay)
            sleep(delay)

        stats.attempts += 1
        try:
            result = func()
        except Exception as e:
            stats.last_error = e
            if not is_retryable(e):
                logger.error(f"{label} failed with non-retryable error: {e}")
                raise
            continue

        if attempt > 0:
            logger.info(f"{label} succeeded on attempt {attempt + 1}")
        return result

    logger.error(
        f"{label} failed after {stats.attempts} attempts. "
        f"Last error: {stats.last_error}"
    )
    raise stats.last_error


def retry_with_backoff(
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    sleep: Callable[[float], Any] = time.sleep,
    on_retry: Optional[Callable[[int, Exception, float], Any]] = None,
):
    """
    Decorator form of ``with_retry``.

    Args:
        max_attempts: Number of retries after the initial call
        sleep: Function used to wait between attempts
        on_retry: Optional callback invoked before each backoff sleep

    Example:
        >>> @retry_with_backoff(max_attempts=3)
        ... def put(key, data):
        ...     return store.put_object(key, data, attributes)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return with_retry(
                lambda: func(*args, **kwargs),
                max_attempts=max_attempts,
                sleep=sleep,
                on_retry=on_retry,
                name=func.__name__,
            )

        return wrapper
    return decorator
