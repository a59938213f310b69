"""Retry with exponential backoff for storage access.

Wraps operations that can fail transiently (a locked SQLite file, a
connection that could not be opened) so that callers never carry their own
reconnect logic.
"""

import functools
import logging
import random
import time
from typing import Any, Callable

logger = logging.getLogger(__name__)


def exponential_backoff_retry(
    max_attempts: int | Callable[[], int] = 3,
    base_delay: float = 0.1,
    max_delay: float = 2.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception, float], None] | None = None,
):
    """Decorator retrying a call with exponential backoff.

    Args:
        max_attempts: Total attempts, or a callable returning it (read at call
            time so configuration overrides apply)
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound on any single delay
        backoff_factor: Growth factor between consecutive delays
        jitter: Randomize each delay between 0 and its computed value
        exceptions: Exception types that trigger a retry; others propagate
        on_retry: Optional callback(attempt, exception, delay)

    Example:
        @exponential_backoff_retry(max_attempts=3, exceptions=(sqlite3.OperationalError,))
        def connect():
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempts = max_attempts() if callable(max_attempts) else max_attempts
            attempts = max(1, attempts)
            attempt = 0

            while True:
                try:
                    result = func(*args, **kwargs)
                    if attempt > 0:
                        logger.info(f"{func.__name__} succeeded after {attempt} retries")
                    return result
                except exceptions as exc:
                    attempt += 1
                    if attempt >= attempts:
                        logger.error(
                            f"Max retries ({attempts}) exceeded for {func.__name__}: {exc}"
                        )
                        raise

                    delay = min(base_delay * (backoff_factor ** (attempt - 1)), max_delay)
                    if jitter:
                        delay = random.uniform(0, delay)

                    logger.warning(
                        f"Retry {attempt}/{attempts} for {func.__name__} "
                        f"after {delay:.2f}s delay: {exc}"
                    )
                    if on_retry:
                        on_retry(attempt, exc, delay)

                    time.sleep(delay)

        return wrapper
    return decorator
