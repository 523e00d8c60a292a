"""
Resilience patterns for calls to external services.

Provides retry with exponential backoff for snapshot source reads, so a
brief network blip does not fail a whole dry run or enforcement cycle.
"""

import logging
import time
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def with_sync_retry(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 30.0,
    retry_exceptions: tuple[type[Exception], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> Callable:
    """
    Decorator for sync functions with exponential backoff retry.

    Args:
        max_attempts: Maximum number of attempts (1 = no retry)
        min_wait: Wait before the second attempt (seconds)
        max_wait: Cap on any single wait (seconds)
        retry_exceptions: Tuple of exception types to retry on
        sleep: Sleep function, injectable for tests

    Usage:
        @with_sync_retry(max_attempts=3, retry_exceptions=(SourceUnavailableError,))
        def list_candidates(org_id): ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            attempts = max(1, max_attempts)
            for attempt in range(1, attempts + 1):
                try:
                    return func(*args, **kwargs)
                except retry_exceptions as e:
                    if attempt == attempts:
                        logger.error(f"{func.__name__} failed after {attempts} attempts: {e}")
                        raise

                    wait_time = min(min_wait * (2 ** (attempt - 1)), max_wait)
                    logger.warning(f"{func.__name__} attempt {attempt} failed: {e}. Retrying in {wait_time:.1f}s...")
                    sleep(wait_time)

            raise RuntimeError(f"{func.__name__} failed without exception")

        return wrapper

    return decorator
