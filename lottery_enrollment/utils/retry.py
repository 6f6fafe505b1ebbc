"""
Retry mechanisms with exponential backoff for optimistic transactions.
"""

import asyncio
import logging
import random
from typing import Any, Callable, Optional
from functools import wraps
from dataclasses import dataclass

from ..config import get_settings
from ..utils.exceptions import ConcurrencyError

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given zero-based attempt."""
        delay = min(
            self.base_delay * (self.exponential_base ** attempt),
            self.max_delay
        )

        # Add jitter to prevent thundering herd
        if self.jitter:
            delay = delay * (0.5 + random.random() * 0.5)

        return delay


async def retry_async(
    func: Callable,
    config: RetryConfig,
    retryable_exceptions: tuple = (Exception,),
    non_retryable_exceptions: tuple = (),
    *args,
    **kwargs
) -> Any:
    """
    Retry an async function with exponential backoff.

    Args:
        func: The async function to retry
        config: Retry configuration
        retryable_exceptions: Exceptions that should trigger retries
        non_retryable_exceptions: Exceptions that should not trigger retries
        *args, **kwargs: Arguments to pass to the function

    Returns:
        The result of the function call

    Raises:
        The last exception if all retries are exhausted
    """
    last_exception = None

    for attempt in range(config.max_attempts):
        try:
            result = await func(*args, **kwargs)

            if attempt > 0:
                logger.info(f"Function {func.__name__} succeeded on attempt {attempt + 1}")

            return result

        except non_retryable_exceptions as e:
            logger.debug(f"Non-retryable error in {func.__name__}: {e}")
            raise

        except retryable_exceptions as e:
            last_exception = e

            # Don't sleep after the last attempt
            if attempt == config.max_attempts - 1:
                break

            delay = config.delay_for(attempt)
            logger.warning(
                f"Attempt {attempt + 1} failed for {func.__name__}: {e}. "
                f"Retrying in {delay:.2f}s..."
            )

            await asyncio.sleep(delay)

    logger.error(f"All {config.max_attempts} attempts failed for {func.__name__}")
    raise last_exception


def retry_on_concurrency_error(
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    jitter: bool = True
):
    """
    Decorator that re-runs a whole transaction when a concurrent write is detected.

    Unset limits are read from settings on each call, so tests and
    deployments can tune them through the environment.
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            settings = get_settings()
            config = RetryConfig(
                max_attempts=max_attempts or settings.max_retry_attempts,
                base_delay=base_delay if base_delay is not None else settings.retry_base_delay,
                max_delay=max_delay if max_delay is not None else settings.retry_max_delay,
                jitter=jitter
            )
            return await retry_async(
                func,
                config,
                (ConcurrencyError,),
                (ValueError, TypeError),
                *args,
                **kwargs
            )
        return wrapper

    return decorator
