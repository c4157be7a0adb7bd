"""
Retry Configuration for storage transactions

Provides:
- Configurable retry logic with exponential backoff
- A predicate to retry only the failures that can succeed on a second try

Usage:
    from pawmart.core.retry import with_retry, RetryConfig

    @with_retry(RetryConfig(max_attempts=3, retryable_exceptions=(TransactionCancelled,)))
    async def commit(operations):
        await store.commit(operations)
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

from pawmart.database.operations import TransactionCancelled

logger = logging.getLogger(__name__)

__all__ = [
    "RetryConfig",
    "with_retry",
    "TRANSACTION_RETRY_CONFIG",
]

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior"""

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,)
    retry_if: Optional[Callable[[Exception], bool]] = None

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt number"""
        delay = min(
            self.base_delay * (self.exponential_base ** (attempt - 1)),
            self.max_delay
        )
        if self.jitter:
            delay *= (0.5 + random.random())
        return delay

    def should_retry(self, exc: Exception) -> bool:
        return self.retry_if is None or self.retry_if(exc)


# Storage transactions cancelled only by concurrent writers on the same items
TRANSACTION_RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    base_delay=0.05,
    max_delay=0.5,
    retryable_exceptions=(TransactionCancelled,),
    retry_if=lambda exc: exc.is_transient,
)


def with_retry(config: Optional[RetryConfig] = None):
    """
    Decorator to add retry logic to async functions.

    Exceptions outside `retryable_exceptions`, or rejected by `retry_if`,
    propagate on the first attempt.

    Example:
        @with_retry(RetryConfig(max_attempts=5))
        async def fetch_data():
            return await client.get(url)
    """
    if config is None:
        config = TRANSACTION_RETRY_CONFIG

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(1, config.max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except config.retryable_exceptions as e:
                    if not config.should_retry(e):
                        raise

                    if attempt == config.max_attempts:
                        logger.error(
                            f"All {config.max_attempts} attempts failed for {func.__name__}: {e}"
                        )
                        raise

                    delay = config.get_delay(attempt)
                    logger.warning(
                        f"Attempt {attempt}/{config.max_attempts} failed for {func.__name__}: {e}. "
                        f"Retrying in {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
