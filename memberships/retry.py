"""
Bounded retry for idempotent persistence calls.

Reads, cancel and the expiry sweep go through ``run_with_retry``. Writes
that would double-apply on replay (subscribe, upgrade) run inside
``surface_transient`` instead so the caller sees the failure.
"""

import asyncio
import logging
import random
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

from memberships import config
from memberships.errors import TransientPersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = config.RETRY_MAX_ATTEMPTS
    initial_delay_seconds: float = config.RETRY_INITIAL_DELAY_SECONDS
    max_delay_seconds: float = config.RETRY_MAX_DELAY_SECONDS
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay before the next attempt.

        Args:
            attempt: Attempt that just failed (0-indexed)

        Returns:
            Delay in seconds
        """
        base_delay = self.initial_delay_seconds * (self.backoff_multiplier ** attempt)
        jitter = random.uniform(0, base_delay * self.jitter_factor)
        return min(base_delay + jitter, self.max_delay_seconds)


def is_transient(exc: BaseException) -> bool:
    """Timeouts, lock contention and dropped connections are worth retrying."""
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False


async def run_with_retry(
    operation: str,
    func: Callable[[], Awaitable[T]],
    retry_config: Optional[RetryConfig] = None,
) -> T:
    """Run ``func`` and retry transient failures with exponential backoff."""
    cfg = retry_config or RetryConfig()
    attempts = max(1, cfg.max_attempts)
    for attempt in range(attempts):
        try:
            return await func()
        except DBAPIError as exc:
            if not is_transient(exc):
                raise
            if attempt + 1 >= attempts:
                logger.error(
                    "Persistence retries exhausted",
                    extra={"operation": operation, "attempts": attempts, "error": str(exc)},
                )
                raise TransientPersistenceError(operation, cause=exc) from exc
            delay = cfg.calculate_delay(attempt)
            logger.warning(
                "Transient persistence failure, retrying",
                extra={
                    "operation": operation,
                    "attempt": attempt + 1,
                    "delay_seconds": round(delay, 3),
                    "error": str(exc),
                },
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")


@contextmanager
def surface_transient(operation: str) -> Iterator[None]:
    """Re-raise transient driver errors from a write as TransientPersistenceError."""
    try:
        yield
    except DBAPIError as exc:
        if not is_transient(exc):
            raise
        logger.warning(
            "Transient persistence failure on non-idempotent write",
            extra={"operation": operation, "error": str(exc)},
        )
        raise TransientPersistenceError(operation, cause=exc) from exc
