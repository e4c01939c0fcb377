"""Bounded exponential backoff with jitter for capability-server HTTP calls."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Optional, TypeVar

from defi_agent.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class RetryableError(Exception):
    """Transient failure; ``retry_after`` (seconds) overrides the backoff delay."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.1

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for a given (zero based) retry attempt."""
        delay = min(
            self.initial_delay_seconds * (self.exponential_base**attempt),
            self.max_delay_seconds,
        )
        jitter_range = delay * self.jitter_factor
        delay += random.uniform(-jitter_range, jitter_range)
        return max(delay, 0)


async def retry_async(
    operation: Callable[[], Coroutine[Any, Any, T]],
    config: RetryConfig,
    *,
    description: str = "operation",
    sleep: Callable[[float], Coroutine[Any, Any, None]] = asyncio.sleep,
) -> T:
    """Run ``operation``, retrying only on :class:`RetryableError`.

    Non-retryable exceptions propagate immediately. Once ``max_retries`` is
    exhausted the last :class:`RetryableError` is re-raised.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except RetryableError as exc:
            if attempt >= config.max_retries:
                logger.warning(
                    "retry_exhausted",
                    operation=description,
                    attempts=attempt + 1,
                    error=str(exc),
                )
                raise
            delay = (
                exc.retry_after
                if exc.retry_after is not None
                else config.get_delay(attempt)
            )
            delay = min(delay, config.max_delay_seconds)
            logger.info(
                "retry_scheduled",
                operation=description,
                attempt=attempt + 1,
                max_retries=config.max_retries,
                delay=round(delay, 2),
                error=str(exc),
            )
            await sleep(delay)
            attempt += 1


__all__ = ["RETRYABLE_STATUS_CODES", "RetryConfig", "RetryableError", "retry_async"]
