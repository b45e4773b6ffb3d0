"""Bounded exponential backoff for transient relayer failures."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhausted(Exception):
    """All attempts of a retried call failed."""

    def __init__(self, description: str, attempts: int, last_error: Exception):
        self.description = description
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{description} failed after {attempts} attempts: {last_error}")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry policy configuration."""

    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0
    multiplier: float = 2.0

    def get_delay(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""
        if attempt <= 0:
            return 0.0
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...],
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call ``func`` until it succeeds or the policy's attempts run out.

    Only exceptions in ``retry_on`` are retried; anything else propagates
    immediately.

    Raises:
        RetryExhausted: Every attempt raised a retryable error
    """
    last_error: Exception = RuntimeError("no attempts made")
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await func()
        except retry_on as e:
            last_error = e
            if attempt == policy.max_attempts:
                break
            delay = policy.get_delay(attempt)
            logger.warning(
                f"{description} failed (attempt {attempt}/{policy.max_attempts}): {e}; "
                f"retrying in {delay:.1f}s"
            )
            await sleep(delay)

    raise RetryExhausted(description, policy.max_attempts, last_error)
