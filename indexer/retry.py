"""Bounded retry with exponential backoff."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry schedule.

    Args:
        max_retries: Retries allowed after the first attempt
        initial_backoff: Delay before the first retry, in seconds
        multiplier: Factor applied to the delay after each retry
        max_backoff: Optional ceiling for a single delay
    """
    max_retries: int = 5
    initial_backoff: float = 1.0
    multiplier: float = 2.0
    max_backoff: Optional[float] = None

    def delay_for(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (1-based)."""
        delay = self.initial_backoff * (self.multiplier ** (retry_number - 1))
        if self.max_backoff is not None:
            delay = min(delay, self.max_backoff)
        return delay

    def delays(self) -> List[float]:
        return [self.delay_for(n) for n in range(1, self.max_retries + 1)]


async def retry_async(operation: Callable[[], Awaitable[T]],
                      policy: RetryPolicy,
                      is_retryable: Callable[[BaseException], bool],
                      description: str = "operation",
                      sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                      on_retry: Optional[Callable[[int, float, BaseException], None]] = None) -> T:
    """Run ``operation`` until it succeeds or the policy is exhausted.

    Non-retryable exceptions propagate on the first occurrence. Once the retry
    budget is spent, the last exception propagates unchanged.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as exc:
            retries_used = attempt - 1
            if not is_retryable(exc):
                logger.error(f"{description} failed with non-retryable error (attempt {attempt}): {exc}")
                raise
            if retries_used >= policy.max_retries:
                logger.error(f"{description} failed after {attempt} attempts. Giving up: {exc}")
                raise

            delay = policy.delay_for(retries_used + 1)
            logger.warning(
                f"{description} failed ({exc}), retrying in {delay:.2f}s "
                f"(retry {retries_used + 1}/{policy.max_retries})"
            )
            if on_retry is not None:
                on_retry(retries_used + 1, delay, exc)
            await sleep(delay)
