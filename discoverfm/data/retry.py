"""Bounded retry with exponential backoff that honours server rate-limit hints."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from discoverfm.data.errors import RateLimited, TransientServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int, error: Exception) -> float:
        """Seconds to wait before retry number `attempt` (0-based).

        A Retry-After hint is a floor: we never retry sooner than the server asked.
        """
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if isinstance(error, RateLimited) and error.retry_after is not None:
            delay = max(delay, float(error.retry_after))
        return delay


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "",
) -> T:
    """Call fn, retrying TransientServiceError (including RateLimited).

    Any other exception propagates immediately. After max_retries retries the
    last transient error is re-raised.
    """
    label = description or getattr(fn, "__name__", "call")
    for attempt in range(policy.max_retries + 1):
        try:
            return fn()
        except TransientServiceError as e:
            if attempt == policy.max_retries:
                logger.warning("%s failed after %d retries: %s", label, policy.max_retries, e)
                raise
            delay = policy.delay_for(attempt, e)
            logger.info(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                label, attempt + 1, policy.max_retries + 1, delay, e,
            )
            sleep(delay)
    raise AssertionError("unreachable")
