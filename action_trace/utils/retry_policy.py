"""
Retry Policy
============
Pure decision function for retrying metadata requests.

    next_delay(attempt, elapsed, error) -> seconds to wait | None (give up)

Rules:
    - Permanent errors (NotFound, Unauthorized, anything non-retryable) → give up
    - attempt >= max_attempts → give up
    - elapsed >= max_elapsed (when set) → give up
    - RateLimited with a retry_after hint → wait the hint; a hint longer than
      max_rate_limit_wait means the budget will not recover soon → give up
    - Otherwise exponential backoff: base_delay * multiplier ** (attempt - 1),
      capped at max_delay

The policy knows nothing about transports or sleeping, so it can be tested
with plain values.
"""
from dataclasses import dataclass
from typing import Optional

from action_trace.core.config import (
    TRACE_RETRY_ATTEMPTS, TRACE_RETRY_BASE_DELAY, TRACE_RETRY_MAX_DELAY,
    TRACE_RATE_LIMIT_MAX_WAIT,
)
from action_trace.core.errors import MetadataSourceError, RateLimited


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = TRACE_RETRY_ATTEMPTS
    base_delay: float = TRACE_RETRY_BASE_DELAY
    multiplier: float = 2.0
    max_delay: float = TRACE_RETRY_MAX_DELAY
    max_rate_limit_wait: float = TRACE_RATE_LIMIT_MAX_WAIT
    max_elapsed: Optional[float] = None

    def backoff(self, attempt: int) -> float:
        """Exponential delay after the given (1-based) failed attempt."""
        return min(self.base_delay * (self.multiplier ** max(attempt - 1, 0)), self.max_delay)

    def next_delay(self, attempt: int, elapsed: float, error: BaseException) -> Optional[float]:
        """
        Decide whether to retry after a failed attempt.

        Parameters
        ----------
        attempt : int
            Number of attempts made so far (1 after the first failure).
        elapsed : float
            Seconds since the first attempt started.
        error : BaseException
            The failure raised by the attempt.

        Returns
        -------
        float or None
            Seconds to wait before the next attempt, or None to give up.
        """
        if not isinstance(error, MetadataSourceError) or not error.retryable:
            return None
        if attempt >= self.max_attempts:
            return None
        if self.max_elapsed is not None and elapsed >= self.max_elapsed:
            return None

        if isinstance(error, RateLimited) and error.retry_after is not None:
            if error.retry_after > self.max_rate_limit_wait:
                return None
            return max(error.retry_after, 0.0)
        return self.backoff(attempt)


NO_RETRY = RetryPolicy(max_attempts=1)
