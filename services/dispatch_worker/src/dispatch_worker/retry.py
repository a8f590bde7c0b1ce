"""Retry/backoff policy for failed delivery attempts.

The policy is a pure function of its inputs: it reads no clock and
touches no storage, so every decision can be reproduced in a test.
"""

import datetime

from notifyq.enums import ErrorKind, Priority
from notifyq.outcomes import GiveUp, RetryAt, RetryDecision

from dispatch_worker.config import RetryConfig

_DEFAULT_FACTORS: dict[str, float] = {
    Priority.URGENT: 0.25,
    Priority.HIGH: 0.5,
    Priority.NORMAL: 1.0,
    Priority.LOW: 2.0,
}


class RetryPolicy:
    """Exponential backoff scaled by priority, capped by attempt count."""

    def __init__(
        self,
        max_attempts: int = 5,
        base_delay: datetime.timedelta = datetime.timedelta(seconds=30),
        max_delay: datetime.timedelta = datetime.timedelta(hours=1),
        multiplier: float = 2.0,
        priority_factors: dict[str, float] | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.priority_factors = priority_factors or dict(_DEFAULT_FACTORS)

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=datetime.timedelta(seconds=config.base_delay_seconds),
            max_delay=datetime.timedelta(seconds=config.max_delay_seconds),
            multiplier=config.multiplier,
            priority_factors=config.priority_factors(),
        )

    def backoff(self, attempt_count: int, priority: str) -> datetime.timedelta:
        """Delay before the next attempt after *attempt_count* attempts."""
        factor = self.priority_factors.get(priority, 1.0)
        exponent = max(attempt_count - 1, 0)
        delay = self.base_delay * factor * (self.multiplier**exponent)
        return min(delay, self.max_delay)

    def decide(
        self,
        attempt_count: int,
        priority: str,
        error_kind: str,
        now: datetime.datetime,
        *,
        retry_safe: bool = True,
    ) -> RetryDecision:
        kind = ErrorKind(error_kind)
        if not kind.retryable:
            return GiveUp(f"non-retryable error: {kind}")
        if attempt_count >= self.max_attempts:
            return GiveUp(f"gave up after {attempt_count} attempts")
        if not retry_safe:
            return GiveUp(
                "send cannot be safely repeated on this channel",
                manual_review=True,
            )
        return RetryAt(now + self.backoff(attempt_count, priority))
