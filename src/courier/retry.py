"""
Retry Policy

Exponential backoff shared by the Outbox, Inbox and Scheduler.

    delay(attempt) = base_delay * 2 ** (attempt - 1)

Attempt 1 waits ``base_delay``, attempt 2 waits twice that, and so on.
Once ``attempt`` reaches ``max_retries`` there is no next retry: the item
is a dead letter.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional


@dataclass(frozen=True)
class RetryPolicy:
    """Pure mapping from (attempt, now) to the next eligible time."""

    base_delay: timedelta = timedelta(seconds=5)
    max_retries: int = 5
    max_delay: Optional[timedelta] = None

    def __post_init__(self):
        if self.base_delay <= timedelta(0):
            raise ValueError("base_delay must be positive")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")

    def delay(self, attempt: int) -> timedelta:
        """Backoff delay after the given (1-based) failed attempt."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        delay = self.base_delay * (2 ** (attempt - 1))
        if self.max_delay is not None and delay > self.max_delay:
            return self.max_delay
        return delay

    def is_exhausted(self, attempt: int) -> bool:
        return attempt >= self.max_retries

    def next_retry_at(self, attempt: int, now: datetime) -> Optional[datetime]:
        """
        Calculate when an item that has failed ``attempt`` times may run again.

        Returns None once the retry budget is spent.
        """
        if self.is_exhausted(attempt):
            return None
        return now + self.delay(attempt)

    @classmethod
    def from_seconds(
        cls,
        base_delay: float,
        max_retries: int,
        max_delay: Optional[float] = None
    ) -> "RetryPolicy":
        return cls(
            base_delay=timedelta(seconds=base_delay),
            max_retries=max_retries,
            max_delay=timedelta(seconds=max_delay) if max_delay is not None else None,
        )
