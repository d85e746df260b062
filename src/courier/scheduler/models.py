"""
Scheduler Models
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from ..clock import utcnow


class ScheduledItem(BaseModel):
    """A command to dispatch at or after ``scheduled_at``."""

    id: UUID = Field(default_factory=uuid4)
    request_type: str
    payload: bytes = b""

    created_at: datetime = Field(default_factory=utcnow)
    scheduled_at: datetime
    processed_at: Optional[datetime] = None
    last_executed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    is_recurring: bool = False
    recurrence_rule: Optional[str] = None  # 5-field crontab expression

    last_error: Optional[str] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.processed_at is None and self.cancelled_at is None

    def is_dead_letter(self, max_retries: int) -> bool:
        return self.is_pending and self.retry_count >= max_retries

    def is_due(self, max_retries: int, now: datetime) -> bool:
        return (
            self.is_pending
            and self.scheduled_at <= now
            and self.retry_count < max_retries
            and (self.next_retry_at is None or self.next_retry_at <= now)
        )
