"""
Outbox Models
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from ..clock import utcnow


class OutboxStatus(str, Enum):
    """Derived lifecycle state of an outbox item."""
    PENDING = "pending"
    RETRYING = "retrying"
    DELIVERED = "delivered"
    DEAD = "dead"  # Exceeded max retries


class OutboxItem(BaseModel):
    """An outbound notification awaiting publication."""

    id: UUID = Field(default_factory=uuid4)
    notification_type: str
    payload: bytes = b""
    correlation_id: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None

    def is_dead_letter(self, max_retries: int) -> bool:
        return self.processed_at is None and self.retry_count >= max_retries

    def is_claimable(self, max_retries: int, now: datetime) -> bool:
        return (
            self.processed_at is None
            and self.retry_count < max_retries
            and (self.next_retry_at is None or self.next_retry_at <= now)
        )

    def status(self, max_retries: int) -> OutboxStatus:
        if self.processed_at is not None:
            return OutboxStatus.DELIVERED
        if self.retry_count >= max_retries:
            return OutboxStatus.DEAD
        if self.retry_count > 0:
            return OutboxStatus.RETRYING
        return OutboxStatus.PENDING
