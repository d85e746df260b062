"""
Inbox Models
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..clock import utcnow


class InboxItem(BaseModel):
    """Deduplication record for one externally identified inbound message."""

    message_id: str
    request_type: str

    received_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None
    expires_at: datetime
    cached_response: Optional[bytes] = None
    last_error: Optional[str] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None

    @property
    def is_processed(self) -> bool:
        return self.processed_at is not None
