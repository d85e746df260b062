"""
Dead Letter Queue (DLQ) Management

Operator tooling for outbox items that exhausted their retry budget.
Dead letters are never picked up automatically; they need one of the
actions below.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from .store import OutboxStore

logger = logging.getLogger(__name__)


class DLQAction(str, Enum):
    """Actions that can be taken on DLQ entries."""
    RETRY = "retry"
    PURGE = "purge"


@dataclass
class DLQEntry:
    """A dead-lettered outbox item."""
    id: UUID
    notification_type: str
    correlation_id: Optional[str]
    retry_count: int
    last_error: Optional[str]
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "notification_type": self.notification_type,
            "correlation_id": self.correlation_id,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class DLQManager:
    """
    Manages outbox dead letters.

    Responsibilities:
    - Query dead letters
    - Reset them for another round of delivery attempts
    - Purge them
    """

    def __init__(self, store: OutboxStore, max_retries: int):
        self._store = store
        self.max_retries = max_retries

    async def get_entries(self, limit: int = 100) -> List[DLQEntry]:
        items = await self._store.get_dead_letters(self.max_retries, limit)
        return [
            DLQEntry(
                id=item.id,
                notification_type=item.notification_type,
                correlation_id=item.correlation_id,
                retry_count=item.retry_count,
                last_error=item.last_error,
                created_at=item.created_at,
            )
            for item in items
        ]

    async def get_count(self) -> int:
        stats = await self._store.count_by_status(self.max_retries)
        return stats.get("dead", 0)

    async def retry_entry(self, entry_id: UUID, operator_id: Optional[str] = None) -> bool:
        """
        Reset a dead letter so the processor claims it again.

        Returns:
            True if the entry was reset
        """
        item = await self._store.get(entry_id)
        if item is None or not item.is_dead_letter(self.max_retries):
            return False

        success = await self._store.reset(entry_id)
        if success:
            self._log_action(entry_id, DLQAction.RETRY, operator_id)
        return success

    async def retry_all(self, operator_id: Optional[str] = None) -> int:
        count = 0
        # Resetting shrinks the dead-letter set, so re-query until empty
        while True:
            entries = await self.get_entries(limit=100)
            reset = 0
            for entry in entries:
                if await self.retry_entry(entry.id, operator_id):
                    reset += 1
            count += reset
            if not entries or reset == 0:
                break
        logger.info(f"DLQ retry all: reset {count} entries by {operator_id}")
        return count

    async def purge_entry(self, entry_id: UUID, operator_id: Optional[str] = None) -> bool:
        """Permanently delete a dead letter."""
        item = await self._store.get(entry_id)
        if item is None or not item.is_dead_letter(self.max_retries):
            return False

        removed = await self._store.remove([entry_id]) > 0
        if removed:
            self._log_action(entry_id, DLQAction.PURGE, operator_id)
        return removed

    async def get_stats(self) -> Dict[str, Any]:
        entries = await self._store.get_dead_letters(self.max_retries, limit=10_000)
        by_type: Dict[str, int] = {}
        for entry in entries:
            by_type[entry.notification_type] = by_type.get(entry.notification_type, 0) + 1
        oldest = min((entry.created_at for entry in entries), default=None)
        return {
            "total_count": len(entries),
            "by_notification_type": by_type,
            "oldest_entry": oldest.isoformat() if oldest else None,
        }

    def _log_action(self, entry_id: UUID, action: DLQAction, operator_id: Optional[str]):
        logger.info(f"DLQ action: {action.value} on {entry_id} by {operator_id}")
