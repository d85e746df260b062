"""
Scheduled Message Store

Storage contract for scheduled items plus an in-memory implementation.
As with the outbox, ``claim_due`` must be atomic per item.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from uuid import UUID

from ..leases import ClaimLeases
from .models import ScheduledItem


class ScheduledStore(ABC):
    """Storage contract consumed by the scheduler and its processor."""

    @abstractmethod
    async def add(self, item: ScheduledItem) -> None:
        """Persist a new item."""

    @abstractmethod
    async def claim_due(
        self,
        batch_size: int,
        max_retries: int,
        now: datetime
    ) -> List[ScheduledItem]:
        """Claim up to ``batch_size`` due items, earliest ``scheduled_at`` first."""

    @abstractmethod
    async def mark_processed(self, item_id: UUID, processed_at: datetime) -> None:
        """Finish a one-shot item (or a recurring item with no further occurrences)."""

    @abstractmethod
    async def mark_failed(
        self,
        item_id: UUID,
        error: str,
        next_retry_at: Optional[datetime]
    ) -> None:
        """Record ``error``, increment ``retry_count`` and set ``next_retry_at``."""

    @abstractmethod
    async def reschedule(
        self,
        item_id: UUID,
        scheduled_at: datetime,
        last_executed_at: Optional[datetime] = None,
        last_error: Optional[str] = None
    ) -> None:
        """
        Move a recurring item to its next occurrence and reset its retry state.

        ``last_executed_at`` is given after a successful run; ``last_error``
        after an occurrence that exhausted its retries.
        """

    @abstractmethod
    async def cancel(self, item_id: UUID, cancelled_at: datetime) -> bool:
        """Cancel a pending item. Returns False if not found or already finished."""

    @abstractmethod
    async def get(self, item_id: UUID) -> Optional[ScheduledItem]:
        """Get a single item."""

    @abstractmethod
    async def count_pending(self) -> int:
        """Number of items neither processed nor cancelled."""


class InMemoryScheduledStore(ScheduledStore):
    """Scheduled store held in process memory."""

    def __init__(self, claim_timeout: timedelta = timedelta(minutes=5)):
        self._items: Dict[UUID, ScheduledItem] = {}
        self._leases = ClaimLeases(claim_timeout)
        self._lock = asyncio.Lock()

    async def add(self, item: ScheduledItem) -> None:
        async with self._lock:
            if item.id in self._items:
                raise ValueError(f"duplicate_scheduled_item:{item.id}")
            self._items[item.id] = item.model_copy(deep=True)

    async def claim_due(
        self,
        batch_size: int,
        max_retries: int,
        now: datetime
    ) -> List[ScheduledItem]:
        async with self._lock:
            due = sorted(
                (
                    item for item in self._items.values()
                    if item.is_due(max_retries, now)
                    and not self._leases.is_claimed(item.id, now)
                ),
                key=lambda item: item.scheduled_at
            )[:batch_size]
            for item in due:
                self._leases.claim(item.id, now)
            return [item.model_copy(deep=True) for item in due]

    async def mark_processed(self, item_id: UUID, processed_at: datetime) -> None:
        async with self._lock:
            item = self._items.get(item_id)
            if item is not None and item.processed_at is None:
                item.processed_at = processed_at
                item.last_executed_at = processed_at
                item.last_error = None
                item.next_retry_at = None
            self._leases.release(item_id)

    async def mark_failed(
        self,
        item_id: UUID,
        error: str,
        next_retry_at: Optional[datetime]
    ) -> None:
        async with self._lock:
            item = self._items.get(item_id)
            if item is not None and item.is_pending:
                item.last_error = error
                item.retry_count += 1
                item.next_retry_at = next_retry_at
            self._leases.release(item_id)

    async def reschedule(
        self,
        item_id: UUID,
        scheduled_at: datetime,
        last_executed_at: Optional[datetime] = None,
        last_error: Optional[str] = None
    ) -> None:
        async with self._lock:
            item = self._items.get(item_id)
            if item is not None and item.is_pending:
                item.scheduled_at = scheduled_at
                if last_executed_at is not None:
                    item.last_executed_at = last_executed_at
                item.last_error = last_error
                item.retry_count = 0
                item.next_retry_at = None
            self._leases.release(item_id)

    async def cancel(self, item_id: UUID, cancelled_at: datetime) -> bool:
        async with self._lock:
            item = self._items.get(item_id)
            if item is None or not item.is_pending:
                return False
            item.cancelled_at = cancelled_at
            self._leases.release(item_id)
            return True

    async def get(self, item_id: UUID) -> Optional[ScheduledItem]:
        item = self._items.get(item_id)
        return item.model_copy(deep=True) if item is not None else None

    async def count_pending(self) -> int:
        return sum(1 for item in self._items.values() if item.is_pending)
