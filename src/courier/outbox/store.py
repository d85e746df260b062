"""
Outbox Store

Durable storage contract for outbox items, plus the in-memory
implementation used by tests and single-process deployments.

SQL implementations must make ``claim_pending`` atomic per item
(e.g. ``UPDATE ... WHERE id = $1 AND claimed_until < now()`` or
``SELECT ... FOR UPDATE SKIP LOCKED``) so that concurrent processors
never both receive the same item.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from ..leases import ClaimLeases
from .models import OutboxItem, OutboxStatus


class OutboxStore(ABC):
    """Storage contract consumed by the outbox writer and processor."""

    @abstractmethod
    async def add(self, item: OutboxItem) -> None:
        """Persist a new item."""

    @abstractmethod
    async def claim_pending(
        self,
        batch_size: int,
        max_retries: int,
        now: datetime
    ) -> List[OutboxItem]:
        """
        Claim up to ``batch_size`` eligible items, oldest first.

        Eligible: unprocessed, ``retry_count < max_retries`` and
        ``next_retry_at`` unset or due. Each claim is atomic per item.
        """

    @abstractmethod
    async def mark_processed(self, item_id: UUID, processed_at: datetime) -> None:
        """Set ``processed_at`` (once) and clear ``last_error``."""

    @abstractmethod
    async def mark_failed(
        self,
        item_id: UUID,
        error: str,
        next_retry_at: Optional[datetime]
    ) -> None:
        """Record ``error``, increment ``retry_count`` and set ``next_retry_at``."""

    @abstractmethod
    async def get(self, item_id: UUID) -> Optional[OutboxItem]:
        """Get a single item."""

    @abstractmethod
    async def get_dead_letters(self, max_retries: int, limit: int = 100) -> List[OutboxItem]:
        """Unprocessed items whose retry budget is spent, newest first."""

    @abstractmethod
    async def reset(self, item_id: UUID) -> bool:
        """Make a dead letter claimable again. Returns False if not found or processed."""

    @abstractmethod
    async def remove(self, item_ids: Iterable[UUID]) -> int:
        """Delete items. Returns the number removed."""

    @abstractmethod
    async def count_by_status(self, max_retries: int) -> Dict[str, int]:
        """Item counts keyed by ``OutboxStatus`` value."""


class InMemoryOutboxStore(OutboxStore):
    """
    Outbox store held in process memory.

    Claims are made under a lock so that concurrent processors sharing one
    store never receive the same item.
    """

    def __init__(self, claim_timeout: timedelta = timedelta(minutes=5)):
        self._items: Dict[UUID, OutboxItem] = {}
        self._leases = ClaimLeases(claim_timeout)
        self._lock = asyncio.Lock()

    async def add(self, item: OutboxItem) -> None:
        async with self._lock:
            if item.id in self._items:
                raise ValueError(f"duplicate_outbox_item:{item.id}")
            self._items[item.id] = item.model_copy(deep=True)

    async def claim_pending(
        self,
        batch_size: int,
        max_retries: int,
        now: datetime
    ) -> List[OutboxItem]:
        async with self._lock:
            eligible = sorted(
                (
                    item for item in self._items.values()
                    if item.is_claimable(max_retries, now)
                    and not self._leases.is_claimed(item.id, now)
                ),
                key=lambda item: item.created_at
            )[:batch_size]
            for item in eligible:
                self._leases.claim(item.id, now)
            return [item.model_copy(deep=True) for item in eligible]

    async def mark_processed(self, item_id: UUID, processed_at: datetime) -> None:
        async with self._lock:
            item = self._items.get(item_id)
            if item is not None and item.processed_at is None:
                item.processed_at = processed_at
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
            if item is not None and item.processed_at is None:
                item.last_error = error
                item.retry_count += 1
                item.next_retry_at = next_retry_at
            self._leases.release(item_id)

    async def get(self, item_id: UUID) -> Optional[OutboxItem]:
        item = self._items.get(item_id)
        return item.model_copy(deep=True) if item is not None else None

    async def get_dead_letters(self, max_retries: int, limit: int = 100) -> List[OutboxItem]:
        dead = [item for item in self._items.values() if item.is_dead_letter(max_retries)]
        dead.sort(key=lambda item: item.created_at, reverse=True)
        return [item.model_copy(deep=True) for item in dead[:limit]]

    async def reset(self, item_id: UUID) -> bool:
        async with self._lock:
            item = self._items.get(item_id)
            if item is None or item.processed_at is not None:
                return False
            item.retry_count = 0
            item.next_retry_at = None
            item.last_error = None
            self._leases.release(item_id)
            return True

    async def remove(self, item_ids: Iterable[UUID]) -> int:
        async with self._lock:
            removed = 0
            for item_id in item_ids:
                if self._items.pop(item_id, None) is not None:
                    removed += 1
                self._leases.release(item_id)
            return removed

    async def count_by_status(self, max_retries: int) -> Dict[str, int]:
        stats = {status.value: 0 for status in OutboxStatus}
        for item in self._items.values():
            stats[item.status(max_retries).value] += 1
        return stats
