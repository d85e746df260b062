"""
Inbox Store

Storage contract for inbox records plus an in-memory implementation.
``message_id`` is the primary key; SQL implementations back ``add`` with
``INSERT ... ON CONFLICT DO NOTHING``.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .models import InboxItem


class InboxStore(ABC):
    """Storage contract consumed by the inbox gate and sweeper."""

    @abstractmethod
    async def add(self, item: InboxItem) -> bool:
        """Insert if absent. Returns False when ``message_id`` already exists."""

    @abstractmethod
    async def get(self, message_id: str) -> Optional[InboxItem]:
        """Look up a message by id."""

    @abstractmethod
    async def mark_processed(
        self,
        message_id: str,
        response: bytes,
        processed_at: datetime
    ) -> None:
        """Set ``processed_at`` and ``cached_response``; a processed record never changes."""

    @abstractmethod
    async def mark_failed(
        self,
        message_id: str,
        error: str,
        next_retry_at: Optional[datetime]
    ) -> None:
        """Record ``error``, increment ``retry_count`` and set ``next_retry_at``."""

    @abstractmethod
    async def get_expired(self, batch_size: int, now: datetime) -> List[InboxItem]:
        """Records whose ``expires_at`` has passed."""

    @abstractmethod
    async def remove(self, message_ids: Iterable[str]) -> int:
        """Delete records. Returns the number removed."""


class InMemoryInboxStore(InboxStore):
    """Inbox store held in process memory."""

    def __init__(self):
        self._items: Dict[str, InboxItem] = {}
        self._lock = asyncio.Lock()

    async def add(self, item: InboxItem) -> bool:
        async with self._lock:
            if item.message_id in self._items:
                return False
            self._items[item.message_id] = item.model_copy(deep=True)
            return True

    async def get(self, message_id: str) -> Optional[InboxItem]:
        item = self._items.get(message_id)
        return item.model_copy(deep=True) if item is not None else None

    async def mark_processed(
        self,
        message_id: str,
        response: bytes,
        processed_at: datetime
    ) -> None:
        async with self._lock:
            item = self._items.get(message_id)
            if item is None or item.processed_at is not None:
                return
            item.processed_at = processed_at
            item.cached_response = response
            item.last_error = None
            item.next_retry_at = None

    async def mark_failed(
        self,
        message_id: str,
        error: str,
        next_retry_at: Optional[datetime]
    ) -> None:
        async with self._lock:
            item = self._items.get(message_id)
            if item is None or item.processed_at is not None:
                return
            item.last_error = error
            item.retry_count += 1
            item.next_retry_at = next_retry_at

    async def get_expired(self, batch_size: int, now: datetime) -> List[InboxItem]:
        expired = sorted(
            (item for item in self._items.values() if item.expires_at <= now),
            key=lambda item: item.expires_at
        )[:batch_size]
        return [item.model_copy(deep=True) for item in expired]

    async def remove(self, message_ids: Iterable[str]) -> int:
        async with self._lock:
            return sum(1 for message_id in message_ids if self._items.pop(message_id, None) is not None)
