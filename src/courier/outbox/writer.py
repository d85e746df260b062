"""
Outbox Writer

Records notifications in the outbox as part of the caller's unit of
work. Nothing is published here; the processor delivers them later.
"""

import logging
from typing import Any, List, Optional, Sequence, Tuple

from ..clock import Clock, utcnow
from ..dispatch import json_encode
from .models import OutboxItem
from .store import OutboxStore

logger = logging.getLogger(__name__)


class OutboxWriter:
    """
    Writes notifications to the outbox for reliable delivery.

    Usage:
        writer = OutboxWriter(store)
        await writer.write("order.created", {"order_id": order_id})

    ``payload`` may be raw bytes or any JSON-serializable value.
    """

    def __init__(self, store: OutboxStore, clock: Optional[Clock] = None):
        self._store = store
        self._clock = clock or utcnow

    async def write(
        self,
        notification_type: str,
        payload: Any,
        correlation_id: Optional[str] = None
    ) -> OutboxItem:
        """
        Write a notification to the outbox.

        Args:
            notification_type: Type tag resolved by the Dispatcher
            payload: Notification body (bytes, or a JSON-serializable value)
            correlation_id: Optional id used to correlate logs and traces

        Returns:
            The created OutboxItem
        """
        if not (notification_type or "").strip():
            raise ValueError("notification_type is required")

        item = OutboxItem(
            notification_type=notification_type,
            payload=json_encode(payload),
            correlation_id=correlation_id,
            created_at=self._clock(),
        )
        await self._store.add(item)

        logger.debug(
            "Wrote notification to outbox: id=%s type=%s correlation=%s",
            item.id, item.notification_type, item.correlation_id
        )
        return item

    async def write_batch(
        self,
        entries: Sequence[Tuple[str, Any]]  # (notification_type, payload) pairs
    ) -> List[OutboxItem]:
        return [await self.write(notification_type, payload) for notification_type, payload in entries]
