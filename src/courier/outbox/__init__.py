"""
Outbox Pattern Implementation

Guarantees that every recorded notification is published at least once.

Usage:
    from courier.outbox import InMemoryOutboxStore, OutboxProcessor, OutboxWriter

    store = InMemoryOutboxStore()
    await OutboxWriter(store).write("order.created", {"order_id": order_id})

    processor = OutboxProcessor(store, dispatcher)
    await processor.start()
"""

from .dlq import DLQAction, DLQEntry, DLQManager
from .models import OutboxItem, OutboxStatus
from .processor import OutboxProcessor
from .store import InMemoryOutboxStore, OutboxStore
from .writer import OutboxWriter

__all__ = [
    "OutboxItem",
    "OutboxStatus",
    "OutboxStore",
    "InMemoryOutboxStore",
    "OutboxWriter",
    "OutboxProcessor",
    "DLQManager",
    "DLQEntry",
    "DLQAction",
]
