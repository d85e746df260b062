"""
Inbox Pattern Implementation

Consumer-side deduplication: a message id that was processed once is
answered from the cached response instead of running its handler again.

Usage:
    from courier.inbox import InboxGate, InMemoryInboxStore

    gate = InboxGate(InMemoryInboxStore())
    response = await gate.handle(message_id, "orders.create", handler)
"""

from .guard import InboxGate, InboxGuard
from .models import InboxItem
from .store import InboxStore, InMemoryInboxStore
from .sweeper import InboxSweeper

__all__ = [
    "InboxItem",
    "InboxStore",
    "InMemoryInboxStore",
    "InboxGate",
    "InboxGuard",
    "InboxSweeper",
]
