"""
Inbox Sweeper

Deletes inbox records past their ``expires_at``. Run it from whatever
periodic job the host application already has.
"""

import logging
from typing import Optional

from ..clock import Clock, utcnow
from .store import InboxStore

logger = logging.getLogger(__name__)


class InboxSweeper:
    def __init__(self, store: InboxStore, batch_size: int = 100, clock: Optional[Clock] = None):
        self._store = store
        self.batch_size = batch_size
        self._clock = clock or utcnow

    async def sweep(self) -> int:
        """Remove all expired records. Returns the number removed."""
        removed = 0
        while True:
            expired = await self._store.get_expired(self.batch_size, self._clock())
            if not expired:
                break
            count = await self._store.remove(item.message_id for item in expired)
            removed += count
            if count == 0 or len(expired) < self.batch_size:
                break

        if removed:
            logger.info(f"Inbox sweep removed {removed} expired message(s)")
        return removed
