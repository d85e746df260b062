"""
Outbox Processor

Background worker that claims pending outbox items and publishes them
through the Dispatcher, retrying failures with exponential backoff until
the retry budget is spent.
"""

import asyncio
import logging
from typing import Dict, Optional

from ..clock import Clock, utcnow
from ..config import OutboxOptions
from ..dispatch import Dispatcher
from ..errors import StoreUnavailableError, format_error
from ..observability import create_span, record_counter
from ..polling import PollingProcessor
from ..retry import RetryPolicy
from .models import OutboxItem
from .store import OutboxStore

logger = logging.getLogger(__name__)


class OutboxProcessor(PollingProcessor):
    """
    Publishes outbox items at least once.

    Features:
    - Claims a bounded, oldest-first batch per tick
    - Publishes each item via the Dispatcher
    - Isolates failures per item; one bad item never aborts the batch
    - Dead-letters items once ``retry_policy.max_retries`` is reached
    """

    name = "OutboxProcessor"

    def __init__(
        self,
        store: OutboxStore,
        dispatcher: Dispatcher,
        poll_interval: float = 1.0,
        batch_size: int = 100,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Optional[Clock] = None
    ):
        super().__init__(poll_interval, batch_size)
        self._store = store
        self._dispatcher = dispatcher
        self.retry_policy = retry_policy or OutboxOptions().retry_policy()
        self._clock = clock or utcnow

    @property
    def max_retries(self) -> int:
        return self.retry_policy.max_retries

    async def process_batch(self) -> int:
        """Claim and publish one batch. Returns the number of items claimed."""
        try:
            items = await self._store.claim_pending(
                self.batch_size, self.max_retries, self._clock()
            )
        except Exception as e:
            raise StoreUnavailableError(f"Failed to claim outbox items: {e}") from e

        for item in items:
            try:
                await self._deliver_item(item)
            except Exception as e:
                # The claim lease lapses and the item is picked up again
                logger.error(
                    f"Failed to record outcome for outbox item {item.id}: {e}",
                    exc_info=True
                )

        return len(items)

    async def _deliver_item(self, item: OutboxItem):
        try:
            with create_span("outbox.publish", {
                "messaging.message.id": str(item.id),
                "messaging.type": item.notification_type,
                "messaging.retry_count": item.retry_count,
                "correlation_id": item.correlation_id,
            }):
                await self._dispatcher.publish(item.notification_type, item.payload)
        except Exception as e:
            await self._record_failure(item, e)
            return

        await asyncio.shield(self._store.mark_processed(item.id, self._clock()))
        record_counter("outbox_published_total", 1, {"type": item.notification_type})
        logger.debug(f"Published outbox item {item.id} ({item.notification_type})")

    async def _record_failure(self, item: OutboxItem, error: Exception):
        attempts = item.retry_count + 1
        next_retry_at = self.retry_policy.next_retry_at(attempts, self._clock())

        await asyncio.shield(
            self._store.mark_failed(item.id, format_error(error), next_retry_at)
        )
        record_counter("outbox_failed_total", 1, {"type": item.notification_type})

        if next_retry_at is None:
            record_counter("dlq_entries_total", 1, {"source": "outbox"})
            logger.error(
                f"Outbox item {item.id} moved to dead letter after {attempts} attempts: {error}"
            )
        else:
            logger.warning(
                f"Outbox item {item.id} failed (attempt {attempts}), retry at {next_retry_at}: {error}"
            )

    async def get_stats(self) -> Dict[str, int]:
        """Item counts by status."""
        return await self._store.count_by_status(self.max_retries)
