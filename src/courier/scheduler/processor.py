"""
Scheduler Processor

Background worker that claims due scheduled items and dispatches them.
One-shot items finish after a successful run; recurring items move on
to their next occurrence. Failures follow the same backoff and
dead-letter rules as the outbox, except that a recurring item that
exhausts its retries skips to its next occurrence instead of stopping.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from ..clock import Clock, utcnow
from ..config import SchedulerOptions
from ..dispatch import Dispatcher
from ..errors import InvalidCronExpressionError, StoreUnavailableError, format_error
from ..observability import create_span, record_counter
from ..polling import PollingProcessor
from ..retry import RetryPolicy
from .cron import CronSchedule
from .models import ScheduledItem
from .store import ScheduledStore

logger = logging.getLogger(__name__)


class SchedulerProcessor(PollingProcessor):
    name = "SchedulerProcessor"

    def __init__(
        self,
        store: ScheduledStore,
        dispatcher: Dispatcher,
        poll_interval: float = 5.0,
        batch_size: int = 100,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Optional[Clock] = None
    ):
        super().__init__(poll_interval, batch_size)
        self._store = store
        self._dispatcher = dispatcher
        self.retry_policy = retry_policy or SchedulerOptions().retry_policy()
        self._clock = clock or utcnow

    async def process_batch(self) -> int:
        """Claim and dispatch due items. Returns the number of items claimed."""
        try:
            items = await self._store.claim_due(
                self.batch_size, self.retry_policy.max_retries, self._clock()
            )
        except Exception as e:
            raise StoreUnavailableError(f"Failed to claim scheduled items: {e}") from e

        for item in items:
            try:
                await self._execute_item(item)
            except Exception as e:
                logger.error(
                    f"Failed to record outcome for scheduled item {item.id}: {e}",
                    exc_info=True
                )

        return len(items)

    async def _execute_item(self, item: ScheduledItem):
        try:
            with create_span("scheduler.dispatch", {
                "messaging.message.id": str(item.id),
                "messaging.type": item.request_type,
                "messaging.retry_count": item.retry_count,
                "scheduler.recurring": item.is_recurring,
            }):
                await self._dispatcher.dispatch(item.request_type, item.payload)
        except Exception as e:
            await self._record_failure(item, e)
            return

        now = self._clock()
        record_counter("scheduler_executed_total", 1, {"type": item.request_type})

        if not item.is_recurring:
            await asyncio.shield(self._store.mark_processed(item.id, now))
            logger.debug(f"Scheduled item {item.id} executed")
            return

        next_run = self._next_occurrence(item, now)
        if next_run is None:
            await asyncio.shield(self._store.mark_processed(item.id, now))
            logger.info(f"Recurring item {item.id} has no further occurrences, marked processed")
            return

        await asyncio.shield(self._store.reschedule(item.id, next_run, last_executed_at=now))
        logger.debug(f"Recurring item {item.id} rescheduled for {next_run.isoformat()}")

    async def _record_failure(self, item: ScheduledItem, error: Exception):
        now = self._clock()
        attempts = item.retry_count + 1
        message = format_error(error)
        next_retry_at = self.retry_policy.next_retry_at(attempts, now)
        record_counter("scheduler_failed_total", 1, {"type": item.request_type})

        if next_retry_at is not None:
            await asyncio.shield(self._store.mark_failed(item.id, message, next_retry_at))
            logger.warning(
                f"Scheduled item {item.id} failed (attempt {attempts}), retry at {next_retry_at}: {error}"
            )
            return

        if item.is_recurring:
            next_run = self._next_occurrence(item, now)
            if next_run is not None:
                # Drop this occurrence; the schedule itself keeps going
                await asyncio.shield(
                    self._store.reschedule(item.id, next_run, last_error=message)
                )
                logger.error(
                    f"Recurring item {item.id} occurrence abandoned after {attempts} attempts, "
                    f"next run {next_run.isoformat()}: {error}"
                )
                return

        await asyncio.shield(self._store.mark_failed(item.id, message, None))
        record_counter("dlq_entries_total", 1, {"source": "scheduler"})
        logger.error(
            f"Scheduled item {item.id} moved to dead letter after {attempts} attempts: {error}"
        )

    def _next_occurrence(self, item: ScheduledItem, now: datetime) -> Optional[datetime]:
        try:
            return CronSchedule(item.recurrence_rule or "").next_after(now)
        except InvalidCronExpressionError as e:
            logger.error(f"Recurring item {item.id} has an unusable rule: {e}")
            return None
