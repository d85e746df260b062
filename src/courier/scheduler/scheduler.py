"""
Scheduler

Application-facing API for deferred and recurring commands. Items are
only recorded here; ``SchedulerProcessor`` dispatches them when due.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from ..clock import Clock, utcnow
from ..dispatch import json_encode
from ..errors import InvalidCronExpressionError, RecurringDisabledError
from .cron import CronSchedule
from .models import ScheduledItem
from .store import ScheduledStore

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Records scheduled commands.

    Usage:
        scheduler = Scheduler(store)
        await scheduler.schedule_after("reports.build", {"day": "mon"}, timedelta(hours=1))
        await scheduler.schedule_recurring("cache.warm", {}, "*/15 * * * *")
    """

    def __init__(
        self,
        store: ScheduledStore,
        enable_recurring: bool = True,
        clock: Optional[Clock] = None
    ):
        self._store = store
        self.enable_recurring = enable_recurring
        self._clock = clock or utcnow

    async def schedule(self, request_type: str, payload: Any, at: datetime) -> ScheduledItem:
        """
        Schedule a one-shot command.

        Raises:
            ValueError: ``at`` is not in the future
        """
        _require_type(request_type)
        now = self._clock()
        if at.tzinfo is None:
            raise ValueError("scheduled time must be timezone-aware")
        if at <= now:
            raise ValueError(f"scheduled time {at.isoformat()} is not in the future")

        item = ScheduledItem(
            request_type=request_type,
            payload=json_encode(payload),
            created_at=now,
            scheduled_at=at,
        )
        await self._store.add(item)
        logger.info(f"Scheduled {request_type} ({item.id}) for {at.isoformat()}")
        return item

    async def schedule_after(self, request_type: str, payload: Any, delay: timedelta) -> ScheduledItem:
        if delay <= timedelta(0):
            raise ValueError("delay must be positive")
        return await self.schedule(request_type, payload, self._clock() + delay)

    async def schedule_recurring(self, request_type: str, payload: Any, cron: str) -> ScheduledItem:
        """
        Schedule a command on a cron rule, starting at the next occurrence.

        Raises:
            RecurringDisabledError: recurring messages are disabled
            InvalidCronExpressionError: ``cron`` cannot be parsed or never fires
        """
        _require_type(request_type)
        if not self.enable_recurring:
            raise RecurringDisabledError()

        schedule = CronSchedule(cron)
        now = self._clock()
        first = schedule.next_after(now)
        if first is None:
            raise InvalidCronExpressionError(schedule.expression, "rule has no future occurrence")

        item = ScheduledItem(
            request_type=request_type,
            payload=json_encode(payload),
            created_at=now,
            scheduled_at=first,
            is_recurring=True,
            recurrence_rule=schedule.expression,
        )
        await self._store.add(item)
        logger.info(
            f"Recurring {request_type} ({item.id}) scheduled with cron '{schedule.expression}', "
            f"next: {first.isoformat()}"
        )
        return item

    async def cancel(self, item_id: UUID) -> bool:
        cancelled = await self._store.cancel(item_id, self._clock())
        if cancelled:
            logger.info(f"Scheduled item {item_id} cancelled")
        return cancelled

    async def get(self, item_id: UUID) -> Optional[ScheduledItem]:
        return await self._store.get(item_id)

    async def pending_count(self) -> int:
        return await self._store.count_pending()


def _require_type(request_type: str):
    if not (request_type or "").strip():
        raise ValueError("request_type is required")
