"""
Scheduled Messages

Deferred (one-shot) and recurring (cron) command dispatch.

Usage:
    from courier.scheduler import InMemoryScheduledStore, Scheduler, SchedulerProcessor

    store = InMemoryScheduledStore()
    await Scheduler(store).schedule_recurring("cache.warm", {}, "*/15 * * * *")
    await SchedulerProcessor(store, dispatcher).start()
"""

from .cron import CronSchedule
from .models import ScheduledItem
from .processor import SchedulerProcessor
from .scheduler import Scheduler
from .store import InMemoryScheduledStore, ScheduledStore

__all__ = [
    "ScheduledItem",
    "ScheduledStore",
    "InMemoryScheduledStore",
    "CronSchedule",
    "Scheduler",
    "SchedulerProcessor",
]
