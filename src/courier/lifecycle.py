"""
Messaging Lifecycle Management

Starts the background loops (outbox processor, scheduler processor) with
the host application and stops them on shutdown.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from .clock import Clock
from .config import MessagingSettings
from .dispatch import Dispatcher
from .outbox import OutboxProcessor, OutboxStore
from .scheduler import ScheduledStore, SchedulerProcessor

logger = logging.getLogger(__name__)


@dataclass
class MessagingBackend:
    """The external collaborators the background loops run against."""
    dispatcher: Dispatcher
    outbox_store: Optional[OutboxStore] = None
    scheduled_store: Optional[ScheduledStore] = None


@dataclass
class MessagingProcessors:
    """Handles to the running loops; None when a loop is disabled."""
    outbox: Optional[OutboxProcessor] = None
    scheduler: Optional[SchedulerProcessor] = None

    @property
    def running(self) -> bool:
        return any(p is not None and p.is_running for p in (self.outbox, self.scheduler))

    async def start(self):
        for processor in (self.outbox, self.scheduler):
            if processor is not None:
                await processor.start()

    async def stop(self):
        for processor in (self.scheduler, self.outbox):
            if processor is not None:
                await processor.stop()


def build_processors(
    settings: MessagingSettings,
    backend: MessagingBackend,
    clock: Optional[Clock] = None
) -> MessagingProcessors:
    """Create processors for every enabled loop that has a store."""
    processors = MessagingProcessors()

    if settings.outbox.enabled and backend.outbox_store is not None:
        processors.outbox = OutboxProcessor(
            backend.outbox_store,
            backend.dispatcher,
            poll_interval=settings.outbox.poll_interval,
            batch_size=settings.outbox.batch_size,
            retry_policy=settings.outbox.retry_policy(),
            clock=clock,
        )
    else:
        logger.info("Outbox processor disabled")

    if settings.scheduler.enabled and backend.scheduled_store is not None:
        processors.scheduler = SchedulerProcessor(
            backend.scheduled_store,
            backend.dispatcher,
            poll_interval=settings.scheduler.poll_interval,
            batch_size=settings.scheduler.batch_size,
            retry_policy=settings.scheduler.retry_policy(),
            clock=clock,
        )
    else:
        logger.info("Scheduler processor disabled")

    return processors


@asynccontextmanager
async def messaging_lifespan(
    backend: MessagingBackend,
    settings: Optional[MessagingSettings] = None,
    clock: Optional[Clock] = None
):
    """
    Run the background loops for the duration of the block.

    Usage in an ASGI app:
        @asynccontextmanager
        async def lifespan(app):
            async with messaging_lifespan(backend) as processors:
                yield
    """
    processors = build_processors(settings or MessagingSettings.from_env(), backend, clock)
    await processors.start()
    try:
        yield processors
    finally:
        logger.info("Stopping messaging processors...")
        await processors.stop()
