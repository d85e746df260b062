"""
Polling Loop

Background task shared by the outbox processor and the scheduler: one
task per processor instance, ticking on a fixed interval and operating
only on the items its store claim returned.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

from .observability import record_histogram

logger = logging.getLogger(__name__)


class PollingProcessor(ABC):
    """
    Owns a single ``asyncio.Task`` that calls ``process_batch`` forever.

    A tick that claimed a full batch is followed immediately by another so
    that a backlog drains without waiting; otherwise the loop sleeps for
    ``poll_interval``. Errors abort only the current tick.
    """

    name = "processor"

    def __init__(self, poll_interval: float, batch_size: int):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @abstractmethod
    async def process_batch(self) -> int:
        """Run one tick. Returns the number of items handled."""

    async def start(self):
        """Start the background loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.info("%s started", self.name)

    async def stop(self):
        """Stop the background loop, cancelling any in-flight tick."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("%s stopped", self.name)

    async def _run(self):
        while self._running:
            started = time.perf_counter()
            try:
                processed = await self.process_batch()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"{self.name} tick failed: {e}", exc_info=True)
                processed = 0
            record_histogram(
                "batch_duration_seconds",
                time.perf_counter() - started,
                {"processor": self.name}
            )

            delay = self.poll_interval if processed < self.batch_size else 0
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                break
