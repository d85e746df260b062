"""
Messaging Runner

Runs the background loops as a standalone service until SIGTERM/SIGINT.

Usage:
    python -m courier.runner myapp.messaging:build_backend

``build_backend`` is a zero-argument callable (sync or async) returning a
``MessagingBackend``. Configuration comes from the environment; see
``courier.config``.
"""

import argparse
import asyncio
import importlib
import inspect
import logging
import signal
import sys
from typing import Optional

from .config import MessagingSettings
from .lifecycle import MessagingBackend, MessagingProcessors, messaging_lifespan
from .observability import configure_logging, init_metrics, init_tracing

logger = logging.getLogger(__name__)


class MessagingRunner:
    """
    Manages the processor lifecycle with graceful shutdown.
    """

    def __init__(self, backend: MessagingBackend, settings: MessagingSettings):
        self.backend = backend
        self.settings = settings
        self.processors: Optional[MessagingProcessors] = None
        self._shutdown_event = asyncio.Event()
        self._shutdown_requested = False

    def _setup_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown_signal, sig)

    def _handle_shutdown_signal(self, sig: signal.Signals):
        if self._shutdown_requested:
            logger.warning(f"Received {sig.name} again, forcing exit")
            sys.exit(1)

        logger.info(f"Received {sig.name}, initiating graceful shutdown")
        self.request_shutdown()

    def request_shutdown(self):
        self._shutdown_requested = True
        self._shutdown_event.set()

    async def run(self, install_signal_handlers: bool = True):
        """Run the processors until shutdown is requested."""
        logger.info("Starting messaging runner")
        logger.info(f"  Outbox: enabled={self.settings.outbox.enabled} "
                    f"poll={self.settings.outbox.poll_interval}s "
                    f"batch={self.settings.outbox.batch_size} "
                    f"max_retries={self.settings.outbox.max_retries}")
        logger.info(f"  Scheduler: enabled={self.settings.scheduler.enabled} "
                    f"poll={self.settings.scheduler.poll_interval}s "
                    f"batch={self.settings.scheduler.batch_size}")

        if install_signal_handlers:
            self._setup_signal_handlers()

        async with messaging_lifespan(self.backend, self.settings) as processors:
            self.processors = processors
            logger.info("Messaging processors are running")
            await self._shutdown_event.wait()

        logger.info("Messaging processors stopped")

    def health_check(self) -> dict:
        running = self.processors.running if self.processors else False
        return {
            "status": "healthy" if running else "unhealthy",
            "outbox": bool(self.processors and self.processors.outbox and self.processors.outbox.is_running),
            "scheduler": bool(
                self.processors and self.processors.scheduler and self.processors.scheduler.is_running
            ),
            "shutdown_requested": self._shutdown_requested,
        }


async def load_backend(target: str) -> MessagingBackend:
    """Import ``module:callable`` and call it to obtain the backend."""
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ValueError(f"backend factory must look like 'module:callable', got '{target}'")

    factory = getattr(importlib.import_module(module_name), attr)
    backend = factory()
    if inspect.isawaitable(backend):
        backend = await backend
    if not isinstance(backend, MessagingBackend):
        raise TypeError(f"{target} returned {type(backend).__name__}, expected MessagingBackend")
    return backend


async def main(argv=None):
    parser = argparse.ArgumentParser(description="Run the messaging background processors")
    parser.add_argument("backend", help="backend factory as 'module:callable'")
    args = parser.parse_args(argv)

    settings = MessagingSettings.from_env()
    configure_logging(settings.log_level, settings.log_structured)
    if settings.otlp_endpoint:
        init_tracing(settings.service_name, otlp_endpoint=settings.otlp_endpoint)
        init_metrics(settings.service_name, otlp_endpoint=settings.otlp_endpoint)

    backend = await load_backend(args.backend)
    await MessagingRunner(backend, settings).run()


if __name__ == "__main__":
    asyncio.run(main())
