"""
Messaging Configuration

Options for each mechanism, loadable from environment variables.

Environment Variables:
    OUTBOX_ENABLED: Run the outbox processor loop (default: true)
    OUTBOX_POLL_INTERVAL: Polling interval in seconds (default: 1.0)
    OUTBOX_BATCH_SIZE: Items claimed per tick (default: 100)
    OUTBOX_MAX_RETRIES: Attempts before dead-lettering (default: 5)
    OUTBOX_BASE_RETRY_DELAY: First retry delay in seconds (default: 5)
    OUTBOX_MAX_RETRY_DELAY: Optional cap on the retry delay in seconds
    INBOX_RETENTION_HOURS: How long processed messages are kept (default: 168)
    INBOX_MAX_RETRIES: Attempts per message id (default: 5)
    INBOX_BASE_RETRY_DELAY: First retry delay in seconds (default: 5)
    SAGA_STUCK_THRESHOLD: Seconds without progress before a saga is stuck (default: 300)
    SCHEDULER_ENABLED: Run the scheduler loop (default: true)
    SCHEDULER_RECURRING_ENABLED: Allow cron-based messages (default: true)
    SCHEDULER_POLL_INTERVAL: Polling interval in seconds (default: 5.0)
    SCHEDULER_BATCH_SIZE: Items claimed per tick (default: 100)
    SCHEDULER_MAX_RETRIES: Attempts before dead-lettering (default: 3)
    SCHEDULER_BASE_RETRY_DELAY: First retry delay in seconds (default: 10)
    LOG_LEVEL: Logging level (default: INFO)
    LOG_STRUCTURED: Emit JSON logs (default: true)
    OTEL_EXPORTER_OTLP_ENDPOINT: OTLP endpoint for traces and metrics
"""

import os
from datetime import timedelta
from typing import Optional

from pydantic import BaseModel, Field

from .retry import RetryPolicy


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class OutboxOptions(BaseModel):
    """Outbox processor options."""

    enabled: bool = True
    poll_interval: float = Field(default=1.0, gt=0)
    batch_size: int = Field(default=100, gt=0)
    max_retries: int = Field(default=5, ge=1)
    base_retry_delay: float = Field(default=5.0, gt=0)
    max_retry_delay: Optional[float] = None

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy.from_seconds(
            self.base_retry_delay, self.max_retries, self.max_retry_delay
        )


class InboxOptions(BaseModel):
    """Inbox gate options."""

    retention_period: timedelta = timedelta(days=7)
    max_retries: int = Field(default=5, ge=1)
    base_retry_delay: float = Field(default=5.0, gt=0)
    sweep_batch_size: int = Field(default=100, gt=0)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy.from_seconds(self.base_retry_delay, self.max_retries)


class SagaOptions(BaseModel):
    """Saga orchestrator options."""

    stuck_threshold: timedelta = timedelta(minutes=5)
    stuck_batch_size: int = Field(default=100, gt=0)


class SchedulerOptions(BaseModel):
    """Scheduler options."""

    enabled: bool = True
    enable_recurring: bool = True
    poll_interval: float = Field(default=5.0, gt=0)
    batch_size: int = Field(default=100, gt=0)
    max_retries: int = Field(default=3, ge=1)
    base_retry_delay: float = Field(default=10.0, gt=0)
    max_retry_delay: Optional[float] = None

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy.from_seconds(
            self.base_retry_delay, self.max_retries, self.max_retry_delay
        )


class MessagingSettings(BaseModel):
    """All messaging options plus logging/telemetry settings."""

    outbox: OutboxOptions = Field(default_factory=OutboxOptions)
    inbox: InboxOptions = Field(default_factory=InboxOptions)
    saga: SagaOptions = Field(default_factory=SagaOptions)
    scheduler: SchedulerOptions = Field(default_factory=SchedulerOptions)

    log_level: str = "INFO"
    log_structured: bool = True
    otlp_endpoint: Optional[str] = None
    service_name: str = "courier"

    @classmethod
    def from_env(cls) -> "MessagingSettings":
        """Build settings from environment variables."""
        return cls(
            outbox=OutboxOptions(
                enabled=_env_bool("OUTBOX_ENABLED", True),
                poll_interval=_env_float("OUTBOX_POLL_INTERVAL", 1.0),
                batch_size=_env_int("OUTBOX_BATCH_SIZE", 100),
                max_retries=_env_int("OUTBOX_MAX_RETRIES", 5),
                base_retry_delay=_env_float("OUTBOX_BASE_RETRY_DELAY", 5.0),
                max_retry_delay=_env_float("OUTBOX_MAX_RETRY_DELAY", None),
            ),
            inbox=InboxOptions(
                retention_period=timedelta(hours=_env_float("INBOX_RETENTION_HOURS", 168.0)),
                max_retries=_env_int("INBOX_MAX_RETRIES", 5),
                base_retry_delay=_env_float("INBOX_BASE_RETRY_DELAY", 5.0),
            ),
            saga=SagaOptions(
                stuck_threshold=timedelta(seconds=_env_float("SAGA_STUCK_THRESHOLD", 300.0)),
            ),
            scheduler=SchedulerOptions(
                enabled=_env_bool("SCHEDULER_ENABLED", True),
                enable_recurring=_env_bool("SCHEDULER_RECURRING_ENABLED", True),
                poll_interval=_env_float("SCHEDULER_POLL_INTERVAL", 5.0),
                batch_size=_env_int("SCHEDULER_BATCH_SIZE", 100),
                max_retries=_env_int("SCHEDULER_MAX_RETRIES", 3),
                base_retry_delay=_env_float("SCHEDULER_BASE_RETRY_DELAY", 10.0),
                max_retry_delay=_env_float("SCHEDULER_MAX_RETRY_DELAY", None),
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_structured=_env_bool("LOG_STRUCTURED", True),
            otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
            service_name=os.getenv("OTEL_SERVICE_NAME", "courier"),
        )
