"""
Messaging Exceptions

Every error raised by the messaging core derives from ``MessagingError``
and carries a stable, machine-readable ``code``.
"""

from typing import Optional

# Maximum length of error text persisted in ``last_error`` columns
MAX_ERROR_LENGTH = 500


class MessagingError(Exception):
    """Base exception for the messaging core."""

    code: str = "messaging.error"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)


class StoreUnavailableError(MessagingError):
    """The durable store could not be reached; the current tick is aborted."""

    code = "store.unavailable"


class UnknownMessageTypeError(MessagingError):
    """No handler is registered for a type tag."""

    code = "dispatch.unknown_type"

    def __init__(self, type_tag: str):
        self.type_tag = type_tag
        super().__init__(f"No handler registered for type '{type_tag}'")


class PayloadDecodeError(MessagingError):
    """A payload could not be decoded for its type tag."""

    code = "dispatch.deserialization_failed"

    def __init__(self, type_tag: str, reason: str):
        self.type_tag = type_tag
        super().__init__(f"Failed to decode payload for type '{type_tag}': {reason}")


class InboxRetriesExhaustedError(MessagingError):
    """An inbound message failed too many times to be attempted again."""

    code = "inbox.max_retries_exceeded"

    def __init__(self, message_id: str, retry_count: int):
        self.message_id = message_id
        self.retry_count = retry_count
        super().__init__(
            f"Inbox message '{message_id}' exceeded max retries ({retry_count})"
        )


class SagaNotFoundError(MessagingError):
    """No saga exists with the given id."""

    code = "saga.not_found"

    def __init__(self, saga_id):
        self.saga_id = saga_id
        super().__init__(f"Saga with ID '{saga_id}' not found")


class InvalidCronExpressionError(MessagingError):
    """A recurrence rule could not be parsed."""

    code = "scheduling.invalid_cron_expression"

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        super().__init__(f"Invalid cron expression '{expression}': {reason}")


class RecurringDisabledError(MessagingError):
    """Recurring messages were requested but are disabled by configuration."""

    code = "scheduling.recurring_disabled"

    def __init__(self):
        super().__init__("Recurring messages are disabled")


def format_error(error: BaseException) -> str:
    """Render an exception for persistence in a ``last_error`` field."""
    name = error.__class__.__name__
    text = str(error)
    return (f"{name}: {text}" if text else name)[:MAX_ERROR_LENGTH]
