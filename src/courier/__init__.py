"""
Courier: reliable messaging core.

- Outbox: at-least-once publication of recorded notifications
- Inbox: at-most-once handler effects for redelivered messages
- Saga: ordered steps with reverse-order compensation
- Scheduler: deferred and cron-recurring command dispatch
"""

from .config import MessagingSettings
from .dispatch import Dispatcher, HandlerRegistry
from .errors import MessagingError
from .retry import RetryPolicy

__version__ = "0.1.0"

__all__ = [
    "MessagingSettings",
    "Dispatcher",
    "HandlerRegistry",
    "MessagingError",
    "RetryPolicy",
]
