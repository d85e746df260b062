"""
Time source shared by every mechanism.

Components take a ``clock`` callable instead of calling ``datetime.now``
directly so that tests can drive time forward deterministically.
"""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)
