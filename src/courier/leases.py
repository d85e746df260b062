"""
Claim leases for the in-memory stores.

A claimed item stays invisible to other claimants until it is marked
processed/failed or its lease lapses (the claimant crashed or was
cancelled mid-dispatch), after which it may be claimed again.
"""

from datetime import datetime, timedelta
from typing import Dict, Hashable


class ClaimLeases:
    """Per-item claim expiry times."""

    def __init__(self, timeout: timedelta = timedelta(minutes=5)):
        if timeout <= timedelta(0):
            raise ValueError("claim timeout must be positive")
        self.timeout = timeout
        self._expires: Dict[Hashable, datetime] = {}

    def is_claimed(self, key: Hashable, now: datetime) -> bool:
        expires = self._expires.get(key)
        return expires is not None and expires > now

    def claim(self, key: Hashable, now: datetime) -> None:
        self._expires[key] = now + self.timeout

    def release(self, key: Hashable) -> None:
        self._expires.pop(key, None)
