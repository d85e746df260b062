"""
Shared Test Fixtures
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

import pytest


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta = timedelta(0), **kwargs) -> datetime:
        self.now = self.now + delta + timedelta(**kwargs)
        return self.now


class RecordingDispatcher:
    """Dispatcher double that records calls and fails on demand."""

    def __init__(self):
        self.published: List[Tuple[str, bytes]] = []
        self.dispatched: List[Tuple[str, bytes]] = []
        self.fail_types: Set[str] = set()
        self.fail_payloads: Set[bytes] = set()
        self.responses: Dict[str, bytes] = {}

    def _maybe_fail(self, type_tag: str, payload: bytes):
        if type_tag in self.fail_types or payload in self.fail_payloads:
            raise RuntimeError(f"dispatch failed for {type_tag}")

    async def publish(self, type_tag: str, payload: bytes) -> None:
        self._maybe_fail(type_tag, payload)
        self.published.append((type_tag, payload))

    async def dispatch(self, type_tag: str, payload: bytes) -> bytes:
        self._maybe_fail(type_tag, payload)
        self.dispatched.append((type_tag, payload))
        return self.responses.get(type_tag, b"")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()
