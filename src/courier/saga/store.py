"""
Saga Store

Storage contract for saga instances plus an in-memory implementation.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from .models import SagaInstance


class SagaStore(ABC):
    """Storage contract consumed by the saga orchestrator."""

    @abstractmethod
    async def add(self, instance: SagaInstance) -> None:
        """Persist a new saga instance."""

    @abstractmethod
    async def get(self, saga_id: UUID) -> Optional[SagaInstance]:
        """Load a saga instance."""

    @abstractmethod
    async def update(self, instance: SagaInstance) -> None:
        """Persist a checkpoint (status, step, state, timestamps, errors)."""

    @abstractmethod
    async def get_stuck(self, updated_before: datetime, batch_size: int) -> List[SagaInstance]:
        """Non-terminal sagas whose ``last_updated_at`` is older than ``updated_before``."""


class InMemorySagaStore(SagaStore):
    """Saga store held in process memory."""

    def __init__(self):
        self._sagas: Dict[UUID, SagaInstance] = {}
        self._lock = asyncio.Lock()

    async def add(self, instance: SagaInstance) -> None:
        async with self._lock:
            if instance.saga_id in self._sagas:
                raise ValueError(f"duplicate_saga:{instance.saga_id}")
            self._sagas[instance.saga_id] = instance.model_copy(deep=True)

    async def get(self, saga_id: UUID) -> Optional[SagaInstance]:
        instance = self._sagas.get(saga_id)
        return instance.model_copy(deep=True) if instance is not None else None

    async def update(self, instance: SagaInstance) -> None:
        async with self._lock:
            if instance.saga_id not in self._sagas:
                raise KeyError(f"saga_not_found:{instance.saga_id}")
            self._sagas[instance.saga_id] = instance.model_copy(deep=True)

    async def get_stuck(self, updated_before: datetime, batch_size: int) -> List[SagaInstance]:
        stuck = sorted(
            (
                instance for instance in self._sagas.values()
                if not instance.is_terminal and instance.last_updated_at < updated_before
            ),
            key=lambda instance: instance.last_updated_at
        )[:batch_size]
        return [instance.model_copy(deep=True) for instance in stuck]
