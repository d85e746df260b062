"""
Saga Pattern Implementation

Multi-step processes with per-step compensating actions.

Usage:
    from courier.saga import InMemorySagaStore, SagaDefinition, SagaOrchestrator, SagaStep

    orchestrator = SagaOrchestrator(InMemorySagaStore())
    saga = await orchestrator.run(definition, {"order_id": order_id})
"""

from .definition import SagaDefinition, SagaStep, dispatch_step
from .models import (
    SAGA_TRANSITIONS,
    InvalidSagaTransitionError,
    SagaInstance,
    SagaStatus,
)
from .orchestrator import SagaOrchestrator, decode_data, encode_data
from .store import InMemorySagaStore, SagaStore

__all__ = [
    "SagaInstance",
    "SagaStatus",
    "SAGA_TRANSITIONS",
    "InvalidSagaTransitionError",
    "SagaStep",
    "SagaDefinition",
    "dispatch_step",
    "SagaStore",
    "InMemorySagaStore",
    "SagaOrchestrator",
    "encode_data",
    "decode_data",
]
