"""
Saga Models
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from ..clock import utcnow


class SagaStatus(str, Enum):
    """Lifecycle states of a saga instance."""
    RUNNING = "running"
    COMPENSATING = "compensating"
    COMPLETED = "completed"
    COMPENSATED = "compensated"
    FAILED = "failed"


# Allowed transitions: Running is initial, the rest of the graph only moves forward
SAGA_TRANSITIONS: Dict[SagaStatus, List[SagaStatus]] = {
    SagaStatus.RUNNING: [SagaStatus.COMPLETED, SagaStatus.COMPENSATING],
    SagaStatus.COMPENSATING: [SagaStatus.COMPENSATED, SagaStatus.FAILED],
    SagaStatus.COMPLETED: [],
    SagaStatus.COMPENSATED: [],
    SagaStatus.FAILED: [],
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in SAGA_TRANSITIONS.items() if not targets
)


class InvalidSagaTransitionError(RuntimeError):
    def __init__(self, from_status: SagaStatus, to_status: SagaStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid saga transition: {from_status.value} -> {to_status.value}")


class SagaInstance(BaseModel):
    """
    Durable progress record of one saga.

    While running, ``current_step`` is the number of forward steps that
    have completed. While compensating it counts the completed steps that
    still await compensation, so it is decremented after each one.
    """

    saga_id: UUID = Field(default_factory=uuid4)
    saga_type: str
    state: bytes = b""
    status: SagaStatus = SagaStatus.RUNNING
    current_step: int = 0

    started_at: datetime = Field(default_factory=utcnow)
    last_updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    compensation_errors: List[str] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition_to(self, status: SagaStatus):
        if status not in SAGA_TRANSITIONS[self.status]:
            raise InvalidSagaTransitionError(self.status, status)
        self.status = status
