"""
Saga Definitions

A saga is an ordered list of steps, each a forward action with an
optional compensating action. The list is fixed before orchestration
begins; how it is built is up to the caller.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Union

from ..dispatch import Dispatcher, json_decode, json_encode

SagaData = Dict[str, Any]
StepAction = Callable[[SagaData], Union[Awaitable[Optional[SagaData]], Optional[SagaData]]]
CompensateAction = Callable[[SagaData], Union[Awaitable[None], None]]


@dataclass(frozen=True)
class SagaStep:
    """
    One saga step.

    ``execute`` receives the current saga data; a returned dict is merged
    into it before the next step. ``compensate`` semantically undoes a
    completed ``execute``. Both may be sync or async.
    """

    name: str
    execute: StepAction
    compensate: Optional[CompensateAction] = None


@dataclass(frozen=True)
class SagaDefinition:
    saga_type: str
    steps: Sequence[SagaStep]

    def __post_init__(self):
        if not (self.saga_type or "").strip():
            raise ValueError("saga_type is required")
        if not self.steps:
            raise ValueError("a saga needs at least one step")
        names = [step.name for step in self.steps]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate step names in saga '{self.saga_type}'")
        object.__setattr__(self, "steps", tuple(self.steps))

    def __len__(self) -> int:
        return len(self.steps)


def dispatch_step(
    name: str,
    dispatcher: Dispatcher,
    type_tag: str,
    compensate_tag: Optional[str] = None
) -> SagaStep:
    """
    Build a step that sends the saga data through the Dispatcher.

    The data is JSON-encoded; a JSON object in the response is merged
    back into the saga data.
    """

    async def execute(data: SagaData) -> Optional[SagaData]:
        response = json_decode(await dispatcher.dispatch(type_tag, json_encode(data)))
        return response if isinstance(response, dict) else None

    compensate = None
    if compensate_tag is not None:
        async def compensate(data: SagaData) -> None:
            await dispatcher.dispatch(compensate_tag, json_encode(data))

    return SagaStep(name=name, execute=execute, compensate=compensate)
