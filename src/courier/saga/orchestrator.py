"""
Saga Orchestrator

Runs saga steps in order and, when one fails, compensates the completed
steps in reverse order. Progress is checkpointed after every step, so
a saga interrupted by a crash resumes from its last checkpoint and never
re-runs a completed forward step.

State machine:
    running -> completed | compensating
    compensating -> compensated | failed
"""

import asyncio
import inspect
import json
import logging
from datetime import timedelta
from typing import Any, List, Optional
from uuid import UUID

from ..clock import Clock, utcnow
from ..errors import SagaNotFoundError, format_error
from ..observability import create_span, record_counter
from .definition import SagaData, SagaDefinition, SagaStep
from .models import SagaInstance, SagaStatus
from .store import SagaStore

logger = logging.getLogger(__name__)


def encode_data(data: SagaData) -> bytes:
    return json.dumps(data, default=str, separators=(",", ":")).encode("utf-8")


def decode_data(state: bytes) -> SagaData:
    return json.loads(state.decode("utf-8")) if state else {}


async def _invoke(action, data: SagaData) -> Any:
    result = action(data)
    if inspect.isawaitable(result):
        result = await result
    return result


class SagaOrchestrator:
    """
    Drives saga instances through their steps.

    Usage:
        definition = SagaDefinition("order.checkout", [
            SagaStep("reserve", reserve_stock, release_stock),
            SagaStep("charge", charge_card, refund_card),
            SagaStep("ship", create_shipment),
        ])
        saga = await orchestrator.run(definition, {"order_id": "o-1"})
        if saga.status == SagaStatus.COMPENSATED:
            ...
    """

    def __init__(
        self,
        store: SagaStore,
        stuck_threshold: timedelta = timedelta(minutes=5),
        stuck_batch_size: int = 100,
        clock: Optional[Clock] = None
    ):
        self._store = store
        self.stuck_threshold = stuck_threshold
        self.stuck_batch_size = stuck_batch_size
        self._clock = clock or utcnow

    async def run(
        self,
        definition: SagaDefinition,
        data: Optional[SagaData] = None,
        saga_id: Optional[UUID] = None
    ) -> SagaInstance:
        """
        Start a saga, or resume it if ``saga_id`` already exists.

        Returns the instance in the state it was left in: a terminal
        status unless the process is cancelled part-way.
        """
        if saga_id is not None and await self._store.get(saga_id) is not None:
            return await self.resume(definition, saga_id)

        now = self._clock()
        instance = SagaInstance(
            saga_type=definition.saga_type,
            state=encode_data(data or {}),
            started_at=now,
            last_updated_at=now,
        )
        if saga_id is not None:
            instance.saga_id = saga_id

        await self._store.add(instance)
        logger.info(f"Saga {instance.saga_id} started ({definition.saga_type})")

        return await self._drive(definition, instance)

    async def resume(self, definition: SagaDefinition, saga_id: UUID) -> SagaInstance:
        """Continue a saga from its persisted status and step."""
        instance = await self._store.get(saga_id)
        if instance is None:
            logger.warning(f"Saga {saga_id} not found")
            raise SagaNotFoundError(saga_id)
        if instance.saga_type != definition.saga_type:
            raise ValueError(
                f"Saga {saga_id} is a '{instance.saga_type}' saga, not '{definition.saga_type}'"
            )
        if instance.current_step > len(definition.steps):
            raise ValueError(
                f"Saga {saga_id} is at step {instance.current_step} but "
                f"'{definition.saga_type}' only has {len(definition.steps)} steps"
            )

        if not instance.is_terminal:
            logger.info(
                f"Resuming saga {saga_id} ({instance.status.value}) at step {instance.current_step}"
            )
        return await self._drive(definition, instance)

    async def get(self, saga_id: UUID) -> Optional[SagaInstance]:
        return await self._store.get(saga_id)

    async def get_data(self, saga_id: UUID) -> SagaData:
        instance = await self._store.get(saga_id)
        if instance is None:
            raise SagaNotFoundError(saga_id)
        return decode_data(instance.state)

    async def get_stuck_sagas(self, threshold: Optional[timedelta] = None) -> List[SagaInstance]:
        """Non-terminal sagas with no progress within ``threshold``."""
        cutoff = self._clock() - (threshold or self.stuck_threshold)
        return await self._store.get_stuck(cutoff, self.stuck_batch_size)

    async def _drive(self, definition: SagaDefinition, instance: SagaInstance) -> SagaInstance:
        data = decode_data(instance.state)

        if instance.status == SagaStatus.RUNNING:
            await self._run_forward(definition, instance, data)

        if instance.status == SagaStatus.COMPENSATING:
            await self._compensate(definition, instance, data)

        return instance

    async def _run_forward(self, definition: SagaDefinition, instance: SagaInstance, data: SagaData):
        while instance.current_step < len(definition.steps):
            step = definition.steps[instance.current_step]
            try:
                with create_span("saga.step", {
                    "saga.id": str(instance.saga_id),
                    "saga.type": instance.saga_type,
                    "saga.step": step.name,
                    "saga.step_index": instance.current_step,
                }):
                    result = await _invoke(step.execute, data)
                    if result is not None and not isinstance(result, dict):
                        raise TypeError(
                            f"step '{step.name}' returned {type(result).__name__}, expected dict or None"
                        )
            except Exception as e:
                instance.last_error = f"Step '{step.name}' failed: {format_error(e)}"[:500]
                instance.transition_to(SagaStatus.COMPENSATING)
                await self._save(instance)
                logger.warning(
                    f"Saga {instance.saga_id} compensating from step {instance.current_step}: {e}"
                )
                return

            if result:
                data.update(result)
            instance.current_step += 1
            instance.state = encode_data(data)
            await self._save(instance)
            logger.debug(f"Saga {instance.saga_id} advanced to step {instance.current_step}")

        instance.transition_to(SagaStatus.COMPLETED)
        instance.completed_at = self._clock()
        await self._save(instance)
        record_counter("saga_completed_total", 1, {"saga_type": instance.saga_type})
        logger.info(f"Saga {instance.saga_id} completed")

    async def _compensate(self, definition: SagaDefinition, instance: SagaInstance, data: SagaData):
        while instance.current_step > 0:
            index = instance.current_step - 1
            step = definition.steps[index]
            if step.compensate is not None:
                await self._compensate_step(instance, step, index, data)
            instance.current_step = index
            await self._save(instance)

        if instance.compensation_errors:
            instance.transition_to(SagaStatus.FAILED)
            record_counter("saga_failed_total", 1, {"saga_type": instance.saga_type})
            logger.error(f"Saga {instance.saga_id} failed: {instance.last_error}")
        else:
            instance.transition_to(SagaStatus.COMPENSATED)
            record_counter("saga_compensated_total", 1, {"saga_type": instance.saga_type})
            logger.info(f"Saga {instance.saga_id} compensated")
        instance.completed_at = self._clock()
        await self._save(instance)

    async def _compensate_step(
        self,
        instance: SagaInstance,
        step: SagaStep,
        index: int,
        data: SagaData
    ):
        try:
            with create_span("saga.compensate", {
                "saga.id": str(instance.saga_id),
                "saga.type": instance.saga_type,
                "saga.step": step.name,
                "saga.step_index": index,
            }):
                await _invoke(step.compensate, data)
            logger.debug(f"Saga {instance.saga_id} compensated step {index} ({step.name})")
        except Exception as e:
            # Best-effort rollback: keep compensating the remaining steps
            message = f"Compensation of '{step.name}' failed: {format_error(e)}"[:500]
            instance.compensation_errors.append(message)
            instance.last_error = message
            logger.error(f"Saga {instance.saga_id}: {message}")

    async def _save(self, instance: SagaInstance):
        instance.last_updated_at = self._clock()
        await asyncio.shield(self._store.update(instance))
