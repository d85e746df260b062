"""
Tests for saga definitions and the orchestrator.
"""

from datetime import timedelta
from uuid import UUID, uuid4

import pytest

from courier.errors import SagaNotFoundError
from courier.saga import (
    SAGA_TRANSITIONS,
    InMemorySagaStore,
    InvalidSagaTransitionError,
    SagaDefinition,
    SagaInstance,
    SagaOrchestrator,
    SagaStatus,
    SagaStep,
    dispatch_step,
    encode_data,
)


class Journal:
    """Records the order in which steps and compensations run."""

    def __init__(self, fail_on=(), fail_compensation_on=()):
        self.entries = []
        self.fail_on = set(fail_on)
        self.fail_compensation_on = set(fail_compensation_on)

    def step(self, name, compensate=True):
        async def execute(data):
            self.entries.append(f"do:{name}")
            if name in self.fail_on:
                raise RuntimeError(f"{name} failed")
            return {name: True}

        async def undo(data):
            self.entries.append(f"undo:{name}")
            if name in self.fail_compensation_on:
                raise RuntimeError(f"undo {name} failed")

        return SagaStep(name, execute, undo if compensate else None)

    def definition(self, *names):
        return SagaDefinition("order.checkout", [self.step(name) for name in names])


@pytest.fixture
def store():
    return InMemorySagaStore()


@pytest.fixture
def orchestrator(store, clock):
    return SagaOrchestrator(store, stuck_threshold=timedelta(minutes=5), clock=clock)


class TestSagaDefinition:
    """Test definition validation."""

    def test_requires_type(self):
        with pytest.raises(ValueError):
            SagaDefinition("", [SagaStep("a", lambda data: None)])

    def test_requires_steps(self):
        with pytest.raises(ValueError):
            SagaDefinition("t", [])

    def test_rejects_duplicate_step_names(self):
        step = SagaStep("a", lambda data: None)
        with pytest.raises(ValueError):
            SagaDefinition("t", [step, step])

    def test_steps_frozen_as_tuple(self):
        definition = SagaDefinition("t", [SagaStep("a", lambda data: None)])
        assert isinstance(definition.steps, tuple)
        assert len(definition) == 1


class TestSagaTransitions:
    """Test the status graph."""

    def test_terminal_statuses_have_no_exits(self):
        for status in (SagaStatus.COMPLETED, SagaStatus.COMPENSATED, SagaStatus.FAILED):
            assert SAGA_TRANSITIONS[status] == []

    def test_invalid_transition_rejected(self):
        instance = SagaInstance(saga_type="t", status=SagaStatus.COMPLETED)
        with pytest.raises(InvalidSagaTransitionError):
            instance.transition_to(SagaStatus.RUNNING)

    def test_running_cannot_jump_to_compensated(self):
        instance = SagaInstance(saga_type="t")
        with pytest.raises(InvalidSagaTransitionError):
            instance.transition_to(SagaStatus.COMPENSATED)


class TestSagaOrchestrator:
    """Test forward execution and compensation."""

    async def test_all_steps_complete(self, orchestrator, clock):
        journal = Journal()
        saga = await orchestrator.run(journal.definition("reserve", "charge", "ship"), {"order": "o-1"})

        assert saga.status == SagaStatus.COMPLETED
        assert saga.current_step == 3
        assert saga.completed_at == clock.now
        assert journal.entries == ["do:reserve", "do:charge", "do:ship"]
        assert await orchestrator.get_data(saga.saga_id) == {
            "order": "o-1", "reserve": True, "charge": True, "ship": True
        }

    async def test_step_data_flows_forward(self, orchestrator):
        seen = []

        def first(data):
            return {"reservation": "r-1"}

        def second(data):
            seen.append(data["reservation"])

        definition = SagaDefinition("t", [SagaStep("first", first), SagaStep("second", second)])
        saga = await orchestrator.run(definition)

        assert saga.status == SagaStatus.COMPLETED
        assert seen == ["r-1"]

    async def test_failure_compensates_in_reverse(self, orchestrator):
        """Step three fails: steps two and one are undone, in that order."""
        journal = Journal(fail_on={"ship"})
        saga = await orchestrator.run(journal.definition("reserve", "charge", "ship"))

        assert saga.status == SagaStatus.COMPENSATED
        assert journal.entries == [
            "do:reserve", "do:charge", "do:ship", "undo:charge", "undo:reserve"
        ]
        assert saga.current_step == 0
        assert saga.last_error.startswith("Step 'ship' failed")
        assert saga.compensation_errors == []

    async def test_later_steps_never_run_or_compensate(self, orchestrator):
        journal = Journal(fail_on={"charge"})
        await orchestrator.run(journal.definition("reserve", "charge", "ship", "notify"))

        assert "do:ship" not in journal.entries
        assert "undo:charge" not in journal.entries
        assert "undo:ship" not in journal.entries
        assert journal.entries[-1] == "undo:reserve"

    async def test_first_step_failure_compensates_nothing(self, orchestrator):
        journal = Journal(fail_on={"reserve"})
        saga = await orchestrator.run(journal.definition("reserve", "charge"))

        assert saga.status == SagaStatus.COMPENSATED
        assert journal.entries == ["do:reserve"]

    async def test_compensation_failure_continues_and_fails(self, orchestrator):
        journal = Journal(fail_on={"ship"}, fail_compensation_on={"charge"})
        saga = await orchestrator.run(journal.definition("reserve", "charge", "ship"))

        assert saga.status == SagaStatus.FAILED
        assert journal.entries[-2:] == ["undo:charge", "undo:reserve"]
        assert len(saga.compensation_errors) == 1
        assert "undo charge failed" in saga.last_error
        assert saga.completed_at is not None

    async def test_steps_without_compensation_are_skipped(self, orchestrator):
        journal = Journal(fail_on={"ship"})
        definition = SagaDefinition("t", [
            journal.step("reserve"),
            journal.step("audit", compensate=False),
            journal.step("ship"),
        ])
        saga = await orchestrator.run(definition)

        assert saga.status == SagaStatus.COMPENSATED
        assert journal.entries[-1] == "undo:reserve"
        assert "undo:audit" not in journal.entries

    async def test_non_dict_result_fails_step(self, orchestrator):
        definition = SagaDefinition("t", [SagaStep("bad", lambda data: 42)])
        saga = await orchestrator.run(definition)

        assert saga.status == SagaStatus.COMPENSATED
        assert "TypeError" in saga.last_error

    async def test_checkpoint_after_each_step(self, orchestrator, store):
        checkpoints = []

        async def inspect_store(data):
            saga_id = UUID(data["saga_id"])
            checkpoints.append((await store.get(saga_id)).current_step)

        saga_id = uuid4()
        definition = SagaDefinition("t", [
            SagaStep("a", lambda data: None),
            SagaStep("b", inspect_store),
            SagaStep("c", inspect_store),
        ])
        await orchestrator.run(definition, {"saga_id": str(saga_id)}, saga_id=saga_id)

        assert checkpoints == [1, 2]


class TestSagaResume:
    """Test resuming persisted sagas."""

    async def test_resume_skips_completed_steps(self, orchestrator, store):
        journal = Journal()
        definition = journal.definition("reserve", "charge", "ship")
        instance = SagaInstance(
            saga_type="order.checkout",
            state=encode_data({"reserve": True, "charge": True}),
            current_step=2,
        )
        await store.add(instance)

        saga = await orchestrator.resume(definition, instance.saga_id)

        assert saga.status == SagaStatus.COMPLETED
        assert journal.entries == ["do:ship"]

    async def test_resume_compensating_saga(self, orchestrator, store):
        journal = Journal()
        definition = journal.definition("reserve", "charge", "ship")
        instance = SagaInstance(
            saga_type="order.checkout",
            status=SagaStatus.COMPENSATING,
            current_step=1,
        )
        await store.add(instance)

        saga = await orchestrator.resume(definition, instance.saga_id)

        assert saga.status == SagaStatus.COMPENSATED
        assert journal.entries == ["undo:reserve"]

    async def test_resume_terminal_saga_is_unchanged(self, orchestrator):
        journal = Journal()
        definition = journal.definition("reserve")
        saga = await orchestrator.run(definition)
        journal.entries.clear()

        resumed = await orchestrator.resume(definition, saga.saga_id)

        assert resumed.status == SagaStatus.COMPLETED
        assert resumed.last_updated_at == saga.last_updated_at
        assert journal.entries == []

    async def test_run_with_existing_id_resumes(self, orchestrator):
        journal = Journal()
        definition = journal.definition("reserve")
        saga = await orchestrator.run(definition)

        again = await orchestrator.run(definition, saga_id=saga.saga_id)

        assert again.saga_id == saga.saga_id
        assert journal.entries == ["do:reserve"]

    async def test_resume_unknown_saga(self, orchestrator):
        with pytest.raises(SagaNotFoundError):
            await orchestrator.resume(Journal().definition("a"), uuid4())

    async def test_resume_type_mismatch(self, orchestrator, store):
        instance = SagaInstance(saga_type="refund")
        await store.add(instance)
        with pytest.raises(ValueError):
            await orchestrator.resume(Journal().definition("a"), instance.saga_id)

    async def test_resume_step_beyond_definition(self, orchestrator, store):
        instance = SagaInstance(saga_type="order.checkout", current_step=5)
        await store.add(instance)
        with pytest.raises(ValueError):
            await orchestrator.resume(Journal().definition("a"), instance.saga_id)

    async def test_get_data_unknown_saga(self, orchestrator):
        with pytest.raises(SagaNotFoundError):
            await orchestrator.get_data(uuid4())


class TestStuckSagas:
    """Test stuck saga detection."""

    async def test_reports_stale_non_terminal_sagas(self, orchestrator, store, clock):
        stale = SagaInstance(saga_type="t", started_at=clock.now, last_updated_at=clock.now)
        await store.add(stale)
        done = SagaInstance(
            saga_type="t",
            status=SagaStatus.COMPLETED,
            last_updated_at=clock.now,
        )
        await store.add(done)

        clock.advance(minutes=10)
        fresh = SagaInstance(saga_type="t", last_updated_at=clock.now)
        await store.add(fresh)

        stuck = await orchestrator.get_stuck_sagas()
        assert [saga.saga_id for saga in stuck] == [stale.saga_id]

    async def test_custom_threshold(self, orchestrator, store, clock):
        await store.add(SagaInstance(saga_type="t", last_updated_at=clock.now))
        clock.advance(minutes=2)

        assert await orchestrator.get_stuck_sagas() == []
        assert len(await orchestrator.get_stuck_sagas(timedelta(minutes=1))) == 1


class TestDispatchStep:
    """Test steps backed by the Dispatcher."""

    async def test_dispatch_and_merge_response(self, orchestrator, dispatcher):
        dispatcher.responses["payments.charge"] = b'{"charge_id":"ch-1"}'
        definition = SagaDefinition("t", [
            dispatch_step("charge", dispatcher, "payments.charge", "payments.refund"),
        ])

        saga = await orchestrator.run(definition, {"amount": 10})

        assert saga.status == SagaStatus.COMPLETED
        assert dispatcher.dispatched == [("payments.charge", b'{"amount":10}')]
        assert (await orchestrator.get_data(saga.saga_id))["charge_id"] == "ch-1"

    async def test_compensation_dispatches_compensate_tag(self, orchestrator, dispatcher):
        dispatcher.fail_types.add("shipping.create")
        definition = SagaDefinition("t", [
            dispatch_step("charge", dispatcher, "payments.charge", "payments.refund"),
            dispatch_step("ship", dispatcher, "shipping.create"),
        ])

        saga = await orchestrator.run(definition)

        assert saga.status == SagaStatus.COMPENSATED
        assert [tag for tag, _ in dispatcher.dispatched] == ["payments.charge", "payments.refund"]
