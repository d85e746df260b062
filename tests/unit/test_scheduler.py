"""
Tests for scheduling, cron rules and the scheduler processor.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from courier.errors import InvalidCronExpressionError, RecurringDisabledError
from courier.retry import RetryPolicy
from courier.scheduler import (
    CronSchedule,
    InMemoryScheduledStore,
    Scheduler,
    SchedulerProcessor,
)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return InMemoryScheduledStore()


@pytest.fixture
def scheduler(store, clock):
    return Scheduler(store, clock=clock)


@pytest.fixture
def processor(store, dispatcher, clock):
    return SchedulerProcessor(
        store,
        dispatcher,
        retry_policy=RetryPolicy(base_delay=timedelta(seconds=10), max_retries=3),
        clock=clock,
    )


class TestCronSchedule:
    """Test recurrence rule evaluation."""

    def test_next_after(self):
        schedule = CronSchedule("*/15 * * * *")
        assert schedule.next_after(utc(2024, 1, 1, 12, 7)) == utc(2024, 1, 1, 12, 15)

    def test_next_after_is_strict(self):
        schedule = CronSchedule("*/15 * * * *")
        assert schedule.next_after(utc(2024, 1, 1, 12, 15)) == utc(2024, 1, 1, 12, 30)

    def test_day_of_week_rule(self):
        # 2024-01-06 is a Saturday
        schedule = CronSchedule("0 3 * * mon-fri")
        assert schedule.next_after(utc(2024, 1, 6, 0, 0)) == utc(2024, 1, 8, 3, 0)

    @pytest.mark.parametrize("expression,expected", [
        ("0 3 * * 1", utc(2024, 1, 8, 3, 0)),      # Monday
        ("0 3 * * 0", utc(2024, 1, 7, 3, 0)),      # Sunday
        ("0 3 * * 7", utc(2024, 1, 7, 3, 0)),      # Sunday
        ("0 3 * * 1-5", utc(2024, 1, 8, 3, 0)),
        ("0 3 * * 0-2", utc(2024, 1, 7, 3, 0)),
        ("0 3 * * 3,5", utc(2024, 1, 10, 3, 0)),   # Wednesday
        ("0 3 * * 6", utc(2024, 1, 6, 3, 0)),      # Saturday
    ])
    def test_numeric_day_of_week_follows_crontab(self, expression, expected):
        # 2024-01-06 00:00 is a Saturday
        assert CronSchedule(expression).next_after(utc(2024, 1, 6, 0, 0)) == expected

    def test_numeric_day_of_week_step(self):
        # */2 is Sunday, Tuesday, Thursday, Saturday
        schedule = CronSchedule("0 3 * * */2")
        assert schedule.next_after(utc(2024, 1, 7, 4, 0)) == utc(2024, 1, 9, 3, 0)

    def test_numeric_range_ending_on_seven(self):
        schedule = CronSchedule("0 3 * * 5-7")
        assert schedule.next_after(utc(2024, 1, 6, 4, 0)) == utc(2024, 1, 7, 3, 0)
        assert schedule.next_after(utc(2024, 1, 7, 4, 0)) == utc(2024, 1, 12, 3, 0)

    def test_expression_kept_as_written(self):
        assert CronSchedule("0 3 * * 1").expression == "0 3 * * 1"

    @pytest.mark.parametrize("expression", [
        "", "   ", "not a cron", "61 * * * *", "0 3 * * 8", "0 3 * * 5-2", "0 3 * * 1/0",
    ])
    def test_invalid_expression(self, expression):
        with pytest.raises(InvalidCronExpressionError):
            CronSchedule(expression)


class TestScheduler:
    """Test recording scheduled items."""

    async def test_schedule_after(self, scheduler, clock):
        item = await scheduler.schedule_after("reports.build", {"day": "mon"}, timedelta(hours=1))

        assert item.scheduled_at == clock.now + timedelta(hours=1)
        assert item.payload == b'{"day":"mon"}'
        assert not item.is_recurring
        assert await scheduler.pending_count() == 1

    async def test_schedule_at(self, scheduler, clock):
        at = clock.now + timedelta(days=1)
        item = await scheduler.schedule("reports.build", None, at)
        assert (await scheduler.get(item.id)).scheduled_at == at

    async def test_rejects_past_or_present_time(self, scheduler, clock):
        with pytest.raises(ValueError):
            await scheduler.schedule("t", None, clock.now)
        with pytest.raises(ValueError):
            await scheduler.schedule("t", None, clock.now - timedelta(seconds=1))

    async def test_rejects_naive_time(self, scheduler):
        with pytest.raises(ValueError):
            await scheduler.schedule("t", None, datetime(2030, 1, 1))

    @pytest.mark.parametrize("delay", [timedelta(0), timedelta(seconds=-5)])
    async def test_rejects_non_positive_delay(self, scheduler, delay):
        with pytest.raises(ValueError):
            await scheduler.schedule_after("t", None, delay)

    async def test_rejects_blank_type(self, scheduler):
        with pytest.raises(ValueError):
            await scheduler.schedule_after("", None, timedelta(minutes=1))

    async def test_schedule_recurring_starts_at_next_occurrence(self, scheduler, clock):
        item = await scheduler.schedule_recurring("cache.warm", {}, "*/15 * * * *")

        assert item.is_recurring
        assert item.recurrence_rule == "*/15 * * * *"
        assert item.scheduled_at == utc(2024, 1, 1, 12, 15)

    async def test_schedule_recurring_numeric_weekday(self, scheduler):
        item = await scheduler.schedule_recurring("reports.weekly", {}, "0 3 * * 0")

        assert item.scheduled_at == utc(2024, 1, 7, 3, 0)
        assert item.recurrence_rule == "0 3 * * 0"

    async def test_recurring_disabled(self, store, clock):
        scheduler = Scheduler(store, enable_recurring=False, clock=clock)
        with pytest.raises(RecurringDisabledError):
            await scheduler.schedule_recurring("cache.warm", {}, "* * * * *")

    async def test_recurring_invalid_rule(self, scheduler):
        with pytest.raises(InvalidCronExpressionError):
            await scheduler.schedule_recurring("cache.warm", {}, "every tuesday")
        assert await scheduler.pending_count() == 0

    async def test_cancel(self, scheduler, processor, dispatcher, clock):
        item = await scheduler.schedule_after("t", None, timedelta(minutes=1))

        assert await scheduler.cancel(item.id)
        assert not await scheduler.cancel(item.id)
        assert await scheduler.pending_count() == 0

        clock.advance(minutes=5)
        assert await processor.process_batch() == 0
        assert dispatcher.dispatched == []


class TestSchedulerProcessor:
    """Test dispatching due items."""

    async def test_one_shot_runs_once_when_due(self, scheduler, processor, dispatcher, clock):
        item = await scheduler.schedule_after("reports.build", {"n": 1}, timedelta(minutes=10))

        assert await processor.process_batch() == 0
        clock.advance(minutes=10)
        assert await processor.process_batch() == 1
        assert await processor.process_batch() == 0

        stored = await scheduler.get(item.id)
        assert stored.processed_at == clock.now
        assert stored.last_executed_at == clock.now
        assert dispatcher.dispatched == [("reports.build", b'{"n":1}')]

    async def test_due_items_dispatched_earliest_first(self, scheduler, processor, dispatcher, clock):
        await scheduler.schedule_after("later", None, timedelta(minutes=2))
        await scheduler.schedule_after("sooner", None, timedelta(minutes=1))

        clock.advance(minutes=5)
        await processor.process_batch()

        assert [tag for tag, _ in dispatcher.dispatched] == ["sooner", "later"]

    async def test_recurring_moves_to_next_occurrence(self, scheduler, processor, dispatcher, clock):
        item = await scheduler.schedule_recurring("cache.warm", {}, "*/15 * * * *")

        clock.now = utc(2024, 1, 1, 12, 15)
        assert await processor.process_batch() == 1

        stored = await scheduler.get(item.id)
        assert stored.processed_at is None
        assert stored.last_executed_at == clock.now
        assert stored.scheduled_at == utc(2024, 1, 1, 12, 30)
        assert stored.scheduled_at > clock.now
        assert await processor.process_batch() == 0

        clock.now = utc(2024, 1, 1, 12, 30)
        assert await processor.process_batch() == 1
        assert len(dispatcher.dispatched) == 2

    async def test_failure_retries_with_backoff(self, scheduler, processor, dispatcher, clock):
        item = await scheduler.schedule_after("flaky", None, timedelta(minutes=1))
        dispatcher.fail_types.add("flaky")

        clock.advance(minutes=1)
        await processor.process_batch()

        stored = await scheduler.get(item.id)
        assert stored.retry_count == 1
        assert stored.next_retry_at == clock.now + timedelta(seconds=10)
        assert "dispatch failed for flaky" in stored.last_error

        clock.advance(seconds=5)
        assert await processor.process_batch() == 0
        clock.advance(seconds=5)
        dispatcher.fail_types.clear()
        assert await processor.process_batch() == 1
        assert (await scheduler.get(item.id)).processed_at is not None

    async def test_one_shot_dead_letter(self, scheduler, processor, dispatcher, clock):
        item = await scheduler.schedule_after("broken", None, timedelta(minutes=1))
        dispatcher.fail_types.add("broken")

        for _ in range(4):
            clock.advance(hours=1)
            await processor.process_batch()

        stored = await scheduler.get(item.id)
        assert stored.retry_count == 3
        assert stored.next_retry_at is None
        assert stored.processed_at is None
        assert stored.is_dead_letter(3)

    async def test_recurring_exhaustion_skips_to_next_occurrence(
        self, scheduler, processor, dispatcher, clock
    ):
        item = await scheduler.schedule_recurring("hourly", {}, "0 * * * *")
        dispatcher.fail_types.add("hourly")

        clock.now = utc(2024, 1, 1, 13, 0)
        for _ in range(3):
            await processor.process_batch()
            clock.advance(minutes=1)

        stored = await scheduler.get(item.id)
        assert stored.scheduled_at == utc(2024, 1, 1, 14, 0)
        assert stored.retry_count == 0
        assert stored.next_retry_at is None
        assert stored.last_error is not None
        assert stored.is_pending

        dispatcher.fail_types.clear()
        clock.now = utc(2024, 1, 1, 14, 0)
        assert await processor.process_batch() == 1
        assert (await scheduler.get(item.id)).last_error is None

    async def test_store_failure_does_not_abort_batch(self, dispatcher, clock):
        class FlakyStore(InMemoryScheduledStore):
            async def mark_processed(self, item_id, processed_at):
                if not hasattr(self, "failed_once"):
                    self.failed_once = True
                    raise ConnectionError("write failed")
                await super().mark_processed(item_id, processed_at)

        flaky = FlakyStore()
        scheduler = Scheduler(flaky, clock=clock)
        await scheduler.schedule_after("a", None, timedelta(minutes=1))
        await scheduler.schedule_after("b", None, timedelta(minutes=2))
        processor = SchedulerProcessor(flaky, dispatcher, clock=clock)

        clock.advance(minutes=5)
        assert await processor.process_batch() == 2
        assert len(dispatcher.dispatched) == 2
        assert await flaky.count_pending() == 1


class BlockingDispatcher:
    """Dispatcher whose calls wait until released."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def dispatch(self, type_tag, payload):
        self.started.set()
        await self.release.wait()
        return b""

    async def publish(self, type_tag, payload):
        await self.dispatch(type_tag, payload)


class SlowRescheduleStore(InMemoryScheduledStore):
    """Store whose ``reschedule`` waits until released."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.write_started = asyncio.Event()
        self.release = asyncio.Event()

    async def reschedule(self, item_id, scheduled_at, last_executed_at=None, last_error=None):
        self.write_started.set()
        await self.release.wait()
        await super().reschedule(item_id, scheduled_at, last_executed_at, last_error)


class TestSchedulerCancellation:
    """Test that cancelling a tick leaves items consistent."""

    async def test_cancel_during_dispatch_leaves_item_untouched(self, clock):
        store = InMemoryScheduledStore(claim_timeout=timedelta(minutes=1))
        item = await Scheduler(store, clock=clock).schedule_after("reports.build", None, timedelta(minutes=1))
        dispatcher = BlockingDispatcher()
        processor = SchedulerProcessor(store, dispatcher, clock=clock)

        clock.advance(minutes=1)
        task = asyncio.create_task(processor.process_batch())
        await dispatcher.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        stored = await store.get(item.id)
        assert stored.processed_at is None
        assert stored.retry_count == 0
        assert stored.last_error is None
        assert stored.is_pending

        assert await store.claim_due(10, 3, clock.advance(seconds=30)) == []
        assert len(await store.claim_due(10, 3, clock.advance(seconds=31))) == 1

    async def test_cancel_during_reschedule_still_lands(self, clock, dispatcher):
        store = SlowRescheduleStore()
        item = await Scheduler(store, clock=clock).schedule_recurring("cache.warm", {}, "*/15 * * * *")
        processor = SchedulerProcessor(store, dispatcher, clock=clock)

        clock.now = utc(2024, 1, 1, 12, 15)
        task = asyncio.create_task(processor.process_batch())
        await store.write_started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        store.release.set()
        for _ in range(100):
            if (await store.get(item.id)).last_executed_at is not None:
                break
            await asyncio.sleep(0)

        stored = await store.get(item.id)
        assert stored.last_executed_at == utc(2024, 1, 1, 12, 15)
        assert stored.scheduled_at == utc(2024, 1, 1, 12, 30)
        assert stored.processed_at is None
