"""Tests for the DAILY computed field scheduler."""

import asyncio
from datetime import datetime

import pytest

from viewgraph.compiler.computed import ComputedFieldCompiler
from viewgraph.core.spec_types import Rule, Schedule
from viewgraph.runtime.scheduler import (
    ComputedFieldScheduler,
    SchedulerState,
    seconds_until_next_midnight,
)


NOW = datetime(2024, 1, 15, 22, 30, 0)


def make_rule(schedule=Schedule.DAILY):
    return Rule(
        source_entity="Registration",
        source_field="operator",
        target_entity="Aircraft",
        target_field="current_operator_id",
        condition="exit_date=null",
        schedule=schedule,
    )


class FakeSleep:
    """Records requested delays; each call blocks until released."""

    def __init__(self):
        self.delays = []
        self.called = asyncio.Event()
        self._release = asyncio.Event()

    async def __call__(self, seconds):
        self.delays.append(seconds)
        self.called.set()
        await self._release.wait()
        self._release.clear()

    async def wait_called(self):
        await asyncio.wait_for(self.called.wait(), timeout=1)
        self.called.clear()

    def release(self):
        self._release.set()


@pytest.mark.parametrize("now,expected", [
    (datetime(2024, 1, 15, 22, 30), 1.5 * 3600),
    (datetime(2024, 1, 15, 0, 0), 24 * 3600),
    (datetime(2024, 12, 31, 23, 59, 59), 1),
    (datetime(2024, 2, 28, 12, 0), 12 * 3600),
])
def test_seconds_until_next_midnight(now, expected):
    assert seconds_until_next_midnight(now) == expected


def test_startup_run_then_midnight(schema):
    async def scenario():
        executed = []
        sleep = FakeSleep()
        scheduler = ComputedFieldScheduler(
            ComputedFieldCompiler(schema),
            [make_rule(), make_rule(Schedule.HOURLY)],
            lambda sql: executed.append(sql) or 1,
            clock=lambda: NOW,
            sleep=sleep,
        )
        assert scheduler.state == SchedulerState.IDLE

        await scheduler.start()
        await sleep.wait_called()
        assert len(executed) == 1  # startup run, DAILY rules only
        assert scheduler.state == SchedulerState.SCHEDULED
        assert sleep.delays == [1.5 * 3600]
        assert scheduler.next_run == datetime(2024, 1, 16, 0, 0)
        assert scheduler.last_result.updated == 1

        sleep.release()
        await sleep.wait_called()
        assert len(executed) == 2
        assert scheduler.run_count == 2

        await scheduler.stop()
        assert scheduler.state == SchedulerState.STOPPED
        status = scheduler.status()
        assert status["state"] == "STOPPED"
        assert status["daily_fields"] == 1
        assert status["next_run"] is None
        assert status["last_result"]["processed"] == 1

    asyncio.run(scenario())


def test_no_startup_run(schema):
    async def scenario():
        executed = []
        sleep = FakeSleep()
        scheduler = ComputedFieldScheduler(
            ComputedFieldCompiler(schema),
            [make_rule()],
            lambda sql: executed.append(sql) or 0,
            run_on_startup=False,
            clock=lambda: NOW,
            sleep=sleep,
        )
        await scheduler.start()
        await sleep.wait_called()
        assert executed == []
        await scheduler.stop()

    asyncio.run(scenario())


def test_stop_is_terminal(schema):
    async def scenario():
        sleep = FakeSleep()
        scheduler = ComputedFieldScheduler(
            ComputedFieldCompiler(schema), [make_rule()], lambda sql: 0, clock=lambda: NOW, sleep=sleep,
        )
        await scheduler.start()
        await sleep.wait_called()
        await scheduler.stop()
        await scheduler.start()
        assert scheduler.state == SchedulerState.STOPPED
        assert scheduler.status()["run_count"] == 1

    asyncio.run(scenario())


def test_stop_waits_for_running_run(schema):
    async def scenario():
        started = asyncio.Event()
        finish = asyncio.Event()
        executed = []

        async def slow_execute(sql):
            started.set()
            await finish.wait()
            executed.append(sql)
            return 1

        sleep = FakeSleep()
        scheduler = ComputedFieldScheduler(
            ComputedFieldCompiler(schema), [make_rule()], slow_execute, clock=lambda: NOW, sleep=sleep,
        )
        await scheduler.start()
        await asyncio.wait_for(started.wait(), timeout=1)
        assert scheduler.state == SchedulerState.RUNNING

        stopping = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0)
        assert not stopping.done()

        finish.set()
        await asyncio.wait_for(stopping, timeout=1)
        assert executed  # the run completed rather than being cancelled
        assert scheduler.state == SchedulerState.STOPPED
        assert sleep.delays == []

    asyncio.run(scenario())


def test_failing_run_keeps_scheduling(schema):
    async def scenario():
        def broken(sql):
            raise RuntimeError("boom")

        sleep = FakeSleep()
        scheduler = ComputedFieldScheduler(
            ComputedFieldCompiler(schema), [make_rule()], broken, clock=lambda: NOW, sleep=sleep,
        )
        await scheduler.start()
        await sleep.wait_called()
        assert scheduler.state == SchedulerState.SCHEDULED
        assert scheduler.last_result.failed == 1
        await scheduler.stop()

    asyncio.run(scenario())


def test_run_now_without_start(schema):
    async def scenario():
        scheduler = ComputedFieldScheduler(ComputedFieldCompiler(schema), [make_rule()], lambda sql: 3)
        result = await scheduler.run_now()
        assert result.updated == 3
        assert scheduler.state == SchedulerState.IDLE

    asyncio.run(scenario())


def test_stop_during_manual_run(schema):
    async def scenario():
        started = asyncio.Event()
        finish = asyncio.Event()

        async def slow_execute(sql):
            started.set()
            await finish.wait()
            return 2

        sleep = FakeSleep()
        scheduler = ComputedFieldScheduler(
            ComputedFieldCompiler(schema), [make_rule()], slow_execute,
            run_on_startup=False, clock=lambda: NOW, sleep=sleep,
        )
        await scheduler.start()
        await sleep.wait_called()

        manual = asyncio.create_task(scheduler.run_now())
        await asyncio.wait_for(started.wait(), timeout=1)
        stopping = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0)
        assert not stopping.done()

        finish.set()
        await asyncio.wait_for(stopping, timeout=1)
        assert (await manual).updated == 2
        assert scheduler.state == SchedulerState.STOPPED
        assert scheduler.run_count == 1

    asyncio.run(scenario())
