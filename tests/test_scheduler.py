"""Tests for the digest scheduler."""

import asyncio
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from journal_digest.cron import CronExpression
from journal_digest.exceptions import DataSourceError
from journal_digest.models import RunOutcome
from journal_digest.scheduler import DigestScheduler, SchedulerState

REF = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)
WEEKLY = CronExpression("0 0 9 ? * SUN")


class GatedPipeline:
    """Pipeline stub whose run blocks until released (or cancelled)."""

    def __init__(self, error: Exception | None = None, wait_for_cancel: bool = False):
        self.calls = 0
        self.cancel_events = []
        self.error = error
        self.wait_for_cancel = wait_for_cancel
        self.gate: asyncio.Event | None = None

    async def run(self, cancel_event):
        self.calls += 1
        self.cancel_events.append(cancel_event)
        if self.gate is None:
            self.gate = asyncio.Event()
        if self.wait_for_cancel:
            await cancel_event.wait()
            return RunOutcome(run_id=f"run-{self.calls}", run_timestamp=REF, cancelled=True)
        await self.gate.wait()
        if self.error:
            raise self.error
        return RunOutcome(run_id=f"run-{self.calls}", run_timestamp=REF)


def test_trigger_while_running_is_dropped():
    async def _run():
        pipeline = GatedPipeline()
        pipeline.gate = asyncio.Event()
        scheduler = DigestScheduler(pipeline, WEEKLY)

        assert scheduler.state is SchedulerState.IDLE
        assert scheduler.trigger("manual") is True
        assert scheduler.state is SchedulerState.RUNNING
        assert scheduler.trigger("manual") is False
        await asyncio.sleep(0)
        assert scheduler.trigger("cadence") is False
        assert scheduler.state is SchedulerState.RUNNING

        pipeline.gate.set()
        await scheduler.wait_for_run()
        return scheduler, pipeline

    scheduler, pipeline = asyncio.run(_run())
    assert pipeline.calls == 1
    assert scheduler.dropped_triggers == 2
    assert scheduler.state is SchedulerState.IDLE
    assert scheduler.last_outcome.run_id == "run-1"


def test_trigger_after_completion_starts_new_run():
    async def _run():
        pipeline = GatedPipeline()
        pipeline.gate = asyncio.Event()
        pipeline.gate.set()
        scheduler = DigestScheduler(pipeline, WEEKLY)

        assert scheduler.trigger() is True
        await scheduler.wait_for_run()
        assert scheduler.trigger() is True
        await scheduler.wait_for_run()
        return pipeline

    assert asyncio.run(_run()).calls == 2


def test_run_level_failure_returns_to_idle():
    async def _run():
        pipeline = GatedPipeline(error=DataSourceError("database unreachable"))
        pipeline.gate = asyncio.Event()
        pipeline.gate.set()
        scheduler = DigestScheduler(pipeline, WEEKLY)
        scheduler.trigger()
        await scheduler.wait_for_run()
        return scheduler

    scheduler = asyncio.run(_run())
    assert scheduler.state is SchedulerState.IDLE
    assert scheduler.last_error == "database unreachable"
    assert scheduler.last_outcome is None


def test_request_cancel_reaches_pipeline():
    async def _run():
        pipeline = GatedPipeline(wait_for_cancel=True)
        scheduler = DigestScheduler(pipeline, WEEKLY)
        assert scheduler.request_cancel() is False
        scheduler.trigger()
        await asyncio.sleep(0)
        assert scheduler.request_cancel() is True
        await scheduler.wait_for_run()
        return scheduler, pipeline

    scheduler, pipeline = asyncio.run(_run())
    assert pipeline.cancel_events[0].is_set()
    assert scheduler.last_outcome.cancelled is True


def test_stop_cancels_active_run():
    async def _run():
        pipeline = GatedPipeline(wait_for_cancel=True)
        scheduler = DigestScheduler(pipeline, WEEKLY)
        scheduler.start()
        scheduler.trigger("manual")
        await asyncio.sleep(0)
        await scheduler.stop()
        return scheduler

    scheduler = asyncio.run(_run())
    assert scheduler.state is SchedulerState.IDLE
    assert scheduler.last_outcome.cancelled is True


def test_cadence_loop_fires_pipeline():
    async def _run():
        pipeline = GatedPipeline()
        pipeline.gate = asyncio.Event()
        pipeline.gate.set()
        scheduler = DigestScheduler(pipeline, CronExpression("* * * * * ?"))
        scheduler.start()
        for _ in range(40):
            if pipeline.calls:
                break
            await asyncio.sleep(0.1)
        await scheduler.stop()
        return pipeline

    assert asyncio.run(_run()).calls >= 1


def test_next_fire_time_uses_timezone():
    la = ZoneInfo("America/Los_Angeles")
    scheduler = DigestScheduler(GatedPipeline(), WEEKLY, tz=la, clock=lambda: REF)
    # REF is 02:00 Sunday in Los Angeles
    assert scheduler._calc_next_run() == datetime(2026, 10, 18, 9, 0, tzinfo=la)


def test_status():
    scheduler = DigestScheduler(GatedPipeline(), WEEKLY)
    status = scheduler.status()
    assert status["state"] == "idle"
    assert status["cadence"] == "0 0 9 ? * SUN"
    assert status["last_run"] is None
