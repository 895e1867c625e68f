"""Cadence-driven scheduler for digest runs.

Two states: IDLE and RUNNING. A trigger while RUNNING is dropped, so an
overrunning run never causes a backlog of queued runs.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, tzinfo
from enum import StrEnum

from journal_digest.cron import CronExpression
from journal_digest.exceptions import DataSourceError
from journal_digest.models import RunOutcome
from journal_digest.pipeline import DigestPipeline

logger = logging.getLogger(__name__)


class SchedulerState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"


class DigestScheduler:
    """Fires the digest pipeline on a cron cadence, one run at a time."""

    def __init__(
        self,
        pipeline: DigestPipeline,
        cron: CronExpression,
        tz: tzinfo = UTC,
        clock: Callable[[], datetime] | None = None,
    ):
        self.pipeline = pipeline
        self.cron = cron
        self.tz = tz
        self._clock = clock or (lambda: datetime.now(UTC))
        self._state = SchedulerState.IDLE
        self._run_task: asyncio.Task | None = None
        self._loop_task: asyncio.Task | None = None
        self._cancel_event: asyncio.Event | None = None

        self.next_fire_time: datetime | None = None
        self.last_outcome: RunOutcome | None = None
        self.last_error: str | None = None
        self.dropped_triggers = 0

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    def trigger(self, reason: str = "cadence") -> bool:
        """Start a run unless one is in progress.

        Must be called from the event loop. The state flips to RUNNING before
        returning, so two triggers in the same tick cannot both start a run.

        Returns:
            True if a run was started, False if the trigger was dropped.
        """
        if self._state is SchedulerState.RUNNING:
            self.dropped_triggers += 1
            logger.warning("Digest run already in progress, dropping %s trigger.", reason)
            return False

        self._state = SchedulerState.RUNNING
        self._cancel_event = asyncio.Event()
        logger.info("Scheduler: starting digest run (%s trigger).", reason)
        self._run_task = asyncio.create_task(self._execute(self._cancel_event))
        return True

    async def _execute(self, cancel_event: asyncio.Event) -> None:
        try:
            self.last_outcome = await self.pipeline.run(cancel_event)
            self.last_error = None
        except DataSourceError as e:
            # Run-level failure: reported, retried only by the next cadence trigger
            self.last_error = str(e)
            logger.error("Digest run could not complete: %s", e)
        except Exception as e:
            self.last_error = f"Unexpected error: {e}"
            logger.exception("Digest run crashed")
        finally:
            self._state = SchedulerState.IDLE
            self._cancel_event = None

    def request_cancel(self) -> bool:
        """Ask the active run to stop starting new users.

        Returns:
            True if a run was in progress.
        """
        if self._cancel_event is None:
            return False
        logger.info("Scheduler: cancellation requested for the active run.")
        self._cancel_event.set()
        return True

    async def wait_for_run(self) -> None:
        """Wait until the active run (if any) has finished."""
        if self._run_task is not None:
            await asyncio.shield(self._run_task)

    def _calc_next_run(self) -> datetime | None:
        return self.cron.next_fire_time(self._clock(), tz=self.tz)

    async def run_forever(self) -> None:
        """Sleep until each fire time of the cadence and trigger a run."""
        while True:
            self.next_fire_time = self._calc_next_run()
            if self.next_fire_time is None:
                logger.warning("Scheduler: cadence %s has no future fire times; stopping.", self.cron.expression)
                return
            wait_seconds = (self.next_fire_time - self._clock()).total_seconds()
            logger.info(
                "Scheduler: next digest run at %s (in %.0f minutes)",
                self.next_fire_time.isoformat(), wait_seconds / 60,
            )
            await asyncio.sleep(max(wait_seconds, 0))
            self.trigger("cadence")
            # Never fire twice for the same second
            await asyncio.sleep(1)

    def start(self) -> None:
        """Start the background cadence loop."""
        if self._loop_task is None or self._loop_task.done():
            self.next_fire_time = self._calc_next_run()
            self._loop_task = asyncio.create_task(self.run_forever())
            logger.info("Background scheduler started (%s).", self.cron.expression)

    async def stop(self) -> None:
        """Stop the cadence loop, cancel the active run and wait for it to wind down."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        self.request_cancel()
        await self.wait_for_run()
        logger.info("Background scheduler stopped.")

    def status(self) -> dict:
        return {
            "state": self._state.value,
            "cadence": self.cron.expression,
            "next_fire_time": self.next_fire_time.isoformat() if self.next_fire_time else None,
            "last_run": self.last_outcome.summary() if self.last_outcome else None,
            "last_error": self.last_error,
            "dropped_triggers": self.dropped_triggers,
        }
