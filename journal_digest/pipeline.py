"""Digest pipeline — one run across all eligible users with per-user isolation.

Per run:
    1. Capture the reference instant once (shared cutoff for every user)
    2. Ask the data source for eligible users
    3. Per user: window entries, join text, analyze, notify, record outcome
    4. Produce and log the run summary

Per-user errors are recorded in the summary and never abort the run. Only a
DataSourceError is raised to the caller.
"""

import asyncio
import logging
import sqlite3
import uuid
from collections.abc import Callable, Iterable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

from journal_digest import database
from journal_digest.exceptions import AnalysisError, ConfigurationError, DataSourceError, NotifyError
from journal_digest.models import (
    JournalEntry,
    RunOutcome,
    Sentiment,
    SentimentResult,
    UserDigest,
    UserOutcome,
)
from journal_digest.notifier import Notifier
from journal_digest.sentiment import SentimentAnalyzer

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 7

SENTIMENT_MESSAGES: dict[Sentiment, str] = {
    Sentiment.HAPPY: "Your entries sound upbeat. Keep doing what works for you!",
    Sentiment.SAD: "Your entries sound a little low. Be kind to yourself this week.",
    Sentiment.ANGRY: "Your entries sound frustrated. A short break or a walk might help.",
    Sentiment.ANXIOUS: "Your entries sound stressed. Try to make some room to rest.",
    Sentiment.NEUTRAL: "Your entries sound balanced overall.",
}

_SENTINEL = object()


def window_entries(entries: Iterable[JournalEntry], reference_instant: datetime,
                   window_days: int = DEFAULT_WINDOW_DAYS) -> list[JournalEntry]:
    """Entries within ``[reference - window_days, reference]``, oldest first.

    Naive timestamps are treated as UTC.
    """
    reference = _as_aware(reference_instant)
    cutoff = reference - timedelta(days=window_days)
    in_window = [e for e in entries if cutoff <= _as_aware(e.created_at) <= reference]
    return sorted(in_window, key=lambda e: _as_aware(e.created_at))


def build_text(entries: Iterable[JournalEntry]) -> str:
    """Join entry contents with a single space, in the given order."""
    return " ".join(e.content for e in entries)


def compose_message(result: SentimentResult, entry_count: int,
                    window_days: int = DEFAULT_WINDOW_DAYS) -> tuple[str, str]:
    """Build the notification subject and body for one user's result."""
    subject = f"Sentiment for last {window_days} days"
    if entry_count == 0:
        body = (
            f"You didn't write any journal entries in the last {window_days} days, "
            f"so there is no mood to report ({result.label.value}). "
            "A few lines a day is enough to get a summary next week."
        )
        return subject, body

    noun = "entry" if entry_count == 1 else "entries"
    body = (
        f"Based on your {entry_count} journal {noun} from the last {window_days} days, "
        f"your overall sentiment was {result.label.value} (score {result.score:+.2f}).\n\n"
        f"{SENTIMENT_MESSAGES[result.label]}"
    )
    return subject, body


def _as_aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


def _crashed(digest: UserDigest, error: Exception) -> UserOutcome:
    return UserOutcome(
        user_id=digest.user.user_id, email=digest.user.email, success=False,
        reason=f"unexpected error: {error}",
    )


class DigestPipeline:
    """Runs the sentiment digest for every eligible user.

    Args:
        data_source: Object with ``eligible_users(reference_instant)``.
        analyzer: Sentiment analyzer used for each user's window text.
        notifier: Required notifier; a missing one is a configuration error.
        window_days: Length of the trailing window.
        analyze_timeout: Seconds allowed per analyzer call.
        notify_timeout: Seconds allowed per notifier call.
        max_concurrency: Users processed in parallel.
        db_path: When set, runs are written to the run log in this database.
        clock: Returns the current time; captured once per run.
    """

    def __init__(
        self,
        data_source,
        analyzer: SentimentAnalyzer,
        notifier: Notifier,
        window_days: int = DEFAULT_WINDOW_DAYS,
        analyze_timeout: float = 30.0,
        notify_timeout: float = 30.0,
        max_concurrency: int = 1,
        db_path: Path | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        if notifier is None:
            raise ConfigurationError("A notifier is required to build the digest pipeline.")
        if analyzer is None:
            raise ConfigurationError("A sentiment analyzer is required to build the digest pipeline.")
        if data_source is None:
            raise ConfigurationError("A user data source is required to build the digest pipeline.")
        if max_concurrency < 1:
            raise ConfigurationError("max_concurrency must be at least 1.")

        self.data_source = data_source
        self.analyzer = analyzer
        self.notifier = notifier
        self.window_days = window_days
        self.analyze_timeout = analyze_timeout
        self.notify_timeout = notify_timeout
        self.max_concurrency = max_concurrency
        self.db_path = db_path
        self._clock = clock or (lambda: datetime.now(UTC))

    async def run(self, cancel_event: asyncio.Event | None = None) -> RunOutcome:
        """Execute one run and return its summary.

        Raises:
            DataSourceError: If eligible users cannot be loaded. Users already
                processed before a mid-run data source failure stay in the
                logged run record.
        """
        cancel_event = cancel_event or asyncio.Event()
        reference_instant = self._clock()
        outcome = RunOutcome(run_id=uuid.uuid4().hex[:12], run_timestamp=reference_instant)
        logger.info("Digest run %s started (reference %s)", outcome.run_id, reference_instant.isoformat())
        await self._log_start(outcome)

        try:
            await self._process_all(outcome, reference_instant, cancel_event)
        except DataSourceError as e:
            outcome.error = str(e)
            logger.error("Digest run %s failed: %s", outcome.run_id, e)
            await self._log_finish(outcome)
            raise

        await self._log_finish(outcome)
        summary = outcome.summary()
        logger.info(
            "Digest run %s %s: %d users, %d succeeded, %d failed",
            outcome.run_id, summary["status"], summary["total_users"],
            summary["succeeded"], len(summary["failed"]),
        )
        for failure in outcome.failures:
            logger.warning("  user %s: %s", failure.user_id, failure.reason)
        return outcome

    async def _process_all(self, outcome: RunOutcome, reference_instant: datetime,
                           cancel_event: asyncio.Event) -> None:
        try:
            users = await asyncio.to_thread(self.data_source.eligible_users, reference_instant)
            iterator = iter(users)
        except DataSourceError:
            raise
        except Exception as e:
            raise DataSourceError(f"User data source unavailable: {e}") from e

        # Each user writes only its own slot; slots are merged in source order
        slots: list[UserOutcome | None] = []
        seen: set[int] = set()
        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks: list[asyncio.Task] = []

        async def _worker(index: int, digest: UserDigest) -> None:
            try:
                slots[index] = await self._process_user(digest, reference_instant)
            except Exception as e:
                logger.exception("Digest worker for user %s crashed", digest.user.user_id)
                slots[index] = _crashed(digest, e)
            finally:
                semaphore.release()

        try:
            while True:
                await semaphore.acquire()
                if cancel_event.is_set():
                    semaphore.release()
                    outcome.cancelled = True
                    logger.info("Digest run %s cancelled; no new users will be started", outcome.run_id)
                    break

                digest = await self._next_user(iterator)
                if digest is _SENTINEL:
                    semaphore.release()
                    break
                if digest.user.user_id in seen:
                    semaphore.release()
                    logger.warning("User %s returned twice in one run; skipping", digest.user.user_id)
                    continue
                seen.add(digest.user.user_id)

                slots.append(None)
                tasks.append(asyncio.create_task(_worker(len(slots) - 1, digest)))
        finally:
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            outcome.outcomes = [s for s in slots if s is not None]

    async def _next_user(self, iterator: Iterator[UserDigest]):
        try:
            return await asyncio.to_thread(next, iterator, _SENTINEL)
        except DataSourceError:
            raise
        except Exception as e:
            raise DataSourceError(f"User data source failed mid-run: {e}") from e

    async def _process_user(self, digest: UserDigest, reference_instant: datetime) -> UserOutcome:
        """Window, analyze and notify one user, returning the user's outcome."""
        user = digest.user
        entries: list[JournalEntry] = []

        def _failure(reason: str, sentiment: Sentiment | None = None) -> UserOutcome:
            logger.warning("Digest for user %s failed: %s", user.user_id, reason)
            return UserOutcome(
                user_id=user.user_id, email=user.email, success=False, reason=reason,
                sentiment=sentiment, entry_count=len(entries),
            )

        if digest.error:
            return _failure(f"invalid user data: {digest.error}")
        try:
            entries = window_entries(digest.entries, reference_instant, self.window_days)
            text = build_text(entries)
        except (TypeError, ValueError, AttributeError) as e:
            return _failure(f"invalid user data: {e}")

        try:
            result = await self._call_with_timeout(
                self.analyzer.analyze, text, timeout=self.analyze_timeout,
                error=AnalysisError, what="Sentiment analysis",
            )
        except AnalysisError as e:
            return _failure(f"analysis failed: {e}")
        except Exception as e:
            logger.exception("Unexpected analyzer error for user %s", user.user_id)
            return _failure(f"unexpected analysis error: {e}")

        subject, body = compose_message(result, len(entries), self.window_days)
        try:
            await self._call_with_timeout(
                self.notifier.notify, user.email, subject, body, timeout=self.notify_timeout,
                error=NotifyError, what="Notification",
            )
        except NotifyError as e:
            return _failure(f"notify failed: {e.reason}", result.label)
        except Exception as e:
            logger.exception("Unexpected notifier error for user %s", user.user_id)
            return _failure(f"unexpected notify error: {e}", result.label)

        logger.info("Digest sent to user %s (%s, %d entries)", user.user_id, result.label.value, len(entries))
        return UserOutcome(
            user_id=user.user_id, email=user.email, success=True,
            sentiment=result.label, entry_count=len(entries),
        )

    @staticmethod
    async def _call_with_timeout(func, *args, timeout: float, error: type, what: str):
        """Run a blocking call in a worker thread, converting a timeout into ``error``."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
        except TimeoutError as e:
            raise error(f"{what} timed out after {timeout:g}s") from e

    async def _log_start(self, outcome: RunOutcome) -> None:
        if self.db_path is None:
            return
        try:
            await asyncio.to_thread(database.start_run, outcome.run_id, outcome.run_timestamp, self.db_path)
        except sqlite3.Error as e:
            logger.error("Could not record start of run %s: %s", outcome.run_id, e)

    async def _log_finish(self, outcome: RunOutcome) -> None:
        if self.db_path is None:
            return
        try:
            await asyncio.to_thread(database.finish_run, outcome, self.db_path)
        except sqlite3.Error as e:
            logger.error("Could not record run %s: %s", outcome.run_id, e)
