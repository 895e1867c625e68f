"""Data models for the sentiment digest pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class Sentiment(StrEnum):
    """Sentiment labels reported to users."""

    HAPPY = "HAPPY"
    SAD = "SAD"
    ANGRY = "ANGRY"
    ANXIOUS = "ANXIOUS"
    NEUTRAL = "NEUTRAL"


class RunStatus(StrEnum):
    """Final status of a digest run as stored in the run log."""

    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class User:
    """A journal user as seen by the digest pipeline."""

    user_id: int
    username: str
    email: str


@dataclass(frozen=True)
class JournalEntry:
    """A single journal entry. Read-only from the pipeline's perspective."""

    created_at: datetime
    content: str
    title: str = ""


@dataclass(frozen=True)
class UserDigest:
    """A user together with all of their entries (not yet time-windowed).

    ``error`` is set when the user's stored entries could not be read; the
    pipeline records it as that user's failure.
    """

    user: User
    entries: tuple[JournalEntry, ...] = ()
    error: str = ""


@dataclass(frozen=True)
class SentimentResult:
    """Sentiment of one user's window text."""

    label: Sentiment
    score: float  # -1.0 (negative) .. 1.0 (positive)
    matched_terms: int = 0

    @classmethod
    def neutral(cls) -> "SentimentResult":
        return cls(label=Sentiment.NEUTRAL, score=0.0, matched_terms=0)


@dataclass(frozen=True)
class UserOutcome:
    """Result of processing a single user within a run."""

    user_id: int
    email: str
    success: bool
    reason: str = ""
    sentiment: Sentiment | None = None
    entry_count: int = 0

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "success": self.success,
            "reason": self.reason,
            "sentiment": self.sentiment.value if self.sentiment else None,
            "entry_count": self.entry_count,
        }


@dataclass
class RunOutcome:
    """Summary of one digest run."""

    run_id: str
    run_timestamp: datetime
    outcomes: list[UserOutcome] = field(default_factory=list)
    cancelled: bool = False
    error: str = ""

    @property
    def total_users(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failures(self) -> list[UserOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def status(self) -> RunStatus:
        if self.error:
            return RunStatus.FAILED
        if self.cancelled:
            return RunStatus.CANCELLED
        if self.failures:
            return RunStatus.PARTIAL
        return RunStatus.SUCCESS

    def summary(self) -> dict:
        """Observability view of the run: counts plus the failed users with reasons."""
        return {
            "run_id": self.run_id,
            "run_timestamp": self.run_timestamp.isoformat(),
            "total_users": self.total_users,
            "succeeded": self.succeeded,
            "failed": [{"user_id": o.user_id, "reason": o.reason} for o in self.failures],
            "cancelled": self.cancelled,
            "status": self.status.value,
            "error": self.error,
        }
