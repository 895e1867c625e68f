"""SQLite database for journal users, their entries, and digest run logs."""

import json
import logging
import re
import sqlite3
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

from journal_digest.exceptions import DataSourceError
from journal_digest.models import JournalEntry, RunOutcome, RunStatus, User, UserDigest

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("output/journal.db")

EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")


def _get_connection(db_path: Path | None = None) -> sqlite3.Connection:
    """Get a database connection, creating the DB and tables if needed."""
    path = db_path or DEFAULT_DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    _create_tables(conn)
    return conn


def _create_tables(conn: sqlite3.Connection) -> None:
    """Create tables if they don't exist."""
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT UNIQUE NOT NULL,
            email TEXT NOT NULL DEFAULT '',
            sentiment_analysis INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS journal_entries (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            title TEXT NOT NULL DEFAULT '',
            content TEXT NOT NULL,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS digest_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id TEXT UNIQUE NOT NULL,
            run_timestamp TEXT NOT NULL,
            started_at TEXT NOT NULL,
            finished_at TEXT,
            status TEXT NOT NULL DEFAULT 'running',
            total_users INTEGER NOT NULL DEFAULT 0,
            succeeded INTEGER NOT NULL DEFAULT 0,
            failed INTEGER NOT NULL DEFAULT 0,
            cancelled INTEGER NOT NULL DEFAULT 0,
            error_message TEXT NOT NULL DEFAULT '',
            outcomes TEXT NOT NULL DEFAULT '[]'
        );

        CREATE INDEX IF NOT EXISTS idx_entries_user ON journal_entries(user_id, created_at);
        CREATE INDEX IF NOT EXISTS idx_runs_started ON digest_runs(started_at);
    """)
    conn.commit()


def _to_iso(moment: datetime) -> str:
    """Store timestamps as UTC ISO strings so they sort lexicographically."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat()


# --- Users ---

def create_user(username: str, email: str = "", sentiment_analysis: bool = False,
                db_path: Path | None = None) -> int:
    """Create a user and return its id. Raises ValueError if the username is taken."""
    conn = _get_connection(db_path)
    try:
        cursor = conn.execute(
            "INSERT INTO users (username, email, sentiment_analysis, created_at) VALUES (?, ?, ?, ?)",
            (username, email, int(sentiment_analysis), datetime.now(UTC).isoformat()),
        )
        conn.commit()
        logger.info("Created user %s", username)
        return cursor.lastrowid
    except sqlite3.IntegrityError as e:
        raise ValueError(f"User already exists: {username}") from e
    finally:
        conn.close()


def get_user_by_username(username: str, db_path: Path | None = None) -> dict | None:
    """Get a single user by username."""
    conn = _get_connection(db_path)
    try:
        row = conn.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def list_users(db_path: Path | None = None) -> list[dict]:
    """List all users ordered by id."""
    conn = _get_connection(db_path)
    try:
        rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [dict(r) for r in rows]
    finally:
        conn.close()


def set_sentiment_analysis(user_id: int, enabled: bool, db_path: Path | None = None) -> bool:
    """Opt a user in or out of the weekly sentiment digest."""
    conn = _get_connection(db_path)
    try:
        cursor = conn.execute(
            "UPDATE users SET sentiment_analysis = ? WHERE id = ?", (int(enabled), user_id)
        )
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()


def delete_user(username: str, db_path: Path | None = None) -> bool:
    """Delete a user together with all of their journal entries.

    Returns:
        True if the user existed, False otherwise.
    """
    conn = _get_connection(db_path)
    try:
        row = conn.execute("SELECT id FROM users WHERE username = ?", (username,)).fetchone()
        if not row:
            return False
        conn.execute("DELETE FROM journal_entries WHERE user_id = ?", (row["id"],))
        conn.execute("DELETE FROM users WHERE id = ?", (row["id"],))
        conn.commit()
        logger.info("Deleted user %s and their journal entries", username)
        return True
    finally:
        conn.close()


# --- Journal entries ---

def add_entry(user_id: int, content: str, title: str = "",
              created_at: datetime | None = None, db_path: Path | None = None) -> int:
    """Add a journal entry for a user and return its id."""
    conn = _get_connection(db_path)
    try:
        cursor = conn.execute(
            "INSERT INTO journal_entries (user_id, title, content, created_at) VALUES (?, ?, ?, ?)",
            (user_id, title, content, _to_iso(created_at or datetime.now(UTC))),
        )
        conn.commit()
        return cursor.lastrowid
    finally:
        conn.close()


def list_entries(user_id: int, db_path: Path | None = None) -> list[dict]:
    """List a user's entries, oldest first."""
    conn = _get_connection(db_path)
    try:
        rows = conn.execute(
            "SELECT * FROM journal_entries WHERE user_id = ? ORDER BY created_at, id",
            (user_id,),
        ).fetchall()
        return [dict(r) for r in rows]
    finally:
        conn.close()


def delete_entry(entry_id: int, user_id: int, db_path: Path | None = None) -> bool:
    """Delete one of a user's entries. Entries of other users are never touched."""
    conn = _get_connection(db_path)
    try:
        cursor = conn.execute(
            "DELETE FROM journal_entries WHERE id = ? AND user_id = ?", (entry_id, user_id)
        )
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()


# --- Digest data source ---

class SQLiteUserDataSource:
    """Eligible users for the sentiment digest, read from the journal database.

    A user is eligible when they opted in to sentiment analysis and have a
    syntactically valid email address. Entries are returned oldest first and
    are not time-windowed here.
    """

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path

    def eligible_users(self, reference_instant: datetime) -> Iterator[UserDigest]:
        """Return a fresh lazy iterator over eligible users and their entries.

        The user list is read eagerly so that a broken database fails the run
        before any user is processed.
        """
        try:
            conn = _get_connection(self.db_path)
            try:
                rows = conn.execute(
                    "SELECT id, username, email FROM users "
                    "WHERE sentiment_analysis = 1 AND email != '' ORDER BY id"
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise DataSourceError(f"Failed to load eligible users: {e}") from e

        users = [
            User(user_id=r["id"], username=r["username"], email=r["email"])
            for r in rows
            if EMAIL_RE.match(r["email"])
        ]
        logger.info("Found %d eligible users for run at %s", len(users), reference_instant.isoformat())
        return self._iter_digests(users)

    def _iter_digests(self, users: list[User]) -> Iterator[UserDigest]:
        # One connection per user: the iterator may be advanced from different threads
        for user in users:
            try:
                conn = _get_connection(self.db_path)
                try:
                    rows = conn.execute(
                        "SELECT title, content, created_at FROM journal_entries "
                        "WHERE user_id = ? ORDER BY created_at, id",
                        (user.user_id,),
                    ).fetchall()
                finally:
                    conn.close()
            except sqlite3.Error as e:
                raise DataSourceError(f"Failed to load entries for user {user.user_id}: {e}") from e

            try:
                entries = tuple(_row_to_entry(r) for r in rows)
            except (TypeError, ValueError) as e:
                logger.warning("Unreadable journal entry for user %s: %s", user.user_id, e)
                yield UserDigest(user=user, error=f"malformed journal entry: {e}")
                continue
            yield UserDigest(user=user, entries=entries)


def _row_to_entry(row: sqlite3.Row) -> JournalEntry:
    if not isinstance(row["content"], str):
        raise TypeError(f"content is {type(row['content']).__name__}, expected text")
    return JournalEntry(
        created_at=datetime.fromisoformat(row["created_at"]),
        content=row["content"],
        title=row["title"] or "",
    )


# --- Digest run logging ---

def start_run(run_id: str, run_timestamp: datetime, db_path: Path | None = None) -> None:
    """Record the start of a digest run."""
    conn = _get_connection(db_path)
    try:
        conn.execute(
            "INSERT INTO digest_runs (run_id, run_timestamp, started_at, status) "
            "VALUES (?, ?, ?, ?)",
            (run_id, _to_iso(run_timestamp), datetime.now(UTC).isoformat(), RunStatus.RUNNING.value),
        )
        conn.commit()
    finally:
        conn.close()


def finish_run(outcome: RunOutcome, db_path: Path | None = None) -> None:
    """Store the final summary and per-user outcomes of a run."""
    conn = _get_connection(db_path)
    try:
        conn.execute(
            "UPDATE digest_runs SET finished_at = ?, status = ?, total_users = ?, "
            "succeeded = ?, failed = ?, cancelled = ?, error_message = ?, outcomes = ? "
            "WHERE run_id = ?",
            (
                datetime.now(UTC).isoformat(),
                outcome.status.value,
                outcome.total_users,
                outcome.succeeded,
                len(outcome.failures),
                int(outcome.cancelled),
                outcome.error,
                json.dumps([o.to_dict() for o in outcome.outcomes]),
                outcome.run_id,
            ),
        )
        conn.commit()
    finally:
        conn.close()


def _run_row_to_dict(row: sqlite3.Row) -> dict:
    d = dict(row)
    d["outcomes"] = json.loads(d["outcomes"])
    d["cancelled"] = bool(d["cancelled"])
    return d


def list_runs(limit: int = 20, db_path: Path | None = None) -> list[dict]:
    """List recent digest runs (most recent first)."""
    conn = _get_connection(db_path)
    try:
        rows = conn.execute(
            "SELECT * FROM digest_runs ORDER BY started_at DESC, id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [_run_row_to_dict(r) for r in rows]
    finally:
        conn.close()


def get_run(run_id: str, db_path: Path | None = None) -> dict | None:
    """Get a single digest run by run_id."""
    conn = _get_connection(db_path)
    try:
        row = conn.execute("SELECT * FROM digest_runs WHERE run_id = ?", (run_id,)).fetchone()
        return _run_row_to_dict(row) if row else None
    finally:
        conn.close()
