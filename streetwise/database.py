"""
StreetWise Database Module

SQLite schema and row-level operations for background jobs and job
notifications. State-machine rules live in streetwise.jobs.manager; this
module only knows how to read and write rows.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional


SCHEMA = """
-- Background jobs: one row per queued unit of work (crawl, analysis, ...)
CREATE TABLE IF NOT EXISTS background_jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,                 -- owning user, never changes
    type TEXT NOT NULL,                    -- website_crawl, performance_analysis, ...
    status TEXT NOT NULL DEFAULT 'queued', -- queued, running, completed, failed, cancelled
    priority INTEGER DEFAULT 5,            -- lower runs first
    progress INTEGER DEFAULT 0,            -- 0 to 100
    current_step TEXT,
    input TEXT,                            -- JSON: job parameters
    result TEXT,                           -- JSON: set on completion
    error TEXT,                            -- set on failure
    metadata TEXT,                         -- JSON: auxiliary worker data
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    updated_at TEXT NOT NULL,
    next_retry_at TEXT,
    retry_count INTEGER DEFAULT 0,
    max_retries INTEGER DEFAULT 3
);

-- Job notifications: user-facing messages, usually about a job transition
CREATE TABLE IF NOT EXISTS job_notifications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    job_id INTEGER,
    type TEXT NOT NULL,                    -- job_started, job_completed, job_failed, ...
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    is_read INTEGER DEFAULT 0,
    auto_dismiss INTEGER DEFAULT 0,
    action_url TEXT,
    action_text TEXT,
    created_at TEXT NOT NULL,
    read_at TEXT,
    dismiss_at TEXT,
    FOREIGN KEY (job_id) REFERENCES background_jobs(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_jobs_user ON background_jobs(user_id);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON background_jobs(status);
CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON background_jobs(created_at);
CREATE INDEX IF NOT EXISTS idx_notifications_user ON job_notifications(user_id);
CREATE INDEX IF NOT EXISTS idx_notifications_unread ON job_notifications(user_id, is_read);
"""

JSON_COLUMNS = ("input", "result", "metadata")


def utcnow() -> str:
    """Current UTC time as a sortable ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _dump(value: Any) -> Optional[str]:
    return json.dumps(value) if value is not None else None


def _job_from_row(row: sqlite3.Row) -> dict:
    job = dict(row)
    for column in JSON_COLUMNS:
        if job.get(column):
            job[column] = json.loads(job[column])
    return job


def _notification_from_row(row: sqlite3.Row) -> dict:
    notification = dict(row)
    notification["is_read"] = bool(notification["is_read"])
    notification["auto_dismiss"] = bool(notification["auto_dismiss"])
    return notification


class Database:
    """SQLite database wrapper for StreetWise background jobs."""

    def __init__(self, db_path: str = "db/streetwise.db", check_same_thread: bool = True):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.check_same_thread = check_same_thread
        self.conn: Optional[sqlite3.Connection] = None
        self._tx_depth = 0

    def connect(self) -> sqlite3.Connection:
        """Connect to the database."""
        if self.conn is None:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=self.check_same_thread)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")
            self.conn.execute("PRAGMA journal_mode = WAL")
        return self.conn

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def init_schema(self):
        """Initialize the database schema."""
        conn = self.connect()
        conn.executescript(SCHEMA)
        conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Group several writes into one commit.

        Write methods called inside the block skip their own commit; the
        outermost block commits on success and rolls back on any error.
        """
        conn = self.connect()
        self._tx_depth += 1
        try:
            yield conn
        except Exception:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                conn.rollback()
            raise
        self._tx_depth -= 1
        if self._tx_depth == 0:
            conn.commit()

    def _commit(self):
        if self._tx_depth == 0:
            self.connect().commit()

    # --- Job Operations ---

    def create_job(self, user_id: str, job_type: str, input: dict = None,
                   priority: int = 5, max_retries: int = 3) -> int:
        """Insert a queued job and return its ID."""
        conn = self.connect()
        now = utcnow()
        cursor = conn.execute(
            """INSERT INTO background_jobs
                   (user_id, type, status, priority, progress, input, max_retries,
                    created_at, updated_at)
               VALUES (?, ?, 'queued', ?, 0, ?, ?, ?, ?)
               RETURNING id""",
            (user_id, job_type, priority, _dump(input), max_retries, now, now)
        )
        job_id = cursor.fetchone()[0]
        self._commit()
        return job_id

    def get_job(self, job_id: int) -> Optional[dict]:
        """Get a job by ID."""
        conn = self.connect()
        row = conn.execute(
            "SELECT * FROM background_jobs WHERE id = ?", (job_id,)
        ).fetchone()
        return _job_from_row(row) if row else None

    def list_jobs(self, user_id: str = None, status: str = None,
                  limit: Optional[int] = 20, offset: int = 0) -> list[dict]:
        """List jobs newest first, optionally filtered by owner and status."""
        conn = self.connect()
        clauses, params = [], []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        query = f"SELECT * FROM background_jobs {where} ORDER BY created_at DESC, id DESC"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        rows = conn.execute(query, params).fetchall()
        return [_job_from_row(row) for row in rows]

    def count_jobs(self, user_id: str = None, status: str = None) -> int:
        """Count jobs, optionally filtered by owner and status."""
        conn = self.connect()
        clauses, params = [], []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return conn.execute(
            f"SELECT COUNT(*) FROM background_jobs {where}", params
        ).fetchone()[0]

    def update_job(self, job_id: int, fields: dict, statuses: tuple = None,
                   user_id: str = None, condition: str = None,
                   condition_params: tuple = ()) -> bool:
        """Conditionally update a job row.

        The update only applies when the row's status is one of `statuses`,
        it belongs to `user_id` and `condition` holds. Returns True when a row
        changed, so callers can treat False as a lost race.
        """
        conn = self.connect()
        values = dict(fields)
        for column in JSON_COLUMNS:
            if column in values:
                values[column] = _dump(values[column])
        values["updated_at"] = utcnow()

        assignments = ", ".join(f"{column} = ?" for column in values)
        clauses = ["id = ?"]
        params = list(values.values()) + [job_id]
        if statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(statuses)
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if condition:
            clauses.append(condition)
            params.extend(condition_params)

        cursor = conn.execute(
            f"UPDATE background_jobs SET {assignments} WHERE {' AND '.join(clauses)}",
            params
        )
        self._commit()
        return cursor.rowcount == 1

    def update_job_progress(self, job_id: int, progress: int,
                            current_step: str = None, metadata: dict = None) -> bool:
        """Record progress for a running job; progress never goes backwards."""
        conn = self.connect()
        cursor = conn.execute(
            """UPDATE background_jobs SET
                   progress = MAX(COALESCE(progress, 0), ?),
                   current_step = COALESCE(?, current_step),
                   metadata = COALESCE(?, metadata),
                   updated_at = ?
               WHERE id = ? AND status = 'running'""",
            (progress, current_step, _dump(metadata), utcnow(), job_id)
        )
        self._commit()
        return cursor.rowcount == 1

    def claim_next_job(self, max_running: Optional[int] = None) -> Optional[dict]:
        """Atomically move the next runnable queued job to running.

        Jobs are taken by priority (lowest first), then age. A job with a
        future next_retry_at is skipped until it is due.
        """
        conn = self.connect()
        now = utcnow()
        conn.execute("BEGIN IMMEDIATE")
        try:
            if max_running is not None:
                running = conn.execute(
                    "SELECT COUNT(*) FROM background_jobs WHERE status = 'running'"
                ).fetchone()[0]
                if running >= max_running:
                    conn.commit()
                    return None

            row = conn.execute(
                """SELECT id FROM background_jobs
                   WHERE status = 'queued'
                     AND (next_retry_at IS NULL OR next_retry_at <= ?)
                   ORDER BY priority ASC, created_at ASC, id ASC
                   LIMIT 1""",
                (now,)
            ).fetchone()
            if row is None:
                conn.commit()
                return None

            conn.execute(
                """UPDATE background_jobs SET
                       status = 'running', started_at = ?, updated_at = ?, next_retry_at = NULL
                   WHERE id = ? AND status = 'queued'""",
                (now, now, row["id"])
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        return self.get_job(row["id"])

    def list_stale_jobs(self, cutoff: str) -> list[dict]:
        """Get running jobs whose last update is older than cutoff."""
        conn = self.connect()
        rows = conn.execute(
            """SELECT * FROM background_jobs
               WHERE status = 'running' AND updated_at < ?
               ORDER BY updated_at ASC""",
            (cutoff,)
        ).fetchall()
        return [_job_from_row(row) for row in rows]

    def delete_finished_jobs(self, cutoff: str) -> int:
        """Delete completed and failed jobs that finished before cutoff."""
        conn = self.connect()
        cursor = conn.execute(
            """DELETE FROM background_jobs
               WHERE status IN ('completed', 'failed')
                 AND completed_at IS NOT NULL AND completed_at < ?""",
            (cutoff,)
        )
        self._commit()
        return cursor.rowcount

    # --- Notification Operations ---

    def create_notification(self, user_id: str, type: str, title: str, message: str,
                            job_id: int = None, auto_dismiss: bool = False,
                            action_url: str = None, action_text: str = None,
                            dismiss_at: str = None) -> int:
        """Insert an unread notification and return its ID."""
        conn = self.connect()
        cursor = conn.execute(
            """INSERT INTO job_notifications
                   (user_id, job_id, type, title, message, is_read, auto_dismiss,
                    action_url, action_text, created_at, dismiss_at)
               VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?, ?, ?)
               RETURNING id""",
            (user_id, job_id, type, title, message, 1 if auto_dismiss else 0,
             action_url, action_text, utcnow(), dismiss_at)
        )
        notification_id = cursor.fetchone()[0]
        self._commit()
        return notification_id

    def get_notification(self, notification_id: int) -> Optional[dict]:
        """Get a notification by ID."""
        conn = self.connect()
        row = conn.execute(
            "SELECT * FROM job_notifications WHERE id = ?", (notification_id,)
        ).fetchone()
        return _notification_from_row(row) if row else None

    def list_notifications(self, user_id: str, unread_only: bool = False,
                           limit: int = 20, offset: int = 0) -> list[dict]:
        """List a user's notifications newest first."""
        conn = self.connect()
        unread_clause = "AND is_read = 0" if unread_only else ""
        rows = conn.execute(
            f"""SELECT * FROM job_notifications
                WHERE user_id = ? {unread_clause}
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?""",
            (user_id, limit, offset)
        ).fetchall()
        return [_notification_from_row(row) for row in rows]

    def count_notifications(self, user_id: str, unread_only: bool = False) -> int:
        """Count a user's notifications."""
        conn = self.connect()
        unread_clause = "AND is_read = 0" if unread_only else ""
        return conn.execute(
            f"SELECT COUNT(*) FROM job_notifications WHERE user_id = ? {unread_clause}",
            (user_id,)
        ).fetchone()[0]

    def set_notification_read(self, notification_id: int, user_id: str, is_read: bool) -> bool:
        """Flip a notification's read flag.

        read_at is stamped on the transition to read, kept on repeated reads
        and cleared when the notification is marked unread.
        """
        conn = self.connect()
        flag = 1 if is_read else 0
        cursor = conn.execute(
            """UPDATE job_notifications
               SET is_read = ?,
                   read_at = CASE WHEN ? = 1 THEN COALESCE(read_at, ?) ELSE NULL END
               WHERE id = ? AND user_id = ?""",
            (flag, flag, utcnow(), notification_id, user_id)
        )
        self._commit()
        return cursor.rowcount == 1

    def mark_all_notifications_read(self, user_id: str) -> int:
        """Mark every unread notification of a user as read."""
        conn = self.connect()
        cursor = conn.execute(
            """UPDATE job_notifications SET is_read = 1, read_at = ?
               WHERE user_id = ? AND is_read = 0""",
            (utcnow(), user_id)
        )
        self._commit()
        return cursor.rowcount

    def delete_notification(self, notification_id: int, user_id: str) -> bool:
        """Delete a notification owned by user_id."""
        conn = self.connect()
        cursor = conn.execute(
            "DELETE FROM job_notifications WHERE id = ? AND user_id = ?",
            (notification_id, user_id)
        )
        self._commit()
        return cursor.rowcount == 1

    def delete_dismissed_notifications(self, now: str = None) -> int:
        """Delete auto-dismiss notifications whose dismiss time has passed."""
        conn = self.connect()
        cursor = conn.execute(
            """DELETE FROM job_notifications
               WHERE auto_dismiss = 1 AND dismiss_at IS NOT NULL AND dismiss_at < ?""",
            (now or utcnow(),)
        )
        self._commit()
        return cursor.rowcount
