"""
Migration: Add background_jobs table
Created: 2026-03-01

Persists background job state (status, progress, retry metadata).
"""


def up(conn):
    """Apply the migration."""
    conn.executescript("""
        -- Background jobs: one row per queued unit of work
        CREATE TABLE IF NOT EXISTS background_jobs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            type TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'queued',
            priority INTEGER DEFAULT 5,
            progress INTEGER DEFAULT 0,
            current_step TEXT,
            input TEXT,
            result TEXT,
            error TEXT,
            metadata TEXT,
            created_at TEXT NOT NULL,
            started_at TEXT,
            completed_at TEXT,
            updated_at TEXT NOT NULL,
            next_retry_at TEXT,
            retry_count INTEGER DEFAULT 0,
            max_retries INTEGER DEFAULT 3
        );

        CREATE INDEX IF NOT EXISTS idx_jobs_user ON background_jobs(user_id);
        CREATE INDEX IF NOT EXISTS idx_jobs_status ON background_jobs(status);
        CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON background_jobs(created_at);
    """)


def down(conn):
    """Rollback the migration."""
    conn.executescript("""
        DROP INDEX IF EXISTS idx_jobs_created_at;
        DROP INDEX IF EXISTS idx_jobs_status;
        DROP INDEX IF EXISTS idx_jobs_user;
        DROP TABLE IF EXISTS background_jobs;
    """)
