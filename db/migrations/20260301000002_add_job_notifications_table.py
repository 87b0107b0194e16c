"""
Migration: Add job_notifications table
Created: 2026-03-01

Per-user notifications, optionally linked to a background job.
"""


def up(conn):
    """Apply the migration."""
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS job_notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            job_id INTEGER,
            type TEXT NOT NULL,
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

        CREATE INDEX IF NOT EXISTS idx_notifications_user ON job_notifications(user_id);
        CREATE INDEX IF NOT EXISTS idx_notifications_unread ON job_notifications(user_id, is_read);
    """)


def down(conn):
    """Rollback the migration."""
    conn.executescript("""
        DROP INDEX IF EXISTS idx_notifications_unread;
        DROP INDEX IF EXISTS idx_notifications_user;
        DROP TABLE IF EXISTS job_notifications;
    """)
