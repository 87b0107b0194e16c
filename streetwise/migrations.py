"""
Database Migration System

Applies the timestamped migration files under db/migrations and records
them in a tracking table. Each file defines up(conn) and optionally
down(conn).
"""

import importlib.util
import logging
import re
import sqlite3
from pathlib import Path
from typing import Optional


MIGRATIONS_DIR = Path(__file__).parent.parent / "db" / "migrations"
MIGRATIONS_TABLE = "_migrations"
MIGRATION_NAME = re.compile(r"^\d{14}_\w+\.py$")

logger = logging.getLogger(__name__)


class MigrationError(Exception):
    """Migration-related error."""
    pass


class Migrator:
    """Database migration manager."""

    def __init__(self, db_path: str = "db/streetwise.db", migrations_dir: Path = MIGRATIONS_DIR):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.migrations_dir = Path(migrations_dir)
        self.conn: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        """Get database connection."""
        if self.conn is None:
            self.conn = sqlite3.connect(self.db_path)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")
        return self.conn

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def _ensure_table(self):
        conn = self.connect()
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT UNIQUE NOT NULL,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.commit()

    def applied(self) -> list[str]:
        """Names of applied migrations, oldest first."""
        self._ensure_table()
        rows = self.connect().execute(
            f"SELECT name FROM {MIGRATIONS_TABLE} ORDER BY id"
        ).fetchall()
        return [row["name"] for row in rows]

    def available(self) -> list[str]:
        """Names of all migration files, sorted by timestamp."""
        if not self.migrations_dir.exists():
            return []
        return sorted(
            f.stem for f in self.migrations_dir.iterdir()
            if f.is_file() and MIGRATION_NAME.match(f.name)
        )

    def pending(self) -> list[str]:
        """Names of migrations not yet applied."""
        done = set(self.applied())
        return [name for name in self.available() if name not in done]

    def _load(self, name: str):
        path = self.migrations_dir / f"{name}.py"
        if not path.exists():
            raise MigrationError(f"Migration file not found: {path}")

        spec = importlib.util.spec_from_file_location(name, path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)

        if not hasattr(module, "up"):
            raise MigrationError(f"Migration {name} missing 'up' function")
        return module

    def _run(self, name: str, direction: str):
        func = getattr(self._load(name), direction, None)
        if func is None:
            raise MigrationError(f"Migration {name} does not support '{direction}'")

        conn = self.connect()
        try:
            func(conn)
            conn.commit()
        except Exception as e:
            conn.rollback()
            raise MigrationError(f"Migration {name} failed: {e}") from e

    def migrate(self, steps: Optional[int] = None) -> list[str]:
        """Apply pending migrations (all of them unless steps is given)."""
        todo = self.pending()
        if steps is not None:
            todo = todo[:steps]

        conn = self.connect()
        for name in todo:
            self._run(name, "up")
            conn.execute(f"INSERT INTO {MIGRATIONS_TABLE} (name) VALUES (?)", (name,))
            conn.commit()
            logger.info("Applied migration %s", name)
        return todo

    def rollback(self, steps: int = 1) -> list[str]:
        """Roll back the most recent migrations, newest first."""
        undo = list(reversed(self.applied()[-steps:])) if steps > 0 else []

        conn = self.connect()
        for name in undo:
            self._run(name, "down")
            conn.execute(f"DELETE FROM {MIGRATIONS_TABLE} WHERE name = ?", (name,))
            conn.commit()
            logger.info("Rolled back migration %s", name)
        return undo

    def status(self) -> dict:
        """Applied and pending migrations."""
        applied = self.applied()
        pending = self.pending()
        return {
            "applied": applied,
            "pending": pending,
            "total_applied": len(applied),
            "total_pending": len(pending),
        }
