"""
SQLite record of sync sweeps.

Only the driver's own bookkeeping lives here (when each sweep started and
what it did). Links and watermarks are stored on the two remote services.
"""

import sqlite3
from datetime import datetime
from pathlib import Path

from outlook_welkin_sync.dates import format_iso
from outlook_welkin_sync.dates import parse_iso
from outlook_welkin_sync.models import SyncStats


class RunHistory:
    """Manages the SQLite database of sweep runs."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn: sqlite3.Connection | None = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        """Initialize and connect to the run database."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row  # Enable column access by name
        self._init_schema()

    def _init_schema(self):
        """Create the sync_runs table if it doesn't exist."""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS sync_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                kind TEXT NOT NULL,
                strategy TEXT NOT NULL,
                started_at TEXT NOT NULL,
                finished_at TEXT,
                window_start TEXT,
                synced INTEGER NOT NULL DEFAULT 0,
                created INTEGER NOT NULL DEFAULT 0,
                skipped INTEGER NOT NULL DEFAULT 0,
                deleted INTEGER NOT NULL DEFAULT 0,
                errors INTEGER NOT NULL DEFAULT 0
            )
        """)
        self.conn.commit()

    def start_run(
        self, kind: str, strategy: str, started_at: datetime, window_start: datetime | None = None
    ) -> int:
        """Insert a run row and return its id."""
        cursor = self.conn.execute(
            "INSERT INTO sync_runs (kind, strategy, started_at, window_start) VALUES (?, ?, ?, ?)",
            (kind, strategy, format_iso(started_at), format_iso(window_start)),
        )
        self.conn.commit()
        return cursor.lastrowid

    def finish_run(self, run_id: int, finished_at: datetime, stats: SyncStats):
        self.conn.execute(
            "UPDATE sync_runs "
            "SET finished_at = ?, synced = ?, created = ?, skipped = ?, deleted = ?, errors = ? "
            "WHERE id = ?",
            (
                format_iso(finished_at),
                stats.synced,
                stats.created,
                stats.skipped,
                stats.deleted,
                stats.errors,
                run_id,
            ),
        )
        self.conn.commit()

    def last_run_started_at(self, kind: str = "sync") -> datetime | None:
        """Start time of the most recent finished run of ``kind``."""
        row = self.conn.execute(
            "SELECT started_at FROM sync_runs "
            "WHERE kind = ? AND finished_at IS NOT NULL "
            "ORDER BY id DESC LIMIT 1",
            (kind,),
        ).fetchone()
        return parse_iso(row["started_at"]) if row else None

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None


def query_recent_runs(db_path: Path, limit: int = 10) -> list:
    """
    Return the most recent run rows, newest first.

    Returns an empty list when the DB file does not exist or has no
    sync_runs table yet.
    """
    if not db_path.exists():
        return []
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        tables = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        if "sync_runs" not in tables:
            return []
        return conn.execute(
            "SELECT * FROM sync_runs ORDER BY id DESC LIMIT ?", (limit,)
        ).fetchall()
    finally:
        conn.close()
