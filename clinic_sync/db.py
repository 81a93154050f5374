"""SQLite database for the auth token and small pieces of sidecar state.

Messages are deliberately not stored here: the store owns them and every
conversation view rebuilds its copy from scratch.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from . import config

log = logging.getLogger(__name__)

# Every table is a plain key/value namespace.
TABLES = ("state", "auth")

SCHEMA = "\n".join(
    f"CREATE TABLE IF NOT EXISTS {table} (key TEXT PRIMARY KEY, value TEXT NOT NULL);"
    for table in TABLES
)


class Database:
    """Key/value namespaces in one SQLite file: ``auth`` and ``state``."""

    def __init__(self, db_path: str | None = None):
        path = db_path or config.DB_PATH
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.executescript(SCHEMA)
        log.info("Database initialised at %s", path)

    def close(self) -> None:
        self.conn.close()

    def get(self, table: str, key: str) -> str | None:
        row = self.conn.execute(
            f"SELECT value FROM {_table(table)} WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def put(self, table: str, **values: str) -> None:
        """Upsert several keys of ``table`` in one transaction."""
        with self.conn:
            self.conn.executemany(
                f"INSERT OR REPLACE INTO {_table(table)} (key, value) VALUES (?, ?)",
                values.items(),
            )

    def clear(self, table: str) -> None:
        with self.conn:
            self.conn.execute(f"DELETE FROM {_table(table)}")

    # -- sidecar state --

    @property
    def last_poll_at(self) -> str | None:
        return self.get("state", "last_poll_at")

    def record_poll(self, at: datetime) -> None:
        self.put("state", last_poll_at=at.isoformat())


def _table(name: str) -> str:
    if name not in TABLES:
        raise ValueError(f"Unknown table: {name}")
    return name
