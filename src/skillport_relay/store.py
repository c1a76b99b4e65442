"""Durable key/value state for the relay.

Backed by SQLite. Values are JSON-encoded; each key is written and read
independently, there are no cross-key transactions.
"""

import contextlib
import json
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterable, Mapping

from .models import PersistenceError

logger = logging.getLogger(__name__)

# Durable key names. Renaming any of these breaks restart continuity.
USER_ID_KEY = "userId"
ENABLED_KEY = "extensionEnabled"
STATS_KEY = "userStats"
HISTORY_KEY = "submissions"
FLAGS_KEY = "flags"

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class PersistentState:
    """Write-through key/value store.

    ``get`` reports absent keys as None; ``set`` returns only after the
    write is committed. Backend failures raise PersistenceError.
    """

    def __init__(self, db_path: Path | str):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # The event loop may run on another thread than the one that opened the store
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Initialize database schema."""
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def _rollback(self) -> None:
        # Closed connections cannot roll back
        with contextlib.suppress(sqlite3.Error):
            self.conn.rollback()

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        """Read several keys.

        Args:
            keys: Keys to read

        Returns:
            Mapping with every requested key; absent or undecodable keys map to None
        """
        keys = list(keys)
        if not keys:
            return {}

        placeholders = ", ".join("?" for _ in keys)
        try:
            rows = self.conn.execute(
                f"SELECT key, value FROM kv WHERE key IN ({placeholders})",
                keys,
            ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read {keys}: {e}") from e

        found = {}
        for row in rows:
            try:
                found[row["key"]] = json.loads(row["value"])
            except ValueError as e:
                logger.warning("Ignoring undecodable value for %r: %s", row["key"], e)
        return {key: found.get(key) for key in keys}

    async def set(self, entries: Mapping[str, Any]) -> None:
        """Write several keys and commit.

        Args:
            entries: Key to JSON-serializable value
        """
        if not entries:
            return

        now = datetime.now(UTC).isoformat()
        try:
            self.conn.executemany(
                """
                INSERT INTO kv (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                [(key, json.dumps(value), now) for key, value in entries.items()],
            )
            self.conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            self._rollback()
            raise PersistenceError(f"Failed to write {list(entries)}: {e}") from e

    async def delete(self, keys: Iterable[str]) -> None:
        """Remove keys; missing keys are ignored."""
        keys = list(keys)
        if not keys:
            return

        placeholders = ", ".join("?" for _ in keys)
        try:
            self.conn.execute(f"DELETE FROM kv WHERE key IN ({placeholders})", keys)
            self.conn.commit()
        except sqlite3.Error as e:
            self._rollback()
            raise PersistenceError(f"Failed to delete {keys}: {e}") from e
