"""SQLite backed key-value storage for collection snapshots."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from threading import Lock
from typing import Any, Dict

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT
)
"""


class SQLiteManager:
    """One cached connection per snapshot database file.

    Paths are resolved before use, so ``data/state.db`` and its absolute form
    share a connection. ``discard`` closes that connection and deletes the file.
    """

    def __init__(self) -> None:
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        key = path.resolve()
        with self._lock:
            conn = self._connections.get(key)
            if conn is None:
                key.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(key, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                with conn:
                    conn.execute(_SCHEMA)
                self._connections[key] = conn
            return conn

    def discard(self, path: Path) -> None:
        key = path.resolve()
        with self._lock:
            conn = self._connections.pop(key, None)
        if conn is not None:
            conn.close()
        key.unlink(missing_ok=True)

    def close_all(self) -> None:
        with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()
        for conn in connections:
            conn.close()


class SnapshotStore:
    """Whole-document snapshots addressed by a single key.

    ``load`` returns ``None`` when nothing was saved yet; callers treat that as
    an empty collection rather than an error.
    """

    def __init__(self, manager: SQLiteManager, db_path: Path, key: str = "collection") -> None:
        self.manager = manager
        self.db_path = db_path
        self.key = key

    def load(self) -> dict[str, Any] | None:
        raw = self.load_raw()
        if raw is None:
            return None
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError(f"Snapshot {self.key} is not a mapping")
        return payload

    def load_raw(self) -> str | None:
        conn = self.manager.connect(self.db_path)
        row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (self.key,)).fetchone()
        return None if row is None else row["value"]

    def save(self, payload: dict[str, Any]) -> int:
        """Write ``payload`` and return its serialised size in bytes."""

        text = json.dumps(payload, ensure_ascii=False)
        conn = self.manager.connect(self.db_path)
        conn.execute(
            "INSERT OR REPLACE INTO kv_store(key, value, updated_at) VALUES (?, ?, datetime('now'))",
            (self.key, text),
        )
        conn.commit()
        return len(text.encode("utf-8"))

    def clear(self) -> None:
        conn = self.manager.connect(self.db_path)
        conn.execute("DELETE FROM kv_store WHERE key = ?", (self.key,))
        conn.commit()

    def destroy(self) -> None:
        """Delete the whole database file, not just this key."""

        self.manager.discard(self.db_path)


__all__ = ["SQLiteManager", "SnapshotStore"]
