"""
SQLite-backed key/value store used to hand data from one stage to the next.
Values are stored as text; JSON helpers serialize with non-ASCII preserved.
"""

import json
import sqlite3
import threading
import time
from typing import Any, Dict, List, Optional

# noinspection SqlResolve
SQL_CREATE = """
CREATE TABLE IF NOT EXISTS handoff (
    key TEXT PRIMARY KEY,
    value TEXT,
    timestamp REAL
);
"""


class HandoffStore:
    def __init__(self, path: Optional[str] = None):
        """Open (and create if needed) a store.

        :param path: SQLite file path or None for an in-memory store.
        """
        self.path = path or ':memory:'
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self._lock = threading.RLock()
        self._init_db()

    def _init_db(self):
        with self._lock:
            cur = self.conn.cursor()
            cur.executescript(SQL_CREATE)
            self.conn.commit()

    def close(self):
        with self._lock:
            if self.conn is not None:
                try:
                    self.conn.close()
                finally:
                    self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # noinspection SqlResolve
    def get(self, key: str) -> Optional[str]:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute('SELECT value FROM handoff WHERE key = ?', (key,))
            row = cur.fetchone()
        return row[0] if row else None

    def get_json(self, key: str) -> Optional[Any]:
        """Return the parsed JSON value for key, or None when the key is absent."""
        raw = self.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    # noinspection SqlResolve
    def set(self, key: str, value: str):
        """Write a value, replacing any previous one (last writer wins)."""
        with self._lock:
            cur = self.conn.cursor()
            cur.execute('REPLACE INTO handoff(key, value, timestamp) VALUES (?, ?, ?)', (key, value, time.time()))
            self.conn.commit()

    def set_json(self, key: str, value: Any):
        self.set(key, json.dumps(value, ensure_ascii=False))

    # noinspection SqlResolve
    def delete(self, key: str) -> int:
        """Delete a key. Returns number of rows deleted."""
        with self._lock:
            cur = self.conn.cursor()
            cur.execute('DELETE FROM handoff WHERE key = ?', (key,))
            self.conn.commit()
            return cur.rowcount

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    # noinspection SqlResolve
    def list_keys(self) -> List[Dict[str, Any]]:
        """Return stored keys with their write timestamp, newest first."""
        with self._lock:
            cur = self.conn.cursor()
            cur.execute('SELECT key, timestamp FROM handoff ORDER BY timestamp DESC, key')
            rows = cur.fetchall()
        return [{'key': k, 'timestamp': float(ts or 0)} for k, ts in rows]

    # noinspection SqlWithoutWhere
    def clear(self):
        """Remove every key from the store."""
        with self._lock:
            cur = self.conn.cursor()
            cur.execute('DELETE FROM handoff')
            self.conn.commit()


__all__ = ["HandoffStore"]
