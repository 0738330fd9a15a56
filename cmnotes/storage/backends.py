"""
Cache Storage Backends

Key/value persistence for cache snapshots and session markers.

Every write replaces a whole value in one operation; readers never
observe a partially written entry.
"""

from __future__ import annotations
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional
import sqlite3


class CacheBackend:
    """
    Abstract key/value backend interface.

    Implementations may use memory, files or a database while keeping
    whole-value replace semantics.
    """

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def put(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> List[str]:
        raise NotImplementedError


class InMemoryCacheBackend(CacheBackend):
    """Process-local backend; contents vanish with the process."""

    def __init__(self):
        self._values: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def put(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._values)


class SqliteCacheBackend(CacheBackend):
    """
    SQLite-backed key/value store.

    Survives restarts, so snapshots persist across page loads.
    """

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with self._get_conn() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS cache_entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            ''')

    @contextmanager
    def _get_conn(self) -> Iterator[sqlite3.Connection]:
        """Get database connection; commits on clean exit."""
        conn = sqlite3.connect(self._db_path)
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def get(self, key: str) -> Optional[str]:
        with self._get_conn() as conn:
            row = conn.execute(
                'SELECT value FROM cache_entries WHERE key = ?', (key,)
            ).fetchone()
        return row[0] if row else None

    def put(self, key: str, value: str) -> None:
        with self._get_conn() as conn:
            conn.execute(
                'INSERT OR REPLACE INTO cache_entries (key, value) VALUES (?, ?)',
                (key, value)
            )

    def delete(self, key: str) -> None:
        with self._get_conn() as conn:
            conn.execute('DELETE FROM cache_entries WHERE key = ?', (key,))

    def keys(self) -> List[str]:
        with self._get_conn() as conn:
            rows = conn.execute('SELECT key FROM cache_entries ORDER BY key').fetchall()
        return [row[0] for row in rows]
