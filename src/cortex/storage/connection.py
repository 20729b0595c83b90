"""
Shared SQLite connection handling for the storage operation classes.

Every operation class (CRUD, search, links, traversal, entities, stats)
can run standalone against its own database file, or share a single
connection when composed into the MemoryPalace facade. Sharing matters
for ':memory:' databases, where each new connection is a new database.
"""

import sqlite3
import threading
from pathlib import Path
from typing import Optional, Union

from .schema import init_database


class SQLiteOperations:
    """
    Base class owning the connection and lock used by storage operations.

    - Autocommit mode (isolation_level=None) for concurrent writers
    - check_same_thread=False so background workers can share the connection
    - One re-entrant lock serializes statements and cursor consumption
    """

    def __init__(self,
                 db_path: Union[str, Path] = ':memory:',
                 enable_wal: bool = True,
                 conn: Optional[sqlite3.Connection] = None,
                 lock: Optional[threading.RLock] = None):
        """
        Args:
            db_path: Path to SQLite database file (or ':memory:' for in-memory)
            enable_wal: Enable WAL mode for concurrent writes (default: True)
            conn: Optional shared connection (facade pattern)
            lock: Optional shared lock, used together with conn
        """
        self.db_path = Path(db_path) if str(db_path) != ':memory:' else ':memory:'
        self._owns_connection = conn is None

        if conn is not None:
            self._conn = conn
            self._db_lock = lock or threading.RLock()
        else:
            if self.db_path != ':memory:':
                self.db_path.parent.mkdir(parents=True, exist_ok=True)

            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,
                timeout=30.0
            )
            self._db_lock = threading.RLock()

            # WAL is meaningless for in-memory databases
            init_database(self._conn, enable_wal and self.db_path != ':memory:')

    def _fetchall(self, sql: str, params: tuple = ()) -> list:
        """Execute a read and materialize rows while holding the lock."""
        with self._db_lock:
            return self._conn.execute(sql, params).fetchall()

    def _fetchone(self, sql: str, params: tuple = ()):
        with self._db_lock:
            return self._conn.execute(sql, params).fetchone()

    def _execute(self, sql: str, params: tuple = ()) -> int:
        """Execute a write and return the affected row count."""
        with self._db_lock:
            cursor = self._conn.execute(sql, params)
            return cursor.rowcount

    def close(self) -> None:
        """Close connection and cleanup."""
        if self._owns_connection and getattr(self, '_conn', None) is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def placeholders(values) -> str:
    """Build a '?, ?, ?' placeholder list for an IN clause."""
    return ", ".join("?" for _ in values)
