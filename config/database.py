"""
GEMMINES - Database Layer

SQLite storage shared by the game store and the reference ledger.
One connection per unit of work; rows come back as plain dicts.

Usage:
    from config.database import open_db, init_schema

    init_schema(path, SCHEMA_SQL)
    with open_db(path) as db:           # commits on success, rolls back on error
        db.execute("UPDATE ... WHERE id=?", [game_id])
        row = db.execute("SELECT ...").fetchone()
"""

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger("gemmines.db")


# ── SQLite dict-row wrapper ──
class _SqliteDict(dict):
    """Makes sqlite3 rows behave like a dict with .get() support."""
    pass


def _sqlite_dict_factory(cursor, row):
    d = _SqliteDict()
    for idx, col in enumerate(cursor.description):
        d[col[0]] = row[idx]
    return d


def _open_sqlite(path: str):
    """Open a raw SQLite connection."""
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, timeout=10, check_same_thread=False)
    conn.row_factory = _sqlite_dict_factory
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    return conn


class DatabaseConnection:
    """Thin wrapper around a SQLite connection.

    - Returns dicts from fetchone()/fetchall()
    - Used as a context manager: commit on success, rollback on error, always close
    """

    def __init__(self, conn):
        self._conn = conn
        self._cursor = None

    def execute(self, sql, params=None):
        """Execute a statement. Returns self for chaining."""
        self._cursor = self._conn.execute(sql, params or [])
        return self

    def executescript(self, sql):
        self._conn.executescript(sql)
        return self

    @property
    def lastrowid(self):
        return self._cursor.lastrowid if self._cursor is not None else None

    @property
    def rowcount(self):
        return self._cursor.rowcount if self._cursor is not None else 0

    def fetchone(self):
        """Fetch one row as dict, or None."""
        if self._cursor is None:
            return None
        return self._cursor.fetchone()

    def fetchall(self):
        """Fetch all rows as list[dict]."""
        if self._cursor is None:
            return []
        return self._cursor.fetchall()

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            self.rollback()
        else:
            self.commit()
        self.close()


def open_db(path: str) -> DatabaseConnection:
    """Open a standalone connection. Caller closes (or uses `with`)."""
    return DatabaseConnection(_open_sqlite(path))


def init_schema(path: str, schema_sql: str):
    """Create tables and indexes if they do not exist yet."""
    with open_db(path) as db:
        db.executescript(schema_sql)
    logger.debug(f"Schema ready: {path}")
