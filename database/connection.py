"""SQLite record store with WAL mode and per-call transactions."""

import sqlite3
import logging
from pathlib import Path
from contextlib import contextmanager

from database.errors import StorageError

logger = logging.getLogger("portfolio_tracker.database")


class DatabaseConnection:
    """Opens one SQLite connection per unit of work.

    Every ``connect()`` block is a transaction: it commits on success and
    rolls back on any exception. ``sqlite3.IntegrityError`` is re-raised
    untouched so DAOs can turn unique-constraint hits into conflict
    errors; every other ``sqlite3.Error`` becomes a ``StorageError``.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with self.connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")

    @contextmanager
    def connect(self):
        """Yield a connection; commit on exit, roll back on error."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("Storage operation failed: %s", e, exc_info=True)
            raise StorageError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def execute(self, sql: str, params: tuple = ()) -> list:
        """Execute a statement and return all result rows."""
        with self.connect() as conn:
            return conn.execute(sql, params).fetchall()

    def execute_one(self, sql: str, params: tuple = ()):
        """Execute a query and return the first row, or None."""
        with self.connect() as conn:
            return conn.execute(sql, params).fetchone()

    def execute_insert(self, sql: str, params: tuple = ()) -> int:
        """Execute an INSERT and return the new row id."""
        with self.connect() as conn:
            return conn.execute(sql, params).lastrowid

    def execute_write(self, sql: str, params: tuple = ()) -> int:
        """Execute an UPDATE/DELETE and return the number of affected rows."""
        with self.connect() as conn:
            return conn.execute(sql, params).rowcount

    def execute_many(self, sql: str, param_list: list):
        """Run one statement for every parameter tuple, atomically."""
        with self.connect() as conn:
            conn.executemany(sql, param_list)


_db: DatabaseConnection | None = None


def get_connection(db_path: Path | None = None) -> DatabaseConnection:
    """Get or create the shared database connection."""
    global _db
    if _db is None:
        if db_path is None:
            from config.settings import get_settings
            db_path = get_settings().db_path
        _db = DatabaseConnection(db_path)
    return _db
