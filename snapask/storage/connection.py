"""Ownership of the single SQLite handle.

One ``ConnectionManager`` exists per process. ``initialize()`` opens the
file, switches the journal to WAL (readers are never blocked by the
writer) and turns on foreign-key enforcement, which the conversation
store relies on for cascade deletes. The schema migrator runs before the
handle is handed out.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import TracebackType

from snapask.config import default_db_path
from snapask.errors import DatabaseError
from snapask.lib.log import get_logger
from snapask.storage.schema import SchemaMigrator, read_schema_version

logger = get_logger(__name__)

# Seconds to wait on a locked database before giving up
DB_TIMEOUT = 30


class ConnectionManager:
    """Opens, configures, migrates and closes the conversation database.

    Thread Safety:
        - The handle is opened with ``check_same_thread=False`` so the
          event loop and CLI can share it
        - There is no application-level locking; SQLite serializes writers
          and WAL keeps readers unblocked

    Transaction Management:
        - ``transaction()`` wraps a block in ``BEGIN IMMEDIATE`` / COMMIT
        - Failure inside the block rolls back and re-raises
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        self._db_path = Path(db_path).expanduser() if db_path is not None else default_db_path()
        self._conn: sqlite3.Connection | None = None

    @property
    def path(self) -> Path:
        return self._db_path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def initialize(self) -> sqlite3.Connection:
        """Open the database and bring its schema up to date.

        Raises:
            DatabaseError: On any failure (unwritable directory, corrupt
                file, failed migration). No handle is kept in that case.
        """
        if self._conn is not None:
            raise DatabaseError(f"Database already initialized: {self._db_path}")

        conn: sqlite3.Connection | None = None
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self._db_path, timeout=DB_TIMEOUT, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute(f"PRAGMA busy_timeout = {DB_TIMEOUT * 1000}")
            logger.info("database.opened", path=str(self._db_path))
            SchemaMigrator(conn).migrate()
        except DatabaseError:
            self._discard(conn)
            logger.error("database.init_failed", path=str(self._db_path), exc_info=True)
            raise
        except (sqlite3.Error, OSError) as exc:
            self._discard(conn)
            logger.error("database.init_failed", path=str(self._db_path), error=str(exc))
            raise DatabaseError(f"Failed to initialize database at {self._db_path}: {exc}") from exc

        self._conn = conn
        logger.info("database.initialized", path=str(self._db_path))
        return conn

    @staticmethod
    def _discard(conn: sqlite3.Connection | None) -> None:
        if conn is None:
            return
        try:
            conn.close()
        except sqlite3.Error as exc:
            logger.warning("database.discard_failed", error=str(exc))

    @property
    def handle(self) -> sqlite3.Connection:
        """The live connection. Using it before ``initialize()`` is a programming error."""
        if self._conn is None:
            raise DatabaseError("Database not initialized; call initialize() first")
        return self._conn

    def get_handle(self) -> sqlite3.Connection:
        return self.handle

    @property
    def schema_version(self) -> int:
        return read_schema_version(self.handle)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one write transaction.

        ``BEGIN IMMEDIATE`` takes the write lock up front, so a second
        process writing at the same time waits on busy_timeout instead of
        failing halfway through the block.
        """
        conn = self.handle
        if conn.in_transaction:
            raise DatabaseError("Nested transactions are not supported")
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()

    def close(self) -> None:
        """Flush and close the handle. Safe to call more than once."""
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            if conn.in_transaction:
                conn.commit()
        finally:
            conn.close()
        logger.info("database.closed", path=str(self._db_path))

    def __enter__(self) -> ConnectionManager:
        self.initialize()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"ConnectionManager({str(self._db_path)!r}, {state})"


__all__ = ["DB_TIMEOUT", "ConnectionManager"]
