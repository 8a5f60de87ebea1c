"""SQLite schema management: DDL, migrations, and version control.

The applied schema version lives in the ``metadata`` table under the
``schema_version`` key. A database without that table (or row) is at
version 0. Each migration step runs in its own transaction and records
its version before committing, so a failed step leaves the database at
the last completed version.

Every ``up`` uses ``IF NOT EXISTS`` DDL. Re-running a step whose version
was never recorded (e.g. after a crash between DDL and commit on an
engine without transactional DDL) is therefore harmless.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from snapask.errors import DatabaseError, MigrationError
from snapask.lib.log import get_logger
from snapask.lib.timestamps import now_ms

logger = get_logger(__name__)

SCHEMA_VERSION_KEY = "schema_version"


@dataclass(frozen=True)
class Migration:
    """One forward schema step.

    ``down`` reverses the step; it is never run at startup and exists for
    maintenance and tests.
    """

    version: int
    description: str
    up: Callable[[sqlite3.Connection], None]
    down: Callable[[sqlite3.Connection], None] | None = None


def _execute_all(conn: sqlite3.Connection, statements: Sequence[str]) -> None:
    # executescript() would COMMIT first and break the step's transaction
    for statement in statements:
        conn.execute(statement)


_V1_UP = (
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id TEXT PRIMARY KEY,
        screenshot_data_url TEXT,
        screenshot_hash TEXT,
        title TEXT,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL,
        message_count INTEGER NOT NULL DEFAULT 0,
        starred INTEGER NOT NULL DEFAULT 0,
        archived INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_conversations_created_at ON conversations(created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_conversations_updated_at ON conversations(updated_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_conversations_screenshot_hash ON conversations(screenshot_hash)",
    """
    CREATE TABLE IF NOT EXISTS messages (
        id TEXT PRIMARY KEY,
        conversation_id TEXT NOT NULL,
        role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
        content TEXT NOT NULL,
        timestamp INTEGER NOT NULL,
        error INTEGER NOT NULL DEFAULT 0,
        FOREIGN KEY (conversation_id)
            REFERENCES conversations(id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation_id ON messages(conversation_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_timestamp ON messages(timestamp)",
    """
    CREATE TABLE IF NOT EXISTS metadata (
        key TEXT PRIMARY KEY,
        value TEXT,
        updated_at INTEGER NOT NULL
    )
    """,
)

_V1_DOWN = (
    "DROP TABLE IF EXISTS messages",
    "DROP TABLE IF EXISTS conversations",
    "DROP TABLE IF EXISTS metadata",
)

_V2_UP = (
    """
    CREATE INDEX IF NOT EXISTS idx_messages_conversation_timestamp
    ON messages(conversation_id, timestamp)
    """,
)

_V2_DOWN = ("DROP INDEX IF EXISTS idx_messages_conversation_timestamp",)


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version=1,
        description="conversations, messages and metadata tables",
        up=lambda conn: _execute_all(conn, _V1_UP),
        down=lambda conn: _execute_all(conn, _V1_DOWN),
    ),
    Migration(
        version=2,
        description="per-conversation message ordering index",
        up=lambda conn: _execute_all(conn, _V2_UP),
        down=lambda conn: _execute_all(conn, _V2_DOWN),
    ),
)

SCHEMA_VERSION = max(m.version for m in MIGRATIONS)


def _has_metadata_table(conn: sqlite3.Connection) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'metadata'"
    ).fetchone()
    return row is not None


def read_schema_version(conn: sqlite3.Connection) -> int:
    """Return the applied schema version; 0 for a fresh database."""
    if not _has_metadata_table(conn):
        return 0
    row = conn.execute("SELECT value FROM metadata WHERE key = ?", (SCHEMA_VERSION_KEY,)).fetchone()
    if row is None or row[0] is None:
        return 0
    try:
        return int(row[0])
    except (TypeError, ValueError) as exc:
        raise DatabaseError(f"Corrupt schema version in metadata: {row[0]!r}") from exc


def write_schema_version(conn: sqlite3.Connection, version: int) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO metadata (key, value, updated_at) VALUES (?, ?, ?)",
        (SCHEMA_VERSION_KEY, str(version), now_ms()),
    )


class SchemaMigrator:
    """Brings a connection's schema up to the latest known version."""

    def __init__(self, conn: sqlite3.Connection, migrations: Sequence[Migration] = MIGRATIONS) -> None:
        versions = [m.version for m in migrations]
        if len(set(versions)) != len(versions):
            raise ValueError(f"Duplicate migration versions: {sorted(versions)}")
        if any(v < 1 for v in versions):
            raise ValueError("Migration versions must be positive")
        self._conn = conn
        self._migrations = sorted(migrations, key=lambda m: m.version)

    @property
    def latest_version(self) -> int:
        return self._migrations[-1].version if self._migrations else 0

    def current_version(self) -> int:
        return read_schema_version(self._conn)

    def pending(self) -> list[Migration]:
        current = self.current_version()
        return [m for m in self._migrations if m.version > current]

    def migrate(self) -> int:
        """Apply every pending step in ascending order and return the final version.

        Raises:
            DatabaseError: If the database is newer than any known step.
            MigrationError: If a step fails; that step is rolled back.
        """
        current = self.current_version()
        if current > self.latest_version:
            raise DatabaseError(
                f"Unsupported DB schema version {current} (latest known is {self.latest_version})"
            )

        pending = [m for m in self._migrations if m.version > current]
        if not pending:
            logger.debug("schema.current", version=current)
            return current

        # A step's BEGIN needs a clean slate
        if self._conn.in_transaction:
            self._conn.commit()

        for step in pending:
            logger.info("schema.applying", version=step.version, description=step.description)
            try:
                self._conn.execute("BEGIN")
                step.up(self._conn)
                write_schema_version(self._conn, step.version)
                self._conn.commit()
            except Exception as exc:
                self._conn.rollback()
                logger.error("schema.migration_failed", version=step.version, error=str(exc))
                raise MigrationError(
                    step.version,
                    f"Migration to v{step.version} failed. Database remains at v{current}. Error: {exc}",
                ) from exc
            current = step.version

        logger.info("schema.current", version=current)
        return current

    def rollback_to(self, version: int) -> int:
        """Undo steps above ``version``, newest first, and return the resulting version."""
        if version < 0:
            raise ValueError("version must be >= 0")
        current = self.current_version()
        steps = [m for m in reversed(self._migrations) if version < m.version <= current]
        if self._conn.in_transaction:
            self._conn.commit()
        for step in steps:
            if step.down is None:
                raise MigrationError(step.version, f"Migration v{step.version} cannot be reversed")
            logger.info("schema.reverting", version=step.version)
            try:
                self._conn.execute("BEGIN")
                step.down(self._conn)
                if _has_metadata_table(self._conn):
                    write_schema_version(self._conn, step.version - 1)
                self._conn.commit()
            except Exception as exc:
                self._conn.rollback()
                raise MigrationError(step.version, f"Reverting v{step.version} failed: {exc}") from exc
        return self.current_version()


def ensure_schema(conn: sqlite3.Connection) -> int:
    """Run the default migrator against ``conn``."""
    return SchemaMigrator(conn).migrate()


__all__ = [
    "MIGRATIONS",
    "SCHEMA_VERSION",
    "SCHEMA_VERSION_KEY",
    "Migration",
    "SchemaMigrator",
    "ensure_schema",
    "read_schema_version",
    "write_schema_version",
]
