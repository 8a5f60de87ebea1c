"""Application wiring, built once at startup and passed around explicitly.

``create_app_context()`` replaces module-level singletons: the caller owns
the returned ``AppContext`` and closes it at shutdown. Tests build their
own against a temporary database.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import TracebackType

from snapask.config import Config, load_config
from snapask.errors import DatabaseError
from snapask.handlers import ConversationHandlers
from snapask.lib.log import configure_logging, get_logger
from snapask.storage.connection import ConnectionManager
from snapask.storage.repository import ConversationStore

logger = get_logger(__name__)


@dataclass
class AppContext:
    config: Config
    connection: ConnectionManager | None
    store: ConversationStore | None
    handlers: ConversationHandlers

    @property
    def persistence_available(self) -> bool:
        return self.store is not None

    def close(self) -> None:
        """Close the database. A failure here is logged, never raised."""
        if self.connection is None:
            return
        try:
            self.connection.close()
        except Exception:
            logger.exception("app.close_failed", path=str(self.connection.path))

    def __enter__(self) -> AppContext:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def create_app_context(config: Config | None = None, *, configure_logs: bool = True) -> AppContext:
    """Build the application context.

    A database that cannot be opened or migrated does not stop the app:
    the failure is logged and the context comes back without persistence,
    so handlers answer ``unavailable`` while capture and completion keep
    working.
    """
    config = config or load_config()
    if configure_logs:
        configure_logging(verbose=config.verbose, json_logs=config.json_logs)

    connection: ConnectionManager | None = ConnectionManager(config.db_path)
    store: ConversationStore | None = None
    try:
        connection.initialize()
        store = ConversationStore(connection)
    except (DatabaseError, OSError) as exc:
        logger.error("app.persistence_unavailable", path=str(config.db_path), error=str(exc))
        connection = None

    return AppContext(
        config=config,
        connection=connection,
        store=store,
        handlers=ConversationHandlers(store),
    )


__all__ = ["AppContext", "create_app_context"]
