"""CLI helper functions."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import NoReturn

from rich.console import Console
from rich.markup import escape

from snapask.cli.types import CliEnv
from snapask.errors import DatabaseError
from snapask.storage.connection import ConnectionManager
from snapask.storage.repository import ConversationStore


def fail(command: str, message: str) -> NoReturn:
    Console(stderr=True).print(f"[red]{escape(command)}: {escape(message)}[/red]")
    raise SystemExit(1)


@contextmanager
def open_store(env: CliEnv, command: str) -> Iterator[ConversationStore]:
    """Open (and migrate) the configured database for the length of a command."""
    manager = ConnectionManager(env.config.db_path)
    try:
        manager.initialize()
    except DatabaseError as exc:
        fail(command, str(exc))
    try:
        yield ConversationStore(manager)
    finally:
        manager.close()


def yes_no(value: bool) -> str:
    return "yes" if value else "no"
