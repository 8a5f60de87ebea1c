"""Database inspection and migration commands."""

from __future__ import annotations

import json
import sqlite3
from contextlib import closing

import click
from rich.table import Table

from snapask.cli.helpers import fail, open_store
from snapask.cli.types import CliEnv
from snapask.errors import DatabaseError
from snapask.storage.schema import SCHEMA_VERSION, SchemaMigrator


@click.group("db")
def db_group() -> None:
    """Inspect and migrate the conversation database."""


@db_group.command("status")
@click.option("--json", "json_mode", is_flag=True, help="Output as JSON")
@click.pass_obj
def status_command(env: CliEnv, json_mode: bool) -> None:
    """Show the database path, schema version and pending migrations.

    The file is opened read-only; nothing is migrated.
    """
    path = env.config.db_path
    payload: dict[str, object] = {
        "path": str(path),
        "exists": path.exists(),
        "schemaVersion": 0,
        "latestVersion": SCHEMA_VERSION,
        "pending": [],
    }
    if path.exists():
        try:
            with closing(sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)) as conn:
                migrator = SchemaMigrator(conn)
                payload["schemaVersion"] = migrator.current_version()
                payload["pending"] = [step.version for step in migrator.pending()]
        except (sqlite3.Error, DatabaseError) as exc:
            fail("db status", f"Cannot read {path}: {exc}")

    if payload["exists"] and not payload["pending"] and payload["schemaVersion"] == SCHEMA_VERSION:
        with open_store(env, "db status") as store:
            payload["stats"] = store.stats().model_dump()

    if json_mode:
        click.echo(json.dumps(payload, indent=2))
        return

    table = Table(title="Conversation database", show_header=False)
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Path", str(path))
    table.add_row("Exists", "yes" if payload["exists"] else "no")
    table.add_row("Schema", f"v{payload['schemaVersion']} (latest v{SCHEMA_VERSION})")
    pending = payload["pending"]
    table.add_row("Pending", ", ".join(f"v{v}" for v in pending) if pending else "none")  # type: ignore[union-attr]
    stats = payload.get("stats")
    if isinstance(stats, dict):
        for key in ("conversations", "messages", "starred", "archived"):
            table.add_row(key.capitalize(), str(stats[key]))
    env.console.print(table)


@db_group.command("migrate")
@click.pass_obj
def migrate_command(env: CliEnv) -> None:
    """Create the database if needed and apply pending migrations."""
    with open_store(env, "db migrate") as store:
        version = store.connection.schema_version
    env.console.print(f"Database at {env.config.db_path} is at schema v{version}.")
