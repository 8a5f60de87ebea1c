from __future__ import annotations

from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from snapask.cli.commands.conversations import (
    archive_command,
    delete_command,
    list_command,
    rename_command,
    show_command,
    star_command,
)
from snapask.cli.commands.db import db_group
from snapask.cli.helpers import fail
from snapask.cli.types import CliEnv
from snapask.config import load_config
from snapask.errors import ConfigError
from snapask.lib.log import configure_logging


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Path to config.json")
@click.option("--db", "db_path", type=click.Path(path_type=Path), help="Conversation database to use")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging on stderr")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], db_path: Optional[Path], verbose: bool) -> None:
    """SnapAsk conversation history."""
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        fail("snapask", str(exc))
    if db_path is not None:
        config.db_path = db_path.expanduser()
    configure_logging(verbose=verbose or config.verbose, json_logs=config.json_logs, quiet=True)
    ctx.obj = CliEnv(config=config, console=Console(), config_path=config_path)


cli.add_command(db_group)
cli.add_command(list_command)
cli.add_command(show_command)
cli.add_command(rename_command)
cli.add_command(star_command)
cli.add_command(archive_command)
cli.add_command(delete_command)


def main() -> None:
    cli()


__all__ = ["cli", "main"]
