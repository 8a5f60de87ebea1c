"""Commands for browsing and curating saved conversations."""

from __future__ import annotations

import json

import click
from rich.markup import escape
from rich.table import Table

from snapask.cli.helpers import fail, open_store, yes_no
from snapask.cli.types import CliEnv
from snapask.errors import SnapaskError
from snapask.lib.timestamps import format_ms
from snapask.storage.records import ConversationFilters


@click.command("list")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=None, help="Max conversations (default: page_size)")
@click.option("--offset", type=click.IntRange(min=0), default=0, show_default=True)
@click.option("--starred", is_flag=True, help="Only starred conversations")
@click.option("--archived", is_flag=True, help="Show archived conversations instead")
@click.option("--json", "json_mode", is_flag=True, help="Output as JSON")
@click.pass_obj
def list_command(
    env: CliEnv,
    limit: int | None,
    offset: int,
    starred: bool,
    archived: bool,
    json_mode: bool,
) -> None:
    """List conversations, most recently active first.

    \b
    Examples:
        snapask list                # Recent conversations
        snapask list --starred      # Starred only
        snapask list --archived     # The archive
    """
    filters = ConversationFilters(starred=starred or None, archived=archived or None)
    with open_store(env, "list") as store:
        summaries = store.get_all_conversations(
            limit=limit or env.config.page_size,
            offset=offset,
            filters=filters,
        )
        total = store.count_conversations(filters)

    if json_mode:
        click.echo(json.dumps({"total": total, "conversations": [s.to_payload() for s in summaries]}, indent=2))
        return

    if not summaries:
        env.console.print("No conversations found.")
        return

    table = Table(title=f"Conversations ({len(summaries)} of {total})")
    table.add_column("ID", no_wrap=True)
    table.add_column("Title")
    table.add_column("Messages", justify="right")
    table.add_column("Updated")
    table.add_column("★")
    for summary in summaries:
        table.add_row(
            summary.id,
            escape(summary.title),
            str(summary.message_count),
            format_ms(summary.updated_at),
            "★" if summary.starred else "",
        )
    env.console.print(table)


@click.command("show")
@click.argument("conversation_id")
@click.option("--json", "json_mode", is_flag=True, help="Output as JSON")
@click.pass_obj
def show_command(env: CliEnv, conversation_id: str, json_mode: bool) -> None:
    """Print one conversation with all of its messages."""
    with open_store(env, "show") as store:
        conversation = store.get_conversation_with_messages(conversation_id)
    if conversation is None:
        fail("show", f"Conversation not found: {conversation_id}")

    if json_mode:
        click.echo(json.dumps(conversation.to_payload(), indent=2))
        return

    console = env.console
    console.print(f"[bold]{escape(conversation.title or '(untitled)')}[/bold]")
    console.print(
        f"id={conversation.id} created={format_ms(conversation.created_at)} "
        f"messages={conversation.message_count} starred={yes_no(conversation.starred)} "
        f"archived={yes_no(conversation.archived)} screenshot={yes_no(conversation.screenshot_data_url is not None)}"
    )
    for message in conversation.messages:
        style = "red" if message.error else ("cyan" if message.role.value == "user" else "green")
        console.print(f"\n[{style}]{message.role.value}[/{style}] {format_ms(message.timestamp)}")
        console.print(escape(message.content))


def _apply_update(env: CliEnv, command: str, conversation_id: str, updates: dict) -> None:
    with open_store(env, command) as store:
        try:
            updated = store.update_conversation(conversation_id, updates)
        except SnapaskError as exc:
            fail(command, str(exc))
    if not updated:
        fail(command, f"Conversation not found: {conversation_id}")


@click.command("rename")
@click.argument("conversation_id")
@click.argument("title", required=False)
@click.option("--reset", is_flag=True, help="Clear the stored title")
@click.pass_obj
def rename_command(env: CliEnv, conversation_id: str, title: str | None, reset: bool) -> None:
    """Set a conversation's title (or clear it with --reset)."""
    if reset == (title is not None):
        fail("rename", "Pass either a TITLE or --reset")
    _apply_update(env, "rename", conversation_id, {"title": None if reset else title})
    env.console.print(f"Renamed {conversation_id}.")


@click.command("star")
@click.argument("conversation_id")
@click.option("--off", is_flag=True, help="Remove the star")
@click.pass_obj
def star_command(env: CliEnv, conversation_id: str, off: bool) -> None:
    """Star (or unstar) a conversation."""
    _apply_update(env, "star", conversation_id, {"starred": not off})
    env.console.print(f"{'Unstarred' if off else 'Starred'} {conversation_id}.")


@click.command("archive")
@click.argument("conversation_id")
@click.option("--off", is_flag=True, help="Restore from the archive")
@click.pass_obj
def archive_command(env: CliEnv, conversation_id: str, off: bool) -> None:
    """Archive (or restore) a conversation. Archived ones are hidden from `list`."""
    _apply_update(env, "archive", conversation_id, {"archived": not off})
    env.console.print(f"{'Restored' if off else 'Archived'} {conversation_id}.")


@click.command("delete")
@click.argument("conversation_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_obj
def delete_command(env: CliEnv, conversation_id: str, yes: bool) -> None:
    """Delete a conversation and all of its messages."""
    if not yes:
        click.confirm(f"Delete conversation {conversation_id}?", abort=True)
    with open_store(env, "delete") as store:
        deleted = store.delete_conversation(conversation_id)
    if not deleted:
        fail("delete", f"Conversation not found: {conversation_id}")
    env.console.print(f"Deleted {conversation_id}.")
