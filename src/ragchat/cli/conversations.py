"""ragchat conversations CLI commands.

Commands:
  ragchat conversations list               — all conversations, active one marked
  ragchat conversations new                — start (and activate) a new conversation
  ragchat conversations switch <id>        — activate a conversation
  ragchat conversations rename <id> TITLE  — rename a conversation
  ragchat conversations delete <id>        — delete a conversation and its messages
  ragchat conversations clear [<id>]       — remove all messages (default: active)
  ragchat conversations show [<id>]        — print the messages (default: active)

Conversation ids may be given as any unique prefix.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from ragchat.chat.models import MessageStatus, Role
from ragchat.chat.persistence import SqliteStateStore
from ragchat.chat.store import ConversationStore
from ragchat.cli.context import cli_config, require_db
from ragchat.cli.errors import err_ambiguous_conversation, err_unknown_conversation
from ragchat.db.connection import Database
from ragchat.db.schema import initialize

console = Console()

conversations_app = typer.Typer(
    name="conversations",
    help="Manage chat conversations (list, new, switch, rename, delete, clear, show).",
    add_completion=False,
)

_DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the ragchat database."),
]


def _resolve(store: ConversationStore, ref: str | None) -> str:
    """Map an id prefix to a conversation id; ``None`` means the active one."""
    if ref is None:
        return store.active_conversation_id
    matches = [c.id for c in store.state.conversations if c.id.startswith(ref)]
    if not matches:
        console.print(err_unknown_conversation(ref))
        raise typer.Exit(1)
    if len(matches) > 1:
        console.print(err_ambiguous_conversation(ref, len(matches)))
        raise typer.Exit(1)
    return matches[0]


def _open_db(db: Path | None) -> Database:
    cfg = cli_config(db)
    require_db(cfg)
    return Database(cfg.storage.db)


@conversations_app.command("list")
def conversations_list_cmd(db: _DbOption = None) -> None:
    """List conversations, most recently updated first."""
    with _open_db(db) as conn:
        initialize(conn)
        store = ConversationStore(SqliteStateStore(conn))

    table = Table(title="Conversations", show_header=True, header_style="bold")
    table.add_column("")
    table.add_column("Id", style="dim")
    table.add_column("Title", style="bold")
    table.add_column("Messages", justify="right")
    table.add_column("Updated")
    ordered = sorted(store.state.conversations, key=lambda c: c.updated_at, reverse=True)
    for c in ordered:
        marker = "[green]●[/]" if c.id == store.active_conversation_id else ""
        table.add_row(
            marker, c.id[:8], c.title, str(len(c.message_ids)), c.updated_at.strftime("%Y-%m-%d %H:%M")
        )
    console.print(table)


@conversations_app.command("new")
def conversations_new_cmd(db: _DbOption = None) -> None:
    """Start a new conversation and make it active."""
    with _open_db(db) as conn:
        initialize(conn)
        conversation = ConversationStore(SqliteStateStore(conn)).start_new_conversation()
    console.print(f"[green]✓[/] New conversation [bold]{conversation.id[:8]}[/] is active")


@conversations_app.command("switch")
def conversations_switch_cmd(
    conversation: Annotated[str, typer.Argument(help="Conversation id (or unique prefix).")],
    db: _DbOption = None,
) -> None:
    """Make a conversation the active one."""
    with _open_db(db) as conn:
        initialize(conn)
        store = ConversationStore(SqliteStateStore(conn))
        target = _resolve(store, conversation)
        store.switch_conversation(target)
        title = store.state.active_conversation.title
    console.print(f"[green]✓[/] Active: [bold]{title}[/] ({target[:8]})")


@conversations_app.command("rename")
def conversations_rename_cmd(
    conversation: Annotated[str, typer.Argument(help="Conversation id (or unique prefix).")],
    title: Annotated[str, typer.Argument(help="New title.")],
    db: _DbOption = None,
) -> None:
    """Rename a conversation."""
    with _open_db(db) as conn:
        initialize(conn)
        store = ConversationStore(SqliteStateStore(conn))
        target = _resolve(store, conversation)
        if not title.strip():
            console.print("[red]Error:[/] Title must not be empty.")
            raise typer.Exit(1)
        store.rename_conversation(target, title)
    console.print(f"[green]✓[/] Renamed {target[:8]} to [bold]{title.strip()}[/]")


@conversations_app.command("delete")
def conversations_delete_cmd(
    conversation: Annotated[str, typer.Argument(help="Conversation id (or unique prefix).")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
    db: _DbOption = None,
) -> None:
    """Delete a conversation and the messages only it referenced."""
    with _open_db(db) as conn:
        initialize(conn)
        store = ConversationStore(SqliteStateStore(conn))
        target = _resolve(store, conversation)
        title = store.state.conversation(target).title
        if not yes and not typer.confirm(f"Delete '{title}'?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)
        store.delete_conversation(target)
        active = store.state.active_conversation
    console.print(f"[green]✓[/] Deleted '{title}'. Active: [bold]{active.title}[/] ({active.id[:8]})")


@conversations_app.command("clear")
def conversations_clear_cmd(
    conversation: Annotated[
        str | None, typer.Argument(help="Conversation id (default: active).")
    ] = None,
    db: _DbOption = None,
) -> None:
    """Remove every message from a conversation."""
    with _open_db(db) as conn:
        initialize(conn)
        store = ConversationStore(SqliteStateStore(conn))
        target = _resolve(store, conversation)
        store.clear_conversation(target)
    console.print(f"[green]✓[/] Cleared {target[:8]}")


@conversations_app.command("show")
def conversations_show_cmd(
    conversation: Annotated[
        str | None, typer.Argument(help="Conversation id (default: active).")
    ] = None,
    db: _DbOption = None,
) -> None:
    """Print the messages of a conversation."""
    with _open_db(db) as conn:
        initialize(conn)
        store = ConversationStore(SqliteStateStore(conn))
        target = _resolve(store, conversation)

    conv = store.state.conversation(target)
    console.print(f"[bold]{conv.title}[/]  [dim]{conv.id}[/]\n")
    messages = store.state.messages_for(target)
    if not messages:
        console.print("[dim](no messages)[/]")
        return
    for message in messages:
        who = "[bold cyan]you[/]" if message.role is Role.USER else "[bold green]assistant[/]"
        suffix = " [yellow](partial)[/]" if message.status is MessageStatus.PARTIAL else ""
        console.print(f"{who} [dim]{message.created_at:%H:%M}[/]{suffix}")
        console.print(message.content, markup=False, highlight=False)
        console.print()
