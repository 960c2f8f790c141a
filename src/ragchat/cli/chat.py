"""ragchat chat / ask — talk to the model over the knowledge base.

``chat`` is an interactive session in the active conversation; the answer
is printed as it streams. In-session commands:

  /new            start a new conversation
  /clear          clear the current conversation
  /upload <path>  ingest a document or image into the knowledge base
  /rag on|off     toggle retrieval for the following turns
  /quit           leave (Ctrl-D works too)

``ask`` answers one question without touching the conversation history.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from ragchat.chat.models import ChatState, Role
from ragchat.chat.pipeline import ChatPipeline, TurnResult, open_pipeline
from ragchat.cli.context import cli_config, require_db
from ragchat.cli.errors import err_service_unavailable, warn_persist_failed
from ragchat.rag.health import ServiceUnavailableError

console = Console()

_HELP = "Commands: /new  /clear  /upload <path>  /rag on|off  /quit"


class _TurnPrinter:
    """Print assistant text of one turn as it arrives in the store."""

    def __init__(self, conversation_id: str, seen: set[str]) -> None:
        self._conversation_id = conversation_id
        self._seen = seen
        self._printed: dict[str, int] = {}
        self._current: str | None = None

    def __call__(self, state: ChatState) -> None:
        for message in state.messages_for(self._conversation_id):
            if message.id in self._seen or message.role is not Role.ASSISTANT:
                continue
            done = self._printed.get(message.id, 0)
            if len(message.content) <= done:
                continue
            if self._current != message.id:
                if self._current is not None:
                    console.print()
                console.print("[bold green]assistant ›[/] ", end="")
                self._current = message.id
            console.print(
                message.content[done:], end="", markup=False, highlight=False, soft_wrap=True
            )
            self._printed[message.id] = len(message.content)

    def close(self) -> None:
        if self._current is not None:
            console.print()


def run_turn(
    pipeline: ChatPipeline,
    content: str,
    use_rag: bool | None = None,
    files: list[Path] | None = None,
) -> TurnResult:
    """Send one message and stream the reply to the console."""
    store = pipeline.store
    conversation_id = store.active_conversation_id
    printer = _TurnPrinter(conversation_id, {m.id for m in store.active_messages()})
    unsubscribe = store.on_change(conversation_id, printer)
    try:
        result = pipeline.send_message(content, use_rag=use_rag, files=files or [])
    finally:
        unsubscribe()
        printer.close()

    if not result.ok:
        console.print(f"[dim]  ({result.error})[/]")
    if not store.persist_ok:
        console.print(warn_persist_failed())
    return result


def _show_history(pipeline: ChatPipeline) -> None:
    conversation = pipeline.store.state.active_conversation
    if conversation is None:
        return
    console.print(f"[bold]{conversation.title}[/]  [dim]{conversation.id[:8]}[/]")
    for message in pipeline.store.active_messages():
        who = "[bold cyan]you ›[/]" if message.role is Role.USER else "[bold green]assistant ›[/]"
        console.print(f"{who} ", end="")
        console.print(message.content, markup=False, highlight=False)


def chat_cmd(
    no_rag: Annotated[
        bool,
        typer.Option("--no-rag", help="Answer without retrieving context."),
    ] = False,
    new: Annotated[
        bool,
        typer.Option("--new", help="Start in a new conversation."),
    ] = False,
    no_persist: Annotated[
        bool,
        typer.Option("--no-persist", help="Keep this session's history in memory only."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the ragchat database."),
    ] = None,
) -> None:
    """Start an interactive, streaming chat session."""
    cfg = cli_config(db)
    require_db(cfg)
    use_rag = False if no_rag else None

    with open_pipeline(cfg, persist=not no_persist) as pipeline:
        if new:
            pipeline.store.start_new_conversation()
        _show_history(pipeline)
        console.print(f"[dim]{_HELP}[/]\n")

        while True:
            try:
                line = console.input("[bold cyan]you ›[/] ").strip()
            except (EOFError, KeyboardInterrupt):
                console.print()
                break
            if not line:
                continue

            if line in ("/quit", "/exit"):
                break
            if line == "/help":
                console.print(f"[dim]{_HELP}[/]")
            elif line == "/new":
                conversation = pipeline.store.start_new_conversation()
                console.print(f"[dim]New conversation {conversation.id[:8]}[/]")
            elif line == "/clear":
                pipeline.store.clear_conversation()
                console.print("[dim]Conversation cleared.[/]")
            elif line.startswith("/rag"):
                use_rag = line.split()[-1].lower() != "off"
                console.print(f"[dim]Retrieval {'on' if use_rag else 'off'}.[/]")
            elif line.startswith("/upload"):
                target = line[len("/upload"):].strip()
                if not target:
                    console.print("[yellow]Usage: /upload <path>[/]")
                    continue
                run_turn(pipeline, "", use_rag=use_rag, files=[Path(target).expanduser()])
            else:
                run_turn(pipeline, line, use_rag=use_rag)


def ask_cmd(
    question: Annotated[str, typer.Argument(help="Question to answer.")],
    no_rag: Annotated[
        bool,
        typer.Option("--no-rag", help="Answer without retrieving context."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the ragchat database."),
    ] = None,
) -> None:
    """Answer one question (not stored in any conversation)."""
    cfg = cli_config(db)
    require_db(cfg)

    with open_pipeline(cfg, persist=False) as pipeline:
        try:
            with console.status("Thinking…"):
                answer = pipeline.complete(
                    [{"role": "user", "content": question}],
                    use_rag=False if no_rag else None,
                )
        except ServiceUnavailableError as exc:
            console.print(err_service_unavailable(exc.status, cfg.generation.api_base))
            raise typer.Exit(1)
        except Exception as exc:
            console.print(f"[red]Error:[/] Generation failed: {exc}")
            raise typer.Exit(1)

    console.print(answer, markup=False, highlight=False)
