"""ragchat CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from ragchat.cli.chat import ask_cmd, chat_cmd
from ragchat.cli.conversations import conversations_app
from ragchat.cli.health import health_cmd
from ragchat.cli.images import images_app
from ragchat.cli.ingest import ingest_cmd
from ragchat.cli.init import init_cmd
from ragchat.cli.remove import remove_cmd
from ragchat.cli.search import search_cmd
from ragchat.log import configure_logging


def _installed_version() -> str:
    try:
        return importlib.metadata.version("ragchat")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ragchat {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="ragchat",
    help=(
        "ragchat — chat with a local model over your own documents.\n\n"
        "  ragchat ingest  Add documents to the knowledge base.\n"
        "  ragchat chat    Ask questions; answers stream with retrieved context."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log debug output to stderr."),
    ] = False,
) -> None:
    """ragchat — retrieval-augmented chat CLI."""
    if verbose:
        configure_logging("DEBUG")
    else:
        configure_logging()


app.command("init")(init_cmd)
app.command("health")(health_cmd)
app.command("ingest")(ingest_cmd)
app.command("remove")(remove_cmd)
app.command("search")(search_cmd)
app.command("chat")(chat_cmd)
app.command("ask")(ask_cmd)
app.add_typer(images_app, name="images")
app.add_typer(conversations_app, name="conversations")


@app.command("version")
def version_cmd() -> None:
    """Show the installed ragchat version."""
    typer.echo(f"ragchat {_installed_version()}")


if __name__ == "__main__":
    app()
