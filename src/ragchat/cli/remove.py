"""ragchat remove — delete a source and all its chunks.

Usage:
  ragchat remove --source manual.pdf
  ragchat remove --source manual.pdf --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from ragchat.chat.pipeline import open_pipeline
from ragchat.cli.context import cli_config, require_db
from ragchat.cli.errors import err_source_not_found

console = Console()


def remove_cmd(
    source: Annotated[
        str,
        typer.Option("--source", "-s", help="Source name (file name or text title) to remove."),
    ],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the ragchat database."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a source and all its chunks from the knowledge base."""
    cfg = cli_config(db)
    require_db(cfg)

    with open_pipeline(cfg, persist=False) as pipeline:
        pipeline.gate.ensure_schema()
        chunks = pipeline.ingestor.list_documents(source)
        if not chunks:
            console.print(err_source_not_found(source))
            raise typer.Exit(0)

        console.print(f"\nRemove source: [bold]{source}[/]")
        console.print(f"  Title: {chunks[0].title or '-'}  |  Chunks: {len(chunks)}")

        if not yes:
            if not typer.confirm("Confirm removal?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        removed = pipeline.ingestor.delete_documents(source)

    console.print(f"\n[green]✓[/] Removed: {source} ({removed} chunks)")

