"""ragchat search — query the knowledge base without generating an answer."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from ragchat.chat.pipeline import open_pipeline
from ragchat.cli.context import cli_config, require_db
from ragchat.rag.assembler import format_context

console = Console()


def search_cmd(
    query: Annotated[
        str | None,
        typer.Argument(help="Text to search for."),
    ] = None,
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", min=1, help="Maximum number of results."),
    ] = None,
    min_score: Annotated[
        float | None,
        typer.Option("--min-score", min=0.0, max=1.0, help="Minimum certainty score."),
    ] = None,
    sources: Annotated[
        bool,
        typer.Option("--sources", help="List ingested sources instead of searching."),
    ] = False,
    show_context: Annotated[
        bool,
        typer.Option("--context", help="Print the context block sent to the model."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the ragchat database."),
    ] = None,
) -> None:
    """Retrieve the chunks most similar to QUERY."""
    if not sources and not query:
        console.print("[red]Error:[/] Missing QUERY.\n  Run:  ragchat search \"your question\"")
        raise typer.Exit(1)

    cfg = cli_config(db)
    require_db(cfg)

    with open_pipeline(cfg, persist=False) as pipeline:
        pipeline.gate.ensure_schema()

        if sources:
            _show_sources(pipeline.ingestor.list_sources())
            return

        results = pipeline.retriever.retrieve(
            query,
            limit=limit or cfg.retrieval.limit,
            min_score=cfg.retrieval.min_score if min_score is None else min_score,
        )

    if not results:
        console.print("[yellow]No results above the score threshold.[/]")
        return

    if show_context:
        console.print(format_context(results), markup=False, highlight=False)
        return

    table = Table(title=f"Results for '{query}'", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Source")
    table.add_column("Excerpt")
    for i, r in enumerate(results, start=1):
        excerpt = r.content.replace("\n", " ")
        table.add_row(
            str(i),
            f"{r.score:.3f}",
            r.source or "-",
            excerpt[:80] + ("…" if len(excerpt) > 80 else ""),
        )
    console.print(table)


def _show_sources(rows: list[tuple[str, str, int]]) -> None:
    if not rows:
        console.print("[yellow]No sources ingested yet.[/]\n  Run:  ragchat ingest <file>")
        return
    table = Table(title="Sources", show_header=True, header_style="bold")
    table.add_column("Source", style="bold")
    table.add_column("Title")
    table.add_column("Chunks", justify="right")
    for source, title, n in rows:
        table.add_row(source, title or "", str(n))
    console.print(table)
