"""ragchat ingest — add documents to the knowledge base.

Each file is validated, chunked, embedded and stored in the text
collection. Validation failures are reported per file; the remaining files
are still ingested.

Usage:
  ragchat ingest notes.md manual.pdf
  ragchat ingest --text "Ollama runs models locally." --title "Ollama"
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from ragchat.chat.pipeline import open_pipeline
from ragchat.cli.context import cli_config, require_db
from ragchat.cli.errors import err_embedding_failed, err_ingest
from ragchat.ingest.documents import DocumentIngestor, IngestResult, IngestValidationError

console = Console()


def ingest_cmd(
    sources: Annotated[
        list[Path] | None,
        typer.Argument(help="Files to ingest (.txt .md .rst .csv .log .json .pdf .html)."),
    ] = None,
    text: Annotated[
        str | None,
        typer.Option("--text", help="Ingest this text directly instead of a file."),
    ] = None,
    title: Annotated[
        str | None,
        typer.Option("--title", "-t", help="Document title (required with --text)."),
    ] = None,
    description: Annotated[
        str | None,
        typer.Option("--description", "-d", help="Optional description stored as metadata."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the ragchat database."),
    ] = None,
) -> None:
    """Chunk, embed and store documents for retrieval."""
    if not sources and text is None:
        console.print("[red]Error:[/] Nothing to ingest.\n  Pass files, or --text with --title.")
        raise typer.Exit(1)

    cfg = cli_config(db)
    require_db(cfg)

    failures = 0
    with open_pipeline(cfg, persist=False) as pipeline:
        pipeline.gate.ensure_schema()
        ingestor = pipeline.ingestor

        if text is not None:
            job = _text_job(ingestor, text, title or "", description)
            if not _ingest_one(title or "(untitled text)", job, cfg.embedding.model):
                failures += 1

        for path in sources or []:
            if not _ingest_one(
                str(path),
                _file_job(ingestor, path, title, description),
                cfg.embedding.model,
            ):
                failures += 1

    if failures:
        raise typer.Exit(1)


def _text_job(ingestor: DocumentIngestor, text: str, title: str, description: str | None):
    return lambda: ingestor.ingest_text(text, title, description)


def _file_job(ingestor: DocumentIngestor, path: Path, title: str | None, description: str | None):
    return lambda: ingestor.ingest_file(path, title=title, description=description)


def _ingest_one(label: str, job, embedding_model: str) -> bool:
    console.print(f"\n[bold]{label}[/]")
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
        console=console,
    ) as prog:
        prog.add_task("Chunking and embedding…", total=None)
        try:
            result: IngestResult = job()
        except IngestValidationError as exc:
            console.print(err_ingest(label, exc))
            return False
        except Exception as exc:
            console.print(err_embedding_failed(embedding_model, exc))
            return False

    console.print(f"  [green]✓[/] {result.chunk_count} chunks stored as '{result.source}'")
    return True
