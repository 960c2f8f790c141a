"""ragchat health — probe the generation service, vector store and collections.

Exit code 0 when both services are up (missing collections are reported as
``degraded`` and created on the next chat turn), 1 otherwise.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from ragchat.chat.pipeline import build_health_gate
from ragchat.cli.context import cli_config, require_db
from ragchat.cli.errors import warn_missing_api_key
from ragchat.db.connection import Database
from ragchat.db.schema import IMAGE_COLLECTION, TEXT_COLLECTION
from ragchat.rag.health import list_generation_models
from ragchat.rag.llm_client import validate_api_key

console = Console()

_LABEL_STYLE = {"ok": "green", "degraded": "yellow", "unavailable": "red"}


def _mark(up: bool) -> str:
    return "[green]✓ up[/]" if up else "[red]✗ down[/]"


def _exists(flag: bool) -> str:
    return "[green]✓ present[/]" if flag else "[yellow]✗ missing[/]"


def health_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the ragchat database."),
    ] = None,
) -> None:
    """Check service health and schema state."""
    cfg = cli_config(db)
    require_db(cfg)

    with Database(cfg.storage.db) as conn:
        status = build_health_gate(cfg, conn, cfg.storage.db).check_health()

    table = Table(title="ragchat health", show_header=True, header_style="bold")
    table.add_column("Component", style="bold")
    table.add_column("Status")
    table.add_column("Detail", style="dim")

    table.add_row("Generation service", _mark(status.generation_service_up), cfg.generation.api_base)
    table.add_row("Vector store", _mark(status.vector_store_up), cfg.storage.db)
    if status.vector_store_up:
        table.add_row(TEXT_COLLECTION, _exists(status.text_collection_exists), "collection")
        table.add_row(IMAGE_COLLECTION, _exists(status.image_collection_exists), "collection")
    console.print(table)

    style = _LABEL_STYLE[status.label]
    console.print(f"\nOverall: [{style}]{status.label}[/]")

    if status.generation_service_up:
        try:
            models = list_generation_models(cfg.generation.api_base, cfg.health.timeout)
        except (OSError, ValueError):
            models = []
        wanted = cfg.generation.model.split("/", 1)[-1]
        if models and not any(m.split(":")[0] == wanted.split(":")[0] for m in models):
            console.print(
                f"[yellow]⚠  Model '{wanted}' is not pulled.[/]\n"
                f"  Run:  ollama pull {wanted}"
            )
    for model in dict.fromkeys(
        (cfg.generation.model, cfg.embedding.model, cfg.embedding.image_model)
    ):
        try:
            validate_api_key(model)
        except EnvironmentError as exc:
            console.print(warn_missing_api_key(model, exc))
    if status.degraded:
        console.print("  [dim]Collections are created on the next chat turn, or run: ragchat init[/]")

    if not status.all_healthy:
        raise typer.Exit(1)
