"""ragchat images CLI commands.

Commands:
  ragchat images add <file>            — store an image (jpeg/png/gif/webp, ≤ 5 MB)
  ragchat images list                  — stored images, oldest first
  ragchat images search <query>        — find images matching a text query
  ragchat images similar <file>        — find images similar to an image
  ragchat images get <id> -o out.png   — write a stored image to disk
  ragchat images delete <id>           — remove a stored image
"""

from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from ragchat.chat.pipeline import open_pipeline
from ragchat.cli.context import cli_config, require_db
from ragchat.cli.errors import err_embedding_failed, err_image_not_found, err_ingest
from ragchat.ingest.documents import IngestValidationError
from ragchat.ingest.images import image_input
from ragchat.rag.retriever import ImageResult

console = Console()

images_app = typer.Typer(
    name="images",
    help="Manage stored images (add, list, search, similar, get, delete).",
    add_completion=False,
)

_DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the ragchat database."),
]


@images_app.command("add")
def images_add_cmd(
    path: Annotated[Path, typer.Argument(help="Image file to store.")],
    caption: Annotated[str, typer.Option("--caption", "-c", help="Caption stored with the image.")] = "",
    description: Annotated[
        str, typer.Option("--description", "-d", help="Description stored as metadata.")
    ] = "",
    db: _DbOption = None,
) -> None:
    """Embed and store an image."""
    cfg = cli_config(db)
    require_db(cfg)

    with open_pipeline(cfg, persist=False) as pipeline:
        pipeline.gate.ensure_schema()
        try:
            image_id = pipeline.images.store_file(path, caption=caption, description=description)
        except IngestValidationError as exc:
            console.print(err_ingest(str(path), exc))
            raise typer.Exit(1)
        except Exception as exc:
            console.print(err_embedding_failed(cfg.embedding.image_model, exc))
            raise typer.Exit(1)

    console.print(f"[green]✓[/] Stored {path.name} as [bold]{image_id}[/]")


@images_app.command("list")
def images_list_cmd(db: _DbOption = None) -> None:
    """List stored images."""
    cfg = cli_config(db)
    require_db(cfg)

    with open_pipeline(cfg, persist=False) as pipeline:
        pipeline.gate.ensure_schema()
        records = pipeline.images.list_images()

    if not records:
        console.print("[dim]No images stored.[/]")
        return
    table = Table(title="Images", show_header=True, header_style="bold")
    table.add_column("Id", style="bold")
    table.add_column("File")
    table.add_column("Type")
    table.add_column("Caption")
    for r in records:
        table.add_row(r.id, r.filename, r.mime_type, r.caption or "")
    console.print(table)


@images_app.command("search")
def images_search_cmd(
    query: Annotated[str, typer.Argument(help="Text describing the image.")],
    limit: Annotated[int | None, typer.Option("--limit", "-n", min=1)] = None,
    min_score: Annotated[float | None, typer.Option("--min-score", min=0.0, max=1.0)] = None,
    db: _DbOption = None,
) -> None:
    """Find images matching a text query."""
    cfg = cli_config(db)
    require_db(cfg)

    with open_pipeline(cfg, persist=False) as pipeline:
        pipeline.gate.ensure_schema()
        results = pipeline.retriever.retrieve_images_by_text(
            query,
            limit=limit or cfg.retrieval.limit,
            min_score=cfg.retrieval.min_score if min_score is None else min_score,
        )
    _show_results(results, f"Images for '{query}'")


@images_app.command("similar")
def images_similar_cmd(
    path: Annotated[Path, typer.Argument(help="Image to compare against.")],
    limit: Annotated[int | None, typer.Option("--limit", "-n", min=1)] = None,
    min_score: Annotated[float | None, typer.Option("--min-score", min=0.0, max=1.0)] = None,
    db: _DbOption = None,
) -> None:
    """Find stored images similar to an image file."""
    try:
        query = image_input(path.read_bytes() if path.is_file() else b"", path.name)
    except IngestValidationError as exc:
        console.print(err_ingest(str(path), exc))
        raise typer.Exit(1)

    cfg = cli_config(db)
    require_db(cfg)

    with open_pipeline(cfg, persist=False) as pipeline:
        pipeline.gate.ensure_schema()
        results = pipeline.retriever.retrieve_similar_images(
            query.data,
            query.mime_type,
            limit=limit or cfg.retrieval.limit,
            min_score=cfg.retrieval.min_score if min_score is None else min_score,
        )
    _show_results(results, f"Images similar to {path.name}")


@images_app.command("get")
def images_get_cmd(
    image_id: Annotated[str, typer.Argument(help="Image id.")],
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Where to write the image (default: original file name)."),
    ] = None,
    db: _DbOption = None,
) -> None:
    """Write a stored image to disk."""
    cfg = cli_config(db)
    require_db(cfg)

    with open_pipeline(cfg, persist=False) as pipeline:
        pipeline.gate.ensure_schema()
        found = pipeline.images.get(image_id)

    if found is None:
        console.print(err_image_not_found(image_id))
        raise typer.Exit(1)

    data, filename, mime_type = found
    target = output or Path(filename)
    if not target.suffix:
        target = target.with_suffix(mimetypes.guess_extension(mime_type) or "")
    target.write_bytes(data)
    console.print(f"[green]✓[/] Wrote {target} ({mime_type}, {len(data):,} bytes)")


@images_app.command("delete")
def images_delete_cmd(
    image_id: Annotated[str, typer.Argument(help="Image id.")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
    db: _DbOption = None,
) -> None:
    """Delete a stored image."""
    cfg = cli_config(db)
    require_db(cfg)

    if not yes and not typer.confirm(f"Delete image {image_id}?", default=False):
        console.print("[dim]Cancelled.[/]")
        raise typer.Exit(0)

    with open_pipeline(cfg, persist=False) as pipeline:
        pipeline.gate.ensure_schema()
        deleted = pipeline.images.delete(image_id)

    if not deleted:
        console.print(err_image_not_found(image_id))
        raise typer.Exit(1)
    console.print(f"[green]✓[/] Deleted image {image_id}")


def _show_results(results: list[ImageResult], title: str) -> None:
    if not results:
        console.print("[yellow]No images above the score threshold.[/]")
        return
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Id", style="bold")
    table.add_column("Score", justify="right")
    table.add_column("File")
    table.add_column("Caption")
    for r in results:
        table.add_row(r.id, f"{r.score:.3f}", r.filename, r.caption or "")
    console.print(table)
