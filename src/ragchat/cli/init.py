"""ragchat init — project scaffold.

Creates:
  .ragchat.db              — database with both collections (text + image)
  ragchat.yaml             — project config with the defaults spelled out
  ~/.ragchat/config.yaml   — global model config (created once, mode 0o600)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from ragchat.cli.errors import err_config
from ragchat.config import ConfigError, RagChatConfig, ensure_global_config, load_config
from ragchat.db.connection import Database
from ragchat.db.schema import create_collections, drop_collections, initialize

console = Console()

_DEFAULT_PROJECT_DIR = Path(".")


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
    reset: Annotated[
        bool,
        typer.Option(
            "--reset",
            help="Drop both collections (all documents and images) and recreate them, "
            "e.g. after changing embedding dimensions.",
        ),
    ] = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip the --reset confirmation.")] = False,
    global_config: Annotated[
        Path | None,
        typer.Option("--global-config", hidden=True, help="Override global config path (for testing)."),
    ] = None,
) -> None:
    """Initialize a ragchat project: database, collections and config files."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    console.print(f"\n[bold]Creating ragchat project in {project_dir} …[/]\n")

    cfg_path = ensure_global_config(global_config)
    console.print(f"  [green]✓[/] {cfg_path} (global config)")

    _create_ragchat_yaml(project_dir)

    try:
        cfg = load_config(project_dir, global_config_path=global_config)
    except ConfigError as exc:
        console.print(err_config(exc))
        raise typer.Exit(1)

    if reset and not yes and not typer.confirm(
        "Delete every ingested document and image?", default=False
    ):
        console.print("[dim]Cancelled.[/]")
        raise typer.Exit(0)

    _create_database(project_dir, cfg, reset)
    _update_gitignore(project_dir)

    console.print("\n[bold green]✓ Project initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. ollama serve                      (start the generation service)")
    console.print("  2. ragchat ingest <file>             (build the knowledge base)")
    console.print("  3. ragchat chat                      (ask questions about it)")


def _create_database(project_dir: Path, cfg: RagChatConfig, reset: bool = False) -> None:
    db_path = Path(cfg.storage.db)
    if not db_path.is_absolute():
        db_path = project_dir / db_path
    existed = db_path.exists()
    with Database(db_path) as conn:
        initialize(conn)
        if reset:
            drop_collections(conn)
            console.print("  [yellow]↺[/] collections dropped")
        created = create_collections(
            conn, cfg.embedding.dimensions, cfg.embedding.image_dimensions
        )
    if existed and not created:
        console.print(f"  [dim]↷ {db_path.name} already initialized — data preserved[/]")
    else:
        console.print(f"  [green]✓[/] {db_path.name} ({', '.join(created) or 'schema'})")


def _create_ragchat_yaml(project_dir: Path) -> None:
    target = project_dir / "ragchat.yaml"
    if target.exists():
        console.print("  [dim]↷ ragchat.yaml exists — left unchanged[/]")
        return
    content = (
        "generation:\n"
        "  model: ollama_chat/llama3\n"
        "  api_base: http://localhost:11434\n"
        "  timeout: 120\n"
        "\n"
        "embedding:\n"
        "  model: ollama/nomic-embed-text\n"
        "  dimensions: 768\n"
        "\n"
        "retrieval:\n"
        "  limit: 5\n"
        "  min_score: 0.7\n"
        "\n"
        "chunking:\n"
        "  chunk_size: 500\n"
        "  chunk_overlap: 100\n"
        "  preserve_paragraphs: true\n"
        "\n"
        "# chat:\n"
        "#   use_rag: true\n"
        "#   system_prompt: \"...\"\n"
    )
    target.write_text(content, encoding="utf-8")
    console.print("  [green]✓[/] ragchat.yaml")


def _update_gitignore(project_dir: Path) -> None:
    """Add ragchat entries to .gitignore if it already exists."""
    gitignore = project_dir / ".gitignore"
    entries = [".ragchat.db", ".ragchat.db-wal", ".ragchat.db-shm"]

    if gitignore.exists():
        existing = gitignore.read_text(encoding="utf-8")
        to_add = [e for e in entries if e not in existing]
        if to_add:
            with gitignore.open("a", encoding="utf-8") as f:
                f.write("\n# ragchat\n")
                for entry in to_add:
                    f.write(f"{entry}\n")
            console.print("  [green]✓[/] .gitignore (updated with ragchat entries)")
