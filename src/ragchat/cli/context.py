"""Shared CLI plumbing: config loading and database checks."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from ragchat.cli.errors import err_config, err_no_db
from ragchat.config import ConfigError, RagChatConfig, load_config

console = Console()


def cli_config(db: Path | None = None) -> RagChatConfig:
    """Load config for a command; ``--db`` overrides ``storage.db``."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(exc))
        raise typer.Exit(1)
    if db is not None:
        cfg.storage.db = str(db)
    return cfg


def require_db(cfg: RagChatConfig) -> None:
    """Exit with an actionable message when the project database is missing."""
    if not Path(cfg.storage.db).exists():
        console.print(err_no_db(cfg.storage.db))
        raise typer.Exit(1)
