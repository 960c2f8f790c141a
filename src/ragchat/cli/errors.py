"""ragchat rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from ragchat.cli.errors import err_no_db
    console.print(err_no_db(".ragchat.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from ragchat.rag.health import HealthStatus


def err_no_db(db_path: str = ".ragchat.db") -> str:
    """No database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  ragchat init"
    )


def err_config(exc: Exception) -> str:
    """Config file rejected by the loader."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {exc}\n"
        "  Fix ragchat.yaml (or ~/.ragchat/config.yaml) and retry."
    )


def err_service_unavailable(status: HealthStatus, api_base: str) -> str:
    """A chat turn was refused because a service is down.

    Example:
        Generation service unreachable at http://localhost:11434.
          Start it:  ollama serve
    """
    lines = ["[red]Error:[/] Required services are unavailable."]
    if not status.generation_service_up:
        lines.append(f"  Generation service unreachable at {api_base}.")
        lines.append("    Start it:  ollama serve")
    if not status.vector_store_up:
        lines.append("  Vector store could not be opened.")
        lines.append("    Check the database path, or run:  ragchat init")
    lines.append("  Check status:  ragchat health")
    return "\n".join(lines)


def err_ingest(source: str, exc: Exception) -> str:
    """Ingestion input rejected before anything was written."""
    return f"[red]✗ Error:[/] {source}: {exc}"


def err_embedding_failed(model: str, exc: Exception) -> str:
    """The embedding call failed; nothing was stored."""
    hint = f"ollama pull {model.split('/', 1)[-1]}" if model.startswith("ollama") else (
        "check the provider credentials in your environment"
    )
    return (
        f"[red]Error:[/] Embedding with '{model}' failed: {exc}\n"
        f"  Nothing was stored. Fix:  {hint}"
    )


def err_source_not_found(source: str) -> str:
    """Source is not in the knowledge base."""
    return (
        f"[yellow]Source not found:[/] '{source}'\n"
        "  List sources:  ragchat search --sources"
    )


def err_image_not_found(image_id: str) -> str:
    return (
        f"[yellow]Image not found:[/] '{image_id}'\n"
        "  Find images:  ragchat images search <query>"
    )


def err_unknown_conversation(ref: str) -> str:
    return (
        f"[red]Error:[/] No conversation matches '{ref}'.\n"
        "  List conversations:  ragchat conversations list"
    )


def err_ambiguous_conversation(ref: str, count: int) -> str:
    return (
        f"[red]Error:[/] '{ref}' matches {count} conversations.\n"
        "  Use a longer id prefix."
    )


def warn_persist_failed() -> str:
    """Chat state could not be written; the session continues in memory."""
    return (
        "[yellow]⚠  Chat history could not be saved to the database.[/]\n"
        "  This session continues in memory only."
    )


def warn_missing_api_key(model: str, exc: Exception) -> str:
    """A configured hosted model has no credentials in the environment."""
    return f"[yellow]⚠  {model}:[/] {exc}"
