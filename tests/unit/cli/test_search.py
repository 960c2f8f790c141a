"""Tests for ragchat search."""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from ragchat.cli.main import app
from ragchat.db.connection import Database
from ragchat.db.models import DocumentChunk
from ragchat.db.repository import Repository

runner = CliRunner()


def _add(project: Path, chunk_id: str, source: str, content: str, embedding: list[float]) -> None:
    with Database(project / ".ragchat.db") as conn:
        Repository(conn).add_chunk(
            DocumentChunk(
                chunk_id=chunk_id,
                content=content,
                source_id=source,
                title=source.split(".")[0].title(),
                chunk_index=0,
                total_chunks=1,
            ),
            embedding,
        )


def _seed(project: Path) -> None:
    _add(project, "c1", "cats.md", "Cats purr when content.", [1.0, 0.0, 0.0])
    _add(project, "c2", "dogs.md", "Dogs bark at strangers.", [0.0, 1.0, 0.0])


def test_search_requires_query(project) -> None:
    result = runner.invoke(app, ["search"])
    assert result.exit_code == 1
    assert "Missing QUERY" in result.output


def test_search_shows_matching_chunks(project, fake_embeddings) -> None:
    _seed(project)

    result = runner.invoke(app, ["search", "purring"])

    assert result.exit_code == 0, result.output
    assert "cats.md" in result.output
    assert "dogs.md" not in result.output


def test_search_low_threshold_includes_more(project, fake_embeddings) -> None:
    _seed(project)

    result = runner.invoke(app, ["search", "animals", "--min-score", "0.4"])

    assert "cats.md" in result.output
    assert "dogs.md" in result.output


def test_search_no_results(project, fake_embeddings) -> None:
    _seed(project)
    fake_embeddings.return_value = [0.0, 0.0, 1.0]

    result = runner.invoke(app, ["search", "weather"])

    assert result.exit_code == 0
    assert "No results above the score threshold" in result.output


def test_search_context_output(project, fake_embeddings) -> None:
    _seed(project)

    result = runner.invoke(app, ["search", "purring", "--context"])

    assert "[Document 1]" in result.output
    assert "Title: Cats | Source: cats.md" in result.output
    assert "Cats purr when content." in result.output


def test_search_sources(project) -> None:
    _seed(project)

    result = runner.invoke(app, ["search", "--sources"])

    assert result.exit_code == 0
    assert "cats.md" in result.output
    assert "dogs.md" in result.output


def test_search_sources_empty(project) -> None:
    result = runner.invoke(app, ["search", "--sources"])
    assert "No sources ingested yet" in result.output


def test_search_embedding_failure_degrades(project, fake_embeddings) -> None:
    _seed(project)
    fake_embeddings.side_effect = ConnectionError("ollama down")

    result = runner.invoke(app, ["search", "purring"])

    assert result.exit_code == 0
    assert "No results" in result.output
