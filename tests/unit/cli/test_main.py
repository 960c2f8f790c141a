"""Tests for the top-level ragchat app."""

from __future__ import annotations

import logging

from typer.testing import CliRunner

from ragchat.cli.main import app

runner = CliRunner()


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("ragchat ")


def test_version_command() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "ragchat" in result.output


def test_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("init", "health", "ingest", "remove", "search", "chat", "ask", "images", "conversations"):
        assert command in result.output


def test_verbose_enables_debug_logging(project) -> None:
    runner.invoke(app, ["--verbose", "search", "--sources"])
    assert logging.getLogger("ragchat").level == logging.DEBUG
