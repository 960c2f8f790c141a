"""Logging setup for ragchat.

Modules log through ``logging.getLogger(__name__)``; the CLI calls
``configure_logging()`` once to attach a Rich handler to the package logger.
"""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

_DEFAULT_LEVEL = os.environ.get("RAGCHAT_LOG_LEVEL", "WARNING")
_PACKAGE_LOGGER = "ragchat"


def configure_logging(level: str | int = _DEFAULT_LEVEL, console: Console | None = None) -> None:
    """Attach a single RichHandler (stderr) to the ``ragchat`` logger."""
    logging.captureWarnings(True)
    logger = logging.getLogger(_PACKAGE_LOGGER)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.handlers = [handler]


__all__ = ["configure_logging"]
