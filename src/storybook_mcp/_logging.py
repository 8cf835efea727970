"""Logging setup for the MCP server process.

stdout is reserved for the MCP stdio protocol, so records go to JSON-lines
files under ``log_dir`` and, in development, to stderr through rich.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

SERVICE_NAME = "storybook-mcp"
_PACKAGE_LOGGER = "storybook_mcp"

# Handlers installed by setup_logging(), replaced on the next call
_installed: list[logging.Handler] = []


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).strftime(
                "%Y-%m-%d %H:%M:%S"
            ),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            "service": SERVICE_NAME,
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(
    level: str = "INFO",
    log_dir: Path | str | None = None,
    console: bool = False,
) -> logging.Logger:
    """Configure the ``storybook_mcp`` logger and return it."""
    logger = logging.getLogger(_PACKAGE_LOGGER)
    for handler in _installed:
        logger.removeHandler(handler)
        handler.close()
    _installed.clear()

    logger.setLevel(level)
    logger.propagate = False

    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        formatter = JsonLineFormatter()

        combined = logging.FileHandler(log_path / "combined.log", encoding="utf-8")
        combined.setFormatter(formatter)
        _installed.append(combined)

        errors = logging.FileHandler(log_path / "error.log", encoding="utf-8")
        errors.setLevel(logging.ERROR)
        errors.setFormatter(formatter)
        _installed.append(errors)

    if console:
        _installed.append(
            RichHandler(console=Console(stderr=True), show_path=False, markup=False)
        )

    if not _installed:
        _installed.append(logging.NullHandler())

    for handler in _installed:
        logger.addHandler(handler)
    return logger
