"""Runtime settings for storybook-mcp.

Resolution order for every field:
1. explicit override (CLI option)
2. environment variable
3. built-in default
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from storybook_mcp._types import normalize_url

LOG_LEVELS: dict[str, str] = {
    "error": "ERROR",
    "warn": "WARNING",
    "warning": "WARNING",
    "info": "INFO",
    "debug": "DEBUG",
}


@dataclass
class Settings:
    storybook_url: str | None = None
    project_path: str | None = None
    output_dir: Path = Path("./screenshots")
    log_level: str = "INFO"
    log_dir: Path | None = None
    console_logging: bool = False

    def __post_init__(self) -> None:
        if self.storybook_url:
            self.storybook_url = normalize_url(self.storybook_url)
        self.output_dir = Path(self.output_dir)
        if self.log_dir is not None:
            self.log_dir = Path(self.log_dir)
        self.log_level = parse_log_level(self.log_level)


def parse_log_level(value: str) -> str:
    """Map a user-facing level name to a ``logging`` level name."""
    level = LOG_LEVELS.get(value.strip().lower())
    if level is None:
        choices = ", ".join(LOG_LEVELS)
        raise ValueError(f"Invalid log level {value!r} (expected one of: {choices})")
    return level


def _env(name: str) -> str | None:
    value = os.getenv(name)
    return value if value else None


def load_settings(
    storybook_url: str | None = None,
    project_path: str | None = None,
    output_dir: str | Path | None = None,
    log_level: str | None = None,
    log_dir: str | Path | None = None,
) -> Settings:
    """Build ``Settings`` from the environment plus explicit overrides."""
    resolved_log_dir = log_dir or _env("STORYBOOK_MCP_LOG_DIR")
    return Settings(
        storybook_url=storybook_url or _env("STORYBOOK_URL"),
        project_path=project_path or _env("STORYBOOK_PROJECT"),
        output_dir=Path(output_dir or _env("SCREENSHOT_OUTPUT_DIR") or "./screenshots"),
        log_level=log_level or _env("LOG_LEVEL") or "info",
        log_dir=Path(resolved_log_dir) if resolved_log_dir else Path.cwd() / "logs",
        console_logging=_env("STORYBOOK_MCP_ENV") == "development",
    )
