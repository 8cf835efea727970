"""Storybook discovery: find a live instance or start one.

Resolution order, cheapest first:
    1. the URL the user gave us, if it answers
    2. the conventional local ports (6006, 6007, 9009, 9010)
    3. launching from the configured project directory
    4. launching from the current working directory

The detector owns at most one managed process at a time and is the only
thing that stops it (``cleanup()``).
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Iterable
from pathlib import Path

from storybook_mcp._types import EndpointConfig
from storybook_mcp.launcher import ManagedProcess, StorybookLauncher
from storybook_mcp.probe import (
    COMMON_PORTS,
    Validator,
    find_running_storybook,
    validate_storybook_url,
)

__all__ = [
    "COMMON_PORTS",
    "StorybookDetector",
    "find_running_storybook",
    "validate_storybook_url",
]

logger = logging.getLogger(__name__)


class StorybookDetector:
    """Resolve a Storybook endpoint through the fallback chain.

    Args:
        validate: Probe used for the provided URL, port scan and launcher.
        launcher: Launcher for the spawn fallbacks (built from ``validate``
            when omitted).
        ports: Ports tried by the scan, in order.
        cwd: Directory for the last-resort launch (process cwd by default).
    """

    def __init__(
        self,
        validate: Validator = validate_storybook_url,
        launcher: StorybookLauncher | None = None,
        ports: Iterable[int] = COMMON_PORTS,
        cwd: str | Path | None = None,
    ) -> None:
        self._validate = validate
        self._launcher = launcher or StorybookLauncher(validate=validate)
        self._ports = tuple(ports)
        self._cwd = cwd
        self.managed_process: ManagedProcess | None = None

    async def detect(
        self,
        provided_url: str | None = None,
        project_path: str | Path | None = None,
    ) -> EndpointConfig | None:
        if provided_url:
            if await self._validate(provided_url):
                logger.info(f"Using provided Storybook URL: {provided_url}")
                return EndpointConfig(url=provided_url)
            logger.warning(f"Provided URL {provided_url} is not responding")

        running_url = await find_running_storybook(self._ports, self._validate)
        if running_url:
            logger.info(f"Found running Storybook at: {running_url}")
            return EndpointConfig(url=running_url)

        if project_path:
            launched = await self._launcher.launch(project_path, tracker=self)
            if launched is not None:
                return launched

        cwd = self._cwd if self._cwd is not None else os.getcwd()
        launched = await self._launcher.launch(cwd, tracker=self)
        if launched is not None:
            return launched

        logger.info("No Storybook instance could be found or launched")
        return None

    def track(self, process: ManagedProcess) -> None:
        """Record ``process`` as the managed process.

        A previously tracked process is not stopped; it stays the caller's
        to clean up.
        """
        previous = self.managed_process
        if previous is not None and previous is not process:
            logger.warning(
                f"Replacing tracked Storybook process (pid={previous.pid}) "
                "without stopping it"
            )
        self.managed_process = process

    def untrack(self, process: ManagedProcess) -> None:
        """Forget ``process`` if it is the one currently tracked."""
        if self.managed_process is process:
            self.managed_process = None

    async def cleanup(self) -> None:
        """Stop the managed process, if any. Safe to call repeatedly."""
        process = self.managed_process
        if process is None:
            return
        logger.info("Stopping managed Storybook process")
        self.managed_process = None
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, process.terminate)
