"""storybook-mcp: Storybook metadata and screenshots for MCP agents.

Finds a running Storybook (or launches one from a project directory),
reads its catalog, and renders stories in headless Chromium to PNG.

Quick Start:
    from storybook_mcp import CaptureEngine, StorybookDetector

    detector = StorybookDetector()
    endpoint = await detector.detect(project_path="./my-app")
    engine = CaptureEngine("./screenshots")
    result = await engine.capture_story(endpoint.url, "button--primary")
    await engine.close()
    await detector.cleanup()
"""

from __future__ import annotations

from storybook_mcp._types import (
    DEFAULT_VIEWPORT,
    BatchResult,
    CaptureFailure,
    CaptureResult,
    Component,
    ComponentProps,
    EndpointConfig,
    Story,
    StoryDetails,
    Viewport,
)
from storybook_mcp.browser import BrowserSession
from storybook_mcp.capture import CaptureEngine
from storybook_mcp.client import StorybookClient, StorybookClientError, StoryNotFoundError
from storybook_mcp.detector import StorybookDetector
from storybook_mcp.launcher import ManagedProcess, StorybookLauncher
from storybook_mcp.probe import find_running_storybook, validate_storybook_url

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_VIEWPORT",
    "BatchResult",
    "BrowserSession",
    "CaptureEngine",
    "CaptureFailure",
    "CaptureResult",
    "Component",
    "ComponentProps",
    "EndpointConfig",
    "ManagedProcess",
    "Story",
    "StoryDetails",
    "StoryNotFoundError",
    "StorybookClient",
    "StorybookClientError",
    "StorybookDetector",
    "StorybookLauncher",
    "Viewport",
    "find_running_storybook",
    "validate_storybook_url",
]
