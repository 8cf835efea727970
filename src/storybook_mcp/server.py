"""MCP server exposing Storybook metadata and screenshots.

Wraps a FastMCP app served over stdio. On startup it tries to auto-detect
a Storybook (see ``StorybookDetector``). If that fails the server still
starts, and every tool except ``storybook_configure`` answers with a
"not initialized" error until a Storybook is connected.

Tools:
    storybook_configure               → (re)connect via URL and/or project path
    storybook_list_components         → components derived from the index
    storybook_list_stories            → stories, optionally per component
    storybook_get_story_details       → one story with args/parameters
    storybook_get_component_props     → merged argTypes of a component
    storybook_capture_screenshot      → PNG of one story (file or inline)
    storybook_capture_all_screenshots → PNG of every story
    storybook_capture_viewports       → one story at several viewports

Resources:
    storybook://config                → connection status and endpoint
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from mcp.types import ImageContent, TextContent

from storybook_mcp._types import BatchResult, CaptureResult, EndpointConfig, Viewport
from storybook_mcp.capture import CaptureEngine
from storybook_mcp.client import StorybookClient, StorybookClientError
from storybook_mcp.config import Settings
from storybook_mcp.detector import StorybookDetector

logger = logging.getLogger(__name__)

SERVER_NAME = "storybook-mcp"
CONFIG_RESOURCE_URI = "storybook://config"

NOT_INITIALIZED_MESSAGE = (
    "Storybook is not initialized. Please use the storybook_configure tool "
    "first, or ensure Storybook is running."
)

CONNECT_HELP_MESSAGE = """Failed to connect to Storybook. Please ensure:
1. Storybook is running at the specified URL, or
2. The project path contains a valid Storybook setup

You can:
- Start Storybook manually and provide the URL
- Provide a project path with package.json containing Storybook scripts
- Ensure Storybook is running on a common port (6006, 6007, 9009, 9010)"""

Content = TextContent | ImageContent


def _text(text: str) -> TextContent:
    return TextContent(type="text", text=text)


def _image(result: CaptureResult) -> ImageContent:
    return ImageContent(type="image", data=result.data or "", mimeType=result.mime_type)


def _to_json(value: Any) -> str:
    return json.dumps(value, indent=2)


class StorybookMCPServer:
    """Storybook tools over MCP.

    Args:
        settings: Runtime settings (URL/project used for auto-detection,
            screenshot output directory).
        detector: Endpoint detector; owns any Storybook process we launch.
        engine: Capture engine; owns the shared browser.
        client_factory: Builds a metadata client for a resolved URL.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        detector: StorybookDetector | None = None,
        engine: CaptureEngine | None = None,
        client_factory: Callable[[str], StorybookClient] = StorybookClient,
    ) -> None:
        self.settings = settings or Settings()
        self.detector = detector or StorybookDetector()
        self.engine = engine or CaptureEngine(self.settings.output_dir)
        self._client_factory = client_factory
        self.endpoint: EndpointConfig | None = None
        self.client: StorybookClient | None = None
        self.is_initialized = False
        self._connect_lock = asyncio.Lock()
        self.mcp = self._build_app()

    def _build_app(self) -> FastMCP:
        mcp = FastMCP(
            name=SERVER_NAME,
            instructions=(
                "Browse a Storybook catalog and capture screenshots of its stories. "
                "Call storybook_configure first if no Storybook was auto-detected."
            ),
        )
        tools: list[tuple[str, Callable[..., Any]]] = [
            ("storybook_configure", self.configure),
            ("storybook_list_components", self.list_components),
            ("storybook_list_stories", self.list_stories),
            ("storybook_get_story_details", self.get_story_details),
            ("storybook_get_component_props", self.get_component_props),
            ("storybook_capture_screenshot", self.capture_screenshot),
            ("storybook_capture_all_screenshots", self.capture_all_screenshots),
            ("storybook_capture_viewports", self.capture_viewports),
        ]
        for name, handler in tools:
            mcp.tool(handler, name=name, output_schema=None)

        mcp.resource(
            CONFIG_RESOURCE_URI,
            name="Storybook Configuration",
            description="Current Storybook server configuration and status",
            mime_type="application/json",
        )(self.read_config)
        return mcp

    # -- connection ---------------------------------------------------------

    async def _connect(
        self, url: str | None, project_path: str | None
    ) -> EndpointConfig | None:
        """Detect a Storybook and swap in a client for it.

        Raises StorybookClientError if a Storybook was found but its index
        could not be read.
        """
        endpoint = await self.detector.detect(url, project_path)
        if endpoint is None:
            return None

        client = self._client_factory(endpoint.url)
        try:
            await client.initialize()
        except StorybookClientError:
            await client.aclose()
            raise

        previous = self.client
        self.endpoint = endpoint
        self.client = client
        self.is_initialized = True
        if previous is not None:
            await previous.aclose()
        return endpoint

    async def ensure_initialized(self) -> bool:
        """Connect using the configured URL/project unless already connected."""
        async with self._connect_lock:
            if self.is_initialized and self.client is not None:
                return True
            try:
                endpoint = await self._connect(
                    self.settings.storybook_url, self.settings.project_path
                )
            except StorybookClientError as e:
                logger.error(f"Failed to initialize Storybook client: {e}")
                return False
            return endpoint is not None

    async def _require_client(self) -> StorybookClient:
        if not await self.ensure_initialized() or self.client is None:
            raise ToolError(NOT_INITIALIZED_MESSAGE)
        return self.client

    @contextmanager
    def _tool_errors(self, tool: str) -> Iterator[None]:
        try:
            yield
        except ToolError:
            raise
        except Exception as e:
            logger.error(f"Error executing tool {tool}: {e}")
            raise ToolError(f"Error: {e}") from e

    # -- tools --------------------------------------------------------------

    async def configure(
        self, url: str | None = None, project_path: str | None = None
    ) -> str:
        """Configure or reconfigure the Storybook connection.

        Pass a Storybook URL (e.g. http://localhost:6006) and/or the path of
        a project containing Storybook, which is launched if needed.
        """
        async with self._connect_lock:
            try:
                endpoint = await self._connect(url, project_path)
            except StorybookClientError as e:
                return f"Found Storybook but failed to initialize: {e}"
        if endpoint is None:
            return CONNECT_HELP_MESSAGE

        managed = (
            "Yes (launched by MCP server)"
            if endpoint.is_managed
            else "No (externally running)"
        )
        return (
            "Successfully connected to Storybook!\n"
            f"URL: {endpoint.url}\n"
            f"Project: {endpoint.project_path or 'N/A'}\n"
            f"Managed: {managed}\n\n"
            "You can now use all Storybook tools."
        )

    async def list_components(self) -> str:
        """List all components available in the Storybook instance."""
        client = await self._require_client()
        with self._tool_errors("storybook_list_components"):
            components = await client.list_components()
        return _to_json([c.to_dict() for c in components])

    async def list_stories(self, component_id: str | None = None) -> str:
        """List all stories, optionally filtered by component."""
        client = await self._require_client()
        with self._tool_errors("storybook_list_stories"):
            stories = await client.list_stories(component_id)
        return _to_json([s.to_dict() for s in stories])

    async def get_story_details(self, story_id: str) -> str:
        """Get detailed information about a specific story."""
        client = await self._require_client()
        with self._tool_errors("storybook_get_story_details"):
            details = await client.get_story_details(story_id)
        return _to_json(details.to_dict())

    async def get_component_props(self, component_id: str) -> str:
        """Get the props/properties definition for a component."""
        client = await self._require_client()
        with self._tool_errors("storybook_get_component_props"):
            props = await client.get_component_props(component_id)
        return _to_json(props.to_dict())

    async def capture_screenshot(
        self,
        story_id: str,
        viewport: dict[str, int] | None = None,
        return_as_image: bool = False,
    ) -> list[Content]:
        """Capture a screenshot of a specific story.

        viewport is {"width": px, "height": px} (default 1280x720). With
        return_as_image the PNG is returned inline instead of saved to disk.
        """
        client = await self._require_client()
        with self._tool_errors("storybook_capture_screenshot"):
            result = await self.engine.capture_story(
                client.storybook_url,
                story_id,
                Viewport.from_dict(viewport),
                inline=return_as_image,
            )
        if result.is_inline:
            return [_image(result)]
        return [_text(f"Screenshot captured: {result.path}")]

    async def capture_all_screenshots(
        self,
        viewport: dict[str, int] | None = None,
        return_as_images: bool = False,
    ) -> list[Content]:
        """Capture screenshots of all stories.

        With return_as_images the PNGs are returned inline instead of saved
        to disk.
        """
        client = await self._require_client()
        with self._tool_errors("storybook_capture_all_screenshots"):
            story_ids = await client.story_ids()
            batch = await self.engine.capture_stories(
                client.storybook_url,
                story_ids,
                Viewport.from_dict(viewport),
                inline=return_as_images,
            )
        return _batch_content(batch, return_as_images, label_prefix="Story")

    async def capture_viewports(
        self,
        story_id: str,
        viewports: list[dict[str, int]],
        return_as_images: bool = False,
    ) -> list[Content]:
        """Capture one story at several viewport sizes.

        viewports is a list of {"width": px, "height": px}; results are
        labelled WIDTHxHEIGHT.
        """
        client = await self._require_client()
        with self._tool_errors("storybook_capture_viewports"):
            parsed = [Viewport.from_dict(v) for v in viewports]
            batch = await self.engine.capture_viewports(
                client.storybook_url, story_id, parsed, inline=return_as_images
            )
        return _batch_content(batch, return_as_images, label_prefix="Viewport")

    # -- resources ----------------------------------------------------------

    def read_config(self) -> str:
        """Current Storybook server configuration and status."""
        return _to_json(
            {
                "initialized": self.is_initialized,
                "config": self.endpoint.to_dict() if self.endpoint else None,
                "status": "connected" if self.is_initialized else "disconnected",
            }
        )

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        logger.info("Starting Storybook MCP Server...")
        if await self.ensure_initialized() and self.endpoint is not None:
            logger.info(f"Auto-connected to Storybook at {self.endpoint.url}")
        else:
            logger.info(
                "No Storybook instance detected. Use storybook_configure tool to connect."
            )

    async def stop(self) -> None:
        """Release the browser, the managed Storybook and the HTTP client."""
        try:
            await self.engine.close()
        finally:
            await self.detector.cleanup()
            client, self.client = self.client, None
            self.is_initialized = False
            if client is not None:
                await client.aclose()
        logger.info("Storybook MCP Server stopped")

    async def run(self, transport: str = "stdio") -> None:
        """Serve until the transport closes or SIGTERM/SIGINT arrives."""
        main_task = asyncio.current_task()
        if sys.platform != "win32" and main_task is not None:
            loop = asyncio.get_running_loop()
            loop.add_signal_handler(signal.SIGTERM, main_task.cancel)

        await self.start()
        try:
            logger.info(f"Serving MCP over {transport}")
            await self.mcp.run_async(transport=transport)
        finally:
            await self.stop()


def _batch_content(
    batch: BatchResult, inline: bool, label_prefix: str
) -> list[Content]:
    """Render a batch as MCP content: summary first, then each artifact."""
    content: list[Content] = [_text(batch.summary())]
    if inline:
        for key, result in batch.results.items():
            content.append(_text(f"{label_prefix}: {key}"))
            content.append(_image(result))
    elif batch.results:
        lines = [f"{key}: {result.path}" for key, result in batch.results.items()]
        content.append(_text("\n".join(lines)))

    if batch.failures:
        failed = "\n".join(f"{f.key}: {f.error}" for f in batch.failures)
        content.append(_text(f"Failed ({len(batch.failures)}):\n{failed}"))
    return content
