"""HTTP client for Storybook metadata.

Reads ``index.json`` (v4+ ``entries`` or v3 ``stories``) and derives the
component and story listings from it. Story parameters/args are scraped
best-effort from the render frame; a Storybook that does not expose them
simply yields stories without those fields.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import httpx

from storybook_mcp._types import (
    Component,
    ComponentProps,
    IndexEntry,
    Story,
    StoryDetails,
    normalize_url,
)
from storybook_mcp._utils import render_frame_url
from storybook_mcp.probe import INDEX_PATH

logger = logging.getLogger(__name__)

_STORY_STORE_RE = re.compile(r"window\.__STORYBOOK_STORY_STORE__\s*=\s*")


class StorybookClientError(RuntimeError):
    """The Storybook metadata could not be read."""


class StoryNotFoundError(StorybookClientError):
    """A story or component id is not present in the index."""


class StorybookClient:
    """Read-only view of a Storybook instance's catalog.

    Args:
        base_url: Storybook root URL.
        http_client: Client to use instead of an owned one (not closed by
            ``aclose()``).
        timeout: Request timeout in seconds for the owned client.
    """

    def __init__(
        self,
        base_url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._base_url = normalize_url(base_url)
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._index: dict[str, IndexEntry] | None = None

    @property
    def storybook_url(self) -> str:
        return self._base_url

    async def initialize(self) -> None:
        try:
            await self.fetch_index()
        except StorybookClientError as e:
            logger.error(f"Failed to connect to Storybook: {e}")
            raise StorybookClientError(
                f"Failed to connect to Storybook at {self._base_url}. "
                "Ensure Storybook is running."
            ) from e
        logger.info("Successfully connected to Storybook instance")

    async def fetch_index(self) -> dict[str, IndexEntry]:
        """Return the parsed index, fetching it on first use."""
        if self._index is not None:
            return self._index

        try:
            resp = await self._http.get(f"{self._base_url}{INDEX_PATH}")
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch Storybook index: {e}")
            raise StorybookClientError(
                "Failed to fetch Storybook index. Ensure Storybook is running."
            ) from e

        raw_entries = data.get("entries") if isinstance(data, dict) else None
        if raw_entries is None and isinstance(data, dict):
            raw_entries = data.get("stories")
        if not isinstance(raw_entries, dict):
            raise StorybookClientError("Storybook index has no entries")

        self._index = {
            entry_id: IndexEntry.from_dict(entry_id, raw)
            for entry_id, raw in raw_entries.items()
            if isinstance(raw, dict)
        }
        return self._index

    async def list_components(self) -> list[Component]:
        index = await self.fetch_index()
        components: dict[str, Component] = {}
        for entry in index.values():
            if entry.type != "story":
                continue
            component = components.get(entry.title)
            if component is None:
                component = Component(
                    id=entry.title,
                    name=entry.title.split("/")[-1] or entry.title,
                    kind=entry.title,
                )
                components[entry.title] = component
            component.children.append(entry.id)
        return list(components.values())

    async def list_stories(self, component_id: str | None = None) -> list[Story]:
        index = await self.fetch_index()
        stories: list[Story] = []
        for entry_id, entry in index.items():
            if entry.type != "story":
                continue
            if component_id and entry.title != component_id:
                continue
            story_data = await self._fetch_story_data(entry_id) or {}
            stories.append(
                Story(
                    id=entry_id,
                    name=entry.name,
                    title=entry.title,
                    kind=entry.title,
                    component_id=entry.title,
                    parameters=story_data.get("parameters"),
                    args=story_data.get("args"),
                    arg_types=story_data.get("argTypes"),
                )
            )
        return stories

    async def get_story_details(self, story_id: str) -> StoryDetails:
        index = await self.fetch_index()
        entry = index.get(story_id)
        if entry is None:
            raise StoryNotFoundError(f'Story with ID "{story_id}" not found')

        story_data = await self._fetch_story_data(story_id) or {}
        return StoryDetails(
            id=story_id,
            name=entry.name,
            title=entry.title,
            kind=entry.title,
            parameters=story_data.get("parameters"),
            args=story_data.get("args"),
            arg_types=story_data.get("argTypes"),
            initial_args=story_data.get("initialArgs"),
        )

    async def get_component_props(self, component_id: str) -> ComponentProps:
        stories = await self.list_stories(component_id)
        if not stories:
            raise StoryNotFoundError(f'No stories found for component "{component_id}"')

        props: dict[str, Any] = {}
        for story in stories:
            for key, arg_type in (story.arg_types or {}).items():
                props.setdefault(key, arg_type)
        return ComponentProps(component_id=component_id, props=props)

    async def story_ids(self) -> list[str]:
        """Ids of every story entry (docs pages excluded), in index order."""
        index = await self.fetch_index()
        return [entry_id for entry_id, entry in index.items() if entry.type == "story"]

    async def _fetch_story_data(self, story_id: str) -> dict[str, Any] | None:
        """Scrape the story store injected into the render frame, if any."""
        try:
            resp = await self._http.get(render_frame_url(self._base_url, story_id))
            resp.raise_for_status()
            html = resp.text
        except httpx.HTTPError:
            logger.debug(f"Could not extract enhanced story data for {story_id}")
            return None

        store_match = _STORY_STORE_RE.search(html)
        if not store_match:
            return None
        try:
            store, _ = json.JSONDecoder().raw_decode(html, store_match.end())
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse iframe story data for {story_id}")
            return None
        data = store.get(story_id) if isinstance(store, dict) else None
        return data if isinstance(data, dict) else None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
