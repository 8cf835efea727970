"""Tests for storybook_mcp.client: reading the Storybook catalog.

Tests cover:
- initialize(): connection failures become StorybookClientError
- Index parsing for v4 (entries) and v3 (stories) layouts, cached
- Components grouped by title; docs entries skipped
- Story listing with scraped story-store data
- Story details, unknown ids, component props merging
"""

import json

import httpx
import pytest

from storybook_mcp.client import StorybookClient, StorybookClientError, StoryNotFoundError

BASE_URL = "http://localhost:6006"

INDEX = {
    "v": 5,
    "entries": {
        "example-button--docs": {
            "id": "example-button--docs",
            "title": "Example/Button",
            "name": "Docs",
            "type": "docs",
        },
        "example-button--primary": {
            "id": "example-button--primary",
            "title": "Example/Button",
            "name": "Primary",
            "type": "story",
        },
        "example-button--large": {
            "id": "example-button--large",
            "title": "Example/Button",
            "name": "Large",
            "type": "story",
        },
        "forms-input--default": {
            "id": "forms-input--default",
            "title": "Forms/Input",
            "name": "Default",
            "type": "story",
        },
    },
}

STORE = {
    "example-button--primary": {
        "parameters": {"layout": "centered"},
        "args": {"primary": True},
        "argTypes": {"label": {"type": "string"}},
        "initialArgs": {"primary": True},
    },
    "example-button--large": {
        "argTypes": {"size": {"type": "string"}, "label": {"type": "other"}},
    },
}


def _iframe(story_id):
    data = STORE.get(story_id)
    if data is None:
        return "<html><body>no store here</body></html>"
    blob = json.dumps({story_id: data}, separators=(",", ":"))
    return f"<script>window.__STORYBOOK_STORY_STORE__ = {blob};</script>"


def _handler(index=INDEX, requests=None):
    def handler(request):
        if requests is not None:
            requests.append(request)
        if request.url.path == "/index.json":
            return httpx.Response(200, json=index)
        if request.url.path == "/iframe.html":
            return httpx.Response(200, text=_iframe(request.url.params["id"]))
        return httpx.Response(404)

    return handler


@pytest.fixture
async def make_client():
    clients = []

    def _make(handler=None):
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler or _handler()))
        client = StorybookClient(f"{BASE_URL}/", http_client=http)
        clients.append(http)
        return client

    yield _make
    for http in clients:
        await http.aclose()


class TestInitialize:
    async def test_ok(self, make_client):
        client = make_client()
        await client.initialize()
        assert client.storybook_url == BASE_URL

    async def test_connection_refused(self, make_client):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler)
        with pytest.raises(StorybookClientError, match=f"Failed to connect to Storybook at {BASE_URL}"):
            await client.initialize()

    async def test_http_error(self, make_client):
        client = make_client(lambda r: httpx.Response(500))
        with pytest.raises(StorybookClientError, match="Failed to fetch Storybook index"):
            await client.fetch_index()

    async def test_index_without_entries(self, make_client):
        client = make_client(lambda r: httpx.Response(200, json={"v": 5}))
        with pytest.raises(StorybookClientError, match="no entries"):
            await client.fetch_index()


class TestFetchIndex:
    async def test_cached(self, make_client):
        requests = []
        client = make_client(_handler(requests=requests))
        await client.fetch_index()
        await client.fetch_index()
        assert len(requests) == 1

    async def test_v3_stories_layout(self, make_client):
        v3 = {"v": 3, "stories": {"button--primary": {"kind": "Button", "name": "Primary"}}}
        client = make_client(_handler(index=v3))
        index = await client.fetch_index()
        assert index["button--primary"].title == "Button"
        assert await client.story_ids() == ["button--primary"]


class TestCatalog:
    async def test_list_components(self, make_client):
        components = await make_client().list_components()
        assert [c.id for c in components] == ["Example/Button", "Forms/Input"]
        button = components[0]
        assert button.name == "Button"
        assert button.kind == "Example/Button"
        assert button.children == ["example-button--primary", "example-button--large"]

    async def test_list_stories(self, make_client):
        stories = await make_client().list_stories()
        assert [s.id for s in stories] == [
            "example-button--primary",
            "example-button--large",
            "forms-input--default",
        ]
        primary = stories[0]
        assert primary.component_id == "Example/Button"
        assert primary.parameters == {"layout": "centered"}
        assert primary.args == {"primary": True}
        assert stories[2].arg_types is None

    async def test_list_stories_for_component(self, make_client):
        stories = await make_client().list_stories("Forms/Input")
        assert [s.id for s in stories] == ["forms-input--default"]

    async def test_story_ids_skip_docs(self, make_client):
        ids = await make_client().story_ids()
        assert "example-button--docs" not in ids
        assert len(ids) == 3

    async def test_get_story_details(self, make_client):
        details = await make_client().get_story_details("example-button--primary")
        assert details.name == "Primary"
        assert details.initial_args == {"primary": True}
        assert details.to_dict()["argTypes"] == {"label": {"type": "string"}}

    async def test_get_story_details_unknown(self, make_client):
        with pytest.raises(StoryNotFoundError, match='Story with ID "nope" not found'):
            await make_client().get_story_details("nope")

    async def test_get_component_props_merges_first_wins(self, make_client):
        props = await make_client().get_component_props("Example/Button")
        assert props.props == {
            "label": {"type": "string"},
            "size": {"type": "string"},
        }

    async def test_get_component_props_unknown(self, make_client):
        with pytest.raises(StoryNotFoundError):
            await make_client().get_component_props("Nope")

    async def test_iframe_failure_is_not_fatal(self, make_client):
        def handler(request):
            if request.url.path == "/iframe.html":
                return httpx.Response(500)
            return httpx.Response(200, json=INDEX)

        stories = await make_client(handler).list_stories()
        assert len(stories) == 3
        assert all(s.args is None for s in stories)

    async def test_malformed_story_store(self, make_client):
        def handler(request):
            if request.url.path == "/iframe.html":
                return httpx.Response(200, text="window.__STORYBOOK_STORY_STORE__ = {oops")
            return httpx.Response(200, json=INDEX)

        details = await make_client(handler).get_story_details("example-button--primary")
        assert details.parameters is None
        assert details.name == "Primary"


class TestClose:
    async def test_borrowed_client_left_open(self, make_client):
        client = make_client()
        await client.aclose()
        assert not client._http.is_closed

    async def test_owned_client_closed(self):
        client = StorybookClient(BASE_URL)
        await client.aclose()
        assert client._http.is_closed
