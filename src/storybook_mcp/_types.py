"""Type definitions for storybook-mcp.

Defines the data structures shared by the detector, the capture engine,
the metadata client and the MCP server: resolved endpoints, viewports,
capture artifacts, batch outcomes and the catalog entities read from a
Storybook index.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from storybook_mcp.launcher import ManagedProcess

PNG_MIME_TYPE = "image/png"


def normalize_url(url: str) -> str:
    """Strip trailing slashes so URLs can be joined with absolute paths."""
    return url.strip().rstrip("/")


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------


@dataclass
class EndpointConfig:
    """A resolved Storybook endpoint.

    ``is_managed`` means the process was spawned by us and the owner of
    this config is responsible for tearing ``process`` down.
    """

    url: str
    project_path: str | None = None
    is_managed: bool = False
    process: ManagedProcess | None = None

    def __post_init__(self) -> None:
        self.url = normalize_url(self.url)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "project_path": self.project_path,
            "is_managed": self.is_managed,
            "pid": self.process.pid if self.process is not None else None,
        }


# ---------------------------------------------------------------------------
# Viewport
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Viewport:
    """Browser viewport dimensions in CSS pixels."""

    width: int
    height: int

    def __post_init__(self) -> None:
        for name in ("width", "height"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"Viewport {name} must be an integer, got {value!r}")
            if value <= 0:
                raise ValueError(f"Viewport {name} must be positive, got {value}")

    @property
    def label(self) -> str:
        return f"{self.width}x{self.height}"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Viewport:
        """Build a viewport from ``{"width": ..., "height": ...}``.

        ``None`` yields the default viewport. Integral floats (as JSON
        numbers often arrive) are accepted.
        """
        if data is None:
            return DEFAULT_VIEWPORT
        try:
            width = data["width"]
            height = data["height"]
        except KeyError as e:
            raise ValueError(f"Viewport is missing {e.args[0]!r}") from None
        return cls(width=_as_int(width), height=_as_int(height))

    def to_dict(self) -> dict[str, int]:
        return {"width": self.width, "height": self.height}


def _as_int(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


DEFAULT_VIEWPORT = Viewport(width=1280, height=720)


# ---------------------------------------------------------------------------
# Capture results
# ---------------------------------------------------------------------------


@dataclass
class CaptureResult:
    """A single screenshot: either a file on disk or inline base64 PNG data."""

    story_id: str
    viewport: Viewport
    path: Path | None = None
    data: str | None = None
    mime_type: str = PNG_MIME_TYPE

    def __post_init__(self) -> None:
        if (self.path is None) == (self.data is None):
            raise ValueError("CaptureResult needs exactly one of path or data")

    @property
    def is_inline(self) -> bool:
        return self.data is not None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "story_id": self.story_id,
            "viewport": self.viewport.to_dict(),
            "mime_type": self.mime_type,
        }
        if self.path is not None:
            d["path"] = str(self.path)
        else:
            d["data"] = self.data
        return d


@dataclass
class CaptureFailure:
    """A batch item that failed; ``key`` is a story id or viewport label."""

    key: str
    error: str


@dataclass
class BatchResult:
    """Outcome of a sequential batch capture.

    ``results`` preserves request order and only holds successes, keyed by
    story id (batch by id) or viewport label (batch by viewport).
    """

    requested: int
    results: dict[str, CaptureResult] = field(default_factory=dict)
    failures: list[CaptureFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.results)

    def summary(self) -> str:
        if not self.results:
            return f"No screenshots were captured (0 of {self.requested} succeeded)"
        return f"Captured {self.succeeded} of {self.requested} screenshots"


# ---------------------------------------------------------------------------
# Catalog entities
# ---------------------------------------------------------------------------


@dataclass
class IndexEntry:
    """One entry of a Storybook ``index.json``."""

    id: str
    title: str
    name: str
    type: str = "story"
    import_path: str | None = None
    tags: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, entry_id: str, data: dict[str, Any]) -> IndexEntry:
        return cls(
            id=data.get("id", entry_id),
            title=data.get("title") or data.get("kind", ""),
            name=data.get("name", ""),
            type=data.get("type", "story"),
            import_path=data.get("importPath"),
            tags=list(data.get("tags") or []),
        )


@dataclass
class Component:
    """A component groups the stories sharing one title."""

    id: str
    name: str
    kind: str
    children: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "children": list(self.children),
        }


@dataclass
class Story:
    id: str
    name: str
    title: str
    kind: str
    component_id: str | None = None
    parameters: dict[str, Any] | None = None
    args: dict[str, Any] | None = None
    arg_types: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "title": self.title,
            "kind": self.kind,
            "componentId": self.component_id,
        }
        if self.parameters is not None:
            d["parameters"] = self.parameters
        if self.args is not None:
            d["args"] = self.args
        if self.arg_types is not None:
            d["argTypes"] = self.arg_types
        return d


@dataclass
class StoryDetails:
    id: str
    name: str
    title: str
    kind: str
    parameters: dict[str, Any] | None = None
    args: dict[str, Any] | None = None
    arg_types: dict[str, Any] | None = None
    initial_args: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "title": self.title,
            "kind": self.kind,
            "parameters": self.parameters,
            "args": self.args,
            "argTypes": self.arg_types,
            "initialArgs": self.initial_args,
        }


@dataclass
class ComponentProps:
    component_id: str
    props: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"componentId": self.component_id, "props": dict(self.props)}
