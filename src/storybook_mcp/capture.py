"""Screenshot capture for Storybook stories.

Each capture opens a fresh page on the shared browser, loads the story's
render frame, waits for the network to go quiet plus a short settle delay,
pads the root container on a white background and takes a viewport-sized
PNG. The result is either written under ``output_dir`` or returned as
base64.

Batch captures run one story (or viewport) at a time. A failing item is
logged and reported in ``BatchResult.failures``; the rest of the batch
carries on.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Iterable
from pathlib import Path

from storybook_mcp._types import (
    DEFAULT_VIEWPORT,
    BatchResult,
    CaptureFailure,
    CaptureResult,
    Viewport,
)
from storybook_mcp._utils import make_timestamp, render_frame_url, sanitize_story_id
from storybook_mcp.browser import BrowserSession

logger = logging.getLogger(__name__)

NAVIGATION_TIMEOUT_MS = 30_000
SETTLE_DELAY = 1.0

_NORMALIZE_ROOT_JS = """() => {
  const root = document.querySelector('#storybook-root') || document.querySelector('#root');
  if (root) {
    root.style.padding = '20px';
    root.style.background = 'white';
  }
}"""


class CaptureEngine:
    """Render stories in the shared browser and snapshot them.

    Args:
        output_dir: Where PNG files are written (created on demand).
        session: Browser session to reuse; a private one by default.
        settle_delay: Seconds to wait after navigation for late rendering.
        navigation_timeout_ms: Upper bound for page navigation.
    """

    def __init__(
        self,
        output_dir: str | Path = "./screenshots",
        session: BrowserSession | None = None,
        settle_delay: float = SETTLE_DELAY,
        navigation_timeout_ms: int = NAVIGATION_TIMEOUT_MS,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.session = session or BrowserSession()
        self.settle_delay = settle_delay
        self.navigation_timeout_ms = navigation_timeout_ms
        self._reserved: set[Path] = set()

    # -- single capture -----------------------------------------------------

    async def capture_story(
        self,
        base_url: str,
        story_id: str,
        viewport: Viewport | None = None,
        inline: bool = False,
    ) -> CaptureResult:
        """Capture one story. Navigation and snapshot errors propagate."""
        viewport = viewport or DEFAULT_VIEWPORT
        stem = f"{sanitize_story_id(story_id)}-{make_timestamp()}"
        return await self._capture(base_url, story_id, viewport, inline, stem, True)

    async def _capture(
        self,
        base_url: str,
        story_id: str,
        viewport: Viewport,
        inline: bool,
        stem: str,
        avoid_existing: bool,
    ) -> CaptureResult:
        self._ensure_output_dir()
        path = None if inline else self._reserve_path(stem, avoid_existing)
        try:
            image = await self._snapshot(base_url, story_id, viewport, path)
        except Exception as e:
            logger.error(f"Failed to capture screenshot for story {story_id}: {e}")
            raise

        if path is None:
            logger.info(f"Screenshot captured for story {story_id}")
            data = base64.b64encode(image).decode("ascii")
            return CaptureResult(story_id=story_id, viewport=viewport, data=data)
        logger.info(f"Screenshot saved: {path}")
        return CaptureResult(story_id=story_id, viewport=viewport, path=path)

    async def _snapshot(
        self,
        base_url: str,
        story_id: str,
        viewport: Viewport,
        path: Path | None,
    ) -> bytes:
        async with self.session.page() as page:
            await page.set_viewport_size(viewport.to_dict())
            story_url = render_frame_url(base_url, story_id)
            logger.info(f"Navigating to story: {story_url}")
            await page.goto(
                story_url,
                wait_until="networkidle",
                timeout=self.navigation_timeout_ms,
            )
            await asyncio.sleep(self.settle_delay)
            await page.evaluate(_NORMALIZE_ROOT_JS)
            return await page.screenshot(
                path=str(path) if path is not None else None,
                full_page=False,
            )

    # -- batches ------------------------------------------------------------

    async def capture_stories(
        self,
        base_url: str,
        story_ids: Iterable[str],
        viewport: Viewport | None = None,
        inline: bool = False,
    ) -> BatchResult:
        """Capture several stories sequentially, keyed by story id.

        Repeated ids are captured once; ``requested`` counts distinct ids.
        """
        story_ids = list(dict.fromkeys(story_ids))
        batch = BatchResult(requested=len(story_ids))
        if not story_ids:
            return batch
        await self._prepare_batch()

        for story_id in story_ids:
            try:
                batch.results[story_id] = await self.capture_story(
                    base_url, story_id, viewport, inline=inline
                )
            except Exception as e:
                batch.failures.append(CaptureFailure(key=story_id, error=str(e)))

        logger.info(batch.summary())
        return batch

    async def capture_viewports(
        self,
        base_url: str,
        story_id: str,
        viewports: Iterable[Viewport],
        inline: bool = False,
    ) -> BatchResult:
        """Capture one story at several viewports, keyed by ``WIDTHxHEIGHT``.

        Repeated viewports are captured once. Files are named after the
        label and overwrite the previous capture at the same size.
        """
        viewports = list(dict.fromkeys(viewports))
        batch = BatchResult(requested=len(viewports))
        if not viewports:
            return batch
        await self._prepare_batch()

        base_stem = sanitize_story_id(story_id)
        for viewport in viewports:
            label = viewport.label
            try:
                batch.results[label] = await self._capture(
                    base_url,
                    story_id,
                    viewport,
                    inline,
                    f"{base_stem}-{label}",
                    False,
                )
            except Exception as e:
                batch.failures.append(CaptureFailure(key=label, error=str(e)))

        logger.info(batch.summary())
        return batch

    async def close(self) -> None:
        await self.session.close()

    # -- helpers ------------------------------------------------------------

    async def _prepare_batch(self) -> None:
        # Directory and browser failures abort the batch instead of
        # being recorded against every item.
        self._ensure_output_dir()
        await self.session.acquire()

    def _ensure_output_dir(self) -> None:
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create output directory {self.output_dir}: {e}")
            raise

    def _reserve_path(self, stem: str, avoid_existing: bool) -> Path:
        """Pick a filename no other capture in this process has used.

        Without ``avoid_existing`` the plain ``<stem>.png`` is returned and
        overwritten on every call.
        """
        candidate = self.output_dir / f"{stem}.png"
        if not avoid_existing:
            return candidate
        n = 1
        while candidate in self._reserved or candidate.exists():
            candidate = self.output_dir / f"{stem}-{n}.png"
            n += 1
        self._reserved.add(candidate)
        return candidate
