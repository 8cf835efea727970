"""Shared test fixtures for the storybook-mcp test suite.

Nothing here touches the network, spawns a real process or launches a
real browser: probes, ``subprocess.Popen`` and Playwright are replaced by
small fakes that record how they were used.
"""

from __future__ import annotations

import io
import subprocess
import threading
from unittest.mock import AsyncMock, MagicMock

import pytest

from storybook_mcp.launcher import ManagedProcess

# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------


class FakeValidator:
    """Async stand-in for validate_storybook_url with a set of live URLs."""

    def __init__(self, live=()):
        self.live = set(live)
        self.calls: list[str] = []

    async def __call__(self, url: str) -> bool:
        self.calls.append(url)
        return url.rstrip("/") in self.live


@pytest.fixture
def validator():
    return FakeValidator()


# ---------------------------------------------------------------------------
# Processes
# ---------------------------------------------------------------------------


class FakePopen:
    """subprocess.Popen stand-in that keeps 'running' until told to exit."""

    _next_pid = 90000

    def __init__(self, args=None, stdout=b"", stderr=b"", **kwargs):
        FakePopen._next_pid += 1
        self.pid = FakePopen._next_pid
        self.args = args
        self.kwargs = kwargs
        self.returncode = None
        # real callers pass subprocess.PIPE constants, not canned output
        self.stdout = io.BytesIO(stdout if isinstance(stdout, bytes) else b"")
        self.stderr = io.BytesIO(stderr if isinstance(stderr, bytes) else b"")
        self.terminate_calls = 0
        self._exited = threading.Event()

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired(self.args, timeout)
        return self.returncode

    def exit(self, code: int = 0) -> None:
        self.returncode = code
        self._exited.set()

    def terminate(self):
        self.terminate_calls += 1
        self.exit(-15)

    def kill(self):
        self.exit(-9)


@pytest.fixture
def spawned(monkeypatch):
    """Patch process spawning in the launcher.

    Yields the list of FakePopen instances created. Output monitoring is
    disabled and teardown calls FakePopen.terminate() instead of
    signalling a real process group.
    """
    procs: list[FakePopen] = []

    def _popen(args, **kwargs):
        proc = FakePopen(args, **kwargs)
        procs.append(proc)
        return proc

    monkeypatch.setattr("storybook_mcp.launcher.subprocess.Popen", _popen)
    monkeypatch.setattr(
        "storybook_mcp.launcher.terminate_process_tree",
        lambda proc, timeout=5.0: proc.terminate(),
    )
    monkeypatch.setattr(ManagedProcess, "start_monitoring", lambda self: None)
    yield procs
    # release any exit watcher still blocked in wait()
    for proc in procs:
        if proc.returncode is None:
            proc.exit(-15)


# ---------------------------------------------------------------------------
# Playwright
# ---------------------------------------------------------------------------


class FakePlaywright:
    """Replacement for ``async_playwright`` tracking launches and pages.

    Navigation to any story id in ``fail_stories`` raises RuntimeError.
    """

    def __init__(self):
        self.launches = 0
        self.launch_kwargs: list[dict] = []
        self.browsers: list[MagicMock] = []
        self.pages: list[MagicMock] = []
        self.fail_stories: set[str] = set()
        self.playwright = MagicMock()
        self.playwright.stop = AsyncMock()
        self.playwright.chromium.launch = AsyncMock(side_effect=self._launch)

    def __call__(self):
        ctx = MagicMock()
        ctx.start = AsyncMock(return_value=self.playwright)
        return ctx

    async def _launch(self, **kwargs):
        self.launches += 1
        self.launch_kwargs.append(kwargs)
        browser = MagicMock()
        browser.is_connected.return_value = True
        browser.new_page = AsyncMock(side_effect=self._new_page)
        browser.close = AsyncMock()
        self.browsers.append(browser)
        return browser

    async def _new_page(self):
        page = MagicMock()
        page.set_viewport_size = AsyncMock()
        page.goto = AsyncMock(side_effect=self._goto)
        page.evaluate = AsyncMock()
        page.screenshot = AsyncMock(return_value=b"\x89PNG-fake")
        page.close = AsyncMock()
        self.pages.append(page)
        return page

    async def _goto(self, url, **kwargs):
        for story_id in self.fail_stories:
            if f"id={story_id}&" in url:
                raise RuntimeError(f"net::ERR_CONNECTION_REFUSED at {url}")
        return None


@pytest.fixture
def fake_playwright(monkeypatch):
    fake = FakePlaywright()
    monkeypatch.setattr("storybook_mcp.browser.async_playwright", fake)
    return fake
