"""Shared utilities for the storybook_mcp package.

Deduplicates common patterns used across multiple modules:
process-group spawning and teardown, render-frame URLs, and
artifact filename helpers.
"""

from __future__ import annotations

import os
import re
import signal
import subprocess
import sys
import time
from typing import Any
from urllib.parse import urlencode

from storybook_mcp._types import normalize_url

# ---------------------------------------------------------------------------
# Process groups
# ---------------------------------------------------------------------------


def new_session_popen_kwargs() -> dict[str, Any]:
    """Return Popen kwargs that put the child in its own process group.

    Package managers fork the real server as a grandchild, so teardown
    has to signal the whole group rather than the direct child.
    """
    if sys.platform == "win32":
        CREATE_NEW_PROCESS_GROUP = 0x00000200
        return {"creationflags": CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def terminate_process_tree(proc: subprocess.Popen, timeout: float = 5.0) -> None:
    """Terminate ``proc`` and its process group, escalating to SIGKILL.

    No-op if the process has already exited.
    """
    if proc.poll() is not None:
        return
    if sys.platform == "win32":
        proc.terminate()
    else:
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except (ProcessLookupError, PermissionError):
            proc.terminate()
    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        if sys.platform == "win32":
            proc.kill()
        else:
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                proc.kill()
        proc.wait(timeout=timeout)


# ---------------------------------------------------------------------------
# Render frames
# ---------------------------------------------------------------------------


def render_frame_url(base_url: str, story_id: str) -> str:
    """URL of the chrome-less iframe that renders exactly one story."""
    query = urlencode({"id": story_id, "viewMode": "story"})
    return f"{normalize_url(base_url)}/iframe.html?{query}"


# ---------------------------------------------------------------------------
# Artifact names
# ---------------------------------------------------------------------------

_UNSAFE_CHARS_RE = re.compile(r"[^a-z0-9]", re.IGNORECASE)


def sanitize_story_id(story_id: str) -> str:
    """Replace every non-alphanumeric character with ``-``."""
    return _UNSAFE_CHARS_RE.sub("-", story_id)


def make_timestamp() -> str:
    """Millisecond wall-clock timestamp used as a filename suffix."""
    return str(time.time_ns() // 1_000_000)
