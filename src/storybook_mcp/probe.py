"""Read-only probes for live Storybook servers.

``validate_storybook_url`` answers "is this URL a Storybook?" and
``find_running_storybook`` walks the conventional ports in order. Neither
ever raises: connectivity problems are reported as ``False`` / ``None``
and the caller decides what to fall back to.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable

import httpx

from storybook_mcp._types import normalize_url

logger = logging.getLogger(__name__)

INDEX_PATH = "/index.json"
PROBE_TIMEOUT = 5.0
COMMON_PORTS: tuple[int, ...] = (6006, 6007, 9009, 9010)

Validator = Callable[[str], Awaitable[bool]]


async def validate_storybook_url(
    url: str,
    timeout: float = PROBE_TIMEOUT,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """GET ``<url>/index.json`` and check it is a JSON object served with 200."""
    target = f"{normalize_url(url)}{INDEX_PATH}"
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout) as owned:
                resp = await owned.get(target)
        else:
            resp = await client.get(target, timeout=timeout)
        if resp.status_code != 200:
            return False
        return isinstance(resp.json(), dict)
    except Exception:
        logger.debug(f"Storybook probe failed for {target}")
        return False


async def find_running_storybook(
    ports: Iterable[int] = COMMON_PORTS,
    validate: Validator = validate_storybook_url,
    host: str = "localhost",
) -> str | None:
    """Return the URL of the first port that answers as a Storybook.

    Ports are probed one at a time in the given order; later ports are not
    touched once one matches.
    """
    for port in ports:
        url = f"http://{host}:{port}"
        if await validate(url):
            return url
    return None
