"""Launch a Storybook dev server from a project directory.

Given a JavaScript project, work out how its Storybook is started and run
it as a supervised child process:

    1. read ``package.json`` and pick the script that runs Storybook
    2. pick the package manager from whichever lockfile is present
    3. take the port from the script's ``-p`` / ``--port`` flag (default 6006)
    4. reuse a server already answering on that port, otherwise spawn
       ``<pm> run <script>`` and poll until it serves ``index.json``

A process that does not come up within ``startup_timeout`` is killed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shutil
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

from storybook_mcp._types import EndpointConfig
from storybook_mcp._utils import new_session_popen_kwargs, terminate_process_tree
from storybook_mcp.probe import Validator, validate_storybook_url

if TYPE_CHECKING:
    from storybook_mcp.detector import StorybookDetector

logger = logging.getLogger(__name__)

DEFAULT_PORT = 6006
MANIFEST_NAME = "package.json"
STARTUP_TIMEOUT = 30.0
POLL_INTERVAL = 2.0

# Checked in order before falling back to scanning every script
STORYBOOK_SCRIPT_NAMES = ("storybook", "dev:storybook", "start:storybook", "sb", "story")
_STORYBOOK_CLI_MARKERS = ("storybook dev", "start-storybook")

# lockfile -> package manager, first existing lockfile wins
_LOCKFILES: tuple[tuple[str, str], ...] = (
    ("yarn.lock", "yarn"),
    ("pnpm-lock.yaml", "pnpm"),
    ("bun.lockb", "bun"),
    ("bun.lock", "bun"),
)

_PORT_RE = re.compile(r"(?:-p|--port)\s+(\d+)")


# ---------------------------------------------------------------------------
# Project inspection
# ---------------------------------------------------------------------------


def read_manifest(project_dir: Path) -> dict[str, Any] | None:
    """Parse ``package.json``; None if it is missing or not a JSON object."""
    manifest_path = project_dir / MANIFEST_NAME
    try:
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, UnicodeDecodeError):
        logger.debug(f"No readable {MANIFEST_NAME} in {project_dir}")
        return None
    if not isinstance(data, dict):
        return None
    return data


def find_storybook_script(scripts: dict[str, Any]) -> str | None:
    """Name of the npm script that starts Storybook, if any."""
    for name in STORYBOOK_SCRIPT_NAMES:
        command = scripts.get(name)
        if isinstance(command, str) and "storybook" in command:
            return name

    for name, command in scripts.items():
        if not isinstance(command, str):
            continue
        if any(marker in command for marker in _STORYBOOK_CLI_MARKERS):
            return name

    return None


def extract_port(command: str) -> int | None:
    """Port given via ``-p N`` or ``--port N`` in a script command line."""
    match = _PORT_RE.search(command)
    if match:
        return int(match.group(1))
    return None


def detect_package_manager(project_dir: Path) -> str:
    for lockfile, manager in _LOCKFILES:
        if (project_dir / lockfile).exists():
            return manager
    return "npm"


# ---------------------------------------------------------------------------
# Managed process
# ---------------------------------------------------------------------------


class ManagedProcess:
    """A spawned Storybook process that we are responsible for stopping.

    Output is relayed to the debug log by background monitor tasks, and
    ``on_exit`` fires when the process ends, whether on its own or after
    ``terminate()``.

    Args:
        popen: The spawned process (own process group, piped output).
        command: Human-readable command line, for logs.
        on_exit: Called with this object once the process has exited.
    """

    def __init__(
        self,
        popen: subprocess.Popen,
        command: str = "",
        on_exit: Callable[[ManagedProcess], None] | None = None,
    ) -> None:
        self.popen = popen
        self.command = command
        self._on_exit = on_exit
        self._terminated = False
        self._monitor_tasks: list[asyncio.Task] = []

    @property
    def pid(self) -> int:
        return self.popen.pid

    @property
    def returncode(self) -> int | None:
        return self.popen.poll()

    @property
    def is_running(self) -> bool:
        return self.popen.poll() is None

    def start_monitoring(self) -> None:
        """Attach output relays and the exit watcher to the running loop."""
        loop = asyncio.get_running_loop()
        self._monitor_tasks = [
            loop.create_task(self._relay(self.popen.stdout, "output")),
            loop.create_task(self._relay(self.popen.stderr, "error")),
            loop.create_task(self._watch_exit()),
        ]

    async def _relay(self, stream: IO[bytes] | None, kind: str) -> None:
        if stream is None:
            return
        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, stream.readline)
            if not line:
                break
            text = line.decode(errors="replace").rstrip()
            if text:
                logger.debug(f"Storybook {kind}: {text}")

    async def _watch_exit(self) -> None:
        loop = asyncio.get_running_loop()
        code = await loop.run_in_executor(None, self.popen.wait)
        logger.info(f"Storybook process exited with code {code}")
        if self._on_exit is not None:
            self._on_exit(self)

    def terminate(self) -> bool:
        """Stop the process group. Only the first call has any effect.

        Returns True if this call did the terminating.
        """
        if self._terminated:
            return False
        self._terminated = True
        try:
            terminate_process_tree(self.popen)
        except OSError:
            logger.warning(f"Failed to terminate Storybook process (pid={self.pid})")
        return True


# ---------------------------------------------------------------------------
# Launcher
# ---------------------------------------------------------------------------


class StorybookLauncher:
    """Start (or reuse) a Storybook server for a project directory.

    Args:
        validate: Probe used to decide whether a URL is a live Storybook.
        startup_timeout: Seconds to wait for a spawned server to answer.
        poll_interval: Seconds between readiness probes.
    """

    def __init__(
        self,
        validate: Validator = validate_storybook_url,
        startup_timeout: float = STARTUP_TIMEOUT,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self._validate = validate
        self.startup_timeout = startup_timeout
        self.poll_interval = poll_interval

    async def launch(
        self,
        project_path: str | Path,
        tracker: StorybookDetector | None = None,
    ) -> EndpointConfig | None:
        """Resolve or spawn the Storybook server for ``project_path``.

        A spawned process is registered with ``tracker`` as soon as it
        exists, and unregistered again if it is killed for not starting.
        """
        project_dir = Path(project_path)
        if not project_dir.is_dir():
            logger.debug(f"Not a directory: {project_dir}")
            return None

        manifest = read_manifest(project_dir)
        if manifest is None:
            return None

        scripts = manifest.get("scripts")
        if not isinstance(scripts, dict):
            scripts = {}
        script = find_storybook_script(scripts)
        if script is None:
            logger.debug(f"No Storybook script found in {project_dir}")
            return None

        package_manager = detect_package_manager(project_dir)
        port = extract_port(scripts[script])
        if port is None:
            port = DEFAULT_PORT
        url = f"http://localhost:{port}"

        if await self._validate(url):
            logger.info(f"Storybook already running at {url}")
            return EndpointConfig(url=url, project_path=str(project_dir))

        logger.info(
            f"Launching Storybook from {project_dir} using {package_manager} run {script}"
        )
        on_exit = tracker.untrack if tracker is not None else None
        process = self._spawn(project_dir, package_manager, script, on_exit)
        if process is None:
            return None
        if tracker is not None:
            tracker.track(process)

        if await self._wait_until_ready(url, process):
            logger.info(f"Storybook started successfully at {url}")
            return EndpointConfig(
                url=url,
                project_path=str(project_dir),
                is_managed=True,
                process=process,
            )

        logger.error("Storybook failed to start within timeout")
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, process.terminate)
        if tracker is not None:
            tracker.untrack(process)
        return None

    def _spawn(
        self,
        project_dir: Path,
        package_manager: str,
        script: str,
        on_exit: Callable[[ManagedProcess], None] | None,
    ) -> ManagedProcess | None:
        executable = shutil.which(package_manager) or package_manager
        cmd = [executable, "run", script]
        try:
            popen = subprocess.Popen(
                cmd,
                cwd=str(project_dir),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **new_session_popen_kwargs(),
            )
        except OSError as e:
            logger.error(f"Failed to start Storybook: {e}")
            return None

        process = ManagedProcess(
            popen, command=f"{package_manager} run {script}", on_exit=on_exit
        )
        process.start_monitoring()
        return process

    async def _wait_until_ready(self, url: str, process: ManagedProcess) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.startup_timeout
        while loop.time() < deadline:
            if await self._validate(url):
                return True
            if not process.is_running:
                logger.error(
                    f"Storybook process exited before serving {url} "
                    f"(code={process.returncode})"
                )
                return False
            await asyncio.sleep(self.poll_interval)
        return False
