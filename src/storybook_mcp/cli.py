"""Standalone storybook-mcp CLI.

Usage:
    storybook-mcp serve    [--url URL] [--project PATH] [--output-dir DIR] [--log-level LEVEL]
    storybook-mcp detect   [--url URL] [--project PATH]
    storybook-mcp stories  [--url URL] [--project PATH] [--component TITLE]
    storybook-mcp capture  STORY_ID... [--url URL] [--project PATH] [--output-dir DIR]
                           [--width W] [--height H]

Every option falls back to its environment variable (STORYBOOK_URL,
STORYBOOK_PROJECT, SCREENSHOT_OUTPUT_DIR, LOG_LEVEL).
"""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console

from storybook_mcp.config import Settings, load_settings

app = typer.Typer(
    name="storybook-mcp",
    help="Expose a Storybook to MCP agents and capture story screenshots.",
    no_args_is_help=True,
)
console = Console()
# stdout belongs to the MCP protocol while serving
err_console = Console(stderr=True)

_URL_OPTION = typer.Option(None, "--url", "-u", help="Storybook URL.")
_PROJECT_OPTION = typer.Option(
    None, "--project", help="Project containing Storybook (launched if needed)."
)


def _info(msg: str) -> None:
    console.print(f"[dim]>[/dim] {msg}")


def _success(msg: str) -> None:
    console.print(f"[green]✓[/green] {msg}")


def _error(msg: str) -> None:
    console.print(f"[red]✗[/red] {msg}")


def _settings(**overrides: object) -> Settings:
    try:
        return load_settings(**overrides)  # type: ignore[arg-type]
    except ValueError as e:
        err_console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)


@app.command()
def serve(
    url: str | None = _URL_OPTION,
    project: str | None = _PROJECT_OPTION,
    output_dir: str | None = typer.Option(
        None, "--output-dir", "-o", help="Directory to save screenshots."
    ),
    log_level: str | None = typer.Option(
        None, "--log-level", help="error, warn, info or debug."
    ),
) -> None:
    """Run the MCP server over stdio."""
    from storybook_mcp._logging import setup_logging
    from storybook_mcp.server import StorybookMCPServer

    settings = _settings(
        storybook_url=url,
        project_path=project,
        output_dir=output_dir,
        log_level=log_level,
    )
    setup_logging(
        settings.log_level, settings.log_dir, console=settings.console_logging
    )
    server = StorybookMCPServer(settings)
    try:
        asyncio.run(server.run())
    except (KeyboardInterrupt, asyncio.CancelledError):
        # SIGTERM cancels the serving task; cleanup already ran in run()
        pass


@app.command()
def detect(
    url: str | None = _URL_OPTION,
    project: str | None = _PROJECT_OPTION,
) -> None:
    """Find a running Storybook (or launch one) and show its endpoint."""
    from storybook_mcp.detector import StorybookDetector

    settings = _settings(storybook_url=url, project_path=project)

    async def _detect():
        detector = StorybookDetector()
        try:
            return await detector.detect(settings.storybook_url, settings.project_path)
        finally:
            await detector.cleanup()

    endpoint = asyncio.run(_detect())
    if endpoint is None:
        _error("No Storybook found. Start one or pass --url / --project.")
        raise typer.Exit(1)

    _success("Storybook found")
    console.print(f"  [bold]URL:[/bold]        {endpoint.url}")
    console.print(f"  [bold]Project:[/bold]    {endpoint.project_path or 'N/A'}")
    if endpoint.is_managed:
        console.print("  [bold]Managed:[/bold]    yes (stopped again on exit)")
    else:
        console.print("  [bold]Managed:[/bold]    no (externally running)")


@app.command()
def stories(
    url: str | None = _URL_OPTION,
    project: str | None = _PROJECT_OPTION,
    component: str | None = typer.Option(
        None, "--component", "-c", help="Only stories of this component title."
    ),
) -> None:
    """List the stories of a Storybook."""
    from storybook_mcp.client import StorybookClient, StorybookClientError
    from storybook_mcp.detector import StorybookDetector

    settings = _settings(storybook_url=url, project_path=project)

    async def _list():
        detector = StorybookDetector()
        try:
            endpoint = await detector.detect(
                settings.storybook_url, settings.project_path
            )
            if endpoint is None:
                return None
            client = StorybookClient(endpoint.url)
            try:
                return await client.list_stories(component)
            finally:
                await client.aclose()
        finally:
            await detector.cleanup()

    try:
        result = asyncio.run(_list())
    except StorybookClientError as e:
        _error(str(e))
        raise typer.Exit(1)
    if result is None:
        _error("No Storybook found. Start one or pass --url / --project.")
        raise typer.Exit(1)
    if not result:
        _info("No stories found.")
        return

    console.print()
    console.print(f"[bold]Stories ({len(result)}):[/bold]")
    console.print()
    for story in result:
        console.print(f"  [green]{story.id:<40s}[/green] {story.title} / {story.name}")


@app.command()
def capture(
    story_ids: list[str] = typer.Argument(help="Story ids to capture."),
    url: str | None = _URL_OPTION,
    project: str | None = _PROJECT_OPTION,
    output_dir: str | None = typer.Option(
        None, "--output-dir", "-o", help="Directory to save screenshots."
    ),
    width: int = typer.Option(1280, "--width", help="Viewport width in pixels."),
    height: int = typer.Option(720, "--height", help="Viewport height in pixels."),
) -> None:
    """Capture screenshots of one or more stories to disk."""
    from storybook_mcp._types import Viewport
    from storybook_mcp.capture import CaptureEngine
    from storybook_mcp.detector import StorybookDetector

    settings = _settings(
        storybook_url=url, project_path=project, output_dir=output_dir
    )
    try:
        viewport = Viewport(width=width, height=height)
    except ValueError as e:
        _error(str(e))
        raise typer.Exit(1)

    async def _capture():
        detector = StorybookDetector()
        engine = CaptureEngine(settings.output_dir)
        try:
            endpoint = await detector.detect(
                settings.storybook_url, settings.project_path
            )
            if endpoint is None:
                return None
            return await engine.capture_stories(endpoint.url, story_ids, viewport)
        finally:
            try:
                await engine.close()
            finally:
                await detector.cleanup()

    batch = asyncio.run(_capture())
    if batch is None:
        _error("No Storybook found. Start one or pass --url / --project.")
        raise typer.Exit(1)

    for story_id, result in batch.results.items():
        _success(f"{story_id}: {result.path}")
    for failure in batch.failures:
        _error(f"{failure.key}: {failure.error}")

    if batch.succeeded == 0:
        _error(batch.summary())
        raise typer.Exit(1)
    _info(batch.summary())


if __name__ == "__main__":
    app()
