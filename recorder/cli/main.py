#!/usr/bin/env python3
"""Main CLI entry point for Recorder Sentinel using Typer.

``record`` supervises a single recording in a local browser until the
duration elapses, the page's stop control is used or the tab is closed.
``serve`` runs the REST API for remote control.
"""

import asyncio
import logging
import time
from enum import IntEnum
from typing import Optional

import typer
from typing_extensions import Annotated

from recorder import __version__
from recorder.models import BrowserKind, RecordingConfig


class ExitCode(IntEnum):
    """CLI exit codes."""
    SUCCESS = 0             # Recording ran and the recorder stayed installed
    SESSION_DEGRADED = 1    # Recording ended with the recorder not installed
    SESSION_LOST = 2        # Browser tab or process went away
    CONFIG_ERROR = 3        # Invalid arguments or configuration
    RUNTIME_ERROR = 4       # Unexpected failure
    INTERRUPTED = 130       # Stopped with Ctrl+C


app = typer.Typer(
    name="recorder-sentinel",
    help="Recorder Sentinel - resilient in-browser interaction recording",
    add_completion=False,
)


@app.callback()
def main(
    log_level: Annotated[
        str,
        typer.Option("--log-level", "-l", help="Logging level (debug, info, warning, error)")
    ] = "info",
):
    """
    Recorder Sentinel - resilient in-browser interaction recording.
    """
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        typer.echo(f"❌ Invalid log level '{log_level}'", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(level)


@app.command(name="version")
def show_version():
    """Show version information."""
    typer.echo(f"Recorder Sentinel v{__version__}")


@app.command()
def record(
    url: Annotated[
        str,
        typer.Argument(help="URL to open and record")
    ],

    browser: Annotated[
        BrowserKind,
        typer.Option("--browser", "-b", help="Browser engine")
    ] = BrowserKind.CHROMIUM,

    headless: Annotated[
        bool,
        typer.Option("--headless", help="Run browser without a window")
    ] = False,

    server_url: Annotated[
        Optional[str],
        typer.Option("--server-url", help="Post events to an existing server instead of a local one")
    ] = None,

    duration: Annotated[
        Optional[float],
        typer.Option("--duration", "-d", min=0, help="Stop after this many seconds")
    ] = None,

    host: Annotated[
        str,
        typer.Option("--host", help="Host for the local event server")
    ] = "127.0.0.1",

    port: Annotated[
        int,
        typer.Option("--port", help="Port for the local event server")
    ] = 8000,
):
    """
    Record interactions on a page.

    Examples:

        # Record until the browser is closed or Stop is clicked
        recorder-sentinel record https://example.com

        # Record for two minutes, posting to a running API server
        recorder-sentinel record --duration 120 --server-url http://localhost:8000 https://example.com
    """
    effective_server = server_url or f"http://{host}:{port}"
    try:
        config = RecordingConfig(
            start_url=url,
            browser_kind=browser,
            server_url=effective_server,
            headless=headless,
        )
    except ValueError as e:
        typer.echo(f"❌ Invalid recording options: {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    try:
        exit_code = asyncio.run(_record(config, duration, serve_locally=server_url is None, host=host, port=port))
    except KeyboardInterrupt:
        typer.echo("\n⏹  Recording interrupted")
        exit_code = ExitCode.INTERRUPTED
    except Exception as e:
        typer.echo(f"❌ Recording failed: {e}", err=True)
        exit_code = ExitCode.RUNTIME_ERROR

    raise typer.Exit(code=exit_code.value)


async def _record(
    config: RecordingConfig,
    duration: Optional[float],
    serve_locally: bool,
    host: str,
    port: int,
    poll_seconds: float = 1.0,
) -> ExitCode:
    """Run one supervised recording to completion.

    The exit code reflects the last payload status seen while the session
    was live, not the status it started with.
    """
    import uvicorn

    from recorder.api.main import create_app
    from recorder.api.services import get_recorder_service

    service = get_recorder_service()
    server = None
    server_task = None

    if serve_locally:
        server = uvicorn.Server(uvicorn.Config(create_app(service.settings), host=host, port=port, log_level="warning"))
        server_task = asyncio.create_task(server.serve())

    session_id = None
    try:
        session, status = await service.start_session(config)
        session_id = session.session_id
        typer.echo(f"🎬 Recording session {session_id} ({session.status.value})")
        if status is not None and not status.installed:
            typer.echo("⚠️  Recorder could not be installed yet; health checks will keep retrying", err=True)

        started = time.monotonic()
        while True:
            await asyncio.sleep(poll_seconds)
            current = service.supervisor.get_status(session_id)
            if current is None:
                break
            status = current
            if duration is not None and time.monotonic() - started >= duration:
                break
    finally:
        if session_id and service.supervisor.get_session(session_id) is not None:
            status = service.supervisor.get_status(session_id)
            await service.stop_session(session_id, reason="cli_exit")
        await service.shutdown()
        if server is not None:
            server.should_exit = True
            await server_task

    events = service.list_events(session_id) if session_id else []
    typer.echo(f"📼 Captured {len(events)} events")

    if session_id is None:
        return ExitCode.RUNTIME_ERROR

    ended = service.supervisor.get_ended_session(session_id)
    if ended is not None and ended.stop_reason == "unreachable":
        typer.echo("❌ Browser session was lost", err=True)
        return ExitCode.SESSION_LOST
    if status is not None and not status.installed:
        return ExitCode.SESSION_DEGRADED
    return ExitCode.SUCCESS


@app.command()
def serve(
    host: Annotated[
        str,
        typer.Option("--host", help="Bind address")
    ] = "127.0.0.1",

    port: Annotated[
        int,
        typer.Option("--port", "-p", help="Bind port")
    ] = 8000,

    reload: Annotated[
        bool,
        typer.Option("--reload", help="Reload on code changes (development)")
    ] = False,
):
    """Run the REST API server."""
    import uvicorn

    typer.echo(f"🚀 Serving Recorder Sentinel API on http://{host}:{port}")
    uvicorn.run(
        "recorder.api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=logging.getLevelName(logging.getLogger().level).lower(),
    )


if __name__ == "__main__":
    app()
