"""Command-line interface for the activity tracker."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer

from .config import DEFAULT_PROJECT_PREFIXES, TrackerSettings
from .paths import get_log_path, resolve_db_path

app = typer.Typer(help="Track frontmost windows as billable activity sessions.")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


@app.callback(no_args_is_help=True)
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=_LOG_FORMAT,
    )


def _settings(
    poll_seconds: float, minimum_seconds: float, prefixes: Optional[list[str]]
) -> TrackerSettings:
    return TrackerSettings.from_intervals(
        poll_seconds=poll_seconds,
        minimum_seconds=minimum_seconds,
        project_prefixes=tuple(p.strip().upper() for p in prefixes) if prefixes else None,
    )


@app.command()
def track(
    db_path: Optional[Path] = typer.Option(
        None,
        "--db",
        path_type=Path,
        help="Location of the session SQLite database.",
    ),
    poll_seconds: float = typer.Option(
        15.0,
        "--interval",
        min=1.0,
        help="Polling interval in seconds.",
    ),
    minimum_seconds: float = typer.Option(
        5.0,
        "--min-session",
        min=0.0,
        help="Sessions shorter than this many seconds are discarded.",
    ),
    prefixes: Optional[list[str]] = typer.Option(
        None,
        "--prefix",
        help=f"Project code prefix (repeatable). Defaults to {', '.join(DEFAULT_PROJECT_PREFIXES)}.",
    ),
) -> None:
    """Poll the frontmost window until interrupted."""
    from .poller import SnapshotPoller
    from .sources import default_source
    from .store import QueuedSessionStore, SQLiteSessionStore
    from .tracker import SessionTracker

    file_handler = logging.FileHandler(get_log_path(), encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    logging.getLogger().addHandler(file_handler)

    settings = _settings(poll_seconds, minimum_seconds, prefixes)
    store = QueuedSessionStore(
        SQLiteSessionStore(resolve_db_path(db_path)), timeout=settings.write_timeout
    )
    tracker = SessionTracker(store, settings=settings)
    try:
        SnapshotPoller(tracker, default_source()).run_forever()
    finally:
        store.close()


@app.command()
def summary(
    start: Optional[str] = typer.Option(
        None,
        "--start",
        help="First date (YYYY-MM-DD) to summarize. Defaults to today.",
    ),
    end: Optional[str] = typer.Option(
        None,
        "--end",
        help="Last date (YYYY-MM-DD), inclusive. Defaults to --start.",
    ),
    project: Optional[str] = typer.Option(
        None, "--project", help="Only include sessions with this project code."
    ),
    db_path: Optional[Path] = typer.Option(
        None,
        "--db",
        path_type=Path,
        help="Location of the session SQLite database.",
    ),
) -> None:
    """Print tracked and billable time for a date range."""
    from .reporting import SummaryPrinter
    from .store import SQLiteSessionStore

    first_day = _parse_day(start) if start else datetime.now()
    last_day = _parse_day(end) if end else first_day
    if last_day < first_day:
        raise typer.BadParameter("--end must be on or after --start")
    store = SQLiteSessionStore(resolve_db_path(db_path))
    try:
        SummaryPrinter(store).print_summary(first_day, last_day, project)
    finally:
        store.close()


@app.command()
def match(
    title: str = typer.Argument(..., help="Window title to inspect."),
    path: str = typer.Option("", "--path", help="File path shown by the window."),
    prefixes: Optional[list[str]] = typer.Option(
        None, "--prefix", help="Project code prefix (repeatable)."
    ),
) -> None:
    """Print the project code that would be inferred for a window."""
    from .matcher import ProjectMatcher

    matcher = ProjectMatcher(
        prefixes=[p.strip().upper() for p in prefixes] if prefixes else DEFAULT_PROJECT_PREFIXES
    )
    code = matcher.infer_project_code(title, path)
    if code is None:
        typer.echo("No project code found.")
        raise typer.Exit(code=1)
    typer.echo(code)


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(
        8765, "--port", min=1, max=65535, help="TCP port for the API."
    ),
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the session SQLite database."
    ),
    poll_seconds: float = typer.Option(
        15.0,
        "--interval",
        min=1.0,
        help="Polling interval in seconds.",
    ),
    minimum_seconds: float = typer.Option(
        5.0,
        "--min-session",
        min=0.0,
        help="Sessions shorter than this many seconds are discarded.",
    ),
    prefixes: Optional[list[str]] = typer.Option(
        None, "--prefix", help="Project code prefix (repeatable)."
    ),
    open_browser: bool = typer.Option(
        False,
        "--open-browser/--no-open-browser",
        help="Open the interactive API docs in your default browser.",
    ),
) -> None:
    """Serve the tracker API with the poller running in the background."""
    import threading

    import uvicorn

    from .webapp import create_app

    api = create_app(
        db_path=db_path, settings=_settings(poll_seconds, minimum_seconds, prefixes)
    )
    if open_browser:
        # Give uvicorn a moment to bind before the browser asks for the page.
        timer = threading.Timer(1.0, typer.launch, args=(f"http://{host}:{port}/docs",))
        timer.daemon = True
        timer.start()
    uvicorn.run(api, host=host, port=port, log_level="info")


def _parse_day(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise typer.BadParameter(f"{value!r} is not a YYYY-MM-DD date") from exc
