"""FastAPI application exposing the tracker state, reports and confirmations."""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, field_validator

from .config import TrackerSettings
from .confirmations import PendingConfirmations
from .models import ActivitySession
from .paths import resolve_db_path
from .poller import SnapshotPoller
from .reporting import summarize_by_project
from .sources import SnapshotSource, default_source
from .store import QueuedSessionStore, SQLiteSessionStore
from .tracker import SessionTracker

logger = logging.getLogger(__name__)


class PollerRunner:
    """Manage the snapshot poller in a background thread."""

    def __init__(self, tracker: SessionTracker, source: SnapshotSource) -> None:
        self._tracker = tracker
        self._source = source
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            stop_event = threading.Event()
            poller = SnapshotPoller(self._tracker, self._source)
            thread = threading.Thread(
                target=poller.run_until_stopped,
                args=(stop_event,),
                name="snapshot-poller",
                daemon=True,
            )
            self._thread = thread
            self._stop_event = stop_event
            thread.start()
            logger.info("Poller background thread started.")

    def stop(self) -> bool:
        """Stop the poller; ``False`` if it was not running."""
        thread: Optional[threading.Thread] = None
        with self._lock:
            if not self._thread or not self._thread.is_alive() or not self._stop_event:
                return False
            self._stop_event.set()
            thread = self._thread
            self._thread = None
            self._stop_event = None
        thread.join(timeout=10)
        logger.info("Poller background thread stopped.")
        return True

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._thread and self._thread.is_alive())


class ConfirmationPayload(BaseModel):
    project_code: str

    model_config = ConfigDict(extra="forbid")

    @field_validator("project_code")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("project_code must not be blank")
        return value


def create_app(
    *,
    db_path: Optional[Path] = None,
    settings: Optional[TrackerSettings] = None,
    source: Optional[SnapshotSource] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> FastAPI:
    """Instantiate the FastAPI application and the tracker it drives."""
    resolved_db_path = resolve_db_path(db_path)
    resolved_settings = settings or TrackerSettings()
    store = QueuedSessionStore(
        SQLiteSessionStore(resolved_db_path), timeout=resolved_settings.write_timeout
    )
    confirmations = PendingConfirmations()
    tracker = SessionTracker(
        store,
        confirmation_sink=confirmations,
        settings=resolved_settings,
        clock=clock,
    )
    runner = PollerRunner(tracker, source or default_source())

    app = FastAPI(title="Activity Tracker", version="0.3.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db_path = resolved_db_path
    app.state.store = store
    app.state.tracker = tracker
    app.state.confirmations = confirmations
    app.state.poller_runner = runner

    @app.on_event("startup")
    async def _startup() -> None:
        runner.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        if not runner.stop():
            tracker.shutdown()
        store.close()

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        state = request.app.state
        open_session = state.tracker.open_session
        last_window = state.tracker.last_snapshot
        return {
            "tracking": state.tracker.is_tracking,
            "poller_running": state.poller_runner.is_running(),
            "database_path": str(state.db_path),
            "poll_seconds": resolved_settings.poll_interval.total_seconds(),
            "open_session": _session_payload(open_session) if open_session else None,
            "last_window": (
                {"application": last_window.application, "title": last_window.title}
                if last_window
                else None
            ),
            "recent_projects": state.tracker.recent_projects,
            "pending_confirmations": len(state.confirmations),
        }

    @app.post("/api/tracking/toggle")
    def toggle_tracking(request: Request) -> Dict[str, Any]:
        return {"tracking": request.app.state.tracker.toggle_tracking()}

    @app.get("/api/sessions")
    def sessions(
        request: Request,
        start: Optional[str] = Query(
            default=None,
            description="Start date in YYYY-MM-DD format (inclusive).",
        ),
        end: Optional[str] = Query(
            default=None,
            description="End date in YYYY-MM-DD format (inclusive).",
        ),
        project: Optional[str] = Query(
            default=None, description="Only sessions with this project code."
        ),
    ) -> Dict[str, Any]:
        start_day, end_day = _parse_range(start, end)
        rows = request.app.state.store.query_sessions(
            start_day, end_day + timedelta(days=1), project
        )
        return {
            "start": start_day.strftime("%Y-%m-%d"),
            "end": end_day.strftime("%Y-%m-%d"),
            "sessions": [_session_payload(session) for session in rows],
        }

    @app.get("/api/report")
    def report(
        request: Request,
        start: Optional[str] = Query(default=None),
        end: Optional[str] = Query(default=None),
        project: Optional[str] = Query(default=None),
    ) -> Dict[str, Any]:
        start_day, end_day = _parse_range(start, end)
        rows = request.app.state.store.query_sessions(
            start_day, end_day + timedelta(days=1), project
        )
        totals = summarize_by_project(rows)
        return {
            "start": start_day.strftime("%Y-%m-%d"),
            "end": end_day.strftime("%Y-%m-%d"),
            "total_seconds": sum(seconds for _, seconds in totals),
            "projects": [
                {"project_code": code, "seconds": seconds} for code, seconds in totals
            ],
        }

    @app.get("/api/confirmations")
    def list_confirmations(request: Request) -> Dict[str, Any]:
        return {
            "confirmations": [
                asdict(item) for item in request.app.state.confirmations.pending()
            ]
        }

    @app.post("/api/confirmations/{session_id}")
    def confirm(
        session_id: str, payload: ConfirmationPayload, request: Request
    ) -> Dict[str, Any]:
        state = request.app.state
        if not state.tracker.confirm_project_code(session_id, payload.project_code):
            state.confirmations.resolve(session_id)
            raise HTTPException(status_code=404, detail="Session not found")
        state.confirmations.resolve(session_id)
        return {"session_id": session_id, "project_code": payload.project_code}

    @app.delete("/api/confirmations/{session_id}")
    def dismiss(session_id: str, request: Request) -> Dict[str, Any]:
        if request.app.state.confirmations.resolve(session_id) is None:
            raise HTTPException(status_code=404, detail="No pending confirmation")
        return {"session_id": session_id, "dismissed": True}

    return app


def _parse_range(
    start: Optional[str], end: Optional[str]
) -> tuple[datetime, datetime]:
    start_day = _parse_date(start)
    end_day = _parse_date(end) if end else start_day
    if end_day < start_day:
        raise HTTPException(
            status_code=400, detail="end date must be on or after start date"
        )
    return start_day, end_day


def _parse_date(value: Optional[str]) -> datetime:
    if not value:
        return _start_of_day(datetime.now())
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid date format") from exc
    return _start_of_day(parsed)


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _session_payload(session: ActivitySession) -> Dict[str, Any]:
    return {
        "id": session.id,
        "application": session.application,
        "title": session.title,
        "path": session.path,
        "project_code": session.project_code,
        "started_at": session.started_at.isoformat(),
        "duration_seconds": session.duration,
    }
