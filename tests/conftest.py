"""Shared fixtures for tracker tests."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import pytest

from activity_tracker.errors import StoreWriteFailure
from activity_tracker.matcher import ProjectMatcher
from activity_tracker.models import ActivitySession, ConfirmationRequested, WindowSnapshot
from activity_tracker.tracker import SessionTracker

START = datetime(2026, 10, 19, 9, 0, 0)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class MemoryStore:
    """In-memory session store that can be told to fail writes."""

    def __init__(self) -> None:
        self.sessions: dict[str, ActivitySession] = {}
        self.operations: list[tuple[str, str]] = []
        self.fail_writes = False

    def upsert_session(self, session: ActivitySession) -> None:
        if self.fail_writes:
            raise StoreWriteFailure("upsert", session.id, "disk full")
        self.operations.append(("upsert", session.id))
        self.sessions[session.id] = replace(session)

    def delete_session(self, session_id: str) -> None:
        if self.fail_writes:
            raise StoreWriteFailure("delete", session_id, "disk full")
        self.operations.append(("delete", session_id))
        self.sessions.pop(session_id, None)

    def get_session(self, session_id: str) -> Optional[ActivitySession]:
        session = self.sessions.get(session_id)
        return replace(session) if session else None

    def query_sessions(self, start, end, project_code=None):
        return sorted(
            (
                replace(s)
                for s in self.sessions.values()
                if start <= s.started_at < end
                and (project_code is None or s.project_code == project_code)
            ),
            key=lambda s: s.started_at,
        )


class RecordingSink:
    def __init__(self) -> None:
        self.requests: list[ConfirmationRequested] = []
        self.withdrawn: list[str] = []

    def notify(self, request: ConfirmationRequested) -> None:
        self.requests.append(request)

    def withdraw(self, session_id: str) -> None:
        self.withdrawn.append(session_id)


def snap(application: str = "Word", title: str = "notes", path: str = "") -> WindowSnapshot:
    return WindowSnapshot(application=application, title=title, path=path, observed_at=START)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def errors() -> list[Exception]:
    return []


@pytest.fixture
def matcher() -> ProjectMatcher:
    return ProjectMatcher()


@pytest.fixture
def tracker(store, sink, clock, errors, matcher) -> SessionTracker:
    return SessionTracker(
        store,
        matcher=matcher,
        confirmation_sink=sink,
        clock=clock,
        error_sink=errors.append,
    )


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "sessions.sqlite3"
