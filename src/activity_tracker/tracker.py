"""Turns polled window snapshots into durationed activity sessions."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Optional

from .config import TrackerSettings
from .confirmations import ConfirmationSink, LoggingConfirmationSink
from .errors import InvalidConfirmation, StoreWriteFailure
from .matcher import ProjectMatcher, RecentProjects
from .models import ActivitySession, ConfirmationRequested, WindowSnapshot
from .store import ErrorSink, SessionStore, log_error

logger = logging.getLogger(__name__)

_SNIPPET_LENGTH = 80


@dataclass(slots=True)
class _PendingWrite:
    session_id: str
    session: Optional[ActivitySession] = None

    @property
    def is_delete(self) -> bool:
        return self.session is None


class SessionTracker:
    """State machine owning the currently open session.

    Every public method takes the tracker lock, so the polling thread and
    API callbacks can drive it concurrently. Store writes pass through an
    ordered backlog: a write that fails with :class:`StoreWriteFailure` is
    reported and retried before the next one, and in-memory state is never
    rolled back because of it.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        matcher: Optional[ProjectMatcher] = None,
        confirmation_sink: Optional[ConfirmationSink] = None,
        settings: Optional[TrackerSettings] = None,
        clock: Callable[[], datetime] = datetime.now,
        error_sink: Optional[ErrorSink] = None,
    ) -> None:
        self.settings = settings or TrackerSettings()
        self._store = store
        self._matcher = matcher or ProjectMatcher(
            prefixes=self.settings.project_prefixes,
            recent=RecentProjects(self.settings.recent_limit),
        )
        self._sink = confirmation_sink or LoggingConfirmationSink()
        self._clock = clock
        self._error_sink = error_sink or log_error
        self._lock = threading.RLock()
        self._is_tracking = True
        self._open: Optional[ActivitySession] = None
        self._open_saved = False
        self._last_snapshot: Optional[WindowSnapshot] = None
        self._backlog: list[_PendingWrite] = []

    @property
    def is_tracking(self) -> bool:
        with self._lock:
            return self._is_tracking

    @property
    def open_session(self) -> Optional[ActivitySession]:
        with self._lock:
            return replace(self._open) if self._open else None

    @property
    def last_snapshot(self) -> Optional[WindowSnapshot]:
        with self._lock:
            return self._last_snapshot

    @property
    def recent_projects(self) -> list[str]:
        return self._matcher.recent.snapshot()

    @property
    def pending_writes(self) -> int:
        with self._lock:
            return len(self._backlog)

    def on_snapshot(self, snapshot: Optional[WindowSnapshot]) -> None:
        with self._lock:
            if not self._is_tracking:
                return
            if snapshot is None:
                # Nothing frontmost; the open session keeps accumulating.
                return
            self._last_snapshot = snapshot
            now = self._clock()
            current = self._open
            if current is not None and current.matches(snapshot):
                current.duration = self._elapsed(current, now)
                self._save(current)
                return
            self._close_open(now)
            self._open_new(snapshot, now)

    def toggle_tracking(self) -> bool:
        """Pause or resume tracking; returns the new state."""
        with self._lock:
            self._is_tracking = not self._is_tracking
            if not self._is_tracking:
                self._close_open(self._clock())
            logger.info("Tracking %s.", "resumed" if self._is_tracking else "paused")
            return self._is_tracking

    def confirm_project_code(self, session_id: str, code: str) -> bool:
        """Apply a user-approved code to a session; ``False`` if it was ignored."""
        with self._lock:
            code = (code or "").strip()
            try:
                if not code:
                    raise InvalidConfirmation(session_id, "empty project code")
                session = self._find_session(session_id)
                if session is None:
                    raise InvalidConfirmation(session_id, "unknown session")
            except InvalidConfirmation as exc:
                logger.warning("%s", exc)
                return False
            session.project_code = code
            self._save(session)
            self._matcher.confirm(code)
            logger.info("Session %s confirmed as %s.", session_id, code)
            return True

    def shutdown(self) -> None:
        """Save the in-flight session as of now and retry unsaved writes.

        The open session is extended exactly as a final matching snapshot
        would extend it, so it is kept even when shorter than the minimum.
        """
        with self._lock:
            session = self._open
            if session is not None:
                self._open = None
                session.duration = self._elapsed(session, self._clock())
                logger.debug("Saved session %s at shutdown.", session.id)
                self._save(session)
            self._flush()
            if self._backlog:
                logger.error(
                    "%d session writes could not be saved before shutdown.",
                    len(self._backlog),
                )

    def _open_new(self, snapshot: WindowSnapshot, now: datetime) -> None:
        session = ActivitySession(
            application=snapshot.application,
            title=snapshot.title,
            path=snapshot.path,
            started_at=now,
        )
        session.project_code = self._matcher.infer_project_code(
            snapshot.title, snapshot.path
        )
        self._open = session
        self._open_saved = False
        logger.debug(
            "Opened session %s: app=%s title=%s project=%s",
            session.id,
            session.application,
            session.title,
            session.project_code,
        )
        self._save(session)
        if session.project_code:
            self._request_confirmation(session)

    def _close_open(self, now: datetime) -> None:
        session = self._open
        if session is None:
            return
        self._open = None
        elapsed = self._elapsed(session, now)
        if elapsed < self.settings.minimum_session.total_seconds():
            logger.debug("Discarding session %s after %.1fs.", session.id, elapsed)
            self._backlog = [
                write for write in self._backlog if write.session_id != session.id
            ]
            if self._open_saved:
                self._backlog.append(_PendingWrite(session.id))
                self._flush()
            if session.project_code:
                self._withdraw_confirmation(session.id)
            return
        session.duration = elapsed
        logger.debug("Closed session %s after %.1fs.", session.id, elapsed)
        self._save(session)

    def _find_session(self, session_id: str) -> Optional[ActivitySession]:
        if self._open is not None and self._open.id == session_id:
            return self._open
        for write in reversed(self._backlog):
            if write.session_id == session_id:
                return replace(write.session) if write.session else None
        return self._store.get_session(session_id)

    def _request_confirmation(self, session: ActivitySession) -> None:
        request = ConfirmationRequested(
            session_id=session.id,
            proposed_code=session.project_code or "",
            title_snippet=session.title[:_SNIPPET_LENGTH],
        )
        try:
            self._sink.notify(request)
        except Exception as exc:
            self._error_sink(exc)

    def _withdraw_confirmation(self, session_id: str) -> None:
        try:
            self._sink.withdraw(session_id)
        except Exception as exc:
            self._error_sink(exc)

    def _save(self, session: ActivitySession) -> None:
        payload = replace(session)
        for write in self._backlog:
            if write.session_id == session.id and not write.is_delete:
                write.session = payload
                break
        else:
            self._backlog.append(_PendingWrite(session.id, payload))
        self._flush()

    def _flush(self) -> None:
        while self._backlog:
            write = self._backlog[0]
            try:
                if write.session is None:
                    self._store.delete_session(write.session_id)
                else:
                    self._store.upsert_session(write.session)
            except StoreWriteFailure as exc:
                self._error_sink(exc)
                return
            self._backlog.pop(0)
            if self._open is not None and write.session_id == self._open.id:
                self._open_saved = True

    @staticmethod
    def _elapsed(session: ActivitySession, now: datetime) -> float:
        return max((now - session.started_at).total_seconds(), 0.0)
