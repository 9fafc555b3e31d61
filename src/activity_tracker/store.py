"""Session stores: the SQLite store and an ordered background writer."""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional, Protocol

from . import db
from .errors import StoreWriteFailure
from .models import ActivitySession

logger = logging.getLogger(__name__)

ErrorSink = Callable[[Exception], None]


class SessionStore(Protocol):
    def upsert_session(self, session: ActivitySession) -> None: ...

    def delete_session(self, session_id: str) -> None: ...

    def get_session(self, session_id: str) -> Optional[ActivitySession]: ...

    def query_sessions(
        self,
        start: datetime,
        end: datetime,
        project_code: Optional[str] = None,
    ) -> list[ActivitySession]: ...


def log_error(exc: Exception) -> None:
    """Default error sink."""
    logger.error("%s", exc, exc_info=exc)


class SQLiteSessionStore:
    """Persists sessions to a single SQLite file, safe to share across threads."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn = db.open_database(self.db_path, check_same_thread=False)
        self._lock = threading.Lock()

    def upsert_session(self, session: ActivitySession) -> None:
        with self._lock:
            try:
                db.upsert_session(self._conn, session)
            except sqlite3.Error as exc:
                raise StoreWriteFailure("upsert", session.id, str(exc)) from exc

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            try:
                db.delete_session(self._conn, session_id)
            except sqlite3.Error as exc:
                raise StoreWriteFailure("delete", session_id, str(exc)) from exc

    def get_session(self, session_id: str) -> Optional[ActivitySession]:
        with self._lock:
            return db.fetch_session(self._conn, session_id)

    def query_sessions(
        self,
        start: datetime,
        end: datetime,
        project_code: Optional[str] = None,
    ) -> list[ActivitySession]:
        with self._lock:
            return db.fetch_sessions(self._conn, start, end, project_code)

    def close(self) -> None:
        with self._lock:
            self._conn.close()


@dataclass(slots=True)
class _QueuedWrite:
    session_id: str
    session: Optional[ActivitySession] = None


class QueuedSessionStore:
    """Applies writes to ``inner`` on one worker thread, in submission order.

    Writes return immediately. A failed write is reported to ``error_sink``
    and stays at the head of the queue; the writer stalls until the next
    write is submitted and then retries it first, so later writes never
    overtake it. A session still waiting in the queue is read back from the
    queue; other reads wait (at most ``timeout``) for queued writes to land.
    """

    def __init__(
        self,
        inner: SessionStore,
        *,
        timeout: timedelta = timedelta(seconds=5),
        error_sink: Optional[ErrorSink] = None,
    ) -> None:
        self._inner = inner
        self._timeout = timeout.total_seconds()
        self._error_sink = error_sink or log_error
        self._pending: deque[_QueuedWrite] = deque()
        self._stalled = False
        self._closed = False
        self._cond = threading.Condition()
        self._thread = threading.Thread(
            target=self._run, name="session-store-writer", daemon=True
        )
        self._thread.start()

    @property
    def backlog(self) -> int:
        with self._cond:
            return len(self._pending)

    def upsert_session(self, session: ActivitySession) -> None:
        self._submit(_QueuedWrite(session.id, replace(session)))

    def delete_session(self, session_id: str) -> None:
        self._submit(_QueuedWrite(session_id))

    def get_session(self, session_id: str) -> Optional[ActivitySession]:
        with self._cond:
            for write in reversed(self._pending):
                if write.session_id == session_id:
                    return replace(write.session) if write.session else None
        self.drain()
        return self._inner.get_session(session_id)

    def query_sessions(
        self,
        start: datetime,
        end: datetime,
        project_code: Optional[str] = None,
    ) -> list[ActivitySession]:
        self.drain()
        return self._inner.query_sessions(start, end, project_code)

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued writes; ``False`` on timeout or a stalled queue."""
        deadline = time.monotonic() + (self._timeout if timeout is None else timeout)
        with self._cond:
            while self._pending and not self._stalled:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning(
                        "Timed out waiting for %d queued session writes.",
                        len(self._pending),
                    )
                    return False
                self._cond.wait(remaining)
            return not self._pending

    def close(self) -> None:
        with self._cond:
            self._stalled = False
            self._cond.notify_all()
        self.drain()
        with self._cond:
            self._closed = True
            lost = len(self._pending)
            self._cond.notify_all()
        if lost:
            logger.error("Dropping %d session writes that could not be saved.", lost)
        self._thread.join(timeout=self._timeout)
        close = getattr(self._inner, "close", None)
        if callable(close):
            close()

    def _submit(self, write: _QueuedWrite) -> None:
        with self._cond:
            if self._closed:
                raise StoreWriteFailure("submit", "-", "store is closed")
            self._pending.append(write)
            self._stalled = False
            self._cond.notify_all()

    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._closed and (not self._pending or self._stalled):
                    self._cond.wait()
                if self._closed:
                    return
                write = self._pending[0]
            try:
                if write.session is None:
                    self._inner.delete_session(write.session_id)
                else:
                    self._inner.upsert_session(write.session)
            except Exception as exc:
                self._error_sink(exc)
                with self._cond:
                    self._stalled = True
                    self._cond.notify_all()
            else:
                with self._cond:
                    self._pending.popleft()
                    self._cond.notify_all()
