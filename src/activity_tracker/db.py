"""SQLite database layer for activity sessions."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from .models import ActivitySession


DATETIME_FMT = "%Y-%m-%d %H:%M:%S.%f"

_SESSION_COLUMNS = "id, application, title, path, project_code, started_at, duration"


def open_database(path: Path, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    conn = sqlite3.connect(
        path,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    initialize_schema(conn)
    return conn


@contextmanager
def database_connection(
    path: Path, *, check_same_thread: bool = True
) -> Iterator[sqlite3.Connection]:
    conn = open_database(path, check_same_thread=check_same_thread)
    try:
        yield conn
    finally:
        conn.close()


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS activity_sessions (
            id TEXT PRIMARY KEY,
            application TEXT NOT NULL,
            title TEXT NOT NULL,
            path TEXT NOT NULL DEFAULT '',
            project_code TEXT,
            started_at TEXT NOT NULL,
            duration REAL NOT NULL DEFAULT 0 CHECK (duration >= 0)
        );

        CREATE INDEX IF NOT EXISTS idx_sessions_started_at
            ON activity_sessions(started_at);

        CREATE INDEX IF NOT EXISTS idx_sessions_project_code
            ON activity_sessions(project_code);
        """
    )


def upsert_session(conn: sqlite3.Connection, session: ActivitySession) -> None:
    conn.execute(
        """
        INSERT INTO activity_sessions (
            id,
            application,
            title,
            path,
            project_code,
            started_at,
            duration
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            application = excluded.application,
            title = excluded.title,
            path = excluded.path,
            project_code = excluded.project_code,
            started_at = excluded.started_at,
            duration = excluded.duration
        """,
        (
            session.id,
            session.application,
            session.title,
            session.path,
            session.project_code,
            session.started_at.strftime(DATETIME_FMT),
            max(session.duration, 0.0),
        ),
    )


def delete_session(conn: sqlite3.Connection, session_id: str) -> bool:
    cur = conn.execute("DELETE FROM activity_sessions WHERE id = ?", (session_id,))
    return cur.rowcount > 0


def fetch_session(
    conn: sqlite3.Connection, session_id: str
) -> Optional[ActivitySession]:
    row = conn.execute(
        f"SELECT {_SESSION_COLUMNS} FROM activity_sessions WHERE id = ?",
        (session_id,),
    ).fetchone()
    return row_to_session(row) if row is not None else None


def fetch_sessions(
    conn: sqlite3.Connection,
    start: datetime,
    end: datetime,
    project_code: Optional[str] = None,
) -> list[ActivitySession]:
    """Fetch sessions that started in ``[start, end)``, oldest first."""
    query = (
        f"SELECT {_SESSION_COLUMNS} FROM activity_sessions "
        "WHERE started_at >= ? AND started_at < ?"
    )
    params: list[object] = [start.strftime(DATETIME_FMT), end.strftime(DATETIME_FMT)]
    if project_code is not None:
        query += " AND project_code = ?"
        params.append(project_code)
    query += " ORDER BY started_at, id"
    return [row_to_session(row) for row in conn.execute(query, params)]



def row_to_session(row: sqlite3.Row) -> ActivitySession:
    return ActivitySession(
        id=row["id"],
        application=row["application"],
        title=row["title"],
        path=row["path"],
        project_code=row["project_code"],
        started_at=datetime.strptime(row["started_at"], DATETIME_FMT),
        duration=float(row["duration"]),
    )
