"""Where the tracker keeps its database and logs."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from platformdirs import PlatformDirs


APP_NAME = "ActivityTracker"

_dirs = PlatformDirs(appname=APP_NAME, appauthor=False, roaming=True)


def get_data_dir() -> Path:
    path = Path(_dirs.user_data_path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_log_dir() -> Path:
    path = Path(_dirs.user_log_path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def resolve_db_path(db_path: Optional[Path] = None) -> Path:
    """Return ``db_path`` (creating its folder) or the default session database."""
    if db_path is None:
        return get_data_dir() / "sessions.sqlite3"
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def get_log_path() -> Path:
    return get_log_dir() / "tracker.log"
