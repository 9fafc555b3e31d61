"""Configuration models and helpers for the activity tracker."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

DEFAULT_PROJECT_PREFIXES: tuple[str, ...] = ("BMS", "PJT", "PRJ")


@dataclass(slots=True)
class TrackerSettings:
    """Runtime configuration for polling and session bookkeeping."""

    poll_interval: timedelta = timedelta(seconds=15)
    minimum_session: timedelta = timedelta(seconds=5)
    write_timeout: timedelta = timedelta(seconds=5)
    recent_limit: int = 5
    project_prefixes: tuple[str, ...] = DEFAULT_PROJECT_PREFIXES

    @classmethod
    def from_intervals(
        cls,
        poll_seconds: float,
        minimum_seconds: float | None = None,
        write_timeout_seconds: float | None = None,
        project_prefixes: tuple[str, ...] | None = None,
    ) -> "TrackerSettings":
        minimum = minimum_seconds if minimum_seconds is not None else 5.0
        write_timeout = (
            write_timeout_seconds if write_timeout_seconds is not None else 5.0
        )
        return cls(
            poll_interval=timedelta(seconds=poll_seconds),
            minimum_session=timedelta(seconds=minimum),
            write_timeout=timedelta(seconds=write_timeout),
            project_prefixes=tuple(project_prefixes or DEFAULT_PROJECT_PREFIXES),
        )
