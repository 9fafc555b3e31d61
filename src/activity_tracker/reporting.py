"""Project totals and console summaries built on stored sessions."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .models import ActivitySession
from .store import SessionStore

UNASSIGNED = "(unassigned)"


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, store: SessionStore) -> None:
        self.store = store

    def print_summary(
        self, first_day: datetime, last_day: datetime, project_code: Optional[str] = None
    ) -> None:
        start = first_day.replace(hour=0, minute=0, second=0, microsecond=0)
        end = last_day.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
        sessions = self.store.query_sessions(start, end, project_code)
        if not sessions:
            print("No sessions recorded for the selected range.")
            return

        total = sum(session.duration for session in sessions)
        billable = sum(session.duration for session in sessions if session.project_code)

        print(f"Summary for {first_day:%Y-%m-%d} to {last_day:%Y-%m-%d}")
        print("-" * 40)
        print(f"Tracked time:  {format_duration(total)}")
        print(f"Billable time: {format_duration(billable)}")
        print()

        print("By project:")
        for code, seconds in summarize_by_project(sessions):
            print(f"  {code or UNASSIGNED:<20} {format_duration(seconds)}")

        top_sessions = aggregate_top_titles(sessions)
        if top_sessions:
            print()
            print("Top windows:")
            for application, title, seconds in top_sessions[:5]:
                label = title or "(untitled)"
                print(f"  {application:<12} {label[:45]:<45} {format_duration(seconds)}")


def summarize_by_project(
    sessions: Iterable[ActivitySession],
) -> list[tuple[Optional[str], float]]:
    """Total seconds per project code, largest first; ``None`` collects the rest."""
    totals: defaultdict[Optional[str], float] = defaultdict(float)
    for session in sessions:
        totals[session.project_code] += session.duration
    return sorted(totals.items(), key=lambda item: item[1], reverse=True)


def aggregate_top_titles(
    sessions: Iterable[ActivitySession],
) -> list[tuple[str, str, float]]:
    totals: defaultdict[tuple[str, str], float] = defaultdict(float)
    for session in sessions:
        totals[session.identity] += session.duration
    sorted_items = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return [(app, title, seconds) for (app, title), seconds in sorted_items]


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
