"""Domain models for observed windows and recorded sessions."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True, slots=True)
class WindowSnapshot:
    """One observation of the frontmost application and window."""

    application: str
    title: str
    path: str = ""
    observed_at: datetime = field(default_factory=datetime.now)

    @property
    def identity(self) -> tuple[str, str]:
        return (self.application, self.title)


@dataclass(slots=True)
class ActivitySession:
    """A contiguous block of time spent on a single application/title pair."""

    application: str
    title: str
    path: str
    started_at: datetime
    duration: float = 0.0
    project_code: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def identity(self) -> tuple[str, str]:
        return (self.application, self.title)

    def matches(self, snapshot: WindowSnapshot) -> bool:
        return self.identity == snapshot.identity


@dataclass(frozen=True, slots=True)
class ConfirmationRequested:
    session_id: str
    proposed_code: str
    title_snippet: str
