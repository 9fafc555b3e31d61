"""Exceptions raised by the tracker and its collaborators."""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for activity tracker errors."""


class StoreWriteFailure(TrackerError):
    """A session store could not apply a write. Recoverable."""

    def __init__(self, operation: str, session_id: str, reason: str = "") -> None:
        self.operation = operation
        self.session_id = session_id
        message = f"{operation} failed for session {session_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvalidConfirmation(TrackerError):
    """A confirmation referenced an unknown session or carried no code."""

    def __init__(self, session_id: str, reason: str) -> None:
        self.session_id = session_id
        super().__init__(f"Ignoring confirmation for {session_id}: {reason}")
