"""Snapshot sources that report the frontmost window."""

from __future__ import annotations

import ctypes
import logging
import sys
from datetime import datetime
from typing import Optional, Protocol

import psutil

from .models import WindowSnapshot
from .normalization import normalize_window_title

logger = logging.getLogger(__name__)


class SnapshotSource(Protocol):
    def capture(self) -> Optional[WindowSnapshot]: ...


class NullSnapshotSource:
    """Reports no active window; used where no probe is available."""

    def capture(self) -> Optional[WindowSnapshot]:
        return None


class WindowsForegroundSource:
    """Reads the foreground window title and owning process via Win32."""

    def __init__(self) -> None:
        from ctypes import wintypes

        self._wintypes = wintypes
        self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]

    def capture(self) -> Optional[WindowSnapshot]:
        hwnd = self._user32.GetForegroundWindow()
        if not hwnd:
            return None

        length = self._user32.GetWindowTextLengthW(hwnd)
        buffer = ctypes.create_unicode_buffer(length + 1)
        self._user32.GetWindowTextW(hwnd, buffer, length + 1)

        pid = self._wintypes.DWORD()
        self._user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
        application, path = self._describe_process(pid.value)
        if application is None:
            return None

        return WindowSnapshot(
            application=application,
            title=normalize_window_title(application, buffer.value),
            path=path,
            observed_at=datetime.now(),
        )

    @staticmethod
    def _describe_process(pid: int) -> tuple[Optional[str], str]:
        """Return the process name and its working directory, if readable."""
        if not pid:
            return None, ""
        try:
            process = psutil.Process(pid)
            name = process.name()
        except (psutil.Error, ProcessLookupError):
            return None, ""
        try:
            cwd = process.cwd()
        except (psutil.Error, OSError):
            cwd = ""
        return name, cwd


def default_source() -> SnapshotSource:
    if sys.platform == "win32":
        return WindowsForegroundSource()
    logger.warning(
        "No foreground window probe for %s; sessions will not be recorded.",
        sys.platform,
    )
    return NullSnapshotSource()
