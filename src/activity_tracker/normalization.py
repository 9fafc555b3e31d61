"""Utilities to clean up window titles before they become session identities."""

from __future__ import annotations

import re
from typing import Optional

# Keys are lower-cased process / application names as reported on Windows and macOS.
_BROWSER_SUFFIXES: dict[str, tuple[str, ...]] = {
    "msedge.exe": (" - Microsoft Edge", " - Work - Microsoft Edge"),
    "microsoft edge": (" - Microsoft Edge",),
    "chrome.exe": (" - Google Chrome",),
    "google chrome": (" - Google Chrome",),
    "firefox.exe": (" - Mozilla Firefox", " — Mozilla Firefox"),
    "firefox": (" - Mozilla Firefox", " — Mozilla Firefox"),
    "brave.exe": (" - Brave",),
    "brave browser": (" - Brave",),
    "opera.exe": (" - Opera",),
}

_EXTRA_TAB_COUNT_PATTERN = re.compile(r"\s+and\s+\d+\s+more\s+pages?", re.IGNORECASE)
# Leading unsaved-changes markers, e.g. "* report.docx" or "● main.py".
_DIRTY_MARKER_PATTERN = re.compile(r"^[*●•]\s*")


def normalize_window_title(application: Optional[str], title: Optional[str]) -> str:
    """Strip browser suffixes, tab counts and dirty markers from a window title.

    An unsaved marker toggling on and off must not split one editing session
    into several, so the marker is dropped along with the browser chrome.
    """
    if not title:
        return ""
    normalized = title.strip()
    if application:
        for suffix in _BROWSER_SUFFIXES.get(application.strip().lower(), ()):
            if normalized.endswith(suffix):
                normalized = normalized[: -len(suffix)].rstrip(" -")
                break

    normalized = _EXTRA_TAB_COUNT_PATTERN.sub("", normalized).strip(" -|")
    normalized = _DIRTY_MARKER_PATTERN.sub("", normalized)
    return re.sub(r"\s{2,}", " ", normalized).strip()
