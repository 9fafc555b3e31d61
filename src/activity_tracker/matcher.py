"""Infer billing/project codes from window titles and file paths."""

from __future__ import annotations

import logging
import re
import threading
from typing import Iterable, Optional, Sequence

from .config import DEFAULT_PROJECT_PREFIXES

logger = logging.getLogger(__name__)

_PATH_SEPARATORS = re.compile(r"[\\/]+")
_WHITESPACE = re.compile(r"\s+")

_KEYWORD_PATTERN = re.compile(r"\bproject[-_]?[0-9]{4,}\b", re.IGNORECASE)
_HASH_PATTERN = re.compile(r"#[0-9]{4,}\b")


def compile_patterns(prefixes: Iterable[str] = DEFAULT_PROJECT_PREFIXES) -> tuple[re.Pattern[str], ...]:
    """Return the code patterns in priority order for the given prefixes."""
    alternatives = "|".join(re.escape(prefix) for prefix in prefixes if prefix)
    patterns: list[re.Pattern[str]] = []
    if alternatives:
        patterns.append(
            re.compile(rf"\b(?:{alternatives})\s*[0-9]{{4,}}\b", re.IGNORECASE)
        )
    patterns.extend((_KEYWORD_PATTERN, _HASH_PATTERN))
    return tuple(patterns)


_DEFAULT_PATTERNS = compile_patterns()


def find_project_code(
    text: str, patterns: Sequence[re.Pattern[str]] = _DEFAULT_PATTERNS
) -> Optional[str]:
    """Return the first recognised code in ``text`` with whitespace removed.

    Patterns are tried in order and the first one that matches anywhere wins,
    so ``"#2000 for BMS 1180"`` yields ``BMS1180``.
    """
    if not text:
        return None
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return _WHITESPACE.sub("", match.group(0))
    return None


class RecentProjects:
    """Most-recently-used project codes, newest first, without duplicates."""

    def __init__(self, limit: int = 5, codes: Iterable[str] = ()) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._limit = limit
        self._codes: list[str] = []
        self._lock = threading.Lock()
        for code in reversed(list(codes)):
            self.remember(code)

    def remember(self, code: str) -> None:
        with self._lock:
            if code in self._codes:
                self._codes.remove(code)
            self._codes.insert(0, code)
            del self._codes[self._limit :]

    def most_recent(self) -> Optional[str]:
        with self._lock:
            return self._codes[0] if self._codes else None

    def snapshot(self) -> list[str]:
        with self._lock:
            return list(self._codes)

    def __len__(self) -> int:
        with self._lock:
            return len(self._codes)


class ProjectMatcher:
    """Maps a title/path pair to a project code, falling back to recent use."""

    def __init__(
        self,
        prefixes: Iterable[str] = DEFAULT_PROJECT_PREFIXES,
        recent: Optional[RecentProjects] = None,
    ) -> None:
        self._patterns = compile_patterns(prefixes)
        self.recent = recent if recent is not None else RecentProjects()

    def infer_project_code(self, title: str, path: str) -> Optional[str]:
        code = self.match(title, path)
        if code:
            self.recent.remember(code)
            return code
        # Reading the fallback does not count as a use.
        return self.recent.most_recent()

    def match(self, title: str, path: str) -> Optional[str]:
        """Search the title, the whole path, then each path segment."""
        code = find_project_code(title, self._patterns)
        if code:
            return code
        if not path:
            return None
        code = find_project_code(path, self._patterns)
        if code:
            return code
        for segment in _PATH_SEPARATORS.split(path):
            code = find_project_code(segment, self._patterns)
            if code:
                logger.debug("Matched %s in path segment %r", code, segment)
                return code
        return None

    def confirm(self, code: str) -> None:
        self.recent.remember(code)
