"""Confirmation sinks: where proposed project codes go for user approval."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Optional, Protocol

from .models import ConfirmationRequested

logger = logging.getLogger(__name__)


class ConfirmationSink(Protocol):
    def notify(self, request: ConfirmationRequested) -> None: ...

    def withdraw(self, session_id: str) -> None: ...


class LoggingConfirmationSink:
    """Reports proposals in the log; used when nobody is around to answer."""

    def notify(self, request: ConfirmationRequested) -> None:
        logger.info(
            "Session %s looks like project %s: %s",
            request.session_id,
            request.proposed_code,
            request.title_snippet,
        )

    def withdraw(self, session_id: str) -> None:
        logger.debug("Proposal for session %s withdrawn.", session_id)


class PendingConfirmations:
    """Holds proposals until the web API confirms or dismisses them.

    Only the newest ``limit`` requests are kept; older ones fall off and keep
    the code that was inferred for them.
    """

    def __init__(self, limit: int = 50) -> None:
        self._limit = limit
        self._requests: OrderedDict[str, ConfirmationRequested] = OrderedDict()
        self._lock = threading.Lock()

    def notify(self, request: ConfirmationRequested) -> None:
        with self._lock:
            self._requests.pop(request.session_id, None)
            self._requests[request.session_id] = request
            while len(self._requests) > self._limit:
                dropped, _ = self._requests.popitem(last=False)
                logger.debug("Dropping unanswered confirmation for %s", dropped)

    def pending(self) -> list[ConfirmationRequested]:
        with self._lock:
            return list(reversed(self._requests.values()))

    def resolve(self, session_id: str) -> Optional[ConfirmationRequested]:
        with self._lock:
            return self._requests.pop(session_id, None)

    def withdraw(self, session_id: str) -> None:
        """Forget a proposal whose session no longer exists."""
        self.resolve(session_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)
