"""Polling loop that feeds snapshots into the session tracker."""

from __future__ import annotations

import logging
import threading

from .sources import SnapshotSource
from .tracker import SessionTracker

logger = logging.getLogger(__name__)


class SnapshotPoller:
    """Samples the snapshot source at a fixed interval until stopped."""

    def __init__(self, tracker: SessionTracker, source: SnapshotSource) -> None:
        self.tracker = tracker
        self.source = source

    def run_forever(self) -> None:
        stop_event = threading.Event()
        try:
            self._run_loop(stop_event)
        except KeyboardInterrupt:
            logger.info("Tracker interrupted; closing the open session.")
        finally:
            self._shutdown()

    def run_until_stopped(self, stop_event: threading.Event) -> None:
        """Run the poller until the provided event is set."""
        try:
            self._run_loop(stop_event)
        finally:
            self._shutdown()

    def poll_once(self) -> None:
        """Capture one snapshot and hand it to the tracker; never raises."""
        if not self.tracker.is_tracking:
            return
        try:
            snapshot = self.source.capture()
        except Exception:
            logger.exception("Failed to capture the active window; skipping this cycle.")
            return
        try:
            self.tracker.on_snapshot(snapshot)
        except Exception:
            logger.exception("Failed to record snapshot %r; keeping state.", snapshot)

    def _run_loop(self, stop_event: threading.Event) -> None:
        interval = self.tracker.settings.poll_interval.total_seconds()
        logger.info("Starting snapshot poller every %.0fs.", interval)
        while not stop_event.is_set():
            self.poll_once()
            # Sleep in an interruptible manner.
            stop_event.wait(interval)

    def _shutdown(self) -> None:
        try:
            self.tracker.shutdown()
        finally:
            logger.info("Snapshot poller stopped.")
