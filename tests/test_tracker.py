"""Tests for the session state machine."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from activity_tracker.config import TrackerSettings
from activity_tracker.errors import StoreWriteFailure
from activity_tracker.matcher import ProjectMatcher, RecentProjects
from activity_tracker.store import QueuedSessionStore
from activity_tracker.tracker import SessionTracker

from conftest import START, snap


class TestSnapshots:
    def test_first_snapshot_opens_session(self, tracker, store):
        tracker.on_snapshot(snap("Word", "Quarterly notes", "/docs/q3.docx"))

        session = tracker.open_session
        assert session is not None
        assert session.application == "Word"
        assert session.title == "Quarterly notes"
        assert session.path == "/docs/q3.docx"
        assert session.started_at == START
        assert session.duration == 0
        assert session.project_code is None
        assert list(store.sessions) == [session.id]

    def test_repeated_snapshot_extends_one_session(self, tracker, store, clock):
        tracker.on_snapshot(snap())
        opened = tracker.open_session
        durations = []
        for _ in range(4):
            clock.advance(15)
            tracker.on_snapshot(snap())
            durations.append(tracker.open_session.duration)

        assert tracker.open_session.id == opened.id
        assert durations == [15.0, 30.0, 45.0, 60.0]
        assert len(store.sessions) == 1
        assert store.sessions[opened.id].duration == 60.0

    def test_frozen_clock_keeps_duration(self, tracker):
        tracker.on_snapshot(snap())
        tracker.on_snapshot(snap())
        tracker.on_snapshot(snap())
        assert tracker.open_session.duration == 0

    def test_path_change_alone_keeps_session(self, tracker, clock):
        tracker.on_snapshot(snap(path="/a"))
        first = tracker.open_session.id
        clock.advance(10)
        tracker.on_snapshot(snap(path="/b"))
        assert tracker.open_session.id == first

    def test_none_snapshot_is_ignored(self, tracker, store, clock):
        tracker.on_snapshot(snap())
        opened = tracker.open_session
        operations = list(store.operations)

        clock.advance(120)
        tracker.on_snapshot(None)

        assert tracker.open_session == opened
        assert store.operations == operations

    def test_duration_accumulates_across_missing_windows(self, tracker, clock):
        tracker.on_snapshot(snap())
        clock.advance(60)
        tracker.on_snapshot(None)
        clock.advance(60)
        tracker.on_snapshot(snap())
        assert tracker.open_session.duration == 120.0

    def test_none_before_any_window(self, tracker, store):
        tracker.on_snapshot(None)
        assert tracker.open_session is None
        assert store.sessions == {}


class TestClosing:
    def test_short_session_is_discarded(self, tracker, store, clock):
        tracker.on_snapshot(snap("Word", "a"))
        short = tracker.open_session.id
        clock.advance(4.9)
        tracker.on_snapshot(snap("Word", "b"))

        assert short not in store.sessions
        assert ("delete", short) in store.operations
        assert tracker.open_session.title == "b"

    def test_long_enough_session_is_kept(self, tracker, store, clock):
        tracker.on_snapshot(snap("Word", "a"))
        kept = tracker.open_session.id
        clock.advance(5.1)
        tracker.on_snapshot(snap("Excel", "a"))

        assert store.sessions[kept].duration == pytest.approx(5.1)
        assert tracker.open_session.application == "Excel"

    def test_exactly_minimum_is_kept(self, tracker, store, clock):
        tracker.on_snapshot(snap("Word", "a"))
        kept = tracker.open_session.id
        clock.advance(5)
        tracker.on_snapshot(snap("Word", "b"))
        assert kept in store.sessions

    def test_new_session_starts_at_switch(self, tracker, clock):
        tracker.on_snapshot(snap("Word", "a"))
        switched_at = clock.advance(30)
        tracker.on_snapshot(snap("Word", "b"))
        assert tracker.open_session.started_at == switched_at
        assert tracker.open_session.duration == 0

    def test_sessions_do_not_overlap(self, tracker, store, clock):
        for title in ["a", "b", "c", "d"]:
            tracker.on_snapshot(snap("Word", title))
            clock.advance(20)
        tracker.shutdown()

        sessions = sorted(store.sessions.values(), key=lambda s: s.started_at)
        assert [s.title for s in sessions] == ["a", "b", "c", "d"]
        for earlier, later in zip(sessions, sessions[1:]):
            assert earlier.started_at + timedelta(seconds=earlier.duration) <= later.started_at

    def test_discard_withdraws_proposal(self, tracker, clock, sink):
        tracker.on_snapshot(snap("Word", "BMS1180 draft"))
        short = tracker.open_session.id
        clock.advance(2)
        tracker.on_snapshot(snap("Mail", "Inbox"))
        assert sink.withdrawn == [short]

    def test_discard_without_code_withdraws_nothing(self, tracker, clock, sink):
        tracker.on_snapshot(snap("Mail", "Inbox"))
        clock.advance(2)
        tracker.on_snapshot(snap("Word", "notes"))
        assert sink.withdrawn == []

    def test_custom_minimum(self, store, clock):
        settings = TrackerSettings.from_intervals(poll_seconds=15, minimum_seconds=30)
        tracker = SessionTracker(store, settings=settings, clock=clock)
        tracker.on_snapshot(snap("Word", "a"))
        clock.advance(20)
        tracker.on_snapshot(snap("Word", "b"))
        assert [s.title for s in store.sessions.values()] == ["b"]


class TestInference:
    def test_code_applied_and_confirmation_requested(self, tracker, store, sink):
        tracker.on_snapshot(snap("Word", "BMS 1180 draft", "/Users/x/project-9999/"))

        session = tracker.open_session
        assert session.project_code == "BMS1180"
        assert store.sessions[session.id].project_code == "BMS1180"
        assert len(sink.requests) == 1
        request = sink.requests[0]
        assert request.session_id == session.id
        assert request.proposed_code == "BMS1180"
        assert request.title_snippet == "BMS 1180 draft"

    def test_no_code_no_confirmation(self, tracker, sink):
        tracker.on_snapshot(snap("Word", "shopping list"))
        assert tracker.open_session.project_code is None
        assert sink.requests == []

    def test_recent_code_used_as_fallback(self, tracker, clock, sink):
        tracker.on_snapshot(snap("Word", "PJT4521 scope"))
        clock.advance(30)
        tracker.on_snapshot(snap("Mail", "Inbox"))

        assert tracker.open_session.project_code == "PJT4521"
        assert [r.proposed_code for r in sink.requests] == ["PJT4521", "PJT4521"]
        assert tracker.recent_projects == ["PJT4521"]

    def test_inference_runs_only_on_open(self, tracker, clock, sink):
        tracker.on_snapshot(snap("Word", "#4444 spec"))
        for _ in range(3):
            clock.advance(15)
            tracker.on_snapshot(snap("Word", "#4444 spec"))
        assert len(sink.requests) == 1

    def test_long_titles_are_snipped(self, tracker, sink):
        tracker.on_snapshot(snap("Word", "BMS1180 " + "x" * 200))
        assert len(sink.requests[0].title_snippet) == 80

    def test_sink_failure_is_reported(self, store, clock, errors):
        class BrokenSink:
            def notify(self, request):
                raise RuntimeError("notification center unavailable")

        tracker = SessionTracker(
            store, confirmation_sink=BrokenSink(), clock=clock, error_sink=errors.append
        )
        tracker.on_snapshot(snap("Word", "BMS1180"))
        assert tracker.open_session.project_code == "BMS1180"
        assert isinstance(errors[0], RuntimeError)


class TestToggle:
    def test_tracking_starts_on(self, tracker):
        assert tracker.is_tracking

    def test_pause_closes_and_freezes_session(self, tracker, store, clock):
        tracker.on_snapshot(snap())
        opened = tracker.open_session.id
        clock.advance(42)

        assert tracker.toggle_tracking() is False
        assert tracker.open_session is None
        assert store.sessions[opened].duration == 42.0

        clock.advance(600)
        tracker.on_snapshot(snap())
        assert tracker.open_session is None
        assert store.sessions[opened].duration == 42.0

    def test_pause_discards_short_session(self, tracker, store, clock):
        tracker.on_snapshot(snap())
        clock.advance(3)
        tracker.toggle_tracking()
        assert store.sessions == {}

    def test_resume_starts_fresh_session(self, tracker, store, clock):
        tracker.on_snapshot(snap())
        old = tracker.open_session.id
        clock.advance(30)
        tracker.toggle_tracking()
        clock.advance(30)

        assert tracker.toggle_tracking() is True
        assert tracker.open_session is None

        resumed_at = clock.advance(5)
        tracker.on_snapshot(snap())
        session = tracker.open_session
        assert session.id != old
        assert session.started_at == resumed_at
        assert store.sessions[old].duration == 30.0


class TestConfirmation:
    def test_confirm_overrides_open_session(self, tracker, store):
        tracker.on_snapshot(snap("Word", "BMS1180 draft"))
        session_id = tracker.open_session.id

        assert tracker.confirm_project_code(session_id, "BMS1190")
        assert tracker.open_session.project_code == "BMS1190"
        assert store.sessions[session_id].project_code == "BMS1190"
        assert tracker.recent_projects[0] == "BMS1190"

    def test_confirm_closed_session(self, tracker, store, clock):
        tracker.on_snapshot(snap("Word", "BMS1180 draft"))
        session_id = tracker.open_session.id
        clock.advance(60)
        tracker.on_snapshot(snap("Mail", "Inbox"))

        assert tracker.confirm_project_code(session_id, " BMS1190 ")
        stored = store.sessions[session_id]
        assert stored.project_code == "BMS1190"
        assert stored.duration == 60.0
        assert tracker.recent_projects[0] == "BMS1190"

    def test_confirm_reaffirms_inferred_code(self, tracker, store):
        tracker.on_snapshot(snap("Word", "BMS1180 draft"))
        session_id = tracker.open_session.id
        assert tracker.confirm_project_code(session_id, "BMS1180")
        assert store.sessions[session_id].project_code == "BMS1180"
        assert tracker.recent_projects == ["BMS1180"]

    def test_unknown_session_is_ignored(self, tracker, store):
        tracker.on_snapshot(snap("Word", "BMS1180 draft"))
        before = dict(store.sessions)
        assert tracker.confirm_project_code("missing", "BMS1190") is False
        assert store.sessions == before
        assert tracker.recent_projects == ["BMS1180"]

    def test_discarded_session_cannot_be_confirmed(self, tracker, clock):
        tracker.on_snapshot(snap("Word", "BMS1180 draft"))
        session_id = tracker.open_session.id
        clock.advance(2)
        tracker.on_snapshot(snap("Mail", "Inbox"))
        assert tracker.confirm_project_code(session_id, "BMS1190") is False

    def test_blank_code_is_ignored(self, tracker):
        tracker.on_snapshot(snap("Word", "BMS1180 draft"))
        session_id = tracker.open_session.id
        assert tracker.confirm_project_code(session_id, "   ") is False
        assert tracker.open_session.project_code == "BMS1180"


class TestShutdown:
    def test_shutdown_finalizes_open_session(self, tracker, store, clock):
        tracker.on_snapshot(snap())
        opened = tracker.open_session.id
        clock.advance(90)
        tracker.shutdown()

        assert tracker.open_session is None
        assert store.sessions[opened].duration == 90.0

    def test_shutdown_keeps_short_session(self, tracker, store, clock, sink):
        tracker.on_snapshot(snap("Word", "BMS1180 draft"))
        opened = tracker.open_session.id
        clock.advance(3)
        tracker.shutdown()

        assert store.sessions[opened].duration == 3.0
        assert ("delete", opened) not in store.operations
        assert sink.withdrawn == []

    def test_shutdown_while_paused_writes_nothing(self, tracker, store, clock):
        tracker.on_snapshot(snap())
        clock.advance(30)
        tracker.toggle_tracking()
        operations = list(store.operations)

        clock.advance(30)
        tracker.shutdown()
        assert store.operations == operations

    def test_shutdown_without_session(self, tracker, store):
        tracker.shutdown()
        assert store.operations == []


class TestStoreFailures:
    def test_failed_write_keeps_state_and_is_retried(self, tracker, store, clock, errors):
        store.fail_writes = True
        tracker.on_snapshot(snap())
        opened = tracker.open_session

        assert opened is not None
        assert isinstance(errors[0], StoreWriteFailure)
        assert tracker.pending_writes == 1

        store.fail_writes = False
        clock.advance(15)
        tracker.on_snapshot(snap())

        assert tracker.pending_writes == 0
        assert store.sessions[opened.id].duration == 15.0

    def test_repeated_failures_coalesce(self, tracker, store, clock):
        store.fail_writes = True
        tracker.on_snapshot(snap())
        for _ in range(5):
            clock.advance(15)
            tracker.on_snapshot(snap())
        assert tracker.pending_writes == 1

    def test_finalized_sessions_saved_in_order(self, tracker, store, clock):
        store.fail_writes = True
        tracker.on_snapshot(snap("Word", "a"))
        first = tracker.open_session.id
        clock.advance(10)
        tracker.on_snapshot(snap("Word", "b"))
        second = tracker.open_session.id

        store.fail_writes = False
        clock.advance(10)
        tracker.on_snapshot(snap("Word", "c"))

        upserts = [sid for op, sid in store.operations if op == "upsert"]
        assert upserts.index(first) < upserts.index(second)
        assert store.sessions[first].duration == 10.0
        assert store.sessions[second].duration == 10.0

    def test_discard_drops_unsaved_writes(self, tracker, store, clock):
        store.fail_writes = True
        tracker.on_snapshot(snap("Word", "a"))
        clock.advance(2)
        tracker.on_snapshot(snap("Word", "b"))
        kept = tracker.open_session.id
        store.fail_writes = False
        tracker.shutdown()

        assert store.operations == [("upsert", kept)]
        assert tracker.pending_writes == 0

    def test_confirmation_of_unsaved_session(self, tracker, store, clock):
        store.fail_writes = True
        tracker.on_snapshot(snap("Word", "BMS1180"))
        session_id = tracker.open_session.id
        clock.advance(10)
        tracker.on_snapshot(snap("Word", "other"))

        assert tracker.confirm_project_code(session_id, "BMS1190")
        store.fail_writes = False
        tracker.shutdown()
        assert store.sessions[session_id].project_code == "BMS1190"


def test_shared_recent_projects_between_trackers(store, clock):
    recent = RecentProjects(codes=["BMS1180", "BMS1170"])
    tracker = SessionTracker(store, matcher=ProjectMatcher(recent=recent), clock=clock)
    tracker.on_snapshot(snap("Mail", "Inbox"))
    assert tracker.open_session.project_code == "BMS1180"
    assert recent.snapshot() == ["BMS1180", "BMS1170"]


class TestQueuedStore:
    def test_confirm_while_writer_is_stalled(self, store, sink, clock, errors):
        queued = QueuedSessionStore(store, error_sink=errors.append)
        tracker = SessionTracker(
            queued, confirmation_sink=sink, clock=clock, error_sink=errors.append
        )
        store.fail_writes = True
        tracker.on_snapshot(snap("Word", "BMS1180 draft"))
        session_id = tracker.open_session.id
        clock.advance(60)
        tracker.on_snapshot(snap("Mail", "Inbox"))
        assert queued.drain(timeout=5) is False

        store.fail_writes = False
        assert tracker.confirm_project_code(session_id, "BMS1190")
        assert queued.drain(timeout=5)

        stored = store.sessions[session_id]
        assert stored.project_code == "BMS1190"
        assert stored.duration == 60.0
        assert tracker.recent_projects[0] == "BMS1190"
        assert all(isinstance(exc, StoreWriteFailure) for exc in errors)
        queued.close()


class TestConcurrency:
    def test_parallel_callers_keep_sessions_sequential(self, store, sink, errors):
        settings = TrackerSettings.from_intervals(poll_seconds=15, minimum_seconds=0)
        tracker = SessionTracker(
            store, confirmation_sink=sink, settings=settings, error_sink=errors.append
        )
        windows = [
            snap("Word", "BMS1180 draft"),
            snap("Mail", "Inbox"),
            snap("Excel", "PJT4521 costs"),
        ]
        closed_by_pause = []
        barrier = threading.Barrier(4)

        def feed(offset):
            barrier.wait()
            for i in range(200):
                tracker.on_snapshot(windows[(i + offset) % len(windows)])

        def toggle():
            barrier.wait()
            for _ in range(50):
                with tracker._lock:
                    closing = tracker.open_session
                    if not tracker.toggle_tracking() and closing is not None:
                        closed_by_pause.append(store.get_session(closing.id))

        def confirm():
            barrier.wait()
            for _ in range(200):
                current = tracker.open_session
                if current is not None:
                    tracker.confirm_project_code(current.id, "BMS1190")

        threads = [
            threading.Thread(target=feed, args=(0,)),
            threading.Thread(target=feed, args=(1,)),
            threading.Thread(target=toggle),
            threading.Thread(target=confirm),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
            assert not thread.is_alive()

        assert tracker.is_tracking
        final_open = tracker.open_session
        paused_ids = {session.id for session in closed_by_pause}
        assert final_open is None or final_open.id not in paused_ids
        tracker.shutdown()

        for at_pause in closed_by_pause:
            stored = store.sessions[at_pause.id]
            assert stored.started_at == at_pause.started_at
            assert stored.duration == at_pause.duration

        sessions = sorted(store.sessions.values(), key=lambda s: (s.started_at, s.duration))
        for earlier, later in zip(sessions, sessions[1:]):
            ended = earlier.started_at + timedelta(seconds=earlier.duration)
            assert ended <= later.started_at + timedelta(milliseconds=1)
        assert errors == []
