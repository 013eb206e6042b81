"""Tests for live session persistence, throttling and the change feed."""

import datetime

import pytest
from sqlalchemy.exc import OperationalError

from agenda import live, live_sync
from agenda.errors import EventNotFoundError, PersistenceError, SessionNotFoundError
from agenda.extensions import db
from agenda.live_sync import (
    ChangeFeed,
    LiveEventController,
    SyncThrottle,
    Ticker,
    get_controller,
    load_or_create_session,
    release_controller,
    write_session,
)
from agenda.models import EventStatistics, LiveEventSession
from tests.conftest import EVENT_ID, FakeClock


@pytest.fixture
def controller(app, program, clock):
    ctl = LiveEventController.open(EVENT_ID, clock=clock)
    yield ctl
    ctl.close()


def _row(ctl):
    db.session.expire_all()
    return db.session.get(LiveEventSession, ctl.session_id)


class TestSyncThrottle:
    """Tick writes happen every Nth second, at most once per interval."""

    def test_first_sync_is_always_ready(self):
        assert SyncThrottle(clock=FakeClock()).ready()

    def test_interval_gate(self):
        clock = FakeClock()
        throttle = SyncThrottle(min_interval=2, every_ticks=5, clock=clock)
        throttle.mark()
        clock.advance(1.5)
        assert not throttle.ready()
        clock.advance(0.5)
        assert throttle.ready()

    def test_only_every_nth_second(self):
        clock = FakeClock()
        throttle = SyncThrottle(min_interval=0, every_ticks=5, clock=clock)
        assert not throttle.should_sync_tick(live.TimerState(elapsed_seconds=4))
        assert throttle.should_sync_tick(live.TimerState(elapsed_seconds=5))
        assert throttle.should_sync_tick(live.TimerState(elapsed_seconds=3, preparation_seconds=2))


class TestChangeFeed:

    def test_publish_reaches_subscribers_of_that_session(self, app):
        feed = ChangeFeed()
        seen = []
        feed.subscribe("a", seen.append)
        feed.subscribe("b", lambda p: seen.append(("b", p)))
        feed.publish("a", {"x": 1})
        assert seen == [{"x": 1}]

    def test_unsubscribe(self, app):
        feed = ChangeFeed()
        seen = []
        token = feed.subscribe("a", seen.append)
        feed.unsubscribe("a", token)
        feed.publish("a", {"x": 1})
        assert seen == []
        assert feed.subscriber_count("a") == 0

    def test_failing_subscriber_does_not_stop_others(self, app):
        feed = ChangeFeed()
        seen = []

        def broken(payload):
            raise RuntimeError("gone")

        feed.subscribe("a", broken)
        feed.subscribe("a", seen.append)
        feed.publish("a", {"x": 1})
        assert seen == [{"x": 1}]

    def test_committed_update_is_published(self, app, program):
        row = load_or_create_session(EVENT_ID)
        seen = []
        app.extensions["live_feed"].subscribe(row.id, seen.append)

        row.elapsed_seconds = 42
        db.session.commit()

        assert len(seen) == 1
        assert seen[0]["id"] == row.id
        assert seen[0]["elapsed_seconds"] == 42

    def test_rolled_back_update_is_not_published(self, app, program):
        row = load_or_create_session(EVENT_ID)
        seen = []
        app.extensions["live_feed"].subscribe(row.id, seen.append)

        row.elapsed_seconds = 42
        db.session.flush()
        db.session.rollback()

        assert seen == []


class TestSessionRows:

    def test_open_session_is_reused(self, app, program):
        first = load_or_create_session(EVENT_ID)
        assert load_or_create_session(EVENT_ID).id == first.id

    def test_finished_session_is_not_reused(self, app, program):
        first = load_or_create_session(EVENT_ID)
        first.event_end_time = datetime.datetime(2026, 3, 1, 13, 0)
        db.session.commit()
        assert load_or_create_session(EVENT_ID).id != first.id

    def test_write_missing_session(self, app, program):
        items = live_sync.load_program(EVENT_ID)
        with pytest.raises(SessionNotFoundError):
            write_session("missing", live.TimerState(), items)

    def test_program_is_ordered(self, app, program):
        assert [s.id for s in live_sync.load_program(EVENT_ID)] == ["item-1", "item-2", "item-3"]


class TestController:
    """Commands write through; ticks are throttled."""

    def test_commands_write_through(self, controller):
        controller.start()
        row = _row(controller)
        assert row.is_running is True
        assert row.event_start_time is not None

    def test_ticks_sync_on_fifth_second(self, controller, clock):
        controller.start()
        for _ in range(4):
            clock.advance(1)
            controller.tick()
        assert controller.state.elapsed_seconds == 4
        assert _row(controller).elapsed_seconds == 0

        clock.advance(1)
        controller.tick()
        assert _row(controller).elapsed_seconds == 5

    def test_ticks_respect_min_interval(self, controller, clock):
        controller.start()
        for _ in range(4):
            controller.tick()
        clock.advance(1)
        controller.tick()
        assert controller.state.elapsed_seconds == 5
        assert _row(controller).elapsed_seconds == 0

    def test_completed_items_stored_as_positions(self, controller):
        controller.start()
        controller.stop()
        controller.next()
        row = _row(controller)
        assert row.completed_items == [0]
        assert row.current_item_index == 1

    def test_remote_update_wins(self, controller):
        controller.start()
        row = _row(controller)
        row.elapsed_seconds = 42
        db.session.commit()
        assert controller.state.elapsed_seconds == 42

    def test_second_controller_follows_first(self, app, controller, clock):
        observer = LiveEventController.open(EVENT_ID, clock=clock)
        try:
            assert observer.session_id == controller.session_id
            controller.start()
            assert observer.state.is_running
        finally:
            observer.close()

    def test_sync_error_is_swallowed(self, controller, monkeypatch):
        def boom(*args):
            raise PersistenceError("database is locked")

        monkeypatch.setattr(live_sync, "write_session", boom)
        state = controller.start()
        assert state.is_running
        assert controller.state.is_running

    def test_noop_command_writes_nothing(self, controller, monkeypatch):
        calls = []
        monkeypatch.setattr(live_sync, "write_session", lambda *a: calls.append(a))
        controller.stop()
        assert calls == []

    def test_reset_starts_new_session(self, controller):
        controller.start()
        old_id = controller.session_id
        controller.reset()
        assert controller.session_id != old_id
        assert controller.state == live.TimerState()
        assert LiveEventSession.query.count() == 2

        old = db.session.get(LiveEventSession, old_id)
        assert old.abandoned_at is not None
        assert old.superseded_by == controller.session_id
        open_rows = LiveEventSession.query.filter_by(
            event_id=EVENT_ID, event_end_time=None, abandoned_at=None,
        ).all()
        assert [r.id for r in open_rows] == [controller.session_id]
        assert load_or_create_session(EVENT_ID).id == controller.session_id

    def test_observer_follows_reset(self, controller, clock):
        observer = LiveEventController.open(EVENT_ID, clock=clock)
        try:
            controller.start()
            controller.reset()
            assert observer.session_id == controller.session_id
            assert observer.state == live.TimerState()
        finally:
            observer.close()

    def test_store_error_during_tick_sync_keeps_ticking(self, controller, clock, monkeypatch):
        controller.start()
        for _ in range(4):
            clock.advance(1)
            controller.tick()

        def locked(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(db.session(), "get", locked)
        clock.advance(1)
        state = controller.tick()
        assert state.elapsed_seconds == 5
        assert controller.tick().elapsed_seconds == 6

    def test_store_error_is_a_persistence_error(self, controller, monkeypatch):
        def locked(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(db.session(), "get", locked)
        with pytest.raises(PersistenceError) as exc:
            write_session(controller.session_id, live.TimerState(), controller.items)
        assert exc.value.message == "database is locked"

    def test_save_statistics(self, controller):
        controller.start()
        for _ in range(90):
            controller.tick()
        controller.stop()
        controller.next()

        row = controller.save_statistics()
        saved = db.session.get(EventStatistics, row.id)
        assert saved.total_planned_duration == 480
        assert saved.total_actual_duration == 90
        assert saved.item_stats[0]["difference"] == 30
        assert saved.recommendations == []

    def test_overtime_notification(self, controller, monkeypatch):
        sent = []
        monkeypatch.setattr("agenda.telegram.send_notification", sent.append)
        controller.start()
        for _ in range(125):
            controller.tick()
        controller.stop()
        assert len(sent) == 1
        assert sent[0].item_title == "Alabanza"
        assert sent[0].actual_seconds == 125


class TestTicker:

    def test_tick_error_is_logged_not_raised(self, app):
        class Broken:
            event_id = EVENT_ID

            def tick(self):
                raise RuntimeError("boom")

        Ticker(app, Broken()).tick_once()


class TestRegistry:

    def test_one_controller_per_event(self, app, program):
        assert get_controller(EVENT_ID) is get_controller(EVENT_ID)

    def test_event_without_program_is_rejected(self, app):
        with pytest.raises(EventNotFoundError):
            get_controller("no-such-event")
        assert LiveEventSession.query.count() == 0
        assert app.extensions["live_controllers"] == {}

    def test_release_controller(self, app, program):
        ctl = get_controller(EVENT_ID)
        release_controller(EVENT_ID)
        assert EVENT_ID not in app.extensions["live_controllers"]
        assert app.extensions["live_feed"].subscriber_count(ctl.session_id) == 0
