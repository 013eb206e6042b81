"""
Persistence and realtime synchronisation for live event sessions.

One LiveEventController per event drives the timer: commands write the
session row straight through, ticks are throttled. Every committed UPDATE
of a session row is published on the ChangeFeed, and subscribers (other
controllers, SSE observers) replace their view with the stored row.
"""
import datetime
import threading
import time
from collections import defaultdict

from flask import current_app, has_app_context
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, object_session

from . import live
from .errors import EventNotFoundError, PersistenceError, SessionNotFoundError
from .extensions import db
from .models import EventStatistics, LiveEventSession, ProgramItem
from .notifications import LiveEventFinished, SectionOvertime


# ============================================================
# Change feed
# ============================================================
class ChangeFeed:
    """In-process UPDATE feed keyed by session id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers = defaultdict(dict)
        self._next_token = 0

    def subscribe(self, session_id, callback):
        with self._lock:
            self._next_token += 1
            token = self._next_token
            self._subscribers[session_id][token] = callback
        return token

    def unsubscribe(self, session_id, token):
        with self._lock:
            subs = self._subscribers.get(session_id)
            if subs is not None:
                subs.pop(token, None)
                if not subs:
                    del self._subscribers[session_id]

    def subscriber_count(self, session_id):
        with self._lock:
            return len(self._subscribers.get(session_id, {}))

    def publish(self, session_id, payload):
        with self._lock:
            callbacks = list(self._subscribers.get(session_id, {}).values())
        for callback in callbacks:
            try:
                callback(payload)
            except Exception as e:
                current_app.logger.error(f"Live feed subscriber error for {session_id}: {e}")


def get_feed():
    return current_app.extensions["live_feed"]


@event.listens_for(LiveEventSession, "after_update")
def _queue_session_update(mapper, connection, target):
    session = object_session(target)
    if session is not None:
        session.info.setdefault("live_updates", []).append(target.to_dict())


@event.listens_for(Session, "after_commit")
def _publish_session_updates(session):
    updates = session.info.pop("live_updates", None)
    if not updates or not has_app_context():
        return
    feed = current_app.extensions.get("live_feed")
    if feed is None:
        return
    for payload in updates:
        feed.publish(payload["id"], payload)


@event.listens_for(Session, "after_rollback")
def _discard_session_updates(session):
    session.info.pop("live_updates", None)


# ============================================================
# Session rows
# ============================================================
def load_program(event_id):
    items = ProgramItem.query.filter_by(event_id=event_id).order_by(ProgramItem.position).all()
    return [live.ProgramSection.from_model(i) for i in items]


def find_open_session(event_id):
    return (
        LiveEventSession.query
        .filter(
            LiveEventSession.event_id == event_id,
            LiveEventSession.event_end_time.is_(None),
            LiveEventSession.abandoned_at.is_(None),
        )
        .order_by(LiveEventSession.created_at.desc())
        .first()
    )


def create_session(event_id, supersedes=None):
    """Insert a fresh session row.

    When `supersedes` names the current row, that row is abandoned in the same
    commit, so an event never has two open sessions.
    """
    row = LiveEventSession(event_id=event_id)
    row.completed_items = []
    row.item_actual_times = {}
    try:
        db.session.add(row)
        db.session.flush()
        if supersedes is not None:
            old = db.session.get(LiveEventSession, supersedes)
            if old is not None and old.abandoned_at is None:
                old.abandoned_at = datetime.datetime.utcnow()
                old.superseded_by = row.id
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError(str(getattr(e, "orig", None) or e))
    return row


def load_or_create_session(event_id):
    """The open session of `event_id`; a new one only when none is open."""
    return find_open_session(event_id) or create_session(event_id)


def write_session(session_id, state, items):
    try:
        row = db.session.get(LiveEventSession, session_id)
        if row is None:
            raise SessionNotFoundError(session_id)
        for key, value in live.row_values(state, items).items():
            setattr(row, key, value)
        row.last_updated_at = datetime.datetime.utcnow()
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError(str(getattr(e, "orig", None) or e))
    return row


def save_statistics(event_id, state, items, threshold=60):
    """Persist the statistics of a finished (or abandoned) event."""
    stats = live.get_statistics(state, items, threshold)
    row = EventStatistics(
        event_id=event_id,
        total_planned_duration=stats["total_planned_seconds"],
        total_actual_duration=stats["total_actual_seconds"],
        total_preparation_time=stats["total_preparation_seconds"],
    )
    row.item_stats = stats["item_stats"]
    row.recommendations = stats["recommendations"]
    db.session.add(row)
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error saving statistics for {event_id}: {e}")
        raise PersistenceError(str(getattr(e, "orig", None) or e))

    from .telegram import send_notification
    send_notification(LiveEventFinished(
        event_id=event_id,
        planned_seconds=stats["total_planned_seconds"],
        actual_seconds=stats["total_actual_seconds"],
        is_ahead=stats["is_ahead"],
        recommendations=tuple(stats["recommendations"]),
    ))
    return row


# ============================================================
# Throttle and ticker
# ============================================================
class SyncThrottle:
    """Bounds tick writes: every Nth accumulated second, at most once per interval."""

    def __init__(self, min_interval=2.0, every_ticks=5, clock=time.monotonic):
        self.min_interval = min_interval
        self.every_ticks = max(1, int(every_ticks))
        self.clock = clock
        self.last_sync = None

    def ready(self):
        if self.last_sync is None:
            return True
        return self.clock() - self.last_sync >= self.min_interval

    def should_sync_tick(self, state):
        total = state.elapsed_seconds + state.preparation_seconds
        return total % self.every_ticks == 0 and self.ready()

    def mark(self):
        self.last_sync = self.clock()


class Ticker(threading.Thread):
    """One-second repeating tick for a controller, inside an app context."""

    def __init__(self, app, controller, interval=1.0):
        super().__init__(daemon=True, name=f"live-ticker-{controller.event_id}")
        self.app = app
        self.controller = controller
        self.interval = interval
        self._cancelled = threading.Event()

    def run(self):
        while not self._cancelled.wait(self.interval):
            with self.app.app_context():
                self.tick_once()

    def tick_once(self):
        """One tick. Errors are logged so the loop keeps running."""
        try:
            self.controller.tick()
        except Exception as e:
            current_app.logger.error(f"Live ticker error for {self.controller.event_id}: {e}")

    def cancel(self):
        self._cancelled.set()


# ============================================================
# Controller
# ============================================================
class LiveEventController:

    def __init__(self, app, event_id, items, session_id, state, feed,
                 throttle=None, threshold=60, ticker_enabled=True):
        self.app = app
        self.event_id = event_id
        self.items = list(items)
        self.session_id = session_id
        self.state = state
        self.feed = feed
        self.throttle = throttle or SyncThrottle()
        self.threshold = threshold
        self.ticker_enabled = ticker_enabled
        self._lock = threading.RLock()
        self._ticker = None
        self._feed_token = None

    @classmethod
    def open(cls, event_id, clock=time.monotonic):
        """Load (or create) the open session of `event_id` and attach to the feed."""
        app = current_app._get_current_object()
        cfg = app.config
        items = load_program(event_id)
        row = load_or_create_session(event_id)
        ctl = cls(
            app, event_id, items, row.id, live.state_from_row(row, items), get_feed(),
            throttle=SyncThrottle(cfg.get("LIVE_SYNC_MIN_INTERVAL", 2), cfg.get("LIVE_SYNC_EVERY_TICKS", 5), clock),
            threshold=cfg.get("LIVE_RECOMMENDATION_THRESHOLD", 60),
            ticker_enabled=cfg.get("LIVE_TICKER_ENABLED", True),
        )
        ctl._subscribe()
        ctl._sync_ticker()
        return ctl

    # --- feed ---
    def _subscribe(self):
        self._feed_token = self.feed.subscribe(self.session_id, self.on_remote_update)

    def _unsubscribe(self):
        if self._feed_token is not None:
            self.feed.unsubscribe(self.session_id, self._feed_token)
            self._feed_token = None

    def on_remote_update(self, payload):
        with self._lock:
            successor = payload.get("superseded_by")
            if successor and successor != self.session_id:
                # Another controller reset the event; follow it to the new row
                self._switch_session(successor)
                return
            remote = live.state_from_row(payload, self.items)
            self.state = live.reconcile(self.state, remote)
            self._sync_ticker()

    # --- persistence ---
    def _push(self, state):
        try:
            write_session(self.session_id, state, self.items)
            self.throttle.mark()
            return True
        except (PersistenceError, SessionNotFoundError) as e:
            current_app.logger.error(f"Error syncing live session {self.session_id}: {e}")
            return False

    def _sync_ticker(self):
        if not self.ticker_enabled:
            return
        if self.state.is_ticking:
            if self._ticker is None or not self._ticker.is_alive():
                self._ticker = Ticker(self.app, self)
                self._ticker.start()
        elif self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def _apply(self, transition, *args):
        """Run a transition and write it through. No-op transitions write nothing."""
        with self._lock:
            new = transition(self.state, *args)
            if new is self.state:
                return self.state
            self.state = new
            self._push(new)
            self._sync_ticker()
            return self.state

    # --- commands ---
    def start(self):
        return self._apply(live.start_timer)

    def stop(self):
        with self._lock:
            stopped = live.stop_section(self.state, self.items)
            if stopped is self.state:
                return self.state
            self._apply(lambda _state: stopped)
        self._notify_overtime(stopped)
        return self.state

    def next(self):
        return self._apply(live.next_section, self.items)

    def skip(self, index):
        return self._apply(live.skip_to_section, self.items, index)

    def restore(self, item_id):
        return self._apply(live.restore_section, self.items, item_id)

    def toggle_pause(self):
        return self._apply(live.toggle_pause)

    def reset(self):
        """Fresh state on a brand-new session row. The old row is kept, marked abandoned."""
        with self._lock:
            self._unsubscribe()
            try:
                row = create_session(self.event_id, supersedes=self.session_id)
            except PersistenceError:
                self._subscribe()
                raise
            self._switch_session(row.id)
            return self.state

    def _switch_session(self, session_id):
        self._unsubscribe()
        self.session_id = session_id
        self.state = live.reset_event()
        self.throttle.last_sync = None
        self._subscribe()
        self._sync_ticker()

    def tick(self):
        with self._lock:
            new = live.tick(self.state)
            if new is self.state:
                return self.state
            self.state = new
            if self.throttle.should_sync_tick(new):
                self._push(new)
            return self.state

    def close(self):
        with self._lock:
            self._unsubscribe()
            if self._ticker is not None:
                self._ticker.cancel()
                self._ticker = None

    # --- views ---
    def statistics(self):
        return live.get_statistics(self.state, self.items, self.threshold)

    def save_statistics(self):
        return save_statistics(self.event_id, self.state, self.items, self.threshold)

    def snapshot(self):
        return {
            "session_id": self.session_id,
            "event_id": self.event_id,
            "state": live.state_to_dict(self.state),
            "view": live.describe(self.state, self.items),
            "items": [
                {"id": i.id, "title": i.title, "duration_minutes": i.duration_minutes,
                 "responsible_person": i.responsible_person}
                for i in self.items
            ],
        }

    def _notify_overtime(self, state):
        item = self.items[state.current_item_index]
        actual = state.item_actual_times.get(item.id, 0)
        over = actual - item.planned_seconds
        if over > self.threshold:
            from .telegram import send_notification
            send_notification(SectionOvertime(
                event_id=self.event_id, item_title=item.title,
                planned_seconds=item.planned_seconds, actual_seconds=actual,
            ))


# ============================================================
# Registry
# ============================================================
_registry_lock = threading.Lock()


def get_controller(event_id):
    """The process-wide controller for `event_id`, opened on first use."""
    controllers = current_app.extensions["live_controllers"]
    with _registry_lock:
        ctl = controllers.get(event_id)
        if ctl is None:
            # Only events with a program get a session row
            if not ProgramItem.query.filter_by(event_id=event_id).first():
                raise EventNotFoundError(event_id)
            ctl = LiveEventController.open(event_id)
            controllers[event_id] = ctl
        return ctl


def release_controller(event_id):
    """Close and forget the controller of a finished event."""
    controllers = current_app.extensions["live_controllers"]
    with _registry_lock:
        ctl = controllers.pop(event_id, None)
    if ctl is not None:
        ctl.close()


def close_controllers(app):
    for ctl in list(app.extensions.get("live_controllers", {}).values()):
        ctl.close()
    app.extensions["live_controllers"] = {}
