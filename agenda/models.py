from .extensions import db
from datetime import datetime, timedelta, timezone
import json
import uuid


def _uuid():
    return str(uuid.uuid4())


def _load_json(raw, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


class WorshipGroup(db.Model):
    """One of the three rotating vocal teams."""
    __tablename__ = 'worship_groups'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, default=True)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "is_active": self.is_active}


class Service(db.Model):
    __tablename__ = 'services'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    title = db.Column(db.String(100), nullable=False)
    # Local church wall time; rendered as an instant with SERVICE_UTC_OFFSET_HOURS
    service_date = db.Column(db.DateTime, nullable=False, index=True)
    leader = db.Column(db.String(100))
    assigned_group_id = db.Column(db.String(36), db.ForeignKey('worship_groups.id'), nullable=True)
    service_type = db.Column(db.String(50))  # Servicio Dominical, cuarentena
    location = db.Column(db.String(100))
    is_confirmed = db.Column(db.Boolean, default=False)
    month_name = db.Column(db.String(20))
    month_order = db.Column(db.Integer)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    group = db.relationship('WorshipGroup', lazy=True)

    def iso_date(self, utc_offset_hours=-4):
        tz = timezone(timedelta(hours=utc_offset_hours))
        return self.service_date.replace(tzinfo=tz).isoformat()

    def to_dict(self, utc_offset_hours=-4):
        return {
            "id": self.id,
            "title": self.title,
            "service_date": self.iso_date(utc_offset_hours),
            "leader": self.leader,
            "assigned_group_id": self.assigned_group_id,
            "service_type": self.service_type,
            "location": self.location,
            "is_confirmed": bool(self.is_confirmed),
            "month_name": self.month_name,
            "month_order": self.month_order,
        }


class ProgramItem(db.Model):
    """Ordered section of an event program. Owned by the programming feature."""
    __tablename__ = 'program_items'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    event_id = db.Column(db.String(36), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    title = db.Column(db.String(200), nullable=False)
    duration_minutes = db.Column(db.Integer, default=0)
    time_slot = db.Column(db.String(20))
    responsible_person = db.Column(db.String(100))
    notes = db.Column(db.Text)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "duration_minutes": self.duration_minutes or 0,
            "time_slot": self.time_slot,
            "responsible_person": self.responsible_person,
            "notes": self.notes,
        }


class LiveEventSession(db.Model):
    """Single shared row holding a live event's timer state."""
    __tablename__ = 'live_event_sessions'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    event_id = db.Column(db.String(36), nullable=False, index=True)
    current_item_index = db.Column(db.Integer, default=0, nullable=False)
    elapsed_seconds = db.Column(db.Integer, default=0, nullable=False)
    preparation_seconds = db.Column(db.Integer, default=0, nullable=False)
    is_running = db.Column(db.Boolean, default=False, nullable=False)
    is_paused = db.Column(db.Boolean, default=False, nullable=False)
    is_preparation_phase = db.Column(db.Boolean, default=False, nullable=False)
    _completed_items_json = db.Column('completed_items', db.Text, default="[]")
    _item_actual_times_json = db.Column('item_actual_times', db.Text, default="{}")
    event_start_time = db.Column(db.DateTime)
    event_end_time = db.Column(db.DateTime)
    # Set on reset; an abandoned row is never reopened
    abandoned_at = db.Column(db.DateTime)
    superseded_by = db.Column(db.String(36))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    last_updated_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def completed_items(self):
        return _load_json(self._completed_items_json, [])

    @completed_items.setter
    def completed_items(self, value):
        self._completed_items_json = json.dumps(list(value))

    @property
    def item_actual_times(self):
        return _load_json(self._item_actual_times_json, {})

    @item_actual_times.setter
    def item_actual_times(self, value):
        self._item_actual_times_json = json.dumps(dict(value))

    def to_dict(self):
        return {
            "id": self.id,
            "event_id": self.event_id,
            "current_item_index": self.current_item_index,
            "elapsed_seconds": self.elapsed_seconds,
            "preparation_seconds": self.preparation_seconds,
            "is_running": self.is_running,
            "is_paused": self.is_paused,
            "is_preparation_phase": self.is_preparation_phase,
            "completed_items": self.completed_items,
            "item_actual_times": self.item_actual_times,
            "event_start_time": self.event_start_time.isoformat() if self.event_start_time else None,
            "event_end_time": self.event_end_time.isoformat() if self.event_end_time else None,
            "abandoned_at": self.abandoned_at.isoformat() if self.abandoned_at else None,
            "superseded_by": self.superseded_by,
            "last_updated_at": self.last_updated_at.isoformat() if self.last_updated_at else None,
        }


class EventStatistics(db.Model):
    """Planned vs actual durations saved when a live event ends."""
    __tablename__ = 'event_statistics'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    event_id = db.Column(db.String(36), nullable=False, index=True)
    total_planned_duration = db.Column(db.Integer, default=0)
    total_actual_duration = db.Column(db.Integer, default=0)
    total_preparation_time = db.Column(db.Integer, default=0)
    _item_stats_json = db.Column('item_stats', db.Text, default="[]")
    _recommendations_json = db.Column('recommendations', db.Text, default="[]")
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def item_stats(self):
        return _load_json(self._item_stats_json, [])

    @item_stats.setter
    def item_stats(self, value):
        self._item_stats_json = json.dumps(value)

    @property
    def recommendations(self):
        return _load_json(self._recommendations_json, [])

    @recommendations.setter
    def recommendations(self, value):
        self._recommendations_json = json.dumps(value)

    def to_dict(self):
        return {
            "id": self.id,
            "event_id": self.event_id,
            "total_planned_duration": self.total_planned_duration,
            "total_actual_duration": self.total_actual_duration,
            "total_preparation_time": self.total_preparation_time,
            "item_stats": self.item_stats,
            "recommendations": self.recommendations,
        }
