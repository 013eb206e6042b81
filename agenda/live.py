"""
Live event timer state machine.

Every transition is a pure function taking the current TimerState (and the
ordered program items) and returning a new TimerState. Persistence, the
one-second ticker and the realtime feed live in live_sync.py.
"""
import datetime
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from .errors import ValidationError
from .utils import format_clock

IDLE = "idle"
RUNNING = "running"
PAUSED = "paused"
PREPARATION = "preparation"
FINISHED = "finished"


@dataclass(frozen=True)
class ProgramSection:
    """Read-only view of a program item."""
    id: str
    title: str
    duration_minutes: int = 0
    responsible_person: Optional[str] = None

    @property
    def planned_seconds(self) -> int:
        return (self.duration_minutes or 0) * 60

    @classmethod
    def from_model(cls, item):
        return cls(
            id=item.id,
            title=item.title,
            duration_minutes=item.duration_minutes or 0,
            responsible_person=item.responsible_person,
        )


@dataclass(frozen=True)
class TimerState:
    is_running: bool = False
    is_paused: bool = False
    current_item_index: int = 0
    elapsed_seconds: int = 0
    preparation_seconds: int = 0
    is_preparation_phase: bool = False
    completed_items: Tuple[str, ...] = ()
    item_actual_times: Dict[str, int] = field(default_factory=dict)
    event_start_time: Optional[datetime.datetime] = None
    event_end_time: Optional[datetime.datetime] = None

    @property
    def phase(self) -> str:
        if self.event_end_time is not None:
            return FINISHED
        if self.is_preparation_phase:
            return PREPARATION
        if self.is_running:
            return PAUSED if self.is_paused else RUNNING
        return IDLE

    @property
    def is_ticking(self) -> bool:
        return self.is_running and not self.is_paused and self.event_end_time is None


def _now():
    return datetime.datetime.utcnow()


# ============================================================
# Transitions
# ============================================================
def start_timer(state: TimerState, now=None) -> TimerState:
    if state.is_ticking and not state.is_preparation_phase:
        return state
    if state.event_end_time is not None:
        return state
    return replace(
        state,
        is_running=True,
        is_paused=False,
        is_preparation_phase=False,
        preparation_seconds=0,
        event_start_time=state.event_start_time or now or _now(),
    )


def stop_section(state: TimerState, items: List[ProgramSection]) -> TimerState:
    """Close the current section and enter the preparation phase."""
    if not state.is_running or state.is_preparation_phase or state.event_end_time is not None:
        return state
    if not 0 <= state.current_item_index < len(items):
        return state

    item = items[state.current_item_index]
    completed = state.completed_items
    if item.id not in completed:
        completed = completed + (item.id,)
    actual = dict(state.item_actual_times)
    actual[item.id] = state.elapsed_seconds

    return replace(
        state,
        is_preparation_phase=True,
        completed_items=completed,
        item_actual_times=actual,
    )


def next_section(state: TimerState, items: List[ProgramSection], now=None) -> TimerState:
    if state.event_end_time is not None:
        return state
    next_index = state.current_item_index + 1
    if next_index >= len(items):
        return replace(
            state,
            is_running=False,
            is_paused=False,
            is_preparation_phase=False,
            event_end_time=now or _now(),
        )
    return replace(
        state,
        current_item_index=next_index,
        elapsed_seconds=0,
        preparation_seconds=0,
        is_preparation_phase=False,
        is_running=False,
        is_paused=False,
    )


def skip_to_section(state: TimerState, items: List[ProgramSection], index: int) -> TimerState:
    """Jump to any section. Completion history is left untouched."""
    if not 0 <= index < len(items):
        raise ValidationError(f"Section index {index} is out of range")
    return replace(
        state,
        current_item_index=index,
        elapsed_seconds=0,
        preparation_seconds=0,
        is_preparation_phase=False,
        is_running=False,
        is_paused=False,
    )


def restore_section(state: TimerState, items: List[ProgramSection], item_id: str) -> TimerState:
    """Reopen a completed section at its recorded time, paused.

    Stopping it again without ticking records the same actual time.
    """
    index = next((i for i, it in enumerate(items) if it.id == item_id), None)
    if index is None:
        raise ValidationError(f"Unknown program item {item_id}")

    actual = dict(state.item_actual_times)
    previous = actual.pop(item_id, 0)

    return replace(
        state,
        current_item_index=index,
        elapsed_seconds=previous,
        preparation_seconds=0,
        is_preparation_phase=False,
        is_running=True,
        is_paused=True,
        completed_items=tuple(i for i in state.completed_items if i != item_id),
        item_actual_times=actual,
        event_end_time=None,
    )


def toggle_pause(state: TimerState) -> TimerState:
    if not state.is_running or state.event_end_time is not None:
        return state
    return replace(state, is_paused=not state.is_paused)


def reset_event(state: TimerState = None) -> TimerState:
    return TimerState()


def tick(state: TimerState) -> TimerState:
    """Advance one real second."""
    if not state.is_ticking:
        return state
    if state.is_preparation_phase:
        return replace(state, preparation_seconds=state.preparation_seconds + 1)
    return replace(state, elapsed_seconds=state.elapsed_seconds + 1)


# ============================================================
# Realtime reconciliation
# ============================================================
def reconcile(local: TimerState, remote: Optional[TimerState]) -> TimerState:
    """Merge policy for realtime updates: the stored row always wins."""
    if remote is None:
        return local
    return remote


def state_from_row(row, items: List[ProgramSection]) -> TimerState:
    """Rebuild a TimerState from a session row dict or model."""
    get = row.get if isinstance(row, dict) else (lambda k, d=None: getattr(row, k, d))

    completed = []
    for idx in get("completed_items") or []:
        if isinstance(idx, int) and 0 <= idx < len(items):
            completed.append(items[idx].id)

    return TimerState(
        is_running=bool(get("is_running")),
        is_paused=bool(get("is_paused")),
        current_item_index=int(get("current_item_index") or 0),
        elapsed_seconds=int(get("elapsed_seconds") or 0),
        preparation_seconds=int(get("preparation_seconds") or 0),
        is_preparation_phase=bool(get("is_preparation_phase")),
        completed_items=tuple(completed),
        item_actual_times={k: int(v) for k, v in (get("item_actual_times") or {}).items()},
        event_start_time=_parse_dt(get("event_start_time")),
        event_end_time=_parse_dt(get("event_end_time")),
    )


def row_values(state: TimerState, items: List[ProgramSection]) -> dict:
    """Column values for persisting `state`; completed ids become program positions."""
    positions = {it.id: i for i, it in enumerate(items)}
    return {
        "current_item_index": state.current_item_index,
        "elapsed_seconds": state.elapsed_seconds,
        "preparation_seconds": state.preparation_seconds,
        "is_running": state.is_running,
        "is_paused": state.is_paused,
        "is_preparation_phase": state.is_preparation_phase,
        "completed_items": [positions[i] for i in state.completed_items if i in positions],
        "item_actual_times": dict(state.item_actual_times),
        "event_start_time": state.event_start_time,
        "event_end_time": state.event_end_time,
    }


def _parse_dt(value):
    if value is None or isinstance(value, datetime.datetime):
        return value
    return datetime.datetime.fromisoformat(value)


# ============================================================
# Statistics
# ============================================================
def get_statistics(state: TimerState, items: List[ProgramSection], threshold=60) -> dict:
    """Planned vs actual per section and overall. Pure function of its inputs."""
    total_planned = sum(it.planned_seconds for it in items)
    total_actual = sum(state.item_actual_times.values())
    difference = total_actual - total_planned

    item_stats = []
    for it in items:
        actual = state.item_actual_times.get(it.id, 0)
        item_stats.append({
            "id": it.id,
            "title": it.title,
            "planned_seconds": it.planned_seconds,
            "actual_seconds": actual,
            "difference": actual - it.planned_seconds,
            "completed": it.id in state.completed_items,
        })

    return {
        "total_planned_seconds": total_planned,
        "total_actual_seconds": total_actual,
        "total_preparation_seconds": state.preparation_seconds,
        "difference": abs(difference),
        "is_ahead": difference < 0,
        "item_stats": item_stats,
        "recommendations": recommendations(item_stats, threshold),
        "event_start_time": state.event_start_time.isoformat() if state.event_start_time else None,
        "event_end_time": state.event_end_time.isoformat() if state.event_end_time else None,
    }


def recommendations(item_stats, threshold=60):
    """Advice for completed sections that missed their plan by more than `threshold` seconds."""
    out = []
    for s in item_stats:
        diff = s["difference"]
        if not s["completed"] or abs(diff) <= threshold:
            continue
        if diff > 0:
            out.append(f'"{s["title"]}": Excedido por {format_clock(diff)}. Considerar más tiempo.')
        else:
            out.append(f'"{s["title"]}": Terminó {format_clock(-diff)} antes. Reducir tiempo asignado.')
    return out


def describe(state: TimerState, items: List[ProgramSection]) -> dict:
    """Derived view for displays: current/next section, remaining time, lists."""
    idx = state.current_item_index
    current = items[idx] if 0 <= idx < len(items) else None
    upcoming = items[idx + 1] if 0 <= idx + 1 < len(items) else None
    planned = current.planned_seconds if current else 0
    remaining = planned - state.elapsed_seconds
    by_id = {it.id: it for it in items}

    return {
        "phase": state.phase,
        "current_item": current.id if current else None,
        "next_item": upcoming.id if upcoming else None,
        "planned_seconds": planned,
        "time_remaining": abs(remaining),
        "is_overtime": remaining < 0,
        "clock": format_clock(state.elapsed_seconds),
        "preparation_clock": format_clock(state.preparation_seconds),
        "pending_items": [it.id for it in items if it.id not in state.completed_items],
        "completed_items": [i for i in state.completed_items if i in by_id],
    }


def state_to_dict(state: TimerState) -> dict:
    return {
        "is_running": state.is_running,
        "is_paused": state.is_paused,
        "current_item_index": state.current_item_index,
        "elapsed_seconds": state.elapsed_seconds,
        "preparation_seconds": state.preparation_seconds,
        "is_preparation_phase": state.is_preparation_phase,
        "completed_items": list(state.completed_items),
        "item_actual_times": dict(state.item_actual_times),
        "event_start_time": state.event_start_time.isoformat() if state.event_start_time else None,
        "event_end_time": state.event_end_time.isoformat() if state.event_end_time else None,
    }
