"""
Notification payloads.

A closed set of frozen dataclasses, one per notification kind. Each payload
renders its own message through format_message(); unknown payload types are
rejected rather than formatted loosely.
"""
from dataclasses import asdict, dataclass
from typing import Tuple, Union

from .utils import format_clock


@dataclass(frozen=True)
class YearGenerated:
    year: int
    total: int
    sundays: int
    quarantine_saturdays: int
    quarantine_wednesdays: int
    kind: str = "year_generated"


@dataclass(frozen=True)
class YearDeleted:
    year: int
    deleted: int
    kind: str = "year_deleted"


@dataclass(frozen=True)
class LiveEventFinished:
    event_id: str
    planned_seconds: int
    actual_seconds: int
    is_ahead: bool
    recommendations: Tuple[str, ...] = ()
    kind: str = "live_event_finished"


@dataclass(frozen=True)
class SectionOvertime:
    event_id: str
    item_title: str
    planned_seconds: int
    actual_seconds: int
    kind: str = "section_overtime"


Notification = Union[YearGenerated, YearDeleted, LiveEventFinished, SectionOvertime]


def to_dict(payload: Notification) -> dict:
    return asdict(payload)


def format_message(payload: Notification) -> str:
    """Render a payload as a Telegram HTML message."""
    if isinstance(payload, YearGenerated):
        return "\n".join([
            f"📅 <b>Servicios {payload.year} generados</b>",
            "",
            f"Total: {payload.total}",
            f"⛪ Domingos: {payload.sundays} (2 servicios cada uno)",
            f"🕖 Cuarentena sábados: {payload.quarantine_saturdays}",
            f"🕖 Cuarentena miércoles: {payload.quarantine_wednesdays}",
        ])

    if isinstance(payload, YearDeleted):
        return f"🗑️ <b>Servicios {payload.year} eliminados</b>\n\n{payload.deleted} servicio(s) borrados."

    if isinstance(payload, LiveEventFinished):
        diff = abs(payload.actual_seconds - payload.planned_seconds)
        verdict = "antes de lo planificado" if payload.is_ahead else "sobre lo planificado"
        lines = [
            "🏁 <b>Evento finalizado</b>",
            "",
            f"⏱️ Planificado: {format_clock(payload.planned_seconds)}",
            f"⏱️ Real: {format_clock(payload.actual_seconds)}",
            f"{format_clock(diff)} {verdict}",
        ]
        if payload.recommendations:
            lines.append("")
            lines.extend(f"• {r}" for r in payload.recommendations)
        return "\n".join(lines)

    if isinstance(payload, SectionOvertime):
        over = payload.actual_seconds - payload.planned_seconds
        return (
            f"⚠️ <b>{payload.item_title}</b> excedió su tiempo por {format_clock(over)}\n"
            f"Planificado {format_clock(payload.planned_seconds)}, real {format_clock(payload.actual_seconds)}"
        )

    raise TypeError(f"Unknown notification payload: {type(payload).__name__}")
