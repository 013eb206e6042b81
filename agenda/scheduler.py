from collections import defaultdict

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from .errors import PersistenceError, ValidationError
from .extensions import db
from .models import Service
from .utils import (
    DIRECTOR_ROTATION, DIRECTORS_CONFIG, EVENING, GROUP_KEYS_BY_ID, GROUP_ROTATIONS,
    GROUPS, LATE_MORNING, MORNING, ONLY_MORNING, QUARANTINE_SERVICE_TYPE, SERVICE_TITLES,
    SUNDAY_SERVICE_TYPE, associated_sunday, month_name, quarantine_saturdays,
    quarantine_wednesdays, slot_datetime, sundays_of_year, week_of_month, year_bounds,
)


def group_rotation(sunday_index, first_rotation=None):
    if sunday_index == 0 and first_rotation is not None:
        return first_rotation
    return GROUP_ROTATIONS[sunday_index % len(GROUP_ROTATIONS)]


def rotation_after_rest(prior_rest):
    """Rotation for the first Sunday of a year, given who rested last December.

    The chosen group must not rest twice in a row, neither against December
    nor against the default rotation of the second Sunday.
    """
    excluded = {prior_rest, GROUP_ROTATIONS[1]["rest"]}
    for rotation in GROUP_ROTATIONS:
        if rotation["rest"] not in excluded:
            return rotation
    return GROUP_ROTATIONS[0]


def get_previous_rest_group(year):
    """Group that rested on the last Sunday before `year`, or None."""
    start, _ = year_bounds(year)
    rows = (
        Service.query
        .filter(Service.service_type == SUNDAY_SERVICE_TYPE, Service.service_date < start)
        .order_by(Service.service_date.desc())
        .limit(2)
        .all()
    )
    if len(rows) < 2:
        return None
    singing = {GROUP_KEYS_BY_ID.get(r.assigned_group_id) for r in rows}
    if None in singing or len(singing) != 2:
        return None
    return (set(GROUPS) - singing).pop()


def _scan_rotation(rotation, start, accept):
    n = len(rotation)
    for step in range(1, n + 1):
        cand = rotation[(start + step) % n]
        if accept(cand):
            return cand
    return None


def resolve_director(service_index, slot_time, used_today, day_slots,
                     rotation=DIRECTOR_ROTATION, only_morning=ONLY_MORNING, leads=None):
    """Pick the director for one slot.

    `day_slots` maps each group singing that day to its slot time. When no
    rotation entry satisfies a rule, the current candidate is kept.
    """
    if leads is None:
        leads = {name: cfg["group"] for name, cfg in DIRECTORS_CONFIG.items()}

    def time_ok(name):
        return not (slot_time == LATE_MORNING and name in only_morning)

    def conflicted(name):
        group = leads.get(name)
        return group in day_slots and day_slots[group] != slot_time

    candidate = rotation[service_index % len(rotation)]

    if not time_ok(candidate):
        found = _scan_rotation(rotation, rotation.index(candidate),
                               lambda c: time_ok(c) and c not in used_today)
        if found:
            candidate = found

    if candidate in used_today:
        found = _scan_rotation(rotation, rotation.index(candidate),
                               lambda c: c not in used_today and time_ok(c))
        if found:
            candidate = found

    if conflicted(candidate):
        found = _scan_rotation(rotation, rotation.index(candidate),
                               lambda c: c not in used_today and time_ok(c) and not conflicted(c))
        if found:
            candidate = found

    return candidate


def _slot_record(date_obj, slot_time, service_type, group_key, leader, location):
    return {
        "title": SERVICE_TITLES[slot_time],
        "service_date": slot_datetime(date_obj, slot_time),
        "leader": leader,
        "assigned_group_id": GROUPS.get(group_key),
        "service_type": service_type,
        "location": location,
        "is_confirmed": False,
        "month_name": month_name(date_obj),
        "month_order": week_of_month(date_obj),
    }


def plan_sunday_services(sundays, first_rotation=None, location="Templo Principal"):
    """Two services per Sunday. Returns (records, rotation by Sunday)."""
    records = []
    rotations = {}
    director_index = 0
    current_month = None

    for i, sunday in enumerate(sundays):
        if sunday.month != current_month:
            current_month = sunday.month
            director_index = 0

        rotation = group_rotation(i, first_rotation)
        rotations[sunday] = rotation
        day_slots = {rotation["service1"]: MORNING, rotation["service2"]: LATE_MORNING}
        used_today = set()

        for slot_time, group_key in ((MORNING, rotation["service1"]), (LATE_MORNING, rotation["service2"])):
            leader = resolve_director(director_index, slot_time, used_today, day_slots)
            used_today.add(leader)
            director_index += 1
            records.append(_slot_record(sunday, slot_time, SUNDAY_SERVICE_TYPE, group_key, leader, location))

    return records, rotations


def plan_quarantine_services(dates, rotations, start_index=0, location="Templo Principal"):
    """7 PM services sung by the resting group of the associated Sunday.

    One running director index spans the whole sequence.
    Returns (records, next index).
    """
    records = []
    director_index = start_index
    fallback = next(iter(rotations.values()), GROUP_ROTATIONS[0])

    for date_obj in sorted(dates):
        rotation = rotations.get(associated_sunday(date_obj), fallback)
        group_key = rotation["rest"]
        leader = resolve_director(director_index, EVENING, set(), {group_key: EVENING})
        director_index += 1
        records.append(_slot_record(date_obj, EVENING, QUARANTINE_SERVICE_TYPE, group_key, leader, location))

    return records, director_index


def build_year_services(year, first_rotation=None, cutoff="02-21", location="Templo Principal"):
    """Pure generation of every slot of `year`. Returns (records, summary)."""
    sundays = sundays_of_year(year)
    saturdays = quarantine_saturdays(year, cutoff)
    wednesdays = quarantine_wednesdays(year, cutoff)

    sunday_records, rotations = plan_sunday_services(sundays, first_rotation, location)
    quarantine_records, _ = plan_quarantine_services(saturdays + wednesdays, rotations, location=location)

    records = sunday_records + quarantine_records
    summary = {
        "year": year,
        "total": len(records),
        "sundays": len(sundays),
        "sunday_services": len(sunday_records),
        "quarantine_saturdays": len(saturdays),
        "quarantine_wednesdays": len(wednesdays),
        "rotation_source": "history" if first_rotation is not None else "default",
    }
    return records, summary


def plan_year(year):
    """Generate (without writing) the slate for `year` using live rotation history."""
    if year is None:
        raise ValidationError("No year selected")

    prior_rest = get_previous_rest_group(year)
    first_rotation = None
    if prior_rest is None:
        current_app.logger.warning(
            "No usable Sunday rotation history before %s; first Sunday uses the default rotation", year
        )
    else:
        first_rotation = rotation_after_rest(prior_rest)

    return build_year_services(
        year,
        first_rotation,
        cutoff=current_app.config.get("QUARANTINE_CUTOFF", "02-21"),
        location=current_app.config.get("SERVICE_LOCATION", "Templo Principal"),
    )


def generate_year(year):
    """Generate and batch-insert every slot of `year`. Returns the summary."""
    records, summary = plan_year(year)

    try:
        db.session.add_all([Service(**r) for r in records])
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Year generation error: {e}")
        raise PersistenceError(str(getattr(e, "orig", None) or e))

    current_app.logger.info(
        "Generated %s services for %s (%s Sundays, %s quarantine Saturdays, %s quarantine Wednesdays)",
        summary["total"], year, summary["sundays"],
        summary["quarantine_saturdays"], summary["quarantine_wednesdays"],
    )
    return summary


def delete_year(year):
    """Delete every slot dated within `year`. Irreversible. Returns the count."""
    if year is None:
        raise ValidationError("No year selected")

    start, end = year_bounds(year)
    try:
        count = (
            Service.query
            .filter(Service.service_date >= start, Service.service_date < end)
            .delete(synchronize_session=False)
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Year deletion error: {e}")
        raise PersistenceError(str(getattr(e, "orig", None) or e))

    current_app.logger.info("Deleted %s services for %s", count, year)
    return count


def infer_next_year():
    latest = db.session.query(func.max(Service.service_date)).scalar()
    if latest is None:
        raise ValidationError("No services found to infer the next year")
    return latest.year + 1


def offered_years(span=5):
    first = infer_next_year()
    return list(range(first, first + span + 1))


def year_report(year):
    """Per-director and per-group counts for the services of `year`."""
    start, end = year_bounds(year)
    services = Service.query.filter(Service.service_date >= start, Service.service_date < end).all()

    by_director = defaultdict(lambda: {"total": 0, SUNDAY_SERVICE_TYPE: 0, QUARANTINE_SERVICE_TYPE: 0})
    by_group = defaultdict(int)
    for s in services:
        if s.leader:
            by_director[s.leader]["total"] += 1
            if s.service_type in (SUNDAY_SERVICE_TYPE, QUARANTINE_SERVICE_TYPE):
                by_director[s.leader][s.service_type] += 1
        by_group[GROUP_KEYS_BY_ID.get(s.assigned_group_id, "UNASSIGNED")] += 1

    return {
        "year": year,
        "total": len(services),
        "directors": dict(by_director),
        "groups": dict(by_group),
    }
