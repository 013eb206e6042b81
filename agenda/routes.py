from flask import Blueprint, request, current_app, Response, stream_with_context
from functools import wraps
import json
import queue

from .models import LiveEventSession, Service
from .errors import DomainError, EventNotFoundError, ValidationError, SessionNotFoundError, PersistenceError
from .extensions import db
from .notifications import YearGenerated, YearDeleted
from .scheduler import generate_year, delete_year, plan_year, offered_years
from .telegram import send_notification, check_telegram_connection
from .utils import year_bounds
from .live_sync import get_controller, get_feed, release_controller
from . import live

bp = Blueprint('main', __name__)

FEED_KEEPALIVE_SECONDS = 15


def admin_required(fn):
    """
    If ADMIN_TOKEN is set, require it in the X-Admin-Token header or the
    `token` argument. An empty ADMIN_TOKEN leaves the route open.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        expected = current_app.config.get("ADMIN_TOKEN", "")
        provided = request.headers.get("X-Admin-Token", "") or request.values.get("token", "")
        if expected and provided != expected:
            return {"success": False, "error": "UNAUTHORIZED", "message": "Unauthorized"}, 401
        return fn(*args, **kwargs)
    return wrapper


@bp.errorhandler(DomainError)
def handle_domain_error(e):
    if isinstance(e, (SessionNotFoundError, EventNotFoundError)):
        status = 404
    elif isinstance(e, PersistenceError):
        status = 500
    else:
        status = 400
    return e.to_dict(), status


def _year_arg():
    raw = request.values.get("year")
    if not raw:
        raise ValidationError("No year selected")
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Invalid year: {raw}")


def _confirmed():
    return request.values.get("confirm", "").lower() in ("1", "true", "yes")


# ============================================================
# SERVICES
# ============================================================
@bp.route("/services")
def list_services():
    year = _year_arg()
    start, end = year_bounds(year)
    offset = current_app.config.get("SERVICE_UTC_OFFSET_HOURS", -4)
    services = (
        Service.query
        .filter(Service.service_date >= start, Service.service_date < end)
        .order_by(Service.service_date)
        .all()
    )
    return {"year": year, "count": len(services), "services": [s.to_dict(offset) for s in services]}


@bp.route("/services/years")
def service_years():
    span = current_app.config.get("GENERATE_YEAR_SPAN", 5)
    years = offered_years(span)
    return {"next_year": years[0], "years": years}


@bp.route("/services/generate_year", methods=["POST"])
@admin_required
def generate_year_route():
    """
    Generate every Sunday and quarantine service of a year.
    Without `confirm`, only returns the warning with the planned counts.
    """
    year = _year_arg()

    # The offered range only applies once there is history to infer it from
    span = current_app.config.get("GENERATE_YEAR_SPAN", 5)
    try:
        years = offered_years(span)
    except ValidationError:
        years = None
    if years is not None and year not in years:
        raise ValidationError(f"Year {year} is outside the offered range {years[0]}-{years[-1]}")

    if not _confirmed():
        _, summary = plan_year(year)
        return {
            "success": False,
            "confirm_required": True,
            "message": f"This will create approximately {summary['total']} services for {year}. Continue?",
            "summary": summary,
        }, 400

    summary = generate_year(year)
    send_notification(YearGenerated(
        year=year,
        total=summary["total"],
        sundays=summary["sundays"],
        quarantine_saturdays=summary["quarantine_saturdays"],
        quarantine_wednesdays=summary["quarantine_wednesdays"],
    ))
    return {
        "success": True,
        "message": f"Generated {summary['total']} services for {year}",
        "summary": summary,
    }


@bp.route("/services/delete_year", methods=["POST"])
@admin_required
def delete_year_route():
    year = _year_arg()
    if not _confirmed():
        return {
            "success": False,
            "confirm_required": True,
            "message": f"This permanently deletes every service of {year}. Continue?",
        }, 400

    count = delete_year(year)
    send_notification(YearDeleted(year=year, deleted=count))
    return {"success": True, "message": f"Deleted {count} services for {year}", "deleted": count}


# ============================================================
# LIVE EVENTS
# ============================================================
@bp.route("/live/<event_id>")
def live_state(event_id):
    return get_controller(event_id).snapshot()


@bp.route("/live/<event_id>/<command>", methods=["POST"])
@admin_required
def live_command(event_id, command):
    if command == "tick" and current_app.config.get("LIVE_TICKER_ENABLED", True):
        raise ValidationError("Ticks are driven by the server while the live ticker is enabled")
    ctl = get_controller(event_id)

    if command == "start":
        ctl.start()
    elif command == "stop":
        ctl.stop()
    elif command == "next":
        ctl.next()
    elif command == "skip":
        try:
            index = int(request.values.get("index", ""))
        except ValueError:
            raise ValidationError("Section index is required")
        ctl.skip(index)
    elif command == "restore":
        item_id = request.values.get("item_id")
        if not item_id:
            raise ValidationError("item_id is required")
        ctl.restore(item_id)
    elif command == "pause":
        ctl.toggle_pause()
    elif command == "reset":
        ctl.reset()
    elif command == "tick":
        ctl.tick()
    else:
        return {"success": False, "error": "UNKNOWN_COMMAND", "message": f"Unknown command {command}"}, 404

    return ctl.snapshot()


@bp.route("/live/<event_id>/statistics")
def live_statistics(event_id):
    return get_controller(event_id).statistics()


@bp.route("/live/<event_id>/statistics", methods=["POST"])
@admin_required
def save_live_statistics(event_id):
    ctl = get_controller(event_id)
    row = ctl.save_statistics()
    # A finished event is done with its controller; the next visit opens a new session
    if ctl.state.phase == live.FINISHED:
        release_controller(event_id)
    return {"success": True, "statistics": row.to_dict()}


@bp.route("/live/session/<session_id>/stream")
def live_stream(session_id):
    """
    Server-Sent Events feed of the session row's UPDATEs.
    The stream ends after a payload carrying `superseded_by`; the client
    reconnects to that session.
    """
    row = db.session.get(LiveEventSession, session_id)
    if row is None:
        raise SessionNotFoundError(session_id)
    initial = row.to_dict()
    feed = get_feed()
    updates = queue.Queue()
    token = feed.subscribe(session_id, updates.put)

    def generate():
        try:
            yield f"data: {json.dumps(initial)}\n\n"
            if initial.get("superseded_by"):
                return
            while True:
                try:
                    payload = updates.get(timeout=FEED_KEEPALIVE_SECONDS)
                except queue.Empty:
                    yield ": keepalive\n\n"
                    continue
                yield f"data: {json.dumps(payload)}\n\n"
                if payload.get("superseded_by"):
                    return
        finally:
            feed.unsubscribe(session_id, token)

    return Response(stream_with_context(generate()), mimetype="text/event-stream")


# ============================================================
# TELEGRAM
# ============================================================
@bp.route("/telegram/check", methods=["POST"])
@admin_required
def telegram_check():
    """Test Telegram bot connection."""
    result = check_telegram_connection()
    if result.get("success"):
        bot_name = result.get("bot", {}).get("username", "Unknown")
        return {"success": True, "message": f"Telegram connected! Bot: @{bot_name}"}
    return {"success": False, "message": f"Telegram error: {result.get('error', 'Unknown error')}"}, 502
