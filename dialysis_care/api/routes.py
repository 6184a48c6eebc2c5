"""JSON API routes for sessions, machines and clinical alerts."""

from enum import Enum
from functools import wraps

from flask import Blueprint, current_app, jsonify, request

from ..alert_store import AlertCandidate, AlertSeverity, AlertStatus, AlertType
from ..errors import NotFound, ValidationError
from ..models import SessionStatus, parse_datetime
from ..sessions.vitals import camel_case

api_bp = Blueprint("api", __name__)

# Keys of a record payload that are not vitals
RECORD_META_KEYS = {"phase", "record_time", "recordTime", "recorded_by", "recordedBy", "vitals"}


def check_api_key(f):
    """Decorator to check API key for protected endpoints."""
    @wraps(f)
    def decorated(*args, **kwargs):
        api_key = current_app.config.get("API_KEY")

        # If no API key configured, allow all requests (dev mode)
        if not api_key:
            return f(*args, **kwargs)

        # Check key from query param or header
        provided_key = request.args.get("key") or request.headers.get("X-API-Key")

        if provided_key != api_key:
            return jsonify({
                "success": False,
                "error": "Unauthorized",
                "message": "Invalid or missing API key",
            }), 401

        return f(*args, **kwargs)

    return decorated


def _ok(data, status: int = 200):
    return jsonify({"success": True, "data": data}), status


def _payload() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _field(data: dict, name: str, default=None):
    """Read a snake_case field, also accepting its camelCase spelling."""
    if name in data:
        return data[name]
    return data.get(camel_case(name), default)


def _text(data: dict, name: str) -> str | None:
    """Optional free-text field; anything but a string is rejected."""
    value = _field(data, name)
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{name} must be text", field=name)
    return value


def _user() -> str:
    return request.headers.get("X-User", "API User")


def _enum_arg(enum_cls: type[Enum], value: str | None, name: str):
    if value is None or value == "":
        return None
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"{name} must be one of: {allowed}", field=name)


def _bool_arg(value: str | None) -> bool:
    return (value or "").lower() in ("1", "true", "yes")


# Sessions

@api_bp.route("/sessions", methods=["GET"])
@check_api_key
def list_sessions():
    """List sessions, optionally filtered by patient and status."""
    status = _enum_arg(SessionStatus, request.args.get("status"), "status")
    limit = request.args.get("limit", 100, type=int)

    sessions = current_app.clinic_store.list_sessions(
        patient_id=request.args.get("patient_id") or request.args.get("patientId"),
        status=status,
        limit=limit,
    )
    return _ok([s.to_dict() for s in sessions])


@api_bp.route("/sessions", methods=["POST"])
@check_api_key
def schedule_session():
    data = _payload()
    session = current_app.lifecycle.schedule(
        patient_id=_field(data, "patient_id"),
        prescription_id=_field(data, "prescription_id"),
        session_date=_field(data, "session_date"),
        scheduled_start_time=_field(data, "scheduled_start_time"),
        notes=_text(data, "notes"),
    )
    return _ok(session.to_dict(), 201)


@api_bp.route("/sessions/<session_id>", methods=["GET"])
@check_api_key
def get_session(session_id):
    """Session with its records and incidents."""
    lifecycle = current_app.lifecycle
    data = lifecycle.get(session_id).to_dict()
    data["records"] = [r.to_dict() for r in lifecycle.list_records(session_id)]
    data["incidents"] = [i.to_dict() for i in lifecycle.list_incidents(session_id)]
    return _ok(data)


@api_bp.route("/sessions/<session_id>/check-in", methods=["POST"])
@check_api_key
def check_in_session(session_id):
    session = current_app.lifecycle.check_in(session_id)
    return _ok(session.to_dict())


@api_bp.route("/sessions/<session_id>/start", methods=["POST"])
@check_api_key
def start_session(session_id):
    """Start treatment. Without machineId the first suitable machine is used."""
    data = _payload()
    session = current_app.lifecycle.start(session_id, machine_id=_field(data, "machine_id"))
    return _ok(session.to_dict())


@api_bp.route("/sessions/<session_id>/complete", methods=["POST"])
@check_api_key
def complete_session(session_id):
    session = current_app.lifecycle.complete(session_id)
    return _ok(session.to_dict())


@api_bp.route("/sessions/<session_id>/cancel", methods=["POST"])
@check_api_key
def cancel_session(session_id):
    data = _payload()
    session = current_app.lifecycle.cancel(
        session_id,
        reason=data.get("reason") or "",
        cancelled_by=_user(),
    )
    return _ok(session.to_dict())


@api_bp.route("/sessions/<session_id>/no-show", methods=["POST"])
@check_api_key
def no_show_session(session_id):
    session = current_app.lifecycle.mark_no_show(session_id)
    return _ok(session.to_dict())


@api_bp.route("/sessions/<session_id>/records", methods=["GET"])
@check_api_key
def list_records(session_id):
    records = current_app.lifecycle.list_records(session_id)
    return _ok([r.to_dict() for r in records])


@api_bp.route("/sessions/<session_id>/records", methods=["POST"])
@check_api_key
def add_record(session_id):
    """Append vitals. Vitals may be nested under "vitals" or sent at top level."""
    data = _payload()
    vitals = data.get("vitals")
    if vitals is None:
        vitals = {k: v for k, v in data.items() if k not in RECORD_META_KEYS}
    elif not isinstance(vitals, dict):
        raise ValidationError("vitals must be an object", field="vitals")

    record = current_app.lifecycle.add_record(
        session_id,
        phase=data.get("phase"),
        vitals=vitals,
        recorded_by=_field(data, "recorded_by") or _user(),
        record_time=_field(data, "record_time"),
    )
    return _ok(record.to_dict(), 201)


@api_bp.route("/sessions/<session_id>/incidents", methods=["GET"])
@check_api_key
def list_incidents(session_id):
    incidents = current_app.lifecycle.list_incidents(session_id)
    return _ok([i.to_dict() for i in incidents])


@api_bp.route("/sessions/<session_id>/incidents", methods=["POST"])
@check_api_key
def add_incident(session_id):
    incident = current_app.lifecycle.add_incident(
        session_id, _payload(), reported_by=_user()
    )
    return _ok(incident.to_dict(), 201)


# Machines

@api_bp.route("/machines/available", methods=["GET"])
@check_api_key
def available_machines():
    """Available machines; ?forIsolation=true restricts to isolation-only ones."""
    for_isolation = _bool_arg(request.args.get("forIsolation"))
    machines = current_app.allocator.find_available(require_isolation=for_isolation)
    return _ok([m.to_dict() for m in machines])


@api_bp.route("/machines/stats", methods=["GET"])
@check_api_key
def machine_stats():
    return _ok(current_app.allocator.stats())


# Alerts

@api_bp.route("/alerts", methods=["GET"])
@check_api_key
def list_alerts():
    """List alerts.

    Query params: patient_id, status, severity, type, limit
    """
    alerts = current_app.alert_store.list_alerts(
        patient_id=request.args.get("patient_id") or request.args.get("patientId"),
        status=_enum_arg(AlertStatus, request.args.get("status"), "status"),
        severity=_enum_arg(AlertSeverity, request.args.get("severity"), "severity"),
        alert_type=_enum_arg(AlertType, request.args.get("type"), "type"),
        limit=request.args.get("limit", current_app.config.get("ALERTS_PER_PAGE", 100), type=int),
    )
    return _ok([a.to_dict() for a in alerts])


@api_bp.route("/alerts", methods=["POST"])
@check_api_key
def create_alert():
    """Create a manual alert (alertType defaults to custom)."""
    data = _payload()
    patient_id = _field(data, "patient_id")
    if not patient_id:
        raise ValidationError("patient_id is required", field="patient_id")

    try:
        due_date = parse_datetime(_field(data, "due_date"))
    except (TypeError, ValueError):
        raise ValidationError("due_date is not an ISO date", field="due_date")

    candidate = AlertCandidate(
        patient_id=patient_id,
        alert_type=_enum_arg(AlertType, _field(data, "alert_type"), "alert_type") or AlertType.CUSTOM,
        severity=_enum_arg(AlertSeverity, data.get("severity"), "severity") or AlertSeverity.INFO,
        title=_text(data, "title") or "",
        description=_text(data, "description"),
        due_date=due_date,
        related_to_type=_text(data, "related_to_type"),
        related_to_id=_text(data, "related_to_id"),
    )
    alert = current_app.alert_store.create_alert(candidate, created_by=_user())
    return _ok(alert.to_dict(), 201)


@api_bp.route("/alerts/stats", methods=["GET"])
@check_api_key
def alert_stats():
    patient_id = request.args.get("patient_id") or request.args.get("patientId")
    return _ok(current_app.alert_store.get_stats(patient_id=patient_id))


@api_bp.route("/alerts/generate", methods=["POST"])
@check_api_key
def generate_alerts():
    """Run one rule engine pass."""
    result = current_app.rule_engine.generate()
    return _ok(result.to_dict())


@api_bp.route("/alerts/<alert_id>", methods=["GET"])
@check_api_key
def get_alert(alert_id):
    """Alert with its audit trail."""
    store = current_app.alert_store
    alert = store.get_alert(alert_id)
    if alert is None:
        raise NotFound("Alert", alert_id)

    data = alert.to_dict()
    data["audit_log"] = [entry.to_dict() for entry in store.get_audit_log(alert_id)]
    return _ok(data)


@api_bp.route("/alerts/<alert_id>/acknowledge", methods=["POST"])
@check_api_key
def acknowledge_alert(alert_id):
    alert = current_app.alert_store.acknowledge(alert_id, acknowledged_by=_user())
    return _ok(alert.to_dict())


@api_bp.route("/alerts/<alert_id>/resolve", methods=["POST"])
@check_api_key
def resolve_alert(alert_id):
    data = _payload()
    alert = current_app.alert_store.resolve(
        alert_id,
        resolved_by=_user(),
        notes=_text(data, "notes"),
    )
    return _ok(alert.to_dict())


@api_bp.route("/alerts/<alert_id>/dismiss", methods=["POST"])
@check_api_key
def dismiss_alert(alert_id):
    alert = current_app.alert_store.dismiss(alert_id, dismissed_by=_user())
    return _ok(alert.to_dict())
