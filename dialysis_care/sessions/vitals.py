"""Append-only vitals records and incidents for in-progress sessions."""

import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable

from ..errors import InvalidStateTransition, NotFound, ValidationError
from ..models import (
    VITAL_RANGES,
    IncidentSeverity,
    IncidentType,
    Session,
    SessionIncident,
    SessionPhase,
    SessionRecord,
    SessionStatus,
    parse_datetime,
)
from ..store import ClinicStore, generate_id

logger = logging.getLogger(__name__)

INTEGER_VITALS = {
    "systolic_bp",
    "diastolic_bp",
    "heart_rate",
    "arterial_pressure",
    "venous_pressure",
    "transmembrane_pressure",
    "blood_flow_rate",
    "dialysate_flow_rate",
}

TEXT_FIELDS = {
    "clinical_state": 500,
    "vascular_access_state": 500,
}

INCIDENT_TEXT_FIELDS = {
    "description": 1000,
    "intervention": 1000,
    "outcome": 500,
}


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


# camelCase payload keys accepted from API clients
FIELD_ALIASES: dict[str, str] = {
    camel_case(name): name
    for name in (*VITAL_RANGES, *TEXT_FIELDS, *INCIDENT_TEXT_FIELDS,
                 "record_time", "incident_time", "recorded_by", "reported_by")
}
FIELD_ALIASES["cumulativeUF"] = "cumulative_uf"


def normalize_keys(payload: dict[str, Any]) -> dict[str, Any]:
    """Map camelCase keys to their snake_case field names."""
    return {FIELD_ALIASES.get(key, key): value for key, value in payload.items()}


def _parse_time(value: Any, field_name: str) -> datetime | None:
    try:
        return parse_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} is not an ISO timestamp", field=field_name)


def _check_text(payload: dict[str, Any], limits: dict[str, int]) -> dict[str, str | None]:
    values = {}
    for name, max_len in limits.items():
        value = payload.get(name)
        if value is not None:
            if not isinstance(value, str):
                raise ValidationError(f"{name} must be text", field=name)
            if len(value) > max_len:
                raise ValidationError(
                    f"{name} must be at most {max_len} characters", field=name
                )
        values[name] = value
    return values


def parse_phase(value: Any) -> SessionPhase:
    if isinstance(value, SessionPhase):
        return value
    try:
        return SessionPhase(value)
    except ValueError:
        allowed = ", ".join(p.value for p in SessionPhase)
        raise ValidationError(f"phase must be one of: {allowed}", field="phase")


def validate_vitals(vitals: dict[str, Any]) -> dict[str, Any]:
    """Check vitals against accepted ranges.

    Unknown keys are rejected so typos never silently drop a measurement.

    Returns:
        Dict of every vital name to its value (None when not measured)
    """
    vitals = normalize_keys(vitals)
    unknown = set(vitals) - set(VITAL_RANGES) - set(TEXT_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown vitals: {', '.join(sorted(unknown))}")

    values: dict[str, Any] = {}
    for name, (low, high) in VITAL_RANGES.items():
        value = vitals.get(name)
        if value is None:
            values[name] = None
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"{name} must be a number", field=name)
        if not low <= value <= high:
            raise ValidationError(f"{name} must be between {low} and {high}", field=name)
        values[name] = int(value) if name in INTEGER_VITALS else float(value)

    values.update(_check_text(vitals, TEXT_FIELDS))
    return values


def nearest_record(records: list[SessionRecord], when: datetime) -> SessionRecord | None:
    """Latest record taken at or before ``when``, else the earliest after it."""
    before = [r for r in records if r.record_time <= when]
    if before:
        return max(before, key=lambda r: (r.record_time, r.created_at))
    if records:
        return min(records, key=lambda r: (r.record_time, r.created_at))
    return None


class VitalsStore:
    """Appends records and incidents, only while a session is in progress."""

    def __init__(self, store: ClinicStore, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.clock = clock

    def _require_in_progress(self, conn: sqlite3.Connection, session_id: str, action: str) -> Session:
        session = self.store.get_session(session_id, conn=conn)
        if session is None:
            raise NotFound("Session", session_id)
        if session.status != SessionStatus.IN_PROGRESS:
            raise InvalidStateTransition(
                "Session", session_id, session.status.value,
                SessionStatus.IN_PROGRESS.value, action=action,
            )
        return session

    def add_record(
        self,
        session_id: str,
        phase: SessionPhase | str,
        vitals: dict[str, Any] | None = None,
        recorded_by: str | None = None,
        record_time: datetime | str | None = None,
    ) -> SessionRecord:
        """Append a phase-tagged vitals record.

        Raises:
            NotFound: Unknown session
            InvalidStateTransition: Session is not in progress
            ValidationError: Bad phase, unknown vital or value out of range
        """
        phase = parse_phase(phase)
        values = validate_vitals(vitals or {})
        now = self.clock()

        record = SessionRecord(
            id=generate_id(),
            session_id=session_id,
            phase=phase,
            record_time=_parse_time(record_time, "record_time") or now,
            recorded_by=recorded_by,
            created_at=now,
            **values,
        )

        with self.store.transaction() as conn:
            self._require_in_progress(conn, session_id, "add a record")
            self.store.insert_record(conn, record)

        logger.info(f"Recorded {phase.value} vitals for session {session_id}")
        return record

    def add_incident(
        self,
        session_id: str,
        payload: dict[str, Any],
        reported_by: str | None = None,
    ) -> SessionIncident:
        """Append an incident and flag the record nearest to it in time.

        Args:
            payload: type, severity, and optional incident_time, description,
                intervention, outcome
        """
        payload = normalize_keys(payload)

        try:
            incident_type = IncidentType(payload.get("type"))
        except ValueError:
            raise ValidationError(f"Unknown incident type: {payload.get('type')}", field="type")
        try:
            severity = IncidentSeverity(payload.get("severity"))
        except ValueError:
            raise ValidationError(
                f"Unknown incident severity: {payload.get('severity')}", field="severity"
            )

        text = _check_text(payload, INCIDENT_TEXT_FIELDS)
        now = self.clock()
        incident_time = _parse_time(payload.get("incident_time"), "incident_time") or now

        with self.store.transaction() as conn:
            self._require_in_progress(conn, session_id, "report an incident")

            record = nearest_record(self.store.list_records(session_id, conn=conn), incident_time)
            if record is not None:
                self.store.flag_record_incident(conn, record.id)

            incident = SessionIncident(
                id=generate_id(),
                session_id=session_id,
                session_record_id=record.id if record else None,
                incident_time=incident_time,
                type=incident_type,
                severity=severity,
                reported_by=reported_by or payload.get("reported_by"),
                created_at=now,
                **text,
            )
            self.store.insert_incident(conn, incident)

        logger.info(
            f"Incident {incident_type.value} ({severity.value}) reported for session {session_id}"
        )
        return incident
