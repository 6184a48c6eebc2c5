"""Data models for dialysis sessions, machines and clinical read models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class SessionStatus(Enum):
    """Dialysis session lifecycle status."""
    SCHEDULED = "scheduled"
    CHECKED_IN = "checked_in"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# Forward-only edges of the session state machine
SESSION_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.SCHEDULED: frozenset({
        SessionStatus.CHECKED_IN,
        SessionStatus.CANCELLED,
        SessionStatus.NO_SHOW,
    }),
    SessionStatus.CHECKED_IN: frozenset({
        SessionStatus.IN_PROGRESS,
        SessionStatus.CANCELLED,
    }),
    SessionStatus.IN_PROGRESS: frozenset({SessionStatus.COMPLETED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.CANCELLED: frozenset(),
    SessionStatus.NO_SHOW: frozenset(),
}

TERMINAL_SESSION_STATUSES = frozenset(
    status for status, targets in SESSION_TRANSITIONS.items() if not targets
)


def sources_for(target: SessionStatus) -> list[SessionStatus]:
    """Statuses from which ``target`` is reachable in one step."""
    return [
        status for status, targets in SESSION_TRANSITIONS.items()
        if target in targets
    ]


class SessionPhase(Enum):
    """Clinical stage at which a vitals record was taken."""
    PRE = "pre"
    INTRA = "intra"
    POST = "post"


class IncidentType(Enum):
    """Intra-dialytic adverse events."""
    HYPOTENSION = "hypotension"
    CRAMPS = "cramps"
    NAUSEA = "nausea"
    BLEEDING = "bleeding"
    CLOTTING = "clotting"
    FEVER = "fever"
    CHEST_PAIN = "chest_pain"
    ARRHYTHMIA = "arrhythmia"
    ACCESS_PROBLEM = "access_problem"
    OTHER = "other"


class IncidentSeverity(Enum):
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


class MachineStatus(Enum):
    """Dialysis machine availability."""
    AVAILABLE = "available"
    IN_USE = "in_use"
    MAINTENANCE = "maintenance"
    OUT_OF_SERVICE = "out_of_service"


class SerologyStatus(Enum):
    NEGATIVE = "negative"
    POSITIVE = "positive"
    UNKNOWN = "unknown"


def parse_datetime(val) -> datetime | None:
    """Parse an ISO timestamp as stored in SQLite.

    Timestamps carrying a UTC offset are converted to naive local time,
    the form every stored timestamp uses.
    """
    if val is None or val == "":
        return None
    if not isinstance(val, datetime):
        val = datetime.fromisoformat(val)
    if val.tzinfo is not None:
        val = val.astimezone().replace(tzinfo=None)
    return val


def _iso(val: datetime | None) -> str | None:
    return val.isoformat() if val else None


@dataclass
class Session:
    """One scheduled dialysis treatment episode for a patient."""
    id: str
    session_number: str
    patient_id: str
    prescription_id: str
    status: SessionStatus
    session_date: datetime

    machine_id: str | None = None
    scheduled_start_time: str | None = None  # "HH:MM"

    actual_start_time: datetime | None = None
    actual_end_time: datetime | None = None
    actual_duration_minutes: int | None = None

    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None
    notes: str | None = None

    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "session_number": self.session_number,
            "patient_id": self.patient_id,
            "prescription_id": self.prescription_id,
            "machine_id": self.machine_id,
            "status": self.status.value,
            "session_date": _iso(self.session_date),
            "scheduled_start_time": self.scheduled_start_time,
            "actual_start_time": _iso(self.actual_start_time),
            "actual_end_time": _iso(self.actual_end_time),
            "actual_duration_minutes": self.actual_duration_minutes,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_at": _iso(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "notes": self.notes,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_row(cls, row) -> "Session":
        """Create from a sqlite3.Row of the sessions table."""
        return cls(
            id=row["id"],
            session_number=row["session_number"],
            patient_id=row["patient_id"],
            prescription_id=row["prescription_id"],
            status=SessionStatus(row["status"]),
            session_date=parse_datetime(row["session_date"]),
            machine_id=row["machine_id"],
            scheduled_start_time=row["scheduled_start_time"],
            actual_start_time=parse_datetime(row["actual_start_time"]),
            actual_end_time=parse_datetime(row["actual_end_time"]),
            actual_duration_minutes=row["actual_duration_minutes"],
            cancellation_reason=row["cancellation_reason"],
            cancelled_at=parse_datetime(row["cancelled_at"]),
            cancelled_by=row["cancelled_by"],
            notes=row["notes"],
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
        )


# Optional numeric vitals carried by a SessionRecord, with accepted ranges
VITAL_RANGES: dict[str, tuple[float, float]] = {
    "weight_kg": (20, 300),
    "systolic_bp": (50, 300),
    "diastolic_bp": (30, 200),
    "heart_rate": (30, 250),
    "temperature": (34, 42),
    "arterial_pressure": (-300, 0),
    "venous_pressure": (0, 300),
    "transmembrane_pressure": (0, 500),
    "blood_flow_rate": (0, 600),
    "dialysate_flow_rate": (0, 1000),
    "cumulative_uf": (0, 10000),
}


@dataclass
class SessionRecord:
    """Phase-tagged vitals measurement, append-only."""
    id: str
    session_id: str
    phase: SessionPhase
    record_time: datetime

    weight_kg: float | None = None
    systolic_bp: int | None = None
    diastolic_bp: int | None = None
    heart_rate: int | None = None
    temperature: float | None = None
    arterial_pressure: int | None = None
    venous_pressure: int | None = None
    transmembrane_pressure: int | None = None
    blood_flow_rate: int | None = None
    dialysate_flow_rate: int | None = None
    cumulative_uf: float | None = None

    clinical_state: str | None = None
    vascular_access_state: str | None = None
    has_incident: bool = False
    recorded_by: str | None = None
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "session_id": self.session_id,
            "phase": self.phase.value,
            "record_time": _iso(self.record_time),
        }
        for name in VITAL_RANGES:
            data[name] = getattr(self, name)
        data.update({
            "clinical_state": self.clinical_state,
            "vascular_access_state": self.vascular_access_state,
            "has_incident": self.has_incident,
            "recorded_by": self.recorded_by,
            "created_at": _iso(self.created_at),
        })
        return data

    @classmethod
    def from_row(cls, row) -> "SessionRecord":
        vitals = {name: row[name] for name in VITAL_RANGES}
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            phase=SessionPhase(row["phase"]),
            record_time=parse_datetime(row["record_time"]),
            clinical_state=row["clinical_state"],
            vascular_access_state=row["vascular_access_state"],
            has_incident=bool(row["has_incident"]),
            recorded_by=row["recorded_by"],
            created_at=parse_datetime(row["created_at"]),
            **vitals,
        )


@dataclass
class SessionIncident:
    """Adverse event reported during a session, append-only."""
    id: str
    session_id: str
    incident_time: datetime
    type: IncidentType
    severity: IncidentSeverity
    session_record_id: str | None = None
    description: str | None = None
    intervention: str | None = None
    outcome: str | None = None
    reported_by: str | None = None
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "session_record_id": self.session_record_id,
            "incident_time": _iso(self.incident_time),
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
            "intervention": self.intervention,
            "outcome": self.outcome,
            "reported_by": self.reported_by,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_row(cls, row) -> "SessionIncident":
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            session_record_id=row["session_record_id"],
            incident_time=parse_datetime(row["incident_time"]),
            type=IncidentType(row["type"]),
            severity=IncidentSeverity(row["severity"]),
            description=row["description"],
            intervention=row["intervention"],
            outcome=row["outcome"],
            reported_by=row["reported_by"],
            created_at=parse_datetime(row["created_at"]),
        )


@dataclass
class Machine:
    """Dialysis machine (external resource referenced by sessions)."""
    id: str
    machine_number: str
    status: MachineStatus
    isolation_only: bool = False
    model: str | None = None
    maintenance_pending: bool = False
    total_hours: float = 0.0
    total_sessions: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "machine_number": self.machine_number,
            "model": self.model,
            "status": self.status.value,
            "isolation_only": self.isolation_only,
            "maintenance_pending": self.maintenance_pending,
            "total_hours": self.total_hours,
            "total_sessions": self.total_sessions,
        }

    @classmethod
    def from_row(cls, row) -> "Machine":
        return cls(
            id=row["id"],
            machine_number=row["machine_number"],
            model=row["model"],
            status=MachineStatus(row["status"]),
            isolation_only=bool(row["isolation_only"]),
            maintenance_pending=bool(row["maintenance_pending"]),
            total_hours=row["total_hours"] or 0.0,
            total_sessions=row["total_sessions"] or 0,
        )


@dataclass
class Patient:
    """Dialysis patient clinical data consumed by the rule engine."""
    id: str
    medical_id: str | None = None
    name: str | None = None
    dry_weight: float | None = None

    hiv_status: SerologyStatus = SerologyStatus.UNKNOWN
    hbv_status: SerologyStatus = SerologyStatus.UNKNOWN
    hcv_status: SerologyStatus = SerologyStatus.UNKNOWN
    serology_last_update: datetime | None = None
    requires_isolation: bool = False

    hepatitis_b_vaccinated: bool = False
    patient_status: str = "active"
    dialysis_start_date: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.patient_status == "active"

    @classmethod
    def from_row(cls, row) -> "Patient":
        return cls(
            id=row["id"],
            medical_id=row["medical_id"],
            name=row["name"],
            dry_weight=row["dry_weight"],
            hiv_status=SerologyStatus(row["hiv_status"] or "unknown"),
            hbv_status=SerologyStatus(row["hbv_status"] or "unknown"),
            hcv_status=SerologyStatus(row["hcv_status"] or "unknown"),
            serology_last_update=parse_datetime(row["serology_last_update"]),
            requires_isolation=bool(row["requires_isolation"]),
            hepatitis_b_vaccinated=bool(row["hepatitis_b_vaccinated"]),
            patient_status=row["patient_status"],
            dialysis_start_date=parse_datetime(row["dialysis_start_date"]),
        )


@dataclass
class Prescription:
    """Dialysis prescription (only the fields the rules need)."""
    id: str
    patient_id: str
    start_date: datetime
    prescription_number: str | None = None
    end_date: datetime | None = None
    is_permanent: bool = False
    dry_weight: float | None = None
    status: str = "active"

    @classmethod
    def from_row(cls, row) -> "Prescription":
        return cls(
            id=row["id"],
            patient_id=row["patient_id"],
            prescription_number=row["prescription_number"],
            start_date=parse_datetime(row["start_date"]),
            end_date=parse_datetime(row["end_date"]),
            is_permanent=bool(row["is_permanent"]),
            dry_weight=row["dry_weight"],
            status=row["status"],
        )


@dataclass
class LabResult:
    id: str
    patient_id: str
    lab_date: datetime
    kt_v: float | None = None
    hemoglobin: float | None = None

    @classmethod
    def from_row(cls, row) -> "LabResult":
        return cls(
            id=row["id"],
            patient_id=row["patient_id"],
            lab_date=parse_datetime(row["lab_date"]),
            kt_v=row["kt_v"],
            hemoglobin=row["hemoglobin"],
        )


@dataclass
class VascularAccess:
    """Fistula, graft or catheter used for dialysis."""
    id: str
    patient_id: str
    type: str
    location: str | None = None
    status: str = "active"
    last_control_date: datetime | None = None
    next_control_date: datetime | None = None

    @classmethod
    def from_row(cls, row) -> "VascularAccess":
        return cls(
            id=row["id"],
            patient_id=row["patient_id"],
            type=row["type"],
            location=row["location"],
            status=row["status"],
            last_control_date=parse_datetime(row["last_control_date"]),
            next_control_date=parse_datetime(row["next_control_date"]),
        )
