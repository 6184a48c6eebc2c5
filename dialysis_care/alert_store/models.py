"""Data models for persistent clinical alert storage."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..models import parse_datetime


class AlertType(Enum):
    """Types of clinical alerts."""
    PRESCRIPTION_RENEWAL = "prescription_renewal"
    LAB_DUE = "lab_due"
    VACCINATION = "vaccination"
    VASCULAR_ACCESS = "vascular_access"
    SEROLOGY_UPDATE = "serology_update"
    WEIGHT_DEVIATION = "weight_deviation"
    CUSTOM = "custom"


class AlertSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertStatus(Enum):
    """Alert lifecycle status."""
    ACTIVE = "active"              # Raised, nobody has looked at it yet
    ACKNOWLEDGED = "acknowledged"  # Seen, still unresolved
    RESOLVED = "resolved"          # Condition handled, alert closed
    DISMISSED = "dismissed"        # Closed without action


# Allowed edges of the alert state machine
ALERT_TRANSITIONS: dict[AlertStatus, frozenset[AlertStatus]] = {
    AlertStatus.ACTIVE: frozenset({
        AlertStatus.ACKNOWLEDGED,
        AlertStatus.RESOLVED,
        AlertStatus.DISMISSED,
    }),
    AlertStatus.ACKNOWLEDGED: frozenset({AlertStatus.RESOLVED}),
    AlertStatus.RESOLVED: frozenset(),
    AlertStatus.DISMISSED: frozenset(),
}

# Statuses that still represent an unresolved condition
OPEN_STATUSES = (AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED)


class AuditAction(Enum):
    """Actions tracked in audit log."""
    CREATED = "created"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


@dataclass
class AlertCandidate:
    """An alert a rule wants raised, before it is stored."""
    patient_id: str
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    description: str | None = None
    due_date: datetime | None = None
    related_to_type: str | None = None
    related_to_id: str | None = None

    @property
    def dedup_key(self) -> tuple[str, str, str]:
        """Identity of the triggering condition."""
        return (self.patient_id, self.alert_type.value, self.related_to_id or "")


@dataclass
class ClinicalAlert:
    """A persistently stored alert with full lifecycle tracking."""
    id: str
    patient_id: str
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    status: AlertStatus

    description: str | None = None
    due_date: datetime | None = None
    related_to_type: str | None = None
    related_to_id: str | None = None

    # Timestamps
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    resolution_notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "alert_type": self.alert_type.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "status": self.status.value,
            "related_to_type": self.related_to_type,
            "related_to_id": self.related_to_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "acknowledged_by": self.acknowledged_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
            "resolution_notes": self.resolution_notes,
        }

    @classmethod
    def from_row(cls, row) -> "ClinicalAlert":
        """Create from a sqlite3.Row of the clinical_alerts table."""
        return cls(
            id=row["id"],
            patient_id=row["patient_id"],
            alert_type=AlertType(row["alert_type"]),
            severity=AlertSeverity(row["severity"]),
            title=row["title"],
            status=AlertStatus(row["status"]),
            description=row["description"],
            due_date=parse_datetime(row["due_date"]),
            related_to_type=row["related_to_type"],
            related_to_id=row["related_to_id"] or None,
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
            acknowledged_at=parse_datetime(row["acknowledged_at"]),
            acknowledged_by=row["acknowledged_by"],
            resolved_at=parse_datetime(row["resolved_at"]),
            resolved_by=row["resolved_by"],
            resolution_notes=row["resolution_notes"],
        )


@dataclass
class AlertAuditEntry:
    """Audit log entry for alert actions."""
    id: int
    alert_id: str
    action: AuditAction
    performed_by: str | None
    performed_at: datetime
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "action": self.action.value,
            "performed_by": self.performed_by,
            "performed_at": self.performed_at.isoformat(),
            "details": self.details,
        }

    @classmethod
    def from_row(cls, row) -> "AlertAuditEntry":
        """Create from database row."""
        return cls(
            id=row["id"],
            alert_id=row["alert_id"],
            action=AuditAction(row["action"]),
            performed_by=row["performed_by"],
            performed_at=parse_datetime(row["performed_at"]),
            details=row["details"],
        )
