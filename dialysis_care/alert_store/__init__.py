"""Clinical alert storage module.

Provides SQLite-backed storage for managing alert lifecycle:
- Prevent duplicate alerts via create_if_absent() / check_if_alerted()
- Track alert status (active, acknowledged, resolved, dismissed)
- Audit trail for compliance
"""

from .models import (
    ALERT_TRANSITIONS,
    OPEN_STATUSES,
    AlertAuditEntry,
    AlertCandidate,
    AlertSeverity,
    AlertStatus,
    AlertType,
    AuditAction,
    ClinicalAlert,
)
from .store import AlertStore

__all__ = [
    "ALERT_TRANSITIONS",
    "OPEN_STATUSES",
    "AlertAuditEntry",
    "AlertCandidate",
    "AlertSeverity",
    "AlertStatus",
    "AlertType",
    "AuditAction",
    "ClinicalAlert",
    "AlertStore",
]
