"""SQLite-backed clinical alert storage and lifecycle management."""

import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator

from ..config import config
from ..errors import InvalidAlertTransition, NotFound, ValidationError
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

logger = logging.getLogger(__name__)


class AlertStore:
    """SQLite-backed storage for managing clinical alert lifecycle.

    Alert transitions (active -> acknowledged -> resolved, active -> resolved,
    active -> dismissed) are compare-and-set on the current status, and each
    one writes an audit row. Resolved and dismissed alerts are kept forever.
    """

    def __init__(
        self,
        db_path: str | None = None,
        clock: Callable[[], datetime] = datetime.now,
        timeout: float = 10.0,
    ):
        """Initialize alert store.

        Args:
            db_path: Path to SQLite database. Defaults to ALERT_DB_PATH env var
                     or ~/.dialysis/alerts.db
            clock: Source of "now" for lifecycle timestamps
            timeout: Seconds to wait for the write lock
        """
        self.db_path = os.path.expanduser(db_path or config.ALERT_DB_PATH)
        self.clock = clock
        self.timeout = timeout

        # Ensure directory exists
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path) as f:
            schema = f.read()

        with self._connect() as conn:
            conn.executescript(schema)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Get database connection with row factory."""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Hold the write lock for a check-then-write."""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _generate_id(self) -> str:
        """Generate a unique alert ID."""
        return str(uuid.uuid4())

    def _audit(
        self,
        conn: sqlite3.Connection,
        alert_id: str,
        action: AuditAction,
        performed_by: str | None,
        performed_at: datetime,
        details: str | None = None,
    ) -> None:
        conn.execute(
            """
            INSERT INTO alert_audit (alert_id, action, performed_by, performed_at, details)
            VALUES (?, ?, ?, ?, ?)
            """,
            (alert_id, action.value, performed_by, performed_at.isoformat(), details),
        )

    # Creation

    def _insert(
        self,
        conn: sqlite3.Connection,
        candidate: AlertCandidate,
        created_by: str | None,
    ) -> ClinicalAlert:
        if candidate.title is not None and not isinstance(candidate.title, str):
            raise ValidationError("Alert title must be text", field="title")
        if not candidate.title or not candidate.title.strip():
            raise ValidationError("Alert title is required", field="title")

        now = self.clock()
        alert = ClinicalAlert(
            id=self._generate_id(),
            patient_id=candidate.patient_id,
            alert_type=candidate.alert_type,
            severity=candidate.severity,
            title=candidate.title,
            status=AlertStatus.ACTIVE,
            description=candidate.description,
            due_date=candidate.due_date,
            related_to_type=candidate.related_to_type,
            related_to_id=candidate.related_to_id,
            created_at=now,
            updated_at=now,
        )

        conn.execute(
            """
            INSERT INTO clinical_alerts (
                id, patient_id, alert_type, severity, title, description,
                due_date, status, related_to_type, related_to_id,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                alert.id, alert.patient_id, alert.alert_type.value,
                alert.severity.value, alert.title, alert.description,
                alert.due_date.isoformat() if alert.due_date else None,
                alert.status.value, alert.related_to_type,
                alert.related_to_id or "", now.isoformat(), now.isoformat(),
            ),
        )
        self._audit(conn, alert.id, AuditAction.CREATED, created_by, now)
        return alert

    def create_alert(
        self,
        candidate: AlertCandidate,
        created_by: str | None = None,
    ) -> ClinicalAlert:
        """Save a new alert unconditionally (manual or custom alerts)."""
        with self._transaction() as conn:
            alert = self._insert(conn, candidate, created_by)

        logger.info(
            f"Created alert {alert.id} ({alert.alert_type.value}/{alert.severity.value}) "
            f"for patient {alert.patient_id}"
        )
        return alert

    def create_if_absent(self, candidate: AlertCandidate) -> ClinicalAlert | None:
        """Create the alert unless an open one exists for the same condition.

        The existence check and the insert share one write transaction, so
        repeated or concurrent generation passes cannot double-create.

        Returns:
            The created alert, or None if an open alert already covers it
        """
        with self._transaction() as conn:
            existing = self._find_open(
                conn,
                candidate.patient_id,
                candidate.alert_type,
                candidate.related_to_id,
            )
            if existing is not None:
                logger.debug(
                    f"Open alert {existing} already covers "
                    f"{candidate.alert_type.value} for patient {candidate.patient_id}"
                )
                return None

            alert = self._insert(conn, candidate, created_by="rule_engine")

        logger.info(
            f"Created alert {alert.id} ({alert.alert_type.value}/{alert.severity.value}) "
            f"for patient {alert.patient_id}"
        )
        return alert

    def _find_open(
        self,
        conn: sqlite3.Connection,
        patient_id: str,
        alert_type: AlertType,
        related_to_id: str | None,
    ) -> str | None:
        placeholders = ",".join("?" * len(OPEN_STATUSES))
        row = conn.execute(
            f"""
            SELECT id FROM clinical_alerts
            WHERE patient_id = ? AND alert_type = ? AND related_to_id = ?
            AND status IN ({placeholders})
            """,
            (
                patient_id, alert_type.value, related_to_id or "",
                *(s.value for s in OPEN_STATUSES),
            ),
        ).fetchone()
        return row["id"] if row else None

    def check_if_alerted(
        self,
        patient_id: str,
        alert_type: AlertType,
        related_to_id: str | None = None,
    ) -> bool:
        """Check if an open alert already exists for this condition."""
        with self._connect() as conn:
            return self._find_open(conn, patient_id, alert_type, related_to_id) is not None

    # Lookup

    def get_alert(self, alert_id: str) -> ClinicalAlert | None:
        """Get an alert by ID."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM clinical_alerts WHERE id = ?", (alert_id,)
            ).fetchone()
        return ClinicalAlert.from_row(row) if row else None

    # Status transitions

    def _transition(
        self,
        alert_id: str,
        target: AlertStatus,
        action: AuditAction,
        performed_by: str | None,
        details: str | None = None,
        timestamp_field: str | None = None,
        **fields: Any,
    ) -> ClinicalAlert:
        """Guarded status update shared by acknowledge/resolve/dismiss."""
        now = self.clock()
        if timestamp_field:
            fields[timestamp_field] = now.isoformat()

        with self._transaction() as conn:
            row = conn.execute(
                "SELECT status FROM clinical_alerts WHERE id = ?", (alert_id,)
            ).fetchone()
            if row is None:
                raise NotFound("Alert", alert_id)

            current = AlertStatus(row["status"])
            if target not in ALERT_TRANSITIONS[current]:
                raise InvalidAlertTransition(alert_id, current.value, target.value)

            set_parts = ["status = ?", "updated_at = ?"]
            params: list[Any] = [target.value, now.isoformat()]
            for key, value in fields.items():
                set_parts.append(f"{key} = ?")
                params.append(value)
            params.extend([alert_id, current.value])

            conn.execute(
                f"UPDATE clinical_alerts SET {', '.join(set_parts)} WHERE id = ? AND status = ?",
                params,
            )
            self._audit(conn, alert_id, action, performed_by, now, details)

        logger.info(f"Alert {alert_id} {current.value} -> {target.value} by {performed_by}")
        return self.get_alert(alert_id)

    def acknowledge(self, alert_id: str, acknowledged_by: str | None = None) -> ClinicalAlert:
        """Acknowledge an active alert."""
        return self._transition(
            alert_id,
            AlertStatus.ACKNOWLEDGED,
            AuditAction.ACKNOWLEDGED,
            acknowledged_by,
            timestamp_field="acknowledged_at",
            acknowledged_by=acknowledged_by,
        )

    def resolve(
        self,
        alert_id: str,
        resolved_by: str | None = None,
        notes: str | None = None,
    ) -> ClinicalAlert:
        """Resolve an active or acknowledged alert.

        Args:
            alert_id: The alert ID to resolve
            resolved_by: Who resolved the alert
            notes: Resolution notes

        Returns:
            The updated alert
        """
        if notes is not None and not isinstance(notes, str):
            raise ValidationError("Resolution notes must be text", field="notes")
        return self._transition(
            alert_id,
            AlertStatus.RESOLVED,
            AuditAction.RESOLVED,
            resolved_by,
            details=f"Notes: {notes[:100]}" if notes else None,
            timestamp_field="resolved_at",
            resolved_by=resolved_by,
            resolution_notes=notes,
        )

    def dismiss(self, alert_id: str, dismissed_by: str | None = None) -> ClinicalAlert:
        """Dismiss an active alert without action."""
        return self._transition(
            alert_id,
            AlertStatus.DISMISSED,
            AuditAction.DISMISSED,
            dismissed_by,
        )

    # Query methods

    def list_alerts(
        self,
        patient_id: str | None = None,
        status: AlertStatus | list[AlertStatus] | None = None,
        severity: AlertSeverity | None = None,
        alert_type: AlertType | None = None,
        limit: int = 100,
    ) -> list[ClinicalAlert]:
        """List alerts with optional filters, newest first."""
        conditions = []
        params: list[Any] = []

        if patient_id:
            conditions.append("patient_id = ?")
            params.append(patient_id)

        if status:
            if isinstance(status, list):
                placeholders = ",".join("?" * len(status))
                conditions.append(f"status IN ({placeholders})")
                params.extend(s.value for s in status)
            else:
                conditions.append("status = ?")
                params.append(status.value)

        if severity:
            conditions.append("severity = ?")
            params.append(severity.value)

        if alert_type:
            conditions.append("alert_type = ?")
            params.append(alert_type.value)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM clinical_alerts
                WHERE {where_clause}
                ORDER BY created_at DESC
                LIMIT ?
                """,
                params,
            ).fetchall()

        return [ClinicalAlert.from_row(row) for row in rows]

    def list_open_alerts(self, patient_id: str | None = None) -> list[ClinicalAlert]:
        """List alerts that are active or acknowledged."""
        return self.list_alerts(patient_id=patient_id, status=list(OPEN_STATUSES), limit=1000)

    def get_audit_log(self, alert_id: str) -> list[AlertAuditEntry]:
        """Get audit history for an alert."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, alert_id, action, performed_by, performed_at, details
                FROM alert_audit
                WHERE alert_id = ?
                ORDER BY id ASC
                """,
                (alert_id,),
            ).fetchall()

        return [AlertAuditEntry.from_row(row) for row in rows]

    # Statistics

    def get_stats(self, patient_id: str | None = None) -> dict[str, int]:
        """Count alerts by status, and open alerts by severity."""
        patient_filter = " WHERE patient_id = ?" if patient_id else ""
        params: list[Any] = [patient_id] if patient_id else []

        stats = {"total": 0}
        stats.update({status.value: 0 for status in AlertStatus})
        stats.update({severity.value: 0 for severity in AlertSeverity})

        with self._connect() as conn:
            for row in conn.execute(
                f"SELECT status, COUNT(*) FROM clinical_alerts{patient_filter} GROUP BY status",
                params,
            ):
                stats[row[0]] = row[1]
                stats["total"] += row[1]

            placeholders = ",".join("?" * len(OPEN_STATUSES))
            open_filter = " AND patient_id = ?" if patient_id else ""
            for row in conn.execute(
                f"""
                SELECT severity, COUNT(*) FROM clinical_alerts
                WHERE status IN ({placeholders}){open_filter}
                GROUP BY severity
                """,
                [*(s.value for s in OPEN_STATUSES), *params],
            ):
                stats[row[0]] = row[1]

        return stats
