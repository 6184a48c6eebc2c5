"""SQLite-backed clinic store for sessions, machines and clinical data."""

import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from ..config import config
from ..models import (
    LabResult,
    Machine,
    MachineStatus,
    Patient,
    Prescription,
    Session,
    SessionIncident,
    SessionRecord,
    SessionStatus,
    TERMINAL_SESSION_STATUSES,
    VITAL_RANGES,
    VascularAccess,
)

logger = logging.getLogger(__name__)


def _iso(val: datetime | None) -> str | None:
    return val.isoformat() if val else None


def generate_id() -> str:
    """Generate a unique record ID."""
    return str(uuid.uuid4())


class ClinicStore:
    """Persistence for the session lifecycle.

    Every read-modify-write runs inside ``transaction()``, which takes the
    SQLite write lock up front (``BEGIN IMMEDIATE``) so concurrent callers
    serialise on the whole check-and-set.
    """

    def __init__(self, db_path: str | None = None, timeout: float = 10.0):
        """Initialize clinic store.

        Args:
            db_path: Path to SQLite database. Defaults to CLINIC_DB_PATH env var
                     or ~/.dialysis/clinic.db
            timeout: Seconds to wait for the write lock
        """
        self.db_path = os.path.expanduser(db_path or config.CLINIC_DB_PATH)
        self.timeout = timeout

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
        """Get a short-lived read connection with row factory."""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one atomic read-modify-write."""
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

    @contextmanager
    def use(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        """Join the caller's transaction, or open a new one."""
        if conn is not None:
            yield conn
        else:
            with self.transaction() as own:
                yield own

    # Sessions

    def next_session_number(self, conn: sqlite3.Connection, year: int) -> str:
        """Next sequential session number for a year, e.g. SES-2026-00042."""
        row = conn.execute(
            "SELECT COUNT(*) FROM sessions WHERE session_number LIKE ?",
            (f"SES-{year}-%",),
        ).fetchone()
        return f"SES-{year}-{row[0] + 1:05d}"

    def insert_session(self, session: Session, conn: sqlite3.Connection | None = None) -> None:
        with self.use(conn) as c:
            c.execute(
                """
                INSERT INTO sessions (
                    id, session_number, patient_id, prescription_id, machine_id,
                    status, session_date, scheduled_start_time, notes,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.id, session.session_number, session.patient_id,
                    session.prescription_id, session.machine_id, session.status.value,
                    _iso(session.session_date), session.scheduled_start_time,
                    session.notes, _iso(session.created_at), _iso(session.updated_at),
                ),
            )

    def get_session(self, session_id: str, conn: sqlite3.Connection | None = None) -> Session | None:
        """Get a session by ID."""
        if conn is not None:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        else:
            with self._connect() as c:
                row = c.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return Session.from_row(row) if row else None

    def update_session(
        self,
        conn: sqlite3.Connection,
        session_id: str,
        expected: SessionStatus,
        new_status: SessionStatus,
        **fields: Any,
    ) -> bool:
        """Compare-and-set a session's status, writing extra columns.

        Returns False when the stored status is no longer ``expected``.
        """
        set_parts = ["status = ?"]
        params: list[Any] = [new_status.value]

        for key, value in fields.items():
            set_parts.append(f"{key} = ?")
            params.append(value.isoformat() if isinstance(value, datetime) else value)

        set_parts.append("updated_at = ?")
        params.append(datetime.now().isoformat())
        params.extend([session_id, expected.value])

        cursor = conn.execute(
            f"UPDATE sessions SET {', '.join(set_parts)} WHERE id = ? AND status = ?",
            params,
        )
        return cursor.rowcount > 0

    def list_sessions(
        self,
        patient_id: str | None = None,
        status: SessionStatus | None = None,
        limit: int = 100,
    ) -> list[Session]:
        """List sessions with optional filters, most recent first."""
        conditions = []
        params: list[Any] = []

        if patient_id:
            conditions.append("patient_id = ?")
            params.append(patient_id)
        if status:
            conditions.append("status = ?")
            params.append(status.value)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM sessions
                WHERE {where_clause}
                ORDER BY session_date DESC, session_number DESC
                LIMIT ?
                """,
                params,
            ).fetchall()
        return [Session.from_row(row) for row in rows]

    def open_sessions_on_date(
        self,
        conn: sqlite3.Connection,
        patient_id: str,
        day: datetime,
    ) -> list[Session]:
        """Sessions of a patient on one calendar day that are not yet finished."""
        finished = [s.value for s in TERMINAL_SESSION_STATUSES]
        placeholders = ", ".join("?" for _ in finished)
        rows = conn.execute(
            f"""
            SELECT * FROM sessions
            WHERE patient_id = ?
              AND date(session_date) = ?
              AND status NOT IN ({placeholders})
            ORDER BY session_number
            """,
            (patient_id, day.date().isoformat(), *finished),
        ).fetchall()
        return [Session.from_row(row) for row in rows]

    # Machines

    def save_machine(self, machine: Machine) -> Machine:
        """Insert or replace a machine (used for inventory sync and seeding)."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO machines (
                    id, machine_number, model, status, isolation_only,
                    maintenance_pending, total_hours, total_sessions, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    machine.id, machine.machine_number, machine.model,
                    machine.status.value, int(machine.isolation_only),
                    int(machine.maintenance_pending), machine.total_hours,
                    machine.total_sessions, datetime.now().isoformat(),
                ),
            )
        return machine

    def get_machine(self, machine_id: str, conn: sqlite3.Connection | None = None) -> Machine | None:
        if conn is not None:
            row = conn.execute("SELECT * FROM machines WHERE id = ?", (machine_id,)).fetchone()
        else:
            with self._connect() as c:
                row = c.execute("SELECT * FROM machines WHERE id = ?", (machine_id,)).fetchone()
        return Machine.from_row(row) if row else None

    def list_machines(
        self,
        status: MachineStatus | None = None,
        isolation_only: bool | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> list[Machine]:
        """List machines ordered by machine number."""
        conditions = []
        params: list[Any] = []

        if status:
            conditions.append("status = ?")
            params.append(status.value)
        if isolation_only is not None:
            conditions.append("isolation_only = ?")
            params.append(int(isolation_only))

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        query = f"SELECT * FROM machines WHERE {where_clause} ORDER BY machine_number"

        if conn is not None:
            rows = conn.execute(query, params).fetchall()
        else:
            with self._connect() as c:
                rows = c.execute(query, params).fetchall()
        return [Machine.from_row(row) for row in rows]

    def set_machine_status(
        self,
        conn: sqlite3.Connection,
        machine_id: str,
        new_status: MachineStatus,
        expected: MachineStatus | None = None,
    ) -> bool:
        """Set machine status; with ``expected`` this is a compare-and-set."""
        now = datetime.now().isoformat()
        if expected is None:
            cursor = conn.execute(
                "UPDATE machines SET status = ?, updated_at = ? WHERE id = ?",
                (new_status.value, now, machine_id),
            )
        else:
            cursor = conn.execute(
                "UPDATE machines SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                (new_status.value, now, machine_id, expected.value),
            )
        return cursor.rowcount > 0

    def set_maintenance_pending(self, machine_id: str, pending: bool = True) -> bool:
        """Flag set by the maintenance collaborator; consumed on release."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE machines SET maintenance_pending = ?, updated_at = ? WHERE id = ?",
                (int(pending), datetime.now().isoformat(), machine_id),
            )
            return cursor.rowcount > 0

    def add_machine_usage(self, conn: sqlite3.Connection, machine_id: str, duration_minutes: int) -> None:
        """Update machine counters after a completed session."""
        hours = round(duration_minutes / 60, 1)
        conn.execute(
            """
            UPDATE machines
            SET total_hours = total_hours + ?, total_sessions = total_sessions + 1,
                updated_at = ?
            WHERE id = ?
            """,
            (hours, datetime.now().isoformat(), machine_id),
        )

    def active_session_for_machine(self, conn: sqlite3.Connection, machine_id: str) -> str | None:
        row = conn.execute(
            "SELECT id FROM sessions WHERE machine_id = ? AND status = ?",
            (machine_id, SessionStatus.IN_PROGRESS.value),
        ).fetchone()
        return row["id"] if row else None

    # Session monitoring

    def insert_record(self, conn: sqlite3.Connection, record: SessionRecord) -> None:
        columns = [
            "id", "session_id", "phase", "record_time",
            *VITAL_RANGES.keys(),
            "clinical_state", "vascular_access_state", "has_incident",
            "recorded_by", "created_at",
        ]
        values = [
            record.id, record.session_id, record.phase.value, _iso(record.record_time),
            *(getattr(record, name) for name in VITAL_RANGES),
            record.clinical_state, record.vascular_access_state,
            int(record.has_incident), record.recorded_by, _iso(record.created_at),
        ]
        placeholders = ", ".join("?" * len(columns))
        conn.execute(
            f"INSERT INTO session_records ({', '.join(columns)}) VALUES ({placeholders})",
            values,
        )

    def list_records(self, session_id: str, conn: sqlite3.Connection | None = None) -> list[SessionRecord]:
        """Records of a session in chronological order."""
        query = "SELECT * FROM session_records WHERE session_id = ? ORDER BY record_time, created_at"
        if conn is not None:
            rows = conn.execute(query, (session_id,)).fetchall()
        else:
            with self._connect() as c:
                rows = c.execute(query, (session_id,)).fetchall()
        return [SessionRecord.from_row(row) for row in rows]

    def flag_record_incident(self, conn: sqlite3.Connection, record_id: str) -> None:
        conn.execute(
            "UPDATE session_records SET has_incident = 1 WHERE id = ?",
            (record_id,),
        )

    def insert_incident(self, conn: sqlite3.Connection, incident: SessionIncident) -> None:
        conn.execute(
            """
            INSERT INTO session_incidents (
                id, session_id, session_record_id, incident_time, type, severity,
                description, intervention, outcome, reported_by, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                incident.id, incident.session_id, incident.session_record_id,
                _iso(incident.incident_time), incident.type.value,
                incident.severity.value, incident.description,
                incident.intervention, incident.outcome, incident.reported_by,
                _iso(incident.created_at),
            ),
        )

    def list_incidents(self, session_id: str) -> list[SessionIncident]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM session_incidents WHERE session_id = ? ORDER BY incident_time",
                (session_id,),
            ).fetchall()
        return [SessionIncident.from_row(row) for row in rows]

    def latest_weight_record(self, patient_id: str) -> SessionRecord | None:
        """Most recent record carrying a weight, across all of a patient's sessions."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT r.* FROM session_records r
                JOIN sessions s ON s.id = r.session_id
                WHERE s.patient_id = ? AND r.weight_kg IS NOT NULL
                ORDER BY r.record_time DESC, r.created_at DESC
                LIMIT 1
                """,
                (patient_id,),
            ).fetchone()
        return SessionRecord.from_row(row) if row else None

    # Clinical read models

    def save_patient(self, patient: Patient) -> Patient:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO patients (
                    id, medical_id, name, dry_weight, hiv_status, hbv_status,
                    hcv_status, serology_last_update, requires_isolation,
                    hepatitis_b_vaccinated, patient_status, dialysis_start_date
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    patient.id, patient.medical_id, patient.name, patient.dry_weight,
                    patient.hiv_status.value, patient.hbv_status.value,
                    patient.hcv_status.value, _iso(patient.serology_last_update),
                    int(patient.requires_isolation), int(patient.hepatitis_b_vaccinated),
                    patient.patient_status, _iso(patient.dialysis_start_date),
                ),
            )
        return patient

    def get_patient(self, patient_id: str, conn: sqlite3.Connection | None = None) -> Patient | None:
        if conn is not None:
            row = conn.execute("SELECT * FROM patients WHERE id = ?", (patient_id,)).fetchone()
        else:
            with self._connect() as c:
                row = c.execute("SELECT * FROM patients WHERE id = ?", (patient_id,)).fetchone()
        return Patient.from_row(row) if row else None

    def list_patients(self, patient_status: str | None = "active") -> list[Patient]:
        with self._connect() as conn:
            if patient_status:
                rows = conn.execute(
                    "SELECT * FROM patients WHERE patient_status = ? ORDER BY id",
                    (patient_status,),
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM patients ORDER BY id").fetchall()
        return [Patient.from_row(row) for row in rows]

    def save_prescription(self, prescription: Prescription) -> Prescription:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO prescriptions (
                    id, patient_id, prescription_number, start_date, end_date,
                    is_permanent, dry_weight, status
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    prescription.id, prescription.patient_id,
                    prescription.prescription_number, _iso(prescription.start_date),
                    _iso(prescription.end_date), int(prescription.is_permanent),
                    prescription.dry_weight, prescription.status,
                ),
            )
        return prescription

    def active_prescription(self, patient_id: str) -> Prescription | None:
        """The patient's most recently started active prescription."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM prescriptions
                WHERE patient_id = ? AND status = 'active'
                ORDER BY start_date DESC
                LIMIT 1
                """,
                (patient_id,),
            ).fetchone()
        return Prescription.from_row(row) if row else None

    def get_prescription(
        self, prescription_id: str, conn: sqlite3.Connection | None = None
    ) -> Prescription | None:
        if conn is not None:
            row = conn.execute(
                "SELECT * FROM prescriptions WHERE id = ?", (prescription_id,)
            ).fetchone()
        else:
            with self._connect() as c:
                row = c.execute(
                    "SELECT * FROM prescriptions WHERE id = ?", (prescription_id,)
                ).fetchone()
        return Prescription.from_row(row) if row else None

    def save_lab_result(self, lab: LabResult) -> LabResult:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO lab_results (id, patient_id, lab_date, kt_v, hemoglobin)
                VALUES (?, ?, ?, ?, ?)
                """,
                (lab.id, lab.patient_id, _iso(lab.lab_date), lab.kt_v, lab.hemoglobin),
            )
        return lab

    def latest_lab_result(self, patient_id: str) -> LabResult | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM lab_results WHERE patient_id = ? ORDER BY lab_date DESC LIMIT 1",
                (patient_id,),
            ).fetchone()
        return LabResult.from_row(row) if row else None

    def save_vascular_access(self, access: VascularAccess) -> VascularAccess:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO vascular_accesses (
                    id, patient_id, type, location, status,
                    last_control_date, next_control_date
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    access.id, access.patient_id, access.type, access.location,
                    access.status, _iso(access.last_control_date),
                    _iso(access.next_control_date),
                ),
            )
        return access

    def active_vascular_accesses(self, patient_id: str) -> list[VascularAccess]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM vascular_accesses
                WHERE patient_id = ? AND status = 'active'
                ORDER BY id
                """,
                (patient_id,),
            ).fetchall()
        return [VascularAccess.from_row(row) for row in rows]
