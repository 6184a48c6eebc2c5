"""Session lifecycle manager.

Drives a dialysis session through its states:

    scheduled -> checked_in -> in_progress -> completed
    scheduled | checked_in -> cancelled
    scheduled -> no_show

Every operation re-reads the session inside one write transaction, checks
the transition against SESSION_TRANSITIONS and applies it with a
compare-and-set on the stored status.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable

from ..errors import (
    InvalidStateTransition,
    MachineRequired,
    MachineUnavailable,
    NotFound,
    ReasonRequired,
    ValidationError,
)
from ..models import (
    SESSION_TRANSITIONS,
    Machine,
    Session,
    SessionIncident,
    SessionPhase,
    SessionRecord,
    SessionStatus,
    parse_datetime,
)
from ..store import ClinicStore, generate_id
from .allocator import ResourceAllocator
from .vitals import VitalsStore

logger = logging.getLogger(__name__)


class SessionLifecycleManager:
    """State machine for a single dialysis session."""

    def __init__(
        self,
        store: ClinicStore,
        allocator: ResourceAllocator | None = None,
        vitals: VitalsStore | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.allocator = allocator or ResourceAllocator(store)
        self.vitals = vitals or VitalsStore(store, clock=clock)
        self.clock = clock

    def _load(self, conn: sqlite3.Connection, session_id: str) -> Session:
        session = self.store.get_session(session_id, conn=conn)
        if session is None:
            raise NotFound("Session", session_id)
        return session

    def _guard(self, session: Session, target: SessionStatus) -> None:
        if target not in SESSION_TRANSITIONS[session.status]:
            raise InvalidStateTransition(
                "Session", session.id, session.status.value, target.value
            )

    def _apply(
        self,
        conn: sqlite3.Connection,
        session: Session,
        target: SessionStatus,
        **fields: Any,
    ) -> Session:
        if not self.store.update_session(conn, session.id, session.status, target, **fields):
            # Only reachable if the row changed under our write lock
            current = self._load(conn, session.id)
            raise InvalidStateTransition(
                "Session", session.id, current.status.value, target.value
            )
        logger.info(
            f"Session {session.session_number}: {session.status.value} -> {target.value}"
        )
        return self._load(conn, session.id)

    def schedule(
        self,
        patient_id: str,
        prescription_id: str,
        session_date: datetime | str,
        scheduled_start_time: str | None = None,
        notes: str | None = None,
    ) -> Session:
        """Create a session in ``scheduled`` with the next session number.

        The prescription must be the patient's own and still active, and the
        patient may hold only one unfinished session per day.
        """
        if not patient_id:
            raise ValidationError("patient_id is required", field="patient_id")
        if not prescription_id:
            raise ValidationError("prescription_id is required", field="prescription_id")
        try:
            session_date = parse_datetime(session_date)
        except (TypeError, ValueError):
            raise ValidationError("session_date is not an ISO date", field="session_date")
        if session_date is None:
            raise ValidationError("session_date is required", field="session_date")

        now = self.clock()
        with self.store.transaction() as conn:
            if self.store.get_patient(patient_id, conn=conn) is None:
                raise NotFound("Patient", patient_id)

            prescription = self.store.get_prescription(prescription_id, conn=conn)
            if prescription is None or prescription.patient_id != patient_id:
                raise ValidationError(
                    f"Prescription {prescription_id} does not belong to patient {patient_id}",
                    field="prescription_id",
                )
            if prescription.status != "active":
                raise ValidationError(
                    f"Prescription {prescription_id} is {prescription.status}",
                    field="prescription_id",
                )

            booked = self.store.open_sessions_on_date(conn, patient_id, session_date)
            if booked:
                raise ValidationError(
                    f"Patient {patient_id} already has session {booked[0].session_number} "
                    f"on {session_date.date().isoformat()}",
                    field="session_date",
                )

            session = Session(
                id=generate_id(),
                session_number=self.store.next_session_number(conn, session_date.year),
                patient_id=patient_id,
                prescription_id=prescription_id,
                status=SessionStatus.SCHEDULED,
                session_date=session_date,
                scheduled_start_time=scheduled_start_time,
                notes=notes,
                created_at=now,
                updated_at=now,
            )
            self.store.insert_session(session, conn=conn)

        logger.info(f"Scheduled session {session.session_number} for patient {patient_id}")
        return session

    def check_in(self, session_id: str) -> Session:
        """Patient has arrived: scheduled -> checked_in."""
        with self.store.transaction() as conn:
            session = self._load(conn, session_id)
            self._guard(session, SessionStatus.CHECKED_IN)
            return self._apply(conn, session, SessionStatus.CHECKED_IN)

    def start(self, session_id: str, machine_id: str | None = None) -> Session:
        """Bind a machine and begin treatment: checked_in -> in_progress.

        Without ``machine_id`` the first suitable available machine is used.

        Raises:
            InvalidStateTransition: Session is not checked in
            MachineRequired: Patient requires isolation and the supplied
                machine is not isolation-only
            MachineUnavailable: Machine is not available (or none is)
        """
        with self.store.transaction() as conn:
            session = self._load(conn, session_id)
            self._guard(session, SessionStatus.IN_PROGRESS)

            patient = self.store.get_patient(session.patient_id, conn=conn)
            requires_isolation = bool(patient and patient.requires_isolation)

            if machine_id:
                machine = self.store.get_machine(machine_id, conn=conn)
                if machine is None:
                    raise NotFound("Machine", machine_id)
                if requires_isolation and not machine.isolation_only:
                    raise MachineRequired(
                        f"Patient {session.patient_id} requires an isolation machine; "
                        f"{machine.machine_number} is not isolation-only"
                    )
                machine = self.allocator.bind(session_id, machine_id, conn=conn)
            else:
                machine = self._bind_first_available(conn, session_id, requires_isolation)

            return self._apply(
                conn, session, SessionStatus.IN_PROGRESS,
                machine_id=machine.id,
                actual_start_time=self.clock(),
            )

    def _bind_first_available(
        self,
        conn: sqlite3.Connection,
        session_id: str,
        requires_isolation: bool,
    ) -> Machine:
        for candidate in self.allocator.find_available(requires_isolation, conn=conn):
            try:
                return self.allocator.bind(session_id, candidate.id, conn=conn)
            except MachineUnavailable:
                logger.debug(f"Machine {candidate.machine_number} taken, trying next")

        kind = "isolation " if requires_isolation else ""
        raise MachineUnavailable(f"No {kind}machine available for session {session_id}")

    def complete(self, session_id: str) -> Session:
        """End treatment: in_progress -> completed, releasing the machine."""
        with self.store.transaction() as conn:
            session = self._load(conn, session_id)
            self._guard(session, SessionStatus.COMPLETED)

            end_time = self.clock()
            duration = round((end_time - session.actual_start_time).total_seconds() / 60)

            completed = self._apply(
                conn, session, SessionStatus.COMPLETED,
                actual_end_time=end_time,
                actual_duration_minutes=duration,
            )
            if session.machine_id:
                self.allocator.release(session.machine_id, conn=conn)
                self.store.add_machine_usage(conn, session.machine_id, duration)

        logger.info(f"Session {session.session_number} lasted {duration} min")
        return completed

    def cancel(self, session_id: str, reason: str, cancelled_by: str | None = None) -> Session:
        """Cancel a session that has not started. A reason is mandatory."""
        if reason is not None and not isinstance(reason, str):
            raise ValidationError("reason must be text", field="reason")
        if not reason or not reason.strip():
            raise ReasonRequired("A cancellation reason is required")

        with self.store.transaction() as conn:
            session = self._load(conn, session_id)
            self._guard(session, SessionStatus.CANCELLED)
            return self._apply(
                conn, session, SessionStatus.CANCELLED,
                cancellation_reason=reason.strip(),
                cancelled_at=self.clock(),
                cancelled_by=cancelled_by,
            )

    def mark_no_show(self, session_id: str) -> Session:
        """Record that the patient never arrived: scheduled -> no_show.

        Called by the external scheduling job; when that happens is its decision.
        """
        with self.store.transaction() as conn:
            session = self._load(conn, session_id)
            self._guard(session, SessionStatus.NO_SHOW)
            return self._apply(conn, session, SessionStatus.NO_SHOW)

    def add_record(
        self,
        session_id: str,
        phase: SessionPhase | str,
        vitals: dict[str, Any] | None = None,
        recorded_by: str | None = None,
        record_time: datetime | str | None = None,
    ) -> SessionRecord:
        return self.vitals.add_record(
            session_id, phase, vitals, recorded_by=recorded_by, record_time=record_time
        )

    def add_incident(
        self,
        session_id: str,
        incident: dict[str, Any],
        reported_by: str | None = None,
    ) -> SessionIncident:
        return self.vitals.add_incident(session_id, incident, reported_by=reported_by)

    def get(self, session_id: str) -> Session:
        session = self.store.get_session(session_id)
        if session is None:
            raise NotFound("Session", session_id)
        return session

    def list_records(self, session_id: str) -> list[SessionRecord]:
        self.get(session_id)
        return self.store.list_records(session_id)

    def list_incidents(self, session_id: str) -> list[SessionIncident]:
        self.get(session_id)
        return self.store.list_incidents(session_id)
