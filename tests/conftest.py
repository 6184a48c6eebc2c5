"""Shared fixtures: throwaway SQLite stores, seeded clinic data and a fixed clock."""

from datetime import datetime, timedelta

import pytest

from dialysis_care.alert_store import AlertStore
from dialysis_care.models import LabResult, Machine, MachineStatus, Patient, Prescription
from dialysis_care.rules import AlertRuleEngine
from dialysis_care.sessions import ResourceAllocator, SessionLifecycleManager
from dialysis_care.store import ClinicStore


class FixedClock:
    """Deterministic clock; call it like datetime.now."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 3, 10, 8, 0))


@pytest.fixture
def clinic_store(tmp_path):
    return ClinicStore(db_path=str(tmp_path / "clinic.db"))


@pytest.fixture
def alert_store(tmp_path, clock):
    return AlertStore(db_path=str(tmp_path / "alerts.db"), clock=clock)


@pytest.fixture
def seeded_store(clinic_store, clock):
    """Clinic with two patients (one needing isolation) and three machines.

    Patients are up to date on labs, serology and vaccination, and have
    permanent prescriptions, so no alert rule fires until a test sets one up.
    """
    clinic_store.save_patient(Patient(
        id="P1",
        medical_id="MRN001",
        name="Regular Patient",
        dry_weight=70.0,
        serology_last_update=clock.now - timedelta(days=30),
        hepatitis_b_vaccinated=True,
        dialysis_start_date=clock.now - timedelta(days=400),
    ))
    clinic_store.save_patient(Patient(
        id="P-ISO",
        medical_id="MRN002",
        name="Isolation Patient",
        dry_weight=62.0,
        requires_isolation=True,
        serology_last_update=clock.now - timedelta(days=30),
        hepatitis_b_vaccinated=True,
        dialysis_start_date=clock.now - timedelta(days=400),
    ))
    for patient_id in ("P1", "P-ISO"):
        clinic_store.save_prescription(Prescription(
            id=f"RX-{patient_id}",
            patient_id=patient_id,
            prescription_number=f"PRE-{patient_id}",
            start_date=clock.now - timedelta(days=60),
            is_permanent=True,
        ))
        clinic_store.save_lab_result(LabResult(
            id=f"LAB-{patient_id}",
            patient_id=patient_id,
            lab_date=clock.now - timedelta(days=5),
            kt_v=1.4,
            hemoglobin=11.2,
        ))

    clinic_store.save_machine(Machine(id="M1", machine_number="M-01", status=MachineStatus.AVAILABLE))
    clinic_store.save_machine(Machine(id="M2", machine_number="M-02", status=MachineStatus.AVAILABLE))
    clinic_store.save_machine(Machine(
        id="ISO1", machine_number="M-03", status=MachineStatus.AVAILABLE, isolation_only=True,
    ))
    return clinic_store


@pytest.fixture
def allocator(seeded_store):
    return ResourceAllocator(seeded_store)


@pytest.fixture
def lifecycle(seeded_store, allocator, clock):
    return SessionLifecycleManager(seeded_store, allocator=allocator, clock=clock)


@pytest.fixture
def engine(seeded_store, alert_store, clock):
    return AlertRuleEngine.from_store(seeded_store, alert_store, clock=clock)


@pytest.fixture
def make_session(lifecycle, clock):
    """Factory: schedule a session and advance it to the requested status.

    A patient may hold one unfinished session per day, so each further
    session for the same patient is booked a day later.
    """
    booked: dict[str, int] = {}

    def _make(patient_id="P1", status="scheduled", machine_id="M1"):
        offset = booked.get(patient_id, 0)
        booked[patient_id] = offset + 1
        session = lifecycle.schedule(
            patient_id=patient_id,
            prescription_id=f"RX-{patient_id}",
            session_date=clock.now + timedelta(days=offset),
            scheduled_start_time="08:00",
        )
        if status in ("checked_in", "in_progress", "completed"):
            session = lifecycle.check_in(session.id)
        if status in ("in_progress", "completed"):
            session = lifecycle.start(session.id, machine_id=machine_id)
        if status == "completed":
            clock.advance(minutes=240)
            session = lifecycle.complete(session.id)
        return session

    return _make
