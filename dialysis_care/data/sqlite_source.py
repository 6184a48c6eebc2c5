"""Clinical data providers backed by the clinic SQLite store."""

from ..models import LabResult, Patient, Prescription, SessionRecord, VascularAccess
from ..store import ClinicStore
from .base import (
    BaseLabSource,
    BasePatientSource,
    BasePrescriptionSource,
    BaseVascularAccessSource,
    BaseWeightSource,
)


class SQLitePatientSource(BasePatientSource):
    def __init__(self, store: ClinicStore):
        self.store = store

    def get_active_patients(self) -> list[Patient]:
        return self.store.list_patients(patient_status="active")

    def get_patient(self, patient_id: str) -> Patient | None:
        return self.store.get_patient(patient_id)


class SQLitePrescriptionSource(BasePrescriptionSource):
    def __init__(self, store: ClinicStore):
        self.store = store

    def get_active_prescription(self, patient_id: str) -> Prescription | None:
        return self.store.active_prescription(patient_id)


class SQLiteLabSource(BaseLabSource):
    def __init__(self, store: ClinicStore):
        self.store = store

    def get_latest_lab(self, patient_id: str) -> LabResult | None:
        return self.store.latest_lab_result(patient_id)


class SQLiteVascularAccessSource(BaseVascularAccessSource):
    def __init__(self, store: ClinicStore):
        self.store = store

    def get_active_accesses(self, patient_id: str) -> list[VascularAccess]:
        return self.store.active_vascular_accesses(patient_id)


class SQLiteWeightSource(BaseWeightSource):
    """Reads weights from session records of every session of the patient."""

    def __init__(self, store: ClinicStore):
        self.store = store

    def get_latest_weight(self, patient_id: str) -> SessionRecord | None:
        return self.store.latest_weight_record(patient_id)
