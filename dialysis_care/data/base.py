"""Abstract base classes for clinical data providers consumed by the alert rules."""

from abc import ABC, abstractmethod

from ..models import LabResult, Patient, Prescription, SessionRecord, VascularAccess


class BasePatientSource(ABC):
    """Abstract base class for patient demographics and clinical flags."""

    @abstractmethod
    def get_active_patients(self) -> list[Patient]:
        """Patients currently under dialysis care.

        Returns:
            List of patients with patient_status 'active'
        """
        pass

    @abstractmethod
    def get_patient(self, patient_id: str) -> Patient | None:
        """Retrieve a patient by ID."""
        pass


class BasePrescriptionSource(ABC):
    """Abstract base class for dialysis prescription retrieval."""

    @abstractmethod
    def get_active_prescription(self, patient_id: str) -> Prescription | None:
        """The prescription currently in force for a patient, if any."""
        pass


class BaseLabSource(ABC):
    """Abstract base class for lab result retrieval."""

    @abstractmethod
    def get_latest_lab(self, patient_id: str) -> LabResult | None:
        """The most recent lab result for a patient, if any."""
        pass


class BaseVascularAccessSource(ABC):
    """Abstract base class for vascular access retrieval."""

    @abstractmethod
    def get_active_accesses(self, patient_id: str) -> list[VascularAccess]:
        """Fistulas, grafts and catheters currently in use.

        Returns:
            List of active vascular accesses (may be empty)
        """
        pass


class BaseWeightSource(ABC):
    """Abstract base class for recorded session weights."""

    @abstractmethod
    def get_latest_weight(self, patient_id: str) -> SessionRecord | None:
        """Most recent session record carrying a weight, across all sessions."""
        pass
