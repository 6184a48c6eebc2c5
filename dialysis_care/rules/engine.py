"""Alert rule engine.

One synchronous pass over the active patients: gather each patient's
clinical data, run every rule, and create an alert for each firing rule
unless an open alert for the same condition already exists.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from ..alert_store import AlertCandidate, AlertSeverity, AlertStore, ClinicalAlert
from ..data import (
    BaseLabSource,
    BasePatientSource,
    BasePrescriptionSource,
    BaseVascularAccessSource,
    BaseWeightSource,
    SQLiteLabSource,
    SQLitePatientSource,
    SQLitePrescriptionSource,
    SQLiteVascularAccessSource,
    SQLiteWeightSource,
)
from ..models import Patient
from ..notifications import TeamsNotifier
from ..store import ClinicStore
from .base import AlertRule, RuleContext
from .rules import default_rules

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    """Outcome of one rule engine pass."""
    patients_evaluated: int = 0
    created: list[ClinicalAlert] = field(default_factory=list)
    candidates: list[AlertCandidate] = field(default_factory=list)
    skipped_duplicates: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    @property
    def created_by_type(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for alert in self.created:
            key = alert.alert_type.value
            counts[key] = counts.get(key, 0) + 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "patients_evaluated": self.patients_evaluated,
            "alerts_created": len(self.created),
            "created_by_type": self.created_by_type,
            "skipped_duplicates": self.skipped_duplicates,
            "errors": self.errors,
            "alerts": [alert.to_dict() for alert in self.created],
        }


class AlertRuleEngine:
    """Evaluates the alert rules for every active patient."""

    def __init__(
        self,
        alert_store: AlertStore,
        patients: BasePatientSource,
        prescriptions: BasePrescriptionSource,
        labs: BaseLabSource,
        accesses: BaseVascularAccessSource,
        weights: BaseWeightSource,
        rules: list[AlertRule] | None = None,
        notifier: TeamsNotifier | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.alert_store = alert_store
        self.patients = patients
        self.prescriptions = prescriptions
        self.labs = labs
        self.accesses = accesses
        self.weights = weights
        self.rules = rules if rules is not None else default_rules()
        self.notifier = notifier
        self.clock = clock

    @classmethod
    def from_store(
        cls,
        clinic_store: ClinicStore,
        alert_store: AlertStore,
        **kwargs: Any,
    ) -> "AlertRuleEngine":
        """Engine reading all clinical data from the clinic database."""
        return cls(
            alert_store=alert_store,
            patients=SQLitePatientSource(clinic_store),
            prescriptions=SQLitePrescriptionSource(clinic_store),
            labs=SQLiteLabSource(clinic_store),
            accesses=SQLiteVascularAccessSource(clinic_store),
            weights=SQLiteWeightSource(clinic_store),
            **kwargs,
        )

    def build_context(self, patient: Patient) -> RuleContext:
        return RuleContext(
            now=self.clock(),
            prescription=self.prescriptions.get_active_prescription(patient.id),
            latest_lab=self.labs.get_latest_lab(patient.id),
            vascular_accesses=self.accesses.get_active_accesses(patient.id),
            latest_weight=self.weights.get_latest_weight(patient.id),
        )

    def evaluate_patient(self, patient: Patient) -> list[AlertCandidate]:
        """Run every rule for one patient without writing anything."""
        context = self.build_context(patient)
        candidates = []
        for rule in self.rules:
            candidates.extend(rule.evaluate(patient, context))
        return candidates

    def generate(self, dry_run: bool = False) -> GenerationResult:
        """Run one pass over all active patients.

        A failure while evaluating one patient is logged and recorded in the
        result; the pass continues with the next patient.

        Args:
            dry_run: Evaluate rules and collect candidates without creating alerts.
        """
        result = GenerationResult()
        patients = [p for p in self.patients.get_active_patients() if p.is_active]
        logger.info(f"Evaluating alert rules for {len(patients)} active patient(s)")

        for patient in patients:
            try:
                candidates = self.evaluate_patient(patient)
                result.candidates.extend(candidates)

                if dry_run:
                    result.patients_evaluated += 1
                    continue

                for candidate in candidates:
                    alert = self.alert_store.create_if_absent(candidate)
                    if alert is None:
                        result.skipped_duplicates += 1
                        logger.debug(
                            f"Open {candidate.alert_type.value} alert already exists "
                            f"for patient {patient.id}"
                        )
                    else:
                        result.created.append(alert)

                result.patients_evaluated += 1

            except Exception as e:
                logger.exception(f"Alert generation failed for patient {patient.id}")
                result.errors.append({"patient_id": patient.id, "error": str(e)})

        if not dry_run:
            self._notify(result.created)

        logger.info(
            f"Alert generation done: {len(result.created)} created, "
            f"{result.skipped_duplicates} duplicates skipped, {len(result.errors)} error(s)"
        )
        return result

    def _notify(self, alerts: list[ClinicalAlert]) -> None:
        if self.notifier is None or not self.notifier.enabled:
            return
        for alert in alerts:
            if alert.severity == AlertSeverity.CRITICAL:
                self.notifier.notify(alert)
