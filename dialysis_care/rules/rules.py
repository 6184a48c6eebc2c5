"""The six clinical alert rules run on every active patient."""

import logging
from datetime import timedelta

from ..alert_store import AlertCandidate, AlertSeverity, AlertType
from ..config import config
from ..models import Patient
from .base import AlertRule, RuleContext

logger = logging.getLogger(__name__)


class PrescriptionRenewalRule(AlertRule):
    """Active prescription ends within the renewal window, or already has."""

    name = "prescription_renewal"

    def __init__(self, window_days: int | None = None):
        self.window_days = (
            window_days if window_days is not None
            else config.PRESCRIPTION_RENEWAL_WINDOW_DAYS
        )

    def evaluate(self, patient: Patient, context: RuleContext) -> list[AlertCandidate]:
        prescription = context.prescription
        if prescription is None or prescription.is_permanent or prescription.end_date is None:
            return []

        severity = self._due_severity(prescription.end_date, context.today, self.window_days)
        if severity is None:
            return []

        end = prescription.end_date.date().isoformat()
        label = prescription.prescription_number or prescription.id
        if severity == AlertSeverity.CRITICAL:
            title = "Prescription expired"
            description = f"Prescription {label} expired on {end} and must be renewed."
        else:
            title = "Prescription renewal due"
            description = f"Prescription {label} expires on {end}."

        return [AlertCandidate(
            patient_id=patient.id,
            alert_type=AlertType.PRESCRIPTION_RENEWAL,
            severity=severity,
            title=title,
            description=description,
            due_date=prescription.end_date,
            related_to_type="prescription",
            related_to_id=prescription.id,
        )]


class LabDueRule(AlertRule):
    """No lab result within the required interval since the last one."""

    name = "lab_due"

    def __init__(self, interval_days: int | None = None):
        self.interval_days = (
            interval_days if interval_days is not None else config.LAB_INTERVAL_DAYS
        )

    def evaluate(self, patient: Patient, context: RuleContext) -> list[AlertCandidate]:
        lab = context.latest_lab
        if lab is None:
            return [AlertCandidate(
                patient_id=patient.id,
                alert_type=AlertType.LAB_DUE,
                severity=AlertSeverity.WARNING,
                title="Lab work due",
                description="No lab result on record.",
            )]

        if self._days_between(lab.lab_date, context.today) < self.interval_days:
            return []

        due = lab.lab_date + timedelta(days=self.interval_days)
        return [AlertCandidate(
            patient_id=patient.id,
            alert_type=AlertType.LAB_DUE,
            severity=AlertSeverity.WARNING,
            title="Lab work due",
            description=(
                f"Last lab result on {lab.lab_date.date().isoformat()}; "
                f"labs are required every {self.interval_days} days."
            ),
            due_date=due,
        )]


class VaccinationRule(AlertRule):
    """Hepatitis B vaccination missing after the dialysis threshold."""

    name = "vaccination"

    def __init__(self, threshold_days: int | None = None):
        self.threshold_days = (
            threshold_days if threshold_days is not None
            else config.VACCINATION_DIALYSIS_THRESHOLD_DAYS
        )

    def evaluate(self, patient: Patient, context: RuleContext) -> list[AlertCandidate]:
        if patient.hepatitis_b_vaccinated or patient.dialysis_start_date is None:
            return []

        days_on_dialysis = self._days_between(patient.dialysis_start_date, context.today)
        if days_on_dialysis <= self.threshold_days:
            return []

        return [AlertCandidate(
            patient_id=patient.id,
            alert_type=AlertType.VACCINATION,
            severity=AlertSeverity.INFO,
            title="Hepatitis B vaccination missing",
            description=(
                f"Patient has been on dialysis for {days_on_dialysis} days "
                "without hepatitis B vaccination."
            ),
        )]


class VascularAccessControlRule(AlertRule):
    """Vascular access control is due soon or overdue, per access."""

    name = "vascular_access"

    def __init__(self, window_days: int | None = None):
        self.window_days = (
            window_days if window_days is not None
            else config.VASCULAR_ACCESS_CONTROL_WINDOW_DAYS
        )

    def evaluate(self, patient: Patient, context: RuleContext) -> list[AlertCandidate]:
        candidates = []
        for access in context.vascular_accesses:
            severity = self._due_severity(
                access.next_control_date, context.today, self.window_days
            )
            if severity is None:
                continue

            due = access.next_control_date.date().isoformat()
            where = f" ({access.location})" if access.location else ""
            overdue = severity == AlertSeverity.CRITICAL
            candidates.append(AlertCandidate(
                patient_id=patient.id,
                alert_type=AlertType.VASCULAR_ACCESS,
                severity=severity,
                title="Vascular access control overdue" if overdue else "Vascular access control due",
                description=f"Control of {access.type}{where} {'was' if overdue else 'is'} due on {due}.",
                due_date=access.next_control_date,
                related_to_type="vascular_access",
                related_to_id=access.id,
            ))
        return candidates


class SerologyUpdateRule(AlertRule):
    """Serology results older than the re-test interval, or never recorded."""

    name = "serology_update"

    def __init__(self, interval_days: int | None = None):
        self.interval_days = (
            interval_days if interval_days is not None
            else config.SEROLOGY_RETEST_INTERVAL_DAYS
        )

    def evaluate(self, patient: Patient, context: RuleContext) -> list[AlertCandidate]:
        last_update = patient.serology_last_update
        if last_update is None:
            description = "No serology (HIV, HBV, HCV) on record."
            due = None
        elif self._days_between(last_update, context.today) > self.interval_days:
            description = (
                f"Serology last updated on {last_update.date().isoformat()}; "
                f"re-test required every {self.interval_days} days."
            )
            due = last_update + timedelta(days=self.interval_days)
        else:
            return []

        return [AlertCandidate(
            patient_id=patient.id,
            alert_type=AlertType.SEROLOGY_UPDATE,
            severity=AlertSeverity.WARNING,
            title="Serology update required",
            description=description,
            due_date=due,
        )]


class WeightDeviationRule(AlertRule):
    """Latest recorded weight deviates from dry weight beyond tolerance."""

    name = "weight_deviation"

    def __init__(self, tolerance_kg: float | None = None):
        self.tolerance_kg = (
            tolerance_kg if tolerance_kg is not None
            else config.WEIGHT_DEVIATION_TOLERANCE_KG
        )

    def evaluate(self, patient: Patient, context: RuleContext) -> list[AlertCandidate]:
        record = context.latest_weight
        dry_weight = patient.dry_weight
        if dry_weight is None and context.prescription is not None:
            dry_weight = context.prescription.dry_weight
        if record is None or record.weight_kg is None or dry_weight is None:
            return []

        deviation = record.weight_kg - dry_weight
        if abs(deviation) <= self.tolerance_kg:
            return []

        return [AlertCandidate(
            patient_id=patient.id,
            alert_type=AlertType.WEIGHT_DEVIATION,
            severity=AlertSeverity.CRITICAL,
            title="Abnormal weight deviation",
            description=(
                f"Weight {record.weight_kg:g} kg on "
                f"{record.record_time.date().isoformat()} is {deviation:+.1f} kg "
                f"from dry weight {dry_weight:g} kg (tolerance {self.tolerance_kg:g} kg)."
            ),
        )]


def default_rules() -> list[AlertRule]:
    """One instance of every rule, with thresholds from configuration."""
    return [
        PrescriptionRenewalRule(),
        LabDueRule(),
        VaccinationRule(),
        VascularAccessControlRule(),
        SerologyUpdateRule(),
        WeightDeviationRule(),
    ]
