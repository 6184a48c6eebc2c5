"""Unit tests for the individual clinical alert rules.

Rules are pure: each test builds a patient and a RuleContext by hand.
"""

from datetime import datetime, timedelta

import pytest

from dialysis_care.alert_store import AlertSeverity, AlertType
from dialysis_care.models import (
    LabResult,
    Patient,
    Prescription,
    SessionPhase,
    SessionRecord,
    VascularAccess,
)
from dialysis_care.rules import (
    LabDueRule,
    PrescriptionRenewalRule,
    RuleContext,
    SerologyUpdateRule,
    VaccinationRule,
    VascularAccessControlRule,
    WeightDeviationRule,
    default_rules,
)

NOW = datetime(2026, 3, 10, 8, 0)


@pytest.fixture
def patient():
    return Patient(
        id="P1",
        dry_weight=70.0,
        serology_last_update=NOW - timedelta(days=30),
        hepatitis_b_vaccinated=True,
        dialysis_start_date=NOW - timedelta(days=400),
    )


def _prescription(end_days: int | None, is_permanent: bool = False) -> Prescription:
    return Prescription(
        id="RX1",
        patient_id="P1",
        prescription_number="PRE-001",
        start_date=NOW - timedelta(days=180),
        end_date=NOW + timedelta(days=end_days) if end_days is not None else None,
        is_permanent=is_permanent,
    )


def _weight(kg: float) -> SessionRecord:
    return SessionRecord(
        id="R1", session_id="S1", phase=SessionPhase.PRE,
        record_time=NOW - timedelta(days=1), weight_kg=kg,
    )


class TestPrescriptionRenewalRule:
    """Renewal window and past-due severity."""

    def test_three_days_past_is_critical(self, patient):
        context = RuleContext(now=NOW, prescription=_prescription(-3))
        [alert] = PrescriptionRenewalRule(window_days=14).evaluate(patient, context)

        assert alert.alert_type == AlertType.PRESCRIPTION_RENEWAL
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.related_to_id == "RX1"

    def test_within_window_is_warning(self, patient):
        context = RuleContext(now=NOW, prescription=_prescription(10))
        [alert] = PrescriptionRenewalRule(window_days=14).evaluate(patient, context)
        assert alert.severity == AlertSeverity.WARNING

    def test_ending_today_is_warning(self, patient):
        context = RuleContext(now=NOW, prescription=_prescription(0))
        [alert] = PrescriptionRenewalRule(window_days=14).evaluate(patient, context)
        assert alert.severity == AlertSeverity.WARNING

    def test_outside_window(self, patient):
        context = RuleContext(now=NOW, prescription=_prescription(30))
        assert PrescriptionRenewalRule(window_days=14).evaluate(patient, context) == []

    @pytest.mark.parametrize("prescription", [
        None,
        _prescription(None),
        _prescription(-3, is_permanent=True),
    ])
    def test_no_alert(self, patient, prescription):
        context = RuleContext(now=NOW, prescription=prescription)
        assert PrescriptionRenewalRule().evaluate(patient, context) == []


class TestLabDueRule:
    """Lab interval since the last result."""

    def test_recent_lab(self, patient):
        lab = LabResult(id="L1", patient_id="P1", lab_date=NOW - timedelta(days=10))
        assert LabDueRule(interval_days=30).evaluate(patient, RuleContext(now=NOW, latest_lab=lab)) == []

    def test_interval_elapsed(self, patient):
        lab = LabResult(id="L1", patient_id="P1", lab_date=NOW - timedelta(days=31))
        [alert] = LabDueRule(interval_days=30).evaluate(patient, RuleContext(now=NOW, latest_lab=lab))

        assert alert.severity == AlertSeverity.WARNING
        assert alert.due_date == lab.lab_date + timedelta(days=30)

    def test_no_lab_at_all(self, patient):
        [alert] = LabDueRule().evaluate(patient, RuleContext(now=NOW))
        assert alert.alert_type == AlertType.LAB_DUE
        assert alert.due_date is None


class TestVaccinationRule:
    """Hepatitis B vaccination gap."""

    def test_unvaccinated_long_term_patient(self, patient):
        patient.hepatitis_b_vaccinated = False
        [alert] = VaccinationRule(threshold_days=90).evaluate(patient, RuleContext(now=NOW))
        assert alert.severity == AlertSeverity.INFO

    def test_vaccinated(self, patient):
        assert VaccinationRule(threshold_days=90).evaluate(patient, RuleContext(now=NOW)) == []

    def test_new_patient_under_threshold(self, patient):
        patient.hepatitis_b_vaccinated = False
        patient.dialysis_start_date = NOW - timedelta(days=30)
        assert VaccinationRule(threshold_days=90).evaluate(patient, RuleContext(now=NOW)) == []


class TestVascularAccessControlRule:
    """Per-access control dates."""

    def test_one_alert_per_access(self, patient):
        accesses = [
            VascularAccess(id="VA1", patient_id="P1", type="fistula", location="left arm",
                           next_control_date=NOW - timedelta(days=2)),
            VascularAccess(id="VA2", patient_id="P1", type="catheter",
                           next_control_date=NOW + timedelta(days=3)),
            VascularAccess(id="VA3", patient_id="P1", type="graft",
                           next_control_date=NOW + timedelta(days=60)),
            VascularAccess(id="VA4", patient_id="P1", type="graft"),
        ]
        alerts = VascularAccessControlRule(window_days=7).evaluate(
            patient, RuleContext(now=NOW, vascular_accesses=accesses)
        )

        assert {a.related_to_id: a.severity for a in alerts} == {
            "VA1": AlertSeverity.CRITICAL,
            "VA2": AlertSeverity.WARNING,
        }


class TestSerologyUpdateRule:
    """Serology re-test interval."""

    def test_stale_serology(self, patient):
        patient.serology_last_update = NOW - timedelta(days=200)
        [alert] = SerologyUpdateRule(interval_days=180).evaluate(patient, RuleContext(now=NOW))
        assert alert.severity == AlertSeverity.WARNING

    def test_missing_serology(self, patient):
        patient.serology_last_update = None
        [alert] = SerologyUpdateRule().evaluate(patient, RuleContext(now=NOW))
        assert alert.due_date is None

    def test_current_serology(self, patient):
        assert SerologyUpdateRule(interval_days=180).evaluate(patient, RuleContext(now=NOW)) == []


class TestWeightDeviationRule:
    """Latest weight against dry weight."""

    def test_76_vs_70_is_critical(self, patient):
        context = RuleContext(now=NOW, latest_weight=_weight(76.0))
        [alert] = WeightDeviationRule(tolerance_kg=2.0).evaluate(patient, context)

        assert alert.alert_type == AlertType.WEIGHT_DEVIATION
        assert alert.severity == AlertSeverity.CRITICAL
        assert "+6.0 kg" in alert.description

    def test_weight_loss_also_fires(self, patient):
        context = RuleContext(now=NOW, latest_weight=_weight(67.5))
        assert len(WeightDeviationRule(tolerance_kg=2.0).evaluate(patient, context)) == 1

    def test_within_tolerance(self, patient):
        context = RuleContext(now=NOW, latest_weight=_weight(72.0))
        assert WeightDeviationRule(tolerance_kg=2.0).evaluate(patient, context) == []

    def test_falls_back_to_prescription_dry_weight(self, patient):
        patient.dry_weight = None
        prescription = _prescription(None, is_permanent=True)
        prescription.dry_weight = 80.0
        context = RuleContext(now=NOW, prescription=prescription, latest_weight=_weight(76.0))

        assert len(WeightDeviationRule(tolerance_kg=2.0).evaluate(patient, context)) == 1

    def test_no_weight_recorded(self, patient):
        assert WeightDeviationRule().evaluate(patient, RuleContext(now=NOW)) == []


class TestDefaultRules:
    def test_all_six_rules(self):
        names = {rule.name for rule in default_rules()}
        assert names == {t.value for t in AlertType} - {"custom"}
