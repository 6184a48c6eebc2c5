"""Tests for the alert generation pass over the clinic database."""

from datetime import timedelta
from unittest.mock import MagicMock

from dialysis_care.alert_store import AlertSeverity, AlertStatus, AlertType
from dialysis_care.models import Patient, Prescription, VascularAccess
from dialysis_care.rules import AlertRule, AlertRuleEngine


def _add_weight(lifecycle, make_session, clock, kg, patient_id="P1"):
    session = make_session(patient_id=patient_id, status="in_progress",
                           machine_id="ISO1" if patient_id == "P-ISO" else "M1")
    lifecycle.add_record(session.id, "pre", {"weight_kg": kg})
    clock.advance(minutes=240)
    lifecycle.complete(session.id)


class TestGenerate:
    """End-to-end rule evaluation."""

    def test_quiet_clinic_creates_nothing(self, engine):
        result = engine.generate()

        assert result.patients_evaluated == 2
        assert result.created == []
        assert result.errors == []

    def test_weight_deviation_scenario(self, engine, alert_store, lifecycle, make_session, clock):
        _add_weight(lifecycle, make_session, clock, 76.0)

        result = engine.generate()

        [alert] = result.created
        assert alert.patient_id == "P1"
        assert alert.alert_type == AlertType.WEIGHT_DEVIATION
        assert alert.severity == AlertSeverity.CRITICAL
        assert result.created_by_type == {"weight_deviation": 1}

    def test_expired_prescription_scenario(self, engine, seeded_store, clock):
        seeded_store.save_prescription(Prescription(
            id="RX-P1",
            patient_id="P1",
            start_date=clock.now - timedelta(days=90),
            end_date=clock.now - timedelta(days=3),
        ))

        [alert] = engine.generate().created

        assert alert.alert_type == AlertType.PRESCRIPTION_RENEWAL
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.related_to_id == "RX-P1"

    def test_inactive_patients_skipped(self, engine, seeded_store):
        seeded_store.save_patient(Patient(id="P-GONE", patient_status="transferred"))
        assert engine.generate().patients_evaluated == 2

    def test_dry_run_writes_nothing(self, engine, alert_store, seeded_store):
        seeded_store.save_patient(Patient(id="P3", hepatitis_b_vaccinated=True))

        result = engine.generate(dry_run=True)

        # P3 has no labs and no serology on record
        assert {c.alert_type for c in result.candidates} == {
            AlertType.LAB_DUE, AlertType.SEROLOGY_UPDATE,
        }
        assert result.created == []
        assert alert_store.list_alerts() == []


class TestIdempotence:
    """Re-running a pass never duplicates an unresolved alert."""

    def test_second_pass_creates_nothing(self, engine, alert_store, lifecycle, make_session, clock):
        _add_weight(lifecycle, make_session, clock, 76.0)

        first = engine.generate()
        second = engine.generate()

        assert len(first.created) == 1
        assert second.created == []
        assert second.skipped_duplicates == 1
        assert len(alert_store.list_alerts()) == 1

    def test_acknowledged_alert_not_duplicated(self, engine, alert_store, lifecycle, make_session, clock):
        _add_weight(lifecycle, make_session, clock, 76.0)
        [alert] = engine.generate().created
        alert_store.acknowledge(alert.id)

        assert engine.generate().created == []

    def test_new_alert_after_resolution_if_condition_persists(
        self, engine, alert_store, lifecycle, make_session, clock
    ):
        _add_weight(lifecycle, make_session, clock, 76.0)
        [first] = engine.generate().created
        alert_store.resolve(first.id, notes="Reviewed")

        [second] = engine.generate().created

        assert second.id != first.id
        resolved = alert_store.get_alert(first.id)
        assert resolved.status == AlertStatus.RESOLVED
        assert resolved.resolution_notes == "Reviewed"

    def test_no_new_alert_after_resolution_if_condition_cleared(
        self, engine, alert_store, lifecycle, make_session, clock
    ):
        _add_weight(lifecycle, make_session, clock, 76.0)
        [first] = engine.generate().created
        alert_store.dismiss(first.id)

        clock.advance(days=2)
        _add_weight(lifecycle, make_session, clock, 70.5)

        assert engine.generate().created == []
        assert alert_store.get_alert(first.id).status == AlertStatus.DISMISSED

    def test_vascular_access_alerts_per_access(self, engine, seeded_store, clock):
        for access_id, days in (("VA1", -1), ("VA2", 2)):
            seeded_store.save_vascular_access(VascularAccess(
                id=access_id, patient_id="P1", type="fistula",
                next_control_date=clock.now + timedelta(days=days),
            ))

        assert len(engine.generate().created) == 2
        assert engine.generate().created == []


class TestFailureIsolation:
    """One bad patient does not stop the pass."""

    def test_failing_patient_is_recorded_and_skipped(self, seeded_store, alert_store, clock):
        class ExplodingRule(AlertRule):
            name = "exploding"

            def evaluate(self, patient, context):
                if patient.id == "P1":
                    raise ValueError("corrupt record")
                return []

        engine = AlertRuleEngine.from_store(
            seeded_store, alert_store, clock=clock,
            rules=[ExplodingRule()],
        )
        seeded_store.save_patient(Patient(id="P3", hepatitis_b_vaccinated=True))

        result = engine.generate()

        assert result.patients_evaluated == 2
        assert result.errors == [{"patient_id": "P1", "error": "corrupt record"}]

    def test_other_patients_still_alerted(self, seeded_store, alert_store, clock):
        patients = MagicMock()
        patients.get_active_patients.return_value = [
            Patient(id="P1"), Patient(id="P-ISO"),
        ]
        labs = MagicMock()
        labs.get_latest_lab.side_effect = [RuntimeError("lab feed down"), None]

        engine = AlertRuleEngine.from_store(seeded_store, alert_store, clock=clock)
        engine.patients = patients
        engine.labs = labs

        result = engine.generate()

        assert [e["patient_id"] for e in result.errors] == ["P1"]
        assert {a.patient_id for a in result.created} == {"P-ISO"}


class TestNotifications:
    """Only newly created critical alerts are pushed to Teams."""

    def test_notifies_critical_only(self, seeded_store, alert_store, lifecycle, make_session, clock):
        notifier = MagicMock()
        notifier.enabled = True
        engine = AlertRuleEngine.from_store(seeded_store, alert_store, clock=clock, notifier=notifier)

        _add_weight(lifecycle, make_session, clock, 76.0)
        seeded_store.save_patient(Patient(id="P3", hepatitis_b_vaccinated=True))

        engine.generate()
        engine.generate()

        assert notifier.notify.call_count == 1
        [alert] = notifier.notify.call_args[0]
        assert alert.alert_type == AlertType.WEIGHT_DEVIATION
