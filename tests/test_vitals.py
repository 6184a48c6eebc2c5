"""Tests for vitals records and incidents."""

from datetime import timedelta

import pytest

from dialysis_care.errors import InvalidStateTransition, NotFound, ValidationError
from dialysis_care.models import IncidentType, SessionPhase
from dialysis_care.sessions.vitals import nearest_record, validate_vitals


class TestValidateVitals:
    """Range and type checks on measurements."""

    def test_valid_vitals(self):
        values = validate_vitals({"weight_kg": 72.5, "systolic_bp": 130, "heart_rate": 80})

        assert values["weight_kg"] == 72.5
        assert values["systolic_bp"] == 130
        assert values["temperature"] is None

    def test_camel_case_keys(self):
        values = validate_vitals({"weightKg": 71, "bloodFlowRate": 300, "cumulativeUF": 2500})

        assert values["weight_kg"] == 71.0
        assert values["blood_flow_rate"] == 300
        assert values["cumulative_uf"] == 2500.0

    @pytest.mark.parametrize("name,value", [
        ("weight_kg", 10),
        ("systolic_bp", 400),
        ("temperature", 45),
        ("arterial_pressure", 50),
        ("blood_flow_rate", -1),
    ])
    def test_out_of_range(self, name, value):
        with pytest.raises(ValidationError) as exc_info:
            validate_vitals({name: value})
        assert exc_info.value.field == name

    def test_non_numeric(self):
        with pytest.raises(ValidationError):
            validate_vitals({"heart_rate": "fast"})

    def test_unknown_key(self):
        with pytest.raises(ValidationError):
            validate_vitals({"wieght_kg": 70})


class TestAddRecord:
    """Records can only be appended while the session is in progress."""

    def test_add_record_in_progress(self, lifecycle, make_session, clock):
        session = make_session(status="in_progress")

        record = lifecycle.add_record(session.id, "pre", {"weight_kg": 73.0}, recorded_by="nurse1")

        assert record.phase == SessionPhase.PRE
        assert record.record_time == clock.now
        assert [r.id for r in lifecycle.list_records(session.id)] == [record.id]

    def test_add_record_does_not_change_session(self, lifecycle, make_session):
        session = make_session(status="in_progress")
        lifecycle.add_record(session.id, "intra", {"heart_rate": 75})

        after = lifecycle.get(session.id)
        assert after.status == session.status
        assert after.machine_id == session.machine_id

    @pytest.mark.parametrize("status", ["scheduled", "checked_in", "completed"])
    def test_add_record_outside_in_progress(self, lifecycle, make_session, status):
        session = make_session(status=status)

        with pytest.raises(InvalidStateTransition):
            lifecycle.add_record(session.id, "post", {"weight_kg": 70.0})

        assert lifecycle.list_records(session.id) == []

    def test_invalid_phase(self, lifecycle, make_session):
        session = make_session(status="in_progress")
        with pytest.raises(ValidationError):
            lifecycle.add_record(session.id, "during", {})

    def test_unknown_session(self, lifecycle):
        with pytest.raises(NotFound):
            lifecycle.add_record("missing", "pre", {})


class TestAddIncident:
    """Incidents append and flag the nearest record."""

    def test_incident_flags_latest_earlier_record(self, lifecycle, make_session, clock):
        session = make_session(status="in_progress")
        pre = lifecycle.add_record(session.id, "pre", {"weight_kg": 73.0})
        clock.advance(minutes=60)
        intra = lifecycle.add_record(session.id, "intra", {"systolic_bp": 85})
        clock.advance(minutes=60)
        lifecycle.add_record(session.id, "intra", {"systolic_bp": 110})

        incident = lifecycle.add_incident(session.id, {
            "type": "hypotension",
            "severity": "moderate",
            "incident_time": (intra.record_time + timedelta(minutes=5)).isoformat(),
            "intervention": "Saline bolus",
        })

        assert incident.type == IncidentType.HYPOTENSION
        assert incident.session_record_id == intra.id
        flags = {r.id: r.has_incident for r in lifecycle.list_records(session.id)}
        assert flags[intra.id] is True
        assert flags[pre.id] is False

    def test_incident_time_with_utc_offset(self, lifecycle, make_session, clock):
        session = make_session(status="in_progress")
        pre = lifecycle.add_record(session.id, "pre", {"weight_kg": 73.0})
        clock.advance(minutes=60)
        intra = lifecycle.add_record(session.id, "intra", {"systolic_bp": 85})

        # Same instant as intra + 5 min, written with an explicit offset
        when = (intra.record_time + timedelta(minutes=5)).astimezone()
        incident = lifecycle.add_incident(session.id, {
            "type": "hypotension",
            "severity": "moderate",
            "incidentTime": when.isoformat(),
        })

        assert incident.incident_time.tzinfo is None
        assert incident.incident_time == intra.record_time + timedelta(minutes=5)
        assert incident.session_record_id == intra.id
        assert incident.session_record_id != pre.id

    def test_record_time_with_utc_offset(self, lifecycle, make_session, clock):
        session = make_session(status="in_progress")
        when = clock.now.astimezone()

        record = lifecycle.add_record(session.id, "pre", {}, record_time=when.isoformat())

        assert record.record_time.tzinfo is None
        assert record.record_time == clock.now

    def test_incident_without_records(self, lifecycle, make_session):
        session = make_session(status="in_progress")
        incident = lifecycle.add_incident(session.id, {"type": "cramps", "severity": "mild"})

        assert incident.session_record_id is None
        assert len(lifecycle.list_incidents(session.id)) == 1

    def test_incident_on_completed_session(self, lifecycle, make_session):
        session = make_session(status="completed")
        with pytest.raises(InvalidStateTransition):
            lifecycle.add_incident(session.id, {"type": "fever", "severity": "mild"})

    @pytest.mark.parametrize("payload", [
        {"type": "explosion", "severity": "mild"},
        {"type": "fever", "severity": "deadly"},
        {"severity": "mild"},
        {"type": "fever", "severity": "mild", "outcome": "x" * 501},
    ])
    def test_invalid_incident(self, lifecycle, make_session, payload):
        session = make_session(status="in_progress")
        with pytest.raises(ValidationError):
            lifecycle.add_incident(session.id, payload)


class TestNearestRecord:
    """Choosing the record an incident belongs to."""

    def test_empty(self, clock):
        assert nearest_record([], clock.now) is None

    def test_earliest_after_when_none_before(self, lifecycle, make_session, clock):
        session = make_session(status="in_progress")
        first = lifecycle.add_record(session.id, "pre", {})
        clock.advance(minutes=30)
        lifecycle.add_record(session.id, "intra", {})

        records = lifecycle.list_records(session.id)
        assert nearest_record(records, first.record_time - timedelta(minutes=10)).id == first.id
