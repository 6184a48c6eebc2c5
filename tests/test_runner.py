"""Tests for the alert generation CLI."""

from dialysis_care.alert_store import AlertStore
from dialysis_care.models import Patient
from dialysis_care.runner import main
from dialysis_care.store import ClinicStore


class TestRunner:
    def test_once_creates_alerts(self, tmp_path, capsys):
        clinic_db = str(tmp_path / "clinic.db")
        alert_db = str(tmp_path / "alerts.db")
        ClinicStore(db_path=clinic_db).save_patient(Patient(id="P1", hepatitis_b_vaccinated=True))

        exit_code = main(["--once", "--clinic-db", clinic_db, "--alert-db", alert_db])

        assert exit_code == 0
        assert "Alerts created: 2" in capsys.readouterr().out
        assert len(AlertStore(db_path=alert_db).list_alerts()) == 2

    def test_dry_run_writes_nothing(self, tmp_path, capsys):
        clinic_db = str(tmp_path / "clinic.db")
        alert_db = str(tmp_path / "alerts.db")
        ClinicStore(db_path=clinic_db).save_patient(Patient(id="P1", hepatitis_b_vaccinated=True))

        main(["--once", "--dry-run", "--clinic-db", clinic_db, "--alert-db", alert_db])

        out = capsys.readouterr().out
        assert "DRY RUN" in out
        assert "Alerts that would be raised: 2" in out
        assert AlertStore(db_path=alert_db).list_alerts() == []
