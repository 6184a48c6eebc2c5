"""Base class for clinical alert rules."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from ..alert_store import AlertCandidate, AlertSeverity
from ..models import LabResult, Patient, Prescription, SessionRecord, VascularAccess

logger = logging.getLogger(__name__)


@dataclass
class RuleContext:
    """Clinical data gathered for one patient before the rules run."""
    now: datetime
    prescription: Prescription | None = None
    latest_lab: LabResult | None = None
    vascular_accesses: list[VascularAccess] = field(default_factory=list)
    latest_weight: SessionRecord | None = None

    @property
    def today(self) -> date:
        return self.now.date()


class AlertRule(ABC):
    """A deterministic check of one patient's data.

    Rules never touch storage: they only look at the patient and the
    context and return the alerts that should exist right now.
    """

    name: str = "rule"

    @abstractmethod
    def evaluate(self, patient: Patient, context: RuleContext) -> list[AlertCandidate]:
        """Evaluate the rule for a patient.

        Args:
            patient: The patient being checked.
            context: Related records and the evaluation time.

        Returns:
            Alerts to raise; empty if the rule does not fire.
        """
        pass

    def _due_severity(
        self,
        due: datetime | None,
        today: date,
        window_days: int,
    ) -> AlertSeverity | None:
        """Severity for a dated obligation.

        Returns:
            CRITICAL if past due, WARNING if due within the window, else None.
        """
        if due is None:
            return None
        due_day = due.date()
        if due_day < today:
            return AlertSeverity.CRITICAL
        if due_day <= today + timedelta(days=window_days):
            return AlertSeverity.WARNING
        return None

    def _days_between(self, earlier: datetime, today: date) -> int:
        return (today - earlier.date()).days
