"""Clinical alert rules and the rule engine pass."""

from .base import AlertRule, RuleContext
from .engine import AlertRuleEngine, GenerationResult
from .rules import (
    LabDueRule,
    PrescriptionRenewalRule,
    SerologyUpdateRule,
    VaccinationRule,
    VascularAccessControlRule,
    WeightDeviationRule,
    default_rules,
)

__all__ = [
    "AlertRule",
    "RuleContext",
    "AlertRuleEngine",
    "GenerationResult",
    "LabDueRule",
    "PrescriptionRenewalRule",
    "SerologyUpdateRule",
    "VaccinationRule",
    "VascularAccessControlRule",
    "WeightDeviationRule",
    "default_rules",
]
