"""Clinical data providers for the alert rule engine."""

from .base import (
    BaseLabSource,
    BasePatientSource,
    BasePrescriptionSource,
    BaseVascularAccessSource,
    BaseWeightSource,
)
from .sqlite_source import (
    SQLiteLabSource,
    SQLitePatientSource,
    SQLitePrescriptionSource,
    SQLiteVascularAccessSource,
    SQLiteWeightSource,
)

__all__ = [
    "BaseLabSource",
    "BasePatientSource",
    "BasePrescriptionSource",
    "BaseVascularAccessSource",
    "BaseWeightSource",
    "SQLiteLabSource",
    "SQLitePatientSource",
    "SQLitePrescriptionSource",
    "SQLiteVascularAccessSource",
    "SQLiteWeightSource",
]
