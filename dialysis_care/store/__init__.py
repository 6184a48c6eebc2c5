"""Clinic storage module.

Provides SQLite-backed storage for the session lifecycle:
- Sessions, vitals records and incidents
- Machine inventory with compare-and-set status updates
- Patient, prescription, lab and vascular access read models
"""

from .database import ClinicStore, generate_id

__all__ = [
    "ClinicStore",
    "generate_id",
]
