"""Dialysis session lifecycle, machine allocation and vitals."""

from .allocator import ResourceAllocator
from .lifecycle import SessionLifecycleManager
from .vitals import VitalsStore, validate_vitals

__all__ = [
    "ResourceAllocator",
    "SessionLifecycleManager",
    "VitalsStore",
    "validate_vitals",
]
