"""Dialysis session lifecycle and clinical alert engine."""

__version__ = "1.0.0"
