"""Flask JSON API for the dialysis session and alert services."""

from .app import create_app

__all__ = ["create_app"]
