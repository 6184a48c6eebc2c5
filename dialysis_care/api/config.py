"""Flask configuration for the dialysis API."""

import os

from ..config import Config as ServiceConfig


class Config:
    """Base configuration."""

    # Flask
    DEBUG = os.environ.get("FLASK_DEBUG", "false").lower() == "true"
    JSON_SORT_KEYS = False

    # Storage
    CLINIC_DB_PATH = ServiceConfig.CLINIC_DB_PATH
    ALERT_DB_PATH = ServiceConfig.ALERT_DB_PATH

    # Optional shared key for API clients; empty disables the check
    API_KEY = ServiceConfig.API_KEY

    # Teams notifications for new critical alerts
    TEAMS_WEBHOOK_URL = ServiceConfig.TEAMS_WEBHOOK_URL
    DASHBOARD_BASE_URL = os.environ.get("DASHBOARD_BASE_URL", "")

    # Pagination
    ALERTS_PER_PAGE = int(os.environ.get("ALERTS_PER_PAGE", "100"))


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False


def get_config():
    """Get configuration based on environment."""
    env = os.environ.get("FLASK_ENV", "development")
    if env == "production":
        return ProductionConfig()
    return DevelopmentConfig()
