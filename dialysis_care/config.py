"""Configuration management for the dialysis session and alert engine."""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    # Fall back to template for defaults
    template_path = Path(__file__).parent.parent / ".env.template"
    if template_path.exists():
        load_dotenv(template_path)


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _float_env(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


class Config:
    """Application configuration."""

    # Storage
    CLINIC_DB_PATH: str = os.getenv("CLINIC_DB_PATH", "~/.dialysis/clinic.db")
    ALERT_DB_PATH: str = os.getenv("ALERT_DB_PATH", "~/.dialysis/alerts.db")

    # API access
    API_KEY: str = os.getenv("API_KEY", "")
    API_BASE_URL: str = os.getenv("API_BASE_URL", "http://localhost:5000/api")

    # Teams notifications for new critical alerts
    TEAMS_WEBHOOK_URL: str = os.getenv("TEAMS_WEBHOOK_URL", "")

    # Polling settings for periodic alert generation
    ALERT_POLL_INTERVAL: int = _int_env("ALERT_POLL_INTERVAL", 3600)

    # Rule thresholds
    PRESCRIPTION_RENEWAL_WINDOW_DAYS: int = _int_env("PRESCRIPTION_RENEWAL_WINDOW_DAYS", 14)
    LAB_INTERVAL_DAYS: int = _int_env("LAB_INTERVAL_DAYS", 30)
    VACCINATION_DIALYSIS_THRESHOLD_DAYS: int = _int_env("VACCINATION_DIALYSIS_THRESHOLD_DAYS", 90)
    VASCULAR_ACCESS_CONTROL_WINDOW_DAYS: int = _int_env("VASCULAR_ACCESS_CONTROL_WINDOW_DAYS", 7)
    SEROLOGY_RETEST_INTERVAL_DAYS: int = _int_env("SEROLOGY_RETEST_INTERVAL_DAYS", 180)
    WEIGHT_DEVIATION_TOLERANCE_KG: float = _float_env("WEIGHT_DEVIATION_TOLERANCE_KG", 2.0)


config = Config()
