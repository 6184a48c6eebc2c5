"""HTTP client for the dialysis API.

Mirrors the REST endpoints and raises the same typed errors the services
raise (InvalidStateTransition, MachineUnavailable, ...), rebuilt from the
response envelope.
"""

import logging
from typing import Any

import requests

from .config import config
from .errors import DialysisError, error_from_payload

logger = logging.getLogger(__name__)


class DialysisClient:
    """Client for the dialysis session and alert API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        user: str | None = None,
        timeout: float = 30,
    ):
        self.base_url = (base_url or config.API_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
        })
        api_key = api_key if api_key is not None else config.API_KEY
        if api_key:
            self.session.headers["X-API-Key"] = api_key
        if user:
            self.session.headers["X-User"] = user

    def _request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        json: dict | None = None,
    ) -> Any:
        response = self.session.request(
            method,
            f"{self.base_url}/{path.lstrip('/')}",
            params=params,
            json=json,
            timeout=self.timeout,
        )

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if isinstance(payload, dict) and payload.get("success") is False:
            error = error_from_payload(payload)
            logger.debug(f"{method} {path} failed: {error.kind} - {error.message}")
            raise error

        response.raise_for_status()
        if not isinstance(payload, dict):
            raise DialysisError(f"Unexpected response from {method} {path}")
        return payload.get("data")

    def get(self, path: str, params: dict | None = None) -> Any:
        return self._request("GET", path, params=params)

    def post(self, path: str, body: dict | None = None) -> Any:
        return self._request("POST", path, json=body or {})

    # Sessions

    def schedule_session(
        self,
        patient_id: str,
        prescription_id: str,
        session_date: str,
        scheduled_start_time: str | None = None,
        notes: str | None = None,
    ) -> dict:
        return self.post("sessions", {
            "patientId": patient_id,
            "prescriptionId": prescription_id,
            "sessionDate": session_date,
            "scheduledStartTime": scheduled_start_time,
            "notes": notes,
        })

    def get_session(self, session_id: str) -> dict:
        return self.get(f"sessions/{session_id}")

    def check_in(self, session_id: str) -> dict:
        return self.post(f"sessions/{session_id}/check-in")

    def start(self, session_id: str, machine_id: str | None = None) -> dict:
        body = {"machineId": machine_id} if machine_id else {}
        return self.post(f"sessions/{session_id}/start", body)

    def complete(self, session_id: str) -> dict:
        return self.post(f"sessions/{session_id}/complete")

    def cancel(self, session_id: str, reason: str) -> dict:
        return self.post(f"sessions/{session_id}/cancel", {"reason": reason})

    def mark_no_show(self, session_id: str) -> dict:
        return self.post(f"sessions/{session_id}/no-show")

    def add_record(self, session_id: str, phase: str, vitals: dict | None = None) -> dict:
        return self.post(f"sessions/{session_id}/records", {"phase": phase, "vitals": vitals or {}})

    def add_incident(self, session_id: str, incident: dict) -> dict:
        return self.post(f"sessions/{session_id}/incidents", incident)

    # Machines

    def available_machines(self, for_isolation: bool = False) -> list[dict]:
        return self.get("machines/available", {"forIsolation": str(for_isolation).lower()})

    # Alerts

    def list_alerts(self, **filters: Any) -> list[dict]:
        """List alerts; filters: patient_id, status, severity, type, limit."""
        params = {k: v for k, v in filters.items() if v is not None}
        return self.get("alerts", params)

    def get_alert(self, alert_id: str) -> dict:
        return self.get(f"alerts/{alert_id}")

    def alert_stats(self) -> dict:
        return self.get("alerts/stats")

    def generate_alerts(self) -> dict:
        return self.post("alerts/generate")

    def acknowledge_alert(self, alert_id: str) -> dict:
        return self.post(f"alerts/{alert_id}/acknowledge")

    def resolve_alert(self, alert_id: str, notes: str | None = None) -> dict:
        return self.post(f"alerts/{alert_id}/resolve", {"notes": notes} if notes else {})

    def dismiss_alert(self, alert_id: str) -> dict:
        return self.post(f"alerts/{alert_id}/dismiss")
