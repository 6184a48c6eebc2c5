"""Microsoft Teams notification of new critical alerts.

Posts an Adaptive Card to a Teams Workflows webhook
("Post to a channel when a webhook request is received").
"""

import json
import logging
import urllib.error
import urllib.request
from datetime import datetime

from .alert_store import ClinicalAlert
from .config import config

logger = logging.getLogger(__name__)

SEVERITY_COLORS = {
    "critical": "Attention",
    "warning": "Warning",
    "info": "Accent",
}


class TeamsNotifier:
    """Send alert cards to a Teams channel via Workflows webhook."""

    def __init__(
        self,
        webhook_url: str | None = None,
        dashboard_url: str | None = None,
        timeout: float = 30,
    ):
        self.webhook_url = webhook_url if webhook_url is not None else config.TEAMS_WEBHOOK_URL
        self.dashboard_url = dashboard_url
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def build_card(self, alert: ClinicalAlert) -> dict:
        """Build the Adaptive Card for one alert."""
        facts = [
            ("Patient", alert.patient_id),
            ("Type", alert.alert_type.value.replace("_", " ")),
            ("Severity", alert.severity.value.upper()),
        ]
        if alert.due_date:
            facts.append(("Due", alert.due_date.strftime("%Y-%m-%d")))

        body = [
            {
                "type": "TextBlock",
                "text": alert.title,
                "weight": "Bolder",
                "size": "Large",
                "color": SEVERITY_COLORS.get(alert.severity.value, "Default"),
                "wrap": True,
            },
            {
                "type": "FactSet",
                "facts": [{"title": k, "value": v} for k, v in facts],
            },
        ]
        if alert.description:
            body.append({"type": "TextBlock", "text": alert.description, "wrap": True})
        body.append({
            "type": "TextBlock",
            "text": f"Sent: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
            "size": "Small",
            "isSubtle": True,
            "wrap": True,
        })

        card = {
            "type": "AdaptiveCard",
            "$schema": "http://adaptivecards.io/schemas/adaptive-card.json",
            "version": "1.4",
            "body": body,
        }
        if self.dashboard_url:
            card["actions"] = [{
                "type": "Action.OpenUrl",
                "title": "View Alert",
                "url": f"{self.dashboard_url.rstrip('/')}/alerts/{alert.id}",
            }]
        return card

    def _post(self, payload: dict) -> int:
        """POST a JSON payload to the webhook; returns the HTTP status."""
        req = urllib.request.Request(
            self.webhook_url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with urllib.request.urlopen(req, timeout=self.timeout) as response:
            response.read()
            return response.status

    def notify(self, alert: ClinicalAlert) -> bool:
        """Post one alert. Failures are logged, never raised.

        Returns:
            True if Teams accepted the message
        """
        if not self.enabled:
            return False

        payload = {
            "type": "message",
            "attachments": [{
                "contentType": "application/vnd.microsoft.card.adaptive",
                "contentUrl": None,
                "content": self.build_card(alert),
            }],
        }
        try:
            status = self._post(payload)
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="ignore")[:200]
            logger.warning(f"Teams rejected alert {alert.id}: {e.code} - {body}")
            return False
        except urllib.error.URLError as e:
            logger.warning(f"Teams unreachable for alert {alert.id}: {e.reason}")
            return False

        if status not in (200, 202):
            logger.warning(f"Teams returned {status} for alert {alert.id}")
            return False

        logger.info(f"Teams notified for alert {alert.id}")
        return True
