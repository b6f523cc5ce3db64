"""
Alert notifications
Webhook delivery of newly opened alerts
"""

from typing import Any, Dict, Optional

import httpx

from dbpulse.core.config import NotificationConfig
from dbpulse.core.logging import LoggerMixin
from dbpulse.monitoring.models import Alert


def build_alert_payload(alert: Alert, service_name: str, environment: str) -> Dict[str, Any]:
    """Structured payload sent to the notification sink"""
    return {
        "type": "database_alert",
        "alert": {
            "id": alert.id,
            "severity": alert.severity.value,
            "category": alert.category.value,
            "title": alert.title,
            "description": alert.description,
            "observed_value": alert.current_value,
            "threshold": alert.threshold,
            "timestamp": alert.timestamp.isoformat(),
        },
        "service_name": service_name,
        "environment": environment,
    }


class WebhookNotifier(LoggerMixin):
    """
    POSTs alert payloads to a webhook.

    Delivery failures are logged and dropped; the alert stays open either way.
    """

    def __init__(
        self,
        config: NotificationConfig,
        service_name: str,
        environment: str,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.config = config
        self.service_name = service_name
        self.environment = environment
        self._client = client
        self._owns_client = client is None
        self._stats = {'sent': 0, 'failed': 0}

    @property
    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout)
        return self._client

    async def notify(self, alert: Alert) -> bool:
        if not self.config.webhook_url:
            self.logger.error("Webhook URL not configured")
            self._stats['failed'] += 1
            return False

        payload = build_alert_payload(alert, self.service_name, self.environment)
        try:
            response = await self._get_client().post(
                self.config.webhook_url,
                json=payload,
                headers=self.config.build_headers(),
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            self._stats['failed'] += 1
            self.logger.error(
                f"Failed to send webhook notification for alert {alert.id}: {e}",
                extra={"alert_id": alert.id}
            )
            return False

        self._stats['sent'] += 1
        self.logger.info(f"Webhook notification sent for alert {alert.id}")
        return True

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
