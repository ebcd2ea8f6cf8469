"""
Notifications - Webhooks.

============================================================
PURPOSE
============================================================
POST alert batches to tenant-defined HTTP endpoints.

PAYLOAD (v1):
    {
      "version": "v1",
      "event": "alert.notification",
      "timestamp": ISO-8601,
      "workspace": {"id", "name"},
      "server": {"id", "name"},
      "alerts": [...],
      "summary": {"total", "critical", "warning", "info"}
    }

SIGNING:
When the endpoint has a secret, X-Signature carries
"sha256=" + hex HMAC-SHA256 of the exact request body.

============================================================
"""

import asyncio
import hashlib
import hmac
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from alerting.config import WebhookConfig
from alerting.models import Alert, AlertSummary, DeliveryResult, WebhookTarget, utc_now

from .base import HttpChannel


logger = logging.getLogger(__name__)


WEBHOOK_EVENT = "alert.notification"
WEBHOOK_VERSION = "v1"


def generate_signature(body: str, secret: str) -> str:
    """Hex HMAC-SHA256 of body."""
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


def build_payload(
    tenant_id: str,
    tenant_name: str,
    server_id: str,
    server_name: str,
    alerts: List[Alert],
    timestamp: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Versioned webhook body."""
    return {
        "version": WEBHOOK_VERSION,
        "event": WEBHOOK_EVENT,
        "timestamp": (timestamp or utc_now()).isoformat() + "Z",
        "workspace": {"id": tenant_id, "name": tenant_name},
        "server": {"id": server_id, "name": server_name},
        "alerts": [a.to_dict() for a in alerts],
        "summary": AlertSummary.from_alerts(alerts).to_dict(),
    }


class WebhookSender(HttpChannel):
    """Delivers alert notifications to webhook endpoints."""

    def __init__(
        self,
        config: Optional[WebhookConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._config = config or WebhookConfig()
        super().__init__(
            timeout_seconds=self._config.timeout_seconds,
            max_retries=self._config.max_retries,
            retry_delay_seconds=self._config.retry_delay_seconds,
            session=session,
        )

    def build_headers(self, payload: Dict[str, Any], body: str, secret: Optional[str]) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._config.user_agent,
            "X-Alert-Event": payload["event"],
            "X-Alert-Version": payload["version"],
            "X-Alert-Timestamp": payload["timestamp"],
        }
        if secret:
            headers["X-Signature"] = f"sha256={generate_signature(body, secret)}"
        return headers

    async def send_webhook(
        self,
        url: str,
        payload: Dict[str, Any],
        secret: Optional[str] = None,
    ) -> DeliveryResult:
        """POST one payload with retries."""
        body = json.dumps(payload, default=str)
        return await self._post_with_retry(url, body, self.build_headers(payload, body, secret))

    async def send_alert_notification(
        self,
        targets: List[WebhookTarget],
        tenant_id: str,
        tenant_name: str,
        server_id: str,
        server_name: str,
        alerts: List[Alert],
        timestamp: Optional[datetime] = None,
    ) -> List[Tuple[str, DeliveryResult]]:
        """
        Send the same payload to every endpoint in parallel.

        Returns:
            (endpoint id, result) per endpoint, in input order
        """
        payload = build_payload(tenant_id, tenant_name, server_id, server_name, alerts, timestamp)

        outcomes = await asyncio.gather(
            *(self.send_webhook(t.url, payload, t.secret) for t in targets),
            return_exceptions=True,
        )

        results: List[Tuple[str, DeliveryResult]] = []
        for target, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Failed to send webhook {target.id}: {outcome}")
                outcome = DeliveryResult(success=False, error=str(outcome) or "Unknown error")
            results.append((target.id, outcome))
        return results
