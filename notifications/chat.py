"""
Notifications - Chat (Slack-compatible incoming webhooks).

============================================================
PURPOSE
============================================================
Post alert batches to chat channels.

MESSAGE:
- Summary line with per-severity counts
- One attachment per alert, at most MAX_ALERTS_PER_MESSAGE,
  plus an overflow note
- Button linking to the dashboard for the server and the
  most common vhost among the alerts

Sends are rate limited per process (minute and hour windows).

============================================================
"""

import asyncio
import json
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import aiohttp

from alerting.config import ChatConfig
from alerting.models import Alert, AlertSeverity, AlertSummary, ChatTarget, DeliveryResult, utc_now

from .base import HttpChannel


logger = logging.getLogger(__name__)


MAX_ALERTS_PER_MESSAGE = 10


# ============================================================
# FORMATTER
# ============================================================

class ChatFormatter:
    """Formats alerts as Slack-style messages."""

    SEVERITY_COLORS = {
        AlertSeverity.CRITICAL: "danger",
        AlertSeverity.WARNING: "warning",
        AlertSeverity.INFO: "good",
    }

    SEVERITY_EMOJI = {
        AlertSeverity.CRITICAL: "🔴",
        AlertSeverity.WARNING: "🟡",
        AlertSeverity.INFO: "🔵",
    }

    OVERFLOW_COLOR = "#cccccc"

    def __init__(self, max_alerts: int = MAX_ALERTS_PER_MESSAGE):
        self._max_alerts = max_alerts

    def format_alert_line(self, alert: Alert) -> str:
        emoji = self.SEVERITY_EMOJI.get(alert.severity, "")
        return f"{emoji} *{alert.severity.value.upper()}*: {alert.title}\n{alert.description}"

    def _alert_attachment(self, alert: Alert) -> Dict[str, Any]:
        fields = [
            {"title": "Category", "value": alert.category.value, "short": True},
            {"title": "Source", "value": f"{alert.source.type.value}: {alert.source.name}", "short": True},
        ]
        if alert.vhost:
            fields.append({"title": "Virtual Host", "value": alert.vhost, "short": True})
        if alert.details.current is not None:
            fields.append({"title": "Current Value", "value": str(alert.details.current), "short": True})
        if alert.details.threshold is not None:
            fields.append({"title": "Threshold", "value": str(alert.details.threshold), "short": True})

        return {
            "color": self.SEVERITY_COLORS[alert.severity],
            "title": f"{alert.severity.value.upper()}: {alert.title}",
            "text": alert.description,
            "fields": fields,
        }

    @staticmethod
    def most_common_vhost(alerts: List[Alert]) -> Optional[str]:
        vhosts = [a.vhost for a in alerts if a.vhost]
        if not vhosts:
            return None
        return Counter(vhosts).most_common(1)[0][0]

    def alerts_url(
        self,
        alerts: List[Alert],
        server_id: Optional[str],
        frontend_url: Optional[str],
    ) -> Optional[str]:
        if not frontend_url or not server_id:
            return None
        params = {"serverId": server_id}
        vhost = self.most_common_vhost(alerts)
        if vhost:
            params["vhost"] = vhost
        return f"{frontend_url.rstrip('/')}/alerts?{urlencode(params)}"

    def create_alert_message(
        self,
        alerts: List[Alert],
        tenant_name: str,
        server_name: str,
        server_id: Optional[str] = None,
        frontend_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Build the full webhook message for a batch of alerts."""
        summary = AlertSummary.from_alerts(alerts)
        if summary.critical:
            overall = AlertSeverity.CRITICAL
        elif summary.warning:
            overall = AlertSeverity.WARNING
        else:
            overall = AlertSeverity.INFO

        plural = "s" if len(alerts) != 1 else ""
        summary_text = (
            f"*{len(alerts)} alert{plural}* detected on *{server_name}* in workspace *{tenant_name}*"
        )
        counts = [
            f"{count} {label}"
            for count, label in (
                (summary.critical, "critical"),
                (summary.warning, "warning"),
                (summary.info, "info"),
            )
            if count
        ]

        attachments = [
            {
                "color": self.SEVERITY_COLORS[overall],
                "title": summary_text,
                "text": ", ".join(counts),
                "fields": [],
            }
        ]
        attachments.extend(self._alert_attachment(a) for a in alerts[:self._max_alerts])

        overflow = len(alerts) - self._max_alerts
        if overflow > 0:
            attachments.append({
                "color": self.OVERFLOW_COLOR,
                "title": f"... and {overflow} more alert{'s' if overflow != 1 else ''}",
                "text": "",
                "fields": [],
            })

        blocks = []
        url = self.alerts_url(alerts, server_id, frontend_url)
        if url:
            blocks.append({
                "type": "actions",
                "elements": [
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": "View Alerts in Dashboard"},
                        "url": url,
                        "style": "primary",
                    }
                ],
            })

        return {
            "text": summary_text,
            "username": "Broker Alerts",
            "icon_emoji": ":rabbit:",
            "blocks": blocks,
            "attachments": attachments,
        }


# ============================================================
# RATE LIMITER
# ============================================================

class ChatRateLimiter:
    """
    Rate limiter for chat messages.

    Prevents excessive message sending.
    """

    def __init__(
        self,
        max_per_minute: int = 20,
        max_per_hour: int = 100,
    ):
        self._max_per_minute = max_per_minute
        self._max_per_hour = max_per_hour
        self._minute_window: List[datetime] = []
        self._hour_window: List[datetime] = []
        self._lock = asyncio.Lock()

    async def acquire(self, now: Optional[datetime] = None) -> bool:
        """Try to acquire a send slot."""
        async with self._lock:
            now = now or utc_now()

            minute_ago = now - timedelta(minutes=1)
            hour_ago = now - timedelta(hours=1)
            self._minute_window = [t for t in self._minute_window if t > minute_ago]
            self._hour_window = [t for t in self._hour_window if t > hour_ago]

            if len(self._minute_window) >= self._max_per_minute:
                return False
            if len(self._hour_window) >= self._max_per_hour:
                return False

            self._minute_window.append(now)
            self._hour_window.append(now)
            return True

    @property
    def remaining_minute(self) -> int:
        """Remaining sends in current minute."""
        minute_ago = utc_now() - timedelta(minutes=1)
        count = sum(1 for t in self._minute_window if t > minute_ago)
        return max(0, self._max_per_minute - count)


# ============================================================
# SENDER
# ============================================================

class ChatSender(HttpChannel):
    """Sends alert notifications to chat incoming-webhooks."""

    def __init__(
        self,
        config: Optional[ChatConfig] = None,
        frontend_url: Optional[str] = None,
        rate_limiter: Optional[ChatRateLimiter] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._config = config or ChatConfig()
        super().__init__(timeout_seconds=self._config.timeout_seconds, session=session)
        self._frontend_url = frontend_url
        self._formatter = ChatFormatter(self._config.max_alerts_per_message)
        self._rate_limiter = rate_limiter or ChatRateLimiter(
            self._config.max_messages_per_minute,
            self._config.max_messages_per_hour,
        )

    async def send_message(self, webhook_url: str, message: Dict[str, Any]) -> DeliveryResult:
        """Post one message, subject to the rate limit."""
        if not await self._rate_limiter.acquire():
            logger.warning("Chat rate limit reached, message not sent")
            return DeliveryResult(success=False, error="Rate limit reached")

        return await self._post_with_retry(
            webhook_url,
            json.dumps(message),
            {"Content-Type": "application/json"},
        )

    async def send_alert_notifications(
        self,
        targets: List[ChatTarget],
        alerts: List[Alert],
        tenant_name: str,
        server_name: str,
        server_id: str,
    ) -> List[Tuple[str, DeliveryResult]]:
        """
        Send one message per chat webhook.

        Returns:
            (target id, result) per target, in input order
        """
        message = self._formatter.create_alert_message(
            alerts, tenant_name, server_name, server_id, self._frontend_url
        )

        outcomes = await asyncio.gather(
            *(self.send_message(t.webhook_url, message) for t in targets),
            return_exceptions=True,
        )

        results: List[Tuple[str, DeliveryResult]] = []
        for target, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Failed to send chat notification {target.id}: {outcome}")
                outcome = DeliveryResult(success=False, error=str(outcome) or "Unknown error")
            results.append((target.id, outcome))
        return results
