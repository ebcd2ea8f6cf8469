"""
Notifications - Email.

============================================================
PURPOSE
============================================================
Send one alert digest per server to the tenant contact
address.

SUBJECT:
- "N Critical Alert(s) on <server>" when any alert is critical
- "N Warning Alert(s) on <server>" otherwise

BODY:
Plain text and HTML alternatives. The HTML part links to the
dashboard alerts page for the server.

SMTP is blocking, so the send runs in the default executor.

============================================================
"""

import asyncio
import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

from alerting.config import SmtpConfig
from alerting.exceptions import ChannelDeliveryError
from alerting.models import SEVERITY_ORDER, Alert, AlertSeverity, AlertSummary, DeliveryResult


logger = logging.getLogger(__name__)


# ============================================================
# FORMATTER
# ============================================================

class AlertEmailFormatter:
    """Builds subject and bodies for an alert digest."""

    SEVERITY_COLORS = {
        AlertSeverity.CRITICAL: "#dc2626",
        AlertSeverity.WARNING: "#d97706",
        AlertSeverity.INFO: "#2563eb",
    }

    def __init__(self, frontend_url: Optional[str] = None):
        self._frontend_url = (frontend_url or "").rstrip("/")

    def subject(self, server_name: str, alerts: List[Alert]) -> str:
        count = len(alerts)
        plural = "s" if count != 1 else ""
        highest = max((a.severity for a in alerts), key=lambda s: SEVERITY_ORDER[s], default=AlertSeverity.INFO)
        label = highest.value.capitalize()
        return f"{count} {label} Alert{plural} on {server_name}"

    def alerts_url(self, server_id: str) -> Optional[str]:
        if not self._frontend_url:
            return None
        return f"{self._frontend_url}/alerts?serverId={server_id}"

    def text_body(
        self,
        tenant_name: str,
        server_id: str,
        server_name: str,
        alerts: List[Alert],
    ) -> str:
        summary = AlertSummary.from_alerts(alerts)
        lines = [
            f"Workspace: {tenant_name}",
            f"Server: {server_name}",
            f"Alerts: {summary.total} ({summary.critical} critical, {summary.warning} warning, {summary.info} info)",
            "",
        ]

        for alert in alerts:
            lines.append(f"[{alert.severity.value.upper()}] {alert.title}")
            lines.append(f"  {alert.description}")
            if alert.vhost:
                lines.append(f"  Virtual host: {alert.vhost}")
            lines.append(f"  Current: {alert.details.current}")
            if alert.details.threshold is not None:
                lines.append(f"  Threshold: {alert.details.threshold}")
            lines.append(f"  Recommended: {alert.details.recommended}")
            lines.append("")

        url = self.alerts_url(server_id)
        if url:
            lines.append(f"View alerts: {url}")

        return "\n".join(lines)

    def html_body(
        self,
        tenant_name: str,
        server_id: str,
        server_name: str,
        alerts: List[Alert],
    ) -> str:
        rows = []
        for alert in alerts:
            color = self.SEVERITY_COLORS[alert.severity]
            vhost = f"<br><small>Virtual host: {html.escape(alert.vhost)}</small>" if alert.vhost else ""
            rows.append(
                "<tr>"
                f"<td style=\"color:{color};font-weight:bold\">{alert.severity.value.upper()}</td>"
                f"<td><strong>{html.escape(alert.title)}</strong><br>{html.escape(alert.description)}{vhost}</td>"
                f"<td>{html.escape(str(alert.details.current))}</td>"
                f"<td>{html.escape(alert.details.recommended)}</td>"
                "</tr>"
            )

        url = self.alerts_url(server_id)
        link = f"<p><a href=\"{html.escape(url)}\">View alerts in dashboard</a></p>" if url else ""

        return (
            "<html><body>"
            f"<h2>Alerts on {html.escape(server_name)}</h2>"
            f"<p>Workspace: {html.escape(tenant_name)}</p>"
            "<table border=\"1\" cellpadding=\"6\" cellspacing=\"0\">"
            "<tr><th>Severity</th><th>Alert</th><th>Current</th><th>Recommended</th></tr>"
            f"{''.join(rows)}"
            "</table>"
            f"{link}"
            "</body></html>"
        )


# ============================================================
# SENDER
# ============================================================

class SmtpEmailSender:
    """Sends alert digests over SMTP."""

    def __init__(self, config: Optional[SmtpConfig] = None, frontend_url: Optional[str] = None):
        self._config = config or SmtpConfig()
        self._formatter = AlertEmailFormatter(frontend_url)

    def build_message(
        self,
        to: str,
        tenant_name: str,
        server_id: str,
        server_name: str,
        alerts: List[Alert],
    ) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = self._formatter.subject(server_name, alerts)
        msg["From"] = self._config.from_address
        msg["To"] = to
        msg.attach(MIMEText(self._formatter.text_body(tenant_name, server_id, server_name, alerts), "plain"))
        msg.attach(MIMEText(self._formatter.html_body(tenant_name, server_id, server_name, alerts), "html"))
        return msg

    def _send_sync(self, to: str, msg: MIMEMultipart) -> None:
        config = self._config
        with smtplib.SMTP(config.host, config.port, timeout=config.timeout_seconds) as server:
            if config.use_tls:
                server.starttls()
            if config.username and config.password:
                server.login(config.username, config.password)
            refused = server.sendmail(config.from_address, [to], msg.as_string())
        if refused:
            raise ChannelDeliveryError(
                f"Recipient refused: {to}",
                channel="email",
                details={"refused": {addr: str(reason) for addr, reason in refused.items()}},
            )

    async def send_alert_email(
        self,
        to: str,
        tenant_name: str,
        tenant_id: str,
        server_id: str,
        server_name: str,
        alerts: List[Alert],
    ) -> DeliveryResult:
        """
        Send the digest.

        Args:
            to: Recipient address
            tenant_name: Workspace display name
            tenant_id: Workspace id, for logging
            server_id: Server the alerts belong to
            server_name: Server display name
            alerts: Alerts to include

        Returns:
            DeliveryResult; failures are reported, never raised
        """
        if not alerts:
            return DeliveryResult(success=False, error="No alerts to send")
        if not self._config.is_configured:
            logger.warning("SMTP not configured, skipping email notification")
            return DeliveryResult(success=False, error="SMTP not configured")

        msg = self.build_message(to, tenant_name, server_id, server_name, alerts)
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._send_sync, to, msg)
            logger.info(
                f"Alert email sent to {to} for server {server_id} "
                f"(tenant {tenant_id}, {len(alerts)} alerts)"
            )
            return DeliveryResult(success=True)
        except (smtplib.SMTPException, OSError, ChannelDeliveryError) as e:
            logger.error(f"Failed to send alert email to {to} for server {server_id}: {e}")
            return DeliveryResult(success=False, error=str(e) or type(e).__name__)
