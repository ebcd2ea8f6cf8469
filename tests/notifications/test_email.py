"""
Tests for the alert email digest.
"""

import smtplib
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from alerting.analyzer import analyze_node_health, analyze_queue_health
from alerting.config import SmtpConfig
from alerting.models import NodeSnapshot, QueueSnapshot
from alerting.thresholds import DEFAULT_THRESHOLDS
from notifications.email import AlertEmailFormatter, SmtpEmailSender


NOW = datetime(2024, 5, 1, 12, 0, 0)


@pytest.fixture
def warnings():
    return analyze_queue_health(
        QueueSnapshot(name="orders<1>", vhost="billing", messages=5, consumers=0),
        "srv-1", "Production", DEFAULT_THRESHOLDS, NOW,
    )


@pytest.fixture
def mixed(warnings):
    return analyze_node_health(
        NodeSnapshot(name="rabbit@n1", running=False), "srv-1", "Production", DEFAULT_THRESHOLDS, NOW
    ) + warnings


@pytest.fixture
def smtp():
    with patch("notifications.email.smtplib.SMTP") as smtp_class:
        server = smtp_class.return_value.__enter__.return_value
        server.sendmail.return_value = {}
        yield smtp_class, server


class TestAlertEmailFormatter:

    def test_subject_critical(self, mixed):
        assert AlertEmailFormatter().subject("Production", mixed) == "2 Critical Alerts on Production"

    def test_subject_warning_singular(self, warnings):
        assert AlertEmailFormatter().subject("Production", warnings) == "1 Warning Alert on Production"

    def test_subject_info_only(self):
        inactive = analyze_queue_health(
            QueueSnapshot(name="legacy", vhost="/", idle_since=NOW - timedelta(hours=30)),
            "srv-1", "Production", DEFAULT_THRESHOLDS, NOW,
        )

        assert AlertEmailFormatter().subject("Production", inactive) == "1 Info Alert on Production"

    def test_text_body(self, mixed):
        body = AlertEmailFormatter("https://app.test/").text_body("Acme", "srv-1", "Production", mixed)

        assert "Workspace: Acme" in body
        assert "Alerts: 2 (1 critical, 1 warning, 0 info)" in body
        assert "[CRITICAL] Node Down" in body
        assert "Virtual host: billing" in body
        assert body.endswith("View alerts: https://app.test/alerts?serverId=srv-1")

    def test_text_body_without_frontend(self, warnings):
        body = AlertEmailFormatter().text_body("Acme", "srv-1", "Production", warnings)

        assert "View alerts" not in body

    def test_html_body_escapes(self, warnings):
        body = AlertEmailFormatter("https://app.test").html_body("Acme & Co", "srv-1", "Production", warnings)

        assert "Acme &amp; Co" in body
        assert "orders&lt;1&gt;" in body
        assert 'href="https://app.test/alerts?serverId=srv-1"' in body


class TestSmtpEmailSender:

    @pytest.mark.asyncio
    async def test_sends_multipart_digest(self, smtp, mixed):
        smtp_class, server = smtp
        config = SmtpConfig(host="smtp.test", port=2525, username="bot", password="pw", from_address="alerts@acme.test")
        sender = SmtpEmailSender(config, frontend_url="https://app.test")

        result = await sender.send_alert_email("ops@acme.test", "Acme", "tenant-1", "srv-1", "Production", mixed)

        assert result.success
        smtp_class.assert_called_once_with("smtp.test", 2525, timeout=30.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot", "pw")
        from_address, recipients, raw = server.sendmail.call_args.args
        assert from_address == "alerts@acme.test"
        assert recipients == ["ops@acme.test"]
        assert "Subject: 2 Critical Alerts on Production" in raw

    @pytest.mark.asyncio
    async def test_no_tls_no_login(self, smtp, warnings):
        _, server = smtp
        sender = SmtpEmailSender(SmtpConfig(use_tls=False))

        result = await sender.send_alert_email("ops@acme.test", "Acme", "tenant-1", "srv-1", "Production", warnings)

        assert result.success
        server.starttls.assert_not_called()
        server.login.assert_not_called()

    @pytest.mark.asyncio
    async def test_refused_recipient(self, smtp, warnings):
        _, server = smtp
        server.sendmail.return_value = {"ops@acme.test": (550, b"no such user")}

        result = await SmtpEmailSender().send_alert_email(
            "ops@acme.test", "Acme", "tenant-1", "srv-1", "Production", warnings
        )

        assert not result.success
        assert result.error == "Recipient refused: ops@acme.test"

    @pytest.mark.asyncio
    async def test_smtp_failure_is_reported(self, smtp, warnings):
        smtp_class, _ = smtp
        smtp_class.side_effect = smtplib.SMTPConnectError(421, "busy")

        result = await SmtpEmailSender().send_alert_email(
            "ops@acme.test", "Acme", "tenant-1", "srv-1", "Production", warnings
        )

        assert not result.success
        assert "busy" in result.error

    @pytest.mark.asyncio
    async def test_no_alerts(self, smtp):
        smtp_class, _ = smtp

        result = await SmtpEmailSender().send_alert_email("ops@acme.test", "Acme", "tenant-1", "srv-1", "Production", [])

        assert result.error == "No alerts to send"
        smtp_class.assert_not_called()

    @pytest.mark.asyncio
    async def test_unconfigured(self, smtp, warnings):
        smtp_class, _ = smtp
        sender = SmtpEmailSender(SmtpConfig(host=""))

        result = await sender.send_alert_email("ops@acme.test", "Acme", "tenant-1", "srv-1", "Production", warnings)

        assert result.error == "SMTP not configured"
        smtp_class.assert_not_called()

    def test_message_parts(self, warnings):
        msg = SmtpEmailSender(SmtpConfig(from_address="alerts@acme.test")).build_message(
            "ops@acme.test", "Acme", "srv-1", "Production", warnings
        )

        assert msg["To"] == "ops@acme.test"
        assert [part.get_content_type() for part in msg.get_payload()] == ["text/plain", "text/html"]
