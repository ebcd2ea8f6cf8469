"""
Alerting - Dispatch Coordinator.

============================================================
PURPOSE
============================================================
Fan notifiable alerts out to the tenant's channels.

GATES (all must pass, otherwise nothing is sent):
- At least one notifiable alert
- Email notifications enabled with a contact address
- Server inside the tenant's server scope

CHANNELS:
- Email, webhook and chat are sent concurrently and awaited.
- One channel failing never affects another.
- Only a successful email stamps last_notified_at. Email is
  the notification of record for cooldowns.

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from .interfaces import ChatSender, EmailSender, SeenAlertStore, WebhookSender
from .models import (
    Alert,
    DeliveryResult,
    NotificationChannel,
    NotificationPreferences,
    utc_now,
)


logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    """Per-channel outcome of one dispatch."""

    attempted: bool = False
    skipped_reason: Optional[str] = None
    email: Optional[DeliveryResult] = None
    webhook: List[Tuple[str, DeliveryResult]] = field(default_factory=list)
    chat: List[Tuple[str, DeliveryResult]] = field(default_factory=list)
    notified_fingerprints: List[str] = field(default_factory=list)

    @property
    def delivered_channels(self) -> List[NotificationChannel]:
        channels = []
        if self.email is not None and self.email.success:
            channels.append(NotificationChannel.EMAIL)
        if any(result.success for _, result in self.webhook):
            channels.append(NotificationChannel.WEBHOOK)
        if any(result.success for _, result in self.chat):
            channels.append(NotificationChannel.CHAT)
        return channels


def _unique_fingerprints(alerts: List[Alert]) -> List[str]:
    seen = []
    for alert in alerts:
        if alert.fingerprint not in seen:
            seen.append(alert.fingerprint)
    return seen


class DispatchCoordinator:
    """
    Sends one batch of alerts for one server to every channel.

    Never raises.
    """

    def __init__(
        self,
        seen_store: SeenAlertStore,
        email_sender: Optional[EmailSender] = None,
        webhook_sender: Optional[WebhookSender] = None,
        chat_sender: Optional[ChatSender] = None,
    ):
        """
        Args:
            seen_store: SeenAlertStore, for last_notified_at stamps
            email_sender: EmailSender or None
            webhook_sender: WebhookSender or None
            chat_sender: ChatSender or None
        """
        self._seen_store = seen_store
        self._email_sender = email_sender
        self._webhook_sender = webhook_sender
        self._chat_sender = chat_sender

    def skip_reason(
        self,
        alerts: List[Alert],
        preferences: NotificationPreferences,
        server_id: str,
    ) -> Optional[str]:
        """Why nothing should be sent, or None to send."""
        if not alerts:
            return "no notifiable alerts"
        if not preferences.email_enabled:
            return "email notifications disabled"
        if not preferences.contact_email:
            return "no contact email"
        if not preferences.server_scope.includes(server_id):
            return "server excluded by notification scope"
        return None

    async def dispatch(
        self,
        alerts: List[Alert],
        preferences: NotificationPreferences,
        server_id: str,
        server_name: str,
        now: Optional[datetime] = None,
    ) -> DispatchReport:
        """
        Deliver alerts to every configured channel.

        Args:
            alerts: Notifiable alerts from the tracker
            preferences: Tenant preferences and channel targets
            server_id: Broker server id
            server_name: Server display name
            now: Clock override for the last_notified_at stamp

        Returns:
            DispatchReport
        """
        report = DispatchReport()

        reason = self.skip_reason(alerts, preferences, server_id)
        if reason is not None:
            report.skipped_reason = reason
            if alerts:
                logger.debug(f"Skipping notifications for server {server_id}: {reason}")
            return report

        report.attempted = True
        report.email, report.webhook, report.chat = await asyncio.gather(
            self._send_email(alerts, preferences, server_id, server_name),
            self._send_webhook(alerts, preferences, server_id, server_name),
            self._send_chat(alerts, preferences, server_id, server_name),
        )

        if report.email is not None and report.email.success:
            report.notified_fingerprints = await self._stamp_notified(
                alerts,
                preferences.tenant_id,
                server_id,
                now or utc_now(),
            )

        return report

    # --------------------------------------------------------
    # CHANNELS
    # --------------------------------------------------------

    async def _send_email(
        self,
        alerts: List[Alert],
        preferences: NotificationPreferences,
        server_id: str,
        server_name: str,
    ) -> Optional[DeliveryResult]:
        if self._email_sender is None:
            return None

        try:
            result = await self._email_sender.send_alert_email(
                to=preferences.contact_email,
                tenant_name=preferences.tenant_name,
                tenant_id=preferences.tenant_id,
                server_id=server_id,
                server_name=server_name,
                alerts=alerts,
            )
        except Exception as e:
            logger.error(f"Email notification failed for server {server_id}: {e}")
            return DeliveryResult(success=False, error=str(e))

        if result.success:
            logger.info(
                f"Sent alert email for {len(alerts)} alert(s) on server {server_name} "
                f"to {preferences.contact_email}"
            )
        else:
            logger.error(f"Failed to send alert email for server {server_id}: {result.error}")
        return result

    async def _send_webhook(
        self,
        alerts: List[Alert],
        preferences: NotificationPreferences,
        server_id: str,
        server_name: str,
    ) -> List[Tuple[str, DeliveryResult]]:
        if self._webhook_sender is None or preferences.webhook is None:
            return []

        try:
            results = await self._webhook_sender.send_alert_notification(
                targets=[preferences.webhook],
                tenant_id=preferences.tenant_id,
                tenant_name=preferences.tenant_name,
                server_id=server_id,
                server_name=server_name,
                alerts=alerts,
            )
        except Exception as e:
            logger.error(f"Webhook notification failed for server {server_id}: {e}")
            return [(preferences.webhook.id, DeliveryResult(success=False, error=str(e)))]

        failed = [target_id for target_id, result in results if not result.success]
        if failed:
            logger.warning(f"Webhook delivery failed for {len(failed)}/{len(results)} endpoint(s)")
        else:
            logger.info(f"Sent {len(results)} alert webhook(s) for server {server_name}")
        return results

    async def _send_chat(
        self,
        alerts: List[Alert],
        preferences: NotificationPreferences,
        server_id: str,
        server_name: str,
    ) -> List[Tuple[str, DeliveryResult]]:
        if self._chat_sender is None or preferences.chat is None:
            return []

        try:
            results = await self._chat_sender.send_alert_notifications(
                targets=[preferences.chat],
                alerts=alerts,
                tenant_name=preferences.tenant_name,
                server_name=server_name,
                server_id=server_id,
            )
        except Exception as e:
            logger.error(f"Chat notification failed for server {server_id}: {e}")
            return [(preferences.chat.id, DeliveryResult(success=False, error=str(e)))]

        failed = [target_id for target_id, result in results if not result.success]
        if failed:
            logger.warning(f"Chat delivery failed for {len(failed)}/{len(results)} webhook(s)")
        else:
            logger.info(f"Sent {len(results)} chat notification(s) for server {server_name}")
        return results

    async def _stamp_notified(
        self,
        alerts: List[Alert],
        tenant_id: str,
        server_id: str,
        now: datetime,
    ) -> List[str]:
        fingerprints = _unique_fingerprints(alerts)
        try:
            await self._seen_store.update_many_by_fingerprint(
                tenant_id,
                server_id,
                fingerprints,
                last_notified_at=now,
            )
        except Exception as e:
            logger.error(f"Failed to record notification time for server {server_id}: {e}")
            return []
        return fingerprints
