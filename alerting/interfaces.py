"""
Alerting - Collaborator Interfaces.

============================================================
PURPOSE
============================================================
Capabilities the engine consumes. Implementations live in
database/ (stores), broker/ (metric sources) and
notifications/ (channels). Tests use in-memory fakes.

============================================================
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from .models import (
    Alert,
    AlertCategory,
    AlertSeverity,
    BrokerServer,
    DeliveryResult,
    NodeSnapshot,
    NotificationPreferences,
    QueueSnapshot,
    ResolvedAlertRecord,
    SeenAlertRecord,
    ServerScope,
    ChatTarget,
    WebhookTarget,
)
from .thresholds import MetricThresholds


# ============================================================
# METRIC SOURCES
# ============================================================

class MetricSource(Protocol):
    """Live metrics for one broker server. Each call may fail independently."""

    async def get_overview(self) -> Dict[str, Any]:
        ...

    async def get_nodes(self) -> List[NodeSnapshot]:
        ...

    async def get_queues(self, vhost: Optional[str] = None) -> List[QueueSnapshot]:
        ...


class MetricSourceFactory(Protocol):
    """Resolves a tenant's server to a metric source."""

    async def for_server(self, tenant_id: str, server_id: str) -> MetricSource:
        """
        Raises:
            ServerNotFoundError: when the server is not registered for the tenant
        """
        ...


class ServerStore(Protocol):
    """Registered broker servers."""

    async def list_servers(self) -> List[BrokerServer]:
        ...

    async def get_server(self, tenant_id: str, server_id: str) -> Optional[BrokerServer]:
        ...


# ============================================================
# STORES
# ============================================================

class ThresholdStore(Protocol):
    """Per-tenant threshold overrides."""

    async def get_thresholds(self, tenant_id: str) -> Optional[MetricThresholds]:
        ...

    async def save_thresholds(self, tenant_id: str, thresholds: MetricThresholds) -> None:
        ...


class SeenAlertStore(Protocol):
    """
    Lifecycle records keyed by fingerprint, scoped by tenant+server.

    create() must be safe against a concurrent create of the same
    fingerprint: it merges into the existing row instead of duplicating.
    """

    async def find_for_server(self, tenant_id: str, server_id: str) -> List[SeenAlertRecord]:
        ...

    async def find_unresolved(self, tenant_id: str, server_id: str) -> List[SeenAlertRecord]:
        ...

    async def create(self, record: SeenAlertRecord) -> bool:
        """Returns True when a new row was inserted."""
        ...

    async def update_many_by_fingerprint(
        self,
        tenant_id: str,
        server_id: str,
        fingerprints: Sequence[str],
        **changes: Any,
    ) -> int:
        """Apply column changes to every matching row. Returns the row count."""
        ...


class ResolvedAlertStore(Protocol):
    """Append-only history of resolved conditions."""

    async def create(self, record: ResolvedAlertRecord) -> ResolvedAlertRecord:
        ...

    async def find_for_server(
        self,
        tenant_id: str,
        server_id: str,
        limit: int = 50,
        offset: int = 0,
        severity: Optional[AlertSeverity] = None,
        category: Optional[AlertCategory] = None,
        vhost: Optional[str] = None,
    ) -> Tuple[List[ResolvedAlertRecord], int]:
        """Newest first. Returns (page, total matching)."""
        ...


class NotificationSettingsStore(Protocol):
    """Tenant notification preferences and channel targets."""

    async def get_preferences(self, tenant_id: str) -> Optional[NotificationPreferences]:
        ...

    async def get_webhook(self, tenant_id: str) -> Optional[WebhookTarget]:
        ...

    async def get_chat_config(self, tenant_id: str) -> Optional[ChatTarget]:
        ...

    async def update_preferences(
        self,
        tenant_id: str,
        email_enabled: Optional[bool] = None,
        contact_email: Optional[str] = None,
        severities: Optional[frozenset] = None,
        server_scope: Optional[ServerScope] = None,
    ) -> NotificationPreferences:
        ...


# ============================================================
# CHANNELS
# ============================================================

class EmailSender(Protocol):
    """Alert email delivery."""

    async def send_alert_email(
        self,
        to: str,
        tenant_name: str,
        tenant_id: str,
        server_id: str,
        server_name: str,
        alerts: List[Alert],
    ) -> DeliveryResult:
        ...


class WebhookSender(Protocol):
    """Alert webhook delivery."""

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
        ...


class ChatSender(Protocol):
    """Alert chat delivery."""

    async def send_alert_notifications(
        self,
        targets: List[ChatTarget],
        alerts: List[Alert],
        tenant_name: str,
        server_name: str,
        server_id: str,
    ) -> List[Tuple[str, DeliveryResult]]:
        ...
