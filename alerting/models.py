"""
Alerting - Data Model.

============================================================
PURPOSE
============================================================
Types shared by the alert detection and notification engine.

- Metric snapshots (read-only facts from the broker)
- Transient alerts (one per detected condition per pass)
- Persisted lifecycle records (seen / resolved)
- Tenant notification preferences

============================================================
LIFECYCLE
============================================================
UNSEEN -> ACTIVE -> RESOLVED -> ACTIVE (reactivation)

Records are never deleted. Resolution is a tracker concept,
so every Alert leaves the analyzer with resolved=False.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple


def utc_now() -> datetime:
    """Naive UTC timestamp, comparable with values read back from storage."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a management API timestamp ("2024-05-01 10:00:00" or ISO)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _to_naive_utc(value)
    try:
        return _to_naive_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


# ============================================================
# ENUMS
# ============================================================

class AlertSeverity(str, Enum):
    """Alert severity levels."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


SEVERITY_ORDER: Dict[AlertSeverity, int] = {
    AlertSeverity.CRITICAL: 3,
    AlertSeverity.WARNING: 2,
    AlertSeverity.INFO: 1,
}

ALL_SEVERITIES: FrozenSet[AlertSeverity] = frozenset(AlertSeverity)


class AlertCategory(str, Enum):
    """What part of the broker an alert is about."""

    NODE = "node"
    MEMORY = "memory"
    DISK = "disk"
    CONNECTION = "connection"
    QUEUE = "queue"
    PERFORMANCE = "performance"


class SourceType(str, Enum):
    """Kind of object an alert was raised against."""

    NODE = "node"
    QUEUE = "queue"
    CLUSTER = "cluster"


CLUSTER_WIDE_SOURCES: FrozenSet[SourceType] = frozenset({SourceType.NODE, SourceType.CLUSTER})


class NotificationChannel(str, Enum):
    """Delivery channels."""

    EMAIL = "email"
    WEBHOOK = "webhook"
    CHAT = "chat"


# ============================================================
# METRIC SNAPSHOTS
# ============================================================

@dataclass(frozen=True)
class NodeSnapshot:
    """
    One broker node as reported by the management API.

    run_queue is None when the broker did not report it,
    which is different from a reported depth of 0.
    """

    name: str
    running: bool = True
    mem_alarm: bool = False
    disk_free_alarm: bool = False
    partitions: Tuple[str, ...] = ()
    mem_used: float = 0
    mem_limit: float = 0
    disk_free: float = 0
    disk_free_limit: float = 0
    fd_used: float = 0
    fd_total: float = 0
    sockets_used: float = 0
    sockets_total: float = 0
    proc_used: float = 0
    proc_total: float = 0
    run_queue: Optional[float] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "NodeSnapshot":
        """Build from a /api/nodes entry."""
        return cls(
            name=str(data.get("name", "unknown")),
            running=bool(data.get("running", False)),
            mem_alarm=bool(data.get("mem_alarm", False)),
            disk_free_alarm=bool(data.get("disk_free_alarm", False)),
            partitions=tuple(str(p) for p in (data.get("partitions") or [])),
            mem_used=data.get("mem_used") or 0,
            mem_limit=data.get("mem_limit") or 0,
            disk_free=data.get("disk_free") or 0,
            disk_free_limit=data.get("disk_free_limit") or 0,
            fd_used=data.get("fd_used") or 0,
            fd_total=data.get("fd_total") or 0,
            sockets_used=data.get("sockets_used") or 0,
            sockets_total=data.get("sockets_total") or 0,
            proc_used=data.get("proc_used") or 0,
            proc_total=data.get("proc_total") or 0,
            run_queue=data.get("run_queue"),
        )


@dataclass(frozen=True)
class QueueSnapshot:
    """One queue as reported by the management API."""

    name: str
    vhost: Optional[str] = None
    messages: int = 0
    messages_ready: int = 0
    messages_unacknowledged: int = 0
    consumers: int = 0
    publish_rate: float = 0.0
    deliver_rate: float = 0.0
    idle_since: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "QueueSnapshot":
        """Build from a /api/queues entry."""
        stats = data.get("message_stats") or {}
        publish = (stats.get("publish_details") or {}).get("rate") or 0.0
        deliver = (stats.get("deliver_get_details") or {}).get("rate") or 0.0
        return cls(
            name=str(data.get("name", "unknown")),
            vhost=data.get("vhost"),
            messages=data.get("messages") or 0,
            messages_ready=data.get("messages_ready") or 0,
            messages_unacknowledged=data.get("messages_unacknowledged") or 0,
            consumers=data.get("consumers") or 0,
            publish_rate=float(publish),
            deliver_rate=float(deliver),
            idle_since=parse_timestamp(data.get("idle_since")),
        )


# ============================================================
# TRANSIENT ALERT
# ============================================================

@dataclass(frozen=True)
class AlertSource:
    """Object an alert was raised against."""

    type: SourceType
    name: str


@dataclass
class AlertDetails:
    """Measured value, threshold and advice."""

    current: Any
    recommended: str
    affected: List[str] = field(default_factory=list)
    threshold: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "current": self.current,
            "recommended": self.recommended,
            "affected": list(self.affected),
        }
        if self.threshold is not None:
            data["threshold"] = self.threshold
        return data


@dataclass
class Alert:
    """
    One detected condition in one analysis pass.

    id changes every pass; fingerprint is stable.
    """

    id: str
    fingerprint: str
    server_id: str
    server_name: str
    severity: AlertSeverity
    category: AlertCategory
    title: str
    description: str
    source: AlertSource
    details: AlertDetails
    timestamp: datetime
    vhost: Optional[str] = None
    resolved: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "fingerprint": self.fingerprint,
            "serverId": self.server_id,
            "serverName": self.server_name,
            "severity": self.severity.value,
            "category": self.category.value,
            "title": self.title,
            "description": self.description,
            "details": self.details.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "resolved": self.resolved,
            "source": {"type": self.source.type.value, "name": self.source.name},
        }
        if self.vhost is not None:
            data["vhost"] = self.vhost
        return data


@dataclass
class AlertSummary:
    """Counts per severity."""

    total: int = 0
    critical: int = 0
    warning: int = 0
    info: int = 0

    @classmethod
    def from_alerts(cls, alerts: Iterable[Alert]) -> "AlertSummary":
        summary = cls()
        for alert in alerts:
            summary.total += 1
            if alert.severity == AlertSeverity.CRITICAL:
                summary.critical += 1
            elif alert.severity == AlertSeverity.WARNING:
                summary.warning += 1
            else:
                summary.info += 1
        return summary

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "critical": self.critical,
            "warning": self.warning,
            "info": self.info,
        }


@dataclass
class ServerAlertsResult:
    """What callers of one analysis pass receive."""

    alerts: List[Alert]
    summary: AlertSummary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alerts": [a.to_dict() for a in self.alerts],
            "summary": self.summary.to_dict(),
        }


# ============================================================
# PERSISTED LIFECYCLE RECORDS
# ============================================================

@dataclass
class SeenAlertRecord:
    """One row per fingerprint per tenant+server."""

    tenant_id: str
    server_id: str
    fingerprint: str
    severity: AlertSeverity
    category: AlertCategory
    source_type: SourceType
    source_name: str
    first_seen_at: datetime
    last_seen_at: datetime
    vhost: Optional[str] = None
    resolved_at: Optional[datetime] = None
    last_notified_at: Optional[datetime] = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None


@dataclass
class ResolvedAlertRecord:
    """Append-only snapshot written when a seen alert resolves."""

    tenant_id: str
    server_id: str
    server_name: str
    fingerprint: str
    severity: AlertSeverity
    category: AlertCategory
    title: str
    description: str
    source_type: SourceType
    source_name: str
    first_seen_at: datetime
    resolved_at: datetime
    duration_ms: int
    vhost: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "serverId": self.server_id,
            "serverName": self.server_name,
            "severity": self.severity.value,
            "category": self.category.value,
            "title": self.title,
            "description": self.description,
            "details": self.details,
            "source": {"type": self.source_type.value, "name": self.source_name},
            "vhost": self.vhost,
            "firstSeenAt": self.first_seen_at.isoformat(),
            "resolvedAt": self.resolved_at.isoformat(),
            "duration": self.duration_ms,
        }


# ============================================================
# NOTIFICATION PREFERENCES
# ============================================================

@dataclass(frozen=True)
class ServerScope:
    """
    Which servers a tenant wants notifications for.

    server_ids=None means all servers.
    """

    server_ids: Optional[FrozenSet[str]] = None

    @classmethod
    def all(cls) -> "ServerScope":
        return cls(None)

    @classmethod
    def subset(cls, server_ids: Iterable[str]) -> "ServerScope":
        return cls(frozenset(server_ids))

    @classmethod
    def from_stored(cls, value: Optional[Iterable[str]]) -> "ServerScope":
        """An absent or empty stored list means all servers."""
        ids = list(value or [])
        if not ids:
            return cls.all()
        return cls.subset(ids)

    @property
    def is_all(self) -> bool:
        return self.server_ids is None

    def includes(self, server_id: str) -> bool:
        return self.server_ids is None or server_id in self.server_ids

    def to_stored(self) -> Optional[List[str]]:
        if self.server_ids is None:
            return None
        return sorted(self.server_ids)


def severities_from_stored(value: Optional[Iterable[str]]) -> FrozenSet[AlertSeverity]:
    """An absent stored list means every severity; unknown names are dropped."""
    if value is None:
        return ALL_SEVERITIES
    result = set()
    for item in value:
        try:
            result.add(AlertSeverity(item))
        except ValueError:
            continue
    return frozenset(result)


@dataclass(frozen=True)
class WebhookTarget:
    """Tenant webhook endpoint."""

    id: str
    url: str
    secret: Optional[str] = None
    version: str = "v1"


@dataclass(frozen=True)
class ChatTarget:
    """Tenant chat incoming-webhook."""

    id: str
    webhook_url: str


@dataclass(frozen=True)
class NotificationPreferences:
    """Per-tenant notification settings."""

    tenant_id: str
    tenant_name: str = ""
    email_enabled: bool = False
    contact_email: Optional[str] = None
    severities: FrozenSet[AlertSeverity] = ALL_SEVERITIES
    server_scope: ServerScope = field(default_factory=ServerScope.all)
    webhook: Optional[WebhookTarget] = None
    chat: Optional[ChatTarget] = None

    @property
    def email_ready(self) -> bool:
        return self.email_enabled and bool(self.contact_email)

    def allows_severity(self, severity: AlertSeverity) -> bool:
        return severity in self.severities

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenantId": self.tenant_id,
            "tenantName": self.tenant_name,
            "emailNotificationsEnabled": self.email_enabled,
            "contactEmail": self.contact_email,
            "notificationSeverities": sorted(
                (s.value for s in self.severities),
                key=lambda v: -SEVERITY_ORDER[AlertSeverity(v)],
            ),
            "notificationServerIds": self.server_scope.to_stored(),
            "webhookConfigured": self.webhook is not None,
            "chatConfigured": self.chat is not None,
        }


@dataclass
class DeliveryResult:
    """Outcome of one channel send."""

    success: bool
    error: Optional[str] = None
    status_code: Optional[int] = None
    retries: int = 0


# ============================================================
# BROKER SERVERS
# ============================================================

@dataclass(frozen=True)
class BrokerServer:
    """A registered broker and how to reach its management API."""

    id: str
    tenant_id: str
    name: str
    host: str = "localhost"
    port: int = 15672
    username: str = "guest"
    password: str = "guest"
    use_tls: bool = False

    @property
    def management_url(self) -> str:
        scheme = "https" if self.use_tls else "http"
        return f"{scheme}://{self.host}:{self.port}"
