"""
Broker Alert Engine - Package.

============================================================
PURPOSE
============================================================
Turns RabbitMQ node and queue metrics into deduplicated,
rate-limited alerts delivered to humans.

============================================================
WHAT IT IS
============================================================
- Threshold comparison on node and queue snapshots
- Stable fingerprints for every detected condition
- Lifecycle tracking: new, active, resolved, reactivated
- Notification gating with a 7 day reminder cooldown
- Concurrent fan-out to email, webhook and chat

============================================================
WHAT IT IS NOT
============================================================
- NOT anomaly detection or forecasting
- NOT automatic remediation

============================================================
USAGE
============================================================
    from alerting import analyze_node_health, NodeSnapshot, DEFAULT_THRESHOLDS

    node = NodeSnapshot.from_api(api_node)
    alerts = analyze_node_health(node, "srv-1", "Production", DEFAULT_THRESHOLDS)

============================================================
"""

# Models
from .models import (
    ALL_SEVERITIES,
    SEVERITY_ORDER,
    Alert,
    AlertCategory,
    AlertDetails,
    AlertSeverity,
    AlertSource,
    AlertSummary,
    BrokerServer,
    ChatTarget,
    DeliveryResult,
    NodeSnapshot,
    NotificationChannel,
    NotificationPreferences,
    QueueSnapshot,
    ResolvedAlertRecord,
    SeenAlertRecord,
    ServerAlertsResult,
    ServerScope,
    SourceType,
    WebhookTarget,
    utc_now,
)

# Exceptions
from .exceptions import (
    AlertingError,
    AlertStorageError,
    ChannelDeliveryError,
    MetricSourceError,
    MetricSourceUnavailableError,
    ServerNotFoundError,
    ThresholdValidationError,
)

# Thresholds
from .thresholds import (
    DEFAULT_THRESHOLDS,
    MetricThresholds,
    ThresholdPair,
    ThresholdProvider,
    validate_thresholds,
)

# Detection
from .analyzer import analyze_node_health, analyze_queue_health
from .fingerprint import AlertFingerprint, generate_alert_fingerprint, generate_alert_id

# Lifecycle and dispatch
from .tracker import COOLDOWN_PERIOD, AlertLifecycleTracker, TrackingOutcome
from .dispatch import DispatchCoordinator, DispatchReport

# Service
from .service import AlertService, filter_alerts, sort_alerts
from .health import AlertHealthService
from .poller import AlertPoller, PollCycleStats

# Config
from .config import AlertEngineConfig, ChatConfig, SmtpConfig, WebhookConfig, get_config, set_config


__all__ = [
    # Models
    "ALL_SEVERITIES",
    "SEVERITY_ORDER",
    "Alert",
    "AlertCategory",
    "AlertDetails",
    "AlertSeverity",
    "AlertSource",
    "AlertSummary",
    "BrokerServer",
    "ChatTarget",
    "DeliveryResult",
    "NodeSnapshot",
    "NotificationChannel",
    "NotificationPreferences",
    "QueueSnapshot",
    "ResolvedAlertRecord",
    "SeenAlertRecord",
    "ServerAlertsResult",
    "ServerScope",
    "SourceType",
    "WebhookTarget",
    "utc_now",
    # Exceptions
    "AlertingError",
    "AlertStorageError",
    "ChannelDeliveryError",
    "MetricSourceError",
    "MetricSourceUnavailableError",
    "ServerNotFoundError",
    "ThresholdValidationError",
    # Thresholds
    "DEFAULT_THRESHOLDS",
    "MetricThresholds",
    "ThresholdPair",
    "ThresholdProvider",
    "validate_thresholds",
    # Detection
    "analyze_node_health",
    "analyze_queue_health",
    "AlertFingerprint",
    "generate_alert_fingerprint",
    "generate_alert_id",
    # Lifecycle and dispatch
    "COOLDOWN_PERIOD",
    "AlertLifecycleTracker",
    "TrackingOutcome",
    "DispatchCoordinator",
    "DispatchReport",
    # Service
    "AlertService",
    "filter_alerts",
    "sort_alerts",
    "AlertHealthService",
    "AlertPoller",
    "PollCycleStats",
    # Config
    "AlertEngineConfig",
    "ChatConfig",
    "SmtpConfig",
    "WebhookConfig",
    "get_config",
    "set_config",
]
