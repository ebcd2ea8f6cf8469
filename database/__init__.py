"""
Database Package Initialization.

============================================================
ALERT PERSISTENCE LAYER
============================================================

Async SQLAlchemy persistence for the alert engine:
broker servers, seen/resolved alerts, tenant thresholds and
notification settings.

REQUIRED:
- Every failure raises
- All transactions are explicit with commit/rollback
- Enum and JSON conversions happen here, not in the engine

============================================================
"""

# Core engine and session management
from .engine import (
    Base,
    check_connection,
    create_database_engine,
    create_session_factory,
    init_db,
    transaction_scope,
)

# ORM models
from .models import (
    BrokerServerModel,
    ChatWebhookModel,
    ResolvedAlertModel,
    SeenAlertModel,
    TenantAlertThresholdsModel,
    TenantNotificationSettingsModel,
    WebhookEndpointModel,
)

# Repositories
from .repository import (
    NotificationSettingsRepository,
    ResolvedAlertRepository,
    SeenAlertRepository,
    ServerRepository,
    ThresholdRepository,
)


__all__ = [
    # Engine
    "Base",
    "check_connection",
    "create_database_engine",
    "create_session_factory",
    "init_db",
    "transaction_scope",
    # Models
    "BrokerServerModel",
    "ChatWebhookModel",
    "ResolvedAlertModel",
    "SeenAlertModel",
    "TenantAlertThresholdsModel",
    "TenantNotificationSettingsModel",
    "WebhookEndpointModel",
    # Repositories
    "NotificationSettingsRepository",
    "ResolvedAlertRepository",
    "SeenAlertRepository",
    "ServerRepository",
    "ThresholdRepository",
]
