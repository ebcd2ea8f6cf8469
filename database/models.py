"""
Database - ORM Models.

============================================================
PURPOSE
============================================================
SQLAlchemy ORM models for alert persistence.

TABLES:
- broker_servers: Registered RabbitMQ servers
- seen_alerts: Lifecycle record per fingerprint
- resolved_alerts: Append-only resolution history
- tenant_notification_settings: Email flag, severities, scope
- tenant_alert_thresholds: Per-tenant threshold overrides
- webhook_endpoints: Tenant webhook targets
- chat_webhooks: Tenant chat incoming-webhooks

INVARIANTS:
- One seen_alerts row per (tenant, server, fingerprint)
- seen_alerts and resolved_alerts rows are never deleted

============================================================
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from alerting.models import utc_now

from .engine import Base


def _new_id() -> str:
    return str(uuid.uuid4())


# ============================================================
# BROKER SERVERS
# ============================================================

class BrokerServerModel(Base):
    """A RabbitMQ server registered by a tenant."""

    __tablename__ = "broker_servers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Management API
    host: Mapped[str] = mapped_column(String(255), nullable=False)
    port: Mapped[int] = mapped_column(Integer, default=15672)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    use_tls: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


# ============================================================
# SEEN ALERTS
# ============================================================

class SeenAlertModel(Base):
    """
    Lifecycle record for one fingerprint.

    resolved_at NULL means the condition is active.
    """

    __tablename__ = "seen_alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    server_id: Mapped[str] = mapped_column(String(64), nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(512), nullable=False)

    # Condition
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    source_type: Mapped[str] = mapped_column(String(16), nullable=False)
    source_name: Mapped[str] = mapped_column(String(255), nullable=False)
    vhost: Mapped[Optional[str]] = mapped_column(String(255))

    # Lifecycle
    first_seen_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        UniqueConstraint("tenant_id", "server_id", "fingerprint", name="uq_seen_alerts_fingerprint"),
        Index("ix_seen_alerts_unresolved", "tenant_id", "server_id", "resolved_at"),
    )


# ============================================================
# RESOLVED ALERTS
# ============================================================

class ResolvedAlertModel(Base):
    """Snapshot written when a seen alert resolves."""

    __tablename__ = "resolved_alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    server_id: Mapped[str] = mapped_column(String(64), nullable=False)
    server_name: Mapped[str] = mapped_column(String(255), nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(512), nullable=False, index=True)

    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)

    source_type: Mapped[str] = mapped_column(String(16), nullable=False)
    source_name: Mapped[str] = mapped_column(String(255), nullable=False)
    vhost: Mapped[Optional[str]] = mapped_column(String(255))

    first_seen_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    resolved_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    duration_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        Index("ix_resolved_alerts_server_time", "tenant_id", "server_id", "resolved_at"),
    )


# ============================================================
# TENANT SETTINGS
# ============================================================

class TenantNotificationSettingsModel(Base):
    """
    Notification preferences for one tenant.

    notification_severities NULL means every severity.
    notification_server_ids NULL or [] means every server.
    """

    __tablename__ = "tenant_notification_settings"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_name: Mapped[str] = mapped_column(String(255), default="")
    email_notifications_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    contact_email: Mapped[Optional[str]] = mapped_column(String(255))
    notification_severities: Mapped[Optional[List[str]]] = mapped_column(JSON)
    notification_server_ids: Mapped[Optional[List[str]]] = mapped_column(JSON)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)


class TenantAlertThresholdsModel(Base):
    """Per-tenant threshold overrides. One row per tenant."""

    __tablename__ = "tenant_alert_thresholds"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    memory_warning: Mapped[float] = mapped_column(Float, nullable=False)
    memory_critical: Mapped[float] = mapped_column(Float, nullable=False)
    disk_warning: Mapped[float] = mapped_column(Float, nullable=False)
    disk_critical: Mapped[float] = mapped_column(Float, nullable=False)
    file_descriptors_warning: Mapped[float] = mapped_column(Float, nullable=False)
    file_descriptors_critical: Mapped[float] = mapped_column(Float, nullable=False)
    sockets_warning: Mapped[float] = mapped_column(Float, nullable=False)
    sockets_critical: Mapped[float] = mapped_column(Float, nullable=False)
    processes_warning: Mapped[float] = mapped_column(Float, nullable=False)
    processes_critical: Mapped[float] = mapped_column(Float, nullable=False)
    queue_messages_warning: Mapped[float] = mapped_column(Float, nullable=False)
    queue_messages_critical: Mapped[float] = mapped_column(Float, nullable=False)
    unacked_messages_warning: Mapped[float] = mapped_column(Float, nullable=False)
    unacked_messages_critical: Mapped[float] = mapped_column(Float, nullable=False)
    consumer_utilization_warning: Mapped[float] = mapped_column(Float, nullable=False)
    connections_warning: Mapped[float] = mapped_column(Float, nullable=False)
    connections_critical: Mapped[float] = mapped_column(Float, nullable=False)
    run_queue_warning: Mapped[float] = mapped_column(Float, nullable=False)
    run_queue_critical: Mapped[float] = mapped_column(Float, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)


# ============================================================
# CHANNEL TARGETS
# ============================================================

class WebhookEndpointModel(Base):
    """Tenant webhook endpoint."""

    __tablename__ = "webhook_endpoints"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    secret: Mapped[Optional[str]] = mapped_column(String(255))
    version: Mapped[str] = mapped_column(String(8), default="v1")
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class ChatWebhookModel(Base):
    """Tenant chat incoming-webhook."""

    __tablename__ = "chat_webhooks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    webhook_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
