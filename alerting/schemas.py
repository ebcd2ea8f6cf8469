"""
Pydantic Schemas for the Alerts API.

Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .models import AlertCategory, AlertSeverity


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================
# ALERTS
# =============================================================

class AlertSourceSchema(ApiModel):
    type: str
    name: str


class AlertDetailsSchema(ApiModel):
    current: Any = None
    threshold: Optional[float] = None
    recommended: str = ""
    affected: List[str] = Field(default_factory=list)


class AlertSchema(ApiModel):
    """One current alert."""
    id: str
    fingerprint: str
    server_id: str
    server_name: str
    severity: AlertSeverity
    category: AlertCategory
    title: str
    description: str
    details: AlertDetailsSchema
    timestamp: datetime
    resolved: bool = False
    source: AlertSourceSchema
    vhost: Optional[str] = None


class AlertSummarySchema(ApiModel):
    total: int = 0
    critical: int = 0
    warning: int = 0
    info: int = 0


# =============================================================
# THRESHOLDS
# =============================================================

class ThresholdPairSchema(ApiModel):
    warning: float
    critical: Optional[float] = None


class ThresholdsSchema(ApiModel):
    """Full threshold set."""
    memory: ThresholdPairSchema
    disk: ThresholdPairSchema
    file_descriptors: ThresholdPairSchema
    sockets: ThresholdPairSchema
    processes: ThresholdPairSchema
    queue_messages: ThresholdPairSchema
    unacked_messages: ThresholdPairSchema
    consumer_utilization: ThresholdPairSchema
    connections: ThresholdPairSchema
    run_queue: ThresholdPairSchema


class ThresholdPairUpdate(ApiModel):
    warning: Optional[float] = Field(None, ge=0)
    critical: Optional[float] = Field(None, ge=0)


class UpdateThresholdsRequest(ApiModel):
    """Partial threshold update; omitted metrics keep their values."""
    memory: Optional[ThresholdPairUpdate] = None
    disk: Optional[ThresholdPairUpdate] = None
    file_descriptors: Optional[ThresholdPairUpdate] = None
    sockets: Optional[ThresholdPairUpdate] = None
    processes: Optional[ThresholdPairUpdate] = None
    queue_messages: Optional[ThresholdPairUpdate] = None
    unacked_messages: Optional[ThresholdPairUpdate] = None
    consumer_utilization: Optional[ThresholdPairUpdate] = None
    connections: Optional[ThresholdPairUpdate] = None
    run_queue: Optional[ThresholdPairUpdate] = None

    def to_partial(self) -> Dict[str, Dict[str, float]]:
        """Nested {metric: {level: value}} of the fields actually sent."""
        return {
            name: pair.model_dump(exclude_none=True)
            for name, pair in self
            if pair is not None
        }


class ThresholdsResponse(ApiModel):
    success: bool = True
    thresholds: ThresholdsSchema
    defaults: ThresholdsSchema


# =============================================================
# RESPONSES
# =============================================================

class ServerAlertsResponse(ApiModel):
    """Current alerts for one server."""
    success: bool = True
    alerts: List[AlertSchema]
    summary: AlertSummarySchema
    thresholds: ThresholdsSchema
    total: int
    timestamp: datetime


class ResolvedAlertSchema(ApiModel):
    """One resolved alert from history."""
    id: Optional[int] = None
    server_id: str
    server_name: str
    severity: AlertSeverity
    category: AlertCategory
    title: str
    description: str
    details: Dict[str, Any] = Field(default_factory=dict)
    source: AlertSourceSchema
    vhost: Optional[str] = None
    first_seen_at: datetime
    resolved_at: datetime
    duration: int


class ResolvedAlertsResponse(ApiModel):
    success: bool = True
    alerts: List[ResolvedAlertSchema]
    total: int
    limit: int
    offset: int


# =============================================================
# NOTIFICATION SETTINGS
# =============================================================

class NotificationSettingsSchema(ApiModel):
    tenant_id: str
    tenant_name: str = ""
    email_notifications_enabled: bool
    contact_email: Optional[str] = None
    notification_severities: List[AlertSeverity]
    notification_server_ids: Optional[List[str]] = None
    webhook_configured: bool = False
    chat_configured: bool = False


class UpdateNotificationSettingsRequest(ApiModel):
    """Omitted fields keep their values. An empty server id list means all servers."""
    email_notifications_enabled: Optional[bool] = None
    contact_email: Optional[str] = None
    notification_severities: Optional[List[AlertSeverity]] = None
    notification_server_ids: Optional[List[str]] = None
