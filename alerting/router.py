"""
FastAPI Router for Alert Endpoints.

Provides REST API for broker alerts:
- Current alerts (one analysis pass per request)
- Live alert stream (server-sent events)
- Resolved alert history
- Health summaries
- Thresholds and notification settings

The tenant is identified by the X-Tenant-Id header.
"""

import asyncio
import json
from contextlib import aclosing
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from .exceptions import (
    AlertStorageError,
    MetricSourceError,
    MetricSourceUnavailableError,
    ServerNotFoundError,
    ThresholdValidationError,
)
from .health import AlertHealthService
from .models import AlertCategory, AlertSeverity, BrokerServer, ServerScope, utc_now
from .schemas import (
    AlertSchema,
    AlertSummarySchema,
    NotificationSettingsSchema,
    ResolvedAlertSchema,
    ResolvedAlertsResponse,
    ServerAlertsResponse,
    ThresholdsResponse,
    ThresholdsSchema,
    UpdateNotificationSettingsRequest,
    UpdateThresholdsRequest,
)
from .service import AlertService, filter_alerts

router = APIRouter(tags=["Alerts"])


@dataclass
class AlertingContext:
    """Engine objects the endpoints need, stored on app.state.alerting."""

    service: AlertService
    health_service: AlertHealthService
    server_store: object
    settings_store: object


# =============================================================
# HELPER: Dependencies
# =============================================================

def get_context(request: Request) -> AlertingContext:
    return request.app.state.alerting


def get_tenant_id(x_tenant_id: str = Header(..., alias="X-Tenant-Id")) -> str:
    return x_tenant_id


async def get_server(
    server_id: str,
    tenant_id: str = Depends(get_tenant_id),
    context: AlertingContext = Depends(get_context),
) -> BrokerServer:
    server = await context.server_store.get_server(tenant_id, server_id)
    if server is None:
        raise HTTPException(status_code=404, detail="Server not found or access denied")
    return server


def _source_error(e: Exception) -> HTTPException:
    if isinstance(e, ServerNotFoundError):
        return HTTPException(status_code=404, detail="Server not found or access denied")
    if isinstance(e, MetricSourceUnavailableError):
        return HTTPException(status_code=503, detail=f"Cannot connect to RabbitMQ server: {e.message}")
    return HTTPException(status_code=502, detail=f"RabbitMQ management API error: {e}")


# =============================================================
# ALERT ENDPOINTS
# =============================================================

@router.get("/servers/{server_id}/alerts", response_model=ServerAlertsResponse)
async def get_server_alerts(
    vhost: Optional[str] = Query(None, description="Limit queue alerts to one vhost"),
    severity: Optional[AlertSeverity] = Query(None),
    category: Optional[AlertCategory] = Query(None),
    resolved: Optional[bool] = Query(None),
    offset: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    server: BrokerServer = Depends(get_server),
    context: AlertingContext = Depends(get_context),
):
    """
    Run an analysis pass and return current alerts.

    Alerts are sorted by severity, then newest first. The summary
    counts every alert, before filtering.
    """
    try:
        result = await context.service.get_server_alerts(
            server.tenant_id, server.id, server.name, vhost
        )
    except (ServerNotFoundError, MetricSourceError) as e:
        raise _source_error(e)

    thresholds = await context.service.get_thresholds(server.tenant_id)
    page, total = filter_alerts(result.alerts, severity, category, resolved, offset, limit)

    return ServerAlertsResponse(
        alerts=[AlertSchema.model_validate(a.to_dict()) for a in page],
        summary=AlertSummarySchema.model_validate(result.summary.to_dict()),
        thresholds=ThresholdsSchema.model_validate(thresholds.to_dict()),
        total=total,
        timestamp=utc_now(),
    )


@router.get("/servers/{server_id}/alerts/resolved", response_model=ResolvedAlertsResponse)
async def get_resolved_alerts(
    vhost: Optional[str] = Query(None),
    severity: Optional[AlertSeverity] = Query(None),
    category: Optional[AlertCategory] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    server: BrokerServer = Depends(get_server),
    context: AlertingContext = Depends(get_context),
):
    """Resolved alert history, newest first."""
    records, total = await context.service.get_resolved_alerts(
        server.tenant_id,
        server.id,
        limit=limit,
        offset=offset,
        severity=severity,
        category=category,
        vhost=vhost,
    )
    return ResolvedAlertsResponse(
        alerts=[ResolvedAlertSchema.model_validate(r.to_dict()) for r in records],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/servers/{server_id}/alerts/watch")
async def watch_alerts(
    request: Request,
    vhost: Optional[str] = Query(None),
    severity: Optional[AlertSeverity] = Query(None),
    category: Optional[AlertCategory] = Query(None),
    resolved: Optional[bool] = Query(None),
    offset: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    server: BrokerServer = Depends(get_server),
    context: AlertingContext = Depends(get_context),
):
    """Live alert listing as server-sent events until the client disconnects."""
    stop_event = asyncio.Event()

    async def event_stream():
        stream = context.service.watch_alerts(
            server.tenant_id,
            server.id,
            server.name,
            stop_event,
            vhost=vhost,
            severity=severity,
            category=category,
            resolved=resolved,
            offset=offset,
            limit=limit,
        )
        try:
            async with aclosing(stream) as updates:
                async for payload in updates:
                    if await request.is_disconnected():
                        break
                    yield f"data: {json.dumps(payload, default=str)}\n\n"
        finally:
            stop_event.set()

    return StreamingResponse(event_stream(), media_type="text/event-stream")


# =============================================================
# HEALTH ENDPOINTS
# =============================================================

@router.get("/servers/{server_id}/health")
async def get_health_check(
    server: BrokerServer = Depends(get_server),
    context: AlertingContext = Depends(get_context),
):
    """Connectivity, nodes, memory, disk and queue checks."""
    try:
        health = await context.health_service.get_health_check(server.tenant_id, server.id)
    except ServerNotFoundError as e:
        raise _source_error(e)
    return health.to_dict()


@router.get("/servers/{server_id}/health/cluster")
async def get_cluster_health(
    server: BrokerServer = Depends(get_server),
    context: AlertingContext = Depends(get_context),
):
    """Overall cluster state with the first few issues."""
    try:
        summary = await context.health_service.get_cluster_health_summary(server.tenant_id, server.id)
    except ServerNotFoundError as e:
        raise _source_error(e)
    return summary.to_dict()


# =============================================================
# THRESHOLD ENDPOINTS
# =============================================================

@router.get("/thresholds", response_model=ThresholdsResponse)
async def get_thresholds(
    tenant_id: str = Depends(get_tenant_id),
    context: AlertingContext = Depends(get_context),
):
    """Tenant thresholds with the built-in defaults for comparison."""
    thresholds = await context.service.get_thresholds(tenant_id)
    return ThresholdsResponse(
        thresholds=ThresholdsSchema.model_validate(thresholds.to_dict()),
        defaults=ThresholdsSchema.model_validate(context.service.get_default_thresholds().to_dict()),
    )


@router.put("/thresholds", response_model=ThresholdsResponse)
async def update_thresholds(
    request_body: UpdateThresholdsRequest,
    tenant_id: str = Depends(get_tenant_id),
    context: AlertingContext = Depends(get_context),
):
    """Partially update tenant thresholds."""
    try:
        thresholds = await context.service.update_thresholds(tenant_id, request_body.to_partial())
    except ThresholdValidationError as e:
        raise HTTPException(status_code=400, detail={"message": e.message, "violations": e.violations})
    except AlertStorageError as e:
        raise HTTPException(status_code=503, detail=f"Thresholds are temporarily unavailable: {e.message}")

    return ThresholdsResponse(
        thresholds=ThresholdsSchema.model_validate(thresholds.to_dict()),
        defaults=ThresholdsSchema.model_validate(context.service.get_default_thresholds().to_dict()),
    )


# =============================================================
# NOTIFICATION SETTINGS ENDPOINTS
# =============================================================

@router.get("/notification-settings", response_model=NotificationSettingsSchema)
async def get_notification_settings(
    tenant_id: str = Depends(get_tenant_id),
    context: AlertingContext = Depends(get_context),
):
    preferences = await context.settings_store.get_preferences(tenant_id)
    if preferences is None:
        raise HTTPException(status_code=404, detail=f"Tenant {tenant_id} not found")
    return NotificationSettingsSchema.model_validate(preferences.to_dict())


@router.put("/notification-settings", response_model=NotificationSettingsSchema)
async def update_notification_settings(
    request_body: UpdateNotificationSettingsRequest,
    tenant_id: str = Depends(get_tenant_id),
    context: AlertingContext = Depends(get_context),
):
    """Update notification preferences. An empty server list means all servers."""
    server_scope = None
    if request_body.notification_server_ids is not None:
        server_scope = ServerScope.from_stored(request_body.notification_server_ids)

    severities = None
    if request_body.notification_severities is not None:
        severities = frozenset(request_body.notification_severities)

    preferences = await context.settings_store.update_preferences(
        tenant_id,
        email_enabled=request_body.email_notifications_enabled,
        contact_email=request_body.contact_email,
        severities=severities,
        server_scope=server_scope,
    )
    return NotificationSettingsSchema.model_validate(preferences.to_dict())
