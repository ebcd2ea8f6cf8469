"""
Alerting - Alert Service.

============================================================
PURPOSE
============================================================
Orchestrates one analysis pass for one tenant's server:

    metric source -> analyzer -> tracker -> dispatch

and the read-side queries built on top of it (filtering,
resolved history, live watch, thresholds).

FAILURE POLICY:
- Node and queue fetches fail independently. A failed source
  contributes no alerts and none of its fingerprints resolve.
- When BOTH fetches fail because the broker is unreachable,
  the pass raises MetricSourceUnavailableError so callers can
  tell "cannot connect" from "nothing wrong". Tracking does not
  run in that case.
- Tracking and notification never raise.

============================================================
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, AsyncIterator, Dict, FrozenSet, List, Mapping, Optional, Tuple

from .analyzer import analyze_node_health, analyze_queue_health
from .dispatch import DispatchCoordinator, DispatchReport
from .exceptions import MetricSourceUnavailableError
from .interfaces import MetricSourceFactory, NotificationSettingsStore, ResolvedAlertStore
from .models import (
    CLUSTER_WIDE_SOURCES,
    SEVERITY_ORDER,
    Alert,
    AlertCategory,
    AlertSeverity,
    AlertSummary,
    ResolvedAlertRecord,
    ServerAlertsResult,
    SourceType,
    utc_now,
)
from .thresholds import MetricThresholds, ThresholdProvider
from .tracker import AlertLifecycleTracker, TrackingOutcome


logger = logging.getLogger(__name__)


DEFAULT_WATCH_INTERVAL = 10.0


# ============================================================
# SORTING / FILTERING
# ============================================================

def sort_alerts(alerts: List[Alert]) -> List[Alert]:
    """Severity (critical first), then newest first."""
    return sorted(
        alerts,
        key=lambda a: (-SEVERITY_ORDER[a.severity], -a.timestamp.timestamp()),
    )


def filter_alerts(
    alerts: List[Alert],
    severity: Optional[AlertSeverity] = None,
    category: Optional[AlertCategory] = None,
    resolved: Optional[bool] = None,
    offset: int = 0,
    limit: Optional[int] = None,
) -> Tuple[List[Alert], int]:
    """
    Filter and paginate an already sorted alert list.

    Returns:
        (page, total matching before pagination)
    """
    filtered = [
        a for a in alerts
        if (severity is None or a.severity == severity)
        and (category is None or a.category == category)
        and (resolved is None or a.resolved == resolved)
    ]
    total = len(filtered)
    if limit is None:
        return filtered[offset:], total
    return filtered[offset:offset + limit], total


# ============================================================
# SERVICE
# ============================================================

class AlertService:
    """Alert passes and alert queries for every tenant."""

    def __init__(
        self,
        source_factory: MetricSourceFactory,
        threshold_provider: ThresholdProvider,
        tracker: AlertLifecycleTracker,
        dispatcher: DispatchCoordinator,
        settings_store: NotificationSettingsStore,
        resolved_store: ResolvedAlertStore,
        watch_interval: float = DEFAULT_WATCH_INTERVAL,
    ):
        """
        Args:
            source_factory: MetricSourceFactory
            threshold_provider: Threshold lookup
            tracker: Lifecycle tracker
            dispatcher: Channel fan-out
            settings_store: NotificationSettingsStore
            resolved_store: ResolvedAlertStore
            watch_interval: Seconds between watch iterations
        """
        self._source_factory = source_factory
        self._thresholds = threshold_provider
        self._tracker = tracker
        self._dispatcher = dispatcher
        self._settings_store = settings_store
        self._resolved_store = resolved_store
        self._watch_interval = watch_interval

    # --------------------------------------------------------
    # ANALYSIS PASS
    # --------------------------------------------------------

    async def get_server_alerts(
        self,
        tenant_id: str,
        server_id: str,
        server_name: str,
        vhost: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServerAlertsResult:
        """
        Run one analysis pass and return the current alerts.

        Args:
            tenant_id: Tenant id
            server_id: Broker server id
            server_name: Server display name
            vhost: Limit queue analysis and resolution to one vhost
            now: Clock override

        Raises:
            ServerNotFoundError: server not registered for the tenant
            MetricSourceUnavailableError: broker unreachable for every source
        """
        now = now or utc_now()
        alerts, resolvable = await self.analyze_server(tenant_id, server_id, server_name, vhost, now)

        await self.track_and_notify(
            alerts,
            tenant_id,
            server_id,
            server_name,
            vhost=vhost,
            resolvable_sources=resolvable,
            now=now,
        )

        return ServerAlertsResult(alerts=alerts, summary=AlertSummary.from_alerts(alerts))

    async def analyze_server(
        self,
        tenant_id: str,
        server_id: str,
        server_name: str,
        vhost: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[List[Alert], FrozenSet[SourceType]]:
        """
        Fetch metrics and evaluate them. No tracking, no notifications.

        Returns:
            (sorted alerts, source types whose metrics were read)

        Raises:
            ServerNotFoundError: server not registered for the tenant
            MetricSourceUnavailableError: broker unreachable for every source
        """
        now = now or utc_now()
        source = await self._source_factory.for_server(tenant_id, server_id)
        thresholds = await self._thresholds.get_thresholds(tenant_id)

        node_result, queue_result = await asyncio.gather(
            source.get_nodes(),
            source.get_queues(vhost),
            return_exceptions=True,
        )
        nodes = self._source_result(node_result, "nodes", server_id)
        queues = self._source_result(queue_result, "queues", server_id)

        if (
            isinstance(node_result, MetricSourceUnavailableError)
            and isinstance(queue_result, MetricSourceUnavailableError)
        ):
            raise node_result

        alerts: List[Alert] = []
        for node in nodes or []:
            alerts.extend(analyze_node_health(node, server_id, server_name, thresholds, now))
        for queue in queues or []:
            alerts.extend(analyze_queue_health(queue, server_id, server_name, thresholds, now))
        alerts = sort_alerts(alerts)

        resolvable = set()
        if nodes is not None:
            resolvable.update(CLUSTER_WIDE_SOURCES)
        if queues is not None:
            resolvable.add(SourceType.QUEUE)

        return alerts, frozenset(resolvable)

    @staticmethod
    def _source_result(result: Any, kind: str, server_id: str) -> Optional[list]:
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            logger.warning(f"Failed to fetch {kind} for server {server_id}: {result}")
            return None
        return result

    async def track_and_notify(
        self,
        alerts: List[Alert],
        tenant_id: str,
        server_id: str,
        server_name: str,
        vhost: Optional[str] = None,
        resolvable_sources: Optional[FrozenSet[SourceType]] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Tuple[TrackingOutcome, DispatchReport]]:
        """
        Track lifecycles and notify. Never raises.

        Returns:
            (tracking outcome, dispatch report), or None when tracking
            could not run
        """
        now = now or utc_now()
        try:
            preferences = await self._settings_store.get_preferences(tenant_id)
            if preferences is None:
                logger.warning(f"No notification settings for tenant {tenant_id}, skipping alert tracking")
                return None

            outcome = await self._tracker.track(
                alerts,
                tenant_id,
                server_id,
                server_name,
                allowed_severities=preferences.severities,
                vhost=vhost,
                resolvable_sources=resolvable_sources,
                now=now,
            )
            report = await self._dispatcher.dispatch(
                outcome.notifiable,
                preferences,
                server_id,
                server_name,
                now=now,
            )
            return outcome, report
        except Exception as e:
            logger.error(f"Alert tracking failed for server {server_id}: {e}")
            return None

    # --------------------------------------------------------
    # QUERIES
    # --------------------------------------------------------

    async def get_resolved_alerts(
        self,
        tenant_id: str,
        server_id: str,
        limit: int = 50,
        offset: int = 0,
        severity: Optional[AlertSeverity] = None,
        category: Optional[AlertCategory] = None,
        vhost: Optional[str] = None,
    ) -> Tuple[List[ResolvedAlertRecord], int]:
        """
        Resolved history, newest first.

        With a vhost, queue alerts of that vhost plus every node and
        cluster alert are returned.
        """
        return await self._resolved_store.find_for_server(
            tenant_id,
            server_id,
            limit=limit,
            offset=offset,
            severity=severity,
            category=category,
            vhost=vhost,
        )

    async def watch_alerts(
        self,
        tenant_id: str,
        server_id: str,
        server_name: str,
        stop_event: asyncio.Event,
        vhost: Optional[str] = None,
        severity: Optional[AlertSeverity] = None,
        category: Optional[AlertCategory] = None,
        resolved: Optional[bool] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        interval: Optional[float] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield a fresh alert listing every interval until stop_event is set.

        Fetch errors are logged and the loop waits for the next tick.
        """
        interval = self._watch_interval if interval is None else interval

        while not stop_event.is_set():
            try:
                result = await self.get_server_alerts(tenant_id, server_id, server_name, vhost)
                thresholds = await self.get_thresholds(tenant_id)
                page, total = filter_alerts(
                    result.alerts, severity, category, resolved, offset, limit
                )
                yield {
                    "success": True,
                    "alerts": [a.to_dict() for a in page],
                    "summary": result.summary.to_dict(),
                    "thresholds": thresholds.to_dict(),
                    "total": total,
                    "timestamp": utc_now().isoformat(),
                }
            except Exception as e:
                logger.warning(f"Watch alerts fetch error for server {server_id}: {e}")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    # --------------------------------------------------------
    # THRESHOLDS
    # --------------------------------------------------------

    async def get_thresholds(self, tenant_id: str) -> MetricThresholds:
        return await self._thresholds.get_thresholds(tenant_id)

    def get_default_thresholds(self) -> MetricThresholds:
        return self._thresholds.get_default_thresholds()

    async def update_thresholds(
        self,
        tenant_id: str,
        partial: Mapping[str, Mapping[str, Any]],
    ) -> MetricThresholds:
        """
        Raises:
            ThresholdValidationError: invalid merged thresholds
        """
        return await self._thresholds.update_thresholds(tenant_id, partial)
