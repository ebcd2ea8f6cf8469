"""
Alerting - Alert Lifecycle Tracker.

============================================================
PURPOSE
============================================================
Decide, for every condition detected in a pass, whether a human
has already been told about it, whether it went away, and
whether it is due for a reminder.

STATE MACHINE (per fingerprint):
    UNSEEN   -> ACTIVE    first detection, notify
    ACTIVE   -> ACTIVE    refresh, notify only after cooldown
    ACTIVE   -> RESOLVED  absent from a pass, history written
    RESOLVED -> ACTIVE    reactivation, notify immediately

PRINCIPLES:
- Tracking is unconditional. Only the notify decision is
  severity-gated.
- The cooldown reference is last_notified_at, falling back to
  first_seen_at so a condition whose notification never got
  through is not silenced forever.
- Storage failures are logged per fingerprint. The pass goes on.

============================================================
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, List, Optional, Set

from .fingerprint import AlertFingerprint
from .interfaces import ResolvedAlertStore, SeenAlertStore
from .models import (
    ALL_SEVERITIES,
    SEVERITY_ORDER,
    Alert,
    AlertCategory,
    AlertSeverity,
    ResolvedAlertRecord,
    SeenAlertRecord,
    SourceType,
    utc_now,
)


logger = logging.getLogger(__name__)


COOLDOWN_PERIOD = timedelta(days=7)


_RESOLVED_TITLES = {
    AlertCategory.MEMORY: ("High Memory Usage", "Memory issue detected on {kind} {name}"),
    AlertCategory.DISK: ("Low Disk Space", "Disk space issue detected on {kind} {name}"),
    AlertCategory.CONNECTION: ("Connection Issue", "Connection issue detected on {kind} {name}"),
    AlertCategory.QUEUE: ("Queue Issue", "Queue issue detected on {kind} {name}"),
    AlertCategory.NODE: ("Node Issue", "Node issue detected on {kind} {name}"),
    AlertCategory.PERFORMANCE: ("Performance Issue", "Performance issue detected on {kind} {name}"),
}


@dataclass
class TrackingOutcome:
    """What one tracking pass did."""

    active_fingerprints: Set[str] = field(default_factory=set)
    created: List[str] = field(default_factory=list)
    reactivated: List[str] = field(default_factory=list)
    refreshed: List[str] = field(default_factory=list)
    resolved: List[ResolvedAlertRecord] = field(default_factory=list)
    notifiable: List[Alert] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def _group_by_fingerprint(alerts: List[Alert]) -> "OrderedDict[str, List[Alert]]":
    groups: "OrderedDict[str, List[Alert]]" = OrderedDict()
    for alert in alerts:
        groups.setdefault(alert.fingerprint, []).append(alert)
    return groups


def _highest_severity(alerts: List[Alert]) -> AlertSeverity:
    return max((a.severity for a in alerts), key=lambda s: SEVERITY_ORDER[s])


def build_resolved_record(
    seen: SeenAlertRecord,
    server_name: str,
    resolved_at: datetime,
) -> ResolvedAlertRecord:
    """History snapshot for a fingerprint that just resolved."""
    title, description = _RESOLVED_TITLES[seen.category]
    duration = resolved_at - seen.first_seen_at
    return ResolvedAlertRecord(
        tenant_id=seen.tenant_id,
        server_id=seen.server_id,
        server_name=server_name,
        fingerprint=seen.fingerprint,
        severity=seen.severity,
        category=seen.category,
        title=title,
        description=description.format(kind=seen.source_type.value, name=seen.source_name),
        source_type=seen.source_type,
        source_name=seen.source_name,
        first_seen_at=seen.first_seen_at,
        resolved_at=resolved_at,
        duration_ms=int(duration.total_seconds() * 1000),
        vhost=seen.vhost,
        details={
            "sourceType": seen.source_type.value,
            "sourceName": seen.source_name,
            "category": seen.category.value,
        },
    )


class AlertLifecycleTracker:
    """
    Persists the lifecycle of every fingerprint for one tenant+server.

    Stateless between calls; the stores are the only state.
    """

    def __init__(
        self,
        seen_store: SeenAlertStore,
        resolved_store: ResolvedAlertStore,
        cooldown: timedelta = COOLDOWN_PERIOD,
    ):
        """
        Args:
            seen_store: SeenAlertStore
            resolved_store: ResolvedAlertStore
            cooldown: Minimum time between reminders for an active condition
        """
        self._seen_store = seen_store
        self._resolved_store = resolved_store
        self._cooldown = cooldown

    # --------------------------------------------------------
    # NOTIFY DECISION
    # --------------------------------------------------------

    def should_notify(
        self,
        existing: Optional[SeenAlertRecord],
        severity: AlertSeverity,
        allowed: FrozenSet[AlertSeverity],
        now: datetime,
    ) -> bool:
        """
        Notify decision for one fingerprint.

        Args:
            existing: Record as it was BEFORE this pass, None when unseen
            severity: Severity of the current alert
            allowed: Tenant severity allow-list
            now: Pass time
        """
        if severity not in allowed:
            return False
        if existing is None:
            return True
        if existing.resolved_at is not None:
            return True
        reference = existing.last_notified_at or existing.first_seen_at
        return now - reference > self._cooldown

    # --------------------------------------------------------
    # TRACKING PASS
    # --------------------------------------------------------

    async def track(
        self,
        alerts: List[Alert],
        tenant_id: str,
        server_id: str,
        server_name: str,
        allowed_severities: FrozenSet[AlertSeverity] = ALL_SEVERITIES,
        vhost: Optional[str] = None,
        resolvable_sources: Optional[FrozenSet[SourceType]] = None,
        now: Optional[datetime] = None,
    ) -> TrackingOutcome:
        """
        Run one lifecycle pass.

        Args:
            alerts: Every alert detected this pass for the server
            tenant_id: Tenant id
            server_id: Broker server id
            server_name: Server display name for history records
            allowed_severities: Tenant severity allow-list
            vhost: When set, only queue fingerprints of this vhost may resolve
            resolvable_sources: Source types whose metrics were actually read
                this pass; others are never resolved. None means all.
            now: Clock override

        Returns:
            TrackingOutcome
        """
        now = now or utc_now()
        outcome = TrackingOutcome()

        try:
            existing = {
                record.fingerprint: record
                for record in await self._seen_store.find_for_server(tenant_id, server_id)
            }
        except Exception as e:
            logger.error(f"Failed to load seen alerts for server {server_id}: {e}")
            return outcome

        for fingerprint, group in _group_by_fingerprint(alerts).items():
            outcome.active_fingerprints.add(fingerprint)
            record = existing.get(fingerprint)
            severity = _highest_severity(group)

            try:
                await self._upsert(record, group[0], fingerprint, severity, tenant_id, now)
            except Exception as e:
                logger.error(f"Failed to track alert {fingerprint}: {e}")
                outcome.failed.append(fingerprint)
                continue

            if record is None:
                outcome.created.append(fingerprint)
            elif record.resolved_at is not None:
                outcome.reactivated.append(fingerprint)
            else:
                outcome.refreshed.append(fingerprint)

            for alert in group:
                if self.should_notify(record, alert.severity, allowed_severities, now):
                    outcome.notifiable.append(alert)

        outcome.resolved = await self._resolve_missing(
            tenant_id,
            server_id,
            server_name,
            outcome.active_fingerprints,
            vhost,
            resolvable_sources,
            now,
        )

        logger.debug(
            f"Tracked server {server_id}: {len(outcome.created)} new, "
            f"{len(outcome.reactivated)} reactivated, {len(outcome.refreshed)} active, "
            f"{len(outcome.resolved)} resolved, {len(outcome.notifiable)} to notify"
        )
        return outcome

    async def _upsert(
        self,
        record: Optional[SeenAlertRecord],
        alert: Alert,
        fingerprint: str,
        severity: AlertSeverity,
        tenant_id: str,
        now: datetime,
    ) -> None:
        if record is None:
            await self._seen_store.create(SeenAlertRecord(
                tenant_id=tenant_id,
                server_id=alert.server_id,
                fingerprint=fingerprint,
                severity=severity,
                category=alert.category,
                source_type=alert.source.type,
                source_name=alert.source.name,
                vhost=alert.vhost,
                first_seen_at=now,
                last_seen_at=now,
            ))
            return

        await self._seen_store.update_many_by_fingerprint(
            tenant_id,
            alert.server_id,
            [fingerprint],
            last_seen_at=now,
            resolved_at=None,
            severity=severity,
        )

    async def _resolve_missing(
        self,
        tenant_id: str,
        server_id: str,
        server_name: str,
        active: Set[str],
        vhost: Optional[str],
        resolvable_sources: Optional[FrozenSet[SourceType]],
        now: datetime,
    ) -> List[ResolvedAlertRecord]:
        try:
            unresolved = await self._seen_store.find_unresolved(tenant_id, server_id)
        except Exception as e:
            logger.error(f"Failed to load unresolved alerts for server {server_id}: {e}")
            return []

        resolved: List[ResolvedAlertRecord] = []
        for seen in unresolved:
            if seen.fingerprint in active:
                continue
            if resolvable_sources is not None and seen.source_type not in resolvable_sources:
                continue
            typed = AlertFingerprint(
                server_id=seen.server_id,
                category=seen.category,
                source_type=seen.source_type,
                source_name=seen.source_name,
                vhost=seen.vhost,
            )
            if not typed.in_vhost_scope(vhost):
                continue

            try:
                await self._seen_store.update_many_by_fingerprint(
                    tenant_id,
                    server_id,
                    [seen.fingerprint],
                    resolved_at=now,
                )
            except Exception as e:
                logger.error(f"Failed to resolve alert {seen.fingerprint}: {e}")
                continue

            history = build_resolved_record(seen, server_name, now)
            try:
                history = await self._resolved_store.create(history)
                logger.debug(f"Saved resolved alert {seen.fingerprint}")
            except Exception as e:
                logger.error(f"Failed to save resolved alert {seen.fingerprint}: {e}")
            resolved.append(history)

        return resolved
