"""
Alerting - Health Summaries.

============================================================
PURPOSE
============================================================
Coarse health views of a broker server, cheaper to read than
a full alert listing and free of lifecycle side effects.

HEALTH STATES
- HEALTHY: nothing above warning
- DEGRADED: at least one warning
- CRITICAL: at least one critical condition or unreachable

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .interfaces import MetricSourceFactory
from .models import utc_now
from .thresholds import ThresholdProvider


logger = logging.getLogger(__name__)


MAX_SUMMARY_ISSUES = 5


class HealthState(str, Enum):
    """Overall health."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


class CheckStatus(str, Enum):
    """Status of one health check."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


def _worsen(current: HealthState, status: CheckStatus) -> HealthState:
    if status == CheckStatus.CRITICAL:
        return HealthState.CRITICAL
    if status == CheckStatus.WARNING and current == HealthState.HEALTHY:
        return HealthState.DEGRADED
    return current


@dataclass
class ClusterHealthSummary:
    """Issue counts and the first few issue lines."""

    cluster_health: HealthState
    critical: int
    warning: int
    issues: List[str]
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clusterHealth": self.cluster_health.value,
            "summary": {
                "critical": self.critical,
                "warning": self.warning,
                "total": self.critical + self.warning,
                "info": 0,
            },
            "issues": self.issues[:MAX_SUMMARY_ISSUES],
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class HealthCheckItem:
    """One named check."""

    status: CheckStatus = CheckStatus.HEALTHY
    message: str = ""
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"status": self.status.value, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data


@dataclass
class HealthCheck:
    """Connectivity, nodes, memory, disk and queue checks."""

    overall: HealthState = HealthState.HEALTHY
    checks: Dict[str, HealthCheckItem] = field(default_factory=lambda: {
        name: HealthCheckItem() for name in ("connectivity", "nodes", "memory", "disk", "queues")
    })
    timestamp: datetime = field(default_factory=utc_now)

    def set(self, name: str, status: CheckStatus, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.checks[name] = HealthCheckItem(status, message, details)
        self.overall = _worsen(self.overall, status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall": self.overall.value,
            "checks": {name: item.to_dict() for name, item in self.checks.items()},
            "timestamp": self.timestamp.isoformat(),
        }


class AlertHealthService:
    """Health summaries for a tenant's server."""

    def __init__(self, source_factory: MetricSourceFactory, threshold_provider: ThresholdProvider):
        self._source_factory = source_factory
        self._thresholds = threshold_provider

    async def get_cluster_health_summary(self, tenant_id: str, server_id: str) -> ClusterHealthSummary:
        """
        Node alarms, memory and queue backlogs rolled into one state.

        An unreachable node listing counts as one critical issue.
        A failed queue listing is only logged.
        """
        source = await self._source_factory.for_server(tenant_id, server_id)
        thresholds = await self._thresholds.get_thresholds(tenant_id)

        state = HealthState.HEALTHY
        critical = 0
        warning = 0
        issues: List[str] = []

        def add(status: CheckStatus, issue: str) -> None:
            nonlocal state, critical, warning
            if status == CheckStatus.CRITICAL:
                critical += 1
            else:
                warning += 1
            issues.append(issue)
            state = _worsen(state, status)

        try:
            nodes = await source.get_nodes()
        except Exception as e:
            logger.warning(f"Failed to get nodes for cluster health summary: {e}")
            add(CheckStatus.CRITICAL, "Failed to connect to cluster nodes")
            nodes = []

        for node in nodes:
            if not node.running:
                add(CheckStatus.CRITICAL, f"Node {node.name} is down")
            if node.mem_alarm:
                add(CheckStatus.CRITICAL, f"Memory alarm on {node.name}")
            if node.disk_free_alarm:
                add(CheckStatus.CRITICAL, f"Disk alarm on {node.name}")
            if node.partitions:
                add(CheckStatus.CRITICAL, f"Network partition detected on {node.name}")
            if node.mem_limit > 0:
                percent = node.mem_used / node.mem_limit * 100
                if thresholds.memory.critical is not None and percent >= thresholds.memory.critical:
                    add(CheckStatus.CRITICAL, f"Critical memory usage on {node.name} ({round(percent)}%)")
                elif percent >= thresholds.memory.warning:
                    add(CheckStatus.WARNING, f"High memory usage on {node.name} ({round(percent)}%)")

        try:
            queues = await source.get_queues()
        except Exception as e:
            logger.warning(f"Failed to get queues for cluster health summary: {e}")
            queues = []

        backlog = thresholds.queue_messages
        for queue in queues:
            if backlog.critical is not None and queue.messages >= backlog.critical:
                add(CheckStatus.CRITICAL, f"Critical queue backlog: {queue.name} ({queue.messages} messages)")
            elif queue.messages >= backlog.warning:
                add(CheckStatus.WARNING, f"High queue backlog: {queue.name} ({queue.messages} messages)")

        return ClusterHealthSummary(
            cluster_health=state,
            critical=critical,
            warning=warning,
            issues=issues[:MAX_SUMMARY_ISSUES],
            timestamp=utc_now(),
        )

    async def get_health_check(self, tenant_id: str, server_id: str) -> HealthCheck:
        """Run every named check. Failures become critical checks, never exceptions."""
        source = await self._source_factory.for_server(tenant_id, server_id)
        thresholds = await self._thresholds.get_thresholds(tenant_id)
        health = HealthCheck()

        try:
            await source.get_overview()
            health.set("connectivity", CheckStatus.HEALTHY, "Successfully connected to RabbitMQ")
        except Exception as e:
            health.set("connectivity", CheckStatus.CRITICAL, f"Failed to connect: {e}")

        try:
            nodes = await source.get_nodes()
        except Exception as e:
            health.set("nodes", CheckStatus.CRITICAL, f"Failed to check nodes: {e}")
            nodes = None

        if nodes is not None:
            running = sum(1 for n in nodes if n.running)
            total = len(nodes)
            details = {
                "running": running,
                "total": total,
                "nodes": [
                    {
                        "name": n.name,
                        "running": n.running,
                        "mem_alarm": n.mem_alarm,
                        "disk_free_alarm": n.disk_free_alarm,
                    }
                    for n in nodes
                ],
            }
            if running == total:
                health.set("nodes", CheckStatus.HEALTHY, f"All {total} nodes are running", details)
            elif running > 0:
                health.set("nodes", CheckStatus.WARNING, f"{running}/{total} nodes are running", details)
            else:
                health.set("nodes", CheckStatus.CRITICAL, "No nodes are running", details)

            memory_alarms = sum(1 for n in nodes if n.mem_alarm)
            high_memory = sum(
                1 for n in nodes
                if n.mem_limit > 0 and n.mem_used / n.mem_limit * 100 >= thresholds.memory.warning
            )
            if memory_alarms:
                health.set("memory", CheckStatus.CRITICAL, f"{memory_alarms} nodes have memory alarms")
            elif high_memory:
                health.set("memory", CheckStatus.WARNING, f"{high_memory} nodes have high memory usage")
            else:
                health.set("memory", CheckStatus.HEALTHY, "Memory usage is normal across all nodes")

            disk_alarms = sum(1 for n in nodes if n.disk_free_alarm)
            if disk_alarms:
                health.set("disk", CheckStatus.CRITICAL, f"{disk_alarms} nodes have disk space alarms")
            else:
                health.set("disk", CheckStatus.HEALTHY, "Disk space is sufficient across all nodes")

        try:
            queues = await source.get_queues()
        except Exception as e:
            health.set("queues", CheckStatus.CRITICAL, f"Failed to check queues: {e}")
            return health

        critical_queues = 0
        warning_queues = 0
        without_consumers = 0
        backlog = thresholds.queue_messages
        unacked = thresholds.unacked_messages
        for queue in queues:
            if backlog.critical is not None and queue.messages >= backlog.critical:
                critical_queues += 1
            elif queue.messages >= backlog.warning:
                warning_queues += 1

            if unacked.critical is not None and queue.messages_unacknowledged >= unacked.critical:
                critical_queues += 1
            elif queue.messages_unacknowledged >= unacked.warning:
                warning_queues += 1

            if queue.messages > 0 and queue.consumers == 0:
                without_consumers += 1

        if critical_queues:
            health.set("queues", CheckStatus.CRITICAL, f"{critical_queues} queues have critical issues")
        elif warning_queues or without_consumers:
            parts = []
            if warning_queues:
                parts.append(f"{warning_queues} queues with high message count")
            if without_consumers:
                parts.append(f"{without_consumers} queues without consumers")
            health.set("queues", CheckStatus.WARNING, ", ".join(parts))
        else:
            health.set("queues", CheckStatus.HEALTHY, f"All {len(queues)} queues are healthy")

        return health
