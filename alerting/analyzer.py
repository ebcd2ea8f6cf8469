"""
Alerting - Metric Analyzer.

============================================================
PURPOSE
============================================================
Turn node and queue snapshots into alerts by comparing them
against thresholds.

PRINCIPLES:
- Pure: no I/O, no state. The clock is read only for the
  alert timestamp and for queue inactivity, both overridable.
- Every rule is evaluated independently. One snapshot may
  produce several alerts.
- Percentages are reported rounded to whole numbers.

============================================================
"""

import math
from datetime import datetime
from typing import Any, List, Optional

from .fingerprint import generate_alert_fingerprint, generate_alert_id
from .models import (
    Alert,
    AlertCategory,
    AlertDetails,
    AlertSeverity,
    AlertSource,
    NodeSnapshot,
    QueueSnapshot,
    SourceType,
    utc_now,
)
from .thresholds import MetricThresholds, ThresholdPair


DEFAULT_VHOST = "/"

STALE_READY_MESSAGES = 100
ACCUMULATION_RATIO = 0.5
ACCUMULATION_MIN_MESSAGES = 1000
INACTIVE_QUEUE_HOURS = 24


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class _AlertBuilder:
    """Fills the fields every alert from one snapshot shares."""

    def __init__(
        self,
        server_id: str,
        server_name: str,
        source_type: SourceType,
        source_name: str,
        timestamp: datetime,
        vhost: Optional[str] = None,
    ):
        self.server_id = server_id
        self.server_name = server_name
        self.source = AlertSource(source_type, source_name)
        self.timestamp = timestamp
        self.vhost = vhost

    def build(
        self,
        severity: AlertSeverity,
        category: AlertCategory,
        title: str,
        description: str,
        current: Any,
        recommended: str,
        threshold: Optional[float] = None,
        affected: Optional[List[str]] = None,
    ) -> Alert:
        return Alert(
            id=generate_alert_id(self.server_id, category, self.source.name),
            fingerprint=generate_alert_fingerprint(
                self.server_id,
                category,
                self.source.type,
                self.source.name,
                self.vhost,
            ),
            server_id=self.server_id,
            server_name=self.server_name,
            severity=severity,
            category=category,
            title=title,
            description=description,
            source=self.source,
            details=AlertDetails(
                current=current,
                recommended=recommended,
                affected=affected if affected is not None else [self.source.name],
                threshold=threshold,
            ),
            timestamp=self.timestamp,
            vhost=self.vhost,
        )


def _check_usage(
    builder: _AlertBuilder,
    alerts: List[Alert],
    used: float,
    total: float,
    pair: ThresholdPair,
    category: AlertCategory,
    label: str,
    critical_advice: str,
    warning_advice: str,
) -> None:
    """Shared >= critical / >= warning rule for used/total ratios."""
    if total <= 0:
        return

    percent = used / total * 100
    node = builder.source.name

    if pair.critical is not None and percent >= pair.critical:
        alerts.append(builder.build(
            AlertSeverity.CRITICAL,
            category,
            f"Critical {label} Usage",
            f"Node {node} {label.lower()} usage is critically high",
            _round_half_up(percent),
            critical_advice,
            threshold=pair.critical,
        ))
    elif percent >= pair.warning:
        alerts.append(builder.build(
            AlertSeverity.WARNING,
            category,
            f"High {label} Usage",
            f"Node {node} {label.lower()} usage is high",
            _round_half_up(percent),
            warning_advice,
            threshold=pair.warning,
        ))


# ============================================================
# NODE RULES
# ============================================================

def analyze_node_health(
    node: NodeSnapshot,
    server_id: str,
    server_name: str,
    thresholds: MetricThresholds,
    now: Optional[datetime] = None,
) -> List[Alert]:
    """
    Evaluate every node rule against one node snapshot.

    Args:
        node: Node snapshot
        server_id: Broker server id
        server_name: Broker server display name
        thresholds: Limits to compare against
        now: Alert timestamp override

    Returns:
        Alerts for this node, possibly empty
    """
    builder = _AlertBuilder(server_id, server_name, SourceType.NODE, node.name, now or utc_now())
    alerts: List[Alert] = []

    if not node.running:
        alerts.append(builder.build(
            AlertSeverity.CRITICAL,
            AlertCategory.NODE,
            "Node Down",
            f"RabbitMQ node {node.name} is not running",
            "offline",
            "Check node logs and restart if necessary",
        ))

    if node.mem_alarm:
        alerts.append(builder.build(
            AlertSeverity.CRITICAL,
            AlertCategory.MEMORY,
            "Memory Alarm Active",
            f"Memory alarm is active on node {node.name}",
            "alarm_active",
            "Publishers are blocked. Reduce memory usage or raise the memory high watermark",
        ))

    if node.disk_free_alarm:
        alerts.append(builder.build(
            AlertSeverity.CRITICAL,
            AlertCategory.DISK,
            "Disk Space Alarm",
            f"Disk free space alarm is active on node {node.name}",
            "alarm_active",
            "Publishers are blocked. Free up disk space immediately",
        ))

    if node.partitions:
        alerts.append(builder.build(
            AlertSeverity.CRITICAL,
            AlertCategory.NODE,
            "Network Partition Detected",
            f"Node {node.name} is partitioned from {len(node.partitions)} node(s)",
            ", ".join(node.partitions),
            "Resolve the network partition and restart affected nodes",
            affected=[node.name, *node.partitions],
        ))

    if node.mem_limit > 0:
        _check_usage(
            builder,
            alerts,
            node.mem_used,
            node.mem_limit,
            thresholds.memory,
            AlertCategory.MEMORY,
            "Memory",
            "Scale up memory or reduce message backlog immediately",
            "Monitor memory usage and consider consuming backlogs",
        )

    # Disk is "percent of the free-space limit still free": lower is worse.
    if node.disk_free_limit > 0 and node.disk_free > 0:
        free_percent = node.disk_free / node.disk_free_limit * 100
        disk = thresholds.disk
        if disk.critical is not None and free_percent <= disk.critical:
            alerts.append(builder.build(
                AlertSeverity.CRITICAL,
                AlertCategory.DISK,
                "Critical Disk Space",
                f"Node {node.name} is critically low on disk space",
                _round_half_up(free_percent),
                "Free up disk space immediately",
                threshold=disk.critical,
            ))
        elif free_percent <= disk.warning:
            alerts.append(builder.build(
                AlertSeverity.WARNING,
                AlertCategory.DISK,
                "Low Disk Space",
                f"Node {node.name} is running low on disk space",
                _round_half_up(free_percent),
                "Plan disk cleanup or expansion",
                threshold=disk.warning,
            ))

    _check_usage(
        builder,
        alerts,
        node.fd_used,
        node.fd_total,
        thresholds.file_descriptors,
        AlertCategory.CONNECTION,
        "File Descriptor",
        "Raise the file descriptor limit or reduce connections",
        "Monitor connection count and file descriptor usage",
    )
    _check_usage(
        builder,
        alerts,
        node.sockets_used,
        node.sockets_total,
        thresholds.sockets,
        AlertCategory.CONNECTION,
        "Socket",
        "Reduce connections or raise the socket limit",
        "Monitor connection growth",
    )
    _check_usage(
        builder,
        alerts,
        node.proc_used,
        node.proc_total,
        thresholds.processes,
        AlertCategory.PERFORMANCE,
        "Process",
        "Raise the Erlang process limit or reduce load",
        "Monitor Erlang process usage",
    )

    if node.run_queue is not None:
        run_queue = thresholds.run_queue
        if run_queue.critical is not None and node.run_queue >= run_queue.critical:
            alerts.append(builder.build(
                AlertSeverity.CRITICAL,
                AlertCategory.PERFORMANCE,
                "Critical Run Queue Length",
                f"Node {node.name} has a very long Erlang run queue",
                node.run_queue,
                "The node is CPU bound. Add capacity or reduce load",
                threshold=run_queue.critical,
            ))
        elif node.run_queue >= run_queue.warning:
            alerts.append(builder.build(
                AlertSeverity.WARNING,
                AlertCategory.PERFORMANCE,
                "High Run Queue Length",
                f"Node {node.name} has a long Erlang run queue",
                node.run_queue,
                "Monitor CPU usage on the node",
                threshold=run_queue.warning,
            ))

    return alerts


# ============================================================
# QUEUE RULES
# ============================================================

def analyze_queue_health(
    queue: QueueSnapshot,
    server_id: str,
    server_name: str,
    thresholds: MetricThresholds,
    now: Optional[datetime] = None,
) -> List[Alert]:
    """
    Evaluate every queue rule against one queue snapshot.

    Every alert carries the queue's vhost ("/" when unknown).

    Args:
        queue: Queue snapshot
        server_id: Broker server id
        server_name: Broker server display name
        thresholds: Limits to compare against
        now: Clock override for the timestamp and idle time

    Returns:
        Alerts for this queue, possibly empty
    """
    now = now or utc_now()
    vhost = queue.vhost or DEFAULT_VHOST
    builder = _AlertBuilder(server_id, server_name, SourceType.QUEUE, queue.name, now, vhost)
    alerts: List[Alert] = []

    backlog = thresholds.queue_messages
    if backlog.critical is not None and queue.messages >= backlog.critical:
        alerts.append(builder.build(
            AlertSeverity.CRITICAL,
            AlertCategory.QUEUE,
            "Critical Queue Backlog",
            f"Queue {queue.name} has a critical message backlog",
            queue.messages,
            "Scale consumers or investigate processing delays",
            threshold=backlog.critical,
        ))
    elif queue.messages >= backlog.warning:
        alerts.append(builder.build(
            AlertSeverity.WARNING,
            AlertCategory.QUEUE,
            "High Queue Backlog",
            f"Queue {queue.name} has a high message backlog",
            queue.messages,
            "Monitor consumer throughput",
            threshold=backlog.warning,
        ))

    if queue.messages > 0 and queue.consumers == 0:
        alerts.append(builder.build(
            AlertSeverity.WARNING,
            AlertCategory.QUEUE,
            "Queue Without Consumers",
            f"Queue {queue.name} has messages but no consumers",
            f"{queue.messages} messages, 0 consumers",
            "Start consumers for this queue",
        ))

    unacked = thresholds.unacked_messages
    if unacked.critical is not None and queue.messages_unacknowledged >= unacked.critical:
        alerts.append(builder.build(
            AlertSeverity.CRITICAL,
            AlertCategory.QUEUE,
            "Critical Unacknowledged Messages",
            f"Queue {queue.name} has a critical number of unacknowledged messages",
            queue.messages_unacknowledged,
            "Check consumers for stuck processing or missing acks",
            threshold=unacked.critical,
        ))
    elif queue.messages_unacknowledged >= unacked.warning:
        alerts.append(builder.build(
            AlertSeverity.WARNING,
            AlertCategory.QUEUE,
            "High Unacknowledged Messages",
            f"Queue {queue.name} has many unacknowledged messages",
            queue.messages_unacknowledged,
            "Review consumer prefetch and acknowledgement logic",
            threshold=unacked.warning,
        ))

    if queue.consumers > 0:
        if queue.publish_rate > 0:
            utilization = queue.deliver_rate / queue.publish_rate * 100
        else:
            utilization = 100.0
        if utilization < thresholds.consumer_utilization.warning:
            alerts.append(builder.build(
                AlertSeverity.WARNING,
                AlertCategory.PERFORMANCE,
                "Low Consumer Utilization",
                f"Consumers on queue {queue.name} keep up with only part of the publish rate",
                _round_half_up(utilization),
                "Optimize consumers or add more consumer instances",
                threshold=thresholds.consumer_utilization.warning,
            ))

    if (
        queue.messages_ready > STALE_READY_MESSAGES
        and queue.consumers > 0
        and queue.deliver_rate == 0
    ):
        alerts.append(builder.build(
            AlertSeverity.WARNING,
            AlertCategory.QUEUE,
            "Stale Messages Detected",
            f"Queue {queue.name} has ready messages that are not being delivered",
            f"{queue.messages_ready} ready messages, 0 delivery rate",
            "Check whether consumers are blocked or stuck",
        ))

    if queue.publish_rate > 0 and queue.deliver_rate > 0:
        ratio = (queue.publish_rate - queue.deliver_rate) / queue.publish_rate
        if ratio > ACCUMULATION_RATIO and queue.messages > ACCUMULATION_MIN_MESSAGES:
            alerts.append(builder.build(
                AlertSeverity.WARNING,
                AlertCategory.PERFORMANCE,
                "Message Accumulation",
                f"Messages are accumulating in queue {queue.name}",
                f"Publish: {queue.publish_rate:.2f}/s, Deliver: {queue.deliver_rate:.2f}/s",
                "Scale consumers to match the publish rate",
            ))

    if queue.messages == 0 and queue.consumers == 0 and queue.idle_since is not None:
        idle_hours = (now - queue.idle_since).total_seconds() / 3600
        if idle_hours > INACTIVE_QUEUE_HOURS:
            alerts.append(builder.build(
                AlertSeverity.INFO,
                AlertCategory.QUEUE,
                "Inactive Queue",
                f"Queue {queue.name} has been idle for a long time",
                f"{_round_half_up(idle_hours)} hours since last activity",
                "Consider deleting the queue if it is no longer used",
            ))

    return alerts
