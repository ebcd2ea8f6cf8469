"""
Tests for the Metric Analyzer.

============================================================
PURPOSE
============================================================
Verify every node and queue rule against its thresholds.

TEST PRINCIPLES:
- Boundaries are inclusive (>= for usage, <= for disk free)
- Rules fire independently
- Unreported metrics never produce alerts

============================================================
"""

from datetime import datetime, timedelta

import pytest

from alerting.analyzer import analyze_node_health, analyze_queue_health
from alerting.models import (
    AlertCategory,
    AlertSeverity,
    NodeSnapshot,
    QueueSnapshot,
    SourceType,
)
from alerting.thresholds import DEFAULT_THRESHOLDS, MetricThresholds, ThresholdPair


SERVER_ID = "srv-1"
SERVER_NAME = "Production"
NOW = datetime(2024, 5, 1, 12, 0, 0)


def node_alerts(**fields):
    fields.setdefault("name", "rabbit@n1")
    return analyze_node_health(NodeSnapshot(**fields), SERVER_ID, SERVER_NAME, DEFAULT_THRESHOLDS, NOW)


def queue_alerts(thresholds=DEFAULT_THRESHOLDS, **fields):
    fields.setdefault("name", "orders")
    return analyze_queue_health(QueueSnapshot(**fields), SERVER_ID, SERVER_NAME, thresholds, NOW)


def titles(alerts):
    return [a.title for a in alerts]


# ============================================================
# NODE RULES
# ============================================================

class TestNodeDown:
    """Node availability."""

    def test_stopped_node_raises_single_critical_alert(self):
        alerts = node_alerts(running=False)

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.title == "Node Down"
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.category == AlertCategory.NODE
        assert alert.source.type == SourceType.NODE
        assert alert.source.name == "rabbit@n1"
        assert alert.details.current == "offline"
        assert alert.vhost is None
        assert alert.resolved is False

    def test_healthy_node_raises_nothing(self):
        alerts = node_alerts(
            mem_used=100, mem_limit=1000,
            disk_free=5000, disk_free_limit=1000,
            fd_used=10, fd_total=1000,
            sockets_used=10, sockets_total=1000,
            proc_used=10, proc_total=1000,
            run_queue=1,
        )

        assert alerts == []


class TestNodeAlarms:
    """Broker-raised alarms."""

    def test_memory_alarm(self):
        alerts = node_alerts(mem_alarm=True)

        assert titles(alerts) == ["Memory Alarm Active"]
        assert alerts[0].category == AlertCategory.MEMORY
        assert alerts[0].details.current == "alarm_active"

    def test_disk_alarm(self):
        alerts = node_alerts(disk_free_alarm=True)

        assert titles(alerts) == ["Disk Space Alarm"]
        assert alerts[0].category == AlertCategory.DISK

    def test_partition_lists_affected_nodes(self):
        alerts = node_alerts(partitions=("rabbit@n2", "rabbit@n3"))

        assert titles(alerts) == ["Network Partition Detected"]
        alert = alerts[0]
        assert alert.category == AlertCategory.NODE
        assert alert.details.affected == ["rabbit@n1", "rabbit@n2", "rabbit@n3"]
        assert alert.details.current == "rabbit@n2, rabbit@n3"

    def test_node_down_and_partition_share_fingerprint(self):
        alerts = node_alerts(running=False, partitions=("rabbit@n2",))

        assert len(alerts) == 2
        assert alerts[0].fingerprint == alerts[1].fingerprint


class TestMemoryUsage:
    """Memory used vs limit."""

    def test_critical_at_95_percent(self):
        alerts = node_alerts(mem_used=950_000_000, mem_limit=1_000_000_000)

        assert titles(alerts) == ["Critical Memory Usage"]
        assert alerts[0].severity == AlertSeverity.CRITICAL
        assert alerts[0].details.current == 95
        assert alerts[0].details.threshold == 95

    def test_warning_at_exactly_80_percent(self):
        alerts = node_alerts(mem_used=800, mem_limit=1000)

        assert titles(alerts) == ["High Memory Usage"]
        assert alerts[0].severity == AlertSeverity.WARNING
        assert alerts[0].details.threshold == 80

    def test_below_warning_is_quiet(self):
        assert node_alerts(mem_used=799, mem_limit=1000) == []

    def test_zero_limit_is_skipped(self):
        assert node_alerts(mem_used=800, mem_limit=0) == []

    def test_current_is_rounded(self):
        alerts = node_alerts(mem_used=8125, mem_limit=10000)

        assert alerts[0].details.current == 81


class TestDiskSpace:
    """Free disk relative to the free-space limit; lower is worse."""

    def test_warning_at_15_percent(self):
        alerts = node_alerts(disk_free=15, disk_free_limit=100)

        assert titles(alerts) == ["Low Disk Space"]
        assert alerts[0].severity == AlertSeverity.WARNING
        assert alerts[0].category == AlertCategory.DISK

    def test_critical_at_10_percent(self):
        alerts = node_alerts(disk_free=10, disk_free_limit=100)

        assert titles(alerts) == ["Critical Disk Space"]
        assert alerts[0].severity == AlertSeverity.CRITICAL

    def test_plenty_of_space_is_quiet(self):
        assert node_alerts(disk_free=5000, disk_free_limit=100) == []

    def test_unreported_disk_is_skipped(self):
        assert node_alerts(disk_free=0, disk_free_limit=100) == []
        assert node_alerts(disk_free=10, disk_free_limit=0) == []


class TestResourceUsage:
    """File descriptors, sockets and Erlang processes."""

    def test_file_descriptors_critical(self):
        alerts = node_alerts(fd_used=90, fd_total=100)

        assert titles(alerts) == ["Critical File Descriptor Usage"]
        assert alerts[0].category == AlertCategory.CONNECTION

    def test_sockets_warning(self):
        alerts = node_alerts(sockets_used=80, sockets_total=100)

        assert titles(alerts) == ["High Socket Usage"]
        assert alerts[0].category == AlertCategory.CONNECTION

    def test_processes_are_performance(self):
        alerts = node_alerts(proc_used=95, proc_total=100)

        assert titles(alerts) == ["Critical Process Usage"]
        assert alerts[0].category == AlertCategory.PERFORMANCE

    def test_file_descriptors_and_sockets_have_distinct_rules_same_fingerprint(self):
        alerts = node_alerts(fd_used=85, fd_total=100, sockets_used=85, sockets_total=100)

        assert titles(alerts) == ["High File Descriptor Usage", "High Socket Usage"]
        assert alerts[0].fingerprint == alerts[1].fingerprint


class TestRunQueue:
    """Erlang run queue length."""

    def test_unreported_run_queue_is_skipped(self):
        assert node_alerts(run_queue=None) == []

    def test_zero_run_queue_is_quiet(self):
        assert node_alerts(run_queue=0) == []

    def test_warning_at_threshold(self):
        alerts = node_alerts(run_queue=10)

        assert titles(alerts) == ["High Run Queue Length"]
        assert alerts[0].category == AlertCategory.PERFORMANCE

    def test_critical_at_threshold(self):
        alerts = node_alerts(run_queue=20)

        assert titles(alerts) == ["Critical Run Queue Length"]
        assert alerts[0].details.current == 20


class TestNodeThresholdOverrides:

    def test_custom_memory_threshold(self):
        thresholds = MetricThresholds(memory=ThresholdPair(50, 60))
        alerts = analyze_node_health(
            NodeSnapshot(name="rabbit@n1", mem_used=55, mem_limit=100),
            SERVER_ID,
            SERVER_NAME,
            thresholds,
            NOW,
        )

        assert titles(alerts) == ["High Memory Usage"]
        assert alerts[0].details.threshold == 50


# ============================================================
# QUEUE RULES
# ============================================================

class TestQueueBacklog:

    def test_warning_at_exactly_10000(self):
        alerts = queue_alerts(messages=10_000, consumers=1)

        assert titles(alerts) == ["High Queue Backlog"]
        assert alerts[0].severity == AlertSeverity.WARNING
        assert alerts[0].category == AlertCategory.QUEUE
        assert alerts[0].details.current == 10_000

    def test_critical_at_50000(self):
        alerts = queue_alerts(messages=50_000, consumers=1)

        assert titles(alerts) == ["Critical Queue Backlog"]

    def test_below_warning_is_quiet(self):
        assert queue_alerts(messages=9_999, consumers=1) == []

    def test_fingerprint_survives_severity_change(self):
        warning = queue_alerts(messages=10_000, consumers=1)[0]
        critical = queue_alerts(messages=60_000, consumers=1)[0]

        assert warning.severity != critical.severity
        assert warning.fingerprint == critical.fingerprint
        assert warning.id != critical.id


class TestQueueConsumers:

    def test_messages_without_consumers(self):
        alerts = queue_alerts(messages=5, consumers=0)

        assert titles(alerts) == ["Queue Without Consumers"]
        assert alerts[0].details.current == "5 messages, 0 consumers"

    def test_empty_queue_without_consumers_is_quiet(self):
        assert queue_alerts(messages=0, consumers=0) == []

    def test_unacked_warning_and_critical(self):
        assert titles(queue_alerts(messages_unacknowledged=1000, consumers=1)) == [
            "High Unacknowledged Messages"
        ]
        assert titles(queue_alerts(messages_unacknowledged=5000, consumers=1)) == [
            "Critical Unacknowledged Messages"
        ]

    def test_low_consumer_utilization(self):
        alerts = queue_alerts(consumers=1, publish_rate=100.0, deliver_rate=5.0)

        assert titles(alerts) == ["Low Consumer Utilization"]
        assert alerts[0].category == AlertCategory.PERFORMANCE
        assert alerts[0].details.current == 5

    def test_idle_consumers_count_as_fully_utilized(self):
        assert queue_alerts(consumers=2, publish_rate=0.0, deliver_rate=0.0) == []


class TestStaleMessages:

    def test_ready_messages_not_delivered(self):
        alerts = queue_alerts(messages_ready=150, consumers=2, deliver_rate=0.0)

        assert titles(alerts) == ["Stale Messages Detected"]
        assert alerts[0].severity == AlertSeverity.WARNING
        assert alerts[0].details.current == "150 ready messages, 0 delivery rate"

    def test_boundary_of_100_ready_messages_is_quiet(self):
        assert queue_alerts(messages_ready=100, consumers=2, deliver_rate=0.0) == []

    def test_without_consumers_is_not_stale(self):
        alerts = queue_alerts(messages_ready=150, consumers=0, deliver_rate=0.0)

        assert "Stale Messages Detected" not in titles(alerts)


class TestMessageAccumulation:

    def test_ratio_of_exactly_half_is_quiet(self):
        alerts = queue_alerts(messages=2000, consumers=1, publish_rate=10.0, deliver_rate=5.0)

        assert "Message Accumulation" not in titles(alerts)

    def test_ratio_above_half_fires(self):
        alerts = queue_alerts(messages=2000, consumers=1, publish_rate=10.0, deliver_rate=4.0)

        assert titles(alerts) == ["Message Accumulation"]
        assert alerts[0].category == AlertCategory.PERFORMANCE
        assert alerts[0].details.current == "Publish: 10.00/s, Deliver: 4.00/s"

    def test_small_queue_is_quiet(self):
        alerts = queue_alerts(messages=1000, consumers=1, publish_rate=10.0, deliver_rate=4.0)

        assert "Message Accumulation" not in titles(alerts)


class TestInactiveQueue:

    def test_idle_for_more_than_a_day(self):
        alerts = queue_alerts(idle_since=NOW - timedelta(hours=25))

        assert titles(alerts) == ["Inactive Queue"]
        assert alerts[0].severity == AlertSeverity.INFO
        assert alerts[0].details.current == "25 hours since last activity"

    def test_idle_hours_round_to_nearest(self):
        assert queue_alerts(idle_since=NOW - timedelta(hours=30, minutes=36))[0].details.current == (
            "31 hours since last activity"
        )
        assert queue_alerts(idle_since=NOW - timedelta(hours=30, minutes=24))[0].details.current == (
            "30 hours since last activity"
        )

    def test_idle_for_less_than_a_day(self):
        assert queue_alerts(idle_since=NOW - timedelta(hours=23)) == []

    def test_unknown_idle_time_is_quiet(self):
        assert queue_alerts(idle_since=None) == []


class TestQueueVhost:

    def test_default_vhost_is_slash(self):
        alerts = queue_alerts(messages=5, consumers=0, vhost=None)

        assert alerts[0].vhost == "/"
        assert alerts[0].fingerprint == "srv-1-queue-queue-/-orders"

    def test_vhost_is_part_of_fingerprint(self):
        a = queue_alerts(messages=5, consumers=0, vhost="billing")[0]
        b = queue_alerts(messages=5, consumers=0, vhost="shipping")[0]

        assert a.vhost == "billing"
        assert a.fingerprint != b.fingerprint

    def test_every_alert_serializes_vhost(self):
        alert = queue_alerts(messages=5, consumers=0, vhost="billing")[0]

        data = alert.to_dict()
        assert data["vhost"] == "billing"
        assert data["serverId"] == SERVER_ID
        assert data["source"] == {"type": "queue", "name": "orders"}


# ============================================================
# SNAPSHOT PARSING
# ============================================================

class TestSnapshotParsing:

    def test_node_without_run_queue(self):
        node = NodeSnapshot.from_api({"name": "rabbit@n1", "running": True, "mem_used": 10})

        assert node.run_queue is None
        assert node.mem_used == 10
        assert node.partitions == ()

    def test_queue_rates_from_message_stats(self):
        queue = QueueSnapshot.from_api({
            "name": "orders",
            "vhost": "/",
            "messages": 3,
            "consumers": 1,
            "message_stats": {
                "publish_details": {"rate": 2.5},
                "deliver_get_details": {"rate": 1.5},
            },
            "idle_since": "2024-05-01 10:00:00",
        })

        assert queue.publish_rate == pytest.approx(2.5)
        assert queue.deliver_rate == pytest.approx(1.5)
        assert queue.idle_since == datetime(2024, 5, 1, 10, 0, 0)

    def test_queue_without_stats(self):
        queue = QueueSnapshot.from_api({"name": "orders"})

        assert queue.publish_rate == 0.0
        assert queue.deliver_rate == 0.0
        assert queue.idle_since is None


# ============================================================
# REPEATABILITY
# ============================================================

def identity(alerts):
    return [(a.fingerprint, a.title, a.severity, a.category, a.description) for a in alerts]


class TestRepeatability:
    """Same snapshot and thresholds give the same conditions on every pass."""

    def test_node_analysis_is_repeatable(self):
        node = NodeSnapshot(
            name="rabbit@n1",
            mem_alarm=True,
            partitions=("rabbit@n2",),
            mem_used=97,
            mem_limit=100,
            fd_used=95,
            fd_total=100,
            run_queue=25,
        )

        first = analyze_node_health(node, SERVER_ID, SERVER_NAME, DEFAULT_THRESHOLDS, NOW)
        second = analyze_node_health(node, SERVER_ID, SERVER_NAME, DEFAULT_THRESHOLDS, NOW + timedelta(seconds=10))

        assert len(first) >= 4
        assert identity(first) == identity(second)

    def test_queue_analysis_is_repeatable(self):
        queue = QueueSnapshot(name="orders", vhost="billing", messages=60000, messages_unacknowledged=6000)

        first = analyze_queue_health(queue, SERVER_ID, SERVER_NAME, DEFAULT_THRESHOLDS, NOW)
        second = analyze_queue_health(queue, SERVER_ID, SERVER_NAME, DEFAULT_THRESHOLDS, NOW)

        assert len(first) >= 2
        assert identity(first) == identity(second)

    def test_ids_differ_between_passes(self):
        first = node_alerts(running=False)
        second = node_alerts(running=False)

        assert first[0].fingerprint == second[0].fingerprint
        assert first[0].id != second[0].id
