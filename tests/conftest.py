"""
Shared test fixtures.

In-memory stores, a scriptable metric source and recording
channel senders, so the engine can be exercised end to end
without a broker, a database or a network.
"""

from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from alerting.dispatch import DispatchCoordinator
from alerting.exceptions import AlertStorageError, ServerNotFoundError
from alerting.models import (
    ALL_SEVERITIES,
    BrokerServer,
    ChatTarget,
    DeliveryResult,
    NotificationPreferences,
    ResolvedAlertRecord,
    SeenAlertRecord,
    ServerScope,
    SourceType,
    WebhookTarget,
)
from alerting.service import AlertService
from alerting.thresholds import ThresholdProvider
from alerting.tracker import AlertLifecycleTracker


TENANT_ID = "tenant-1"
SERVER_ID = "srv-1"
SERVER_NAME = "Production"


# ============================================================
# STORES
# ============================================================

class InMemorySeenAlertStore:
    """SeenAlertStore keyed by (tenant, server, fingerprint)."""

    def __init__(self):
        self.records: Dict[Tuple[str, str, str], SeenAlertRecord] = {}
        self.fail_create_for: set = set()
        self.fail_updates = False
        self.fail_reads = False
        self.update_calls: List[dict] = []

    def add(self, record: SeenAlertRecord) -> None:
        self.records[(record.tenant_id, record.server_id, record.fingerprint)] = record

    def get(self, fingerprint: str, tenant_id: str = TENANT_ID, server_id: str = SERVER_ID) -> Optional[SeenAlertRecord]:
        return self.records.get((tenant_id, server_id, fingerprint))

    async def find_for_server(self, tenant_id: str, server_id: str) -> List[SeenAlertRecord]:
        if self.fail_reads:
            raise AlertStorageError("read failed")
        return [
            replace(r) for (t, s, _), r in self.records.items()
            if t == tenant_id and s == server_id
        ]

    async def find_unresolved(self, tenant_id: str, server_id: str) -> List[SeenAlertRecord]:
        return [r for r in await self.find_for_server(tenant_id, server_id) if r.resolved_at is None]

    async def create(self, record: SeenAlertRecord) -> bool:
        if record.fingerprint in self.fail_create_for:
            raise AlertStorageError("insert failed", record.fingerprint)
        key = (record.tenant_id, record.server_id, record.fingerprint)
        if key in self.records:
            await self.update_many_by_fingerprint(
                record.tenant_id,
                record.server_id,
                [record.fingerprint],
                last_seen_at=record.last_seen_at,
                resolved_at=None,
                severity=record.severity,
            )
            return False
        self.records[key] = replace(record)
        return True

    async def update_many_by_fingerprint(
        self,
        tenant_id: str,
        server_id: str,
        fingerprints: Sequence[str],
        **changes,
    ) -> int:
        if self.fail_updates:
            raise AlertStorageError("update failed")
        self.update_calls.append({"fingerprints": list(fingerprints), **changes})
        count = 0
        for fingerprint in fingerprints:
            record = self.records.get((tenant_id, server_id, fingerprint))
            if record is None:
                continue
            for key, value in changes.items():
                setattr(record, key, value)
            count += 1
        return count


class InMemoryResolvedAlertStore:
    """ResolvedAlertStore backed by a list."""

    def __init__(self):
        self.records: List[ResolvedAlertRecord] = []
        self.fail = False

    async def create(self, record: ResolvedAlertRecord) -> ResolvedAlertRecord:
        if self.fail:
            raise AlertStorageError("insert failed", record.fingerprint)
        record.id = len(self.records) + 1
        self.records.append(record)
        return record

    async def find_for_server(
        self,
        tenant_id: str,
        server_id: str,
        limit: int = 50,
        offset: int = 0,
        severity=None,
        category=None,
        vhost=None,
    ):
        matching = [
            r for r in self.records
            if r.tenant_id == tenant_id
            and r.server_id == server_id
            and (severity is None or r.severity == severity)
            and (category is None or r.category == category)
            and (
                vhost is None
                or r.source_type in (SourceType.NODE, SourceType.CLUSTER)
                or r.vhost == vhost
            )
        ]
        matching.sort(key=lambda r: r.resolved_at, reverse=True)
        return matching[offset:offset + limit], len(matching)


class InMemorySettingsStore:
    """NotificationSettingsStore backed by a dict."""

    def __init__(self):
        self.preferences: Dict[str, NotificationPreferences] = {}
        self.fail = False

    async def get_preferences(self, tenant_id: str) -> Optional[NotificationPreferences]:
        if self.fail:
            raise AlertStorageError("settings read failed")
        return self.preferences.get(tenant_id)

    async def get_webhook(self, tenant_id: str) -> Optional[WebhookTarget]:
        prefs = self.preferences.get(tenant_id)
        return prefs.webhook if prefs else None

    async def get_chat_config(self, tenant_id: str) -> Optional[ChatTarget]:
        prefs = self.preferences.get(tenant_id)
        return prefs.chat if prefs else None

    async def update_preferences(
        self,
        tenant_id: str,
        email_enabled=None,
        contact_email=None,
        severities=None,
        server_scope=None,
        tenant_name=None,
    ) -> NotificationPreferences:
        current = self.preferences.get(tenant_id) or NotificationPreferences(tenant_id=tenant_id)
        changes = {}
        if email_enabled is not None:
            changes["email_enabled"] = email_enabled
        if contact_email is not None:
            changes["contact_email"] = contact_email
        if severities is not None:
            changes["severities"] = frozenset(severities)
        if server_scope is not None:
            changes["server_scope"] = server_scope
        if tenant_name is not None:
            changes["tenant_name"] = tenant_name
        self.preferences[tenant_id] = replace(current, **changes)
        return self.preferences[tenant_id]


class InMemoryThresholdStore:
    """ThresholdStore backed by a dict."""

    def __init__(self):
        self.thresholds = {}
        self.fail = False

    async def get_thresholds(self, tenant_id: str):
        if self.fail:
            raise AlertStorageError("thresholds read failed")
        return self.thresholds.get(tenant_id)

    async def save_thresholds(self, tenant_id: str, thresholds) -> None:
        self.thresholds[tenant_id] = thresholds


class InMemoryServerStore:
    """ServerStore backed by a list."""

    def __init__(self, servers: Optional[List[BrokerServer]] = None):
        self.servers = list(servers or [])

    async def list_servers(self) -> List[BrokerServer]:
        return list(self.servers)

    async def get_server(self, tenant_id: str, server_id: str) -> Optional[BrokerServer]:
        for server in self.servers:
            if server.id == server_id and server.tenant_id == tenant_id:
                return server
        return None


# ============================================================
# METRIC SOURCE
# ============================================================

class FakeMetricSource:
    """MetricSource returning canned snapshots or raising canned errors."""

    def __init__(self, nodes=None, queues=None, overview=None):
        self.nodes = list(nodes or [])
        self.queues = list(queues or [])
        self.overview = overview if overview is not None else {"rabbitmq_version": "3.13.0"}
        self.node_error: Optional[Exception] = None
        self.queue_error: Optional[Exception] = None
        self.overview_error: Optional[Exception] = None
        self.queue_calls: List[Optional[str]] = []

    async def get_overview(self):
        if self.overview_error:
            raise self.overview_error
        return self.overview

    async def get_nodes(self):
        if self.node_error:
            raise self.node_error
        return list(self.nodes)

    async def get_queues(self, vhost: Optional[str] = None):
        self.queue_calls.append(vhost)
        if self.queue_error:
            raise self.queue_error
        if vhost is None:
            return list(self.queues)
        return [q for q in self.queues if (q.vhost or "/") == vhost]


class FakeSourceFactory:
    """MetricSourceFactory with one FakeMetricSource per server id."""

    def __init__(self, sources: Optional[Dict[str, FakeMetricSource]] = None):
        self.sources = dict(sources or {})

    async def for_server(self, tenant_id: str, server_id: str) -> FakeMetricSource:
        if server_id not in self.sources:
            raise ServerNotFoundError(server_id, tenant_id)
        return self.sources[server_id]


# ============================================================
# CHANNEL SENDERS
# ============================================================

class RecordingEmailSender:
    def __init__(self, result: Optional[DeliveryResult] = None):
        self.result = result or DeliveryResult(success=True)
        self.calls: List[dict] = []
        self.error: Optional[Exception] = None

    async def send_alert_email(self, to, tenant_name, tenant_id, server_id, server_name, alerts):
        self.calls.append({
            "to": to,
            "tenant_name": tenant_name,
            "tenant_id": tenant_id,
            "server_id": server_id,
            "server_name": server_name,
            "alerts": list(alerts),
        })
        if self.error:
            raise self.error
        return self.result


class RecordingWebhookSender:
    def __init__(self, success: bool = True):
        self.success = success
        self.calls: List[dict] = []

    async def send_alert_notification(
        self, targets, tenant_id, tenant_name, server_id, server_name, alerts, timestamp=None
    ):
        self.calls.append({"targets": list(targets), "alerts": list(alerts)})
        return [(t.id, DeliveryResult(success=self.success)) for t in targets]


class RecordingChatSender:
    def __init__(self, success: bool = True):
        self.success = success
        self.calls: List[dict] = []

    async def send_alert_notifications(self, targets, alerts, tenant_name, server_name, server_id):
        self.calls.append({"targets": list(targets), "alerts": list(alerts)})
        return [(t.id, DeliveryResult(success=self.success)) for t in targets]


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def now():
    return datetime(2024, 5, 1, 12, 0, 0)


@pytest.fixture
def seen_store():
    return InMemorySeenAlertStore()


@pytest.fixture
def resolved_store():
    return InMemoryResolvedAlertStore()


@pytest.fixture
def settings_store():
    return InMemorySettingsStore()


@pytest.fixture
def threshold_store():
    return InMemoryThresholdStore()


@pytest.fixture
def broker_server():
    return BrokerServer(id=SERVER_ID, tenant_id=TENANT_ID, name=SERVER_NAME, host="rabbit.local")


@pytest.fixture
def server_store(broker_server):
    return InMemoryServerStore([broker_server])


@pytest.fixture
def metric_source():
    return FakeMetricSource()


@pytest.fixture
def source_factory(metric_source):
    return FakeSourceFactory({SERVER_ID: metric_source})


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def webhook_sender():
    return RecordingWebhookSender()


@pytest.fixture
def chat_sender():
    return RecordingChatSender()


@pytest.fixture
def preferences():
    """Email enabled, every severity, every server, webhook and chat configured."""
    return NotificationPreferences(
        tenant_id=TENANT_ID,
        tenant_name="Acme",
        email_enabled=True,
        contact_email="ops@acme.test",
        severities=ALL_SEVERITIES,
        server_scope=ServerScope.all(),
        webhook=WebhookTarget(id="wh-1", url="https://hooks.acme.test/alerts", secret="s3cret"),
        chat=ChatTarget(id="chat-1", webhook_url="https://chat.acme.test/hook"),
    )


@pytest.fixture
def threshold_provider(threshold_store):
    return ThresholdProvider(threshold_store)


@pytest.fixture
def tracker(seen_store, resolved_store):
    return AlertLifecycleTracker(seen_store, resolved_store)


@pytest.fixture
def dispatcher(seen_store, email_sender, webhook_sender, chat_sender):
    return DispatchCoordinator(
        seen_store,
        email_sender=email_sender,
        webhook_sender=webhook_sender,
        chat_sender=chat_sender,
    )


@pytest.fixture
def service(source_factory, threshold_provider, tracker, dispatcher, settings_store, resolved_store, preferences):
    settings_store.preferences[TENANT_ID] = preferences
    return AlertService(
        source_factory,
        threshold_provider,
        tracker,
        dispatcher,
        settings_store,
        resolved_store,
        watch_interval=0.01,
    )
