"""
Tests for the SQLAlchemy repositories.

Runs against SQLite through aiosqlite: in memory, or a file when a test
needs sessions on separate connections.
"""

import asyncio
from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from alerting.models import (
    ALL_SEVERITIES,
    AlertCategory,
    AlertSeverity,
    BrokerServer,
    ResolvedAlertRecord,
    SeenAlertRecord,
    ServerScope,
    SourceType,
)
from alerting.thresholds import DEFAULT_THRESHOLDS, ThresholdPair
from database.engine import check_connection, create_database_engine, create_session_factory, init_db
from database.models import TenantNotificationSettingsModel
from database.repository import (
    NotificationSettingsRepository,
    ResolvedAlertRepository,
    SeenAlertRepository,
    ServerRepository,
    ThresholdRepository,
)


NOW = datetime(2024, 5, 1, 12, 0, 0)


@pytest_asyncio.fixture
async def session_factory():
    engine = create_database_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield create_session_factory(engine)
    await engine.dispose()


def seen(fingerprint: str = "srv-1-node-node-rabbit@n1", **overrides) -> SeenAlertRecord:
    values = dict(
        tenant_id="tenant-1",
        server_id="srv-1",
        fingerprint=fingerprint,
        severity=AlertSeverity.CRITICAL,
        category=AlertCategory.NODE,
        source_type=SourceType.NODE,
        source_name="rabbit@n1",
        first_seen_at=NOW,
        last_seen_at=NOW,
    )
    values.update(overrides)
    return SeenAlertRecord(**values)


def resolved(fingerprint: str, source_type: SourceType, vhost=None, minutes: int = 0, **overrides) -> ResolvedAlertRecord:
    values = dict(
        tenant_id="tenant-1",
        server_id="srv-1",
        server_name="Production",
        fingerprint=fingerprint,
        severity=AlertSeverity.WARNING,
        category=AlertCategory.QUEUE if source_type == SourceType.QUEUE else AlertCategory.NODE,
        title="Queue Issue",
        description="Queue issue detected",
        source_type=source_type,
        source_name=fingerprint,
        first_seen_at=NOW,
        resolved_at=NOW + timedelta(minutes=minutes),
        duration_ms=minutes * 60_000,
        vhost=vhost,
    )
    values.update(overrides)
    return ResolvedAlertRecord(**values)


class TestEngine:

    @pytest.mark.asyncio
    async def test_check_connection(self):
        engine = create_database_engine("sqlite+aiosqlite:///:memory:")
        try:
            assert await check_connection(engine)
        finally:
            await engine.dispose()


class TestServerRepository:

    @pytest.mark.asyncio
    async def test_add_and_get(self, session_factory):
        repo = ServerRepository(session_factory)
        await repo.add_server(BrokerServer(id="srv-1", tenant_id="tenant-1", name="Production", host="rabbit.local"))

        server = await repo.get_server("tenant-1", "srv-1")

        assert server.name == "Production"
        assert server.management_url == "http://rabbit.local:15672"
        assert await repo.get_server("tenant-2", "srv-1") is None
        assert [s.id for s in await repo.list_servers()] == ["srv-1"]


class TestSeenAlertRepository:

    @pytest.mark.asyncio
    async def test_create_and_read_back(self, session_factory):
        repo = SeenAlertRepository(session_factory)

        assert await repo.create(seen()) is True

        records = await repo.find_for_server("tenant-1", "srv-1")
        assert len(records) == 1
        assert records[0].severity == AlertSeverity.CRITICAL
        assert records[0].source_type == SourceType.NODE
        assert records[0].resolved_at is None

    @pytest.mark.asyncio
    async def test_duplicate_create_refreshes(self, session_factory):
        repo = SeenAlertRepository(session_factory)
        await repo.create(seen())
        await repo.update_many_by_fingerprint(
            "tenant-1", "srv-1", ["srv-1-node-node-rabbit@n1"], resolved_at=NOW
        )

        later = NOW + timedelta(hours=1)
        created = await repo.create(seen(
            severity=AlertSeverity.WARNING, first_seen_at=later, last_seen_at=later
        ))

        records = await repo.find_for_server("tenant-1", "srv-1")
        assert created is False
        assert len(records) == 1
        assert records[0].first_seen_at == NOW
        assert records[0].last_seen_at == later
        assert records[0].severity == AlertSeverity.WARNING
        assert records[0].resolved_at is None

    @pytest.mark.asyncio
    async def test_concurrent_creates_keep_one_row(self, tmp_path):
        engine = create_database_engine(f"sqlite+aiosqlite:///{tmp_path / 'alerts.db'}")
        repo = SeenAlertRepository(create_session_factory(engine))
        later = NOW + timedelta(seconds=1)
        try:
            await init_db(engine)
            created = await asyncio.gather(
                repo.create(seen()),
                repo.create(seen(severity=AlertSeverity.WARNING, first_seen_at=later, last_seen_at=later)),
            )
            records = await repo.find_for_server("tenant-1", "srv-1")
        finally:
            await engine.dispose()

        assert sorted(created) == [False, True]
        assert len(records) == 1
        assert records[0].resolved_at is None

    @pytest.mark.asyncio
    async def test_find_unresolved(self, session_factory):
        repo = SeenAlertRepository(session_factory)
        await repo.create(seen("fp-a"))
        await repo.create(seen("fp-b"))
        await repo.update_many_by_fingerprint("tenant-1", "srv-1", ["fp-a"], resolved_at=NOW)

        unresolved = await repo.find_unresolved("tenant-1", "srv-1")

        assert [r.fingerprint for r in unresolved] == ["fp-b"]

    @pytest.mark.asyncio
    async def test_update_many_counts_rows(self, session_factory):
        repo = SeenAlertRepository(session_factory)
        await repo.create(seen("fp-a"))
        await repo.create(seen("fp-b"))

        count = await repo.update_many_by_fingerprint(
            "tenant-1", "srv-1", ["fp-a", "fp-b", "fp-missing"], last_notified_at=NOW
        )

        assert count == 2
        assert all(r.last_notified_at == NOW for r in await repo.find_for_server("tenant-1", "srv-1"))

    @pytest.mark.asyncio
    async def test_update_is_scoped_to_server(self, session_factory):
        repo = SeenAlertRepository(session_factory)
        await repo.create(seen("fp-a"))
        await repo.create(seen("fp-a", server_id="srv-2"))

        await repo.update_many_by_fingerprint("tenant-1", "srv-1", ["fp-a"], resolved_at=NOW)

        other = await repo.find_for_server("tenant-1", "srv-2")
        assert other[0].resolved_at is None

    @pytest.mark.asyncio
    async def test_update_rejects_identity_columns(self, session_factory):
        repo = SeenAlertRepository(session_factory)

        with pytest.raises(ValueError):
            await repo.update_many_by_fingerprint("tenant-1", "srv-1", ["fp-a"], fingerprint="other")

    @pytest.mark.asyncio
    async def test_update_with_nothing_to_do(self, session_factory):
        repo = SeenAlertRepository(session_factory)

        assert await repo.update_many_by_fingerprint("tenant-1", "srv-1", [], resolved_at=NOW) == 0


class TestResolvedAlertRepository:

    @pytest.mark.asyncio
    async def test_create_assigns_id(self, session_factory):
        repo = ResolvedAlertRepository(session_factory)

        record = await repo.create(resolved("orders", SourceType.QUEUE, vhost="/"))

        assert record.id is not None

    @pytest.mark.asyncio
    async def test_newest_first_with_pagination(self, session_factory):
        repo = ResolvedAlertRepository(session_factory)
        for minutes, name in enumerate(["a", "b", "c"]):
            await repo.create(resolved(name, SourceType.QUEUE, vhost="/", minutes=minutes))

        records, total = await repo.find_for_server("tenant-1", "srv-1", limit=2)

        assert total == 3
        assert [r.fingerprint for r in records] == ["c", "b"]

    @pytest.mark.asyncio
    async def test_vhost_filter_keeps_node_alerts(self, session_factory):
        repo = ResolvedAlertRepository(session_factory)
        await repo.create(resolved("rabbit@n1", SourceType.NODE))
        await repo.create(resolved("orders", SourceType.QUEUE, vhost="billing"))
        await repo.create(resolved("orders-2", SourceType.QUEUE, vhost="shipping"))

        records, total = await repo.find_for_server("tenant-1", "srv-1", vhost="billing")

        assert total == 2
        assert {r.fingerprint for r in records} == {"rabbit@n1", "orders"}

    @pytest.mark.asyncio
    async def test_severity_and_category_filters(self, session_factory):
        repo = ResolvedAlertRepository(session_factory)
        await repo.create(resolved("rabbit@n1", SourceType.NODE, severity=AlertSeverity.CRITICAL))
        await repo.create(resolved("orders", SourceType.QUEUE, vhost="/"))

        _, critical = await repo.find_for_server("tenant-1", "srv-1", severity=AlertSeverity.CRITICAL)
        _, queue = await repo.find_for_server("tenant-1", "srv-1", category=AlertCategory.QUEUE)

        assert critical == 1
        assert queue == 1

    @pytest.mark.asyncio
    async def test_details_round_trip(self, session_factory):
        repo = ResolvedAlertRepository(session_factory)
        await repo.create(resolved("orders", SourceType.QUEUE, vhost="/", details={"sourceName": "orders"}))

        records, _ = await repo.find_for_server("tenant-1", "srv-1")

        assert records[0].details == {"sourceName": "orders"}


class TestThresholdRepository:

    @pytest.mark.asyncio
    async def test_missing_tenant(self, session_factory):
        assert await ThresholdRepository(session_factory).get_thresholds("tenant-1") is None

    @pytest.mark.asyncio
    async def test_save_then_overwrite(self, session_factory):
        repo = ThresholdRepository(session_factory)
        await repo.save_thresholds("tenant-1", DEFAULT_THRESHOLDS)
        await repo.save_thresholds("tenant-1", DEFAULT_THRESHOLDS.merged({"memory": {"warning": 70}}))

        thresholds = await repo.get_thresholds("tenant-1")

        assert thresholds.memory == ThresholdPair(70, 95)
        assert thresholds.consumer_utilization.critical is None
        assert thresholds.queue_messages == DEFAULT_THRESHOLDS.queue_messages


class TestNotificationSettingsRepository:

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, session_factory):
        assert await NotificationSettingsRepository(session_factory).get_preferences("tenant-1") is None

    @pytest.mark.asyncio
    async def test_null_columns_mean_everything(self, session_factory):
        async with session_factory() as session:
            session.add(TenantNotificationSettingsModel(
                tenant_id="tenant-1",
                tenant_name="Acme",
                email_notifications_enabled=True,
                contact_email="ops@acme.test",
            ))
            await session.commit()

        prefs = await NotificationSettingsRepository(session_factory).get_preferences("tenant-1")

        assert prefs.severities == ALL_SEVERITIES
        assert prefs.server_scope.is_all
        assert prefs.email_ready
        assert prefs.webhook is None
        assert prefs.chat is None

    @pytest.mark.asyncio
    async def test_partial_update(self, session_factory):
        repo = NotificationSettingsRepository(session_factory)
        await repo.update_preferences("tenant-1", email_enabled=True, contact_email="ops@acme.test")

        prefs = await repo.update_preferences(
            "tenant-1",
            severities=frozenset({AlertSeverity.CRITICAL}),
            server_scope=ServerScope.subset(["srv-1"]),
        )

        assert prefs.contact_email == "ops@acme.test"
        assert prefs.severities == frozenset({AlertSeverity.CRITICAL})
        assert prefs.server_scope.includes("srv-1")
        assert not prefs.server_scope.includes("srv-2")

    @pytest.mark.asyncio
    async def test_empty_server_list_means_all(self, session_factory):
        repo = NotificationSettingsRepository(session_factory)
        await repo.update_preferences("tenant-1", server_scope=ServerScope.subset(["srv-1"]))

        prefs = await repo.update_preferences("tenant-1", server_scope=ServerScope.from_stored([]))

        assert prefs.server_scope.is_all

    @pytest.mark.asyncio
    async def test_channel_targets(self, session_factory):
        repo = NotificationSettingsRepository(session_factory)
        await repo.update_preferences("tenant-1", email_enabled=True)
        webhook = await repo.add_webhook("tenant-1", "https://hooks.acme.test", secret="s3cret")
        chat = await repo.add_chat_webhook("tenant-1", "https://chat.acme.test/hook")

        prefs = await repo.get_preferences("tenant-1")

        assert prefs.webhook == webhook
        assert prefs.webhook.secret == "s3cret"
        assert prefs.webhook.version == "v1"
        assert prefs.chat == chat
        assert await repo.get_webhook("tenant-2") is None
