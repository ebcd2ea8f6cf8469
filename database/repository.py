"""
Database - Repositories.

============================================================
PURPOSE
============================================================
Database operations behind the alert engine's store
interfaces.

RESPONSIBILITIES:
- Broker server registry
- Seen alert lifecycle rows (create / update by fingerprint)
- Resolved alert history (append / paged query)
- Tenant thresholds
- Tenant notification settings and channel targets

BOUNDARY CONVERSIONS:
- Stored severity lists -> frozenset[AlertSeverity]
  (NULL -> every severity)
- Stored server id lists -> ServerScope (NULL or [] -> all)
- String columns -> enums

============================================================
"""

import logging
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple

from sqlalchemy import and_, desc, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from alerting.exceptions import AlertStorageError
from alerting.models import (
    AlertCategory,
    AlertSeverity,
    BrokerServer,
    ChatTarget,
    NotificationPreferences,
    ResolvedAlertRecord,
    SeenAlertRecord,
    ServerScope,
    SourceType,
    WebhookTarget,
    severities_from_stored,
)
from alerting.thresholds import MetricThresholds, ThresholdPair

from .engine import transaction_scope
from .models import (
    BrokerServerModel,
    ChatWebhookModel,
    ResolvedAlertModel,
    SeenAlertModel,
    TenantAlertThresholdsModel,
    TenantNotificationSettingsModel,
    WebhookEndpointModel,
)


logger = logging.getLogger(__name__)


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


# ============================================================
# BROKER SERVERS
# ============================================================

class ServerRepository:
    """Registered broker servers."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def add_server(self, server: BrokerServer) -> BrokerServer:
        async with transaction_scope(self._session_factory) as session:
            session.add(BrokerServerModel(
                id=server.id,
                tenant_id=server.tenant_id,
                name=server.name,
                host=server.host,
                port=server.port,
                username=server.username,
                password=server.password,
                use_tls=server.use_tls,
            ))
        logger.info(f"Registered broker server {server.name} ({server.id}) for tenant {server.tenant_id}")
        return server

    async def list_servers(self) -> List[BrokerServer]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(BrokerServerModel).order_by(BrokerServerModel.created_at)
            )
            return [self._model_to_server(m) for m in result.scalars()]

    async def get_server(self, tenant_id: str, server_id: str) -> Optional[BrokerServer]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(BrokerServerModel).where(
                    and_(
                        BrokerServerModel.id == server_id,
                        BrokerServerModel.tenant_id == tenant_id,
                    )
                )
            )
            model = result.scalar_one_or_none()
        return self._model_to_server(model) if model else None

    def _model_to_server(self, model: BrokerServerModel) -> BrokerServer:
        return BrokerServer(
            id=model.id,
            tenant_id=model.tenant_id,
            name=model.name,
            host=model.host,
            port=model.port,
            username=model.username,
            password=model.password,
            use_tls=model.use_tls,
        )


# ============================================================
# SEEN ALERTS
# ============================================================

class SeenAlertRepository:
    """
    Lifecycle rows keyed by (tenant, server, fingerprint).

    create() relies on the unique constraint: a concurrent insert of
    the same fingerprint turns into an update instead of a duplicate.
    """

    UPDATABLE_COLUMNS = frozenset({"severity", "last_seen_at", "resolved_at", "last_notified_at"})

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def find_for_server(self, tenant_id: str, server_id: str) -> List[SeenAlertRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SeenAlertModel).where(
                    and_(
                        SeenAlertModel.tenant_id == tenant_id,
                        SeenAlertModel.server_id == server_id,
                    )
                )
            )
            return [self._model_to_record(m) for m in result.scalars()]

    async def find_unresolved(self, tenant_id: str, server_id: str) -> List[SeenAlertRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SeenAlertModel).where(
                    and_(
                        SeenAlertModel.tenant_id == tenant_id,
                        SeenAlertModel.server_id == server_id,
                        SeenAlertModel.resolved_at.is_(None),
                    )
                )
            )
            return [self._model_to_record(m) for m in result.scalars()]

    async def create(self, record: SeenAlertRecord) -> bool:
        """
        Insert a new lifecycle row.

        Returns:
            True when inserted, False when the fingerprint already
            existed and was refreshed instead

        Raises:
            AlertStorageError: on any other database failure
        """
        model = SeenAlertModel(
            tenant_id=record.tenant_id,
            server_id=record.server_id,
            fingerprint=record.fingerprint,
            severity=record.severity.value,
            category=record.category.value,
            source_type=record.source_type.value,
            source_name=record.source_name,
            vhost=record.vhost,
            first_seen_at=record.first_seen_at,
            last_seen_at=record.last_seen_at,
            resolved_at=record.resolved_at,
            last_notified_at=record.last_notified_at,
        )

        try:
            async with self._session_factory() as session:
                session.add(model)
                try:
                    await session.commit()
                    return True
                except IntegrityError:
                    await session.rollback()
        except SQLAlchemyError as e:
            raise AlertStorageError(f"Failed to create seen alert: {e}", record.fingerprint)

        logger.debug(f"Seen alert {record.fingerprint} already exists, refreshing instead")
        await self.update_many_by_fingerprint(
            record.tenant_id,
            record.server_id,
            [record.fingerprint],
            last_seen_at=record.last_seen_at,
            resolved_at=None,
            severity=record.severity,
        )
        return False

    async def update_many_by_fingerprint(
        self,
        tenant_id: str,
        server_id: str,
        fingerprints: Sequence[str],
        **changes: Any,
    ) -> int:
        """
        Apply column changes to every matching row.

        Raises:
            ValueError: on a column that may not be changed
            AlertStorageError: on database failure
        """
        unknown = set(changes) - self.UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update seen alert columns: {sorted(unknown)}")
        if not fingerprints or not changes:
            return 0

        values = {key: _column_value(value) for key, value in changes.items()}
        try:
            async with transaction_scope(self._session_factory) as session:
                result = await session.execute(
                    update(SeenAlertModel)
                    .where(
                        and_(
                            SeenAlertModel.tenant_id == tenant_id,
                            SeenAlertModel.server_id == server_id,
                            SeenAlertModel.fingerprint.in_(list(fingerprints)),
                        )
                    )
                    .values(**values)
                )
                return result.rowcount
        except SQLAlchemyError as e:
            raise AlertStorageError(
                f"Failed to update seen alerts: {e}",
                fingerprints[0] if len(fingerprints) == 1 else None,
                {"fingerprints": list(fingerprints)},
            )

    def _model_to_record(self, model: SeenAlertModel) -> SeenAlertRecord:
        return SeenAlertRecord(
            tenant_id=model.tenant_id,
            server_id=model.server_id,
            fingerprint=model.fingerprint,
            severity=AlertSeverity(model.severity),
            category=AlertCategory(model.category),
            source_type=SourceType(model.source_type),
            source_name=model.source_name,
            vhost=model.vhost,
            first_seen_at=model.first_seen_at,
            last_seen_at=model.last_seen_at,
            resolved_at=model.resolved_at,
            last_notified_at=model.last_notified_at,
        )


# ============================================================
# RESOLVED ALERTS
# ============================================================

class ResolvedAlertRepository:
    """Append-only resolved alert history."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def create(self, record: ResolvedAlertRecord) -> ResolvedAlertRecord:
        model = ResolvedAlertModel(
            tenant_id=record.tenant_id,
            server_id=record.server_id,
            server_name=record.server_name,
            fingerprint=record.fingerprint,
            severity=record.severity.value,
            category=record.category.value,
            title=record.title,
            description=record.description,
            details=record.details,
            source_type=record.source_type.value,
            source_name=record.source_name,
            vhost=record.vhost,
            first_seen_at=record.first_seen_at,
            resolved_at=record.resolved_at,
            duration_ms=record.duration_ms,
        )
        async with transaction_scope(self._session_factory) as session:
            session.add(model)
            await session.flush()
            record.id = model.id
        return record

    async def find_for_server(
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
        Newest first.

        With a vhost: queue alerts of that vhost plus every node and
        cluster alert.
        """
        conditions = [
            ResolvedAlertModel.tenant_id == tenant_id,
            ResolvedAlertModel.server_id == server_id,
        ]
        if severity is not None:
            conditions.append(ResolvedAlertModel.severity == severity.value)
        if category is not None:
            conditions.append(ResolvedAlertModel.category == category.value)
        if vhost is not None:
            conditions.append(
                or_(
                    ResolvedAlertModel.source_type.in_([SourceType.NODE.value, SourceType.CLUSTER.value]),
                    and_(
                        ResolvedAlertModel.source_type == SourceType.QUEUE.value,
                        ResolvedAlertModel.vhost == vhost,
                    ),
                )
            )

        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(ResolvedAlertModel).where(and_(*conditions))
            )
            result = await session.execute(
                select(ResolvedAlertModel)
                .where(and_(*conditions))
                .order_by(desc(ResolvedAlertModel.resolved_at), desc(ResolvedAlertModel.id))
                .offset(offset)
                .limit(limit)
            )
            records = [self._model_to_record(m) for m in result.scalars()]

        return records, total or 0

    def _model_to_record(self, model: ResolvedAlertModel) -> ResolvedAlertRecord:
        return ResolvedAlertRecord(
            id=model.id,
            tenant_id=model.tenant_id,
            server_id=model.server_id,
            server_name=model.server_name,
            fingerprint=model.fingerprint,
            severity=AlertSeverity(model.severity),
            category=AlertCategory(model.category),
            title=model.title,
            description=model.description,
            details=model.details or {},
            source_type=SourceType(model.source_type),
            source_name=model.source_name,
            vhost=model.vhost,
            first_seen_at=model.first_seen_at,
            resolved_at=model.resolved_at,
            duration_ms=model.duration_ms,
        )


# ============================================================
# THRESHOLDS
# ============================================================

class ThresholdRepository:
    """Per-tenant threshold overrides."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def get_thresholds(self, tenant_id: str) -> Optional[MetricThresholds]:
        try:
            async with self._session_factory() as session:
                model = await session.get(TenantAlertThresholdsModel, tenant_id)
        except SQLAlchemyError as e:
            raise AlertStorageError(f"Failed to load thresholds for tenant {tenant_id}: {e}")
        return self._model_to_thresholds(model) if model else None

    async def save_thresholds(self, tenant_id: str, thresholds: MetricThresholds) -> None:
        values = {
            "memory_warning": thresholds.memory.warning,
            "memory_critical": thresholds.memory.critical,
            "disk_warning": thresholds.disk.warning,
            "disk_critical": thresholds.disk.critical,
            "file_descriptors_warning": thresholds.file_descriptors.warning,
            "file_descriptors_critical": thresholds.file_descriptors.critical,
            "sockets_warning": thresholds.sockets.warning,
            "sockets_critical": thresholds.sockets.critical,
            "processes_warning": thresholds.processes.warning,
            "processes_critical": thresholds.processes.critical,
            "queue_messages_warning": thresholds.queue_messages.warning,
            "queue_messages_critical": thresholds.queue_messages.critical,
            "unacked_messages_warning": thresholds.unacked_messages.warning,
            "unacked_messages_critical": thresholds.unacked_messages.critical,
            "consumer_utilization_warning": thresholds.consumer_utilization.warning,
            "connections_warning": thresholds.connections.warning,
            "connections_critical": thresholds.connections.critical,
            "run_queue_warning": thresholds.run_queue.warning,
            "run_queue_critical": thresholds.run_queue.critical,
        }
        try:
            async with transaction_scope(self._session_factory) as session:
                model = await session.get(TenantAlertThresholdsModel, tenant_id)
                if model is None:
                    session.add(TenantAlertThresholdsModel(tenant_id=tenant_id, **values))
                else:
                    for key, value in values.items():
                        setattr(model, key, value)
        except SQLAlchemyError as e:
            raise AlertStorageError(f"Failed to save thresholds for tenant {tenant_id}: {e}")

    def _model_to_thresholds(self, m: TenantAlertThresholdsModel) -> MetricThresholds:
        return MetricThresholds(
            memory=ThresholdPair(m.memory_warning, m.memory_critical),
            disk=ThresholdPair(m.disk_warning, m.disk_critical),
            file_descriptors=ThresholdPair(m.file_descriptors_warning, m.file_descriptors_critical),
            sockets=ThresholdPair(m.sockets_warning, m.sockets_critical),
            processes=ThresholdPair(m.processes_warning, m.processes_critical),
            queue_messages=ThresholdPair(m.queue_messages_warning, m.queue_messages_critical),
            unacked_messages=ThresholdPair(m.unacked_messages_warning, m.unacked_messages_critical),
            consumer_utilization=ThresholdPair(m.consumer_utilization_warning),
            connections=ThresholdPair(m.connections_warning, m.connections_critical),
            run_queue=ThresholdPair(m.run_queue_warning, m.run_queue_critical),
        )


# ============================================================
# NOTIFICATION SETTINGS
# ============================================================

class NotificationSettingsRepository:
    """Tenant notification preferences and channel targets."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def get_preferences(self, tenant_id: str) -> Optional[NotificationPreferences]:
        async with self._session_factory() as session:
            model = await session.get(TenantNotificationSettingsModel, tenant_id)
        if model is None:
            return None

        return NotificationPreferences(
            tenant_id=model.tenant_id,
            tenant_name=model.tenant_name or "",
            email_enabled=bool(model.email_notifications_enabled),
            contact_email=model.contact_email,
            severities=severities_from_stored(model.notification_severities),
            server_scope=ServerScope.from_stored(model.notification_server_ids),
            webhook=await self.get_webhook(tenant_id),
            chat=await self.get_chat_config(tenant_id),
        )

    async def get_webhook(self, tenant_id: str) -> Optional[WebhookTarget]:
        """First enabled webhook endpoint, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(WebhookEndpointModel)
                .where(
                    and_(
                        WebhookEndpointModel.tenant_id == tenant_id,
                        WebhookEndpointModel.enabled.is_(True),
                    )
                )
                .order_by(WebhookEndpointModel.created_at)
                .limit(1)
            )
            model = result.scalar_one_or_none()
        if model is None:
            return None
        return WebhookTarget(id=model.id, url=model.url, secret=model.secret, version=model.version)

    async def get_chat_config(self, tenant_id: str) -> Optional[ChatTarget]:
        """First enabled chat webhook, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ChatWebhookModel)
                .where(
                    and_(
                        ChatWebhookModel.tenant_id == tenant_id,
                        ChatWebhookModel.enabled.is_(True),
                    )
                )
                .order_by(ChatWebhookModel.created_at)
                .limit(1)
            )
            model = result.scalar_one_or_none()
        if model is None:
            return None
        return ChatTarget(id=model.id, webhook_url=model.webhook_url)

    async def update_preferences(
        self,
        tenant_id: str,
        email_enabled: Optional[bool] = None,
        contact_email: Optional[str] = None,
        severities: Optional[frozenset] = None,
        server_scope: Optional[ServerScope] = None,
        tenant_name: Optional[str] = None,
    ) -> NotificationPreferences:
        """Create or partially update a tenant's settings. None leaves a field unchanged."""
        async with transaction_scope(self._session_factory) as session:
            model = await session.get(TenantNotificationSettingsModel, tenant_id)
            if model is None:
                model = TenantNotificationSettingsModel(tenant_id=tenant_id, tenant_name="")
                session.add(model)

            if tenant_name is not None:
                model.tenant_name = tenant_name
            if email_enabled is not None:
                model.email_notifications_enabled = email_enabled
            if contact_email is not None:
                model.contact_email = contact_email
            if severities is not None:
                model.notification_severities = sorted(_column_value(s) for s in severities)
            if server_scope is not None:
                model.notification_server_ids = server_scope.to_stored()

        logger.info(f"Updated notification settings for tenant {tenant_id}")
        return await self.get_preferences(tenant_id)

    async def add_webhook(self, tenant_id: str, url: str, secret: Optional[str] = None) -> WebhookTarget:
        model = WebhookEndpointModel(tenant_id=tenant_id, url=url, secret=secret)
        async with transaction_scope(self._session_factory) as session:
            session.add(model)
            await session.flush()
        return WebhookTarget(id=model.id, url=model.url, secret=model.secret, version=model.version)

    async def add_chat_webhook(self, tenant_id: str, webhook_url: str) -> ChatTarget:
        model = ChatWebhookModel(tenant_id=tenant_id, webhook_url=webhook_url)
        async with transaction_scope(self._session_factory) as session:
            session.add(model)
            await session.flush()
        return ChatTarget(id=model.id, webhook_url=model.webhook_url)
