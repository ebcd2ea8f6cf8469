"""
Broker - Server Registry.

Resolves a tenant's server id to a management API client.
All clients share one HTTP session owned by the registry.
"""

import logging
from typing import Optional

import aiohttp

from alerting.exceptions import ServerNotFoundError
from alerting.interfaces import ServerStore

from .client import RabbitMQManagementClient


logger = logging.getLogger(__name__)


class ServerRegistry:
    """MetricSourceFactory backed by the server store."""

    def __init__(self, server_store: ServerStore, timeout_seconds: float = 10.0):
        """
        Args:
            server_store: ServerStore with get_server(tenant_id, server_id)
            timeout_seconds: Per-request management API timeout
        """
        self._server_store = server_store
        self._timeout = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        """Close the shared session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def for_server(self, tenant_id: str, server_id: str) -> RabbitMQManagementClient:
        """
        Raises:
            ServerNotFoundError: server not registered for the tenant
        """
        server = await self._server_store.get_server(tenant_id, server_id)
        if server is None:
            raise ServerNotFoundError(server_id, tenant_id)

        return RabbitMQManagementClient(
            server.management_url,
            server.username,
            server.password,
            timeout_seconds=self._timeout,
            session=await self._get_session(),
        )
