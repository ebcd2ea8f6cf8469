"""
Broker - RabbitMQ Management API Client.

============================================================
PURPOSE
============================================================
Read-only access to the RabbitMQ management HTTP API.

ENDPOINTS USED:
- GET /api/overview
- GET /api/nodes
- GET /api/queues            (every vhost)
- GET /api/queues/{vhost}    (one vhost, URL encoded)

ERRORS:
- Connection refused / DNS / timeout -> MetricSourceUnavailableError
- Non-2xx response or invalid JSON   -> MetricSourceError

============================================================
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp

from alerting.exceptions import MetricSourceError, MetricSourceUnavailableError
from alerting.models import NodeSnapshot, QueueSnapshot


logger = logging.getLogger(__name__)


class RabbitMQManagementClient:
    """
    Management API client for one broker.

    A shared aiohttp session may be passed in; otherwise the client
    creates its own and close() releases it.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Args:
            base_url: e.g. "http://rabbit:15672"
            username: Management user
            password: Management password
            timeout_seconds: Total timeout per request
            session: Shared HTTP session, not closed by this client
        """
        self._base_url = base_url.rstrip("/")
        self._auth = aiohttp.BasicAuth(username, password)
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the client's own session."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _get_json(self, path: str) -> Any:
        url = f"{self._base_url}{path}"
        session = await self._get_session()

        try:
            async with session.get(url, auth=self._auth, timeout=self._timeout) as response:
                if response.status != 200:
                    body = await response.text()
                    raise MetricSourceError(
                        f"Management API returned {response.status} for {path}",
                        endpoint=path,
                        status_code=response.status,
                        details={"body": body[:500]},
                    )
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise MetricSourceError(f"Invalid JSON from {path}: {e}", endpoint=path)
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            raise MetricSourceUnavailableError(
                f"Cannot reach management API at {self._base_url}: {str(e) or type(e).__name__}",
                endpoint=path,
            )
        except aiohttp.ClientError as e:
            raise MetricSourceError(f"Management API request failed for {path}: {e}", endpoint=path)

    async def get_overview(self) -> Dict[str, Any]:
        """Cluster overview."""
        data = await self._get_json("/api/overview")
        if not isinstance(data, dict):
            raise MetricSourceError("Unexpected overview payload", endpoint="/api/overview")
        return data

    async def get_nodes(self) -> List[NodeSnapshot]:
        """Every cluster node."""
        data = await self._get_json("/api/nodes")
        if not isinstance(data, list):
            raise MetricSourceError("Unexpected nodes payload", endpoint="/api/nodes")
        return [NodeSnapshot.from_api(item) for item in data]

    async def get_queues(self, vhost: Optional[str] = None) -> List[QueueSnapshot]:
        """Queues of one vhost, or of every vhost when vhost is None."""
        path = "/api/queues" if vhost is None else f"/api/queues/{quote(vhost, safe='')}"
        data = await self._get_json(path)
        if not isinstance(data, list):
            raise MetricSourceError("Unexpected queues payload", endpoint=path)
        return [QueueSnapshot.from_api(item) for item in data]
