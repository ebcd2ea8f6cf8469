"""
Notifications - HTTP Channel Base.

Shared aiohttp session handling and POST-with-retry for the
webhook and chat channels.

RETRY POLICY:
- 2xx: success
- 5xx, 429 and network errors: retry with exponential backoff
- Other 4xx: fail immediately
"""

import asyncio
import logging
from typing import Dict, Optional

import aiohttp

from alerting.models import DeliveryResult


logger = logging.getLogger(__name__)


def _redact(url: str) -> str:
    return url[:50] + "..." if len(url) > 50 else url


class HttpChannel:
    """Base class for channels that POST JSON over HTTP."""

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the channel's own session."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _post_with_retry(
        self,
        url: str,
        body: str,
        headers: Dict[str, str],
    ) -> DeliveryResult:
        """POST body to url, retrying transient failures."""
        retries = 0
        while True:
            try:
                session = await self._get_session()
                async with session.post(url, data=body, headers=headers, timeout=self._timeout) as response:
                    if 200 <= response.status < 300:
                        logger.info(f"{type(self).__name__} delivered to {_redact(url)} ({response.status}, {retries} retries)")
                        return DeliveryResult(success=True, status_code=response.status, retries=retries)

                    error_text = await response.text()
                    logger.warning(
                        f"{type(self).__name__} request to {_redact(url)} failed: "
                        f"{response.status} - {error_text[:200]} (retries: {retries})"
                    )
                    retryable = response.status >= 500 or response.status == 429
                    if not retryable or retries >= self._max_retries:
                        return DeliveryResult(
                            success=False,
                            error=f"HTTP {response.status}: {response.reason}",
                            status_code=response.status,
                            retries=retries,
                        )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f"{type(self).__name__} error sending to {_redact(url)}: {e!r} (retries: {retries})")
                if retries >= self._max_retries:
                    return DeliveryResult(success=False, error=str(e) or type(e).__name__, retries=retries)

            await asyncio.sleep(self._retry_delay * (2 ** retries))
            retries += 1
