"""
Alerting - Background Poller.

============================================================
PURPOSE
============================================================
Run an analysis pass for every registered server on a fixed
interval so tracking and notifications happen without anyone
watching the dashboard.

PRINCIPLES:
- First cycle runs immediately on start
- Cycles never overlap; a tick that finds one running is skipped
- Bounded concurrency across servers
- One slow or broken server never blocks the rest

============================================================
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

from .exceptions import MetricSourceUnavailableError
from .interfaces import ServerStore
from .models import utc_now


logger = logging.getLogger(__name__)


@dataclass
class PollCycleStats:
    """Outcome of one poll cycle."""

    servers: int = 0
    succeeded: int = 0
    unreachable: int = 0
    timed_out: int = 0
    failed: int = 0
    alerts: int = 0
    duration_seconds: float = 0.0


class AlertPoller:
    """
    Periodically analyzes every server, then tracks and notifies.

    Runs as a background task.
    """

    def __init__(
        self,
        service,
        server_store: ServerStore,
        interval_seconds: float = 10.0,
        concurrency: int = 10,
        server_timeout_seconds: float = 30.0,
    ):
        """
        Args:
            service: AlertService
            server_store: ServerStore listing every registered server
            interval_seconds: Seconds between cycle starts
            concurrency: Servers checked at once
            server_timeout_seconds: Upper bound for fetching and analyzing one
                server. Tracking and notification are not bounded by it.
        """
        self._service = service
        self._server_store = server_store
        self._interval = interval_seconds
        self._concurrency = concurrency
        self._server_timeout = server_timeout_seconds
        self._running = False
        self._cycle_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._last_stats: Optional[PollCycleStats] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_stats(self) -> Optional[PollCycleStats]:
        return self._last_stats

    async def start(self) -> None:
        """Start the poller."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"Alert poller started (interval {self._interval}s)")

    async def stop(self) -> None:
        """Stop the poller."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Alert poller stopped")

    async def _run(self) -> None:
        """Main run loop."""
        while self._running:
            started = time.monotonic()
            try:
                if await self.run_cycle() is None:
                    logger.debug("Previous alert cycle still running, skipping tick")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Alert cycle error: {e}")

            await asyncio.sleep(max(0.0, self._interval - (time.monotonic() - started)))

    async def run_cycle(self) -> Optional[PollCycleStats]:
        """
        Check every server once.

        Returns:
            Cycle stats, or None when another cycle was already running
        """
        if self._cycle_lock.locked():
            return None

        async with self._cycle_lock:
            started = time.monotonic()
            stats = PollCycleStats()

            try:
                servers = await self._server_store.list_servers()
            except Exception as e:
                logger.error(f"Failed to list servers for alert check: {e}")
                return stats

            stats.servers = len(servers)
            semaphore = asyncio.Semaphore(self._concurrency)

            async def check(server) -> None:
                async with semaphore:
                    await self._check_server(server, stats)

            await asyncio.gather(*(check(server) for server in servers))

            stats.duration_seconds = time.monotonic() - started
            self._last_stats = stats
            logger.info(
                f"Alert cycle complete: {stats.succeeded}/{stats.servers} servers checked, "
                f"{stats.alerts} alerts, {stats.unreachable} unreachable, "
                f"{stats.timed_out} timed out, {stats.failed} failed "
                f"in {stats.duration_seconds:.1f}s"
            )
            return stats

    async def _check_server(self, server, stats: PollCycleStats) -> None:
        now = utc_now()
        try:
            alerts, resolvable = await asyncio.wait_for(
                self._service.analyze_server(server.tenant_id, server.id, server.name, now=now),
                timeout=self._server_timeout,
            )
        except asyncio.TimeoutError:
            stats.timed_out += 1
            logger.warning(f"Alert check timed out for server {server.name} ({server.id})")
            return
        except MetricSourceUnavailableError as e:
            stats.unreachable += 1
            logger.warning(f"Server {server.name} ({server.id}) is unreachable: {e}")
            return
        except Exception as e:
            stats.failed += 1
            logger.error(f"Alert check failed for server {server.name} ({server.id}): {e}")
            return

        # Not bounded by the server timeout.
        await self._service.track_and_notify(
            alerts,
            server.tenant_id,
            server.id,
            server.name,
            resolvable_sources=resolvable,
            now=now,
        )

        stats.succeeded += 1
        stats.alerts += len(alerts)
