#!/usr/bin/env python3
"""
Broker Alert Engine - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
Wires storage, the management API registry, the alert engine,
notification channels, the REST API and the background poller
into one runtime.

MODES:
  api     - REST API only (alerts computed on request)
  poller  - Background poller only
  full    - REST API with the background poller (default)

============================================================
USAGE
============================================================
    python app.py --mode full
    python app.py --mode poller --config alerts.yaml

With PM2:
    pm2 start app.py --interpreter python --name broker-alerts -- --mode full

============================================================
"""

import argparse
import asyncio
import logging
import signal
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine

from alerting.config import AlertEngineConfig, set_config
from alerting.dispatch import DispatchCoordinator
from alerting.health import AlertHealthService
from alerting.poller import AlertPoller
from alerting.router import AlertingContext, router
from alerting.service import AlertService
from alerting.thresholds import ThresholdProvider
from alerting.tracker import AlertLifecycleTracker
from broker.registry import ServerRegistry
from database.engine import create_database_engine, create_session_factory, init_db
from database.repository import (
    NotificationSettingsRepository,
    ResolvedAlertRepository,
    SeenAlertRepository,
    ServerRepository,
    ThresholdRepository,
)
from notifications.chat import ChatSender
from notifications.email import SmtpEmailSender
from notifications.webhook import WebhookSender


logger = logging.getLogger(__name__)


MODES = ("api", "poller", "full")


# ============================================================
# WIRING
# ============================================================

@dataclass
class AlertEngine:
    """Every long-lived object of one running process."""

    config: AlertEngineConfig
    db_engine: AsyncEngine
    registry: ServerRegistry
    webhook_sender: WebhookSender
    chat_sender: ChatSender
    context: AlertingContext
    poller: AlertPoller

    async def close(self) -> None:
        """Stop the poller and release network and database resources."""
        await self.poller.stop()
        await self.registry.close()
        await self.webhook_sender.close()
        await self.chat_sender.close()
        await self.db_engine.dispose()
        logger.info("Alert engine shut down")


async def build_engine(config: AlertEngineConfig) -> AlertEngine:
    """Create the database schema and wire every component."""
    db_engine = create_database_engine(config.database_url)
    await init_db(db_engine)
    session_factory = create_session_factory(db_engine)

    server_store = ServerRepository(session_factory)
    seen_store = SeenAlertRepository(session_factory)
    resolved_store = ResolvedAlertRepository(session_factory)
    settings_store = NotificationSettingsRepository(session_factory)
    threshold_provider = ThresholdProvider(ThresholdRepository(session_factory))

    registry = ServerRegistry(server_store, timeout_seconds=config.broker_timeout_seconds)

    webhook_sender = WebhookSender(config.webhook)
    chat_sender = ChatSender(config.chat, frontend_url=config.frontend_url)
    email_sender = SmtpEmailSender(config.smtp, frontend_url=config.frontend_url)

    tracker = AlertLifecycleTracker(
        seen_store,
        resolved_store,
        cooldown=timedelta(days=config.cooldown_days),
    )
    dispatcher = DispatchCoordinator(
        seen_store,
        email_sender=email_sender,
        webhook_sender=webhook_sender,
        chat_sender=chat_sender,
    )
    service = AlertService(
        registry,
        threshold_provider,
        tracker,
        dispatcher,
        settings_store,
        resolved_store,
        watch_interval=config.watch_interval_seconds,
    )
    context = AlertingContext(
        service=service,
        health_service=AlertHealthService(registry, threshold_provider),
        server_store=server_store,
        settings_store=settings_store,
    )
    poller = AlertPoller(
        service,
        server_store,
        interval_seconds=config.check_interval_seconds,
        concurrency=config.concurrency,
        server_timeout_seconds=config.server_timeout_seconds,
    )

    logger.info(f"Alert engine wired (database: {db_engine.url.render_as_string(hide_password=True)})")
    return AlertEngine(
        config=config,
        db_engine=db_engine,
        registry=registry,
        webhook_sender=webhook_sender,
        chat_sender=chat_sender,
        context=context,
        poller=poller,
    )


# ============================================================
# FASTAPI APPLICATION
# ============================================================

def create_app(context: AlertingContext, poller: Optional[AlertPoller] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        context: Engine objects the endpoints use
        poller: Started and stopped with the application when given
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if poller is not None:
            await poller.start()
        try:
            yield
        finally:
            if poller is not None:
                await poller.stop()

    app = FastAPI(
        title="Broker Alert Engine API",
        description="RabbitMQ alert detection and notification",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.alerting = context
    app.include_router(router, prefix="/api")

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Process liveness."""
        return {
            "status": "healthy",
            "poller_running": poller.is_running if poller is not None else False,
        }

    return app


# ============================================================
# RUN MODES
# ============================================================

async def _wait_for_shutdown() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops
            pass
    await stop.wait()


async def run_application(mode: str, config: AlertEngineConfig) -> int:
    """
    Run the alert engine.

    Returns:
        Exit code
    """
    engine = await build_engine(config)

    try:
        if mode == "poller":
            await engine.poller.start()
            logger.info("Poller running (press Ctrl+C to stop)...")
            await _wait_for_shutdown()
        else:
            app = create_app(engine.context, engine.poller if mode == "full" else None)
            server = uvicorn.Server(uvicorn.Config(
                app,
                host=config.api_host,
                port=config.api_port,
                log_level=config.log_level.lower(),
                access_log=True,
            ))
            logger.info(f"Starting alert API on {config.api_host}:{config.api_port} (mode: {mode})")
            await server.serve()
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    finally:
        await engine.close()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="broker-alert-engine",
        description="RabbitMQ alert detection and notification engine",
    )
    parser.add_argument(
        "--mode", "-m",
        type=str,
        choices=MODES,
        default="full",
        help="Runtime mode (default: full)",
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        default=None,
        help="YAML configuration file; environment variables override it",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Override LOG_LEVEL",
    )
    return parser


def load_config(args) -> AlertEngineConfig:
    """YAML (optional), then environment, then CLI overrides."""
    base = AlertEngineConfig.from_yaml(args.config) if args.config else None
    config = AlertEngineConfig.from_env(base)
    if args.log_level:
        config.log_level = args.log_level.upper()
    set_config(config)
    return config


def main() -> int:
    """Main entry point."""
    args = create_parser().parse_args()
    config = load_config(args)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    return asyncio.run(run_application(args.mode, config))


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
