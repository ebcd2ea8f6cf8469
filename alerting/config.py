"""
Alerting - Configuration.

============================================================
PURPOSE
============================================================
Runtime settings for the alert engine, its channels and its
background poller.

Sources, later wins:
1. Dataclass defaults
2. YAML file (optional)
3. Environment variables / .env

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv


logger = logging.getLogger(__name__)


DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./alerts.db"


# =============================================================
# CHANNEL CONFIGS
# =============================================================

@dataclass
class SmtpConfig:
    """Outgoing mail server."""

    host: str = "localhost"
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    from_address: str = "alerts@localhost"
    use_tls: bool = True
    timeout_seconds: float = 30.0

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.from_address)


@dataclass
class WebhookConfig:
    """Outgoing webhook delivery."""

    max_retries: int = 3
    """Retries after the first attempt, for 5xx, 429 and network errors."""

    retry_delay_seconds: float = 1.0
    """Base delay; doubles with every retry."""

    timeout_seconds: float = 10.0

    user_agent: str = "BrokerAlerts-Webhook/1.0"


@dataclass
class ChatConfig:
    """Chat incoming-webhook delivery."""

    max_alerts_per_message: int = 10
    max_messages_per_minute: int = 20
    max_messages_per_hour: int = 100
    timeout_seconds: float = 10.0


# =============================================================
# ENGINE CONFIG
# =============================================================

@dataclass
class AlertEngineConfig:
    """Top-level configuration."""

    check_interval_seconds: float = 10.0
    """Background poller interval."""

    watch_interval_seconds: float = 10.0
    """Live watch stream interval."""

    concurrency: int = 10
    """Servers checked at once by the poller."""

    server_timeout_seconds: float = 30.0
    """Upper bound for one server's pass in the poller."""

    cooldown_days: int = 7
    """Reminder interval for a continuously active condition."""

    broker_timeout_seconds: float = 10.0
    """Management API request timeout."""

    frontend_url: str = "http://localhost:3000"
    database_url: str = DEFAULT_DATABASE_URL
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 8000

    smtp: SmtpConfig = field(default_factory=SmtpConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)

    @classmethod
    def from_env(cls, base: Optional["AlertEngineConfig"] = None) -> "AlertEngineConfig":
        """
        Load configuration from environment variables (and .env).

        Environment variables:
        - ALERT_CHECK_INTERVAL
        - ALERT_WATCH_INTERVAL
        - ALERT_CONCURRENCY
        - ALERT_SERVER_TIMEOUT
        - ALERT_COOLDOWN_DAYS
        - BROKER_TIMEOUT
        - FRONTEND_URL
        - DATABASE_URL
        - LOG_LEVEL
        - API_HOST / API_PORT
        - SMTP_HOST / SMTP_PORT / SMTP_USER / SMTP_PASSWORD / SMTP_FROM / SMTP_USE_TLS
        """
        load_dotenv()
        config = base or cls()

        if os.getenv("ALERT_CHECK_INTERVAL"):
            config.check_interval_seconds = float(os.getenv("ALERT_CHECK_INTERVAL"))
        if os.getenv("ALERT_WATCH_INTERVAL"):
            config.watch_interval_seconds = float(os.getenv("ALERT_WATCH_INTERVAL"))
        if os.getenv("ALERT_CONCURRENCY"):
            config.concurrency = int(os.getenv("ALERT_CONCURRENCY"))
        if os.getenv("ALERT_SERVER_TIMEOUT"):
            config.server_timeout_seconds = float(os.getenv("ALERT_SERVER_TIMEOUT"))
        if os.getenv("ALERT_COOLDOWN_DAYS"):
            config.cooldown_days = int(os.getenv("ALERT_COOLDOWN_DAYS"))
        if os.getenv("BROKER_TIMEOUT"):
            config.broker_timeout_seconds = float(os.getenv("BROKER_TIMEOUT"))

        config.frontend_url = os.getenv("FRONTEND_URL", config.frontend_url)
        config.database_url = os.getenv("DATABASE_URL", config.database_url)
        config.log_level = os.getenv("LOG_LEVEL", config.log_level).upper()
        config.api_host = os.getenv("API_HOST", config.api_host)
        if os.getenv("API_PORT"):
            config.api_port = int(os.getenv("API_PORT"))

        smtp = config.smtp
        smtp.host = os.getenv("SMTP_HOST", smtp.host)
        if os.getenv("SMTP_PORT"):
            smtp.port = int(os.getenv("SMTP_PORT"))
        smtp.username = os.getenv("SMTP_USER", smtp.username)
        smtp.password = os.getenv("SMTP_PASSWORD", smtp.password)
        smtp.from_address = os.getenv("SMTP_FROM", smtp.from_address)
        if os.getenv("SMTP_USE_TLS"):
            smtp.use_tls = os.getenv("SMTP_USE_TLS", "true").lower() in ("1", "true", "yes")

        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "AlertEngineConfig":
        """Load configuration from a YAML file. Falls back to defaults on any error."""
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}

            config = cls()
            for key in (
                "check_interval_seconds",
                "watch_interval_seconds",
                "concurrency",
                "server_timeout_seconds",
                "cooldown_days",
                "broker_timeout_seconds",
                "frontend_url",
                "database_url",
                "log_level",
                "api_host",
                "api_port",
            ):
                if key in data:
                    setattr(config, key, data[key])

            if "smtp" in data:
                config.smtp = SmtpConfig(**data["smtp"])
            if "webhook" in data:
                config.webhook = WebhookConfig(**data["webhook"])
            if "chat" in data:
                config.chat = ChatConfig(**data["chat"])

            return config

        except Exception as e:
            logger.warning(f"Failed to load YAML config from {path}: {e}")
            return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, without secrets."""
        return {
            "check_interval_seconds": self.check_interval_seconds,
            "watch_interval_seconds": self.watch_interval_seconds,
            "concurrency": self.concurrency,
            "server_timeout_seconds": self.server_timeout_seconds,
            "cooldown_days": self.cooldown_days,
            "broker_timeout_seconds": self.broker_timeout_seconds,
            "frontend_url": self.frontend_url,
            "log_level": self.log_level,
            "smtp_host": self.smtp.host,
            "webhook_max_retries": self.webhook.max_retries,
            "chat_max_alerts_per_message": self.chat.max_alerts_per_message,
        }


# =============================================================
# GLOBAL CONFIG SINGLETON
# =============================================================


_default_config: Optional[AlertEngineConfig] = None


def get_config() -> AlertEngineConfig:
    """Get the global alert engine configuration."""
    global _default_config
    if _default_config is None:
        _default_config = AlertEngineConfig.from_env()
    return _default_config


def set_config(config: AlertEngineConfig) -> None:
    """Set the global alert engine configuration."""
    global _default_config
    _default_config = config
