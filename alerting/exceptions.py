"""
Alerting Exceptions - Error hierarchy for graceful degradation.

These exceptions are for internal use only.
The tracking pass NEVER raises to its caller - it degrades gracefully.
Only the alert listing surfaces an unreachable broker, so that callers can
tell "cannot connect" apart from "no issues found".
"""

from datetime import datetime, timezone
from typing import Any, Optional


class AlertingError(Exception):
    """Base exception for all alerting errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class MetricSourceError(AlertingError):
    """Broker management API returned an error or malformed data."""

    def __init__(
        self,
        message: str,
        endpoint: str = "",
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code


class MetricSourceUnavailableError(MetricSourceError):
    """Broker management API cannot be reached at all."""


class AlertStorageError(AlertingError):
    """Seen/resolved alert persistence failed."""

    def __init__(
        self,
        message: str,
        fingerprint: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.fingerprint = fingerprint


class ChannelDeliveryError(AlertingError):
    """A notification channel failed to deliver."""

    def __init__(
        self,
        message: str,
        channel: str = "",
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.channel = channel
        self.status_code = status_code


class ThresholdValidationError(AlertingError):
    """Threshold update violates warning/critical ordering or bounds."""

    def __init__(
        self,
        message: str,
        violations: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, {"violations": violations or []})
        self.violations = violations or []


class ServerNotFoundError(AlertingError):
    """Broker server is not registered for the tenant."""

    def __init__(self, server_id: str, tenant_id: str) -> None:
        super().__init__(
            f"Server {server_id} not found for tenant {tenant_id}",
            {"server_id": server_id, "tenant_id": tenant_id},
        )
        self.server_id = server_id
        self.tenant_id = tenant_id
