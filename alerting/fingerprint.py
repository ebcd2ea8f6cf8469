"""
Alerting - Fingerprints.

============================================================
PURPOSE
============================================================
Stable identity for a detected condition across polls.

A fingerprint is derived only from WHERE and WHAT, never from
WHEN or HOW BAD, so a condition keeps its identity while its
severity changes.

FORMAT:
- node / cluster:        {server}-{category}-{type}-{name}
- queue with vhost:      {server}-{category}-queue-{vhost}-{name}
- queue without vhost:   {server}-{category}-queue-{name}

Alert ids are different: they are salted with time and change
on every pass.

============================================================
"""

import itertools
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .models import CLUSTER_WIDE_SOURCES, Alert, AlertCategory, SourceType


_alert_sequence = itertools.count()


def _text(value: Union[str, Enum]) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def generate_alert_fingerprint(
    server_id: str,
    category: Union[AlertCategory, str],
    source_type: Union[SourceType, str],
    source_name: str,
    vhost: Optional[str] = None,
) -> str:
    """
    Derive the storage key for a condition.

    vhost only participates for queue sources.
    """
    source = _text(source_type)
    if source == SourceType.QUEUE.value and vhost:
        return f"{server_id}-{_text(category)}-{source}-{vhost}-{source_name}"
    return f"{server_id}-{_text(category)}-{source}-{source_name}"


def generate_alert_id(
    server_id: str,
    category: Union[AlertCategory, str],
    source_name: str,
) -> str:
    """Per-pass alert id: millisecond timestamp plus a process-wide counter."""
    millis = int(time.time() * 1000)
    return f"{server_id}-{_text(category)}-{source_name}-{millis}-{next(_alert_sequence)}"


@dataclass(frozen=True)
class AlertFingerprint:
    """
    Typed fingerprint.

    Vhost scoping uses the vhost field, never a substring of key.
    """

    server_id: str
    category: AlertCategory
    source_type: SourceType
    source_name: str
    vhost: Optional[str] = None

    def __post_init__(self):
        if self.source_type in CLUSTER_WIDE_SOURCES and self.vhost is not None:
            object.__setattr__(self, "vhost", None)

    @property
    def key(self) -> str:
        return generate_alert_fingerprint(
            self.server_id,
            self.category,
            self.source_type,
            self.source_name,
            self.vhost,
        )

    @classmethod
    def for_alert(cls, alert: Alert) -> "AlertFingerprint":
        return cls(
            server_id=alert.server_id,
            category=alert.category,
            source_type=alert.source.type,
            source_name=alert.source.name,
            vhost=alert.vhost,
        )

    def in_vhost_scope(self, vhost: Optional[str]) -> bool:
        """
        Whether this condition belongs to a vhost-scoped pass.

        Node and cluster conditions belong to every vhost.
        """
        if vhost is None or self.source_type in CLUSTER_WIDE_SOURCES:
            return True
        return self.vhost == vhost
