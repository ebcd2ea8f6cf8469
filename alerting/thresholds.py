"""
Alerting - Threshold Provider.

============================================================
PURPOSE
============================================================
Supplies the warning/critical limits the analyzer compares
metrics against.

- Per-tenant overrides from the threshold store
- Built-in defaults when the tenant has none
- Defaults again when the store cannot be read

Disk thresholds are "percent free" and fire when the value
drops BELOW the limit. Everything else fires when the value
rises to or above it.

============================================================
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional

from .exceptions import ThresholdValidationError


logger = logging.getLogger(__name__)


# ============================================================
# THRESHOLD TYPES
# ============================================================

@dataclass(frozen=True)
class ThresholdPair:
    """Warning and critical limit for one metric."""

    warning: float
    critical: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"warning": self.warning}
        if self.critical is not None:
            data["critical"] = self.critical
        return data


@dataclass(frozen=True)
class MetricThresholds:
    """
    Full threshold set for one tenant.

    connections is carried for the settings surface but no rule
    evaluates it.
    """

    memory: ThresholdPair = field(default_factory=lambda: ThresholdPair(80, 95))
    """Memory used, percent of the high watermark."""

    disk: ThresholdPair = field(default_factory=lambda: ThresholdPair(15, 10))
    """Disk free, percent of the free-space limit. Lower is worse."""

    file_descriptors: ThresholdPair = field(default_factory=lambda: ThresholdPair(80, 90))
    """File descriptors used, percent."""

    sockets: ThresholdPair = field(default_factory=lambda: ThresholdPair(80, 90))
    """Sockets used, percent."""

    processes: ThresholdPair = field(default_factory=lambda: ThresholdPair(80, 90))
    """Erlang processes used, percent."""

    queue_messages: ThresholdPair = field(default_factory=lambda: ThresholdPair(10000, 50000))
    """Total messages in one queue."""

    unacked_messages: ThresholdPair = field(default_factory=lambda: ThresholdPair(1000, 5000))
    """Unacknowledged messages in one queue."""

    consumer_utilization: ThresholdPair = field(default_factory=lambda: ThresholdPair(10))
    """Minimum consumer utilization percent. Warning only."""

    connections: ThresholdPair = field(default_factory=lambda: ThresholdPair(80, 95))
    """Connections used, percent."""

    run_queue: ThresholdPair = field(default_factory=lambda: ThresholdPair(10, 20))
    """Erlang run queue length."""

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {name: getattr(self, name).to_dict() for name in THRESHOLD_FIELDS}

    @classmethod
    def from_dict(cls, data: Mapping[str, Mapping[str, Any]]) -> "MetricThresholds":
        """Build from a (possibly partial) nested mapping; missing keys keep defaults."""
        return DEFAULT_THRESHOLDS.merged(data)

    def merged(self, partial: Mapping[str, Mapping[str, Any]]) -> "MetricThresholds":
        """
        Return a copy with the given warning/critical values overridden.

        Args:
            partial: {metric: {"warning": x, "critical": y}}, any subset

        Raises:
            ThresholdValidationError: on unknown metric names
        """
        unknown = [name for name in partial if name not in THRESHOLD_FIELDS]
        if unknown:
            raise ThresholdValidationError(
                "Unknown threshold metrics",
                [f"unknown metric: {name}" for name in unknown],
            )

        changes: Dict[str, ThresholdPair] = {}
        for name, values in partial.items():
            if values is None:
                continue
            current: ThresholdPair = getattr(self, name)
            warning = values.get("warning")
            critical = values.get("critical")
            changes[name] = ThresholdPair(
                warning=current.warning if warning is None else _as_number(name, "warning", warning),
                critical=current.critical if critical is None else _as_number(name, "critical", critical),
            )
        return replace(self, **changes)


def _as_number(name: str, level: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ThresholdValidationError(
            "Invalid threshold update",
            [f"{name}.{level} must be a number"],
        )


THRESHOLD_FIELDS = (
    "memory",
    "disk",
    "file_descriptors",
    "sockets",
    "processes",
    "queue_messages",
    "unacked_messages",
    "consumer_utilization",
    "connections",
    "run_queue",
)

LOWER_IS_WORSE_FIELDS = frozenset({"disk", "consumer_utilization"})

PERCENT_FIELDS = frozenset({
    "memory",
    "disk",
    "file_descriptors",
    "sockets",
    "processes",
    "consumer_utilization",
    "connections",
})

DEFAULT_THRESHOLDS = MetricThresholds()


# ============================================================
# VALIDATION
# ============================================================

def validate_thresholds(thresholds: MetricThresholds) -> List[str]:
    """
    Check bounds and warning/critical ordering.

    Returns:
        List of human readable violations, empty when valid
    """
    violations: List[str] = []

    for name in THRESHOLD_FIELDS:
        pair: ThresholdPair = getattr(thresholds, name)
        for level, value in (("warning", pair.warning), ("critical", pair.critical)):
            if value is None:
                continue
            if value < 0:
                violations.append(f"{name}.{level} must not be negative")
            elif name in PERCENT_FIELDS and value > 100:
                violations.append(f"{name}.{level} must be between 0 and 100")

        if pair.critical is None:
            continue
        if name == "disk":
            if pair.critical >= pair.warning:
                violations.append("disk.critical must be lower than disk.warning")
        elif name in LOWER_IS_WORSE_FIELDS:
            if pair.critical > pair.warning:
                violations.append(f"{name}.critical must not be higher than {name}.warning")
        elif pair.critical <= pair.warning:
            violations.append(f"{name}.critical must be higher than {name}.warning")

    return violations


# ============================================================
# PROVIDER
# ============================================================

class ThresholdProvider:
    """
    Per-tenant threshold lookup with fallback to defaults.

    Reads never fail: a missing tenant or a broken store yields
    DEFAULT_THRESHOLDS.
    """

    def __init__(self, store=None, defaults: MetricThresholds = DEFAULT_THRESHOLDS):
        """
        Args:
            store: ThresholdStore, or None to always use defaults
            defaults: Fallback thresholds
        """
        self._store = store
        self._defaults = defaults

    def get_default_thresholds(self) -> MetricThresholds:
        return self._defaults

    async def get_thresholds(self, tenant_id: str) -> MetricThresholds:
        """Tenant thresholds, or defaults."""
        if self._store is None:
            return self._defaults

        try:
            thresholds = await self._store.get_thresholds(tenant_id)
        except Exception as e:
            logger.warning(f"Failed to load thresholds for tenant {tenant_id}, using defaults: {e}")
            return self._defaults

        return thresholds if thresholds is not None else self._defaults

    async def update_thresholds(
        self,
        tenant_id: str,
        partial: Mapping[str, Mapping[str, Any]],
    ) -> MetricThresholds:
        """
        Merge a partial update into the tenant's thresholds and persist.

        A failed read raises instead of falling back to defaults.

        Raises:
            ThresholdValidationError: when the merged set is invalid
            AlertStorageError: when the stored thresholds cannot be read or saved
        """
        if self._store is None:
            raise ThresholdValidationError("Threshold storage is not configured")

        stored = await self._store.get_thresholds(tenant_id)
        current = stored if stored is not None else self._defaults
        updated = current.merged(partial)

        violations = validate_thresholds(updated)
        if violations:
            raise ThresholdValidationError("Invalid threshold update", violations)

        await self._store.save_thresholds(tenant_id, updated)
        logger.info(f"Updated alert thresholds for tenant {tenant_id}: {sorted(partial)}")
        return updated
