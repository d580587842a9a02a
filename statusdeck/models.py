"""Domain records exchanged between the store, drivers, pollers and notifiers."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any


# Integration (backend) types. The set is closed: adding a backend means adding
# a driver class and an entry in drivers.factory.DRIVER_REGISTRY.
UPTIME_KUMA = "uptime-kuma"
NETDATA = "netdata"
UNRAID = "unraid"
INTEGRATION_TYPES = (UPTIME_KUMA, NETDATA, UNRAID)

# Backends polled by the metric poller for threshold rules. Uptime Kuma is
# covered by the status poller instead.
THRESHOLD_INTEGRATION_TYPES = (NETDATA, UNRAID)

# Poll outcomes recorded on the integration row
POLL_SUCCESS = "success"
POLL_PARTIAL = "partial"
POLL_FAILED = "failed"

# Derived card status
STATUS_ONLINE = "online"
STATUS_OFFLINE = "offline"
STATUS_WARNING = "warning"
CARD_STATUSES = (STATUS_ONLINE, STATUS_OFFLINE, STATUS_WARNING)

# Raw monitor state reported by a backend
MONITOR_UP = "up"
MONITOR_DOWN = "down"

# Rule condition types
CONDITION_THRESHOLD = "threshold"
CONDITION_STATUS_CHANGE = "status_change"
CONDITION_PRESENCE = "presence"
CONDITION_TYPES = (CONDITION_THRESHOLD, CONDITION_STATUS_CHANGE, CONDITION_PRESENCE)

OPERATORS = ("gt", "lt", "gte", "lte", "eq")

TARGET_ALL = "all"
TARGET_CARD = "card"
TARGET_INTEGRATION = "integration"
TARGET_TYPES = (TARGET_ALL, TARGET_CARD, TARGET_INTEGRATION)

SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"
SEVERITY_CRITICAL = "critical"
SEVERITY_RANK = {SEVERITY_INFO: 1, SEVERITY_WARNING: 2, SEVERITY_CRITICAL: 3}

PROVIDER_DISCORD = "discord"
PROVIDER_TELEGRAM = "telegram"
PROVIDER_PUSHOVER = "pushover"
PROVIDER_TYPES = (PROVIDER_DISCORD, PROVIDER_TELEGRAM, PROVIDER_PUSHOVER)

HISTORY_SENT = "sent"
HISTORY_FAILED = "failed"
HISTORY_RETRYING = "retrying"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Integration:
    id: int
    service_name: str
    service_type: str
    credentials: str | None  # encrypted JSON blob
    poll_interval: float = 30.0  # seconds
    is_active: bool = True
    last_poll_at: float | None = None  # unix timestamp
    last_status: str | None = None


@dataclass
class Card:
    """A dashboard card that may display a derived status."""

    id: int
    name: str
    show_status: bool = True
    status_source_id: int | None = None
    status_monitor_name: str | None = None


@dataclass(frozen=True)
class Capability:
    """A metric a driver can fetch right now (discovered, never persisted as truth)."""

    key: str
    target: str
    metric: str
    display_name: str
    unit: str
    category: str  # performance | health | status | network
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "target": self.target,
            "metric": self.metric,
            "display_name": self.display_name,
            "unit": self.unit,
            "category": self.category,
            "description": self.description,
        }


@dataclass
class MetricData:
    value: float | str | bool
    unit: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now_iso)

    def numeric_value(self) -> float | None:
        """Value usable by threshold rules, or None for non-numeric metrics."""
        if isinstance(self.value, bool):
            return 1.0 if self.value else 0.0
        if isinstance(self.value, (int, float)):
            return float(self.value)
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "value": self.value,
            "unit": self.unit,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class MonitorState:
    name: str
    status: str  # up | down


@dataclass
class ConnectionResult:
    success: bool
    message: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data is not None:
            out["data"] = self.data
        return out


@dataclass
class MetricDefinition:
    metric_key: str
    display_name: str
    category: str
    condition_type: str
    integration_type: str | None = None
    driver_capability: str | None = None
    operators: list[str] = field(default_factory=lambda: list(OPERATORS))
    unit: str | None = None
    description: str = ""
    is_active: bool = True
    id: int | None = None


@dataclass
class NotificationRule:
    id: int | None
    webhook_id: int
    name: str
    condition_type: str
    metric_type: str | None = None
    metric_definition_id: int | None = None
    threshold_operator: str | None = None
    threshold_value: float | None = None
    from_status: str | None = None
    to_status: str | None = None
    target_type: str = TARGET_ALL
    target_id: int | None = None
    severity: str = SEVERITY_WARNING
    cooldown_minutes: int = 30
    template_id: int | None = None
    is_active: bool = True
    aggregation_window: float | None = None  # seconds, None = global window

    def validate(self) -> None:
        """Structural checks applied when a rule is written."""
        if self.condition_type not in CONDITION_TYPES:
            raise ValueError(f"Unsupported condition type: {self.condition_type}")
        if self.target_type not in TARGET_TYPES:
            raise ValueError(f"Unsupported target type: {self.target_type}")
        if self.target_type != TARGET_ALL and self.target_id is None:
            raise ValueError("target_id is required unless target_type is 'all'")
        if self.severity not in SEVERITY_RANK:
            raise ValueError(f"Unsupported severity: {self.severity}")
        if self.condition_type == CONDITION_THRESHOLD:
            if self.threshold_operator not in OPERATORS or self.threshold_value is None:
                raise ValueError("Threshold rules require threshold_operator and threshold_value")
            if not self.metric_type and self.metric_definition_id is None:
                raise ValueError("Threshold rules require a metric key or metric definition")
        elif self.condition_type == CONDITION_STATUS_CHANGE:
            if self.from_status is None and self.to_status is None:
                raise ValueError("Status change rules require from_status or to_status")
        elif not self.metric_type and self.metric_definition_id is None:
            raise ValueError("Presence rules require a metric key or metric definition")


@dataclass
class WebhookConfig:
    id: int
    name: str
    provider_type: str
    webhook_url: str  # encrypted
    is_active: bool = True


@dataclass
class NotificationTemplate:
    id: int | None
    name: str
    title_template: str
    message_template: str
    is_default: bool = False
    is_active: bool = True


@dataclass
class NotificationPayload:
    alert_type: str
    title: str
    message: str
    severity: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def with_text(self, title: str, message: str) -> "NotificationPayload":
        return replace(self, title=title, message=message, metadata=dict(self.metadata))

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_type": self.alert_type,
            "title": self.title,
            "message": self.message,
            "severity": self.severity,
            "metadata": self.metadata,
        }


@dataclass
class NotificationHistoryEntry:
    rule_id: int
    webhook_id: int
    alert_type: str | None
    title: str
    message: str
    severity: str
    provider_type: str
    status: str
    attempts: int = 1
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    sent_at: float | None = None
    id: int | None = None


@dataclass(frozen=True)
class StatusChange:
    card_id: int
    card_name: str
    old_status: str
    new_status: str
