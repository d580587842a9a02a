"""Threshold and status-change rule evaluation.

Evaluation only builds payloads; sending is the notification service's job.
Note that ``eq`` compares floats exactly, with no tolerance, so it is only
reliable for integer-valued metrics such as counts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

import structlog

from statusdeck.alerts.metric_registry import MetricRegistry
from statusdeck.models import (
    CONDITION_STATUS_CHANGE,
    CONDITION_THRESHOLD,
    STATUS_OFFLINE,
    STATUS_ONLINE,
    TARGET_ALL,
    TARGET_CARD,
    TARGET_INTEGRATION,
    Integration,
    MetricDefinition,
    NotificationPayload,
    NotificationRule,
    StatusChange,
)
from statusdeck.store.base import Store


logger = structlog.get_logger(__name__)


LEGACY_UNITS = {
    "cpu_temperature": "°C",
    "drive_temperature": "°C",
    "cpu_usage": "%",
    "memory_usage": "%",
    "disk_usage": "%",
    "ups_battery_level": "%",
    "network_bandwidth": "Mbps",
}

LEGACY_NAMES = {
    "cpu_temperature": "CPU Temperature",
    "drive_temperature": "Drive Temperature",
    "cpu_usage": "CPU Usage",
    "memory_usage": "Memory Usage",
    "disk_usage": "Disk Usage",
    "ups_battery_level": "UPS Battery Level",
    "network_bandwidth": "Network Bandwidth",
    "docker_container_status": "Docker Container Status",
    "array_status": "Array Status",
    "server_offline": "Server Offline",
    "server_online": "Server Online",
    "server_warning": "Server Warning",
}

OPERATOR_SYMBOLS = {"gt": ">", "lt": "<", "gte": "≥", "lte": "≤", "eq": "="}


@dataclass(frozen=True)
class TriggeredAlert:
    rule_id: int
    payload: NotificationPayload


def evaluate_operator(value: float, operator: str, threshold: float) -> bool:
    if operator == "gt":
        return value > threshold
    if operator == "lt":
        return value < threshold
    if operator == "gte":
        return value >= threshold
    if operator == "lte":
        return value <= threshold
    if operator == "eq":
        return value == threshold
    return False


def match_status_change(rule: NotificationRule, old_status: str, new_status: str) -> bool:
    """``None`` on either side of the rule matches any status."""
    from_ok = rule.from_status is None or rule.from_status == old_status
    to_ok = rule.to_status is None or rule.to_status == new_status
    return from_ok and to_ok


def status_alert_type(new_status: str) -> str:
    if new_status == STATUS_OFFLINE:
        return "server_offline"
    if new_status == STATUS_ONLINE:
        return "server_online"
    return "server_warning"


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


class AlertEvaluator:
    def __init__(self, store: Store, registry: MetricRegistry):
        self.store = store
        self.registry = registry

    # -- metric metadata -----------------------------------------------------

    def _definition(self, rule: NotificationRule) -> Optional[MetricDefinition]:
        if rule.metric_definition_id is not None:
            return self.registry.get_by_id(rule.metric_definition_id)
        return None

    def metric_unit(self, metric_key: str, definition: Optional[MetricDefinition] = None) -> str:
        if definition is not None and definition.unit:
            return definition.unit
        by_key = self.registry.get_by_key(metric_key)
        if by_key is not None and by_key.unit:
            return by_key.unit
        return LEGACY_UNITS.get(metric_key, "")

    def metric_display_name(self, metric_key: str, definition: Optional[MetricDefinition] = None) -> str:
        if definition is not None and definition.display_name:
            return definition.display_name
        by_key = self.registry.get_by_key(metric_key)
        if by_key is not None and by_key.display_name:
            return by_key.display_name
        return LEGACY_NAMES.get(metric_key, metric_key)

    @staticmethod
    def value_key(rule: NotificationRule, definition: Optional[MetricDefinition], integration: Integration) -> Optional[str]:
        """Key under which the rule's metric appears in a driver's values."""
        if definition is not None and definition.driver_capability:
            if definition.integration_type in (None, integration.service_type):
                return definition.driver_capability
            return None
        key = rule.metric_type
        if not key:
            return None
        prefix = integration.service_type.replace("-", "_") + "_"
        if key.startswith(prefix):
            return key[len(prefix):]
        return key

    # -- threshold path ------------------------------------------------------

    def evaluate_thresholds(
        self,
        integration: Integration,
        values: dict[str, float],
        rules: Optional[Iterable[NotificationRule]] = None,
    ) -> list[TriggeredAlert]:
        if rules is None:
            rules = self.store.list_active_rules(CONDITION_THRESHOLD)

        triggered: list[TriggeredAlert] = []
        for rule in rules:
            if rule.condition_type != CONDITION_THRESHOLD or not rule.is_active or rule.id is None:
                continue
            if not (
                rule.target_type == TARGET_ALL
                or (rule.target_type == TARGET_INTEGRATION and rule.target_id == integration.id)
            ):
                continue
            if rule.threshold_operator is None or rule.threshold_value is None:
                logger.warning("Skipping malformed threshold rule", rule_id=rule.id)
                continue

            definition = self._definition(rule)
            key = self.value_key(rule, definition, integration)
            if key is None or key not in values:
                continue
            value = values[key]
            if value is None:
                continue
            if not evaluate_operator(float(value), rule.threshold_operator, float(rule.threshold_value)):
                continue

            triggered.append(TriggeredAlert(rule.id, self.threshold_payload(rule, integration, key, value, definition)))
        return triggered

    def threshold_payload(
        self,
        rule: NotificationRule,
        integration: Integration,
        value_key: str,
        value: float,
        definition: Optional[MetricDefinition] = None,
    ) -> NotificationPayload:
        metric_key = rule.metric_type or (definition.metric_key if definition else value_key)
        unit = self.metric_unit(metric_key, definition)
        display = self.metric_display_name(metric_key, definition)
        symbol = OPERATOR_SYMBOLS.get(rule.threshold_operator or "", rule.threshold_operator or "")
        shown_value = _format_number(value)
        shown_threshold = _format_number(float(rule.threshold_value or 0))
        name = integration.service_name or f"Integration {integration.id}"
        return NotificationPayload(
            alert_type=metric_key,
            title=rule.name,
            message=f"{name}: {display} is {shown_value}{unit} ({symbol} {shown_threshold}{unit})",
            severity=rule.severity,
            metadata={
                "integration_id": integration.id,
                "integration_name": name,
                "metric_type": metric_key,
                "metric_display_name": display,
                "metric_definition_id": rule.metric_definition_id,
                "metric_value": value,
                "threshold": rule.threshold_value,
                "unit": unit,
            },
        )

    # -- status-change path --------------------------------------------------

    def evaluate_status_changes(
        self,
        changes: Iterable[StatusChange],
        rules: Optional[Iterable[NotificationRule]] = None,
    ) -> list[TriggeredAlert]:
        if rules is None:
            rules = self.store.list_active_rules(CONDITION_STATUS_CHANGE)
        rules = list(rules)

        triggered: list[TriggeredAlert] = []
        for change in changes:
            for rule in rules:
                if rule.condition_type != CONDITION_STATUS_CHANGE or not rule.is_active or rule.id is None:
                    continue
                if not (
                    rule.target_type == TARGET_ALL
                    or (rule.target_type == TARGET_CARD and rule.target_id == change.card_id)
                ):
                    continue
                if not match_status_change(rule, change.old_status, change.new_status):
                    continue
                triggered.append(TriggeredAlert(rule.id, self.status_change_payload(rule, change)))
        return triggered

    @staticmethod
    def status_change_payload(rule: NotificationRule, change: StatusChange) -> NotificationPayload:
        return NotificationPayload(
            alert_type=status_alert_type(change.new_status),
            title=rule.name,
            message=f"{change.card_name}: Status changed from {change.old_status} to {change.new_status}",
            severity=rule.severity,
            metadata={
                "card_id": change.card_id,
                "card_name": change.card_name,
                "old_status": change.old_status,
                "new_status": change.new_status,
            },
        )
