"""Catalog of metrics that notification rules can reference.

The catalog is seeded from the static driver metadata below and kept in step
with what drivers actually discover. Entries are only ever upserted.
"""

from __future__ import annotations

from typing import Iterable, Optional

import structlog

from statusdeck.models import (
    CONDITION_PRESENCE,
    CONDITION_STATUS_CHANGE,
    CONDITION_THRESHOLD,
    NETDATA,
    OPERATORS,
    UNRAID,
    UPTIME_KUMA,
    Capability,
    MetricDefinition,
)
from statusdeck.store.base import Store


logger = structlog.get_logger(__name__)

UNRAID_WEBHOOK = "unraid-webhook"

OPERATOR_LABELS = {
    "gt": "Greater than (>)",
    "lt": "Less than (<)",
    "gte": "Greater than or equal (≥)",
    "lte": "Less than or equal (≤)",
    "eq": "Equal to (=)",
}

# (capability, display name, category, unit, description)
DRIVER_CATALOG: dict[str, list[tuple[str, str, str, Optional[str], str]]] = {
    NETDATA: [
        ("cpu_usage", "CPU Usage", "performance", "%", "CPU usage percentage from Netdata"),
        ("memory_usage", "Memory Usage", "performance", "%", "RAM usage percentage from Netdata"),
        ("disk_root_usage", "Disk Usage (/)", "health", "%", "Root filesystem usage from Netdata"),
        ("load_average", "Load Average", "performance", None, "One-minute load average from Netdata"),
        ("network_bandwidth", "Network Bandwidth", "network", "Mbps", "Network usage from Netdata"),
    ],
    UNRAID: [
        ("cpu_cores", "CPU Core Count", "performance", None, "Number of CPU cores from Unraid"),
        ("cpu_temp", "System Temperature", "health", "°C", "Average disk temperature from Unraid"),
        ("memory_usage", "Memory Usage", "performance", "%", "RAM usage from Unraid"),
        ("disk_usage", "Disk Usage", "performance", "%", "Array disk usage from Unraid"),
        ("docker_containers", "Docker Container Count", "status", None, "Number of running containers"),
    ],
    UPTIME_KUMA: [
        ("uptime", "Uptime", "status", "%", "Share of Uptime Kuma monitors that are up"),
    ],
}

STATUS_CATALOG = [
    ("server_offline", "Server Offline", "Alert when a card goes offline"),
    ("server_online", "Server Online (Recovery)", "Alert when a card comes back online"),
    ("server_warning", "Server Warning", "Alert when a card status becomes warning"),
]

# (event capability, display name, category, description)
UNRAID_EVENT_CATALOG = [
    ("array_started", "Array Started", "status", "Unraid array has been started"),
    ("array_stopped", "Array Stopped", "status", "Unraid array has been stopped"),
    ("array_offline", "Array Offline", "status", "Unraid array went offline unexpectedly"),
    ("parity_check_started", "Parity Check Started", "status", "Parity check has started"),
    ("parity_check_finished", "Parity Check Finished", "status", "Parity check has completed"),
    ("parity_errors", "Parity Errors Detected", "health", "Parity errors were found during check"),
    ("docker_started", "Docker Container Started", "status", "Docker container was started"),
    ("docker_stopped", "Docker Container Stopped", "status", "Docker container was stopped"),
    ("drive_temperature_high", "Drive Temperature High", "health", "Drive temperature exceeded safe threshold"),
    ("ups_battery_low", "UPS Battery Low", "health", "UPS battery level is critically low"),
    ("disk_full", "Disk Full", "health", "Disk space is critically low or full"),
    ("server_reboot", "Server Reboot", "status", "Unraid server is rebooting"),
    ("server_shutdown", "Server Shutdown", "status", "Unraid server is shutting down"),
]


def catalog_key(integration_type: str, capability: str) -> str:
    return f"{integration_type}_{capability}".replace("-", "_")


def operator_label(operator: str) -> str:
    return OPERATOR_LABELS.get(operator, operator)


class MetricRegistry:
    def __init__(self, store: Store):
        self.store = store

    def sync_driver_catalog(self) -> int:
        """Upsert the static catalog; safe to call on every start."""
        count = 0
        for integration_type, entries in DRIVER_CATALOG.items():
            for capability, display_name, category, unit, description in entries:
                self.store.upsert_metric_definition(
                    MetricDefinition(
                        metric_key=catalog_key(integration_type, capability),
                        display_name=display_name,
                        category=category,
                        condition_type=CONDITION_THRESHOLD,
                        integration_type=integration_type,
                        driver_capability=capability,
                        operators=list(OPERATORS),
                        unit=unit,
                        description=description,
                    )
                )
                count += 1
        for key, display_name, description in STATUS_CATALOG:
            self.store.upsert_metric_definition(
                MetricDefinition(
                    metric_key=key,
                    display_name=display_name,
                    category="status",
                    condition_type=CONDITION_STATUS_CHANGE,
                    operators=["eq"],
                    description=description,
                )
            )
            count += 1
        for capability, display_name, category, description in UNRAID_EVENT_CATALOG:
            self.store.upsert_metric_definition(
                MetricDefinition(
                    metric_key=f"unraid_{capability}",
                    display_name=display_name,
                    category=category,
                    condition_type=CONDITION_PRESENCE,
                    integration_type=UNRAID_WEBHOOK,
                    driver_capability=capability,
                    operators=["eq"],
                    description=description,
                )
            )
            count += 1
        logger.info("Synced metric catalog", definitions=count)
        return count

    def sync_capabilities(self, integration_type: str, capabilities: Iterable[Capability]) -> int:
        count = 0
        for cap in capabilities:
            metric_key = catalog_key(integration_type, cap.key)
            existing = self.store.get_metric_definition_by_key(metric_key)
            # Push-event definitions share the unraid_ prefix; never turn them into thresholds.
            if existing is not None and existing.condition_type != CONDITION_THRESHOLD:
                continue
            self.store.upsert_metric_definition(
                MetricDefinition(
                    metric_key=metric_key,
                    display_name=cap.display_name,
                    category=cap.category,
                    condition_type=CONDITION_THRESHOLD,
                    integration_type=integration_type,
                    driver_capability=cap.key,
                    operators=list(OPERATORS),
                    unit=cap.unit or None,
                    description=cap.description,
                )
            )
            count += 1
        if count:
            logger.debug("Synced discovered capabilities", integration_type=integration_type, definitions=count)
        return count

    def get_by_id(self, definition_id: int) -> Optional[MetricDefinition]:
        definition = self.store.get_metric_definition(definition_id)
        return definition if definition is not None and definition.is_active else None

    def get_by_key(self, metric_key: str) -> Optional[MetricDefinition]:
        definition = self.store.get_metric_definition_by_key(metric_key)
        return definition if definition is not None and definition.is_active else None

    def for_integration_type(self, integration_type: Optional[str]) -> list[MetricDefinition]:
        if integration_type in (None, "all"):
            return self.store.list_metric_definitions()
        return self.store.list_metric_definitions(integration_type)
