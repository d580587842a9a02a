"""Turns Unraid push notifications into presence-rule alerts."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Literal, Optional

import structlog
from pydantic import BaseModel, Field

from statusdeck.alerts.metric_registry import MetricRegistry
from statusdeck.models import (
    CONDITION_PRESENCE,
    SEVERITY_CRITICAL,
    SEVERITY_INFO,
    SEVERITY_WARNING,
    NotificationPayload,
)
from statusdeck.store.base import Store


logger = structlog.get_logger(__name__)

EVENT_TYPES = (
    "array.started",
    "array.stopped",
    "array.offline",
    "parity.check.started",
    "parity.check.finished",
    "parity.errors",
    "docker.started",
    "docker.stopped",
    "drive.temperature.high",
    "ups.battery.low",
    "disk.full",
    "server.reboot",
    "server.shutdown",
)

# Returns the dispatch outcome for one rule.
Submit = Callable[[int, NotificationPayload], Awaitable[str]]


class UnraidEvent(BaseModel):
    event: str = Field(..., min_length=1, max_length=200)
    subject: str = Field(..., min_length=1, max_length=500)
    description: str = Field("", max_length=5000)
    importance: Optional[Literal["normal", "warning", "alert"]] = None
    timestamp: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


def event_metric_key(event_type: str) -> Optional[str]:
    if event_type not in EVENT_TYPES:
        return None
    return "unraid_" + event_type.replace(".", "_")


def importance_severity(importance: Optional[str]) -> str:
    if importance == "alert":
        return SEVERITY_CRITICAL
    if importance == "warning":
        return SEVERITY_WARNING
    return SEVERITY_INFO


class UnraidEventProcessor:
    def __init__(self, store: Store, registry: MetricRegistry, submit: Submit):
        self.store = store
        self.registry = registry
        self.submit = submit

    async def process(self, event: UnraidEvent) -> dict[str, Any]:
        """Log the event and fire every presence rule watching it.

        Returns the stored event id plus the outcome per matched rule.
        """
        event_id = self.store.add_unraid_event(
            event.event,
            event.subject,
            event.description,
            event.importance or "normal",
            event.metadata,
        )
        logger.info("Received Unraid event", event=event.event, event_id=event_id)

        metric_key = event_metric_key(event.event)
        if metric_key is None:
            logger.warning("Unknown Unraid event type", event=event.event, event_id=event_id)
            return {"event_id": event_id, "processed": False, "results": {}}

        definition = self.registry.get_by_key(metric_key)
        definition_id = definition.id if definition is not None else None

        rules = [
            rule
            for rule in self.store.list_active_rules(CONDITION_PRESENCE)
            if rule.metric_type == metric_key
            or (definition_id is not None and rule.metric_definition_id == definition_id)
        ]
        if not rules:
            logger.info("No presence rules for Unraid event", metric_key=metric_key)

        results: dict[int, str] = {}
        fallback_severity = importance_severity(event.importance)
        for rule in rules:
            metadata = {
                "unraid_event": event.event,
                "importance": event.importance,
                "timestamp": event.timestamp,
                "event_id": event_id,
            }
            metadata.update(event.metadata)
            payload = NotificationPayload(
                alert_type=metric_key,
                title=event.subject,
                message=event.description,
                severity=rule.severity or fallback_severity,
                metadata=metadata,
            )
            results[rule.id] = await self.submit(rule.id, payload)

        self.store.mark_unraid_event_processed(event_id)
        logger.info("Processed Unraid event", event_id=event_id, rules=len(rules))
        return {"event_id": event_id, "processed": True, "results": results}
