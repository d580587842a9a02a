from __future__ import annotations

import pytest
from pydantic import ValidationError

from statusdeck.alerts.metric_registry import MetricRegistry
from statusdeck.alerts.unraid_events import UnraidEvent, UnraidEventProcessor, event_metric_key, importance_severity
from statusdeck.models import CONDITION_PRESENCE, NotificationRule
from statusdeck.store import SQLiteStore


class _Submitted:
    def __init__(self) -> None:
        self.calls = []

    async def __call__(self, rule_id, payload) -> str:
        self.calls.append((rule_id, payload))
        return "sent"


def test_event_validation() -> None:
    event = UnraidEvent(event="array.started", subject="Array started")
    assert event.description == ""
    assert event.importance is None
    with pytest.raises(ValidationError):
        UnraidEvent(event="", subject="x")
    with pytest.raises(ValidationError):
        UnraidEvent(event="array.started", subject="x", importance="urgent")


def test_event_keys_and_severity() -> None:
    assert event_metric_key("drive.temperature.high") == "unraid_drive_temperature_high"
    assert event_metric_key("toaster.on") is None
    assert importance_severity("alert") == "critical"
    assert importance_severity("warning") == "warning"
    assert importance_severity(None) == "info"


@pytest.fixture
def processor_setup(store: SQLiteStore):
    registry = MetricRegistry(store)
    registry.sync_driver_catalog()
    webhook = store.add_webhook("Ops", "telegram", "enc")
    definition = registry.get_by_key("unraid_parity_errors")
    by_key = store.add_rule(
        NotificationRule(None, webhook.id, "Array up", CONDITION_PRESENCE, metric_type="unraid_array_started",
                         severity="info")
    )
    by_definition = store.add_rule(
        NotificationRule(None, webhook.id, "Parity", CONDITION_PRESENCE, metric_definition_id=definition.id,
                         severity="critical")
    )
    submitted = _Submitted()
    return UnraidEventProcessor(store, registry, submitted), submitted, by_key, by_definition


@pytest.mark.asyncio
async def test_matching_event_fires_rule(store: SQLiteStore, processor_setup) -> None:
    processor, submitted, by_key, by_definition = processor_setup
    event = UnraidEvent(
        event="array.started",
        subject="Array started",
        description="All disks mounted",
        importance="normal",
        timestamp="2024-05-01T10:00:00Z",
        metadata={"disks": 6},
    )
    result = await processor.process(event)

    assert result["processed"] is True
    assert result["results"] == {by_key.id: "sent"}
    rule_id, payload = submitted.calls[0]
    assert rule_id == by_key.id
    assert payload.alert_type == "unraid_array_started"
    assert payload.title == "Array started"
    assert payload.message == "All disks mounted"
    assert payload.severity == "info"
    assert payload.metadata["unraid_event"] == "array.started"
    assert payload.metadata["event_id"] == result["event_id"]
    assert payload.metadata["disks"] == 6

    stored = store.list_unraid_events()[0]
    assert stored["processed"] is True
    assert stored["importance"] == "normal"


@pytest.mark.asyncio
async def test_rule_bound_by_definition(processor_setup) -> None:
    processor, submitted, by_key, by_definition = processor_setup
    result = await processor.process(UnraidEvent(event="parity.errors", subject="Parity", importance="alert"))
    assert result["results"] == {by_definition.id: "sent"}
    assert submitted.calls[0][1].severity == "critical"


@pytest.mark.asyncio
async def test_unknown_event_is_logged_not_processed(store: SQLiteStore, processor_setup) -> None:
    processor, submitted, by_key, by_definition = processor_setup
    result = await processor.process(UnraidEvent(event="toaster.on", subject="Toast"))
    assert result["processed"] is False
    assert submitted.calls == []
    stored = store.list_unraid_events()[0]
    assert stored["event_type"] == "toaster.on"
    assert stored["processed"] is False


@pytest.mark.asyncio
async def test_event_without_rules(processor_setup) -> None:
    processor, submitted, by_key, by_definition = processor_setup
    result = await processor.process(UnraidEvent(event="server.reboot", subject="Reboot"))
    assert result["processed"] is True
    assert result["results"] == {}
