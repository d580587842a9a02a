from __future__ import annotations

import pytest

from statusdeck.alerts.evaluator import AlertEvaluator, evaluate_operator, match_status_change
from statusdeck.alerts.metric_registry import MetricRegistry
from statusdeck.models import (
    CONDITION_STATUS_CHANGE,
    CONDITION_THRESHOLD,
    NETDATA,
    UNRAID,
    Integration,
    NotificationRule,
    StatusChange,
)
from statusdeck.store import SQLiteStore


NETDATA_BOX = Integration(4, "Netdata Box", NETDATA, None)
TOWER = Integration(5, "Tower", UNRAID, None)


def _threshold(rule_id: int, operator: str, value: float, **kwargs) -> NotificationRule:
    kwargs.setdefault("metric_type", "cpu_usage")
    return NotificationRule(
        rule_id, 1, f"rule {rule_id}", CONDITION_THRESHOLD,
        threshold_operator=operator, threshold_value=value, **kwargs,
    )


@pytest.fixture
def evaluator(store: SQLiteStore) -> AlertEvaluator:
    return AlertEvaluator(store, MetricRegistry(store))


@pytest.mark.parametrize(
    ("operator", "below", "at", "above"),
    [
        ("gt", False, False, True),
        ("gte", False, True, True),
        ("lt", True, False, False),
        ("lte", True, True, False),
        ("eq", False, True, False),
    ],
)
def test_operator_boundaries(operator: str, below: bool, at: bool, above: bool) -> None:
    threshold = 80.0
    assert evaluate_operator(threshold - 1e-6, operator, threshold) is below
    assert evaluate_operator(threshold, operator, threshold) is at
    assert evaluate_operator(threshold + 1e-6, operator, threshold) is above


def test_unknown_operator_never_matches() -> None:
    assert evaluate_operator(1.0, "between", 0.0) is False


def test_status_match_wildcards() -> None:
    rule = NotificationRule(1, 1, "down", CONDITION_STATUS_CHANGE, to_status="offline")
    assert match_status_change(rule, "online", "offline")
    assert match_status_change(rule, "warning", "offline")
    assert not match_status_change(rule, "offline", "online")
    recovery = NotificationRule(2, 1, "up", CONDITION_STATUS_CHANGE, from_status="offline", to_status="online")
    assert match_status_change(recovery, "offline", "online")
    assert not match_status_change(recovery, "warning", "online")


def test_threshold_is_monotonic(evaluator: AlertEvaluator) -> None:
    rule = _threshold(1, "gt", 80)
    fired = [
        bool(evaluator.evaluate_thresholds(NETDATA_BOX, {"cpu_usage": v}, [rule]))
        for v in (79.999, 80.0, 80.001, 95.0)
    ]
    assert fired == [False, False, True, True]


def test_threshold_payload_with_legacy_metadata(evaluator: AlertEvaluator) -> None:
    rule = _threshold(1, "gt", 80, severity="critical")
    alerts = evaluator.evaluate_thresholds(NETDATA_BOX, {"cpu_usage": 91.5}, [rule])
    assert len(alerts) == 1
    payload = alerts[0].payload
    assert alerts[0].rule_id == 1
    assert payload.title == "rule 1"
    assert payload.alert_type == "cpu_usage"
    assert payload.severity == "critical"
    assert payload.message == "Netdata Box: CPU Usage is 91.5% (> 80%)"
    assert payload.metadata["integration_id"] == 4
    assert payload.metadata["metric_value"] == 91.5
    assert payload.metadata["threshold"] == 80
    assert payload.metadata["unit"] == "%"


def test_unknown_metric_falls_back_to_key(evaluator: AlertEvaluator) -> None:
    rule = _threshold(1, "gte", 3, metric_type="zombie_processes")
    payload = evaluator.evaluate_thresholds(NETDATA_BOX, {"zombie_processes": 3}, [rule])[0].payload
    assert payload.message == "Netdata Box: zombie_processes is 3 (≥ 3)"


def test_definition_rules_only_apply_to_their_integration_type(store: SQLiteStore, evaluator: AlertEvaluator) -> None:
    MetricRegistry(store).sync_driver_catalog()
    definition = store.get_metric_definition_by_key("netdata_cpu_usage")
    rule = _threshold(1, "gt", 50, metric_type=None, metric_definition_id=definition.id)

    alerts = evaluator.evaluate_thresholds(NETDATA_BOX, {"cpu_usage": 75}, [rule])
    assert len(alerts) == 1
    payload = alerts[0].payload
    assert payload.alert_type == "netdata_cpu_usage"
    assert payload.metadata["metric_definition_id"] == definition.id
    assert payload.message == "Netdata Box: CPU Usage is 75% (> 50%)"

    assert evaluator.evaluate_thresholds(TOWER, {"cpu_usage": 75}, [rule]) == []


def test_prefixed_metric_key_is_stripped(store: SQLiteStore, evaluator: AlertEvaluator) -> None:
    MetricRegistry(store).sync_driver_catalog()
    rule = _threshold(1, "gt", 90, metric_type="unraid_disk_usage")
    payload = evaluator.evaluate_thresholds(TOWER, {"disk_usage": 93.25}, [rule])[0].payload
    assert payload.message == "Tower: Disk Usage is 93.25% (> 90%)"


def test_threshold_scope_and_missing_values(evaluator: AlertEvaluator) -> None:
    rules = [
        _threshold(1, "gt", 10, target_type="integration", target_id=NETDATA_BOX.id),
        _threshold(2, "gt", 10, target_type="integration", target_id=99),
        _threshold(3, "gt", 10, metric_type="memory_usage"),
        _threshold(4, "gt", None),
    ]
    alerts = evaluator.evaluate_thresholds(NETDATA_BOX, {"cpu_usage": 50}, rules)
    assert [a.rule_id for a in alerts] == [1]


def test_status_change_evaluation(evaluator: AlertEvaluator) -> None:
    rules = [
        NotificationRule(1, 1, "Any offline", CONDITION_STATUS_CHANGE, to_status="offline"),
        NotificationRule(2, 1, "Plex back", CONDITION_STATUS_CHANGE, from_status="offline", to_status="online",
                         target_type="card", target_id=10),
        NotificationRule(3, 1, "Other card", CONDITION_STATUS_CHANGE, to_status="offline",
                         target_type="card", target_id=11),
    ]
    changes = [
        StatusChange(10, "Plex", "online", "offline"),
        StatusChange(12, "Sonarr", "offline", "online"),
    ]
    alerts = evaluator.evaluate_status_changes(changes, rules)
    assert [a.rule_id for a in alerts] == [1]
    payload = alerts[0].payload
    assert payload.alert_type == "server_offline"
    assert payload.message == "Plex: Status changed from online to offline"
    assert payload.metadata == {"card_id": 10, "card_name": "Plex", "old_status": "online", "new_status": "offline"}

    recovery = evaluator.evaluate_status_changes([StatusChange(10, "Plex", "offline", "online")], rules)
    assert [a.rule_id for a in recovery] == [2]
    assert recovery[0].payload.alert_type == "server_online"


def test_rules_are_loaded_from_store(store: SQLiteStore, evaluator: AlertEvaluator) -> None:
    webhook = store.add_webhook("Ops", "discord", "enc")
    store.add_rule(NotificationRule(None, webhook.id, "down", CONDITION_STATUS_CHANGE, to_status="offline"))
    store.add_rule(_threshold(None, "gt", 10))
    assert len(evaluator.evaluate_status_changes([StatusChange(1, "A", "online", "offline")])) == 1
    assert len(evaluator.evaluate_thresholds(NETDATA_BOX, {"cpu_usage": 11})) == 1
