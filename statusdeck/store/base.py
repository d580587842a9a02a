"""Query/command interface the pollers and notifiers consume."""

from __future__ import annotations

from typing import Any, Iterable, Protocol

from statusdeck.models import (
    Card,
    Integration,
    MetricDefinition,
    NotificationHistoryEntry,
    NotificationRule,
    NotificationTemplate,
    WebhookConfig,
)


# Settings keys
SETTING_STATUS_SOURCE = "status_source_id"
SETTING_MAINTENANCE_MODE = "maintenance_mode"
SETTING_FLOOD_STATE = "notification_flood_state"
SETTING_AGGREGATION_ENABLED = "aggregation_enabled"
SETTING_AGGREGATION_WINDOW_MS = "aggregation_window_ms"
SETTING_UNRAID_WEBHOOK_ENABLED = "unraid_webhook_enabled"
SETTING_UNRAID_WEBHOOK_API_KEY = "unraid_webhook_api_key"


class Store(Protocol):
    # Integrations
    def add_integration(
        self,
        service_name: str,
        service_type: str,
        credentials: str | None = None,
        poll_interval: float = 30.0,
        is_active: bool = True,
    ) -> Integration: ...

    def get_integration(self, integration_id: int) -> Integration | None: ...

    def list_integrations(
        self, *, active_only: bool = True, types: Iterable[str] | None = None
    ) -> list[Integration]: ...

    def record_poll(self, integration_id: int, status: str, polled_at: float | None = None) -> None: ...

    def delete_integration(self, integration_id: int) -> bool: ...

    # Cards
    def add_card(
        self,
        name: str,
        show_status: bool = True,
        status_source_id: int | None = None,
        status_monitor_name: str | None = None,
    ) -> Card: ...

    def get_card(self, card_id: int) -> Card | None: ...

    def list_status_cards(self) -> list[Card]: ...

    def get_card_name(self, card_id: int) -> str | None: ...

    def save_status_mappings(self, mappings: Iterable[tuple[int, int | None, str | None]]) -> int: ...

    # Settings
    def get_setting(self, key: str, default: str | None = None) -> str | None: ...

    def set_setting(self, key: str, value: str) -> None: ...

    # Metric definitions
    def upsert_metric_definition(self, definition: MetricDefinition) -> int: ...

    def get_metric_definition(self, definition_id: int) -> MetricDefinition | None: ...

    def get_metric_definition_by_key(self, metric_key: str) -> MetricDefinition | None: ...

    def list_metric_definitions(self, integration_type: str | None = None) -> list[MetricDefinition]: ...

    # Webhooks
    def add_webhook(
        self, name: str, provider_type: str, webhook_url: str, is_active: bool = True
    ) -> WebhookConfig: ...

    def get_webhook(self, webhook_id: int) -> WebhookConfig | None: ...

    # Rules
    def add_rule(self, rule: NotificationRule) -> NotificationRule: ...

    def get_rule(self, rule_id: int) -> NotificationRule | None: ...

    def list_active_rules(self, condition_type: str | None = None) -> list[NotificationRule]: ...

    def get_active_rule_with_webhook(self, rule_id: int) -> tuple[NotificationRule, WebhookConfig] | None: ...

    # Templates
    def add_template(self, template: NotificationTemplate) -> NotificationTemplate: ...

    def get_template(self, template_id: int) -> NotificationTemplate | None: ...

    def get_default_template(self) -> NotificationTemplate | None: ...

    # History
    def add_history(self, entry: NotificationHistoryEntry) -> int: ...

    def list_history(self, rule_id: int | None = None, limit: int = 100) -> list[NotificationHistoryEntry]: ...

    # Unraid push events
    def add_unraid_event(
        self,
        event_type: str,
        subject: str,
        description: str,
        importance: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> int: ...

    def mark_unraid_event_processed(self, event_id: int) -> None: ...

    def list_unraid_events(self, limit: int = 50) -> list[dict[str, Any]]: ...
