"""``{{variable}}`` substitution for notification titles and messages."""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional

import structlog

from statusdeck.models import NotificationPayload, NotificationTemplate, utc_now_iso
from statusdeck.store.base import Store


logger = structlog.get_logger(__name__)

PLACEHOLDER = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")

# Template variable -> payload metadata key
METADATA_VARIABLES = {
    "metricValue": "metric_value",
    "threshold": "threshold",
    "integrationName": "integration_name",
    "integrationId": "integration_id",
    "cardName": "card_name",
    "cardId": "card_id",
    "oldStatus": "old_status",
    "newStatus": "new_status",
    "unraidEvent": "unraid_event",
    "importance": "importance",
}

PREVIEW_SAMPLE = {
    "severity": "warning",
    "metricName": "cpu_usage",
    "metricDisplayName": "CPU Usage",
    "metricValue": 85,
    "threshold": 80,
    "unit": "%",
    "integrationName": "Netdata Server",
    "cardName": "Production Server",
    "oldStatus": "online",
    "newStatus": "offline",
}


def render_template(template: str, variables: Mapping[str, Any]) -> str:
    """Replace every placeholder; unknown or empty variables render as ''."""

    def substitute(match: re.Match) -> str:
        value = variables.get(match.group(1))
        return "" if value is None else str(value)

    return PLACEHOLDER.sub(substitute, template)


def build_variable_context(payload: NotificationPayload, timestamp: Optional[str] = None) -> dict[str, Any]:
    metadata = payload.metadata or {}
    context: dict[str, Any] = {
        "timestamp": timestamp or utc_now_iso(),
        "severity": payload.severity,
        "title": payload.title,
        "message": payload.message,
        "metricName": payload.alert_type,
        "metricDisplayName": metadata.get("metric_display_name") or payload.alert_type,
        "unit": metadata.get("unit") or "",
    }
    for variable, key in METADATA_VARIABLES.items():
        context[variable] = metadata.get(key)
    return context


class TemplateRenderer:
    def __init__(self, store: Store):
        self.store = store

    def select(self, template_id: Optional[int] = None) -> Optional[NotificationTemplate]:
        template = None
        if template_id:
            template = self.store.get_template(template_id)
            if template is None:
                logger.warning("Template not found, using default", template_id=template_id)
        if template is None:
            template = self.store.get_default_template()
        return template

    def render(self, payload: NotificationPayload, template_id: Optional[int] = None) -> tuple[str, str]:
        """Return the (title, message) to send for ``payload``."""
        template = self.select(template_id)
        if template is None:
            return payload.title, payload.message
        variables = build_variable_context(payload)
        return render_template(template.title_template, variables), render_template(template.message_template, variables)

    @staticmethod
    def preview(template: NotificationTemplate, sample: Optional[Mapping[str, Any]] = None) -> tuple[str, str]:
        variables: dict[str, Any] = {"timestamp": utc_now_iso(), **PREVIEW_SAMPLE}
        if sample:
            variables.update(sample)
        return render_template(template.title_template, variables), render_template(template.message_template, variables)
