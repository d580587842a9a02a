"""Notification pipeline: cooldown, batching, templating, delivery and history."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Iterable, Optional

import httpx
import structlog

from statusdeck.alerts.aggregator import AlertAggregator
from statusdeck.alerts.evaluator import TriggeredAlert
from statusdeck.alerts.flood_control import FloodControl
from statusdeck.alerts.templates import TemplateRenderer
from statusdeck.config import NotificationConfig
from statusdeck.crypto import CredentialCipher
from statusdeck.errors import ConfigurationError, CredentialError, DeliveryError
from statusdeck.models import (
    HISTORY_FAILED,
    HISTORY_SENT,
    NotificationHistoryEntry,
    NotificationPayload,
    NotificationRule,
    WebhookConfig,
)
from statusdeck.notifications.providers import WebhookProvider, create_provider, send_with_retry
from statusdeck.store.base import Store


logger = structlog.get_logger(__name__)

OUTCOME_SENT = "sent"
OUTCOME_FAILED = "failed"
OUTCOME_SUPPRESSED = "suppressed"
OUTCOME_BATCHED = "batched"
OUTCOME_SKIPPED = "skipped"

ProviderFactory = Callable[..., WebhookProvider]


class NotificationService:
    """Sends alerts for rules through their webhook.

    ``send_alert`` never raises: every failure ends as a logged outcome and,
    once a send was attempted, a history row.
    """

    def __init__(
        self,
        store: Store,
        cipher: CredentialCipher,
        http_client: httpx.AsyncClient,
        config: Optional[NotificationConfig] = None,
        *,
        flood_control: Optional[FloodControl] = None,
        renderer: Optional[TemplateRenderer] = None,
        provider_factory: ProviderFactory = create_provider,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.cipher = cipher
        self.http_client = http_client
        self.config = config or NotificationConfig()
        self.flood_control = flood_control or FloodControl(store, clock=clock)
        self.renderer = renderer or TemplateRenderer(store)
        self.provider_factory = provider_factory
        self._sleep = sleep
        self._clock = clock
        self.aggregator = AlertAggregator(
            store,
            self._deliver_batch,
            enabled=self.config.aggregation_enabled,
            window_seconds=self.config.aggregation_window_seconds,
            clock=clock,
        )

    async def send_alert(
        self, rule_id: int, payload: NotificationPayload, bypass_flood_control: bool = False
    ) -> str:
        found = self.store.get_active_rule_with_webhook(rule_id)
        if found is None:
            logger.warning("Rule not found, inactive or without an active webhook", rule_id=rule_id)
            return OUTCOME_SKIPPED
        rule, webhook = found

        if not self.flood_control.can_send(rule_id, rule.cooldown_minutes, bypass=bypass_flood_control):
            logger.info("Alert suppressed by flood control", rule_id=rule_id, cooldown_minutes=rule.cooldown_minutes)
            return OUTCOME_SUPPRESSED

        if not bypass_flood_control and self.aggregator.add(rule, payload):
            return OUTCOME_BATCHED

        return await self._deliver(rule, webhook, payload, bypass=bypass_flood_control)

    async def submit(self, alerts: Iterable[TriggeredAlert]) -> dict[int, str]:
        """Send each triggered alert; one failing rule does not stop the rest."""
        outcomes: dict[int, str] = {}
        for alert in alerts:
            try:
                outcomes[alert.rule_id] = await self.send_alert(alert.rule_id, alert.payload)
            except Exception as e:
                logger.error("Alert dispatch crashed", rule_id=alert.rule_id, error=str(e))
                outcomes[alert.rule_id] = OUTCOME_FAILED
        return outcomes

    async def _deliver_batch(self, rule_id: int, payload: NotificationPayload) -> str:
        found = self.store.get_active_rule_with_webhook(rule_id)
        if found is None:
            logger.warning("Dropping batch for rule that is no longer active", rule_id=rule_id)
            return OUTCOME_SKIPPED
        rule, webhook = found
        return await self._deliver(rule, webhook, payload, bypass=False)

    async def _deliver(
        self, rule: NotificationRule, webhook: WebhookConfig, payload: NotificationPayload, *, bypass: bool
    ) -> str:
        title, message = self.renderer.render(payload, rule.template_id)
        rendered = payload.with_text(title, message)

        try:
            endpoint = self.cipher.decrypt(webhook.webhook_url)
            provider = self._provider(webhook.provider_type)
        except (CredentialError, ConfigurationError) as e:
            logger.error("Webhook misconfigured", rule_id=rule.id, webhook_id=webhook.id, error=str(e))
            self._record(rule, webhook, rendered, HISTORY_FAILED, attempts=0, error=str(e))
            return OUTCOME_FAILED

        try:
            attempts = await send_with_retry(
                provider,
                endpoint,
                rendered,
                delays=self.config.retry_delays_seconds,
                max_attempts=self.config.max_attempts,
                sleep=self._sleep,
            )
        except DeliveryError as e:
            logger.error(
                "Alert delivery failed",
                rule_id=rule.id,
                webhook=webhook.name,
                provider=provider.name,
                attempts=e.attempts,
                error=str(e),
            )
            self._record(rule, webhook, rendered, HISTORY_FAILED, attempts=e.attempts, error=str(e))
            return OUTCOME_FAILED

        self._record(rule, webhook, rendered, HISTORY_SENT, attempts=attempts)
        self.flood_control.record(rule.id, bypass=bypass)
        logger.info("Alert sent", rule_id=rule.id, webhook=webhook.name, provider=provider.name, title=rendered.title)
        return OUTCOME_SENT

    def _provider(self, provider_type: str) -> WebhookProvider:
        return self.provider_factory(
            provider_type,
            self.http_client,
            timeout_seconds=self.config.send_timeout_seconds,
            app_name=self.config.app_name,
        )

    def _record(
        self,
        rule: NotificationRule,
        webhook: WebhookConfig,
        payload: NotificationPayload,
        status: str,
        *,
        attempts: int,
        error: Optional[str] = None,
    ) -> None:
        entry = NotificationHistoryEntry(
            rule_id=rule.id,
            webhook_id=webhook.id,
            alert_type=payload.alert_type,
            title=payload.title,
            message=payload.message,
            severity=payload.severity,
            provider_type=webhook.provider_type,
            status=status,
            attempts=attempts,
            error_message=error,
            metadata=payload.metadata,
            sent_at=self._clock(),
        )
        try:
            self.store.add_history(entry)
        except Exception as e:
            logger.error("Failed to write notification history", rule_id=rule.id, error=str(e))

    # -- admin actions -------------------------------------------------------

    async def test_rule(self, rule_id: int) -> dict[str, Any]:
        rule = self.store.get_rule(rule_id)
        if rule is None:
            return {"success": False, "message": "Notification rule not found"}

        metric_key = rule.metric_type
        if not metric_key and rule.metric_definition_id is not None:
            definition = self.store.get_metric_definition(rule.metric_definition_id)
            metric_key = definition.metric_key if definition is not None else "unknown_metric"

        payload = NotificationPayload(
            alert_type=metric_key or rule.condition_type,
            title=f"TEST: {rule.name}",
            message=(
                f'This is a test notification for rule "{rule.name}". '
                "If you see this, the rule is configured correctly."
            ),
            severity=rule.severity,
            metadata={
                "test": True,
                "rule_id": rule.id,
                "rule_name": rule.name,
                "metric_definition_id": rule.metric_definition_id,
            },
        )
        outcome = await self.send_alert(rule.id, payload, bypass_flood_control=True)
        webhook = self.store.get_webhook(rule.webhook_id)
        webhook_name = webhook.name if webhook is not None else f"webhook {rule.webhook_id}"
        if outcome == OUTCOME_SENT:
            return {"success": True, "message": f"Test notification sent via {webhook_name}", "outcome": outcome}
        if outcome == OUTCOME_SKIPPED:
            return {"success": False, "message": "Rule or its webhook is inactive", "outcome": outcome}
        return {"success": False, "message": f"Failed to send test notification via {webhook_name}", "outcome": outcome}

    async def test_webhook(self, webhook_id: int) -> dict[str, Any]:
        webhook = self.store.get_webhook(webhook_id)
        if webhook is None:
            return {"success": False, "message": "Webhook not found"}
        try:
            endpoint = self.cipher.decrypt(webhook.webhook_url)
            provider = self._provider(webhook.provider_type)
        except (CredentialError, ConfigurationError) as e:
            logger.error("Webhook test failed", webhook_id=webhook_id, error=str(e))
            return {"success": False, "message": str(e)}

        success = await provider.test_connection(endpoint)
        if success:
            return {"success": True, "message": f"Test notification sent successfully to {webhook.name}"}
        return {"success": False, "message": f"Failed to send test notification to {webhook.name}"}

    async def flush(self) -> int:
        return await self.aggregator.flush_all()
