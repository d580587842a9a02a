"""On-demand integration polling and admin helpers."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import structlog

from statusdeck.alerts.evaluator import AlertEvaluator, TriggeredAlert
from statusdeck.alerts.metric_registry import MetricRegistry
from statusdeck.drivers.base import BaseDriver
from statusdeck.errors import IntegrationNotFoundError, RateLimitedError
from statusdeck.models import (
    POLL_FAILED,
    POLL_PARTIAL,
    POLL_SUCCESS,
    Capability,
    ConnectionResult,
    Integration,
    MetricData,
    MonitorState,
)
from statusdeck.store.base import Store


logger = structlog.get_logger(__name__)

DriverBuilder = Callable[[Integration], BaseDriver]
AlertSink = Callable[[list[TriggeredAlert]], Awaitable[Any]]


@dataclass
class PollResult:
    integration_id: int
    status: str
    metrics: dict[str, MetricData] = field(default_factory=dict)
    alerts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "integration_id": self.integration_id,
            "status": self.status,
            "metrics": {key: data.to_dict() for key, data in self.metrics.items()},
            "alerts": self.alerts,
        }


def retry_after_seconds(integration: Integration, now: float) -> int:
    """Seconds left before ``integration`` may be polled again (0 when allowed)."""
    if integration.last_poll_at is None:
        return 0
    remaining = integration.last_poll_at + integration.poll_interval - now
    return max(0, math.ceil(remaining))


class IntegrationMonitor:
    """Full capability polls for one integration at a time.

    Used by the metric poller on its cadence and by admin-triggered polls,
    which are rate limited by the integration's poll interval unless forced.
    """

    def __init__(
        self,
        store: Store,
        driver_builder: DriverBuilder,
        registry: MetricRegistry,
        evaluator: AlertEvaluator,
        submit_alerts: Optional[AlertSink] = None,
        *,
        connection_test_builder: Optional[DriverBuilder] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.driver_builder = driver_builder
        # Connection tests run with their own timeout.
        self.connection_test_builder = connection_test_builder or driver_builder
        self.registry = registry
        self.evaluator = evaluator
        self.submit_alerts = submit_alerts
        self._clock = clock

    def _integration(self, integration_id: int) -> Integration:
        integration = self.store.get_integration(integration_id)
        if integration is None:
            raise IntegrationNotFoundError(integration_id)
        return integration

    async def poll_now(self, integration_id: int, force: bool = False) -> PollResult:
        integration = self._integration(integration_id)
        if not force:
            wait = retry_after_seconds(integration, self._clock())
            if wait > 0:
                raise RateLimitedError(wait)
        return await self.poll_integration(integration)

    async def poll_integration(self, integration: Integration) -> PollResult:
        """Fetch every capability, record the outcome and evaluate threshold rules.

        Driver and configuration failures mark the poll failed and propagate.
        """
        try:
            driver = self.driver_builder(integration)
            capabilities = await driver.get_capabilities()
            metrics = await driver.fetch_all_metrics(capabilities)
        except Exception as e:
            self.store.record_poll(integration.id, POLL_FAILED, self._clock())
            logger.error(
                "Integration poll failed",
                integration_id=integration.id,
                integration=integration.service_name,
                error=str(e),
            )
            raise

        self.registry.sync_capabilities(integration.service_type, capabilities)

        if metrics and len(metrics) >= len(capabilities):
            status = POLL_SUCCESS
        elif metrics:
            status = POLL_PARTIAL
        else:
            status = POLL_FAILED
        self.store.record_poll(integration.id, status, self._clock())
        logger.info(
            "Polled integration",
            integration_id=integration.id,
            integration=integration.service_name,
            status=status,
            metrics=len(metrics),
            capabilities=len(capabilities),
        )

        values: dict[str, float] = {}
        for key, data in metrics.items():
            value = data.numeric_value()
            if value is not None:
                values[key] = value
        alerts = self.evaluator.evaluate_thresholds(integration, values)
        if alerts and self.submit_alerts is not None:
            try:
                await self.submit_alerts(alerts)
            except Exception as e:
                logger.error("Threshold alert dispatch failed", integration_id=integration.id, error=str(e))
        return PollResult(integration_id=integration.id, status=status, metrics=metrics, alerts=len(alerts))

    async def test_connection(self, integration_id: int) -> ConnectionResult:
        integration = self._integration(integration_id)
        try:
            driver = self.connection_test_builder(integration)
        except Exception as e:
            return ConnectionResult(success=False, message=str(e))
        result = await driver.test_connection()
        logger.info(
            "Connection test finished",
            integration_id=integration_id,
            success=result.success,
            message=result.message,
        )
        return result

    async def fetch_monitors(self, integration_id: int) -> list[MonitorState]:
        """Monitor names an admin can bind cards to. Drivers without status support raise."""
        integration = self._integration(integration_id)
        driver = self.driver_builder(integration)
        return await driver.fetch_monitor_list()

    async def capabilities(self, integration_id: int) -> list[Capability]:
        integration = self._integration(integration_id)
        driver = self.driver_builder(integration)
        caps = await driver.get_capabilities()
        self.registry.sync_capabilities(integration.service_type, caps)
        return caps
