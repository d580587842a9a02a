from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from statusdeck.models import THRESHOLD_INTEGRATION_TYPES
from statusdeck.polling.monitor import IntegrationMonitor, PollResult
from statusdeck.scheduler import JobScheduler
from statusdeck.store.base import Store


logger = structlog.get_logger(__name__)


class MetricPoller:
    """Polls threshold-capable integrations on a fixed cadence.

    Uptime backends are left to the status poller. One integration failing
    never stops the rest of the cycle.
    """

    JOB_ID = "metric-poller"

    def __init__(
        self,
        store: Store,
        monitor: IntegrationMonitor,
        *,
        scheduler: Optional[JobScheduler] = None,
        interval_seconds: float = 60.0,
    ):
        self.store = store
        self.monitor = monitor
        self.scheduler = scheduler
        self.interval_seconds = interval_seconds
        self._lock = asyncio.Lock()
        self.started = False

    async def start(self) -> None:
        if self.started:
            logger.info("Metric poller already running")
            return
        self.started = True
        if self.scheduler is not None:
            self.scheduler.add_interval_job(
                self.JOB_ID,
                self.poll_cycle,
                seconds=self.interval_seconds,
                description="Threshold metric polling",
                run_immediately=True,
            )
        logger.info("Metric poller started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self.scheduler is not None:
            self.scheduler.remove_job(self.JOB_ID)
        self.started = False
        logger.info("Metric poller stopped")

    async def poll_cycle(self) -> dict[int, Optional[PollResult]]:
        """Poll every active threshold integration. Failed ones map to ``None``."""
        async with self._lock:
            integrations = self.store.list_integrations(active_only=True, types=THRESHOLD_INTEGRATION_TYPES)
            if not integrations:
                logger.info("No active metric integrations found")
                return {}

            logger.info("Polling metric integrations", integrations=len(integrations))
            results: dict[int, Optional[PollResult]] = {}
            for integration in integrations:
                try:
                    results[integration.id] = await self.monitor.poll_integration(integration)
                except Exception as e:
                    logger.error(
                        "Failed to poll integration",
                        integration_id=integration.id,
                        integration=integration.service_name,
                        error=str(e),
                    )
                    results[integration.id] = None
            logger.info(
                "Metric poll cycle complete",
                polled=sum(1 for r in results.values() if r is not None),
                failed=sum(1 for r in results.values() if r is None),
            )
            return results
