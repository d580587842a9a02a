"""Composition root wiring the store, drivers, pollers and notification pipeline."""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import httpx
import structlog

from .alerts import AlertEvaluator, MetricRegistry, UnraidEventProcessor
from .config import StatusDeckConfig
from .crypto import CredentialCipher
from .drivers import driver_for_integration
from .drivers.base import BaseDriver
from .models import Integration, StatusChange
from .notifications import NotificationService
from .polling import IntegrationMonitor, MetricPoller, StatusPoller, SubscriberRegistry
from .scheduler import JobScheduler
from .store import SETTING_STATUS_SOURCE, SQLiteStore, Store


logger = structlog.get_logger(__name__)


class StatusDeck:
    """Owns every long-lived service and their start/stop order.

    Nothing starts on construction, so tests can build isolated instances
    around a temporary store and a mocked HTTP client.
    """

    def __init__(
        self,
        config: StatusDeckConfig,
        *,
        store: Optional[Store] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        scheduler: Optional[JobScheduler] = None,
        cipher: Optional[CredentialCipher] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.store = store if store is not None else SQLiteStore(config.database_path)
        self.cipher = cipher or CredentialCipher(config.secret)
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(follow_redirects=True)
        self.scheduler = scheduler or JobScheduler()

        self.registry = MetricRegistry(self.store)
        self.evaluator = AlertEvaluator(self.store, self.registry)
        self.notifications = NotificationService(
            self.store,
            self.cipher,
            self.http_client,
            config.notifications,
            sleep=sleep,
            clock=clock,
        )
        self.subscribers = SubscriberRegistry()
        self.status_poller = StatusPoller(
            self.store,
            self.build_driver,
            self.subscribers,
            on_status_changes=self._on_status_changes,
            scheduler=self.scheduler,
            default_interval_seconds=config.polling.status_interval_seconds,
            clock=clock,
        )
        self.monitor = IntegrationMonitor(
            self.store,
            self.build_driver,
            self.registry,
            self.evaluator,
            self.notifications.submit,
            connection_test_builder=self.build_test_driver,
            clock=clock,
        )
        self.metric_poller = MetricPoller(
            self.store,
            self.monitor,
            scheduler=self.scheduler,
            interval_seconds=config.polling.metric_interval_seconds,
        )
        self.unraid_events = UnraidEventProcessor(self.store, self.registry, self.notifications.send_alert)
        self.started = False

    def build_driver(self, integration: Integration) -> BaseDriver:
        return driver_for_integration(
            integration,
            self.cipher,
            self.http_client,
            timeout_seconds=self.config.polling.request_timeout_seconds,
        )

    def build_test_driver(self, integration: Integration) -> BaseDriver:
        return driver_for_integration(
            integration,
            self.cipher,
            self.http_client,
            timeout_seconds=self.config.polling.connection_test_timeout_seconds,
        )

    async def _on_status_changes(self, changes: List[StatusChange]) -> None:
        alerts = self.evaluator.evaluate_status_changes(changes)
        if alerts:
            logger.info("Status changes triggered alerts", changes=len(changes), alerts=len(alerts))
            await self.notifications.submit(alerts)

    # -- lifecycle -----------------------------------------------------------

    async def start(self):
        if self.started:
            return
        self.registry.sync_driver_catalog()
        await self.scheduler.start()
        await self.status_poller.start()
        await self.metric_poller.start()
        self.started = True
        logger.info("StatusDeck started", environment=self.config.environment)

    async def stop(self):
        await self.metric_poller.stop()
        await self.status_poller.stop()
        flushed = await self.notifications.flush()
        await self.scheduler.stop()
        if self._owns_client:
            await self.http_client.aclose()
        self.started = False
        logger.info("StatusDeck stopped", flushed_batches=flushed)

    # -- configuration changes ----------------------------------------------

    async def set_status_source(self, integration_id: Optional[int]):
        self.store.set_setting(SETTING_STATUS_SOURCE, "" if integration_id is None else str(int(integration_id)))
        await self.status_poller.restart()

    async def save_status_mappings(self, mappings: Iterable[Tuple[int, Optional[int], Optional[str]]]) -> int:
        updated = self.store.save_status_mappings(mappings)
        await self.status_poller.restart()
        return updated

    async def remove_integration(self, integration_id: int) -> bool:
        deleted = self.store.delete_integration(integration_id)
        if deleted:
            self.status_poller.invalidate_integration(integration_id)
            if self.status_poller.started:
                await self.status_poller.restart()
        return deleted

    def get_status(self) -> Dict[str, Any]:
        return {
            "started": self.started,
            "cards": {str(k): v for k, v in self.status_poller.get_current_status().items()},
            "subscribers": len(self.subscribers),
            "scheduler": self.scheduler.get_scheduler_status(),
            "aggregation": self.notifications.aggregator.stats(),
        }
