"""Derives up/down/warning status for dashboard cards and streams the changes."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

import structlog

from statusdeck.drivers.base import BaseDriver
from statusdeck.errors import ConfigurationError
from statusdeck.models import (
    MONITOR_UP,
    POLL_FAILED,
    POLL_SUCCESS,
    STATUS_OFFLINE,
    STATUS_ONLINE,
    STATUS_WARNING,
    Card,
    Integration,
    StatusChange,
)
from statusdeck.polling.fanout import Sink, SubscriberRegistry
from statusdeck.scheduler import JobScheduler
from statusdeck.store.base import SETTING_STATUS_SOURCE, Store


logger = structlog.get_logger(__name__)

StatusMap = dict[int, str]
DriverBuilder = Callable[[Integration], BaseDriver]
StatusChangeHandler = Callable[[list[StatusChange]], Awaitable[None]]


@dataclass(frozen=True)
class CardMapping:
    integration_id: int
    monitor_name: str


def build_mappings(cards: Iterable[Card], global_source_id: Optional[int]) -> dict[int, CardMapping]:
    """Card id -> (integration, monitor) for cards with a usable binding."""
    mappings: dict[int, CardMapping] = {}
    for card in cards:
        integration_id = card.status_source_id if card.status_source_id is not None else global_source_id
        name = (card.status_monitor_name or "").strip()
        if integration_id is not None and name:
            mappings[card.id] = CardMapping(integration_id=integration_id, monitor_name=name)
    return mappings


def resolve_card_status(
    mapping: Optional[CardMapping],
    reachable: dict[int, bool],
    monitors: dict[int, dict[str, str]],
) -> str:
    if mapping is None:
        return STATUS_WARNING
    if not reachable.get(mapping.integration_id, False):
        return STATUS_WARNING
    snapshot = monitors.get(mapping.integration_id)
    if snapshot is None:
        return STATUS_WARNING
    state = snapshot.get(mapping.monitor_name.lower())
    if state is None:
        return STATUS_WARNING
    return STATUS_ONLINE if state == MONITOR_UP else STATUS_OFFLINE


def compute_diff(old: StatusMap, new: StatusMap) -> StatusMap:
    return {card_id: status for card_id, status in new.items() if old.get(card_id) != status}


class StatusPoller:
    """Owns the status cadence, its caches and the live fan-out.

    The cadence follows the poll interval of the global status source
    integration. Configuration changes go through :meth:`restart`, which
    stops the job, clears every cache and starts over. A cycle that was in
    flight when the caches were cleared has its results dropped.
    """

    JOB_ID = "status-poller"

    def __init__(
        self,
        store: Store,
        driver_builder: DriverBuilder,
        subscribers: Optional[SubscriberRegistry] = None,
        *,
        on_status_changes: Optional[StatusChangeHandler] = None,
        scheduler: Optional[JobScheduler] = None,
        default_interval_seconds: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.driver_builder = driver_builder
        self.subscribers = subscribers or SubscriberRegistry()
        self.on_status_changes = on_status_changes
        self.scheduler = scheduler
        self.default_interval_seconds = default_interval_seconds
        self._clock = clock

        self._monitors: dict[int, dict[str, str]] = {}
        self._reachable: dict[int, bool] = {}
        self._statuses: StatusMap = {}
        self._mappings: dict[int, CardMapping] = {}
        self._source_id: Optional[int] = None

        self._generation = 0
        self._lock = asyncio.Lock()
        self.started = False

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        if self.started:
            logger.info("Status poller already started")
            return
        self.started = True
        self._load_config()
        await self.poll_cycle()

        if not self.referenced_integrations():
            logger.info("No status source configured, all cards set to warning")
            return

        interval = self._cadence_seconds()
        if self.scheduler is not None:
            self.scheduler.add_interval_job(
                self.JOB_ID,
                self.poll_cycle,
                seconds=interval,
                description="Card status polling",
            )
        logger.info("Status poller started", interval_seconds=interval, source_id=self._source_id)

    async def stop(self) -> None:
        if self.scheduler is not None:
            self.scheduler.remove_job(self.JOB_ID)
        self.started = False
        logger.info("Status poller stopped")

    async def restart(self) -> None:
        logger.info("Restarting status poller")
        await self.stop()
        self._clear_caches()
        await self.start()

    def _clear_caches(self) -> None:
        self._generation += 1
        self._monitors.clear()
        self._reachable.clear()
        self._statuses.clear()
        self._mappings.clear()

    def invalidate_integration(self, integration_id: int) -> None:
        """Forget everything cached for a deleted integration."""
        self._generation += 1
        self._monitors.pop(integration_id, None)
        self._reachable.pop(integration_id, None)
        self._load_config()
        logger.info("Integration caches invalidated", integration_id=integration_id)

    def _load_config(self) -> None:
        raw = self.store.get_setting(SETTING_STATUS_SOURCE)
        try:
            self._source_id = int(raw) if raw else None
        except ValueError:
            logger.warning("Ignoring malformed status source setting", value=raw)
            self._source_id = None
        self._mappings = build_mappings(self.store.list_status_cards(), self._source_id)
        logger.info("Loaded card mappings", mappings=len(self._mappings), source_id=self._source_id)

    def _cadence_seconds(self) -> float:
        if self._source_id is not None:
            integration = self.store.get_integration(self._source_id)
            if integration is not None and integration.poll_interval > 0:
                return float(integration.poll_interval)
        return float(self.default_interval_seconds)

    def referenced_integrations(self) -> list[int]:
        ids: list[int] = []
        if self._source_id is not None:
            ids.append(self._source_id)
        for mapping in self._mappings.values():
            if mapping.integration_id not in ids:
                ids.append(mapping.integration_id)
        return ids

    # -- cycle ---------------------------------------------------------------

    async def poll_cycle(self) -> StatusMap:
        """Poll every referenced integration, recompute card statuses and publish the diff."""
        async with self._lock:
            generation = self._generation
            integration_ids = self.referenced_integrations()

            results: dict[int, Optional[dict[str, str]]] = {}
            for integration_id in integration_ids:
                results[integration_id] = await self._poll_integration(integration_id)

            if generation != self._generation:
                logger.info("Discarding results of superseded status cycle")
                return {}

            for integration_id, snapshot in results.items():
                if snapshot is None:
                    self._reachable[integration_id] = False
                else:
                    self._monitors[integration_id] = snapshot
                    self._reachable[integration_id] = True

            cards = self.store.list_status_cards()
            previous = dict(self._statuses)
            current: StatusMap = {
                card.id: resolve_card_status(self._mappings.get(card.id), self._reachable, self._monitors)
                for card in cards
            }
            diff = compute_diff(previous, current)
            self._statuses = current

            logger.info(
                "Status poll complete",
                integrations=len(integration_ids),
                monitors=sum(len(m) for m in self._monitors.values()),
                cards=len(current),
                changed=len(diff),
            )

        if diff:
            names = {card.id: card.name for card in cards}
            changes = [
                StatusChange(card_id=card_id, card_name=names.get(card_id, f"Card {card_id}"),
                             old_status=previous[card_id], new_status=status)
                for card_id, status in diff.items()
                if card_id in previous
            ]
            if changes and self.on_status_changes is not None:
                try:
                    await self.on_status_changes(changes)
                except Exception as e:
                    logger.error("Status change evaluation failed", error=str(e))
            await self.subscribers.broadcast(_wire(diff))
        return diff

    async def _poll_integration(self, integration_id: int) -> Optional[dict[str, str]]:
        integration = self.store.get_integration(integration_id)
        if integration is None:
            logger.error("Status source integration not found", integration_id=integration_id)
            return None
        try:
            driver = self.driver_builder(integration)
            if not driver.supports_status:
                raise ConfigurationError(f"{driver.display_name} integrations cannot supply card status")
            monitors = await driver.fetch_monitor_list()
        except Exception as e:
            logger.error(
                "Failed to poll status integration",
                integration_id=integration_id,
                integration=integration.service_name,
                error=str(e),
            )
            self.store.record_poll(integration_id, POLL_FAILED, self._clock())
            return None

        self.store.record_poll(integration_id, POLL_SUCCESS, self._clock())
        logger.debug("Polled status integration", integration_id=integration_id, monitors=len(monitors))
        return {m.name.lower(): m.status for m in monitors}

    # -- accessors -----------------------------------------------------------

    def get_current_status(self) -> StatusMap:
        return dict(self._statuses)

    def is_reachable(self, integration_id: int) -> Optional[bool]:
        return self._reachable.get(integration_id)

    async def register_client(self, client_id: str, sink: Sink) -> bool:
        return await self.subscribers.register(client_id, sink, lambda: _wire(self._statuses))

    async def unregister_client(self, client_id: str) -> bool:
        return await self.subscribers.unregister(client_id)


def _wire(statuses: StatusMap) -> dict[str, str]:
    return {str(card_id): status for card_id, status in statuses.items()}
