from __future__ import annotations

import asyncio

import pytest

from statusdeck.errors import DriverError
from statusdeck.models import MONITOR_DOWN, MONITOR_UP, NETDATA, UPTIME_KUMA, Card, MonitorState
from statusdeck.polling.status_poller import (
    CardMapping,
    StatusPoller,
    build_mappings,
    compute_diff,
    resolve_card_status,
)
from statusdeck.scheduler import JobScheduler
from statusdeck.store import SETTING_STATUS_SOURCE, SQLiteStore


class _FakeBackend:
    def __init__(self, monitors: dict[str, str]) -> None:
        self.monitors = monitors
        self.fail = False
        self.calls = 0


class _FakeStatusDriver:
    display_name = "Fake Kuma"
    supports_status = True

    def __init__(self, backend: _FakeBackend) -> None:
        self.backend = backend

    async def fetch_monitor_list(self) -> list[MonitorState]:
        self.backend.calls += 1
        if self.backend.fail:
            raise DriverError("connection refused")
        return [MonitorState(name, status) for name, status in self.backend.monitors.items()]


class _MetricsOnlyDriver(_FakeStatusDriver):
    display_name = "Netdata"
    supports_status = False


def _builder(backends: dict[int, _FakeBackend], metrics_only: set[int] = frozenset()):
    def build(integration):
        cls = _MetricsOnlyDriver if integration.id in metrics_only else _FakeStatusDriver
        return cls(backends[integration.id])

    return build


@pytest.fixture
def dashboard(store: SQLiteStore):
    kuma = store.add_integration("Kuma", UPTIME_KUMA, "enc", poll_interval=15)
    store.set_setting(SETTING_STATUS_SOURCE, str(kuma.id))
    plex = store.add_card("Plex", status_monitor_name="plex")
    sonarr = store.add_card("Sonarr", status_monitor_name="Sonarr")
    unbound = store.add_card("Notes")
    backend = _FakeBackend({"Plex": MONITOR_UP, "Sonarr": MONITOR_DOWN})
    return kuma, plex, sonarr, unbound, backend


def test_build_mappings() -> None:
    cards = [
        Card(1, "a", status_monitor_name="A"),
        Card(2, "b", status_source_id=9, status_monitor_name=" B "),
        Card(3, "c", status_source_id=9),
        Card(4, "d", status_monitor_name="   "),
    ]
    assert build_mappings(cards, 5) == {1: CardMapping(5, "A"), 2: CardMapping(9, "B")}
    assert build_mappings(cards, None) == {2: CardMapping(9, "B")}


def test_resolve_card_status() -> None:
    mapping = CardMapping(1, "Plex")
    monitors = {1: {"plex": MONITOR_UP, "sonarr": MONITOR_DOWN}}
    assert resolve_card_status(None, {1: True}, monitors) == "warning"
    assert resolve_card_status(mapping, {1: False}, monitors) == "warning"
    assert resolve_card_status(mapping, {}, monitors) == "warning"
    assert resolve_card_status(mapping, {1: True}, monitors) == "online"
    assert resolve_card_status(CardMapping(1, "SONARR"), {1: True}, monitors) == "offline"
    assert resolve_card_status(CardMapping(1, "radarr"), {1: True}, monitors) == "warning"


def test_compute_diff() -> None:
    assert compute_diff({1: "online"}, {1: "online", 2: "warning"}) == {2: "warning"}
    assert compute_diff({1: "online"}, {1: "offline"}) == {1: "offline"}
    assert compute_diff({1: "online"}, {1: "online"}) == {}


@pytest.mark.asyncio
async def test_first_cycle_publishes_every_card(store: SQLiteStore, dashboard, clock) -> None:
    kuma, plex, sonarr, unbound, backend = dashboard
    poller = StatusPoller(store, _builder({kuma.id: backend}), clock=clock)

    diff = await poller.poll_cycle()
    # no config loaded yet: every card is unbound
    assert set(diff.values()) == {"warning"}

    await poller.start()
    assert poller.get_current_status() == {plex.id: "online", sonarr.id: "offline", unbound.id: "warning"}
    assert poller.is_reachable(kuma.id) is True
    polled = store.get_integration(kuma.id)
    assert polled.last_status == "success"
    assert polled.last_poll_at == clock.now


@pytest.mark.asyncio
async def test_unchanged_cycle_has_empty_diff(store: SQLiteStore, dashboard, clock) -> None:
    kuma, plex, sonarr, unbound, backend = dashboard
    poller = StatusPoller(store, _builder({kuma.id: backend}), clock=clock)
    await poller.start()
    assert await poller.poll_cycle() == {}

    backend.monitors["Sonarr"] = MONITOR_UP
    assert await poller.poll_cycle() == {sonarr.id: "online"}
    assert await poller.poll_cycle() == {}


@pytest.mark.asyncio
async def test_unreachable_source_turns_bound_cards_warning(store: SQLiteStore, dashboard, clock) -> None:
    kuma, plex, sonarr, unbound, backend = dashboard
    poller = StatusPoller(store, _builder({kuma.id: backend}), clock=clock)
    await poller.start()

    backend.fail = True
    diff = await poller.poll_cycle()
    assert diff == {plex.id: "warning", sonarr.id: "warning"}
    assert poller.is_reachable(kuma.id) is False
    assert store.get_integration(kuma.id).last_status == "failed"

    backend.fail = False
    assert await poller.poll_cycle() == {plex.id: "online", sonarr.id: "offline"}


@pytest.mark.asyncio
async def test_status_changes_reach_handler_only_for_known_cards(store: SQLiteStore, dashboard, clock) -> None:
    kuma, plex, sonarr, unbound, backend = dashboard
    seen = []

    async def on_changes(changes):
        seen.extend(changes)

    poller = StatusPoller(store, _builder({kuma.id: backend}), on_status_changes=on_changes, clock=clock)
    await poller.start()
    # the first derivation of a card is not a transition
    assert seen == []

    backend.monitors["Plex"] = MONITOR_DOWN
    await poller.poll_cycle()
    assert len(seen) == 1
    change = seen[0]
    assert (change.card_id, change.card_name, change.old_status, change.new_status) == (
        plex.id,
        "Plex",
        "online",
        "offline",
    )


@pytest.mark.asyncio
async def test_handler_failure_does_not_break_cycle(store: SQLiteStore, dashboard, clock) -> None:
    kuma, plex, sonarr, unbound, backend = dashboard

    async def on_changes(changes):
        raise RuntimeError("boom")

    poller = StatusPoller(store, _builder({kuma.id: backend}), on_status_changes=on_changes, clock=clock)
    await poller.start()
    backend.monitors["Plex"] = MONITOR_DOWN
    assert await poller.poll_cycle() == {plex.id: "offline"}
    assert poller.get_current_status()[plex.id] == "offline"


@pytest.mark.asyncio
async def test_subscriber_gets_snapshot_then_diffs(store: SQLiteStore, dashboard, clock) -> None:
    kuma, plex, sonarr, unbound, backend = dashboard
    poller = StatusPoller(store, _builder({kuma.id: backend}), clock=clock)
    await poller.start()

    events = []

    async def sink(event, payload):
        events.append(payload)

    assert await poller.register_client("browser-1", sink) is True
    backend.monitors["Sonarr"] = MONITOR_UP
    await poller.poll_cycle()
    await poller.poll_cycle()

    assert events == [
        {str(plex.id): "online", str(sonarr.id): "offline", str(unbound.id): "warning"},
        {str(sonarr.id): "online"},
    ]
    assert await poller.unregister_client("browser-1") is True


@pytest.mark.asyncio
async def test_per_card_source_and_non_status_driver(store: SQLiteStore, dashboard, clock) -> None:
    kuma, plex, sonarr, unbound, backend = dashboard
    tower = store.add_integration("Tower", UPTIME_KUMA, "enc")
    netdata = store.add_integration("Netdata", NETDATA, "enc")
    docker = store.add_card("Docker", status_source_id=tower.id, status_monitor_name="docker")
    metrics_card = store.add_card("Metrics", status_source_id=netdata.id, status_monitor_name="cpu")
    backends = {
        kuma.id: backend,
        tower.id: _FakeBackend({"docker": MONITOR_UP}),
        netdata.id: _FakeBackend({"cpu": MONITOR_UP}),
    }

    poller = StatusPoller(store, _builder(backends, metrics_only={netdata.id}), clock=clock)
    await poller.start()
    statuses = poller.get_current_status()
    assert statuses[docker.id] == "online"
    assert statuses[metrics_card.id] == "warning"
    assert backends[netdata.id].calls == 0
    assert store.get_integration(netdata.id).last_status == "failed"


@pytest.mark.asyncio
async def test_no_source_configured(store: SQLiteStore, clock) -> None:
    card = store.add_card("Plex", status_monitor_name="Plex")
    scheduler = JobScheduler()
    poller = StatusPoller(store, _builder({}), scheduler=scheduler, clock=clock)
    await poller.start()
    assert poller.get_current_status() == {card.id: "warning"}
    assert not scheduler.has_job(StatusPoller.JOB_ID)


@pytest.mark.asyncio
async def test_cadence_follows_source_interval_and_restart_rebuilds(store: SQLiteStore, dashboard, clock) -> None:
    kuma, plex, sonarr, unbound, backend = dashboard
    scheduler = JobScheduler()
    poller = StatusPoller(store, _builder({kuma.id: backend}), scheduler=scheduler, clock=clock)
    await poller.start()
    assert scheduler.jobs[StatusPoller.JOB_ID]["seconds"] == 15.0

    store.save_status_mappings([(plex.id, None, None)])
    await poller.restart()
    assert poller.get_current_status()[plex.id] == "warning"
    assert scheduler.has_job(StatusPoller.JOB_ID)

    await poller.stop()
    assert not scheduler.has_job(StatusPoller.JOB_ID)


@pytest.mark.asyncio
async def test_invalidated_integration_drops_cached_snapshot(store: SQLiteStore, dashboard, clock) -> None:
    kuma, plex, sonarr, unbound, backend = dashboard
    poller = StatusPoller(store, _builder({kuma.id: backend}), clock=clock)
    await poller.start()

    store.delete_integration(kuma.id)
    poller.invalidate_integration(kuma.id)
    assert poller.referenced_integrations() == []
    diff = await poller.poll_cycle()
    assert diff == {plex.id: "warning", sonarr.id: "warning"}


class _GatedStatusDriver(_FakeStatusDriver):
    def __init__(self, backend: _FakeBackend, entered: asyncio.Event, release: asyncio.Event) -> None:
        super().__init__(backend)
        self.entered = entered
        self.release = release

    async def fetch_monitor_list(self) -> list[MonitorState]:
        self.entered.set()
        await self.release.wait()
        return await super().fetch_monitor_list()


@pytest.mark.asyncio
async def test_invalidation_mid_cycle_discards_stale_results(store: SQLiteStore, dashboard, clock) -> None:
    kuma, plex, sonarr, unbound, backend = dashboard
    entered = asyncio.Event()
    release = asyncio.Event()
    gated = {"on": False}

    def build(integration):
        if gated["on"]:
            return _GatedStatusDriver(backend, entered, release)
        return _FakeStatusDriver(backend)

    poller = StatusPoller(store, build, clock=clock)
    await poller.start()
    before = poller.get_current_status()

    events = []

    async def sink(event, payload):
        events.append(payload)

    await poller.register_client("browser-1", sink)

    gated["on"] = True
    backend.monitors["Plex"] = MONITOR_DOWN
    in_flight = asyncio.create_task(poller.poll_cycle())
    await entered.wait()

    poller.invalidate_integration(kuma.id)
    release.set()

    assert await in_flight == {}
    assert poller.get_current_status() == before
    assert kuma.id not in poller._monitors
    assert poller.is_reachable(kuma.id) is None
    # only the registration snapshot
    assert len(events) == 1


@pytest.mark.asyncio
async def test_restart_mid_cycle_publishes_only_the_new_cycle(store: SQLiteStore, dashboard, clock) -> None:
    kuma, plex, sonarr, unbound, backend = dashboard
    entered = asyncio.Event()
    release = asyncio.Event()
    gated = {"on": False}

    def build(integration):
        if gated["on"]:
            return _GatedStatusDriver(backend, entered, release)
        return _FakeStatusDriver(backend)

    changes = []

    async def on_changes(batch):
        changes.extend(batch)

    poller = StatusPoller(store, build, on_status_changes=on_changes, clock=clock)
    await poller.start()

    gated["on"] = True
    backend.monitors["Plex"] = MONITOR_DOWN
    in_flight = asyncio.create_task(poller.poll_cycle())
    await entered.wait()

    restarting = asyncio.create_task(poller.restart())
    await asyncio.sleep(0)
    release.set()

    assert await in_flight == {}
    await restarting
    # caches were cleared, so the fresh cycle is a first derivation, not a transition
    assert changes == []
    assert poller.get_current_status() == {plex.id: "offline", sonarr.id: "offline", unbound.id: "warning"}
