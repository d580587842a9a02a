from __future__ import annotations

import json

import httpx
import pytest

from statusdeck.config import NotificationConfig, PollingConfig, StatusDeckConfig
from statusdeck.crypto import CredentialCipher
from statusdeck.models import CONDITION_STATUS_CHANGE, NETDATA, UPTIME_KUMA, NotificationRule
from statusdeck.service import StatusDeck
from statusdeck.store import SQLiteStore


DISCORD_URL = "https://discord.test/api/webhooks/1/token"


class _FakeBackends:
    """Uptime Kuma metrics plus a Discord webhook sink behind one transport."""

    def __init__(self) -> None:
        self.monitors = {"Plex": 1, "Sonarr": 1}
        self.discord_posts: list[dict] = []

    def metrics_text(self) -> str:
        return "".join(
            f'monitor_status{{monitor_name="{name}",monitor_type="http"}} {value}\n'
            for name, value in self.monitors.items()
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "kuma" and request.url.path == "/metrics":
            return httpx.Response(200, text=self.metrics_text())
        if request.url.host == "discord.test":
            self.discord_posts.append(json.loads(request.content))
            return httpx.Response(204)
        return httpx.Response(404)


@pytest.fixture
def backends() -> _FakeBackends:
    return _FakeBackends()


@pytest.fixture
def deck(store: SQLiteStore, cipher: CredentialCipher, backends: _FakeBackends, clock, no_sleep) -> StatusDeck:
    config = StatusDeckConfig(
        secret="test-secret",
        notifications=NotificationConfig(retry_delays_seconds=[0], aggregation_enabled=False),
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(backends))
    return StatusDeck(config, store=store, http_client=client, cipher=cipher, sleep=no_sleep, clock=clock)


@pytest.fixture
def homelab(store: SQLiteStore, cipher: CredentialCipher):
    kuma = store.add_integration("Kuma", UPTIME_KUMA, cipher.encrypt_json({"url": "http://kuma", "apiKey": "k"}))
    plex = store.add_card("Plex", status_monitor_name="Plex")
    sonarr = store.add_card("Sonarr", status_monitor_name="Sonarr")
    webhook = store.add_webhook("Ops", "discord", cipher.encrypt(DISCORD_URL))
    rule = store.add_rule(
        NotificationRule(None, webhook.id, "Service down", CONDITION_STATUS_CHANGE, to_status="offline",
                         severity="critical", cooldown_minutes=30)
    )
    return kuma, plex, sonarr, rule


@pytest.mark.asyncio
async def test_offline_transition_notifies_once(deck: StatusDeck, store, backends, homelab, clock) -> None:
    kuma, plex, sonarr, rule = homelab
    await deck.set_status_source(kuma.id)
    assert deck.status_poller.get_current_status() == {plex.id: "online", sonarr.id: "online"}

    backends.monitors["Sonarr"] = 0
    assert await deck.status_poller.poll_cycle() == {sonarr.id: "offline"}
    assert await deck.status_poller.poll_cycle() == {}

    assert len(backends.discord_posts) == 1
    embed = backends.discord_posts[0]["embeds"][0]
    assert embed["title"] == "🔴 Service down"
    assert embed["description"] == "Sonarr: Status changed from online to offline"

    history = store.list_history(rule_id=rule.id)
    assert [h.status for h in history] == ["sent"]
    assert history[0].metadata["card_name"] == "Sonarr"

    # flapping inside the cooldown stays quiet
    backends.monitors["Sonarr"] = 1
    await deck.status_poller.poll_cycle()
    clock.advance(60)
    backends.monitors["Sonarr"] = 0
    await deck.status_poller.poll_cycle()
    assert len(backends.discord_posts) == 1


@pytest.mark.asyncio
async def test_remove_integration_resets_cards(deck: StatusDeck, store, homelab) -> None:
    kuma, plex, sonarr, rule = homelab
    await deck.set_status_source(kuma.id)
    assert await deck.remove_integration(kuma.id) is True
    assert await deck.remove_integration(kuma.id) is False
    assert set(deck.status_poller.get_current_status().values()) == {"warning"}


@pytest.mark.asyncio
async def test_status_summary(deck: StatusDeck, store, homelab) -> None:
    kuma, plex, sonarr, rule = homelab
    store.add_integration("Netdata", NETDATA, "enc")
    await deck.save_status_mappings([(plex.id, kuma.id, "Plex"), (sonarr.id, None, None)])

    summary = deck.get_status()
    assert summary["cards"] == {str(plex.id): "online", str(sonarr.id): "warning"}
    assert summary["subscribers"] == 0
    assert summary["aggregation"]["enabled"] is False
    assert summary["started"] is False


@pytest.mark.asyncio
async def test_stop_flushes_pending_batches(deck: StatusDeck, store, backends, homelab) -> None:
    kuma, plex, sonarr, rule = homelab
    deck.notifications.aggregator.update_config(enabled=True, window_seconds=60)
    await deck.set_status_source(kuma.id)

    backends.monitors["Plex"] = 0
    await deck.status_poller.poll_cycle()
    assert backends.discord_posts == []
    assert deck.notifications.aggregator.stats()["active_batches"] == 1

    await deck.stop()
    assert len(backends.discord_posts) == 1


def test_connection_tests_get_their_own_timeout(store: SQLiteStore, cipher: CredentialCipher, homelab) -> None:
    kuma = homelab[0]
    config = StatusDeckConfig(
        secret="test-secret",
        polling=PollingConfig(request_timeout_seconds=10, connection_test_timeout_seconds=3),
    )
    deck = StatusDeck(config, store=store, http_client=httpx.AsyncClient(), cipher=cipher)
    assert deck.build_driver(kuma).timeout_seconds == 10.0
    assert deck.build_test_driver(kuma).timeout_seconds == 3.0
    assert deck.monitor.connection_test_builder == deck.build_test_driver
