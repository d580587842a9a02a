from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from statusdeck.api import create_app
from statusdeck.config import NotificationConfig, StatusDeckConfig
from statusdeck.crypto import CredentialCipher
from statusdeck.models import CONDITION_PRESENCE, NETDATA, UPTIME_KUMA, NotificationRule
from statusdeck.service import StatusDeck
from statusdeck.store import SETTING_UNRAID_WEBHOOK_API_KEY, SETTING_UNRAID_WEBHOOK_ENABLED, SQLiteStore


METRICS = 'monitor_status{monitor_name="Plex",monitor_type="http"} 1\n'


def _backend(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/metrics":
        return httpx.Response(200, text=METRICS)
    return httpx.Response(204)


@pytest.fixture
def deck(store: SQLiteStore, cipher: CredentialCipher, clock) -> StatusDeck:
    config = StatusDeckConfig(
        secret="test-secret",
        notifications=NotificationConfig(retry_delays_seconds=[0], aggregation_enabled=False),
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(_backend))
    return StatusDeck(config, store=store, http_client=client, cipher=cipher, clock=clock)


@pytest.fixture
def client(deck: StatusDeck) -> TestClient:
    return TestClient(create_app(deck, manage_lifecycle=False))


@pytest.fixture
def kuma(store: SQLiteStore, cipher: CredentialCipher):
    return store.add_integration("Kuma", UPTIME_KUMA, cipher.encrypt_json({"url": "http://kuma", "apiKey": "k"}))


def test_health(client: TestClient) -> None:
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy", "service": "statusdeck", "started": False}


def test_integration_types(client: TestClient) -> None:
    types = {t["type"] for t in client.get("/api/integrations/types").json()["data"]}
    assert types == {"uptime-kuma", "netdata", "unraid"}


def test_poll_is_rate_limited(client: TestClient, kuma, clock) -> None:
    first = client.post(f"/api/integrations/{kuma.id}/poll")
    assert first.status_code == 200
    data = first.json()["data"]
    assert data["status"] == "success"
    assert data["metrics"]["uptime"]["value"] == 100.0

    clock.advance(5)
    second = client.post(f"/api/integrations/{kuma.id}/poll")
    assert second.status_code == 429
    assert second.headers["Retry-After"] == "25"
    assert second.json() == {
        "error": "Rate limited: Please wait 25 seconds before polling again",
        "retry_after": 25,
    }

    forced = client.post(f"/api/integrations/{kuma.id}/poll", params={"force": "true"})
    assert forced.status_code == 200


def test_unknown_integration(client: TestClient) -> None:
    resp = client.post("/api/integrations/999/poll")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Integration not found"}
    assert client.delete("/api/integrations/999").status_code == 404


def test_connection_and_monitors(client: TestClient, store: SQLiteStore, cipher: CredentialCipher, kuma) -> None:
    test = client.post(f"/api/integrations/{kuma.id}/test").json()
    assert test == {"success": True, "message": "Successfully connected to Uptime Kuma"}

    monitors = client.get(f"/api/integrations/{kuma.id}/monitors").json()["data"]
    assert monitors == [{"name": "Plex", "status": "up"}]

    netdata = store.add_integration("Netdata", NETDATA, cipher.encrypt_json({"url": "http://netdata"}))
    assert client.get(f"/api/integrations/{netdata.id}/monitors").status_code == 400

    broken = store.add_integration("Broken", NETDATA, None)
    resp = client.post(f"/api/integrations/{broken.id}/poll")
    assert resp.status_code == 400
    assert "no credentials" in resp.json()["error"]


def test_delete_integration(client: TestClient, kuma) -> None:
    resp = client.delete(f"/api/integrations/{kuma.id}")
    assert resp.status_code == 200
    assert resp.json()["success"] is True


def test_current_status(client: TestClient, store: SQLiteStore) -> None:
    card = store.add_card("Plex")
    client.post("/api/status/restart")
    assert client.get("/api/status").json() == {"success": True, "data": {str(card.id): "warning"}}


def test_template_preview(client: TestClient) -> None:
    resp = client.post(
        "/api/notification-templates/preview",
        json={"title_template": "[{{severity}}] {{cardName}}", "message_template": "{{metricValue}}{{unit}} {{nope}}"},
    )
    assert resp.json()["data"] == {"title": "[warning] Production Server", "message": "85% "}


def test_aggregation_settings(client: TestClient) -> None:
    assert client.get("/api/notifications/aggregation").json()["data"]["enabled"] is False
    updated = client.put("/api/notifications/aggregation", json={"enabled": True, "window_seconds": 30}).json()
    assert updated["data"]["enabled"] is True
    assert updated["data"]["window_seconds"] == 30
    assert client.put("/api/notifications/aggregation", json={"window_seconds": 0}).status_code == 422


def test_rule_and_webhook_tests(client: TestClient, store: SQLiteStore, cipher: CredentialCipher) -> None:
    assert client.post("/api/notification-rules/999/test").status_code == 404
    assert client.post("/api/webhooks/999/test").json() == {"success": False, "message": "Webhook not found"}

    webhook = store.add_webhook("Ops", "discord", cipher.encrypt("https://discord.test/hook"))
    rule = store.add_rule(
        NotificationRule(None, webhook.id, "Array", CONDITION_PRESENCE, metric_type="unraid_array_started")
    )
    assert client.post(f"/api/webhooks/{webhook.id}/test").status_code == 200
    resp = client.post(f"/api/notification-rules/{rule.id}/test")
    assert resp.status_code == 200
    assert resp.json()["message"] == "Test notification sent via Ops"


def test_unraid_webhook_auth(client: TestClient, store: SQLiteStore) -> None:
    event = {"event": "array.started", "subject": "Array started"}
    assert client.post("/api/unraid-webhook", json=event).status_code == 403

    store.set_setting(SETTING_UNRAID_WEBHOOK_ENABLED, "true")
    assert client.post("/api/unraid-webhook", json=event).status_code == 401
    assert client.post("/api/unraid-webhook", json=event, headers={"Authorization": "Bearer x"}).status_code == 500

    store.set_setting(SETTING_UNRAID_WEBHOOK_API_KEY, "push-key")
    wrong = client.post("/api/unraid-webhook", json=event, headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401
    assert wrong.json() == {"error": "Invalid API key"}
    for token in ("push-ke", "push-key2", "push-keY"):
        rejected = client.post("/api/unraid-webhook", json=event, headers={"Authorization": f"Bearer {token}"})
        assert rejected.status_code == 401


def test_unraid_webhook_events(client: TestClient, store: SQLiteStore) -> None:
    store.set_setting(SETTING_UNRAID_WEBHOOK_ENABLED, "true")
    store.set_setting(SETTING_UNRAID_WEBHOOK_API_KEY, "push-key")
    headers = {"Authorization": "Bearer push-key"}

    bad = client.post("/api/unraid-webhook", json={"event": "array.started"}, headers=headers)
    assert bad.status_code == 400
    assert bad.json()["error"] == "Invalid event payload"

    ok = client.post(
        "/api/unraid-webhook",
        json={"event": "array.started", "subject": "Array started", "importance": "normal"},
        headers=headers,
    )
    assert ok.status_code == 200
    body = ok.json()
    assert body["success"] is True
    assert body["message"] == "Event received and processed"
    assert body["event"] == "array.started"

    unknown = client.post("/api/unraid-webhook", json={"event": "toaster.on", "subject": "x"}, headers=headers)
    assert unknown.json()["message"] == "Event received"
    assert len(store.list_unraid_events()) == 2
