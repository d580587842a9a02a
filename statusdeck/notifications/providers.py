"""Webhook providers: Discord embeds, Telegram bot messages and Pushover pushes."""

from __future__ import annotations

import asyncio
import re
import time
from typing import Awaitable, Callable, Sequence

import httpx
import structlog

from statusdeck.errors import ConfigurationError, DeliveryError, ProviderError
from statusdeck.models import (
    PROVIDER_DISCORD,
    PROVIDER_PUSHOVER,
    PROVIDER_TELEGRAM,
    SEVERITY_CRITICAL,
    NotificationPayload,
    utc_now_iso,
)


logger = structlog.get_logger(__name__)

SEVERITY_EMOJI = {"info": "ℹ️", "warning": "⚠️", "critical": "🔴"}
DISCORD_COLORS = {"info": 0x3B82F6, "warning": 0xF59E0B, "critical": 0xEF4444}
DISCORD_TEST_COLOR = 0x22C55E
PUSHOVER_PRIORITY = {"info": 0, "warning": 1, "critical": 2}
PUSHOVER_TITLE_MAX = 250
PUSHOVER_MESSAGE_MAX = 1024

TELEGRAM_MAX_MESSAGE_LEN = 3900

_BOT_TOKEN = re.compile(r"/bot[^/]+/")


def split_telegram_message(text: str, *, max_len: int = TELEGRAM_MAX_MESSAGE_LEN) -> list[str]:
    s = (text or "").strip()
    if not s:
        return [""]

    max_len = max(1, int(max_len))
    parts: list[str] = []
    while s:
        if len(s) <= max_len:
            parts.append(s)
            break
        cut = s.rfind("\n", 0, max_len + 1)
        if cut < max_len * 0.6:
            cut = max_len
        chunk = s[:cut].rstrip()
        parts.append(chunk)
        s = s[cut:].lstrip()
    return parts


def truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def redact_endpoint(endpoint: str) -> str:
    return _BOT_TOKEN.sub("/bot<redacted>/", endpoint)


def detail_lines(payload: NotificationPayload) -> list[str]:
    """Card, value and status context as plain text lines."""
    meta = payload.metadata or {}
    lines = []
    if meta.get("card_name"):
        lines.append(f"Card: {meta['card_name']}")
    if meta.get("metric_value") is not None and meta.get("threshold") is not None:
        lines.append(f"Value: {meta['metric_value']} (Threshold: {meta['threshold']})")
    if meta.get("old_status") and meta.get("new_status"):
        lines.append(f"Status: {meta['old_status']} → {meta['new_status']}")
    return lines


class WebhookProvider:
    """One notification channel. ``send`` raises on failure; ``test_connection`` never does."""

    name = "Webhook"

    def __init__(self, http_client: httpx.AsyncClient, *, timeout_seconds: float = 10.0, app_name: str = "StatusDeck"):
        self.http_client = http_client
        self.timeout_seconds = float(timeout_seconds)
        self.app_name = app_name

    async def send(self, endpoint: str, payload: NotificationPayload) -> None:
        raise NotImplementedError

    async def test_connection(self, endpoint: str) -> bool:
        raise NotImplementedError

    async def _post(self, endpoint: str, **kwargs) -> httpx.Response:
        try:
            resp = await self.http_client.post(endpoint, timeout=self.timeout_seconds, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.name} webhook failed: {type(e).__name__}: {redact_endpoint(str(e))}") from e
        if resp.status_code >= 400:
            raise ProviderError(f"{self.name} webhook failed: {resp.status_code} {resp.reason_phrase}")
        return resp

    async def _probe(self, endpoint: str, **kwargs) -> bool:
        try:
            await self._post(endpoint, **kwargs)
            return True
        except ProviderError as e:
            logger.error("Webhook test failed", provider=self.name, error=str(e))
            return False


class DiscordProvider(WebhookProvider):
    name = "Discord"

    @staticmethod
    def build_embed(payload: NotificationPayload) -> dict:
        meta = payload.metadata or {}
        fields = []
        if meta.get("card_name"):
            fields.append({"name": "Card", "value": str(meta["card_name"]), "inline": True})
        if meta.get("metric_value") is not None and meta.get("threshold") is not None:
            fields.append({"name": "Current Value", "value": str(meta["metric_value"]), "inline": True})
            fields.append({"name": "Threshold", "value": str(meta["threshold"]), "inline": True})
        if meta.get("old_status") and meta.get("new_status"):
            fields.append(
                {"name": "Status Change", "value": f"{meta['old_status']} → {meta['new_status']}", "inline": False}
            )
        return {
            "title": f"{SEVERITY_EMOJI.get(payload.severity, '')} {payload.title}".strip(),
            "description": payload.message,
            "color": DISCORD_COLORS.get(payload.severity, DISCORD_COLORS["info"]),
            "timestamp": utc_now_iso(),
            "fields": fields,
        }

    async def send(self, endpoint: str, payload: NotificationPayload) -> None:
        await self._post(endpoint, json={"embeds": [self.build_embed(payload)]})

    async def test_connection(self, endpoint: str) -> bool:
        embed = {
            "title": "✅ Test Notification",
            "description": f"This is a test notification from {self.app_name}",
            "color": DISCORD_TEST_COLOR,
            "timestamp": utc_now_iso(),
        }
        return await self._probe(endpoint, json={"embeds": [embed]})


class TelegramProvider(WebhookProvider):
    """Posts to a bot ``sendMessage`` URL; long messages go out in several parts."""

    name = "Telegram"

    def __init__(self, *args, max_len: int = TELEGRAM_MAX_MESSAGE_LEN, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_len = max_len

    @staticmethod
    def build_text(payload: NotificationPayload) -> str:
        text = f"{SEVERITY_EMOJI.get(payload.severity, '')} *{payload.title}*\n\n{payload.message}"
        details = detail_lines(payload)
        if details:
            text += "\n\n" + "\n".join(details)
        return text

    async def send(self, endpoint: str, payload: NotificationPayload) -> None:
        for part in split_telegram_message(self.build_text(payload), max_len=self.max_len):
            await self._post(endpoint, json={"text": part, "parse_mode": "Markdown"})

    async def test_connection(self, endpoint: str) -> bool:
        text = f"✅ *Test Notification*\n\nThis is a test notification from {self.app_name}"
        return await self._probe(endpoint, json={"text": text, "parse_mode": "Markdown"})


class PushoverProvider(WebhookProvider):
    """Form post to the Pushover messages endpoint.

    The stored endpoint carries the app token and user key as query
    parameters; severity picks the Pushover priority.
    """

    name = "Pushover"

    def __init__(self, *args, clock: Callable[[], float] = time.time, **kwargs):
        super().__init__(*args, **kwargs)
        self._clock = clock

    def build_form(self, payload: NotificationPayload) -> dict[str, str]:
        message = payload.message
        details = detail_lines(payload)
        if details:
            message += "\n\n" + "\n".join(details)
        priority = PUSHOVER_PRIORITY.get(payload.severity, 0)
        form = {
            "title": truncate(payload.title, PUSHOVER_TITLE_MAX),
            "message": truncate(message, PUSHOVER_MESSAGE_MAX),
            "priority": str(priority),
            "timestamp": str(int(self._clock())),
        }
        if payload.severity == SEVERITY_CRITICAL:
            # Emergency priority is rejected without retry/expire.
            form["retry"] = "60"
            form["expire"] = "3600"
        return form

    async def send(self, endpoint: str, payload: NotificationPayload) -> None:
        await self._post(endpoint, data=self.build_form(payload))

    async def test_connection(self, endpoint: str) -> bool:
        form = {
            "title": "Test Notification",
            "message": f"This is a test notification from {self.app_name}",
            "priority": "0",
        }
        return await self._probe(endpoint, data=form)


PROVIDER_REGISTRY: dict[str, type[WebhookProvider]] = {
    PROVIDER_DISCORD: DiscordProvider,
    PROVIDER_TELEGRAM: TelegramProvider,
    PROVIDER_PUSHOVER: PushoverProvider,
}


def create_provider(
    provider_type: str,
    http_client: httpx.AsyncClient,
    *,
    timeout_seconds: float = 10.0,
    app_name: str = "StatusDeck",
) -> WebhookProvider:
    provider_cls = PROVIDER_REGISTRY.get(provider_type)
    if provider_cls is None:
        raise ConfigurationError(f"Unsupported webhook provider: {provider_type}")
    return provider_cls(http_client, timeout_seconds=timeout_seconds, app_name=app_name)


async def send_with_retry(
    provider: WebhookProvider,
    endpoint: str,
    payload: NotificationPayload,
    *,
    delays: Sequence[float] = (1.0, 3.0, 9.0),
    max_attempts: int = 3,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> int:
    """Send with a fixed backoff. Returns the attempt that succeeded.

    Raises :class:`DeliveryError` carrying the last error when every
    attempt fails.
    """
    max_attempts = max(1, int(max_attempts))
    attempt = 0
    while True:
        attempt += 1
        try:
            await provider.send(endpoint, payload)
            return attempt
        except Exception as e:
            if attempt >= max_attempts:
                raise DeliveryError(attempt, e) from e
            delay = delays[min(attempt - 1, len(delays) - 1)] if delays else 0.0
            logger.warning(
                "Notification attempt failed, retrying",
                provider=provider.name,
                attempt=attempt,
                max_attempts=max_attempts,
                delay_seconds=delay,
                error=str(e),
            )
            await sleep(delay)
