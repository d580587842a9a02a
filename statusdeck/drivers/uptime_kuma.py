from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from statusdeck.drivers.base import BaseDriver
from statusdeck.errors import DriverError
from statusdeck.models import (
    MONITOR_DOWN,
    MONITOR_UP,
    UPTIME_KUMA,
    Capability,
    ConnectionResult,
    MetricData,
    MonitorState,
)


logger = structlog.get_logger(__name__)

_SAMPLE_RE = re.compile(
    r"^(monitor_status|monitor_response_time|monitor_cert_days_remaining)\{([^}]*)\}\s+(-?[0-9.]+(?:e[+-]?\d+)?)",
    re.MULTILINE,
)
_MONITOR_NAME_RE = re.compile(r'monitor_name="([^"]+)"')
_SLUG_RE = re.compile(r"[^a-z0-9]+")

_MONITOR_KEY_RE = re.compile(r"^monitor_(.+)_(status|response_time|cert_days)$")


@dataclass
class KumaMonitor:
    name: str
    up: bool | None = None
    response_time_ms: float | None = None
    cert_days: float | None = None

    @property
    def slug(self) -> str:
        return slugify(self.name)


def slugify(name: str) -> str:
    return _SLUG_RE.sub("_", (name or "").lower()).strip("_")


def parse_monitor_name(labels: str) -> str | None:
    m = _MONITOR_NAME_RE.search(labels or "")
    return m.group(1) if m else None


def parse_metrics_text(text: str) -> list[KumaMonitor]:
    """Extract per-monitor samples from Uptime Kuma's Prometheus exposition.

    Only ``monitor_status`` decides up/down: ``1`` is up, any other value
    (down, pending, maintenance) is treated as down.
    """
    monitors: dict[str, KumaMonitor] = {}
    for metric, labels, raw in _SAMPLE_RE.findall(text or ""):
        name = parse_monitor_name(labels)
        if not name:
            continue
        mon = monitors.setdefault(name, KumaMonitor(name=name))
        value = float(raw)
        if metric == "monitor_status":
            mon.up = value == 1
        elif metric == "monitor_response_time":
            mon.response_time_ms = value
        else:
            mon.cert_days = value
    return list(monitors.values())


_STATIC_CAPABILITIES = [
    Capability(
        key="uptime",
        target="all",
        metric="uptime",
        display_name="Uptime",
        unit="%",
        category="status",
        description="Share of monitors currently up",
    ),
    Capability(
        key="services",
        target="all",
        metric="services",
        display_name="Services",
        unit="",
        category="status",
        description="All monitors with their up/down state",
    ),
]


class UptimeKumaDriver(BaseDriver):
    display_name = "Uptime Kuma"
    service_type = UPTIME_KUMA
    supports_status = True
    supports_thresholds = False

    def _auth(self) -> httpx.BasicAuth:
        api_key = str(self.credentials.get("api_key") or self.credentials.get("apiKey") or "")
        return httpx.BasicAuth("", api_key)

    async def _scrape(self) -> list[KumaMonitor]:
        resp = await self._request("GET", "/metrics", auth=self._auth())
        return parse_metrics_text(resp.text)

    async def test_connection(self) -> ConnectionResult:
        try:
            await self._request("GET", "/metrics", auth=self._auth())
        except DriverError as e:
            return ConnectionResult(success=False, message=str(e))
        return ConnectionResult(success=True, message="Successfully connected to Uptime Kuma")

    async def get_capabilities(self) -> list[Capability]:
        try:
            monitors = await self._scrape()
        except DriverError as e:
            self._log_fallback(e)
            return list(_STATIC_CAPABILITIES)
        return list(_STATIC_CAPABILITIES) + [c for m in monitors for c in _monitor_capabilities(m)]

    async def _fetch_metric(self, key: str) -> MetricData | None:
        if key not in ("uptime", "services") and not _MONITOR_KEY_RE.match(key):
            return None
        return _metric_for(key, await self._scrape())

    async def fetch_all_metrics(self, capabilities: list[Capability] | None = None) -> dict[str, MetricData]:
        # One scrape carries every sample, so skip the per-key round trips.
        monitors = await self._scrape()
        keys = ["uptime", "services"] + [c.key for m in monitors for c in _monitor_capabilities(m)]
        out: dict[str, MetricData] = {}
        for key in keys:
            data = _metric_for(key, monitors)
            if data is not None:
                out[key] = data
        return out

    async def fetch_monitor_list(self) -> list[MonitorState]:
        return [
            MonitorState(name=m.name, status=MONITOR_UP if m.up else MONITOR_DOWN)
            for m in await self._scrape()
            if m.up is not None
        ]

    def _log_fallback(self, error: Exception) -> None:
        logger.warning(
            "Capability discovery failed, using static set",
            integration_id=self.integration_id,
            driver=self.service_type,
            error=str(error),
        )


def _monitor_capabilities(mon: KumaMonitor) -> list[Capability]:
    caps: list[Capability] = []
    if mon.up is not None:
        caps.append(
            Capability(
                key=f"monitor_{mon.slug}_status",
                target=mon.name,
                metric="status",
                display_name=f"{mon.name} Status",
                unit="",
                category="status",
                description=f"1 when {mon.name} is up, 0 otherwise",
            )
        )
    if mon.response_time_ms is not None:
        caps.append(
            Capability(
                key=f"monitor_{mon.slug}_response_time",
                target=mon.name,
                metric="response_time",
                display_name=f"{mon.name} Response Time",
                unit="ms",
                category="performance",
                description=f"Latest response time of {mon.name}",
            )
        )
    if mon.cert_days is not None:
        caps.append(
            Capability(
                key=f"monitor_{mon.slug}_cert_days",
                target=mon.name,
                metric="cert_days",
                display_name=f"{mon.name} Certificate Expiry",
                unit="days",
                category="health",
                description=f"Days until the TLS certificate of {mon.name} expires",
            )
        )
    return caps


def _metric_for(key: str, monitors: list[KumaMonitor]) -> MetricData | None:
    with_status = [m for m in monitors if m.up is not None]
    if key == "uptime":
        up = sum(1 for m in with_status if m.up)
        pct = round(up / len(with_status) * 100, 2) if with_status else 0.0
        return MetricData(
            value=pct,
            unit="%",
            metadata={"source": "prometheus_metrics", "up": up, "total": len(with_status)},
        )
    if key == "services":
        services: list[dict[str, Any]] = [
            {"name": m.name, "status": MONITOR_UP if m.up else MONITOR_DOWN} for m in with_status
        ]
        return MetricData(value=json.dumps(services), metadata={"count": len(services)})

    match = _MONITOR_KEY_RE.match(key)
    if not match:
        return None
    slug, kind = match.group(1), match.group(2)
    mon = next((m for m in monitors if m.slug == slug), None)
    if mon is None:
        return None
    meta = {"monitor_name": mon.name}
    if kind == "status" and mon.up is not None:
        return MetricData(value=1 if mon.up else 0, unit="", metadata=meta)
    if kind == "response_time" and mon.response_time_ms is not None:
        return MetricData(value=mon.response_time_ms, unit="ms", metadata=meta)
    if kind == "cert_days" and mon.cert_days is not None:
        return MetricData(value=mon.cert_days, unit="days", metadata=meta)
    return None
