from __future__ import annotations

from typing import Any

import httpx
import structlog

from statusdeck.drivers.base import BaseDriver
from statusdeck.errors import DriverError
from statusdeck.models import NETDATA, Capability, ConnectionResult, MetricData


logger = structlog.get_logger(__name__)


_FIXED_CHARTS: dict[str, dict[str, str]] = {
    "system.cpu": {
        "key": "cpu_usage",
        "display_name": "CPU Usage",
        "unit": "%",
        "category": "performance",
        "description": "Total CPU utilisation across all cores",
    },
    "system.ram": {
        "key": "memory_usage",
        "display_name": "Memory Usage",
        "unit": "%",
        "category": "performance",
        "description": "Used RAM as a share of total RAM",
    },
    "system.load": {
        "key": "load_average",
        "display_name": "Load Average",
        "unit": "",
        "category": "performance",
        "description": "One-minute system load average",
    },
    "system.net": {
        "key": "network_bandwidth",
        "display_name": "Network Bandwidth",
        "unit": "Mbps",
        "category": "network",
        "description": "Combined received and sent traffic on physical interfaces",
    },
}
_KEY_TO_CHART = {meta["key"]: chart for chart, meta in _FIXED_CHARTS.items()}


def disk_key_for_chart(chart_id: str) -> str:
    """``disk_space._`` -> ``disk_root_usage``, ``disk_space._mnt_data`` -> ``disk_mnt_data_usage``."""
    suffix = chart_id[len("disk_space."):]
    mount = "root" if suffix.strip("_") == "" else suffix.strip("_")
    return f"disk_{mount}_usage"


def chart_for_key(key: str) -> str | None:
    if key in _KEY_TO_CHART:
        return _KEY_TO_CHART[key]
    if key.startswith("disk_") and key.endswith("_usage") and len(key) > len("disk__usage"):
        mount = key[len("disk_"):-len("_usage")]
        return "disk_space._" if mount == "root" else f"disk_space._{mount}"
    if key.startswith("sensors_") and key.endswith("_temp") and len(key) > len("sensors__temp"):
        return "sensors." + key[len("sensors_"):-len("_temp")]
    return None


def _capability_for_chart(chart_id: str, chart: dict[str, Any]) -> Capability | None:
    title = str(chart.get("title") or chart_id)
    if chart_id in _FIXED_CHARTS:
        meta = _FIXED_CHARTS[chart_id]
        return Capability(target="system", metric=chart_id, **meta)
    if chart_id.startswith("disk_space."):
        key = disk_key_for_chart(chart_id)
        mount = key[len("disk_"):-len("_usage")]
        path = "/" if mount == "root" else "/" + mount.replace("_", "/")
        return Capability(
            key=key,
            target=mount,
            metric="disk_usage",
            display_name=f"Disk Usage ({path})",
            unit="%",
            category="health",
            description=title,
        )
    if chart_id.startswith("sensors.") and "celsius" in str(chart.get("units") or "").lower():
        suffix = chart_id[len("sensors."):]
        return Capability(
            key=f"sensors_{suffix}_temp",
            target=suffix,
            metric="temperature",
            display_name=f"Temperature ({suffix})",
            unit="°C",
            category="health",
            description=title,
        )
    return None


def _fallback_capabilities() -> list[Capability]:
    charts = [
        ("system.cpu", {}),
        ("system.ram", {}),
        ("disk_space._", {"title": "Disk space usage for /"}),
        ("system.net", {}),
    ]
    return [c for c in (_capability_for_chart(chart_id, meta) for chart_id, meta in charts) if c is not None]


def latest_point(payload: Any) -> dict[str, float]:
    """Map dimension label -> value for the newest row of a ``/api/v1/data`` response."""
    if not isinstance(payload, dict):
        raise DriverError("Malformed Netdata data response")
    labels = payload.get("labels")
    rows = payload.get("data")
    if not isinstance(labels, list) or not isinstance(rows, list) or not rows:
        raise DriverError("Netdata returned no data points")
    row = rows[0]
    out: dict[str, float] = {}
    for label, value in zip(labels, row):
        if label == "time" or value is None:
            continue
        try:
            out[str(label)] = float(value)
        except (TypeError, ValueError):
            continue
    return out


def _pct(part: float, total: float) -> float:
    return round(part / total * 100, 2) if total > 0 else 0.0


class NetdataDriver(BaseDriver):
    display_name = "Netdata"
    service_type = NETDATA
    supports_status = False
    supports_thresholds = True

    def _auth(self) -> httpx.BasicAuth | None:
        user = self.credentials.get("username")
        password = self.credentials.get("password")
        if user and password:
            return httpx.BasicAuth(str(user), str(password))
        return None

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        resp = await self._request("GET", path, params=params, auth=self._auth())
        return self._json(resp)

    async def test_connection(self) -> ConnectionResult:
        try:
            info = await self._get_json("/api/v1/info")
        except DriverError as e:
            return ConnectionResult(success=False, message=str(e))
        version = info.get("version") if isinstance(info, dict) else None
        return ConnectionResult(
            success=True,
            message=f"Successfully connected to Netdata (v{version or 'unknown'})",
            data=info,
        )

    async def get_capabilities(self) -> list[Capability]:
        try:
            payload = await self._get_json("/api/v1/charts")
            charts = payload.get("charts") if isinstance(payload, dict) else None
            if not isinstance(charts, dict):
                raise DriverError("Malformed Netdata charts response")
        except DriverError as e:
            logger.warning(
                "Capability discovery failed, using static set",
                integration_id=self.integration_id,
                driver=self.service_type,
                error=str(e),
            )
            return _fallback_capabilities()

        caps: list[Capability] = []
        for chart_id in sorted(charts):
            chart = charts[chart_id] if isinstance(charts[chart_id], dict) else {}
            cap = _capability_for_chart(str(chart_id), chart)
            if cap is not None:
                caps.append(cap)
        return caps

    async def _fetch_metric(self, key: str) -> MetricData | None:
        chart = chart_for_key(key)
        if chart is None:
            return None
        point = latest_point(await self._get_json("/api/v1/data", {"chart": chart, "points": 1}))
        meta: dict[str, Any] = {"chart": chart}

        if key == "cpu_usage":
            return MetricData(value=round(sum(point.values()), 2), unit="%", metadata=meta)
        if key == "memory_usage":
            used = point.get("used", 0.0)
            total = sum(point.values())
            meta.update({"used": used, "total": total})
            return MetricData(value=_pct(used, total), unit="%", metadata=meta)
        if key == "load_average":
            return MetricData(value=point.get("load1", 0.0), unit="", metadata=meta)
        if key == "network_bandwidth":
            received = abs(point.get("received", 0.0))
            sent = abs(point.get("sent", 0.0))
            meta.update({"received_kbps": received, "sent_kbps": sent})
            return MetricData(value=round((received + sent) / 1000, 3), unit="Mbps", metadata=meta)
        if chart.startswith("disk_space."):
            used = point.get("used", 0.0)
            total = used + point.get("avail", 0.0) + point.get("reserved for root", 0.0)
            meta.update({"used_gib": used, "total_gib": total})
            return MetricData(value=_pct(used, total), unit="%", metadata=meta)
        # sensors.*: hottest dimension
        if not point:
            return None
        hottest = max(point, key=lambda k: point[k])
        meta["sensor"] = hottest
        return MetricData(value=point[hottest], unit="°C", metadata=meta)
