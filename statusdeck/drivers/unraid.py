from __future__ import annotations

import re
from typing import Any

import structlog

from statusdeck.drivers.base import BaseDriver
from statusdeck.errors import DriverError
from statusdeck.models import (
    MONITOR_DOWN,
    MONITOR_UP,
    UNRAID,
    Capability,
    ConnectionResult,
    MetricData,
    MonitorState,
)


logger = structlog.get_logger(__name__)


Q_OS = "query { info { os { platform distro release } } }"
Q_CPU = "query { info { cpu { manufacturer brand cores threads } } }"
Q_MEMORY = "query { info { memory { total used free available } } }"
Q_ARRAY = """
query {
  array {
    state
    capacity { kilobytes { total used free } }
    parities { name status temp numErrors }
    disks { name status temp fsSize fsUsed fsFree }
  }
}
"""
Q_DOCKER = "query { docker { containers { id names state status autoStart } } }"

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    return _SLUG_RE.sub("_", (name or "").lower()).strip("_")


def container_name(container: dict[str, Any]) -> str:
    names = container.get("names")
    if isinstance(names, list) and names:
        raw = str(names[0])
    elif isinstance(names, str) and names:
        raw = names
    else:
        raw = str(container.get("id") or "")
    return raw.lstrip("/")


def _num(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _obj(value: Any, what: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise DriverError(f"Malformed GraphQL response: {what} is not an object")
    return value


def _objects(value: Any, what: str) -> list[dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        raise DriverError(f"Malformed GraphQL response: {what} is not a list of objects")
    return value


def _pct(part: float, total: float) -> float:
    return round(part / total * 100, 2) if total > 0 else 0.0


def _cap(key: str, target: str, metric: str, display_name: str, unit: str, category: str, description: str) -> Capability:
    return Capability(
        key=key,
        target=target,
        metric=metric,
        display_name=display_name,
        unit=unit,
        category=category,
        description=description,
    )


_BASE_CAPABILITIES = [
    _cap("cpu_cores", "cpu", "cores", "CPU Cores", "cores", "performance", "Number of CPU cores"),
    _cap("cpu_temp", "cpu", "temp", "System Temperature", "°C", "health", "Average temperature of array disks"),
    _cap("memory_usage", "memory", "usage", "RAM Usage", "%", "performance", "Memory utilisation percentage"),
    _cap("array_status", "array", "status", "Array Status", "status", "health", "Array state (STARTED, STOPPED, ...)"),
]
_FALLBACK_KEYS = ("cpu_cores", "memory_usage", "array_status")


class UnraidDriver(BaseDriver):
    """Unraid GraphQL API (``/graphql`` with an ``x-api-key`` header).

    Docker containers double as the monitor list: a running container is up.
    """

    display_name = "Unraid"
    service_type = UNRAID
    supports_status = True
    supports_thresholds = True

    async def graphql(self, query: str) -> dict[str, Any]:
        api_key = self.credentials.get("api_key") or self.credentials.get("apiKey")
        if not api_key:
            raise DriverError("API key is required for Unraid GraphQL API")
        resp = await self._request(
            "POST",
            "/graphql",
            json={"query": query},
            headers={"x-api-key": str(api_key)},
        )
        body = self._json(resp)
        if not isinstance(body, dict):
            raise DriverError("Malformed GraphQL response")
        errors = body.get("errors")
        if errors:
            first = errors[0] if isinstance(errors, list) and errors else {}
            msg = first.get("message") if isinstance(first, dict) else str(first)
            raise DriverError(f"GraphQL Error: {msg}")
        data = body.get("data")
        if not isinstance(data, dict):
            raise DriverError("GraphQL response carried no data")
        return data

    async def test_connection(self) -> ConnectionResult:
        try:
            data = await self.graphql(Q_OS)
            os_info = _obj(data.get("info"), "info").get("os")
        except DriverError as e:
            return ConnectionResult(success=False, message=str(e))
        if not isinstance(os_info, dict):
            return ConnectionResult(success=False, message="Invalid response - expected Unraid API data")
        return ConnectionResult(
            success=True,
            message=f"Connected to Unraid {os_info.get('distro') or ''} {os_info.get('release') or ''}".rstrip(),
            data=data,
        )

    async def _array(self) -> dict[str, Any]:
        array = (await self.graphql(Q_ARRAY)).get("array")
        if not isinstance(array, dict):
            raise DriverError("GraphQL response carried no array data")
        _objects(array.get("disks"), "array.disks")
        _objects(array.get("parities"), "array.parities")
        _obj(array.get("capacity"), "array.capacity")
        return array

    async def _containers(self) -> list[dict[str, Any]]:
        docker = _obj((await self.graphql(Q_DOCKER)).get("docker"), "docker")
        return _objects(docker.get("containers"), "docker.containers")

    async def get_capabilities(self) -> list[Capability]:
        array: dict[str, Any] | None = None
        containers: list[dict[str, Any]] | None = None
        try:
            array = await self._array()
        except DriverError as e:
            logger.warning("Disk discovery failed", integration_id=self.integration_id, error=str(e))
        try:
            containers = await self._containers()
        except DriverError as e:
            logger.warning("Container discovery failed", integration_id=self.integration_id, error=str(e))

        if array is None and containers is None:
            logger.warning(
                "Capability discovery failed, using static set",
                integration_id=self.integration_id,
                driver=self.service_type,
            )
            return [c for c in _BASE_CAPABILITIES if c.key in _FALLBACK_KEYS]

        caps = list(_BASE_CAPABILITIES)
        if array is not None:
            caps.append(_cap("disk_usage", "array", "usage", "Array Usage", "%", "performance", "Used share of the whole array"))
            for disk in array.get("disks") or []:
                name = str(disk.get("name") or "")
                slug = slugify(name)
                if not slug:
                    continue
                caps.append(_cap(f"disk_{slug}_usage", f"disk_{slug}", "usage", f"{name} Usage", "%", "performance", f"Disk space usage for {name}"))
                if _num(disk.get("temp")) is not None:
                    caps.append(_cap(f"disk_{slug}_temp", f"disk_{slug}", "temp", f"{name} Temperature", "°C", "health", f"Temperature for {name}"))
            if array.get("parities"):
                caps.append(_cap("parity_errors", "parity", "errors", "Parity Errors", "errors", "health", "Parity check error count"))
                caps.append(_cap("parity_status", "parity", "status", "Parity Status", "status", "health", "Parity disk status"))
        if containers is not None:
            caps.append(_cap("docker_containers", "docker", "running", "Running Containers", "running", "status", "Number of running Docker containers"))
            for container in containers:
                name = container_name(container)
                slug = slugify(name)
                if slug:
                    caps.append(_cap(f"docker_{slug}_status", f"docker_{slug}", "status", f"Docker: {name}", "status", "status", f"1 while container {name} is running"))
        return caps

    async def _fetch_metric(self, key: str) -> MetricData | None:
        if key == "cpu_cores":
            cpu = _obj(_obj((await self.graphql(Q_CPU)).get("info"), "info").get("cpu"), "info.cpu")
            return MetricData(value=int(_num(cpu.get("cores")) or 0), unit="cores", metadata=dict(cpu))
        if key == "memory_usage":
            mem = _obj(_obj((await self.graphql(Q_MEMORY)).get("info"), "info").get("memory"), "info.memory")
            total = _num(mem.get("total")) or 0.0
            used = _num(mem.get("used")) or 0.0
            return MetricData(
                value=_pct(used, total),
                unit="%",
                metadata={"total": total, "used": used, "free": mem.get("free"), "available": mem.get("available")},
            )
        if key in ("cpu_temp", "array_status", "disk_usage", "parity_errors", "parity_status"):
            return _array_metric(key, await self._array())
        if key.startswith("disk_") and (key.endswith("_usage") or key.endswith("_temp")):
            return _disk_metric(key, await self._array())
        if key == "docker_containers":
            containers = await self._containers()
            running = [c for c in containers if str(c.get("state") or "").lower() == "running"]
            return MetricData(
                value=len(running),
                unit="running",
                metadata={
                    "total": len(containers),
                    "running": len(running),
                    "containers": [
                        {"name": container_name(c), "state": c.get("state"), "status": c.get("status")}
                        for c in containers
                    ],
                },
            )
        if key.startswith("docker_") and key.endswith("_status"):
            slug = key[len("docker_"):-len("_status")]
            for c in await self._containers():
                if slugify(container_name(c)) == slug:
                    running = str(c.get("state") or "").lower() == "running"
                    return MetricData(
                        value=1 if running else 0,
                        unit="status",
                        metadata={"container": container_name(c), "state": c.get("state"), "status": c.get("status")},
                    )
            return None
        return None

    async def fetch_monitor_list(self) -> list[MonitorState]:
        return [
            MonitorState(
                name=container_name(c),
                status=MONITOR_UP if str(c.get("state") or "").lower() == "running" else MONITOR_DOWN,
            )
            for c in await self._containers()
            if container_name(c)
        ]


def _array_metric(key: str, array: dict[str, Any]) -> MetricData | None:
    disks = [d for d in array.get("disks") or [] if isinstance(d, dict)]
    if key == "cpu_temp":
        temps = [t for t in (_num(d.get("temp")) for d in disks) if t is not None and t > 0]
        avg = round(sum(temps) / len(temps), 1) if temps else 0.0
        return MetricData(
            value=avg,
            unit="°C",
            metadata={"disk_temps": [{"disk": d.get("name"), "temp": d.get("temp")} for d in disks]},
        )
    if key == "array_status":
        return MetricData(value=str(array.get("state") or "UNKNOWN"), unit="status", metadata={})
    if key == "disk_usage":
        kb = ((array.get("capacity") or {}).get("kilobytes")) or {}
        total = _num(kb.get("total")) or 0.0
        used = _num(kb.get("used")) or 0.0
        return MetricData(value=_pct(used, total), unit="%", metadata={"total_kb": total, "used_kb": used, "free_kb": kb.get("free")})

    parities = [p for p in array.get("parities") or [] if isinstance(p, dict)]
    if not parities:
        return None
    if key == "parity_errors":
        errors = sum(int(_num(p.get("numErrors")) or 0) for p in parities)
        return MetricData(value=errors, unit="errors", metadata={"parities": [p.get("name") for p in parities]})
    statuses = [str(p.get("status") or "UNKNOWN") for p in parities]
    bad = [s for s in statuses if s != "DISK_OK"]
    return MetricData(value=bad[0] if bad else "DISK_OK", unit="status", metadata={"statuses": statuses})


def _disk_metric(key: str, array: dict[str, Any]) -> MetricData | None:
    is_temp = key.endswith("_temp")
    slug = key[len("disk_"):-len("_temp" if is_temp else "_usage")]
    for disk in array.get("disks") or []:
        if not isinstance(disk, dict) or slugify(str(disk.get("name") or "")) != slug:
            continue
        meta = {"disk": disk.get("name"), "status": disk.get("status")}
        if is_temp:
            temp = _num(disk.get("temp"))
            return MetricData(value=temp, unit="°C", metadata=meta) if temp is not None else None
        size = _num(disk.get("fsSize")) or 0.0
        used = _num(disk.get("fsUsed")) or 0.0
        meta.update({"fs_size_kb": size, "fs_used_kb": used})
        return MetricData(value=_pct(used, size), unit="%", metadata=meta)
    return None
