from __future__ import annotations

from typing import Any

import httpx
import structlog

from statusdeck.errors import DriverError
from statusdeck.models import Capability, ConnectionResult, MetricData, MonitorState


logger = structlog.get_logger(__name__)


class BaseDriver:
    """Client over one monitoring backend.

    Subclasses implement connection tests, capability discovery and metric
    fetches. Status-capable backends also implement ``fetch_monitor_list``.
    Transient failures raise :class:`DriverError` internally and are turned
    into ``ConnectionResult(success=False)``, fallback capabilities or a
    ``None`` metric at this boundary.
    """

    display_name = "Integration"
    service_type = ""
    supports_status = False
    supports_thresholds = False

    def __init__(
        self,
        integration_id: int,
        credentials: dict[str, Any],
        http_client: httpx.AsyncClient,
        *,
        timeout_seconds: float = 10.0,
    ):
        self.integration_id = integration_id
        self.credentials = credentials or {}
        self.http_client = http_client
        self.timeout_seconds = float(timeout_seconds)

    @property
    def base_url(self) -> str:
        return str(self.credentials.get("url") or "").strip().rstrip("/")

    async def test_connection(self) -> ConnectionResult:
        raise NotImplementedError

    async def get_capabilities(self) -> list[Capability]:
        raise NotImplementedError

    async def fetch_metric(self, key: str) -> MetricData | None:
        """Fetch one capability; unknown keys and backend failures give ``None``."""
        try:
            return await self._fetch_metric(key)
        except DriverError as e:
            logger.warning(
                "Metric fetch failed",
                integration_id=self.integration_id,
                metric=key,
                error=str(e),
            )
            return None
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(
                "Unexpected metric payload",
                integration_id=self.integration_id,
                metric=key,
                error=f"{type(e).__name__}: {e}",
            )
            return None

    async def _fetch_metric(self, key: str) -> MetricData | None:
        raise NotImplementedError

    async def fetch_monitor_list(self) -> list[MonitorState]:
        raise NotImplementedError(f"{self.display_name} does not report monitor status")

    async def fetch_all_metrics(self, capabilities: list[Capability] | None = None) -> dict[str, MetricData]:
        """Fetch every capability (discovered unless given); keys without data are left out."""
        if capabilities is None:
            capabilities = await self.get_capabilities()
        results: dict[str, MetricData] = {}
        for cap in capabilities:
            data = await self.fetch_metric(cap.key)
            if data is not None:
                results[cap.key] = data
        return results

    def _require(self, *names: str) -> None:
        missing = [n for n in names if not self.credentials.get(n)]
        if missing:
            raise DriverError(f"Missing credentials: {', '.join(missing)}")

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if not self.base_url:
            raise DriverError("Missing credentials: url")
        url = f"{self.base_url}{path}"
        kwargs.setdefault("timeout", self.timeout_seconds)
        try:
            resp = await self.http_client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise DriverError(f"Request timed out after {self.timeout_seconds:g}s") from e
        except httpx.HTTPError as e:
            raise DriverError(f"{type(e).__name__}: {e}") from e
        if resp.status_code >= 400:
            raise DriverError(f"HTTP {resp.status_code}: {resp.reason_phrase}")
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise DriverError(f"Malformed JSON response: {e}") from e
