"""Batches same-rule alerts into a single digest notification."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import structlog

from statusdeck.models import SEVERITY_INFO, SEVERITY_RANK, NotificationPayload, NotificationRule
from statusdeck.store.base import SETTING_AGGREGATION_ENABLED, SETTING_AGGREGATION_WINDOW_MS, Store


logger = structlog.get_logger(__name__)

MAX_DIGEST_LINES = 10

SEVERITY_EMOJI = {"critical": "🔴", "warning": "🟡", "info": "🔵"}

# Called with (rule id, payload) when a batch is flushed.
Deliver = Callable[[int, NotificationPayload], Awaitable[Any]]


@dataclass
class AlertBatch:
    rule_id: int
    rule_name: str
    window_seconds: float
    started_at: float
    alerts: list[NotificationPayload] = field(default_factory=list)
    task: Optional[asyncio.Task] = None


def highest_severity(alerts: list[NotificationPayload]) -> str:
    highest = SEVERITY_INFO
    for alert in alerts:
        if SEVERITY_RANK.get(alert.severity, 0) > SEVERITY_RANK[highest]:
            highest = alert.severity
    return highest


def _seconds_label(seconds: float) -> str:
    return str(int(seconds)) if float(seconds).is_integer() else f"{seconds:g}"


def build_digest(rule_name: str, alerts: list[NotificationPayload], window_seconds: float) -> NotificationPayload:
    """Merge a batch of two or more alerts into one payload."""
    count = len(alerts)
    window = _seconds_label(window_seconds)

    lines = [f"{count} alerts triggered within {window}s:", ""]
    for index, alert in enumerate(alerts[:MAX_DIGEST_LINES], start=1):
        lines.append(f"{index}. {SEVERITY_EMOJI.get(alert.severity, '⚪')} {alert.message}")
    message = "\n".join(lines) + "\n"
    if count > MAX_DIGEST_LINES:
        message += f"\n...and {count - MAX_DIGEST_LINES} more alerts"

    first = alerts[0]
    metadata = dict(first.metadata)
    metadata.update(
        {
            "aggregated": True,
            "alert_count": count,
            "time_window": f"{window}s",
            "alerts": [{"title": a.title, "message": a.message, "severity": a.severity} for a in alerts],
        }
    )
    return NotificationPayload(
        alert_type=first.alert_type,
        title=f"{rule_name} ({count} alerts)",
        message=message,
        severity=highest_severity(alerts),
        metadata=metadata,
    )


class AlertAggregator:
    """Buffers alerts per rule for a window, then hands one payload to ``deliver``.

    The first alert for a rule opens a batch and starts its timer; later
    alerts for the same rule join the batch until the timer fires. A batch of
    one is delivered unchanged.
    """

    def __init__(
        self,
        store: Store,
        deliver: Deliver,
        *,
        enabled: bool = True,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.deliver = deliver
        self.enabled = enabled
        self.window_seconds = window_seconds
        self._clock = clock
        self._batches: dict[int, AlertBatch] = {}
        self._load_config()

    def _load_config(self) -> None:
        window = self.store.get_setting(SETTING_AGGREGATION_WINDOW_MS)
        if window:
            try:
                self.window_seconds = int(window) / 1000
            except ValueError:
                logger.warning("Ignoring malformed aggregation window setting", value=window)
        enabled = self.store.get_setting(SETTING_AGGREGATION_ENABLED)
        if enabled is not None:
            self.enabled = enabled == "true"

    def update_config(self, *, enabled: Optional[bool] = None, window_seconds: Optional[float] = None) -> None:
        if window_seconds is not None:
            self.window_seconds = window_seconds
            self.store.set_setting(SETTING_AGGREGATION_WINDOW_MS, str(int(window_seconds * 1000)))
        if enabled is not None:
            self.enabled = enabled
            self.store.set_setting(SETTING_AGGREGATION_ENABLED, "true" if enabled else "false")
        logger.info("Aggregation config updated", enabled=self.enabled, window_seconds=self.window_seconds)

    def window_for(self, rule: NotificationRule) -> float:
        if rule.aggregation_window is not None and rule.aggregation_window > 0:
            return float(rule.aggregation_window)
        return float(self.window_seconds)

    def add(self, rule: NotificationRule, payload: NotificationPayload) -> bool:
        """Buffer ``payload``. Returns False when aggregation is off and the caller must send now."""
        if not self.enabled or rule.id is None:
            return False

        batch = self._batches.get(rule.id)
        if batch is not None:
            batch.alerts.append(payload)
            logger.debug("Added alert to batch", rule_id=rule.id, alerts=len(batch.alerts))
            return True

        window = self.window_for(rule)
        batch = AlertBatch(rule_id=rule.id, rule_name=rule.name, window_seconds=window, started_at=self._clock())
        batch.alerts.append(payload)
        batch.task = asyncio.get_running_loop().create_task(self._expire(rule.id, window))
        self._batches[rule.id] = batch
        logger.info("Opened alert batch", rule_id=rule.id, window_seconds=window)
        return True

    async def _expire(self, rule_id: int, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.flush(rule_id)
        except Exception as e:
            logger.error("Failed to deliver alert batch", rule_id=rule_id, error=str(e))

    async def flush(self, rule_id: int) -> bool:
        batch = self._batches.pop(rule_id, None)
        if batch is None or not batch.alerts:
            return False

        if batch.task is not None and batch.task is not asyncio.current_task():
            batch.task.cancel()

        logger.info("Flushing alert batch", rule_id=rule_id, alerts=len(batch.alerts))
        if len(batch.alerts) == 1:
            payload = batch.alerts[0]
        else:
            payload = build_digest(batch.rule_name, batch.alerts, batch.window_seconds)
        await self.deliver(rule_id, payload)
        return True

    async def flush_all(self) -> int:
        """Deliver every open batch now. Returns the number of batches flushed."""
        logger.info("Flushing all alert batches", batches=len(self._batches))
        flushed = 0
        for rule_id in list(self._batches):
            try:
                if await self.flush(rule_id):
                    flushed += 1
            except Exception as e:
                logger.error("Failed to deliver alert batch", rule_id=rule_id, error=str(e))
        return flushed

    def stats(self) -> dict[str, Any]:
        return {
            "active_batches": len(self._batches),
            "total_alerts_in_batches": sum(len(b.alerts) for b in self._batches.values()),
            "enabled": self.enabled,
            "window_seconds": self.window_seconds,
        }
