"""Per-rule cooldown between dispatched alerts.

The whole map of ``rule id -> last sent`` lives in one JSON blob under a
settings key and is rewritten after every record, so restarts keep active
cooldowns.
"""

from __future__ import annotations

import json
import time
from typing import Callable, Optional

import structlog

from statusdeck.store.base import SETTING_FLOOD_STATE, Store


logger = structlog.get_logger(__name__)


class FloodControl:
    def __init__(self, store: Store, clock: Callable[[], float] = time.time):
        self.store = store
        self._clock = clock
        self._last_sent: dict[int, float] = self._load()

    def _load(self) -> dict[int, float]:
        raw = self.store.get_setting(SETTING_FLOOD_STATE)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
            return {int(rule_id): float(ts) for rule_id, ts in data.items()}
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("Discarding unreadable flood control state", error=str(e))
            return {}

    def _persist(self) -> None:
        blob = json.dumps({str(rule_id): ts for rule_id, ts in self._last_sent.items()})
        self.store.set_setting(SETTING_FLOOD_STATE, blob)

    def can_send(self, rule_id: int, cooldown_minutes: float, *, bypass: bool = False) -> bool:
        if bypass:
            return True
        last = self._last_sent.get(rule_id)
        if last is None:
            return True
        elapsed = self._clock() - last
        allowed = elapsed >= cooldown_minutes * 60
        if not allowed:
            logger.debug(
                "Alert within cooldown",
                rule_id=rule_id,
                cooldown_minutes=cooldown_minutes,
                remaining_seconds=round(cooldown_minutes * 60 - elapsed),
            )
        return allowed

    def record(self, rule_id: int, *, bypass: bool = False) -> None:
        if bypass:
            return
        self._last_sent[rule_id] = self._clock()
        self._persist()

    def last_sent(self, rule_id: int) -> Optional[float]:
        return self._last_sent.get(rule_id)

    def reset(self, rule_id: Optional[int] = None) -> None:
        if rule_id is None:
            self._last_sent.clear()
        else:
            self._last_sent.pop(rule_id, None)
        self._persist()
