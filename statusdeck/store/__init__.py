"""Persistence for integrations, cards, rules, webhooks, templates and history."""

from .base import (
    SETTING_AGGREGATION_ENABLED,
    SETTING_AGGREGATION_WINDOW_MS,
    SETTING_FLOOD_STATE,
    SETTING_MAINTENANCE_MODE,
    SETTING_STATUS_SOURCE,
    SETTING_UNRAID_WEBHOOK_API_KEY,
    SETTING_UNRAID_WEBHOOK_ENABLED,
    Store,
)
from .sqlite import SQLiteStore

__all__ = [
    "Store",
    "SQLiteStore",
    "SETTING_STATUS_SOURCE",
    "SETTING_MAINTENANCE_MODE",
    "SETTING_FLOOD_STATE",
    "SETTING_AGGREGATION_ENABLED",
    "SETTING_AGGREGATION_WINDOW_MS",
    "SETTING_UNRAID_WEBHOOK_ENABLED",
    "SETTING_UNRAID_WEBHOOK_API_KEY",
]
