"""Webhook providers and the alert dispatch pipeline."""

from .dispatcher import (
    OUTCOME_BATCHED,
    OUTCOME_FAILED,
    OUTCOME_SENT,
    OUTCOME_SKIPPED,
    OUTCOME_SUPPRESSED,
    NotificationService,
)
from .providers import (
    PROVIDER_REGISTRY,
    DiscordProvider,
    PushoverProvider,
    TelegramProvider,
    WebhookProvider,
    create_provider,
    send_with_retry,
    split_telegram_message,
)

__all__ = [
    "DiscordProvider",
    "NotificationService",
    "OUTCOME_BATCHED",
    "OUTCOME_FAILED",
    "OUTCOME_SENT",
    "OUTCOME_SKIPPED",
    "OUTCOME_SUPPRESSED",
    "PROVIDER_REGISTRY",
    "PushoverProvider",
    "TelegramProvider",
    "WebhookProvider",
    "create_provider",
    "send_with_retry",
    "split_telegram_message",
]
