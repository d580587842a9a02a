from __future__ import annotations

from typing import Any

import httpx

from statusdeck.crypto import CredentialCipher
from statusdeck.drivers.base import BaseDriver
from statusdeck.drivers.netdata import NetdataDriver
from statusdeck.drivers.unraid import UnraidDriver
from statusdeck.drivers.uptime_kuma import UptimeKumaDriver
from statusdeck.errors import ConfigurationError, CredentialError, UnknownIntegrationTypeError
from statusdeck.models import NETDATA, UNRAID, UPTIME_KUMA, Integration


DRIVER_REGISTRY: dict[str, type[BaseDriver]] = {
    UPTIME_KUMA: UptimeKumaDriver,
    NETDATA: NetdataDriver,
    UNRAID: UnraidDriver,
}


def create_driver(
    integration_id: int,
    service_type: str,
    credentials: dict[str, Any],
    http_client: httpx.AsyncClient,
    *,
    timeout_seconds: float = 10.0,
) -> BaseDriver:
    driver_cls = DRIVER_REGISTRY.get(service_type)
    if driver_cls is None:
        raise UnknownIntegrationTypeError(service_type)
    return driver_cls(integration_id, credentials, http_client, timeout_seconds=timeout_seconds)


def driver_for_integration(
    integration: Integration,
    cipher: CredentialCipher,
    http_client: httpx.AsyncClient,
    *,
    timeout_seconds: float = 10.0,
) -> BaseDriver:
    """Decrypt an integration's credentials and build its driver."""
    if integration.service_type not in DRIVER_REGISTRY:
        raise UnknownIntegrationTypeError(integration.service_type)
    if not integration.credentials:
        raise ConfigurationError(f"Integration {integration.id} has no credentials configured")
    try:
        credentials = cipher.decrypt_json(integration.credentials)
    except CredentialError as e:
        raise ConfigurationError(f"Integration {integration.id} credentials unreadable: {e}") from e
    if not isinstance(credentials, dict):
        raise ConfigurationError(f"Integration {integration.id} credentials must be an object")
    return create_driver(
        integration.id,
        integration.service_type,
        credentials,
        http_client,
        timeout_seconds=timeout_seconds,
    )


def available_integrations() -> list[dict[str, Any]]:
    return [
        {
            "type": service_type,
            "display_name": driver_cls.display_name,
            "supports_status": driver_cls.supports_status,
            "supports_thresholds": driver_cls.supports_thresholds,
        }
        for service_type, driver_cls in DRIVER_REGISTRY.items()
    ]
