"""Clients for the monitoring backends (Uptime Kuma, Netdata, Unraid)."""

from .base import BaseDriver
from .factory import DRIVER_REGISTRY, available_integrations, create_driver, driver_for_integration
from .netdata import NetdataDriver
from .unraid import UnraidDriver
from .uptime_kuma import UptimeKumaDriver

__all__ = [
    "BaseDriver",
    "UptimeKumaDriver",
    "NetdataDriver",
    "UnraidDriver",
    "DRIVER_REGISTRY",
    "create_driver",
    "driver_for_integration",
    "available_integrations",
]
