"""Exception types shared across the status and alerting services."""

from __future__ import annotations


class StatusDeckError(Exception):
    """Base class for all statusdeck errors."""


class ConfigurationError(StatusDeckError):
    """An integration, rule or webhook is configured in a way we cannot act on."""


class UnknownIntegrationTypeError(ConfigurationError):
    def __init__(self, service_type: str):
        super().__init__(f"Unknown service type: {service_type}")
        self.service_type = service_type


class IntegrationNotFoundError(StatusDeckError):
    def __init__(self, integration_id: int):
        super().__init__("Integration not found")
        self.integration_id = integration_id


class RateLimitedError(StatusDeckError):
    """Raised by on-demand polls issued before the integration interval elapsed."""

    def __init__(self, retry_after: int):
        super().__init__(f"Rate limited: Please wait {retry_after} seconds before polling again")
        self.retry_after = retry_after


class CredentialError(StatusDeckError):
    """Encrypted credentials could not be decrypted or decoded."""


class DriverError(StatusDeckError):
    """A monitoring backend round trip failed (timeout, HTTP error, bad payload)."""


class ProviderError(StatusDeckError):
    """A notification provider rejected a message."""


class DeliveryError(StatusDeckError):
    """All delivery attempts for one notification failed."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(str(last_error) or type(last_error).__name__)
        self.attempts = attempts
        self.last_error = last_error
