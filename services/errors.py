"""Exception taxonomy raised by the crowd services.

``InvalidInput`` and ``NotFound`` describe problems with what the caller
sent and are safe to echo back. ``Misconfigured`` and ``StorageUnavailable``
are server-side faults; the HTTP layer replaces their detail with a generic
message.
"""

from __future__ import annotations


class CrowdError(Exception):
    """Base class for every error raised by the crowd services."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class InvalidInput(CrowdError, ValueError):
    """Client-supplied data failed structural validation."""


class InvalidIdentifier(InvalidInput):
    """A raw wireless identifier was empty or malformed."""


class NotFound(CrowdError, KeyError):
    """A referenced sensor, webhook or snapshot does not exist."""


class DeviceNotFound(NotFound):
    def __init__(self, device_id: int) -> None:
        super().__init__(f"Device {device_id} not found.")
        self.device_id = device_id


class WebhookNotFound(NotFound):
    def __init__(self, webhook_id: int) -> None:
        super().__init__(f"Webhook {webhook_id} not found.")
        self.webhook_id = webhook_id


class NoRecentData(NotFound):
    """A sensor has no snapshot inside the requested comparison window."""


class Conflict(CrowdError):
    """Duplicate registration of a unique relation."""


class Misconfigured(CrowdError):
    """Server-side configuration required for the operation is missing."""


class ThresholdsNotConfigured(Misconfigured):
    def __init__(self, device_id: int) -> None:
        super().__init__(f"Thresholds are not configured for device {device_id}.")
        self.device_id = device_id


class StorageUnavailable(CrowdError):
    """The backing store could not complete an operation within its contract."""
