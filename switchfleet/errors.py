"""Exception types raised by the switchfleet core."""
from typing import Optional


class SwitchFleetError(RuntimeError):
    """Base class for all switchfleet errors."""


class DeviceNotFound(SwitchFleetError):
    def __init__(self, device_id: int):
        super().__init__(f"Switch {device_id} not found")
        self.device_id = device_id


class AuthError(SwitchFleetError):
    """The device rejected our credentials or token."""


class DeviceConnectionError(AuthError):
    """Transport-level failure reaching a device (refused, timeout, TLS)."""


class ProtocolError(SwitchFleetError):
    """Unexpected status code or malformed body from a device."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TokenError(SwitchFleetError):
    """Upload token missing, consumed or expired."""


class ArchiveError(SwitchFleetError):
    """Payload looked like a gzip archive but held no usable schema entry."""


class SchemaNotAvailable(SwitchFleetError):
    def __init__(self, device_id: int):
        super().__init__(f"No schema available for switch {device_id}. Please fetch it first.")
        self.device_id = device_id
