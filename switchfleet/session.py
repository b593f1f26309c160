import logging
from datetime import timedelta

from .device_client import DeviceClient
from .models import Device
from .registry import DeviceRegistry

logger = logging.getLogger(__name__)


class SessionManager:
    """Keeps a usable session token on each device before remote calls.

    Expiry is checked lazily on every use. A failed re-authentication leaves the
    device's previous token and expiry as they were; callers decide what status
    the failure means.
    """

    def __init__(self, registry: DeviceRegistry, client: DeviceClient, *, ttl: int = 3600):
        self.registry = registry
        self.client = client
        self.ttl = ttl

    def ensure_session(self, device: Device) -> str:
        """Return a valid token for device, authenticating first if needed.

        Raises AuthError (or its DeviceConnectionError subclass) on failure.
        """
        now = self.registry.clock()
        if device.session_valid(now):
            return device.session_token

        log = logging.getLogger(f"{__name__}.{device.address}")
        if device.session_token:
            log.info("Session for switch %s expired at %s; re-authenticating", device.id, device.session_expiry)

        token, ttl = self.client.authenticate(device, self.ttl)
        expiry = self.registry.clock() + timedelta(seconds=ttl)
        if not self.registry.set_session(device.id, token, expiry, issued_for=device):
            # Token belongs to superseded credentials; usable for this call only.
            return token
        device.session_token = token
        device.session_expiry = expiry
        log.debug("Session for switch %s valid until %s", device.id, expiry.isoformat())
        return token
