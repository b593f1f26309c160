"""In-memory, thread-safe device registry.

The registry is the only owner of Device records. Every read returns an
independent copy, and every mutation goes through a method that holds the
write lock, so concurrent syncs, API calls and uploads never observe a
half-applied change.
"""
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .errors import DeviceNotFound
from .locks import ReadWriteLock
from .models import Credentials, Device, DevicePatch, DeviceSpec, DeviceStatus, SystemInfo

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _default_name(address: str, port: int) -> str:
    return f"{address}:{port}"


def _login_key(device: Device) -> tuple:
    return (device.address, device.port, device.use_https, device.credentials)


class DeviceRegistry:
    def __init__(self, clock: Clock = utc_now):
        self.clock = clock
        self._lock = ReadWriteLock()
        self._devices: Dict[int, Device] = {}
        self._next_id = 1

    def _require(self, device_id: int) -> Device:
        device = self._devices.get(device_id)
        if device is None:
            raise DeviceNotFound(device_id)
        return device

    def create(self, spec: DeviceSpec) -> Device:
        with self._lock.write():
            device = Device(
                id=self._next_id,
                address=spec.address,
                port=spec.port,
                use_https=spec.use_https,
                credentials=Credentials(spec.username, spec.password),
                display_name=_default_name(spec.address, spec.port),
                status=DeviceStatus.CONNECTING,
            )
            self._devices[device.id] = device
            self._next_id += 1
            logger.info("Registered switch %s (%s)", device.id, device.display_name)
            return device.copy()

    def get(self, device_id: int) -> Device:
        with self._lock.read():
            return self._require(device_id).copy()

    def list(self) -> List[Device]:
        with self._lock.read():
            return [d.copy() for d in self._devices.values()]

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._devices)

    def update(self, device_id: int, patch: DevicePatch) -> Device:
        """Apply the non-empty fields of patch and put the device back into `connecting`.

        A new password, or any change of connection target or username, drops the
        current session so the next sync re-authenticates.
        """
        with self._lock.write():
            device = self._require(device_id)
            reset_session = False

            if patch.address and patch.address != device.address:
                device.address = patch.address
                reset_session = True
            if patch.port and patch.port != device.port:
                device.port = patch.port
                reset_session = True
            if patch.use_https is not None and patch.use_https != device.use_https:
                device.use_https = patch.use_https
                reset_session = True

            username = device.credentials.username
            password = device.credentials.password
            if patch.username and patch.username != username:
                username = patch.username
                reset_session = True
            if patch.password:
                password = patch.password
                reset_session = True
            device.credentials = Credentials(username, password)

            if reset_session:
                device.session_token = ""
                device.session_expiry = None

            device.display_name = _default_name(device.address, device.port)
            device.status = DeviceStatus.CONNECTING
            logger.info("Updated switch %s (%s)", device.id, device.display_name)
            return device.copy()

    def delete(self, device_id: int) -> None:
        with self._lock.write():
            self._require(device_id)
            del self._devices[device_id]
        logger.info("Deleted switch %s", device_id)

    # Commit methods used by the session manager, scheduler and schema pipeline.

    def set_session(self, device_id: int, token: str, expiry: datetime, *, issued_for: Optional[Device] = None) -> bool:
        """Store a session token. Returns False and stores nothing if `issued_for`
        no longer matches the device's credentials or connection target.
        """
        with self._lock.write():
            device = self._require(device_id)
            if issued_for is not None and _login_key(issued_for) != _login_key(device):
                logger.info("Discarding session for switch %s: credentials or target changed during login", device_id)
                return False
            device.session_token = token
            device.session_expiry = expiry
            return True

    def clear_session(self, device_id: int) -> None:
        with self._lock.write():
            device = self._require(device_id)
            device.session_token = ""
            device.session_expiry = None

    def set_status(self, device_id: int, status: DeviceStatus) -> None:
        with self._lock.write():
            self._require(device_id).status = status

    def record_sync(self, device_id: int, info: SystemInfo, at: Optional[datetime] = None) -> Device:
        """Commit a successful sync: status online, fresh snapshot, reported name."""
        with self._lock.write():
            device = self._require(device_id)
            device.status = DeviceStatus.ONLINE
            device.last_sync = at or self.clock()
            device.system_info = info
            if info.sys_name:
                device.display_name = info.sys_name
            return device.copy()

    def apply_system_update(
        self,
        device_id: int,
        *,
        sys_name: str = "",
        sys_location: Optional[str] = None,
        sys_contact: Optional[str] = None,
    ) -> Device:
        with self._lock.write():
            device = self._require(device_id)
            info = device.system_info or SystemInfo()
            changes = {}
            if sys_name:
                changes["sys_name"] = sys_name
                device.display_name = sys_name
            if sys_location is not None:
                changes["sys_location"] = sys_location
            if sys_contact is not None:
                changes["sys_contact"] = sys_contact
            device.system_info = replace(info, **changes)
            return device.copy()

    def store_schema(self, device_id: int, schema: bytes, at: Optional[datetime] = None) -> None:
        with self._lock.write():
            device = self._require(device_id)
            device.schema = schema
            device.schema_fetched_at = at or self.clock()
