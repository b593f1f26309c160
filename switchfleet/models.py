import dataclasses
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class DeviceStatus(str, Enum):
    CONNECTING = "connecting"
    ONLINE = "online"
    AUTH_FAILED = "auth_failed"
    ERROR = "error"


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class SystemInfo:
    """
    Normalized snapshot of a switch's reported system state.

    Hardware facts (model, firmware, port count) come from the first card only;
    multi-card chassis are not aggregated.
    """

    sys_name: str = ""
    sys_description: str = ""
    sys_location: str = ""
    sys_contact: str = ""
    model_name: str = ""
    firmware_version: str = ""
    nos_type: str = ""
    chassis_id: str = ""
    num_ports: int = 0
    is_digital_twin: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sysName": self.sys_name,
            "sysDescription": self.sys_description,
            "sysLocation": self.sys_location,
            "sysContact": self.sys_contact,
            "modelName": self.model_name,
            "firmwareVersion": self.firmware_version,
            "nosType": self.nos_type,
            "chassisId": self.chassis_id,
            "numPorts": self.num_ports,
            "isDigitalTwin": self.is_digital_twin,
        }


@dataclass(frozen=True)
class DeviceSpec:
    """Connection target and credentials for a new switch."""

    address: str
    port: int
    username: str
    password: str
    use_https: bool = True


@dataclass(frozen=True)
class DevicePatch:
    """Partial update; empty/None fields are left unchanged."""

    address: Optional[str] = None
    port: Optional[int] = None
    use_https: Optional[bool] = None
    username: Optional[str] = None
    password: Optional[str] = None


@dataclass
class Device:
    """A managed switch as held by the registry."""

    id: int
    address: str
    port: int
    use_https: bool
    credentials: Credentials
    display_name: str
    status: DeviceStatus = DeviceStatus.CONNECTING
    last_sync: Optional[datetime] = None
    system_info: Optional[SystemInfo] = None
    session_token: str = ""
    session_expiry: Optional[datetime] = None
    schema: Optional[bytes] = None
    schema_fetched_at: Optional[datetime] = None

    @property
    def base_url(self) -> str:
        scheme = "https" if self.use_https else "http"
        return f"{scheme}://{self.address}:{self.port}"

    def session_valid(self, now: datetime) -> bool:
        return bool(self.session_token) and self.session_expiry is not None and now < self.session_expiry

    def copy(self) -> "Device":
        # Nested values are frozen, so a shallow copy is independent.
        return dataclasses.replace(self)

    def to_dict(self) -> Dict[str, Any]:
        """Public representation; never includes password, session token or schema text."""
        return {
            "id": self.id,
            "name": self.display_name,
            "ip_address": self.address,
            "port": self.port,
            "use_https": self.use_https,
            "username": self.credentials.username,
            "status": self.status.value,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "system_info": self.system_info.to_dict() if self.system_info else None,
            "has_schema": self.schema is not None,
            "schema_fetched_at": self.schema_fetched_at.isoformat() if self.schema_fetched_at else None,
        }


@dataclass(frozen=True)
class UploadToken:
    token: str
    device_id: int
    created_at: datetime
