import logging
from typing import Any, Dict, Iterable, Optional, Tuple

import requests
import urllib3

from .config import DEFAULT_API_PREFIX
from .errors import AuthError, DeviceConnectionError, ProtocolError
from .models import Device, SystemInfo

logger = logging.getLogger(__name__)

# disable insecure HTTPS warnings (switches ship self-signed certs)
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

AUTH_HEADER = "X-Auth-Token"
SCHEMA_INFO_TYPE = "OPENAPI_SCHEMA"


def _str_field(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ProtocolError(f"invalid response: {key} must be a string, got {type(value).__name__}")
    return value


def parse_system_state(payload: Any) -> SystemInfo:
    """Convert a `state/system` response body into a SystemInfo.

    Only the first entry of `cards` is read for model, firmware and port count.
    Raises ProtocolError if the body does not have the expected shape.
    """
    if not isinstance(payload, dict):
        raise ProtocolError(f"invalid response: expected an object, got {type(payload).__name__}")

    is_twin = payload.get("isDigitalTwin", False)
    if is_twin is None:
        is_twin = False
    if not isinstance(is_twin, bool):
        raise ProtocolError("invalid response: isDigitalTwin must be a boolean")

    cards = payload.get("cards") or []
    if not isinstance(cards, list):
        raise ProtocolError("invalid response: cards must be a list")

    model_name = firmware_version = ""
    num_ports = 0
    if cards:
        card = cards[0]
        if not isinstance(card, dict):
            raise ProtocolError("invalid response: cards[0] must be an object")
        model_name = _str_field(card, "modelName")
        firmware_version = _str_field(card, "firmwareVersion")
        raw_ports = card.get("numPorts", 0)
        if raw_ports is None:
            raw_ports = 0
        if isinstance(raw_ports, bool) or not isinstance(raw_ports, int):
            raise ProtocolError("invalid response: cards[0].numPorts must be an integer")
        num_ports = raw_ports

    return SystemInfo(
        sys_name=_str_field(payload, "sysName"),
        sys_description=_str_field(payload, "sysDescription"),
        sys_location=_str_field(payload, "sysLocation"),
        sys_contact=_str_field(payload, "sysContact"),
        model_name=model_name,
        firmware_version=firmware_version,
        nos_type=_str_field(payload, "nosType"),
        chassis_id=_str_field(payload, "chassisId"),
        num_ports=num_ports,
        is_digital_twin=is_twin,
    )


class DeviceClient:
    """Client for the switches' REST management API.

    One instance is shared by all devices; the target comes from the Device passed
    to each call. Every call is bounded by `timeout` and never retried here.
    """

    def __init__(
        self,
        *,
        api_prefix: str = DEFAULT_API_PREFIX,
        timeout: float = 10.0,
        verify_ssl: bool = False,
        session: Optional[requests.Session] = None,
    ):
        self.api_prefix = api_prefix.rstrip("/")
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def _url(self, device: Device, path: str) -> str:
        return f"{device.base_url}{self.api_prefix}{path}"

    def _request(
        self,
        device: Device,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        headers = {"Content-Type": "application/json"}
        if token:
            headers[AUTH_HEADER] = token
        url = self._url(device, path)
        try:
            return self.session.request(
                method,
                url,
                json=payload,
                headers=headers,
                verify=self.verify_ssl,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise DeviceConnectionError(f"connection failed: {method} {url}: {exc}") from exc

    @staticmethod
    def _ok(resp: requests.Response) -> bool:
        return 200 <= resp.status_code < 300

    def authenticate(self, device: Device, ttl: int) -> Tuple[str, int]:
        """Obtain a session token. Returns (token, ttl_seconds)."""
        log = logging.getLogger(f"{__name__}.{device.address}")
        log.debug("Authenticating to %s as %s", device.base_url, device.credentials.username)
        resp = self._request(
            device,
            "POST",
            "/auth/token",
            payload={
                "username": device.credentials.username,
                "password": device.credentials.password,
                "ttl": ttl,
            },
        )
        if not self._ok(resp):
            raise AuthError(f"auth failed: status {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise AuthError(f"invalid auth response: {exc}") from exc
        token = data.get("token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token:
            raise AuthError("invalid auth response: missing token")

        granted = data.get("ttl")
        if isinstance(granted, bool) or not isinstance(granted, int) or granted <= 0:
            granted = ttl
        return token, granted

    def get_system_info(self, device: Device, token: str) -> SystemInfo:
        """Fetch and normalize the device's system state."""
        log = logging.getLogger(f"{__name__}.{device.address}")
        log.debug("Fetching system state from %s", device.base_url)
        resp = self._request(device, "GET", "/v0/state/system", token=token)
        if not self._ok(resp):
            raise ProtocolError(f"status {resp.status_code}: {resp.text}", status_code=resp.status_code, body=resp.text)

        try:
            data = resp.json()
        except ValueError as exc:
            raise ProtocolError(f"invalid response: {exc}", status_code=resp.status_code, body=resp.text) from exc
        return parse_system_state(data)

    def request_debug_upload(
        self,
        device: Device,
        token: str,
        *,
        upload_url: str,
        username: str,
        password: str,
        info_types: Iterable[str] = (SCHEMA_INFO_TYPE,),
    ) -> None:
        """Ask the device to push a debug-info bundle to upload_url."""
        resp = self._request(
            device,
            "POST",
            "/v0/operation/system/debug-info/:upload",
            token=token,
            payload={
                "URL": upload_url,
                "infoType": list(info_types),
                "username": username,
                "password": password,
            },
        )
        if not self._ok(resp):
            raise ProtocolError(
                f"Switch returned error: {resp.text}", status_code=resp.status_code, body=resp.text
            )

    def update_system(self, device: Device, token: str, fields: Dict[str, str]) -> None:
        """PATCH writable system fields (sysName, sysLocation, sysContact)."""
        resp = self._request(device, "PATCH", "/v0/operation/system", token=token, payload=fields)
        if not self._ok(resp):
            raise ProtocolError(f"status {resp.status_code}: {resp.text}", status_code=resp.status_code, body=resp.text)
