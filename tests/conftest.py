"""Shared fixtures.

Device HTTP traffic goes through a fake `requests.Session` so tests never open
sockets; `FakeSwitch` plays the switch side of the REST API.
"""

from __future__ import annotations

import json
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
import requests

from switchfleet.config import Settings
from switchfleet.device_client import DeviceClient
from switchfleet.manager import FleetManager
from switchfleet.registry import DeviceRegistry

PREFIX = "/rest/openapi"


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: Optional[str] = None):
        self.status_code = status_code
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text

    def json(self) -> Any:
        return json.loads(self.text)


Handler = Callable[[Dict[str, Any]], FakeResponse]


class FakeSession:
    """Records requests and answers them from per-(method, url) handlers."""

    def __init__(self) -> None:
        self.headers: Dict[str, str] = {}
        self.handlers: Dict[Tuple[str, str], Handler] = {}
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def route(self, method: str, url: str, handler: Handler) -> None:
        self.handlers[(method.upper(), url)] = handler

    def request(self, method, url, *, json=None, headers=None, verify=None, timeout=None):
        call = {"method": method.upper(), "url": url, "json": json, "headers": dict(headers or {}), "timeout": timeout}
        with self._lock:
            self.calls.append(call)
        handler = self.handlers.get((method.upper(), url))
        if handler is None:
            raise requests.exceptions.ConnectionError(f"no route to {url}")
        return handler(call)

    def calls_to(self, suffix: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [c for c in self.calls if c["url"].endswith(suffix)]


class FakeSwitch:
    """A switch behind FakeSession. Mutate the attributes to change its behavior."""

    def __init__(self, session: FakeSession, base_url: str):
        self.base_url = base_url
        self.auth_status = 200
        self.token = "tok-1"
        self.ttl = 3600
        self.state_status = 200
        self.state: Any = {
            "sysName": "sw1",
            "sysDescription": "VSP switch",
            "nosType": "VOSS",
            "chassisId": "00:11:22:33:44:55",
            "isDigitalTwin": False,
            "cards": [{"modelName": "M1", "firmwareVersion": "1.0", "numPorts": 24}],
        }
        self.state_text: Optional[str] = None
        self.upload_status = 200
        self.system_status = 200

        url = f"{base_url}{PREFIX}"
        session.route("POST", f"{url}/auth/token", self._auth)
        session.route("GET", f"{url}/v0/state/system", self._state)
        session.route("POST", f"{url}/v0/operation/system/debug-info/:upload", self._upload)
        session.route("PATCH", f"{url}/v0/operation/system", self._system)

    def _auth(self, call):
        if self.auth_status != 200:
            return FakeResponse(self.auth_status, {"error": "Invalid credentials"})
        return FakeResponse(200, {"token": self.token, "ttl": self.ttl})

    def _state(self, call):
        if self.state_status != 200:
            return FakeResponse(self.state_status, text="state unavailable")
        if self.state_text is not None:
            return FakeResponse(200, text=self.state_text)
        return FakeResponse(200, self.state)

    def _upload(self, call):
        if self.upload_status != 200:
            return FakeResponse(self.upload_status, text="upload refused")
        return FakeResponse(200, {"message": "ok"})

    def _system(self, call):
        if self.system_status != 200:
            return FakeResponse(self.system_status, text="system update refused")
        return FakeResponse(200, {})


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def http() -> FakeSession:
    return FakeSession()


@pytest.fixture
def client(http: FakeSession) -> DeviceClient:
    return DeviceClient(session=http, timeout=10.0)


@pytest.fixture
def registry(clock: FakeClock) -> DeviceRegistry:
    return DeviceRegistry(clock=clock)


@pytest.fixture
def switch(http: FakeSession) -> FakeSwitch:
    return FakeSwitch(http, "https://10.0.0.5:9443")


@pytest.fixture
def settings() -> Settings:
    return Settings(callback_base_url="http://manager.example:8080", sync_interval=3600, sync_workers=4)


@pytest.fixture
def manager(settings: Settings, registry: DeviceRegistry, client: DeviceClient):
    m = FleetManager(settings, registry=registry, client=client)
    yield m
    m.stop(wait=True)
