from __future__ import annotations

import threading
import time
from datetime import timedelta

import pytest

from conftest import FakeResponse, FakeSession, FakeSwitch
from switchfleet.device_client import DeviceClient
from switchfleet.models import DeviceSpec, DeviceStatus, SystemInfo
from switchfleet.registry import DeviceRegistry
from switchfleet.scheduler import SyncScheduler
from switchfleet.session import SessionManager


def _spec(address: str = "10.0.0.5", port: int = 9443, password: str = "x") -> DeviceSpec:
    return DeviceSpec(address=address, port=port, use_https=True, username="admin", password=password)


@pytest.fixture
def scheduler(registry: DeviceRegistry, client: DeviceClient):
    s = SyncScheduler(registry, SessionManager(registry, client), client, interval=3600, workers=4)
    yield s
    s.stop(wait=True)


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_scenario_create_then_sync_goes_online(registry, scheduler, switch: FakeSwitch, clock) -> None:
    device = registry.create(_spec())
    assert device.id == 1
    assert device.status is DeviceStatus.CONNECTING

    assert scheduler.sync_device(device.id) is DeviceStatus.ONLINE

    synced = registry.get(1)
    assert synced.status is DeviceStatus.ONLINE
    assert synced.display_name == "sw1"
    assert synced.system_info.num_ports == 24
    assert synced.system_info.model_name == "M1"
    assert synced.system_info.firmware_version == "1.0"
    assert synced.last_sync == clock()


def test_auth_rejection_marks_auth_failed_and_keeps_snapshot(registry, scheduler, switch: FakeSwitch) -> None:
    device = registry.create(_spec())
    previous = SystemInfo(sys_name="sw1", num_ports=24)
    registry.record_sync(device.id, previous)
    switch.auth_status = 401

    assert scheduler.sync_device(device.id) is DeviceStatus.AUTH_FAILED

    stored = registry.get(device.id)
    assert stored.status is DeviceStatus.AUTH_FAILED
    assert stored.system_info == previous


def test_unreachable_device_marks_auth_failed(registry, scheduler) -> None:
    device = registry.create(_spec("192.0.2.1"))
    assert scheduler.sync_device(device.id) is DeviceStatus.AUTH_FAILED
    assert registry.get(device.id).last_sync is None


def test_state_failure_marks_error_and_keeps_last_sync(registry, scheduler, switch: FakeSwitch, clock) -> None:
    device = registry.create(_spec())
    scheduler.sync_device(device.id)
    first_sync = registry.get(device.id).last_sync

    clock.advance(seconds=30)
    switch.state_status = 500
    assert scheduler.sync_device(device.id) is DeviceStatus.ERROR

    stored = registry.get(device.id)
    assert stored.status is DeviceStatus.ERROR
    assert stored.last_sync == first_sync
    assert stored.system_info.sys_name == "sw1"


def test_malformed_state_marks_error(registry, scheduler, switch: FakeSwitch) -> None:
    switch.state_text = "<html>oops</html>"
    device = registry.create(_spec())
    assert scheduler.sync_device(device.id) is DeviceStatus.ERROR


def test_rejected_token_on_fetch_forces_reauth(registry, scheduler, http: FakeSession, switch: FakeSwitch, clock) -> None:
    device = registry.create(_spec())
    registry.set_session(device.id, "revoked", clock() + timedelta(hours=1))
    switch.state_status = 401

    assert scheduler.sync_device(device.id) is DeviceStatus.ERROR
    assert registry.get(device.id).session_token == ""

    switch.state_status = 200
    assert scheduler.sync_device(device.id) is DeviceStatus.ONLINE
    assert len(http.calls_to("/auth/token")) == 1


def test_recovers_from_auth_failed(registry, scheduler, switch: FakeSwitch) -> None:
    device = registry.create(_spec())
    switch.auth_status = 401
    scheduler.sync_device(device.id)

    switch.auth_status = 200
    assert scheduler.sync_device(device.id) is DeviceStatus.ONLINE


def test_sync_of_deleted_device_is_a_noop(registry, scheduler, switch: FakeSwitch) -> None:
    device = registry.create(_spec())
    registry.delete(device.id)
    assert scheduler.sync_device(device.id) is None


def test_device_deleted_mid_sync_does_not_crash(registry, scheduler, http: FakeSession, switch: FakeSwitch) -> None:
    device = registry.create(_spec())

    def state_then_delete(call):
        registry.delete(device.id)
        return FakeResponse(200, switch.state)

    http.route("GET", f"{switch.base_url}/rest/openapi/v0/state/system", state_then_delete)

    assert scheduler.trigger(device.id).result(timeout=5) is None
    assert len(registry) == 0


def test_unexpected_exception_is_contained(registry, scheduler, client: DeviceClient, switch: FakeSwitch, monkeypatch) -> None:
    device = registry.create(_spec())

    def boom(*args, **kwargs):
        raise KeyError("surprise")

    monkeypatch.setattr(client, "get_system_info", boom)

    assert scheduler.trigger(device.id).result(timeout=5) is DeviceStatus.ERROR
    assert registry.get(device.id).status is DeviceStatus.ERROR


def test_one_failing_device_does_not_block_others(registry, scheduler, http: FakeSession, switch: FakeSwitch) -> None:
    good = registry.create(_spec())
    slow = registry.create(_spec("10.0.0.6"))
    release = threading.Event()

    def hang(call):
        release.wait(5)
        return FakeResponse(500, text="late")

    http.route("POST", "https://10.0.0.6:9443/rest/openapi/auth/token", hang)

    futures = scheduler.sync_all()
    assert _wait_for(lambda: registry.get(good.id).status is DeviceStatus.ONLINE)
    assert registry.get(slow.id).status is DeviceStatus.CONNECTING

    release.set()
    for f in futures:
        f.result(timeout=5)
    assert registry.get(slow.id).status is DeviceStatus.AUTH_FAILED


def test_periodic_loop_syncs_and_stops(registry, client: DeviceClient, switch: FakeSwitch) -> None:
    scheduler = SyncScheduler(registry, SessionManager(registry, client), client, interval=0.05, workers=2)
    device = registry.create(_spec())

    scheduler.start()
    try:
        assert scheduler.running
        assert _wait_for(lambda: registry.get(device.id).status is DeviceStatus.ONLINE)
    finally:
        scheduler.stop(wait=True)

    assert not scheduler.running


def test_start_is_idempotent(scheduler) -> None:
    scheduler.start()
    first = scheduler._loop_thread
    scheduler.start()
    assert scheduler._loop_thread is first
