import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional

from .device_client import DeviceClient
from .errors import AuthError, DeviceConnectionError, DeviceNotFound, ProtocolError
from .models import DeviceStatus
from .registry import DeviceRegistry
from .session import SessionManager

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Periodic and on-demand reconciliation of switches into the registry.

    Behavior:
    - A loop thread wakes every `interval` seconds, snapshots the registry and
      submits one sync per device to a thread pool.
    - `trigger()` submits a single device immediately, independent of the loop.
    - Overlapping syncs of the same device are not deduplicated; both commit
      under the registry lock and the last write wins.
    - A sync never raises: failures become device status (auth_failed / error).
    - `stop()` ends the loop; syncs already running are left to finish.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        sessions: SessionManager,
        client: DeviceClient,
        *,
        interval: float = 30.0,
        workers: int = 16,
    ):
        self.registry = registry
        self.sessions = sessions
        self.client = client
        self.interval = float(interval)
        self.workers = workers
        self._stop_event = threading.Event()
        self._loop_thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._loop_thread is not None and self._loop_thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()

        def loop() -> None:
            logger.info("Sync loop started (interval=%ss)", self.interval)
            while not self._stop_event.wait(self.interval):
                try:
                    self.sync_all()
                except Exception:  # noqa: BLE001
                    logger.exception("Periodic sync pass failed")
            logger.info("Sync loop stopped")

        self._loop_thread = threading.Thread(target=loop, name="switchfleet-sync-loop", daemon=True)
        self._loop_thread.start()

    def stop(self, *, wait: bool = False, timeout: Optional[float] = None) -> None:
        """Stop the periodic loop. With wait=True, also wait for in-flight syncs."""
        self._stop_event.set()
        if self._loop_thread is not None:
            self._loop_thread.join(timeout)
            self._loop_thread = None
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def _submit(self, device_id: int) -> Future:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="switchfleet-sync")
            return self._executor.submit(self._run, device_id)

    def trigger(self, device_id: int) -> Future:
        """Run an on-demand sync of one device. The future resolves to the resulting status."""
        logger.debug("On-demand sync requested for switch %s", device_id)
        return self._submit(device_id)

    def sync_all(self) -> List[Future]:
        """Submit a sync for every device currently in the registry."""
        devices = self.registry.list()
        logger.info("Periodic sync of %s switch(es)", len(devices))
        return [self._submit(d.id) for d in devices]

    def _run(self, device_id: int) -> Optional[DeviceStatus]:
        try:
            return self.sync_device(device_id)
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected failure syncing switch %s", device_id)
            self._commit_status(device_id, DeviceStatus.ERROR)
            return DeviceStatus.ERROR

    def _commit_status(self, device_id: int, status: DeviceStatus) -> Optional[DeviceStatus]:
        try:
            self.registry.set_status(device_id, status)
        except DeviceNotFound:
            logger.debug("Switch %s was deleted during sync; dropping status %s", device_id, status.value)
            return None
        return status

    def sync_device(self, device_id: int) -> Optional[DeviceStatus]:
        """
        Reconcile a single device: ensure session -> fetch state -> commit.

        Returns the committed status, or None if the device no longer exists.
        """
        try:
            device = self.registry.get(device_id)
        except DeviceNotFound:
            logger.debug("Skipping sync of switch %s: no longer registered", device_id)
            return None

        log = logging.getLogger(f"{__name__}.{device.address}")
        log.info("Syncing switch %s (%s:%s)", device.display_name, device.address, device.port)

        try:
            token = self.sessions.ensure_session(device)
        except AuthError as exc:
            log.error("Auth failed for %s: %s", device.display_name, exc)
            return self._commit_status(device_id, DeviceStatus.AUTH_FAILED)

        try:
            info = self.client.get_system_info(device, token)
        except (ProtocolError, DeviceConnectionError) as exc:
            log.error("Sync failed for %s: %s", device.display_name, exc)
            if isinstance(exc, ProtocolError) and exc.status_code in (401, 403):
                # Token revoked on the device side; re-authenticate next time.
                try:
                    self.registry.clear_session(device_id)
                except DeviceNotFound:
                    return None
            return self._commit_status(device_id, DeviceStatus.ERROR)

        try:
            synced = self.registry.record_sync(device_id, info)
        except DeviceNotFound:
            log.debug("Switch %s was deleted during sync; result discarded", device_id)
            return None

        log.info("Synced %s - %s (%s)", synced.display_name, info.model_name, info.firmware_version)
        return DeviceStatus.ONLINE
