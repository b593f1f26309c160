import logging
from concurrent.futures import Future
from datetime import datetime
from typing import List, Optional, Tuple

from .config import Settings
from .device_client import DeviceClient
from .models import Device, DevicePatch, DeviceSpec
from .registry import DeviceRegistry
from .scheduler import SyncScheduler
from .schema import SchemaRetriever
from .session import SessionManager

logger = logging.getLogger(__name__)


class FleetManager:
    """Wires registry, device client, sessions, scheduler and schema retrieval.

    One instance per process (or per test); nothing here is a module global.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        registry: Optional[DeviceRegistry] = None,
        client: Optional[DeviceClient] = None,
    ):
        self.settings = settings
        self.registry = registry or DeviceRegistry()
        self.client = client or DeviceClient(
            api_prefix=settings.api_prefix,
            timeout=settings.request_timeout,
            verify_ssl=settings.verify_ssl,
        )
        self.sessions = SessionManager(self.registry, self.client, ttl=settings.session_ttl)
        self.scheduler = SyncScheduler(
            self.registry,
            self.sessions,
            self.client,
            interval=settings.sync_interval,
            workers=settings.sync_workers,
        )
        self.schemas = SchemaRetriever(
            self.registry,
            self.sessions,
            self.client,
            callback_base_url=settings.callback_base_url,
            token_ttl=settings.upload_token_ttl,
            upload_username=settings.upload_username,
            upload_password=settings.upload_password,
        )

    def start(self) -> None:
        if self.scheduler.running:
            return
        self.scheduler.start()
        for spec in self.settings.devices:
            self.add_device(spec)
        logger.info("Fleet manager started with %s configured switch(es)", len(self.settings.devices))

    def stop(self, *, wait: bool = False) -> None:
        self.scheduler.stop(wait=wait)
        self.schemas.stop()
        logger.info("Fleet manager stopped")

    # Device lifecycle

    def add_device(self, spec: DeviceSpec) -> Device:
        device = self.registry.create(spec)
        self.scheduler.trigger(device.id)
        return device

    def update_device(self, device_id: int, patch: DevicePatch) -> Device:
        device = self.registry.update(device_id, patch)
        self.scheduler.trigger(device_id)
        return device

    def remove_device(self, device_id: int) -> None:
        self.registry.delete(device_id)

    def get_device(self, device_id: int) -> Device:
        return self.registry.get(device_id)

    def list_devices(self) -> List[Device]:
        return sorted(self.registry.list(), key=lambda d: d.id)

    def request_sync(self, device_id: int) -> Future:
        self.registry.get(device_id)
        return self.scheduler.trigger(device_id)

    # Remote operations

    def update_system_info(
        self,
        device_id: int,
        *,
        sys_name: str = "",
        sys_location: str = "",
        sys_contact: str = "",
    ) -> Device:
        """Push sysName/sysLocation/sysContact to the switch, then mirror them locally."""
        device = self.registry.get(device_id)
        token = self.sessions.ensure_session(device)

        fields = {}
        if sys_name:
            fields["sysName"] = sys_name
        if sys_location:
            fields["sysLocation"] = sys_location
        if sys_contact:
            fields["sysContact"] = sys_contact
        self.client.update_system(device, token, fields)

        updated = self.registry.apply_system_update(
            device_id,
            sys_name=sys_name,
            sys_location=sys_location,
            sys_contact=sys_contact,
        )
        logger.info("Updated system info for %s", updated.display_name)
        return updated

    def request_schema(self, device_id: int) -> str:
        return self.schemas.request_schema(device_id)

    def receive_upload(self, token: str, payload: bytes) -> int:
        return self.schemas.receive_upload(token, payload)

    def get_schema(self, device_id: int) -> Tuple[bytes, datetime]:
        return self.schemas.get_schema(device_id)
