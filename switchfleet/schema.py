"""OpenAPI schema retrieval from switches.

Switches cannot return their schema inline. Instead we ask them to push a
debug-info bundle to a callback URL of ours, and correlate the inbound upload
with the requesting device through a short-lived, single-use upload token.
"""
import io
import logging
import secrets
import tarfile
import threading
import zlib
from datetime import datetime
from typing import Dict, Optional, Tuple

from .device_client import DeviceClient
from .errors import ArchiveError, SchemaNotAvailable, SwitchFleetError, TokenError
from .locks import ReadWriteLock
from .models import UploadToken
from .registry import DeviceRegistry
from .session import SessionManager

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
SCHEMA_SUFFIXES = ("openapi.yaml", "openapi.yml")
UPLOAD_PATH = "/api/v1/upload/schema"


def is_gzip(payload: bytes) -> bool:
    return payload[:2] == GZIP_MAGIC


def extract_openapi_from_archive(data: bytes) -> bytes:
    """Return the content of the first `*openapi.yaml|yml` entry of a .tar.gz archive.

    Raises ArchiveError if the archive cannot be read or holds no such entry.
    """
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
            for member in tar:
                if not member.isfile() or not member.name.endswith(SCHEMA_SUFFIXES):
                    continue
                fh = tar.extractfile(member)
                if fh is None:
                    continue
                with fh:
                    return fh.read()
    except (tarfile.TarError, OSError, EOFError, KeyError, zlib.error) as exc:
        raise ArchiveError(f"failed to read archive: {exc}") from exc
    raise ArchiveError("openapi.yaml not found in archive")


class SchemaRetriever:
    def __init__(
        self,
        registry: DeviceRegistry,
        sessions: SessionManager,
        client: DeviceClient,
        *,
        callback_base_url: Optional[str],
        token_ttl: float = 600.0,
        upload_username: str = "upload",
        upload_password: str = "upload123",
    ):
        self.registry = registry
        self.sessions = sessions
        self.client = client
        self.callback_base_url = callback_base_url.rstrip("/") if callback_base_url else None
        self.token_ttl = float(token_ttl)
        self.upload_username = upload_username
        self.upload_password = upload_password

        self._lock = ReadWriteLock()
        self._tokens: Dict[str, UploadToken] = {}
        self._timers: Dict[str, threading.Timer] = {}

    def upload_url(self, token: str) -> str:
        if not self.callback_base_url:
            raise SwitchFleetError("callback_base_url is not configured; switches have nowhere to upload to")
        return f"{self.callback_base_url}{UPLOAD_PATH}/{token}"

    def pending_tokens(self) -> int:
        with self._lock.read():
            return len(self._tokens)

    def _register_token(self, device_id: int) -> UploadToken:
        now = self.registry.clock()
        entry = UploadToken(
            token=f"{device_id}-{int(now.timestamp())}-{secrets.token_hex(4)}",
            device_id=device_id,
            created_at=now,
        )
        timer = threading.Timer(self.token_ttl, self._expire, args=(entry.token,))
        timer.daemon = True
        with self._lock.write():
            self._tokens[entry.token] = entry
            self._timers[entry.token] = timer
        timer.start()
        return entry

    def _expire(self, token: str) -> None:
        with self._lock.write():
            entry = self._tokens.pop(token, None)
            self._timers.pop(token, None)
        if entry is not None:
            logger.info("Upload token for switch %s expired unused", entry.device_id)

    def _expired(self, entry: UploadToken, now: datetime) -> bool:
        return (now - entry.created_at).total_seconds() >= self.token_ttl

    def request_schema(self, device_id: int) -> str:
        """Ask a switch to upload its OpenAPI schema; returns the upload token.

        The token is registered (and its expiry scheduled) before the switch is
        contacted, so it exists even if the request below fails.
        """
        if not self.callback_base_url:
            raise SwitchFleetError("callback_base_url is not configured; cannot request schema upload")

        device = self.registry.get(device_id)
        entry = self._register_token(device_id)
        upload_url = self.upload_url(entry.token)

        token = self.sessions.ensure_session(device)
        self.client.request_debug_upload(
            device,
            token,
            upload_url=upload_url,
            username=self.upload_username,
            password=self.upload_password,
        )
        logger.info("Requested schema upload from switch %s (%s)", device.id, device.display_name)
        return entry.token

    def receive_upload(self, token: str, payload: bytes) -> int:
        """Consume an upload token and store the uploaded schema on its device.

        Returns the device id. Raises TokenError for unknown, used or expired tokens
        and DeviceNotFound if the device was deleted after the request.
        """
        with self._lock.write():
            entry = self._tokens.pop(token, None)
            timer = self._timers.pop(token, None)
        if timer is not None:
            timer.cancel()
        if entry is None or self._expired(entry, self.registry.clock()):
            raise TokenError("Invalid or expired upload token")

        schema = payload
        if is_gzip(payload):
            try:
                schema = extract_openapi_from_archive(payload)
                logger.info("Extracted OpenAPI schema from .tar.gz archive")
            except ArchiveError as exc:
                logger.warning("Failed to extract archive: %s, storing as-is", exc)

        self.registry.store_schema(entry.device_id, schema)
        logger.info("Received OpenAPI schema for switch %s (%s bytes)", entry.device_id, len(schema))
        return entry.device_id

    def get_schema(self, device_id: int) -> Tuple[bytes, datetime]:
        device = self.registry.get(device_id)
        if device.schema is None:
            raise SchemaNotAvailable(device_id)
        return device.schema, device.schema_fetched_at

    def stop(self) -> None:
        """Cancel pending expiry timers; remaining tokens still expire on lookup."""
        with self._lock.write():
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
