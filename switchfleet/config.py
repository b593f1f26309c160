import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

import yaml

from .models import DeviceSpec

logger = logging.getLogger(__name__)

DEFAULT_API_PREFIX = "/rest/openapi"


def _normalize_base_url(url: str, name: str = "CALLBACK_BASE_URL") -> str:
    """Normalize an externally reachable base URL and ensure it has a host."""
    u = url.strip().rstrip("/")
    # Collapse extra slashes after :// (e.g. http:///host -> http://host)
    u = re.sub(r"(https?):///+", r"\1://", u)
    parsed = urlparse(u)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise RuntimeError(
            f"{name} has no host: {url!r}. "
            "Use e.g. http://manager.example.com:8080 (the address switches can reach)."
        )
    return u


def _normalize_api_prefix(prefix: str) -> str:
    p = prefix.strip().rstrip("/")
    if p and not p.startswith("/"):
        p = "/" + p
    return p


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    raise RuntimeError(f"Invalid boolean value for {name}={raw!r} (expected true/false).")


def _env_number(name: str, default: float, *, cast=int, positive: bool = True):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return cast(default)
    try:
        value = cast(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}.") from exc
    if positive and value <= 0:
        raise RuntimeError(f"{name} must be > 0, got {raw!r}.")
    return value


def _yaml_number(section: dict, key: str, default: float, label: str, *, cast=int):
    raw = section.get(key, default)
    if isinstance(raw, bool):
        raise RuntimeError(f"{label} must be a number")
    try:
        value = cast(raw)
    except (TypeError, ValueError) as exc:
        raise RuntimeError(f"{label} must be a number") from exc
    if value <= 0:
        raise RuntimeError(f"{label} must be > 0")
    return value


@dataclass
class Settings:
    callback_base_url: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 8080
    sync_interval: float = 30.0
    sync_workers: int = 16
    request_timeout: float = 10.0
    session_ttl: int = 3600
    verify_ssl: bool = False
    api_prefix: str = DEFAULT_API_PREFIX
    upload_token_ttl: float = 600.0
    upload_username: str = "upload"
    upload_password: str = "upload123"
    log_level: str = "INFO"
    log_dir: Optional[Path] = None
    devices: List[DeviceSpec] = field(default_factory=list)


def _read_secret_file(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    p = Path(path)
    if not p.is_file():
        logger.warning("Secret file %s does not exist", p)
        return None
    return p.read_text(encoding="utf-8").strip()


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise RuntimeError(f"{name} must be a mapping/object")
    return value


def _parse_switches(raw: object) -> List[DeviceSpec]:
    """Parse the optional `switches` seed list from YAML."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise RuntimeError("switches must be a list")

    specs: List[DeviceSpec] = []
    for d in raw:
        if not isinstance(d, dict):
            continue
        address = d.get("ip_address")
        if not isinstance(address, str) or not address.strip():
            raise RuntimeError("Each switch needs a non-empty ip_address")
        address = address.strip()

        port = d.get("port")
        if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
            raise RuntimeError(f"Switch {address!r} needs an integer port (1-65535)")

        use_https = d.get("use_https", True)
        if not isinstance(use_https, bool):
            raise RuntimeError(f"Switch {address!r} use_https must be boolean")

        username = d.get("username")
        if not isinstance(username, str) or not username.strip():
            raise RuntimeError(f"Switch {address!r} is missing username")

        password: Optional[str] = None
        if isinstance(d.get("password"), str) and d["password"]:
            password = d["password"]
        elif isinstance(d.get("password_file"), str) and d["password_file"].strip():
            password = _read_secret_file(d["password_file"].strip())
        if not password:
            raise RuntimeError(f"Switch {address!r} is missing password/password_file")

        specs.append(
            DeviceSpec(address=address, port=port, use_https=use_https, username=username.strip(), password=password)
        )
    return specs


def _load_settings_from_yaml(path: str) -> Settings:
    """Load settings from a single YAML config file."""
    p = Path(path)
    if not p.is_file():
        raise RuntimeError(f"APP_CONFIG_FILE not found: {path}")

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except Exception as exc:
        raise RuntimeError(f"Failed to read YAML config: {path}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise RuntimeError("YAML config root must be a mapping/object")

    # Server config
    server = _section(raw, "server")
    callback_base_url = server.get("callback_base_url")
    if callback_base_url is not None:
        if not isinstance(callback_base_url, str) or not callback_base_url.strip():
            raise RuntimeError("server.callback_base_url must be a non-empty string")
        callback_base_url = _normalize_base_url(callback_base_url, "server.callback_base_url")
    host = str(server.get("host", "0.0.0.0"))
    port = _yaml_number(server, "port", 8080, "server.port")

    # Sync config
    sync = _section(raw, "sync")
    sync_interval = _yaml_number(sync, "interval", 30, "sync.interval", cast=float)
    sync_workers = _yaml_number(sync, "workers", 16, "sync.workers")

    # Device API config
    devices = _section(raw, "devices")
    request_timeout = _yaml_number(devices, "timeout", 10, "devices.timeout", cast=float)
    session_ttl = _yaml_number(devices, "session_ttl", 3600, "devices.session_ttl")
    verify_ssl = devices.get("verify_ssl", False)
    if not isinstance(verify_ssl, bool):
        raise RuntimeError("devices.verify_ssl must be boolean")
    api_prefix = _normalize_api_prefix(str(devices.get("api_prefix", DEFAULT_API_PREFIX)))

    # Schema retrieval config
    schema = _section(raw, "schema")
    upload_token_ttl = _yaml_number(schema, "token_ttl", 600, "schema.token_ttl", cast=float)
    upload_username = str(schema.get("upload_username", "upload"))
    upload_password: Optional[str] = None
    if isinstance(schema.get("upload_password"), str) and schema["upload_password"]:
        upload_password = schema["upload_password"]
    elif isinstance(schema.get("upload_password_file"), str) and schema["upload_password_file"].strip():
        upload_password = _read_secret_file(schema["upload_password_file"].strip())

    # Runtime config
    runtime = _section(raw, "runtime")
    log_level = str(runtime.get("log_level", "INFO"))
    log_dir_raw = runtime.get("log_dir")
    if log_dir_raw is not None and not isinstance(log_dir_raw, str):
        raise RuntimeError("runtime.log_dir must be a string or null")

    return Settings(
        callback_base_url=callback_base_url,
        host=host,
        port=port,
        sync_interval=sync_interval,
        sync_workers=sync_workers,
        request_timeout=request_timeout,
        session_ttl=session_ttl,
        verify_ssl=verify_ssl,
        api_prefix=api_prefix,
        upload_token_ttl=upload_token_ttl,
        upload_username=upload_username,
        upload_password=upload_password or "upload123",
        log_level=log_level,
        log_dir=Path(log_dir_raw) if log_dir_raw else None,
        devices=_parse_switches(raw.get("switches")),
    )


def load_settings() -> Settings:
    """Load settings from YAML (APP_CONFIG_FILE) or environment variables."""

    # YAML-first mode (single source of truth)
    app_config_file = os.getenv("APP_CONFIG_FILE")
    if app_config_file:
        return _load_settings_from_yaml(app_config_file)

    callback_base_url = os.getenv("CALLBACK_BASE_URL")
    if callback_base_url:
        callback_base_url = _normalize_base_url(callback_base_url)
    else:
        logger.warning("CALLBACK_BASE_URL not set; schema retrieval will be unavailable.")
        callback_base_url = None

    # Prioritize direct env var over file-based secret
    upload_password = os.getenv("UPLOAD_PASSWORD")
    if not upload_password:
        upload_password = _read_secret_file(os.getenv("UPLOAD_PASSWORD_FILE"))

    log_dir = os.getenv("LOG_DIR")

    return Settings(
        callback_base_url=callback_base_url,
        host=os.getenv("HOST", "0.0.0.0"),
        port=_env_number("PORT", 8080),
        sync_interval=_env_number("SYNC_INTERVAL", 30, cast=float),
        sync_workers=_env_number("SYNC_WORKERS", 16),
        request_timeout=_env_number("DEVICE_TIMEOUT", 10, cast=float),
        session_ttl=_env_number("DEVICE_SESSION_TTL", 3600),
        verify_ssl=_env_bool("DEVICE_VERIFY_SSL", default=False),
        api_prefix=_normalize_api_prefix(os.getenv("DEVICE_API_PREFIX", DEFAULT_API_PREFIX)),
        upload_token_ttl=_env_number("UPLOAD_TOKEN_TTL", 600, cast=float),
        upload_username=os.getenv("UPLOAD_USERNAME", "upload"),
        upload_password=upload_password or "upload123",
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=Path(log_dir) if log_dir else None,
    )
