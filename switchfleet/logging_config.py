import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"

# Loggers owned by the HTTP server; routed through our root handlers instead of their own.
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _file_handler(log_dir: Path, formatter: logging.Formatter) -> Optional[logging.Handler]:
    """Create a timestamped file handler under log_dir, or None if the directory is unusable."""
    root = logging.getLogger()
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d__%H_%M_%S")
        log_file = log_dir / f"switchfleet-log_{timestamp}.log"
        handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
    except PermissionError as exc:
        root.error(
            "File logging disabled (permission error writing to %s). "
            "Ensure the directory is writable for uid=%s gid=%s. Error: %s",
            str(log_dir),
            os.getuid(),
            os.getgid(),
            exc,
        )
        return None
    except OSError as exc:
        root.error("File logging disabled (OS error creating log file under %s): %s", str(log_dir), exc)
        return None

    handler.setFormatter(formatter)
    root.info("Logging to file: %s", log_file)
    return handler


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None) -> None:
    """Configure the root logger for the manager process.

    Args:
        level: Log level (INFO, DEBUG, etc.)
        log_dir: If provided, also write to a timestamped log file in this directory.
    """
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    root = logging.getLogger()
    root.setLevel(level.upper())
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_dir:
        handler = _file_handler(log_dir, formatter)
        if handler is not None:
            root.addHandler(handler)

    for name in _SERVER_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers.clear()
        server_logger.propagate = True

    # One line per device poll is plenty; urllib3 would add one per pooled connection.
    logging.getLogger("urllib3.connectionpool").setLevel(max(root.level, logging.INFO))
