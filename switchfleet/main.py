import logging
import os
import sys

import uvicorn

from .api import create_app
from .config import load_settings
from .logging_config import configure_logging
from .manager import FleetManager

logger = logging.getLogger(__name__)


def main() -> int:
    # Configure logging early so load_settings() warnings/errors are visible.
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))

    try:
        settings = load_settings()
    except RuntimeError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    # Re-apply with the configured level and optional log file.
    configure_logging(settings.log_level, settings.log_dir)

    if settings.callback_base_url:
        logger.info("Schema uploads will be received at %s", settings.callback_base_url)
    else:
        logger.warning("No callback base URL configured; schema retrieval is disabled.")

    manager = FleetManager(settings)
    app = create_app(manager)

    logger.info("switchfleet starting on %s:%s", settings.host, settings.port)
    # log_config=None keeps uvicorn on the root handlers configured above.
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
