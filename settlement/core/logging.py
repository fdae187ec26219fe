from __future__ import annotations

import logging

from settlement.core.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | None = None) -> None:
    settings = get_settings()
    name = (level or settings.log_level).upper()
    logging.basicConfig(level=getattr(logging, name, logging.INFO), format=LOG_FORMAT)
    # httpx logs every request line at INFO; provider calls are logged by the clients.
    logging.getLogger("httpx").setLevel(logging.WARNING)
