"""Logging setup shared by the API process and scripts."""

import logging
import sys

from app.core.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str = None) -> None:
    """Configure the root logger once. Safe to call repeatedly."""
    settings = get_settings()
    level = (level or settings.log_level).upper()

    root = logging.getLogger()
    if not any(getattr(h, "_jobboard", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._jobboard = True
        root.addHandler(handler)
    root.setLevel(level)

    # pymongo is chatty at DEBUG
    logging.getLogger("pymongo").setLevel(logging.WARNING)
