# kiosk/utils/logger.py
"""
Logging setup shared by every kiosk module.
Console plus a rotating kiosk.log under LOG_DIR (default: <repo>/logs).
"""

import logging
import os
from logging.handlers import RotatingFileHandler

from kiosk.config import settings

LOG_LEVEL = settings.LOG_LEVEL.upper()
LOG_DIR = settings.LOG_DIR or os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "logs"
)
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Client libraries log every request at INFO; image uploads make that very chatty
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "PIL", "multipart")

_handlers = []


def _build_handlers():
    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler()
    console.setFormatter(fmt)

    os.makedirs(LOG_DIR, exist_ok=True)
    # 10 files x 5MB
    file_handler = RotatingFileHandler(
        filename=os.path.join(LOG_DIR, "kiosk.log"),
        maxBytes=5 * 1024 * 1024,
        backupCount=10,
        encoding="utf-8",
    )
    file_handler.setFormatter(fmt)
    return [console, file_handler]


def configure_logging():
    """Attach the kiosk handlers to the root logger. Runs once per process."""
    if _handlers:
        return
    _handlers.extend(_build_handlers())

    root = logging.getLogger()
    root.setLevel(LOG_LEVEL)
    for handler in _handlers:
        handler.setLevel(LOG_LEVEL)
        root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # uvicorn installs its own handlers; route its error log through ours instead
    uvicorn_error = logging.getLogger("uvicorn.error")
    uvicorn_error.handlers = []
    uvicorn_error.propagate = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
