"""Application logging utilities.

Every module asks for ``get_logger(__name__)`` and gets a child of the single
``company_registry`` logger:

- UTC timestamp at the start of each line
- console output plus ``logs/app.log``
- one extra file per module logger (``logs/jobs_registry_import.log`` ...)
- daily rotation at UTC midnight, two weeks kept

Set ``REGISTRY_LOG_DIR`` to write logs somewhere other than ``./logs``.
"""

from __future__ import annotations

import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler


class _UTCFormatter(logging.Formatter):
    """Formatter that forces UTC timestamps."""

    converter = staticmethod(time.gmtime)


_APP_LOGGER_NAME = "company_registry"
_LOG_FORMAT = "%(asctime)sZ %(levelname)s pid=%(process)d %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def _logs_dir() -> str:
    override = (os.getenv("REGISTRY_LOG_DIR") or "").strip()
    if override:
        return override
    return os.path.join(os.path.dirname(__file__), "logs")


def _sanitize_filename(name: str) -> str:
    # "jobs.registry_import" -> "jobs_registry_import"
    name = (name or "app").strip() or "app"
    return "".join(ch if (ch.isalnum() or ch in {"-", "_"}) else "_" for ch in name)


def _rotating_handler(file_name: str, level: int) -> TimedRotatingFileHandler:
    fh = TimedRotatingFileHandler(
        os.path.join(_logs_dir(), file_name),
        when="midnight",
        interval=1,
        backupCount=14,
        utc=True,
        encoding="utf-8",
    )
    fh.setLevel(level)
    fh.setFormatter(_UTCFormatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT))
    return fh


def configure_app_logging(level_name: str = "INFO") -> logging.Logger:
    """Configure and return the root application logger.

    Safe to call multiple times; later calls only adjust the level.
    """

    level = getattr(logging, (level_name or "INFO").upper(), logging.INFO)
    app_logger = logging.getLogger(_APP_LOGGER_NAME)
    app_logger.setLevel(level)

    if getattr(app_logger, "_configured", False):
        return app_logger

    os.makedirs(_logs_dir(), exist_ok=True)

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(_UTCFormatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT))

    app_logger.addHandler(sh)
    app_logger.addHandler(_rotating_handler("app.log", level))

    # Children propagate here; the global root logger stays untouched.
    app_logger.propagate = False

    app_logger._configured = True  # type: ignore[attr-defined]
    return app_logger


def get_logger(module_name: str | None = None) -> logging.Logger:
    """Get a module-specific logger that also writes to its own log file.

    Example:
        logger = get_logger(__name__)
    """

    base = configure_app_logging(os.getenv("LOG_LEVEL", "INFO"))

    child_name = module_name or "app"
    logger = logging.getLogger(f"{_APP_LOGGER_NAME}.{child_name}")

    if not getattr(logger, "_file_configured", False):
        logger.setLevel(base.level)
        file_name = _sanitize_filename(child_name) + ".log"
        logger.addHandler(_rotating_handler(file_name, base.level))
        logger._file_configured = True  # type: ignore[attr-defined]

    return logger
