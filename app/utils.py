"""
Shared helpers: logging setup and UTC time handling.
"""
import logging
from datetime import datetime, timezone

from app.core import config


_LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def _configure_root_logger() -> logging.Logger:
    root = logging.getLogger("app")
    if root.handlers:
        return root

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))
    root.addHandler(handler)
    root.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))
    return root


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger that writes through the shared "app" handler.

    Usage:
        log = get_logger(__name__)
        log.info("Something happened")
    """
    _configure_root_logger()
    if name == "__main__" or not name.startswith("app"):
        name = f"app.{name}"
    return logging.getLogger(name)


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """
    Normalize a datetime to aware UTC.

    SQLite hands back naive datetimes even for timezone-aware columns;
    those are stored as UTC, so naive values are interpreted as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
