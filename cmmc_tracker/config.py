"""
Configuration for the CMMC tracker core.

Values come from environment variables with sensible defaults so the
core can run without any setup. ``configure_logging`` installs a single
stream handler on the package logger.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_STORAGE_DIR = "data"
DEFAULT_KEY_PREFIX = "cmc_"
# Matches the usual browser local storage budget
DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024
DEFAULT_REVIEW_WINDOW_DAYS = 30

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass
class AppConfig:
    """Runtime settings for the store and repositories."""
    storage_dir: str = DEFAULT_STORAGE_DIR
    key_prefix: str = DEFAULT_KEY_PREFIX
    quota_bytes: int = DEFAULT_QUOTA_BYTES
    review_window_days: int = DEFAULT_REVIEW_WINDOW_DAYS
    log_level: str = "INFO"


def _int_setting(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")


def load_config(environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Build an :class:`AppConfig` from ``CMMC_*`` environment variables."""
    if environ is None:
        environ = os.environ
    return AppConfig(
        storage_dir=environ.get("CMMC_STORAGE_DIR", DEFAULT_STORAGE_DIR),
        key_prefix=environ.get("CMMC_KEY_PREFIX", DEFAULT_KEY_PREFIX),
        quota_bytes=_int_setting(environ, "CMMC_STORAGE_QUOTA_BYTES", DEFAULT_QUOTA_BYTES),
        review_window_days=_int_setting(environ, "CMMC_REVIEW_WINDOW_DAYS", DEFAULT_REVIEW_WINDOW_DAYS),
        log_level=environ.get("CMMC_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a stream handler to the ``cmmc_tracker`` logger once."""
    logger = logging.getLogger("cmmc_tracker")
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
