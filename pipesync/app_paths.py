"""Centralised helpers for managing pipesync application directories."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

_APP_ENV_VARS: Iterable[str] = ("LOCALAPPDATA", "APPDATA")


def _detect_base_directory() -> Path:
    override = os.environ.get("PIPESYNC_HOME")
    if override:
        return Path(override).expanduser().resolve()
    for env_var in _APP_ENV_VARS:
        value = os.environ.get(env_var)
        if value:
            return Path(value).expanduser().resolve() / "Pipesync"
    return Path.home().resolve() / ".pipesync"


APP_DIR: Path = _detect_base_directory()
LOG_DIR: Path = APP_DIR / "logs"
CREDENTIALS_DIR: Path = APP_DIR / "credentials"


def ensure_directory(path: Path) -> Path:
    """Ensure that ``path`` exists, returning the :class:`~pathlib.Path`."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def logs_path(name: str) -> Path:
    """Return the path of log file ``name`` inside :data:`LOG_DIR`."""

    ensure_directory(LOG_DIR)
    return LOG_DIR / name


__all__ = [
    "APP_DIR",
    "LOG_DIR",
    "CREDENTIALS_DIR",
    "logs_path",
    "ensure_directory",
]
