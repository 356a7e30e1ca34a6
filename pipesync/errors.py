"""Exception hierarchy shared by the pipesync reconciliation engine."""
from __future__ import annotations

from typing import Optional


class PipesyncError(Exception):
    """Base exception for all synchronisation errors."""


class ConfigurationError(PipesyncError):
    """Raised when a sheet lacks the configuration an operation requires.

    Examples are a sheet without selected columns or a push against a sheet
    whose status column cannot be located.  These errors are fatal for the
    current operation and are never retried.
    """


class RemoteAPIError(PipesyncError):
    """Raised when the Pipedrive API rejects a request or returns garbage."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DriftError(PipesyncError):
    """Raised when the status column is missing or duplicated."""


class ValueCoercionError(PipesyncError):
    """Raised when a cell value cannot be converted for the Pipedrive API."""


__all__ = [
    "PipesyncError",
    "ConfigurationError",
    "RemoteAPIError",
    "DriftError",
    "ValueCoercionError",
]
