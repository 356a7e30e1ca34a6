"""Key-value configuration storage for per-sheet sync state.

Two scopes are supported:

``document``
    Values that belong to the spreadsheet itself such as the entity type and
    filter selected for a sheet.
``script``
    Values shared by every user of the integration: column selections,
    two-way sync flags, the status column hint and the field definition cache.

:class:`JsonConfigStore` persists both scopes to a JSON file in the
application directory; :class:`MemoryConfigStore` keeps them in memory and is
used by the test-suite.  Keys are built with :class:`SheetKeys` and
:func:`columns_key` so every module spells them identically.
"""
from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DOCUMENT_SCOPE = "document"
SCRIPT_SCOPE = "script"
SCOPES = (DOCUMENT_SCOPE, SCRIPT_SCOPE)


def sheet_key_part(sheet_name: str) -> str:
    """Return ``sheet_name`` normalised for use inside a configuration key."""

    return sheet_name.strip() or "Sheet1"


def columns_key(sheet_name: str, entity_type: str, owner: Optional[str] = None) -> str:
    key = f"COLUMNS_{sheet_key_part(sheet_name)}_{entity_type}"
    if owner:
        key = f"{key}_{owner}"
    return key


def cache_key(endpoint: str) -> str:
    return f"CACHE_{endpoint}"


def cache_time_key(endpoint: str) -> str:
    return f"CACHE_TIME_{endpoint}"


@dataclass(frozen=True)
class SheetKeys:
    """Names of the per-sheet keys shared by the tracker, writer and engine."""

    sheet_name: str

    @property
    def _suffix(self) -> str:
        return sheet_key_part(self.sheet_name)

    @property
    def enabled(self) -> str:
        return f"TWOWAY_SYNC_ENABLED_{self._suffix}"

    @property
    def tracking_column(self) -> str:
        return f"TWOWAY_SYNC_TRACKING_COLUMN_{self._suffix}"

    @property
    def column_at_end(self) -> str:
        return f"TWOWAY_SYNC_COLUMN_AT_END_{self._suffix}"

    @property
    def previous_tracking_column(self) -> str:
        return f"PREVIOUS_TRACKING_COLUMN_{self._suffix}"

    @property
    def status_position(self) -> str:
        return f"CURRENT_SYNCSTATUS_POS_{self._suffix}"

    @property
    def last_sync(self) -> str:
        return f"TWOWAY_SYNC_LAST_SYNC_{self._suffix}"

    @property
    def entity_type(self) -> str:
        return f"ENTITY_TYPE_{self._suffix}"

    @property
    def filter_id(self) -> str:
        return f"FILTER_ID_{self._suffix}"


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class ConfigStore(ABC):
    """Scoped string key-value store."""

    @abstractmethod
    def get(self, scope: str, key: str, default: Optional[str] = None) -> Optional[str]:
        """Return the value stored under ``key`` or ``default``."""

    @abstractmethod
    def set(self, scope: str, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""

    @abstractmethod
    def delete(self, scope: str, key: str) -> None:
        """Remove ``key``; missing keys are ignored."""

    def get_bool(self, scope: str, key: str, default: bool = False) -> bool:
        value = self.get(scope, key)
        if value is None:
            return default
        return value.strip().lower() in {"true", "1", "yes"}

    def set_bool(self, scope: str, key: str, value: bool) -> None:
        self.set(scope, key, "true" if value else "false")

    def get_json(self, scope: str, key: str, default: Any = None) -> Any:
        raw = self.get(scope, key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Ignoring unreadable JSON stored under %s", key)
            return default

    def set_json(self, scope: str, key: str, value: Any) -> None:
        self.set(scope, key, json.dumps(value))


def _check_scope(scope: str) -> None:
    if scope not in SCOPES:
        raise ValueError(f"Unknown configuration scope: {scope!r}")


class MemoryConfigStore(ConfigStore):
    """Configuration store kept entirely in memory."""

    def __init__(self, initial: Optional[Dict[str, Dict[str, str]]] = None) -> None:
        self._data: Dict[str, Dict[str, str]] = {scope: {} for scope in SCOPES}
        for scope, values in (initial or {}).items():
            _check_scope(scope)
            self._data[scope].update({key: str(value) for key, value in values.items()})

    def get(self, scope: str, key: str, default: Optional[str] = None) -> Optional[str]:
        _check_scope(scope)
        return self._data[scope].get(key, default)

    def set(self, scope: str, key: str, value: str) -> None:
        _check_scope(scope)
        self._data[scope][key] = str(value)

    def delete(self, scope: str, key: str) -> None:
        _check_scope(scope)
        self._data[scope].pop(key, None)

    def snapshot(self) -> Dict[str, Dict[str, str]]:
        return {scope: dict(values) for scope, values in self._data.items()}


class JsonConfigStore(ConfigStore):
    """Configuration store persisted to a JSON document on every write."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._data: Optional[Dict[str, Dict[str, str]]] = None

    def _load(self) -> Dict[str, Dict[str, str]]:
        if self._data is not None:
            return self._data
        data: Dict[str, Dict[str, str]] = {scope: {} for scope in SCOPES}
        if os.path.exists(self.path):
            try:
                with open(self.path, "r", encoding="utf-8") as handle:
                    stored = json.load(handle)
            except (OSError, ValueError) as exc:
                logger.warning("Could not read configuration store %s: %s", self.path, exc)
                stored = {}
            if isinstance(stored, dict):
                for scope in SCOPES:
                    values = stored.get(scope)
                    if isinstance(values, dict):
                        data[scope] = {str(key): str(value) for key, value in values.items()}
        self._data = data
        return data

    def _save(self) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as handle:
            json.dump(self._load(), handle, indent=2, sort_keys=True)

    def get(self, scope: str, key: str, default: Optional[str] = None) -> Optional[str]:
        _check_scope(scope)
        return self._load()[scope].get(key, default)

    def set(self, scope: str, key: str, value: str) -> None:
        _check_scope(scope)
        self._load()[scope][key] = str(value)
        self._save()

    def delete(self, scope: str, key: str) -> None:
        _check_scope(scope)
        if self._load()[scope].pop(key, None) is not None:
            self._save()


__all__ = [
    "DOCUMENT_SCOPE",
    "SCRIPT_SCOPE",
    "ConfigStore",
    "JsonConfigStore",
    "MemoryConfigStore",
    "SheetKeys",
    "cache_key",
    "cache_time_key",
    "columns_key",
    "sheet_key_part",
]
