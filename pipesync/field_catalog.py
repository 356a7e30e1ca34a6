"""Cached Pipedrive field metadata and option label resolution.

Field definitions are looked up three ways, cheapest first: an in-process
cache, the persisted ``CACHE_<endpoint>`` entry of the configuration store
while it is younger than the freshness window, and finally the API.  When the
API cannot be reached the catalog falls back to the last cached copy, even a
stale one, and to an empty list when nothing was ever cached.  Callers can
rely on every public method returning a value.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from pipesync.config_store import SCRIPT_SCOPE, ConfigStore, cache_key, cache_time_key
from pipesync.errors import RemoteAPIError
from pipesync.pipedrive_client import fields_endpoint

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600
CUSTOM_FIELD_KEY = re.compile(r"^[0-9a-f]{40}$")
DATE_FIELD_TYPES = frozenset({"date", "daterange"})
MULTI_OPTION_FIELD_TYPES = frozenset({"set"})
DATE_NAME_HINTS = ("date", "deadline", "birthday", "_at")

OptionMap = Dict[str, Dict[str, str]]


@dataclass(slots=True)
class FieldOption:
    id: Any
    label: str


@dataclass(slots=True)
class FieldDefinition:
    key: str
    name: str
    field_type: str = "varchar"
    options: List[FieldOption] = field(default_factory=list)
    is_multi_value: bool = False
    edit_flag: bool = False

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> Optional["FieldDefinition"]:
        key = payload.get("key")
        if not isinstance(key, str) or not key:
            return None
        field_type = str(payload.get("field_type") or "varchar")
        options = [
            FieldOption(id=option.get("id"), label=str(option.get("label", "")))
            for option in payload.get("options") or []
            if isinstance(option, Mapping) and option.get("id") is not None
        ]
        return cls(
            key=key,
            name=str(payload.get("name") or key),
            field_type=field_type,
            options=options,
            is_multi_value=field_type in MULTI_OPTION_FIELD_TYPES,
            edit_flag=bool(payload.get("edit_flag")),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "field_type": self.field_type,
            "options": [{"id": option.id, "label": option.label} for option in self.options],
            "edit_flag": self.edit_flag,
        }


def _parse_definitions(payload: Any) -> List[FieldDefinition]:
    definitions: List[FieldDefinition] = []
    for item in payload or []:
        if isinstance(item, Mapping):
            definition = FieldDefinition.from_api(item)
            if definition is not None:
                definitions.append(definition)
    return definitions


class FieldCatalog:
    """Field metadata lookups for every entity type."""

    def __init__(
        self,
        client: Any,
        store: ConfigStore,
        *,
        ttl: int = DEFAULT_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._store = store
        self._ttl = ttl
        self._clock = clock
        self._memory: Dict[str, Tuple[float, List[FieldDefinition]]] = {}

    # ------------------------------------------------------------------
    # Cache layers
    # ------------------------------------------------------------------
    def _endpoint(self, entity_type: str) -> str:
        routes = getattr(self._client, "routes", None)
        if routes:
            return fields_endpoint(entity_type, routes)
        return fields_endpoint(entity_type)

    def _is_fresh(self, fetched_at: float) -> bool:
        return self._clock() - fetched_at < self._ttl

    def _read_persisted(self, endpoint: str) -> Optional[Tuple[float, List[FieldDefinition]]]:
        payload = self._store.get_json(SCRIPT_SCOPE, cache_key(endpoint))
        if not isinstance(payload, list):
            return None
        try:
            fetched_at = float(self._store.get(SCRIPT_SCOPE, cache_time_key(endpoint)) or 0)
        except ValueError:
            fetched_at = 0.0
        return fetched_at, _parse_definitions(payload)

    def _remember(self, endpoint: str, definitions: List[FieldDefinition]) -> None:
        now = self._clock()
        self._memory[endpoint] = (now, definitions)
        self._store.set_json(SCRIPT_SCOPE, cache_key(endpoint), [item.to_json() for item in definitions])
        self._store.set(SCRIPT_SCOPE, cache_time_key(endpoint), str(int(now)))

    def get_field_definitions(self, entity_type: str, force_refresh: bool = False) -> List[FieldDefinition]:
        """Return the field definitions of ``entity_type``. Never raises."""

        try:
            endpoint = self._endpoint(entity_type)
        except ValueError:
            logger.warning("No field endpoint for entity type %s", entity_type)
            return []

        persisted = None
        if not force_refresh:
            cached = self._memory.get(endpoint)
            if cached and self._is_fresh(cached[0]):
                return cached[1]
            persisted = self._read_persisted(endpoint)
            if persisted and self._is_fresh(persisted[0]):
                self._memory[endpoint] = persisted
                return persisted[1]

        try:
            definitions = _parse_definitions(self._client.get_field_definitions(entity_type))
        except RemoteAPIError as exc:
            logger.warning("Could not fetch %s, using cached definitions: %s", endpoint, exc)
            stale = self._memory.get(endpoint) or persisted or self._read_persisted(endpoint)
            return stale[1] if stale else []

        self._remember(endpoint, definitions)
        return definitions

    def invalidate(self, entity_type: Optional[str] = None) -> None:
        """Drop cached definitions for ``entity_type`` or for every entity."""

        if entity_type is None:
            endpoints = set(self._memory)
        else:
            endpoints = {self._endpoint(entity_type)}
        for endpoint in endpoints:
            self._memory.pop(endpoint, None)
            self._store.delete(SCRIPT_SCOPE, cache_key(endpoint))
            self._store.delete(SCRIPT_SCOPE, cache_time_key(endpoint))

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def get_field(self, entity_type: str, key: str) -> Optional[FieldDefinition]:
        for definition in self.get_field_definitions(entity_type):
            if definition.key == key:
                return definition
        return None

    def get_option_map(self, entity_type: str) -> OptionMap:
        """Return ``{field_key: {str(option_id): label}}`` for option fields."""

        option_map: OptionMap = {}
        for definition in self.get_field_definitions(entity_type):
            if definition.options:
                option_map[definition.key] = {
                    str(option.id): option.label for option in definition.options
                }
        return option_map

    def resolve_option_id(self, entity_type: str, field_key: str, label: Any) -> Optional[Any]:
        """Return the option id whose label matches ``label`` case-insensitively."""

        if label is None:
            return None
        wanted = str(label).strip().lower()
        if not wanted:
            return None
        definition = self.get_field(entity_type, field_key)
        if definition is None:
            return None
        for option in definition.options:
            if option.label.strip().lower() == wanted:
                return option.id
        return None

    def is_multi_option(self, entity_type: str, key: str) -> bool:
        definition = self.get_field(entity_type, key)
        return definition is not None and definition.field_type in MULTI_OPTION_FIELD_TYPES

    def is_date_field(self, entity_type: str, key: str) -> bool:
        definition = self.get_field(entity_type, key)
        if definition is not None:
            return definition.field_type in DATE_FIELD_TYPES
        return is_date_like(key)

    def is_custom_field(self, entity_type: str, key: str) -> bool:
        if CUSTOM_FIELD_KEY.match(key):
            return True
        definition = self.get_field(entity_type, key)
        return definition is not None and definition.edit_flag


def is_date_like(key: str) -> bool:
    """Naming heuristic for fields missing from the catalog."""

    lowered = key.lower()
    return any(hint in lowered for hint in DATE_NAME_HINTS)


__all__ = [
    "FieldCatalog",
    "FieldDefinition",
    "FieldOption",
    "OptionMap",
    "is_date_like",
]
