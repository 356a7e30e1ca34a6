"""Ordered field-to-column mappings persisted per sheet and entity type."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from pipesync.config_store import SCRIPT_SCOPE, ConfigStore, SheetKeys, columns_key
from pipesync.field_catalog import FieldDefinition
from pipesync.value_path import DynamicKey, Index, parse_path

logger = logging.getLogger(__name__)

ID_PATH = "id"


def default_column_name(path: str, definitions: Sequence[FieldDefinition] = ()) -> str:
    """Derive a readable header from a field path.

    Custom fields use their catalog name; other segments are title-cased with
    a trailing ``_id`` dropped (``org_id.name`` becomes ``Org Name``).
    """

    names = {definition.key: definition.name for definition in definitions}
    if path in names:
        return names[path]
    try:
        segments = parse_path(path)
    except ValueError:
        return path
    words: List[str] = []
    for segment in segments:
        if isinstance(segment, DynamicKey):
            words = [names.get(segment.key, segment.key)]
        elif isinstance(segment, Index):
            words.append(str(segment.position + 1))
        elif segment.name == "custom_fields":
            continue
        else:
            text = segment.name
            if text.endswith("_id") and len(text) > 3:
                text = text[:-3]
            if text == "id":
                words.append("ID")
            else:
                words.append(text.replace("_", " ").title())
    return " ".join(words) or path


@dataclass(slots=True)
class ColumnMappingEntry:
    field_path: str
    canonical_name: str = ""
    display_override: Optional[str] = None

    def __post_init__(self) -> None:
        self.field_path = self.field_path.strip()
        if not self.field_path:
            raise ValueError("Column mapping entries need a field path")
        if not self.canonical_name:
            self.canonical_name = default_column_name(self.field_path)
        if self.display_override is not None and not self.display_override.strip():
            self.display_override = None

    @property
    def header(self) -> str:
        return self.display_override or self.canonical_name

    def matches_header(self, header: Any) -> bool:
        text = str(header or "").strip().lower()
        if not text:
            return False
        candidates = {self.canonical_name.strip().lower()}
        if self.display_override:
            candidates.add(self.display_override.strip().lower())
        return text in candidates

    def to_json(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"key": self.field_path, "name": self.canonical_name}
        if self.display_override:
            payload["customName"] = self.display_override
        return payload

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> Optional["ColumnMappingEntry"]:
        path = payload.get("key") or payload.get("field_path")
        if not isinstance(path, str) or not path.strip():
            return None
        name = payload.get("name") or payload.get("canonical_name") or ""
        override = payload.get("customName") or payload.get("display_override")
        return cls(
            field_path=path,
            canonical_name=str(name),
            display_override=str(override) if override else None,
        )


class ColumnMapping:
    """Ordered list of :class:`ColumnMappingEntry` with unique field paths."""

    def __init__(self, entries: Iterable[ColumnMappingEntry] = ()) -> None:
        self._entries: List[ColumnMappingEntry] = []
        for entry in entries:
            self.add(entry)

    def __iter__(self) -> Iterator[ColumnMappingEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __getitem__(self, index: int) -> ColumnMappingEntry:
        return self._entries[index]

    @property
    def entries(self) -> List[ColumnMappingEntry]:
        return list(self._entries)

    def field_paths(self) -> List[str]:
        return [entry.field_path for entry in self._entries]

    def headers(self) -> List[str]:
        return [entry.header for entry in self._entries]

    def add(self, entry: ColumnMappingEntry, position: Optional[int] = None) -> None:
        if self.entry_for_path(entry.field_path) is not None:
            raise ValueError(f"Field {entry.field_path!r} is already mapped")
        if position is None:
            self._entries.append(entry)
        else:
            self._entries.insert(position, entry)

    def remove(self, field_path: str) -> None:
        self._entries = [entry for entry in self._entries if entry.field_path != field_path]

    def entry_for_path(self, field_path: str) -> Optional[ColumnMappingEntry]:
        for entry in self._entries:
            if entry.field_path == field_path:
                return entry
        return None

    def entry_for_header(self, header: Any) -> Optional[ColumnMappingEntry]:
        """Reverse lookup used by the push path; overrides win over names."""

        text = str(header or "").strip().lower()
        if not text:
            return None
        for entry in self._entries:
            if entry.display_override and entry.display_override.strip().lower() == text:
                return entry
        for entry in self._entries:
            if entry.matches_header(header):
                return entry
        return None

    def with_id_first(self) -> "ColumnMapping":
        """Return a copy whose first column is the record id."""

        id_entry = self.entry_for_path(ID_PATH) or ColumnMappingEntry(ID_PATH, "ID")
        rest = [entry for entry in self._entries if entry.field_path != ID_PATH]
        return ColumnMapping([id_entry, *rest])

    def to_json(self) -> List[Dict[str, Any]]:
        return [entry.to_json() for entry in self._entries]

    @classmethod
    def from_json(cls, payload: Any) -> "ColumnMapping":
        mapping = cls()
        for item in payload or []:
            if not isinstance(item, Mapping):
                continue
            entry = ColumnMappingEntry.from_json(item)
            if entry is None:
                continue
            if mapping.entry_for_path(entry.field_path) is not None:
                logger.warning("Dropping duplicate column mapping for %s", entry.field_path)
                continue
            mapping.add(entry)
        return mapping


class ColumnMappingStore:
    """Loads and saves column mappings from the configuration store.

    A mapping saved for a specific ``owner`` (a user or team) takes precedence
    over the shared mapping of the sheet.
    """

    def __init__(self, store: ConfigStore, *, owner: Optional[str] = None) -> None:
        self._store = store
        self._owner = owner

    def load(self, sheet_name: str, entity_type: str) -> ColumnMapping:
        keys = [columns_key(sheet_name, entity_type)]
        if self._owner:
            keys.insert(0, columns_key(sheet_name, entity_type, self._owner))
        for key in keys:
            payload = self._store.get_json(SCRIPT_SCOPE, key)
            if payload:
                return ColumnMapping.from_json(payload)
        return ColumnMapping()

    def save(self, sheet_name: str, entity_type: str, mapping: ColumnMapping) -> None:
        key = columns_key(sheet_name, entity_type, self._owner)
        self._store.set_json(SCRIPT_SCOPE, key, mapping.to_json())
        # A new selection rebuilds the header, so the status column goes last.
        self._store.set_bool(SCRIPT_SCOPE, SheetKeys(sheet_name).column_at_end, True)

    def delete(self, sheet_name: str, entity_type: str) -> None:
        self._store.delete(SCRIPT_SCOPE, columns_key(sheet_name, entity_type, self._owner))


__all__ = [
    "ColumnMapping",
    "ColumnMappingEntry",
    "ColumnMappingStore",
    "default_column_name",
]
