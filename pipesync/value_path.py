"""Read and write nested record values addressed by dotted field paths.

A path such as ``custom_fields.abc123.formatted_address`` is parsed into typed
segments.  ``custom_fields`` is a literal key, the segment directly after it is
a dynamic key naming a custom field, and purely numeric segments index into
lists.  Contact arrays (``email``/``phone``) additionally support selection by
label, so ``email.work`` returns the value of the work address and falls back
to the primary, then the first entry.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping, MutableMapping, Tuple, Union

CUSTOM_FIELDS_KEY = "custom_fields"


@dataclass(frozen=True)
class Static:
    name: str


@dataclass(frozen=True)
class Index:
    position: int


@dataclass(frozen=True)
class DynamicKey:
    key: str


Segment = Union[Static, Index, DynamicKey]


class _Unresolved:
    _instance = None

    def __new__(cls) -> "_Unresolved":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNRESOLVED"

    def __bool__(self) -> bool:
        return False


UNRESOLVED: Any = _Unresolved()


def parse_path(path: str) -> Tuple[Segment, ...]:
    """Split ``path`` into typed segments.

    Raises ``ValueError`` for empty paths or empty segments (``a..b``).
    """

    if not isinstance(path, str) or not path.strip():
        raise ValueError("Field path must be a non-empty string")
    parts = path.strip().split(".")
    segments: List[Segment] = []
    for position, part in enumerate(parts):
        if not part:
            raise ValueError(f"Empty segment in field path {path!r}")
        if position == 1 and segments[0] == Static(CUSTOM_FIELDS_KEY):
            segments.append(DynamicKey(part))
        elif part.isdigit():
            segments.append(Index(int(part)))
        else:
            segments.append(Static(part))
    return tuple(segments)


def _is_contact_list(value: Any) -> bool:
    return (
        isinstance(value, list)
        and bool(value)
        and all(isinstance(item, Mapping) and "value" in item for item in value)
    )


def _select_labelled(items: List[Mapping[str, Any]], label: str) -> Any:
    wanted = label.lower()
    for item in items:
        if str(item.get("label", "")).lower() == wanted:
            return item.get("value")
    for item in items:
        if item.get("primary"):
            return item.get("value")
    return items[0].get("value")


def _step(current: Any, segment: Segment) -> Any:
    if isinstance(segment, Index):
        if isinstance(current, (list, tuple)):
            if 0 <= segment.position < len(current):
                return current[segment.position]
            return UNRESOLVED
        if isinstance(current, Mapping):
            return current.get(str(segment.position), UNRESOLVED)
        return UNRESOLVED
    key = segment.key if isinstance(segment, DynamicKey) else segment.name
    if isinstance(current, Mapping):
        return current.get(key, UNRESOLVED)
    if isinstance(segment, Static) and _is_contact_list(current):
        return _select_labelled(current, key)
    return UNRESOLVED


def resolve(record: Any, path: str) -> Any:
    """Return the value at ``path`` or :data:`UNRESOLVED`."""

    try:
        segments = parse_path(path)
    except ValueError:
        return UNRESOLVED
    current = record
    for segment in segments:
        current = _step(current, segment)
        if current is UNRESOLVED:
            return _flattened(record, path)
    return current


def _flattened(record: Any, path: str) -> Any:
    # Address components are also delivered flat, as "address.locality" or
    # "address_locality" next to the formatted address.
    if not isinstance(record, Mapping) or "." not in path:
        return UNRESOLVED
    for key in (path, path.replace(".", "_")):
        if key in record:
            return record[key]
    return UNRESOLVED


def get_value(record: Any, path: str, default: Any = None) -> Any:
    """Return the value at ``path`` or ``default`` when it cannot be resolved."""

    value = resolve(record, path)
    if value is UNRESOLVED:
        return default
    return value


def _segment_text(segment: Segment) -> str:
    if isinstance(segment, Index):
        return str(segment.position)
    if isinstance(segment, DynamicKey):
        return segment.key
    return segment.name


def _new_container(segment: Segment) -> Any:
    return [] if isinstance(segment, Index) else {}


def _child(current: Any, segment: Segment, following: Segment) -> Any:
    if isinstance(segment, Index) and isinstance(current, list):
        while len(current) <= segment.position:
            current.append(None)
        child = current[segment.position]
        if not isinstance(child, (list, MutableMapping)):
            child = _new_container(following)
            current[segment.position] = child
        return child
    if isinstance(current, MutableMapping):
        key = _segment_text(segment)
        child = current.get(key)
        if not isinstance(child, (list, MutableMapping)):
            child = _new_container(following)
            current[key] = child
        return child
    raise ValueError(f"Cannot descend into {type(current).__name__} with {segment!r}")


def set_value(record: MutableMapping[str, Any], path: str, value: Any) -> None:
    """Assign ``value`` at ``path``, creating intermediate dicts and lists."""

    segments = parse_path(path)
    current: Any = record
    for segment, following in zip(segments, segments[1:]):
        current = _child(current, segment, following)
    last = segments[-1]
    if isinstance(last, Index) and isinstance(current, list):
        while len(current) <= last.position:
            current.append(None)
        current[last.position] = value
    elif isinstance(current, MutableMapping):
        current[_segment_text(last)] = value
    else:
        raise ValueError(f"Cannot assign {path!r} on {type(current).__name__}")


def custom_field_key(path: str) -> str:
    """Return the custom field key of a ``custom_fields.<key>`` path, else ``""``."""

    try:
        segments = parse_path(path)
    except ValueError:
        return ""
    if len(segments) >= 2 and isinstance(segments[1], DynamicKey):
        return segments[1].key
    return ""


def root_key(path: str) -> str:
    """Return the record attribute a path starts from, unwrapping custom fields."""

    key = custom_field_key(path)
    if key:
        return key
    try:
        return _segment_text(parse_path(path)[0])
    except ValueError:
        return ""


__all__ = [
    "CUSTOM_FIELDS_KEY",
    "DynamicKey",
    "Index",
    "Segment",
    "Static",
    "UNRESOLVED",
    "custom_field_key",
    "get_value",
    "parse_path",
    "resolve",
    "root_key",
    "set_value",
]
