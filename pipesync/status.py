"""Sync status values, status column styling and the tracked-row predicate."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence


STATUS_HEADER = "Sync Status"
STATUS_NOTE = "This column tracks changes for two-way sync with Pipedrive"

HEADER_BACKGROUND = "#E8F0FE"
COLUMN_BACKGROUND = "#F8F9FA"
BORDER_COLOR = "#DADCE0"
STATUS_COLUMN_WIDTH = 120

METADATA_MARKERS = ("last", "sync", "update")


class SyncStatus(str, Enum):
    NOT_MODIFIED = "Not modified"
    MODIFIED = "Modified"
    SYNCED = "Synced"
    ERROR = "Error"

    @classmethod
    def parse(cls, value: Any) -> Optional["SyncStatus"]:
        """Return the status written in a cell, ignoring case and padding."""

        if value is None:
            return None
        text = str(value).strip().lower()
        if not text:
            return None
        for status in cls:
            if status.value.lower() == text:
                return status
        return None


STATUS_VALUES = tuple(status.value for status in SyncStatus)

# Statuses that survive a rebuild of the sheet; everything else resets.
CARRY_OVER_STATUSES = frozenset({SyncStatus.MODIFIED, SyncStatus.SYNCED, SyncStatus.ERROR})


@dataclass(frozen=True)
class StatusStyle:
    background: str
    font_color: str
    bold: bool = False


STATUS_STYLES: Dict[SyncStatus, StatusStyle] = {
    SyncStatus.MODIFIED: StatusStyle(background="#FCE8E6", font_color="#D93025"),
    SyncStatus.SYNCED: StatusStyle(background="#E6F4EA", font_color="#137333"),
    SyncStatus.ERROR: StatusStyle(background="#FCE8E6", font_color="#D93025", bold=True),
}

# Backgrounds that only the status column ever carries.
FINGERPRINT_BACKGROUNDS = frozenset(
    {HEADER_BACKGROUND, COLUMN_BACKGROUND}
    | {style.background for style in STATUS_STYLES.values()}
)


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def non_empty_count(cells: Sequence[Any]) -> int:
    return sum(1 for cell in cells if not is_blank(cell))


def is_metadata_row(row: Sequence[Any]) -> bool:
    """Return ``True`` for empty rows and ``Last synced: ...`` style rows."""

    if non_empty_count(row) == 0:
        return True
    first = row[0] if row else None
    if is_blank(first):
        return False
    text = str(first).lower()
    return any(marker in text for marker in METADATA_MARKERS)


def is_trackable_row(row: Sequence[Any]) -> bool:
    """A row is tracked when it has a record id and is not a metadata row."""

    if not row or is_blank(row[0]):
        return False
    return not is_metadata_row(row)


def record_id_of(row: Sequence[Any]) -> str:
    if not row or is_blank(row[0]):
        return ""
    value = row[0]
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


__all__ = [
    "STATUS_HEADER",
    "STATUS_NOTE",
    "STATUS_VALUES",
    "STATUS_STYLES",
    "CARRY_OVER_STATUSES",
    "FINGERPRINT_BACKGROUNDS",
    "HEADER_BACKGROUND",
    "COLUMN_BACKGROUND",
    "BORDER_COLOR",
    "STATUS_COLUMN_WIDTH",
    "StatusStyle",
    "SyncStatus",
    "is_blank",
    "is_metadata_row",
    "is_trackable_row",
    "non_empty_count",
    "record_id_of",
]
