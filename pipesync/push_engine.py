"""Send rows marked ``Modified`` back to Pipedrive.

Each modified row becomes one update request.  The status cell of the row is
written as soon as its request finishes, ``Synced`` on success and ``Error``
otherwise, so a push that is interrupted can simply be run again: rows
already sent are no longer ``Modified``.

Columns are matched to fields through the header text, which makes the push
independent of column order.  Display projections such as ``org_id.name`` or
``custom_fields.<key>.formatted_address`` are read only and never sent.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pipesync.column_mapping import ColumnMapping, ColumnMappingStore
from pipesync.config_store import ConfigStore
from pipesync.errors import ConfigurationError
from pipesync.field_catalog import FieldCatalog
from pipesync.formatting import (
    parse_money,
    split_multi_value,
    to_boolean,
    to_iso_date,
    to_number,
    to_option_id,
    to_option_ids,
)
from pipesync.grid import GridHost
from pipesync.status import SyncStatus, is_blank, is_trackable_row, record_id_of
from pipesync.status_tracker import StatusColumnTracker
from pipesync.value_path import CUSTOM_FIELDS_KEY, DynamicKey, Static, parse_path, set_value

logger = logging.getLogger(__name__)

# Fields the API computes or owns; they are never sent.
READ_ONLY_FIELDS = frozenset(
    {
        "id",
        "add_time",
        "update_time",
        "creator_user_id",
        "owner_name",
        "org_name",
        "person_name",
        "cc_email",
        "weighted_value",
        "formatted_value",
        "formatted_weighted_value",
        "rotten_time",
        "stage_change_time",
        "next_activity_date",
        "next_activity_id",
        "last_activity_date",
        "last_activity_id",
        "last_incoming_mail_time",
        "last_outgoing_mail_time",
        "won_time",
        "lost_time",
        "close_time",
        "first_won_time",
    }
)

# Per-entity exceptions on top of READ_ONLY_FIELDS.
ENTITY_EXCLUDED_FIELDS: Dict[str, frozenset] = {
    "deals": frozenset({"stage_order_nr", "person_hidden", "org_hidden"}),
    "persons": frozenset({"first_char", "picture_id"}),
    "organizations": frozenset({"first_char", "picture_id", "address_formatted_address"}),
    "activities": frozenset({"deal_title", "assigned_to_user_id", "marked_as_done_time"}),
    "leads": frozenset({"source_name", "was_seen"}),
    "products": frozenset(),
}

# Relations are sent as ids; names shown in the sheet are dropped.
RELATION_FIELDS = frozenset({"owner_id", "user_id", "person_id", "org_id", "deal_id", "stage_id", "pipeline_id"})

NUMERIC_FIELD_TYPES = frozenset({"int", "double", "monetary"})


def is_excluded(entity_type: str, key: str) -> bool:
    if key in READ_ONLY_FIELDS or key.endswith("_count"):
        return True
    return key in ENTITY_EXCLUDED_FIELDS.get(entity_type, frozenset())


@dataclass(slots=True)
class PendingUpdate:
    record_id: str
    row_index: int
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RowOutcome:
    record_id: str
    row_index: int
    status: SyncStatus
    error: Optional[str] = None


@dataclass(slots=True)
class PushReport:
    success_count: int = 0
    error_count: int = 0
    rows: List[RowOutcome] = field(default_factory=list)

    def add(self, outcome: RowOutcome) -> None:
        self.rows.append(outcome)
        if outcome.status is SyncStatus.SYNCED:
            self.success_count += 1
        else:
            self.error_count += 1

    @property
    def message(self) -> str:
        if not self.rows:
            return "No modified rows to push."
        text = f"Pushed {self.success_count} rows to Pipedrive"
        if self.error_count:
            text += f", {self.error_count} failed"
            failures = [outcome for outcome in self.rows if outcome.error]
            details = "; ".join(f"{outcome.record_id}: {outcome.error}" for outcome in failures[:5])
            if details:
                text += f" ({details})"
        return text + "."


class PushEngine:
    def __init__(
        self,
        grid: GridHost,
        store: ConfigStore,
        client: Any,
        catalog: FieldCatalog,
        mappings: ColumnMappingStore,
        *,
        tracker: Optional[StatusColumnTracker] = None,
    ) -> None:
        self.grid = grid
        self.client = client
        self.catalog = catalog
        self.mappings = mappings
        self.tracker = tracker or StatusColumnTracker(grid, store)

    @property
    def sheet_name(self) -> str:
        return self.tracker.keys.sheet_name

    # ------------------------------------------------------------------
    # Row selection
    # ------------------------------------------------------------------
    @staticmethod
    def modified_rows(values: Sequence[Sequence[Any]], status_column: int) -> List[Tuple[str, int]]:
        rows: List[Tuple[str, int]] = []
        for index, row in enumerate(values):
            if index == 0 or not is_trackable_row(row) or status_column >= len(row):
                continue
            if SyncStatus.parse(row[status_column]) is SyncStatus.MODIFIED:
                rows.append((record_id_of(row), index))
        return rows

    # ------------------------------------------------------------------
    # Field routing and coercion
    # ------------------------------------------------------------------
    def _target(self, entity_type: str, path: str) -> Optional[Tuple[str, bool]]:
        """Return ``(key, is_custom)`` for a writable path, ``None`` otherwise."""

        try:
            segments = parse_path(path)
        except ValueError:
            return None
        first = segments[0]
        if first == Static(CUSTOM_FIELDS_KEY):
            if len(segments) == 2 and isinstance(segments[1], DynamicKey):
                return segments[1].key, True
            return None
        if len(segments) != 1 or not isinstance(first, Static):
            return None
        return first.name, self.catalog.is_custom_field(entity_type, first.name)

    def coerce(self, entity_type: str, key: str, value: Any, *, nested: bool = True) -> Any:
        """Convert a cell value to what the API expects for ``key``."""

        definition = self.catalog.get_field(entity_type, key)

        def resolve(label: str) -> Any:
            return self.catalog.resolve_option_id(entity_type, key, label)

        if self.catalog.is_date_field(entity_type, key):
            return to_iso_date(value)
        if definition is None:
            return value
        if definition.is_multi_value:
            return to_option_ids(split_multi_value(value), resolve)
        if definition.field_type == "enum":
            return to_option_id(value, resolve)
        if definition.field_type == "boolean":
            return to_boolean(value)
        if definition.field_type == "monetary":
            amount, currency = parse_money(value)
            if currency and nested and definition.edit_flag:
                return {"value": amount, "currency": currency}
            return amount
        if definition.field_type in NUMERIC_FIELD_TYPES:
            return to_number(value)
        return value

    def build_update(
        self,
        entity_type: str,
        header: Sequence[Any],
        row: Sequence[Any],
        row_index: int,
        mapping: ColumnMapping,
        status_column: int,
    ) -> PendingUpdate:
        route = self.client.route(entity_type)
        nested = route.nests_custom_fields
        update = PendingUpdate(record_id=record_id_of(row), row_index=row_index)
        for column, title in enumerate(header):
            if column == status_column or column >= len(row):
                continue
            entry = mapping.entry_for_header(title)
            if entry is None:
                continue
            value = row[column]
            if is_blank(value):
                continue
            target = self._target(entity_type, entry.field_path)
            if target is None:
                logger.debug("Skipping read-only column %s", entry.field_path)
                continue
            key, is_custom = target
            if is_excluded(entity_type, key):
                continue
            if key in RELATION_FIELDS:
                relation_id = to_number(value)
                if isinstance(relation_id, float) and relation_id.is_integer():
                    relation_id = int(relation_id)
                if not isinstance(relation_id, int) or isinstance(relation_id, bool):
                    logger.debug("Skipping %s: %r is not an id", key, value)
                    continue
                update.fields[key] = relation_id
                continue
            coerced = self.coerce(entity_type, key, value, nested=nested)
            target_path = f"{CUSTOM_FIELDS_KEY}.{key}" if is_custom and nested else key
            set_value(update.fields, target_path, coerced)
        return update

    # ------------------------------------------------------------------
    # Operation
    # ------------------------------------------------------------------
    def _push_row(
        self,
        entity_type: str,
        header: Sequence[Any],
        row: Sequence[Any],
        record_id: str,
        row_index: int,
        mapping: ColumnMapping,
        status_column: int,
    ) -> RowOutcome:
        update = self.build_update(entity_type, header, row, row_index, mapping, status_column)
        if not update.fields:
            logger.info("Row %d (%s) has no writable fields", row_index + 1, record_id)
            return RowOutcome(record_id, row_index, SyncStatus.SYNCED)
        result = self.client.update_record(entity_type, record_id, update.fields)
        if result.success:
            return RowOutcome(record_id, row_index, SyncStatus.SYNCED)
        return RowOutcome(record_id, row_index, SyncStatus.ERROR, result.error or "Update failed")

    def push(self, entity_type: str) -> PushReport:
        mapping = self.mappings.load(self.sheet_name, entity_type)
        if not mapping:
            raise ConfigurationError(
                f"No columns selected for {entity_type} on {self.sheet_name}. "
                "Choose columns in the sync settings first."
            )
        values = self.grid.read_values()
        status_column = self.tracker.position_for_push(values)
        if status_column is None:
            raise ConfigurationError(
                f"The Sync Status column could not be found on {self.sheet_name}. "
                "Pull the sheet again to recreate it."
            )

        report = PushReport()
        header = values[0]
        for record_id, row_index in self.modified_rows(values, status_column):
            try:
                outcome = self._push_row(
                    entity_type, header, values[row_index], record_id, row_index, mapping, status_column
                )
            except Exception as exc:
                logger.exception("Pushing row %d (%s) failed", row_index + 1, record_id)
                outcome = RowOutcome(record_id, row_index, SyncStatus.ERROR, str(exc) or type(exc).__name__)
            self.grid.set_value(row_index, status_column, outcome.status.value)
            report.add(outcome)

        logger.info(
            "Push of %s on %s finished: %d synced, %d failed",
            entity_type,
            self.sheet_name,
            report.success_count,
            report.error_count,
        )
        return report


__all__ = [
    "PendingUpdate",
    "PushEngine",
    "PushReport",
    "RowOutcome",
    "is_excluded",
]
