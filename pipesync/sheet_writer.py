"""Rebuild a sheet from Pipedrive records while keeping sync statuses.

A pull reads the statuses currently shown in the sheet, keyed by record id,
clears the grid and writes the header and one row per record.  Rows whose
record was ``Modified``, ``Synced`` or ``Error`` before the rebuild show the
same status afterwards; every other record starts as ``Not modified``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from pipesync.column_mapping import ColumnMapping, ColumnMappingStore
from pipesync.config_store import SCRIPT_SCOPE, ConfigStore
from pipesync.errors import ConfigurationError, RemoteAPIError
from pipesync.field_catalog import FieldCatalog, OptionMap
from pipesync.formatting import format_value
from pipesync.grid import GridHost
from pipesync.status import (
    CARRY_OVER_STATUSES,
    STATUS_HEADER,
    SyncStatus,
    is_trackable_row,
    record_id_of,
)
from pipesync.status_tracker import StatusColumnTracker
from pipesync.value_path import get_value

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PullResult:
    sheet_name: str
    entity_type: str
    record_count: int = 0
    status_column: Optional[int] = None
    carried_over: int = 0
    complete: bool = True
    error: Optional[str] = None

    @property
    def message(self) -> str:
        text = f"Pulled {self.record_count} {self.entity_type} into {self.sheet_name}"
        if not self.complete:
            text += f" (incomplete: {self.error})"
        return text


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class SheetWriter:
    def __init__(
        self,
        grid: GridHost,
        store: ConfigStore,
        client: Any,
        catalog: FieldCatalog,
        mappings: ColumnMappingStore,
        *,
        tracker: Optional[StatusColumnTracker] = None,
        clock: Callable[[], str] = _utc_now,
    ) -> None:
        self.grid = grid
        self.store = store
        self.client = client
        self.catalog = catalog
        self.mappings = mappings
        self.tracker = tracker or StatusColumnTracker(grid, store)
        self._clock = clock

    @property
    def sheet_name(self) -> str:
        return self.tracker.keys.sheet_name

    # ------------------------------------------------------------------
    # Building blocks
    # ------------------------------------------------------------------
    def capture_statuses(self, values: Sequence[Sequence[Any]]) -> Dict[str, SyncStatus]:
        """Return the carried-over status of every tracked row, by record id."""

        column = self.tracker.locate(values)
        if column is None:
            return {}
        statuses: Dict[str, SyncStatus] = {}
        for row in values[1:]:
            if not is_trackable_row(row) or column >= len(row):
                continue
            status = SyncStatus.parse(row[column])
            if status in CARRY_OVER_STATUSES:
                statuses[record_id_of(row)] = status
        return statuses

    @staticmethod
    def build_header(mapping: ColumnMapping, status_column: Optional[int]) -> List[str]:
        header = mapping.headers()
        if status_column is not None:
            header.insert(status_column, STATUS_HEADER)
        return header

    @staticmethod
    def build_rows(
        records: Sequence[Mapping[str, Any]],
        mapping: ColumnMapping,
        option_map: OptionMap,
        status_column: Optional[int] = None,
        statuses: Optional[Mapping[str, SyncStatus]] = None,
    ) -> List[List[Any]]:
        rows: List[List[Any]] = []
        for record in records:
            row = [
                format_value(get_value(record, entry.field_path), entry.field_path, option_map)
                for entry in mapping
            ]
            if status_column is not None:
                record_id = record_id_of([record.get("id")])
                status = (statuses or {}).get(record_id, SyncStatus.NOT_MODIFIED)
                row.insert(status_column, status.value)
            rows.append(row)
        return rows

    def fetch_records(
        self,
        entity_type: str,
        filter_id: Any = None,
        limit: int = 0,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Fetch every page of a filter.

        A failure on the first page propagates.  A failure on a later page
        stops the pull and returns the records gathered so far together with
        the error text.
        """

        records: List[Dict[str, Any]] = []
        page = None
        while True:
            try:
                result = self.client.list_records(entity_type, filter_id=filter_id, page=page)
            except RemoteAPIError as exc:
                if not records:
                    raise
                logger.warning("Stopping pull of %s after %d records: %s", entity_type, len(records), exc)
                return records, str(exc)
            records.extend(result.items)
            if limit and len(records) >= limit:
                return records[:limit], None
            if not result.has_more:
                return records, None
            page = result.next_page

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def write(self, entity_type: str, records: Sequence[Mapping[str, Any]]) -> PullResult:
        """Rebuild the grid from ``records``."""

        mapping = self.mappings.load(self.sheet_name, entity_type)
        if not mapping:
            raise ConfigurationError(
                f"No columns selected for {entity_type} on {self.sheet_name}. "
                "Choose columns in the sync settings first."
            )
        mapping = mapping.with_id_first()
        tracking = self.tracker.is_enabled()

        values = self.grid.read_values()
        statuses = self.capture_statuses(values) if tracking else {}
        status_column = self.tracker.resolve_position(len(mapping), values) if tracking else None

        option_map = self.catalog.get_option_map(entity_type)
        header = self.build_header(mapping, status_column)
        rows = self.build_rows(records, mapping, option_map, status_column, statuses)

        self.grid.clear()
        self.grid.write_values([header, *rows])
        with self.grid.batch():
            for column in range(len(header)):
                self.grid.set_bold(0, column, True)
        if status_column is not None:
            self.tracker.save_hint(status_column)
            tracked = [index for index, row in enumerate(rows, start=1) if is_trackable_row(row)]
            self.tracker.apply_status_formatting(status_column, tracked, len(rows) + 1)

        self.store.set(SCRIPT_SCOPE, self.tracker.keys.last_sync, self._clock())
        carried = sum(1 for record in records if record_id_of([record.get("id")]) in statuses)
        logger.info(
            "Wrote %d %s rows to %s (%d statuses carried over)",
            len(rows),
            entity_type,
            self.sheet_name,
            carried,
        )
        return PullResult(
            sheet_name=self.sheet_name,
            entity_type=entity_type,
            record_count=len(rows),
            status_column=status_column,
            carried_over=carried,
        )

    def pull(self, entity_type: str, filter_id: Any = None, limit: int = 0) -> PullResult:
        records, error = self.fetch_records(entity_type, filter_id, limit)
        result = self.write(entity_type, records)
        if error:
            result.complete = False
            result.error = error
        return result


__all__ = ["PullResult", "SheetWriter"]
