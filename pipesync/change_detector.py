"""Flag rows edited by users so the next push sends them to Pipedrive."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from pipesync.config_store import ConfigStore
from pipesync.grid import GridHost
from pipesync.status import SyncStatus, is_trackable_row, non_empty_count
from pipesync.status_tracker import StatusColumnTracker

logger = logging.getLogger(__name__)

INSPECTED_CELLS = 5
MIN_FILLED_CELLS = 3


@dataclass(frozen=True, slots=True)
class EditEvent:
    row: int
    column: int
    sheet_name: Optional[str] = None


class ChangeDetector:
    def __init__(self, grid: GridHost, store: ConfigStore, tracker: Optional[StatusColumnTracker] = None) -> None:
        self.grid = grid
        self.tracker = tracker or StatusColumnTracker(grid, store)

    def on_edit(self, event: EditEvent) -> Optional[SyncStatus]:
        """Mark the edited row ``Modified``.

        Returns the status written, or ``None`` when the edit was ignored.
        Edits of the header row, of the status column itself and of rows that
        are not tracked records are ignored, as are edits on sheets without
        two-way sync.
        """

        if event.sheet_name and event.sheet_name != self.tracker.keys.sheet_name:
            return None
        if event.row <= 0 or not self.tracker.is_enabled():
            return None

        values = self.grid.read_values()
        column = self.tracker.locate(values)
        if column is None:
            logger.debug("No status column on %s; ignoring edit", self.tracker.keys.sheet_name)
            return None
        if event.column == column or event.row >= len(values):
            return None

        row = values[event.row]
        data_cells = [cell for index, cell in enumerate(row) if index != column]
        if non_empty_count(data_cells[:INSPECTED_CELLS]) < MIN_FILLED_CELLS:
            return None
        if not is_trackable_row(row):
            return None

        current = SyncStatus.parse(row[column]) if column < len(row) else None
        if current is SyncStatus.MODIFIED:
            return None

        self.grid.set_value(event.row, column, SyncStatus.MODIFIED.value)
        self.tracker.format_cell(event.row, column)
        logger.debug("Row %d of %s marked modified", event.row + 1, self.tracker.keys.sheet_name)
        return SyncStatus.MODIFIED


__all__ = ["ChangeDetector", "EditEvent"]
