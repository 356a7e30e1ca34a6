"""Location, placement and self-healing of the ``Sync Status`` column.

The status column is found by its header text and never by position alone:
users insert, delete and move columns freely.  The persisted column letter
(``TWOWAY_SYNC_TRACKING_COLUMN_<sheet>``) is only a placement hint for the
next rebuild and the reference point for drift detection.

:meth:`StatusColumnTracker.repair` is the drift detector.  It removes
duplicate status columns (the rightmost one survives and inherits their
pending statuses) and restores a renamed header when the hinted column still
holds statuses.  On sheets with two-way sync enabled it recreates a missing
column.  It also strips status formatting left behind at old positions and
stores the corrected hint.  Running it twice changes nothing the second time.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Tuple

from pipesync.config_store import SCRIPT_SCOPE, ConfigStore, SheetKeys
from pipesync.errors import DriftError
from pipesync.grid import ConditionalRule, GridHost, column_index, column_letter
from pipesync.status import (
    BORDER_COLOR,
    COLUMN_BACKGROUND,
    FINGERPRINT_BACKGROUNDS,
    HEADER_BACKGROUND,
    STATUS_COLUMN_WIDTH,
    STATUS_HEADER,
    STATUS_NOTE,
    STATUS_STYLES,
    STATUS_VALUES,
    SyncStatus,
    is_blank,
    is_trackable_row,
)

logger = logging.getLogger(__name__)

# Rows inspected when looking for leftover status formatting.
FINGERPRINT_ROWS = 3
SWEEP_MARGIN = 3


@dataclass(slots=True)
class DriftReport:
    status_column: Optional[int] = None
    previous_hint: Optional[int] = None
    duplicates_removed: List[int] = field(default_factory=list)
    columns_cleaned: List[int] = field(default_factory=list)
    created: bool = False
    restored: bool = False
    drifted: bool = False

    @property
    def changed(self) -> bool:
        return bool(
            self.duplicates_removed or self.columns_cleaned or self.created or self.restored or self.drifted
        )


def header_matches(values: Sequence[Sequence[Any]]) -> List[int]:
    """Return the indices of every header cell reading ``Sync Status``."""

    if not values:
        return []
    return [
        index
        for index, cell in enumerate(values[0])
        if isinstance(cell, str) and cell.strip() == STATUS_HEADER
    ]


def _runs(rows: Iterable[int]) -> Iterator[Tuple[int, int]]:
    """Collapse sorted row indices into ``(start, end)`` half-open runs."""

    start = end = None
    for row in sorted(set(rows)):
        if start is None:
            start = end = row
        elif row == end + 1:
            end = row
        else:
            yield start, end + 1
            start = end = row
    if start is not None:
        yield start, end + 1


class StatusColumnTracker:
    """Single owner of the status column of one sheet."""

    def __init__(self, grid: GridHost, store: ConfigStore, sheet_name: Optional[str] = None) -> None:
        self.grid = grid
        self.store = store
        self.keys = SheetKeys(sheet_name or grid.title)

    # ------------------------------------------------------------------
    # Persisted state
    # ------------------------------------------------------------------
    def is_enabled(self) -> bool:
        return self.store.get_bool(SCRIPT_SCOPE, self.keys.enabled)

    def hint(self) -> Optional[int]:
        letter = self.store.get(SCRIPT_SCOPE, self.keys.tracking_column)
        if not letter:
            return None
        try:
            return column_index(letter)
        except ValueError:
            logger.warning("Ignoring invalid status column hint %r for %s", letter, self.keys.sheet_name)
            return None

    def save_hint(self, column: int, *, remember_previous: bool = True) -> None:
        """Persist ``column`` as the hint, remembering the previous letter."""

        letter = column_letter(column)
        current = self.store.get(SCRIPT_SCOPE, self.keys.tracking_column)
        if remember_previous and current and current != letter:
            self.store.set(SCRIPT_SCOPE, self.keys.previous_tracking_column, current)
        self.store.set(SCRIPT_SCOPE, self.keys.tracking_column, letter)
        self.store.set(SCRIPT_SCOPE, self.keys.status_position, str(column))

    def request_column_at_end(self) -> None:
        self.store.set_bool(SCRIPT_SCOPE, self.keys.column_at_end, True)

    # ------------------------------------------------------------------
    # Locating and placement
    # ------------------------------------------------------------------
    def locate(self, values: Optional[Sequence[Sequence[Any]]] = None) -> Optional[int]:
        """Return the live status column; the rightmost match wins."""

        if values is None:
            values = self.grid.read_values()
        matches = header_matches(values)
        return matches[-1] if matches else None

    def verify(self, values: Sequence[Sequence[Any]]) -> int:
        """Return the status column or raise :class:`DriftError`."""

        matches = header_matches(values)
        if not matches:
            raise DriftError(f"No '{STATUS_HEADER}' column on {self.keys.sheet_name}")
        if len(matches) > 1:
            letters = ", ".join(column_letter(index) for index in matches)
            raise DriftError(f"'{STATUS_HEADER}' appears in columns {letters}")
        return matches[0]

    def resolve_position(self, mapped_columns: int, values: Optional[Sequence[Sequence[Any]]] = None) -> int:
        """Return where a rebuilt grid with ``mapped_columns`` columns puts the status column.

        An explicit request to move the column to the end, or a sheet that
        never had a status column placed, appends it.  Otherwise the column
        found by header scan wins, then the persisted hint, then appending.
        The record id always keeps the first column.
        """

        hint = self.hint()
        if self.store.get_bool(SCRIPT_SCOPE, self.keys.column_at_end):
            self.store.delete(SCRIPT_SCOPE, self.keys.column_at_end)
            return mapped_columns
        if hint is None:
            return mapped_columns
        position = self.locate(values)
        if position is None:
            position = hint
        return max(1, min(position, mapped_columns))

    def holds_statuses(self, values: Sequence[Sequence[Any]], column: int) -> bool:
        """Return ``True`` when ``column`` reads like a status column.

        Either its header is ``Sync Status`` or every filled cell of the
        tracked rows is a status, with at least one filled.
        """

        if not values:
            return False
        header = values[0][column] if column < len(values[0]) else ""
        if isinstance(header, str) and header.strip() == STATUS_HEADER:
            return True
        seen = False
        for row in values[1:]:
            if not is_trackable_row(row) or column >= len(row) or is_blank(row[column]):
                continue
            if SyncStatus.parse(row[column]) is None:
                return False
            seen = True
        return seen

    def position_for_push(self, values: Sequence[Sequence[Any]]) -> Optional[int]:
        """Return the status column to push from: the hint when it still fits, else the header scan."""

        hint = self.hint()
        if hint is not None and self.holds_statuses(values, hint):
            return hint
        return self.locate(values)

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------
    def _status_rules(self, column: int) -> List[ConditionalRule]:
        return [
            ConditionalRule(
                column=column,
                text=status.value,
                background=style.background,
                font_color=style.font_color,
                bold=style.bold,
                start_row=1,
            )
            for status, style in STATUS_STYLES.items()
        ]

    def _install_rules(self, column: int) -> None:
        rules = [rule for rule in self.grid.get_conditional_rules() if rule.column != column]
        rules.extend(self._status_rules(column))
        self.grid.set_conditional_rules(rules)

    def apply_status_formatting(self, column: int, tracked_rows: Sequence[int], row_count: int) -> None:
        """Style the status column of a grid holding ``row_count`` rows."""

        with self.grid.batch():
            self.grid.set_bold(0, column, True)
            self.grid.set_background(column, 0, 1, HEADER_BACKGROUND)
            self.grid.set_note(0, column, STATUS_NOTE)
            if row_count > 1:
                self.grid.set_background(column, 1, row_count, COLUMN_BACKGROUND)
            self.grid.set_border(column, 0, max(row_count, 1), BORDER_COLOR)
            for start, end in _runs(tracked_rows):
                self.grid.set_validation(column, start, end, STATUS_VALUES)
            self._install_rules(column)
            self.grid.set_column_width(column, STATUS_COLUMN_WIDTH)

    def format_cell(self, row: int, column: int) -> None:
        """Re-apply validation and styling to one status cell after an edit."""

        with self.grid.batch():
            self.grid.set_validation(column, row, row + 1, STATUS_VALUES)
            self.grid.set_background(column, row, row + 1, COLUMN_BACKGROUND)
            self.grid.set_border(column, row, row + 1, BORDER_COLOR)
            if not any(rule.column == column for rule in self.grid.get_conditional_rules()):
                self._install_rules(column)

    def has_fingerprint(self, column: int) -> bool:
        """Return ``True`` when ``column`` carries status column formatting."""

        if (self.grid.get_note(0, column) or "").strip() == STATUS_NOTE:
            return True
        for row in range(FINGERPRINT_ROWS):
            validation = self.grid.get_validation(row, column)
            if validation and set(validation) == set(STATUS_VALUES):
                return True
            background = self.grid.get_background(row, column)
            if background and background.upper() in FINGERPRINT_BACKGROUNDS:
                return True
        return any(
            rule.column == column and SyncStatus.parse(rule.text) is not None
            for rule in self.grid.get_conditional_rules()
        )

    def clean_column(self, column: int, values: Sequence[Sequence[Any]] = (), *, clear_values: bool = False) -> None:
        """Strip status formatting from ``column``.

        With ``clear_values`` the header and any status text below it are
        erased as well, which is what happens to duplicate status columns.
        """

        with self.grid.batch():
            self.grid.set_validation(column, 0, None, None)
            self.grid.set_background(column, 0, None, None)
            self.grid.set_border(column, 0, None, None)
            self.grid.set_bold(0, column, False)
            self.grid.set_note(0, column, None)
            rules = self.grid.get_conditional_rules()
            kept = [rule for rule in rules if rule.column != column]
            if len(kept) != len(rules):
                self.grid.set_conditional_rules(kept)
        if not clear_values:
            return
        for row_index, row in enumerate(values):
            if column >= len(row):
                continue
            cell = row[column]
            if row_index == 0 and isinstance(cell, str) and cell.strip() == STATUS_HEADER:
                self.grid.set_value(0, column, "")
            elif row_index > 0 and SyncStatus.parse(cell) is not None:
                self.grid.set_value(row_index, column, "")

    # ------------------------------------------------------------------
    # Drift detection
    # ------------------------------------------------------------------
    def deduplicate(self, values: Optional[Sequence[Sequence[Any]]] = None) -> List[int]:
        """Keep the rightmost status column and clean every other one."""

        if values is None:
            values = self.grid.read_values()
        matches = header_matches(values)
        removed = matches[:-1]
        if removed:
            self._carry_statuses(values, removed, matches[-1])
        for column in removed:
            logger.info("Removing duplicate status column %s on %s", column_letter(column), self.keys.sheet_name)
            self.clean_column(column, values, clear_values=True)
        return removed

    def _carry_statuses(self, values: Sequence[Sequence[Any]], sources: Sequence[int], target: int) -> None:
        """Move statuses from ``sources`` into the blank cells of ``target``."""

        for row_index in range(1, len(values)):
            row = values[row_index]
            if target < len(row) and not is_blank(row[target]):
                continue
            # The column nearest the survivor wins.
            for column in reversed(sources):
                status = SyncStatus.parse(row[column]) if column < len(row) else None
                if status is not None:
                    self.grid.set_value(row_index, target, status.value)
                    break

    def create_column(self, values: Sequence[Sequence[Any]]) -> int:
        """Append a status column to a sheet that lost it."""

        column = max((len(row) for row in values), default=0)
        tracked = self._tracked_rows(values)
        block: List[List[Any]] = [[STATUS_HEADER]]
        for index in range(1, len(values)):
            block.append([SyncStatus.NOT_MODIFIED.value if index in tracked else ""])
        self.grid.write_block(0, column, block)
        self.save_hint(column, remember_previous=False)
        self.apply_status_formatting(column, tracked, len(values))
        logger.info("Created status column %s on %s", column_letter(column), self.keys.sheet_name)
        return column

    @staticmethod
    def _tracked_rows(values: Sequence[Sequence[Any]]) -> List[int]:
        return [index for index, row in enumerate(values) if index > 0 and is_trackable_row(row)]

    def _restorable_hint(self, values: Sequence[Sequence[Any]]) -> Optional[int]:
        """Return the hinted column when its header was renamed but its statuses survive."""

        hint = self.hint()
        if hint is None or len(values) < 2 or not self.holds_statuses(values, hint):
            return None
        return hint

    def detect_drift(self, values: Optional[Sequence[Sequence[Any]]] = None) -> Optional[Tuple[int, int]]:
        """Return ``(hint, live)`` when the column moved since it was placed."""

        live = self.locate(values)
        hint = self.hint()
        if live is None or hint is None or live == hint:
            return None
        return hint, live

    def repair(self) -> DriftReport:
        report = DriftReport(previous_hint=self.hint())
        values = self.grid.read_values()
        try:
            live = self.verify(values)
        except DriftError as exc:
            matches = header_matches(values)
            restorable = self._restorable_hint(values) if self.is_enabled() else None
            if matches:
                logger.info("Repairing %s: %s", self.keys.sheet_name, exc)
                report.duplicates_removed = self.deduplicate(values)
                values = self.grid.read_values()
                live = matches[-1]
                self.apply_status_formatting(live, self._tracked_rows(values), len(values))
            elif restorable is not None:
                live = restorable
                logger.info("Restoring the status header of column %s on %s", column_letter(live), self.keys.sheet_name)
                self.grid.set_value(0, live, STATUS_HEADER)
                values = self.grid.read_values()
                self.apply_status_formatting(live, self._tracked_rows(values), len(values))
                report.restored = True
            elif self.is_enabled() and values:
                logger.info("Repairing %s: %s", self.keys.sheet_name, exc)
                report.status_column = self.create_column(values)
                report.created = True
                return report
            else:
                return report

        report.status_column = live
        drift = self.detect_drift(values)
        if drift is not None:
            hint, _ = drift
            report.drifted = True
            logger.info(
                "Status column moved from %s to %s on %s",
                column_letter(hint),
                column_letter(live),
                self.keys.sheet_name,
            )
            if live < hint:
                upper = max(hint + SWEEP_MARGIN, self.grid.column_count())
                for column in range(upper):
                    if column != live and self.has_fingerprint(column):
                        self.clean_column(column)
                        report.columns_cleaned.append(column)

        previous_letter = self.store.get(SCRIPT_SCOPE, self.keys.previous_tracking_column)
        if previous_letter:
            try:
                previous = column_index(previous_letter)
            except ValueError:
                previous = None
            if (
                previous is not None
                and previous != live
                and previous not in report.columns_cleaned
                and self.has_fingerprint(previous)
            ):
                self.clean_column(previous)
                report.columns_cleaned.append(previous)
            self.store.delete(SCRIPT_SCOPE, self.keys.previous_tracking_column)

        if report.previous_hint != live:
            self.save_hint(live, remember_previous=False)
        return report


__all__ = ["DriftReport", "StatusColumnTracker", "header_matches"]
