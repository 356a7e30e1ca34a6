"""High level pull, push and sync operations for one sheet."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pipesync.change_detector import ChangeDetector, EditEvent
from pipesync.column_mapping import ColumnMapping, ColumnMappingStore
from pipesync.config_store import (
    DOCUMENT_SCOPE,
    SCRIPT_SCOPE,
    ConfigStore,
    JsonConfigStore,
    SheetKeys,
)
from pipesync.errors import ConfigurationError
from pipesync.field_catalog import FieldCatalog
from pipesync.grid import GridHost, SheetsGrid, build_sheets_service, column_index
from pipesync.pipedrive_client import ENTITY_TYPES, PipedriveClient
from pipesync.push_engine import PushEngine, PushReport
from pipesync.settings import SyncSettings
from pipesync.sheet_writer import PullResult, SheetWriter
from pipesync.status import SyncStatus
from pipesync.status_tracker import DriftReport, StatusColumnTracker

logger = logging.getLogger(__name__)

DEFAULT_ENTITY_TYPE = "deals"


@dataclass(slots=True)
class SyncSummary:
    pushed: Optional[PushReport] = None
    pulled: Optional[PullResult] = None

    @property
    def message(self) -> str:
        parts: List[str] = []
        if self.pushed is not None:
            parts.append(self.pushed.message)
        if self.pulled is not None:
            parts.append(self.pulled.message)
        return " ".join(parts) or "Nothing to do."


class SyncService:
    """Coordinate the components that keep one sheet in sync."""

    def __init__(
        self,
        client: Any,
        grid: GridHost,
        store: ConfigStore,
        *,
        sheet_name: Optional[str] = None,
        owner: Optional[str] = None,
        field_cache_ttl: int = 3600,
        log_callback: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.client = client
        self.grid = grid
        self.store = store
        self.sheet_name = sheet_name or grid.title
        self.keys = SheetKeys(self.sheet_name)
        self._log_callback = log_callback

        self.catalog = FieldCatalog(client, store, ttl=field_cache_ttl)
        self.mappings = ColumnMappingStore(store, owner=owner)
        self.tracker = StatusColumnTracker(grid, store, self.sheet_name)
        self.writer = SheetWriter(grid, store, client, self.catalog, self.mappings, tracker=self.tracker)
        self.engine = PushEngine(grid, store, client, self.catalog, self.mappings, tracker=self.tracker)
        self.detector = ChangeDetector(grid, store, tracker=self.tracker)

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings,
        sheet_name: str,
        *,
        log_callback: Optional[Callable[[str], None]] = None,
    ) -> "SyncService":
        """Build a service talking to the live Pipedrive and Google APIs."""

        if not settings.api_token:
            raise ConfigurationError("No Pipedrive API token configured (PIPESYNC_API_TOKEN).")
        if not settings.spreadsheet_id:
            raise ConfigurationError("No spreadsheet configured (PIPESYNC_SPREADSHEET_ID).")
        client = PipedriveClient(
            settings.api_token,
            subdomain=settings.subdomain,
            timeout=settings.request_timeout,
        )
        service = build_sheets_service(settings.credential_path)
        grid = SheetsGrid(service, settings.spreadsheet_id, sheet_name)
        store = JsonConfigStore(settings.config_store_path)
        return cls(
            client,
            grid,
            store,
            sheet_name=sheet_name,
            field_cache_ttl=settings.field_cache_ttl,
            log_callback=log_callback,
        )

    # ------------------------------------------------------------------
    # Sheet configuration
    # ------------------------------------------------------------------
    @property
    def entity_type(self) -> str:
        return self.store.get(DOCUMENT_SCOPE, self.keys.entity_type) or DEFAULT_ENTITY_TYPE

    @property
    def filter_id(self) -> Optional[str]:
        return self.store.get(DOCUMENT_SCOPE, self.keys.filter_id) or None

    @property
    def two_way_enabled(self) -> bool:
        return self.tracker.is_enabled()

    def configure(
        self,
        entity_type: str,
        filter_id: Any,
        columns: Optional[ColumnMapping] = None,
    ) -> None:
        """Bind the sheet to an entity type, a saved filter and optionally columns."""

        if entity_type not in ENTITY_TYPES:
            raise ConfigurationError(f"Unsupported entity type: {entity_type}")
        self.store.set(DOCUMENT_SCOPE, self.keys.entity_type, entity_type)
        self.store.set(DOCUMENT_SCOPE, self.keys.filter_id, str(filter_id))
        if columns is not None:
            self.mappings.save(self.sheet_name, entity_type, columns)

    def enable_two_way_sync(self, enabled: bool = True, tracking_column: Optional[str] = None) -> None:
        """Switch two-way sync on or off for the sheet.

        ``tracking_column`` optionally pins the status column to a column
        letter; without it the column is placed after the mapped columns.
        """

        self.store.set_bool(SCRIPT_SCOPE, self.keys.enabled, enabled)
        if not enabled:
            self._log(f"Two-way sync disabled for {self.sheet_name}")
            return
        if tracking_column:
            try:
                column = column_index(tracking_column)
            except ValueError as exc:
                raise ConfigurationError(str(exc)) from exc
            self.tracker.save_hint(column)
            self.store.delete(SCRIPT_SCOPE, self.keys.column_at_end)
        else:
            self.tracker.request_column_at_end()
        if not tracking_column and self.grid.read_values():
            self.tracker.repair()
        self._log(f"Two-way sync enabled for {self.sheet_name}")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def pull(self, limit: int = 0) -> PullResult:
        filter_id = self.filter_id
        if not filter_id:
            raise ConfigurationError(
                f"No Pipedrive filter selected for {self.sheet_name}. "
                "Choose a filter in the sync settings first."
            )
        result = self.writer.pull(self.entity_type, filter_id, limit=limit)
        self._log(result.message)
        return result

    def push(self) -> PushReport:
        if self.two_way_enabled:
            self.tracker.repair()
        report = self.engine.push(self.entity_type)
        self._log(report.message)
        return report

    def sync(self) -> SyncSummary:
        """Push local edits first when two-way sync is on, then pull."""

        summary = SyncSummary()
        if self.two_way_enabled:
            try:
                summary.pushed = self.push()
            except ConfigurationError as exc:
                logger.warning("Skipping push before pull: %s", exc)
                self._log(f"Push skipped: {exc}")
        summary.pulled = self.pull()
        return summary

    def repair(self) -> DriftReport:
        report = self.tracker.repair()
        if report.changed:
            self._log(f"Repaired the status column of {self.sheet_name}")
        return report

    def handle_edit(self, row: int, column: int) -> Optional[SyncStatus]:
        return self.detector.on_edit(EditEvent(row=row, column=column, sheet_name=self.sheet_name))

    def list_filters(self) -> List[Dict[str, Any]]:
        return self.client.get_filters(self.entity_type)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _log(self, message: str) -> None:
        logger.info("%s", message)
        if self._log_callback:
            try:
                self._log_callback(message)
            except Exception:  # pragma: no cover - UI callback failure
                logger.exception("Sync log callback failed")


__all__ = ["SyncService", "SyncSummary"]
