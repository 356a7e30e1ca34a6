from __future__ import annotations

import copy
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from pipesync.config_store import MemoryConfigStore
from pipesync.errors import RemoteAPIError
from pipesync.pipedrive_client import DEFAULT_ROUTES, RecordPage, UpdateResult


DEAL_FIELDS: List[Dict[str, Any]] = [
    {"key": "id", "name": "ID", "field_type": "int"},
    {"key": "title", "name": "Title", "field_type": "varchar"},
    {"key": "value", "name": "Value", "field_type": "monetary"},
    {"key": "expected_close_date", "name": "Expected close date", "field_type": "date"},
    {"key": "owner_id", "name": "Owner", "field_type": "user"},
    {
        "key": "abc123",
        "name": "Colors",
        "field_type": "set",
        "edit_flag": True,
        "options": [{"id": 10, "label": "Red"}, {"id": 20, "label": "Blue"}, {"id": 30, "label": "Green"}],
    },
    {
        "key": "def456",
        "name": "Tier",
        "field_type": "enum",
        "edit_flag": True,
        "options": [{"id": 1, "label": "Gold"}, {"id": 2, "label": "Silver"}],
    },
    {"key": "ffa1b2c3d4e5f60718293a4b5c6d7e8f90a1b2c3", "name": "Renewal", "field_type": "date", "edit_flag": True},
]


class FakePipedriveClient:
    """In-memory stand-in for :class:`pipesync.pipedrive_client.PipedriveClient`."""

    def __init__(
        self,
        records: Optional[Iterable[Mapping[str, Any]]] = None,
        fields: Optional[Iterable[Mapping[str, Any]]] = None,
        *,
        page_size: int = 2,
        failures: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.routes = dict(DEFAULT_ROUTES)
        self.records: List[Dict[str, Any]] = [dict(record) for record in records or []]
        self.fields: List[Dict[str, Any]] = [dict(item) for item in (DEAL_FIELDS if fields is None else fields)]
        self.page_size = page_size
        self.failures: Dict[str, str] = dict(failures or {})
        self.fail_pages: set[int] = set()
        self.fail_fields = False
        self.field_calls = 0
        self.list_calls: List[Dict[str, Any]] = []
        self.updates: List[tuple[str, str, Dict[str, Any]]] = []

    def route(self, entity_type: str):
        return self.routes[entity_type]

    def list_records(self, entity_type: str, filter_id: Any = None, page: Any = None, limit: int = 100) -> RecordPage:
        index = int(page or 0)
        self.list_calls.append({"entity_type": entity_type, "filter_id": filter_id, "page": index})
        if index in self.fail_pages:
            raise RemoteAPIError("Service unavailable", status_code=503)
        start = index * self.page_size
        items = copy.deepcopy(self.records[start:start + self.page_size])
        has_more = start + self.page_size < len(self.records)
        return RecordPage(items=items, has_more=has_more, next_page=index + 1 if has_more else None)

    def get_field_definitions(self, entity_type: str) -> List[Dict[str, Any]]:
        self.field_calls += 1
        if self.fail_fields:
            raise RemoteAPIError("Service unavailable", status_code=503)
        return copy.deepcopy(self.fields)

    def update_record(self, entity_type: str, record_id: Any, fields: Mapping[str, Any]) -> UpdateResult:
        self.updates.append((entity_type, str(record_id), copy.deepcopy(dict(fields))))
        error = self.failures.get(str(record_id))
        if error:
            return UpdateResult(success=False, error=error, status_code=400)
        return UpdateResult(success=True, status_code=200)

    def get_filters(self, entity_type: Optional[str] = None) -> List[Dict[str, Any]]:
        return [{"id": 7, "name": "Open deals", "type": "deals"}]


@pytest.fixture
def store() -> MemoryConfigStore:
    return MemoryConfigStore()


@pytest.fixture
def client_factory():
    return FakePipedriveClient
