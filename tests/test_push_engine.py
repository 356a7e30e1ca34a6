from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple

import pytest
import requests

from pipesync.column_mapping import ColumnMapping, ColumnMappingEntry, ColumnMappingStore
from pipesync.config_store import SCRIPT_SCOPE, SheetKeys
from pipesync.errors import ConfigurationError
from pipesync.field_catalog import FieldCatalog
from pipesync.grid import MemoryGrid
from pipesync.push_engine import PushEngine, is_excluded
from pipesync.status import STATUS_HEADER

RENEWAL = "ffa1b2c3d4e5f60718293a4b5c6d7e8f90a1b2c3"


def _engine(
    store,
    client,
    rows: Sequence[Sequence[object]],
    columns: Iterable[Tuple[str, str]],
    entity_type: str = "deals",
) -> tuple[MemoryGrid, PushEngine]:
    grid = MemoryGrid(rows)
    mappings = ColumnMappingStore(store)
    mappings.save(
        "Sheet1",
        entity_type,
        ColumnMapping(ColumnMappingEntry(path, name) for path, name in columns),
    )
    return grid, PushEngine(grid, store, client, FieldCatalog(client, store), mappings)


def _statuses(grid: MemoryGrid, column: int) -> List[object]:
    return [row[column] for row in grid.read_values()[1:]]


def test_push_marks_each_row_with_its_outcome(client_factory, store) -> None:
    client = client_factory(failures={"2": "Bad value"})
    grid, engine = _engine(
        store,
        client,
        [
            ["ID", "Title", "Colors", STATUS_HEADER],
            [1, "Alpha", "Red, Blue", "Modified"],
            [2, "Beta", "Green", "Modified"],
            [3, "Gamma", "", "Modified"],
            [4, "Delta", "Red", "Not modified"],
        ],
        [("title", "Title"), ("custom_fields.abc123", "Colors")],
    )

    report = engine.push("deals")

    assert _statuses(grid, 3) == ["Synced", "Error", "Synced", "Not modified"]
    assert (report.success_count, report.error_count) == (2, 1)
    assert report.message == "Pushed 2 rows to Pipedrive, 1 failed (2: Bad value)."
    assert client.updates == [
        ("deals", "1", {"title": "Alpha", "custom_fields": {"abc123": [10, 20]}}),
        ("deals", "2", {"title": "Beta", "custom_fields": {"abc123": [30]}}),
        ("deals", "3", {"title": "Gamma"}),
    ]


def test_transport_exception_marks_only_that_row(client_factory, store) -> None:
    client = client_factory()
    send = client.update_record

    def update_record(entity_type, record_id, fields):
        if str(record_id) == "2":
            raise requests.ConnectionError("Connection reset by peer")
        return send(entity_type, record_id, fields)

    client.update_record = update_record
    grid, engine = _engine(
        store,
        client,
        [
            ["ID", "Title", STATUS_HEADER],
            [1, "Alpha", "Modified"],
            [2, "Beta", "Modified"],
            [3, "Gamma", "Modified"],
        ],
        [("title", "Title")],
    )

    report = engine.push("deals")

    assert _statuses(grid, 2) == ["Synced", "Error", "Synced"]
    assert (report.success_count, report.error_count) == (2, 1)
    assert report.rows[1].error == "Connection reset by peer"
    assert [update[1] for update in client.updates] == ["1", "3"]


def test_push_uses_hinted_column_after_header_rename(client_factory, store) -> None:
    client = client_factory()
    grid, engine = _engine(
        store,
        client,
        [["ID", "Title", "State"], [1, "Alpha", "Modified"], [2, "Beta", "Not modified"]],
        [("title", "Title")],
    )
    store.set(SCRIPT_SCOPE, SheetKeys("Sheet1").tracking_column, "C")

    report = engine.push("deals")

    assert report.success_count == 1
    assert client.updates == [("deals", "1", {"title": "Alpha"})]
    assert _statuses(grid, 2) == ["Synced", "Not modified"]


def test_push_is_safe_to_repeat(client_factory, store) -> None:
    client = client_factory()
    grid, engine = _engine(
        store,
        client,
        [["ID", "Title", STATUS_HEADER], [1, "Alpha", "Modified"]],
        [("title", "Title")],
    )
    engine.push("deals")

    report = engine.push("deals")

    assert report.rows == []
    assert report.message == "No modified rows to push."
    assert len(client.updates) == 1


def test_push_coerces_values_by_field_type(client_factory, store) -> None:
    client = client_factory()
    _, engine = _engine(
        store,
        client,
        [
            ["ID", "Title", "Tier", "Value", "Owner", "Organization", "Created", "Renewal", STATUS_HEADER],
            [5, "Epsilon", "silver", "1500 EUR", "42", "Acme", "2024-01-01", "05/01/2024", "Modified"],
        ],
        [
            ("title", "Title"),
            ("custom_fields.def456", "Tier"),
            ("value", "Value"),
            ("owner_id", "Owner"),
            ("org_id.name", "Organization"),
            ("add_time", "Created"),
            (f"custom_fields.{RENEWAL}", "Renewal"),
        ],
    )

    engine.push("deals")

    assert client.updates == [
        (
            "deals",
            "5",
            {
                "title": "Epsilon",
                "value": 1500,
                "owner_id": 42,
                "custom_fields": {"def456": 2, RENEWAL: "2024-05-01"},
            },
        )
    ]


def test_columns_are_matched_by_header_not_position(client_factory, store) -> None:
    client = client_factory()
    _, engine = _engine(
        store,
        client,
        [
            ["ID", STATUS_HEADER, "Owner", "Deal name"],
            [6, "Modified", "Bob", "Zeta"],
        ],
        [("owner_id", "Owner"), ("title", "Title")],
    )
    engine.mappings.save(
        "Sheet1",
        "deals",
        ColumnMapping([ColumnMappingEntry("title", "Title", "Deal name"), ColumnMappingEntry("owner_id", "Owner")]),
    )

    engine.push("deals")

    # The owner name is not an id and is left out.
    assert client.updates == [("deals", "6", {"title": "Zeta"})]


def test_unknown_option_labels_are_sent_unchanged(client_factory, store) -> None:
    client = client_factory()
    _, engine = _engine(
        store,
        client,
        [["ID", "Colors", STATUS_HEADER], [7, "red, Purple", "Modified"]],
        [("custom_fields.abc123", "Colors")],
    )

    engine.push("deals")

    assert client.updates[0][2] == {"custom_fields": {"abc123": [10, "Purple"]}}


def test_leads_send_custom_fields_at_top_level(client_factory, store) -> None:
    client = client_factory()
    _, engine = _engine(
        store,
        client,
        [["ID", "Title", "Colors", STATUS_HEADER], ["lead-1", "Lead", "Blue", "Modified"]],
        [("title", "Title"), ("custom_fields.abc123", "Colors")],
        entity_type="leads",
    )

    engine.push("leads")

    assert client.updates == [("leads", "lead-1", {"title": "Lead", "abc123": [20]})]


def test_row_without_writable_fields_is_synced_without_request(client_factory, store) -> None:
    client = client_factory()
    grid, engine = _engine(
        store,
        client,
        [["ID", "Organization", STATUS_HEADER], [8, "Acme", "Modified"]],
        [("org_id.name", "Organization")],
    )

    report = engine.push("deals")

    assert client.updates == []
    assert report.success_count == 1
    assert _statuses(grid, 2) == ["Synced"]


def test_monetary_custom_field_keeps_currency_when_nested(client_factory, store) -> None:
    fields = [{"key": "budget", "name": "Budget", "field_type": "monetary", "edit_flag": True}]
    client = client_factory(fields=fields)
    _, engine = _engine(store, client, [], [("budget", "Budget")])

    assert engine.coerce("deals", "budget", "2,500 usd") == {"value": 2500, "currency": "USD"}
    assert engine.coerce("deals", "budget", "2,500 usd", nested=False) == 2500
    assert engine.coerce("deals", "budget", 99.5) == 99.5


def test_push_requires_mapping_and_status_column(client_factory, store) -> None:
    client = client_factory()
    grid = MemoryGrid([["ID", "Title"], [1, "Alpha"]])
    engine = PushEngine(grid, store, client, FieldCatalog(client, store), ColumnMappingStore(store))

    with pytest.raises(ConfigurationError):
        engine.push("deals")

    engine.mappings.save("Sheet1", "deals", ColumnMapping([ColumnMappingEntry("title", "Title")]))
    with pytest.raises(ConfigurationError):
        engine.push("deals")


@pytest.mark.parametrize(
    ("entity_type", "key", "expected"),
    [
        ("deals", "id", True),
        ("deals", "update_time", True),
        ("deals", "activities_count", True),
        ("deals", "stage_order_nr", True),
        ("persons", "stage_order_nr", False),
        ("organizations", "address_formatted_address", True),
        ("deals", "title", False),
    ],
)
def test_is_excluded(entity_type: str, key: str, expected: bool) -> None:
    assert is_excluded(entity_type, key) is expected
