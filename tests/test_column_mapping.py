from __future__ import annotations

import pytest

from pipesync.column_mapping import (
    ColumnMapping,
    ColumnMappingEntry,
    ColumnMappingStore,
    default_column_name,
)
from pipesync.config_store import SCRIPT_SCOPE
from pipesync.field_catalog import FieldDefinition


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("id", "ID"),
        ("title", "Title"),
        ("org_id.name", "Org Name"),
        ("emails.0.value", "Emails 1 Value"),
        ("custom_fields.abc123", "abc123"),
    ],
)
def test_default_column_name(path: str, expected: str) -> None:
    assert default_column_name(path) == expected


def test_default_column_name_uses_catalog_names() -> None:
    definitions = [FieldDefinition(key="abc123", name="Colors")]
    assert default_column_name("custom_fields.abc123", definitions) == "Colors"
    assert default_column_name("custom_fields.abc123.formatted_address", definitions) == "Colors Formatted Address"


def test_mapping_rejects_duplicate_paths() -> None:
    mapping = ColumnMapping([ColumnMappingEntry("title", "Title")])
    with pytest.raises(ValueError):
        mapping.add(ColumnMappingEntry("title", "Deal title"))


def test_header_uses_override_and_reverse_lookup_accepts_both() -> None:
    entry = ColumnMappingEntry("title", "Title", display_override="Deal name")
    mapping = ColumnMapping([ColumnMappingEntry("id", "ID"), entry])

    assert mapping.headers() == ["ID", "Deal name"]
    assert mapping.entry_for_header(" deal NAME ") is entry
    assert mapping.entry_for_header("Title") is entry
    assert mapping.entry_for_header("Sync Status") is None
    assert mapping.entry_for_header("") is None


def test_blank_override_is_ignored() -> None:
    assert ColumnMappingEntry("title", "Title", display_override="  ").header == "Title"


def test_with_id_first_moves_or_adds_the_id_column() -> None:
    mapping = ColumnMapping([ColumnMappingEntry("title"), ColumnMappingEntry("id", "Deal ID")])
    assert mapping.with_id_first().field_paths() == ["id", "title"]
    assert mapping.with_id_first().headers()[0] == "Deal ID"

    bare = ColumnMapping([ColumnMappingEntry("title")])
    assert bare.with_id_first().field_paths() == ["id", "title"]


def test_from_json_drops_duplicates_and_garbage() -> None:
    mapping = ColumnMapping.from_json(
        [
            {"key": "title", "name": "Title"},
            {"key": "title", "name": "Again"},
            {"name": "No key"},
            "junk",
            {"key": "custom_fields.abc123", "name": "Colors", "customName": "Palette"},
        ]
    )
    assert mapping.field_paths() == ["title", "custom_fields.abc123"]
    assert mapping.headers() == ["Title", "Palette"]


def test_store_round_trip_and_owner_precedence(store) -> None:
    shared = ColumnMappingStore(store)
    shared.save("Deals", "deals", ColumnMapping([ColumnMappingEntry("title", "Title")]))

    personal = ColumnMappingStore(store, owner="team-1")
    assert personal.load("Deals", "deals").field_paths() == ["title"]

    personal.save("Deals", "deals", ColumnMapping([ColumnMappingEntry("value", "Value")]))
    assert personal.load("Deals", "deals").field_paths() == ["value"]
    assert shared.load("Deals", "deals").field_paths() == ["title"]
    assert ColumnMappingStore(store).load("Deals", "persons").entries == []


def test_saving_columns_requests_status_column_at_end(store) -> None:
    ColumnMappingStore(store).save("Deals", "deals", ColumnMapping([ColumnMappingEntry("title")]))
    assert store.get_bool(SCRIPT_SCOPE, "TWOWAY_SYNC_COLUMN_AT_END_Deals") is True
