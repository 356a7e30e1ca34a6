from __future__ import annotations

from typing import List

from pipesync.config_store import SCRIPT_SCOPE, MemoryConfigStore
from pipesync.field_catalog import FieldCatalog, FieldDefinition, is_date_like


class _Clock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_definitions_are_cached_in_memory_and_store(client_factory, store) -> None:
    client = client_factory()
    clock = _Clock()
    catalog = FieldCatalog(client, store, clock=clock)

    first = catalog.get_field_definitions("deals")
    second = catalog.get_field_definitions("deals")

    assert client.field_calls == 1
    assert first is second
    assert [definition.key for definition in first][:3] == ["id", "title", "value"]
    assert store.get(SCRIPT_SCOPE, "CACHE_dealFields") is not None
    assert store.get(SCRIPT_SCOPE, "CACHE_TIME_dealFields") == str(int(clock.now))


def test_persisted_cache_is_shared_between_instances(client_factory, store) -> None:
    client = client_factory()
    clock = _Clock()
    FieldCatalog(client, store, clock=clock).get_field_definitions("deals")

    other = FieldCatalog(client, store, clock=clock)
    definitions = other.get_field_definitions("deals")

    assert client.field_calls == 1
    assert other.get_field("deals", "abc123").name == "Colors"
    assert len(definitions) == len(client.fields)


def test_expired_cache_is_refreshed(client_factory, store) -> None:
    client = client_factory()
    clock = _Clock()
    catalog = FieldCatalog(client, store, ttl=3600, clock=clock)
    catalog.get_field_definitions("deals")

    clock.now += 3601
    catalog.get_field_definitions("deals")

    assert client.field_calls == 2


def test_fetch_failure_falls_back_to_stale_cache(client_factory, store) -> None:
    client = client_factory()
    clock = _Clock()
    FieldCatalog(client, store, clock=clock).get_field_definitions("deals")

    client.fail_fields = True
    clock.now += 10 * 3600
    definitions = FieldCatalog(client, store, clock=clock).get_field_definitions("deals")

    assert [definition.key for definition in definitions] == [item["key"] for item in client.fields]


def test_fetch_failure_without_cache_returns_empty(client_factory, store) -> None:
    client = client_factory()
    client.fail_fields = True
    catalog = FieldCatalog(client, store)

    assert catalog.get_field_definitions("deals") == []
    assert catalog.get_option_map("deals") == {}
    assert catalog.resolve_option_id("deals", "abc123", "Red") is None


def test_unknown_entity_type_returns_empty(client_factory, store) -> None:
    assert FieldCatalog(client_factory(), store).get_field_definitions("tasks") == []


def test_option_map_and_case_insensitive_resolution(client_factory, store) -> None:
    catalog = FieldCatalog(client_factory(), store)

    option_map = catalog.get_option_map("deals")

    assert option_map["abc123"] == {"10": "Red", "20": "Blue", "30": "Green"}
    assert catalog.resolve_option_id("deals", "abc123", "  blue ") == 20
    assert catalog.resolve_option_id("deals", "abc123", "Purple") is None
    assert catalog.resolve_option_id("deals", "missing", "Red") is None


def test_field_classification(client_factory, store) -> None:
    catalog = FieldCatalog(client_factory(), store)

    assert catalog.is_multi_option("deals", "abc123") is True
    assert catalog.is_multi_option("deals", "def456") is False
    assert catalog.is_date_field("deals", "expected_close_date") is True
    assert catalog.is_date_field("deals", "title") is False
    assert catalog.is_date_field("deals", "birthday") is True
    assert catalog.is_custom_field("deals", "def456") is True
    assert catalog.is_custom_field("deals", "0123456789abcdef0123456789abcdef01234567") is True
    assert catalog.is_custom_field("deals", "title") is False


def test_invalidate_forces_a_refetch(client_factory, store) -> None:
    client = client_factory()
    catalog = FieldCatalog(client, store)
    catalog.get_field_definitions("deals")

    catalog.invalidate("deals")
    catalog.get_field_definitions("deals")

    assert client.field_calls == 2


def test_leads_share_deal_field_cache(client_factory, store) -> None:
    client = client_factory()
    catalog = FieldCatalog(client, store)

    catalog.get_field_definitions("deals")
    catalog.get_field_definitions("leads")

    assert client.field_calls == 1


def test_definition_from_api_skips_keyless_entries() -> None:
    assert FieldDefinition.from_api({"name": "No key"}) is None
    definition = FieldDefinition.from_api(
        {"key": "k", "name": "K", "field_type": "set", "options": [{"id": 1, "label": "A"}, {"label": "B"}]}
    )
    assert definition is not None
    assert definition.is_multi_value is True
    assert [option.label for option in definition.options] == ["A"]


def test_date_heuristic() -> None:
    names: List[str] = ["due_date", "deadline", "birthday", "created_at", "title", "phone"]
    assert [is_date_like(name) for name in names] == [True, True, True, True, False, False]
