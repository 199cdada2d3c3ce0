"""Tests for the local fallback store."""
import json

from launchpad.services.fallback_store import (
    FallbackEntry,
    InMemoryFallbackStore,
    JsonFileFallbackStore,
    fallback_key,
    split_key,
    type_from_key,
)


def test_key_helpers_keep_underscored_types():
    """Key helpers round-trip project id and a type containing underscores."""
    key = fallback_key("1b0c", "market_research")
    assert key == "document_1b0c_market_research"
    assert type_from_key("1b0c", key) == "market_research"
    assert type_from_key("other", key) is None
    assert split_key(key) == ("1b0c", "market_research")


def test_plain_string_value_is_legacy_content():
    """A bare string value is read as pending content without ids."""
    store = InMemoryFallbackStore({"document_p_goals": "just text"})
    entry = store.get_entry("document_p_goals")
    assert entry.content == "just text"
    assert entry.needs_sync is True
    assert entry.id is None
    assert entry.remote_id is None


def test_camel_case_needs_sync_is_read():
    """needsSync from older writers is honoured, timestamp becomes tz-aware."""
    raw = json.dumps({"content": "x", "timestamp": "2024-01-01T00:00:00Z", "needsSync": False})
    entry = FallbackEntry.parse(raw)
    assert entry.needs_sync is False
    assert entry.updated_at.year == 2024
    assert entry.updated_at.tzinfo is not None


def test_row_id_in_old_entries_becomes_remote_id():
    """An old entry whose id is a database id is read with that id as remote_id."""
    row_id = "5d6d84b5-2f0e-4c3a-9d7e-0b1c2d3e4f50"
    entry = FallbackEntry.parse(json.dumps({"content": "x", "timestamp": "2024-01-01T00:00:00Z", "id": row_id}))
    assert entry.id is None
    assert entry.remote_id == row_id

    local = FallbackEntry.parse(FallbackEntry.pending("y", "local_1700000000000_abc1234").dumps())
    assert local.id == "local_1700000000000_abc1234"
    assert local.remote_id is None


def test_json_file_store_persists(tmp_path):
    """JSON file store survives reopening; deleted keys are gone."""
    path = tmp_path / "fallback" / "documents.json"
    store = JsonFileFallbackStore(path)
    store.set_entry("document_p_goals", FallbackEntry.synced("Ship", "abc", "local_1_abcdefg"))
    store.set("document_p_other", "y")
    store.delete("document_p_other")

    reopened = JsonFileFallbackStore(path)
    assert reopened.keys("document_p_") == ["document_p_goals"]
    entry = reopened.get_entry("document_p_goals")
    assert entry.content == "Ship"
    assert entry.id == "local_1_abcdefg"
    assert entry.remote_id == "abc"
    assert entry.needs_sync is False


def test_json_file_store_ignores_corrupt_file(tmp_path):
    """A corrupt file is logged and the store starts empty."""
    path = tmp_path / "documents.json"
    path.write_text("{not json", encoding="utf-8")
    assert JsonFileFallbackStore(path).keys() == []
