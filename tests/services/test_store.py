import pytest

from smart_break.services.errors import PersistenceError
from smart_break.services.store import SCHEMA_VERSION, KeyValueStore, StoreDecodeError


@pytest.fixture
def file_store(tmp_path):
    """Create a file-backed store"""
    return KeyValueStore(tmp_path / "data" / "store.db")


def test_round_trip(store):
    store.set("prefs", {"threshold": 60, "apps": ["a", "b"]})
    assert store.get("prefs") == {"threshold": 60, "apps": ["a", "b"]}
    assert store.get("missing", "fallback") == "fallback"


def test_schema_version_is_stamped(store):
    assert store.schema_version == SCHEMA_VERSION
    store.clear()
    assert store.schema_version == SCHEMA_VERSION
    assert store.keys() == ["schema_version"]


def test_corrupt_value_raises_on_get(store):
    store.set_raw("broken", "{not json")
    with pytest.raises(StoreDecodeError):
        store.get("broken")


def test_load_discards_corrupt_value(store):
    """Test corrupt entries are removed and read as absent"""
    store.set_raw("broken", "{not json")
    assert store.load("broken", dict) is None
    assert "broken" not in store.keys()


def test_load_discards_value_that_fails_parsing(store):
    store.set("count", "many")
    assert store.load("count", int) is None
    assert "count" not in store.keys()


def test_unserializable_value(store):
    with pytest.raises(PersistenceError):
        store.set("bad", object())


def test_file_store_survives_reopen(file_store, tmp_path):
    """Test values persist across store instances"""
    file_store.set("sessions_date", "2024-03-11")

    reopened = KeyValueStore(tmp_path / "data" / "store.db")

    assert reopened.get("sessions_date") == "2024-03-11"
    stats = reopened.get_database_stats()
    assert stats["keys"] == 2


def test_delete(store):
    store.set("a", 1)
    store.delete("a")
    assert store.get("a") is None
