"""
Record store smoke tests - upsert, read back, delete and transactions.
"""
import sqlite3
import threading

import pytest

from context_server.core.dao import ContextStore
from context_server.core.errors import StorageError


def test_database_health(store):
    """Test that database initializes correctly."""
    assert store.health_check() == True, "Database should be healthy"


def test_upsert_and_get(store):
    """Test writing and reading back a record."""
    created = store.upsert("test_key", {"n": 1, "tags": ["a", "b"]}, {"source": "test"})
    assert created is True

    record = store.get("test_key")
    assert record is not None, "Key should exist after setting"
    assert record.key == "test_key"
    assert record.value == {"n": 1, "tags": ["a", "b"]}
    assert record.metadata == {"source": "test"}


@pytest.mark.parametrize("value", ["plain text", '{"looks": "like json"}', 42, 3.5, True, [1, "two", None], {"nested": {"deep": [1, 2]}}])
def test_round_trip_preserves_value(store, value):
    """Writing then reading the same key returns an identical value."""
    store.upsert("round_trip", value)
    assert store.get("round_trip").value == value


def test_missing_metadata_is_stored_as_null(store):
    store.upsert("no_meta", "value")

    assert store.get("no_meta").metadata is None
    raw = store._conn.execute("SELECT metadata FROM context WHERE key = 'no_meta'").fetchone()[0]
    assert raw is None


def test_upsert_replaces_existing_record(store):
    """A second write to a key replaces value and metadata, not identity."""
    assert store.upsert("replace_me", "first", {"v": 1}) is True
    first = store.get("replace_me")

    assert store.upsert("replace_me", "second") is False
    second = store.get("replace_me")

    assert second.value == "second"
    assert second.metadata is None
    assert second.created_at == first.created_at
    assert second.updated_at >= second.created_at
    assert store.count() == 1


def test_delete(store):
    store.upsert("delete_test", "test_value")
    assert store.delete("delete_test") is True
    assert store.get("delete_test") is None


def test_delete_missing_key(store):
    assert store.delete("never_written") is False


def test_count(store):
    store.upsert("count_test_1", "value1")
    store.upsert("count_test_2", "value2")
    store.delete("count_test_1")

    assert store.count() == 1


def test_table_rejects_invalid_json(store):
    """The table itself refuses non-JSON text."""
    with pytest.raises(sqlite3.IntegrityError):
        store._conn.execute("INSERT INTO context (key, value) VALUES ('bad', 'not json')")


def test_unserializable_value_raises_storage_error(store):
    with pytest.raises(StorageError):
        store.upsert("bad", {1, 2, 3})


def test_rollback_undoes_transaction(store):
    store.upsert("kept", "before")

    store.begin_transaction()
    store.upsert("kept", "during")
    store.upsert("new_key", "during")
    store.rollback()

    assert store.get("kept").value == "before"
    assert store.get("new_key") is None


def test_transaction_context_manager_commits(store):
    with store.transaction():
        store.upsert("a", 1)
        store.upsert("b", 2)

    assert store.count() == 2
    assert not store.in_transaction


def test_transaction_context_manager_rolls_back_on_error(store):
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.upsert("a", 1)
            raise RuntimeError("boom")

    assert store.get("a") is None
    assert not store.in_transaction


def test_uncommitted_writes_are_invisible_to_other_threads(store):
    """A reader in another thread waits until the transaction commits."""
    store.begin_transaction()
    store.upsert("pending", "value")

    seen = []
    reader = threading.Thread(target=lambda: seen.append(store.get("pending")))
    reader.start()
    reader.join(timeout=0.2)
    assert reader.is_alive(), "Reader should block while the transaction is open"
    assert seen == []

    store.commit()
    reader.join(timeout=2)
    assert seen[0].value == "value"


def test_nested_begin_is_rejected(store):
    store.begin_transaction()
    try:
        with pytest.raises(StorageError):
            store.begin_transaction()
    finally:
        store.rollback()


def test_commit_without_transaction_raises(store):
    with pytest.raises(StorageError):
        store.commit()


def test_store_that_cannot_be_opened_raises(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("file")
    with pytest.raises(StorageError):
        ContextStore(str(blocker / "context.db"))
