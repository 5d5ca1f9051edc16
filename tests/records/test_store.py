"""Unit Tests for RecordStore against in-memory SQLite"""
import uuid

import pytest

from phonevault.errors import DatabaseConnectionError, RecordNotFound, StorageFailure
from phonevault.records.store import RecordStore


def test_create_assigns_id_and_timestamps(store):
    record = store.create("c2VjcmV0")
    assert uuid.UUID(record.id).version == 4
    assert record.encrypted_data == "c2VjcmV0"
    assert record.created_at == record.updated_at
    assert record.created_at.tzinfo is not None


def test_get_by_id_returns_stored_record(store):
    created = store.create("c2VjcmV0")
    loaded = store.get_by_id(created.id)
    assert loaded == created


def test_ids_are_unique(store):
    ids = {store.create("c2VjcmV0").id for _ in range(25)}
    assert len(ids) == 25


def test_lookup_is_exact_match(store):
    created = store.create("c2VjcmV0")
    with pytest.raises(RecordNotFound):
        store.get_by_id(created.id[:8])
    with pytest.raises(RecordNotFound):
        store.get_by_id(created.id.upper())


def test_unknown_id_raises_not_found(store):
    with pytest.raises(RecordNotFound) as exc:
        store.get_by_id("00000000-0000-0000-0000-000000000000")
    assert exc.value.status_code == 404


def test_to_dict_shape(store):
    body = store.create("c2VjcmV0").to_dict()
    assert set(body) == {"id", "encrypted_data", "created_at", "updated_at"}


def test_missing_table_is_storage_failure():
    bare = RecordStore.from_url("sqlite://")
    with pytest.raises(StorageFailure):
        bare.create("c2VjcmV0")
    with pytest.raises(StorageFailure):
        bare.get_by_id("anything")


def test_ping_unreachable_database(tmp_path):
    broken = RecordStore.from_url(f"sqlite:///{tmp_path}/missing/dir/phones.db")
    with pytest.raises(DatabaseConnectionError):
        broken.ping()


def test_ensure_schema_is_idempotent(store):
    store.ensure_schema()
    store.ping()
