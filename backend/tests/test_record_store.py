import json
import threading

import pytest

from record_store import (
    CollectionNotFound,
    DatasetError,
    JsonRecordStore,
    RecordConflict,
    RecordNotFound,
    RecordStoreError,
)


@pytest.fixture
def store(db_path):
    return JsonRecordStore(str(db_path))


def test_collections_lists_array_keys(store):
    assert store.collections() == ["orders", "products"]


def test_missing_file_starts_empty(tmp_path):
    store = JsonRecordStore(str(tmp_path / "absent.json"))
    assert store.collections() == []
    with pytest.raises(CollectionNotFound):
        store.list("orders")


def test_ids_are_matched_as_strings(store):
    assert store.get("products", "2")["name"] == "Crochet Bucket Hat"
    with pytest.raises(RecordNotFound):
        store.get("products", "99")


def test_create_assigns_next_numeric_id(store, db_path):
    record = store.create("products", {"name": "Mittens"})

    assert record["id"] == 3
    saved = json.loads(db_path.read_text(encoding="utf-8"))
    assert saved["products"][-1] == {"name": "Mittens", "id": 3}


def test_create_keeps_explicit_id_and_rejects_duplicates(store):
    assert store.create("orders", {"id": "ord-1"})["id"] == "ord-1"
    with pytest.raises(RecordConflict):
        store.create("orders", {"id": "ord-1"})


def test_update_preserves_id(store):
    record = store.update("products", "1", {"id": 500, "name": "Throw"})
    assert record == {"id": 1, "name": "Throw"}


def test_patch_merges_fields(store):
    record = store.update("products", "1", {"price": 4000}, merge=True)
    assert record == {"id": 1, "name": "Chunky Knit Throw", "price": 4000}


def test_delete_removes_record(store):
    store.delete("products", "1")
    assert [record["id"] for record in store.list("products")] == [2]
    with pytest.raises(RecordNotFound):
        store.delete("products", "1")


def test_non_object_payload_is_rejected(store):
    with pytest.raises(RecordStoreError):
        store.create("products", "not a record")


def test_invalid_dataset_is_reported(tmp_path):
    path = tmp_path / "db.json"
    path.write_text("[]", encoding="utf-8")
    with pytest.raises(RecordStoreError):
        JsonRecordStore(str(path)).collections()


def test_concurrent_creates_get_unique_ids(store):
    threads = [
        threading.Thread(target=store.create, args=("orders", {"n": index}))
        for index in range(10)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    ids = [record["id"] for record in store.list("orders")]
    assert sorted(ids) == list(range(1, 11))


def test_corrupt_dataset_is_a_dataset_error(tmp_path):
    path = tmp_path / "db.json"
    path.write_text('{"orders": [', encoding="utf-8")
    with pytest.raises(DatasetError):
        JsonRecordStore(str(path)).list("orders")
