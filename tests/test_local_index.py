"""Tests for the file-backed item store and its update transactions."""

import json
import math
import os

import pytest

from localvec.errors import (
    DuplicateItemError,
    IndexCreationError,
    IndexExistsError,
    IndexNotFoundError,
    NoTransactionError,
    StorageError,
    TransactionInProgressError,
    ValidationError,
)
from localvec.local_index import LocalIndex
from localvec.types import IS_BM25_KEY, IndexItem


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def ids(items):
    return [item.id for item in items]


def reopen(index):
    """A fresh instance reading only what was persisted."""
    return LocalIndex(index.folder_path, storage=index.storage)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TestLifecycle:
    """Creating, opening and deleting index folders."""

    def test_create(self, index):
        assert index.is_index_created()
        stats = index.get_index_stats()
        assert stats.version == 1
        assert stats.items == 0
        assert stats.metadata_config.indexed == []

    def test_create_with_version_and_config(self, storage):
        idx = LocalIndex("/v2", storage=storage)
        idx.create_index(version=2, metadata_config={"indexed": ["category"]})
        stats = reopen(idx).get_index_stats()
        assert stats.version == 2
        assert stats.metadata_config.indexed == ["category"]

    def test_create_existing_raises(self, index):
        with pytest.raises(IndexExistsError):
            index.create_index()

    def test_create_delete_if_exists(self, index):
        index.insert_item({"id": "a", "vector": [1.0]})
        index.create_index(delete_if_exists=True)
        assert index.list_items() == []
        assert reopen(index).list_items() == []

    def test_create_failure_removes_folder(self, flaky_storage):
        storage = flaky_storage
        storage.fail_writes.add("index.json")
        idx = LocalIndex("/broken", storage=storage)
        with pytest.raises(IndexCreationError):
            idx.create_index()
        assert not storage.path_exists("/broken")

    def test_missing_index(self, storage):
        idx = LocalIndex("/missing", storage=storage)
        assert not idx.is_index_created()
        with pytest.raises(IndexNotFoundError):
            idx.list_items()
        with pytest.raises(IndexNotFoundError):
            idx.begin_update()

    def test_delete_index(self, index, storage):
        index.insert_item({"vector": [1.0, 0.0]})
        index.delete_index()
        assert not index.is_index_created()
        assert not storage.path_exists(index.folder_path)

    def test_on_disk_layout(self, disk_index, tmp_path):
        disk_index.insert_item({"id": "a", "vector": [3.0, 4.0], "metadata": {"k": "v"}})
        data = json.loads((tmp_path / "items" / "index.json").read_text())
        assert data["version"] == 1
        assert data["metadata_config"] == {}
        assert data["items"] == [
            {"id": "a", "metadata": {"k": "v"}, "vector": [3.0, 4.0], "norm": 5.0}
        ]

    def test_persists_across_instances(self, disk_index):
        disk_index.insert_item({"id": "a", "vector": [1.0, 0.0]})
        other = LocalIndex(disk_index.folder_path)
        assert ids(other.list_items()) == ["a"]


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

class TestTransactions:
    """begin_update / end_update / cancel_update."""

    def test_begin_twice_raises(self, index):
        index.begin_update()
        with pytest.raises(TransactionInProgressError):
            index.begin_update()

    def test_end_without_begin(self, index):
        with pytest.raises(NoTransactionError):
            index.end_update()

    def test_cancel_without_begin(self, index):
        with pytest.raises(NoTransactionError):
            index.cancel_update()

    def test_commit(self, index):
        index.begin_update()
        index.insert_item({"id": "a", "vector": [1.0]})
        index.insert_item({"id": "b", "vector": [2.0]})
        assert reopen(index).list_items() == []
        index.end_update()
        assert ids(reopen(index).list_items()) == ["a", "b"]

    def test_reads_see_open_transaction(self, index):
        index.begin_update()
        index.insert_item({"id": "a", "vector": [1.0]})
        assert index.get_item("a") is not None
        assert index.get_index_stats().items == 1
        index.cancel_update()
        assert index.get_item("a") is None

    def test_cancel_discards(self, index):
        index.insert_item({"id": "keep", "vector": [1.0]})
        index.begin_update()
        index.insert_item({"id": "a", "vector": [1.0]})
        index.delete_item("keep")
        index.cancel_update()
        assert ids(index.list_items()) == ["keep"]
        assert ids(reopen(index).list_items()) == ["keep"]

    def test_context_manager_commits(self, index):
        with index.update():
            index.insert_item({"id": "a", "vector": [1.0]})
        assert ids(reopen(index).list_items()) == ["a"]

    def test_context_manager_cancels_on_error(self, index):
        with pytest.raises(RuntimeError):
            with index.update():
                index.insert_item({"id": "a", "vector": [1.0]})
                raise RuntimeError("boom")
        assert index.list_items() == []
        # no transaction left open
        index.begin_update()
        index.cancel_update()

    def test_failed_commit_keeps_transaction_open(self, flaky_storage):
        storage = flaky_storage
        idx = LocalIndex("/idx", storage=storage)
        idx.create_index()
        idx.begin_update()
        idx.insert_item({"id": "a", "vector": [1.0]})

        storage.fail_writes.add("index.json")
        with pytest.raises(StorageError):
            idx.end_update()
        assert idx.get_item("a") is not None
        assert reopen(idx).list_items() == []
        with pytest.raises(TransactionInProgressError):
            idx.begin_update()

        storage.fail_writes.clear()
        idx.end_update()
        assert ids(reopen(idx).list_items()) == ["a"]

    def test_failed_operation_inside_transaction_is_undone_alone(self, index):
        index.begin_update()
        index.insert_item({"id": "x", "vector": [1.0]})
        with pytest.raises(DuplicateItemError):
            index.batch_insert_items([
                {"id": "y", "vector": [1.0]},
                {"id": "x", "vector": [1.0]},
            ])
        assert ids(index.list_items()) == ["x"]
        index.end_update()
        assert ids(reopen(index).list_items()) == ["x"]


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------

class TestItems:
    """Insert, upsert, delete and lookup."""

    def test_insert_assigns_id_and_norm(self, index):
        item = index.insert_item({"vector": [3.0, 4.0]})
        assert item.id
        assert item.norm == pytest.approx(5.0)
        assert item.metadata == {}
        assert index.get_item(item.id) == item

    def test_insert_index_item(self, index):
        item = index.insert_item(IndexItem(id="z", vector=[2.0, 0.0], norm=0.0))
        assert item.id == "z"
        assert item.norm == pytest.approx(2.0)

    def test_insert_requires_vector(self, index):
        with pytest.raises(ValidationError, match="vector"):
            index.insert_item({"id": "a", "metadata": {"k": 1}})
        with pytest.raises(ValidationError):
            index.insert_item({"id": "a", "vector": []})
        assert index.list_items() == []

    def test_insert_duplicate_raises(self, index):
        index.insert_item({"id": "a", "vector": [1.0]})
        with pytest.raises(DuplicateItemError, match="Item with id a already exists"):
            index.insert_item({"id": "a", "vector": [2.0]})
        assert index.get_item("a").vector == [1.0]

    def test_upsert_replaces_in_place(self, index):
        for item_id in ("a", "b", "c"):
            index.insert_item({"id": item_id, "vector": [1.0]})
        index.upsert_item({"id": "b", "vector": [0.0, 2.0], "metadata": {"v": 2}})
        assert ids(index.list_items()) == ["a", "b", "c"]
        assert index.get_item("b").vector == [0.0, 2.0]
        assert index.get_item("b").metadata == {"v": 2}

    def test_upsert_new_appends(self, index):
        index.upsert_item({"id": "a", "vector": [1.0]})
        assert ids(index.list_items()) == ["a"]

    def test_batch_insert(self, index):
        added = index.batch_insert_items([{"id": str(i), "vector": [float(i)]} for i in range(3)])
        assert ids(added) == ["0", "1", "2"]
        assert ids(reopen(index).list_items()) == ["0", "1", "2"]

    def test_batch_insert_is_atomic(self, index):
        index.insert_item({"id": "b", "vector": [1.0]})
        with pytest.raises(DuplicateItemError):
            index.batch_insert_items([
                {"id": "a", "vector": [1.0]},
                {"id": "b", "vector": [1.0]},
                {"id": "c", "vector": [1.0]},
            ])
        assert ids(index.list_items()) == ["b"]
        assert ids(reopen(index).list_items()) == ["b"]

    def test_delete(self, index):
        index.insert_item({"id": "a", "vector": [1.0]})
        index.insert_item({"id": "b", "vector": [1.0]})
        index.delete_item("a")
        assert ids(index.list_items()) == ["b"]
        assert ids(reopen(index).list_items()) == ["b"]

    def test_delete_unknown_is_noop(self, index):
        index.insert_item({"id": "a", "vector": [1.0]})
        index.delete_item("nope")
        assert ids(index.list_items()) == ["a"]

    def test_get_unknown(self, index):
        assert index.get_item("nope") is None

    def test_returned_items_are_copies(self, index):
        index.insert_item({"id": "a", "vector": [1.0], "metadata": {"k": "v"}})
        item = index.get_item("a")
        item.metadata["k"] = "changed"
        item.vector.append(9.0)
        assert index.get_item("a").metadata == {"k": "v"}
        assert index.get_item("a").vector == [1.0]

    def test_list_items_by_metadata(self, index):
        categories = {"1": "a", "2": "b", "3": "c", "4": "d", "5": "a"}
        for item_id, category in categories.items():
            index.insert_item({"id": item_id, "vector": [1.0], "metadata": {"category": category}})
        matched = index.list_items_by_metadata({"category": {"$in": ["a", "b"]}})
        assert ids(matched) == ["1", "2", "5"]

    def test_list_items_by_metadata_bad_operator(self, index):
        index.insert_item({"id": "a", "vector": [1.0], "metadata": {"category": "a"}})
        with pytest.raises(ValidationError):
            index.list_items_by_metadata({"category": {"$like": "a"}})


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

class TestQuery:
    """Similarity ranking and filtering."""

    @pytest.fixture
    def axes(self, index):
        index.batch_insert_items([
            {"id": "x", "vector": [1.0, 0.0, 0.0], "metadata": {"axis": "x", "n": 1}},
            {"id": "y", "vector": [0.0, 1.0, 0.0], "metadata": {"axis": "y", "n": 2}},
            {"id": "z", "vector": [0.0, 0.0, 1.0], "metadata": {"axis": "z", "n": 3}},
        ])
        return index

    def test_best_match(self, axes):
        results = axes.query_items([0.0, 0.0, 1.0], top_k=1)
        assert len(results) == 1
        assert results[0].item.id == "z"
        assert results[0].score == pytest.approx(1.0)

    def test_sorted_descending(self, axes):
        results = axes.query_items([0.1, 0.5, 1.0], top_k=3)
        assert ids(r.item for r in results) == ["z", "y", "x"]
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)

    def test_top_k_larger_than_index(self, axes):
        assert len(axes.query_items([1.0, 0.0, 0.0], top_k=10)) == 3

    def test_filter(self, axes):
        results = axes.query_items([0.0, 0.0, 1.0], top_k=3, filter={"n": {"$lt": 3}})
        assert sorted(r.item.id for r in results) == ["x", "y"]

    def test_overlapping_vectors_ranked(self, index):
        index.batch_insert_items([
            {"id": "a", "vector": [1.0, 2.0, 3.0]},
            {"id": "b", "vector": [2.0, 3.0, 4.0]},
            {"id": "c", "vector": [3.0, 4.0, 5.0]},
        ])
        results = index.query_items([0.0, 0.0, 1.0], top_k=3)
        assert ids(r.item for r in results) == ["a", "b", "c"]
        assert results[0].score == pytest.approx(3 / math.sqrt(14))

    def test_list_by_metadata_in_storage_order(self, index):
        categories = ["food", "food", "electronics", "drink", "food"]
        for i, category in enumerate(categories, start=1):
            index.insert_item({"id": str(i), "vector": [1.0, 0.0], "metadata": {"category": category}})
        matches = index.list_items_by_metadata({"category": {"$eq": "food"}})
        assert ids(matches) == ["1", "2", "5"]

    def test_ties_keep_storage_order(self, index):
        for item_id in ("first", "second", "third"):
            index.insert_item({"id": item_id, "vector": [1.0, 1.0]})
        results = index.query_items([1.0, 1.0], top_k=3)
        assert ids(r.item for r in results) == ["first", "second", "third"]

    def test_zero_query_vector(self, axes):
        results = axes.query_items([0.0, 0.0, 0.0], top_k=3)
        assert [r.score for r in results] == [0.0, 0.0, 0.0]

    def test_empty_index(self, index):
        assert index.query_items([1.0], top_k=5) == []


class TestKeywordQuery:
    """BM25 matches added to semantic results."""

    @pytest.fixture
    def texts(self, index):
        index.batch_insert_items([
            {"id": "1", "vector": [1.0, 0.0], "metadata": {"text": "apples and oranges"}},
            {"id": "2", "vector": [0.0, 1.0], "metadata": {"text": "the quick brown fox"}},
            {"id": "3", "vector": [0.1, 1.0], "metadata": {"text": "lazy dog sleeping"}},
        ])
        return index

    def test_keyword_hits_appended(self, texts):
        results = texts.query_items([1.0, 0.0], top_k=1, query="brown fox", is_bm25=True)
        assert ids(r.item for r in results) == ["1", "2"]
        assert IS_BM25_KEY not in results[0].item.metadata
        assert results[1].item.metadata[IS_BM25_KEY] is True
        assert results[1].score == pytest.approx(1.0)

    def test_keyword_hits_do_not_repeat_semantic_results(self, texts):
        results = texts.query_items([0.0, 1.0], top_k=1, query="brown fox", is_bm25=True)
        assert ids(r.item for r in results) == ["2"]

    def test_keyword_flag_not_stored(self, texts):
        texts.query_items([1.0, 0.0], top_k=1, query="brown fox", is_bm25=True)
        assert IS_BM25_KEY not in texts.get_item("2").metadata

    def test_disabled_by_default(self, texts):
        results = texts.query_items([1.0, 0.0], top_k=1, query="brown fox")
        assert ids(r.item for r in results) == ["1"]

    def test_keyword_hits_respect_filter(self, texts):
        results = texts.query_items(
            [1.0, 0.0], top_k=1, filter={"text": {"$ne": "the quick brown fox"}},
            query="brown fox", is_bm25=True,
        )
        assert ids(r.item for r in results) == ["1"]


# ---------------------------------------------------------------------------
# Indexed metadata
# ---------------------------------------------------------------------------

class TestIndexedMetadata:
    """Non-indexed metadata moves to a side file per item."""

    @pytest.fixture
    def indexed(self, storage):
        idx = LocalIndex("/indexed", storage=storage)
        idx.create_index(metadata_config={"indexed": ["category"]})
        return idx

    def test_snapshot_keeps_only_indexed_fields(self, indexed, storage):
        indexed.insert_item({"id": "a", "vector": [1.0], "metadata": {"category": "x", "body": "long"}})
        item = indexed.get_item("a")
        assert item.metadata == {"category": "x"}
        assert item.metadata_file.endswith(".json")
        side = json.loads(storage.read_file(os.path.join("/indexed", item.metadata_file)))
        assert side == {"category": "x", "body": "long"}

    def test_query_loads_full_metadata(self, indexed):
        indexed.insert_item({"id": "a", "vector": [1.0], "metadata": {"category": "x", "body": "long"}})
        result = indexed.query_items([1.0], top_k=1, filter={"category": "x"})[0]
        assert result.item.metadata == {"category": "x", "body": "long"}

    def test_filter_on_non_indexed_field_fails(self, indexed):
        indexed.insert_item({"id": "a", "vector": [1.0], "metadata": {"category": "x", "body": "long"}})
        assert indexed.query_items([1.0], top_k=1, filter={"body": "long"}) == []

    def test_no_side_file_without_metadata(self, indexed):
        item = indexed.insert_item({"id": "a", "vector": [1.0]})
        assert item.metadata_file is None

    def test_side_file_written_on_commit(self, indexed, storage):
        indexed.begin_update()
        item = indexed.insert_item({"id": "a", "vector": [1.0], "metadata": {"category": "x", "body": "b"}})
        path = os.path.join("/indexed", item.metadata_file)
        assert not storage.path_exists(path)
        # reads inside the transaction see the staged file
        assert indexed.query_items([1.0], top_k=1)[0].item.metadata["body"] == "b"
        indexed.end_update()
        assert storage.path_exists(path)

    def test_cancel_discards_side_file(self, indexed, storage):
        indexed.begin_update()
        item = indexed.insert_item({"id": "a", "vector": [1.0], "metadata": {"category": "x"}})
        indexed.cancel_update()
        assert not storage.path_exists(os.path.join("/indexed", item.metadata_file))

    def test_delete_removes_side_file(self, indexed, storage):
        item = indexed.insert_item({"id": "a", "vector": [1.0], "metadata": {"category": "x"}})
        indexed.delete_item("a")
        assert not storage.path_exists(os.path.join("/indexed", item.metadata_file))

    def test_upsert_replaces_side_file(self, indexed, storage):
        old = indexed.insert_item({"id": "a", "vector": [1.0], "metadata": {"category": "x"}})
        new = indexed.upsert_item({"id": "a", "vector": [1.0], "metadata": {"category": "y"}})
        assert old.metadata_file != new.metadata_file
        assert not storage.path_exists(os.path.join("/indexed", old.metadata_file))
        assert storage.path_exists(os.path.join("/indexed", new.metadata_file))

    def test_corrupt_side_file(self, indexed, storage):
        item = indexed.insert_item({"id": "a", "vector": [1.0], "metadata": {"category": "x"}})
        storage.upsert_file(os.path.join("/indexed", item.metadata_file), "{not json")
        with pytest.raises(StorageError):
            indexed.query_items([1.0], top_k=1)
