"""
File-backed vector index.

The whole index lives in ``<folder>/index.json`` and is loaded into memory
on first use. Mutations happen inside an update transaction: a private
working copy of the snapshot that is written back by ``end_update`` or
discarded by ``cancel_update``. At most one transaction may be open at a
time, and single-item calls made outside one open their own.

Usage:
    index = LocalIndex("./my-index")
    index.create_index()
    index.insert_item({"vector": [0.1, 0.2, 0.3], "metadata": {"kind": "a"}})

    with index.update():
        for item in items:
            index.insert_item(item)

    results = index.query_items([0.1, 0.2, 0.3], top_k=5, filter={"kind": "a"})
"""

import copy
import dataclasses
import json
import logging
import os
import uuid
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from .bm25 import BM25Index
from .errors import (
    DuplicateItemError,
    IndexCreationError,
    IndexExistsError,
    IndexNotFoundError,
    NoTransactionError,
    StorageError,
    TransactionInProgressError,
    ValidationError,
)
from .providers.base import Storage
from .providers.storage import LocalFileStorage, ensure_folder_exists, try_delete_file
from .selector import normalize, normalized_cosine_similarity, select
from .types import (
    IS_BM25_KEY,
    IndexData,
    IndexItem,
    IndexStats,
    MetadataConfig,
    MetadataFilter,
    QueryResult,
)

logger = logging.getLogger(__name__)

ItemInput = Union[IndexItem, Mapping[str, Any]]


# -----------------------------------------------------------------------------
# Transaction state
# -----------------------------------------------------------------------------

@dataclass
class Idle:
    """No transaction is open."""


@dataclass
class Updating:
    """
    An open transaction.

    ``working`` is owned by the transaction. File writes and deletions are
    staged by name (relative to the index folder) and applied on commit.
    Required deletions abort the commit when they fail; optional ones are
    logged and skipped.
    """
    working: IndexData
    pending_writes: dict[str, str] = field(default_factory=dict)
    required_deletes: list[str] = field(default_factory=list)
    optional_deletes: list[str] = field(default_factory=list)

    def copy(self) -> "Updating":
        """Savepoint: a copy that later changes to this state do not affect."""
        return dataclasses.replace(
            self,
            working=dataclasses.replace(self.working, items=list(self.working.items)),
            pending_writes=dict(self.pending_writes),
            required_deletes=list(self.required_deletes),
            optional_deletes=list(self.optional_deletes),
        )

    def stage_write(self, name: str, content: str) -> None:
        self.pending_writes[name] = content
        for pending in (self.required_deletes, self.optional_deletes):
            if name in pending:
                pending.remove(name)

    def stage_delete(self, name: str, required: bool = False) -> None:
        self.pending_writes.pop(name, None)
        target = self.required_deletes if required else self.optional_deletes
        if name not in target:
            target.append(name)


def copy_item(item: IndexItem) -> IndexItem:
    return dataclasses.replace(item, vector=list(item.vector), metadata=dict(item.metadata))


class LocalIndex:
    """
    A vector index stored as JSON files in a folder.

    Args:
        folder_path: Folder holding the index files
        index_name: File name of the snapshot inside the folder
        storage: Storage backend; defaults to the local filesystem
    """

    def __init__(
        self,
        folder_path: Union[str, os.PathLike],
        index_name: str = "index.json",
        storage: Optional[Storage] = None,
    ):
        self.folder_path = os.fspath(folder_path)
        self.index_name = index_name
        self.storage: Storage = storage or LocalFileStorage()
        self._data: Optional[IndexData] = None
        self._state: Union[Idle, Updating] = Idle()

    # -------------------------------------------------------------------------
    # File helpers
    # -------------------------------------------------------------------------

    def _path(self, name: str) -> str:
        return os.path.join(self.folder_path, name)

    def _read_text(self, name: str) -> str:
        try:
            return self.storage.read_file(self._path(name)).decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Error reading {self._path(name)}: {e}") from e

    def _read_json(self, name: str) -> Any:
        text = self._read_text(name)
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise StorageError(f"Error parsing {self._path(name)}: {e}") from e

    def _read_staged_text(self, name: str) -> str:
        """Read a file, seeing writes staged by the open transaction."""
        state = self._state
        if isinstance(state, Updating) and name in state.pending_writes:
            return state.pending_writes[name]
        return self._read_text(name)

    def _staged_file_exists(self, name: str) -> bool:
        state = self._state
        if isinstance(state, Updating):
            if name in state.pending_writes:
                return True
            if name in state.required_deletes or name in state.optional_deletes:
                return False
        return self.storage.path_exists(self._path(name))

    def _write_json(self, name: str, data: Any) -> None:
        try:
            self.storage.upsert_file(self._path(name), json.dumps(data))
        except OSError as e:
            raise StorageError(f"Error saving {self._path(name)}: {e}") from e

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def is_index_created(self) -> bool:
        return self.storage.path_exists(self._path(self.index_name))

    def create_index(
        self,
        version: int = 1,
        delete_if_exists: bool = False,
        metadata_config: Optional[Union[MetadataConfig, Mapping[str, Any]]] = None,
    ) -> None:
        """
        Create an empty index in the folder.

        Raises:
            IndexExistsError: If the index exists and delete_if_exists is False
            IndexCreationError: If writing failed; partial files are removed
        """
        if self.is_index_created():
            if not delete_if_exists:
                raise IndexExistsError(self.folder_path)
            self.delete_index()

        if isinstance(metadata_config, Mapping):
            metadata_config = MetadataConfig.from_dict(metadata_config)
        data = IndexData(version=version, metadata_config=metadata_config or MetadataConfig())

        try:
            ensure_folder_exists(self.storage, self.folder_path)
            self._write_json(self.index_name, data.to_dict())
            self._write_initial_files()
        except Exception as e:
            self._data = None
            self._state = Idle()
            try:
                self.storage.delete_folder(self.folder_path)
            except OSError as cleanup_error:
                logger.warning("Failed to remove partial index %s: %s", self.folder_path, cleanup_error)
            raise IndexCreationError(f"Error creating index: {e}") from e

        self._data = data
        self._state = Idle()
        logger.info("Created index %s", self.folder_path)

    def _write_initial_files(self) -> None:
        """Write any extra files a new index needs."""

    def delete_index(self) -> None:
        """Delete the index folder and everything in it."""
        self._data = None
        self._state = Idle()
        try:
            self.storage.delete_folder(self.folder_path)
        except OSError as e:
            raise StorageError(f"Error deleting index {self.folder_path}: {e}") from e
        logger.info("Deleted index %s", self.folder_path)

    def _load(self) -> IndexData:
        if self._data is None:
            if not self.is_index_created():
                raise IndexNotFoundError(self._path(self.index_name))
            self._data = IndexData.from_dict(self._read_json(self.index_name))
        return self._data

    def _current(self) -> IndexData:
        """The working copy while updating, else the committed snapshot."""
        if isinstance(self._state, Updating):
            return self._state.working
        return self._load()

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def _begin_state(self, data: IndexData) -> Updating:
        return Updating(working=copy.deepcopy(data))

    def _require_update(self) -> Updating:
        if not isinstance(self._state, Updating):
            raise NoTransactionError()
        return self._state

    def begin_update(self) -> None:
        """
        Open a transaction on a private copy of the index.

        Raises:
            TransactionInProgressError: If a transaction is already open
        """
        if isinstance(self._state, Updating):
            raise TransactionInProgressError()
        self._state = self._begin_state(self._load())
        logger.debug("Begin update: %s", self.folder_path)

    def cancel_update(self) -> None:
        """Discard the open transaction. Persisted files are untouched."""
        self._require_update()
        self._state = Idle()
        logger.debug("Cancel update: %s", self.folder_path)

    def end_update(self) -> None:
        """
        Commit the open transaction.

        If writing fails, the transaction stays open with its working copy
        intact; call end_update() again to retry or cancel_update() to
        give up.

        Raises:
            NoTransactionError: If no transaction is open
            StorageError: If a write or a required deletion failed
        """
        state = self._require_update()
        self._persist_update(state)
        self._commit(state)
        self._state = Idle()
        logger.debug("End update: %s (%d items)", self.folder_path, len(state.working.items))

    def _persist_update(self, state: Updating) -> None:
        """
        Apply a transaction to storage.

        Order: staged files, snapshots, then deletions. Nothing is deleted
        until every snapshot is saved; a failed required deletion puts the
        previously committed snapshots back.
        """
        try:
            for name, content in state.pending_writes.items():
                self.storage.upsert_file(self._path(name), content)
        except OSError as e:
            raise StorageError(f"Error saving index: {e}") from e

        self._save_snapshots(state)

        try:
            for name in state.required_deletes:
                path = self._path(name)
                if self.storage.path_exists(path):
                    self.storage.delete_file(path)
        except OSError as e:
            self._rollback(self._restore_snapshots)
            raise StorageError(f"Error saving index: {e}") from e
        for name in state.optional_deletes:
            try_delete_file(self.storage, self._path(name))

    def _save_snapshots(self, state: Updating) -> None:
        self._write_json(self.index_name, state.working.to_dict())

    def _restore_snapshots(self) -> None:
        """Write the last committed snapshots back to storage."""
        self._write_json(self.index_name, self._load().to_dict())

    def _rollback(self, restore: Callable[[], None]) -> None:
        try:
            restore()
        except StorageError as e:
            logger.error("Failed to restore committed snapshot in %s: %s", self.folder_path, e)

    def _commit(self, state: Updating) -> None:
        self._data = state.working

    def _restore(self, savepoint: Updating) -> None:
        self._state = savepoint

    @contextmanager
    def update(self) -> Iterator["LocalIndex"]:
        """
        Run a block of mutations as one transaction.

        Cancels on exception; commits when the block exits normally.
        """
        self.begin_update()
        try:
            yield self
        except Exception:
            self.cancel_update()
            raise
        self.end_update()

    @contextmanager
    def _auto_update(self) -> Iterator[Updating]:
        """Join the open transaction, or open and commit one around the block.

        On failure only the block's own changes are undone.
        """
        if isinstance(self._state, Updating):
            savepoint = self._state.copy()
            try:
                yield self._state
            except Exception:
                self._restore(savepoint)
                raise
            return

        self.begin_update()
        try:
            yield self._state
            self.end_update()
        except Exception:
            if isinstance(self._state, Updating):
                self.cancel_update()
            raise

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    def _prepare_item(self, item: ItemInput, state: Updating) -> IndexItem:
        if isinstance(item, IndexItem):
            item_id, vector, metadata = item.id, item.vector, item.metadata
        else:
            item_id, vector, metadata = item.get("id"), item.get("vector"), item.get("metadata")
        if not vector:
            raise ValidationError("item vector is required")

        metadata = dict(metadata or {})
        indexed = state.working.metadata_config.indexed
        metadata_file = None
        if indexed and metadata:
            metadata_file = f"{uuid.uuid4()}.json"
            state.stage_write(metadata_file, json.dumps(metadata))
            metadata = {k: metadata[k] for k in indexed if k in metadata}

        return IndexItem(
            id=item_id or str(uuid.uuid4()),
            vector=list(vector),
            norm=normalize(vector),
            metadata=metadata,
            metadata_file=metadata_file,
        )

    def _add_item(self, item: ItemInput, unique: bool) -> IndexItem:
        state = self._require_update()
        new_item = self._prepare_item(item, state)
        items = state.working.items
        position = next((i for i, it in enumerate(items) if it.id == new_item.id), None)
        if position is None:
            items.append(new_item)
        elif unique:
            raise DuplicateItemError(new_item.id)
        else:
            old = items[position]
            if old.metadata_file:
                state.stage_delete(old.metadata_file)
            items[position] = new_item
        return copy_item(new_item)

    def insert_item(self, item: ItemInput) -> IndexItem:
        """
        Add an item.

        Args:
            item: An IndexItem or a mapping with "vector" and optional
                "id" and "metadata". A missing id gets a UUID.

        Returns:
            The stored item

        Raises:
            ValidationError: If the vector is missing
            DuplicateItemError: If the id is already in use
        """
        with self._auto_update():
            return self._add_item(item, unique=True)

    def upsert_item(self, item: ItemInput) -> IndexItem:
        """Add an item, replacing any item with the same id in place."""
        with self._auto_update():
            return self._add_item(item, unique=False)

    def batch_insert_items(self, items: Iterable[ItemInput]) -> list[IndexItem]:
        """Add several items; if any fails, none of them are added."""
        with self._auto_update():
            return [self._add_item(item, unique=True) for item in items]

    def delete_item(self, id: str) -> None:
        """Delete an item. Unknown ids are ignored."""
        if all(item.id != id for item in self._current().items):
            return
        with self._auto_update() as state:
            self._remove_item(state, id)

    def _remove_item(self, state: Updating, id: str) -> None:
        items = state.working.items
        for i, item in enumerate(items):
            if item.id == id:
                if item.metadata_file:
                    state.stage_delete(item.metadata_file)
                del items[i]
                return

    def get_item(self, id: str) -> Optional[IndexItem]:
        for item in self._current().items:
            if item.id == id:
                return copy_item(item)
        return None

    def list_items(self) -> list[IndexItem]:
        return [copy_item(item) for item in self._current().items]

    def list_items_by_metadata(self, filter: MetadataFilter) -> list[IndexItem]:
        """Items whose indexed metadata matches the filter, in storage order."""
        return [copy_item(item) for item in self._current().items if select(item.metadata, filter)]

    def get_index_stats(self) -> IndexStats:
        data = self._current()
        return IndexStats(
            version=data.version,
            metadata_config=MetadataConfig(list(data.metadata_config.indexed)),
            items=len(data.items),
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def query_items(
        self,
        vector: list[float],
        top_k: int,
        filter: Optional[MetadataFilter] = None,
        *,
        query: Optional[str] = None,
        is_bm25: bool = False,
    ) -> list[QueryResult]:
        """
        Find the items most similar to a vector.

        Args:
            vector: Query vector
            top_k: Maximum number of semantic results
            filter: Metadata filter applied before scoring
            query: Query text, used for keyword matching
            is_bm25: Also return up to top_k keyword (BM25) matches that
                are not among the semantic results. They carry
                ``isBm25: True`` in their metadata and scores scaled to 0..1.

        Returns:
            Results sorted by descending score, semantic results first
        """
        items = self._current().items
        candidates = [item for item in items if select(item.metadata, filter)] if filter else list(items)

        norm = normalize(vector)
        scored = [
            QueryResult(item, normalized_cosine_similarity(vector, norm, item.vector, item.norm))
            for item in candidates
        ]
        # sort is stable, ties keep storage order
        scored.sort(key=lambda r: r.score, reverse=True)
        top = scored[:top_k]
        logger.debug("Query matched %d of %d items", len(candidates), len(items))

        results = [QueryResult(self._with_full_metadata(r.item), r.score) for r in top]
        if is_bm25 and query:
            exclude = {r.item.id for r in top}
            results.extend(self._keyword_results(query, candidates, exclude, top_k))
        return results

    def _keyword_results(
        self, query: str, candidates: list[IndexItem], exclude: set[str], top_k: int
    ) -> list[QueryResult]:
        docs = []
        for item in candidates:
            if item.id in exclude:
                continue
            text = self._item_text(item)
            if text:
                docs.append((item.id, text))
        if not docs:
            return []

        bm25 = BM25Index()
        bm25.build_index(docs)
        hits = bm25.search(query, top_k)
        if not hits:
            return []

        by_id = {item.id: item for item in candidates}
        best = hits[0][1]
        results = []
        for item_id, score in hits:
            item = self._with_full_metadata(by_id[item_id])
            item.metadata[IS_BM25_KEY] = True
            results.append(QueryResult(item, score / best))
        return results

    def _item_text(self, item: IndexItem) -> Optional[str]:
        """Text used for keyword matching: the item's "text" metadata, if any."""
        text = item.metadata.get("text")
        return text if isinstance(text, str) else None

    def _with_full_metadata(self, item: IndexItem) -> IndexItem:
        """A copy of the item with side-file metadata loaded."""
        result = copy_item(item)
        if not item.metadata_file:
            return result
        content = self._read_staged_text(item.metadata_file)
        try:
            result.metadata = json.loads(content)
        except json.JSONDecodeError as e:
            raise StorageError(f"Error parsing {self._path(item.metadata_file)}: {e}") from e
        return result
