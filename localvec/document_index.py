"""
Document catalog on top of LocalIndex.

Each document is split into chunks, each chunk embedded and stored as an
item tagged with its ``documentId`` and character offsets. The catalog
(``catalog.json``) maps caller-chosen URIs to internal document ids; the
document text and metadata are kept in ``<id>.txt`` and ``<id>.json``.

The catalog is part of every update transaction: both snapshots are
copied on begin_update and written together on end_update.
"""

import dataclasses
import json
import logging
import os
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Optional, Union
from urllib.parse import urlparse

from .config import ChunkingConfig
from .document import LocalDocument, LocalDocumentResult
from .errors import (
    DocumentIndexError,
    EmbeddingsError,
    EmbeddingsNotConfiguredError,
    StorageError,
)
from .local_index import LocalIndex, Updating, copy_item
from .providers.base import EmbeddingsModel, Storage, Tokenizer
from .text_splitter import TextSplitter
from .types import (
    DOCUMENT_ID_KEY,
    END_POS_KEY,
    START_POS_KEY,
    DocumentCatalog,
    DocumentCatalogStats,
    IndexData,
    IndexItem,
    MetadataConfig,
    MetadataFilter,
    QueryResult,
    TextChunk,
)

logger = logging.getLogger(__name__)

CATALOG_FILENAME = "catalog.json"

# Chunk metadata the catalog relies on; always kept in the snapshot
CHUNK_KEYS = (DOCUMENT_ID_KEY, START_POS_KEY, END_POS_KEY)


@dataclass
class DocumentUpdating(Updating):
    """An open transaction over both the items and the catalog."""
    catalog: DocumentCatalog = field(default_factory=DocumentCatalog)

    def copy(self) -> "DocumentUpdating":
        return dataclasses.replace(super().copy(), catalog=self.catalog.copy())


def doc_type_from_uri(uri: str) -> Optional[str]:
    """File extension of a URI or path, lowercased, without the dot."""
    path = urlparse(uri).path if "://" in uri else uri
    suffix = PurePosixPath(path).suffix
    return suffix[1:].lower() if suffix else None


class LocalDocumentIndex(LocalIndex):
    """
    A LocalIndex of chunked, embedded documents addressed by URI.

    Args:
        folder_path: Folder holding the index files
        embeddings: Embeddings model; required to add or query documents
        tokenizer: Tokenizer for chunking and rendering; defaults to tiktoken
        chunking_config: ChunkingConfig or mapping of its fields
        storage: Storage backend; defaults to the local filesystem
    """

    def __init__(
        self,
        folder_path: Union[str, os.PathLike],
        embeddings: Optional[EmbeddingsModel] = None,
        tokenizer: Optional[Tokenizer] = None,
        chunking_config: Optional[Union[ChunkingConfig, Mapping[str, Any]]] = None,
        storage: Optional[Storage] = None,
        index_name: str = "index.json",
    ):
        super().__init__(folder_path, index_name=index_name, storage=storage)
        if tokenizer is None:
            from .providers.tokenizers import TiktokenTokenizer
            tokenizer = TiktokenTokenizer()
        if isinstance(chunking_config, Mapping):
            chunking_config = ChunkingConfig(**chunking_config)
        self.embeddings = embeddings
        self.tokenizer = tokenizer
        self.chunking_config = chunking_config or ChunkingConfig()
        self._catalog: Optional[DocumentCatalog] = None
        self._text_cache: dict[str, str] = {}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def create_index(
        self,
        version: int = 1,
        delete_if_exists: bool = False,
        metadata_config: Optional[Union[MetadataConfig, Mapping[str, Any]]] = None,
    ) -> None:
        """Create an empty index and catalog.

        When metadata fields are declared as indexed, the chunk keys
        (documentId, startPos, endPos) are added to them.
        """
        if isinstance(metadata_config, Mapping):
            metadata_config = MetadataConfig.from_dict(metadata_config)
        if metadata_config and metadata_config.indexed:
            indexed = list(metadata_config.indexed)
            indexed += [key for key in CHUNK_KEYS if key not in indexed]
            metadata_config = MetadataConfig(indexed)
        self._catalog = None
        super().create_index(version, delete_if_exists, metadata_config)

    def _write_initial_files(self) -> None:
        self._write_json(CATALOG_FILENAME, DocumentCatalog().to_dict())

    def delete_index(self) -> None:
        self._catalog = None
        super().delete_index()

    def is_catalog_created(self) -> bool:
        return self.storage.path_exists(self._path(CATALOG_FILENAME))

    def _load_catalog(self) -> DocumentCatalog:
        if self._catalog is None:
            self._load()
            if self.is_catalog_created():
                self._catalog = DocumentCatalog.from_dict(self._read_json(CATALOG_FILENAME))
            else:
                catalog = DocumentCatalog()
                self._write_json(CATALOG_FILENAME, catalog.to_dict())
                self._catalog = catalog
                logger.info("Created missing catalog for %s", self.folder_path)
        return self._catalog

    def _current_catalog(self) -> DocumentCatalog:
        if isinstance(self._state, DocumentUpdating):
            return self._state.catalog
        return self._load_catalog()

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def _begin_state(self, data: IndexData) -> DocumentUpdating:
        catalog = self._load_catalog().copy()
        base = super()._begin_state(data)
        return DocumentUpdating(working=base.working, catalog=catalog)

    def _save_snapshots(self, state: Updating) -> None:
        super()._save_snapshots(state)
        try:
            self._write_json(CATALOG_FILENAME, state.catalog.to_dict())
        except StorageError:
            # index.json already holds the new items
            self._rollback(super()._restore_snapshots)
            raise

    def _restore_snapshots(self) -> None:
        super()._restore_snapshots()
        self._write_json(CATALOG_FILENAME, self._load_catalog().to_dict())

    def _commit(self, state: Updating) -> None:
        super()._commit(state)
        self._catalog = state.catalog

    # -------------------------------------------------------------------------
    # Catalog lookups
    # -------------------------------------------------------------------------

    def get_document_id(self, uri: str) -> Optional[str]:
        return self._current_catalog().uri_to_id.get(uri)

    def get_document_uri(self, document_id: str) -> Optional[str]:
        return self._current_catalog().id_to_uri.get(document_id)

    def get_catalog_stats(self) -> DocumentCatalogStats:
        catalog = self._current_catalog()
        stats = self.get_index_stats()
        return DocumentCatalogStats(
            version=catalog.version,
            documents=catalog.count,
            chunks=stats.items,
            metadata_config=stats.metadata_config,
        )

    def list_documents(self) -> list[LocalDocumentResult]:
        """Every document with all of its chunks, each scored 1.0."""
        groups: dict[str, list[QueryResult]] = {}
        for item in self._current().items:
            document_id = item.metadata.get(DOCUMENT_ID_KEY)
            if document_id is not None:
                groups.setdefault(document_id, []).append(QueryResult(copy_item(item), 1.0))
        return self._results(groups)

    def _results(self, groups: dict[str, list[QueryResult]]) -> list[LocalDocumentResult]:
        id_to_uri = self._current_catalog().id_to_uri
        results = []
        for document_id, chunks in groups.items():
            uri = id_to_uri.get(document_id)
            if uri is None:
                logger.warning("Chunks for uncatalogued document %s", document_id)
                continue
            results.append(LocalDocumentResult(self, document_id, uri, chunks))
        return results

    # -------------------------------------------------------------------------
    # Embeddings
    # -------------------------------------------------------------------------

    def _require_embeddings(self) -> EmbeddingsModel:
        if self.embeddings is None:
            raise EmbeddingsNotConfiguredError()
        return self.embeddings

    def _create_embeddings(self, inputs: list[str]) -> list[list[float]]:
        embeddings = self._require_embeddings()
        try:
            response = embeddings.create_embeddings(inputs)
        except Exception as e:
            raise EmbeddingsError(f"Error generating embeddings: {e}") from e
        if response.status != "success":
            raise EmbeddingsError(
                f"Error generating embeddings: {response.message or response.status}",
                status=response.status,
            )
        output = response.output or []
        if len(output) != len(inputs):
            raise EmbeddingsError(
                f"Error generating embeddings: expected {len(inputs)} vectors, got {len(output)}"
            )
        return output

    def _embed_chunks(self, chunks: list[TextChunk]) -> list[list[float]]:
        """Embed chunk texts in batches that fit the model's max_tokens."""
        max_tokens = self._require_embeddings().max_tokens
        batches: list[list[str]] = []
        batch: list[str] = []
        batch_tokens = 0
        for chunk in chunks:
            if batch and batch_tokens + len(chunk.tokens) > max_tokens:
                batches.append(batch)
                batch, batch_tokens = [], 0
            batch.append(chunk.text.replace("\n", " "))
            batch_tokens += len(chunk.tokens)
        if batch:
            batches.append(batch)

        vectors: list[list[float]] = []
        for batch in batches:
            vectors.extend(self._create_embeddings(batch))
        logger.debug("Embedded %d chunks in %d calls", len(chunks), len(batches))
        return vectors

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    def _remove_chunks(self, state: Updating, document_id: str) -> None:
        chunk_ids = [
            item.id for item in state.working.items
            if item.metadata.get(DOCUMENT_ID_KEY) == document_id
        ]
        for chunk_id in chunk_ids:
            self._remove_item(state, chunk_id)

    def upsert_document(
        self,
        uri: str,
        text: str,
        doc_type: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> LocalDocument:
        """
        Add a document, replacing any document with the same URI.

        The text is chunked and embedded before anything is changed, so an
        embeddings failure leaves the index as it was.

        Args:
            uri: Caller-chosen document address
            text: Document text
            doc_type: Picks chunking separators; defaults to the URI's extension
            metadata: Stored with the document and copied onto every chunk

        Raises:
            EmbeddingsNotConfiguredError: If no embeddings model is set
            EmbeddingsError: If embedding the chunks failed
            DocumentIndexError: If updating the index failed
        """
        self._require_embeddings()
        document_id = self.get_document_id(uri) or str(uuid.uuid4())

        config = self.chunking_config
        splitter = TextSplitter(
            separators=config.separators,
            keep_separators=config.keep_separators,
            chunk_size=config.chunk_size,
            chunk_overlap=config.chunk_overlap,
            tokenizer=self.tokenizer,
            doc_type=doc_type or doc_type_from_uri(uri),
        )
        chunks = splitter.split(text)
        vectors = self._embed_chunks(chunks)

        try:
            with self._auto_update() as state:
                self._remove_chunks(state, document_id)
                for chunk, vector in zip(chunks, vectors):
                    chunk_metadata = dict(metadata or {})
                    chunk_metadata.update({
                        DOCUMENT_ID_KEY: document_id,
                        START_POS_KEY: chunk.start_pos,
                        END_POS_KEY: chunk.end_pos,
                    })
                    self._add_item({"vector": vector, "metadata": chunk_metadata}, unique=True)
                state.stage_write(f"{document_id}.txt", text)
                if metadata:
                    state.stage_write(f"{document_id}.json", json.dumps(metadata))
                else:
                    state.stage_delete(f"{document_id}.json")
                state.catalog.add(uri, document_id)
        except Exception as e:
            raise DocumentIndexError(uri, e) from e

        logger.info("Upserted document %s (%d chunks)", uri, len(chunks))
        return LocalDocument(self, document_id, uri)

    def delete_document(self, uri: str) -> None:
        """
        Delete a document, its chunks and its files. Unknown URIs are ignored.

        Failing to delete the metadata file is logged and ignored; any other
        failure leaves the index and catalog unchanged.

        Raises:
            DocumentIndexError: If the deletion failed
        """
        document_id = self.get_document_id(uri)
        if document_id is None:
            return
        try:
            with self._auto_update() as state:
                self._remove_chunks(state, document_id)
                state.stage_delete(f"{document_id}.txt", required=True)
                state.stage_delete(f"{document_id}.json")
                state.catalog.remove(uri)
        except Exception as e:
            raise DocumentIndexError(uri, e) from e
        logger.info("Deleted document %s", uri)

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
        self._text_cache = {}
        try:
            return super().query_items(vector, top_k, filter, query=query, is_bm25=is_bm25)
        finally:
            self._text_cache = {}

    def _item_text(self, item: IndexItem) -> Optional[str]:
        """The chunk's span of its document's text."""
        document_id = item.metadata.get(DOCUMENT_ID_KEY)
        if document_id is None:
            return super()._item_text(item)
        if document_id not in self._text_cache:
            self._text_cache[document_id] = self._read_staged_text(f"{document_id}.txt")
        text = self._text_cache[document_id]
        return text[item.metadata[START_POS_KEY]:item.metadata[END_POS_KEY] + 1]

    def query_documents(
        self,
        query: str,
        max_documents: int = 10,
        max_chunks: int = 50,
        filter: Optional[MetadataFilter] = None,
        is_bm25: bool = False,
    ) -> list[LocalDocumentResult]:
        """
        Find the documents whose chunks best match a query.

        Args:
            query: Query text
            max_documents: Maximum number of documents to return
            max_chunks: Maximum number of chunks to retrieve
            filter: Metadata filter applied to chunks
            is_bm25: Add keyword (BM25) chunk matches to the semantic ones

        Returns:
            Documents sorted by descending score, the mean of their chunk scores

        Raises:
            EmbeddingsNotConfiguredError: If no embeddings model is set
            EmbeddingsError: If embedding the query failed
        """
        self._require_embeddings()
        single_line = query.replace("\n", " ")
        vector = self._create_embeddings([single_line])[0]
        hits = self.query_items(vector, max_chunks, filter, query=single_line, is_bm25=is_bm25)

        groups: dict[str, list[QueryResult]] = {}
        for hit in hits:
            document_id = hit.item.metadata.get(DOCUMENT_ID_KEY)
            if document_id is not None:
                groups.setdefault(document_id, []).append(hit)

        results = self._results(groups)
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:max_documents]
