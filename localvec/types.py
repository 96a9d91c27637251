"""
Data types for the vector index and the document catalog.

The dict forms produced by ``to_dict`` are the on-disk JSON layout of
``index.json`` and ``catalog.json``; field names there keep their stored
spelling (``metadataFile``, ``uriToId``) so existing folders stay readable.
"""

from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union


MetadataValue = Union[str, int, float, bool]
Metadata = dict[str, MetadataValue]
MetadataFilter = dict[str, Any]

EmbeddingsStatus = Literal["success", "error", "rate_limited", "cancelled"]

# Metadata keys every document chunk carries
DOCUMENT_ID_KEY = "documentId"
START_POS_KEY = "startPos"
END_POS_KEY = "endPos"
IS_BM25_KEY = "isBm25"


@dataclass
class MetadataConfig:
    """Which metadata fields stay in the snapshot for filtering.

    When ``indexed`` is empty, all metadata stays in the snapshot and no
    side files are written.
    """
    indexed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"indexed": list(self.indexed)} if self.indexed else {}

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> "MetadataConfig":
        return cls(indexed=list((d or {}).get("indexed") or []))


@dataclass
class IndexItem:
    """A stored vector plus metadata, identified by a unique id."""
    id: str
    vector: list[float]
    norm: float
    metadata: Metadata = field(default_factory=dict)
    metadata_file: Optional[str] = None

    def to_dict(self) -> dict:
        d = {
            "id": self.id,
            "metadata": dict(self.metadata),
            "vector": list(self.vector),
            "norm": self.norm,
        }
        if self.metadata_file:
            d["metadataFile"] = self.metadata_file
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "IndexItem":
        return cls(
            id=d["id"],
            vector=list(d["vector"]),
            norm=d["norm"],
            metadata=dict(d.get("metadata") or {}),
            metadata_file=d.get("metadataFile"),
        )


@dataclass
class IndexData:
    """The entire on-disk state of an item store."""
    version: int = 1
    metadata_config: MetadataConfig = field(default_factory=MetadataConfig)
    items: list[IndexItem] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "metadata_config": self.metadata_config.to_dict(),
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, d: dict) -> "IndexData":
        return cls(
            version=d.get("version", 1),
            metadata_config=MetadataConfig.from_dict(d.get("metadata_config")),
            items=[IndexItem.from_dict(i) for i in d.get("items", [])],
        )


@dataclass
class IndexStats:
    version: int
    metadata_config: MetadataConfig
    items: int


@dataclass
class QueryResult:
    """An item matched by a query, with its similarity score."""
    item: IndexItem
    score: float


@dataclass
class DocumentCatalog:
    """URI to document id mapping, persisted as ``catalog.json``.

    ``uri_to_id`` and ``id_to_uri`` are exact inverses and ``count`` always
    equals the number of catalogued URIs.
    """
    version: int = 1
    count: int = 0
    uri_to_id: dict[str, str] = field(default_factory=dict)
    id_to_uri: dict[str, str] = field(default_factory=dict)

    def add(self, uri: str, document_id: str) -> None:
        if uri not in self.uri_to_id:
            self.count += 1
        self.uri_to_id[uri] = document_id
        self.id_to_uri[document_id] = uri

    def remove(self, uri: str) -> None:
        document_id = self.uri_to_id.pop(uri, None)
        if document_id is None:
            return
        self.id_to_uri.pop(document_id, None)
        self.count -= 1

    def copy(self) -> "DocumentCatalog":
        return DocumentCatalog(
            version=self.version,
            count=self.count,
            uri_to_id=dict(self.uri_to_id),
            id_to_uri=dict(self.id_to_uri),
        )

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "count": self.count,
            "uriToId": dict(self.uri_to_id),
            "idToUri": dict(self.id_to_uri),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "DocumentCatalog":
        uri_to_id = dict(d.get("uriToId") or {})
        return cls(
            version=d.get("version", 1),
            count=d.get("count", len(uri_to_id)),
            uri_to_id=uri_to_id,
            id_to_uri=dict(d.get("idToUri") or {}),
        )


@dataclass
class DocumentCatalogStats:
    version: int
    documents: int
    chunks: int
    metadata_config: MetadataConfig


@dataclass(frozen=True)
class TextChunk:
    """A splitter output span; offsets are inclusive character positions."""
    text: str
    tokens: list[int]
    start_pos: int
    end_pos: int
    start_overlap: list[int] = field(default_factory=list)
    end_overlap: list[int] = field(default_factory=list)


@dataclass
class DocumentTextSection:
    """A rendered, token-budgeted span of document text."""
    text: str
    token_count: int
    score: float
    is_bm25: bool = False


@dataclass
class EmbeddingsResponse:
    """Result of an embeddings call.

    ``output`` holds one vector per input when ``status`` is "success".
    """
    status: EmbeddingsStatus
    output: Optional[list[list[float]]] = None
    message: Optional[str] = None
    model: Optional[str] = None
    usage: Optional[dict[str, Any]] = None
