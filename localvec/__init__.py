"""
localvec

An embedded, file-backed vector database. A folder on disk holds the whole
index as JSON, loaded into memory and queried by cosine similarity and
Mongo-style metadata filters. A document layer chunks and embeds text,
catalogues it by URI, and renders matches as token-budgeted sections.

Quick Start:
    from localvec import LocalDocumentIndex
    from localvec.providers.embeddings import OpenAIEmbeddings

    index = LocalDocumentIndex("./my-index", embeddings=OpenAIEmbeddings())
    if not index.is_index_created():
        index.create_index()
    index.upsert_document("file:///notes/a.md", text)
    for result in index.query_documents("what did I write about caching?"):
        for section in result.render_sections(max_tokens=500, max_sections=1):
            print(section.text)

CLI Usage:
    localvec create ./my-index
    localvec add ./my-index --uri notes/ --keys openai.toml
    localvec query ./my-index "caching" --keys openai.toml

Environment Variables:
    LOCALVEC_OPENAI_API_KEY  - API key for OpenAI embeddings
    LOCALVEC_VERBOSE         - Set to 1 for debug logging in the CLI
    LOCALVEC_ERROR_LOG       - Override the CLI error log location
"""

from .document import LocalDocument, LocalDocumentResult
from .document_index import LocalDocumentIndex
from .errors import (
    ConflictError,
    DocumentIndexError,
    DuplicateItemError,
    EmbeddingsError,
    EmbeddingsNotConfiguredError,
    IndexCreationError,
    IndexExistsError,
    IndexNotFoundError,
    LocalVecError,
    NoTransactionError,
    StateError,
    StorageError,
    TransactionInProgressError,
    ValidationError,
)
from .local_index import LocalIndex
from .selector import cosine_similarity, normalize, normalized_cosine_similarity, select
from .text_splitter import TextSplitter
from .types import (
    DocumentCatalogStats,
    DocumentTextSection,
    EmbeddingsResponse,
    IndexItem,
    IndexStats,
    MetadataConfig,
    QueryResult,
    TextChunk,
)

__version__ = "0.1.0"
__all__ = [
    "LocalIndex",
    "LocalDocumentIndex",
    "LocalDocument",
    "LocalDocumentResult",
    "TextSplitter",
    "cosine_similarity",
    "normalize",
    "normalized_cosine_similarity",
    "select",
    # Data types
    "DocumentCatalogStats",
    "DocumentTextSection",
    "EmbeddingsResponse",
    "IndexItem",
    "IndexStats",
    "MetadataConfig",
    "QueryResult",
    "TextChunk",
    # Errors
    "LocalVecError",
    "ValidationError",
    "ConflictError",
    "DuplicateItemError",
    "IndexExistsError",
    "TransactionInProgressError",
    "StateError",
    "NoTransactionError",
    "EmbeddingsNotConfiguredError",
    "IndexNotFoundError",
    "StorageError",
    "IndexCreationError",
    "EmbeddingsError",
    "DocumentIndexError",
]
