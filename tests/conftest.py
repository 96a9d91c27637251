"""
Shared pytest fixtures for localvec tests.

Provides mock providers to avoid network calls and BPE downloads during testing.
"""

import os
import re

import pytest

from localvec.local_index import LocalIndex
from localvec.document_index import LocalDocumentIndex
from localvec.providers.storage import LocalFileStorage, VirtualFileStorage
from localvec.types import EmbeddingsResponse


class MockTokenizer:
    """
    Deterministic word-level tokenizer.

    Every run of word characters, every run of whitespace, and every other
    single character is one token, so decode(encode(text)) == text.
    """

    _PIECE_RE = re.compile(r"\w+|\s+|[^\w\s]", re.UNICODE)

    def __init__(self):
        self._ids: dict[str, int] = {}
        self._pieces: list[str] = []

    def encode(self, text: str) -> list[int]:
        tokens = []
        for piece in self._PIECE_RE.findall(text):
            if piece not in self._ids:
                self._ids[piece] = len(self._pieces)
                self._pieces.append(piece)
            tokens.append(self._ids[piece])
        return tokens

    def decode(self, tokens: list[int]) -> str:
        return "".join(self._pieces[t] for t in tokens)


class MockEmbeddings:
    """
    Deterministic bag-of-words embeddings.

    Each distinct lowercase word gets its own dimension the first time it
    is seen, so vectors grow as the vocabulary does. Shorter vectors are
    implicitly zero-padded by the similarity functions, and texts sharing
    words have positive cosine similarity.
    """

    def __init__(self, max_tokens: int = 8000):
        self.max_tokens = max_tokens
        self.calls: list[list[str]] = []
        self.status = "success"
        self.error: Exception | None = None
        self._vocab: dict[str, int] = {}

    def embed(self, text: str) -> list[float]:
        words = re.findall(r"\w+", text.lower())
        for word in words:
            self._vocab.setdefault(word, len(self._vocab))
        vector = [0.0] * max(len(self._vocab), 1)
        for word in words:
            vector[self._vocab[word]] += 1.0
        return vector

    def create_embeddings(self, inputs) -> EmbeddingsResponse:
        if isinstance(inputs, str):
            inputs = [inputs]
        self.calls.append(list(inputs))
        if self.error is not None:
            raise self.error
        if self.status != "success":
            return EmbeddingsResponse(status=self.status, message=f"mock {self.status}")
        return EmbeddingsResponse(
            status="success",
            output=[self.embed(t) for t in inputs],
            model="mock-model",
        )


class FlakyStorage(VirtualFileStorage):
    """Virtual storage that fails writes or deletes for chosen file names."""

    def __init__(self):
        super().__init__()
        self.fail_writes: set[str] = set()
        self.fail_deletes: set[str] = set()

    def upsert_file(self, path, content):
        if os.path.basename(path) in self.fail_writes:
            raise OSError(f"simulated write failure: {path}")
        super().upsert_file(path, content)

    def delete_file(self, path):
        if os.path.basename(path) in self.fail_deletes:
            raise OSError(f"simulated delete failure: {path}")
        super().delete_file(path)


@pytest.fixture
def tokenizer():
    """Create a fresh MockTokenizer instance."""
    return MockTokenizer()


@pytest.fixture
def embeddings():
    """Create a fresh MockEmbeddings instance."""
    return MockEmbeddings()


@pytest.fixture
def storage():
    """In-memory storage."""
    return VirtualFileStorage()


@pytest.fixture
def flaky_storage():
    """In-memory storage with injectable write and delete failures."""
    return FlakyStorage()


@pytest.fixture
def index(storage):
    """An empty LocalIndex in virtual storage."""
    idx = LocalIndex("/indexes/items", storage=storage)
    idx.create_index()
    return idx


@pytest.fixture
def disk_index(tmp_path):
    """An empty LocalIndex on the local filesystem."""
    idx = LocalIndex(tmp_path / "items", storage=LocalFileStorage())
    idx.create_index()
    return idx


@pytest.fixture
def doc_index(storage, embeddings, tokenizer):
    """An empty LocalDocumentIndex with small chunks and mock providers."""
    idx = LocalDocumentIndex(
        "/indexes/docs",
        embeddings=embeddings,
        tokenizer=tokenizer,
        chunking_config={"chunk_size": 20, "chunk_overlap": 0, "keep_separators": True},
        storage=storage,
    )
    idx.create_index()
    return idx
