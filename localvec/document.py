"""
Documents stored in a LocalDocumentIndex, and query results over them.

A document's text and metadata live in ``<id>.txt`` and ``<id>.json``
next to the index and are loaded lazily on first access.
"""

import json
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from .errors import StorageError, ValidationError
from .types import END_POS_KEY, IS_BM25_KEY, START_POS_KEY, DocumentTextSection, QueryResult

if TYPE_CHECKING:
    from .document_index import LocalDocumentIndex

# Texts longer than this are measured by estimate instead of tokenized
EXACT_LENGTH_MAX_CHARS = 40000
CHARS_PER_TOKEN_ESTIMATE = 4

SECTION_CONNECTOR = "\n\n...\n\n"
# Minimum leftover budget before surrounding text is added to a section
MIN_OVERLAP_BUDGET = 40
# Characters read around a section per token of leftover budget
CHARS_PER_OVERLAP_TOKEN = 8


class LocalDocument:
    """A document in a LocalDocumentIndex."""

    def __init__(self, index: "LocalDocumentIndex", id: str, uri: str):
        self._index = index
        self.id = id
        self.uri = uri
        self._text: Optional[str] = None
        self._metadata: Optional[dict[str, Any]] = None
        self._length: Optional[int] = None

    @property
    def folder_path(self) -> str:
        return self._index.folder_path

    @property
    def _text_file(self) -> str:
        return f"{self.id}.txt"

    @property
    def _metadata_file(self) -> str:
        return f"{self.id}.json"

    def get_length(self) -> int:
        """Length in tokens; estimated for very long texts."""
        if self._length is None:
            text = self.load_text()
            if len(text) <= EXACT_LENGTH_MAX_CHARS:
                self._length = len(self._index.tokenizer.encode(text))
            else:
                self._length = math.ceil(len(text) / CHARS_PER_TOKEN_ESTIMATE)
        return self._length

    def has_metadata(self) -> bool:
        return self._index._staged_file_exists(self._metadata_file)

    def load_metadata(self) -> dict[str, Any]:
        """
        Load the document's metadata, or {} if it has none.

        Raises:
            StorageError: If the metadata file can't be read
            ValidationError: If the metadata file isn't valid JSON
        """
        if self._metadata is None:
            if not self.has_metadata():
                self._metadata = {}
                return self._metadata
            try:
                content = self._index._read_staged_text(self._metadata_file)
            except StorageError as e:
                raise StorageError(f"Error reading metadata file for document {self.uri}: {e}") from e
            try:
                self._metadata = json.loads(content)
            except json.JSONDecodeError as e:
                raise ValidationError(f"Error parsing metadata for document {self.uri}: {e}") from e
        return self._metadata

    def load_text(self) -> str:
        """
        Load the document's text.

        Raises:
            StorageError: If the text file can't be read
        """
        if self._text is None:
            try:
                self._text = self._index._read_staged_text(self._text_file)
            except StorageError as e:
                raise StorageError(f"Error reading text file for document {self.uri}: {e}") from e
        return self._text


# -----------------------------------------------------------------------------
# Query results
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class _Span:
    """A chunk re-sliced from the document text."""
    start_pos: int
    end_pos: int
    text: str
    token_count: int
    score: float
    is_bm25: bool = False


@dataclass(frozen=True)
class _Section:
    spans: tuple[_Span, ...]

    @property
    def token_count(self) -> int:
        return sum(s.token_count for s in self.spans)

    @property
    def score(self) -> float:
        return sum(s.score for s in self.spans) / len(self.spans)

    def add(self, span: _Span) -> "_Section":
        return _Section(self.spans + (span,))


def _pack(spans: list[_Span], max_tokens: int) -> list[_Section]:
    """Greedily group consecutive spans into sections within the budget."""
    sections: list[_Section] = []
    for span in spans:
        if sections and sections[-1].token_count + span.token_count <= max_tokens:
            sections[-1] = sections[-1].add(span)
        else:
            sections.append(_Section((span,)))
    return sections


def _adjacent_runs(spans: tuple[_Span, ...]) -> list[list[_Span]]:
    runs: list[list[_Span]] = []
    for span in spans:
        if runs and runs[-1][-1].end_pos + 1 == span.start_pos:
            runs[-1].append(span)
        else:
            runs.append([span])
    return runs


class LocalDocumentResult(LocalDocument):
    """
    A document matched by a query, with the chunks that matched.

    ``score`` is the mean of the chunk scores.
    """

    def __init__(self, index: "LocalDocumentIndex", id: str, uri: str, chunks: list[QueryResult]):
        super().__init__(index, id, uri)
        self.chunks = chunks
        self.score = sum(c.score for c in chunks) / len(chunks) if chunks else 0.0

    def _spans(self, text: str) -> list[_Span]:
        tokenizer = self._index.tokenizer
        spans = []
        for chunk in self.chunks:
            metadata = chunk.item.metadata
            start, end = metadata[START_POS_KEY], metadata[END_POS_KEY]
            span_text = text[start:end + 1]
            spans.append(_Span(
                start_pos=start,
                end_pos=end,
                text=span_text,
                token_count=len(tokenizer.encode(span_text)),
                score=chunk.score,
                is_bm25=bool(metadata.get(IS_BM25_KEY, False)),
            ))
        spans.sort(key=lambda s: s.start_pos)
        return spans

    def render_all_sections(self, max_tokens: int) -> list[DocumentTextSection]:
        """
        Render every matched chunk, packed into sections of at most max_tokens.

        Chunks longer than max_tokens are cut into consecutive pieces.
        """
        text = self.load_text()
        tokenizer = self._index.tokenizer

        pieces: list[tuple[int, int, list[int], float]] = []
        for chunk in self.chunks:
            metadata = chunk.item.metadata
            start, end = metadata[START_POS_KEY], metadata[END_POS_KEY]
            tokens = tokenizer.encode(text[start:end + 1])
            for offset in range(0, len(tokens), max_tokens):
                pieces.append((start, offset, tokens[offset:offset + max_tokens], chunk.score))
        pieces.sort(key=lambda p: (p[0], p[1]))

        groups: list[list[tuple[list[int], float]]] = []
        running = 0
        for _, _, tokens, score in pieces:
            if groups and running + len(tokens) <= max_tokens:
                groups[-1].append((tokens, score))
                running += len(tokens)
            else:
                groups.append([(tokens, score)])
                running = len(tokens)

        return [
            DocumentTextSection(
                text="".join(tokenizer.decode(tokens) for tokens, _ in group),
                token_count=sum(len(tokens) for tokens, _ in group),
                score=sum(score for _, score in group) / len(group),
            )
            for group in groups
        ]

    def render_sections(
        self, max_tokens: int, max_sections: int, overlap: bool = True
    ) -> list[DocumentTextSection]:
        """
        Render the best matching parts of the document.

        Args:
            max_tokens: Token budget per section
            max_sections: Maximum number of sections to return
            overlap: Join non-adjacent chunks with a "..." connector and
                fill leftover budget with text around the section

        Returns:
            Sections sorted by descending score. A document that fits in
            max_tokens is returned whole as one section with score 1.0.
        """
        text = self.load_text()
        length = self.get_length()
        if length <= max_tokens:
            return [DocumentTextSection(text=text, token_count=length, score=1.0)]

        spans = [s for s in self._spans(text) if s.token_count <= max_tokens]
        if not spans:
            return self._truncated_top_chunk(text, max_tokens)

        semantic = _pack([s for s in spans if not s.is_bm25], max_tokens)
        keyword = _pack([s for s in spans if s.is_bm25], max_tokens)
        sections = sorted(semantic + keyword, key=lambda s: s.score, reverse=True)[:max_sections]
        return [self._render(section, text, max_tokens, overlap) for section in sections]

    def _truncated_top_chunk(self, text: str, max_tokens: int) -> list[DocumentTextSection]:
        if not self.chunks:
            return []
        top = max(self.chunks, key=lambda c: c.score)
        metadata = top.item.metadata
        tokenizer = self._index.tokenizer
        tokens = tokenizer.encode(text[metadata[START_POS_KEY]:metadata[END_POS_KEY] + 1])[:max_tokens]
        return [DocumentTextSection(
            text=tokenizer.decode(tokens),
            token_count=len(tokens),
            score=top.score,
            is_bm25=bool(metadata.get(IS_BM25_KEY, False)),
        )]

    def _render(self, section: _Section, text: str, max_tokens: int, overlap: bool) -> DocumentTextSection:
        is_bm25 = section.spans[0].is_bm25
        if not overlap:
            return DocumentTextSection(
                text="".join(s.text for s in section.spans),
                token_count=section.token_count,
                score=section.score,
                is_bm25=is_bm25,
            )

        tokenizer = self._index.tokenizer
        runs = _adjacent_runs(section.spans)
        parts = [SECTION_CONNECTOR.join("".join(s.text for s in run) for run in runs)]
        token_count = section.token_count + (len(runs) - 1) * len(tokenizer.encode(SECTION_CONNECTOR))

        budget = max_tokens - token_count
        if budget > MIN_OVERLAP_BUDGET:
            section_start = section.spans[0].start_pos
            section_end = section.spans[-1].end_pos
            has_after = section_end < len(text) - 1
            window = budget * CHARS_PER_OVERLAP_TOKEN

            if section_start > 0:
                before = tokenizer.encode(text[max(0, section_start - window):section_start])
                count = min(len(before), math.ceil(budget / 2) if has_after else budget)
                if count > 0:
                    parts.insert(0, tokenizer.decode(before[-count:]))
                    token_count += count
            if has_after:
                after = tokenizer.encode(text[section_end + 1:section_end + 1 + window])
                count = min(len(after), max_tokens - token_count)
                if count > 0:
                    parts.append(tokenizer.decode(after[:count]))
                    token_count += count

        return DocumentTextSection(
            text="".join(parts),
            token_count=token_count,
            score=section.score,
            is_bm25=is_bm25,
        )
