"""
Recursive, token-bounded text chunking.

Text is split on the first separator in a list of progressively finer
separators; any fragment still longer than ``chunk_size`` tokens is split
again with the remaining separators, and with none left it is cut in half.
Small neighbouring fragments are then merged back up to ``chunk_size``.

Every function here returns new lists; recursive calls share no state.
"""

import dataclasses
from typing import Optional

from .errors import ValidationError
from .providers.base import Tokenizer
from .types import TextChunk

# Separator that switches to cutting the text at token boundaries
TOKEN_SEPARATOR = " "

DEFAULT_SEPARATORS = ["\n\n", "\n", TOKEN_SEPARATOR]

_C_FAMILY = [
    "// LLM-REGION", "/* LLM-REGION", "/** LLM-REGION",
    "\nclass ", "\npublic ", "\nprotected ", "\nprivate ", "\nstatic ",
    "\nif ", "\nfor ", "\nwhile ", "\nswitch ", "\ncase ",
    "\n\n", "\n", " ",
]

_JAVASCRIPT = [
    "// LLM-REGION", "/* LLM-REGION", "/** LLM-REGION",
    "\nclass ", "\nfunction ", "\nconst ", "\nlet ", "\nvar ",
    "\nif ", "\nfor ", "\nwhile ", "\nswitch ", "\ncase ", "\ndefault ",
    "\n\n", "\n",
]

_MARKDOWN = [
    "\n## ", "\n### ", "\n#### ", "\n##### ", "\n###### ",
    "```\n\n", "\n\n***\n\n", "\n\n---\n\n", "\n\n___\n\n", "<table>",
    "\n\n", "\n",
]

SEPARATORS_BY_DOC_TYPE: dict[str, list[str]] = {
    "cpp": [
        "\nclass ", "\nvoid ", "\nint ", "\nfloat ", "\ndouble ",
        "\nif ", "\nfor ", "\nwhile ", "\nswitch ", "\ncase ",
        "\n\n", "\n",
    ],
    "go": [
        "\nfunc ", "\nvar ", "\nconst ", "\ntype ",
        "\nif ", "\nfor ", "\nswitch ", "\ncase ",
        "\n\n", "\n",
    ],
    "java": _C_FAMILY,
    "c#": _C_FAMILY,
    "csharp": _C_FAMILY,
    "cs": _C_FAMILY,
    "ts": _C_FAMILY,
    "tsx": _C_FAMILY,
    "typescript": _C_FAMILY,
    "js": _JAVASCRIPT,
    "jsx": _JAVASCRIPT,
    "javascript": _JAVASCRIPT,
    "php": [
        "\nfunction ", "\nclass ", "\nif ", "\nforeach ", "\nwhile ",
        "\ndo ", "\nswitch ", "\ncase ",
        "\n\n", "\n",
    ],
    "proto": [
        "\nmessage ", "\nservice ", "\nenum ", "\noption ", "\nimport ", "\nsyntax ",
        "\n\n", "\n",
    ],
    "python": ["\nclass ", "\ndef ", "\n\tdef ", "\n\n", "\n"],
    "py": ["\nclass ", "\ndef ", "\n\tdef ", "\n\n", "\n"],
    "rst": ["\n===\n", "\n---\n", "\n***\n", "\n.. ", "\n\n", "\n"],
    "ruby": [
        "\ndef ", "\nclass ", "\nif ", "\nunless ", "\nwhile ", "\nfor ",
        "\ndo ", "\nbegin ", "\nrescue ",
        "\n\n", "\n",
    ],
    "rust": [
        "\nfn ", "\nconst ", "\nlet ", "\nif ", "\nwhile ", "\nfor ",
        "\nloop ", "\nmatch ",
        "\n\n", "\n",
    ],
    "scala": [
        "\nclass ", "\nobject ", "\ndef ", "\nval ", "\nvar ",
        "\nif ", "\nfor ", "\nwhile ", "\nmatch ", "\ncase ",
        "\n\n", "\n",
    ],
    "swift": [
        "\nfunc ", "\nclass ", "\nstruct ", "\nenum ",
        "\nif ", "\nfor ", "\nwhile ", "\ndo ", "\nswitch ", "\ncase ",
        "\n\n", "\n",
    ],
    "md": _MARKDOWN,
    "markdown": _MARKDOWN,
    "latex": [
        "\n\\chapter{", "\n\\section{", "\n\\subsection{", "\n\\subsubsection{",
        "\n\\begin{enumerate}", "\n\\begin{itemize}", "\n\\begin{description}",
        "\n\\begin{list}", "\n\\begin{quote}", "\n\\begin{quotation}",
        "\n\\begin{verse}", "\n\\begin{verbatim}", "\n\\begin{align}",
        "\n\n", "\n",
    ],
    "html": [
        "<body>", "<div>", "<p>", "<br>", "<li>",
        "<h1>", "<h2>", "<h3>", "<h4>", "<h5>", "<h6>",
        "<span>", "<table>", "<tr>", "<td>", "<th>", "<ul>", "<ol>",
        "<header>", "<footer>", "<nav>", "<head>", "<style>", "<script>",
        "<meta>", "<title>",
    ],
    "sol": [
        "\npragma ", "\nusing ", "\ncontract ", "\ninterface ", "\nlibrary ",
        "\nconstructor ", "\ntype ", "\nfunction ", "\nevent ", "\nmodifier ",
        "\nerror ", "\nstruct ", "\nenum ", "\nif ", "\nfor ", "\nwhile ",
        "\ndo while ", "\nassembly ",
        "\n\n", "\n",
    ],
}

# Character-count estimate above which a fragment is split without encoding
_CHARS_PER_TOKEN_ESTIMATE = 6


def get_separators(doc_type: Optional[str] = None) -> list[str]:
    """Default separators for a document type (file extension or language name)."""
    return list(SEPARATORS_BY_DOC_TYPE.get((doc_type or "").lower(), DEFAULT_SEPARATORS))


def _has_alphanumeric(text: str) -> bool:
    return any(c.isalnum() for c in text)


class TextSplitter:
    """
    Splits text into chunks of at most ``chunk_size`` tokens.

    Args:
        separators: Separators to split on, coarsest first. Defaults depend
            on ``doc_type``. A single space means "cut at token boundaries".
        keep_separators: Keep each separator attached to the end of the
            fragment before it, instead of dropping it.
        chunk_size: Maximum tokens per chunk (>= 1)
        chunk_overlap: Tokens borrowed from each neighbour (0..chunk_size)
        tokenizer: Tokenizer to count with; defaults to tiktoken cl100k_base
        doc_type: Document type used to pick default separators

    Raises:
        ValidationError: If chunk_size or chunk_overlap is out of range
    """

    def __init__(
        self,
        separators: Optional[list[str]] = None,
        keep_separators: bool = False,
        chunk_size: int = 400,
        chunk_overlap: int = 40,
        tokenizer: Optional[Tokenizer] = None,
        doc_type: Optional[str] = None,
    ):
        if chunk_size < 1:
            raise ValidationError("chunk_size must be >= 1")
        if chunk_overlap < 0:
            raise ValidationError("chunk_overlap must be >= 0")
        if chunk_overlap > chunk_size:
            raise ValidationError("chunk_overlap must be <= chunk_size")

        if tokenizer is None:
            from .providers.tokenizers import TiktokenTokenizer
            tokenizer = TiktokenTokenizer()

        self.separators = list(separators) if separators else get_separators(doc_type)
        self.keep_separators = keep_separators
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.tokenizer = tokenizer
        self.doc_type = doc_type

    def split(self, text: str) -> list[TextChunk]:
        """Split text into chunks, with overlap tokens attached."""
        chunks = self._recursive_split(text, self.separators, 0)
        if self.chunk_overlap == 0:
            return chunks
        return [
            dataclasses.replace(
                chunk,
                start_overlap=self._tail(chunks[i - 1].tokens) if i > 0 else [],
                end_overlap=self._head(chunks[i + 1].tokens) if i + 1 < len(chunks) else [],
            )
            for i, chunk in enumerate(chunks)
        ]

    def _head(self, tokens: list[int]) -> list[int]:
        return list(tokens[:self.chunk_overlap])

    def _tail(self, tokens: list[int]) -> list[int]:
        return list(tokens[max(0, len(tokens) - self.chunk_overlap):])

    def _split_by_tokens(self, text: str) -> list[str]:
        """
        Cut text every ``chunk_size`` tokens, always on a character boundary.

        Byte-level tokenizers can split one character across tokens. Such a
        cut moves back until the decoded slice is exactly the text it came
        from, or forward when even a single token is only part of a character.
        """
        tokens = self.tokenizer.encode(text)
        parts: list[str] = []
        start = pos = 0
        while start < len(tokens) and pos < len(text):
            start, part = self._clean_cut(tokens, start, text, pos)
            parts.append(part)
            pos += len(part)
        return parts

    def _clean_cut(self, tokens: list[int], start: int, text: str, pos: int) -> tuple[int, str]:
        limit = min(start + self.chunk_size, len(tokens))
        ends = list(range(limit, start, -1)) + list(range(limit + 1, len(tokens) + 1))
        for end in ends:
            part = self.tokenizer.decode(tokens[start:end])
            if part and text.startswith(part, pos):
                return end, part
        return len(tokens), text[pos:]

    def _recursive_split(self, text: str, separators: list[str], start_pos: int) -> list[TextChunk]:
        if not text:
            return []

        if separators:
            separator = separators[0]
            remaining = separators[1:]
            if separator == TOKEN_SEPARATOR:
                parts = self._split_by_tokens(text)
                separator = ""  # token spans are contiguous
            else:
                parts = text.split(separator)
        else:
            separator = ""
            remaining = []
            half = len(text) // 2
            parts = [text[:half], text[half:]]

        chunks: list[TextChunk] = []
        pos = start_pos
        for i, part in enumerate(parts):
            last = i == len(parts) - 1
            end_pos = pos + len(part) - 1 + (0 if last else len(separator))
            if self.keep_separators and not last:
                part += separator

            if _has_alphanumeric(part):
                chunks.extend(self._split_part(part, separators, remaining, pos, end_pos))
            pos = end_pos + 1

        return self._combine_chunks(chunks)

    def _split_part(
        self, part: str, separators: list[str], remaining: list[str], start_pos: int, end_pos: int
    ) -> list[TextChunk]:
        # Only a single character with no separators left is indivisible
        divisible = bool(separators) or len(part) > 1
        if divisible and len(part) / _CHARS_PER_TOKEN_ESTIMATE > self.chunk_size:
            return self._recursive_split(part, remaining, start_pos)
        tokens = self.tokenizer.encode(part)
        if divisible and len(tokens) > self.chunk_size:
            return self._recursive_split(part, remaining, start_pos)
        return [TextChunk(text=part, tokens=tokens, start_pos=start_pos, end_pos=end_pos)]

    def _combine_chunks(self, chunks: list[TextChunk]) -> list[TextChunk]:
        if not chunks:
            return []
        joiner = "" if self.keep_separators else " "
        joiner_tokens = self.tokenizer.encode(joiner) if joiner else []

        combined: list[TextChunk] = []
        current = chunks[0]
        for chunk in chunks[1:]:
            length = len(current.tokens) + len(joiner_tokens) + len(chunk.tokens)
            if length > self.chunk_size:
                combined.append(current)
                current = chunk
            else:
                current = TextChunk(
                    text=current.text + joiner + chunk.text,
                    tokens=current.tokens + joiner_tokens + chunk.tokens,
                    start_pos=current.start_pos,
                    end_pos=chunk.end_pos,
                )
        combined.append(current)
        return combined
