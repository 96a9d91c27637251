"""
BM25 keyword index for hybrid retrieval.

Built on demand over the candidate items of a query and thrown away
afterwards; nothing here is persisted.
"""

import logging
import math
import re
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\w+")


def tokenize(text: str) -> list[str]:
    """Lowercase words, dropping single characters other than "a" and "i"."""
    if not text:
        return []
    words = _WORD_RE.findall(text.lower())
    return [w for w in words if len(w) > 1 or w in {"a", "i"} or w.isdigit()]


@dataclass
class BM25Index:
    """
    In-memory Okapi BM25 index.

    - k1: Term frequency saturation parameter (default 1.5)
    - b: Document length normalization (default 0.75)

    Example:
        index = BM25Index()
        index.build_index([("c1", "Python programming language"),
                           ("c2", "JavaScript for web development")])
        index.search("programming", top_k=10)
        # [("c1", 0.98)]
    """

    k1: float = 1.5
    b: float = 0.75

    _term_freqs: dict[str, Counter] = field(default_factory=dict)
    _doc_lengths: dict[str, int] = field(default_factory=dict)
    _idf: dict[str, float] = field(default_factory=dict)
    _avg_doc_length: float = 0.0

    def build_index(self, docs: Iterable[tuple[str, str]]) -> None:
        """Index (key, text) pairs, replacing any previous contents."""
        self._term_freqs = {}
        self._doc_lengths = {}
        self._idf = {}

        for key, text in docs:
            words = tokenize(text)
            self._term_freqs[key] = Counter(words)
            self._doc_lengths[key] = len(words)

        total_docs = len(self._term_freqs)
        if total_docs == 0:
            self._avg_doc_length = 0.0
            return
        self._avg_doc_length = sum(self._doc_lengths.values()) / total_docs

        doc_freqs: Counter = Counter()
        for freqs in self._term_freqs.values():
            doc_freqs.update(freqs.keys())
        for term, df in doc_freqs.items():
            self._idf[term] = math.log((total_docs - df + 0.5) / (df + 0.5) + 1)

        logger.debug("BM25 index built: %d documents, %d terms", total_docs, len(self._idf))

    def search(self, query: str, top_k: int = 10) -> list[tuple[str, float]]:
        """
        Score every indexed document against the query.

        Returns:
            Up to top_k (key, score) pairs with positive scores, best first
        """
        query_terms = tokenize(query)
        if not query_terms or not self._term_freqs:
            return []

        scores = {}
        for key, freqs in self._term_freqs.items():
            score = self._score(query_terms, freqs, self._doc_lengths[key])
            if score > 0:
                scores[key] = score

        ranked = sorted(scores.items(), key=lambda x: x[1], reverse=True)
        return ranked[:top_k]

    def _score(self, query_terms: list[str], freqs: Counter, doc_length: int) -> float:
        if doc_length == 0:
            return 0.0
        score = 0.0
        for term in query_terms:
            tf = freqs.get(term, 0)
            if tf == 0:
                continue
            numerator = tf * (self.k1 + 1)
            denominator = tf + self.k1 * (1 - self.b + self.b * (doc_length / self._avg_doc_length))
            score += self._idf[term] * (numerator / denominator)
        return score
