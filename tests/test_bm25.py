"""Tests for the in-memory BM25 keyword index."""

import pytest

from localvec.bm25 import BM25Index, tokenize


class TestTokenize:
    """Word extraction for keyword scoring."""

    def test_lowercases(self):
        assert tokenize("Hello World") == ["hello", "world"]

    def test_drops_single_letters_except_a_and_i(self):
        assert tokenize("a b i x cat") == ["a", "i", "cat"]

    def test_keeps_digits(self):
        assert tokenize("version 2 of 10") == ["version", "2", "of", "10"]

    def test_empty(self):
        assert tokenize("") == []


class TestBM25Index:
    """Okapi BM25 ranking."""

    @pytest.fixture
    def index(self):
        idx = BM25Index()
        idx.build_index([
            ("c1", "Python programming language"),
            ("c2", "JavaScript for web development"),
            ("c3", "Python web frameworks like Django and Flask"),
        ])
        return idx

    def test_matches_only(self, index):
        assert [key for key, _ in index.search("javascript")] == ["c2"]

    def test_ranking(self, index):
        results = index.search("python programming")
        assert [key for key, _ in results] == ["c1", "c3"]
        assert results[0][1] > results[1][1] > 0

    def test_top_k(self, index):
        assert len(index.search("python web", top_k=1)) == 1

    def test_no_match(self, index):
        assert index.search("rust") == []

    def test_empty_query(self, index):
        assert index.search("") == []

    def test_empty_index(self):
        idx = BM25Index()
        idx.build_index([])
        assert idx.search("anything") == []

    def test_rebuild_replaces(self, index):
        index.build_index([("only", "rust systems")])
        assert [key for key, _ in index.search("python rust")] == ["only"]

    def test_rare_terms_score_higher(self):
        idx = BM25Index()
        idx.build_index([
            ("common1", "shared words here"),
            ("common2", "shared words there"),
            ("rare", "unique words"),
        ])
        scores = dict(idx.search("shared unique"))
        assert scores["rare"] > scores["common1"]
