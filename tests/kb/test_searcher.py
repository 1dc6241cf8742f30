"""
Unit tests for vault_search.kb.local.searcher

Builds a small index on disk and checks hybrid ranking, filters,
determinism, keyword-only mode and the error paths.
"""

from __future__ import annotations

import hashlib

import pytest


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _note(note_id: str, text: str, **kwargs):
    from vault_search.kb.local.models import Note
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return Note(id=note_id, text=text, content_hash=digest, **kwargs)


def _components(tmp_path, dim: int = 384):
    from vault_search.kb.local.embedder import index_config
    from vault_search.kb.local.indexer import Indexer
    from vault_search.kb.local.keyword_index import KeywordIndex
    from vault_search.kb.local.searcher import Searcher
    from vault_search.kb.local.sqlite_vector_store import SQLiteVectorStore
    store = SQLiteVectorStore(str(tmp_path / "index.db"))
    kw = KeywordIndex(store)
    cfg = index_config(dim)
    return store, Indexer(store, kw, cfg), Searcher(store, kw, cfg)


@pytest.fixture
def searcher(tmp_path):
    _, indexer, searcher = _components(tmp_path)
    indexer.reindex([
        _note("A", "rust ownership borrow checker memory", note_type="note"),
        _note("B", "rust memory safety ownership lifetimes", note_type="note"),
        _note("C", "sourdough bread baking recipe", note_type="recipe"),
    ])
    return searcher


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------

class TestRanking:

    def test_best_match_first_unrelated_last(self, searcher):
        results = searcher.search("rust memory safety", limit=3)
        assert [r.note_id for r in results] == ["B", "A", "C"]
        assert results[0].score > results[1].score > results[2].score

    def test_signals(self, searcher):
        results = {r.note_id: r for r in searcher.search("rust memory safety", limit=3)}
        assert results["B"].matched_signal == "both"
        assert results["B"].keyword_score == pytest.approx(1.0)
        assert results["A"].keyword_score == pytest.approx(2 / 3)
        assert results["C"].keyword_score == 0.0
        assert results["C"].matched_signal == "vector"

    def test_hybrid_score_formula(self, searcher):
        for r in searcher.search("rust memory safety", limit=3):
            expected = 0.7 * r.vector_score + 0.3 * r.keyword_score
            assert r.score == pytest.approx(expected)

    def test_limit(self, searcher):
        assert len(searcher.search("rust", limit=1)) == 1
        assert searcher.search("rust", limit=0) == []

    def test_titles_attached(self, searcher):
        results = searcher.search("bread", limit=1)
        assert results[0].note_id == "C"
        assert results[0].title == "C"

    def test_deterministic(self, searcher):
        first = [(r.note_id, r.score) for r in searcher.search("rust lifetimes", limit=3)]
        second = [(r.note_id, r.score) for r in searcher.search("rust lifetimes", limit=3)]
        assert first == second

    def test_ties_broken_by_note_id(self, tmp_path):
        _, indexer, searcher = _components(tmp_path)
        indexer.reindex([_note("z", "same words"), _note("m", "same words"), _note("a", "same words")])
        assert [r.note_id for r in searcher.search("same", limit=3)] == ["a", "m", "z"]

    def test_vector_mode_ignores_keywords(self, searcher):
        for r in searcher.search("rust memory safety", limit=3, mode="vector"):
            assert r.score == pytest.approx(r.vector_score)

    def test_keyword_mode(self, searcher):
        results = searcher.search("bread", limit=5, mode="keyword")
        assert [r.note_id for r in results] == ["C"]
        assert results[0].matched_signal == "keyword"
        assert results[0].score == pytest.approx(1.0)

    def test_keyword_mode_with_pure_vector_alpha(self, tmp_path):
        from vault_search.kb.local.keyword_index import KeywordIndex
        from vault_search.kb.local.searcher import Searcher
        store, indexer, _ = _components(tmp_path)
        indexer.reindex([
            _note("A", "rust memory safety"),
            _note("C", "sourdough bread baking"),
        ])
        searcher = Searcher(store, KeywordIndex(store), indexer.config, alpha=1.0)
        results = searcher.search("bread", mode="keyword")
        assert [r.note_id for r in results] == ["C"]
        assert results[0].keyword_score == pytest.approx(1.0)


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

class TestFilters:

    def test_filter_restricts_results(self, searcher):
        results = searcher.search("rust memory safety", filters={"type": "recipe"}, limit=5)
        assert [r.note_id for r in results] == ["C"]

    def test_filters_applied_before_limit(self, tmp_path):
        _, indexer, searcher = _components(tmp_path)
        notes = [_note(f"rust-{i}", f"rust memory safety {i}", note_type="note") for i in range(8)]
        notes.append(_note("weak", "rust gardening", note_type="journal"))
        indexer.reindex(notes)
        results = searcher.search("rust memory safety", filters={"type": "journal"}, limit=1)
        assert [r.note_id for r in results] == ["weak"]

    def test_unmatched_filter_returns_empty(self, searcher):
        assert searcher.search("rust", filters={"area": "nowhere"}) == []

    def test_unknown_filter_key(self, searcher):
        with pytest.raises(ValueError):
            searcher.search("rust", filters={"colour": "red"})


# ---------------------------------------------------------------------------
# Error paths
# ---------------------------------------------------------------------------

class TestErrors:

    @pytest.mark.parametrize("query", ["", "   ", "\n\t"])
    def test_empty_query(self, searcher, query):
        from vault_search.errors import EmptyQueryError
        with pytest.raises(EmptyQueryError):
            searcher.search(query)

    def test_unknown_mode(self, searcher):
        with pytest.raises(ValueError):
            searcher.search("rust", mode="fuzzy")

    def test_never_built_index_returns_empty(self, tmp_path):
        _, _, searcher = _components(tmp_path)
        assert searcher.search("rust") == []

    def test_dimension_mismatch(self, tmp_path):
        from vault_search.errors import DimensionMismatchError
        from vault_search.kb.local.embedder import index_config
        from vault_search.kb.local.keyword_index import KeywordIndex
        from vault_search.kb.local.searcher import Searcher
        store, indexer, _ = _components(tmp_path, dim=64)
        indexer.reindex([_note("A", "rust")])
        other = Searcher(store, KeywordIndex(store), index_config(32))
        with pytest.raises(DimensionMismatchError):
            other.search("rust")

    def test_vectors_without_version_marker(self, tmp_path):
        from vault_search.errors import DimensionMismatchError
        from vault_search.kb.local.embedder import embed_text
        store, _, searcher = _components(tmp_path)
        store.upsert("A", embed_text("rust memory", 384), "h")
        assert store.note_ids() == ["A"]
        with pytest.raises(DimensionMismatchError):
            searcher.search("rust memory", mode="vector")

    def test_invalid_alpha(self, tmp_path):
        from vault_search.kb.local.embedder import index_config
        from vault_search.kb.local.keyword_index import KeywordIndex
        from vault_search.kb.local.searcher import Searcher
        from vault_search.kb.local.sqlite_vector_store import SQLiteVectorStore
        store = SQLiteVectorStore(str(tmp_path / "index.db"))
        with pytest.raises(ValueError):
            Searcher(store, KeywordIndex(store), index_config(32), alpha=1.5)


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------

class TestEndToEnd:

    def test_rust_notes_rank_above_bread(self, tmp_path):
        from vault_search.kb.local.related import RelatedNotes
        store, indexer, searcher = _components(tmp_path)
        indexer.reindex([
            _note("A", "rust ownership and borrowing rules"),
            _note("B", "memory safety in rust programs"),
            _note("C", "baking sourdough bread at home"),
        ])
        ranked = [r.note_id for r in searcher.search("rust memory safety", limit=3)]
        assert set(ranked[:2]) == {"A", "B"}
        assert ranked[2] == "C"

        related = RelatedNotes(store, indexer.config).related("A")
        assert [r.note_id for r in related] == ["B", "C"]
