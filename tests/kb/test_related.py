"""
Unit tests for vault_search.kb.local.related
"""

from __future__ import annotations

import hashlib

import pytest


def _note(note_id: str, text: str, **kwargs):
    from vault_search.kb.local.models import Note
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return Note(id=note_id, text=text, content_hash=digest, **kwargs)


def _build(tmp_path, notes=None, dim: int = 384):
    from vault_search.kb.local.embedder import index_config
    from vault_search.kb.local.indexer import Indexer
    from vault_search.kb.local.keyword_index import KeywordIndex
    from vault_search.kb.local.related import RelatedNotes
    from vault_search.kb.local.sqlite_vector_store import SQLiteVectorStore
    store = SQLiteVectorStore(str(tmp_path / "index.db"))
    cfg = index_config(dim)
    if notes is not None:
        Indexer(store, KeywordIndex(store), cfg).reindex(notes)
    return store, RelatedNotes(store, cfg)


@pytest.fixture
def related(tmp_path):
    _, engine = _build(tmp_path, [
        _note("A", "rust ownership borrow checker memory", note_type="note"),
        _note("B", "rust memory safety ownership lifetimes", note_type="note"),
        _note("C", "sourdough bread baking recipe", note_type="recipe"),
    ])
    return engine


class TestRelated:

    def test_nearest_first_and_self_excluded(self, related):
        results = related.related("A", limit=10)
        assert [r.note_id for r in results] == ["B", "C"]
        assert results[0].score > results[1].score

    def test_scores_are_pure_cosine(self, related):
        for r in related.related("A"):
            assert r.score == pytest.approx(r.vector_score)
            assert r.keyword_score == 0.0
            assert r.matched_signal == "vector"

    def test_limit(self, related):
        assert [r.note_id for r in related.related("A", limit=1)] == ["B"]
        assert related.related("A", limit=0) == []

    def test_filters(self, related):
        results = related.related("A", filters={"type": "recipe"})
        assert [r.note_id for r in results] == ["C"]

    def test_deterministic(self, related):
        first = [(r.note_id, r.score) for r in related.related("B")]
        assert first == [(r.note_id, r.score) for r in related.related("B")]

    def test_unknown_note(self, related):
        from vault_search.errors import NotFoundError
        with pytest.raises(NotFoundError) as excinfo:
            related.related("missing")
        assert excinfo.value.note_id == "missing"

    def test_never_built_index(self, tmp_path):
        from vault_search.errors import NotFoundError
        _, engine = _build(tmp_path)
        with pytest.raises(NotFoundError):
            engine.related("A")

    def test_single_note_vault(self, tmp_path):
        _, engine = _build(tmp_path, [_note("only", "lonely note")])
        assert engine.related("only") == []
