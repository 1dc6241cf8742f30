"""
Hybrid search over the vault index.

Combines cosine similarity against every stored vector (brute-force
scan) with keyword overlap from the inverted index:

    score = alpha * cosine + (1 - alpha) * keyword_overlap

Filters are applied before ranking so ``limit`` always returns the
requested number of eligible notes when that many exist.  Ties are
broken by note id, which makes repeated queries on an unchanged index
return identical results.
"""

from __future__ import annotations

import logging
import time
from typing import Iterable, Optional

import numpy as np

from ...errors import EmptyQueryError
from .embedder import cosine_similarity_batch, embed
from .keyword_index import KeywordIndex
from .models import (
    SIGNAL_BOTH, SIGNAL_KEYWORD, SIGNAL_VECTOR,
    IndexConfig, SearchResult, StoredVector,
)
from .sqlite_vector_store import SQLiteVectorStore
from .tokenizer import normalize

logger = logging.getLogger(__name__)

DEFAULT_ALPHA = 0.7
SEARCH_MODES = ("hybrid", "vector", "keyword")


# ---------------------------------------------------------------------------
# Ranking helpers (shared with the related-notes engine)
# ---------------------------------------------------------------------------

def load_matrix(
    rows: Iterable[StoredVector],
    eligible: Optional[set[str]] = None,
    exclude: Optional[str] = None,
) -> tuple[list[str], np.ndarray]:
    """
    Collect scanned vectors into ``(ids, matrix)``.

    Parameters
    ----------
    rows:
        Output of :meth:`SQLiteVectorStore.scan`.
    eligible:
        If given, only these note ids are kept.
    exclude:
        A note id to leave out (the anchor of a related-notes lookup).
    """
    ids: list[str] = []
    vectors: list[np.ndarray] = []
    for row in rows:
        if row.note_id == exclude:
            continue
        if eligible is not None and row.note_id not in eligible:
            continue
        ids.append(row.note_id)
        vectors.append(row.vector)
    if not vectors:
        return [], np.zeros((0, 0), dtype=np.float32)
    return ids, np.stack(vectors)


def rank_results(results: list[SearchResult], limit: int) -> list[SearchResult]:
    """Sort by score descending, then note id ascending; keep *limit*."""
    if limit <= 0:
        return []
    results.sort(key=lambda r: (-r.score, r.note_id))
    return results[:limit]


def _signal(vector_score: float, keyword_score: float) -> str:
    if keyword_score > 0:
        return SIGNAL_BOTH if vector_score > 0 else SIGNAL_KEYWORD
    return SIGNAL_VECTOR


# ---------------------------------------------------------------------------
# Searcher
# ---------------------------------------------------------------------------

class Searcher:
    """
    Free-text query engine.

    Parameters
    ----------
    store:
        Vector store to scan.
    keyword_index:
        Keyword index sharing *store*'s database.
    config:
        Running index configuration; must match the store's marker.
    alpha:
        Weight of the vector similarity in the hybrid score.
    """

    def __init__(
        self,
        store: SQLiteVectorStore,
        keyword_index: KeywordIndex,
        config: IndexConfig,
        alpha: float = DEFAULT_ALPHA,
    ) -> None:
        if not 0.0 <= alpha <= 1.0:
            raise ValueError(f"alpha must be within [0, 1], got {alpha}")
        self._store = store
        self._keywords = keyword_index
        self._config = config
        self._alpha = alpha

    def search(
        self,
        query: str,
        filters: Optional[dict] = None,
        limit: int = 5,
        mode: str = "hybrid",
    ) -> list[SearchResult]:
        """
        Rank indexed notes against *query*.

        Parameters
        ----------
        query:
            Natural-language search string.
        filters:
            Optional metadata filters.  Supported keys: ``"type"``,
            ``"area"``, ``"status"``.
        limit:
            Maximum number of results to return.
        mode:
            ``"hybrid"`` (default), ``"vector"`` (alpha = 1) or
            ``"keyword"`` (overlap only; notes without a keyword hit are
            left out).

        Returns
        -------
        list[SearchResult]
            Ranked results, best first.

        Raises
        ------
        EmptyQueryError
            If *query* is blank.
        DimensionMismatchError
            If the index was built with a different configuration.
        """
        if query is None or not query.strip():
            raise EmptyQueryError("Query text must not be empty")
        if mode not in SEARCH_MODES:
            raise ValueError(f"Unknown search mode '{mode}'. Use one of: {', '.join(SEARCH_MODES)}")

        t0 = time.perf_counter()
        tokens = normalize(query)
        query_vector = embed(tokens, self._config.dimension)
        alpha = 1.0 if mode == "vector" else self._alpha

        with self._store.read_snapshot() as conn:
            if not self._store.check_compatible(self._config, conn):
                logger.debug("Index has not been built yet; no results")
                return []
            eligible = self._store.filter_note_ids(filters, conn)
            ids, matrix = load_matrix(self._store.scan(conn), eligible)
            keyword_scores = (
                self._keywords.match(tokens, conn, candidates=eligible)
                if mode == "keyword" or alpha < 1.0 else {}
            )
            titles = self._store.titles(conn)

        if not ids:
            return []

        cosines = cosine_similarity_batch(query_vector, matrix)
        results: list[SearchResult] = []
        for note_id, cos in zip(ids, cosines):
            vec_score = float(cos)
            kw_score = keyword_scores.get(note_id, 0.0)
            if mode == "keyword":
                if kw_score <= 0:
                    continue
                score = kw_score
            else:
                score = alpha * vec_score + (1.0 - alpha) * kw_score
            results.append(
                SearchResult(
                    note_id=note_id,
                    score=score,
                    matched_signal=SIGNAL_KEYWORD if mode == "keyword" else _signal(vec_score, kw_score),
                    title=titles.get(note_id, ""),
                    vector_score=vec_score,
                    keyword_score=kw_score,
                )
            )

        ranked = rank_results(results, limit)
        elapsed = (time.perf_counter() - t0) * 1000
        logger.debug(
            "Search %r returned %d of %d candidates in %.1fms",
            query, len(ranked), len(ids), elapsed,
        )
        return ranked
