"""
Related-notes lookup: nearest neighbours of an indexed note.

Uses the anchor note's stored vector as the query and pure cosine
similarity for the score; ranking and tie-breaking match
:mod:`~vault_search.kb.local.searcher`.
"""

from __future__ import annotations

import logging
from typing import Optional

from ...errors import NotFoundError
from .embedder import cosine_similarity_batch
from .models import SIGNAL_VECTOR, IndexConfig, SearchResult
from .searcher import load_matrix, rank_results
from .sqlite_vector_store import SQLiteVectorStore

logger = logging.getLogger(__name__)


class RelatedNotes:
    """
    Parameters
    ----------
    store:
        Vector store to scan.
    config:
        Running index configuration.
    """

    def __init__(self, store: SQLiteVectorStore, config: IndexConfig) -> None:
        self._store = store
        self._config = config

    def related(
        self,
        note_id: str,
        limit: int = 10,
        filters: Optional[dict] = None,
    ) -> list[SearchResult]:
        """
        Return the notes most similar to *note_id*, excluding itself.

        Raises
        ------
        NotFoundError
            If *note_id* has no stored vector.
        DimensionMismatchError
            If the index was built with a different configuration.
        """
        with self._store.read_snapshot() as conn:
            if not self._store.check_compatible(self._config, conn):
                raise NotFoundError(note_id)
            anchor = self._store.get(note_id, conn)
            if anchor is None:
                raise NotFoundError(note_id)
            eligible = self._store.filter_note_ids(filters, conn)
            ids, matrix = load_matrix(self._store.scan(conn), eligible, exclude=note_id)
            titles = self._store.titles(conn)

        if not ids:
            return []

        cosines = cosine_similarity_batch(anchor.vector, matrix)
        results = [
            SearchResult(
                note_id=other_id,
                score=float(cos),
                matched_signal=SIGNAL_VECTOR,
                title=titles.get(other_id, ""),
                vector_score=float(cos),
            )
            for other_id, cos in zip(ids, cosines)
        ]
        ranked = rank_results(results, limit)
        logger.debug("Related to %s: %d result(s)", note_id, len(ranked))
        return ranked
