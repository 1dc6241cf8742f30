"""
Inverted keyword index over note tokens.

Postings live in the ``postings`` table of the vector store's database
(``token -> {note_id: tf}``) so that a reindex pass updates vectors and
postings in one transaction.
"""

from __future__ import annotations

import logging
import sqlite3
from collections import Counter
from typing import Iterable, Optional

from .sqlite_vector_store import SQLiteVectorStore

logger = logging.getLogger(__name__)

# Query tokens shorter than this only match exactly
MIN_SUBSTRING_LENGTH = 3


class KeywordIndex:
    """
    Token postings with per-note term frequencies.

    Parameters
    ----------
    store:
        The vector store whose database and write lock are shared.
    substring_weight:
        Credit in ``[0, 1]`` for a query token that only occurs as a
        substring of a note token.
    """

    def __init__(self, store: SQLiteVectorStore, substring_weight: float = 0.5) -> None:
        self._store = store
        self._substring_weight = substring_weight

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def index(self, note_id: str, tokens) -> None:
        """
        Replace all postings for *note_id*.

        Parameters
        ----------
        note_id:
            Note key.
        tokens:
            Either a token sequence or a ``{token: tf}`` mapping.
        """
        if isinstance(tokens, dict):
            tf = dict(tokens)
        else:
            tf = dict(Counter(tokens))
        with self._store.transaction() as conn:
            conn.execute("DELETE FROM postings WHERE note_id = ?", (note_id,))
            conn.executemany(
                "INSERT INTO postings (token, note_id, tf) VALUES (?, ?, ?)",
                [(tok, note_id, int(n)) for tok, n in sorted(tf.items())],
            )

    def remove(self, note_id: str) -> bool:
        """Drop every posting of *note_id*.  Returns True if any existed."""
        with self._store.transaction() as conn:
            cur = conn.execute("DELETE FROM postings WHERE note_id = ?", (note_id,))
            return cur.rowcount > 0

    def clear(self) -> None:
        with self._store.transaction() as conn:
            conn.execute("DELETE FROM postings")

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def postings(
        self, note_id: str, conn: Optional[sqlite3.Connection] = None
    ) -> dict[str, int]:
        """Return ``{token: tf}`` stored for *note_id*."""
        if conn is None:
            with self._store.read_snapshot() as c:
                return self.postings(note_id, c)
        rows = conn.execute(
            "SELECT token, tf FROM postings WHERE note_id = ? ORDER BY token",
            (note_id,),
        ).fetchall()
        return {r["token"]: r["tf"] for r in rows}

    def indexed_note_ids(self, conn: Optional[sqlite3.Connection] = None) -> set[str]:
        if conn is None:
            with self._store.read_snapshot() as c:
                return self.indexed_note_ids(c)
        rows = conn.execute("SELECT DISTINCT note_id FROM postings").fetchall()
        return {r["note_id"] for r in rows}

    def match(
        self,
        tokens: Iterable[str],
        conn: Optional[sqlite3.Connection] = None,
        candidates: Optional[set[str]] = None,
    ) -> dict[str, float]:
        """
        Score notes by keyword overlap with *tokens*.

        Each distinct query token earns a note 1.0 for an exact posting,
        ``substring_weight`` when it is contained in one of the note's
        tokens, otherwise 0.  Credits are weighted by the token's query
        frequency and divided by the total query frequency.

        Parameters
        ----------
        tokens:
            Normalized query tokens.
        conn:
            Optional read connection (to share a snapshot).
        candidates:
            If given, only these note ids are scored.

        Returns
        -------
        dict[str, float]
            ``{note_id: overlap}`` for notes with overlap > 0.
        """
        query_tf = Counter(tokens)
        if not query_tf:
            return {}
        if conn is None:
            with self._store.read_snapshot() as c:
                return self.match(query_tf.elements(), c, candidates)

        total = float(sum(query_tf.values()))
        credit: dict[str, dict[str, float]] = {}

        for tok in sorted(query_tf):
            rows = conn.execute(
                "SELECT note_id FROM postings WHERE token = ?", (tok,)
            ).fetchall()
            for r in rows:
                credit.setdefault(r["note_id"], {})[tok] = 1.0

            if self._substring_weight <= 0 or len(tok) < MIN_SUBSTRING_LENGTH:
                continue
            rows = conn.execute(
                "SELECT DISTINCT note_id FROM postings "
                "WHERE token != ? AND instr(token, ?) > 0",
                (tok, tok),
            ).fetchall()
            for r in rows:
                per_note = credit.setdefault(r["note_id"], {})
                if per_note.get(tok, 0.0) < self._substring_weight:
                    per_note[tok] = self._substring_weight

        scores: dict[str, float] = {}
        for note_id, per_token in credit.items():
            if candidates is not None and note_id not in candidates:
                continue
            earned = sum(query_tf[tok] * c for tok, c in per_token.items())
            if earned > 0:
                scores[note_id] = earned / total
        return scores
