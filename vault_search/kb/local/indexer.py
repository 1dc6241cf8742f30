"""
Indexer: incremental maintenance of the vector store and keyword index.

A pass receives the full snapshot of notes from the note source and:
  1. compares each note's content hash with the hash its stored vector
     was derived from;
  2. re-tokenizes and re-embeds only new or changed notes (in parallel);
  3. replaces their vectors and postings;
  4. deletes every stored note absent from the snapshot.

The whole pass runs inside one write transaction, so readers observe
either the index before the pass or after it.  If the persisted version
marker (dimension + tokenizer version) differs from the running one,
every note is treated as stale and the index is rebuilt from scratch.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Optional

from .embedder import embed_notes
from .keyword_index import KeywordIndex
from .models import IndexConfig, Note, ReindexResult
from .sqlite_vector_store import SQLiteVectorStore

logger = logging.getLogger(__name__)


class Indexer:
    """
    Orchestrates reindex passes.

    Parameters
    ----------
    store:
        Vector store (also owns the write lock).
    keyword_index:
        Keyword index sharing *store*'s database.
    config:
        Running index configuration.
    workers:
        Threads used for tokenizing and embedding.
    """

    def __init__(
        self,
        store: SQLiteVectorStore,
        keyword_index: KeywordIndex,
        config: IndexConfig,
        workers: int = 4,
    ) -> None:
        self._store = store
        self._keywords = keyword_index
        self._config = config
        self._workers = workers

    @property
    def config(self) -> IndexConfig:
        return self._config

    def needs_rebuild(self) -> bool:
        """Return True if the stored version marker differs from the running one."""
        with self._store.read_snapshot() as conn:
            stored = self._store.get_index_config(conn)
            if stored is None:
                return self._store.has_data(conn)
            return stored != self._config

    def reindex(
        self,
        notes: Iterable[Note],
        rebuild: bool = False,
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
    ) -> ReindexResult:
        """
        Bring the index in line with *notes*.

        Parameters
        ----------
        notes:
            Complete snapshot of the vault.  Notes missing from it are
            deleted from the index.
        rebuild:
            Discard the existing index first.
        progress_callback:
            Optional callable called with (current, total, note_id) for
            each note that is (re-)embedded.

        Returns
        -------
        ReindexResult
            ``updated_count``, ``deleted_count``, ``skipped_count``,
            ``failed_ids``, ``full_rebuild``, ``elapsed_seconds``.

        Raises
        ------
        StorageLockError
            If another pass holds the write lock.
        StorageError
            If writing to the index fails; nothing is committed.
        """
        start_time = time.time()
        snapshot: dict[str, Note] = {}
        for note in notes:
            if note.id in snapshot:
                logger.warning("[indexer] Duplicate note id %s; keeping the last one", note.id)
            snapshot[note.id] = note

        result = ReindexResult()

        with self._store.transaction() as conn:
            stored_config = self._store.get_index_config(conn)
            stored_ids = set(self._store.note_ids(conn))
            stored_ids |= self._keywords.indexed_note_ids(conn)

            # A store with data but no marker predates versioning: rebuild it.
            full = rebuild or (
                stored_config != self._config
                and (stored_config is not None or self._store.has_data(conn))
            )
            if full:
                if stored_config is not None and stored_config != self._config:
                    logger.info(
                        "[indexer] Index version changed (%s -> %s); forcing full rebuild",
                        stored_config, self._config,
                    )
                existing: dict[str, str] = {}
                self._store.clear()
                self._keywords.clear()
            else:
                existing = self._store.content_hashes(conn)

            if stored_config != self._config or full:
                self._store.set_index_config(self._config)

            stale = [
                note for note_id, note in sorted(snapshot.items())
                if existing.get(note_id) != note.content_hash
            ]
            result.skipped_count = len(snapshot) - len(stale)
            result.full_rebuild = full

            embedded, failed = embed_notes(
                stale, self._config,
                workers=self._workers,
                progress_callback=progress_callback,
            )
            result.failed_ids = failed

            for item in embedded:
                note = item.note
                meta = note.metadata()
                meta.update(
                    title=note.title or note.id,
                    path=note.path,
                    tags=note.tags,
                    modified_at=note.modified_at,
                )
                self._store.upsert(note.id, item.vector, note.content_hash, meta)
                self._keywords.index(note.id, item.term_frequencies)
            result.updated_count = len(embedded)

            for note_id in sorted(stored_ids - set(snapshot)):
                if not full:
                    self._store.delete(note_id)
                    self._keywords.remove(note_id)
                result.deleted_count += 1

            if result.write_count:
                self._store.touch_last_indexed()

        result.elapsed_seconds = round(time.time() - start_time, 3)
        logger.info(
            "[indexer] Reindex complete: %d updated, %d deleted, %d unchanged, "
            "%d failed in %.2fs%s",
            result.updated_count, result.deleted_count, result.skipped_count,
            len(result.failed_ids), result.elapsed_seconds,
            " (full rebuild)" if full else "",
        )
        return result
