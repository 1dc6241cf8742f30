"""
Programmatic API for vault search: use as a library from Python code.

Example usage::

    from vault_search import VaultSearch

    vs = VaultSearch("/path/to/vault")
    vs.reindex()
    for hit in vs.search("rust memory safety", filters={"type": "note"}):
        print(hit["note_id"], hit["score"], hit["matched_signal"])
    print(vs.related("Notes/Rust Ownership"))
"""

from __future__ import annotations

import logging
import os
from typing import Callable, Iterable, Optional

from .config import Config
from .kb.local.indexer import Indexer
from .kb.local.keyword_index import KeywordIndex
from .kb.local.models import Note
from .kb.local.related import RelatedNotes
from .kb.local.searcher import Searcher
from .kb.local.sqlite_vector_store import SQLiteVectorStore
from .kb.vault import VaultNoteSource

_logger = logging.getLogger(__name__)


class VaultSearch:
    """Search, related-notes and reindex operations over one vault.

    Args:
        vault_root: Vault directory (default: CWD).
        config: Loaded :class:`Config` (default: ``Config.load()``).
        db_path: Override the index database location.
    """

    def __init__(
        self,
        vault_root: str = ".",
        config: Optional[Config] = None,
        db_path: Optional[str] = None,
    ) -> None:
        self.vault_root = os.path.abspath(vault_root)
        self.config = config or Config.load()
        self.index_config = self.config.index_config()

        self.store = SQLiteVectorStore(
            db_path or self.config.db_path(self.vault_root),
            lock_retries=self.config.LOCK_RETRIES,
            lock_retry_delay=self.config.LOCK_RETRY_DELAY,
        )
        self.keywords = KeywordIndex(self.store, self.config.SUBSTRING_WEIGHT)
        self.indexer = Indexer(
            self.store, self.keywords, self.index_config,
            workers=self.config.INDEX_WORKERS,
        )
        self.searcher = Searcher(
            self.store, self.keywords, self.index_config,
            alpha=self.config.HYBRID_ALPHA,
        )
        self.related_notes = RelatedNotes(self.store, self.index_config)
        self.source = VaultNoteSource(
            self.vault_root,
            exclude_dirs=self.config.EXCLUDE_DIRS,
            embed_fields=self.config.EMBED_FIELDS,
        )

    def _clamp(self, limit: Optional[int], default: int) -> int:
        """``limit <= 0`` means the default; values above MAX_LIMIT are clamped."""
        if limit is None or limit <= 0:
            limit = default
        return min(limit, self.config.MAX_LIMIT)

    def search(
        self,
        text: str,
        filters: Optional[dict] = None,
        limit: Optional[int] = None,
        mode: str = "hybrid",
    ) -> list[dict]:
        """Return ``[{note_id, score, matched_signal, title}]``, best first."""
        results = self.searcher.search(
            text, filters=filters,
            limit=self._clamp(limit, self.config.DEFAULT_LIMIT),
            mode=mode,
        )
        return [dict(r.to_dict(), title=r.title) for r in results]

    def related(self, note_id: str, limit: Optional[int] = None) -> list[dict]:
        """Return ``[{note_id, score, title}]`` nearest to *note_id*."""
        results = self.related_notes.related(
            note_id, limit=self._clamp(limit, self.config.RELATED_LIMIT)
        )
        return [dict(r.to_dict(include_signal=False), title=r.title) for r in results]

    def reindex(
        self,
        notes: Optional[Iterable[Note]] = None,
        rebuild: bool = False,
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
    ) -> dict:
        """
        Run one reindex pass.

        Without *notes*, the vault directory is scanned for Markdown files.
        Returns ``{updated_count, deleted_count, failed_ids, ...}``.
        """
        if notes is None:
            notes = self.source.list_notes()
        result = self.indexer.reindex(
            notes, rebuild=rebuild, progress_callback=progress_callback
        )
        if result.failed_ids:
            _logger.warning(
                "%d note(s) could not be read: %s",
                len(result.failed_ids), ", ".join(result.failed_ids),
            )
        return result.to_dict()

    def status(self) -> dict:
        """Index statistics plus whether a full rebuild is pending."""
        stats = self.store.stats()
        stats["db_path"] = self.store.db_path
        stats["needs_rebuild"] = self.indexer.needs_rebuild()
        return stats
