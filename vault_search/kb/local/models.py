"""
Data records shared by the indexer, the stores and the query engines.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional, Union

from ...errors import ContentReadError

if TYPE_CHECKING:
    import numpy as np

# Result signals
SIGNAL_VECTOR = "vector"
SIGNAL_KEYWORD = "keyword"
SIGNAL_BOTH = "both"

# Metadata keys accepted as query filters
FILTER_KEYS = ("type", "area", "status")


@dataclass(frozen=True)
class IndexConfig:
    """Version marker persisted alongside the index.

    Any difference between the stored and the running marker forces a
    full re-index; queries against a mismatched store are rejected.
    """
    dimension: int
    tokenizer_version: str


@dataclass
class Note:
    """Snapshot of one note for a single reindex pass, supplied by the note source.

    ``text`` may be a string or a zero-argument callable that loads it;
    the indexer only reads text for notes whose hash has changed.
    """
    id: str
    text: Union[str, Callable[[], str], None]
    content_hash: str
    modified_at: float = 0.0
    title: str = ""
    path: str = ""
    note_type: Optional[str] = None
    area: Optional[str] = None
    status: Optional[str] = None
    tags: list[str] = field(default_factory=list)

    def read_text(self) -> str:
        """Return the note text, raising :class:`ContentReadError` on failure."""
        text = self.text
        if callable(text):
            try:
                text = text()
            except (OSError, UnicodeDecodeError, ValueError) as exc:
                raise ContentReadError(self.id, str(exc)) from exc
        if text is None:
            raise ContentReadError(self.id, "no text available")
        if not isinstance(text, str):
            raise ContentReadError(self.id, f"expected str, got {type(text).__name__}")
        return text

    def metadata(self) -> dict:
        """Return the filterable metadata as a plain dict."""
        return {
            "type": self.note_type,
            "area": self.area,
            "status": self.status,
        }


@dataclass
class StoredVector:
    """One live embedding row as persisted in the vector store."""
    note_id: str
    vector: "np.ndarray"
    content_hash: str
    updated_at: float


@dataclass
class SearchResult:
    """A single ranked hit returned by search or related-notes lookups."""
    note_id: str
    score: float
    matched_signal: str = SIGNAL_VECTOR
    title: str = ""
    vector_score: float = 0.0
    keyword_score: float = 0.0

    def to_dict(self, include_signal: bool = True) -> dict:
        d = {"note_id": self.note_id, "score": self.score}
        if include_signal:
            d["matched_signal"] = self.matched_signal
        return d


@dataclass
class ReindexResult:
    """Summary of one reindex pass."""
    updated_count: int = 0
    deleted_count: int = 0
    skipped_count: int = 0
    failed_ids: list[str] = field(default_factory=list)
    full_rebuild: bool = False
    elapsed_seconds: float = 0.0

    @property
    def write_count(self) -> int:
        return self.updated_count + self.deleted_count

    def to_dict(self) -> dict:
        return {
            "updated_count": self.updated_count,
            "deleted_count": self.deleted_count,
            "failed_ids": list(self.failed_ids),
            "skipped_count": self.skipped_count,
            "full_rebuild": self.full_rebuild,
            "elapsed_seconds": self.elapsed_seconds,
        }
