"""
Exception taxonomy for the vault search engine.

Indexing failures for single notes are collected into the pass summary;
everything else propagates to the caller.
"""

from __future__ import annotations


class VaultSearchError(Exception):
    """Base class for all vault search failures."""


class ContentReadError(VaultSearchError):
    """Raised when a note's text cannot be read during a reindex pass."""

    def __init__(self, note_id: str, reason: str = "") -> None:
        self.note_id = note_id
        self.reason = reason
        msg = f"Cannot read content of note '{note_id}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class DimensionMismatchError(VaultSearchError):
    """Stored dimension or tokenizer version disagrees with the running config."""


class StorageLockError(VaultSearchError):
    """Raised when another writer holds the index write lock."""


class StorageError(VaultSearchError):
    """Raised when a write to the index fails; the pass is rolled back."""


class EmptyQueryError(VaultSearchError, ValueError):
    """Raised for blank or whitespace-only query text."""


class NotFoundError(VaultSearchError, LookupError):
    """Raised when a note id has no stored vector."""

    def __init__(self, note_id: str) -> None:
        self.note_id = note_id
        super().__init__(f"Note '{note_id}' is not in the index")
