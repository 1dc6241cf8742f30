"""
vault_search: local semantic search over a Markdown vault.

Public API for library usage::

    from vault_search import VaultSearch

    vs = VaultSearch("/path/to/vault")
    vs.reindex()
    hits = vs.search("rust memory safety")
"""

from .api import VaultSearch
from .errors import (
    ContentReadError, DimensionMismatchError, EmptyQueryError,
    NotFoundError, StorageError, StorageLockError, VaultSearchError,
)

__version__ = "0.1.0"

__all__ = [
    "VaultSearch",
    "VaultSearchError",
    "ContentReadError",
    "DimensionMismatchError",
    "EmptyQueryError",
    "NotFoundError",
    "StorageError",
    "StorageLockError",
]
