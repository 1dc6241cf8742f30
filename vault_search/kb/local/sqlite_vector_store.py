"""
SQLite-backed vector store for the vault index.

Stores one unit-normalized float32 embedding per note together with the
note's filterable metadata and the content hash the vector was derived
from.  Similarity is computed by a brute-force scan in numpy; at vault
scale (hundreds to low thousands of notes) a full O(N*D) pass is fast.

Concurrency model:
  - the database runs in WAL mode;
  - every write happens inside :meth:`SQLiteVectorStore.transaction`,
    which takes SQLite's single RESERVED lock via ``BEGIN IMMEDIATE``.
    A second writer (thread or process) fails fast with
    :class:`StorageLockError` after a bounded backoff;
  - readers use :meth:`SQLiteVectorStore.read_snapshot`, a deferred read
    transaction on a private connection, so they only ever see committed
    passes.

Storage: ``<vault>/.vault_search/index.db``
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import time
from contextlib import contextmanager
from typing import Iterator, Optional

import numpy as np

from ...errors import DimensionMismatchError, StorageError, StorageLockError
from .models import IndexConfig, StoredVector

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS index_meta (
    key     TEXT PRIMARY KEY,
    value   TEXT
);

CREATE TABLE IF NOT EXISTS notes (
    note_id       TEXT PRIMARY KEY,
    title         TEXT NOT NULL DEFAULT '',
    path          TEXT NOT NULL DEFAULT '',
    note_type     TEXT,
    area          TEXT,
    status        TEXT,
    tags          TEXT NOT NULL DEFAULT '[]',
    modified_at   REAL NOT NULL DEFAULT 0.0
);

CREATE TABLE IF NOT EXISTS vectors (
    note_id       TEXT PRIMARY KEY REFERENCES notes(note_id) ON DELETE CASCADE,
    vector        BLOB NOT NULL,
    content_hash  TEXT NOT NULL,
    updated_at    REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS postings (
    token     TEXT    NOT NULL,
    note_id   TEXT    NOT NULL,
    tf        INTEGER NOT NULL,
    PRIMARY KEY (token, note_id)
);

CREATE INDEX IF NOT EXISTS idx_postings_note ON postings(note_id);
CREATE INDEX IF NOT EXISTS idx_notes_type    ON notes(note_type);
CREATE INDEX IF NOT EXISTS idx_notes_area    ON notes(area);
CREATE INDEX IF NOT EXISTS idx_notes_status  ON notes(status);
"""

_META_DIMENSION = "dimension"
_META_TOKENIZER = "tokenizer_version"
_META_LAST_INDEXED = "last_indexed"

_FILTER_COLUMNS = {"type": "note_type", "area": "area", "status": "status"}

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _vec_to_bytes(vec) -> bytes:
    """Serialise a vector to little-endian float32 bytes."""
    return np.asarray(vec, dtype="<f4").tobytes()


def _bytes_to_vec(buf: bytes) -> np.ndarray:
    """Deserialise bytes back to a float32 vector."""
    return np.frombuffer(buf, dtype="<f4").astype(np.float32)


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


def _rollback(conn: sqlite3.Connection) -> None:
    """Roll back if a transaction is still open (SQLite may have aborted it)."""
    if conn.in_transaction:
        conn.execute("ROLLBACK")


# ---------------------------------------------------------------------------
# SQLiteVectorStore
# ---------------------------------------------------------------------------

class SQLiteVectorStore:
    """Persistent keyed storage for note embeddings.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created if absent.
    lock_retries:
        How many times to retry acquiring the write lock.
    lock_retry_delay:
        Base delay in seconds for the exponential backoff.
    """

    def __init__(
        self,
        db_path: str,
        lock_retries: int = 3,
        lock_retry_delay: float = 0.2,
    ) -> None:
        self._db_path = db_path
        self._lock_retries = max(0, lock_retries)
        self._lock_retry_delay = lock_retry_delay
        self._local = threading.local()
        os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        self._init_db()

    @property
    def db_path(self) -> str:
        return self._db_path

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def _init_db(self) -> None:
        """Create the database and tables if missing."""
        conn = sqlite3.connect(self._db_path, timeout=10)
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_SCHEMA)
            conn.commit()
        finally:
            conn.close()

    def _open(self, timeout: float) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._db_path, timeout=timeout, isolation_level=None,
            check_same_thread=False,
        )
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def read_snapshot(self) -> Iterator[sqlite3.Connection]:
        """
        Yield a connection inside a read transaction.

        Everything read through the yielded connection reflects one
        committed state of the index.
        """
        active = getattr(self._local, "conn", None)
        if active is not None:
            # Inside this thread's own write pass: read through the writer.
            yield active
            return
        conn = self._open(timeout=10)
        try:
            conn.execute("BEGIN")
            yield conn
        finally:
            _rollback(conn)
            conn.close()

    def _begin_write(self) -> sqlite3.Connection:
        """Open a connection holding the write lock, with bounded backoff."""
        conn = self._open(timeout=0)
        attempt = 0
        while True:
            try:
                conn.execute("BEGIN IMMEDIATE")
                return conn
            except sqlite3.OperationalError as exc:
                if not _is_lock_error(exc):
                    conn.close()
                    raise StorageError(f"Cannot start write transaction: {exc}") from exc
                if attempt >= self._lock_retries:
                    conn.close()
                    raise StorageLockError(
                        f"Index at {self._db_path} is locked by another writer"
                    ) from exc
            wait = self._lock_retry_delay * (2 ** attempt)
            attempt += 1
            logger.debug(
                "[vector_store] Write lock busy (attempt %d/%d), retrying in %.2fs",
                attempt, self._lock_retries + 1, wait,
            )
            time.sleep(wait)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Single-writer scope.  Commits on success, rolls back on any error.

        Nested calls from the same thread join the outer transaction.

        Raises
        ------
        StorageLockError
            If another writer holds the lock after all retries.
        StorageError
            If a write fails; nothing from the scope is committed.
        """
        active = getattr(self._local, "conn", None)
        if active is not None:
            yield active
            return

        conn = self._begin_write()
        self._local.conn = conn
        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            _rollback(conn)
            raise StorageError(f"Index write failed: {exc}") from exc
        except BaseException:
            _rollback(conn)
            raise
        finally:
            self._local.conn = None
            conn.close()

    # ------------------------------------------------------------------
    # Index metadata
    # ------------------------------------------------------------------

    def _get_meta(self, conn: sqlite3.Connection, key: str) -> Optional[str]:
        row = conn.execute(
            "SELECT value FROM index_meta WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def _set_meta(self, conn: sqlite3.Connection, key: str, value: str) -> None:
        conn.execute(
            "INSERT INTO index_meta (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    def get_index_config(
        self, conn: Optional[sqlite3.Connection] = None
    ) -> Optional[IndexConfig]:
        """Return the persisted version marker, or None for a fresh store."""
        if conn is None:
            with self.read_snapshot() as c:
                return self.get_index_config(c)
        dim = self._get_meta(conn, _META_DIMENSION)
        version = self._get_meta(conn, _META_TOKENIZER)
        if dim is None or version is None:
            return None
        return IndexConfig(dimension=int(dim), tokenizer_version=version)

    def has_data(self, conn: Optional[sqlite3.Connection] = None) -> bool:
        """Return True if any note, vector, posting or marker key is stored."""
        if conn is None:
            with self.read_snapshot() as c:
                return self.has_data(c)
        row = conn.execute(
            """
            SELECT EXISTS (SELECT 1 FROM notes)
                OR EXISTS (SELECT 1 FROM vectors)
                OR EXISTS (SELECT 1 FROM postings)
                OR EXISTS (SELECT 1 FROM index_meta WHERE key IN (?, ?))
            """,
            (_META_DIMENSION, _META_TOKENIZER),
        ).fetchone()
        return bool(row[0])

    def set_index_config(self, config: IndexConfig) -> None:
        """Persist *config* as the store's version marker."""
        with self.transaction() as conn:
            self._set_meta(conn, _META_DIMENSION, str(config.dimension))
            self._set_meta(conn, _META_TOKENIZER, config.tokenizer_version)

    def check_compatible(
        self, config: IndexConfig, conn: Optional[sqlite3.Connection] = None
    ) -> bool:
        """
        Return True if the store was built with *config*, False if the
        store is empty and has never been built.

        Raises
        ------
        DimensionMismatchError
            If the persisted marker differs from *config*, or the store
            holds data without a complete marker.
        """
        if conn is None:
            with self.read_snapshot() as c:
                return self.check_compatible(config, c)
        stored = self.get_index_config(conn)
        if stored is None:
            if self.has_data(conn):
                raise DimensionMismatchError(
                    "Index holds data without a version marker. Run a full reindex."
                )
            return False
        if stored != config:
            raise DimensionMismatchError(
                f"Index was built with dimension={stored.dimension}, "
                f"tokenizer={stored.tokenizer_version!r}; running "
                f"dimension={config.dimension}, tokenizer={config.tokenizer_version!r}. "
                "Run a full reindex."
            )
        return True

    def touch_last_indexed(self) -> None:
        with self.transaction() as conn:
            self._set_meta(conn, _META_LAST_INDEXED, repr(time.time()))

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def upsert(
        self,
        note_id: str,
        vector,
        content_hash: str,
        metadata: Optional[dict] = None,
    ) -> None:
        """
        Insert or replace the vector (and metadata) for *note_id*.

        Parameters
        ----------
        note_id:
            Unique note key.
        vector:
            Sequence of D floats, already unit-normalized.
        content_hash:
            Hash of the text the vector was derived from.
        metadata:
            Optional ``title``, ``path``, ``type``, ``area``, ``status``,
            ``tags``, ``modified_at`` for filtering and display.

        Raises
        ------
        DimensionMismatchError
            If ``len(vector)`` differs from the store dimension.
        """
        vec = np.asarray(vector, dtype=np.float32)
        meta = metadata or {}
        with self.transaction() as conn:
            stored_dim = self._get_meta(conn, _META_DIMENSION)
            if stored_dim is None:
                self._set_meta(conn, _META_DIMENSION, str(vec.shape[0]))
            elif int(stored_dim) != vec.shape[0]:
                raise DimensionMismatchError(
                    f"Cannot store a {vec.shape[0]}-dimensional vector for "
                    f"'{note_id}' in a {stored_dim}-dimensional index"
                )
            conn.execute(
                """
                INSERT INTO notes (note_id, title, path, note_type, area, status, tags, modified_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(note_id) DO UPDATE SET
                    title       = excluded.title,
                    path        = excluded.path,
                    note_type   = excluded.note_type,
                    area        = excluded.area,
                    status      = excluded.status,
                    tags        = excluded.tags,
                    modified_at = excluded.modified_at
                """,
                (
                    note_id,
                    meta.get("title") or "",
                    meta.get("path") or "",
                    meta.get("type"),
                    meta.get("area"),
                    meta.get("status"),
                    json.dumps(list(meta.get("tags") or [])),
                    float(meta.get("modified_at") or 0.0),
                ),
            )
            conn.execute(
                """
                INSERT INTO vectors (note_id, vector, content_hash, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(note_id) DO UPDATE SET
                    vector       = excluded.vector,
                    content_hash = excluded.content_hash,
                    updated_at   = excluded.updated_at
                """,
                (note_id, _vec_to_bytes(vec), content_hash, time.time()),
            )

    def delete(self, note_id: str) -> bool:
        """Remove *note_id* and its vector.  Returns True if it existed."""
        with self.transaction() as conn:
            cur = conn.execute("DELETE FROM notes WHERE note_id = ?", (note_id,))
            return cur.rowcount > 0

    def clear(self) -> None:
        """Delete every note, vector and version marker."""
        with self.transaction() as conn:
            conn.execute("DELETE FROM vectors")
            conn.execute("DELETE FROM notes")
            conn.execute("DELETE FROM index_meta")

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get(
        self, note_id: str, conn: Optional[sqlite3.Connection] = None
    ) -> Optional[StoredVector]:
        """Return the stored vector for *note_id*, or None."""
        if conn is None:
            with self.read_snapshot() as c:
                return self.get(note_id, c)
        row = conn.execute(
            "SELECT note_id, vector, content_hash, updated_at "
            "FROM vectors WHERE note_id = ?",
            (note_id,),
        ).fetchone()
        if row is None:
            return None
        return StoredVector(
            note_id=row["note_id"],
            vector=_bytes_to_vec(row["vector"]),
            content_hash=row["content_hash"],
            updated_at=row["updated_at"],
        )

    def scan(
        self, conn: Optional[sqlite3.Connection] = None
    ) -> Iterator[StoredVector]:
        """
        Lazily yield every stored vector, ordered by note id.

        Without *conn*, the scan runs in its own read snapshot which is
        released when the iterator is exhausted or closed.
        """
        if conn is None:
            with self.read_snapshot() as c:
                yield from self.scan(c)
            return
        cur = conn.execute(
            "SELECT note_id, vector, content_hash, updated_at "
            "FROM vectors ORDER BY note_id"
        )
        for row in cur:
            yield StoredVector(
                note_id=row["note_id"],
                vector=_bytes_to_vec(row["vector"]),
                content_hash=row["content_hash"],
                updated_at=row["updated_at"],
            )

    def content_hashes(
        self, conn: Optional[sqlite3.Connection] = None
    ) -> dict[str, str]:
        """Return ``{note_id: content_hash}`` for every stored vector."""
        if conn is None:
            with self.read_snapshot() as c:
                return self.content_hashes(c)
        rows = conn.execute("SELECT note_id, content_hash FROM vectors").fetchall()
        return {r["note_id"]: r["content_hash"] for r in rows}

    def note_ids(self, conn: Optional[sqlite3.Connection] = None) -> list[str]:
        """Return every note id known to the store (with or without vector)."""
        if conn is None:
            with self.read_snapshot() as c:
                return self.note_ids(c)
        rows = conn.execute("SELECT note_id FROM notes ORDER BY note_id").fetchall()
        return [r["note_id"] for r in rows]

    def filter_note_ids(
        self,
        filters: Optional[dict],
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[set[str]]:
        """
        Return the ids whose metadata matches every filter, or None when
        *filters* imposes no constraint.

        Supported keys: ``type``, ``area``, ``status`` (exact match).
        """
        clauses: list[str] = []
        params: list[str] = []
        for key, value in (filters or {}).items():
            if value is None or value == "":
                continue
            column = _FILTER_COLUMNS.get(key)
            if column is None:
                raise ValueError(
                    f"Unsupported filter '{key}'. Use one of: {', '.join(_FILTER_COLUMNS)}"
                )
            clauses.append(f"{column} = ?")
            params.append(str(value))
        if not clauses:
            return None
        if conn is None:
            with self.read_snapshot() as c:
                return self.filter_note_ids(filters, c)
        rows = conn.execute(
            "SELECT note_id FROM notes WHERE " + " AND ".join(clauses), params
        ).fetchall()
        return {r["note_id"] for r in rows}

    def titles(self, conn: Optional[sqlite3.Connection] = None) -> dict[str, str]:
        """Return ``{note_id: title}`` for display."""
        if conn is None:
            with self.read_snapshot() as c:
                return self.titles(c)
        rows = conn.execute("SELECT note_id, title FROM notes").fetchall()
        return {r["note_id"]: r["title"] for r in rows}

    def stats(self) -> dict:
        """
        Return aggregate statistics about the index.

        Returns
        -------
        dict
            Keys: note_count, vector_count, token_count, dimension,
            tokenizer_version, last_indexed, file_size_bytes.
        """
        with self.read_snapshot() as conn:
            note_count = conn.execute("SELECT COUNT(*) FROM notes").fetchone()[0]
            vector_count = conn.execute("SELECT COUNT(*) FROM vectors").fetchone()[0]
            token_count = conn.execute(
                "SELECT COUNT(DISTINCT token) FROM postings"
            ).fetchone()[0]
            dim = self._get_meta(conn, _META_DIMENSION)
            version = self._get_meta(conn, _META_TOKENIZER)
            last = self._get_meta(conn, _META_LAST_INDEXED)
        try:
            size = os.path.getsize(self._db_path)
        except OSError:
            size = 0
        return {
            "note_count": note_count,
            "vector_count": vector_count,
            "token_count": token_count,
            "dimension": int(dim) if dim is not None else None,
            "tokenizer_version": version,
            "last_indexed": float(last) if last is not None else None,
            "file_size_bytes": size,
        }
