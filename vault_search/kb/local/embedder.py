"""
Note embedder: Harmonic Token Projection (HTP).

A deterministic, training-free embedding: every token is projected onto
a fixed set of unit circles, one per prime modulus, and a note's vector
is the term-frequency weighted sum of its token projections, L2
normalized.

Per token:
  1. ``N = int.from_bytes(blake2b(token.utf8, digest_size=8), "big")``
  2. for the k-th prime ``p_k``: ``theta_k = 2*pi*(N mod p_k)/p_k``
  3. components ``2k = sin(theta_k)`` and ``2k+1 = cos(theta_k)``

The hash, the moduli and the interleaving are pinned by
``EMBEDDING_SCHEME``; changing any of them requires a new scheme string,
which invalidates every stored vector.
"""

from __future__ import annotations

import hashlib
import logging
import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Iterable, Optional

import numpy as np

from ...errors import ContentReadError
from .models import IndexConfig, Note
from .tokenizer import TOKENIZER_VERSION, normalize, term_frequencies

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMBEDDING_SCHEME = "htp-blake2b-1"
DEFAULT_DIMENSION = 384
_SEED_BYTES = 8


def index_config(dimension: int = DEFAULT_DIMENSION) -> IndexConfig:
    """Return the version marker for the running tokenizer and embedder."""
    if dimension < 2 or dimension % 2:
        raise ValueError(f"dimension must be an even number >= 2, got {dimension}")
    return IndexConfig(
        dimension=dimension,
        tokenizer_version=f"{TOKENIZER_VERSION}/{EMBEDDING_SCHEME}",
    )


# ---------------------------------------------------------------------------
# Harmonic basis
# ---------------------------------------------------------------------------

@lru_cache(maxsize=8)
def prime_moduli(count: int) -> tuple[int, ...]:
    """Return the first *count* primes (2, 3, 5, ...)."""
    primes: list[int] = []
    candidate = 2
    while len(primes) < count:
        limit = math.isqrt(candidate)
        if all(candidate % p for p in primes if p <= limit):
            primes.append(candidate)
        candidate += 1
    return tuple(primes)


def token_seed(token: str) -> int:
    """Return the unsigned 64-bit seed derived from *token*."""
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=_SEED_BYTES).digest()
    return int.from_bytes(digest, "big")


@lru_cache(maxsize=65536)
def token_vector(token: str, dimension: int) -> np.ndarray:
    """
    Project a single token onto the harmonic basis.

    The returned array is read-only and shared between callers.
    """
    moduli = prime_moduli(dimension // 2)
    seed = token_seed(token)
    residues = np.array([seed % m for m in moduli], dtype=np.float64)
    theta = 2.0 * np.pi * residues / np.array(moduli, dtype=np.float64)
    vec = np.empty(dimension, dtype=np.float64)
    vec[0::2] = np.sin(theta)
    vec[1::2] = np.cos(theta)
    vec.flags.writeable = False
    return vec


def embed(tokens: Iterable[str], dimension: int = DEFAULT_DIMENSION) -> np.ndarray:
    """
    Embed a token sequence into a unit-length float32 vector.

    Token order does not matter; repeated tokens weigh proportionally
    to their frequency.  An empty sequence yields the all-zero vector.

    Parameters
    ----------
    tokens:
        Output of :func:`~vault_search.kb.local.tokenizer.normalize`.
    dimension:
        Output dimension D (even).

    Returns
    -------
    numpy.ndarray
        float32 array of length *dimension*.
    """
    tokens = list(tokens)
    raw = np.zeros(dimension, dtype=np.float64)
    for tok, tf in term_frequencies(tokens).items():
        raw += tf * token_vector(tok, dimension)
    norm = float(np.linalg.norm(raw))
    if norm == 0.0:
        return np.zeros(dimension, dtype=np.float32)
    return (raw / norm).astype(np.float32)


def embed_text(text: str, dimension: int = DEFAULT_DIMENSION) -> np.ndarray:
    """Normalize and embed *text* in one step."""
    return embed(normalize(text), dimension)


# ---------------------------------------------------------------------------
# Similarity
# ---------------------------------------------------------------------------

def cosine_similarity(a, b) -> float:
    """
    Cosine similarity of two vectors.

    Zero vectors (and mismatched lengths) score 0 against everything,
    themselves included.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        return 0.0
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


def cosine_similarity_batch(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Compute cosine similarity between *query* (1-D) and each row of *matrix*."""
    query = np.asarray(query, dtype=np.float64)
    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.size == 0:
        return np.zeros(matrix.shape[0])
    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        return np.zeros(matrix.shape[0])
    row_norms = np.linalg.norm(matrix, axis=1)
    zero_rows = row_norms == 0
    row_norms[zero_rows] = 1.0
    scores = (matrix @ query) / (row_norms * query_norm)
    scores[zero_rows] = 0.0
    return scores


# ---------------------------------------------------------------------------
# Parallel note embedding
# ---------------------------------------------------------------------------

@dataclass
class EmbeddedNote:
    """A note with its derived tokens and vector, ready to be stored."""
    note: Note
    term_frequencies: dict[str, int]
    vector: np.ndarray


def _embed_one(note: Note, dimension: int) -> EmbeddedNote:
    tokens = normalize(note.read_text())
    return EmbeddedNote(
        note=note,
        term_frequencies=term_frequencies(tokens),
        vector=embed(tokens, dimension),
    )


def embed_notes(
    notes: list[Note],
    config: IndexConfig,
    workers: int = 4,
    progress_callback: Optional[Callable[[int, int, str], None]] = None,
) -> tuple[list[EmbeddedNote], list[str]]:
    """
    Tokenize and embed *notes* in parallel.

    Notes whose text cannot be read are skipped and reported.

    Parameters
    ----------
    notes:
        Notes that need (re-)embedding.
    config:
        Running index configuration; supplies the dimension.
    workers:
        Thread pool size.
    progress_callback:
        Optional callable called with (current, total, note_id).

    Returns
    -------
    tuple[list[EmbeddedNote], list[str]]
        Embedded notes in input order, and the ids that failed.
    """
    total = len(notes)
    if total == 0:
        return [], []

    results: dict[int, EmbeddedNote] = {}
    failed: list[str] = []
    done = 0

    with ThreadPoolExecutor(max_workers=max(1, min(workers, total))) as pool:
        futures = {
            pool.submit(_embed_one, note, config.dimension): idx
            for idx, note in enumerate(notes)
        }
        for future in as_completed(futures):
            idx = futures[future]
            note = notes[idx]
            try:
                results[idx] = future.result()
            except ContentReadError as exc:
                logger.warning("[embedder] Skipping %s: %s", note.id, exc)
                failed.append(note.id)
            done += 1
            if progress_callback:
                progress_callback(done, total, note.id)

    ordered = [results[i] for i in sorted(results)]
    return ordered, sorted(failed)
