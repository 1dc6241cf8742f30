"""
Tokenizer and normalizer for note text and queries.

Bump ``TOKENIZER_VERSION`` whenever the splitting rule, the stop-word
list or the token length cap changes: stored vectors and postings are
derived from these rules and the indexer forces a full rebuild when the
persisted version differs.
"""

from __future__ import annotations

import re
from collections import Counter

TOKENIZER_VERSION = "1"

# Maximum token length in Unicode code points
MAX_TOKEN_LENGTH = 64

_SPLIT_RE = re.compile(r"[\W_]+")

STOP_WORDS: frozenset[str] = frozenset({
    "a", "about", "above", "after", "again", "all", "am", "an", "and",
    "any", "are", "as", "at", "be", "because", "been", "before", "being",
    "below", "between", "both", "but", "by", "can", "did", "do", "does",
    "doing", "down", "during", "each", "few", "for", "from", "further",
    "had", "has", "have", "having", "he", "her", "here", "hers", "him",
    "his", "how", "i", "if", "in", "into", "is", "it", "its", "itself",
    "just", "me", "more", "most", "my", "no", "nor", "not", "now", "of",
    "off", "on", "once", "only", "or", "other", "our", "ours", "out",
    "over", "own", "same", "she", "should", "so", "some", "such", "than",
    "that", "the", "their", "theirs", "them", "then", "there", "these",
    "they", "this", "those", "through", "to", "too", "under", "until",
    "up", "very", "was", "we", "were", "what", "when", "where", "which",
    "while", "who", "whom", "why", "will", "with", "you", "your", "yours",
})


def normalize(text: str) -> list[str]:
    """
    Turn *text* into an ordered list of normalized tokens.

    Lowercases, splits on any run of non-word characters (punctuation,
    whitespace, underscores), drops stop words and truncates each token
    to ``MAX_TOKEN_LENGTH`` code points.

    Parameters
    ----------
    text:
        Raw note or query text.

    Returns
    -------
    list[str]
        Tokens in their original order; duplicates are kept.
    """
    if not text:
        return []
    tokens: list[str] = []
    for piece in _SPLIT_RE.split(text.lower()):
        if not piece or piece in STOP_WORDS:
            continue
        tokens.append(piece[:MAX_TOKEN_LENGTH])
    return tokens


def term_frequencies(tokens: list[str]) -> dict[str, int]:
    """Return ``{token: count}`` with keys in sorted order."""
    counts = Counter(tokens)
    return {tok: counts[tok] for tok in sorted(counts)}
