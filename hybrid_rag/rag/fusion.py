"""Rank fusion and in-memory scoring primitives.

- Reciprocal Rank Fusion over any number of ranked id lists
- Tokenizer for Norwegian/English text (letters, digits and æøå)
- Smoothed IDF table and a tf x idf keyword score
- Cosine similarity over embedding vectors
"""

from collections.abc import Iterable, Sequence

import numpy as np

DEFAULT_RRF_K = 60

# Query tokens shorter than this carry no signal
MIN_QUERY_TOKEN_CHARS = 2

_EXTRA_LETTERS = frozenset("æøå")


def reciprocal_rank_fusion(rankings: Iterable[Sequence[str]], k: int = DEFAULT_RRF_K) -> list[tuple[str, float]]:
    """Fuse rankings by rank, not by raw score.

    score(d) = sum over rankings containing d of 1 / (k + rank), rank starting at 1.
    Ties keep first-appearance order (earlier rankings first), since the sort is stable.

    Example:
        reciprocal_rank_fusion([["A", "B", "C"], ["B", "A", "D"]])
        -> A and B score 1/61 + 1/62, C and D score 1/63

    Returns:
        (id, score) pairs sorted by descending score
    """
    scores: dict[str, float] = {}
    for ranking in rankings:
        for rank, doc_id in enumerate(ranking, start=1):
            scores[doc_id] = scores.get(doc_id, 0.0) + 1.0 / (k + rank)
    return sorted(scores.items(), key=lambda item: item[1], reverse=True)


def tokenize(text: str) -> list[str]:
    """Lower-case text and split it into runs of letters/digits (æ, ø, å included)."""
    tokens = []
    word: list[str] = []
    for ch in text.lower():
        if ch.isalnum() or ch in _EXTRA_LETTERS:
            word.append(ch)
        elif word:
            tokens.append("".join(word))
            word = []
    if word:
        tokens.append("".join(word))
    return tokens


def build_idf(documents: Iterable[str]) -> dict[str, float]:
    """Smoothed inverse document frequency: ln((N + 1) / (df + 1)) + 1.

    A term present in every document gets exactly 1.0.
    """
    df: dict[str, int] = {}
    n = 0
    for doc in documents:
        n += 1
        for token in set(tokenize(doc)):
            df[token] = df.get(token, 0) + 1
    return {token: float(np.log((n + 1.0) / (count + 1.0)) + 1.0) for token, count in df.items()}


def keyword_score(document: str, query: str, idf: dict[str, float]) -> float:
    """Sum of tf x idf over the query's tokens (length >= 2). Unknown terms use idf 1.0."""
    query_tokens = [t for t in tokenize(query) if len(t) >= MIN_QUERY_TOKEN_CHARS]
    if not query_tokens:
        return 0.0

    wanted = set(query_tokens)
    tf: dict[str, int] = {}
    for token in tokenize(document):
        if token in wanted:
            tf[token] = tf.get(token, 0) + 1

    return sum(tf.get(t, 0) * (idf.get(t) or 1.0) for t in query_tokens)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity over the common prefix of a and b; 0.0 when either norm is zero."""
    n = min(len(a), len(b))
    if n == 0:
        return 0.0
    va = np.asarray(a[:n], dtype=np.float64)
    vb = np.asarray(b[:n], dtype=np.float64)
    na = float(np.dot(va, va))
    nb = float(np.dot(vb, vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    similarity = float(np.dot(va, vb) / (np.sqrt(na) * np.sqrt(nb)))
    # rounding can push |similarity| a hair past 1
    return max(-1.0, min(1.0, similarity))
