"""Vector similarity between code and documentation chunks."""

import math
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from .models import SimilarityResult


@dataclass
class ScoredMatch:
    """A candidate ranked against a query embedding."""

    candidate: Any
    similarity: float
    index: int  # position in the candidate list


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """Compute cosine similarity between two vectors.

    Returns 0.0 when the vectors differ in length, either is empty, or
    either has zero norm.

    Args:
        a: First vector
        b: Second vector

    Returns:
        Similarity in [-1, 1]
    """
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = math.fsum(float(x) * float(y) for x, y in zip(a, b))
    squared_a = math.fsum(float(x) * float(x) for x in a)
    squared_b = math.fsum(float(y) * float(y) for y in b)

    if squared_a == 0.0 or squared_b == 0.0:
        return 0.0

    # Rounding can push |cos| marginally past 1
    return max(-1.0, min(1.0, dot / math.sqrt(squared_a * squared_b)))


def find_top_k(
    query_embedding: Optional[Sequence[float]],
    candidates: Sequence[Any],
    k: int,
    min_similarity: float,
) -> List[ScoredMatch]:
    """Rank embedded candidates against a query embedding.

    Candidates without an ``embedding`` are ignored. Results are sorted by
    descending similarity (ties keep input order), truncated to ``k``, then
    filtered to those at or above ``min_similarity``.

    Args:
        query_embedding: Embedding of the query chunk
        candidates: Chunks with an ``embedding`` attribute
        k: Maximum number of matches
        min_similarity: Minimum similarity to keep

    Returns:
        Ranked matches
    """
    if not query_embedding or k <= 0:
        return []

    scored = [
        ScoredMatch(candidate=candidate, similarity=cosine_similarity(query_embedding, candidate.embedding), index=i)
        for i, candidate in enumerate(candidates)
        if getattr(candidate, "embedding", None)
    ]
    # sorted() is stable, so equal scores keep candidate order
    scored = sorted(scored, key=lambda match: match.similarity, reverse=True)[:k]
    return [match for match in scored if match.similarity >= min_similarity]


def similarity_matrix(code_chunks: Sequence[Any], doc_chunks: Sequence[Any]) -> List[SimilarityResult]:
    """Compute similarity for every embedded code/doc pair."""
    results = []
    for code in code_chunks:
        if not code.embedding:
            continue
        for doc in doc_chunks:
            if not doc.embedding:
                continue
            results.append(
                SimilarityResult(
                    code_chunk_id=code.id,
                    doc_chunk_id=doc.id,
                    similarity=cosine_similarity(code.embedding, doc.embedding),
                )
            )
    return results


def best_matches(chunk: Any, candidates: Sequence[Any], limit: int) -> List[ScoredMatch]:
    """Top matches for a chunk regardless of any similarity threshold."""
    return find_top_k(chunk.embedding, candidates, limit, float("-inf"))
