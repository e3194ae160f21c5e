from __future__ import annotations

"""Reciprocal Rank Fusion of vector and lexical result lists."""

from dataclasses import replace
from typing import Sequence

from clone_recall.rag.types import RetrievalResult

RRF_K = 60


def reciprocal_rank_fusion(
    vector_results: Sequence[RetrievalResult],
    lexical_results: Sequence[RetrievalResult],
    top_k: int,
    k: int = RRF_K,
) -> list[RetrievalResult]:
    """Merge two ranked lists by summing 1 / (k + rank) per id.

    When an id appears in both lists the vector copy supplies content,
    metadata, and timestamps. The returned relevance score is the fused score.
    """
    if not vector_results:
        return list(lexical_results)
    if not lexical_results:
        return list(vector_results)

    scores: dict[str, float] = {}
    chosen: dict[str, RetrievalResult] = {}
    for rank, result in enumerate(vector_results, start=1):
        scores[result.id] = scores.get(result.id, 0.0) + 1.0 / (k + rank)
        chosen.setdefault(result.id, result)
    for rank, result in enumerate(lexical_results, start=1):
        scores[result.id] = scores.get(result.id, 0.0) + 1.0 / (k + rank)
        chosen.setdefault(result.id, result)

    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    return [replace(chosen[doc_id], relevance_score=score) for doc_id, score in ranked[:top_k]]
