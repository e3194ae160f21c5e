from __future__ import annotations

"""Time-scoped retrieval with a recency boost for "recent" queries."""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Sequence

from clone_recall.content.store import ContentStore
from clone_recall.rag.types import (
    QueryAnalysis,
    RetrievalRequest,
    RetrievalResult,
    to_iso,
)
from clone_recall.retrieval.base import Retriever, owner_filter, source_clause, with_default_scores
from clone_recall.vectorstore.filters import Range
from clone_recall.vectorstore.gateway import VectorStoreGateway

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def recency_multiplier(age_days: float) -> float:
    """Score multiplier for content ``age_days`` old.

    2.0 at day 0 falling to 1.5 at day 7, then to 1.2 at day 30 inclusive.
    Older content and future timestamps get 1.0.
    """
    if age_days < 0:
        return 1.0
    if age_days < 7:
        return 2.0 - (age_days / 7.0) * 0.5
    if age_days <= 30:
        return 1.5 - ((age_days - 7.0) / 23.0) * 0.3
    return 1.0


def apply_recency_boost(
    results: Sequence[RetrievalResult], now: datetime
) -> list[RetrievalResult]:
    """Multiply each dated result's score by its recency multiplier."""
    boosted: list[RetrievalResult] = []
    for result in results:
        if result.created_at is None:
            boosted.append(result)
            continue
        age_days = (now - result.created_at).total_seconds() / SECONDS_PER_DAY
        multiplier = recency_multiplier(age_days)
        metadata = dict(result.metadata)
        metadata["recency_boost"] = multiplier
        boosted.append(
            replace(result, relevance_score=result.score * multiplier, metadata=metadata)
        )
    return boosted


class TemporalRetriever(Retriever):
    """Searches the vector store and the content database inside a date window."""
    name = "temporal"

    def __init__(
        self,
        gateway: VectorStoreGateway,
        content_store: ContentStore | None = None,
        top_k: int = 20,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._gateway = gateway
        self._content_store = content_store
        self._top_k = top_k
        self._clock = clock

    async def _retrieve(
        self, request: RetrievalRequest, analysis: QueryAnalysis
    ) -> list[RetrievalResult]:
        constraint = analysis.temporal
        if constraint is None or not constraint.is_bounded:
            return []

        date_range = Range(
            "created_at", gte=to_iso(constraint.start_date), lte=to_iso(constraint.end_date)
        )
        where = owner_filter(request, date_range, source_clause(analysis.source_filter))
        vector_branch, content_branch = await asyncio.gather(
            self._gateway.hybrid_search(request.query, top_k=self._top_k, where=where),
            self._search_content(request, analysis),
            return_exceptions=True,
        )
        results: list[RetrievalResult] = []
        for branch, outcome in (("vector", vector_branch), ("content", content_branch)):
            if isinstance(outcome, BaseException):
                logger.error(
                    "temporal_branch_failed",
                    extra={"branch": branch, "error": str(outcome)},
                )
                continue
            results.extend(with_default_scores(outcome))

        if constraint.recency == "recent":
            results = apply_recency_boost(results, self._clock())
        logger.info(
            "temporal_retrieval_complete",
            extra={
                "start_date": to_iso(constraint.start_date),
                "end_date": to_iso(constraint.end_date),
                "recency": constraint.recency,
                "count": len(results),
            },
        )
        return results

    async def _search_content(
        self, request: RetrievalRequest, analysis: QueryAnalysis
    ) -> list[RetrievalResult]:
        if self._content_store is None:
            return []
        constraint = analysis.temporal
        return await self._content_store.full_text_search(
            request.query,
            app_id=request.app_id,
            user_id=request.user_id,
            start=constraint.start_date,
            end=constraint.end_date,
            sources=analysis.source_filter,
            limit=self._top_k,
        )
