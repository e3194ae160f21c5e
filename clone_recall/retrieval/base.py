from __future__ import annotations

"""Retriever base class with per-retriever failure isolation."""

import logging
from dataclasses import replace
from typing import Sequence

from clone_recall.rag.types import QueryAnalysis, RetrievalRequest, RetrievalResult
from clone_recall.vectorstore.filters import Eq, Filter, all_of, any_of

logger = logging.getLogger(__name__)


class Retriever:
    """Base class for retrievers.

    Subclasses implement ``_retrieve``. ``retrieve`` never raises: any error
    is logged and reported as an empty result list.
    """
    name = "retriever"

    async def retrieve(
        self, request: RetrievalRequest, analysis: QueryAnalysis
    ) -> list[RetrievalResult]:
        """Return results for the request, or [] if anything goes wrong."""
        try:
            results = await self._retrieve(request, analysis)
        except Exception as exc:
            logger.error(
                "retriever_failed",
                extra={"retriever": self.name, "error": str(exc)},
                exc_info=True,
            )
            return []
        logger.debug("retriever_complete", extra={"retriever": self.name, "count": len(results)})
        return results

    async def _retrieve(
        self, request: RetrievalRequest, analysis: QueryAnalysis
    ) -> list[RetrievalResult]:
        raise NotImplementedError


def source_clause(sources: Sequence[str]) -> Filter | None:
    """OR together equality clauses for each requested source."""
    return any_of(*(Eq("source", source) for source in sources))


def owner_filter(request: RetrievalRequest, *extra: Filter | None) -> Filter | None:
    """Scope a vector query to the requesting user and, when set, the app."""
    app_clause = Eq("app_id", str(request.app_id)) if request.app_id is not None else None
    return all_of(Eq("user_id", str(request.user_id)), app_clause, *extra)


def with_default_scores(results: Sequence[RetrievalResult]) -> list[RetrievalResult]:
    """Replace missing scores with 0.0 so results can be boosted and ranked."""
    return [
        replace(result, relevance_score=0.0) if result.relevance_score is None else result
        for result in results
    ]
