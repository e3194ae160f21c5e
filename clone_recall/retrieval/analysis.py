from __future__ import annotations

"""Query analysis contract and the default request-driven analyzer."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

from clone_recall.rag.types import QueryAnalysis, QueryIntent, RetrievalRequest, TemporalConstraint


class QueryAnalyzer(Protocol):
    """Produces a QueryAnalysis for a request."""

    async def analyze(self, request: RetrievalRequest) -> QueryAnalysis:
        raise NotImplementedError


def default_analysis() -> QueryAnalysis:
    """Analysis used when the analyzer fails: casual chat, no filters."""
    return QueryAnalysis(intent=QueryIntent.CASUAL_CONVERSATION, confidence_required="low")


def resolve_temporal_constraint(
    type: str | None,
    recency: str | None = None,
    recency_days: int | None = None,
    year: int | None = None,
    now: datetime | None = None,
) -> TemporalConstraint:
    """Turn a relative day count or an absolute year into concrete dates."""
    now = now or datetime.now(timezone.utc)
    if type == "relative" and recency_days:
        return TemporalConstraint(
            start_date=now - timedelta(days=recency_days),
            end_date=now,
            recency=recency,
            type=type,
            recency_days=recency_days,
        )
    if type == "absolute" and year:
        return TemporalConstraint(
            start_date=datetime(year, 1, 1, tzinfo=timezone.utc),
            end_date=datetime(year, 12, 31, 23, 59, 59, tzinfo=timezone.utc),
            recency=recency,
            type=type,
            year=year,
        )
    return TemporalConstraint(recency=recency, type=type, recency_days=recency_days, year=year)


@dataclass(frozen=True)
class RequestQueryAnalyzer:
    """Analyzer that trusts filters already resolved on the request."""

    async def analyze(self, request: RetrievalRequest) -> QueryAnalysis:
        if request.temporal is not None:
            intent = QueryIntent.TEMPORAL_QUERY
        elif request.source_filter:
            intent = QueryIntent.CONTENT_LOOKUP
        else:
            intent = QueryIntent.TOPIC_SEARCH
        return QueryAnalysis(
            intent=intent,
            temporal=request.temporal,
            source_filter=tuple(request.source_filter),
            confidence_required="medium",
        )
