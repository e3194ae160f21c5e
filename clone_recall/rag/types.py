from __future__ import annotations

"""Core data types for chunks, requests, and retrieval results."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

DEFAULT_MAX_RESULTS = 15

SOURCE_VECTOR_STORE = "vector_store"
SOURCE_CONTENT_STORE = "content_store"
SOURCE_MEMORY_STORE = "memory_store"


class QueryIntent(str, Enum):
    """Intent labels produced by upstream query analysis."""
    TEMPORAL_QUERY = "temporal_query"
    FACTUAL_RECALL = "factual_recall"
    TOPIC_SEARCH = "topic_search"
    CONTENT_LOOKUP = "content_lookup"
    CASUAL_CONVERSATION = "casual_conversation"
    AGGREGATION = "aggregation"


@dataclass(frozen=True)
class ContentChunk:
    """Embeddable slice of a source document."""
    id: str
    text: str
    chunk_index: int = 0
    total_chunks: int = 1
    metadata: dict[str, Any] = field(default_factory=dict)
    embedding: list[float] | None = None


@dataclass(frozen=True)
class TemporalConstraint:
    """Resolved date window for a query."""
    start_date: datetime | None = None
    end_date: datetime | None = None
    recency: str | None = None
    type: str | None = None
    recency_days: int | None = None
    year: int | None = None

    @property
    def is_bounded(self) -> bool:
        return self.start_date is not None and self.end_date is not None


@dataclass(frozen=True)
class RetrievalRequest:
    """Consumer request for the retrieval entry point."""
    query: str
    user_id: str
    app_id: str | None = None
    max_results: int = DEFAULT_MAX_RESULTS
    temporal: TemporalConstraint | None = None
    source_filter: tuple[str, ...] = ()


@dataclass(frozen=True)
class QueryAnalysis:
    """Structured view of a query, consumed read-only by retrievers."""
    intent: QueryIntent = QueryIntent.CASUAL_CONVERSATION
    temporal: TemporalConstraint | None = None
    source_filter: tuple[str, ...] = ()
    content_type_filter: tuple[str, ...] = ()
    entities: tuple[str, ...] = ()
    confidence_required: str = "low"


@dataclass(frozen=True)
class RetrievalResult:
    """Single ranked hit from any retrieval source."""
    id: str
    content: str
    relevance_score: float | None
    source: str
    type: str | None = None
    created_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def score(self) -> float:
        return self.relevance_score if self.relevance_score is not None else 0.0


@dataclass(frozen=True)
class RetrievalResponse:
    """Merged orchestrator output."""
    query: str
    results: list[RetrievalResult]
    memories: list[RetrievalResult]
    contents: list[RetrievalResult]
    total_results: int
    processing_time: float
    sources_used: list[str] = field(default_factory=list)
    confidence_level: str = "none"
    analysis: QueryAnalysis | None = None


def to_iso(value: datetime) -> str:
    """Format a datetime as an ISO-8601 UTC string for metadata storage."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_datetime(value: Any) -> datetime | None:
    """Parse metadata timestamps into aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
