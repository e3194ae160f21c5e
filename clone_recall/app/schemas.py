from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class TemporalFilter(BaseModel):
    start_date: datetime | None = None
    end_date: datetime | None = None
    type: Literal["relative", "absolute"] | None = None
    recency: Literal["recent", "historical", "specific"] | None = None
    recency_days: int | None = Field(default=None, ge=1, le=3650)
    year: int | None = Field(default=None, ge=1970, le=2100)


class RetrieveRequest(BaseModel):
    query: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    app_id: str | None = None
    max_results: int | None = Field(default=None, ge=1, le=100)
    temporal: TemporalFilter | None = None
    source_filter: list[str] = Field(default_factory=list)


class ResultItem(BaseModel):
    id: str
    content: str
    relevance_score: float | None
    source: str
    type: str | None = None
    created_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class RetrieveResponse(BaseModel):
    query: str
    results: list[ResultItem]
    memories: list[ResultItem]
    contents: list[ResultItem]
    total_results: int
    processing_time: float
    sources_used: list[str]
    confidence_level: str
    intent: str | None = None
    request_id: str


class IngestDocument(BaseModel):
    doc_id: str = Field(min_length=1)
    content: str = Field(min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


class IngestRequest(BaseModel):
    documents: list[IngestDocument]


class IngestResponse(BaseModel):
    ingested: int
    ids: list[str]


class DeleteRequest(BaseModel):
    ids: list[str] | None = None
    app_id: str | None = None
    source: str | None = None
    link: str | None = None


class DeleteResponse(BaseModel):
    deleted: int
    scope: str


class VectorStoreHealthResponse(BaseModel):
    backend: str
    ok: bool
    document_count: int | None = None
    detail: str | None = None


class EmbeddingHealthResponse(BaseModel):
    provider: str
    model: str | None
    configured_dimension: int
    expected_dimension: int | None = None
    ok: bool
    status: str
    detail: str | None = None
    action: str | None = None
