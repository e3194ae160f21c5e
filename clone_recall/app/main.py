from __future__ import annotations

"""FastAPI application entrypoint for the retrieval service."""

import logging
import uuid
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request

from clone_recall.app.dependencies import (
    get_embedding_config_report,
    get_orchestrator,
    get_vector_gateway,
)
from clone_recall.app.metrics import metrics_middleware, metrics_response, observe_retrieval
from clone_recall.app.schemas import (
    DeleteRequest,
    DeleteResponse,
    EmbeddingHealthResponse,
    IngestRequest,
    IngestResponse,
    ResultItem,
    RetrieveRequest,
    RetrieveResponse,
    TemporalFilter,
    VectorStoreHealthResponse,
)
from clone_recall.app.settings import settings
from clone_recall.loaders.chunking import chunk_document
from clone_recall.rag.errors import ConfigurationError, ProviderError, ValidationError
from clone_recall.rag.types import RetrievalRequest, RetrievalResult, TemporalConstraint, parse_datetime
from clone_recall.retrieval.analysis import resolve_temporal_constraint

logger = logging.getLogger(__name__)

app = FastAPI(title="Clone Recall", version="0.1.0")


def _configure_logging() -> None:
    """Configure root logging using environment settings."""
    level_name = settings.log_level.strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    logging.getLogger("clone_recall").setLevel(level)


_configure_logging()

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _to_constraint(temporal: TemporalFilter | None) -> TemporalConstraint | None:
    """Resolve explicit dates, a relative day count, or a year into a constraint."""
    if temporal is None:
        return None
    if temporal.start_date or temporal.end_date:
        # A single explicit bound is closed with the epoch or the current time.
        start = parse_datetime(temporal.start_date) or EPOCH
        end = parse_datetime(temporal.end_date) or datetime.now(timezone.utc)
        if start > end:
            raise HTTPException(status_code=400, detail="temporal.start_date must not be after temporal.end_date")
        return TemporalConstraint(
            start_date=start,
            end_date=end,
            recency=temporal.recency,
            type=temporal.type or "absolute",
        )
    kind = temporal.type
    if kind is None:
        kind = "relative" if temporal.recency_days else ("absolute" if temporal.year else None)
    return resolve_temporal_constraint(
        kind,
        recency=temporal.recency,
        recency_days=temporal.recency_days,
        year=temporal.year,
    )


def _to_item(result: RetrievalResult) -> ResultItem:
    return ResultItem(
        id=result.id,
        content=result.content,
        relevance_score=result.relevance_score,
        source=result.source,
        type=result.type,
        created_at=result.created_at,
        metadata=result.metadata,
    )


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Attach or create a request ID for traceability."""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    """Capture request metrics before returning the response."""
    return await metrics_middleware(request, call_next)


@app.get("/metrics")
async def metrics():
    """Expose Prometheus-style metrics."""
    return metrics_response()


@app.get("/health")
async def health() -> dict[str, str]:
    """Simple health probe for uptime checks."""
    return {"status": "ok"}


@app.get("/health/embedding", response_model=EmbeddingHealthResponse)
async def embedding_health() -> EmbeddingHealthResponse:
    """Return embedding configuration health checks."""
    report = get_embedding_config_report()
    return EmbeddingHealthResponse(**report.__dict__)


@app.get("/health/vectorstore", response_model=VectorStoreHealthResponse)
async def vectorstore_health() -> VectorStoreHealthResponse:
    """Open the collection and report its size."""
    backend = settings.vectorstore_backend.lower().strip()
    try:
        count = await get_vector_gateway().count()
    except Exception as exc:
        logger.error("vectorstore_health_failed", extra={"error": str(exc)})
        return VectorStoreHealthResponse(backend=backend, ok=False, detail=type(exc).__name__)
    return VectorStoreHealthResponse(backend=backend, ok=True, document_count=count)


@app.post("/retrieve", response_model=RetrieveResponse)
async def retrieve(request: RetrieveRequest, http_request: Request) -> RetrieveResponse:
    """Search the user's memories and content."""
    request_id = getattr(http_request.state, "request_id", str(uuid.uuid4()))
    retrieval_request = RetrievalRequest(
        query=request.query,
        user_id=request.user_id,
        app_id=request.app_id,
        max_results=request.max_results or settings.max_results,
        temporal=_to_constraint(request.temporal),
        source_filter=tuple(request.source_filter),
    )
    try:
        response = await get_orchestrator().retrieve(retrieval_request)
    except ConfigurationError as exc:
        logger.error("retrieve_misconfigured", extra={"request_id": request_id, "error": str(exc)})
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    observe_retrieval(response)
    logger.info(
        "retrieve_complete",
        extra={
            "request_id": request_id,
            "total_results": response.total_results,
            "confidence": response.confidence_level,
        },
    )
    return RetrieveResponse(
        query=response.query,
        results=[_to_item(result) for result in response.results],
        memories=[_to_item(result) for result in response.memories],
        contents=[_to_item(result) for result in response.contents],
        total_results=response.total_results,
        processing_time=response.processing_time,
        sources_used=response.sources_used,
        confidence_level=response.confidence_level,
        intent=response.analysis.intent.value if response.analysis else None,
        request_id=request_id,
    )


@app.post("/documents", response_model=IngestResponse)
async def ingest_documents(request: IngestRequest) -> IngestResponse:
    """Chunk documents and upsert them into the vector store."""
    chunks = []
    for document in request.documents:
        chunks.extend(
            chunk_document(
                document.doc_id,
                document.content,
                document.metadata,
                chunk_size=settings.chunk_size,
                overlap=settings.chunk_overlap,
            )
        )
    if not chunks:
        raise HTTPException(status_code=400, detail="No documents provided")
    try:
        ingested = await get_vector_gateway().upsert_documents(chunks)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except ProviderError as exc:
        logger.error("ingest_failed", extra={"chunks": len(chunks), "error": str(exc)})
        raise HTTPException(status_code=502, detail="Vector upsert failed; retrying is safe") from exc
    return IngestResponse(ingested=ingested, ids=[chunk.id for chunk in chunks])


@app.post("/documents/delete", response_model=DeleteResponse)
async def delete_documents(request: DeleteRequest) -> DeleteResponse:
    """Delete by ids, by app, by app and source, or by app and link."""
    gateway = get_vector_gateway()
    if request.ids:
        return DeleteResponse(deleted=await gateway.delete_by_ids(request.ids), scope="ids")
    if not request.app_id:
        raise HTTPException(status_code=400, detail="ids or app_id required")
    if request.source and request.link:
        raise HTTPException(status_code=400, detail="Use either source or link, not both")
    if request.source:
        deleted = await gateway.delete_by_source(request.app_id, request.source)
        return DeleteResponse(deleted=deleted, scope="source")
    if request.link:
        deleted = await gateway.delete_by_link(request.app_id, request.link)
        return DeleteResponse(deleted=deleted, scope="link")
    return DeleteResponse(deleted=await gateway.delete_by_app(request.app_id), scope="app")
