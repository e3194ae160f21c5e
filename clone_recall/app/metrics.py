from __future__ import annotations

import time

from fastapi import Request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

from clone_recall.app.settings import settings
from clone_recall.rag.types import RetrievalResponse

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
RETRIEVAL_LATENCY = Histogram(
    "retrieval_duration_seconds",
    "Time spent in the retrieval orchestrator",
)
RETRIEVAL_RESULTS = Counter(
    "retrieval_results_total",
    "Results returned by retrieval, by producing source",
    ["source"],
)
RETRIEVAL_CONFIDENCE = Counter(
    "retrieval_confidence_total",
    "Retrieval responses by confidence level",
    ["level"],
)


async def metrics_middleware(request: Request, call_next):
    if not settings.metrics_enabled:
        return await call_next(request)
    path = request.url.path
    if path == "/metrics":
        return await call_next(request)
    start = time.monotonic()
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
        return response
    finally:
        duration = time.monotonic() - start
        REQUEST_COUNT.labels(request.method, path, str(status)).inc()
        REQUEST_LATENCY.labels(request.method, path).observe(duration)


def observe_retrieval(response: RetrievalResponse) -> None:
    if not settings.metrics_enabled:
        return
    RETRIEVAL_LATENCY.observe(response.processing_time / 1000.0)
    RETRIEVAL_CONFIDENCE.labels(response.confidence_level).inc()
    for result in response.results:
        RETRIEVAL_RESULTS.labels(result.source).inc()


def metrics_response() -> Response:
    if not settings.metrics_enabled:
        return Response(status_code=404)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
