from __future__ import annotations

"""Fan a request out to every retriever and merge what comes back."""

import asyncio
import logging
import time
from typing import Iterable, Sequence

from clone_recall.rag.types import (
    SOURCE_MEMORY_STORE,
    QueryAnalysis,
    RetrievalRequest,
    RetrievalResponse,
    RetrievalResult,
)
from clone_recall.retrieval.analysis import QueryAnalyzer, RequestQueryAnalyzer, default_analysis
from clone_recall.retrieval.base import Retriever

logger = logging.getLogger(__name__)

HIGH_RELEVANCE = 0.7


def _dedupe_key(result: RetrievalResult) -> str:
    # Chunks of one stored row, and the row found by SQL search, share a row id.
    content_id = result.metadata.get("content_id")
    if content_id is not None:
        return f"content:{content_id}"
    link_id = result.metadata.get("link_id")
    if link_id is not None:
        return f"link:{link_id}"
    return result.id


def merge_results(
    batches: Iterable[Sequence[RetrievalResult]], max_results: int
) -> list[RetrievalResult]:
    """Deduplicate by stored row (or id) keeping the best score, sort descending, and cap."""
    best: dict[str, RetrievalResult] = {}
    for batch in batches:
        for result in batch:
            key = _dedupe_key(result)
            current = best.get(key)
            if current is None or result.score > current.score:
                best[key] = result
    ranked = sorted(best.values(), key=lambda result: result.score, reverse=True)
    return ranked[: max(0, max_results)]


def partition_results(
    results: Sequence[RetrievalResult],
) -> tuple[list[RetrievalResult], list[RetrievalResult]]:
    """Split results into durable memories and raw content."""
    memories: list[RetrievalResult] = []
    contents: list[RetrievalResult] = []
    for result in results:
        if result.source == SOURCE_MEMORY_STORE or result.type == "memory":
            memories.append(result)
        else:
            contents.append(result)
    return memories, contents


def confidence_level(results: Sequence[RetrievalResult], analysis: QueryAnalysis) -> str:
    """Grade result quality against how sure the query needs us to be."""
    if not results:
        return "none"
    high_count = sum(1 for result in results if result.score > HIGH_RELEVANCE)
    mean = sum(result.score for result in results) / len(results)
    if analysis.confidence_required == "high":
        if high_count >= 3 and mean > 0.6:
            return "high"
        if high_count >= 1 and mean > 0.5:
            return "medium"
        return "low"
    if analysis.confidence_required == "medium":
        if high_count >= 2 and mean > 0.5:
            return "high"
        if len(results) >= 3:
            return "medium"
        return "low"
    return "medium"


def _retriever_name(retriever: Retriever) -> str:
    return getattr(retriever, "name", None) or type(retriever).__name__

class RetrievalOrchestrator:
    """Runs all registered retrievers concurrently and merges their results."""

    def __init__(
        self,
        retrievers: Sequence[Retriever] = (),
        analyzer: QueryAnalyzer | None = None,
    ) -> None:
        self._retrievers: list[Retriever] = list(retrievers)
        self._analyzer = analyzer or RequestQueryAnalyzer()

    @property
    def retrievers(self) -> list[Retriever]:
        return list(self._retrievers)

    def register(self, retriever: Retriever) -> None:
        self._retrievers.append(retriever)

    async def retrieve(self, request: RetrievalRequest) -> RetrievalResponse:
        """Return merged results; processing_time is in milliseconds."""
        started = time.perf_counter()
        analysis = await self._analyze(request)
        outcomes = await asyncio.gather(
            *(retriever.retrieve(request, analysis) for retriever in self._retrievers),
            return_exceptions=True,
        )
        batches: list[list[RetrievalResult]] = []
        for retriever, outcome in zip(self._retrievers, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "retriever_failed",
                    extra={"retriever": _retriever_name(retriever), "error": str(outcome)},
                )
                batches.append([])
                continue
            batches.append(list(outcome))
        sources_used: list[str] = []
        for batch in batches:
            for result in batch:
                if result.source not in sources_used:
                    sources_used.append(result.source)

        merged = merge_results(batches, request.max_results)
        memories, contents = partition_results(merged)
        confidence = confidence_level(merged, analysis)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        logger.info(
            "retrieval_complete",
            extra={
                "intent": analysis.intent.value,
                "retrievers": [_retriever_name(retriever) for retriever in self._retrievers],
                "per_retriever": [len(batch) for batch in batches],
                "memories": len(memories),
                "contents": len(contents),
                "confidence": confidence,
                "processing_ms": round(elapsed_ms, 2),
            },
        )
        return RetrievalResponse(
            query=request.query,
            results=merged,
            memories=memories,
            contents=contents,
            total_results=len(merged),
            processing_time=elapsed_ms,
            sources_used=sources_used,
            confidence_level=confidence,
            analysis=analysis,
        )

    async def _analyze(self, request: RetrievalRequest) -> QueryAnalysis:
        try:
            return await self._analyzer.analyze(request)
        except Exception as exc:
            logger.warning("query_analysis_failed", extra={"error": str(exc)})
            return default_analysis()
