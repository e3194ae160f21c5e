from __future__ import annotations

"""Long-term memory retrieval from the durable-memory service."""

import logging

from clone_recall.content.memories import Mem0MemoryStore
from clone_recall.rag.types import (
    SOURCE_MEMORY_STORE,
    QueryAnalysis,
    RetrievalRequest,
    RetrievalResult,
)
from clone_recall.retrieval.base import Retriever

logger = logging.getLogger(__name__)

DEFAULT_MIN_SCORE = 0.4


class MemoryRetriever(Retriever):
    """Returns stored memories scoring above ``min_score``."""
    name = "memory"

    def __init__(self, memory_store: Mem0MemoryStore, min_score: float = DEFAULT_MIN_SCORE) -> None:
        self._memory_store = memory_store
        self._min_score = min_score

    async def _retrieve(
        self, request: RetrievalRequest, analysis: QueryAnalysis
    ) -> list[RetrievalResult]:
        records = await self._memory_store.search(request.query, request.user_id, request.app_id)
        allowed_sources = set(analysis.source_filter)
        results: list[RetrievalResult] = []
        for record in records:
            score = record.score or 0.0
            if score <= self._min_score:
                continue
            if allowed_sources and record.metadata.get("source") not in allowed_sources:
                continue
            results.append(
                RetrievalResult(
                    id=f"memory_{record.id}",
                    content=record.memory,
                    relevance_score=score,
                    source=SOURCE_MEMORY_STORE,
                    type="memory",
                    created_at=record.created_at,
                    metadata=dict(record.metadata),
                )
            )
        if len(results) < len(records):
            logger.debug(
                "memory_results_filtered",
                extra={"kept": len(results), "received": len(records), "min_score": self._min_score},
            )
        return results[: request.max_results]
