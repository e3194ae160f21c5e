from __future__ import annotations

"""Hybrid vector and lexical search over the user's indexed content."""

from clone_recall.rag.types import QueryAnalysis, RetrievalRequest, RetrievalResult
from clone_recall.retrieval.base import Retriever, owner_filter, source_clause, with_default_scores
from clone_recall.vectorstore.gateway import VectorStoreGateway


class SemanticRetriever(Retriever):
    """Baseline retriever: RRF-fused vector and substring search, scoped to the owner."""
    name = "semantic"

    def __init__(self, gateway: VectorStoreGateway, top_k: int | None = None) -> None:
        self._gateway = gateway
        self._top_k = top_k

    async def _retrieve(
        self, request: RetrievalRequest, analysis: QueryAnalysis
    ) -> list[RetrievalResult]:
        if not request.query.strip():
            return []
        where = owner_filter(request, source_clause(analysis.source_filter))
        results = await self._gateway.hybrid_search(
            request.query, top_k=self._top_k or request.max_results, where=where
        )
        return with_default_scores([result for result in results if result.content.strip()])
