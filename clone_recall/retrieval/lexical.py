from __future__ import annotations

"""Full-text relevance search over stored content and app links."""

import asyncio

from clone_recall.content.store import LINK_SOURCE, ContentStore
from clone_recall.rag.types import QueryAnalysis, RetrievalRequest, RetrievalResult
from clone_recall.retrieval.base import Retriever


class LexicalRetriever(Retriever):
    name = "lexical"

    def __init__(self, content_store: ContentStore, top_k: int | None = None) -> None:
        self._content_store = content_store
        self._top_k = top_k

    async def _retrieve(
        self, request: RetrievalRequest, analysis: QueryAnalysis
    ) -> list[RetrievalResult]:
        limit = self._top_k or request.max_results
        searches = [
            self._content_store.full_text_search(
                request.query,
                app_id=request.app_id,
                user_id=request.user_id,
                sources=analysis.source_filter,
                limit=limit,
            )
        ]
        # Links carry no platform source; a source filter only admits them by name.
        if not analysis.source_filter or LINK_SOURCE in analysis.source_filter:
            searches.append(
                self._content_store.search_links(
                    request.query, app_id=request.app_id, user_id=request.user_id, limit=limit
                )
            )
        batches = await asyncio.gather(*searches)
        results = [result for batch in batches for result in batch]
        results.sort(key=lambda result: result.score, reverse=True)
        return results[:limit]
