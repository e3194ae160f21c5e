from __future__ import annotations

"""Vector store gateway: upserts, scoped deletes, vector, lexical, and hybrid queries."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence

from clone_recall.rag.embeddings import EmbeddingService
from clone_recall.rag.errors import ProviderError, RecallError
from clone_recall.rag.fusion import reciprocal_rank_fusion
from clone_recall.rag.types import (
    SOURCE_VECTOR_STORE,
    ContentChunk,
    RetrievalResult,
    parse_datetime,
)
from clone_recall.vectorstore.filters import Eq, Filter, all_of

logger = logging.getLogger(__name__)

DEFAULT_UPSERT_BATCH_SIZE = 300


class CollectionHandle(Protocol):
    """Backend collection operations used by the gateway."""
    name: str

    async def upsert(
        self,
        ids: list[str],
        documents: list[str],
        metadatas: list[dict[str, Any]],
        embeddings: list[list[float]],
    ) -> None:
        ...

    async def delete(self, ids: list[str] | None = None, where: Filter | None = None) -> int:
        ...

    async def query(
        self, embedding: list[float], where: Filter | None, n_results: int
    ) -> dict[str, list[list[Any]]]:
        """Nearest neighbours, one nested list per query embedding."""
        ...

    async def get(self, contains: str, where: Filter | None, limit: int) -> dict[str, list[Any]]:
        """Documents containing text, as flat lists."""
        ...

    async def count(self) -> int:
        ...


CollectionFactory = Callable[[], Awaitable[CollectionHandle]]


def _row_result(doc_id: Any, document: Any, metadata: Any, score: float | None) -> RetrievalResult:
    meta = dict(metadata) if isinstance(metadata, Mapping) else {}
    return RetrievalResult(
        id=str(doc_id),
        content=document if isinstance(document, str) else "",
        relevance_score=score,
        source=SOURCE_VECTOR_STORE,
        type=meta.get("type"),
        created_at=parse_datetime(meta.get("created_at")),
        metadata=meta,
    )


def normalize_query_response(response: Mapping[str, Any]) -> list[RetrievalResult]:
    """Normalize a nested per-query response into results with score = 1 - distance."""
    ids = (response.get("ids") or [[]])[0] or []
    documents = (response.get("documents") or [[]])[0] or []
    metadatas = (response.get("metadatas") or [[]])[0] or []
    distances = (response.get("distances") or [[]])[0] or []
    results: list[RetrievalResult] = []
    for idx, doc_id in enumerate(ids):
        distance = distances[idx] if idx < len(distances) else None
        score = 1.0 - float(distance) if distance is not None else None
        document = documents[idx] if idx < len(documents) else None
        metadata = metadatas[idx] if idx < len(metadatas) else None
        results.append(_row_result(doc_id, document, metadata, score))
    return results


def normalize_get_response(response: Mapping[str, Any]) -> list[RetrievalResult]:
    """Normalize a flat response; lexical matches carry no score."""
    ids = response.get("ids") or []
    documents = response.get("documents") or []
    metadatas = response.get("metadatas") or []
    return [
        _row_result(
            doc_id,
            documents[idx] if idx < len(documents) else None,
            metadatas[idx] if idx < len(metadatas) else None,
            None,
        )
        for idx, doc_id in enumerate(ids)
    ]


class VectorStoreGateway:
    """Owns the process-wide collection handle and every call made through it."""

    def __init__(
        self,
        connect: CollectionFactory,
        embeddings: EmbeddingService,
        upsert_batch_size: int = DEFAULT_UPSERT_BATCH_SIZE,
        timeout: float | None = None,
    ) -> None:
        self._connect = connect
        self._embeddings = embeddings
        self._upsert_batch_size = max(1, upsert_batch_size)
        self._timeout = timeout
        self._collection: CollectionHandle | None = None
        self._lock = asyncio.Lock()

    @property
    def embeddings(self) -> EmbeddingService:
        return self._embeddings

    async def get_collection(self) -> CollectionHandle:
        """Return the cached handle, connecting on first use.

        Concurrent first callers share one connection attempt. A failed
        attempt is not cached, so the next call connects again.
        """
        if self._collection is not None:
            return self._collection
        async with self._lock:
            if self._collection is None:
                try:
                    self._collection = await self._bounded(self._connect())
                except RecallError:
                    raise
                except Exception as exc:
                    logger.error("vector_collection_connect_failed", extra={"error": str(exc)})
                    raise ProviderError(f"Could not open vector collection: {exc}") from exc
                logger.info(
                    "vector_collection_ready",
                    extra={"collection": getattr(self._collection, "name", None)},
                )
        return self._collection

    async def close(self) -> None:
        """Drop the cached handle at shutdown."""
        self._collection = None

    async def upsert_documents(self, documents: Sequence[ContentChunk]) -> int:
        """Upsert chunks in sequential sub-batches, embedding any that lack vectors.

        Sub-batches written before a failure stay written; re-running with the
        same ids overwrites them.
        """
        if not documents:
            return 0
        collection = await self.get_collection()
        written = 0
        for start in range(0, len(documents), self._upsert_batch_size):
            batch = list(documents[start : start + self._upsert_batch_size])
            embeddings = await self._resolve_embeddings(batch)
            try:
                await self._bounded(
                    collection.upsert(
                        ids=[doc.id for doc in batch],
                        documents=[doc.text for doc in batch],
                        metadatas=[dict(doc.metadata) for doc in batch],
                        embeddings=embeddings,
                    )
                )
            except RecallError:
                raise
            except Exception as exc:
                logger.error(
                    "vector_upsert_failed",
                    extra={"batch_start": start, "written": written, "error": str(exc)},
                )
                raise ProviderError(f"Vector upsert failed after {written} documents: {exc}") from exc
            written += len(batch)
        logger.info("vector_upsert_complete", extra={"documents": written})
        return written

    async def _resolve_embeddings(self, batch: list[ContentChunk]) -> list[list[float]]:
        missing = [idx for idx, doc in enumerate(batch) if doc.embedding is None]
        computed = await self._embeddings.embed_batch([batch[idx].text for idx in missing])
        vectors: list[list[float] | None] = [doc.embedding for doc in batch]
        for idx, result in zip(missing, computed):
            vectors[idx] = result.embedding
        return [vector for vector in vectors if vector is not None]

    async def delete_by_ids(self, ids: Sequence[str]) -> int:
        if not ids:
            return 0
        return await self._delete("ids", ids=list(ids))

    async def delete_by_app(self, app_id: str) -> int:
        return await self._delete("app", where=Eq("app_id", str(app_id)))

    async def delete_by_source(self, app_id: str, source: str) -> int:
        return await self._delete("source", where=all_of(Eq("app_id", str(app_id)), Eq("source", source)))

    async def delete_by_link(self, app_id: str, link: str) -> int:
        return await self._delete("link", where=all_of(Eq("app_id", str(app_id)), Eq("link", link)))

    async def _delete(
        self, scope: str, ids: list[str] | None = None, where: Filter | None = None
    ) -> int:
        # Best-effort: backend errors are logged and reported as zero deletions.
        try:
            collection = await self.get_collection()
            deleted = await self._bounded(collection.delete(ids=ids, where=where))
        except Exception as exc:
            logger.error("vector_delete_failed", extra={"scope": scope, "error": str(exc)})
            return 0
        logger.info("vector_delete_complete", extra={"scope": scope, "deleted": deleted})
        return int(deleted or 0)

    async def query(
        self, text: str, top_k: int = 20, where: Filter | None = None
    ) -> list[RetrievalResult]:
        """Nearest-neighbour search; returns [] on any backend or embedding failure."""
        if not text or not text.strip() or top_k <= 0:
            return []
        collection = await self.get_collection()
        try:
            embedding = (await self._embeddings.embed(text)).embedding
            return await self._vector_search(collection, embedding, top_k, where)
        except Exception as exc:
            logger.error("vector_query_failed", extra={"error": str(exc)})
            return []

    async def search_lexical(
        self, text: str, top_k: int = 20, where: Filter | None = None
    ) -> list[RetrievalResult]:
        """Substring search over stored documents; results carry no score."""
        if not text or not text.strip() or top_k <= 0:
            return []
        collection = await self.get_collection()
        try:
            response = await self._bounded(collection.get(contains=text.strip(), where=where, limit=top_k))
        except Exception as exc:
            logger.error("lexical_query_failed", extra={"error": str(exc)})
            return []
        return normalize_get_response(response)

    async def hybrid_search(
        self, text: str, top_k: int = 20, where: Filter | None = None
    ) -> list[RetrievalResult]:
        """Run vector and lexical search together and fuse them with RRF."""
        vector_results, lexical_results = await asyncio.gather(
            self.query(text, top_k=top_k, where=where),
            self.search_lexical(text, top_k=top_k, where=where),
        )
        fused = reciprocal_rank_fusion(vector_results, lexical_results, top_k=top_k)
        logger.debug(
            "hybrid_search_complete",
            extra={
                "vector_hits": len(vector_results),
                "lexical_hits": len(lexical_results),
                "fused_hits": len(fused),
            },
        )
        return fused

    async def count(self) -> int:
        collection = await self.get_collection()
        return await self._bounded(collection.count())

    async def _vector_search(
        self,
        collection: CollectionHandle,
        embedding: list[float],
        top_k: int,
        where: Filter | None,
    ) -> list[RetrievalResult]:
        response = await self._bounded(collection.query(embedding=embedding, where=where, n_results=top_k))
        return normalize_query_response(response)

    async def _bounded(self, awaitable: Awaitable[Any]) -> Any:
        if self._timeout:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        return await awaitable
