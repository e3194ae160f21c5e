from __future__ import annotations

"""In-memory collection for local testing and small datasets."""

from dataclasses import dataclass, field
from typing import Any

from clone_recall.rag.embeddings import cosine_similarity
from clone_recall.vectorstore.filters import Filter, matches


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    embedding: list[float]


@dataclass
class InMemoryCollection:
    """Collection handle that keeps records in a dict and scores by cosine distance."""
    name: str = "memory"
    records: dict[str, _Record] = field(default_factory=dict)

    async def upsert(
        self,
        ids: list[str],
        documents: list[str],
        metadatas: list[dict[str, Any]],
        embeddings: list[list[float]],
    ) -> None:
        """Insert or overwrite records by id."""
        if not (len(ids) == len(documents) == len(metadatas) == len(embeddings)):
            raise ValueError("ids, documents, metadatas and embeddings must be the same length")
        for doc_id, document, metadata, embedding in zip(ids, documents, metadatas, embeddings):
            self.records[doc_id] = _Record(document, dict(metadata), list(embedding))

    async def delete(self, ids: list[str] | None = None, where: Filter | None = None) -> int:
        """Delete records by id or by metadata filter."""
        if ids is None and where is None:
            return 0
        targets = [
            doc_id
            for doc_id, record in self.records.items()
            if (ids is None or doc_id in ids) and (where is None or matches(where, record.metadata))
        ]
        for doc_id in targets:
            del self.records[doc_id]
        return len(targets)

    async def query(
        self, embedding: list[float], where: Filter | None, n_results: int
    ) -> dict[str, list[list[Any]]]:
        """Return nearest records as nested per-query lists with cosine distances."""
        scored = [
            (1.0 - cosine_similarity(embedding, record.embedding), doc_id, record)
            for doc_id, record in self.records.items()
            if matches(where, record.metadata)
        ]
        scored.sort(key=lambda item: item[0])
        top = scored[:n_results]
        return {
            "ids": [[doc_id for _, doc_id, _ in top]],
            "documents": [[record.document for _, _, record in top]],
            "metadatas": [[dict(record.metadata) for _, _, record in top]],
            "distances": [[distance for distance, _, _ in top]],
        }

    async def get(self, contains: str, where: Filter | None, limit: int) -> dict[str, list[Any]]:
        """Return records whose document contains the text, as flat lists."""
        hits = [
            (doc_id, record)
            for doc_id, record in self.records.items()
            if contains in record.document and matches(where, record.metadata)
        ][:limit]
        return {
            "ids": [doc_id for doc_id, _ in hits],
            "documents": [record.document for _, record in hits],
            "metadatas": [dict(record.metadata) for _, record in hits],
        }

    async def count(self) -> int:
        return len(self.records)
