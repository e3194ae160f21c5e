from __future__ import annotations

"""Vector store gateway tests against the in-memory collection."""

import asyncio

import pytest

from clone_recall.rag.embeddings import EmbeddingService
from clone_recall.rag.errors import ProviderError
from clone_recall.rag.types import SOURCE_VECTOR_STORE, ContentChunk
from clone_recall.vectorstore.filters import Eq
from clone_recall.vectorstore.gateway import (
    VectorStoreGateway,
    normalize_get_response,
    normalize_query_response,
)
from clone_recall.vectorstore.inmemory import InMemoryCollection

pytestmark = pytest.mark.anyio


class CountingCollection(InMemoryCollection):
    """In-memory collection that records upsert batch sizes."""

    def __init__(self) -> None:
        super().__init__(name="counting")
        self.upsert_sizes: list[int] = []

    async def upsert(self, ids, documents, metadatas, embeddings) -> None:
        self.upsert_sizes.append(len(ids))
        await super().upsert(ids, documents, metadatas, embeddings)


class BrokenCollection(InMemoryCollection):
    async def delete(self, ids=None, where=None) -> int:
        raise RuntimeError("backend down")

    async def query(self, embedding, where, n_results):
        raise RuntimeError("backend down")


def _chunks(count: int, **metadata) -> list[ContentChunk]:
    return [
        ContentChunk(id=f"doc-{idx}", text=f"note number {idx} about hiking", metadata=dict(metadata))
        for idx in range(count)
    ]


def _gateway(collection: InMemoryCollection, embeddings: EmbeddingService) -> VectorStoreGateway:
    async def connect() -> InMemoryCollection:
        return collection

    return VectorStoreGateway(connect=connect, embeddings=embeddings)


async def test_upsert_is_idempotent_by_id(gateway: VectorStoreGateway, collection: InMemoryCollection) -> None:
    await gateway.upsert_documents(_chunks(3, app_id="1"))
    await gateway.upsert_documents(_chunks(3, app_id="1"))

    assert await gateway.count() == 3
    assert await collection.count() == 3


async def test_upsert_writes_in_sub_batches(embeddings: EmbeddingService) -> None:
    collection = CountingCollection()
    gateway = _gateway(collection, embeddings)

    written = await gateway.upsert_documents(_chunks(650))

    assert written == 650
    assert collection.upsert_sizes == [300, 300, 50]


async def test_upsert_keeps_precomputed_embeddings(
    gateway: VectorStoreGateway, collection: InMemoryCollection
) -> None:
    precomputed = [1.0] + [0.0] * 63
    documents = [
        ContentChunk(id="given", text="already embedded", embedding=precomputed),
        ContentChunk(id="computed", text="needs an embedding"),
    ]

    await gateway.upsert_documents(documents)

    assert collection.records["given"].embedding == precomputed
    assert len(collection.records["computed"].embedding) == 64
    assert collection.records["computed"].embedding != precomputed


async def test_upsert_of_nothing_does_not_connect(embeddings: EmbeddingService) -> None:
    calls = 0

    async def connect() -> InMemoryCollection:
        nonlocal calls
        calls += 1
        return InMemoryCollection()

    gateway = VectorStoreGateway(connect=connect, embeddings=embeddings)

    assert await gateway.upsert_documents([]) == 0
    assert calls == 0


async def test_scoped_deletes(gateway: VectorStoreGateway, collection: InMemoryCollection) -> None:
    await gateway.upsert_documents(
        [
            ContentChunk(id="a", text="alpha", metadata={"app_id": "1", "source": "x", "link": "l1"}),
            ContentChunk(id="b", text="beta", metadata={"app_id": "1", "source": "y", "link": "l2"}),
            ContentChunk(id="c", text="gamma", metadata={"app_id": "2", "source": "x", "link": "l1"}),
            ContentChunk(id="d", text="delta", metadata={"app_id": "2", "source": "y"}),
        ]
    )

    assert await gateway.delete_by_source("1", "x") == 1
    assert await gateway.delete_by_link("2", "l1") == 1
    assert await gateway.delete_by_ids(["b"]) == 1
    assert sorted(collection.records) == ["d"]
    assert await gateway.delete_by_app("2") == 1
    assert await gateway.delete_by_ids([]) == 0


async def test_delete_failures_report_zero(embeddings: EmbeddingService) -> None:
    gateway = _gateway(BrokenCollection(), embeddings)

    assert await gateway.delete_by_app("1") == 0
    assert await gateway.delete_by_ids(["x"]) == 0


async def test_query_returns_empty_on_backend_failure(embeddings: EmbeddingService) -> None:
    gateway = _gateway(BrokenCollection(), embeddings)

    assert await gateway.query("anything") == []


async def test_query_scores_and_filters(gateway: VectorStoreGateway) -> None:
    await gateway.upsert_documents(
        [
            ContentChunk(id="mine", text="hiking in the alps", metadata={"user_id": "u1"}),
            ContentChunk(id="theirs", text="hiking in the alps", metadata={"user_id": "u2"}),
        ]
    )

    results = await gateway.query("hiking alps", top_k=5, where=Eq("user_id", "u1"))

    assert [result.id for result in results] == ["mine"]
    assert results[0].source == SOURCE_VECTOR_STORE
    assert 0.0 < results[0].score <= 1.0


async def test_blank_query_skips_backend(gateway: VectorStoreGateway) -> None:
    assert await gateway.query("   ") == []
    assert await gateway.search_lexical("") == []


async def test_lexical_search_has_no_scores(gateway: VectorStoreGateway) -> None:
    await gateway.upsert_documents(_chunks(3))

    results = await gateway.search_lexical("number 1")

    assert [result.id for result in results] == ["doc-1"]
    assert results[0].relevance_score is None


async def test_hybrid_search_fuses_both_paths(gateway: VectorStoreGateway) -> None:
    await gateway.upsert_documents(_chunks(4))

    results = await gateway.hybrid_search("number 2", top_k=4)

    assert results[0].id == "doc-2"
    assert all(result.relevance_score is not None for result in results)


async def test_collection_connects_once_under_concurrency(embeddings: EmbeddingService) -> None:
    calls = 0
    collection = InMemoryCollection()

    async def connect() -> InMemoryCollection:
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        return collection

    gateway = VectorStoreGateway(connect=connect, embeddings=embeddings)

    handles = await asyncio.gather(*(gateway.get_collection() for _ in range(5)))

    assert calls == 1
    assert all(handle is collection for handle in handles)


async def test_failed_connection_is_retried(embeddings: EmbeddingService) -> None:
    attempts = 0

    async def connect() -> InMemoryCollection:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise ConnectionError("milvus unreachable")
        return InMemoryCollection()

    gateway = VectorStoreGateway(connect=connect, embeddings=embeddings)

    with pytest.raises(ProviderError):
        await gateway.query("hello")
    assert await gateway.count() == 0
    assert await gateway.query("hello") == []
    assert attempts == 2


def test_normalize_responses_handle_missing_fields() -> None:
    nested = {
        "ids": [["a", "b"]],
        "documents": [["first", None]],
        "metadatas": [[{"created_at": "2026-03-01T10:00:00+00:00", "type": "post"}, None]],
        "distances": [[0.25]],
    }

    results = normalize_query_response(nested)

    assert results[0].relevance_score == pytest.approx(0.75)
    assert results[0].type == "post"
    assert results[0].created_at is not None
    assert results[1].content == ""
    assert results[1].relevance_score is None
    assert normalize_query_response({}) == []
    assert [r.id for r in normalize_get_response({"ids": ["x"], "documents": ["doc"]})] == ["x"]
