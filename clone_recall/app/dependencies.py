from __future__ import annotations

from functools import lru_cache

from clone_recall.app.settings import settings
from clone_recall.content.memories import Mem0MemoryStore
from clone_recall.content.store import ContentStore
from clone_recall.rag.embeddings import (
    EmbeddingConfigReport,
    EmbeddingProvider,
    EmbeddingService,
    HashEmbedder,
    OpenAIEmbedder,
    build_embedding_config_report,
)
from clone_recall.rag.errors import ConfigurationError
from clone_recall.retrieval.base import Retriever
from clone_recall.retrieval.lexical import LexicalRetriever
from clone_recall.retrieval.memory import MemoryRetriever
from clone_recall.retrieval.orchestrator import RetrievalOrchestrator
from clone_recall.retrieval.semantic import SemanticRetriever
from clone_recall.retrieval.temporal import TemporalRetriever
from clone_recall.vectorstore.gateway import CollectionFactory, VectorStoreGateway
from clone_recall.vectorstore.inmemory import InMemoryCollection
from clone_recall.vectorstore.milvus import MilvusCollection, MilvusConfig, connect_milvus


def build_embedder() -> EmbeddingProvider:
    provider = settings.embedding_provider.lower().strip()
    if provider == "hash":
        return HashEmbedder(dimension=settings.embedding_dimension)
    if provider == "openai":
        return OpenAIEmbedder(
            api_key=settings.openai_api_key or "",
            model=settings.embedding_model,
            dimension=settings.embedding_dimension,
            timeout=settings.openai_timeout,
            max_retries=settings.openai_max_retries,
            base_url=settings.openai_base_url,
        )
    raise ConfigurationError(f"Unsupported embedding provider: {provider}")


def get_embedding_config_report() -> EmbeddingConfigReport:
    provider = settings.embedding_provider
    model = settings.embedding_model if provider.lower().strip() == "openai" else None
    return build_embedding_config_report(provider, model, settings.embedding_dimension)


@lru_cache
def get_embedding_service() -> EmbeddingService:
    return EmbeddingService(
        provider=build_embedder(),
        max_chars=settings.embedding_max_chars,
        batch_size=settings.embedding_batch_size,
        batch_pause=settings.embedding_batch_pause,
        long_text_max_chars=settings.embedding_long_text_max_chars,
        retry_chars=settings.embedding_retry_chars,
        timeout=settings.provider_timeout,
    )


def build_milvus_config() -> MilvusConfig:
    return MilvusConfig(
        collection=settings.milvus_collection,
        uri=settings.milvus_uri,
        token=settings.milvus_token,
        db_name=settings.milvus_db_name,
        host=settings.milvus_host,
        port=settings.milvus_port,
        consistency=settings.milvus_consistency,
        index_type=settings.milvus_index_type,
        metric_type=settings.milvus_metric_type,
    )


def build_collection_factory(dimension: int) -> CollectionFactory:
    backend = settings.vectorstore_backend.lower().strip()
    if backend == "milvus":
        config = build_milvus_config()
        # Fail on a missing target at startup instead of on the first query.
        config.connection_kwargs()

        async def connect() -> MilvusCollection:
            return await connect_milvus(config, dimension)

        return connect
    if backend == "memory":
        collection = InMemoryCollection(name=settings.milvus_collection)

        async def connect_memory() -> InMemoryCollection:
            return collection

        return connect_memory
    raise ConfigurationError(f"Unsupported vector store backend: {backend}")


@lru_cache
def get_vector_gateway() -> VectorStoreGateway:
    embeddings = get_embedding_service()
    return VectorStoreGateway(
        connect=build_collection_factory(embeddings.dimension),
        embeddings=embeddings,
        upsert_batch_size=settings.vector_upsert_batch_size,
        timeout=settings.provider_timeout,
    )


@lru_cache
def get_content_store() -> ContentStore | None:
    if not settings.content_db_uri:
        return None
    return ContentStore(settings.content_db_uri, timeout=settings.provider_timeout)


@lru_cache
def get_memory_store() -> Mem0MemoryStore:
    return Mem0MemoryStore(
        api_key=settings.mem0_api_key,
        base_url=settings.mem0_base_url,
        timeout=settings.provider_timeout or 15.0,
        top_k=settings.retriever_top_k,
    )


def build_retrievers() -> list[Retriever]:
    gateway = get_vector_gateway()
    content_store = get_content_store()
    memory_store = get_memory_store()
    retrievers: list[Retriever] = [
        TemporalRetriever(gateway, content_store, top_k=settings.retriever_top_k),
        SemanticRetriever(gateway),
    ]
    if content_store is not None:
        retrievers.append(LexicalRetriever(content_store))
    if memory_store.enabled:
        retrievers.append(MemoryRetriever(memory_store, min_score=settings.memory_min_score))
    return retrievers


@lru_cache
def get_orchestrator() -> RetrievalOrchestrator:
    return RetrievalOrchestrator(build_retrievers())


def reset_caches() -> None:
    get_orchestrator.cache_clear()
    get_memory_store.cache_clear()
    get_content_store.cache_clear()
    get_vector_gateway.cache_clear()
    get_embedding_service.cache_clear()
