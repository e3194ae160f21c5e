from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


def _optional_float(name: str) -> float | None:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


@dataclass(frozen=True)
class Settings:
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    metrics_enabled: bool = _flag("RECALL_METRICS_ENABLED", "true")
    max_results: int = int(os.getenv("RECALL_MAX_RESULTS", "15"))
    retriever_top_k: int = int(os.getenv("RECALL_RETRIEVER_TOP_K", "20"))
    provider_timeout: float | None = _optional_float("RECALL_PROVIDER_TIMEOUT")
    embedding_provider: str = os.getenv("EMBEDDING_PROVIDER", "hash")
    embedding_model: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    embedding_dimension: int = int(os.getenv("EMBEDDING_DIMENSION", "256"))
    embedding_batch_size: int = int(os.getenv("EMBEDDING_BATCH_SIZE", "100"))
    embedding_batch_pause: float = float(os.getenv("EMBEDDING_BATCH_PAUSE", "0.1"))
    embedding_max_chars: int = int(os.getenv("EMBEDDING_MAX_CHARS", "5000"))
    embedding_long_text_max_chars: int = int(os.getenv("EMBEDDING_LONG_TEXT_MAX_CHARS", "30000"))
    embedding_retry_chars: int = int(os.getenv("EMBEDDING_RETRY_CHARS", "3000"))
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    openai_base_url: str | None = os.getenv("OPENAI_BASE_URL")
    openai_timeout: float = float(os.getenv("OPENAI_TIMEOUT", "30"))
    openai_max_retries: int = int(os.getenv("OPENAI_MAX_RETRIES", "2"))
    vectorstore_backend: str = os.getenv("RECALL_VECTORSTORE", "memory")
    vector_upsert_batch_size: int = int(os.getenv("VECTOR_UPSERT_BATCH_SIZE", "300"))
    milvus_uri: str | None = os.getenv("MILVUS_URI")
    milvus_token: str | None = os.getenv("MILVUS_TOKEN")
    milvus_db_name: str | None = os.getenv("MILVUS_DB_NAME")
    milvus_host: str | None = os.getenv("MILVUS_HOST")
    milvus_port: int = int(os.getenv("MILVUS_PORT", "19530"))
    milvus_collection: str = os.getenv("MILVUS_COLLECTION", "social_content")
    milvus_consistency: str = os.getenv("MILVUS_CONSISTENCY", "Strong")
    milvus_index_type: str = os.getenv("MILVUS_INDEX_TYPE", "HNSW")
    milvus_metric_type: str = os.getenv("MILVUS_METRIC_TYPE", "COSINE")
    chunk_size: int = int(os.getenv("RECALL_CHUNK_SIZE", "1000"))
    chunk_overlap: int = int(os.getenv("RECALL_CHUNK_OVERLAP", "0"))
    content_db_uri: str | None = os.getenv("RECALL_CONTENT_DB_URI")
    mem0_api_key: str | None = os.getenv("MEM0_API_KEY")
    mem0_base_url: str = os.getenv("MEM0_BASE_URL", "https://api.mem0.ai")
    memory_min_score: float = float(os.getenv("RECALL_MEMORY_MIN_SCORE", "0.4"))


settings = Settings()
