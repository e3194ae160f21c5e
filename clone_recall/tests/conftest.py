from __future__ import annotations

"""Shared pytest fixtures and test environment defaults."""

import os
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ["EMBEDDING_PROVIDER"] = "hash"
os.environ["EMBEDDING_DIMENSION"] = "64"
os.environ["EMBEDDING_BATCH_PAUSE"] = "0"
os.environ["RECALL_VECTORSTORE"] = "memory"
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("MEM0_API_KEY", None)
os.environ.pop("RECALL_CONTENT_DB_URI", None)
os.environ.pop("RECALL_PROVIDER_TIMEOUT", None)

from clone_recall.rag.embeddings import EmbeddingService, HashEmbedder
from clone_recall.vectorstore.gateway import VectorStoreGateway
from clone_recall.vectorstore.inmemory import InMemoryCollection


@pytest.fixture
def embeddings() -> EmbeddingService:
    return EmbeddingService(provider=HashEmbedder(dimension=64), batch_pause=0)


@pytest.fixture
def collection() -> InMemoryCollection:
    return InMemoryCollection(name="test")


@pytest.fixture
def gateway(collection: InMemoryCollection, embeddings: EmbeddingService) -> VectorStoreGateway:
    async def connect() -> InMemoryCollection:
        return collection

    return VectorStoreGateway(connect=connect, embeddings=embeddings)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
