from __future__ import annotations

"""Milvus collection adapter for the vector store gateway."""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from pymilvus import Collection, CollectionSchema, DataType, FieldSchema, connections, utility

from clone_recall.rag.errors import ConfigurationError
from clone_recall.vectorstore.filters import Filter, to_milvus_expr

logger = logging.getLogger(__name__)

OUTPUT_FIELDS = ["doc_id", "content", "metadata"]
# Metrics where Milvus reports similarity rather than distance.
_SIMILARITY_METRICS = {"COSINE", "IP"}


@dataclass
class MilvusConfig:
    """Connection target and index settings for a Milvus collection."""
    collection: str
    uri: str | None = None
    token: str | None = None
    db_name: str | None = None
    host: str | None = None
    port: int = 19530
    alias: str = "default"
    consistency: str = "Strong"
    index_type: str = "HNSW"
    metric_type: str = "COSINE"
    hnsw_m: int = 16
    hnsw_ef_construction: int = 200
    hnsw_ef: int = 64
    nlist: int = 1024
    nprobe: int = 10
    max_content_length: int = 65535

    def connection_kwargs(self) -> dict[str, Any]:
        """Return pymilvus connect arguments for a hosted or self-hosted target."""
        if self.uri:
            kwargs: dict[str, Any] = {"uri": self.uri}
            if self.token:
                kwargs["token"] = self.token
            if self.db_name:
                kwargs["db_name"] = self.db_name
            return kwargs
        if self.host:
            return {"host": self.host, "port": str(self.port)}
        raise ConfigurationError(
            "Milvus connection target is not set. Set MILVUS_URI (hosted) or MILVUS_HOST (self-hosted)."
        )

    def search_params(self) -> dict[str, Any]:
        if self.index_type.upper() == "HNSW":
            return {"metric_type": self.metric_type, "params": {"ef": self.hnsw_ef}}
        return {"metric_type": self.metric_type, "params": {"nprobe": self.nprobe}}

    def index_params(self) -> dict[str, Any]:
        if self.index_type.upper() == "HNSW":
            return {
                "index_type": "HNSW",
                "metric_type": self.metric_type,
                "params": {"M": self.hnsw_m, "efConstruction": self.hnsw_ef_construction},
            }
        return {
            "index_type": self.index_type,
            "metric_type": self.metric_type,
            "params": {"nlist": self.nlist},
        }


def _escape_like(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return escaped.replace("%", "\\%").replace("_", "\\_")


def _existing_embedding_dim(collection: Collection) -> int | None:
    for schema_field in collection.schema.fields:
        if schema_field.name != "embedding":
            continue
        params = getattr(schema_field, "params", None) or {}
        dim = params.get("dim") if isinstance(params, dict) else None
        try:
            return int(dim) if dim is not None else None
        except (TypeError, ValueError):
            return None
    return None


def _open_collection(config: MilvusConfig, dimension: int) -> Collection:
    connections.connect(alias=config.alias, **config.connection_kwargs())
    if utility.has_collection(config.collection, using=config.alias):
        collection = Collection(
            config.collection, using=config.alias, consistency_level=config.consistency
        )
        existing_dim = _existing_embedding_dim(collection)
        if existing_dim is not None and existing_dim != dimension:
            raise ConfigurationError(
                "Milvus collection embedding dimension mismatch: "
                f"{existing_dim} (collection) vs {dimension} (embedder). "
                "Reindex into a new MILVUS_COLLECTION after changing EMBEDDING_MODEL."
            )
    else:
        schema = CollectionSchema(
            fields=[
                FieldSchema(name="doc_id", dtype=DataType.VARCHAR, is_primary=True, max_length=256),
                FieldSchema(name="content", dtype=DataType.VARCHAR, max_length=config.max_content_length),
                FieldSchema(name="metadata", dtype=DataType.JSON),
                FieldSchema(name="embedding", dtype=DataType.FLOAT_VECTOR, dim=dimension),
            ],
            description="Chunked user content for retrieval",
        )
        collection = Collection(
            config.collection,
            schema,
            using=config.alias,
            consistency_level=config.consistency,
        )
        collection.create_index(field_name="embedding", index_params=config.index_params())
        logger.info(
            "milvus_collection_created",
            extra={"collection": config.collection, "dimension": dimension},
        )
    collection.load()
    return collection


def drop_collection(config: MilvusConfig) -> bool:
    """Drop the configured collection; returns False when it did not exist."""
    connections.connect(alias=config.alias, **config.connection_kwargs())
    if not utility.has_collection(config.collection, using=config.alias):
        return False
    utility.drop_collection(config.collection, using=config.alias)
    return True


class MilvusCollection:
    """Collection handle backed by pymilvus, run off the event loop in worker threads."""

    def __init__(self, collection: Collection, config: MilvusConfig) -> None:
        self._collection = collection
        self._config = config
        self.name = config.collection

    async def upsert(
        self,
        ids: list[str],
        documents: list[str],
        metadatas: list[dict[str, Any]],
        embeddings: list[list[float]],
    ) -> None:
        rows = [
            {
                "doc_id": doc_id,
                "content": document[: self._config.max_content_length],
                "metadata": metadata,
                "embedding": embedding,
            }
            for doc_id, document, metadata, embedding in zip(ids, documents, metadatas, embeddings)
        ]
        await asyncio.to_thread(self._collection.upsert, rows)

    async def delete(self, ids: list[str] | None = None, where: Filter | None = None) -> int:
        clauses: list[str] = []
        if ids is not None:
            clauses.append(f"doc_id in {json.dumps(ids)}")
        if where is not None:
            clauses.append(to_milvus_expr(where))
        if not clauses:
            return 0
        expr = " and ".join(f"({clause})" for clause in clauses)
        result = await asyncio.to_thread(self._collection.delete, expr)
        return int(getattr(result, "delete_count", 0) or 0)

    async def query(
        self, embedding: list[float], where: Filter | None, n_results: int
    ) -> dict[str, list[list[Any]]]:
        results = await asyncio.to_thread(
            self._collection.search,
            data=[embedding],
            anns_field="embedding",
            param=self._config.search_params(),
            limit=n_results,
            expr=to_milvus_expr(where) or None,
            output_fields=OUTPUT_FIELDS,
        )
        similarity = self._config.metric_type.upper() in _SIMILARITY_METRICS
        ids: list[Any] = []
        documents: list[Any] = []
        metadatas: list[Any] = []
        distances: list[float] = []
        for hit in results[0]:
            entity = hit.entity
            ids.append(entity.get("doc_id"))
            documents.append(entity.get("content"))
            metadatas.append(entity.get("metadata") or {})
            distances.append(1.0 - float(hit.distance) if similarity else float(hit.distance))
        return {"ids": [ids], "documents": [documents], "metadatas": [metadatas], "distances": [distances]}

    async def get(self, contains: str, where: Filter | None, limit: int) -> dict[str, list[Any]]:
        expr = f'content like "%{_escape_like(contains)}%"'
        filter_expr = to_milvus_expr(where)
        if filter_expr:
            expr = f"({expr}) and ({filter_expr})"
        rows = await asyncio.to_thread(
            self._collection.query, expr=expr, limit=limit, output_fields=OUTPUT_FIELDS
        )
        return {
            "ids": [row.get("doc_id") for row in rows],
            "documents": [row.get("content") for row in rows],
            "metadatas": [row.get("metadata") or {} for row in rows],
        }

    async def count(self) -> int:
        return int(await asyncio.to_thread(lambda: self._collection.num_entities))


async def connect_milvus(config: MilvusConfig, dimension: int) -> MilvusCollection:
    """Connect, create the collection if missing, and load it for search."""
    if dimension <= 0:
        raise ConfigurationError("Embedding dimension must be set before opening a Milvus collection")
    collection = await asyncio.to_thread(_open_collection, config, dimension)
    return MilvusCollection(collection, config)
