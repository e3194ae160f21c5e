from __future__ import annotations

"""Rebuild vector collection entries from the durable content store."""

import logging
from dataclasses import dataclass
from typing import Any

from clone_recall.content.store import LINK_SOURCE, AppLinkRecord, ContentRecord, ContentStore
from clone_recall.loaders.chunking import (
    DEFAULT_CHUNK_OVERLAP,
    DEFAULT_CHUNK_SIZE,
    chunk_document,
    content_document_id,
    link_document_id,
)
from clone_recall.rag.types import ContentChunk, to_iso
from clone_recall.vectorstore.gateway import VectorStoreGateway

logger = logging.getLogger(__name__)

ORIGIN_SOCIAL_CONTENT = "social_content"
ORIGIN_APP_LINK = LINK_SOURCE


@dataclass
class ReindexStats:
    """Counts for one reindex run."""
    processed: int = 0
    skipped: int = 0
    chunks: int = 0
    links: int = 0


def build_content_chunks(
    record: ContentRecord,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[ContentChunk]:
    """Chunk a content row with the metadata retrievers filter on."""
    metadata: dict[str, Any] = {
        "content_id": record.id,
        "app_id": str(record.app_id),
        "user_id": str(record.user_id),
        "source": record.source,
        "type": record.type,
        "link": record.link,
        "external_id": record.external_id,
        "created_at": to_iso(record.created_at) if record.created_at else None,
        "origin": ORIGIN_SOCIAL_CONTENT,
    }
    metadata = {key: value for key, value in metadata.items() if value is not None}
    return chunk_document(
        content_document_id(record.id),
        record.content,
        metadata,
        chunk_size=chunk_size,
        overlap=overlap,
    )


def build_link_chunks(
    record: AppLinkRecord,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[ContentChunk]:
    """Chunk an app link's extracted text under its link id."""
    metadata: dict[str, Any] = {
        "link_id": record.id,
        "app_id": str(record.app_id),
        "user_id": str(record.user_id),
        "source": LINK_SOURCE,
        "type": "link",
        "link": record.link,
        "created_at": to_iso(record.created_at) if record.created_at else None,
        "origin": ORIGIN_APP_LINK,
    }
    metadata = {key: value for key, value in metadata.items() if value is not None}
    return chunk_document(
        link_document_id(record.id),
        record.content,
        metadata,
        chunk_size=chunk_size,
        overlap=overlap,
    )


def _is_orphan(record: ContentRecord) -> bool:
    return not (record.app_id and record.user_id and record.source and record.content.strip())


async def reindex_contents(
    store: ContentStore,
    gateway: VectorStoreGateway,
    app_id: str | None = None,
    batch_size: int = 100,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> ReindexStats:
    """Page through stored content and app links and upsert their chunks.

    Ids are derived from the row id, so a rerun overwrites rather than
    duplicates. `processed` counts content rows and `links` counts link rows.
    """
    stats = ReindexStats()
    offset = 0
    while True:
        records = await store.list_contents(app_id=app_id, offset=offset, limit=batch_size)
        if not records:
            break
        offset += len(records)
        chunks: list[ContentChunk] = []
        for record in records:
            if _is_orphan(record):
                stats.skipped += 1
                logger.warning("reindex_orphan_skipped", extra={"content_id": record.id})
                continue
            chunks.extend(build_content_chunks(record, chunk_size=chunk_size, overlap=overlap))
            stats.processed += 1
        stats.chunks += await gateway.upsert_documents(chunks)
        logger.info(
            "reindex_page_complete",
            extra={"offset": offset, "processed": stats.processed, "chunks": stats.chunks},
        )

    offset = 0
    while True:
        links = await store.list_links(app_id=app_id, offset=offset, limit=batch_size)
        if not links:
            break
        offset += len(links)
        chunks = []
        for link in links:
            if not (link.app_id and link.user_id and link.link and link.content.strip()):
                stats.skipped += 1
                logger.warning("reindex_orphan_link_skipped", extra={"link_id": link.id})
                continue
            chunks.extend(build_link_chunks(link, chunk_size=chunk_size, overlap=overlap))
            stats.links += 1
        stats.chunks += await gateway.upsert_documents(chunks)
        logger.info(
            "reindex_links_page_complete",
            extra={"offset": offset, "links": stats.links, "chunks": stats.chunks},
        )
    return stats
