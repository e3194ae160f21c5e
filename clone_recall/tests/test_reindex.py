from __future__ import annotations

"""Reindexing stored content into the vector collection."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from clone_recall.content.store import AppLinkRecord, ContentRecord, ContentStore
from clone_recall.ingest.reindex import build_content_chunks, build_link_chunks, reindex_contents
from clone_recall.loaders.chunking import content_document_id, link_document_id
from clone_recall.vectorstore.gateway import VectorStoreGateway
from clone_recall.vectorstore.inmemory import InMemoryCollection

pytestmark = pytest.mark.anyio

CREATED = datetime(2026, 4, 2, 9, 30, tzinfo=timezone.utc)


def _record(content: str, **overrides) -> ContentRecord:
    values = {"app_id": "a1", "user_id": "u1", "source": "linkedin", "content": content, "created_at": CREATED}
    values.update(overrides)
    return ContentRecord(**values)


def test_build_content_chunks_carries_filter_metadata() -> None:
    record = _record("Shipped the new onboarding flow", id=12, link="https://example.com/p/12")

    chunks = build_content_chunks(record)

    assert len(chunks) == 1
    assert chunks[0].id == content_document_id(12)
    assert chunks[0].metadata == {
        "content_id": 12,
        "app_id": "a1",
        "user_id": "u1",
        "source": "linkedin",
        "type": "post",
        "link": "https://example.com/p/12",
        "created_at": "2026-04-02T09:30:00+00:00",
        "origin": "social_content",
    }


async def test_reindex_is_idempotent_and_skips_orphans(
    tmp_path: Path, gateway: VectorStoreGateway, collection: InMemoryCollection
) -> None:
    store = ContentStore(f"sqlite:///{tmp_path / 'contents.db'}")
    await store.add_content(_record("First post about product design"))
    await store.add_content(_record("Second post about hiring"))
    await store.add_content(_record("Orphaned row", user_id=""))
    await store.add_content(_record("Other app", app_id="a2"))

    stats = await reindex_contents(store, gateway, app_id="a1", batch_size=2)
    again = await reindex_contents(store, gateway, app_id="a1", batch_size=2)

    assert (stats.processed, stats.skipped, stats.chunks) == (2, 1, 2)
    assert again.chunks == 2
    assert await collection.count() == 2
    assert all(record.metadata["app_id"] == "a1" for record in collection.records.values())


def test_build_link_chunks_uses_link_id_and_origin() -> None:
    record = AppLinkRecord(
        app_id="a1", user_id="u1", link="https://blog.example.com/launch", content="Launch notes", id=4
    )

    chunks = build_link_chunks(record)

    assert [chunk.id for chunk in chunks] == [link_document_id(4)]
    assert chunks[0].metadata == {
        "link_id": 4,
        "app_id": "a1",
        "user_id": "u1",
        "source": "app_link",
        "type": "link",
        "link": "https://blog.example.com/launch",
        "origin": "app_link",
    }


async def test_reindex_indexes_app_links_and_link_delete_removes_them(
    tmp_path: Path, gateway: VectorStoreGateway, collection: InMemoryCollection
) -> None:
    store = ContentStore(f"sqlite:///{tmp_path / 'contents.db'}")
    await store.add_content(_record("Post about the launch"))
    link_id = await store.add_link(
        AppLinkRecord(app_id="a1", user_id="u1", link="https://blog.example.com/launch", content="Launch notes")
    )
    await store.add_link(AppLinkRecord(app_id="a1", user_id="u1", link="https://blog.example.com/empty", content="  "))

    stats = await reindex_contents(store, gateway, app_id="a1")

    assert (stats.processed, stats.links, stats.skipped, stats.chunks) == (1, 1, 1, 2)
    stored = collection.records[link_document_id(link_id)]
    assert stored.metadata["origin"] == "app_link"
    assert stored.metadata["link_id"] == link_id

    deleted = await gateway.delete_by_link("a1", "https://blog.example.com/launch")

    assert deleted == 1
    assert link_document_id(link_id) not in collection.records
    assert await collection.count() == 1
