from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from clone_recall.app.dependencies import reset_caches
from clone_recall.app.main import EPOCH, _to_constraint, app
from clone_recall.app.schemas import TemporalFilter
from clone_recall.rag.types import to_iso

pytestmark = pytest.mark.anyio


def get_client() -> httpx.AsyncClient:
    reset_caches()
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


def _document(doc_id: str, content: str, **metadata) -> dict:
    base = {"user_id": "u1", "app_id": "a1", "source": "twitter"}
    base.update(metadata)
    return {"doc_id": doc_id, "content": content, "metadata": base}


async def test_health_endpoint() -> None:
    async with get_client() as client:
        response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_health_reports_embedding_and_vectorstore() -> None:
    async with get_client() as client:
        embedding = await client.get("/health/embedding")
        vectorstore = await client.get("/health/vectorstore")
    assert embedding.json()["provider"] == "hash"
    assert embedding.json()["ok"] is True
    assert vectorstore.json() == {"backend": "memory", "ok": True, "document_count": 0, "detail": None}


async def test_ingest_and_retrieve() -> None:
    async with get_client() as client:
        ingest_response = await client.post(
            "/documents",
            json={
                "documents": [
                    _document("p1", "Ran my first half marathon in Berlin today."),
                    _document("p2", "Trying a new ramen place downtown."),
                    _document("p3", "Half marathon training, week six.", user_id="u2"),
                ]
            },
        )
        assert ingest_response.status_code == 200
        assert ingest_response.json() == {"ingested": 3, "ids": ["p1", "p2", "p3"]}

        response = await client.post(
            "/retrieve", json={"query": "half marathon", "user_id": "u1", "app_id": "a1"}
        )
    assert response.status_code == 200
    payload = response.json()
    ids = [item["id"] for item in payload["results"]]
    assert ids[0] == "p1"
    assert "p3" not in ids
    assert payload["memories"] == []
    assert payload["sources_used"] == ["vector_store"]
    assert payload["intent"] == "topic_search"
    assert payload["request_id"]
    assert response.headers["X-Request-ID"] == payload["request_id"]


async def test_retrieve_with_recent_window_boosts_results() -> None:
    recent = datetime.now(timezone.utc) - timedelta(days=1)
    stale = datetime.now(timezone.utc) - timedelta(days=90)
    async with get_client() as client:
        await client.post(
            "/documents",
            json={
                "documents": [
                    _document("new", "Coffee cupping notes", created_at=to_iso(recent)),
                    _document("old", "Coffee cupping notes from spring", created_at=to_iso(stale)),
                ]
            },
        )
        response = await client.post(
            "/retrieve",
            json={
                "query": "coffee cupping",
                "user_id": "u1",
                "temporal": {"recency": "recent", "recency_days": 7},
                "max_results": 5,
            },
        )
    assert response.status_code == 200
    payload = response.json()
    assert payload["intent"] == "temporal_query"
    assert payload["results"][0]["id"] == "new"
    assert payload["results"][0]["metadata"]["recency_boost"] > 1.5


async def test_retrieve_validates_payload() -> None:
    async with get_client() as client:
        response = await client.post("/retrieve", json={"query": "", "user_id": "u1"})
    assert response.status_code == 422


def test_start_date_alone_is_closed_at_now() -> None:
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)

    constraint = _to_constraint(TemporalFilter(start_date=start))

    assert constraint is not None
    assert constraint.is_bounded
    assert constraint.start_date == start
    assert datetime.now(timezone.utc) - constraint.end_date < timedelta(minutes=1)
    assert constraint.type == "absolute"


def test_end_date_alone_opens_at_epoch() -> None:
    end = datetime(2025, 6, 30)

    constraint = _to_constraint(TemporalFilter(end_date=end))

    assert constraint is not None
    assert constraint.start_date == EPOCH
    assert constraint.end_date == end.replace(tzinfo=timezone.utc)


async def test_retrieve_with_only_start_date_filters_older_documents() -> None:
    recent = datetime.now(timezone.utc) - timedelta(days=2)
    stale = datetime.now(timezone.utc) - timedelta(days=400)
    async with get_client() as client:
        await client.post(
            "/documents",
            json={
                "documents": [
                    _document("fresh", "Pottery class notes", created_at=to_iso(recent)),
                    _document("stale", "Pottery class notes", created_at=to_iso(stale)),
                ]
            },
        )
        response = await client.post(
            "/retrieve",
            json={
                "query": "pottery class",
                "user_id": "u1",
                "temporal": {"start_date": to_iso(recent - timedelta(days=5)), "recency": "recent"},
            },
        )
    assert response.status_code == 200
    results = {item["id"]: item for item in response.json()["results"]}
    assert response.json()["results"][0]["id"] == "fresh"
    assert "recency_boost" in results["fresh"]["metadata"]
    assert "recency_boost" not in results.get("stale", {"metadata": {}})["metadata"]


async def test_retrieve_rejects_reversed_dates() -> None:
    async with get_client() as client:
        response = await client.post(
            "/retrieve",
            json={
                "query": "anything",
                "user_id": "u1",
                "temporal": {"start_date": "2026-05-01T00:00:00Z", "end_date": "2026-01-01T00:00:00Z"},
            },
        )
    assert response.status_code == 400


async def test_long_document_is_chunked() -> None:
    content = "\n\n".join(f"Paragraph {idx}. " + "detail " * 120 for idx in range(4))
    async with get_client() as client:
        response = await client.post("/documents", json={"documents": [_document("long", content)]})
    assert response.status_code == 200
    assert response.json()["ids"] == [f"long_chunk_{idx}" for idx in range(4)]


async def test_delete_scopes() -> None:
    async with get_client() as client:
        await client.post(
            "/documents",
            json={
                "documents": [
                    _document("a", "alpha", source="twitter"),
                    _document("b", "beta", source="linkedin"),
                    _document("c", "gamma", app_id="a2"),
                ]
            },
        )
        by_source = await client.post("/documents/delete", json={"app_id": "a1", "source": "twitter"})
        by_ids = await client.post("/documents/delete", json={"ids": ["c"]})
        by_app = await client.post("/documents/delete", json={"app_id": "a1"})
        health = await client.get("/health/vectorstore")

    assert by_source.json() == {"deleted": 1, "scope": "source"}
    assert by_ids.json() == {"deleted": 1, "scope": "ids"}
    assert by_app.json() == {"deleted": 1, "scope": "app"}
    assert health.json()["document_count"] == 0


async def test_delete_requires_scope() -> None:
    async with get_client() as client:
        missing = await client.post("/documents/delete", json={})
        ambiguous = await client.post(
            "/documents/delete", json={"app_id": "a1", "source": "twitter", "link": "https://x"}
        )
    assert missing.status_code == 400
    assert ambiguous.status_code == 400


async def test_metrics_endpoint() -> None:
    async with get_client() as client:
        await client.get("/health")
        response = await client.get("/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text
