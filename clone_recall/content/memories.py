from __future__ import annotations

"""Durable-memory store client backed by the mem0 search API."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from clone_recall.rag.errors import ProviderError
from clone_recall.rag.types import parse_datetime

logger = logging.getLogger(__name__)

DEFAULT_MEM0_BASE_URL = "https://api.mem0.ai"


class MemoryStoreError(ProviderError):
    """Raised when the memory service fails."""
    pass


@dataclass(frozen=True)
class MemoryRecord:
    """Long-term memory returned by the memory service."""
    id: str
    memory: str
    score: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass(frozen=True)
class Mem0MemoryStore:
    """Search long-term user memories over HTTP."""
    api_key: str | None
    base_url: str = DEFAULT_MEM0_BASE_URL
    timeout: float = 15.0
    top_k: int = 20
    transport: httpx.AsyncBaseTransport | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def search(
        self, query: str, user_id: str, app_id: str | None = None
    ) -> list[MemoryRecord]:
        """Return memories for the user, optionally scoped to one app."""
        if not self.enabled:
            logger.warning("memory_search_disabled", extra={"reason": "MEM0_API_KEY not set"})
            return []
        if not query.strip():
            return []
        # v2 search needs at least one top-level filter such as user_id.
        clauses: list[dict[str, Any]] = [{"user_id": str(user_id)}]
        if app_id is not None:
            clauses.append({"metadata": {"app_id": str(app_id)}})
        payload = {"query": query, "filters": {"AND": clauses}, "top_k": self.top_k}
        headers = {"Authorization": f"Token {self.api_key}"}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post("/v2/memories/search/", json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise MemoryStoreError(f"Memory search failed: {exc}") from exc
        except ValueError as exc:
            raise MemoryStoreError("Memory search returned invalid JSON") from exc

        items = data if isinstance(data, list) else (data.get("results") or data.get("memories") or [])
        records = [record for record in (self._parse(item) for item in items) if record is not None]
        logger.info(
            "memory_search_complete",
            extra={"user_id": str(user_id), "app_id": app_id, "count": len(records)},
        )
        return records

    def _parse(self, item: Any) -> MemoryRecord | None:
        if not isinstance(item, dict):
            return None
        text = item.get("memory")
        if not isinstance(text, str) or not text.strip() or item.get("id") is None:
            return None
        score = item.get("score")
        metadata = item.get("metadata")
        return MemoryRecord(
            id=str(item["id"]),
            memory=text,
            score=float(score) if isinstance(score, (int, float)) else None,
            metadata=dict(metadata) if isinstance(metadata, dict) else {},
            created_at=parse_datetime(item.get("created_at")),
        )
