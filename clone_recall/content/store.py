from __future__ import annotations

"""Durable content store with full-text relevance search."""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    func,
    or_,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from clone_recall.loaders.chunking import content_document_id, link_document_id
from clone_recall.rag.errors import ProviderError
from clone_recall.rag.types import SOURCE_CONTENT_STORE, RetrievalResult, parse_datetime

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")
# Rank used when the backend matched a row but reported no usable rank.
DEFAULT_RANK = 0.5
# Source and origin tag for rows from the app link table.
LINK_SOURCE = "app_link"


class ContentStoreError(ProviderError):
    """Raised when the content database fails."""
    pass


@dataclass(frozen=True)
class ContentRecord:
    """One piece of ingested user content."""
    app_id: str
    user_id: str
    source: str
    content: str
    type: str = "post"
    link: str | None = None
    external_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    id: int | None = None


@dataclass(frozen=True)
class AppLinkRecord:
    """Text extracted from a link the user attached to an app."""
    app_id: str
    user_id: str
    link: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    id: int | None = None


def _utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _dump_extra(metadata: dict[str, Any]) -> str | None:
    return json.dumps(metadata, ensure_ascii=True, default=str) if metadata else None


def _term_overlap(terms: Sequence[str], content: str) -> float:
    present = set(_TOKEN_RE.findall(content.lower()))
    unique = set(terms)
    return len(unique & present) / len(unique)


class ContentStore:
    """Store user content and app links in SQL and rank them by text relevance."""

    def __init__(self, connection_uri: str, timeout: float | None = None) -> None:
        """Initialize the store and ensure tables exist."""
        engine_kwargs: dict[str, Any] = {}
        if connection_uri.startswith("sqlite") and (":memory:" in connection_uri or connection_uri.rstrip("/") == "sqlite:"):
            # One shared connection so worker threads see the same in-memory database.
            engine_kwargs = {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
        self._engine = create_engine(connection_uri, **engine_kwargs)
        self._timeout = timeout
        self._metadata = MetaData()
        self._table = Table(
            "social_contents",
            self._metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("app_id", String(64), nullable=True, index=True),
            Column("user_id", String(64), nullable=True, index=True),
            Column("source", String(64), nullable=True, index=True),
            Column("type", String(64), nullable=False),
            Column("content", Text, nullable=False),
            Column("link", Text, nullable=True),
            Column("external_id", String(255), nullable=True),
            Column("extra", Text, nullable=True),
            Column("content_created_at", DateTime(timezone=True), nullable=True, index=True),
            Column("created_at", DateTime(timezone=True), nullable=False),
        )
        self._links = Table(
            "app_links",
            self._metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("app_id", String(64), nullable=True, index=True),
            Column("user_id", String(64), nullable=True, index=True),
            Column("link", Text, nullable=False),
            Column("content", Text, nullable=False),
            Column("extra", Text, nullable=True),
            Column("created_at", DateTime(timezone=True), nullable=False, index=True),
        )
        self._metadata.create_all(self._engine)

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name

    async def add_content(self, record: ContentRecord) -> int:
        """Insert a content row and return its id."""
        return await self._run(self._insert, record)

    async def add_link(self, record: AppLinkRecord) -> int:
        """Insert an app link row and return its id."""
        return await self._run(self._insert_link, record)

    async def list_contents(
        self, app_id: str | None = None, offset: int = 0, limit: int = 100
    ) -> list[ContentRecord]:
        """Return content rows in id order, one page at a time."""
        return await self._run(self._list, app_id, offset, limit)

    async def list_links(
        self, app_id: str | None = None, offset: int = 0, limit: int = 100
    ) -> list[AppLinkRecord]:
        """Return app link rows in id order, one page at a time."""
        return await self._run(self._list_links, app_id, offset, limit)

    async def full_text_search(
        self,
        query: str,
        app_id: str | None = None,
        user_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        sources: Sequence[str] = (),
        limit: int = 20,
    ) -> list[RetrievalResult]:
        """Rank rows by text relevance within owner, time, and source filters."""
        terms = _TOKEN_RE.findall((query or "").lower())
        if not terms or limit <= 0:
            return []
        return await self._run(
            self._search, query, terms, app_id, user_id, _utc(start), _utc(end), tuple(sources), limit
        )

    async def search_links(
        self,
        query: str,
        app_id: str | None = None,
        user_id: str | None = None,
        limit: int = 20,
    ) -> list[RetrievalResult]:
        """Rank app link text by relevance within the owner scope."""
        terms = _TOKEN_RE.findall((query or "").lower())
        if not terms or limit <= 0:
            return []
        return await self._run(self._search_links, query, terms, app_id, user_id, limit)

    async def _run(self, fn: Any, *args: Any) -> Any:
        call = asyncio.to_thread(fn, *args)
        try:
            if self._timeout:
                return await asyncio.wait_for(call, timeout=self._timeout)
            return await call
        except asyncio.TimeoutError as exc:
            raise ContentStoreError(f"Content store timed out after {self._timeout}s") from exc
        except SQLAlchemyError as exc:
            raise ContentStoreError(f"Content store query failed: {exc}") from exc

    def _insert(self, record: ContentRecord) -> int:
        values = {
            "app_id": record.app_id,
            "user_id": record.user_id,
            "source": record.source,
            "type": record.type,
            "content": record.content,
            "link": record.link,
            "external_id": record.external_id,
            "extra": _dump_extra(record.metadata),
            "content_created_at": _utc(record.created_at),
            "created_at": datetime.now(timezone.utc),
        }
        if record.id is not None:
            values["id"] = record.id
        with self._engine.begin() as conn:
            result = conn.execute(self._table.insert().values(**values))
        return int(result.inserted_primary_key[0])

    def _insert_link(self, record: AppLinkRecord) -> int:
        values = {
            "app_id": record.app_id,
            "user_id": record.user_id,
            "link": record.link,
            "content": record.content,
            "extra": _dump_extra(record.metadata),
            "created_at": _utc(record.created_at) or datetime.now(timezone.utc),
        }
        if record.id is not None:
            values["id"] = record.id
        with self._engine.begin() as conn:
            result = conn.execute(self._links.insert().values(**values))
        return int(result.inserted_primary_key[0])

    def _list(self, app_id: str | None, offset: int, limit: int) -> list[ContentRecord]:
        stmt = select(self._table).order_by(self._table.c.id).offset(offset).limit(limit)
        if app_id is not None:
            stmt = stmt.where(self._table.c.app_id == app_id)
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [self._to_record(row) for row in rows]

    def _list_links(self, app_id: str | None, offset: int, limit: int) -> list[AppLinkRecord]:
        stmt = select(self._links).order_by(self._links.c.id).offset(offset).limit(limit)
        if app_id is not None:
            stmt = stmt.where(self._links.c.app_id == app_id)
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [self._to_link(row) for row in rows]

    def _conditions(
        self,
        app_id: str | None,
        user_id: str | None,
        start: datetime | None,
        end: datetime | None,
        sources: Sequence[str],
    ) -> list[Any]:
        table = self._table
        conditions: list[Any] = []
        if app_id is not None:
            conditions.append(table.c.app_id == app_id)
        if user_id is not None:
            conditions.append(table.c.user_id == user_id)
        if start is not None:
            conditions.append(table.c.content_created_at >= start)
        if end is not None:
            conditions.append(table.c.content_created_at <= end)
        if sources:
            conditions.append(table.c.source.in_(list(sources)))
        return conditions

    def _search(
        self,
        query: str,
        terms: list[str],
        app_id: str | None,
        user_id: str | None,
        start: datetime | None,
        end: datetime | None,
        sources: tuple[str, ...],
        limit: int,
    ) -> list[RetrievalResult]:
        conditions = self._conditions(app_id, user_id, start, end, sources)
        ranked = self._ranked_rows(self._table, self._table.c.content_created_at, query, terms, conditions, limit)
        return [self._to_result(row, rank) for row, rank in ranked]

    def _search_links(
        self,
        query: str,
        terms: list[str],
        app_id: str | None,
        user_id: str | None,
        limit: int,
    ) -> list[RetrievalResult]:
        links = self._links
        conditions: list[Any] = []
        if app_id is not None:
            conditions.append(links.c.app_id == app_id)
        if user_id is not None:
            conditions.append(links.c.user_id == user_id)
        ranked = self._ranked_rows(links, links.c.created_at, query, terms, conditions, limit)
        return [self._link_result(row, rank) for row, rank in ranked]

    def _ranked_rows(
        self,
        table: Table,
        date_column: Any,
        query: str,
        terms: list[str],
        conditions: list[Any],
        limit: int,
    ) -> list[tuple[Any, Any]]:
        if self.dialect == "postgresql":
            document = func.to_tsvector("simple", table.c.content)
            tsquery = func.plainto_tsquery("simple", query)
            rank = func.ts_rank(document, tsquery).label("rank")
            stmt = (
                select(table, rank)
                .where(document.op("@@")(tsquery), *conditions)
                .order_by(rank.desc(), date_column.desc())
                .limit(limit)
            )
            with self._engine.connect() as conn:
                rows = conn.execute(stmt).mappings().all()
            return [(row, row["rank"]) for row in rows]

        # Portable fallback: prefilter with LIKE, rank by query term coverage.
        lowered = func.lower(table.c.content)
        stmt = (
            select(table)
            .where(or_(*[lowered.like(f"%{term}%") for term in set(terms)]), *conditions)
            .limit(limit * 5)
        )
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
        scored = [(row, _term_overlap(terms, row["content"])) for row in rows]
        scored = [item for item in scored if item[1] > 0]
        scored.sort(
            key=lambda item: (item[1], _utc(item[0][date_column.name]) or datetime.min.replace(tzinfo=timezone.utc)),
            reverse=True,
        )
        return scored[:limit]

    def _to_record(self, row: Any) -> ContentRecord:
        return ContentRecord(
            id=row["id"],
            app_id=row["app_id"],
            user_id=row["user_id"],
            source=row["source"],
            type=row["type"],
            content=row["content"],
            link=row["link"],
            external_id=row["external_id"],
            metadata=json.loads(row["extra"]) if row["extra"] else {},
            created_at=_utc(row["content_created_at"]),
        )

    def _to_link(self, row: Any) -> AppLinkRecord:
        return AppLinkRecord(
            id=row["id"],
            app_id=row["app_id"],
            user_id=row["user_id"],
            link=row["link"],
            content=row["content"],
            metadata=json.loads(row["extra"]) if row["extra"] else {},
            created_at=_utc(row["created_at"]),
        )

    def _to_result(self, row: Any, rank: Any) -> RetrievalResult:
        record = self._to_record(row)
        metadata = dict(record.metadata)
        metadata.update(
            {
                "content_id": record.id,
                "app_id": record.app_id,
                "user_id": record.user_id,
                "source": record.source,
                "link": record.link,
                "external_id": record.external_id,
            }
        )
        return RetrievalResult(
            id=content_document_id(record.id),
            content=record.content,
            relevance_score=float(rank or 0) or DEFAULT_RANK,
            source=SOURCE_CONTENT_STORE,
            type=record.type,
            created_at=parse_datetime(record.created_at),
            metadata=metadata,
        )

    def _link_result(self, row: Any, rank: Any) -> RetrievalResult:
        record = self._to_link(row)
        metadata = dict(record.metadata)
        metadata.update(
            {
                "link_id": record.id,
                "app_id": record.app_id,
                "user_id": record.user_id,
                "source": LINK_SOURCE,
                "link": record.link,
                "origin": LINK_SOURCE,
            }
        )
        return RetrievalResult(
            id=link_document_id(record.id),
            content=record.content,
            relevance_score=float(rank or 0) or DEFAULT_RANK,
            source=SOURCE_CONTENT_STORE,
            type="link",
            created_at=parse_datetime(record.created_at),
            metadata=metadata,
        )
