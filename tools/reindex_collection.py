from __future__ import annotations

"""CLI utility to rebuild vector entries from the content database."""

import argparse
import asyncio
import logging

from clone_recall.app.dependencies import get_content_store, get_vector_gateway
from clone_recall.app.settings import settings
from clone_recall.ingest.reindex import reindex_contents


async def _run(app_id: str | None, batch_size: int) -> None:
    store = get_content_store()
    if store is None:
        raise SystemExit("RECALL_CONTENT_DB_URI must be set to reindex")
    gateway = get_vector_gateway()
    try:
        stats = await reindex_contents(
            store,
            gateway,
            app_id=app_id,
            batch_size=batch_size,
            chunk_size=settings.chunk_size,
            overlap=settings.chunk_overlap,
        )
    finally:
        await gateway.close()
    print(
        f"Reindexed {stats.processed} rows and {stats.links} links into {stats.chunks} chunks "
        f"({stats.skipped} skipped)"
    )


def main() -> None:
    """Reindex stored content into the configured vector collection."""
    parser = argparse.ArgumentParser(description="Rebuild the vector collection from stored content.")
    parser.add_argument("--app-id", default=None, help="Only reindex content for this app.")
    parser.add_argument("--batch-size", type=int, default=100, help="Rows per page.")
    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.strip().upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    asyncio.run(_run(args.app_id, args.batch_size))


if __name__ == "__main__":
    main()
