from __future__ import annotations

"""CLI utility to drop and recreate the Milvus collection."""

import argparse
import asyncio
from dataclasses import replace

from clone_recall.app.dependencies import build_milvus_config, get_embedding_service
from clone_recall.vectorstore.milvus import connect_milvus, drop_collection


def main() -> None:
    """Reset the configured Milvus collection using app settings."""
    config = build_milvus_config()
    parser = argparse.ArgumentParser(description="Drop and recreate Milvus collection.")
    parser.add_argument(
        "--collection",
        default=config.collection,
        help="Collection name to reset.",
    )
    args = parser.parse_args()
    config = replace(config, collection=args.collection)

    if drop_collection(config):
        print(f"Dropped collection: {args.collection}")

    dimension = get_embedding_service().dimension
    asyncio.run(connect_milvus(config, dimension))
    print(f"Recreated collection: {args.collection} (dim={dimension})")


if __name__ == "__main__":
    main()
