"""
CLI entry point for ingesting and vectorizing source records.

Each input file is a JSON array; the file stem names the target collection
(products.json -> products).
"""

import asyncio
import argparse
from pathlib import Path

from bson import json_util

from ragchat.shared.config import settings
from ragchat.shared.embeddings import EmbeddingClient
from ragchat.shared.logging import get_logger, setup_logging
from ragchat.store.mongo import MongoChatStore

logger = get_logger(__name__)


async def ingest_file(store: MongoChatStore, embedder: EmbeddingClient, path: Path) -> int:
    """Ensure the vector index exists, then embed and insert every record in a file."""
    collection = path.stem
    logger.info(f"Ingesting {collection} data from {path}")

    records = json_util.loads(path.read_text(encoding="utf-8"))
    if not isinstance(records, list):
        raise ValueError(f"{path} must contain a JSON array")

    await store.ensure_vector_index(collection)
    inserted = await store.import_and_vectorize(collection, records, embedder)

    logger.info(f"{collection} data ingestion complete ({inserted} records)")
    return inserted


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="ragchat ingest and vectorize")
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=Path("data"),
        help="Directory holding <collection>.json files"
    )
    parser.add_argument(
        "--collections",
        nargs="*",
        default=settings.mongo.vector_collections,
        help="Collections to ingest"
    )

    args = parser.parse_args()

    setup_logging()

    store = MongoChatStore()
    embedder = EmbeddingClient()
    totals = {}
    try:
        for collection in args.collections:
            path = args.data_dir / f"{collection}.json"
            if not path.exists():
                logger.warning(f"Skipping {collection}: {path} not found")
                continue
            totals[collection] = await ingest_file(store, embedder, path)
    finally:
        await store.close()

    print("\n" + "=" * 50)
    print("Ingestion Summary")
    print("=" * 50)
    for collection, count in totals.items():
        print(f"{collection}: {count} records")
    print("=" * 50)


if __name__ == "__main__":
    asyncio.run(main())
