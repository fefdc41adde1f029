"""
Backfill product embeddings for semantic search.

Processes active products in batches, generating title, description and
combined embeddings with the configured embedding backend.

Usage:
    storefront-backfill-embeddings [--batch-size 10] [--limit 1000] [--regenerate] [--create-tables]
"""
import argparse
import asyncio
import logging
import sys
import time
from typing import List, Optional

from storefront.core.config import settings
from storefront.core.database import AsyncSessionLocal, create_tables, engine
from storefront.core.exceptions import ModelUnavailable
from storefront.core.logging import setup_logging
from storefront.services.indexing_service import IndexingService
from storefront.services.vector_store import get_vector_store

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Backfill product embeddings for semantic search")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.embedding_batch_size,
        help=f"Number of products to process per batch (default: {settings.embedding_batch_size})",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of products to process",
    )
    parser.add_argument(
        "--regenerate",
        action="store_true",
        help="Regenerate embeddings even for products that already have them",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables (and the pgvector extension) before running",
    )
    return parser


async def run(batch_size: int, limit: Optional[int], regenerate: bool, create: bool) -> dict:
    if create:
        await create_tables()
        logger.info("Database tables ready")

    indexer = IndexingService()
    await indexer.embedding_service.ensure_loaded()

    start_time = time.time()
    async with AsyncSessionLocal() as db:
        stats = await indexer.sync_missing_embeddings(
            db, batch_size=batch_size, limit=limit, regenerate=regenerate
        )
        total = await get_vector_store().count_embeddings(db)

    elapsed = time.time() - start_time
    print("\n" + "=" * 60)
    print("EMBEDDING BACKFILL COMPLETE")
    print("=" * 60)
    print(f"Total processed:    {stats['processed']}")
    print(f"Success:            {stats['success']}")
    print(f"Failed:             {stats['failed']}")
    print(f"Embeddings stored:  {total}")
    print(f"Time elapsed:       {elapsed / 60:.1f} minutes")
    print("=" * 60)
    return stats


async def _main(args: argparse.Namespace) -> int:
    try:
        stats = await run(args.batch_size, args.limit, args.regenerate, args.create_tables)
    except ModelUnavailable as e:
        logger.error(f"Embedding model could not be loaded: {e}")
        return 1
    finally:
        await engine.dispose()
    return 0 if stats["failed"] == 0 else 2


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for storefront-backfill-embeddings."""
    args = build_parser().parse_args(argv)
    setup_logging()

    logger.info(f"Batch size: {args.batch_size}")
    if args.regenerate:
        logger.info("Regeneration mode: will update existing embeddings")

    try:
        return asyncio.run(_main(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user. Committed batches are kept.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
