"""
Product embedding indexer.

Generates title, description and combined embeddings for catalog products
and stores them in product_embeddings, one row per product. Used by the
backfill CLI and for re-embedding a single product after it changes.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.core.exceptions import EmbeddingError, NotFoundError
from storefront.database.models import Product, ProductEmbedding
from storefront.services.embedding_service import DOCUMENT_TASK, EmbeddingService, get_embedding_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddingTexts:
    title: str
    description: str
    combined: str


@dataclass(frozen=True)
class ProductVectors:
    title: Optional[List[float]]
    description: Optional[List[float]]
    combined: List[float]


def build_embedding_texts(product: Product) -> EmbeddingTexts:
    """Texts embedded for a product. combined is "{name} {description}"."""
    title = (product.name or "").strip()
    description = (product.description or "").strip()
    return EmbeddingTexts(
        title=title,
        description=description,
        combined=f"{title} {description}".strip(),
    )


class IndexingService:
    """Keeps product_embeddings in step with the catalog."""

    def __init__(self, embedding_service: Optional[EmbeddingService] = None):
        self.embedding_service = embedding_service or get_embedding_service()

    async def generate_product_embeddings(self, product: Product) -> ProductVectors:
        """
        Embed a product's title, description and combined text.

        Empty title or description yields None for that vector.

        Raises:
            EmbeddingError: combined text is empty or inference failed
            ModelUnavailable: the model could not be loaded
        """
        texts = build_embedding_texts(product)
        if not texts.combined:
            raise EmbeddingError(f"Product {product.id} has no text to embed", empty_input=True)

        async def embed_optional(text: str) -> Optional[List[float]]:
            if not text:
                return None
            return await self.embedding_service.embed(text, task=DOCUMENT_TASK)

        return ProductVectors(
            title=await embed_optional(texts.title),
            description=await embed_optional(texts.description),
            combined=await self.embedding_service.embed(texts.combined, task=DOCUMENT_TASK),
        )

    async def upsert_embeddings(self, db: AsyncSession, product_id: int, vectors: ProductVectors) -> ProductEmbedding:
        """Insert or replace the embedding row for a product. Caller commits."""
        result = await db.execute(select(ProductEmbedding).where(ProductEmbedding.product_id == product_id))
        record = result.scalar_one_or_none()

        if record is None:
            record = ProductEmbedding(product_id=product_id)
            db.add(record)

        record.title_embedding = vectors.title
        record.description_embedding = vectors.description
        record.combined_embedding = vectors.combined
        record.updated_at = datetime.utcnow()
        await db.flush()
        return record

    async def find_products_without_embeddings(
        self,
        db: AsyncSession,
        limit: Optional[int] = None,
        after_id: int = 0,
    ) -> List[Product]:
        """Active products with no embedding row, in id order."""
        query = (
            select(Product)
            .outerjoin(ProductEmbedding, ProductEmbedding.product_id == Product.id)
            .where(ProductEmbedding.id.is_(None))
            .where(Product.is_active.is_(True))
            .where(Product.id > after_id)
            .order_by(Product.id)
        )
        if limit:
            query = query.limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def _find_products(self, db: AsyncSession, limit: Optional[int], after_id: int) -> List[Product]:
        query = (
            select(Product)
            .where(Product.is_active.is_(True))
            .where(Product.id > after_id)
            .order_by(Product.id)
        )
        if limit:
            query = query.limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def sync_missing_embeddings(
        self,
        db: AsyncSession,
        batch_size: Optional[int] = None,
        limit: Optional[int] = None,
        regenerate: bool = False,
    ) -> Dict[str, Any]:
        """
        Embed every active product that has no embedding yet.

        Args:
            batch_size: Products fetched and committed per batch
            limit: Maximum number of products to process
            regenerate: Re-embed products that already have embeddings

        Returns:
            Stats dict with processed, success, failed and errors
            (product id -> message). A product that fails to embed is
            counted and skipped; it does not stop the run. The same holds
            for a product whose embedding row cannot be written.
        """
        batch_size = batch_size or settings.embedding_batch_size
        stats: Dict[str, Any] = {"processed": 0, "success": 0, "failed": 0, "errors": {}}
        start_time = time.time()
        last_id = 0

        while limit is None or stats["processed"] < limit:
            size = batch_size if limit is None else min(batch_size, limit - stats["processed"])
            if regenerate:
                products = await self._find_products(db, size, last_id)
            else:
                products = await self.find_products_without_embeddings(db, size, last_id)
            if not products:
                break

            for product in products:
                last_id = product.id
                stats["processed"] += 1
                try:
                    vectors = await self.generate_product_embeddings(product)
                except EmbeddingError as e:
                    stats["failed"] += 1
                    stats["errors"][product.id] = str(e)
                    logger.warning(f"Product {product.id}: embedding failed: {e}")
                    continue
                try:
                    # Savepoint per product keeps earlier rows in the batch
                    async with db.begin_nested():
                        await self.upsert_embeddings(db, product.id, vectors)
                except SQLAlchemyError as e:
                    stats["failed"] += 1
                    stats["errors"][product.id] = str(e)
                    logger.warning(f"Product {product.id}: storing embedding failed: {e}")
                    continue
                stats["success"] += 1

            await db.commit()
            logger.info(
                f"Batch committed: processed={stats['processed']} "
                f"success={stats['success']} failed={stats['failed']}"
            )

        logger.info(
            f"Embedding sync complete: {stats['success']}/{stats['processed']} products "
            f"in {time.time() - start_time:.1f}s"
        )
        return stats

    async def update_product_embedding(self, db: AsyncSession, product_id: int) -> ProductEmbedding:
        """
        Re-embed a single product and commit.

        Raises:
            NotFoundError: no product with this id
        """
        product = await db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found", product_id=product_id)

        vectors = await self.generate_product_embeddings(product)
        record = await self.upsert_embeddings(db, product.id, vectors)
        await db.commit()
        logger.info(f"Updated embeddings for product {product_id}")
        return record
