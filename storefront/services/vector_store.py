"""
Vector store access for product embeddings.

Nearest-neighbour lookup over product_embeddings.combined_embedding for
active products. On PostgreSQL the ranking runs in SQL with the pgvector
cosine distance operator (served by the HNSW index); on other dialects the
embeddings are scanned and scored with numpy.

Similarity is 1 - cosine distance. Results are ordered by similarity
descending, then product id ascending.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence, Tuple

import numpy as np
from sqlalchemy import Select, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import StoreUnavailable
from storefront.database.models import Product, ProductEmbedding

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimilarityMatch:
    product_id: int
    similarity: float


def rank_matches(
    pairs: Iterable[Tuple[int, float]],
    threshold: float,
    limit: int,
) -> List[SimilarityMatch]:
    """Keep pairs with similarity >= threshold, order deterministically, cap at limit."""
    kept = [(int(product_id), float(similarity)) for product_id, similarity in pairs if similarity >= threshold]
    kept.sort(key=lambda pair: (-pair[1], pair[0]))
    return [SimilarityMatch(product_id=product_id, similarity=similarity) for product_id, similarity in kept[:limit]]


def build_similarity_query(query_vector: Sequence[float], limit: int, threshold: float) -> Select:
    """pgvector ranking: cosine distance ascending, product id ascending on ties."""
    distance = ProductEmbedding.combined_embedding.cosine_distance(list(query_vector))
    return (
        select(ProductEmbedding.product_id, (1 - distance).label("similarity"))
        .join(Product, Product.id == ProductEmbedding.product_id)
        .where(Product.is_active.is_(True))
        .where(1 - distance >= threshold)
        .order_by(distance.asc(), ProductEmbedding.product_id.asc())
        .limit(limit)
    )


def _dialect_name(db: AsyncSession) -> str:
    return db.bind.dialect.name if db.bind is not None else ""


class VectorStore:
    """Similarity search over stored product embeddings."""

    async def similarity_search(
        self,
        db: AsyncSession,
        query_vector: Sequence[float],
        limit: int,
        threshold: float,
    ) -> List[SimilarityMatch]:
        """
        Find the products most similar to query_vector.

        Returns:
            Up to limit matches with similarity >= threshold, empty when
            nothing clears the threshold

        Raises:
            StoreUnavailable: the store could not be reached or the query failed
        """
        if limit <= 0:
            return []

        start_time = time.time()
        try:
            if _dialect_name(db) == "postgresql":
                matches = await self._search_pgvector(db, query_vector, limit, threshold)
            else:
                matches = await self._search_scan(db, query_vector, limit, threshold)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"[VECTOR STORE] Similarity query failed: {e}")
            await self.rollback(db)
            raise StoreUnavailable(f"Similarity query failed: {e}") from e

        logger.info(
            f"[VECTOR STORE] {len(matches)} matches >= {threshold} "
            f"(limit={limit}, {(time.time() - start_time) * 1000:.0f}ms)"
        )
        return matches

    async def _search_pgvector(
        self,
        db: AsyncSession,
        query_vector: Sequence[float],
        limit: int,
        threshold: float,
    ) -> List[SimilarityMatch]:
        result = await db.execute(build_similarity_query(query_vector, limit, threshold))
        return rank_matches(result.all(), threshold, limit)

    async def _search_scan(
        self,
        db: AsyncSession,
        query_vector: Sequence[float],
        limit: int,
        threshold: float,
    ) -> List[SimilarityMatch]:
        query = (
            select(ProductEmbedding.product_id, ProductEmbedding.combined_embedding)
            .join(Product, Product.id == ProductEmbedding.product_id)
            .where(Product.is_active.is_(True))
        )
        result = await db.execute(query)
        rows = result.all()
        if not rows:
            return []

        query_vec = np.asarray(query_vector, dtype=np.float64)
        query_norm = np.linalg.norm(query_vec)
        if query_norm == 0:
            logger.warning("[VECTOR STORE] Query embedding has zero norm")
            return []

        product_ids = []
        vectors = []
        for product_id, embedding in rows:
            vector = np.asarray(embedding, dtype=np.float64)
            if vector.shape != query_vec.shape:
                logger.warning(f"[VECTOR STORE] Skipping product {product_id}: embedding shape {vector.shape}")
                continue
            product_ids.append(product_id)
            vectors.append(vector)

        if not vectors:
            return []

        matrix = np.vstack(vectors)
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0] = 1
        similarities = (matrix @ query_vec) / (norms * query_norm)

        return rank_matches(zip(product_ids, similarities.tolist()), threshold, limit)

    @staticmethod
    async def rollback(db: AsyncSession):
        try:
            await db.rollback()
        except SQLAlchemyError as e:
            logger.warning(f"[VECTOR STORE] Rollback after failed query also failed: {e}")

    async def count_embeddings(self, db: AsyncSession) -> int:
        result = await db.execute(select(func.count()).select_from(ProductEmbedding))
        return result.scalar() or 0

    async def check_available(self, db: AsyncSession) -> Dict[str, Any]:
        """Check the store: pgvector installed (PostgreSQL) and embeddings readable."""
        try:
            if _dialect_name(db) == "postgresql":
                result = await db.execute(text("SELECT 1 FROM pg_extension WHERE extname = 'vector'"))
                if result.first() is None:
                    logger.warning("PostgreSQL is reachable but the pgvector extension is not installed")
                    return {"available": False, "reason": "pgvector_not_installed", "embeddings": 0}
            embeddings = await self.count_embeddings(db)
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Vector store is not reachable: {e}")
            await self.rollback(db)
            return {"available": False, "reason": "store_unreachable", "embeddings": 0}

        return {"available": True, "reason": None, "embeddings": embeddings}


_vector_store = VectorStore()


def get_vector_store() -> VectorStore:
    return _vector_store
