"""
Catalog service: product listing, lookup and keyword search.

Keyword search is the fallback for semantic search, so a failure here is
reported as CatalogUnavailable rather than recovered.
"""
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.exceptions import CatalogUnavailable
from storefront.database.models import Product

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "created_at": Product.created_at,
    "price": Product.price,
    "name": Product.name,
}


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _text_condition(text: str):
    # User text matches literally; % and _ are not wildcards
    pattern = f"%{_escape_like(text)}%"
    return or_(
        Product.name.ilike(pattern, escape="\\"),
        Product.description.ilike(pattern, escape="\\"),
    )


class CatalogService:
    """Read access to the product catalog."""

    async def keyword_search(self, db: AsyncSession, text: str, limit: int) -> List[Product]:
        """
        Case-insensitive substring match on product name and description.

        Newest products first, id as tie-break so repeated calls return the
        same order.
        """
        query = (
            select(Product)
            .options(selectinload(Product.category))
            .where(Product.is_active.is_(True))
            .where(_text_condition(text.strip()))
            .order_by(Product.created_at.desc(), Product.id.asc())
            .limit(limit)
        )
        try:
            result = await db.execute(query)
        except SQLAlchemyError as e:
            logger.error(f"Keyword search failed for '{text[:50]}': {e}")
            raise CatalogUnavailable(query=text) from e

        products = list(result.scalars().unique().all())
        logger.info(f"[KEYWORD SEARCH] '{text[:50]}' matched {len(products)} products")
        return products

    async def list_products(
        self,
        db: AsyncSession,
        page: int = 1,
        size: int = 12,
        search: Optional[str] = None,
        category_id: Optional[int] = None,
        featured: Optional[bool] = None,
        new_arrival: Optional[bool] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        sort_by: str = "created_at",
        sort_direction: str = "desc",
    ) -> Tuple[List[Product], int]:
        """Paginated listing of active products. Returns (products, total)."""
        conditions = [Product.is_active.is_(True)]

        if search and search.strip():
            conditions.append(_text_condition(search.strip()))
        if category_id is not None:
            conditions.append(Product.category_id == category_id)
        if featured is not None:
            conditions.append(Product.featured.is_(featured))
        if new_arrival is not None:
            conditions.append(Product.new_arrival.is_(new_arrival))
        if min_price is not None:
            conditions.append(Product.price >= min_price)
        if max_price is not None:
            conditions.append(Product.price <= max_price)

        sort_column = SORT_COLUMNS.get(sort_by, Product.created_at)
        order = sort_column.asc() if sort_direction == "asc" else sort_column.desc()

        query = (
            select(Product)
            .options(selectinload(Product.category))
            .where(*conditions)
            .order_by(order, Product.id.asc())
            .offset((page - 1) * size)
            .limit(size)
        )
        count_query = select(func.count()).select_from(Product).where(*conditions)

        try:
            total = (await db.execute(count_query)).scalar() or 0
            result = await db.execute(query)
        except SQLAlchemyError as e:
            logger.error(f"Error fetching products: {e}")
            raise CatalogUnavailable() from e

        return list(result.scalars().unique().all()), total

    async def get_products_by_ids(self, db: AsyncSession, product_ids: Sequence[int]) -> Dict[int, Product]:
        """Active products keyed by id. Unknown or inactive ids are absent."""
        if not product_ids:
            return {}
        query = (
            select(Product)
            .options(selectinload(Product.category))
            .where(Product.id.in_(list(product_ids)))
            .where(Product.is_active.is_(True))
        )
        try:
            result = await db.execute(query)
        except SQLAlchemyError as e:
            logger.error(f"Error fetching products {list(product_ids)[:10]}: {e}")
            raise CatalogUnavailable() from e
        return {product.id: product for product in result.scalars().unique().all()}

    async def get_product(self, db: AsyncSession, product_id: int) -> Optional[Product]:
        products = await self.get_products_by_ids(db, [product_id])
        return products.get(product_id)


_catalog_service = CatalogService()


def get_catalog_service() -> CatalogService:
    return _catalog_service
