"""
Product API routes
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.core.database import get_db
from storefront.core.exceptions import NotFoundError
from storefront.schemas.products import (
    ProductListResponse,
    ProductSchema,
    ProductSummarySchema,
    SortDirection,
    SortField,
)
from storefront.services.catalog_service import CatalogService, get_catalog_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/products", tags=["products"])


@router.get("/", response_model=ProductListResponse)
async def get_products(
    page: int = Query(1, ge=1),
    size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    search: Optional[str] = Query(None, max_length=200),
    category_id: Optional[int] = Query(None),
    featured: Optional[bool] = Query(None),
    new_arrival: Optional[bool] = Query(None),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    sort_by: SortField = Query(SortField.created_at),
    sort_direction: SortDirection = Query(SortDirection.desc),
    db: AsyncSession = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service),
):
    """Get paginated product list with filtering and search"""
    products, total = await catalog.list_products(
        db,
        page=page,
        size=size,
        search=search,
        category_id=category_id,
        featured=featured,
        new_arrival=new_arrival,
        min_price=min_price,
        max_price=max_price,
        sort_by=sort_by.value,
        sort_direction=sort_direction.value,
    )

    pages = (total + size - 1) // size
    logger.info(f"Listed {len(products)} of {total} products (page {page}/{pages})")

    return ProductListResponse(
        items=[ProductSummarySchema.model_validate(product) for product in products],
        total=total,
        page=page,
        size=size,
        pages=pages,
        has_next=page < pages,
        has_prev=page > 1,
        query=search,
    )


@router.get("/{product_id}", response_model=ProductSchema)
async def get_product(
    product_id: int,
    db: AsyncSession = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service),
):
    """Get a single active product"""
    product = await catalog.get_product(db, product_id)
    if product is None:
        raise NotFoundError("Product not found", product_id=product_id)
    return ProductSchema.model_validate(product)
