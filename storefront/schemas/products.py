"""
Pydantic schemas for product-related API endpoints
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class CategorySchema(BaseModel):
    """Category schema"""
    id: int
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None

    class Config:
        from_attributes = True


class ProductSummarySchema(BaseModel):
    """Simplified product schema for listings"""
    id: int
    sku: str
    name: str
    description: Optional[str] = None
    short_description: Optional[str] = None
    image_url: Optional[str] = None
    price: float
    stock_qty: int = 0
    featured: bool = False
    new_arrival: bool = False
    category: Optional[CategorySchema] = None

    class Config:
        from_attributes = True


class ProductSchema(ProductSummarySchema):
    """Complete product schema"""
    is_active: bool = True
    category_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SortField(str, Enum):
    """Available sort fields"""
    price = "price"
    name = "name"
    created_at = "created_at"


class SortDirection(str, Enum):
    """Sort directions"""
    asc = "asc"
    desc = "desc"


class PaginatedResponse(BaseModel):
    """Paginated response schema"""
    total: int
    page: int
    size: int
    pages: int
    has_next: bool
    has_prev: bool


class ProductListResponse(PaginatedResponse):
    """Product listing response"""
    items: List[ProductSummarySchema]
    query: Optional[str] = None
