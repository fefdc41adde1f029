"""
Database module for the storefront
"""
from .models import (
    Base,
    Category,
    Product,
    ProductEmbedding,
    EMBEDDING_DIMENSION,
)

__all__ = [
    "Base",
    "Category",
    "Product",
    "ProductEmbedding",
    "EMBEDDING_DIMENSION",
]
