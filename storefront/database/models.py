"""
Database models for the storefront catalog and semantic search
"""
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship

from storefront.core.config import settings

Base = declarative_base()

EMBEDDING_DIMENSION = settings.embedding_dimension


class Category(Base):
    """Product categories"""

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    image_url = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    products = relationship("Product", back_populates="category")

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}')>"


class Product(Base):
    """Catalog product"""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(50), nullable=False, unique=True, index=True)
    name = Column(String(200), nullable=False, index=True)
    description = Column(Text, nullable=True)
    short_description = Column(String(500), nullable=True)
    image_url = Column(String(500), nullable=True)
    price = Column(Float, nullable=False, index=True)
    stock_qty = Column(Integer, nullable=False, default=0)

    featured = Column(Boolean, default=False, index=True)
    new_arrival = Column(Boolean, default=False, index=True)
    is_active = Column(Boolean, default=True, index=True)

    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    category = relationship("Category", back_populates="products")

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    embedding = relationship(
        "ProductEmbedding",
        back_populates="product",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_product_active_created", "is_active", "created_at"),
        Index("idx_product_price_category", "price", "category_id"),
    )

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name[:50]}', price={self.price})>"


class ProductEmbedding(Base):
    """Embedding vectors for a product's title, description and combined text.

    One row per product. combined_embedding is what similarity search ranks
    on; it is always present and has EMBEDDING_DIMENSION entries. The row is
    removed with its product (ON DELETE CASCADE).
    """

    __tablename__ = "product_embeddings"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    title_embedding = Column(Vector(EMBEDDING_DIMENSION), nullable=True)
    description_embedding = Column(Vector(EMBEDDING_DIMENSION), nullable=True)
    combined_embedding = Column(Vector(EMBEDDING_DIMENSION), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    product = relationship("Product", back_populates="embedding")

    __table_args__ = (
        # HNSW only applies on PostgreSQL; other dialects get a plain index
        Index(
            "idx_product_embeddings_combined_hnsw",
            "combined_embedding",
            postgresql_using="hnsw",
            postgresql_with={"m": 16, "ef_construction": 64},
            postgresql_ops={"combined_embedding": "vector_cosine_ops"},
        ),
    )

    def __repr__(self):
        return f"<ProductEmbedding(id={self.id}, product_id={self.product_id})>"
