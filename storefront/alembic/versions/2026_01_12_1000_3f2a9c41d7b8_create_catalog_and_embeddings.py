"""Create catalog and product embedding tables

Revision ID: 3f2a9c41d7b8
Revises:
Create Date: 2026-01-12

This migration adds:
1. pgvector extension for vector similarity search
2. categories and products tables
3. product_embeddings (384 dimensions for all-MiniLM-L6-v2) with an HNSW
   cosine index on combined_embedding
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from pgvector.sqlalchemy import Vector

# revision identifiers, used by Alembic.
revision: str = "3f2a9c41d7b8"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIMENSION = 384


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_categories_id", "categories", ["id"])
    op.create_index("ix_categories_name", "categories", ["name"], unique=True)
    op.create_index("ix_categories_is_active", "categories", ["is_active"])

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sku", sa.String(50), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("short_description", sa.String(500), nullable=True),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("stock_qty", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("featured", sa.Boolean(), nullable=True),
        sa.Column("new_arrival", sa.Boolean(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_products_id", "products", ["id"])
    op.create_index("ix_products_sku", "products", ["sku"], unique=True)
    op.create_index("ix_products_name", "products", ["name"])
    op.create_index("ix_products_price", "products", ["price"])
    op.create_index("ix_products_featured", "products", ["featured"])
    op.create_index("ix_products_new_arrival", "products", ["new_arrival"])
    op.create_index("ix_products_is_active", "products", ["is_active"])
    op.create_index("ix_products_category_id", "products", ["category_id"])
    op.create_index("ix_products_created_at", "products", ["created_at"])
    op.create_index("idx_product_active_created", "products", ["is_active", "created_at"])
    op.create_index("idx_product_price_category", "products", ["price", "category_id"])

    op.create_table(
        "product_embeddings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "product_id",
            sa.Integer(),
            sa.ForeignKey("products.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title_embedding", Vector(EMBEDDING_DIMENSION), nullable=True),
        sa.Column("description_embedding", Vector(EMBEDDING_DIMENSION), nullable=True),
        sa.Column("combined_embedding", Vector(EMBEDDING_DIMENSION), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_product_embeddings_id", "product_embeddings", ["id"])
    op.create_index("ix_product_embeddings_product_id", "product_embeddings", ["product_id"], unique=True)
    op.create_index(
        "idx_product_embeddings_combined_hnsw",
        "product_embeddings",
        ["combined_embedding"],
        postgresql_using="hnsw",
        postgresql_with={"m": 16, "ef_construction": 64},
        postgresql_ops={"combined_embedding": "vector_cosine_ops"},
    )


def downgrade() -> None:
    op.drop_index("idx_product_embeddings_combined_hnsw", table_name="product_embeddings")
    op.drop_table("product_embeddings")
    op.drop_table("products")
    op.drop_table("categories")
