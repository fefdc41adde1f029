"""
Shared pytest fixtures for storefront tests.

Database tests run against in-memory SQLite (aiosqlite). pgvector columns
are stored as text there and similarity search uses the numpy scan path.
"""
import os
from datetime import datetime, timedelta
from typing import AsyncGenerator, Optional

os.environ.setdefault("EMBEDDING_PRELOAD", "false")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from storefront.core.exceptions import ModelUnavailable
from storefront.database.models import Base, Category, Product, ProductEmbedding
from storefront.tests.fakes import FakeBackend, vector_with_similarity


@pytest.fixture
async def test_engine():
    """Async SQLite engine with the schema created"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        # pysqlite's own transaction handling breaks SAVEPOINT
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Fresh database session for each test"""
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def category(db_session):
    category = Category(name="Fasteners", description="Bolts, nuts and screws")
    db_session.add(category)
    await db_session.commit()
    return category


@pytest.fixture
def make_product(db_session, category):
    """Factory that inserts a product; later calls are newer."""
    counter = {"n": 0}
    base_time = datetime(2026, 1, 1, 12, 0, 0)

    async def _make(
        name: str,
        description: Optional[str] = None,
        price: float = 10.0,
        is_active: bool = True,
        featured: bool = False,
        new_arrival: bool = False,
        embedding_similarity: Optional[float] = None,
    ) -> Product:
        counter["n"] += 1
        product = Product(
            sku=f"SKU-{counter['n']:04d}",
            name=name,
            description=description,
            price=price,
            stock_qty=5,
            is_active=is_active,
            featured=featured,
            new_arrival=new_arrival,
            category_id=category.id,
            created_at=base_time + timedelta(minutes=counter["n"]),
        )
        db_session.add(product)
        await db_session.flush()
        if embedding_similarity is not None:
            db_session.add(
                ProductEmbedding(
                    product_id=product.id,
                    combined_embedding=vector_with_similarity(embedding_similarity),
                )
            )
        await db_session.commit()
        return product

    return _make


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def model_unavailable():
    return ModelUnavailable("Failed to load embedding model: offline")
