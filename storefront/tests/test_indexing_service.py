"""
Tests for the product embedding indexer and backfill CLI parsing.
"""
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from storefront.core.exceptions import EmbeddingError, NotFoundError
from storefront.database.models import ProductEmbedding
from storefront.scripts.backfill_embeddings import build_parser
from storefront.services.embedding_service import EmbeddingService
from storefront.services.indexing_service import IndexingService, build_embedding_texts
from storefront.tests.fakes import FakeBackend


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def indexer(backend):
    return IndexingService(embedding_service=EmbeddingService(backend=backend, dimension=384))


async def count_embeddings(db):
    return (await db.execute(select(func.count()).select_from(ProductEmbedding))).scalar()


class TestEmbeddingTexts:
    """Tests for the text fed to the model"""

    def test_combined_text(self):
        product = SimpleNamespace(name=" Steel Bolt ", description="Zinc plated M8 ")

        texts = build_embedding_texts(product)

        assert texts.title == "Steel Bolt"
        assert texts.description == "Zinc plated M8"
        assert texts.combined == "Steel Bolt Zinc plated M8"

    def test_missing_description(self):
        texts = build_embedding_texts(SimpleNamespace(name="Steel Bolt", description=None))

        assert texts.description == ""
        assert texts.combined == "Steel Bolt"


class TestGenerateEmbeddings:
    """Tests for per-product vector generation"""

    async def test_generates_all_vectors(self, indexer):
        product = SimpleNamespace(id=1, name="Steel Bolt", description="Zinc plated")

        vectors = await indexer.generate_product_embeddings(product)

        assert len(vectors.title) == 384
        assert len(vectors.description) == 384
        assert len(vectors.combined) == 384

    async def test_empty_description_has_no_vector(self, indexer):
        product = SimpleNamespace(id=1, name="Steel Bolt", description="  ")

        vectors = await indexer.generate_product_embeddings(product)

        assert vectors.description is None
        assert vectors.combined is not None

    async def test_product_without_text_raises(self, indexer):
        product = SimpleNamespace(id=1, name="", description=None)

        with pytest.raises(EmbeddingError):
            await indexer.generate_product_embeddings(product)


class TestSync:
    """Tests for backfilling missing embeddings"""

    async def test_embeds_products_without_embeddings(self, indexer, db_session, make_product):
        await make_product("Steel Bolt", embedding_similarity=0.9)
        missing = [await make_product(f"Bolt {i}", description="Zinc plated") for i in range(3)]

        stats = await indexer.sync_missing_embeddings(db_session, batch_size=2)

        assert stats == {"processed": 3, "success": 3, "failed": 0, "errors": {}}
        assert await count_embeddings(db_session) == 4
        assert await indexer.find_products_without_embeddings(db_session) == []
        assert all(p.id > 0 for p in missing)

    async def test_skips_inactive_products(self, indexer, db_session, make_product):
        await make_product("Old Bolt", is_active=False)

        stats = await indexer.sync_missing_embeddings(db_session)

        assert stats["processed"] == 0

    async def test_limit(self, indexer, db_session, make_product):
        for i in range(5):
            await make_product(f"Bolt {i}")

        stats = await indexer.sync_missing_embeddings(db_session, batch_size=2, limit=3)

        assert stats["processed"] == 3
        assert await count_embeddings(db_session) == 3

    async def test_failures_are_counted_not_fatal(self, indexer, db_session, make_product):
        empty = await make_product("   ")
        await make_product("Steel Bolt")

        stats = await indexer.sync_missing_embeddings(db_session)

        assert stats["processed"] == 2
        assert stats["success"] == 1
        assert stats["failed"] == 1
        assert empty.id in stats["errors"]

    async def test_storage_failure_is_counted_not_fatal(self, indexer, db_session, make_product):
        broken = await make_product("Steel Bolt")
        stored = await make_product("Hex Nut")
        upsert = indexer.upsert_embeddings

        async def failing_upsert(db, product_id, vectors):
            record = await upsert(db, product_id, vectors)
            if product_id == broken.id:
                raise OperationalError("INSERT", {}, Exception("disk full"))
            return record

        indexer.upsert_embeddings = failing_upsert

        stats = await indexer.sync_missing_embeddings(db_session)

        assert stats["processed"] == 2
        assert stats["success"] == 1
        assert stats["failed"] == 1
        assert "disk full" in stats["errors"][broken.id]
        rows = (await db_session.execute(select(ProductEmbedding.product_id))).scalars().all()
        assert rows == [stored.id]

    async def test_regenerate_updates_existing_rows(self, indexer, db_session, make_product):
        product = await make_product("Steel Bolt", embedding_similarity=0.9)

        stats = await indexer.sync_missing_embeddings(db_session, regenerate=True)

        assert stats["success"] == 1
        assert await count_embeddings(db_session) == 1
        record = (
            await db_session.execute(select(ProductEmbedding).where(ProductEmbedding.product_id == product.id))
        ).scalar_one()
        assert record.title_embedding is not None


class TestUpdateProductEmbedding:
    """Tests for re-embedding a single product"""

    async def test_creates_then_replaces_row(self, indexer, backend, db_session, make_product):
        product = await make_product("Steel Bolt", description="Zinc plated")

        await indexer.update_product_embedding(db_session, product.id)
        await indexer.update_product_embedding(db_session, product.id)

        assert await count_embeddings(db_session) == 1
        # title, description and combined on each call
        assert backend.encode_calls == 6

    async def test_unknown_product(self, indexer, db_session):
        with pytest.raises(NotFoundError):
            await indexer.update_product_embedding(db_session, 9999)


class TestBackfillCli:
    """Tests for argument parsing of storefront-backfill-embeddings"""

    def test_defaults(self):
        args = build_parser().parse_args([])

        assert args.batch_size == 10
        assert args.limit is None
        assert args.regenerate is False
        assert args.create_tables is False

    def test_options(self):
        args = build_parser().parse_args(["--batch-size", "50", "--limit", "200", "--regenerate", "--create-tables"])

        assert args.batch_size == 50
        assert args.limit == 200
        assert args.regenerate is True
        assert args.create_tables is True
