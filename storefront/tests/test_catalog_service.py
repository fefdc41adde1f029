"""
Tests for catalog listing, lookup and keyword search.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from storefront.core.exceptions import CatalogUnavailable
from storefront.services.catalog_service import CatalogService


@pytest.fixture
def catalog():
    return CatalogService()


class TestKeywordSearch:
    """Tests for the keyword fallback search"""

    async def test_matches_name_and_description_case_insensitively(self, catalog, db_session, make_product):
        by_name = await make_product("Steel Bolt M8")
        by_description = await make_product("Fastener Kit", description="Assorted STEEL washers")
        await make_product("Garden Hose")

        products = await catalog.keyword_search(db_session, "steel", limit=10)

        # Newest first
        assert [p.id for p in products] == [by_description.id, by_name.id]

    async def test_respects_limit(self, catalog, db_session, make_product):
        for i in range(5):
            await make_product(f"Bolt {i}")

        products = await catalog.keyword_search(db_session, "bolt", limit=3)

        assert len(products) == 3

    async def test_excludes_inactive_products(self, catalog, db_session, make_product):
        await make_product("Old Bolt", is_active=False)

        assert await catalog.keyword_search(db_session, "bolt", limit=10) == []

    async def test_wildcards_in_query_match_literally(self, catalog, db_session, make_product):
        await make_product("Steel Bolt")
        cotton = await make_product("100% Cotton Rag")
        await make_product("Hex Nut", description="Grade 8")
        snake = await make_product("Hex_Nut")

        percent = await catalog.keyword_search(db_session, "%", limit=10)
        underscore = await catalog.keyword_search(db_session, "x_n", limit=10)

        assert [p.id for p in percent] == [cotton.id]
        assert [p.id for p in underscore] == [snake.id]

    async def test_database_error_raises_catalog_unavailable(self, catalog):
        db = MagicMock()
        db.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("connection refused")))

        with pytest.raises(CatalogUnavailable):
            await catalog.keyword_search(db, "bolt", limit=10)


class TestListProducts:
    """Tests for the paginated listing"""

    async def test_paginates_newest_first(self, catalog, db_session, make_product):
        created = [await make_product(f"Bolt {i}") for i in range(5)]

        page_one, total = await catalog.list_products(db_session, page=1, size=2)
        page_three, _ = await catalog.list_products(db_session, page=3, size=2)

        assert total == 5
        assert [p.id for p in page_one] == [created[4].id, created[3].id]
        assert [p.id for p in page_three] == [created[0].id]

    async def test_filters(self, catalog, db_session, make_product):
        await make_product("Cheap Bolt", price=1.0)
        featured = await make_product("Featured Bolt", price=20.0, featured=True)
        await make_product("Pricey Nut", price=50.0, new_arrival=True)

        featured_only, _ = await catalog.list_products(db_session, featured=True)
        mid_range, _ = await catalog.list_products(db_session, min_price=5.0, max_price=30.0)
        new_nuts, _ = await catalog.list_products(db_session, search="nut", new_arrival=True)

        assert [p.id for p in featured_only] == [featured.id]
        assert [p.id for p in mid_range] == [featured.id]
        assert [p.name for p in new_nuts] == ["Pricey Nut"]

    async def test_sort_by_price_ascending(self, catalog, db_session, make_product):
        await make_product("B", price=30.0)
        await make_product("A", price=10.0)
        await make_product("C", price=20.0)

        products, _ = await catalog.list_products(db_session, sort_by="price", sort_direction="asc")

        assert [p.price for p in products] == [10.0, 20.0, 30.0]

    async def test_category_is_loaded(self, catalog, db_session, make_product, category):
        await make_product("Steel Bolt")

        products, _ = await catalog.list_products(db_session)

        assert products[0].category.name == category.name


class TestLookup:
    """Tests for id lookups"""

    async def test_get_products_by_ids_skips_inactive_and_unknown(self, catalog, db_session, make_product):
        active = await make_product("Steel Bolt")
        inactive = await make_product("Old Bolt", is_active=False)

        found = await catalog.get_products_by_ids(db_session, [active.id, inactive.id, 9999])

        assert list(found) == [active.id]

    async def test_get_products_by_ids_empty(self, catalog, db_session):
        assert await catalog.get_products_by_ids(db_session, []) == {}

    async def test_get_product(self, catalog, db_session, make_product):
        product = await make_product("Steel Bolt")

        assert (await catalog.get_product(db_session, product.id)).name == "Steel Bolt"
        assert await catalog.get_product(db_session, 9999) is None
