"""
Tests for the batch jobs that rebuild the recommendation cache tables and the
autocomplete index, and the lock that keeps two runs of the same job apart.
"""
from datetime import timedelta

import pytest

from catalog_engine.domain.models.autocomplete import AutocompleteEntry
from catalog_engine.domain.models.product import AttributeValue, ProductStatus
from catalog_engine.domain.models.reco import Interaction, InteractionType, TrendingProduct
from catalog_engine.domain.services.batch_svc import BatchJobs, content_similarity, jaccard
from catalog_engine.utils.locks import LocalLocks

from tests.conftest import NOW, fixed_clock, make_product


@pytest.fixture
def locks():
    return LocalLocks()


@pytest.fixture
def jobs(products, interactions, cache, locks, settings):
    return BatchJobs(products, interactions, cache, locks, settings, clock=fixed_clock)


def purchase(product_id, order_id, at=NOW - timedelta(days=2)):
    return Interaction(product_id=product_id, type=InteractionType.PURCHASE, weight=5.0,
                       order_id=order_id, created_at=at)


class TestSimilarity:
    def test_jaccard(self):
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
        assert jaccard(set(), set()) == 0.0

    def test_content_similarity_blend(self):
        color = [AttributeValue(attribute_id="color", term_id="black")]
        a = make_product("a", "A", category_id="c", brand_id="b", tags=["anc"], attribute_values=color)
        b = make_product("b", "B", category_id="c", brand_id="b", tags=["anc"], attribute_values=color)
        c = make_product("c", "C", category_id="x", brand_id="b")
        assert content_similarity(a, b) == pytest.approx(1.0)
        assert content_similarity(a, c) == pytest.approx(0.2)

    @pytest.mark.asyncio
    async def test_rebuild_writes_ranked_rows(self, jobs, products, cache):
        for p in [
            make_product("a", "A", category_id="c", brand_id="b"),
            make_product("b", "B", category_id="c", brand_id="b"),
            make_product("c", "C", category_id="c"),
            make_product("z", "Z", category_id="other"),
        ]:
            await products.upsert(p)
        run = await jobs.rebuild_similarities()
        assert not run.skipped
        rows = await cache.get_similar("a", 10)
        assert [(r.similar_id, r.score) for r in rows] == [("b", 0.7), ("c", 0.5)]

    @pytest.mark.asyncio
    async def test_rebuild_is_idempotent(self, jobs, products, cache):
        await products.upsert(make_product("a", "A", category_id="c"))
        await products.upsert(make_product("b", "B", category_id="c"))
        first = await jobs.rebuild_similarities()
        second = await jobs.rebuild_similarities()
        assert first.rows == second.rows == 2
        assert len(await cache.get_similar("a", 10)) == 1


class TestFrequentlyBought:
    @pytest.mark.asyncio
    async def test_support_confidence_lift(self, jobs, products, interactions, cache):
        for pid in ("p", "q", "r"):
            await products.upsert(make_product(pid, pid.upper()))
        for i in [purchase("p", "o1"), purchase("q", "o1"),
                  purchase("p", "o2"), purchase("q", "o2"),
                  purchase("p", "o3"), purchase("r", "o3"),
                  purchase("r", "o4")]:
            await interactions.append(i)

        run = await jobs.rebuild_frequently_bought()
        assert run.rows == 2  # p->q and q->p
        [row] = await cache.get_frequently_bought("p", 10)
        assert row.with_id == "q"
        assert row.frequency == 2
        assert row.support == pytest.approx(2 / 4)
        assert row.confidence == pytest.approx(2 / 3)
        assert row.lift == pytest.approx((2 / 3) / (2 / 4))
        assert await cache.get_frequently_bought("r", 10) == []


class TestTrending:
    @pytest.mark.asyncio
    async def test_rebuild_replaces_the_period(self, jobs, interactions, cache):
        cache.trending["daily"]["gone"] = TrendingProduct(
            product_id="gone", period="daily", trend_score=9, last_interaction_at=NOW - timedelta(days=3),
        )
        await interactions.append(Interaction(product_id="p", type=InteractionType.VIEW, created_at=NOW - timedelta(hours=1)))
        await interactions.append(Interaction(product_id="p", type=InteractionType.PURCHASE, weight=5.0,
                                              created_at=NOW - timedelta(hours=2)))
        run = await jobs.rebuild_trending("daily")
        assert run.job == "trending:daily"
        assert run.rows == 1
        [row] = await cache.get_trending("daily", 10)
        assert (row.product_id, row.trend_score, row.view_count, row.sales_count) == ("p", 6.0, 1, 1)
        assert row.last_interaction_at == NOW - timedelta(hours=1)


class TestLocking:
    @pytest.mark.asyncio
    async def test_second_run_is_skipped_while_held(self, jobs, locks):
        held = locks("batch:trending:weekly")
        assert await held.acquire()
        run = await jobs.rebuild_trending("weekly")
        assert run.skipped
        # other periods are independent
        assert not (await jobs.rebuild_trending("daily")).skipped
        await held.release()
        assert not (await jobs.rebuild_trending("weekly")).skipped

    @pytest.mark.asyncio
    async def test_lock_released_on_failure(self, jobs, locks, interactions):
        async def boom(*args, **kwargs):
            raise RuntimeError("store down")

        interactions.query_since = boom
        with pytest.raises(RuntimeError):
            await jobs.rebuild_frequently_bought()
        assert "lock:batch:frequently_bought" not in locks.held


class TestPrune:
    @pytest.mark.asyncio
    async def test_prunes_old_interactions_and_trending_rows(self, jobs, interactions, cache, settings):
        await interactions.append(Interaction(product_id="p", type=InteractionType.VIEW,
                                              created_at=NOW - timedelta(days=settings.interaction_retention_days + 1)))
        await interactions.append(Interaction(product_id="p", type=InteractionType.VIEW, created_at=NOW))
        cache.trending["weekly"]["old"] = TrendingProduct(
            product_id="old", period="weekly", trend_score=1, last_interaction_at=NOW - timedelta(days=60),
            computed_at=NOW - timedelta(days=settings.trending_cleanup_days + 1),
        )
        run = await jobs.prune()
        assert run.rows == 2
        assert len(await interactions.query_since(NOW - timedelta(days=1000))) == 1


@pytest.fixture
def index_jobs(products, interactions, cache, locks, settings, suggestions, categories, taxonomy, analytics):
    return BatchJobs(products, interactions, cache, locks, settings, clock=fixed_clock,
                     suggestions=suggestions, categories=categories, taxonomy=taxonomy, analytics=analytics)


@pytest.fixture
async def small_catalog(products):
    await products.upsert(make_product("s1", "Sony WH-1000", brand_id="sony", category_id="headphones", sku="WH1"))
    await products.upsert(make_product("x1", "Old Radio", status=ProductStatus.ARCHIVED))


class TestAutocompleteIndex:
    @pytest.mark.asyncio
    async def test_rebuild_indexes_catalog_and_popular_queries(self, index_jobs, suggestions, analytics,
                                                               small_catalog):
        await analytics.record_search("Sony Headphones", 3)
        await analytics.record_search("sony headphones", 2)

        run = await index_jobs.rebuild_autocomplete_index()

        # 1 active product, 4 active categories, 3 brands, 1 query
        assert run.rows == 9
        product = await suggestions.get("product:s1")
        assert (product.type, product.value, product.priority) == ("product", "Sony WH-1000", 50)
        assert product.metadata == {"sku": "WH1", "category": "headphones", "brand": "sony"}
        assert await suggestions.get("product:x1") is None
        assert await suggestions.get("category:legacy") is None
        assert (await suggestions.get("category:wireless")).priority == 70
        assert (await suggestions.get("brand:bose")).metadata["brand"] == "bose"
        query = await suggestions.get("query:sony headphones")
        assert (query.priority, query.search_count) == (80, 2)

    @pytest.mark.asyncio
    async def test_rebuild_keeps_counters(self, index_jobs, suggestions, analytics, small_catalog):
        await suggestions.upsert(AutocompleteEntry(entry_id="product:s1", type="product", value="Sony (old name)",
                                                   search_count=7, click_count=3, score=4.2))
        await suggestions.upsert(AutocompleteEntry(entry_id="query:sony headphones", type="query",
                                                   value="sony headphones", search_count=40))
        await analytics.record_search("sony headphones", 1)

        await index_jobs.rebuild_autocomplete_index()

        product = await suggestions.get("product:s1")
        assert product.value == "Sony WH-1000"
        assert (product.search_count, product.click_count, product.score) == (7, 3, 4.2)
        assert (await suggestions.get("query:sony headphones")).search_count == 40

    @pytest.mark.asyncio
    async def test_rebuild_deactivates_entries_missing_from_the_catalog(self, index_jobs, suggestions,
                                                                       small_catalog):
        await suggestions.upsert(AutocompleteEntry(entry_id="product:gone", type="product", value="Gone"))
        await suggestions.upsert(AutocompleteEntry(entry_id="query:u1:radio", type="query", value="radio",
                                                   user_id="u1"))

        await index_jobs.rebuild_autocomplete_index()

        assert not (await suggestions.get("product:gone")).is_active
        assert (await suggestions.get("query:u1:radio")).is_active

    @pytest.mark.asyncio
    async def test_rebuild_needs_catalog_stores(self, jobs):
        with pytest.raises(RuntimeError):
            await jobs.rebuild_autocomplete_index()

    @pytest.mark.asyncio
    async def test_cleanup_deletes_unused_stale_entries(self, index_jobs, suggestions, settings):
        stale = NOW - timedelta(days=settings.autocomplete_cleanup_days + 1)
        for entry in [
            AutocompleteEntry(entry_id="q-unused", type="query", value="a", updated_at=stale),
            AutocompleteEntry(entry_id="q-used", type="query", value="b", search_count=1, updated_at=stale),
            AutocompleteEntry(entry_id="q-recent", type="query", value="c", updated_at=NOW),
            AutocompleteEntry(entry_id="p-inactive", type="product", value="d", is_active=False, updated_at=stale),
            AutocompleteEntry(entry_id="p-active", type="product", value="e", updated_at=stale),
        ]:
            await suggestions.upsert(entry)

        run = await index_jobs.prune_autocomplete()

        assert run.rows == 2
        assert await suggestions.get("q-unused") is None
        assert await suggestions.get("p-inactive") is None
        for kept in ("q-used", "q-recent", "p-active"):
            assert await suggestions.get(kept) is not None
