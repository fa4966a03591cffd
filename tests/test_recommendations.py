"""
Tests for RecommendationEngine: cache-then-live strategies, staleness of
trending rows, affinities and deterministic ordering.
"""
from datetime import timedelta

import pytest

from catalog_engine.core.errors import NotFound
from catalog_engine.domain.models.product import ProductStatus
from catalog_engine.domain.models.reco import (FrequentlyBoughtTogether, Interaction, InteractionType,
                                               ProductSimilarity, TrendingProduct)
from catalog_engine.domain.services.interaction_svc import add_tag, record_interaction
from catalog_engine.domain.services.recommendation_svc import RecommendationEngine, interaction_weight

from tests.conftest import NOW, OLD, fixed_clock, make_product


@pytest.fixture
def engine(products, interactions, cache, settings):
    return RecommendationEngine(products, interactions, cache, settings, clock=fixed_clock)


@pytest.fixture
async def catalog(products):
    for p in [
        make_product("subject", "Sony WH-1000", category_id="headphones", brand_id="sony", tags=["anc"]),
        make_product("cat-brand", "Sony Buds", category_id="headphones", brand_id="sony"),
        make_product("cat-only", "Bose QC", category_id="headphones", brand_id="bose"),
        make_product("brand-only", "Sony TV", category_id="tv", brand_id="sony"),
        make_product("unrelated", "Chair", category_id="home", brand_id="ikea"),
        make_product("hidden", "Sony Archive", category_id="headphones", brand_id="sony",
                     status=ProductStatus.ARCHIVED),
    ]:
        await products.upsert(p)


def purchase(product_id, order_id, user_id="u1", at=NOW - timedelta(days=3)):
    return Interaction(product_id=product_id, type=InteractionType.PURCHASE, weight=5.0,
                       order_id=order_id, user_id=user_id, created_at=at)


def view(product_id, user_id="u1", at=NOW - timedelta(hours=1)):
    return Interaction(product_id=product_id, type=InteractionType.VIEW, weight=1.0, user_id=user_id, created_at=at)


class TestRelated:
    @pytest.mark.asyncio
    async def test_scores_category_and_brand(self, engine, catalog):
        res = await engine.related("subject")
        assert [(i.product_id, i.score) for i in res.items] == [
            ("cat-brand", 3.0), ("cat-only", 2.0), ("brand-only", 1.0),
        ]
        assert res.source == "live"
        assert res.source_product_id == "subject"

    @pytest.mark.asyncio
    async def test_unknown_subject(self, engine, catalog):
        with pytest.raises(NotFound):
            await engine.related("ghost")

    @pytest.mark.asyncio
    async def test_ties_are_deterministic(self, engine, products):
        await products.upsert(make_product("s", "S", category_id="c"))
        await products.upsert(make_product("b", "B", category_id="c"))
        await products.upsert(make_product("a", "A", category_id="c"))
        await products.upsert(make_product("n", "N", category_id="c", created_at=OLD + timedelta(days=1)))
        first = await engine.related("s")
        second = await engine.related("s")
        assert [i.product_id for i in first.items] == ["n", "a", "b"]
        assert first == second


class TestSimilar:
    @pytest.mark.asyncio
    async def test_cache_hit_skips_inactive_rows(self, engine, cache, catalog):
        await cache.replace_similar("subject", [
            ProductSimilarity(product_id="subject", similar_id="hidden", score=0.9),
            ProductSimilarity(product_id="subject", similar_id="cat-only", score=0.7),
        ])
        res = await engine.similar("subject")
        assert res.source == "cache"
        assert [i.product_id for i in res.items] == ["cat-only"]

    @pytest.mark.asyncio
    async def test_miss_falls_back_to_related(self, engine, catalog):
        res = await engine.similar("subject", limit=1)
        assert res.source == "live"
        assert [i.product_id for i in res.items] == ["cat-brand"]


class TestFrequentlyBought:
    @pytest.mark.asyncio
    async def test_live_fallback_requires_two_shared_orders(self, engine, interactions, products):
        for pid in ("p", "q", "r"):
            await products.upsert(make_product(pid, pid.upper()))
        for i in [purchase("p", "o1"), purchase("q", "o1"), purchase("r", "o1"),
                  purchase("p", "o2"), purchase("q", "o2")]:
            await interactions.append(i)

        res = await engine.frequently_bought("p")
        assert res.source == "live"
        assert [(i.product_id, i.score) for i in res.items] == [("q", 2.0)]

    @pytest.mark.asyncio
    async def test_cache_rows_win(self, engine, cache, products):
        for pid in ("p", "q"):
            await products.upsert(make_product(pid, pid.upper()))
        await cache.replace_frequently_bought("p", [FrequentlyBoughtTogether(product_id="p", with_id="q", frequency=7)])
        res = await engine.frequently_bought("p")
        assert res.source == "cache"
        assert res.items[0].score == 7.0


class TestTrending:
    @pytest.mark.asyncio
    async def test_stale_daily_row_is_not_returned(self, engine, cache, interactions, products):
        await products.upsert(make_product("yesterday", "Yesterday's Hit"))
        await products.upsert(make_product("today", "Today's Hit"))
        await cache.replace_trending("daily", [TrendingProduct(
            product_id="yesterday", period="daily", trend_score=50.0,
            last_interaction_at=NOW - timedelta(days=2), computed_at=NOW - timedelta(days=1),
        )])
        await interactions.append(view("today"))

        res = await engine.trending("daily")
        assert [i.product_id for i in res.items] == ["today"]
        assert res.source == "live"

    @pytest.mark.asyncio
    async def test_fresh_cache_rows(self, engine, cache, products):
        await products.upsert(make_product("hot", "Hot"))
        await cache.replace_trending("weekly", [TrendingProduct(
            product_id="hot", period="weekly", trend_score=3.0, last_interaction_at=NOW - timedelta(days=1),
        )])
        res = await engine.trending("weekly")
        assert res.source == "cache"
        assert [i.product_id for i in res.items] == ["hot"]

    @pytest.mark.asyncio
    async def test_negative_net_weight_excluded(self, engine, interactions, products):
        await products.upsert(make_product("p", "P"))
        await interactions.append(Interaction(product_id="p", type=InteractionType.REMOVE_FROM_CART, weight=-1.0,
                                              created_at=NOW - timedelta(hours=2)))
        res = await engine.trending("daily")
        assert res.items == []


class TestPersonalized:
    @pytest.mark.asyncio
    async def test_affinity_candidates_exclude_seen(self, engine, interactions, catalog):
        await interactions.append(view("subject"))
        await interactions.append(purchase("cat-brand", "o1"))
        res = await engine.personalized("u1")
        ids = [i.product_id for i in res.items]
        assert "subject" not in ids and "cat-brand" not in ids
        assert "hidden" not in ids
        # equal affinity scores: product_id breaks the tie
        assert ids == ["brand-only", "cat-only"]

    @pytest.mark.asyncio
    async def test_affinities(self, engine, interactions, catalog):
        await interactions.append(view("subject"))
        await interactions.append(purchase("cat-only", "o1"))
        cats = await engine.category_affinities("u1")
        brands = await engine.brand_affinities("u1")
        assert [(a.id, a.score) for a in cats] == [("headphones", 6.0)]
        assert [(a.id, a.score) for a in brands] == [("bose", 5.0), ("sony", 1.0)]

    @pytest.mark.asyncio
    async def test_no_history(self, engine, catalog):
        res = await engine.personalized("stranger")
        assert res.count == 0


class TestActivityLists:
    @pytest.mark.asyncio
    async def test_recently_viewed_distinct_most_recent_first(self, engine, interactions, catalog):
        await interactions.append(view("cat-only", at=NOW - timedelta(hours=5)))
        await interactions.append(view("subject", at=NOW - timedelta(hours=3)))
        await interactions.append(view("cat-only", at=NOW - timedelta(hours=1)))
        res = await engine.recently_viewed("u1")
        assert [i.product_id for i in res.items] == ["cat-only", "subject"]

    @pytest.mark.asyncio
    async def test_top_products_with_brand_filter(self, engine, interactions, catalog):
        for i in [purchase("cat-brand", "o1"), purchase("cat-brand", "o2"), purchase("cat-only", "o3")]:
            await interactions.append(i)
        res = await engine.top_products(InteractionType.PURCHASE, days=30)
        assert [(i.product_id, i.score) for i in res.items] == [("cat-brand", 2.0), ("cat-only", 1.0)]
        res = await engine.top_products(brand_ids=["bose"])
        assert [i.product_id for i in res.items] == ["cat-only"]


class TestInteractionService:
    @pytest.mark.asyncio
    async def test_weight_follows_type(self, products, interactions, catalog):
        i = await record_interaction(products, interactions, product_id="subject", type=InteractionType.CART,
                                     user_id="u1")
        assert i.weight == interaction_weight(InteractionType.CART)
        assert await interactions.query_by_user("u1") == [i]

    @pytest.mark.asyncio
    async def test_unknown_product(self, products, interactions):
        with pytest.raises(NotFound):
            await record_interaction(products, interactions, product_id="ghost", type=InteractionType.VIEW)

    @pytest.mark.asyncio
    async def test_add_tag_is_idempotent(self, products, catalog):
        from catalog_engine.core.errors import DuplicateAssociation
        assert await add_tag(products, "subject", "sale")
        assert not await add_tag(products, "subject", "sale")
        with pytest.raises(DuplicateAssociation):
            await add_tag(products, "subject", "sale", strict=True)
        assert (await products.get("subject")).tags == ["anc", "sale"]
