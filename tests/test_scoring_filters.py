"""
Tests for the relevance signal table, in-process ordering and the filter
helpers (validation, dimension lifting, predicate evaluation, $match).
"""
from datetime import timedelta

import pytest

from catalog_engine.core.errors import InvalidFilter
from catalog_engine.domain.models.product import AttributeValue, ProductStatus, StockState
from catalog_engine.domain.models.search import FacetDimension, ProductQuery, SearchFilters, SortSpec, TextQuery
from catalog_engine.domain.services.filters import (describe, in_price_bucket, is_active, lift, matches_filters,
                                                    matches_query, to_mql, validate_filters)
from catalog_engine.domain.services.scoring import (RELEVANCE_WEIGHTS, Signal, relevance_score, relevance_signals,
                                                    sort_products)
from catalog_engine.domain.services.text_match import expand_synonyms, fuzzy_similarity, matches_text
from catalog_engine.domain.models.autocomplete import SynonymGroup

from tests.conftest import NOW, make_product


class TestRelevance:
    def test_exact_name_outranks_fuzzy_only(self):
        exact = make_product("p1", "Wireless Headphone Pro")
        fuzzy = make_product("p2", "Wireles Headphon Pro")
        q = "wireless headphone"
        assert relevance_score(relevance_signals(exact, q, NOW)) > relevance_score(relevance_signals(fuzzy, q, NOW))

    @pytest.mark.parametrize("signal", list(Signal))
    def test_score_monotonic_in_each_weight(self, signal):
        p = make_product("p1", "Wireless Headphone", sku="WH-1", featured=True, created_at=NOW)
        signals = relevance_signals(p, "wireless headphone", NOW)
        bumped = dict(RELEVANCE_WEIGHTS)
        bumped[signal] += 1.0
        assert relevance_score(signals, bumped) >= relevance_score(signals)

    def test_recent_signal_uses_window(self):
        p = make_product("p1", "Lamp", created_at=NOW - timedelta(days=10))
        assert relevance_signals(p, "lamp", NOW, recent_days=30)[Signal.RECENT] == 1.0
        assert relevance_signals(p, "lamp", NOW, recent_days=5)[Signal.RECENT] == 0.0


class TestSortProducts:
    def test_ties_are_deterministic(self):
        a = make_product("b", "Same", price=5)
        b = make_product("a", "Same", price=5)
        out = sort_products([a, b], SortSpec(sort_by="price", order="asc"), None, NOW)
        assert [p.product_id for p in out] == ["a", "b"]

    def test_relevance_without_text_prefers_featured_then_stock(self):
        plain = make_product("p1", "Plain", stock=100)
        featured = make_product("p2", "Featured", featured=True, stock=1)
        out = sort_products([plain, featured], SortSpec(sort_by="relevance"), None, NOW)
        assert [p.product_id for p in out] == ["p2", "p1"]

    def test_rating_then_review_count(self):
        a = make_product("a", "A", rating_average=4.5, review_count=3)
        b = make_product("b", "B", rating_average=4.5, review_count=10)
        c = make_product("c", "C", rating_average=3.0, review_count=99)
        out = sort_products([a, b, c], SortSpec(sort_by="rating"), None, NOW)
        assert [p.product_id for p in out] == ["b", "a", "c"]


class TestTextMatch:
    def test_fuzzy_window_tolerates_typos(self):
        assert fuzzy_similarity("headphnes", "Sony Headphones WH-1000") >= 0.6

    def test_synonym_path(self):
        p = make_product("p1", "Noise cancelling earbuds")
        text = TextQuery(raw="headphone", synonyms=["earbuds"])
        assert matches_text(p, text, 0.9)

    def test_expand_synonyms_by_member_and_term(self):
        groups = [SynonymGroup(term="laptop", synonyms=["notebook", "ultrabook"])]
        assert expand_synonyms("notebook", groups) == ["laptop", "ultrabook"]
        assert expand_synonyms("lap", groups) == ["laptop", "notebook", "ultrabook"]
        assert expand_synonyms("phone", groups) == []


class TestValidateFilters:
    @pytest.mark.parametrize("kwargs", [
        {"price_min": -1},
        {"price_min": 100, "price_max": 10},
        {"created_after": NOW, "created_before": NOW - timedelta(days=1)},
        {"min_rating": 6},
        {"attribute_terms": {"color": []}},
        {"brand_ids": [""]},
        {"in_stock": True, "stock_states": [StockState.OUT_OF_STOCK]},
    ])
    def test_contradictions_rejected(self, kwargs):
        with pytest.raises(InvalidFilter):
            validate_filters(SearchFilters(**kwargs))

    def test_valid_state_passes(self):
        validate_filters(SearchFilters(price_min=10, price_max=10, brand_ids=["sony"], min_rating=0))


class TestLift:
    def test_lift_resets_only_its_dimension(self):
        f = SearchFilters(brand_ids=["sony"], tags=["sale"], price_min=5, price_max=50)
        lifted = lift(f, FacetDimension.BRAND)
        assert lifted.brand_ids == []
        assert lifted.tags == ["sale"]
        assert (lifted.price_min, lifted.price_max) == (5, 50)

    def test_lift_price_resets_both_bounds(self):
        lifted = lift(SearchFilters(price_min=5, price_max=50), FacetDimension.PRICE)
        assert (lifted.price_min, lifted.price_max) == (None, None)

    def test_is_active(self):
        f = SearchFilters(statuses=[ProductStatus.ACTIVE])
        assert is_active(f, FacetDimension.STATUS)
        assert not is_active(f, FacetDimension.TAG)


class TestPredicates:
    def test_attribute_terms_any_within_all_across(self):
        p = make_product("p1", "Shirt", attribute_values=[
            AttributeValue(attribute_id="color", term_id="red"),
            AttributeValue(attribute_id="size", term_id="m"),
        ])
        assert matches_filters(p, SearchFilters(attribute_terms={"color": ["red", "blue"], "size": ["m"]}), NOW)
        assert not matches_filters(p, SearchFilters(attribute_terms={"color": ["red"], "size": ["l"]}), NOW)

    def test_on_sale_window(self):
        p = make_product("p1", "Lamp", sale_price=5, sale_ends_at=NOW - timedelta(days=1))
        assert not matches_filters(p, SearchFilters(on_sale=True), NOW)
        assert matches_filters(p, SearchFilters(on_sale=True), NOW - timedelta(days=2))

    def test_price_bucket_is_half_open(self):
        assert in_price_bucket(50.0, (50.0, 100.0))
        assert not in_price_bucket(100.0, (50.0, 100.0))
        assert in_price_bucket(5000.0, (1000.0, None))

    def test_exclude_ids(self):
        q = ProductQuery(filters=SearchFilters(), now=NOW, exclude_ids=["p1"])
        assert not matches_query(make_product("p1", "Lamp"), q)
        assert matches_query(make_product("p2", "Lamp"), q)


class TestMongoTranslation:
    def test_empty_filters_match_everything(self):
        assert to_mql(ProductQuery(filters=SearchFilters(), now=NOW)) == {}

    def test_single_clause_is_not_wrapped(self):
        q = ProductQuery(filters=SearchFilters(brand_ids=["sony"]), now=NOW)
        assert to_mql(q) == {"brand_id": {"$in": ["sony"]}}

    def test_attribute_terms_use_elem_match(self):
        q = ProductQuery(filters=SearchFilters(attribute_terms={"color": ["red"]}, in_stock=True), now=NOW)
        assert to_mql(q) == {"$and": [
            {"attribute_values": {"$elemMatch": {"attribute_id": "color", "term_id": {"$in": ["red"]}}}},
            {"stock": {"$gt": 0}},
        ]}

    def test_describe_keeps_non_defaults(self):
        assert describe(SearchFilters(tags=["sale"])) == {"tags": ["sale"]}
