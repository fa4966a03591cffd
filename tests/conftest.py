"""
Pytest configuration and fixtures for the catalog engine tests.

Every engine is wired over the in-memory stores with a fixed clock, so the
tests exercise the same service code the API runs against Mongo.
"""
from datetime import datetime, timedelta, timezone

import pytest

from catalog_engine.core.config import Settings
from catalog_engine.domain.models.product import Brand, Category, Product
from catalog_engine.domain.repositories.memory import (MemoryAnalyticsRecorder, MemoryCategoryStore,
                                                       MemoryInteractionLog, MemoryPreferenceStore,
                                                       MemoryProductStore, MemoryRecommendationCache,
                                                       MemorySuggestionStore, MemorySynonymStore,
                                                       MemoryTaxonomyStore)
from catalog_engine.domain.services.category_hierarchy_svc import CategoryHierarchyResolver
from catalog_engine.domain.services.facet_svc import FacetComputer
from catalog_engine.domain.services.search_svc import SearchQueryEngine

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
OLD = NOW - timedelta(days=60)


def fixed_clock() -> datetime:
    return NOW


def make_product(product_id: str, name: str, **kw) -> Product:
    """Active, in-stock, cheap product created well outside the 'new' window."""
    fields = dict(price=10.0, stock=20, created_at=OLD)
    fields.update(kw)
    return Product(product_id=product_id, name=name, **fields)


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def categories():
    """Electronics → Headphones → Wireless, an inactive Electronics child and a second root."""
    return MemoryCategoryStore([
        Category(category_id="electronics", name="Electronics"),
        Category(category_id="headphones", name="Headphones", parent_id="electronics"),
        Category(category_id="wireless", name="Wireless", parent_id="headphones"),
        Category(category_id="legacy", name="Legacy Audio", parent_id="electronics", is_active=False),
        Category(category_id="home", name="Home"),
    ])


@pytest.fixture
def resolver(categories):
    return CategoryHierarchyResolver(categories)


@pytest.fixture
def taxonomy():
    return MemoryTaxonomyStore(brands=[
        Brand(brand_id="sony", name="Sony"),
        Brand(brand_id="bose", name="Bose"),
        Brand(brand_id="apple", name="Apple"),
    ])


@pytest.fixture
def products():
    return MemoryProductStore()


@pytest.fixture
def interactions():
    return MemoryInteractionLog()


@pytest.fixture
def cache():
    return MemoryRecommendationCache()


@pytest.fixture
def synonyms():
    return MemorySynonymStore()


@pytest.fixture
def suggestions():
    return MemorySuggestionStore()


@pytest.fixture
def preferences():
    return MemoryPreferenceStore()


@pytest.fixture
def analytics():
    return MemoryAnalyticsRecorder()


@pytest.fixture
def search_engine(products, resolver, synonyms, taxonomy, analytics, settings):
    facets = FacetComputer(resolver, taxonomy, settings)
    return SearchQueryEngine(products, resolver, synonyms, facets, analytics, settings, clock=fixed_clock)
