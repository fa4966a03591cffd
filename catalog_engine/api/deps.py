# catalog_engine/api/deps.py
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from motor.motor_asyncio import AsyncIOMotorDatabase
from redis.asyncio import Redis

from catalog_engine.core.config import Settings
from catalog_engine.domain.repositories import memory
from catalog_engine.domain.repositories.analytics_repo import AnalyticsRepo
from catalog_engine.domain.repositories.category_repo import CategoryRepo, TaxonomyRepo
from catalog_engine.domain.repositories.interaction_repo import InteractionRepo
from catalog_engine.domain.repositories.product_repo import ProductRepo
from catalog_engine.domain.repositories.reco_cache_repo import RecoCacheRepo
from catalog_engine.domain.repositories.suggestion_repo import (FilterSetRepo, PreferenceRepo, SuggestionRepo,
                                                                  SynonymRepo)
from catalog_engine.domain.services.autocomplete_svc import AutocompleteService
from catalog_engine.domain.services.batch_svc import BatchJobs
from catalog_engine.domain.services.category_hierarchy_svc import CategoryHierarchyResolver
from catalog_engine.domain.services.facet_svc import FacetComputer
from catalog_engine.domain.services.recommendation_svc import RecommendationEngine
from catalog_engine.domain.services.search_svc import SearchQueryEngine
from catalog_engine.utils.locks import lock_factory


@dataclass
class Engines:
    """Long-lived engines shared by every request (the category snapshot lives here)."""
    products: object
    interactions: object
    resolver: CategoryHierarchyResolver
    search: SearchQueryEngine
    autocomplete: AutocompleteService
    recommendations: RecommendationEngine
    batch: BatchJobs
    filter_sets: object


def _assemble(settings: Settings, *, products, categories, taxonomy, interactions, cache,
              suggestions, synonyms, preferences, analytics, filter_sets, locks) -> Engines:
    resolver = CategoryHierarchyResolver(categories, ttl=settings.category_cache_ttl)
    facets = FacetComputer(resolver, taxonomy, settings)
    return Engines(
        products=products,
        interactions=interactions,
        resolver=resolver,
        search=SearchQueryEngine(products, resolver, synonyms, facets, analytics, settings),
        autocomplete=AutocompleteService(suggestions, synonyms, preferences, settings),
        recommendations=RecommendationEngine(products, interactions, cache, settings),
        batch=BatchJobs(products, interactions, cache, locks, settings, suggestions=suggestions,
                        categories=categories, taxonomy=taxonomy, analytics=analytics),
        filter_sets=filter_sets,
    )


def build_mongo_engines(db: AsyncIOMotorDatabase, redis: Optional[Redis], settings: Settings) -> Engines:
    return _assemble(
        settings,
        products=ProductRepo(
            db,
            snapshot_reads=settings.MONGO_SNAPSHOT_READS,
            atlas_search=settings.MONGO_ATLAS_SEARCH,
            search_index=settings.MONGO_SEARCH_INDEX,
            candidate_limit=settings.search_candidate_limit,
            max_time_ms=int(settings.search_timeout_s * 1000),
        ),
        categories=CategoryRepo(db),
        taxonomy=TaxonomyRepo(db),
        interactions=InteractionRepo(db),
        cache=RecoCacheRepo(db),
        suggestions=SuggestionRepo(db),
        synonyms=SynonymRepo(db),
        preferences=PreferenceRepo(db),
        analytics=AnalyticsRepo(db),
        filter_sets=FilterSetRepo(db),
        locks=lock_factory(redis, ttl=settings.batch_lock_ttl),
    )


def build_memory_engines(settings: Settings, **stores) -> Engines:
    """Engines over in-memory stores; any store can be passed in pre-filled."""
    return _assemble(
        settings,
        products=stores.get("products") or memory.MemoryProductStore(),
        categories=stores.get("categories") or memory.MemoryCategoryStore(),
        taxonomy=stores.get("taxonomy") or memory.MemoryTaxonomyStore(),
        interactions=stores.get("interactions") or memory.MemoryInteractionLog(),
        cache=stores.get("cache") or memory.MemoryRecommendationCache(),
        suggestions=stores.get("suggestions") or memory.MemorySuggestionStore(),
        synonyms=stores.get("synonyms") or memory.MemorySynonymStore(),
        preferences=stores.get("preferences") or memory.MemoryPreferenceStore(),
        analytics=stores.get("analytics") or memory.MemoryAnalyticsRecorder(),
        filter_sets=stores.get("filter_sets") or memory.MemoryFilterSetStore(),
        locks=lock_factory(None),
    )


# Dependency giving endpoints the engines built at startup
def get_engines(request: Request) -> Engines:
    return request.app.state.engines


def search_engine(engines: Engines = Depends(get_engines)) -> SearchQueryEngine:
    return engines.search


def autocomplete_service(engines: Engines = Depends(get_engines)) -> AutocompleteService:
    return engines.autocomplete


def recommendation_engine(engines: Engines = Depends(get_engines)) -> RecommendationEngine:
    return engines.recommendations


def category_resolver(engines: Engines = Depends(get_engines)) -> CategoryHierarchyResolver:
    return engines.resolver


def batch_jobs(engines: Engines = Depends(get_engines)) -> BatchJobs:
    return engines.batch


def filter_set_store(engines: Engines = Depends(get_engines)):
    return engines.filter_sets


async def ensure_indexes(engines: Engines) -> None:
    """Create the Mongo indexes of every store that declares some."""
    stores = (engines.products, engines.interactions, engines.recommendations.cache,
              engines.autocomplete.suggestions, engines.filter_sets)
    for store in stores:
        if hasattr(store, "ensure_indexes"):
            await store.ensure_indexes()
