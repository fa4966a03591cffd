# catalog_engine/domain/services/batch_svc.py
"""
Batch jobs that maintain the recommendation cache tables and the autocomplete
index. Every job runs under a lock named after the job (and the period for
trending), so a second run of the same job is skipped while different periods
proceed in parallel. Writes go through upserts and are idempotent.
"""
import logging
import time
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from itertools import combinations
from typing import Awaitable, Callable, Dict, List, Optional, Set

from pydantic import BaseModel

from catalog_engine.core.config import Settings, get_settings
from catalog_engine.domain.models.autocomplete import AutocompleteEntry
from catalog_engine.domain.models.product import Product, utcnow
from catalog_engine.domain.models.reco import (FrequentlyBoughtTogether, InteractionType, ProductSimilarity,
                                               TrendingPeriod, TrendingProduct)
from catalog_engine.domain.repositories.base import (AnalyticsRecorder, CategoryStore, InteractionLogStore,
                                                     ProductStore, RecommendationCacheStore, SuggestionStore,
                                                     TaxonomyStore)
from catalog_engine.domain.services.constants import (AUTOCOMPLETE_PRIORITY_BRAND, AUTOCOMPLETE_PRIORITY_CATEGORY,
                                                      AUTOCOMPLETE_PRIORITY_PRODUCT, AUTOCOMPLETE_PRIORITY_QUERY,
                                                      SIMILARITY_BRAND_WEIGHT, SIMILARITY_CATEGORY_WEIGHT,
                                                      SIMILARITY_FEATURES_WEIGHT, TRENDING_WINDOWS)
from catalog_engine.utils.locks import JobLock, LocalLocks

logger = logging.getLogger(__name__)


class JobRun(BaseModel):
    job: str
    skipped: bool = False
    rows: int = 0
    duration_ms: int = 0


def _features(p: Product) -> Set[str]:
    return {f"tag:{t}" for t in p.tags} | {f"attr:{a.attribute_id}:{a.term_id}" for a in p.attribute_values}


def jaccard(a: Set[str], b: Set[str]) -> float:
    if not a and not b:
        return 0.0
    return len(a & b) / len(a | b)


def content_similarity(a: Product, b: Product) -> float:
    score = 0.0
    if a.category_id and a.category_id == b.category_id:
        score += SIMILARITY_CATEGORY_WEIGHT
    if a.brand_id and a.brand_id == b.brand_id:
        score += SIMILARITY_BRAND_WEIGHT
    return score + SIMILARITY_FEATURES_WEIGHT * jaccard(_features(a), _features(b))


class BatchJobs:
    def __init__(
        self,
        products: ProductStore,
        interactions: InteractionLogStore,
        cache: RecommendationCacheStore,
        locks: Optional[Callable[[str], JobLock]] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
        suggestions: Optional[SuggestionStore] = None,
        categories: Optional[CategoryStore] = None,
        taxonomy: Optional[TaxonomyStore] = None,
        analytics: Optional[AnalyticsRecorder] = None,
    ):
        self.products = products
        self.interactions = interactions
        self.cache = cache
        self.suggestions = suggestions
        self.categories = categories
        self.taxonomy = taxonomy
        self.analytics = analytics
        self.locks = locks or LocalLocks()
        self.settings = settings or get_settings()
        self.clock = clock

    async def _run(self, name: str, fn: Callable[[], Awaitable[int]]) -> JobRun:
        lock = self.locks(f"batch:{name}")
        if not await lock.acquire():
            logger.warning("batch %s skipped (lock held)", name)
            return JobRun(job=name, skipped=True)
        t0 = time.perf_counter()
        logger.info("batch %s start", name)
        try:
            rows = await fn()
        finally:
            await lock.release()
        dt = time.perf_counter() - t0
        logger.info("batch %s done rows=%s time=%.3fs", name, rows, dt)
        return JobRun(job=name, rows=rows, duration_ms=int(dt * 1000))

    async def _active_products(self) -> List[Product]:
        return [p async for p in self.products.iter_active()]

    # ----- similarities ------------------------------------------------------------

    async def rebuild_similarities(self, product_id: Optional[str] = None) -> JobRun:
        name = f"similarities:{product_id}" if product_id else "similarities"

        async def job() -> int:
            catalog = await self._active_products()
            subjects = [p for p in catalog if product_id is None or p.product_id == product_id]
            now = self.clock()
            written = 0
            for subject in subjects:
                scored = [
                    (other.product_id, content_similarity(subject, other))
                    for other in catalog if other.product_id != subject.product_id
                ]
                top = sorted((s for s in scored if s[1] > 0), key=lambda x: (-x[1], x[0]))
                rows = [
                    ProductSimilarity(product_id=subject.product_id, similar_id=pid, score=round(score, 6),
                                      algorithm="category_brand_jaccard", computed_at=now)
                    for pid, score in top[:self.settings.similarity_top_k]
                ]
                await self.cache.replace_similar(subject.product_id, rows)
                written += len(rows)
            return written

        return await self._run(name, job)

    # ----- frequently bought together ---------------------------------------------------

    async def rebuild_frequently_bought(self) -> JobRun:
        async def job() -> int:
            now = self.clock()
            since = now - timedelta(days=self.settings.interaction_retention_days)
            baskets: Dict[str, Set[str]] = defaultdict(set)
            for i in await self.interactions.query_since(since, InteractionType.PURCHASE):
                if i.order_id:
                    baskets[i.order_id].add(i.product_id)

            n_orders = len(baskets)
            orders_with: Counter = Counter()
            pairs: Dict[str, Counter] = defaultdict(Counter)
            for items in baskets.values():
                orders_with.update(items)
                for a, b in combinations(sorted(items), 2):
                    pairs[a][b] += 1
                    pairs[b][a] += 1

            min_co = self.settings.fbt_min_cooccurrence
            written = 0
            for subject in await self._active_products():
                pid = subject.product_id
                rows = []
                for other, freq in sorted(pairs.get(pid, {}).items(), key=lambda kv: (-kv[1], kv[0])):
                    if freq < min_co:
                        continue
                    confidence = freq / orders_with[pid]
                    rows.append(FrequentlyBoughtTogether(
                        product_id=pid,
                        with_id=other,
                        frequency=freq,
                        support=freq / n_orders,
                        confidence=confidence,
                        lift=confidence / (orders_with[other] / n_orders),
                        computed_at=now,
                    ))
                await self.cache.replace_frequently_bought(pid, rows)
                written += len(rows)
            return written

        return await self._run("frequently_bought", job)

    # ----- trending ----------------------------------------------------------------------

    async def rebuild_trending(self, period: TrendingPeriod) -> JobRun:
        async def job() -> int:
            now = self.clock()
            since = now - TRENDING_WINDOWS[period]
            score: Dict[str, float] = defaultdict(float)
            counts: Dict[str, Counter] = defaultdict(Counter)
            last: Dict[str, datetime] = {}
            for i in await self.interactions.query_since(since):
                score[i.product_id] += i.weight
                counts[i.product_id][i.type] += 1
                if i.product_id not in last or i.created_at > last[i.product_id]:
                    last[i.product_id] = i.created_at
            rows = [
                TrendingProduct(
                    product_id=pid,
                    period=period,
                    trend_score=round(s, 6),
                    view_count=counts[pid][InteractionType.VIEW],
                    sales_count=counts[pid][InteractionType.PURCHASE],
                    search_count=counts[pid][InteractionType.SEARCH],
                    last_interaction_at=last[pid],
                    computed_at=now,
                )
                for pid, s in score.items() if s > 0
            ]
            await self.cache.replace_trending(period, rows)
            return len(rows)

        return await self._run(f"trending:{period}", job)

    # ----- retention ---------------------------------------------------------------------

    async def prune(self) -> JobRun:
        async def job() -> int:
            now = self.clock()
            removed = await self.interactions.prune(now - timedelta(days=self.settings.interaction_retention_days))
            removed += await self.cache.prune_trending(now - timedelta(days=self.settings.trending_cleanup_days))
            return removed

        return await self._run("prune", job)

    # ----- autocomplete index ------------------------------------------------------------

    def _entry(self, entry_id: str, type: str, value: str, priority: int, now: datetime, **kw) -> AutocompleteEntry:
        return AutocompleteEntry(entry_id=entry_id, type=type, value=value, display_text=value,
                                 priority=priority, created_at=now, updated_at=now, **kw)

    async def rebuild_autocomplete_index(self) -> JobRun:
        """
        Sync product, category and brand entries from the catalog and query
        entries from search analytics. Counters of existing entries are kept;
        catalog entries whose source disappeared are deactivated.
        """
        if self.suggestions is None or self.categories is None or self.taxonomy is None:
            raise RuntimeError("autocomplete index rebuild needs suggestion, category and taxonomy stores")

        async def job() -> int:
            now = self.clock()
            products = [
                self._entry(f"product:{p.product_id}", "product", p.name, AUTOCOMPLETE_PRIORITY_PRODUCT, now,
                            entity_id=p.product_id, tags=list(p.tags),
                            metadata={"sku": p.sku, "category": p.category_id, "brand": p.brand_id})
                for p in await self._active_products()
            ]
            categories = [
                self._entry(f"category:{c.category_id}", "category", c.name, AUTOCOMPLETE_PRIORITY_CATEGORY, now,
                            entity_id=c.category_id, metadata={"category": c.category_id, "slug": c.slug})
                for c in await self.categories.list_all() if c.is_active
            ]
            brands = [
                self._entry(f"brand:{b.brand_id}", "brand", b.name, AUTOCOMPLETE_PRIORITY_BRAND, now,
                            entity_id=b.brand_id, metadata={"brand": b.brand_id, "slug": b.slug})
                for b in await self.taxonomy.list_brands()
            ]
            queries: List[AutocompleteEntry] = []
            if self.analytics is not None:
                popular = await self.analytics.popular_queries(self.settings.autocomplete_query_suggestions)
                queries = [
                    self._entry(f"query:{row['query']}", "query", row["query"], AUTOCOMPLETE_PRIORITY_QUERY, now,
                                search_count=row["search_count"])
                    for row in popular if row["query"]
                ]
            written = 0
            for type, entries in (("product", products), ("category", categories),
                                  ("brand", brands), ("query", queries)):
                n = await self.suggestions.sync_entries(type, entries)
                logger.info("autocomplete index %s entries=%s", type, n)
                written += n
            return written

        return await self._run("autocomplete_index", job)

    async def prune_autocomplete(self) -> JobRun:
        """Delete unused query and inactive entries untouched for autocomplete_cleanup_days."""
        if self.suggestions is None:
            raise RuntimeError("autocomplete cleanup needs a suggestion store")

        async def job() -> int:
            before = self.clock() - timedelta(days=self.settings.autocomplete_cleanup_days)
            return await self.suggestions.delete_stale(before)

        return await self._run("autocomplete_cleanup", job)
