# catalog_engine/domain/services/recommendation_svc.py
"""
Recommendation strategies. Each one reads its precomputed table first and
computes live on a miss; the live result is returned as-is and never written
back (cache tables belong to the batch jobs in batch_svc).

Live rankings are deterministic for a fixed data set: score desc, then
created_at desc, then product_id.
"""
import logging
import time
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from catalog_engine.core.config import Settings, get_settings
from catalog_engine.core.errors import NotFound
from catalog_engine.domain.models.product import Product, ProductStatus, utcnow
from catalog_engine.domain.models.reco import Affinity, InteractionType, RecoItem, RecoResult, TrendingPeriod
from catalog_engine.domain.models.search import Page, ProductQuery, SearchFilters, SortSpec
from catalog_engine.domain.repositories.base import InteractionLogStore, ProductStore, RecommendationCacheStore
from catalog_engine.domain.services.constants import (DEFAULT_INTERACTION_WEIGHT, INTERACTION_WEIGHTS,
                                                      KIND_FREQUENTLY_BOUGHT, KIND_PERSONALIZED, KIND_RECENTLY_VIEWED,
                                                      KIND_RELATED, KIND_SIMILAR, KIND_TOP_PRODUCTS, KIND_TRENDING,
                                                      RELATED_SAME_BRAND, RELATED_SAME_CATEGORY,
                                                      RELATED_SAME_CATEGORY_AND_BRAND, TRENDING_WINDOWS)

logger = logging.getLogger(__name__)

_NEWEST = SortSpec(sort_by="created_at", order="desc")


def interaction_weight(type: InteractionType) -> float:
    return INTERACTION_WEIGHTS.get(type, DEFAULT_INTERACTION_WEIGHT)


def _rank(scored: Iterable[Tuple[Product, float]]) -> List[Tuple[Product, float]]:
    out = sorted(scored, key=lambda ps: ps[0].product_id)
    out.sort(key=lambda ps: ps[0].created_at.timestamp(), reverse=True)
    out.sort(key=lambda ps: ps[1], reverse=True)
    return out


def _result(kind: str, source: str, items: List[RecoItem], subject: Optional[str] = None) -> RecoResult:
    return RecoResult(kind=kind, source=source, source_product_id=subject, items=items, count=len(items))


class RecommendationEngine:
    def __init__(
        self,
        products: ProductStore,
        interactions: InteractionLogStore,
        cache: RecommendationCacheStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.products = products
        self.interactions = interactions
        self.cache = cache
        self.settings = settings or get_settings()
        self.clock = clock

    # ----- helpers -----------------------------------------------------------------

    async def _subject(self, product_id: str) -> Product:
        p = await self.products.get(product_id)
        if p is None:
            raise NotFound("product", product_id)
        return p

    async def _hydrate(self, scored: Sequence[Tuple[str, float]], limit: int,
                       rationale: Optional[str] = None) -> List[RecoItem]:
        """Active products for (id, score) pairs, order preserved."""
        ids = [pid for pid, _ in scored]
        by_id = {p.product_id: p for p in await self.products.get_by_ids(ids)}
        items: List[RecoItem] = []
        for pid, score in scored:
            p = by_id.get(pid)
            if p is None or p.status != ProductStatus.ACTIVE:
                continue
            items.append(RecoItem(product_id=pid, score=max(score, 0.0), rationale=rationale, product=p))
            if len(items) >= limit:
                break
        return items

    async def _active_in(self, *, category_ids: Sequence[str] = (), brand_ids: Sequence[str] = (),
                         exclude: Sequence[str] = ()) -> List[Product]:
        """Active products in any of the categories or any of the brands (newest first, pool-capped)."""
        pool = self.settings.related_candidate_pool
        page = Page(limit=pool, offset=0)
        found: Dict[str, Product] = {}
        async with self.products.snapshot() as reader:
            for field, ids in (("category_ids", category_ids), ("brand_ids", brand_ids)):
                if not ids:
                    continue
                query = ProductQuery(
                    filters=SearchFilters(**{field: list(ids)}, statuses=[ProductStatus.ACTIVE]),
                    now=self.clock(),
                    exclude_ids=list(exclude),
                )
                rows, _ = await reader.find(query, _NEWEST, page)
                for p in rows:
                    found.setdefault(p.product_id, p)
        return list(found.values())

    # ----- related / similar ------------------------------------------------------------

    async def _related_items(self, subject: Product, limit: int) -> List[RecoItem]:
        candidates = await self._active_in(
            category_ids=[subject.category_id] if subject.category_id else [],
            brand_ids=[subject.brand_id] if subject.brand_id else [],
            exclude=[subject.product_id],
        )
        scored = []
        for p in candidates:
            same_cat = subject.category_id is not None and p.category_id == subject.category_id
            same_brand = subject.brand_id is not None and p.brand_id == subject.brand_id
            if same_cat and same_brand:
                scored.append((p, RELATED_SAME_CATEGORY_AND_BRAND))
            elif same_cat:
                scored.append((p, RELATED_SAME_CATEGORY))
            elif same_brand:
                scored.append((p, RELATED_SAME_BRAND))
        return [RecoItem(product_id=p.product_id, score=s, product=p) for p, s in _rank(scored)[:limit]]

    async def related(self, product_id: str, limit: int = 10) -> RecoResult:
        t0 = time.perf_counter()
        subject = await self._subject(product_id)
        items = await self._related_items(subject, limit)
        logger.info("related done product_id=%s items=%s time=%.3fs", product_id, len(items), time.perf_counter() - t0)
        return _result(KIND_RELATED, "live", items, product_id)

    async def similar(self, product_id: str, limit: int = 10) -> RecoResult:
        t0 = time.perf_counter()
        subject = await self._subject(product_id)
        rows = await self.cache.get_similar(product_id, limit * 2)
        if rows:
            items = await self._hydrate([(r.similar_id, r.score) for r in rows], limit)
            if items:
                logger.info("similar cache_hit product_id=%s items=%s time=%.3fs",
                            product_id, len(items), time.perf_counter() - t0)
                return _result(KIND_SIMILAR, "cache", items, product_id)
        logger.info("similar cache_miss product_id=%s -> related", product_id)
        items = await self._related_items(subject, limit)
        return _result(KIND_SIMILAR, "live", items, product_id)

    # ----- frequently bought together -----------------------------------------------------

    async def _co_purchases(self, product_id: str) -> Counter:
        """Distinct-order co-occurrence counts with product_id."""
        purchases = await self.interactions.query_by_product(product_id, InteractionType.PURCHASE)
        order_ids = sorted({i.order_id for i in purchases if i.order_id})
        if not order_ids:
            return Counter()
        baskets: Dict[str, Set[str]] = defaultdict(set)
        for i in await self.interactions.query_by_orders(order_ids, InteractionType.PURCHASE):
            baskets[i.order_id].add(i.product_id)
        co: Counter = Counter()
        for items in baskets.values():
            if product_id in items:
                co.update(items - {product_id})
        return co

    async def frequently_bought(self, product_id: str, limit: int = 10) -> RecoResult:
        t0 = time.perf_counter()
        await self._subject(product_id)
        rows = await self.cache.get_frequently_bought(product_id, limit * 2)
        if rows:
            items = await self._hydrate([(r.with_id, float(r.frequency)) for r in rows], limit)
            if items:
                logger.info("fbt cache_hit product_id=%s items=%s", product_id, len(items))
                return _result(KIND_FREQUENTLY_BOUGHT, "cache", items, product_id)

        co = await self._co_purchases(product_id)
        min_co = self.settings.fbt_min_cooccurrence
        ranked = sorted(((pid, n) for pid, n in co.items() if n >= min_co), key=lambda x: (-x[1], x[0]))
        items = await self._hydrate([(pid, float(n)) for pid, n in ranked], limit)
        logger.info("fbt live product_id=%s candidates=%s kept=%s time=%.3fs",
                    product_id, len(co), len(items), time.perf_counter() - t0)
        return _result(KIND_FREQUENTLY_BOUGHT, "live", items, product_id)

    # ----- trending ---------------------------------------------------------------------

    async def trending(self, period: TrendingPeriod = "weekly", limit: int = 10) -> RecoResult:
        t0 = time.perf_counter()
        now = self.clock()
        since = now - TRENDING_WINDOWS[period]

        rows = await self.cache.get_trending(period, limit * 2)
        # a cached row whose last counted interaction left the window is stale
        fresh = [r for r in rows if r.trend_score > 0 and r.last_interaction_at >= since]
        if len(fresh) < len(rows):
            logger.info("trending cache stale period=%s dropped=%s", period, len(rows) - len(fresh))
        if fresh:
            items = await self._hydrate([(r.product_id, r.trend_score) for r in fresh], limit)
            if items:
                logger.info("trending cache_hit period=%s items=%s", period, len(items))
                return _result(KIND_TRENDING, "cache", items)

        scores: Dict[str, float] = defaultdict(float)
        for i in await self.interactions.query_since(since):
            scores[i.product_id] += i.weight
        ranked = sorted(((pid, s) for pid, s in scores.items() if s > 0), key=lambda x: (-x[1], x[0]))
        items = await self._hydrate(ranked, limit)
        logger.info("trending live period=%s items=%s time=%.3fs", period, len(items), time.perf_counter() - t0)
        return _result(KIND_TRENDING, "live", items)

    # ----- affinities / personalized --------------------------------------------------------

    async def _affinities(self, user_id: str) -> Tuple[Dict[str, float], Dict[str, float], Set[str]]:
        history = await self.interactions.query_by_user(user_id)
        seen = {
            i.product_id for i in history
            if i.type in (InteractionType.VIEW, InteractionType.PURCHASE)
        }
        weights: Dict[str, float] = defaultdict(float)
        for i in history:
            weights[i.product_id] += i.weight
        categories: Dict[str, float] = defaultdict(float)
        brands: Dict[str, float] = defaultdict(float)
        for p in await self.products.get_by_ids(sorted(weights)):
            if p.category_id:
                categories[p.category_id] += weights[p.product_id]
            if p.brand_id:
                brands[p.brand_id] += weights[p.product_id]
        return dict(categories), dict(brands), seen

    @staticmethod
    def _top(scores: Dict[str, float], n: int) -> List[Affinity]:
        ranked = sorted(((k, v) for k, v in scores.items() if v > 0), key=lambda kv: (-kv[1], kv[0]))
        return [Affinity(id=k, score=v) for k, v in ranked[:n]]

    async def category_affinities(self, user_id: str, limit: int = 10) -> List[Affinity]:
        categories, _, _ = await self._affinities(user_id)
        return self._top(categories, limit)

    async def brand_affinities(self, user_id: str, limit: int = 10) -> List[Affinity]:
        _, brands, _ = await self._affinities(user_id)
        return self._top(brands, limit)

    async def personalized(self, user_id: str, limit: int = 10) -> RecoResult:
        t0 = time.perf_counter()
        categories, brands, seen = await self._affinities(user_id)
        n = self.settings.personalized_top_affinities
        top_categories = {a.id: a.score for a in self._top(categories, n)}
        top_brands = {a.id: a.score for a in self._top(brands, n)}
        if not top_categories and not top_brands:
            logger.info("personalized no affinity user_id=%s", user_id)
            return _result(KIND_PERSONALIZED, "live", [])

        candidates = await self._active_in(
            category_ids=sorted(top_categories), brand_ids=sorted(top_brands), exclude=sorted(seen),
        )
        scored = []
        for p in candidates:
            score = top_categories.get(p.category_id, 0.0) + top_brands.get(p.brand_id, 0.0)
            if score > 0:
                scored.append((p, score))
        items = [
            RecoItem(product_id=p.product_id, score=s, product=p, rationale="category/brand affinity")
            for p, s in _rank(scored)[:limit]
        ]
        logger.info("personalized done user_id=%s items=%s time=%.3fs", user_id, len(items), time.perf_counter() - t0)
        return _result(KIND_PERSONALIZED, "live", items)

    # ----- activity based lists -----------------------------------------------------------

    async def recently_viewed(self, user_id: str, limit: int = 20) -> RecoResult:
        """Distinct products the user viewed, most recent view first."""
        views = await self.interactions.query_by_user(user_id, InteractionType.VIEW)
        last_seen: Dict[str, datetime] = {}
        view_counts: Counter = Counter()
        for i in views:
            view_counts[i.product_id] += 1
            if i.product_id not in last_seen or i.created_at > last_seen[i.product_id]:
                last_seen[i.product_id] = i.created_at
        ordered = sorted(last_seen, key=lambda pid: (-last_seen[pid].timestamp(), pid))
        items = await self._hydrate([(pid, float(view_counts[pid])) for pid in ordered], limit)
        logger.info("recently_viewed user_id=%s items=%s", user_id, len(items))
        return _result(KIND_RECENTLY_VIEWED, "live", items)

    async def top_products(
        self,
        type: InteractionType = InteractionType.PURCHASE,
        days: int = 30,
        limit: int = 20,
        brand_ids: Optional[List[str]] = None,
        category_ids: Optional[List[str]] = None,
    ) -> RecoResult:
        """Most frequent products for one interaction type over the last `days`."""
        t0 = time.perf_counter()
        since = self.clock() - timedelta(days=days)
        counts: Counter = Counter(i.product_id for i in await self.interactions.query_since(since, type))
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        by_id = {p.product_id: p for p in await self.products.get_by_ids([pid for pid, _ in ranked])}
        kept = [
            (pid, float(n)) for pid, n in ranked
            if pid in by_id
            and (not brand_ids or by_id[pid].brand_id in brand_ids)
            and (not category_ids or by_id[pid].category_id in category_ids)
        ]
        items = await self._hydrate(kept, limit)
        logger.info("top_products type=%s days=%s items=%s time=%.3fs",
                    type.value, days, len(items), time.perf_counter() - t0)
        return _result(KIND_TOP_PRODUCTS, "live", items)
