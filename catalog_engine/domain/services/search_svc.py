# catalog_engine/domain/services/search_svc.py
import asyncio
import logging
import time
from datetime import datetime
from typing import Callable, List, Optional

from catalog_engine.core.config import Settings, get_settings
from catalog_engine.core.errors import ComputationTimeout
from catalog_engine.core.logging import json_preview
from catalog_engine.domain.models.product import utcnow
from catalog_engine.domain.models.search import (Page, ProductQuery, SearchFilters, SearchRequest, SearchResponse,
                                                 SortSpec, TextQuery)
from catalog_engine.domain.repositories.base import AnalyticsRecorder, ProductStore, SynonymStore
from catalog_engine.domain.services.category_hierarchy_svc import CategoryHierarchyResolver
from catalog_engine.domain.services.facet_svc import FacetComputer
from catalog_engine.domain.services.filters import describe, validate_filters
from catalog_engine.domain.services.text_match import expand_synonyms

logger = logging.getLogger(__name__)


class SearchQueryEngine:
    """
    Free-text query + structured filters -> ranked page, total and (optionally)
    facets. The main query and the facet dimensions run concurrently against
    one ProductStore snapshot under a single request deadline; only the main
    query is mandatory.
    """

    def __init__(
        self,
        products: ProductStore,
        resolver: CategoryHierarchyResolver,
        synonyms: SynonymStore,
        facets: FacetComputer,
        analytics: Optional[AnalyticsRecorder] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.products = products
        self.resolver = resolver
        self.synonyms = synonyms
        self.facets = facets
        self.analytics = analytics
        self.settings = settings or get_settings()
        self.clock = clock

    async def _expand_categories(self, filters: SearchFilters) -> List[str]:
        if not filters.category_ids:
            return []
        if filters.include_subcategories:
            return await self.resolver.expand(filters.category_ids)
        for cid in filters.category_ids:
            await self.resolver.get(cid)  # NotFound for unknown ids
        return list(filters.category_ids)

    async def _text_query(self, raw: Optional[str]) -> Optional[TextQuery]:
        if not raw or not raw.strip():
            return None
        q = raw.strip()
        groups = await self.synonyms.list_active()
        return TextQuery(
            raw=q,
            synonyms=expand_synonyms(q, groups),
            fuzzy_threshold=self.settings.fuzzy_threshold,
            recent_days=self.settings.recent_days,
        )

    async def build_query(self, filters: SearchFilters, raw_query: Optional[str]) -> ProductQuery:
        """Validated, category-expanded store query. Raises InvalidFilter / NotFound."""
        validate_filters(filters)
        expanded = await self._expand_categories(filters)
        return ProductQuery(
            filters=filters.model_copy(update={"category_ids": expanded}),
            text=await self._text_query(raw_query),
            now=self.clock(),
        )

    async def search(self, req: SearchRequest) -> SearchResponse:
        t0 = time.perf_counter()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.search_timeout_s
        filters = req.filters()
        logger.info(
            "search start query=%r filters=%s sort=%s/%s limit=%s offset=%s facets=%s",
            req.query, json_preview(describe(filters)), req.sort_by, req.sort_order,
            req.limit, req.offset, req.include_facets,
        )

        query = await self.build_query(filters, req.query)
        sort = SortSpec(
            sort_by=req.sort_by or ("relevance" if query.text else "created_at"),
            order=req.sort_order,
        )
        page = Page(limit=min(req.limit, self.settings.max_page_size), offset=req.offset)

        async with self.products.snapshot() as reader:
            main = asyncio.create_task(reader.find(query, sort, page))
            facet_task = None
            if req.include_facets:
                facet_task = asyncio.create_task(self.facets.compute_all(reader, query, filters, deadline))

            done, _ = await asyncio.wait({main}, timeout=max(0.0, deadline - loop.time()))
            if main not in done:
                main.cancel()
                if facet_task is not None:
                    facet_task.cancel()
                await asyncio.gather(main, *(t for t in [facet_task] if t), return_exceptions=True)
                logger.warning("search timeout query=%r after=%.3fs", req.query, time.perf_counter() - t0)
                raise ComputationTimeout(f"search exceeded {self.settings.search_timeout_s}s")
            if main.exception() is not None and facet_task is not None:
                facet_task.cancel()
                await asyncio.gather(facet_task, return_exceptions=True)
            products, total = main.result()
            facets = await facet_task if facet_task is not None else None

        await self._record(req, total)
        elapsed = time.perf_counter() - t0
        logger.info("search done total=%s page=%s time=%.3fs", total, len(products), elapsed)
        return SearchResponse(
            products=products,
            total=total,
            limit=page.limit,
            offset=page.offset,
            facets=facets,
            query_time_ms=int(elapsed * 1000),
        )

    async def _record(self, req: SearchRequest, total: int) -> None:
        if self.analytics is None or not req.query or not req.query.strip():
            return
        try:
            await self.analytics.record_search(req.query.strip(), total, req.user_id, req.session_id)
        except Exception as e:
            logger.warning("search analytics record failed query=%r err=%s", req.query, e)
