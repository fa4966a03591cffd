# catalog_engine/domain/services/facet_svc.py
"""
Facet counting with dimension exclusion: every dimension is counted by
compute_facet() against the request's query with only that dimension's own
filter lifted (filters.lift). Dimensions run as concurrent tasks on the same
reader; a dimension that fails or misses the deadline is reported in
Facets.unavailable and the others are still returned.
"""
import asyncio
import logging
import time
from typing import Any, Dict, Hashable, List, Optional, Tuple

from catalog_engine.core.config import Settings, get_settings
from catalog_engine.domain.models.product import ProductStatus, StockState
from catalog_engine.domain.models.search import (AttributeFacet, CategoryFacetValue, FacetDimension, Facets,
                                                 FacetValue, PriceRangeFacet, ProductQuery, SearchFilters,
                                                 StockFacet)
from catalog_engine.domain.repositories.base import (GROUP_ATTRIBUTE_TERM, GROUP_BRAND, GROUP_CATEGORY,
                                                     GROUP_STATUS, GROUP_STOCK_STATE, GROUP_TAG, ProductReader,
                                                     TaxonomyStore)
from catalog_engine.domain.services.category_hierarchy_svc import CategoryHierarchyResolver
from catalog_engine.domain.services.filters import lift

logger = logging.getLogger(__name__)

# Facets attribute each dimension is written to
_FACET_FIELD = {
    FacetDimension.CATEGORY: "categories",
    FacetDimension.BRAND: "brands",
    FacetDimension.ATTRIBUTE: "attributes",
    FacetDimension.TAG: "tags",
    FacetDimension.PRICE: "price_ranges",
    FacetDimension.STOCK: "stock",
    FacetDimension.STATUS: "statuses",
}


def _ranked(values: List[FacetValue]) -> List[FacetValue]:
    return sorted(values, key=lambda v: (-v.count, v.name.lower(), v.id))


class FacetComputer:
    def __init__(self, resolver: CategoryHierarchyResolver, taxonomy: TaxonomyStore, settings: Optional[Settings] = None):
        self.resolver = resolver
        self.taxonomy = taxonomy
        self.settings = settings or get_settings()

    async def compute_all(
        self,
        reader: ProductReader,
        query: ProductQuery,
        selected: SearchFilters,
        deadline: Optional[float] = None,
    ) -> Facets:
        """
        `query` carries the expanded filter state used by the main search;
        `selected` is the filter state as requested (drives `selected` flags);
        `deadline` is an event-loop time after which pending dimensions are cancelled.
        """
        t0 = time.perf_counter()
        loop = asyncio.get_running_loop()
        tasks = {
            dim: asyncio.create_task(self.compute_facet(reader, query, selected, dim), name=f"facet:{dim.value}")
            for dim in FacetDimension
        }
        timeout = None if deadline is None else max(0.0, deadline - loop.time())
        done, pending = await asyncio.wait(tasks.values(), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        out: Dict[str, Any] = {"unavailable": []}
        for dim, task in tasks.items():
            if task not in done:
                logger.warning("facet timeout dimension=%s", dim.value)
                out["unavailable"].append(dim)
                continue
            exc = task.exception()
            if exc is not None:
                logger.warning("facet failed dimension=%s err=%r", dim.value, exc)
                out["unavailable"].append(dim)
                continue
            out[_FACET_FIELD[dim]] = task.result()

        facets = Facets(**out)
        logger.info(
            "facets done unavailable=%s time=%.3fs",
            [d.value for d in facets.unavailable], time.perf_counter() - t0,
        )
        return facets

    async def compute_facet(
        self,
        reader: ProductReader,
        base: ProductQuery,
        selected: SearchFilters,
        exclude: FacetDimension,
    ):
        """Counts for one dimension with its own filter lifted and every other filter applied."""
        lifted = base.model_copy(update={"filters": lift(base.filters, exclude)})
        if exclude == FacetDimension.CATEGORY:
            return await self._categories(reader, lifted, selected)
        if exclude == FacetDimension.BRAND:
            return await self._brands(reader, lifted, base, selected)
        if exclude == FacetDimension.ATTRIBUTE:
            return await self._attributes(reader, lifted, base, selected)
        if exclude == FacetDimension.TAG:
            return await self._tags(reader, lifted, base, selected)
        if exclude == FacetDimension.PRICE:
            return await self._price_ranges(reader, lifted, selected)
        if exclude == FacetDimension.STOCK:
            return await self._stock(reader, lifted)
        return await self._statuses(reader, lifted, selected)

    @staticmethod
    async def _universe(reader: ProductReader, base: ProductQuery, field: str) -> Dict[Hashable, int]:
        """Values a dimension can take for the current text query, with no filters applied."""
        unfiltered = ProductQuery(filters=SearchFilters(), text=base.text, now=base.now)
        return await reader.group_count(unfiltered, field)

    # ----- per dimension ---------------------------------------------------------

    async def _categories(self, reader, lifted: ProductQuery, selected: SearchFilters) -> List[CategoryFacetValue]:
        direct = await reader.group_count(lifted, GROUP_CATEGORY)
        totals = await self.resolver.rollup(direct)
        tree = await self.resolver.tree()
        out = []
        for node in tree.nodes:
            if not node.is_active or node.category_id not in totals:
                continue
            count = totals[node.category_id]
            out.append(CategoryFacetValue(
                id=node.category_id,
                name=node.name,
                parent_id=node.parent_id,
                count=count,
                direct_count=direct.get(node.category_id, 0),
                selected=node.category_id in selected.category_ids,
                disabled=count == 0,
            ))
        return out

    async def _brands(self, reader, lifted, base, selected: SearchFilters) -> List[FacetValue]:
        counts = await reader.group_count(lifted, GROUP_BRAND)
        ids = set(await self._universe(reader, base, GROUP_BRAND)) | set(counts) | set(selected.brand_ids)
        names = {b.brand_id: b.name for b in await self.taxonomy.get_brands(sorted(ids))}
        return _ranked([
            FacetValue(id=i, name=names.get(i, i), count=counts.get(i, 0),
                       selected=i in selected.brand_ids, disabled=not counts.get(i))
            for i in ids
        ])

    async def _tags(self, reader, lifted, base, selected: SearchFilters) -> List[FacetValue]:
        counts = await reader.group_count(lifted, GROUP_TAG)
        ids = set(await self._universe(reader, base, GROUP_TAG)) | set(counts) | set(selected.tags)
        names = {t.tag_id: t.name for t in await self.taxonomy.get_tags(sorted(ids))}
        return _ranked([
            FacetValue(id=i, name=names.get(i, i), count=counts.get(i, 0),
                       selected=i in selected.tags, disabled=not counts.get(i))
            for i in ids
        ])

    async def _attributes(self, reader, lifted, base, selected: SearchFilters) -> List[AttributeFacet]:
        counts = await reader.group_count(lifted, GROUP_ATTRIBUTE_TERM)
        keys = set(await self._universe(reader, base, GROUP_ATTRIBUTE_TERM)) | set(counts)
        keys |= {(a, t) for a, terms in selected.attribute_terms.items() for t in terms}

        by_attribute: Dict[str, List[str]] = {}
        for attribute_id, term_id in keys:
            by_attribute.setdefault(attribute_id, []).append(term_id)
        meta = {a.attribute_id: a for a in await self.taxonomy.get_attributes(sorted(by_attribute))}

        out = []
        for attribute_id in sorted(by_attribute):
            attr = meta.get(attribute_id)
            term_names = {t.term_id: t.name for t in attr.terms} if attr else {}
            chosen = selected.attribute_terms.get(attribute_id, [])
            terms = [
                FacetValue(id=t, name=term_names.get(t, t), count=counts.get((attribute_id, t), 0),
                           selected=t in chosen, disabled=not counts.get((attribute_id, t)))
                for t in by_attribute[attribute_id]
            ]
            out.append(AttributeFacet(attribute_id=attribute_id, name=attr.name if attr else attribute_id,
                                      terms=_ranked(terms)))
        return out

    async def _price_ranges(self, reader, lifted: ProductQuery, selected: SearchFilters) -> List[PriceRangeFacet]:
        buckets: List[Tuple[Optional[float], Optional[float], str]] = self.settings.price_buckets
        counts = await asyncio.gather(*[
            reader.count(lifted.model_copy(update={"price_bucket": (lo, hi)})) for lo, hi, _ in buckets
        ])
        return [
            PriceRangeFacet(min=lo, max=hi, label=label, count=n, disabled=n == 0,
                            selected=(selected.price_min, selected.price_max) == (lo, hi)
                            and (lo is not None or hi is not None))
            for (lo, hi, label), n in zip(buckets, counts)
        ]

    async def _stock(self, reader, lifted: ProductQuery) -> StockFacet:
        counts = await reader.group_count(lifted, GROUP_STOCK_STATE)
        values = {s: counts.get(s.value, 0) for s in StockState}
        return StockFacet(
            in_stock=values[StockState.IN_STOCK],
            low_stock=values[StockState.LOW_STOCK],
            out_of_stock=values[StockState.OUT_OF_STOCK],
            disabled=[s for s, n in values.items() if n == 0],
        )

    async def _statuses(self, reader, lifted: ProductQuery, selected: SearchFilters) -> List[FacetValue]:
        counts = await reader.group_count(lifted, GROUP_STATUS)
        return [
            FacetValue(id=s.value, name=s.value.capitalize(), count=counts.get(s.value, 0),
                       selected=s in selected.statuses, disabled=not counts.get(s.value))
            for s in ProductStatus
        ]
