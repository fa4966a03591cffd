# catalog_engine/api/v1/routers/search.py
import logging
import time
from datetime import timedelta

from fastapi import APIRouter, Depends, Query

from catalog_engine.api.deps import search_engine
from catalog_engine.api.v1.schemas.requests import SearchClickIn
from catalog_engine.domain.models.search import SearchRequest, SearchResponse
from catalog_engine.domain.services.search_svc import SearchQueryEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["search"])


@router.post("/search", response_model=SearchResponse)
async def search_products(req: SearchRequest, engine: SearchQueryEngine = Depends(search_engine)):
    """
    Full-text + structured product search. Facets are computed over the same
    snapshot when `include_facets` is set.
    """
    logger.info("Request: search query=%r limit=%s offset=%s include_facets=%s",
                req.query, req.limit, req.offset, req.include_facets)
    t0 = time.perf_counter()
    res = await engine.search(req)
    logger.info("Response: search total=%s returned=%s elapsed_time=%.4fs",
                res.total, len(res.products), time.perf_counter() - t0)
    return res


@router.post("/search/clicks", status_code=204)
async def record_search_click(body: SearchClickIn, engine: SearchQueryEngine = Depends(search_engine)):
    """Click-through on a search result."""
    if engine.analytics is not None:
        await engine.analytics.record_click(body.query.strip(), body.product_id)


@router.get("/search/popular")
async def popular_queries(
    limit: int = Query(10, ge=1, le=100),
    days: int = Query(7, ge=1, le=365),
    engine: SearchQueryEngine = Depends(search_engine),
):
    if engine.analytics is None:
        return {"items": [], "count": 0}
    items = await engine.analytics.popular_queries(limit, since=engine.clock() - timedelta(days=days))
    return {"items": items, "count": len(items)}
