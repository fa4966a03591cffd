# catalog_engine/api/v1/routers/recommendations.py
import logging
import time
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from catalog_engine.api.deps import recommendation_engine
from catalog_engine.domain.models.reco import InteractionType, RecoResult, TrendingPeriod
from catalog_engine.domain.services.recommendation_svc import RecommendationEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recommendations"])


@router.get("/products/{product_id}/related", response_model=RecoResult)
async def related_products(
    product_id: str,
    limit: int = Query(10, ge=1, le=50),
    engine: RecommendationEngine = Depends(recommendation_engine),
):
    """Active products sharing the category and/or brand: 3 for both, 2 for category, 1 for brand."""
    return await engine.related(product_id, limit)


@router.get("/products/{product_id}/similar", response_model=RecoResult)
async def similar_products(
    product_id: str,
    limit: int = Query(10, ge=1, le=50),
    engine: RecommendationEngine = Depends(recommendation_engine),
):
    """
    Substitutable products: precomputed similarity rows when present,
    otherwise the live related-products scoring.
    """
    logger.info("Request: similar_products product_id=%s, limit=%s", product_id, limit)
    t0 = time.perf_counter()
    res = await engine.similar(product_id, limit)
    logger.info("Response: similar_products product_id=%s, source=%s, count=%s, elapsed_time=%.4fs",
                product_id, res.source, res.count, time.perf_counter() - t0)
    return res


@router.get("/products/{product_id}/frequently-bought-together", response_model=RecoResult)
async def frequently_bought_together(
    product_id: str,
    limit: int = Query(10, ge=1, le=50),
    engine: RecommendationEngine = Depends(recommendation_engine),
):
    return await engine.frequently_bought(product_id, limit)


@router.get("/trending", response_model=RecoResult)
async def trending_products(
    period: TrendingPeriod = Query("weekly"),
    limit: int = Query(10, ge=1, le=100),
    engine: RecommendationEngine = Depends(recommendation_engine),
):
    return await engine.trending(period, limit)


@router.get("/top-products", response_model=RecoResult)
async def top_products(
    type: InteractionType = Query(InteractionType.PURCHASE),
    days: int = Query(30, ge=1, le=365),
    limit: int = Query(20, ge=1, le=200),
    brand_id: Optional[List[str]] = Query(None),
    category_id: Optional[List[str]] = Query(None),
    engine: RecommendationEngine = Depends(recommendation_engine),
):
    t0 = time.perf_counter()
    res = await engine.top_products(type, days, limit, brand_id, category_id)
    logger.info("Response: top_products returned %s items in %.4fs with filters brand_id=%s, category_id=%s",
                res.count, time.perf_counter() - t0, brand_id, category_id)
    return res


@router.get("/users/{user_id}/recommendations", response_model=RecoResult)
async def personalized(
    user_id: str,
    limit: int = Query(10, ge=1, le=50),
    engine: RecommendationEngine = Depends(recommendation_engine),
):
    return await engine.personalized(user_id, limit)


@router.get("/users/{user_id}/recently-viewed", response_model=RecoResult)
async def recently_viewed(
    user_id: str,
    limit: int = Query(20, ge=1, le=100, description="Max number of recently viewed products to return"),
    engine: RecommendationEngine = Depends(recommendation_engine),
):
    return await engine.recently_viewed(user_id, limit)


@router.get("/users/{user_id}/affinities")
async def user_affinities(
    user_id: str,
    limit: int = Query(10, ge=1, le=50),
    engine: RecommendationEngine = Depends(recommendation_engine),
):
    categories = await engine.category_affinities(user_id, limit)
    brands = await engine.brand_affinities(user_id, limit)
    return {
        "user_id": user_id,
        "categories": [a.model_dump() for a in categories],
        "brands": [a.model_dump() for a in brands],
    }
