# catalog_engine/api/v1/routers/filter_sets.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from catalog_engine.api.deps import filter_set_store, search_engine
from catalog_engine.api.v1.schemas.requests import FilterSetIn, FilterSetPatch, FilterSetSearchIn
from catalog_engine.domain.models.search import FilterSet, SearchRequest, SearchResponse
from catalog_engine.domain.services import filter_set_svc
from catalog_engine.domain.services.search_svc import SearchQueryEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/filter-sets", tags=["filter-sets"])


@router.post("", response_model=FilterSet, status_code=201)
async def save_filter_set(body: FilterSetIn, store=Depends(filter_set_store)):
    logger.info("Request: save filter set user_id=%s name=%r", body.user_id, body.name)
    return await filter_set_svc.save_filter_set(
        store,
        user_id=body.user_id,
        name=body.name,
        query=body.query,
        filters=body.filters,
        is_default=body.is_default,
    )


@router.get("")
async def list_filter_sets(user_id: str = Query(..., min_length=1), store=Depends(filter_set_store)):
    items = await filter_set_svc.list_filter_sets(store, user_id)
    return {"items": items, "count": len(items)}


@router.get("/{filter_set_id}", response_model=FilterSet)
async def get_filter_set(filter_set_id: str, store=Depends(filter_set_store)):
    return await filter_set_svc.get_filter_set(store, filter_set_id)


@router.put("/{filter_set_id}", response_model=FilterSet)
async def update_filter_set(filter_set_id: str, body: FilterSetPatch, store=Depends(filter_set_store)):
    return await filter_set_svc.update_filter_set(
        store,
        filter_set_id,
        name=body.name,
        query=body.query,
        filters=body.filters,
        is_default=body.is_default,
    )


@router.delete("/{filter_set_id}", status_code=204)
async def delete_filter_set(filter_set_id: str, store=Depends(filter_set_store)):
    await filter_set_svc.delete_filter_set(store, filter_set_id)


@router.post("/{filter_set_id}/use", response_model=FilterSet)
async def use_filter_set(filter_set_id: str, store=Depends(filter_set_store)):
    return await filter_set_svc.use_filter_set(store, filter_set_id)


@router.post("/{filter_set_id}/search", response_model=SearchResponse)
async def run_filter_set(
    filter_set_id: str,
    body: Optional[FilterSetSearchIn] = None,
    store=Depends(filter_set_store),
    engine: SearchQueryEngine = Depends(search_engine),
):
    """Run a saved search and count the use."""
    fs = await filter_set_svc.use_filter_set(store, filter_set_id)
    paging = body or FilterSetSearchIn()
    req = SearchRequest(**fs.filters.model_dump(), query=fs.query, user_id=fs.user_id, **paging.model_dump())
    logger.info("Request: saved search id=%s usage_count=%s", filter_set_id, fs.usage_count)
    return await engine.search(req)
