# catalog_engine/api/v1/routers/autocomplete.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from catalog_engine.api.deps import autocomplete_service
from catalog_engine.api.v1.schemas.requests import SearchRecordIn
from catalog_engine.domain.models.autocomplete import AutocompleteRequest, AutocompleteResponse, SuggestionType
from catalog_engine.domain.services.autocomplete_svc import AutocompleteService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/autocomplete", tags=["autocomplete"])


@router.get("", response_model=AutocompleteResponse)
async def autocomplete(
    q: str = Query("", description="Partial query typed by the user"),
    types: Optional[List[SuggestionType]] = Query(None),
    limit: int = Query(10, ge=1, le=50),
    user_id: Optional[str] = Query(None),
    session_id: Optional[str] = Query(None),
    include_trending: bool = Query(True),
    include_personalized: bool = Query(True),
    include_popular: bool = Query(True),
    include_history: bool = Query(True),
    svc: AutocompleteService = Depends(autocomplete_service),
):
    req = AutocompleteRequest(
        query=q,
        types=types or [],
        limit=limit,
        user_id=user_id,
        session_id=session_id,
        include_trending=include_trending,
        include_personalized=include_personalized,
        include_popular=include_popular,
        include_history=include_history,
    )
    return await svc.suggest(req)


@router.post("/{entry_id}/click", status_code=204)
async def track_click(entry_id: str, svc: AutocompleteService = Depends(autocomplete_service)):
    logger.info("Request: autocomplete click entry_id=%s", entry_id)
    await svc.track_click(entry_id)


@router.post("/searches", status_code=204)
async def record_search(body: SearchRecordIn, svc: AutocompleteService = Depends(autocomplete_service)):
    await svc.record_search(body.query, body.user_id)


@router.delete("/history/{user_id}")
async def clear_history(user_id: str, svc: AutocompleteService = Depends(autocomplete_service)):
    logger.info("Request: clear autocomplete history user_id=%s", user_id)
    return {"deleted": await svc.clear_history(user_id)}
