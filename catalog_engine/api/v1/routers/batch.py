# catalog_engine/api/v1/routers/batch.py
import logging

from fastapi import APIRouter, Depends, Query

from catalog_engine.api.deps import Engines, batch_jobs, get_engines
from catalog_engine.domain.models.reco import TrendingPeriod
from catalog_engine.domain.services.batch_svc import BatchJobs, JobRun

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("/similarities", response_model=JobRun)
async def rebuild_similarities(jobs: BatchJobs = Depends(batch_jobs)):
    return await jobs.rebuild_similarities()


@router.post("/frequently-bought-together", response_model=JobRun)
async def rebuild_frequently_bought(jobs: BatchJobs = Depends(batch_jobs)):
    return await jobs.rebuild_frequently_bought()


@router.post("/trending", response_model=JobRun)
async def rebuild_trending(period: TrendingPeriod = Query("weekly"), jobs: BatchJobs = Depends(batch_jobs)):
    return await jobs.rebuild_trending(period)


@router.post("/prune", response_model=JobRun)
async def prune(jobs: BatchJobs = Depends(batch_jobs)):
    return await jobs.prune()


@router.post("/autocomplete")
async def refresh_autocomplete(engines: Engines = Depends(get_engines)):
    """Recompute composite scores then re-flag trending suggestions."""
    scored = await engines.autocomplete.recompute_scores()
    trending = await engines.autocomplete.update_trending()
    logger.info("autocomplete refresh scored=%s trending=%s", scored, trending)
    return {"scored": scored, "trending": trending}


@router.post("/autocomplete-index", response_model=JobRun)
async def rebuild_autocomplete_index(jobs: BatchJobs = Depends(batch_jobs)):
    return await jobs.rebuild_autocomplete_index()


@router.post("/autocomplete-cleanup", response_model=JobRun)
async def prune_autocomplete(jobs: BatchJobs = Depends(batch_jobs)):
    return await jobs.prune_autocomplete()
