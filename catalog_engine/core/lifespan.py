# catalog_engine/core/lifespan.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from catalog_engine.api.deps import build_memory_engines, build_mongo_engines, ensure_indexes
from catalog_engine.core.config import get_settings
from catalog_engine.db import mongo, redis as r

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    # --- Startup ---
    # Mongo backs every store when configured; without it the engines run in memory
    if settings.MONGO_URI:
        try:
            await mongo.connect()
        except Exception as e:
            logger.error("Mongo connection failed: %s", e)
            raise
    else:
        logger.warning("No MONGO_URI provided, using in-memory stores")

    # Redis optional (batch job locks)
    if settings.REDIS_URL:
        try:
            await r.connect()
        except Exception as e:
            logger.warning("Redis connection failed (ignored): %s", e)
    else:
        logger.info("No REDIS_URL provided, batch jobs use in-process locks")

    if settings.MONGO_URI:
        app.state.engines = build_mongo_engines(mongo.get_db(), r.get_redis(), settings)
        try:
            await ensure_indexes(app.state.engines)
        except Exception as e:
            logger.warning("Mongo index creation failed (ignored): %s", e)
    else:
        app.state.engines = build_memory_engines(settings)

    # Application runs
    yield

    # --- Shutdown ---
    if settings.REDIS_URL:
        try:
            await r.disconnect()
        except Exception as e:
            logger.warning("Redis disconnect failed: %s", e)

    if settings.MONGO_URI:
        try:
            await mongo.disconnect()
            logger.info("Mongo disconnected")
        except Exception as e:
            logger.warning("Mongo disconnect failed: %s", e)
