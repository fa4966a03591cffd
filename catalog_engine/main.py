from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from catalog_engine.core.config import get_settings
from catalog_engine.core.errors import (CatalogError, ComputationTimeout, DuplicateAssociation, IntegrityError,
                                        InvalidFilter, NotFound)
from catalog_engine.core.lifespan import lifespan
from catalog_engine.api.v1.routers.health import router as health_router
from catalog_engine.api.v1.routers.search import router as search_router
from catalog_engine.api.v1.routers.autocomplete import router as autocomplete_router
from catalog_engine.api.v1.routers.categories import router as categories_router
from catalog_engine.api.v1.routers.recommendations import router as recommendations_router
from catalog_engine.api.v1.routers.interactions import router as interactions_router
from catalog_engine.api.v1.routers.batch import router as batch_router
from catalog_engine.api.v1.routers.filter_sets import router as filter_sets_router
from catalog_engine.core.logging import configure_logging

from fastapi.middleware.cors import CORSMiddleware
import logging, os

settings = get_settings()
configure_logging(level=logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# ------- CORS -------
# ALLOWED_ORIGINS is a CSV, e.g. "https://shop.example.com,https://admin.example.com"
allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "")
allowed_origins = [o.strip() for o in allowed_origins_env.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=False,                        # keep False for a simple preflight
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    max_age=86400,
)

# ------- Domain errors -------
_STATUS = {
    NotFound: 404,
    InvalidFilter: 400,
    DuplicateAssociation: 409,
    ComputationTimeout: 504,
    IntegrityError: 500,
}


@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError):
    status = next((code for cls, code in _STATUS.items() if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s: %s", request.method, request.url.path, type(exc).__name__, exc)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, status, exc)
    return JSONResponse(status_code=status, content={"error": type(exc).__name__, "detail": str(exc)})


# ------- Routes -------
app.include_router(health_router)
app.include_router(search_router, prefix=settings.api_prefix)
app.include_router(autocomplete_router, prefix=settings.api_prefix)
app.include_router(categories_router, prefix=settings.api_prefix)
app.include_router(recommendations_router, prefix=settings.api_prefix)
app.include_router(interactions_router, prefix=settings.api_prefix)
app.include_router(batch_router, prefix=settings.api_prefix)
app.include_router(filter_sets_router, prefix=settings.api_prefix)
