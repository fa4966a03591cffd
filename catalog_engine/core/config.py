from functools import lru_cache
from typing import List, Literal, Optional, Tuple
import os
from pydantic_settings import BaseSettings, SettingsConfigDict

EnvName = Literal["development", "production"]

def _env_file_for(app_env: EnvName) -> str:
    return ".env.development" if app_env == "development" else ".env.production"

class Settings(BaseSettings):

    # Core
    APP_ENV: EnvName = "development"
    APP_NAME: str = "CatalogEngine"
    DEBUG: bool = False
    GIT_SHA: str = "unknown"

    # Mongo (empty URI => no connection at startup)
    MONGO_URI: str = ""
    MONGO_DB: str = "catalog"
    MONGO_TLS: bool = True                      # Atlas / SRV; set False for a local mongod
    MONGO_SNAPSHOT_READS: bool = True           # requires a replica set
    MONGO_ATLAS_SEARCH: bool = True             # False: $text index pre-filter instead of $search
    MONGO_SEARCH_INDEX: str = "catalog_text"    # Atlas Search index on the products collection

    # Redis (optional, used for batch job locks)
    REDIS_URL: str = ""

    # Search
    search_timeout_s: float = 2.0               # request deadline for search + facets
    fuzzy_threshold: float = 0.6                # min similarity for the fuzzy match path
    recent_days: int = 30                       # "new product" relevance boost window
    default_page_size: int = 20
    max_page_size: int = 100
    search_candidate_limit: int = 1000          # text candidates fetched per request before in-process ranking

    # Facets: (min, max, label); None means open-ended
    price_buckets: List[Tuple[Optional[float], Optional[float], str]] = [
        (None, 50.0, "Under $50"),
        (50.0, 100.0, "$50 - $100"),
        (100.0, 250.0, "$100 - $250"),
        (250.0, 500.0, "$250 - $500"),
        (500.0, 1000.0, "$500 - $1000"),
        (1000.0, None, "Over $1000"),
    ]

    # Category tree snapshot
    category_cache_ttl: int = 15 * 60           # seconds before a forced refresh

    # Recommendations
    related_candidate_pool: int = 200
    personalized_top_affinities: int = 5        # categories/brands considered per user
    similarity_top_k: int = 20
    fbt_min_cooccurrence: int = 2
    interaction_retention_days: int = 180
    trending_cleanup_days: int = 30

    # Autocomplete
    autocomplete_default_limit: int = 10
    autocomplete_popular_timeframe: Literal["day", "week", "month"] = "week"
    autocomplete_query_suggestions: int = 1000  # popular queries indexed by the rebuild job
    autocomplete_cleanup_days: int = 90         # unused entries older than this are deleted

    # Batch jobs
    batch_lock_ttl: int = 10 * 60               # seconds; one run per job key

    # API
    api_prefix: str = "/api"

    # pydantic-settings config will be set dynamically in the factory below
    model_config = SettingsConfigDict(env_file=None, case_sensitive=True)

@lru_cache
def get_settings() -> Settings:
    """
    Factory that chooses the right .env file based on APP_ENV.
    Cache makes it cheap to inject via FastAPI dependencies.
    """
    app_env: EnvName = os.getenv("APP_ENV", "development")  # earliest switch
    env_file = _env_file_for(app_env)
    return Settings(
                _env_file=env_file,  # load .env.development or .env.production
                _env_file_encoding="utf-8"
    )
