# catalog_engine/domain/services/filter_set_svc.py
"""
Saved searches: a user's named query + filter state. A user has at most one
default filter set; marking another one default clears the flag elsewhere.
"""
import logging
import uuid
from typing import List, Optional

from catalog_engine.core.errors import NotFound
from catalog_engine.domain.models.product import utcnow
from catalog_engine.domain.models.search import FilterSet, SearchFilters
from catalog_engine.domain.repositories.base import FilterSetStore
from catalog_engine.domain.services.filters import validate_filters

logger = logging.getLogger(__name__)


async def _clear_default(store: FilterSetStore, user_id: str, keep: str) -> None:
    for other in await store.list_for_user(user_id):
        if other.is_default and other.filter_set_id != keep:
            await store.upsert(other.model_copy(update={"is_default": False}))


async def save_filter_set(
    store: FilterSetStore,
    *,
    user_id: str,
    name: str,
    query: Optional[str] = None,
    filters: Optional[SearchFilters] = None,
    is_default: bool = False,
) -> FilterSet:
    filters = filters or SearchFilters()
    validate_filters(filters)
    now = utcnow()
    fs = FilterSet(
        filter_set_id=uuid.uuid4().hex,
        user_id=user_id,
        name=name,
        query=query,
        filters=filters,
        is_default=is_default,
        created_at=now,
        updated_at=now,
    )
    await store.upsert(fs)
    if is_default:
        await _clear_default(store, user_id, fs.filter_set_id)
    logger.info("filter set saved id=%s user_id=%s default=%s", fs.filter_set_id, user_id, is_default)
    return fs


async def list_filter_sets(store: FilterSetStore, user_id: str) -> List[FilterSet]:
    """Default first, then most used, then newest."""
    rows = await store.list_for_user(user_id)
    rows.sort(key=lambda s: (not s.is_default, -s.usage_count, -s.created_at.timestamp()))
    return rows


async def get_filter_set(store: FilterSetStore, filter_set_id: str) -> FilterSet:
    fs = await store.get(filter_set_id)
    if fs is None:
        raise NotFound("filter set", filter_set_id)
    return fs


async def update_filter_set(
    store: FilterSetStore,
    filter_set_id: str,
    *,
    name: Optional[str] = None,
    query: Optional[str] = None,
    filters: Optional[SearchFilters] = None,
    is_default: Optional[bool] = None,
) -> FilterSet:
    """Change the given fields; None leaves a field as it is."""
    fs = await get_filter_set(store, filter_set_id)
    if filters is not None:
        validate_filters(filters)
    changes = {"name": name, "query": query, "filters": filters, "is_default": is_default}
    update = {k: v for k, v in changes.items() if v is not None}
    fs = fs.model_copy(update={**update, "updated_at": utcnow()})
    await store.upsert(fs)
    if is_default:
        await _clear_default(store, fs.user_id, fs.filter_set_id)
    logger.info("filter set updated id=%s fields=%s", filter_set_id, sorted(update))
    return fs


async def delete_filter_set(store: FilterSetStore, filter_set_id: str) -> None:
    if not await store.delete(filter_set_id):
        raise NotFound("filter set", filter_set_id)
    logger.info("filter set deleted id=%s", filter_set_id)


async def use_filter_set(store: FilterSetStore, filter_set_id: str) -> FilterSet:
    """Count one application of a saved search and return it."""
    fs = await store.increment_usage(filter_set_id, utcnow())
    if fs is None:
        raise NotFound("filter set", filter_set_id)
    return fs
