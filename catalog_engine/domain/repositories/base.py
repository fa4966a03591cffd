# catalog_engine/domain/repositories/base.py
"""
Store interfaces the engines are constructed with. Mongo implementations live
next to this module, in-memory ones in memory.py. Stores are plain keyed
read/upsert adapters: ranking, fallback and scoring stay in the services.
"""
from __future__ import annotations

from datetime import datetime
from typing import (Any, AsyncContextManager, AsyncIterator, Dict, Hashable, Iterable, List,
                    Optional, Protocol, Sequence, Tuple)

from catalog_engine.domain.models.autocomplete import AutocompleteEntry, SynonymGroup, UserSearchPreference
from catalog_engine.domain.models.product import Attribute, Brand, Category, Product, Tag
from catalog_engine.domain.models.reco import (FrequentlyBoughtTogether, Interaction, InteractionType,
                                               ProductSimilarity, TrendingPeriod, TrendingProduct)
from catalog_engine.domain.models.search import FilterSet, Page, ProductQuery, SortSpec

# Fields accepted by ProductReader.group_count
GROUP_CATEGORY = "category_id"
GROUP_BRAND = "brand_id"
GROUP_TAG = "tag"
GROUP_ATTRIBUTE_TERM = "attribute_term"
GROUP_STOCK_STATE = "stock_state"
GROUP_STATUS = "status"

# Entry fields owned by the catalog; counters and scores survive an index rebuild
SYNCED_ENTRY_FIELDS = ("value", "display_text", "entity_id", "priority", "metadata", "is_active")


def group_values(p: Product, field: str) -> Iterable[Hashable]:
    """
    Keys a product contributes to a grouped count. Multi-valued fields yield
    each distinct value once; attribute terms are (attribute_id, term_id).
    """
    if field == GROUP_CATEGORY:
        return [p.category_id] if p.category_id else []
    if field == GROUP_BRAND:
        return [p.brand_id] if p.brand_id else []
    if field == GROUP_TAG:
        return set(p.tags)
    if field == GROUP_ATTRIBUTE_TERM:
        return {(av.attribute_id, av.term_id) for av in p.attribute_values}
    if field == GROUP_STOCK_STATE:
        return [p.stock_state.value]
    if field == GROUP_STATUS:
        return [p.status.value]
    raise ValueError(f"unsupported group field: {field}")


class ProductReader(Protocol):
    """Reads bound to one consistent data snapshot."""

    async def find(self, query: ProductQuery, sort: SortSpec, page: Page) -> Tuple[List[Product], int]: ...

    async def count(self, query: ProductQuery) -> int: ...

    async def group_count(self, query: ProductQuery, field: str) -> Dict[Hashable, int]: ...


class ProductStore(Protocol):
    def snapshot(self) -> AsyncContextManager[ProductReader]: ...

    async def get(self, product_id: str) -> Optional[Product]: ...

    async def get_by_ids(self, ids: Sequence[str]) -> List[Product]: ...

    def iter_active(self) -> AsyncIterator[Product]: ...

    async def upsert(self, product: Product) -> None: ...

    async def add_tag(self, product_id: str, tag: str) -> bool:
        """True if the tag was added, False if it was already present."""
        ...


class CategoryStore(Protocol):
    async def get_node(self, category_id: str) -> Optional[Category]: ...

    async def get_children(self, category_id: str) -> List[Category]: ...

    async def list_all(self) -> List[Category]: ...

    async def upsert(self, category: Category) -> None: ...


class TaxonomyStore(Protocol):
    async def list_brands(self) -> List[Brand]: ...

    async def get_brands(self, ids: Sequence[str]) -> List[Brand]: ...

    async def get_tags(self, ids: Sequence[str]) -> List[Tag]: ...

    async def get_attributes(self, ids: Sequence[str]) -> List[Attribute]: ...


class InteractionLogStore(Protocol):
    async def append(self, interaction: Interaction) -> None: ...

    async def query_by_product(self, product_id: str, type: Optional[InteractionType] = None,
                               since: Optional[datetime] = None) -> List[Interaction]: ...

    async def query_by_user(self, user_id: str, type: Optional[InteractionType] = None,
                            since: Optional[datetime] = None) -> List[Interaction]: ...

    async def query_by_session(self, session_id: str, type: Optional[InteractionType] = None,
                               since: Optional[datetime] = None) -> List[Interaction]: ...

    async def query_by_orders(self, order_ids: Sequence[str],
                              type: Optional[InteractionType] = None) -> List[Interaction]: ...

    async def query_since(self, since: datetime, type: Optional[InteractionType] = None) -> List[Interaction]: ...

    async def prune(self, before: datetime) -> int: ...


class RecommendationCacheStore(Protocol):
    async def get_similar(self, product_id: str, limit: int) -> List[ProductSimilarity]: ...

    async def replace_similar(self, product_id: str, rows: Sequence[ProductSimilarity]) -> None: ...

    async def get_frequently_bought(self, product_id: str, limit: int) -> List[FrequentlyBoughtTogether]: ...

    async def replace_frequently_bought(self, product_id: str, rows: Sequence[FrequentlyBoughtTogether]) -> None: ...

    async def get_trending(self, period: TrendingPeriod, limit: int) -> List[TrendingProduct]: ...

    async def replace_trending(self, period: TrendingPeriod, rows: Sequence[TrendingProduct]) -> None: ...

    async def prune_trending(self, before: datetime) -> int: ...


class SuggestionStore(Protocol):
    async def get(self, entry_id: str) -> Optional[AutocompleteEntry]: ...

    async def upsert(self, entry: AutocompleteEntry) -> None: ...

    async def match(self, needle: str, types: Sequence[str], limit: int) -> List[AutocompleteEntry]: ...

    async def personalized(self, needle: str, pref: UserSearchPreference, limit: int) -> List[AutocompleteEntry]: ...

    async def trending(self, limit: int) -> List[AutocompleteEntry]: ...

    async def popular(self, since: datetime, limit: int) -> List[AutocompleteEntry]: ...

    async def history(self, user_id: str, limit: int) -> List[AutocompleteEntry]: ...

    async def increment(self, entry_id: str, field: str, now: datetime) -> bool: ...

    async def record_query(self, value: str, user_id: Optional[str], now: datetime) -> None: ...

    def iter_active(self) -> AsyncIterator[AutocompleteEntry]: ...

    async def set_score(self, entry_id: str, score: float) -> None: ...

    async def mark_trending(self, since: datetime, min_searches: int, min_clicks: int) -> int: ...

    async def sync_entries(self, type: str, entries: Sequence[AutocompleteEntry]) -> int:
        """
        Upsert catalog-sourced entries of one type (counters are kept) and
        deactivate shared entries of that type missing from `entries`.
        """
        ...

    async def delete_stale(self, before: datetime) -> int: ...

    async def clear_history(self, user_id: str) -> int: ...


class FilterSetStore(Protocol):
    async def get(self, filter_set_id: str) -> Optional[FilterSet]: ...

    async def list_for_user(self, user_id: str) -> List[FilterSet]: ...

    async def upsert(self, filter_set: FilterSet) -> None: ...

    async def delete(self, filter_set_id: str) -> bool: ...

    async def increment_usage(self, filter_set_id: str, now: datetime) -> Optional[FilterSet]: ...


class SynonymStore(Protocol):
    async def list_active(self) -> List[SynonymGroup]: ...

    async def upsert(self, group: SynonymGroup) -> None: ...


class PreferenceStore(Protocol):
    async def get(self, user_id: str) -> Optional[UserSearchPreference]: ...

    async def upsert(self, pref: UserSearchPreference) -> None: ...


class AnalyticsRecorder(Protocol):
    async def record_search(self, query: str, result_count: int, user_id: Optional[str] = None,
                            session_id: Optional[str] = None) -> None: ...

    async def record_click(self, query: str, product_id: str) -> None: ...

    async def popular_queries(self, limit: int, since: Optional[datetime] = None) -> List[Dict[str, Any]]: ...
