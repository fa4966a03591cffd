# catalog_engine/domain/repositories/memory.py
"""
In-memory store implementations. Used by the test-suite and for running the
engines without a database. They honor the same contracts as the Mongo stores:
snapshots are immutable tuples, counters are incremented under a lock.
"""
from __future__ import annotations

import asyncio
from collections import Counter, defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple

from catalog_engine.core.errors import NotFound
from catalog_engine.domain.models.autocomplete import AutocompleteEntry, SynonymGroup, UserSearchPreference
from catalog_engine.domain.models.product import Attribute, Brand, Category, Product, ProductStatus, Tag, utcnow
from catalog_engine.domain.models.reco import (FrequentlyBoughtTogether, Interaction,
                                               ProductSimilarity, TrendingPeriod, TrendingProduct)
from catalog_engine.domain.models.search import FilterSet, Page, ProductQuery, SortSpec
from catalog_engine.domain.repositories.base import SYNCED_ENTRY_FIELDS, group_values
from catalog_engine.domain.services.filters import matches_query
from catalog_engine.domain.services.scoring import sort_products
from catalog_engine.domain.services.text_match import matches_text, normalize


# ---- Products ----------------------------------------------------------------

class MemoryProductReader:
    def __init__(self, products: Tuple[Product, ...]):
        self._products = products

    def _matching(self, q: ProductQuery) -> List[Product]:
        return [
            p for p in self._products
            if matches_query(p, q) and (q.text is None or matches_text(p, q.text, q.text.fuzzy_threshold))
        ]

    async def find(self, query: ProductQuery, sort: SortSpec, page: Page) -> Tuple[List[Product], int]:
        rows = self._matching(query)
        ordered = sort_products(rows, sort, query.text, query.now)
        return ordered[page.offset:page.offset + page.limit], len(rows)

    async def count(self, query: ProductQuery) -> int:
        return len(self._matching(query))

    async def group_count(self, query: ProductQuery, field: str) -> Dict[Hashable, int]:
        counts: Counter = Counter()
        for p in self._matching(query):
            counts.update(group_values(p, field))
        return dict(counts)


class MemoryProductStore:
    def __init__(self, products: Iterable[Product] = ()):
        self._products: Dict[str, Product] = {p.product_id: p for p in products}
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def snapshot(self) -> AsyncIterator[MemoryProductReader]:
        # products are frozen models; a tuple of the current values is a consistent view
        yield MemoryProductReader(tuple(self._products.values()))

    async def get(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    async def get_by_ids(self, ids: Sequence[str]) -> List[Product]:
        return [self._products[i] for i in ids if i in self._products]

    async def iter_active(self) -> AsyncIterator[Product]:
        for p in sorted(self._products.values(), key=lambda x: x.product_id):
            if p.status == ProductStatus.ACTIVE:
                yield p

    async def upsert(self, product: Product) -> None:
        self._products[product.product_id] = product

    async def add_tag(self, product_id: str, tag: str) -> bool:
        async with self._lock:
            p = self._products.get(product_id)
            if p is None:
                raise NotFound("product", product_id)
            if tag in p.tags:
                return False
            self._products[product_id] = p.model_copy(update={"tags": [*p.tags, tag]})
            return True


# ---- Taxonomy ----------------------------------------------------------------

class MemoryCategoryStore:
    def __init__(self, categories: Iterable[Category] = ()):
        self._nodes: Dict[str, Category] = {c.category_id: c for c in categories}

    async def get_node(self, category_id: str) -> Optional[Category]:
        return self._nodes.get(category_id)

    async def get_children(self, category_id: str) -> List[Category]:
        kids = [c for c in self._nodes.values() if c.parent_id == category_id]
        return sorted(kids, key=lambda c: (c.sort_order, c.name))

    async def list_all(self) -> List[Category]:
        return list(self._nodes.values())

    async def upsert(self, category: Category) -> None:
        self._nodes[category.category_id] = category


class MemoryTaxonomyStore:
    def __init__(self, brands: Iterable[Brand] = (), tags: Iterable[Tag] = (), attributes: Iterable[Attribute] = ()):
        self._brands = {b.brand_id: b for b in brands}
        self._tags = {t.tag_id: t for t in tags}
        self._attributes = {a.attribute_id: a for a in attributes}

    async def list_brands(self) -> List[Brand]:
        return [b for b in self._brands.values() if b.is_active]

    async def get_brands(self, ids: Sequence[str]) -> List[Brand]:
        return [self._brands[i] for i in ids if i in self._brands]

    async def get_tags(self, ids: Sequence[str]) -> List[Tag]:
        return [self._tags[i] for i in ids if i in self._tags]

    async def get_attributes(self, ids: Sequence[str]) -> List[Attribute]:
        return [self._attributes[i] for i in ids if i in self._attributes]


# ---- Interactions --------------------------------------------------------------

class MemoryInteractionLog:
    def __init__(self, interactions: Iterable[Interaction] = ()):
        self._rows: List[Interaction] = list(interactions)

    def _select(self, pred, type, since) -> List[Interaction]:
        return [
            i for i in self._rows
            if pred(i) and (type is None or i.type == type) and (since is None or i.created_at >= since)
        ]

    async def append(self, interaction: Interaction) -> None:
        self._rows.append(interaction)

    async def query_by_product(self, product_id, type=None, since=None) -> List[Interaction]:
        return self._select(lambda i: i.product_id == product_id, type, since)

    async def query_by_user(self, user_id, type=None, since=None) -> List[Interaction]:
        return self._select(lambda i: i.user_id == user_id, type, since)

    async def query_by_session(self, session_id, type=None, since=None) -> List[Interaction]:
        return self._select(lambda i: i.session_id == session_id, type, since)

    async def query_by_orders(self, order_ids, type=None) -> List[Interaction]:
        wanted = set(order_ids)
        return self._select(lambda i: i.order_id in wanted, type, None)

    async def query_since(self, since, type=None) -> List[Interaction]:
        return self._select(lambda i: True, type, since)

    async def prune(self, before: datetime) -> int:
        kept = [i for i in self._rows if i.created_at >= before]
        removed = len(self._rows) - len(kept)
        self._rows = kept
        return removed


# ---- Recommendation cache -----------------------------------------------------

class MemoryRecommendationCache:
    def __init__(self):
        self.similar: Dict[str, Dict[str, ProductSimilarity]] = defaultdict(dict)
        self.frequently_bought: Dict[str, Dict[str, FrequentlyBoughtTogether]] = defaultdict(dict)
        self.trending: Dict[str, Dict[str, TrendingProduct]] = defaultdict(dict)

    async def get_similar(self, product_id: str, limit: int) -> List[ProductSimilarity]:
        rows = sorted(self.similar.get(product_id, {}).values(), key=lambda r: (-r.score, r.similar_id))
        return rows[:limit]

    async def replace_similar(self, product_id: str, rows: Sequence[ProductSimilarity]) -> None:
        self.similar[product_id] = {r.similar_id: r for r in rows}

    async def get_frequently_bought(self, product_id: str, limit: int) -> List[FrequentlyBoughtTogether]:
        rows = sorted(self.frequently_bought.get(product_id, {}).values(), key=lambda r: (-r.frequency, r.with_id))
        return rows[:limit]

    async def replace_frequently_bought(self, product_id: str, rows: Sequence[FrequentlyBoughtTogether]) -> None:
        self.frequently_bought[product_id] = {r.with_id: r for r in rows}

    async def get_trending(self, period: TrendingPeriod, limit: int) -> List[TrendingProduct]:
        rows = sorted(self.trending.get(period, {}).values(), key=lambda r: (-r.trend_score, r.product_id))
        return rows[:limit]

    async def replace_trending(self, period: TrendingPeriod, rows: Sequence[TrendingProduct]) -> None:
        self.trending[period] = {r.product_id: r for r in rows}

    async def prune_trending(self, before: datetime) -> int:
        removed = 0
        for period, rows in self.trending.items():
            stale = [pid for pid, r in rows.items() if r.computed_at < before]
            for pid in stale:
                del rows[pid]
            removed += len(stale)
        return removed


# ---- Autocomplete --------------------------------------------------------------

def _entry_text_contains(e: AutocompleteEntry, needle: str) -> bool:
    n = normalize(needle)
    return any(n in normalize(s) for s in [e.value, e.display_text, *e.synonyms])


def _by_priority(e: AutocompleteEntry):
    return (-e.priority, -e.search_count, -e.score, e.value)


def _is_stale(e: AutocompleteEntry, before: datetime) -> bool:
    unused = e.search_count == 0 and e.click_count == 0
    return unused and e.updated_at < before and (e.type == "query" or not e.is_active)


class MemorySuggestionStore:
    def __init__(self, entries: Iterable[AutocompleteEntry] = ()):
        self._entries: Dict[str, AutocompleteEntry] = {e.entry_id: e for e in entries}
        self._lock = asyncio.Lock()

    def _active(self) -> List[AutocompleteEntry]:
        return [e for e in self._entries.values() if e.is_active]

    async def get(self, entry_id: str) -> Optional[AutocompleteEntry]:
        e = self._entries.get(entry_id)
        return e.model_copy() if e else None

    async def upsert(self, entry: AutocompleteEntry) -> None:
        self._entries[entry.entry_id] = entry.model_copy()

    async def match(self, needle: str, types: Sequence[str], limit: int) -> List[AutocompleteEntry]:
        rows = [e for e in self._active() if (not types or e.type in types) and _entry_text_contains(e, needle)]
        return [e.model_copy() for e in sorted(rows, key=_by_priority)[:limit]]

    async def personalized(self, needle: str, pref: UserSearchPreference, limit: int) -> List[AutocompleteEntry]:
        def allowed(e: AutocompleteEntry) -> bool:
            if e.type == "category" and pref.preferred_categories:
                return e.metadata.get("category") in pref.preferred_categories
            if e.type == "brand" and pref.preferred_brands:
                return e.metadata.get("brand") in pref.preferred_brands
            return True

        rows = [e for e in self._active() if (not needle or _entry_text_contains(e, needle)) and allowed(e)]
        return [e.model_copy() for e in sorted(rows, key=_by_priority)[:limit]]

    async def trending(self, limit: int) -> List[AutocompleteEntry]:
        rows = [e for e in self._active() if e.is_trending and e.type == "query"]
        return [e.model_copy() for e in sorted(rows, key=lambda e: (-e.search_count, e.value))[:limit]]

    async def popular(self, since: datetime, limit: int) -> List[AutocompleteEntry]:
        rows = [e for e in self._active() if e.updated_at >= since]
        rows.sort(key=lambda e: (-e.search_count, -e.click_count, -e.priority, e.value))
        return [e.model_copy() for e in rows[:limit]]

    async def history(self, user_id: str, limit: int) -> List[AutocompleteEntry]:
        rows = [e for e in self._active() if e.user_id == user_id]
        rows.sort(key=lambda e: (-e.updated_at.timestamp(), -e.search_count))
        return [e.model_copy() for e in rows[:limit]]

    async def increment(self, entry_id: str, field: str, now: datetime) -> bool:
        async with self._lock:
            e = self._entries.get(entry_id)
            if e is None:
                return False
            setattr(e, field, getattr(e, field) + 1)
            e.updated_at = now
            return True

    async def record_query(self, value: str, user_id: Optional[str], now: datetime) -> None:
        keys = [(f"query:{value}", None)]
        if user_id:
            keys.append((f"query:{user_id}:{value}", user_id))
        async with self._lock:
            for entry_id, owner in keys:
                e = self._entries.get(entry_id)
                if e is None:
                    e = AutocompleteEntry(entry_id=entry_id, type="query", value=value, display_text=value,
                                          user_id=owner, is_personalized=owner is not None,
                                          created_at=now, updated_at=now)
                    self._entries[entry_id] = e
                e.search_count += 1
                e.updated_at = now

    async def iter_active(self) -> AsyncIterator[AutocompleteEntry]:
        for e in self._active():
            yield e.model_copy()

    async def set_score(self, entry_id: str, score: float) -> None:
        async with self._lock:
            if entry_id in self._entries:
                self._entries[entry_id].score = score

    async def mark_trending(self, since: datetime, min_searches: int, min_clicks: int) -> int:
        marked = 0
        async with self._lock:
            for e in self._entries.values():
                e.is_trending = e.updated_at >= since and (e.search_count > min_searches or e.click_count > min_clicks)
                marked += e.is_trending
        return marked

    async def sync_entries(self, type: str, entries: Sequence[AutocompleteEntry]) -> int:
        keep = {e.entry_id for e in entries}
        async with self._lock:
            for entry in entries:
                current = self._entries.get(entry.entry_id)
                if current is None:
                    self._entries[entry.entry_id] = entry.model_copy()
                    continue
                for name in SYNCED_ENTRY_FIELDS:
                    setattr(current, name, getattr(entry, name))
                current.search_count = max(current.search_count, entry.search_count)
            if type != "query":
                for e in self._entries.values():
                    if e.type == type and e.user_id is None and e.entry_id not in keep:
                        e.is_active = False
        return len(entries)

    async def delete_stale(self, before: datetime) -> int:
        async with self._lock:
            stale = [e.entry_id for e in self._entries.values() if _is_stale(e, before)]
            for entry_id in stale:
                del self._entries[entry_id]
        return len(stale)

    async def clear_history(self, user_id: str) -> int:
        async with self._lock:
            owned = [e.entry_id for e in self._entries.values() if e.user_id == user_id]
            for entry_id in owned:
                del self._entries[entry_id]
        return len(owned)


class MemorySynonymStore:
    def __init__(self, groups: Iterable[SynonymGroup] = ()):
        self._groups: Dict[str, SynonymGroup] = {g.term: g for g in groups}

    async def list_active(self) -> List[SynonymGroup]:
        return [g for g in self._groups.values() if g.is_active]

    async def upsert(self, group: SynonymGroup) -> None:
        self._groups[group.term] = group


class MemoryPreferenceStore:
    def __init__(self, prefs: Iterable[UserSearchPreference] = ()):
        self._prefs: Dict[str, UserSearchPreference] = {p.user_id: p for p in prefs}

    async def get(self, user_id: str) -> Optional[UserSearchPreference]:
        return self._prefs.get(user_id)

    async def upsert(self, pref: UserSearchPreference) -> None:
        self._prefs[pref.user_id] = pref


class MemoryFilterSetStore:
    def __init__(self, filter_sets: Iterable[FilterSet] = ()):
        self._sets: Dict[str, FilterSet] = {s.filter_set_id: s for s in filter_sets}
        self._lock = asyncio.Lock()

    async def get(self, filter_set_id: str) -> Optional[FilterSet]:
        s = self._sets.get(filter_set_id)
        return s.model_copy() if s else None

    async def list_for_user(self, user_id: str) -> List[FilterSet]:
        return [s.model_copy() for s in self._sets.values() if s.user_id == user_id]

    async def upsert(self, filter_set: FilterSet) -> None:
        self._sets[filter_set.filter_set_id] = filter_set.model_copy()

    async def delete(self, filter_set_id: str) -> bool:
        return self._sets.pop(filter_set_id, None) is not None

    async def increment_usage(self, filter_set_id: str, now: datetime) -> Optional[FilterSet]:
        async with self._lock:
            s = self._sets.get(filter_set_id)
            if s is None:
                return None
            s.usage_count += 1
            s.updated_at = now
            return s.model_copy()


# ---- Analytics -----------------------------------------------------------------

class MemoryAnalyticsRecorder:
    def __init__(self):
        self.searches: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.clicks: Counter = Counter()
        self._lock = asyncio.Lock()

    async def record_search(self, query: str, result_count: int, user_id: Optional[str] = None,
                            session_id: Optional[str] = None) -> None:
        now = utcnow()
        key = (now.date().isoformat(), normalize(query))
        async with self._lock:
            row = self.searches.setdefault(key, {"query": key[1], "day": key[0], "search_count": 0,
                                                 "result_count": 0, "last_searched_at": now})
            row["search_count"] += 1
            row["result_count"] += result_count
            row["last_searched_at"] = now

    async def record_click(self, query: str, product_id: str) -> None:
        async with self._lock:
            self.clicks[(normalize(query), product_id)] += 1

    async def popular_queries(self, limit: int, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        totals: Counter = Counter()
        for row in self.searches.values():
            if since is None or row["last_searched_at"] >= since:
                totals[row["query"]] += row["search_count"]
        ranked = sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
        return [{"query": q, "search_count": n} for q, n in ranked]
