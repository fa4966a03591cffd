# catalog_engine/domain/services/filters.py
"""
Filter state helpers shared by search and facets:
  - validation (rejects contradictory state before any store call)
  - dimension lifting (the single place the facet exclusion rule lives)
  - in-process predicate evaluation
  - translation to a MongoDB $match document and text search stages
"""
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from catalog_engine.core.errors import InvalidFilter
from catalog_engine.domain.models.product import Product, StockState
from catalog_engine.domain.models.search import FacetDimension, ProductQuery, SearchFilters, TextQuery

# Fields reset when a dimension's own filter is lifted
_DIMENSION_FIELDS: Dict[FacetDimension, Dict[str, Any]] = {
    FacetDimension.CATEGORY: {"category_ids": []},
    FacetDimension.BRAND: {"brand_ids": []},
    FacetDimension.ATTRIBUTE: {"attribute_terms": {}},
    FacetDimension.TAG: {"tags": []},
    FacetDimension.PRICE: {"price_min": None, "price_max": None},
    FacetDimension.STOCK: {"in_stock": False, "stock_states": []},
    FacetDimension.STATUS: {"statuses": []},
}


def validate_filters(f: SearchFilters) -> None:
    """Raise InvalidFilter for self-contradictory or malformed filter state."""
    if f.price_min is not None and f.price_min < 0:
        raise InvalidFilter(f"price_min must be >= 0, got {f.price_min}")
    if f.price_max is not None and f.price_max < 0:
        raise InvalidFilter(f"price_max must be >= 0, got {f.price_max}")
    if f.price_min is not None and f.price_max is not None and f.price_min > f.price_max:
        raise InvalidFilter(f"price_min ({f.price_min}) is greater than price_max ({f.price_max})")
    if f.created_after and f.created_before and f.created_after > f.created_before:
        raise InvalidFilter("created_after is later than created_before")
    if f.updated_after and f.updated_before and f.updated_after > f.updated_before:
        raise InvalidFilter("updated_after is later than updated_before")
    if f.min_rating is not None and not 0 <= f.min_rating <= 5:
        raise InvalidFilter(f"min_rating must be within [0, 5], got {f.min_rating}")
    for attribute_id, terms in f.attribute_terms.items():
        if not terms:
            raise InvalidFilter(f"attribute {attribute_id!r} has an empty term set")
    for name in ("category_ids", "brand_ids", "tags"):
        if any(not v for v in getattr(f, name)):
            raise InvalidFilter(f"{name} contains an empty value")
    if f.in_stock and f.stock_states and StockState.OUT_OF_STOCK in f.stock_states and len(f.stock_states) == 1:
        raise InvalidFilter("in_stock contradicts stock_states=[out_of_stock]")


def lift(f: SearchFilters, dimension: FacetDimension) -> SearchFilters:
    """Copy of the filter state with one dimension's own filter removed."""
    return f.model_copy(update=_DIMENSION_FIELDS[dimension])


def is_active(f: SearchFilters, dimension: FacetDimension) -> bool:
    return lift(f, dimension) != f


# ---- In-process evaluation ---------------------------------------------------

def matches_filters(p: Product, f: SearchFilters, now: datetime) -> bool:
    if f.category_ids and p.category_id not in f.category_ids:
        return False
    if f.brand_ids and p.brand_id not in f.brand_ids:
        return False
    if f.price_min is not None and p.price < f.price_min:
        return False
    if f.price_max is not None and p.price > f.price_max:
        return False
    if f.tags and not set(f.tags) & set(p.tags):
        return False
    if f.attribute_terms:
        owned = {(av.attribute_id, av.term_id) for av in p.attribute_values}
        for attribute_id, terms in f.attribute_terms.items():
            if not any((attribute_id, t) in owned for t in terms):
                return False
    if f.in_stock and p.stock <= 0:
        return False
    if f.stock_states and p.stock_state not in f.stock_states:
        return False
    if f.on_sale and not p.is_on_sale(now):
        return False
    if f.featured is not None and p.featured != f.featured:
        return False
    if f.statuses and p.status not in f.statuses:
        return False
    if f.created_after and p.created_at < f.created_after:
        return False
    if f.created_before and p.created_at > f.created_before:
        return False
    updated = p.updated_at or p.created_at
    if f.updated_after and updated < f.updated_after:
        return False
    if f.updated_before and updated > f.updated_before:
        return False
    if f.min_rating is not None and p.rating_average < f.min_rating:
        return False
    return True


def in_price_bucket(price: float, bucket) -> bool:
    lo, hi = bucket
    return (lo is None or price >= lo) and (hi is None or price < hi)


def matches_query(p: Product, q: ProductQuery) -> bool:
    """Structured part of a ProductQuery (text matching is handled separately)."""
    if q.exclude_ids and p.product_id in q.exclude_ids:
        return False
    if q.price_bucket is not None and not in_price_bucket(p.price, q.price_bucket):
        return False
    return matches_filters(p, q.filters, q.now)


# ---- MongoDB translation -----------------------------------------------------

# Stored documents may lack low_stock_threshold; the model default applies
LOW_STOCK_THRESHOLD_EXPR = {"$ifNull": ["$low_stock_threshold", 5]}

# Fields of the full-text search document
TEXT_PATHS = ["name", "description", "short_description", "sku", "keywords"]


def _stock_state_clause(state: StockState) -> Dict[str, Any]:
    if state == StockState.OUT_OF_STOCK:
        return {"stock": {"$lte": 0}}
    if state == StockState.LOW_STOCK:
        return {"stock": {"$gt": 0}, "$expr": {"$lte": ["$stock", LOW_STOCK_THRESHOLD_EXPR]}}
    return {"$expr": {"$gt": ["$stock", LOW_STOCK_THRESHOLD_EXPR]}}


def to_mql(q: ProductQuery) -> Dict[str, Any]:
    """Translate the structured part of a ProductQuery into a $match document."""
    f = q.filters
    parts: List[Dict[str, Any]] = []

    if f.category_ids:
        parts.append({"category_id": {"$in": list(f.category_ids)}})
    if f.brand_ids:
        parts.append({"brand_id": {"$in": list(f.brand_ids)}})

    price: Dict[str, Any] = {}
    if f.price_min is not None:
        price["$gte"] = f.price_min
    if f.price_max is not None:
        price["$lte"] = f.price_max
    if price:
        parts.append({"price": price})
    if q.price_bucket is not None:
        lo, hi = q.price_bucket
        bucket: Dict[str, Any] = {}
        if lo is not None:
            bucket["$gte"] = lo
        if hi is not None:
            bucket["$lt"] = hi
        if bucket:
            parts.append({"price": bucket})

    if f.tags:
        parts.append({"tags": {"$in": list(f.tags)}})
    for attribute_id, terms in f.attribute_terms.items():
        parts.append({"attribute_values": {"$elemMatch": {"attribute_id": attribute_id, "term_id": {"$in": list(terms)}}}})
    if f.in_stock:
        parts.append({"stock": {"$gt": 0}})
    if f.stock_states:
        parts.append({"$or": [_stock_state_clause(s) for s in f.stock_states]})
    if f.on_sale:
        parts.append({"sale_price": {"$gt": 0}})
        parts.append({"$or": [{"sale_starts_at": None}, {"sale_starts_at": {"$lte": q.now}}]})
        parts.append({"$or": [{"sale_ends_at": None}, {"sale_ends_at": {"$gte": q.now}}]})
    if f.featured is not None:
        parts.append({"featured": f.featured})
    if f.statuses:
        parts.append({"status": {"$in": [s.value for s in f.statuses]}})

    created: Dict[str, Any] = {}
    if f.created_after:
        created["$gte"] = f.created_after
    if f.created_before:
        created["$lte"] = f.created_before
    if created:
        parts.append({"created_at": created})
    updated: Dict[str, Any] = {}
    if f.updated_after:
        updated["$gte"] = f.updated_after
    if f.updated_before:
        updated["$lte"] = f.updated_before
    if updated:
        parts.append({"$or": [{"updated_at": updated}, {"updated_at": None, "created_at": updated}]})
    if f.min_rating is not None:
        parts.append({"rating_average": {"$gte": f.min_rating}})
    if q.exclude_ids:
        parts.append({"product_id": {"$nin": list(q.exclude_ids)}})

    if not parts:
        return {}
    return parts[0] if len(parts) == 1 else {"$and": parts}


def _wildcard_escape(s: str) -> str:
    return re.sub(r"([\\*?])", r"\\\1", s)


def to_search_stage(text: TextQuery, index: str) -> Dict[str, Any]:
    """
    Atlas Search stage selecting text candidates: full-text on the search
    document, fuzzy on name/sku, substring on name/description/sku and the
    synonym expansion. Recall only; the exact match union is re-checked in-process.
    """
    should: List[Dict[str, Any]] = [
        {"text": {"query": text.raw, "path": TEXT_PATHS}},
        {"text": {"query": text.raw, "path": ["name", "sku"], "fuzzy": {"maxEdits": 2, "prefixLength": 1}}},
        {"wildcard": {"query": f"*{_wildcard_escape(text.raw.lower())}*", "path": ["name", "description", "sku"],
                      "allowAnalyzedField": True}},
    ]
    if text.synonyms:
        should.append({"text": {"query": list(text.synonyms), "path": ["name", "description"]}})
    return {"$search": {"index": index, "compound": {"should": should, "minimumShouldMatch": 1}}}


def to_text_stage(text: TextQuery) -> Dict[str, Any]:
    """$text pre-filter for deployments without Atlas Search (terms are OR-ed)."""
    return {"$match": {"$text": {"$search": " ".join([text.raw, *text.synonyms])}}}


def describe(f: Optional[SearchFilters]) -> Dict[str, Any]:
    """Only the non-default fields, for logs."""
    if f is None:
        return {}
    return f.model_dump(exclude_defaults=True, mode="json")
