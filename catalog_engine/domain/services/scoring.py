# catalog_engine/domain/services/scoring.py
"""
Relevance ranking as an explicit signal -> weight table consumed by a pure
scoring function, plus the in-process ordering used for every sort key.
"""
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from catalog_engine.domain.models.product import Product
from catalog_engine.domain.models.search import SortSpec, TextQuery
from catalog_engine.domain.services.text_match import contains, full_text_rank, fuzzy_similarity


class Signal(str, Enum):
    FULL_TEXT = "full_text"
    NAME_MATCH = "name_match"
    SKU_MATCH = "sku_match"
    FUZZY_NAME = "fuzzy_name"
    FEATURED = "featured"
    IN_STOCK = "in_stock"
    RECENT = "recent"


RELEVANCE_WEIGHTS: Mapping[Signal, float] = MappingProxyType({
    Signal.FULL_TEXT: 4.0,
    Signal.NAME_MATCH: 3.0,
    Signal.SKU_MATCH: 2.0,
    Signal.FUZZY_NAME: 2.0,
    Signal.FEATURED: 1.5,
    Signal.IN_STOCK: 1.0,
    Signal.RECENT: 0.5,
})


def relevance_signals(product: Product, query: str, now: datetime, recent_days: int = 30) -> Dict[Signal, float]:
    """Raw signal values in [0, 1] for one product against one query."""
    return {
        Signal.FULL_TEXT: full_text_rank(query, product.search_document()),
        Signal.NAME_MATCH: 1.0 if contains(query, product.name) else 0.0,
        Signal.SKU_MATCH: 1.0 if contains(query, product.sku) else 0.0,
        Signal.FUZZY_NAME: fuzzy_similarity(query, product.name),
        Signal.FEATURED: 1.0 if product.featured else 0.0,
        Signal.IN_STOCK: 1.0 if product.stock > 0 else 0.0,
        Signal.RECENT: 1.0 if product.created_at > now - timedelta(days=recent_days) else 0.0,
    }


def relevance_score(signals: Mapping[Signal, float], weights: Mapping[Signal, float] = RELEVANCE_WEIGHTS) -> float:
    return sum(weights.get(sig, 0.0) * value for sig, value in signals.items())


def _ts(dt: datetime) -> float:
    return dt.timestamp()


def sort_products(
    products: List[Product],
    sort: SortSpec,
    text: Optional[TextQuery],
    now: datetime,
    *,
    weights: Mapping[Signal, float] = RELEVANCE_WEIGHTS,
) -> List[Product]:
    """
    Order products by a sort spec. Successive stable sorts, least significant
    key first; the base order is product_id so equal keys stay deterministic.
    """
    desc = sort.order == "desc"
    out = sorted(products, key=lambda p: p.product_id)

    if sort.sort_by == "relevance":
        if text and text.raw.strip():
            scores = {
                p.product_id: relevance_score(relevance_signals(p, text.raw, now, text.recent_days), weights)
                for p in out
            }
            out.sort(key=lambda p: _ts(p.created_at), reverse=True)
            out.sort(key=lambda p: scores[p.product_id], reverse=desc)
        else:
            out.sort(key=lambda p: _ts(p.created_at), reverse=True)
            out.sort(key=lambda p: p.stock, reverse=True)
            out.sort(key=lambda p: p.featured, reverse=True)
    elif sort.sort_by == "price":
        out.sort(key=lambda p: p.price, reverse=desc)
    elif sort.sort_by == "name":
        out.sort(key=lambda p: p.name.lower(), reverse=desc)
    elif sort.sort_by == "popularity":
        out.sort(key=lambda p: _ts(p.created_at), reverse=True)
        out.sort(key=lambda p: p.view_count, reverse=True)
    elif sort.sort_by == "rating":
        out.sort(key=lambda p: p.review_count, reverse=True)
        out.sort(key=lambda p: p.rating_average, reverse=True)
    else:
        out.sort(key=lambda p: _ts(p.created_at), reverse=desc)
    return out
