from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from catalog_engine.domain.models.product import Product, ProductStatus, StockState

SortBy = Literal["relevance", "price", "name", "created_at", "popularity", "rating"]
SortOrder = Literal["asc", "desc"]


class FacetDimension(str, Enum):
    CATEGORY = "category"
    BRAND = "brand"
    ATTRIBUTE = "attribute"
    TAG = "tag"
    PRICE = "price"
    STOCK = "stock"
    STATUS = "status"


class SearchFilters(BaseModel):
    """Structured filter state shared by search and facet counting."""
    category_ids: List[str] = []
    include_subcategories: bool = True
    brand_ids: List[str] = []
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    tags: List[str] = []
    attribute_terms: Dict[str, List[str]] = {}
    in_stock: bool = False
    stock_states: List[StockState] = []
    on_sale: bool = False
    featured: Optional[bool] = None
    statuses: List[ProductStatus] = []
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    updated_after: Optional[datetime] = None
    updated_before: Optional[datetime] = None
    min_rating: Optional[float] = None

    model_config = {"frozen": True}


class SearchRequest(SearchFilters):
    query: Optional[str] = None
    sort_by: Optional[SortBy] = None
    sort_order: SortOrder = "desc"
    limit: int = Field(20, ge=1)
    offset: int = Field(0, ge=0)
    include_facets: bool = False
    user_id: Optional[str] = None
    session_id: Optional[str] = None

    def filters(self) -> SearchFilters:
        return SearchFilters.model_validate(self.model_dump(include=set(SearchFilters.model_fields)))


class TextQuery(BaseModel):
    raw: str
    synonyms: List[str] = []
    fuzzy_threshold: float = 0.6
    recent_days: int = 30
    model_config = {"frozen": True}


class ProductQuery(BaseModel):
    """
    Store-facing predicate: filters with category ids already expanded,
    the optional text match and the clock used for time-dependent predicates.
    """
    filters: SearchFilters
    text: Optional[TextQuery] = None
    now: datetime
    exclude_ids: List[str] = []
    # half-open [min, max) price bucket, used by facet counting only
    price_bucket: Optional[Tuple[Optional[float], Optional[float]]] = None
    model_config = {"frozen": True}


class SortSpec(BaseModel):
    sort_by: SortBy = "created_at"
    order: SortOrder = "desc"
    model_config = {"frozen": True}


class Page(BaseModel):
    limit: int = 20
    offset: int = 0
    model_config = {"frozen": True}


# ---- Facets ------------------------------------------------------------------

class FacetValue(BaseModel):
    id: str
    name: str
    count: int = 0
    selected: bool = False
    disabled: bool = False


class CategoryFacetValue(FacetValue):
    parent_id: Optional[str] = None
    direct_count: int = 0


class PriceRangeFacet(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None
    label: str
    count: int = 0
    selected: bool = False
    disabled: bool = False


class AttributeFacet(BaseModel):
    attribute_id: str
    name: str
    terms: List[FacetValue] = []


class StockFacet(BaseModel):
    in_stock: int = 0
    low_stock: int = 0
    out_of_stock: int = 0
    disabled: List[StockState] = []


class Facets(BaseModel):
    categories: List[CategoryFacetValue] = []
    brands: List[FacetValue] = []
    attributes: List[AttributeFacet] = []
    tags: List[FacetValue] = []
    price_ranges: List[PriceRangeFacet] = []
    stock: Optional[StockFacet] = None
    statuses: List[FacetValue] = []
    unavailable: List[FacetDimension] = []


class SearchResponse(BaseModel):
    products: List[Product]
    total: int
    limit: int
    offset: int
    facets: Optional[Facets] = None
    query_time_ms: int = 0


# ---- Saved searches ----------------------------------------------------------

class FilterSet(BaseModel):
    """A named, reusable query + filter state owned by one user."""
    filter_set_id: str
    user_id: str
    name: str = Field(min_length=1)
    query: Optional[str] = None
    filters: SearchFilters = SearchFilters()
    is_default: bool = False
    usage_count: int = 0
    created_at: datetime
    updated_at: datetime
