# catalog_engine/api/v1/schemas/requests.py
from typing import Optional

from pydantic import BaseModel, Field

from catalog_engine.domain.models.reco import InteractionType
from catalog_engine.domain.models.search import SearchFilters, SortBy, SortOrder


class InteractionIn(BaseModel):
    product_id: str
    type: InteractionType
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    order_id: Optional[str] = None


class TagIn(BaseModel):
    tag: str = Field(min_length=1)
    strict: bool = False


class SearchRecordIn(BaseModel):
    query: str = Field(min_length=1)
    user_id: Optional[str] = None


class TagOut(BaseModel):
    product_id: str
    tag: str
    added: bool


class SearchClickIn(BaseModel):
    query: str = Field(min_length=1)
    product_id: str


class FilterSetIn(BaseModel):
    user_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    query: Optional[str] = None
    filters: SearchFilters = SearchFilters()
    is_default: bool = False


class FilterSetPatch(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    query: Optional[str] = None
    filters: Optional[SearchFilters] = None
    is_default: Optional[bool] = None


class FilterSetSearchIn(BaseModel):
    """Paging and sort applied when running a saved search."""
    sort_by: Optional[SortBy] = None
    sort_order: SortOrder = "desc"
    limit: int = Field(20, ge=1)
    offset: int = Field(0, ge=0)
    include_facets: bool = False
    session_id: Optional[str] = None
