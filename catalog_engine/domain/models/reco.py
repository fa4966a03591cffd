from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from catalog_engine.domain.models.product import Product, utcnow


class InteractionType(str, Enum):
    VIEW = "view"
    CLICK = "click"
    SEARCH = "search"
    CART = "cart"
    REMOVE_FROM_CART = "remove_from_cart"
    WISHLIST = "wishlist"
    COMPARE = "compare"
    SHARE = "share"
    REVIEW = "review"
    PURCHASE = "purchase"


TrendingPeriod = Literal["daily", "weekly", "monthly"]
RecoSource = Literal["cache", "live"]


class Interaction(BaseModel):
    product_id: str
    type: InteractionType
    weight: float = 1.0
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    order_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    model_config = {"frozen": True}


class ProductSimilarity(BaseModel):
    product_id: str
    similar_id: str
    score: float
    algorithm: str = "jaccard"
    computed_at: datetime = Field(default_factory=utcnow)
    model_config = {"frozen": True}


class FrequentlyBoughtTogether(BaseModel):
    product_id: str
    with_id: str
    frequency: int
    support: float = 0.0
    confidence: float = 0.0
    lift: float = 0.0
    computed_at: datetime = Field(default_factory=utcnow)
    model_config = {"frozen": True}


class TrendingProduct(BaseModel):
    product_id: str
    period: TrendingPeriod
    trend_score: float
    view_count: int = 0
    sales_count: int = 0
    search_count: int = 0
    last_interaction_at: datetime
    computed_at: datetime = Field(default_factory=utcnow)
    model_config = {"frozen": True}


class RecoItem(BaseModel):
    product_id: str
    score: float = Field(ge=0)
    rationale: Optional[str] = None
    product: Optional[Product] = None
    model_config = {"frozen": True}  # immuable = safe


class RecoResult(BaseModel):
    kind: str
    source: RecoSource = "live"
    source_product_id: Optional[str] = None
    items: List[RecoItem]
    count: int
    model_config = {"frozen": True}


class Affinity(BaseModel):
    id: str
    score: float
    model_config = {"frozen": True}
