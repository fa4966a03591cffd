from pydantic import BaseModel, Field, computed_field
from typing import Optional, List
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProductStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"
    ARCHIVED = "archived"


class StockState(str, Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class AttributeValue(BaseModel):
    attribute_id: str
    term_id: str
    model_config = {"frozen": True}


class Product(BaseModel):
    product_id: str
    name: str
    sku: str = ""
    slug: str = ""
    description: Optional[str] = None
    short_description: Optional[str] = None
    keywords: List[str] = []
    price: float = Field(ge=0)
    sale_price: Optional[float] = None
    sale_starts_at: Optional[datetime] = None
    sale_ends_at: Optional[datetime] = None
    stock: int = 0
    low_stock_threshold: int = 5
    status: ProductStatus = ProductStatus.ACTIVE
    featured: bool = False
    category_id: Optional[str] = None
    brand_id: Optional[str] = None
    tags: List[str] = []
    attribute_values: List[AttributeValue] = []
    rating_average: float = 0.0
    review_count: int = 0
    view_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    model_config = {"frozen": True}  # immuable = safe

    @computed_field
    @property
    def stock_state(self) -> StockState:
        # derived from stock, never stored authoritatively
        if self.stock <= 0:
            return StockState.OUT_OF_STOCK
        if self.stock <= self.low_stock_threshold:
            return StockState.LOW_STOCK
        return StockState.IN_STOCK

    def is_on_sale(self, now: datetime) -> bool:
        if self.sale_price is None or self.sale_price <= 0:
            return False
        if self.sale_starts_at and now < self.sale_starts_at:
            return False
        if self.sale_ends_at and now > self.sale_ends_at:
            return False
        return True

    def current_price(self, now: datetime) -> float:
        return self.sale_price if self.is_on_sale(now) else self.price

    def search_document(self) -> str:
        """Concatenated text fields the full-text path is matched against."""
        return " ".join(filter(None, [
            self.name,
            self.description,
            self.short_description,
            self.sku,
            " ".join(self.keywords),
        ]))


class Category(BaseModel):
    category_id: str
    name: str
    slug: str = ""
    parent_id: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0
    model_config = {"frozen": True}


class Brand(BaseModel):
    brand_id: str
    name: str
    slug: str = ""
    is_active: bool = True
    model_config = {"frozen": True}


class Tag(BaseModel):
    tag_id: str
    name: str
    slug: str = ""
    model_config = {"frozen": True}


class AttributeTerm(BaseModel):
    term_id: str
    name: str
    slug: str = ""
    model_config = {"frozen": True}


class Attribute(BaseModel):
    attribute_id: str
    name: str
    slug: str = ""
    terms: List[AttributeTerm] = []
    model_config = {"frozen": True}
