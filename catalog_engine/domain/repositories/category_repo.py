# catalog_engine/domain/repositories/category_repo.py

from __future__ import annotations

from typing import List, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from catalog_engine.domain.models.product import Attribute, Brand, Category, Tag


class CategoryRepo:
    """Category nodes from the 'categories' collection (parent_id adjacency)."""

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "categories"):
        self.col = db[collection_name]

    async def get_node(self, category_id: str) -> Optional[Category]:
        doc = await self.col.find_one({"category_id": category_id}, {"_id": 0})
        return Category.model_validate(doc) if doc else None

    async def get_children(self, category_id: str) -> List[Category]:
        cursor = self.col.find({"parent_id": category_id}, {"_id": 0}).sort([("sort_order", ASCENDING), ("name", ASCENDING)])
        return [Category.model_validate(d) async for d in cursor]

    async def list_all(self) -> List[Category]:
        docs = await self.col.find({}, {"_id": 0}).to_list(length=None)
        return [Category.model_validate(d) for d in docs]

    async def upsert(self, category: Category) -> None:
        await self.col.replace_one({"category_id": category.category_id}, category.model_dump(), upsert=True)


class TaxonomyRepo:
    """Display names for brands, tags and attributes (facet labels)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.brands = db["brands"]
        self.tags = db["tags"]
        self.attributes = db["attributes"]

    async def list_brands(self) -> List[Brand]:
        docs = await self.brands.find({"is_active": {"$ne": False}}, {"_id": 0}).to_list(length=None)
        return [Brand.model_validate(d) for d in docs]

    async def get_brands(self, ids: Sequence[str]) -> List[Brand]:
        docs = await self.brands.find({"brand_id": {"$in": list(ids)}}, {"_id": 0}).to_list(length=None)
        return [Brand.model_validate(d) for d in docs]

    async def get_tags(self, ids: Sequence[str]) -> List[Tag]:
        docs = await self.tags.find({"tag_id": {"$in": list(ids)}}, {"_id": 0}).to_list(length=None)
        return [Tag.model_validate(d) for d in docs]

    async def get_attributes(self, ids: Sequence[str]) -> List[Attribute]:
        docs = await self.attributes.find({"attribute_id": {"$in": list(ids)}}, {"_id": 0}).to_list(length=None)
        return [Attribute.model_validate(d) for d in docs]
