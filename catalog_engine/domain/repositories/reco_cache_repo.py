# catalog_engine/domain/repositories/reco_cache_repo.py
from datetime import datetime
from typing import List, Sequence

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, UpdateOne

from catalog_engine.domain.models.reco import FrequentlyBoughtTogether, ProductSimilarity, TrendingPeriod, TrendingProduct


class RecoCacheRepo:
    """
    Precomputed recommendation tables, written only by batch jobs.
    Each replace_* is an upsert on the natural key followed by deleting the
    rows of the same subject that were not part of the new set, so running a
    rebuild twice leaves the same rows behind.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.similar = db["product_similarities"]
        self.fbt = db["frequently_bought_together"]
        self.trending = db["trending_products"]

    @staticmethod
    async def _replace(col, scope: dict, key_field: str, docs: List[dict]) -> None:
        if docs:
            ops = [
                UpdateOne({**scope, key_field: d[key_field]}, {"$set": d}, upsert=True)
                for d in docs
            ]
            await col.bulk_write(ops, ordered=False)
        keep = [d[key_field] for d in docs]
        await col.delete_many({**scope, key_field: {"$nin": keep}})

    # ----- similar -----------------------------------------------------------

    async def get_similar(self, product_id: str, limit: int) -> List[ProductSimilarity]:
        cursor = (
            self.similar.find({"product_id": product_id}, {"_id": 0})
            .sort([("score", DESCENDING), ("similar_id", ASCENDING)])
            .limit(limit)
        )
        return [ProductSimilarity.model_validate(d) async for d in cursor]

    async def replace_similar(self, product_id: str, rows: Sequence[ProductSimilarity]) -> None:
        await self._replace(self.similar, {"product_id": product_id}, "similar_id", [r.model_dump() for r in rows])

    # ----- frequently bought together ------------------------------------------

    async def get_frequently_bought(self, product_id: str, limit: int) -> List[FrequentlyBoughtTogether]:
        cursor = (
            self.fbt.find({"product_id": product_id}, {"_id": 0})
            .sort([("frequency", DESCENDING), ("with_id", ASCENDING)])
            .limit(limit)
        )
        return [FrequentlyBoughtTogether.model_validate(d) async for d in cursor]

    async def replace_frequently_bought(self, product_id: str, rows: Sequence[FrequentlyBoughtTogether]) -> None:
        await self._replace(self.fbt, {"product_id": product_id}, "with_id", [r.model_dump() for r in rows])

    # ----- trending --------------------------------------------------------------

    async def get_trending(self, period: TrendingPeriod, limit: int) -> List[TrendingProduct]:
        cursor = (
            self.trending.find({"period": period}, {"_id": 0})
            .sort([("trend_score", DESCENDING), ("product_id", ASCENDING)])
            .limit(limit)
        )
        return [TrendingProduct.model_validate(d) async for d in cursor]

    async def replace_trending(self, period: TrendingPeriod, rows: Sequence[TrendingProduct]) -> None:
        await self._replace(self.trending, {"period": period}, "product_id", [r.model_dump() for r in rows])

    async def prune_trending(self, before: datetime) -> int:
        res = await self.trending.delete_many({"computed_at": {"$lt": before}})
        return res.deleted_count

    async def ensure_indexes(self) -> None:
        await self.similar.create_index([("product_id", ASCENDING), ("similar_id", ASCENDING)], unique=True)
        await self.fbt.create_index([("product_id", ASCENDING), ("with_id", ASCENDING)], unique=True)
        await self.trending.create_index([("period", ASCENDING), ("product_id", ASCENDING)], unique=True)
