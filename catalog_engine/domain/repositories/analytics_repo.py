# catalog_engine/domain/repositories/analytics_repo.py
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from catalog_engine.domain.models.product import utcnow
from catalog_engine.domain.services.text_match import normalize

logger = logging.getLogger(__name__)


class AnalyticsRepo:
    """
    Search analytics: one document per (day, normalized query) maintained with
    upsert + $inc, plus per (query, product) click counters.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.searches = db["search_analytics"]
        self.clicks = db["search_clicks"]

    async def record_search(self, query: str, result_count: int, user_id: Optional[str] = None,
                            session_id: Optional[str] = None) -> None:
        now = utcnow()
        inc = {"search_count": 1, "result_count": result_count}
        if user_id:
            inc["authenticated_count"] = 1
        if result_count == 0:
            inc["zero_result_count"] = 1
        await self.searches.update_one(
            {"day": now.date().isoformat(), "query": normalize(query)},
            {"$inc": inc, "$set": {"last_searched_at": now}},
            upsert=True,
        )

    async def record_click(self, query: str, product_id: str) -> None:
        await self.clicks.update_one(
            {"query": normalize(query), "product_id": product_id},
            {"$inc": {"click_count": 1}, "$set": {"last_clicked_at": utcnow()}},
            upsert=True,
        )

    async def popular_queries(self, limit: int, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        pipeline: List[Dict[str, Any]] = []
        if since is not None:
            pipeline.append({"$match": {"last_searched_at": {"$gte": since}}})
        pipeline += [
            {"$group": {"_id": "$query", "search_count": {"$sum": "$search_count"}}},
            {"$sort": {"search_count": -1, "_id": 1}},
            {"$limit": limit},
            {"$project": {"_id": 0, "query": "$_id", "search_count": 1}},
        ]
        return await self.searches.aggregate(pipeline).to_list(length=limit)
