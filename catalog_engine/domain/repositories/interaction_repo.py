# catalog_engine/domain/repositories/interaction_repo.py

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from catalog_engine.domain.models.reco import Interaction, InteractionType

logger = logging.getLogger(__name__)


class InteractionRepo:
    """
    Append-only interaction log ('interactions' collection). Rows are never
    updated; prune() deletes everything older than the retention cut-off.
    """

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "interactions"):
        self.col = db[collection_name]

    async def _query(self, match: Dict[str, Any], type: Optional[InteractionType],
                     since: Optional[datetime]) -> List[Interaction]:
        if type is not None:
            match["type"] = type.value
        if since is not None:
            match["created_at"] = {"$gte": since}
        cursor = self.col.find(match, {"_id": 0}).sort("created_at", DESCENDING)
        return [Interaction.model_validate(d) async for d in cursor]

    async def append(self, interaction: Interaction) -> None:
        await self.col.insert_one(interaction.model_dump(mode="python"))

    async def query_by_product(self, product_id: str, type: Optional[InteractionType] = None,
                               since: Optional[datetime] = None) -> List[Interaction]:
        return await self._query({"product_id": product_id}, type, since)

    async def query_by_user(self, user_id: str, type: Optional[InteractionType] = None,
                            since: Optional[datetime] = None) -> List[Interaction]:
        return await self._query({"user_id": user_id}, type, since)

    async def query_by_session(self, session_id: str, type: Optional[InteractionType] = None,
                               since: Optional[datetime] = None) -> List[Interaction]:
        return await self._query({"session_id": session_id}, type, since)

    async def query_by_orders(self, order_ids: Sequence[str],
                              type: Optional[InteractionType] = None) -> List[Interaction]:
        if not order_ids:
            return []
        return await self._query({"order_id": {"$in": list(order_ids)}}, type, None)

    async def query_since(self, since: datetime, type: Optional[InteractionType] = None) -> List[Interaction]:
        return await self._query({}, type, since)

    async def prune(self, before: datetime) -> int:
        res = await self.col.delete_many({"created_at": {"$lt": before}})
        logger.info("interactions pruned before=%s deleted=%s", before.isoformat(), res.deleted_count)
        return res.deleted_count

    async def ensure_indexes(self) -> None:
        await self.col.create_index([("product_id", ASCENDING), ("type", ASCENDING), ("created_at", DESCENDING)])
        await self.col.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
        await self.col.create_index([("session_id", ASCENDING), ("created_at", DESCENDING)])
        await self.col.create_index("order_id", sparse=True)
        await self.col.create_index("created_at")
