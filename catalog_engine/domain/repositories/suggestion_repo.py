# catalog_engine/domain/repositories/suggestion_repo.py

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument, UpdateOne

from catalog_engine.domain.models.autocomplete import AutocompleteEntry, SynonymGroup, UserSearchPreference
from catalog_engine.domain.models.search import FilterSet
from catalog_engine.domain.repositories.base import SYNCED_ENTRY_FIELDS

logger = logging.getLogger(__name__)

_BY_PRIORITY = [("priority", DESCENDING), ("search_count", DESCENDING), ("score", DESCENDING), ("value", ASCENDING)]


def _contains(needle: str) -> Dict[str, Any]:
    rx = {"$regex": re.escape(needle.strip()), "$options": "i"}
    return {"$or": [{"value": rx}, {"display_text": rx}, {"synonyms": rx}]}


class SuggestionRepo:
    """
    Autocomplete entries ('autocomplete_entries'). Counters only move through
    $inc so concurrent requests never lose updates.
    """

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "autocomplete_entries"):
        self.col = db[collection_name]

    async def _find(self, match: Dict[str, Any], sort, limit: int) -> List[AutocompleteEntry]:
        cursor = self.col.find(match, {"_id": 0}).sort(sort).limit(limit)
        return [AutocompleteEntry.model_validate(d) async for d in cursor]

    async def get(self, entry_id: str) -> Optional[AutocompleteEntry]:
        doc = await self.col.find_one({"entry_id": entry_id}, {"_id": 0})
        return AutocompleteEntry.model_validate(doc) if doc else None

    async def upsert(self, entry: AutocompleteEntry) -> None:
        await self.col.replace_one({"entry_id": entry.entry_id}, entry.model_dump(), upsert=True)

    async def match(self, needle: str, types: Sequence[str], limit: int) -> List[AutocompleteEntry]:
        match: Dict[str, Any] = {"is_active": True, **_contains(needle)}
        if types:
            match["type"] = {"$in": list(types)}
        return await self._find(match, _BY_PRIORITY, limit)

    async def personalized(self, needle: str, pref: UserSearchPreference, limit: int) -> List[AutocompleteEntry]:
        parts: List[Dict[str, Any]] = [{"is_active": True}]
        if needle:
            parts.append(_contains(needle))
        if pref.preferred_categories:
            parts.append({"$or": [{"type": {"$ne": "category"}},
                                  {"metadata.category": {"$in": pref.preferred_categories}}]})
        if pref.preferred_brands:
            parts.append({"$or": [{"type": {"$ne": "brand"}},
                                  {"metadata.brand": {"$in": pref.preferred_brands}}]})
        return await self._find({"$and": parts}, _BY_PRIORITY, limit)

    async def trending(self, limit: int) -> List[AutocompleteEntry]:
        return await self._find(
            {"is_active": True, "is_trending": True, "type": "query"},
            [("search_count", DESCENDING), ("value", ASCENDING)],
            limit,
        )

    async def popular(self, since: datetime, limit: int) -> List[AutocompleteEntry]:
        return await self._find(
            {"is_active": True, "updated_at": {"$gte": since}},
            [("search_count", DESCENDING), ("click_count", DESCENDING), ("priority", DESCENDING), ("value", ASCENDING)],
            limit,
        )

    async def history(self, user_id: str, limit: int) -> List[AutocompleteEntry]:
        return await self._find(
            {"is_active": True, "user_id": user_id},
            [("updated_at", DESCENDING), ("search_count", DESCENDING)],
            limit,
        )

    async def increment(self, entry_id: str, field: str, now: datetime) -> bool:
        doc = await self.col.find_one_and_update(
            {"entry_id": entry_id},
            {"$inc": {field: 1}, "$set": {"updated_at": now}},
            projection={"_id": 0, "entry_id": 1},
            return_document=ReturnDocument.AFTER,
        )
        return doc is not None

    async def record_query(self, value: str, user_id: Optional[str], now: datetime) -> None:
        targets = [(f"query:{value}", None)]
        if user_id:
            targets.append((f"query:{user_id}:{value}", user_id))
        for entry_id, owner in targets:
            seed = AutocompleteEntry(entry_id=entry_id, type="query", value=value, display_text=value,
                                     user_id=owner, is_personalized=owner is not None, created_at=now)
            on_insert = seed.model_dump(exclude={"search_count", "updated_at"})
            await self.col.update_one(
                {"entry_id": entry_id},
                {"$inc": {"search_count": 1}, "$set": {"updated_at": now}, "$setOnInsert": on_insert},
                upsert=True,
            )

    async def iter_active(self) -> AsyncIterator[AutocompleteEntry]:
        async for doc in self.col.find({"is_active": True}, {"_id": 0}):
            yield AutocompleteEntry.model_validate(doc)

    async def set_score(self, entry_id: str, score: float) -> None:
        await self.col.update_one({"entry_id": entry_id}, {"$set": {"score": score}})

    async def mark_trending(self, since: datetime, min_searches: int, min_clicks: int) -> int:
        hot = {"updated_at": {"$gte": since},
               "$or": [{"search_count": {"$gt": min_searches}}, {"click_count": {"$gt": min_clicks}}]}
        # new set first, so readers never see an empty trending list in between
        res = await self.col.update_many(hot, {"$set": {"is_trending": True}})
        await self.col.update_many({"is_trending": True, "$nor": [hot]}, {"$set": {"is_trending": False}})
        return res.matched_count

    async def sync_entries(self, type: str, entries: Sequence[AutocompleteEntry]) -> int:
        if entries:
            ops = []
            for entry in entries:
                doc = entry.model_dump()
                synced = {k: doc.pop(k) for k in SYNCED_ENTRY_FIELDS}
                searches = doc.pop("search_count")
                ops.append(UpdateOne(
                    {"entry_id": entry.entry_id},
                    {"$set": synced, "$max": {"search_count": searches}, "$setOnInsert": doc},
                    upsert=True,
                ))
            await self.col.bulk_write(ops, ordered=False)
        if type != "query":
            res = await self.col.update_many(
                {"type": type, "user_id": None, "entry_id": {"$nin": [e.entry_id for e in entries]}},
                {"$set": {"is_active": False}},
            )
            if res.modified_count:
                logger.info("Deactivated %d %s suggestions no longer in the catalog", res.modified_count, type)
        return len(entries)

    async def delete_stale(self, before: datetime) -> int:
        res = await self.col.delete_many({
            "updated_at": {"$lt": before},
            "search_count": 0,
            "click_count": 0,
            "$or": [{"type": "query"}, {"is_active": False}],
        })
        return res.deleted_count

    async def clear_history(self, user_id: str) -> int:
        res = await self.col.delete_many({"user_id": user_id})
        return res.deleted_count

    async def ensure_indexes(self) -> None:
        await self.col.create_index("entry_id", unique=True)
        await self.col.create_index([("is_active", ASCENDING), ("type", ASCENDING), ("priority", DESCENDING)])
        await self.col.create_index([("user_id", ASCENDING), ("updated_at", DESCENDING)])


class FilterSetRepo:
    """Saved searches ('search_filter_sets'), one document per filter set."""

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "search_filter_sets"):
        self.col = db[collection_name]

    async def get(self, filter_set_id: str) -> Optional[FilterSet]:
        doc = await self.col.find_one({"filter_set_id": filter_set_id}, {"_id": 0})
        return FilterSet.model_validate(doc) if doc else None

    async def list_for_user(self, user_id: str) -> List[FilterSet]:
        docs = await self.col.find({"user_id": user_id}, {"_id": 0}).to_list(length=None)
        return [FilterSet.model_validate(d) for d in docs]

    async def upsert(self, filter_set: FilterSet) -> None:
        await self.col.replace_one({"filter_set_id": filter_set.filter_set_id},
                                   filter_set.model_dump(), upsert=True)

    async def delete(self, filter_set_id: str) -> bool:
        res = await self.col.delete_one({"filter_set_id": filter_set_id})
        return res.deleted_count > 0

    async def increment_usage(self, filter_set_id: str, now: datetime) -> Optional[FilterSet]:
        doc = await self.col.find_one_and_update(
            {"filter_set_id": filter_set_id},
            {"$inc": {"usage_count": 1}, "$set": {"updated_at": now}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        return FilterSet.model_validate(doc) if doc else None

    async def ensure_indexes(self) -> None:
        await self.col.create_index("filter_set_id", unique=True)
        await self.col.create_index([("user_id", ASCENDING), ("is_default", DESCENDING)])


class SynonymRepo:
    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "search_synonyms"):
        self.col = db[collection_name]

    async def list_active(self) -> List[SynonymGroup]:
        docs = await self.col.find({"is_active": True}, {"_id": 0}).to_list(length=None)
        return [SynonymGroup.model_validate(d) for d in docs]

    async def upsert(self, group: SynonymGroup) -> None:
        await self.col.replace_one({"term": group.term}, group.model_dump(), upsert=True)


class PreferenceRepo:
    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "user_search_preferences"):
        self.col = db[collection_name]

    async def get(self, user_id: str) -> Optional[UserSearchPreference]:
        doc = await self.col.find_one({"user_id": user_id}, {"_id": 0})
        return UserSearchPreference.model_validate(doc) if doc else None

    async def upsert(self, pref: UserSearchPreference) -> None:
        await self.col.replace_one({"user_id": pref.user_id}, pref.model_dump(), upsert=True)
