"""
Tests for the Mongo suggestion and filter-set repositories over a mocked
collection: update order and the documents sent to the server.
"""
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from catalog_engine.domain.models.autocomplete import AutocompleteEntry
from catalog_engine.domain.repositories.suggestion_repo import FilterSetRepo, SuggestionRepo

from tests.conftest import NOW


def _db():
    col = MagicMock()
    col.update_many = AsyncMock(return_value=MagicMock(matched_count=2, modified_count=1))
    col.bulk_write = AsyncMock()
    col.delete_many = AsyncMock(return_value=MagicMock(deleted_count=3))
    col.find_one_and_update = AsyncMock(return_value=None)
    db = MagicMock()
    db.__getitem__.return_value = col
    return db, col


class TestMarkTrending:
    @pytest.mark.asyncio
    async def test_sets_new_flags_before_clearing_old_ones(self):
        db, col = _db()
        since = NOW - timedelta(hours=24)

        assert await SuggestionRepo(db).mark_trending(since, 10, 5) == 2

        (set_call, clear_call) = col.update_many.call_args_list
        hot, update = set_call.args
        assert hot["updated_at"] == {"$gte": since}
        assert update == {"$set": {"is_trending": True}}
        stale, update = clear_call.args
        assert stale == {"is_trending": True, "$nor": [hot]}
        assert update == {"$set": {"is_trending": False}}


class TestSyncEntries:
    @pytest.mark.asyncio
    async def test_upserts_keep_counters(self):
        db, col = _db()
        entry = AutocompleteEntry(entry_id="product:s1", type="product", value="Sony", priority=50,
                                  metadata={"brand": "sony"})

        assert await SuggestionRepo(db).sync_entries("product", [entry]) == 1

        [op] = col.bulk_write.call_args.args[0]
        update = op._doc
        assert update["$set"] == {"value": "Sony", "display_text": "", "entity_id": None, "priority": 50,
                                  "metadata": {"brand": "sony"}, "is_active": True}
        assert update["$max"] == {"search_count": 0}
        assert "click_count" in update["$setOnInsert"]
        assert not set(update["$setOnInsert"]) & {"value", "priority", "search_count"}
        deactivate, _ = col.update_many.call_args.args
        assert deactivate == {"type": "product", "user_id": None, "entry_id": {"$nin": ["product:s1"]}}

    @pytest.mark.asyncio
    async def test_query_entries_are_never_deactivated(self):
        db, col = _db()
        await SuggestionRepo(db).sync_entries("query", [])
        col.bulk_write.assert_not_called()
        col.update_many.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_stale_spares_active_catalog_entries(self):
        db, col = _db()
        assert await SuggestionRepo(db).delete_stale(NOW) == 3
        match = col.delete_many.call_args.args[0]
        assert match["updated_at"] == {"$lt": NOW}
        assert (match["search_count"], match["click_count"]) == (0, 0)
        assert match["$or"] == [{"type": "query"}, {"is_active": False}]


class TestFilterSetRepo:
    @pytest.mark.asyncio
    async def test_increment_usage_of_missing_set(self):
        db, col = _db()
        assert await FilterSetRepo(db).increment_usage("missing", NOW) is None
        match, update = col.find_one_and_update.call_args.args
        assert match == {"filter_set_id": "missing"}
        assert update == {"$inc": {"usage_count": 1}, "$set": {"updated_at": NOW}}
