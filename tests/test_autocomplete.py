"""
Tests for AutocompleteService: source merging, dedup and ranking, grouping,
preference gating and the counter / maintenance operations.
"""
from datetime import timedelta

import pytest

from catalog_engine.core.errors import NotFound
from catalog_engine.domain.models.autocomplete import (AutocompleteEntry, AutocompleteRequest, Suggestion,
                                                       SynonymGroup, UserSearchPreference)
from catalog_engine.domain.services.autocomplete_svc import (AutocompleteService, composite_score, dedup_and_rank,
                                                             recency_bonus)

from tests.conftest import NOW, OLD, fixed_clock


def entry(entry_id, value, type="query", **kw):
    kw.setdefault("updated_at", OLD)
    kw.setdefault("created_at", OLD)
    return AutocompleteEntry(entry_id=entry_id, type=type, value=value, display_text=value, **kw)


@pytest.fixture
def service(suggestions, synonyms, preferences, settings):
    return AutocompleteService(suggestions, synonyms, preferences, settings, clock=fixed_clock)


class TestScoring:
    def test_recency_bonus_steps(self):
        assert recency_bonus(NOW - timedelta(days=2), NOW) == 10.0
        assert recency_bonus(NOW - timedelta(days=20), NOW) == 5.0
        assert recency_bonus(NOW - timedelta(days=90), NOW) == 0.0

    def test_composite_score(self):
        e = entry("e", "laptop", search_count=10, click_count=4, priority=5, updated_at=NOW)
        assert composite_score(e, NOW) == pytest.approx(0.4 * 10 + 0.3 * 4 + 0.2 * 5 + 0.1 * 10)

    def test_dedup_keeps_best_score_first_seen_on_ties(self):
        a = Suggestion(entry_id="1", type="query", value="Laptop", score=5, reason="fuzzy_match")
        b = Suggestion(entry_id="2", type="query", value="laptop", score=5, reason="synonym")
        c = Suggestion(entry_id="3", type="query", value="laptop ", score=9, reason="popular")
        d = Suggestion(entry_id="4", type="brand", value="laptop", score=1, reason="fuzzy_match")
        assert [s.entry_id for s in dedup_and_rank([a, b])] == ["1"]
        assert [s.entry_id for s in dedup_and_rank([a, b, c, d])] == ["3", "4"]


class TestSuggest:
    @pytest.mark.asyncio
    async def test_fuzzy_and_synonym_matches_merge(self, service, suggestions, synonyms):
        await suggestions.upsert(entry("q-laptop", "laptop", search_count=50))
        await suggestions.upsert(entry("q-notebook", "notebook", search_count=80))
        await synonyms.upsert(SynonymGroup(term="laptop", synonyms=["notebook"]))

        res = await service.suggest(AutocompleteRequest(query="lap"))
        assert [(s.value, s.reason) for s in res.suggestions] == [("notebook", "synonym"), ("laptop", "fuzzy_match")]
        assert [s.value for s in res.queries] == ["notebook", "laptop"]
        assert res.total == 2 and not res.has_more

    @pytest.mark.asyncio
    async def test_types_filter_applies_to_every_source(self, service, suggestions):
        await suggestions.upsert(entry("b-lenovo", "lenovo", type="brand"))
        await suggestions.upsert(entry("q-lenovo", "lenovo laptop", search_count=99, updated_at=NOW))
        res = await service.suggest(AutocompleteRequest(query="len", types=["brand"]))
        assert [s.entry_id for s in res.suggestions] == ["b-lenovo"]
        assert [s.entry_id for s in res.brands] == ["b-lenovo"]

    @pytest.mark.asyncio
    async def test_has_more_when_truncated(self, service, suggestions):
        for i in range(6):
            await suggestions.upsert(entry(f"q{i}", f"phone case {i}", search_count=i, updated_at=NOW))
        await suggestions.upsert(entry("trend", "smart watch", is_trending=True))
        await suggestions.upsert(entry("pop", "tablet", search_count=100, updated_at=NOW))
        res = await service.suggest(AutocompleteRequest(query="phone", limit=2))
        assert len(res.suggestions) == 2
        assert res.has_more

    @pytest.mark.asyncio
    async def test_trending_and_popular_groups(self, service, suggestions):
        await suggestions.upsert(entry("hot", "air fryer", search_count=30, is_trending=True))
        await suggestions.upsert(entry("pop", "desk chair", search_count=20, updated_at=NOW - timedelta(days=1)))
        res = await service.suggest(AutocompleteRequest(query=""))
        assert [s.entry_id for s in res.trending] == ["hot"]
        assert [s.entry_id for s in res.popular] == ["pop"]
        assert res.trending[0].is_trending

    @pytest.mark.asyncio
    async def test_history_requires_enabled_preference(self, service, suggestions, preferences):
        await suggestions.upsert(entry("h1", "red shoes", user_id="u1", updated_at=NOW - timedelta(days=40)))
        res = await service.suggest(AutocompleteRequest(query="", user_id="u1", include_personalized=False))
        assert [s.entry_id for s in res.history] == ["h1"]

        await preferences.upsert(UserSearchPreference(user_id="u1", search_history_enabled=False))
        res = await service.suggest(AutocompleteRequest(query="", user_id="u1", include_personalized=False))
        assert res.history == []

    @pytest.mark.asyncio
    async def test_personalized_source_respects_preferences(self, service, suggestions, preferences):
        await suggestions.upsert(entry("c-audio", "audio", type="category", metadata={"category": "audio"}))
        await suggestions.upsert(entry("c-garden", "garden", type="category", metadata={"category": "garden"}))
        await preferences.upsert(UserSearchPreference(user_id="u1", preferred_categories=["audio"]))
        res = await service.suggest(AutocompleteRequest(query="", user_id="u1"))
        assert [s.entry_id for s in res.suggestions if s.reason == "personalized"] == ["c-audio"]

        await preferences.upsert(UserSearchPreference(user_id="u1", personalized_results=False))
        res = await service.suggest(AutocompleteRequest(query="", user_id="u1"))
        assert not [s for s in res.suggestions if s.reason == "personalized"]


class TestCounters:
    @pytest.mark.asyncio
    async def test_track_click(self, service, suggestions):
        await suggestions.upsert(entry("q1", "laptop"))
        await service.track_click("q1")
        await service.track_click("q1")
        e = await suggestions.get("q1")
        assert e.click_count == 2
        assert e.updated_at == NOW

    @pytest.mark.asyncio
    async def test_track_click_unknown_entry(self, service):
        with pytest.raises(NotFound):
            await service.track_click("missing")

    @pytest.mark.asyncio
    async def test_record_search_feeds_global_and_history(self, service, suggestions):
        await service.record_search("  Gaming Mouse ", user_id="u1")
        await service.record_search("gaming mouse")
        assert (await suggestions.get("query:gaming mouse")).search_count == 2
        assert (await suggestions.get("query:u1:gaming mouse")).user_id == "u1"

    @pytest.mark.asyncio
    async def test_record_search_without_history(self, service, suggestions, preferences):
        await preferences.upsert(UserSearchPreference(user_id="u2", search_history_enabled=False))
        await service.record_search("mouse", user_id="u2")
        assert await suggestions.get("query:u2:mouse") is None
        assert (await suggestions.get("query:mouse")).search_count == 1


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_recompute_scores(self, service, suggestions):
        await suggestions.upsert(entry("q1", "laptop", search_count=10))
        assert await service.recompute_scores() == 1
        assert (await suggestions.get("q1")).score == pytest.approx(4.0)

    @pytest.mark.asyncio
    async def test_update_trending(self, service, suggestions):
        await suggestions.upsert(entry("busy", "tv", search_count=11, updated_at=NOW - timedelta(hours=2)))
        await suggestions.upsert(entry("quiet", "radio", search_count=3, updated_at=NOW))
        await suggestions.upsert(entry("old", "vcr", search_count=500, updated_at=NOW - timedelta(days=3)))
        assert await service.update_trending() == 1
        assert (await suggestions.get("busy")).is_trending
        assert not (await suggestions.get("old")).is_trending

    @pytest.mark.asyncio
    async def test_update_trending_keeps_entries_that_stay_hot(self, service, suggestions):
        await suggestions.upsert(entry("busy", "tv", search_count=11, updated_at=NOW, is_trending=True))
        await suggestions.upsert(entry("cooled", "vcr", search_count=2, updated_at=NOW, is_trending=True))
        assert await service.update_trending() == 1
        assert (await suggestions.get("busy")).is_trending
        assert not (await suggestions.get("cooled")).is_trending


class TestHistory:
    @pytest.mark.asyncio
    async def test_clear_history_removes_only_the_users_entries(self, service, suggestions):
        await service.record_search("gaming mouse", user_id="u1")
        await service.record_search("keyboard", user_id="u1")
        await service.record_search("monitor", user_id="u2")

        assert await service.clear_history("u1") == 2

        assert await suggestions.history("u1", 10) == []
        assert [e.value for e in await suggestions.history("u2", 10)] == ["monitor"]
        assert (await suggestions.get("query:gaming mouse")).search_count == 1

    @pytest.mark.asyncio
    async def test_clear_history_for_unknown_user(self, service):
        assert await service.clear_history("nobody") == 0
