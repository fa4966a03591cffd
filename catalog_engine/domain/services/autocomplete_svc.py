# catalog_engine/domain/services/autocomplete_svc.py
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from catalog_engine.core.config import Settings, get_settings
from catalog_engine.core.errors import NotFound
from catalog_engine.domain.models.autocomplete import (AutocompleteEntry, AutocompleteRequest, AutocompleteResponse,
                                                       Suggestion, SuggestionReason, UserSearchPreference)
from catalog_engine.domain.models.product import utcnow
from catalog_engine.domain.repositories.base import PreferenceStore, SuggestionStore, SynonymStore
from catalog_engine.domain.services.constants import (AUTOCOMPLETE_CLICK_WEIGHT, AUTOCOMPLETE_PRIORITY_WEIGHT,
                                                      AUTOCOMPLETE_RECENCY_WEIGHT, AUTOCOMPLETE_SEARCH_WEIGHT,
                                                      POPULAR_TIMEFRAMES, RECENCY_BONUS_MONTH, RECENCY_BONUS_WEEK,
                                                      TRENDING_MIN_CLICKS, TRENDING_MIN_SEARCHES)
from catalog_engine.domain.services.text_match import expand_synonyms, normalize

logger = logging.getLogger(__name__)

# type -> AutocompleteResponse group
_TYPE_GROUPS = {"product": "products", "category": "categories", "brand": "brands", "query": "queries"}


def recency_bonus(updated_at: datetime, now: datetime) -> float:
    age = now - updated_at
    if age <= timedelta(days=7):
        return RECENCY_BONUS_WEEK
    if age <= timedelta(days=30):
        return RECENCY_BONUS_MONTH
    return 0.0


def composite_score(e: AutocompleteEntry, now: datetime) -> float:
    return (
        AUTOCOMPLETE_SEARCH_WEIGHT * e.search_count
        + AUTOCOMPLETE_CLICK_WEIGHT * e.click_count
        + AUTOCOMPLETE_PRIORITY_WEIGHT * e.priority
        + AUTOCOMPLETE_RECENCY_WEIGHT * recency_bonus(e.updated_at, now)
    )


def dedup_and_rank(candidates: List[Suggestion]) -> List[Suggestion]:
    """One suggestion per (type, value), the highest score wins (first seen on ties)."""
    best: Dict[Tuple[str, str], Suggestion] = {}
    for s in candidates:
        key = (s.type, normalize(s.value))
        if key not in best or s.score > best[key].score:
            best[key] = s
    out = list(best.values())
    out.sort(key=lambda s: (s.score, s.priority), reverse=True)
    return out


class AutocompleteService:
    def __init__(
        self,
        suggestions: SuggestionStore,
        synonyms: SynonymStore,
        preferences: PreferenceStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.suggestions = suggestions
        self.synonyms = synonyms
        self.preferences = preferences
        self.settings = settings or get_settings()
        self.clock = clock

    def _to_suggestion(self, e: AutocompleteEntry, reason: SuggestionReason, now: datetime) -> Suggestion:
        return Suggestion(
            entry_id=e.entry_id,
            type=e.type,
            value=e.value,
            display_text=e.display_text or e.value,
            entity_id=e.entity_id,
            priority=e.priority,
            score=composite_score(e, now),
            is_trending=e.is_trending or reason == "trending",
            is_personalized=e.is_personalized or reason == "personalized",
            reason=reason,
            synonyms=list(e.synonyms),
            metadata=dict(e.metadata),
        )

    async def _preference(self, user_id: Optional[str]) -> Optional[UserSearchPreference]:
        if not user_id:
            return None
        return await self.preferences.get(user_id) or UserSearchPreference(user_id=user_id)

    async def suggest(self, req: AutocompleteRequest) -> AutocompleteResponse:
        t0 = time.perf_counter()
        now = self.clock()
        query = req.query.strip()
        half = max(req.limit // 2, 1)
        quarter = max(req.limit // 4, 1)
        pref = await self._preference(req.user_id)
        logger.info("autocomplete start query=%r limit=%s user_id=%s", query, req.limit, req.user_id)

        candidates: List[Suggestion] = []

        def add(entries: List[AutocompleteEntry], reason: SuggestionReason) -> None:
            candidates.extend(self._to_suggestion(e, reason, now) for e in entries)

        if query:
            add(await self.suggestions.match(query, req.types, half), "fuzzy_match")

        if req.include_personalized and pref is not None and pref.personalized_results:
            add(await self.suggestions.personalized(query, pref, quarter), "personalized")

        if req.include_trending:
            add(await self.suggestions.trending(quarter), "trending")

        if req.include_popular:
            since = now - POPULAR_TIMEFRAMES[self.settings.autocomplete_popular_timeframe]
            add(await self.suggestions.popular(since, quarter), "popular")

        if req.include_history and pref is not None and pref.search_history_enabled:
            add(await self.suggestions.history(pref.user_id, quarter), "history")

        if query:
            terms = expand_synonyms(query, await self.synonyms.list_active())
            per_term = quarter // len(terms) + 1 if terms else 0
            for term in terms:
                add(await self.suggestions.match(term, req.types, per_term), "synonym")

        if req.types:
            candidates = [c for c in candidates if c.type in req.types]

        ranked = dedup_and_rank(candidates)
        top = ranked[:req.limit]
        resp = AutocompleteResponse(suggestions=top, has_more=len(ranked) > req.limit, total=len(top))
        for s in top:
            group = _TYPE_GROUPS.get(s.type)
            if group:
                getattr(resp, group).append(s)
            if s.is_trending:
                resp.trending.append(s)
            if s.reason == "popular":
                resp.popular.append(s)
            if s.reason == "history":
                resp.history.append(s)
        resp.query_time_ms = int((time.perf_counter() - t0) * 1000)
        logger.info("autocomplete done candidates=%s returned=%s has_more=%s time=%.3fs",
                    len(candidates), len(top), resp.has_more, time.perf_counter() - t0)
        return resp

    # ----- counters --------------------------------------------------------------------

    async def track_click(self, entry_id: str) -> None:
        if not await self.suggestions.increment(entry_id, "click_count", self.clock()):
            raise NotFound("autocomplete entry", entry_id)

    async def record_search(self, query: str, user_id: Optional[str] = None) -> None:
        value = normalize(query)
        if not value:
            return
        pref = await self._preference(user_id)
        owner = user_id if pref is not None and pref.search_history_enabled else None
        await self.suggestions.record_query(value, owner, self.clock())

    # ----- maintenance ------------------------------------------------------------------

    async def recompute_scores(self) -> int:
        now = self.clock()
        n = 0
        async for e in self.suggestions.iter_active():
            await self.suggestions.set_score(e.entry_id, composite_score(e, now))
            n += 1
        logger.info("autocomplete scores recomputed entries=%s", n)
        return n

    async def update_trending(self) -> int:
        since = self.clock() - timedelta(hours=24)
        n = await self.suggestions.mark_trending(since, TRENDING_MIN_SEARCHES, TRENDING_MIN_CLICKS)
        logger.info("autocomplete trending updated marked=%s", n)
        return n

    async def clear_history(self, user_id: str) -> int:
        n = await self.suggestions.clear_history(user_id)
        logger.info("autocomplete history cleared user=%s entries=%s", user_id, n)
        return n
