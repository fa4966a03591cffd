from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from catalog_engine.domain.models.product import utcnow

SuggestionType = Literal["product", "category", "brand", "tag", "query"]
SuggestionReason = Literal["fuzzy_match", "synonym", "trending", "personalized", "popular", "history"]


class AutocompleteEntry(BaseModel):
    entry_id: str
    type: SuggestionType
    value: str
    display_text: str = ""
    entity_id: Optional[str] = None
    user_id: Optional[str] = None
    priority: int = 0
    search_count: int = 0
    click_count: int = 0
    score: float = 0.0
    synonyms: List[str] = []
    tags: List[str] = []
    is_trending: bool = False
    is_personalized: bool = False
    is_active: bool = True
    metadata: Dict[str, Any] = {}
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Suggestion(BaseModel):
    entry_id: str
    type: SuggestionType
    value: str
    display_text: str = ""
    entity_id: Optional[str] = None
    priority: int = 0
    score: float = 0.0
    is_trending: bool = False
    is_personalized: bool = False
    reason: SuggestionReason
    synonyms: List[str] = []
    metadata: Dict[str, Any] = {}


class SynonymGroup(BaseModel):
    term: str
    synonyms: List[str]
    is_active: bool = True
    model_config = {"frozen": True}


class UserSearchPreference(BaseModel):
    user_id: str
    preferred_categories: List[str] = []
    preferred_brands: List[str] = []
    personalized_results: bool = True
    search_history_enabled: bool = True
    model_config = {"frozen": True}


class AutocompleteRequest(BaseModel):
    query: str = ""
    types: List[SuggestionType] = []
    limit: int = Field(10, ge=1, le=50)
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    include_trending: bool = True
    include_personalized: bool = True
    include_popular: bool = True
    include_history: bool = True


class AutocompleteResponse(BaseModel):
    suggestions: List[Suggestion] = []
    products: List[Suggestion] = []
    categories: List[Suggestion] = []
    brands: List[Suggestion] = []
    queries: List[Suggestion] = []
    trending: List[Suggestion] = []
    popular: List[Suggestion] = []
    history: List[Suggestion] = []
    total: int = 0
    has_more: bool = False
    query_time_ms: int = 0
