from datetime import timedelta
from types import MappingProxyType

from catalog_engine.domain.models.reco import InteractionType

# Recommendation kinds
KIND_RELATED = "related"
KIND_SIMILAR = "similar"
KIND_FREQUENTLY_BOUGHT = "frequently_bought"
KIND_TRENDING = "trending"
KIND_PERSONALIZED = "personalized"
KIND_RECENTLY_VIEWED = "recently_viewed"
KIND_TOP_PRODUCTS = "top_products"

ALL_KINDS = {
    KIND_RELATED, KIND_SIMILAR, KIND_FREQUENTLY_BOUGHT, KIND_TRENDING,
    KIND_PERSONALIZED, KIND_RECENTLY_VIEWED, KIND_TOP_PRODUCTS,
}

# Related-by-taxonomy scores
RELATED_SAME_CATEGORY_AND_BRAND = 3.0
RELATED_SAME_CATEGORY = 2.0
RELATED_SAME_BRAND = 1.0

# Per-type multipliers summed into affinity and trend scores
INTERACTION_WEIGHTS = MappingProxyType({
    InteractionType.VIEW: 1.0,
    InteractionType.CLICK: 1.5,
    InteractionType.SEARCH: 1.2,
    InteractionType.WISHLIST: 2.0,
    InteractionType.COMPARE: 2.0,
    InteractionType.SHARE: 2.5,
    InteractionType.CART: 3.0,
    InteractionType.REVIEW: 4.0,
    InteractionType.PURCHASE: 5.0,
    InteractionType.REMOVE_FROM_CART: -1.0,
})
DEFAULT_INTERACTION_WEIGHT = 1.0

# Trending lookback per period
TRENDING_WINDOWS = MappingProxyType({
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
})

# Content similarity blend used by the batch job
SIMILARITY_CATEGORY_WEIGHT = 0.5
SIMILARITY_BRAND_WEIGHT = 0.2
SIMILARITY_FEATURES_WEIGHT = 0.3

# Autocomplete composite score
AUTOCOMPLETE_SEARCH_WEIGHT = 0.4
AUTOCOMPLETE_CLICK_WEIGHT = 0.3
AUTOCOMPLETE_PRIORITY_WEIGHT = 0.2
AUTOCOMPLETE_RECENCY_WEIGHT = 0.1
RECENCY_BONUS_WEEK = 10.0
RECENCY_BONUS_MONTH = 5.0

# Autocomplete trending flag thresholds (activity within the last 24h)
TRENDING_MIN_SEARCHES = 10
TRENDING_MIN_CLICKS = 5

POPULAR_TIMEFRAMES = MappingProxyType({
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
})

# Priorities of entries built from the catalog by the index rebuild job
AUTOCOMPLETE_PRIORITY_PRODUCT = 50
AUTOCOMPLETE_PRIORITY_BRAND = 60
AUTOCOMPLETE_PRIORITY_CATEGORY = 70
AUTOCOMPLETE_PRIORITY_QUERY = 80
