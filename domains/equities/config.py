"""
Equities Domain Configuration - Data tiers and selection constants.

Defines the named dataset tiers of the index provider, how a tier is picked
when the query does not name one, and the thresholds used by selection.
"""

# Data tiers and their provider endpoints
DATA_TIERS = {
    "nifty50": {
        "name": "NIFTY 50",
        "endpoint": "/api/index/NIFTY 50",
    },
    "nifty100": {
        "name": "NIFTY 100",
        "endpoint": "/api/index/NIFTY 100",
    },
    "nifty500": {
        "name": "NIFTY 500",
        "endpoint": "/api/index/NIFTY 500",
    },
    "allSymbols": {
        "name": "All listed symbols",
        "endpoint": "/api/allSymbols",
    },
}

DEFAULT_TIER = "nifty100"

# Automatic tier choice: first tier whose bounds hold for (limit, condition count).
# Larger limits or more conditions need a broader universe.
TIER_SCOPE_RULES = [
    ("nifty50", 20, 0),
    ("nifty100", 100, 1),
    ("nifty500", None, None),
]

# Scope phrases (normalized text → tier). Longer phrases first so "nifty 500"
# is never read as "nifty 50".
TIER_PHRASES = [
    ("nifty 500", "nifty500"),
    ("nifty 100", "nifty100"),
    ("nifty 50", "nifty50"),
    ("all stocks", "allSymbols"),
    ("all symbols", "allSymbols"),
    ("entire market", "allSymbols"),
]

SYMBOL_DETAIL_ENDPOINT = "/api/symbol/{symbol}"
SYMBOL_DETAIL_DELAY_SECONDS = 0.1

DEFAULT_LIMIT = 50
DEFAULT_CONFIDENCE = 0.8

# Fields searched for a free-text search_term (top-level keys and nested paths)
SEARCH_KEYS = ["symbol", "identifier", "name", "companyName", "company", "shortName", "longName"]
SEARCH_NESTED_PATHS = ["meta.companyName", "meta.symbol", "info.companyName", "info.displayName"]

# Records per batch when AI-assisted field resolution is enabled
AI_RESOLUTION_BATCH_SIZE = 50
AI_RANKING_MAX_CANDIDATES = 100


def is_known_tier(tier: str | None) -> bool:
    """Check if a tier identifier is known."""
    return bool(tier) and tier in DATA_TIERS


def get_tier_endpoint(tier: str) -> str:
    """Endpoint path for a tier, defaulting to the default tier."""
    return DATA_TIERS.get(tier, DATA_TIERS[DEFAULT_TIER])["endpoint"]


def get_tier_display_name(tier: str | None) -> str:
    """Human-readable tier name."""
    if not tier:
        return ""
    return DATA_TIERS.get(tier, {}).get("name", tier)


def get_llm_field_guidance(fields: list[str]) -> str:
    """Prompt fragment listing the canonical fields a model may use."""
    return "Available fields (use these exact names):\n" + ", ".join(fields)
