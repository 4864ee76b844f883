"""
Rule Overrides - Deterministic keyword augmentation after extraction.

Responsibility:
- Merge the text-inferred limit with the extracted one (larger wins)
- Pick a data tier from explicit scope phrases
- Add conditions / ordering for recognized screen patterns

Overrides run regardless of extraction confidence and are additive: they
append conditions and set ordering, never remove what extraction produced.
The incoming query is not modified; a copy is returned.
"""

import logging
import re

from domains.equities.config import TIER_PHRASES
from domains.equities.normalizer import infer_limit, merge_limit
from shared.models import Condition, StructuredQuery

logger = logging.getLogger(__name__)

UNUSUAL_ACTIVITY_DEFAULT_LIMIT = 20
MIDCAP_MARKET_CAP_RANGE = [1e11, 5e11]
WEEK_EXTREME_BAND = [-1.0, 1.0]
NEAR_WEEK_EXTREME_BAND = [-5.0, 5.0]

_GAINERS = re.compile(r"\b(?:top gainers?|gainers)\b")
_LOSERS = re.compile(r"\b(?:losers?|fell the most)\b")
_MOST_ACTIVE = re.compile(r"\b(?:most active|by volume)\b")
_SENTIMENT = re.compile(r"\bmarket sentiment\b")
_NEAR_WEEK_LOW = re.compile(r"\bnear (?:the )?52[\s-]week low\b")
_NEAR_WEEK_HIGH = re.compile(r"\bnear (?:the )?52[\s-]week high\b")
_WEEK_LOW = re.compile(r"\b52[\s-]week low\b")
_WEEK_HIGH = re.compile(r"\b52[\s-]week high\b")
_UNUSUAL_ACTIVITY = re.compile(r"\bunusual (?:trading|activity)\b")
_MIDCAP = re.compile(r"\bmid[\s-]?caps?\b")
_LOSS_MAKING = re.compile(r"\b(?:in (?:a )?loss|loss[\s-]making|negative earnings|losing money)\b")


def _append_condition(query: StructuredQuery, field: str, operator: str, value) -> None:
    for existing in query.conditions:
        if existing.field == field and existing.operator == operator and existing.value == value:
            return
    query.conditions.append(Condition(field=field, operator=operator, value=value))


def _set_order(query: StructuredQuery, field: str, direction: str) -> None:
    query.order_by = field
    query.order_direction = direction


def detect_tier(text: str) -> str | None:
    """Data tier named explicitly in the text, if any."""
    for phrase, tier in TIER_PHRASES:
        if re.search(rf"\b{re.escape(phrase)}\b", text):
            return tier
    return None


def apply_rule_overrides(text: str, query: StructuredQuery) -> StructuredQuery:
    """Return a copy of ``query`` with keyword-triggered overrides applied."""
    normalized = (text or "").lower()
    updated = query.model_copy(deep=True)
    applied: list[str] = []

    limit = merge_limit(updated.limit, infer_limit(normalized))
    if limit != updated.limit:
        updated.limit = limit
        applied.append("limit")

    tier = detect_tier(normalized)
    if tier:
        updated.data_source = tier
        applied.append("tier")

    if _GAINERS.search(normalized):
        updated.intent = "gainers"
        _set_order(updated, "percent_change", "desc")
        _append_condition(updated, "percent_change", ">", 0)
        applied.append("gainers")

    if _LOSERS.search(normalized):
        updated.intent = "losers"
        _set_order(updated, "percent_change", "asc")
        _append_condition(updated, "percent_change", "<", 0)
        applied.append("losers")

    if _MOST_ACTIVE.search(normalized):
        updated.intent = "most_active"
        _set_order(updated, "volume", "desc")
        applied.append("most_active")

    if _SENTIMENT.search(normalized):
        updated.intent = "sentiment"
        _set_order(updated, "percent_change", "desc")
        applied.append("sentiment")

    # The "near" phrasings widen the band and take precedence over the plain ones.
    if _NEAR_WEEK_HIGH.search(normalized):
        updated.intent = "near_week_high"
        _append_condition(updated, "near_week_high", "BETWEEN", NEAR_WEEK_EXTREME_BAND)
        applied.append("near_week_high")
    elif _WEEK_HIGH.search(normalized):
        updated.intent = "week_high"
        _append_condition(updated, "near_week_high", "BETWEEN", WEEK_EXTREME_BAND)
        applied.append("week_high")

    if _NEAR_WEEK_LOW.search(normalized):
        updated.intent = "near_week_low"
        _append_condition(updated, "near_week_low", "BETWEEN", NEAR_WEEK_EXTREME_BAND)
        applied.append("near_week_low")
    elif _WEEK_LOW.search(normalized):
        updated.intent = "week_low"
        _append_condition(updated, "near_week_low", "BETWEEN", WEEK_EXTREME_BAND)
        applied.append("week_low")

    if _UNUSUAL_ACTIVITY.search(normalized):
        updated.intent = "unusual_activity"
        _set_order(updated, "volume", "desc")
        if not updated.limit:
            updated.limit = UNUSUAL_ACTIVITY_DEFAULT_LIMIT
        applied.append("unusual_activity")

    if _MIDCAP.search(normalized):
        updated.intent = "midcap"
        _append_condition(updated, "market_cap", "BETWEEN", list(MIDCAP_MARKET_CAP_RANGE))
        applied.append("midcap")

    if _LOSS_MAKING.search(normalized):
        updated.intent = "loss_making"
        _append_condition(updated, "eps", "<", 0)
        applied.append("loss_making")

    if applied:
        logger.debug("Rule overrides applied: %s", ", ".join(applied))
    return updated
