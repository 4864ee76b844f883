"""
Deterministic keyword extractor.

Builds a low-confidence StructuredQuery from normalized text without any
model call: field phrases, "<field> <comparator> <number>" conditions, a bare
price bound ("under 500"), ordering words and the inferred limit. Used when
sampling skips the model, when every model fails, and for hybrid blending.
"""

import logging
import re

from domains.equities.normalizer import infer_limit
from domains.equities.schema import FIELD_ALIASES, FIELD_PHRASES, VALID_FIELDS
from shared.models import Condition, StructuredQuery

logger = logging.getLogger(__name__)

CONDITION_CONFIDENCE = 0.5
KEYWORD_CONFIDENCE = 0.3

# Longer phrases first so "less than or equal" is not read as "less than".
COMPARATORS = [
    ("greater than or equal to", ">="),
    ("greater than or equal", ">="),
    ("less than or equal to", "<="),
    ("less than or equal", "<="),
    ("not equal to", "!="),
    ("not equal", "!="),
    ("greater than", ">"),
    ("more than", ">"),
    ("higher than", ">"),
    ("less than", "<"),
    ("lower than", "<"),
    ("at least", ">="),
    ("at most", "<="),
    ("equal to", "="),
    ("between", "BETWEEN"),
    ("equals", "="),
    ("above", ">"),
    ("over", ">"),
    ("below", "<"),
    ("under", "<"),
]
_COMPARATOR_LOOKUP = dict(COMPARATORS)
_COMPARATOR_ALTERNATION = "|".join(re.escape(phrase) for phrase, _ in COMPARATORS)
_NUMBER = r"-?\d+(?:\.\d+)?"

_CONDITION_TAIL = re.compile(
    rf"^\s+(?:(?:is|of|at|with|being)\s+)?(?P<op>{_COMPARATOR_ALTERNATION})\s+"
    rf"(?:rs\.?\s*|₹\s*|inr\s*)?(?P<low>{_NUMBER})\s*(?:%|percent)?"
    rf"(?:\s+(?:and|to)\s+(?P<high>{_NUMBER}))?"
)
_BARE_PRICE = re.compile(
    rf"\b(?P<op>under|below|less than|above|over|greater than|more than)\s+(?:rs\.?\s*|₹\s*|inr\s*)(?P<low>{_NUMBER})"
    rf"|\b(?:priced|trading|price)\s+(?P<op2>under|below|less than|above|over|greater than|more than)\s+(?P<low2>{_NUMBER})"
    rf"|\bstocks\s+(?P<op3>under|below|above|over)\s+(?P<low3>{_NUMBER})"
)
_DESCENDING_WORDS = re.compile(r"\b(?:highest|largest|biggest|top|best|high|most)\b")
_ASCENDING_WORDS = re.compile(r"\b(?:lowest|smallest|cheapest|least|low)\b")


def _build_phrases() -> list[tuple[str, str]]:
    phrases = dict(FIELD_PHRASES)
    for alias, canonical in FIELD_ALIASES.items():
        if "/" not in alias:
            phrases.setdefault(alias.replace("_", " "), canonical)
    for field in VALID_FIELDS:
        phrases.setdefault(field.replace("_", " "), field)
    return sorted(phrases.items(), key=lambda item: -len(item[0]))


FIELD_PATTERNS = [(re.compile(rf"\b{re.escape(phrase)}\b"), field) for phrase, field in _build_phrases()]


class HeuristicExtractor:
    """Keyword-based StructuredQuery extraction."""

    def extract(self, text: str) -> StructuredQuery:
        normalized = (text or "").lower().strip()
        mentions = self._find_fields(normalized)

        fields: list[str] = []
        conditions: list[Condition] = []
        for start, end, field in mentions:
            if field not in fields:
                fields.append(field)
            condition = self._condition_after(normalized[end:], field)
            if condition is not None:
                conditions.append(condition)

        if not conditions:
            price_condition = self._bare_price_condition(normalized)
            if price_condition is not None:
                conditions.append(price_condition)
                if "current_price" not in fields:
                    fields.append("current_price")

        order_by = None
        order_direction = None
        if _ASCENDING_WORDS.search(normalized) and (fields or "cheapest" in normalized):
            order_by = fields[0] if fields else "current_price"
            order_direction = "asc"
        elif _DESCENDING_WORDS.search(normalized) and fields:
            order_by = fields[0]
            order_direction = "desc"

        confidence = CONDITION_CONFIDENCE if conditions else KEYWORD_CONFIDENCE
        query = StructuredQuery(
            intent="filter" if conditions else "search",
            fields=fields,
            conditions=conditions,
            order_by=order_by,
            order_direction=order_direction,
            limit=infer_limit(normalized),
            confidence=confidence,
        )
        logger.debug("Heuristic extraction: fields=%s conditions=%d", fields, len(conditions))
        return query

    def _find_fields(self, text: str) -> list[tuple[int, int, str]]:
        """Non-overlapping field mentions in text order, longest phrase winning."""
        taken: list[tuple[int, int]] = []
        mentions: list[tuple[int, int, str]] = []
        for pattern, field in FIELD_PATTERNS:
            for match in pattern.finditer(text):
                start, end = match.span()
                if any(start < t_end and end > t_start for t_start, t_end in taken):
                    continue
                taken.append((start, end))
                mentions.append((start, end, field))
        return sorted(mentions)

    def _condition_after(self, tail: str, field: str) -> Condition | None:
        match = _CONDITION_TAIL.match(tail)
        if not match:
            return None
        operator = _COMPARATOR_LOOKUP[match.group("op")]
        low = float(match.group("low"))
        if operator == "BETWEEN":
            if match.group("high") is None:
                return None
            return Condition(field=field, operator=operator, value=sorted([low, float(match.group("high"))]))
        return Condition(field=field, operator=operator, value=low)

    def _bare_price_condition(self, text: str) -> Condition | None:
        match = _BARE_PRICE.search(text)
        if not match:
            return None
        phrase = match.group("op") or match.group("op2") or match.group("op3")
        value = match.group("low") or match.group("low2") or match.group("low3")
        return Condition(field="current_price", operator=_COMPARATOR_LOOKUP[phrase], value=float(value))
