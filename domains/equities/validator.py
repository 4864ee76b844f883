"""
Field Validator - Checks a structured query against the schema registry.

Responsibility:
- Resolve field names (canonical or alias) in fields, conditions and orderBy
- Record unknown names with up to five close suggestions
- Canonicalize operators and check operand shape (BETWEEN range, IN list)
- Produce the clean query the data selector trusts

Any recorded problem, field or condition, makes the whole query invalid.
"""

import logging
import re
from typing import Any

from rapidfuzz.distance import Levenshtein

from domains.equities.config import DATA_TIERS, DEFAULT_CONFIDENCE, DEFAULT_LIMIT
from domains.equities.schema import (
    VALID_FIELDS,
    canonical_operator,
    field_type,
    is_value_plausible,
    resolve_field,
)
from shared.models import Condition, FieldSuggestion, StructuredQuery, ValidationResult

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 5
MAX_EDIT_DISTANCE = 3

_SEPARATORS = re.compile(r"[_\s\-/]")
_TIER_KEYS = {re.sub(r"\s+", "", key.lower()): key for key in DATA_TIERS}


def suggest_fields(name: Any, candidates: list[str] = VALID_FIELDS) -> list[str]:
    """Closest canonical fields to an unknown name, nearest first."""
    target = _SEPARATORS.sub("", str(name or "").lower())
    if not target:
        return []

    scored: list[tuple[int, int, str]] = []
    for position, candidate in enumerate(candidates):
        flat = _SEPARATORS.sub("", candidate)
        if target in flat or flat in target:
            scored.append((0, position, candidate))
            continue
        distance = Levenshtein.distance(target, flat, score_cutoff=MAX_EDIT_DISTANCE)
        if distance <= MAX_EDIT_DISTANCE:
            scored.append((distance, position, candidate))

    scored.sort()
    return [candidate for _, _, candidate in scored[:MAX_SUGGESTIONS]]


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace(",", "").strip())
        except ValueError:
            return None
    return None


def _resolve_tier(value: str | None) -> str | None:
    if not value:
        return None
    return _TIER_KEYS.get(re.sub(r"\s+", "", str(value).lower()))


class FieldValidator:
    """Validate and clean structured queries."""

    def validate(self, query: StructuredQuery) -> ValidationResult:
        invalid: list[str] = []
        suggestions: list[FieldSuggestion] = []
        warnings: list[str] = []

        def record_unknown(raw_name: Any) -> None:
            label = str(raw_name)
            if label in invalid:
                return
            invalid.append(label)
            close = suggest_fields(raw_name)
            if close:
                suggestions.append(FieldSuggestion(invalid=label, suggestions=close))

        fields: list[str] = []
        for raw_field in query.fields:
            canonical = resolve_field(raw_field)
            if canonical is None:
                record_unknown(raw_field)
            elif canonical not in fields:
                fields.append(canonical)

        conditions: list[Condition] = []
        for condition in query.conditions:
            cleaned = self._validate_condition(condition, invalid, record_unknown)
            if cleaned is None:
                continue
            if not is_value_plausible(cleaned.field, cleaned.value):
                warnings.append(
                    f"{cleaned.field}: value {cleaned.value!r} is outside the usual "
                    f"{field_type(cleaned.field)} range"
                )
            conditions.append(cleaned)

        order_by = None
        if query.order_by:
            order_by = resolve_field(query.order_by)
            if order_by is None:
                record_unknown(query.order_by)

        order_direction = (query.order_direction or "").strip().lower() or None
        if order_direction not in (None, "asc", "desc"):
            warnings.append(f"Unknown order direction '{query.order_direction}', using default")
            order_direction = None

        data_source = _resolve_tier(query.data_source)
        if query.data_source and data_source is None:
            warnings.append(f"Unknown data source '{query.data_source}', selecting automatically")

        limit = query.limit if isinstance(query.limit, int) and query.limit > 0 else DEFAULT_LIMIT
        confidence = query.confidence if query.confidence is not None else DEFAULT_CONFIDENCE

        clean_query = StructuredQuery(
            intent=query.intent or "filter",
            fields=fields,
            search_term=(query.search_term or "").strip() or None,
            conditions=conditions,
            order_by=order_by,
            order_direction=order_direction,
            limit=limit,
            data_source=data_source,
            confidence=confidence,
        )

        if invalid:
            logger.info("Validation failed: %s", invalid)
        return ValidationResult(
            is_valid=not invalid,
            invalid_fields=invalid,
            suggestions=suggestions,
            clean_query=clean_query,
            fields_used=len(fields) + len(conditions),
            warnings=warnings,
        )

    def _validate_condition(self, condition: Condition, invalid: list[str], record_unknown) -> Condition | None:
        canonical = resolve_field(condition.field)
        if canonical is None:
            record_unknown(condition.field)
            return None

        operator = canonical_operator(condition.operator)
        if operator is None:
            invalid.append(f"{condition.field} (invalid operator: {condition.operator})")
            return None

        value = condition.value
        if operator == "BETWEEN":
            bounds = [_as_number(item) for item in value] if isinstance(value, list) else []
            if len(bounds) != 2 or any(bound is None for bound in bounds):
                invalid.append(f"{condition.field} (invalid value for {operator})")
                return None
            value = sorted(bounds)
        elif operator == "IN":
            if not isinstance(value, list) or not value:
                invalid.append(f"{condition.field} (invalid value for {operator})")
                return None
            members = []
            for item in value:
                number = _as_number(item)
                members.append(number if number is not None else item)
            value = members
        elif operator != "LIKE":
            number = _as_number(value) if not isinstance(value, list) else None
            if number is not None:
                value = number

        return Condition(field=canonical, operator=operator, value=value, unit=condition.unit)
