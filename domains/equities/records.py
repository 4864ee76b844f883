"""
Record Resolver - Typed access to heterogeneous provider records.

Provider records name the same quantity many ways (lastPrice, ltp, price...)
and sometimes nest it (fundamentals.pe_ratio). RecordResolver hides that:
resolve(record, field) returns a float or None, memoized per record and
field for the lifetime of the resolver (one selection request).
"""

import logging
import math
import re
from typing import Any

from domains.equities.schema import PROVIDER_FIELD_ALIASES

logger = logging.getLogger(__name__)

NESTED_PREFIXES = ("fundamentals", "metrics", "data")

_NUMERIC_NOISE = re.compile(r"[,₹$%]")
_LEADING_NUMBER = re.compile(r"^[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_MISSING = object()


def parse_numeric(value: Any) -> float | None:
    """Coerce a provider value to float. Strings lose ``, ₹ $ %`` first."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = _LEADING_NUMBER.match(_NUMERIC_NOISE.sub("", value).strip())
        if not match:
            return None
        number = float(match.group(0))
    else:
        return None
    return None if math.isnan(number) else number


def get_nested(record: Any, path: str) -> Any:
    """Walk a dotted path through nested dicts; None when any hop is missing."""
    current = record
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return None
    return current


class RecordResolver:
    """Resolve canonical field values from provider records."""

    def __init__(self, aliases: dict[str, list[str]] | None = None):
        self.aliases = aliases if aliases is not None else PROVIDER_FIELD_ALIASES
        # id(record) → (record, {field: value}); the record is held so its id stays unique.
        self._memo: dict[int, tuple[dict, dict[str, float | None]]] = {}

    def resolve(self, record: dict, field: str) -> float | None:
        cache = self._cache_for(record)
        cached = cache.get(field, _MISSING)
        if cached is not _MISSING:
            return cached
        value = parse_numeric(self.lookup(record, field))
        cache[field] = value
        return value

    def lookup(self, record: dict, field: str) -> Any:
        """Raw (uncoerced) value for a canonical field, or None."""
        if not isinstance(record, dict):
            return None
        if record.get(field) is not None:
            return record[field]

        lower_field = field.lower()
        if record.get(lower_field) is not None:
            return record[lower_field]

        for variant in self.aliases.get(field, []):
            for key in (variant, variant.lower()):
                if record.get(key) is not None:
                    return record[key]

        for prefix in NESTED_PREFIXES:
            value = get_nested(record, f"{prefix}.{field}")
            if value is not None:
                return value
        return None

    def fill(self, record: dict, field: str, value: Any) -> None:
        """Store an externally resolved value (e.g. model-assisted) for a record."""
        self._cache_for(record)[field] = parse_numeric(value)

    def is_resolved(self, record: dict, field: str) -> bool:
        return self.resolve(record, field) is not None

    def _cache_for(self, record: dict) -> dict[str, float | None]:
        entry = self._memo.get(id(record))
        if entry is None or entry[0] is not record:
            entry = (record, {})
            self._memo[id(record)] = entry
        return entry[1]
