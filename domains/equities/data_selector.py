"""
Data Selector — Executes a clean query against the stock dataset.

Responsibility:
- Resolve the data tier (explicit, else scope rules)
- Fetch records through ordered record sources
- Search-term short-circuit
- Filter (AND), optional AI ranking, deterministic sort, limit

Provider failures come back as SelectionResult(success=False); an empty
result after filtering is a success.
"""

import asyncio
import logging
import time
from typing import Any

from domains.equities.config import (
    DEFAULT_LIMIT,
    SEARCH_KEYS,
    SEARCH_NESTED_PATHS,
    SYMBOL_DETAIL_DELAY_SECONDS,
    TIER_SCOPE_RULES,
    is_known_tier,
)
from domains.equities.provider import (
    DataProviderError,
    OfflineLossSampleSource,
    RemoteTierSource,
    StockDataProvider,
)
from domains.equities.records import RecordResolver, get_nested, parse_numeric
from shared.models import SelectionMetadata, SelectionResult, StructuredQuery

logger = logging.getLogger(__name__)


def resolve_tier(query: StructuredQuery) -> str:
    """Data tier for a query: explicit data_source, else the first scope rule that fits."""
    if is_known_tier(query.data_source):
        return query.data_source
    limit = query.limit or DEFAULT_LIMIT
    condition_count = len(query.conditions)
    for tier, max_limit, max_conditions in TIER_SCOPE_RULES:
        if max_limit is not None and limit > max_limit:
            continue
        if max_conditions is not None and condition_count > max_conditions:
            continue
        return tier
    return TIER_SCOPE_RULES[-1][0]


def evaluate_condition(value: float | None, operator: str, target: Any) -> bool:
    """Evaluate one predicate. Unresolved values and unsupported operators are False."""
    if value is None:
        return False

    if operator == "BETWEEN":
        if not isinstance(target, list) or len(target) != 2:
            return False
        low, high = (parse_numeric(bound) for bound in target)
        if low is None or high is None:
            return False
        return min(low, high) <= value <= max(low, high)

    if operator == "IN":
        if not isinstance(target, list):
            return False
        return any(parse_numeric(member) == value for member in target)

    number = parse_numeric(target) if not isinstance(target, list) else None
    if number is None:
        return False
    if operator == ">":
        return value > number
    if operator == "<":
        return value < number
    if operator == ">=":
        return value >= number
    if operator == "<=":
        return value <= number
    if operator == "=":
        return value == number
    if operator == "!=":
        return value != number
    return False


def search_records(records: list[dict], term: str) -> list[dict]:
    """Records whose symbol or display names contain ``term`` (case-insensitive)."""
    needle = term.strip().lower()
    if not needle:
        return []
    matches = []
    for record in records:
        candidates = [record.get(key) for key in SEARCH_KEYS]
        candidates += [get_nested(record, path) for path in SEARCH_NESTED_PATHS]
        if any(isinstance(text, str) and needle in text.lower() for text in candidates):
            matches.append(record)
    return matches


class DataSelector:
    """Fetch, filter, rank and limit stock records for a clean query."""

    def __init__(
        self,
        provider: StockDataProvider | None = None,
        sources: list[Any] | None = None,
        ranker: Any = None,
        field_resolver: Any = None,
    ):
        self.provider = provider or StockDataProvider()
        self.sources = sources if sources is not None else [RemoteTierSource(self.provider), OfflineLossSampleSource()]
        self.ranker = ranker
        self.field_resolver = field_resolver

    async def select(self, query: StructuredQuery, request_id: str | None = None) -> SelectionResult:
        start = time.perf_counter()
        tier = resolve_tier(query)
        metadata = SelectionMetadata(data_source=tier)

        def elapsed_ms() -> float:
            return round((time.perf_counter() - start) * 1000, 2)

        try:
            records, offline = await self._fetch(tier, query, request_id)
        except DataProviderError as e:
            logger.error("Data fetch failed for tier %s: %s", tier, e)
            metadata.processing_time_ms = elapsed_ms()
            return SelectionResult(success=False, error=str(e), metadata=metadata)

        metadata.total_fetched = len(records)
        metadata.offline_sample = offline
        if not records:
            metadata.processing_time_ms = elapsed_ms()
            return SelectionResult(success=False, error="No stock data available", metadata=metadata)

        limit = query.limit or DEFAULT_LIMIT
        pool = records
        if query.search_term:
            matches = search_records(records, query.search_term)
            if matches:
                metadata.search_matched = True
                pool = matches
                if not query.conditions:
                    results = matches[:limit]
                    metadata.after_filtering = len(matches)
                    metadata.returned = len(results)
                    metadata.processing_time_ms = elapsed_ms()
                    return SelectionResult(success=True, results=results, metadata=metadata)
            else:
                logger.info("No records match search term '%s'; filtering the full tier", query.search_term)

        resolver = RecordResolver()
        if self.field_resolver is not None and query.conditions:
            fields = list(dict.fromkeys(condition.field for condition in query.conditions))
            await self.field_resolver.fill_missing(pool, fields, resolver, request_id=request_id)

        filtered = [
            record
            for record in pool
            if all(
                evaluate_condition(resolver.resolve(record, condition.field), condition.operator, condition.value)
                for condition in query.conditions
            )
        ]
        metadata.after_filtering = len(filtered)

        ordered = None
        if self.ranker is not None and filtered:
            ordered = await self.ranker.rank(query, filtered, resolver, request_id=request_id)
            metadata.ai_ranked = ordered is not None
        if ordered is None:
            ordered = filtered
            if query.order_by:
                ordered = sorted(
                    filtered,
                    key=lambda record: resolver.resolve(record, query.order_by) or 0.0,
                    reverse=query.order_direction != "asc",
                )

        results = ordered[:limit]
        metadata.returned = len(results)
        metadata.processing_time_ms = elapsed_ms()
        logger.info(
            "Selection on %s: fetched=%d filtered=%d returned=%d",
            tier,
            metadata.total_fetched,
            metadata.after_filtering,
            metadata.returned,
        )
        return SelectionResult(success=True, results=results, metadata=metadata)

    async def select_batch(self, queries: list[StructuredQuery], request_id: str | None = None) -> list[SelectionResult]:
        """Run several selections one after another."""
        results = []
        for query in queries:
            results.append(await self.select(query, request_id=request_id))
        return results

    async def get_stock_details(self, symbols: list[str]) -> list[dict]:
        """Detail documents for ``symbols``; failed lookups are skipped."""
        details = []
        for symbol in symbols:
            try:
                details.append(await self.provider.fetch_symbol(symbol))
            except DataProviderError as e:
                logger.warning("Detail fetch failed for %s: %s", symbol, e)
            await asyncio.sleep(SYMBOL_DETAIL_DELAY_SECONDS)
        return details

    async def _fetch(self, tier: str, query: StructuredQuery, request_id: str | None) -> tuple[list[dict], bool]:
        """Walk the record sources until one yields records."""
        last_error: DataProviderError | None = None
        for source in self.sources:
            if not source.applies(query):
                continue
            try:
                records = await source.fetch(tier, query, request_id=request_id)
            except DataProviderError as e:
                last_error = e
                logger.warning("Record source %s failed: %s", source.name, e)
                continue
            if records:
                return records, bool(getattr(source, "offline", False))
        if last_error is not None:
            raise last_error
        return [], False

    async def close(self) -> None:
        await self.provider.close()
