import asyncio

import httpx

import domains.equities.data_selector as data_selector_module
from domains.equities.data_selector import DataSelector, evaluate_condition, resolve_tier, search_records
from domains.equities.provider import DataProviderError, StockDataProvider, unwrap_records
from shared.models import Condition, StructuredQuery


class DummyClient:
    def __init__(self, payload=None, status_code: int = 200, exc: Exception | None = None, by_path=None):
        self.payload = payload
        self.status_code = status_code
        self.exc = exc
        self.by_path = by_path or {}
        self.calls = []

    async def get(self, path, headers=None, timeout=None):
        self.calls.append({"path": path, "headers": headers, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        status_code, payload = self.by_path.get(path, (self.status_code, self.payload))
        return httpx.Response(status_code, json=payload, request=httpx.Request("GET", "https://stocks.test/api"))

    async def aclose(self):
        return None


def _selector(payload=None, **kwargs):
    client = DummyClient(
        payload,
        status_code=kwargs.pop("status_code", 200),
        exc=kwargs.pop("exc", None),
        by_path=kwargs.pop("by_path", None),
    )
    provider = StockDataProvider(
        base_url="https://stocks.test",
        api_key="test-key",
        api_host="stocks.test",
        timeout_seconds=5,
        client=client,
    )
    return DataSelector(provider=provider, **kwargs), client


def _symbols(result) -> list[str]:
    return [record["symbol"] for record in result.results]


PRICED = [
    {"symbol": "AAA", "lastPrice": 100},
    {"symbol": "BBB", "lastPrice": "500.00"},
    {"symbol": "CCC", "lastPrice": "1,500"},
]


def test_price_filter_keeps_matching_records():
    async def _run():
        selector, client = _selector(PRICED)
        query = StructuredQuery(
            conditions=[Condition(field="current_price", operator="<", value=1000)],
            limit=50,
        )

        result = await selector.select(query)

        assert result.success
        assert _symbols(result) == ["AAA", "BBB"]
        assert result.metadata.total_fetched == 3
        assert result.metadata.after_filtering == 2
        assert result.metadata.data_source == "nifty100"
        assert client.calls[0]["path"] == "/api/index/NIFTY 100"
        assert client.calls[0]["headers"] == {"x-rapidapi-key": "test-key", "x-rapidapi-host": "stocks.test"}

    asyncio.run(_run())


def test_between_is_inclusive_on_both_bounds():
    async def _run():
        records = [{"symbol": f"S{pe}", "pe": pe} for pe in (10, 15, 20, 25)]
        selector, _ = _selector({"data": records})
        query = StructuredQuery(conditions=[Condition(field="pe_ratio", operator="BETWEEN", value=[10, 20])])

        result = await selector.select(query)

        assert _symbols(result) == ["S10", "S15", "S20"]

    asyncio.run(_run())


def test_sort_and_limit():
    async def _run():
        records = [
            {"symbol": "A", "pChange": 1.5},
            {"symbol": "B", "pChange": -2},
            {"symbol": "C", "pChange": 3.2},
            {"symbol": "D", "pChange": 0.4},
            {"symbol": "E", "pChange": 2.0},
        ]
        selector, _ = _selector({"stocks": records})

        desc = await selector.select(StructuredQuery(orderBy="percent_change", limit=3))
        asc = await selector.select(StructuredQuery(orderBy="percent_change", orderDirection="asc", limit=3))

        assert _symbols(desc) == ["C", "E", "A"]
        assert desc.metadata.after_filtering == 5
        assert desc.metadata.returned == 3
        assert desc.metadata.data_source == "nifty50"
        assert _symbols(asc) == ["B", "D", "A"]

    asyncio.run(_run())


def test_records_missing_a_condition_field_are_excluded():
    async def _run():
        records = [{"symbol": "A", "fundamentals": {"pe_ratio": 12}}, {"symbol": "B"}]
        selector, _ = _selector(records)
        query = StructuredQuery(conditions=[Condition(field="pe_ratio", operator="<", value=15)])

        result = await selector.select(query)

        assert result.success
        assert _symbols(result) == ["A"]

    asyncio.run(_run())


def test_empty_filter_result_is_success():
    async def _run():
        selector, _ = _selector(PRICED)
        query = StructuredQuery(conditions=[Condition(field="current_price", operator=">", value=10000)])

        result = await selector.select(query)

        assert result.success
        assert result.results == []

    asyncio.run(_run())


def test_search_term_short_circuits_without_conditions():
    async def _run():
        records = [
            {"symbol": "INFY", "meta": {"companyName": "Infosys Limited"}},
            {"symbol": "TCS", "meta": {"companyName": "Tata Consultancy Services Limited"}},
        ]
        selector, _ = _selector(records)

        found = await selector.select(StructuredQuery(search_term="infosys"))
        missing = await selector.select(StructuredQuery(search_term="wipro"))

        assert _symbols(found) == ["INFY"]
        assert found.metadata.search_matched
        assert _symbols(missing) == ["INFY", "TCS"]
        assert not missing.metadata.search_matched

    asyncio.run(_run())


def test_unrecognized_shape_is_a_failure():
    async def _run():
        selector, _ = _selector({"foo": 1})

        result = await selector.select(StructuredQuery())

        assert not result.success
        assert "Unrecognized response shape" in result.error

    asyncio.run(_run())


def test_transport_and_http_errors_are_failures():
    async def _run():
        unreachable, _ = _selector(exc=httpx.ConnectError("connection refused"))
        failing, _ = _selector(status_code=500, payload={"message": "boom"})

        first = await unreachable.select(StructuredQuery())
        second = await failing.select(StructuredQuery())

        assert not first.success
        assert "unreachable" in first.error
        assert not second.success
        assert second.error == "Data provider error: 500"

    asyncio.run(_run())


def test_empty_fetch_is_a_failure():
    async def _run():
        selector, _ = _selector([])

        result = await selector.select(StructuredQuery())

        assert not result.success
        assert result.error == "No stock data available"

    asyncio.run(_run())


def test_loss_screen_falls_back_to_offline_sample():
    async def _run():
        selector, _ = _selector(exc=httpx.ReadTimeout("timed out"))
        query = StructuredQuery(conditions=[Condition(field="eps", operator="<", value=0)])

        result = await selector.select(query)

        assert result.success
        assert result.metadata.offline_sample
        assert result.results
        assert all(record["eps"] < 0 for record in result.results)

    asyncio.run(_run())


def test_loss_screen_prefers_live_records():
    async def _run():
        selector, _ = _selector([{"symbol": "LIVE", "eps": -1.2}, {"symbol": "OK", "eps": 3.0}])
        query = StructuredQuery(conditions=[Condition(field="eps", operator="<", value=0)])

        result = await selector.select(query)

        assert _symbols(result) == ["LIVE"]
        assert not result.metadata.offline_sample

    asyncio.run(_run())


def test_ranker_order_is_used_when_accepted():
    class DummyRanker:
        def __init__(self, accept: bool):
            self.accept = accept

        async def rank(self, query, records, resolver, request_id=None):
            return list(reversed(records)) if self.accept else None

    async def _run():
        accepted, _ = _selector(PRICED, ranker=DummyRanker(accept=True))
        rejected, _ = _selector(PRICED, ranker=DummyRanker(accept=False))
        query = StructuredQuery(orderBy="current_price", orderDirection="desc")

        ranked = await accepted.select(query)
        sorted_result = await rejected.select(query)

        assert _symbols(ranked) == ["CCC", "BBB", "AAA"]
        assert ranked.metadata.ai_ranked
        assert _symbols(sorted_result) == ["CCC", "BBB", "AAA"]
        assert not sorted_result.metadata.ai_ranked

    asyncio.run(_run())


def test_field_resolver_fills_missing_values():
    class DummyFieldResolver:
        async def fill_missing(self, records, fields, resolver, request_id=None):
            for record in records:
                if record["symbol"] == "B":
                    resolver.fill(record, "pe_ratio", "9.5")
            return 1

    async def _run():
        records = [{"symbol": "A", "pe": 30}, {"symbol": "B"}]
        selector, _ = _selector(records, field_resolver=DummyFieldResolver())
        query = StructuredQuery(conditions=[Condition(field="pe_ratio", operator="<", value=15)])

        result = await selector.select(query)

        assert _symbols(result) == ["B"]

    asyncio.run(_run())


def test_get_stock_details_skips_failures(monkeypatch):
    monkeypatch.setattr(data_selector_module, "SYMBOL_DETAIL_DELAY_SECONDS", 0)

    async def _run():
        selector, client = _selector(
            by_path={
                "/api/symbol/INFY": (200, {"symbol": "INFY"}),
                "/api/symbol/BAD": (404, {"message": "not found"}),
                "/api/symbol/TCS": (200, {"symbol": "TCS"}),
            }
        )

        details = await selector.get_stock_details(["INFY", "BAD", "TCS"])

        assert [detail["symbol"] for detail in details] == ["INFY", "TCS"]
        assert len(client.calls) == 3

    asyncio.run(_run())


def test_resolve_tier_scope_rules():
    assert resolve_tier(StructuredQuery(limit=10)) == "nifty50"
    assert resolve_tier(StructuredQuery()) == "nifty100"
    assert resolve_tier(StructuredQuery(limit=10, conditions=[Condition(field="beta", operator="<", value=1)])) == "nifty100"
    assert resolve_tier(StructuredQuery(limit=500)) == "nifty500"
    assert resolve_tier(StructuredQuery(dataSource="allSymbols", limit=10)) == "allSymbols"


def test_evaluate_condition_operators():
    assert evaluate_condition(5.0, "BETWEEN", [10, 1])
    assert evaluate_condition(5.0, "IN", [5, "6"])
    assert not evaluate_condition(5.0, "LIKE", "5")
    assert not evaluate_condition(None, ">", 0)
    assert evaluate_condition(5.0, "!=", "4")
    assert not evaluate_condition(5.0, ">", "n/a")


def test_unwrap_records_shapes():
    assert unwrap_records([{"a": 1}, "noise"]) == [{"a": 1}]
    assert unwrap_records({"data": [{"a": 1}]}) == [{"a": 1}]
    assert unwrap_records({"stocks": [{"a": 2}]}) == [{"a": 2}]
    try:
        unwrap_records("nope")
    except DataProviderError as e:
        assert "Unrecognized" in str(e)
    else:
        raise AssertionError("expected DataProviderError")


def test_search_records_matches_nested_names():
    records = [{"symbol": "RELIANCE", "meta": {"companyName": "Reliance Industries"}}, {"symbol": "ITC"}]

    assert search_records(records, "industries") == [records[0]]
    assert search_records(records, "  ") == []
