import asyncio

from intent.adapter import IntentAdapter, structured_query_from_payload
from intent.cache import ExtractionCache, InFlightRegistry
from intent.sampler import FixedSampler
from models.errors import ModelRateLimitError, ModelResponseError, ModelUnavailableError

PE_QUERY = "stocks with pe ratio less than 15"
PE_PAYLOAD = {
    "intent": "filter",
    "fields": ["pe_ratio"],
    "conditions": [{"field": "pe_ratio", "operator": "<", "value": 15}],
    "confidence": 0.95,
}


class DummyModel:
    """Returns queued responses in order; the last one repeats."""

    def __init__(self, label: str, *responses, delay: float = 0.0):
        self.label = label
        self.responses = list(responses)
        self.delay = delay
        self.policies = []

    async def generate(self, messages, policy, request_id=None):
        self.policies.append(policy)
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def calls(self) -> int:
        return len(self.policies)


def _adapter(*models, **kwargs) -> IntentAdapter:
    kwargs.setdefault("sampler", FixedSampler(True))
    kwargs.setdefault("cache", ExtractionCache(ttl_seconds=300, capacity=10))
    kwargs.setdefault("hybrid_threshold", 0.6)
    kwargs.setdefault("heuristic_fallback", True)
    return IntentAdapter(models=list(models), **kwargs)


def test_model_extraction_is_cached():
    async def _run():
        model = DummyModel("primary", PE_PAYLOAD)
        adapter = _adapter(model)

        first = await adapter.extract(PE_QUERY)
        second = await adapter.extract(PE_QUERY)

        assert model.calls == 1
        assert second is first
        assert first.mode == "ai"
        assert first.used_ai
        assert first.source == "primary"
        assert first.confidence == 0.95
        assert first.structured_query.conditions[0].field == "pe_ratio"

    asyncio.run(_run())


def test_skip_cache_bypasses_read_and_write():
    async def _run():
        model = DummyModel("primary", PE_PAYLOAD)
        adapter = _adapter(model)

        await adapter.extract(PE_QUERY, skip_cache=True)
        await adapter.extract(PE_QUERY, skip_cache=True)

        assert model.calls == 2
        assert len(adapter.cache) == 0

    asyncio.run(_run())


def test_concurrent_identical_queries_share_one_call():
    async def _run():
        model = DummyModel("primary", PE_PAYLOAD, delay=0.05)
        adapter = _adapter(model)

        results = await asyncio.gather(*(adapter.extract(PE_QUERY) for _ in range(3)))

        assert model.calls == 1
        assert all(result is results[0] for result in results)
        assert PE_QUERY not in adapter.inflight

    asyncio.run(_run())


def test_rate_limited_primary_falls_through_to_secondary():
    async def _run():
        primary = DummyModel("primary", ModelRateLimitError("rate-limited (429)", status_code=429))
        secondary = DummyModel("secondary", PE_PAYLOAD)
        adapter = _adapter(primary, secondary)

        result = await adapter.extract(PE_QUERY)

        assert primary.calls == 1
        assert secondary.calls == 1
        assert result.source == "secondary"
        assert result.mode == "ai"

    asyncio.run(_run())


def test_unparseable_output_is_retried_with_smaller_budget():
    async def _run():
        model = DummyModel("primary", ModelResponseError("Invalid JSON"), PE_PAYLOAD)
        adapter = _adapter(model)

        result = await adapter.extract(PE_QUERY)

        assert [policy.max_output_tokens for policy in model.policies] == [1024, 512]
        assert result.mode == "ai"

    asyncio.run(_run())


def test_second_parse_failure_moves_to_next_model():
    async def _run():
        primary = DummyModel("primary", ModelResponseError("Invalid JSON"))
        secondary = DummyModel("secondary", PE_PAYLOAD)
        adapter = _adapter(primary, secondary)

        result = await adapter.extract(PE_QUERY)

        assert primary.calls == 2
        assert result.source == "secondary"

    asyncio.run(_run())


def test_low_confidence_is_blended_with_keywords():
    async def _run():
        text = "stocks with pe ratio less than 15 and market cap greater than 5000"
        payload = dict(PE_PAYLOAD, confidence=0.4)
        adapter = _adapter(DummyModel("primary", payload))

        result = await adapter.extract(text)

        query = result.structured_query
        assert result.mode == "hybrid"
        assert result.used_ai
        assert query.fields == ["pe_ratio", "market_cap"]
        assert len(query.conditions) == 3
        assert abs(result.confidence - 0.45) < 1e-9

    asyncio.run(_run())


def test_missing_confidence_uses_default():
    async def _run():
        payload = {key: value for key, value in PE_PAYLOAD.items() if key != "confidence"}
        adapter = _adapter(DummyModel("primary", payload))

        result = await adapter.extract(PE_QUERY)

        assert result.mode == "ai"
        assert result.confidence == 0.8

    asyncio.run(_run())


def test_sampled_out_requests_skip_models():
    async def _run():
        model = DummyModel("primary", PE_PAYLOAD)
        adapter = _adapter(model, sampler=FixedSampler(False))

        result = await adapter.extract(PE_QUERY)

        assert model.calls == 0
        assert result.mode == "heuristic"
        assert not result.used_ai
        assert result.fallback_reason == "sampled_out"
        assert result.structured_query.conditions[0].value == 15.0

    asyncio.run(_run())


def test_all_models_failing_uses_keyword_extraction():
    async def _run():
        adapter = _adapter(
            DummyModel("primary", ModelRateLimitError("429")),
            DummyModel("secondary", ModelUnavailableError("timeout")),
        )

        result = await adapter.extract(PE_QUERY)

        assert result.error is None
        assert result.mode == "heuristic"
        assert "primary" in result.fallback_reason
        assert "secondary" in result.fallback_reason
        assert result.structured_query.fields == ["pe_ratio"]

    asyncio.run(_run())


def test_all_models_failing_without_fallback_is_an_error():
    async def _run():
        adapter = _adapter(DummyModel("primary", ModelUnavailableError("timeout")), heuristic_fallback=False)

        result = await adapter.extract(PE_QUERY)

        assert result.structured_query is None
        assert result.error.startswith("All models failed")
        assert len(adapter.cache) == 0

    asyncio.run(_run())


def test_scalar_conditions_from_model_do_not_break_extraction():
    async def _run():
        primary = DummyModel("primary", {"intent": "filter", "fields": ["pe_ratio"], "conditions": 15, "confidence": 0.9})
        secondary = DummyModel("secondary", PE_PAYLOAD)
        adapter = _adapter(primary, secondary)

        result = await adapter.extract(PE_QUERY)

        assert result.error is None
        assert result.source == "primary"
        assert result.structured_query.fields == ["pe_ratio"]
        assert result.structured_query.conditions == []
        assert secondary.calls == 0

    asyncio.run(_run())


def test_structured_query_from_payload_accepts_aliases_and_drops_noise():
    query = structured_query_from_payload(
        {
            "structuredQuery": {
                "intent": "filter",
                "fields": ["pe_ratio", {"bad": 1}],
                "conditions": [
                    {"field": "pe_ratio", "operator": "<", "value": 15},
                    {"field": "beta"},
                    "garbage",
                ],
                "orderBy": "pe_ratio",
                "orderDirection": "asc",
                "limit": "10",
                "dataSource": "nifty50",
                "confidence": 1.7,
            }
        }
    )

    assert query.fields == ["pe_ratio"]
    assert len(query.conditions) == 1
    assert query.order_by == "pe_ratio"
    assert query.order_direction == "asc"
    assert query.limit == 10
    assert query.data_source == "nifty50"
    assert query.confidence == 1.0


def test_cache_expires_and_evicts_oldest():
    now = [0.0]
    cache = ExtractionCache(ttl_seconds=10, capacity=2, clock=lambda: now[0])
    sentinel = object()

    cache.set("a", sentinel)
    cache.set("b", sentinel)
    cache.set("c", sentinel)
    assert "a" not in cache
    assert len(cache) == 2

    now[0] = 11.0
    assert cache.get("b") is None
    assert cache.purge_expired() == 1
    assert len(cache) == 0


def test_cache_purges_every_expired_entry_when_over_capacity():
    now = [0.0]
    cache = ExtractionCache(ttl_seconds=10, capacity=3, clock=lambda: now[0])
    sentinel = object()

    cache.set("a", sentinel)
    now[0] = 1.0
    cache.set("b", sentinel)
    now[0] = 8.0
    cache.set("c", sentinel)
    now[0] = 12.0
    cache.set("d", sentinel)

    assert len(cache) == 2
    assert "c" in cache
    assert "d" in cache


def test_inflight_registry_shares_task_and_releases_key():
    async def _run():
        registry = InFlightRegistry()
        calls = []

        async def work():
            calls.append(1)
            await asyncio.sleep(0.01)
            return "done"

        results = await asyncio.gather(registry.run("k", work), registry.run("k", work))

        assert results == ["done", "done"]
        assert len(calls) == 1
        assert len(registry) == 0

    asyncio.run(_run())
