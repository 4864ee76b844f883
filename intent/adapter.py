"""
Intent Adapter — Natural-language query → StructuredQuery.

Responsibility:
- Cache lookup and in-flight deduplication keyed by normalized text
- Sampling between model extraction and the deterministic extractor
- Ordered model chain (primary → secondary); 429 / transport failures advance it
- One parse retry per model with a smaller output budget
- Hybrid blend with the deterministic extractor on low confidence
- Deterministic fallback when every model fails

Business failures come back as ExtractionResult(error=...), never as exceptions.
"""

import logging
import os
from typing import Any

from pydantic import ValidationError

from domains.equities.config import DEFAULT_CONFIDENCE, get_llm_field_guidance
from domains.equities.schema import VALID_FIELDS
from intent.cache import ExtractionCache, InFlightRegistry
from intent.heuristics import HeuristicExtractor
from intent.sampler import RandomSampler
from models.errors import ModelError, ModelResponseError
from observability.logger import Observability
from shared.models import ExtractionResult, ModelPolicy, StructuredQuery

logger = logging.getLogger(__name__)

MIN_RETRY_OUTPUT_TOKENS = 128


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def build_system_prompt(fields: list[str] = VALID_FIELDS) -> str:
    """System instruction for structured query extraction."""
    return f"""You are a stock market query preprocessor. Convert natural language queries into structured database queries.

{get_llm_field_guidance(fields)}

Your task:
1. Extract the user's intent (filter, search, analyze, compare)
2. Identify relevant database fields
3. Extract comparison operators (>, <, >=, <=, =, !=, BETWEEN, IN)
4. Extract values or ranges as plain numbers (1000 crores = 10000000000)
5. Return structured JSON

Output format:
{{
  "intent": "filter|search|analyze|compare",
  "fields": ["field_name"],
  "search_term": "company or symbol text, only when the user names one",
  "conditions": [
    {{"field": "field_name", "operator": ">|<|>=|<=|=|!=|BETWEEN|IN", "value": number or [min, max], "unit": "%" or "Cr" etc}}
  ],
  "orderBy": "field_name",
  "orderDirection": "asc|desc",
  "limit": number,
  "dataSource": "nifty50|nifty100|nifty500|allSymbols",
  "confidence": 0.0-1.0
}}

Examples:

User: "show me stocks with pe ratio less than 15"
Response: {{"intent": "filter", "fields": ["pe_ratio"], "conditions": [{{"field": "pe_ratio", "operator": "<", "value": 15}}], "confidence": 0.95}}

User: "find high dividend paying companies"
Response: {{"intent": "filter", "fields": ["dividend_yield"], "conditions": [{{"field": "dividend_yield", "operator": ">", "value": 3, "unit": "%"}}], "orderBy": "dividend_yield", "orderDirection": "desc", "confidence": 0.85}}

User: "top 10 gainers in nifty 50"
Response: {{"intent": "gainers", "fields": ["percent_change"], "conditions": [{{"field": "percent_change", "operator": ">", "value": 0}}], "orderBy": "percent_change", "orderDirection": "desc", "limit": 10, "dataSource": "nifty50", "confidence": 0.9}}

Use ONLY the field names listed above. Return ONLY valid JSON. No markdown, no explanation."""


def _coerce_int(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _coerce_confidence(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return None


def structured_query_from_payload(payload: dict[str, Any]) -> StructuredQuery:
    """Build a StructuredQuery from a model's JSON, dropping malformed parts."""
    body = payload.get("structuredQuery") if isinstance(payload.get("structuredQuery"), dict) else payload

    raw_conditions = body.get("conditions") or []
    if not isinstance(raw_conditions, list):
        logger.debug("Ignoring non-list conditions: %r", raw_conditions)
        raw_conditions = []

    conditions = []
    for raw in raw_conditions:
        if not isinstance(raw, dict) or not raw.get("field") or not raw.get("operator"):
            logger.debug("Dropping malformed condition: %s", raw)
            continue
        if raw.get("value") is None or isinstance(raw.get("value"), dict):
            logger.debug("Dropping condition without usable value: %s", raw)
            continue
        conditions.append(
            {
                "field": str(raw["field"]),
                "operator": str(raw["operator"]),
                "value": raw["value"],
                "unit": str(raw["unit"]) if raw.get("unit") is not None else None,
            }
        )

    raw_fields = body.get("fields") or []
    fields = [str(field) for field in raw_fields if isinstance(field, (str, int, float))] if isinstance(raw_fields, list) else []

    def text_or_none(*keys: str) -> str | None:
        for key in keys:
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None

    return StructuredQuery(
        intent=text_or_none("intent") or "filter",
        fields=fields,
        search_term=text_or_none("search_term", "searchTerm"),
        conditions=conditions,
        order_by=text_or_none("orderBy", "order_by"),
        order_direction=text_or_none("orderDirection", "order_direction"),
        limit=_coerce_int(body.get("limit")),
        data_source=text_or_none("dataSource", "data_source"),
        confidence=_coerce_confidence(body.get("confidence")),
    )


class IntentAdapter:
    """Extract StructuredQuery objects from normalized text."""

    def __init__(
        self,
        models: list[Any],
        cache: ExtractionCache | None = None,
        inflight: InFlightRegistry | None = None,
        sampler: Any = None,
        heuristic: HeuristicExtractor | None = None,
        hybrid_threshold: float | None = None,
        heuristic_fallback: bool | None = None,
        policy: ModelPolicy | None = None,
    ):
        self.models = list(models)
        self.cache = cache or ExtractionCache()
        self.inflight = inflight or InFlightRegistry()
        self.sampler = sampler or RandomSampler()
        self.heuristic = heuristic or HeuristicExtractor()

        if hybrid_threshold is None:
            hybrid_threshold = float(os.getenv("INTENT_HYBRID_THRESHOLD", "0.6"))
        self.hybrid_threshold = hybrid_threshold
        if heuristic_fallback is None:
            heuristic_fallback = _env_flag("INTENT_HEURISTIC_FALLBACK", "true")
        self.heuristic_fallback = heuristic_fallback

        intent_timeout_seconds = float(os.getenv("INTENT_MODEL_TIMEOUT_SECONDS", "20"))
        self.policy = policy or ModelPolicy(
            temperature=0.1,
            timeout_seconds=max(1.0, intent_timeout_seconds),
            max_retries=1,
            json_mode=True,
            max_output_tokens=1024,
        )
        self.system_prompt = build_system_prompt()

    async def extract(self, text: str, skip_cache: bool = False, request_id: str | None = None) -> ExtractionResult:
        """Extract a structured query. ``skip_cache`` bypasses both cache read and write."""
        key = (text or "").strip()
        if skip_cache:
            return await self._resolve(key, request_id, store=False)

        cached = self.cache.get(key)
        if cached is not None:
            logger.info("Intent cache hit: %s", key)
            return cached
        return await self.inflight.run(key, lambda: self._resolve(key, request_id, store=True))

    async def _resolve(self, text: str, request_id: str | None, store: bool) -> ExtractionResult:
        obs = Observability(request_id)
        with obs.measure("intent_extraction", {"query": text}) as extra:
            if self.sampler.should_use_ai(text):
                result = await self._extract_with_models(text, request_id)
            else:
                result = self._heuristic_result(text, fallback_reason="sampled_out")
            extra.update({"mode": result.mode, "source": result.source, "confidence": result.confidence})

        if store and result.structured_query is not None and not result.error:
            self.cache.set(text, result)
        return result

    async def _extract_with_models(self, text: str, request_id: str | None) -> ExtractionResult:
        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": f'User Query: "{text}"\n\nReturn structured JSON:'},
        ]
        failures: list[str] = []

        for model in self.models:
            label = getattr(model, "label", type(model).__name__)
            try:
                payload = await self._generate_with_parse_retry(model, messages, request_id)
                query = structured_query_from_payload(payload)
            except (ModelError, ValidationError) as e:
                failures.append(f"{label}: {e}")
                logger.warning("Model %s failed, trying next tier: %s", label, e)
                continue

            confidence = query.confidence if query.confidence is not None else DEFAULT_CONFIDENCE
            result = ExtractionResult(
                structured_query=query,
                intent=query.intent,
                confidence=confidence,
                used_ai=True,
                mode="ai",
                source=label,
            )
            if confidence < self.hybrid_threshold:
                return self._blend(text, result)
            return result

        reason = "; ".join(failures) or "no model configured"
        if not self.heuristic_fallback:
            logger.error("Intent extraction failed on every model: %s", reason)
            return ExtractionResult(
                structured_query=None,
                mode="ai",
                source="none",
                error=f"All models failed: {reason}",
                fallback_reason=reason,
            )
        logger.warning("All models failed, using deterministic extractor: %s", reason)
        return self._heuristic_result(text, fallback_reason=reason)

    async def _generate_with_parse_retry(self, model: Any, messages: list[dict], request_id: str | None) -> dict:
        try:
            return await model.generate(messages, self.policy, request_id=request_id)
        except ModelResponseError as e:
            budget = max(MIN_RETRY_OUTPUT_TOKENS, self.policy.max_output_tokens // 2)
            logger.info("Unparseable model output (%s); retrying with max_output_tokens=%d", e, budget)
            smaller = self.policy.model_copy(update={"max_output_tokens": budget})
            return await model.generate(messages, smaller, request_id=request_id)

    def _heuristic_result(self, text: str, fallback_reason: str | None = None) -> ExtractionResult:
        query = self.heuristic.extract(text)
        return ExtractionResult(
            structured_query=query,
            intent=query.intent,
            confidence=query.confidence or 0.0,
            used_ai=False,
            mode="heuristic",
            source="heuristic",
            fallback_reason=fallback_reason,
        )

    def _blend(self, text: str, ai_result: ExtractionResult) -> ExtractionResult:
        """Union fields, concatenate conditions, average confidence."""
        ai_query = ai_result.structured_query
        rule_query = self.heuristic.extract(text)

        fields = list(ai_query.fields)
        for field in rule_query.fields:
            if field not in fields:
                fields.append(field)
        confidence = (ai_result.confidence + (rule_query.confidence or 0.0)) / 2

        blended = ai_query.model_copy(
            update={
                "fields": fields,
                "conditions": list(ai_query.conditions) + list(rule_query.conditions),
                "order_by": ai_query.order_by or rule_query.order_by,
                "order_direction": ai_query.order_direction or rule_query.order_direction,
                "limit": ai_query.limit or rule_query.limit,
                "confidence": confidence,
            },
            deep=True,
        )
        logger.info("Low model confidence %.2f, blended with deterministic extractor", ai_result.confidence)
        return ExtractionResult(
            structured_query=blended,
            intent=blended.intent,
            confidence=confidence,
            used_ai=True,
            mode="hybrid",
            source=ai_result.source,
        )

    async def close(self) -> None:
        for model in self.models:
            close = getattr(model, "close", None)
            if close is not None:
                await close()
