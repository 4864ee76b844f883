"""
AI Ranking — Optional model-assisted ranking and field resolution.

Responsibility:
- Ask a model to pick and order the best candidates for a query
- Accept the ranking only above a confidence threshold
- Fill field values the record resolver could not find, in bounded batches

Both helpers are best-effort: any model failure leaves the deterministic
path in charge.
"""

import asyncio
import json
import logging
import os
from typing import Any

from domains.equities.config import AI_RANKING_MAX_CANDIDATES, AI_RESOLUTION_BATCH_SIZE
from domains.equities.records import RecordResolver
from models.errors import ModelError
from shared.models import ModelPolicy, StructuredQuery

logger = logging.getLogger(__name__)

RANKING_SYSTEM_PROMPT = """You rank stocks for a screening query.
You receive the query intent, its conditions and a numbered list of candidates with their values.
Select the best candidates for the query, most relevant first.

Return ONLY a JSON object:
{"indices": [<candidate index>, ...], "confidence": <0.0 to 1.0>}"""

RESOLUTION_SYSTEM_PROMPT = """You read a raw stock record and report numeric values for the requested fields.
Use only values present in the record; use null when a value is absent.

Return ONLY a JSON object:
{"values": {"<field>": <number or null>, ...}}"""

RANKING_POLICY = ModelPolicy(temperature=0.0, timeout_seconds=20.0, max_retries=1, json_mode=True, max_output_tokens=512)
RESOLUTION_POLICY = ModelPolicy(temperature=0.0, timeout_seconds=15.0, max_retries=1, json_mode=True, max_output_tokens=256)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


async def _generate(models: list[Any], messages: list[dict], policy: ModelPolicy, request_id: str | None) -> dict:
    """First JSON answer from an ordered model list."""
    last_error: Exception | None = None
    for model in models:
        try:
            response = await model.generate(messages, policy, request_id=request_id)
        except ModelError as e:
            last_error = e
            logger.info("Model %s unavailable for ranking: %s", getattr(model, "label", model), e)
            continue
        if isinstance(response, dict):
            return response
    raise last_error or ModelError("No model configured")


class AIRanker:
    """Model-assisted selection and ordering of filtered records."""

    def __init__(self, models: list[Any], confidence_threshold: float | None = None):
        self.models = list(models)
        if confidence_threshold is None:
            confidence_threshold = float(os.getenv("AI_RANKING_CONFIDENCE_THRESHOLD", "0.7"))
        self.confidence_threshold = confidence_threshold

    @classmethod
    def from_env(cls, models: list[Any]) -> "AIRanker | None":
        """Ranker when AI_RANKING_ENABLED is set, else None."""
        if not models or not _env_flag("AI_RANKING_ENABLED"):
            return None
        return cls(models)

    async def rank(
        self,
        query: StructuredQuery,
        records: list[dict],
        resolver: RecordResolver,
        request_id: str | None = None,
    ) -> list[dict] | None:
        """Ordered records chosen by the model, or None when the ranking is not accepted."""
        candidates = records[:AI_RANKING_MAX_CANDIDATES]
        if not candidates:
            return None

        value_fields = [condition.field for condition in query.conditions]
        if query.order_by and query.order_by not in value_fields:
            value_fields.append(query.order_by)

        listing = [
            {
                "index": index,
                "symbol": record.get("symbol"),
                **{field: resolver.resolve(record, field) for field in value_fields},
            }
            for index, record in enumerate(candidates)
        ]
        prompt = {
            "intent": query.intent,
            "conditions": [condition.model_dump(exclude_none=True) for condition in query.conditions],
            "order_by": query.order_by,
            "order_direction": query.order_direction,
            "limit": query.limit,
            "candidates": listing,
        }
        messages = [
            {"role": "system", "content": RANKING_SYSTEM_PROMPT},
            {"role": "user", "content": json.dumps(prompt, ensure_ascii=False)},
        ]

        try:
            response = await _generate(self.models, messages, RANKING_POLICY, request_id)
        except ModelError as e:
            logger.warning("AI ranking skipped: %s", e)
            return None

        try:
            confidence = float(response.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        if confidence < self.confidence_threshold:
            logger.info("AI ranking rejected: confidence %.2f < %.2f", confidence, self.confidence_threshold)
            return None

        ranked: list[dict] = []
        seen: set[int] = set()
        for raw_index in response.get("indices") or []:
            if isinstance(raw_index, bool) or not isinstance(raw_index, (int, float)):
                continue
            index = int(raw_index)
            if 0 <= index < len(candidates) and index not in seen:
                seen.add(index)
                ranked.append(candidates[index])

        if not ranked:
            logger.info("AI ranking rejected: no valid indices")
            return None
        return ranked


class AIFieldResolver:
    """Fill unresolved record values through a model, batch by batch."""

    def __init__(self, models: list[Any], batch_size: int = AI_RESOLUTION_BATCH_SIZE):
        self.models = list(models)
        self.batch_size = max(1, batch_size)

    @classmethod
    def from_env(cls, models: list[Any]) -> "AIFieldResolver | None":
        """Resolver when AI_FIELD_RESOLUTION_ENABLED is set, else None."""
        if not models or not _env_flag("AI_FIELD_RESOLUTION_ENABLED"):
            return None
        return cls(models)

    async def fill_missing(
        self,
        records: list[dict],
        fields: list[str],
        resolver: RecordResolver,
        request_id: str | None = None,
    ) -> int:
        """Resolve missing ``fields`` for ``records``. Returns how many records were asked about."""
        pending = [
            (record, [field for field in fields if not resolver.is_resolved(record, field)])
            for record in records
        ]
        pending = [(record, missing) for record, missing in pending if missing]
        if not pending:
            return 0

        # Parallel inside a batch, sequential across batches.
        for start in range(0, len(pending), self.batch_size):
            batch = pending[start : start + self.batch_size]
            outcomes = await asyncio.gather(
                *(self._resolve_one(record, missing, request_id) for record, missing in batch),
                return_exceptions=True,
            )
            for (record, missing), outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    logger.debug("Field resolution failed for %s: %s", record.get("symbol"), outcome)
                    continue
                for field in missing:
                    if outcome.get(field) is not None:
                        resolver.fill(record, field, outcome[field])
        logger.info("AI field resolution attempted for %d records", len(pending))
        return len(pending)

    async def _resolve_one(self, record: dict, missing: list[str], request_id: str | None) -> dict[str, Any]:
        messages = [
            {"role": "system", "content": RESOLUTION_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": json.dumps({"fields": missing, "record": record}, ensure_ascii=False, default=str),
            },
        ]
        response = await _generate(self.models, messages, RESOLUTION_POLICY, request_id)
        values = response.get("values")
        return values if isinstance(values, dict) else {}
