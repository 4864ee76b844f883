"""
Orchestrator — Sequences the screening pipeline.

Responsibility:
- Structural validation of the raw query
- Normalize → extract → overrides → validate → select
- Tag the failing stage and error kind; short-circuit on first failure
- Assemble results with timing and confidence metadata

Prohibitions:
- No retries across stages (retries live in the Intent Layer)
- Never raises for business errors
"""

import inspect
import logging
import re
import time
from typing import Any, Callable

from domains.equities.data_selector import DataSelector
from domains.equities.normalizer import QueryNormalizer
from domains.equities.overrides import apply_rule_overrides
from domains.equities.validator import FieldValidator
from intent.adapter import IntentAdapter
from observability.logger import Observability
from shared.models import PipelineResult

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 5
MAX_QUERY_LENGTH = 500
LONG_QUERY_WARNING_LENGTH = 300

_DIGITS_ONLY = re.compile(r"^\d+$")
_VAGUE_ADJECTIVE = re.compile(r"^(?:good|best|top|high|low)$", re.IGNORECASE)

PROGRESS_STEPS = {
    "started": 0,
    "normalizing": 10,
    "preprocessing": 30,
    "validating": 60,
    "data_fetching": 80,
    "complete": 100,
    "error": 100,
}


def validate_query_structure(raw_query: str) -> tuple[list[str], list[str]]:
    """Input checks run before any processing. Returns (errors, warnings)."""
    text = (raw_query or "").strip()
    if not text:
        return ["Query cannot be empty."], []

    errors: list[str] = []
    warnings: list[str] = []
    if len(text) < MIN_QUERY_LENGTH:
        errors.append("Query is too short. Please provide more details.")
    if len(text) > MAX_QUERY_LENGTH:
        errors.append(f"Query is too long ({len(text)} characters, max {MAX_QUERY_LENGTH}).")
    elif len(text) > LONG_QUERY_WARNING_LENGTH:
        warnings.append("Query is very long. Consider breaking it into smaller queries.")
    if _DIGITS_ONLY.match(text):
        errors.append('Query contains only numbers. Please add context (e.g., "stocks with PE less than 15").')
    if _VAGUE_ADJECTIVE.match(text):
        errors.append(
            'Query needs more context. Example: "stocks with high dividend yield" or "top stocks by revenue growth".'
        )
    return errors, warnings


class Orchestrator:
    """Runs one query through every pipeline stage."""

    def __init__(
        self,
        intent_adapter: IntentAdapter,
        data_selector: DataSelector,
        normalizer: QueryNormalizer | None = None,
        validator: FieldValidator | None = None,
    ):
        self.intent_adapter = intent_adapter
        self.data_selector = data_selector
        self.normalizer = normalizer or QueryNormalizer()
        self.validator = validator or FieldValidator()

    async def run(
        self,
        raw_query: str,
        options: dict[str, Any] | None = None,
        progress_callback: Callable[[dict[str, Any]], Any] | None = None,
    ) -> PipelineResult:
        """
        Process a raw query end to end.
        Returns a PipelineResult; unexpected exceptions become stage 'transfer'.
        """
        options = options or {}
        obs = Observability(options.get("request_id"))
        start = time.perf_counter()

        async def emit(stage: str) -> None:
            if progress_callback is None:
                return
            try:
                outcome = progress_callback({"stage": stage, "progress": PROGRESS_STEPS[stage]})
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.warning("Progress callback failed at %s: %s", stage, e)

        await emit("started")
        try:
            result = await self._run_stages(raw_query, options, obs, emit, start)
        except Exception as e:
            logger.exception("Unexpected pipeline error for query %r", raw_query)
            result = PipelineResult(
                success=False,
                stage="transfer",
                error_kind="internal",
                error=f"Unexpected error: {e}",
                original_query=raw_query or "",
                metadata={"processingTime": self._elapsed_ms(start)},
            )

        await emit("complete" if result.success else "error")
        obs.log_event(
            "pipeline_result",
            {
                "success": result.success,
                "stage": result.stage,
                "error_kind": result.error_kind,
                "returned": len(result.results),
                "duration_ms": self._elapsed_ms(start),
            },
            level="INFO" if result.success else "WARNING",
        )
        return result

    async def run_batch(self, queries: list[str], options: dict[str, Any] | None = None) -> list[PipelineResult]:
        """Process several queries one after another."""
        results = []
        for query in queries:
            results.append(await self.run(query, options))
        return results

    async def _run_stages(self, raw_query, options, obs, emit, start) -> PipelineResult:
        original = raw_query or ""

        # 1. Structural validation (before any processing)
        errors, structure_warnings = validate_query_structure(original)
        if errors:
            logger.info("Query rejected: %s", errors)
            return PipelineResult(
                success=False,
                stage="validation",
                error_kind="input",
                error=" ".join(errors),
                original_query=original,
                metadata={"processingTime": self._elapsed_ms(start)},
            )

        # 2. Normalization
        await emit("normalizing")
        normalized = self.normalizer.normalize(original)
        corrected = self.normalizer.was_corrected(original, normalized)

        # 3. Extraction + rule overrides
        await emit("preprocessing")
        with obs.measure("pipeline_stage", {"stage": "preprocessing"}):
            extraction = await self.intent_adapter.extract(
                normalized,
                skip_cache=bool(options.get("skip_cache", False)),
                request_id=obs.request_id,
            )
        if extraction.error or extraction.structured_query is None:
            return PipelineResult(
                success=False,
                stage="preprocessing",
                error_kind="extraction",
                error=extraction.error or "Query extraction failed",
                original_query=original,
                normalized_query=normalized,
                metadata={"processingTime": self._elapsed_ms(start), "corrected": corrected},
            )
        preprocessed = apply_rule_overrides(normalized, extraction.structured_query)

        # 4. Field validation
        await emit("validating")
        validation = self.validator.validate(preprocessed)
        warnings = structure_warnings + validation.warnings
        if not validation.is_valid:
            return PipelineResult(
                success=False,
                stage="validation",
                error_kind="validation",
                error=f"Invalid fields: {', '.join(validation.invalid_fields)}",
                original_query=original,
                normalized_query=normalized,
                preprocessed_query=preprocessed,
                invalid_fields=validation.invalid_fields,
                suggestions=validation.suggestions,
                metadata={"processingTime": self._elapsed_ms(start), "corrected": corrected, "warnings": warnings},
            )

        # 5. Data selection
        await emit("data_fetching")
        with obs.measure("pipeline_stage", {"stage": "data_fetching"}):
            selection = await self.data_selector.select(validation.clean_query, request_id=obs.request_id)
        selection_meta = selection.metadata
        if not selection.success:
            return PipelineResult(
                success=False,
                stage="data_fetching",
                error_kind="retrieval",
                error=selection.error or "Data retrieval failed",
                original_query=original,
                normalized_query=normalized,
                preprocessed_query=preprocessed,
                clean_query=validation.clean_query,
                metadata={
                    "processingTime": self._elapsed_ms(start),
                    "dataSource": selection_meta.data_source,
                    "corrected": corrected,
                    "warnings": warnings,
                },
            )

        return PipelineResult(
            success=True,
            original_query=original,
            normalized_query=normalized,
            preprocessed_query=preprocessed,
            clean_query=validation.clean_query,
            results=selection.results,
            metadata={
                "intent": validation.clean_query.intent,
                "confidence": extraction.confidence,
                "fieldsUsed": validation.fields_used,
                "totalFetched": selection_meta.total_fetched,
                "afterFiltering": selection_meta.after_filtering,
                "returned": selection_meta.returned,
                "dataSource": selection_meta.data_source,
                "processingTime": self._elapsed_ms(start),
                "selectionTime": selection_meta.processing_time_ms,
                "corrected": corrected,
                "warnings": warnings,
                "usedAI": extraction.used_ai,
                "extractionMode": extraction.mode,
                "extractionSource": extraction.source,
                "fallbackReason": extraction.fallback_reason,
                "aiRanked": selection_meta.ai_ranked,
                "searchMatched": selection_meta.search_matched,
                "offlineSample": selection_meta.offline_sample,
            },
        )

    def _elapsed_ms(self, start: float) -> float:
        return round((time.perf_counter() - start) * 1000, 2)

    async def close(self) -> None:
        await self.intent_adapter.close()
        await self.data_selector.close()
