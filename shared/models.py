"""
Shared Pydantic models for all layers.

Structures flowing between pipeline stages. Attribute names are snake_case;
the external JSON contract uses the camelCase aliases declared on each field
(``model_dump(by_alias=True)``). Model responses are accepted by alias or by name.
"""

from __future__ import annotations

from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field

ConditionValue = Union[float, str, list[Union[float, str]]]


# ─── Model Layer (Policy) ──────────────────────────────────────

class ModelPolicy(BaseModel):
    """Configuration for Model Layer execution."""
    model_config = {"frozen": True}
    model_name: str | None = None
    temperature: float = 0.0
    timeout_seconds: float = 30.0
    max_retries: int = 1
    json_mode: bool = True
    max_output_tokens: int = 1024


# ─── Query Layer ───────────────────────────────────────────────

class Condition(BaseModel):
    """A single filter predicate. ``field`` is canonical once validated."""
    model_config = ConfigDict(populate_by_name=True)

    field: str
    operator: str
    value: ConditionValue
    unit: str | None = None


class StructuredQuery(BaseModel):
    """Machine-actionable form of a natural-language request.

    Produced by the Intent Layer, copied and mutated by rule overrides,
    read-only from validation onwards.
    """
    model_config = ConfigDict(populate_by_name=True)

    intent: str = "filter"
    fields: list[str] = Field(default_factory=list)
    search_term: str | None = Field(default=None, description="Free-text company/symbol lookup")
    conditions: list[Condition] = Field(default_factory=list)
    order_by: str | None = Field(default=None, alias="orderBy")
    order_direction: str | None = Field(default=None, alias="orderDirection", description="'asc' or 'desc'")
    limit: int | None = None
    data_source: str | None = Field(default=None, alias="dataSource", description="Explicit data tier")
    confidence: float | None = None


class ExtractionResult(BaseModel):
    """Output of the Intent Layer. ``structured_query`` is None only on failure."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    structured_query: StructuredQuery | None = Field(default=None, alias="structuredQuery")
    intent: str | None = None
    confidence: float = 0.0
    used_ai: bool = Field(default=False, alias="usedAI")
    mode: str = Field(default="heuristic", description="'ai', 'hybrid' or 'heuristic'")
    source: str = Field(default="heuristic", description="Model name or 'heuristic'")
    error: str | None = None
    fallback_reason: str | None = Field(default=None, alias="fallbackReason")


# ─── Validation Layer ──────────────────────────────────────────

class FieldSuggestion(BaseModel):
    """Closest canonical fields for an unknown field name."""
    model_config = {"frozen": True}
    invalid: str
    suggestions: list[str] = Field(default_factory=list)


class ValidationResult(BaseModel):
    """Schema validation verdict. ``clean_query`` is the only query the selector trusts."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    is_valid: bool = Field(..., alias="isValid")
    invalid_fields: list[str] = Field(default_factory=list, alias="invalidFields")
    suggestions: list[FieldSuggestion] = Field(default_factory=list)
    clean_query: StructuredQuery = Field(..., alias="cleanQuery")
    fields_used: int = Field(default=0, alias="fieldsUsed")
    warnings: list[str] = Field(default_factory=list)


# ─── Selection Layer ───────────────────────────────────────────

class SelectionMetadata(BaseModel):
    """Provenance of a result set."""
    model_config = ConfigDict(populate_by_name=True)

    total_fetched: int = Field(default=0, alias="totalFetched")
    after_filtering: int = Field(default=0, alias="afterFiltering")
    returned: int = 0
    data_source: str | None = Field(default=None, alias="dataSource")
    processing_time_ms: float = Field(default=0.0, alias="processingTime")
    ai_ranked: bool = Field(default=False, alias="aiRanked")
    search_matched: bool = Field(default=False, alias="searchMatched")
    offline_sample: bool = Field(default=False, alias="offlineSample")


class SelectionResult(BaseModel):
    """Output of the Data Selector."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    results: list[dict[str, Any]] = Field(default_factory=list)
    metadata: SelectionMetadata = Field(default_factory=SelectionMetadata)
    error: str | None = None


# ─── Pipeline Output ───────────────────────────────────────────

class PipelineResult(BaseModel):
    """Final output of the orchestrator, successful or stage-tagged failure."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    stage: str | None = Field(default=None, description="'validation', 'preprocessing', 'data_fetching' or 'transfer'")
    error: str | None = None
    error_kind: str | None = Field(
        default=None,
        alias="errorKind",
        description="'input', 'extraction', 'validation', 'retrieval' or 'internal'",
    )
    original_query: str = Field(default="", alias="originalQuery")
    normalized_query: str | None = Field(default=None, alias="cleanedQuery")
    preprocessed_query: StructuredQuery | None = Field(default=None, alias="preprocessedQuery")
    clean_query: StructuredQuery | None = Field(default=None, alias="cleanQuery")
    results: list[dict[str, Any]] = Field(default_factory=list)
    invalid_fields: list[str] = Field(default_factory=list, alias="invalidFields")
    suggestions: list[FieldSuggestion] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
