"""Analysis adapters: the only place the pipeline touches external services.

Every operation returns a tagged result (Ok / Empty / Malformed) or raises
AnalysisFailure. Nothing else escapes an adapter.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from llama_index.core import Settings

from ..config import PipelineConfig
from ..constants import SOURCE_CATALOG, SOURCE_HEURISTIC
from . import heuristics, prompts
from .models import (
    AnalysisFailure,
    AnalysisOutcome,
    CatalogHint,
    ColumnSpec,
    Empty,
    Malformed,
    Ok,
    RelationshipAssessment,
    TableDescription,
    TableSpec,
)

logger = logging.getLogger(__name__)

_RETRYABLE_MARKERS = ("429", "quota", "resource_exhausted", "rate limit", "ratelimit", "timed out")


def _get_retryable_exceptions():
    """Lazy-load provider rate-limit exception classes.

    Handles missing provider packages gracefully.
    """
    exceptions = [TimeoutError, ConnectionError]
    try:
        from openai import RateLimitError as OpenAIRateLimit
        exceptions.append(OpenAIRateLimit)
    except ImportError:
        pass
    try:
        from groq import RateLimitError as GroqRateLimit
        exceptions.append(GroqRateLimit)
    except ImportError:
        pass
    try:
        from anthropic import RateLimitError as AnthropicRateLimit
        exceptions.append(AnthropicRateLimit)
    except ImportError:
        pass
    return tuple(exceptions)


def classify_llm_error(error: Exception, unit_id: Optional[str] = None) -> AnalysisFailure:
    """Map a provider exception onto a typed failure."""
    if isinstance(error, AnalysisFailure):
        return error
    message = f"{type(error).__name__}: {error}"
    retryable = isinstance(error, _get_retryable_exceptions())
    if not retryable:
        lowered = str(error).lower()
        retryable = any(marker in lowered for marker in _RETRYABLE_MARKERS)
    return AnalysisFailure(message, retryable=retryable, unit_id=unit_id)


def parse_llm_json(raw: Optional[str]) -> AnalysisOutcome:
    """Parse JSON from LLM output, stripping markdown fences."""
    if raw is None or not raw.strip():
        return Empty("empty response")

    cleaned = raw
    if "```json" in cleaned:
        cleaned = cleaned.split("```json", 1)[1]
    elif cleaned.lstrip().startswith("```"):
        cleaned = cleaned.lstrip()[3:]
    if "```" in cleaned:
        cleaned = cleaned.split("```", 1)[0]
    cleaned = cleaned.strip()

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning(f"JSON parse failed: {e}. Attempting repair.")
        # Try to find the outermost { }
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start < 0 or end <= start:
            return Malformed(raw=raw[:2000], error=str(e))
        try:
            parsed = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as e2:
            return Malformed(raw=raw[:2000], error=str(e2))

    if parsed in ({}, [], None):
        return Empty("response contained no data")
    if not isinstance(parsed, (dict, list)):
        return Malformed(raw=raw[:2000], error=f"expected object, got {type(parsed).__name__}")
    return Ok(parsed)


class AnalysisAdapter(ABC):
    """Capability interface over the analysis backend."""

    @abstractmethod
    def describe_table(self, table: TableSpec) -> AnalysisOutcome:
        """Ok(TableDescription) | Empty | Malformed; raises AnalysisFailure."""

    @abstractmethod
    def assess_relationship(
        self,
        table_a: TableSpec, column_a: ColumnSpec,
        table_b: TableSpec, column_b: ColumnSpec,
        hints: Sequence[CatalogHint] = (),
    ) -> AnalysisOutcome:
        """Ok(RelationshipAssessment) | Empty (no relationship) | Malformed."""

    def inspect_table(self, table: TableSpec) -> AnalysisOutcome:
        """Structural summary of a table (schema job)."""
        return Ok(table_structure(table))

    def profile_table(self, table: TableSpec) -> AnalysisOutcome:
        """Per-column statistics (statistical job)."""
        return Ok(table_profile(table))

    def catalog_hints(self, tables: Sequence[TableSpec]) -> List[CatalogHint]:
        """Declared foreign keys between the given tables."""
        return []


def table_structure(table: TableSpec) -> Dict[str, Any]:
    return {
        "table_id": table.table_id,
        "table_name": table.name,
        "schema": table.schema,
        "row_count": table.row_count,
        "primary_key": [c.name for c in table.columns if c.is_primary_key],
        "columns": [
            {
                "column_id": c.column_id,
                "name": c.name,
                "data_type": c.data_type,
                "nullable": c.is_nullable,
                "unique": c.is_unique,
            }
            for c in table.columns
        ],
        "foreign_keys": [],
        "indexes": [],
    }


def table_profile(table: TableSpec) -> Dict[str, Any]:
    return {
        "table_id": table.table_id,
        "table_name": table.name,
        "row_count": table.row_count,
        "columns": {
            c.name: {
                "cardinality": c.cardinality,
                "null_percentage": c.null_percentage,
                "distinct_values": list(c.distinct_values),
            }
            for c in table.columns
        },
    }


class LLMAnalysisAdapter(AnalysisAdapter):
    """Adapter backed by a llama_index LLM plus the relationship heuristics.

    Args:
        llm: LLM to call (defaults to Settings.llm at call time)
        inspector: Optional SqlCatalogInspector for live statistics,
            sample rows, value overlap and declared foreign keys
        config: Pipeline tuning values
    """

    def __init__(self, llm: Any = None, inspector: Any = None, config: Optional[PipelineConfig] = None):
        self._llm = llm
        self._inspector = inspector
        self._config = config or PipelineConfig()

    # ── Table description ───────────────────────────────────────────────

    def describe_table(self, table: TableSpec) -> AnalysisOutcome:
        llm = self._llm or Settings.llm
        if llm is None:
            raise AnalysisFailure("No LLM configured", retryable=False, unit_id=table.table_id)

        sample = None
        if self._inspector is not None:
            sample = self._inspector.sample_rows(table, self._config.sample_rows)

        prompt = prompts.describe_table_prompt(
            table, sample_rows=sample, enum_max_distinct=self._config.enum_max_distinct,
        )
        try:
            response = llm.complete(prompt)
        except Exception as e:
            raise classify_llm_error(e, unit_id=table.table_id) from e

        parsed = parse_llm_json(response.text)
        if not isinstance(parsed, Ok):
            return parsed
        return self._build_description(table, parsed.value)

    def _build_description(self, table: TableSpec, payload: Any) -> AnalysisOutcome:
        if not isinstance(payload, dict) or not payload.get("description"):
            return Malformed(raw=payload, error="missing 'description'")

        known_columns = {c.name for c in table.columns}
        column_descriptions: Dict[str, str] = {}
        enum_hypotheses: Dict[str, List[str]] = {}
        for entry in payload.get("columns") or []:
            if not isinstance(entry, dict):
                continue
            name = entry.get("column_name")
            if name not in known_columns:
                continue
            if entry.get("description"):
                column_descriptions[name] = str(entry["description"])
            values = entry.get("enum_values") or []
            if isinstance(values, list) and 0 < len(values) <= self._config.enum_max_distinct:
                enum_hypotheses[name] = [str(v) for v in values]

        confidence = payload.get("confidence")
        try:
            confidence = None if confidence is None else min(max(float(confidence), 0.0), 1.0)
        except (TypeError, ValueError):
            confidence = None

        return Ok(TableDescription(
            table_id=table.table_id,
            table_name=table.name,
            description=str(payload["description"]),
            business_purpose=str(payload.get("business_purpose") or ""),
            column_descriptions=column_descriptions,
            enum_hypotheses=enum_hypotheses,
            confidence=confidence,
        ))

    # ── Relationships ───────────────────────────────────────────────────

    def assess_relationship(
        self,
        table_a: TableSpec, column_a: ColumnSpec,
        table_b: TableSpec, column_b: ColumnSpec,
        hints: Sequence[CatalogHint] = (),
    ) -> AnalysisOutcome:
        src_t, src_c, tgt_t, tgt_c = heuristics.orient(table_a, column_a, table_b, column_b, hints)
        hint = heuristics.find_hint(hints, table_a, column_a, table_b, column_b)

        similarity = heuristics.name_similarity(src_t.name, src_c.name, tgt_t.name, tgt_c.name)
        types_ok = heuristics.types_compatible(src_c.data_type, tgt_c.data_type)
        if hint is None and (similarity < self._config.min_name_similarity or not types_ok):
            return Empty("no relationship")

        overlap = None
        if self._inspector is not None and hint is None:
            overlap = self._inspector.value_overlap(src_t, src_c, tgt_t, tgt_c)

        reasoning = heuristics.build_reasoning(similarity, types_ok, src_c.name, tgt_c.name, overlap)
        if hint is not None:
            name = f" {hint.constraint_name}" if hint.constraint_name else ""
            reasoning = f"Declared foreign key constraint{name}"

        return Ok(RelationshipAssessment(
            source_table_id=src_t.table_id,
            source_table=src_t.name,
            source_column_id=src_c.column_id,
            source_column=src_c.name,
            target_table_id=tgt_t.table_id,
            target_table=tgt_t.name,
            target_column_id=tgt_c.column_id,
            target_column=tgt_c.name,
            relationship_kind=heuristics.relationship_kind(src_c, tgt_c),
            reasoning=reasoning,
            discovery_source=SOURCE_CATALOG if hint else SOURCE_HEURISTIC,
            name_similarity=similarity,
            types_compatible=types_ok,
            cardinality_ratio=heuristics.cardinality_ratio(src_c, tgt_c),
            value_overlap=overlap,
            confidence=1.0 if hint else None,
        ))

    # ── Catalog-backed operations ───────────────────────────────────────

    def inspect_table(self, table: TableSpec) -> AnalysisOutcome:
        if self._inspector is None:
            return super().inspect_table(table)
        return self._inspector.inspect_table(table)

    def profile_table(self, table: TableSpec) -> AnalysisOutcome:
        if self._inspector is None:
            return super().profile_table(table)
        return self._inspector.profile_table(table, self._config.enum_max_distinct)

    def catalog_hints(self, tables: Sequence[TableSpec]) -> List[CatalogHint]:
        if self._inspector is None:
            return []
        return self._inspector.foreign_key_hints(tables)
