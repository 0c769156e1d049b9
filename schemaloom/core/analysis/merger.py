"""Fold unit results into a job's accumulated result.

Result shapes by job type:

    schema / statistical / ai_context:
        {"tables": {table_id: entry}}
    join_detection:
        {"candidates": {pair_key: candidate}}

Every merge is idempotent: folding the same unit result twice leaves the
accumulated result unchanged.
"""

import copy
import logging
from typing import Any, Dict, List, Optional

from ..config import PipelineConfig
from ..constants import JOB_TYPE_AI_CONTEXT, JOB_TYPE_JOIN_DETECTION
from . import heuristics
from .models import RelationshipAssessment, TableDescription, WorkUnit

logger = logging.getLogger(__name__)

BAND_AUTO_ACCEPT = "auto_accept"
BAND_REVIEW = "review"
BAND_LOW = "low"

REASONING_SEPARATOR = "; "


class MergeError(ValueError):
    """A unit value the merger cannot interpret."""


def empty_result(job_type: str) -> Dict[str, Any]:
    if job_type == JOB_TYPE_JOIN_DETECTION:
        return {"candidates": {}}
    return {"tables": {}}


def confidence_band(confidence: float, config: Optional[PipelineConfig] = None) -> str:
    config = config or PipelineConfig()
    if confidence >= config.auto_accept_threshold:
        return BAND_AUTO_ACCEPT
    if confidence >= config.review_threshold:
        return BAND_REVIEW
    return BAND_LOW


def candidate_confidence(assessment: RelationshipAssessment) -> float:
    """Reported confidence when the adapter vouches for one, else scored from signals."""
    if assessment.confidence is not None:
        return round(min(max(float(assessment.confidence), 0.0), 1.0), 4)
    return heuristics.score_confidence(
        similarity=assessment.name_similarity,
        types_ok=assessment.types_compatible,
        source_column=assessment.source_column,
        target_column=assessment.target_column,
        ratio=assessment.cardinality_ratio,
        overlap=assessment.value_overlap,
    )


def merge_reasoning(*texts: Optional[str]) -> str:
    """Unique reasoning fragments, first-seen order."""
    parts: List[str] = []
    for text in texts:
        for part in (text or "").split(REASONING_SEPARATOR):
            part = part.strip()
            if part and part not in parts:
                parts.append(part)
    return REASONING_SEPARATOR.join(parts)


def merge_candidate(
    candidates: Dict[str, Dict[str, Any]],
    assessment: RelationshipAssessment,
    unit_id: str,
) -> Dict[str, Any]:
    """Fold one assessment into the candidate map and return the entry.

    Keeps the higher confidence; lower observations stay for audit,
    marked superseded.
    """
    confidence = candidate_confidence(assessment)
    observation = {
        "unit_id": unit_id,
        "confidence": confidence,
        "reasoning": assessment.reasoning,
        "superseded": False,
    }
    key = assessment.pair_key
    entry = candidates.get(key)

    if entry is None:
        entry = {
            "source_table_id": assessment.source_table_id,
            "source_table": assessment.source_table,
            "source_column_id": assessment.source_column_id,
            "source_column": assessment.source_column,
            "target_table_id": assessment.target_table_id,
            "target_table": assessment.target_table,
            "target_column_id": assessment.target_column_id,
            "target_column": assessment.target_column,
            "confidence": confidence,
            "relationship_kind": assessment.relationship_kind,
            "reasoning": merge_reasoning(assessment.reasoning),
            "source": assessment.discovery_source,
            "observations": [observation],
        }
        candidates[key] = entry
        return entry

    for seen in entry["observations"]:
        if (
            seen["unit_id"] == unit_id
            and seen["confidence"] == confidence
            and seen["reasoning"] == assessment.reasoning
        ):
            return entry

    entry["observations"].append(observation)
    if confidence > entry["confidence"]:
        entry["confidence"] = confidence
        entry["relationship_kind"] = assessment.relationship_kind
        entry["source"] = assessment.discovery_source
    entry["reasoning"] = merge_reasoning(entry["reasoning"], assessment.reasoning)

    best = entry["confidence"]
    for seen in entry["observations"]:
        seen["superseded"] = seen["confidence"] < best
    return entry


def merge_unit_result(
    job_type: str,
    result: Optional[Dict[str, Any]],
    unit: WorkUnit,
    value: Any,
) -> Dict[str, Any]:
    """Return a new accumulated result with ``value`` folded in.

    Raises MergeError when the value does not fit the job type.
    """
    merged = copy.deepcopy(result) if result else empty_result(job_type)

    if job_type == JOB_TYPE_JOIN_DETECTION:
        if not isinstance(value, list) or not all(isinstance(v, RelationshipAssessment) for v in value):
            raise MergeError(f"Unit {unit.unit_id}: expected relationship assessments")
        candidates = merged.setdefault("candidates", {})
        for assessment in value:
            merge_candidate(candidates, assessment, unit.unit_id)
        return merged

    if job_type == JOB_TYPE_AI_CONTEXT:
        if not isinstance(value, TableDescription):
            raise MergeError(f"Unit {unit.unit_id}: expected a table description")
        entry = value.to_dict()
    else:
        if not isinstance(value, dict):
            raise MergeError(f"Unit {unit.unit_id}: expected a mapping, got {type(value).__name__}")
        entry = copy.deepcopy(value)

    merged.setdefault("tables", {})[unit.table_ids[0]] = entry
    return merged
