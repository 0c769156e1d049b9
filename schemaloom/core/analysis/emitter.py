"""SME question derivation.

Runs once per completed job over the final accumulated result. Each draft
carries a dedupe key scoped to the database, so emitting twice for the
same result never produces a second row.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import PipelineConfig
from ..constants import (
    AMBIGUITY_EXTRA_OPTIONS,
    CATEGORY_AMBIGUITY,
    CATEGORY_COLUMN,
    CATEGORY_RELATIONSHIP,
    CATEGORY_TABLE,
    JOB_TYPE_AI_CONTEXT,
    JOB_TYPE_JOIN_DETECTION,
    PRIORITY_HIGH,
    PRIORITY_LOW,
    PRIORITY_MEDIUM,
    RELATIONSHIP_OPTIONS,
    TEMPORAL_TYPE_MARKERS,
    TIMESTAMP_COLUMN_NAMES,
)

logger = logging.getLogger(__name__)


@dataclass
class QuestionDraft:
    """A question ready to be upserted by dedupe key."""
    dedupe_key: str
    category: str
    question_text: str
    priority: str
    table_id: Optional[str] = None
    column_id: Optional[str] = None
    options: List[str] = field(default_factory=list)


def column_key(table_id: str, column: str) -> str:
    return f"{CATEGORY_COLUMN}|{table_id}|{column}"


def table_key(table_id: str) -> str:
    return f"{CATEGORY_TABLE}|{table_id}|"


def relationship_key(candidate: Dict[str, Any]) -> str:
    return (
        f"{CATEGORY_RELATIONSHIP}|{candidate['source_table_id']}.{candidate['source_column']}"
        f"->{candidate['target_table_id']}.{candidate['target_column']}"
    )


def ambiguity_key(table_id: str, column: str) -> str:
    return f"{CATEGORY_AMBIGUITY}|{table_id}|{column}"


def is_temporal_column(name: str, data_type: Optional[str]) -> bool:
    """Timestamp/date columns carry no business value set worth asking about."""
    lowered = (data_type or "").lower()
    if any(marker in lowered for marker in TEMPORAL_TYPE_MARKERS):
        return True
    name = name.lower()
    return name in TIMESTAMP_COLUMN_NAMES or name.endswith("_at")


def is_high_cardinality(cardinality: Optional[int], row_count: Optional[int], ratio: float) -> bool:
    """Near-unique columns (ids and the like); unknown statistics never filter."""
    if not cardinality or not row_count:
        return False
    return cardinality / row_count >= ratio


def _ai_context_questions(result: Dict[str, Any], config: PipelineConfig) -> List[QuestionDraft]:
    drafts = []
    for table_id, entry in sorted((result.get("tables") or {}).items()):
        table_name = entry.get("table_name") or table_id
        facts = entry.get("columns") or {}

        for column, values in sorted((entry.get("enum_hypotheses") or {}).items()):
            if not values:
                continue
            fact = facts.get(column) or {}
            if is_temporal_column(column, fact.get("data_type")):
                continue
            if is_high_cardinality(fact.get("cardinality"), entry.get("row_count"), config.high_cardinality_ratio):
                logger.debug(f"Skipping high-cardinality column {table_name}.{column}")
                continue
            drafts.append(QuestionDraft(
                dedupe_key=column_key(table_id, column),
                category=CATEGORY_COLUMN,
                question_text=(
                    f"Column '{table_name}.{column}' looks like it holds a fixed set of values. "
                    f"Are these the valid values?"
                ),
                priority=PRIORITY_HIGH,
                table_id=table_id,
                column_id=fact.get("column_id"),
                options=list(values),
            ))

        confidence = entry.get("confidence")
        if confidence is not None and confidence < config.table_confidence_threshold:
            description = entry.get("description") or "(no description)"
            drafts.append(QuestionDraft(
                dedupe_key=table_key(table_id),
                category=CATEGORY_TABLE,
                question_text=(
                    f"What is the business purpose of table '{table_name}'? "
                    f"Current guess ({confidence:.0%} confidence): {description}"
                ),
                priority=PRIORITY_HIGH,
                table_id=table_id,
            ))
    return drafts


def _join_questions(result: Dict[str, Any], config: PipelineConfig) -> List[QuestionDraft]:
    drafts = []
    candidates = result.get("candidates") or {}

    for key in sorted(candidates):
        c = candidates[key]
        if c["confidence"] >= config.auto_accept_threshold:
            continue
        priority = PRIORITY_MEDIUM if c["confidence"] >= config.review_threshold else PRIORITY_LOW
        drafts.append(QuestionDraft(
            dedupe_key=relationship_key(c),
            category=CATEGORY_RELATIONSHIP,
            question_text=(
                f"Does '{c['source_table']}.{c['source_column']}' reference "
                f"'{c['target_table']}.{c['target_column']}' ({c['relationship_kind']})? "
                f"Confidence {c['confidence']:.0%}. Reasoning: {c['reasoning'] or 'none given'}"
            ),
            priority=priority,
            table_id=c["source_table_id"],
            column_id=c.get("source_column_id"),
            options=list(RELATIONSHIP_OPTIONS),
        ))

    # One source column pointing at several targets
    targets_by_source = defaultdict(list)
    for key in sorted(candidates):
        c = candidates[key]
        targets_by_source[(c["source_table_id"], c["source_column"])].append(c)
    for (table_id, column), group in sorted(targets_by_source.items()):
        if len(group) < 2:
            continue
        first = group[0]
        options = [f"{c['target_table']}.{c['target_column']}" for c in group]
        drafts.append(QuestionDraft(
            dedupe_key=ambiguity_key(table_id, column),
            category=CATEGORY_AMBIGUITY,
            question_text=(
                f"'{first['source_table']}.{column}' could reference {len(group)} different columns. "
                f"Which relationship is correct?"
            ),
            priority=PRIORITY_HIGH,
            table_id=table_id,
            column_id=first.get("source_column_id"),
            options=options + list(AMBIGUITY_EXTRA_OPTIONS),
        ))
    return drafts


def derive_questions(
    job_type: str,
    result: Optional[Dict[str, Any]],
    config: Optional[PipelineConfig] = None,
) -> List[QuestionDraft]:
    """Questions implied by a completed job's result. Pure."""
    config = config or PipelineConfig()
    if not result:
        return []
    if job_type == JOB_TYPE_AI_CONTEXT:
        return _ai_context_questions(result, config)
    if job_type == JOB_TYPE_JOIN_DETECTION:
        return _join_questions(result, config)
    return []


def emit_questions(
    session: Session,
    question_store,
    database_id: str,
    job_id: Optional[str],
    job_type: str,
    result: Optional[Dict[str, Any]],
    config: Optional[PipelineConfig] = None,
) -> int:
    """Upsert derived questions inside the caller's transaction.

    Returns the number of questions that did not exist before.
    """
    created = 0
    for draft in derive_questions(job_type, result, config):
        if question_store.upsert(session, database_id, draft, job_id=job_id):
            created += 1
    if created:
        logger.info(f"Emitted {created} SME questions for database {database_id} ({job_type})")
    return created
