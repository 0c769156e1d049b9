"""Data contracts for the analysis pipeline.

Kept as dataclasses (not ORM models) for transport between layers. The
ORM rows in core/db/models.py are only touched by the stores.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from ..constants import (
    STATUS_PENDING,
    STATUS_TRANSITIONS,
    TERMINAL_STATUSES,
)


# ── Catalog ───────────────────────────────────────────────────────────────


@dataclass
class ColumnSpec:
    """A column as the catalog knows it."""
    column_id: str
    name: str
    data_type: str
    ordinal: int = 0
    is_nullable: bool = True
    is_unique: bool = False
    is_primary_key: bool = False
    cardinality: Optional[int] = None
    null_percentage: Optional[float] = None
    distinct_values: List[Any] = field(default_factory=list)
    ai_description: Optional[str] = None


@dataclass
class TableSpec:
    """A table selected for analysis, with its columns."""
    table_id: str
    name: str
    schema: str = "public"
    row_count: Optional[int] = None
    columns: List[ColumnSpec] = field(default_factory=list)
    ai_description: Optional[str] = None
    business_purpose: Optional[str] = None

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}"

    def column(self, name: str) -> Optional[ColumnSpec]:
        for col in self.columns:
            if col.name == name:
                return col
        return None


@dataclass
class CatalogHint:
    """A declared foreign-key constraint between two catalog columns."""
    source_table_id: str
    source_column: str
    target_table_id: str
    target_column: str
    constraint_name: Optional[str] = None

    def matches(self, table_a: str, column_a: str, table_b: str, column_b: str) -> bool:
        forward = (
            self.source_table_id == table_a and self.source_column == column_a
            and self.target_table_id == table_b and self.target_column == column_b
        )
        backward = (
            self.source_table_id == table_b and self.source_column == column_b
            and self.target_table_id == table_a and self.target_column == column_a
        )
        return forward or backward


# ── Work units ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class WorkUnit:
    """Smallest independently retryable piece of job work.

    ``index`` is the position in the enumerated sequence and is stable
    across resumptions for the same table set.
    """
    unit_id: str
    index: int
    job_type: str
    table_ids: Tuple[str, ...]


# ── Tagged adapter results ────────────────────────────────────────────────


@dataclass
class Ok:
    """Parsed, usable result."""
    value: Any


@dataclass
class Empty:
    """Nothing usable came back (degenerate or quota-limited response)."""
    reason: str = ""


@dataclass
class Malformed:
    """A response that could not be interpreted."""
    raw: Any
    error: str = ""


AnalysisOutcome = Union[Ok, Empty, Malformed]


class AnalysisFailure(Exception):
    """Typed failure from the analysis backend.

    ``retryable`` marks transient faults (rate limit, timeout, network) that
    are worth another attempt within the unit's retry budget.
    """

    def __init__(self, message: str, retryable: bool = False, unit_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.retryable = retryable
        self.unit_id = unit_id

    def __str__(self):
        kind = "transient" if self.retryable else "permanent"
        return f"{self.message} ({kind})"


# ── Adapter payloads ──────────────────────────────────────────────────────


@dataclass
class TableDescription:
    """AI context for one table."""
    table_id: str
    table_name: str
    description: str
    business_purpose: str = ""
    column_descriptions: Dict[str, str] = field(default_factory=dict)
    enum_hypotheses: Dict[str, List[str]] = field(default_factory=dict)
    confidence: Optional[float] = None   # adapter's confidence in its own output
    row_count: Optional[int] = None
    columns: Dict[str, Dict[str, Any]] = field(default_factory=dict)   # catalog facts by column name

    def with_catalog_facts(self, table: TableSpec) -> "TableDescription":
        """Attach the catalog column ids and statistics the question filters need."""
        if self.row_count is None:
            self.row_count = table.row_count
        for col in table.columns:
            self.columns.setdefault(col.name, {
                "column_id": col.column_id,
                "data_type": col.data_type,
                "cardinality": col.cardinality,
            })
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_id": self.table_id,
            "table_name": self.table_name,
            "description": self.description,
            "business_purpose": self.business_purpose,
            "column_descriptions": dict(self.column_descriptions),
            "enum_hypotheses": {k: list(v) for k, v in self.enum_hypotheses.items()},
            "confidence": self.confidence,
            "row_count": self.row_count,
            "columns": {k: dict(v) for k, v in self.columns.items()},
        }


@dataclass
class RelationshipAssessment:
    """A directed relationship hypothesis reported by the adapter.

    ``confidence`` is set only when the adapter can vouch for it directly
    (declared constraints); otherwise the merger scores the signals.
    """
    source_table_id: str
    source_table: str
    source_column_id: Optional[str]
    source_column: str
    target_table_id: str
    target_table: str
    target_column_id: Optional[str]
    target_column: str
    relationship_kind: str
    reasoning: str
    discovery_source: str
    name_similarity: float = 0.0
    types_compatible: bool = True
    cardinality_ratio: Optional[float] = None
    value_overlap: Optional[float] = None   # 0..1, None when unknown
    confidence: Optional[float] = None

    @property
    def pair_key(self) -> str:
        return (
            f"{self.source_table_id}.{self.source_column}"
            f"->{self.target_table_id}.{self.target_column}"
        )


# ── Job state ─────────────────────────────────────────────────────────────


class InvalidTransitionError(ValueError):
    """Raised when a status change would regress or skip the lifecycle."""


class JobNotFoundError(LookupError):
    """No analysis job with the given id."""


class QuestionNotFoundError(LookupError):
    """No SME question with the given id."""


class CandidateNotFoundError(LookupError):
    """No relationship candidate with the given id."""


@dataclass
class JobRecord:
    """In-memory view of one AnalysisJob row.

    Resumption is keyed by ``processed_unit_ids`` and ``failed_unit_ids``;
    the counters are checked against them on every load.
    """
    job_id: str
    database_id: str
    job_type: str
    status: str = STATUS_PENDING
    progress: int = 0
    result: Optional[Dict[str, Any]] = None
    last_error: Optional[str] = None
    unit_errors: Dict[str, str] = field(default_factory=dict)
    total_units: int = 0
    completed_units: int = 0
    batch_size: int = 5
    table_ids: List[str] = field(default_factory=list)
    processed_unit_ids: List[str] = field(default_factory=list)
    failed_unit_ids: List[str] = field(default_factory=list)
    next_index: int = 0
    batch_index: int = 0
    failed_batch_streak: int = 0
    cancel_requested: bool = False
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def settled_unit_ids(self) -> set:
        return set(self.processed_unit_ids) | set(self.failed_unit_ids)

    def transition(self, new_status: str):
        """Move to ``new_status``; only forward moves are allowed."""
        if new_status == self.status:
            return
        allowed = STATUS_TRANSITIONS.get(self.status, ())
        if new_status not in allowed:
            raise InvalidTransitionError(
                f"Job {self.job_id}: cannot move from '{self.status}' to '{new_status}'"
            )
        self.status = new_status

    def integrity_errors(self) -> List[str]:
        """Disagreements between counters and the persisted unit sets."""
        problems = []
        if len(set(self.processed_unit_ids)) != len(self.processed_unit_ids):
            problems.append("processed_unit_ids contains duplicates")
        if len(self.processed_unit_ids) != self.completed_units:
            problems.append(
                f"completed_units={self.completed_units} but "
                f"{len(self.processed_unit_ids)} processed unit ids"
            )
        if self.completed_units > self.total_units:
            problems.append(
                f"completed_units={self.completed_units} exceeds total_units={self.total_units}"
            )
        if set(self.processed_unit_ids) & set(self.failed_unit_ids):
            problems.append("a unit is recorded as both processed and failed")
        return problems

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "database_id": self.database_id,
            "job_type": self.job_type,
            "status": self.status,
            "progress": self.progress,
            "total_units": self.total_units,
            "completed_units": self.completed_units,
            "failed_units": len(self.failed_unit_ids),
            "batch_size": self.batch_size,
            "next_index": self.next_index,
            "batch_index": self.batch_index,
            "last_error": self.last_error,
            "unit_errors": dict(self.unit_errors),
            "cancel_requested": self.cancel_requested,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


# ── Batch outcomes ────────────────────────────────────────────────────────


UNIT_SUCCEEDED = "succeeded"
UNIT_EMPTY = "empty"
UNIT_TRANSIENT = "transient"
UNIT_PERMANENT = "permanent"


@dataclass
class UnitOutcome:
    """What happened to one unit within a batch."""
    unit: WorkUnit
    kind: str
    value: Any = None
    error: Optional[str] = None
    attempts: int = 1

    @property
    def succeeded(self) -> bool:
        return self.kind == UNIT_SUCCEEDED

    @property
    def settles(self) -> bool:
        """True when the unit must not be attempted again."""
        return self.kind in (UNIT_SUCCEEDED, UNIT_PERMANENT)


@dataclass
class AdvanceResult:
    """Summary of a single ``advance`` call."""
    job_id: str
    status: str
    busy: bool = False
    no_op: bool = False
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    deferred: List[str] = field(default_factory=list)
    progress: int = 0
    questions_created: int = 0
    error: Optional[str] = None


# ── Progress ──────────────────────────────────────────────────────────────


@dataclass
class CategoryProgress:
    total: int
    answered: int
    percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return {"total": self.total, "answered": self.answered, "percentage": self.percentage}


@dataclass
class ProgressSummary:
    total_questions: int
    answered_questions: int
    percentage: float
    by_category: Dict[str, CategoryProgress] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_questions": self.total_questions,
            "answered_questions": self.answered_questions,
            "percentage": self.percentage,
            "by_category": {k: v.to_dict() for k, v in self.by_category.items()},
        }
