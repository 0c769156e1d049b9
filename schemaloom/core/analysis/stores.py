"""Persistence for jobs, questions and relationship candidates.

Every store method takes the caller's session, so one batch can write the
job record, its candidates and its questions in a single transaction.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session

from ..constants import STATUS_PENDING, STATUS_RUNNING
from ..db.models import AnalysisJob, ForeignKeyCandidate, SmeQuestion
from .emitter import QuestionDraft
from .merger import merge_reasoning
from .models import JobRecord

logger = logging.getLogger(__name__)


def _uuid(value: Any) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def _lookup_id(value: Any) -> Optional[UUID]:
    """Primary-key lookups treat a malformed id as simply not found."""
    try:
        return _uuid(value)
    except ValueError:
        return None


def _insert_ignore(session: Session, model, values: Dict[str, Any], index_elements: List[str]) -> bool:
    """Insert unless a row with the same unique key exists. True if inserted.

    PostgreSQL does this atomically with ON CONFLICT DO NOTHING.
    """
    if session.get_bind().dialect.name == "postgresql":
        stmt = (
            pg_insert(model.__table__)
            .values(**values)
            .on_conflict_do_nothing(index_elements=index_elements)
        )
        return session.execute(stmt).rowcount == 1

    filters = {k: values[k] for k in index_elements}
    if session.query(model).filter_by(**filters).first() is not None:
        return False
    session.add(model(**values))
    session.flush()
    return True


# =============================================================================
# Jobs
# =============================================================================


class JobStore:
    """Maps JobRecord to and from analysis_jobs rows."""

    @staticmethod
    def _to_record(row: AnalysisJob) -> JobRecord:
        return JobRecord(
            job_id=str(row.job_id),
            database_id=row.database_id,
            job_type=row.job_type,
            status=row.status,
            progress=row.progress or 0,
            result=row.result,
            last_error=row.last_error,
            unit_errors=dict(row.unit_errors or {}),
            total_units=row.total_units or 0,
            completed_units=row.completed_units or 0,
            batch_size=row.batch_size,
            table_ids=list(row.table_ids or []),
            processed_unit_ids=list(row.processed_unit_ids or []),
            failed_unit_ids=list(row.failed_unit_ids or []),
            next_index=row.next_index or 0,
            batch_index=row.batch_index or 0,
            failed_batch_streak=row.failed_batch_streak or 0,
            cancel_requested=bool(row.cancel_requested),
            created_at=row.created_at,
            started_at=row.started_at,
            completed_at=row.completed_at,
        )

    @staticmethod
    def _apply(row: AnalysisJob, record: JobRecord):
        # Fresh containers so the JSON columns are always flagged dirty
        row.status = record.status
        row.progress = record.progress
        row.result = dict(record.result) if record.result is not None else None
        row.last_error = record.last_error
        row.unit_errors = dict(record.unit_errors) if record.unit_errors else None
        row.total_units = record.total_units
        row.completed_units = record.completed_units
        row.batch_size = record.batch_size
        row.table_ids = list(record.table_ids)
        row.processed_unit_ids = list(record.processed_unit_ids)
        row.failed_unit_ids = list(record.failed_unit_ids)
        row.next_index = record.next_index
        row.batch_index = record.batch_index
        row.failed_batch_streak = record.failed_batch_streak
        # Sticky: a cancel requested while a batch was in flight must survive its save
        row.cancel_requested = bool(row.cancel_requested) or record.cancel_requested
        row.started_at = record.started_at
        row.completed_at = record.completed_at

    def create(self, session: Session, record: JobRecord) -> JobRecord:
        row = AnalysisJob(
            job_id=_uuid(record.job_id),
            database_id=record.database_id,
            job_type=record.job_type,
        )
        self._apply(row, record)
        session.add(row)
        session.flush()
        record.created_at = row.created_at
        return record

    def load(self, session: Session, job_id: str) -> Optional[JobRecord]:
        key = _lookup_id(job_id)
        row = session.get(AnalysisJob, key) if key else None
        return self._to_record(row) if row else None

    def save(self, session: Session, record: JobRecord):
        row = session.get(AnalysisJob, _uuid(record.job_id))
        if row is None:
            raise LookupError(f"Job {record.job_id} does not exist")
        self._apply(row, record)
        session.flush()

    def request_cancel(self, session: Session, job_id: str) -> Optional[JobRecord]:
        key = _lookup_id(job_id)
        row = session.get(AnalysisJob, key) if key else None
        if row is None:
            return None
        row.cancel_requested = True
        session.flush()
        return self._to_record(row)

    def list_for_database(self, session: Session, database_id: str) -> List[JobRecord]:
        rows = (
            session.query(AnalysisJob)
            .filter(AnalysisJob.database_id == database_id)
            .order_by(AnalysisJob.created_at.desc())
            .all()
        )
        return [self._to_record(r) for r in rows]

    def list_active_ids(self, session: Session, limit: int = 10) -> List[str]:
        rows = (
            session.query(AnalysisJob.job_id)
            .filter(AnalysisJob.status.in_((STATUS_PENDING, STATUS_RUNNING)))
            .order_by(AnalysisJob.created_at)
            .limit(limit)
            .all()
        )
        return [str(r.job_id) for r in rows]


# =============================================================================
# SME questions
# =============================================================================


class QuestionStore:
    """Upsert-by-key question queue. Existing questions are never rewritten."""

    def upsert(
        self,
        session: Session,
        database_id: str,
        draft: QuestionDraft,
        job_id: Optional[str] = None,
    ) -> bool:
        """Insert the question unless its dedupe key exists. True if inserted."""
        return _insert_ignore(
            session,
            SmeQuestion,
            {
                "question_id": uuid4(),
                "database_id": database_id,
                "job_id": _uuid(job_id) if job_id else None,
                "dedupe_key": draft.dedupe_key,
                "table_id": draft.table_id,
                "column_id": draft.column_id,
                "category": draft.category,
                "question_text": draft.question_text,
                "options": list(draft.options) if draft.options else None,
                "priority": draft.priority,
                "is_answered": False,
                "created_at": datetime.utcnow(),
            },
            ["database_id", "dedupe_key"],
        )

    def get(self, session: Session, question_id: str) -> Optional[SmeQuestion]:
        key = _lookup_id(question_id)
        return session.get(SmeQuestion, key) if key else None

    def list_for_database(
        self,
        session: Session,
        database_id: str,
        category: Optional[str] = None,
        answered: Optional[bool] = None,
    ) -> List[SmeQuestion]:
        query = session.query(SmeQuestion).filter(SmeQuestion.database_id == database_id)
        if category is not None:
            query = query.filter(SmeQuestion.category == category)
        if answered is not None:
            query = query.filter(SmeQuestion.is_answered.is_(answered))
        return query.order_by(SmeQuestion.created_at, SmeQuestion.dedupe_key).all()

    def answer(self, session: Session, question_id: str, response: str) -> Optional[SmeQuestion]:
        """Record a response; blank responses are rejected."""
        if response is None or not response.strip():
            raise ValueError("Response must not be empty")
        row = self.get(session, question_id)
        if row is None:
            return None
        row.response = response.strip()
        row.is_answered = True
        row.answered_at = datetime.utcnow()
        session.flush()
        return row


# =============================================================================
# Relationship candidates
# =============================================================================


class RelationshipStore:
    """Upsert-by-key relationship candidates.

    Rediscovery raises confidence and merges reasoning. ``validated`` is
    left alone; only validate() changes it.
    """

    def upsert(
        self,
        session: Session,
        database_id: str,
        candidate: Dict[str, Any],
        dedupe_key: str,
        job_id: Optional[str] = None,
    ) -> ForeignKeyCandidate:
        now = datetime.utcnow()
        inserted = _insert_ignore(
            session,
            ForeignKeyCandidate,
            {
                "candidate_id": uuid4(),
                "database_id": database_id,
                "job_id": _uuid(job_id) if job_id else None,
                "dedupe_key": dedupe_key,
                "source_table_id": candidate["source_table_id"],
                "source_table": candidate["source_table"],
                "source_column_id": candidate.get("source_column_id"),
                "source_column": candidate["source_column"],
                "target_table_id": candidate["target_table_id"],
                "target_table": candidate["target_table"],
                "target_column_id": candidate.get("target_column_id"),
                "target_column": candidate["target_column"],
                "confidence": candidate["confidence"],
                "relationship_kind": candidate.get("relationship_kind"),
                "reasoning": candidate.get("reasoning"),
                "discovery_source": candidate.get("source") or "heuristic",
                "validated": False,
                "created_at": now,
                "updated_at": now,
            },
            ["database_id", "dedupe_key"],
        )

        row = (
            session.query(ForeignKeyCandidate)
            .filter_by(database_id=database_id, dedupe_key=dedupe_key)
            .one()
        )
        if inserted:
            return row

        if candidate["confidence"] > row.confidence:
            row.confidence = candidate["confidence"]
            row.relationship_kind = candidate.get("relationship_kind") or row.relationship_kind
            row.discovery_source = candidate.get("source") or row.discovery_source
        row.reasoning = merge_reasoning(row.reasoning, candidate.get("reasoning"))
        if job_id:
            row.job_id = _uuid(job_id)
        row.updated_at = now
        session.flush()
        return row

    def get(self, session: Session, candidate_id: str) -> Optional[ForeignKeyCandidate]:
        key = _lookup_id(candidate_id)
        return session.get(ForeignKeyCandidate, key) if key else None

    def list_for_database(
        self,
        session: Session,
        database_id: str,
        min_confidence: Optional[float] = None,
    ) -> List[ForeignKeyCandidate]:
        query = session.query(ForeignKeyCandidate).filter(ForeignKeyCandidate.database_id == database_id)
        if min_confidence is not None:
            query = query.filter(ForeignKeyCandidate.confidence >= min_confidence)
        return query.order_by(ForeignKeyCandidate.confidence.desc(), ForeignKeyCandidate.dedupe_key).all()

    def validate(self, session: Session, candidate_id: str, validated: bool = True) -> Optional[ForeignKeyCandidate]:
        row = self.get(session, candidate_id)
        if row is None:
            return None
        row.validated = validated
        row.validated_at = datetime.utcnow() if validated else None
        session.flush()
        return row
