"""Analysis Engine: orchestrator for schema analysis jobs.

Public API consumed by the CLI and the worker. Jobs are advanced by an
outside caller (worker, CLI loop, scheduler); the engine never
self-schedules.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from ..config import PipelineConfig
from ..constants import JOB_TYPES, TERMINAL_STATUSES
from ..db import DatabaseManager
from ..db.models import ForeignKeyCandidate, SmeQuestion
from .adapter import AnalysisAdapter
from .catalog import TableCatalog
from .enumerator import count_units, normalize_table_ids
from .models import (
    AdvanceResult,
    CandidateNotFoundError,
    JobNotFoundError,
    JobRecord,
    QuestionNotFoundError,
)
from .processor import BatchProcessor
from .progress import summarize_progress
from .stores import JobStore, QuestionStore, RelationshipStore

logger = logging.getLogger(__name__)


def _question_to_dict(row: SmeQuestion) -> Dict[str, Any]:
    return {
        "question_id": str(row.question_id),
        "database_id": row.database_id,
        "job_id": str(row.job_id) if row.job_id else None,
        "table_id": row.table_id,
        "column_id": row.column_id,
        "category": row.category,
        "question_text": row.question_text,
        "options": row.options or [],
        "response": row.response,
        "is_answered": row.is_answered,
        "priority": row.priority,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "answered_at": row.answered_at.isoformat() if row.answered_at else None,
    }


def _candidate_to_dict(row: ForeignKeyCandidate) -> Dict[str, Any]:
    return {
        "candidate_id": str(row.candidate_id),
        "database_id": row.database_id,
        "source_table_id": row.source_table_id,
        "source_table": row.source_table,
        "source_column": row.source_column,
        "target_table_id": row.target_table_id,
        "target_table": row.target_table,
        "target_column": row.target_column,
        "confidence": row.confidence,
        "relationship_kind": row.relationship_kind,
        "reasoning": row.reasoning,
        "source": row.discovery_source,
        "validated": row.validated,
        "validated_at": row.validated_at.isoformat() if row.validated_at else None,
    }


class AnalysisEngine:
    """Orchestrate analysis jobs for a database.

    Public API:
        start_job(database_id, job_type, table_ids, batch_size) -> job dict
        advance(job_id) -> AdvanceResult
        run_until_settled(job_id, max_batches) -> job dict
        request_cancel(job_id) -> job dict
        get_job_status(job_id) -> job dict
        list_jobs(database_id) -> list of job dicts
        get_job_overview(database_id) -> latest job per job type
        get_questions(database_id) / answer_question(question_id, response)
        get_relationships(database_id) / validate_relationship(candidate_id)
        get_progress(database_id) -> progress summary dict
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        adapter: AnalysisAdapter,
        catalog: TableCatalog,
        config: Optional[PipelineConfig] = None,
        processor: Optional[BatchProcessor] = None,
    ):
        self._db = db_manager
        self._catalog = catalog
        self._config = config or PipelineConfig.from_config()
        self._jobs = JobStore()
        self._questions = QuestionStore()
        self._relationships = RelationshipStore()
        self._processor = processor or BatchProcessor(
            db_manager,
            adapter,
            catalog,
            config=self._config,
            job_store=self._jobs,
            question_store=self._questions,
            relationship_store=self._relationships,
        )

    @property
    def processor(self) -> BatchProcessor:
        return self._processor

    # ── Jobs ────────────────────────────────────────────────────────────

    def start_job(
        self,
        database_id: str,
        job_type: str,
        table_ids: Optional[Iterable[str]] = None,
        batch_size: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Create a pending job over the given tables (default: every selected table)."""
        if job_type not in JOB_TYPES:
            raise ValueError(f"Unknown job type '{job_type}'. Expected one of {', '.join(JOB_TYPES)}")
        if batch_size is None:
            batch_size = self._config.batch_size
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        if table_ids is None:
            table_ids = self._catalog.list_table_ids(database_id)
        tables = normalize_table_ids(table_ids)

        record = JobRecord(
            job_id=str(uuid4()),
            database_id=database_id,
            job_type=job_type,
            total_units=count_units(job_type, tables),
            batch_size=batch_size,
            table_ids=tables,
        )
        with self._db.get_session() as session:
            self._jobs.create(session, record)

        logger.info(
            f"Created {job_type} job {record.job_id} for database {database_id}: "
            f"{len(tables)} tables, {record.total_units} units, batch size {batch_size}"
        )
        return record.to_dict()

    def advance(self, job_id: str) -> AdvanceResult:
        return self._processor.advance(job_id)

    def run_until_settled(self, job_id: str, max_batches: Optional[int] = None) -> Dict[str, Any]:
        """Advance repeatedly until the job is terminal.

        Stops early when another caller holds the job, when a batch aborts
        before persisting, or after ``max_batches``.
        """
        batches = 0
        while max_batches is None or batches < max_batches:
            result = self._processor.advance(job_id)
            batches += 1
            if result.no_op or result.busy or result.status in TERMINAL_STATUSES:
                break
            if result.error:
                logger.warning(f"Job {job_id}: stopping after aborted batch: {result.error}")
                break
        return self.get_job_status(job_id)

    def request_cancel(self, job_id: str) -> Dict[str, Any]:
        """Flag the job; the next advance halts it as failed/cancelled."""
        with self._db.get_session() as session:
            record = self._jobs.request_cancel(session, job_id)
        if record is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        logger.info(f"Cancellation requested for job {job_id}")
        return record.to_dict()

    def get_job_status(self, job_id: str) -> Dict[str, Any]:
        with self._db.get_session() as session:
            record = self._jobs.load(session, job_id)
        if record is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        status = record.to_dict()
        status["busy"] = self._processor.is_busy(record.job_id)
        return status

    def get_job_result(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._db.get_session() as session:
            record = self._jobs.load(session, job_id)
        if record is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return record.result

    def list_jobs(self, database_id: str) -> List[Dict[str, Any]]:
        with self._db.get_session() as session:
            records = self._jobs.list_for_database(session, database_id)
        return [r.to_dict() for r in records]

    def get_job_overview(self, database_id: str) -> Dict[str, Optional[Dict[str, Any]]]:
        """Most recent job of each type (None where a type never ran)."""
        overview: Dict[str, Optional[Dict[str, Any]]] = {t: None for t in JOB_TYPES}
        for job in self.list_jobs(database_id):   # newest first
            if overview.get(job["job_type"]) is None:
                overview[job["job_type"]] = job
        return overview

    def list_active_job_ids(self, limit: int = 10) -> List[str]:
        with self._db.get_session() as session:
            return self._jobs.list_active_ids(session, limit=limit)

    # ── Questions ───────────────────────────────────────────────────────

    def get_questions(
        self,
        database_id: str,
        category: Optional[str] = None,
        answered: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        with self._db.get_session() as session:
            rows = self._questions.list_for_database(session, database_id, category, answered)
            return [_question_to_dict(r) for r in rows]

    def answer_question(self, question_id: str, response: str) -> Dict[str, Any]:
        with self._db.get_session() as session:
            row = self._questions.answer(session, question_id, response)
            if row is None:
                raise QuestionNotFoundError(f"Question {question_id} not found")
            return _question_to_dict(row)

    def get_progress(self, database_id: str) -> Dict[str, Any]:
        with self._db.get_session() as session:
            rows = self._questions.list_for_database(session, database_id)
            return summarize_progress(rows).to_dict()

    # ── Relationships ───────────────────────────────────────────────────

    def get_relationships(self, database_id: str, min_confidence: Optional[float] = None) -> List[Dict[str, Any]]:
        with self._db.get_session() as session:
            rows = self._relationships.list_for_database(session, database_id, min_confidence)
            return [_candidate_to_dict(r) for r in rows]

    def validate_relationship(self, candidate_id: str, validated: bool = True) -> Dict[str, Any]:
        """Human confirmation; the only path that sets ``validated``."""
        with self._db.get_session() as session:
            row = self._relationships.validate(session, candidate_id, validated)
            if row is None:
                raise CandidateNotFoundError(f"Candidate {candidate_id} not found")
            logger.info(
                f"Relationship {row.source_table}.{row.source_column} -> "
                f"{row.target_table}.{row.target_column} validated={validated}"
            )
            return _candidate_to_dict(row)
