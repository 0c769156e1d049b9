"""Batch processor: the analysis job state machine.

pending -> running -> {completed, failed}. Each ``advance`` call runs at
most one batch of work units and persists the outcome in one transaction.

Units inside a batch fan out to the adapter on a thread pool owned by the
batch (bounded by a semaphore) and are folded back into the job in unit
order by this single writer. A unit call that outlives its timeout is
abandoned; the batch never waits for it.

Only one ``advance`` per job is in flight at a time; a second caller gets
a busy result instead of waiting.

No exception raised by units, the adapter or the merger escapes
``advance``; everything ends up in the persisted job record.
"""

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import backoff

from ..config import PipelineConfig
from ..constants import (
    CANCELLED_ERROR,
    INTEGRITY_ERROR_PREFIX,
    JOB_TYPE_AI_CONTEXT,
    JOB_TYPE_JOIN_DETECTION,
    JOB_TYPE_SCHEMA,
    JOB_TYPE_STATISTICAL,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_RUNNING,
    TERMINAL_STATUSES,
)
from ..db import DatabaseManager
from . import heuristics
from .adapter import AnalysisAdapter
from .catalog import TableCatalog
from .emitter import emit_questions
from .enumerator import enumerate_units
from .merger import MergeError, merge_unit_result
from .models import (
    UNIT_EMPTY,
    UNIT_PERMANENT,
    UNIT_SUCCEEDED,
    UNIT_TRANSIENT,
    AdvanceResult,
    AnalysisFailure,
    AnalysisOutcome,
    CatalogHint,
    Empty,
    JobNotFoundError,
    JobRecord,
    Malformed,
    Ok,
    TableDescription,
    TableSpec,
    UnitOutcome,
    WorkUnit,
)
from .stores import JobStore, QuestionStore, RelationshipStore

logger = logging.getLogger(__name__)


def _run_coroutine(coro):
    """Run a batch coroutine to completion from synchronous code.

    ``advance`` may be driven from inside a running event loop, where
    ``asyncio.run`` is not allowed; the batch then gets a loop of its own
    on a helper thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="batch-loop") as runner:
        return runner.submit(asyncio.run, coro).result()


class BatchProcessor:
    """Advance analysis jobs one batch at a time.

    Args:
        db_manager: Application database
        adapter: Analysis backend
        catalog: Source of table/column specs
        config: Pipeline tuning values (defaults from YAML)
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        adapter: AnalysisAdapter,
        catalog: TableCatalog,
        config: Optional[PipelineConfig] = None,
        job_store: Optional[JobStore] = None,
        question_store: Optional[QuestionStore] = None,
        relationship_store: Optional[RelationshipStore] = None,
    ):
        self._db = db_manager
        self._adapter = adapter
        self._catalog = catalog
        self._config = config or PipelineConfig.from_config()
        self._jobs = job_store or JobStore()
        self._questions = question_store or QuestionStore()
        self._relationships = relationship_store or RelationshipStore()

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def config(self) -> PipelineConfig:
        return self._config

    def _lock_for(self, job_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(job_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[job_id] = lock
            return lock

    def _forget_lock(self, job_id: str, lock: threading.Lock):
        with self._locks_guard:
            if self._locks.get(job_id) is lock and not lock.locked():
                del self._locks[job_id]

    def is_busy(self, job_id: str) -> bool:
        with self._locks_guard:
            lock = self._locks.get(str(job_id))
        return lock is not None and lock.locked()

    # ── Public API ──────────────────────────────────────────────────────

    def advance(self, job_id: str) -> AdvanceResult:
        """Run one batch of the job.

        Raises JobNotFoundError for an unknown id; every other outcome is
        reported through the returned result and the persisted job.
        """
        job_id = str(job_id)
        lock = self._lock_for(job_id)
        if not lock.acquire(blocking=False):
            logger.info(f"Job {job_id}: advance already in flight, skipping")
            return AdvanceResult(job_id=job_id, status=STATUS_RUNNING, busy=True)

        result = None
        try:
            result = self._advance_locked(job_id)
            return result
        except JobNotFoundError:
            raise
        except Exception as e:
            logger.error(f"Job {job_id}: batch aborted: {e}", exc_info=True)
            result = self._record_crash(job_id, e)
            return result
        finally:
            lock.release()
            # Terminal and unknown jobs never need their lock again
            if result is None or result.status in TERMINAL_STATUSES:
                self._forget_lock(job_id, lock)

    # ── State machine ───────────────────────────────────────────────────

    def _advance_locked(self, job_id: str) -> AdvanceResult:
        with self._db.get_session() as session:
            record = self._jobs.load(session, job_id)
        if record is None:
            raise JobNotFoundError(f"Job {job_id} not found")

        if record.is_terminal:
            return AdvanceResult(
                job_id=job_id, status=record.status, no_op=True, progress=record.progress,
            )

        # Never resume from counters that disagree with the persisted sets
        problems = record.integrity_errors()
        units = enumerate_units(record.job_type, record.table_ids)
        if len(units) != record.total_units:
            problems.append(f"table set yields {len(units)} units, job expects {record.total_units}")
        if problems:
            message = f"{INTEGRITY_ERROR_PREFIX}: {'; '.join(problems)}"
            logger.error(f"Job {job_id}: {message}")
            return self._halt(record, message)

        if record.cancel_requested:
            logger.info(f"Job {job_id}: cancelled")
            return self._halt(record, CANCELLED_ERROR)

        now = datetime.utcnow()
        if record.status == STATUS_PENDING:
            record.transition(STATUS_RUNNING)
            record.started_at = now
            logger.info(f"Job {job_id}: {record.job_type} started with {record.total_units} units")

        batch = self._select_batch(record, units)
        outcomes = self._run_batch(record, batch) if batch else []
        result = self._fold(record, batch, outcomes, units)

        self._persist(record, outcomes, result)
        result.status = record.status
        result.progress = record.progress
        return result

    def _select_batch(self, record: JobRecord, units: List[WorkUnit]) -> List[WorkUnit]:
        settled = record.settled_unit_ids
        pending = [u for u in units[record.next_index:] if u.unit_id not in settled]
        return pending[:max(record.batch_size, 1)]

    def _fold(
        self,
        record: JobRecord,
        batch: List[WorkUnit],
        outcomes: List[UnitOutcome],
        units: List[WorkUnit],
    ) -> AdvanceResult:
        """Apply batch outcomes to the record, in unit order."""
        result = AdvanceResult(job_id=record.job_id, status=record.status)

        for outcome in outcomes:
            uid = outcome.unit.unit_id
            if outcome.kind == UNIT_SUCCEEDED:
                try:
                    record.result = merge_unit_result(record.job_type, record.result, outcome.unit, outcome.value)
                except MergeError as e:
                    outcome.kind = UNIT_PERMANENT
                    outcome.error = f"malformed result: {e}"
                else:
                    record.processed_unit_ids.append(uid)
                    record.completed_units += 1
                    record.unit_errors.pop(uid, None)
                    result.succeeded.append(uid)
                    continue

            record.unit_errors[uid] = outcome.error or "unknown error"
            record.last_error = f"unit {uid}: {outcome.error}"
            if outcome.kind == UNIT_PERMANENT:
                record.failed_unit_ids.append(uid)
                result.failed.append(uid)
            else:
                result.deferred.append(uid)

        settled = record.settled_unit_ids
        record.next_index = next(
            (u.index for u in units if u.unit_id not in settled), len(units)
        )
        if batch:
            record.batch_index += 1
        record.progress = (
            100 if record.total_units == 0
            else int(len(settled) * 100 / record.total_units)
        )

        logger.info(
            f"Job {record.job_id}: batch {record.batch_index} "
            f"ok={len(result.succeeded)} failed={len(result.failed)} "
            f"deferred={len(result.deferred)} next_index={record.next_index} "
            f"({record.completed_units}/{record.total_units})"
        )

        now = datetime.utcnow()
        if len(settled) >= record.total_units:
            if record.completed_units > 0 or record.total_units == 0:
                record.transition(STATUS_COMPLETED)
                record.progress = 100
                logger.info(f"Job {record.job_id}: completed ({record.completed_units}/{record.total_units} units)")
            else:
                record.transition(STATUS_FAILED)
                logger.warning(f"Job {record.job_id}: failed, no unit succeeded")
            record.completed_at = now
            return result

        if batch and not result.succeeded:
            record.failed_batch_streak += 1
            if record.failed_batch_streak > self._config.failed_batch_ceiling:
                record.transition(STATUS_FAILED)
                record.completed_at = now
                logger.warning(
                    f"Job {record.job_id}: failed after {record.failed_batch_streak} "
                    f"consecutive failed batches; last error: {record.last_error}"
                )
        else:
            record.failed_batch_streak = 0
        return result

    def _persist(self, record: JobRecord, outcomes: List[UnitOutcome], result: AdvanceResult):
        """Write the job, its candidates and (on completion) its questions atomically."""
        touched = set()
        if record.job_type == JOB_TYPE_JOIN_DETECTION:
            for outcome in outcomes:
                if outcome.kind == UNIT_SUCCEEDED:
                    touched.update(a.pair_key for a in outcome.value)

        with self._db.get_session() as session:
            self._jobs.save(session, record)

            candidates = (record.result or {}).get("candidates") or {}
            for key in sorted(touched):
                self._relationships.upsert(
                    session, record.database_id, candidates[key], key, job_id=record.job_id,
                )

            if record.status == STATUS_COMPLETED:
                if record.job_type == JOB_TYPE_STATISTICAL:
                    self._catalog.apply_statistics(session, record.database_id, record.result)
                elif record.job_type == JOB_TYPE_AI_CONTEXT:
                    self._catalog.apply_ai_context(session, record.database_id, record.result)
                result.questions_created = emit_questions(
                    session,
                    self._questions,
                    record.database_id,
                    record.job_id,
                    record.job_type,
                    record.result,
                    self._config,
                )

    def _halt(self, record: JobRecord, message: str) -> AdvanceResult:
        record.transition(STATUS_FAILED)
        record.last_error = message
        record.completed_at = datetime.utcnow()
        with self._db.get_session() as session:
            self._jobs.save(session, record)
        return AdvanceResult(
            job_id=record.job_id, status=record.status, progress=record.progress, error=message,
        )

    def _record_crash(self, job_id: str, error: Exception) -> AdvanceResult:
        """Note an aborted batch on the job.

        The job stays resumable, but an aborted batch counts as a failed
        batch, so a job that can never get through one ends up failed.
        """
        message = f"batch aborted: {type(error).__name__}: {error}"
        status = "unknown"
        try:
            with self._db.get_session() as session:
                record = self._jobs.load(session, job_id)
                if record is not None and not record.is_terminal:
                    now = datetime.utcnow()
                    if record.status == STATUS_PENDING:
                        record.transition(STATUS_RUNNING)
                        record.started_at = now
                    record.last_error = message
                    record.failed_batch_streak += 1
                    if record.failed_batch_streak > self._config.failed_batch_ceiling:
                        record.transition(STATUS_FAILED)
                        record.completed_at = now
                        logger.warning(
                            f"Job {job_id}: failed after {record.failed_batch_streak} "
                            f"consecutive failed batches; last error: {message}"
                        )
                    self._jobs.save(session, record)
                if record is not None:
                    status = record.status
        except Exception as e:
            logger.error(f"Job {job_id}: could not record aborted batch: {e}")
        return AdvanceResult(job_id=job_id, status=status, error=message)

    # ── Unit execution ──────────────────────────────────────────────────

    def _run_batch(self, record: JobRecord, batch: List[WorkUnit]) -> List[UnitOutcome]:
        table_ids = sorted({t for u in batch for t in u.table_ids})
        tables = self._catalog.get_tables(record.database_id, table_ids)

        hints: List[CatalogHint] = []
        if record.job_type == JOB_TYPE_JOIN_DETECTION and tables:
            try:
                hints = self._adapter.catalog_hints(list(tables.values()))
            except AnalysisFailure as e:
                logger.warning(f"Job {record.job_id}: catalog hints unavailable: {e}")

        executor = ThreadPoolExecutor(
            max_workers=self._config.max_concurrency,
            thread_name_prefix=f"unit-{record.job_id[:8]}",
        )
        try:
            return _run_coroutine(self._run_batch_async(batch, tables, hints, executor))
        finally:
            # Timed-out calls keep their thread until they return; nobody waits for them
            executor.shutdown(wait=False, cancel_futures=True)

    async def _run_batch_async(
        self,
        batch: List[WorkUnit],
        tables: Dict[str, TableSpec],
        hints: Sequence[CatalogHint],
        executor: ThreadPoolExecutor,
    ) -> List[UnitOutcome]:
        semaphore = asyncio.Semaphore(self._config.max_concurrency)

        async def run_one(unit: WorkUnit) -> UnitOutcome:
            async with semaphore:
                return await self._run_unit(unit, tables, hints, executor)

        # gather keeps input order, so folding stays deterministic
        return list(await asyncio.gather(*(run_one(u) for u in batch)))

    async def _run_unit(
        self,
        unit: WorkUnit,
        tables: Dict[str, TableSpec],
        hints: Sequence[CatalogHint],
        executor: ThreadPoolExecutor,
    ) -> UnitOutcome:
        attempts = 0
        timeout = self._config.unit_timeout_seconds
        loop = asyncio.get_running_loop()

        def _on_retry(details: dict):
            logger.warning(
                f"Unit {unit.unit_id}: retry {details['tries']}/{self._config.unit_retry_budget} "
                f"after {details['wait']:.1f}s: {details.get('exception')}"
            )

        # unit_retry_budget counts retries, not attempts
        @backoff.on_exception(
            backoff.expo,
            AnalysisFailure,
            max_tries=self._config.unit_retry_budget + 1,
            giveup=lambda e: not e.retryable,
            on_backoff=_on_retry,
            factor=self._config.retry_base_delay,
            max_value=self._config.retry_max_delay,
        )
        async def _attempt() -> AnalysisOutcome:
            nonlocal attempts
            attempts += 1
            try:
                return await asyncio.wait_for(
                    loop.run_in_executor(executor, self._execute_unit, unit, tables, hints),
                    timeout=timeout,
                )
            except asyncio.TimeoutError as e:
                raise AnalysisFailure(
                    f"timed out after {timeout:g}s", retryable=True, unit_id=unit.unit_id
                ) from e

        try:
            outcome = await _attempt()
        except AnalysisFailure as e:
            kind = UNIT_TRANSIENT if e.retryable else UNIT_PERMANENT
            logger.warning(f"Unit {unit.unit_id}: {kind} failure after {attempts} attempt(s): {e.message}")
            return UnitOutcome(unit=unit, kind=kind, error=e.message, attempts=attempts)
        except Exception as e:
            logger.error(f"Unit {unit.unit_id}: unexpected error: {e}", exc_info=True)
            return UnitOutcome(
                unit=unit, kind=UNIT_PERMANENT, error=f"{type(e).__name__}: {e}", attempts=attempts,
            )

        if isinstance(outcome, Ok):
            return UnitOutcome(unit=unit, kind=UNIT_SUCCEEDED, value=outcome.value, attempts=attempts)
        if isinstance(outcome, Empty):
            return UnitOutcome(
                unit=unit, kind=UNIT_EMPTY, error=f"empty result: {outcome.reason}", attempts=attempts,
            )
        if isinstance(outcome, Malformed):
            return UnitOutcome(
                unit=unit, kind=UNIT_PERMANENT, error=f"malformed result: {outcome.error}", attempts=attempts,
            )
        return UnitOutcome(
            unit=unit, kind=UNIT_PERMANENT,
            error=f"unexpected adapter result {type(outcome).__name__}", attempts=attempts,
        )

    def _execute_unit(
        self,
        unit: WorkUnit,
        tables: Dict[str, TableSpec],
        hints: Sequence[CatalogHint],
    ) -> AnalysisOutcome:
        """One adapter round for a unit (runs in a worker thread)."""
        for table_id in unit.table_ids:
            if table_id not in tables:
                raise AnalysisFailure(
                    f"table {table_id} not found in catalog", retryable=False, unit_id=unit.unit_id,
                )

        if unit.job_type == JOB_TYPE_JOIN_DETECTION:
            return self._execute_join_unit(unit, tables, hints)

        table = tables[unit.table_ids[0]]
        if unit.job_type == JOB_TYPE_SCHEMA:
            return self._adapter.inspect_table(table)
        if unit.job_type == JOB_TYPE_STATISTICAL:
            return self._adapter.profile_table(table)
        if unit.job_type == JOB_TYPE_AI_CONTEXT:
            outcome = self._adapter.describe_table(table)
            if isinstance(outcome, Ok) and isinstance(outcome.value, TableDescription):
                outcome.value.with_catalog_facts(table)
            return outcome
        raise AnalysisFailure(f"unsupported job type {unit.job_type}", retryable=False, unit_id=unit.unit_id)

    def _execute_join_unit(
        self,
        unit: WorkUnit,
        tables: Dict[str, TableSpec],
        hints: Sequence[CatalogHint],
    ) -> AnalysisOutcome:
        table_a, table_b = (tables[t] for t in unit.table_ids)
        found = []
        for col_a in table_a.columns:
            for col_b in table_b.columns:
                if not heuristics.passes_prescreen(
                    table_a, col_a, table_b, col_b, hints, self._config.min_name_similarity,
                ):
                    continue
                outcome = self._adapter.assess_relationship(table_a, col_a, table_b, col_b, hints)
                if isinstance(outcome, Malformed):
                    return outcome
                if isinstance(outcome, Ok):
                    found.append(outcome.value)
        return Ok(found)
