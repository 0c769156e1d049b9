"""Tests for BatchProcessor, the analysis job state machine.

Tests cover:
- pending -> running -> completed/failed transitions
- Bookkeeping invariants after every advance
- Terminal jobs are never mutated again
- Partial failure, transient retry, timeout and empty results
- Timed-out calls are abandoned; advance driven from a running event loop
- Consecutive failed-batch ceiling
- Cancellation and the counter integrity guard
- Single writer per job (busy result)
- Crash in the middle of a job resumes to the same result
- Relationship candidates and SME questions written by a join job
"""

import asyncio
import threading
import time
import pytest
from uuid import UUID, uuid4

from schemaloom.core.analysis.engine import AnalysisEngine
from schemaloom.core.analysis.processor import BatchProcessor
from schemaloom.core.analysis.models import (
    AnalysisFailure,
    ColumnSpec,
    Empty,
    JobNotFoundError,
    Malformed,
    TableSpec,
)
from schemaloom.core.analysis.stores import JobStore
from schemaloom.core.config import PipelineConfig
from schemaloom.core.db.models import AnalysisJob, ForeignKeyCandidate, SmeQuestion


# ── Fixtures ──────────────────────────────────────────────────────────────


def _engine(db, adapter, catalog, config):
    return AnalysisEngine(db, adapter, catalog, config=config)


def _job(db, job_id):
    with db.get_session() as session:
        return JobStore().load(session, job_id)


def _assert_invariants(record):
    assert len(record.processed_unit_ids) == record.completed_units
    assert len(set(record.processed_unit_ids)) == len(record.processed_unit_ids)
    assert record.completed_units <= record.total_units
    assert not set(record.processed_unit_ids) & set(record.failed_unit_ids)


def _drain(engine, job_id, limit=50):
    results = []
    for _ in range(limit):
        result = engine.advance(job_id)
        results.append(result)
        if result.status in ("completed", "failed") or result.no_op:
            break
    return results


def _transient(message="429 Too Many Requests"):
    return AnalysisFailure(message, retryable=True)


def _permanent(message="table is gone"):
    return AnalysisFailure(message, retryable=False)


# ── Tests: Lifecycle ──────────────────────────────────────────────────────


class TestLifecycle:

    def test_first_advance_starts_job(self, db, config, scripted_adapter, simple_catalog):
        engine = _engine(db, scripted_adapter(), simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        result = engine.advance(job_id)
        record = _job(db, job_id)

        assert result.status == "running"
        assert result.succeeded == ["t1", "t2"]
        assert result.progress == 40
        assert record.started_at is not None
        assert record.processed_unit_ids == ["t1", "t2"]
        assert record.next_index == 2
        assert record.batch_index == 1

    def test_invariants_hold_after_every_advance(self, db, config, scripted_adapter, simple_catalog):
        engine = _engine(db, scripted_adapter(), simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        results = _drain(engine, job_id)
        record = _job(db, job_id)

        assert len(results) == 3
        assert record.status == "completed"
        assert record.progress == 100
        assert record.completed_at is not None
        assert sorted(record.result["tables"]) == ["t1", "t2", "t3", "t4", "t5"]
        _assert_invariants(record)

    def test_terminal_job_is_not_mutated(self, db, config, scripted_adapter, simple_catalog):
        adapter = scripted_adapter()
        engine = _engine(db, adapter, simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]
        _drain(engine, job_id)
        before = _job(db, job_id)
        calls_before = dict(adapter.calls)

        result = engine.advance(job_id)
        after = _job(db, job_id)

        assert result.no_op is True
        assert result.status == "completed"
        assert after == before
        assert dict(adapter.calls) == calls_before

    def test_empty_table_set_completes(self, db, config, scripted_adapter, make_catalog):
        engine = _engine(db, scripted_adapter(), make_catalog([]), config)
        job_id = engine.start_job("db1", "join_detection", table_ids=[])["job_id"]

        result = engine.advance(job_id)

        assert result.status == "completed"
        assert result.progress == 100

    def test_unknown_job(self, db, config, scripted_adapter, simple_catalog):
        engine = _engine(db, scripted_adapter(), simple_catalog, config)
        with pytest.raises(JobNotFoundError):
            engine.advance(str(uuid4()))
        assert engine.processor._locks == {}

    def test_advance_from_inside_event_loop(self, db, config, scripted_adapter, simple_catalog):
        engine = _engine(db, scripted_adapter(), simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        async def drive():
            return engine.advance(job_id)

        result = asyncio.run(drive())
        record = _job(db, job_id)

        assert result.error is None
        assert result.succeeded == ["t1", "t2"]
        assert record.completed_units == 2
        assert record.failed_batch_streak == 0


# ── Tests: Unit failures ──────────────────────────────────────────────────


class TestUnitFailures:

    def test_permanent_failure_does_not_fail_job(self, db, config, scripted_adapter, simple_catalog):
        adapter = scripted_adapter(scripts={"t3": [_permanent()]})
        engine = _engine(db, adapter, simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context", batch_size=5)["job_id"]

        result = engine.advance(job_id)
        record = _job(db, job_id)

        assert result.failed == ["t3"]
        assert record.status == "completed"
        assert record.completed_units == 4
        assert record.failed_unit_ids == ["t3"]
        assert "t3" in record.last_error
        assert "t3" not in record.result["tables"]
        assert adapter.calls["t3"] == 1
        _assert_invariants(record)

    def test_transient_failure_retried_within_budget(self, db, config, scripted_adapter, simple_catalog):
        adapter = scripted_adapter(scripts={"t1": [_transient(), None]})
        engine = _engine(db, adapter, simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        result = engine.advance(job_id)
        record = _job(db, job_id)

        assert result.succeeded == ["t1", "t2"]
        assert adapter.calls["t1"] == 2
        assert record.unit_errors == {}

    def test_exhausted_transient_defers_unit(self, db, config, scripted_adapter, simple_catalog):
        adapter = scripted_adapter(scripts={"t1": [_transient()]})
        engine = _engine(db, adapter, simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        result = engine.advance(job_id)
        record = _job(db, job_id)

        assert result.deferred == ["t1"]
        assert result.succeeded == ["t2"]
        assert adapter.calls["t1"] == config.unit_retry_budget + 1
        assert "t1" not in record.processed_unit_ids
        assert "t1" not in record.failed_unit_ids
        assert record.next_index == 0
        assert "429" in record.unit_errors["t1"]

    def test_deferred_unit_is_retried_next_batch(self, db, config, scripted_adapter, simple_catalog):
        adapter = scripted_adapter(scripts={"t1": [_transient()] * 4 + [None]})
        engine = _engine(db, adapter, simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        engine.advance(job_id)
        second = engine.advance(job_id)

        assert second.succeeded[0] == "t1"
        assert _job(db, job_id).unit_errors == {}

    def test_malformed_result_is_permanent(self, db, config, scripted_adapter, simple_catalog):
        adapter = scripted_adapter(scripts={"t2": [Malformed(raw="<html>", error="not json")]})
        engine = _engine(db, adapter, simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        result = engine.advance(job_id)

        assert result.failed == ["t2"]
        assert "not json" in _job(db, job_id).unit_errors["t2"]

    def test_empty_result_is_left_for_later(self, db, config, scripted_adapter, simple_catalog):
        adapter = scripted_adapter(scripts={"t1": [Empty("quota exhausted"), None]})
        engine = _engine(db, adapter, simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        first = engine.advance(job_id)
        second = engine.advance(job_id)

        assert first.deferred == ["t1"]
        assert adapter.calls["t1"] == 2
        assert "t1" in second.succeeded

    def test_unexpected_exception_is_permanent(self, db, config, scripted_adapter, simple_catalog):
        adapter = scripted_adapter(scripts={"t1": [KeyError("columns")]})
        engine = _engine(db, adapter, simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        result = engine.advance(job_id)

        assert result.failed == ["t1"]
        assert "KeyError" in _job(db, job_id).unit_errors["t1"]

    def test_table_missing_from_catalog(self, db, config, scripted_adapter, simple_catalog):
        engine = _engine(db, scripted_adapter(), simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context", table_ids=["t1", "ghost"])["job_id"]

        result = engine.advance(job_id)
        record = _job(db, job_id)

        assert result.failed == ["ghost"]
        assert record.status == "completed"
        assert record.completed_units == 1

    def test_timeout_is_transient(self, db, scripted_adapter, simple_catalog):
        config = PipelineConfig(
            batch_size=1, unit_retry_budget=0, unit_timeout_seconds=0.1, retry_base_delay=0.0,
        )

        class SlowAdapter(scripted_adapter):
            def describe_table(self, table):
                time.sleep(0.4)
                return super().describe_table(table)

        engine = _engine(db, SlowAdapter(), simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        result = engine.advance(job_id)

        assert result.deferred == ["t1"]
        assert "timed out" in _job(db, job_id).unit_errors["t1"]

    def test_timed_out_call_does_not_hold_the_batch(self, db, scripted_adapter, simple_catalog):
        config = PipelineConfig(
            batch_size=1, unit_retry_budget=0, unit_timeout_seconds=0.3, retry_base_delay=0.0,
        )
        release = threading.Event()

        class HungAdapter(scripted_adapter):
            def describe_table(self, table):
                release.wait(timeout=3)
                return super().describe_table(table)

        engine = _engine(db, HungAdapter(), simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        started = time.monotonic()
        try:
            result = engine.advance(job_id)
            elapsed = time.monotonic() - started
        finally:
            release.set()

        assert elapsed < 1.5
        assert result.deferred == ["t1"]
        assert engine.get_job_status(job_id)["busy"] is False

    def test_retry_does_not_overlap_a_hung_call(self, db, scripted_adapter, simple_catalog):
        config = PipelineConfig(
            batch_size=1, unit_retry_budget=1, max_concurrency=1, unit_timeout_seconds=0.2,
            retry_base_delay=0.0, retry_max_delay=0.0,
        )
        release = threading.Event()
        entered = []

        class HungAdapter(scripted_adapter):
            def describe_table(self, table):
                entered.append(table.table_id)
                release.wait(timeout=3)
                return super().describe_table(table)

        engine = _engine(db, HungAdapter(), simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        try:
            result = engine.advance(job_id)
        finally:
            release.set()

        assert result.deferred == ["t1"]
        assert entered == ["t1"]

    def test_zero_retry_budget_is_one_attempt(self, db, scripted_adapter, simple_catalog):
        config = PipelineConfig(batch_size=1, unit_retry_budget=0, retry_base_delay=0.0)
        adapter = scripted_adapter(scripts={"t1": [_transient(), None]})
        engine = _engine(db, adapter, simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        result = engine.advance(job_id)

        assert result.deferred == ["t1"]
        assert adapter.calls["t1"] == 1


    def test_no_unit_succeeds(self, db, config, scripted_adapter, simple_catalog):
        adapter = scripted_adapter(scripts={"t1": [_permanent()], "t2": [_permanent()]})
        engine = _engine(db, adapter, simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context", table_ids=["t1", "t2"])["job_id"]

        result = engine.advance(job_id)
        record = _job(db, job_id)

        assert result.status == "failed"
        assert record.completed_units == 0
        assert record.failed_unit_ids == ["t1", "t2"]
        assert record.completed_at is not None


# ── Tests: Failed-batch ceiling ───────────────────────────────────────────


class TestFailedBatchCeiling:

    def test_job_fails_after_ceiling(self, db, config, scripted_adapter, simple_catalog):
        adapter = scripted_adapter(scripts={"t1": [_transient()]})
        engine = _engine(db, adapter, simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context", table_ids=["t1"])["job_id"]

        statuses = [engine.advance(job_id).status for _ in range(config.failed_batch_ceiling + 1)]
        record = _job(db, job_id)

        assert statuses == ["running"] * config.failed_batch_ceiling + ["failed"]
        assert record.failed_batch_streak == config.failed_batch_ceiling + 1
        assert "t1" in record.last_error
        assert engine.advance(job_id).no_op is True

    def test_success_resets_streak(self, db, config, scripted_adapter, simple_catalog):
        adapter = scripted_adapter(scripts={"t1": [_transient()] * 4 + [None]})
        engine = _engine(db, adapter, simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context", table_ids=["t1", "t2"], batch_size=1)["job_id"]

        engine.advance(job_id)
        assert _job(db, job_id).failed_batch_streak == 1

        engine.advance(job_id)
        assert _job(db, job_id).failed_batch_streak == 0

    def test_aborted_batches_count_toward_ceiling(self, db, config, scripted_adapter, simple_catalog, make_catalog):
        class OfflineCatalog(make_catalog):
            def get_tables(self, database_id, table_ids):
                raise RuntimeError("catalog offline")

        catalog = OfflineCatalog(list(simple_catalog.tables.values()))
        engine = _engine(db, scripted_adapter(), catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        results = [engine.advance(job_id) for _ in range(config.failed_batch_ceiling + 1)]
        record = _job(db, job_id)

        assert [r.status for r in results] == ["running"] * config.failed_batch_ceiling + ["failed"]
        assert all("catalog offline" in r.error for r in results)
        assert record.failed_batch_streak == config.failed_batch_ceiling + 1
        assert record.started_at is not None
        assert record.completed_at is not None
        assert engine.advance(job_id).no_op is True


# ── Tests: Cancellation and integrity ─────────────────────────────────────


class TestHalts:

    def test_cancel_running_job(self, db, config, scripted_adapter, simple_catalog):
        engine = _engine(db, scripted_adapter(), simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]
        engine.advance(job_id)

        engine.request_cancel(job_id)
        result = engine.advance(job_id)
        record = _job(db, job_id)

        assert result.status == "failed"
        assert record.last_error == "cancelled"
        assert record.processed_unit_ids == ["t1", "t2"]
        assert engine.advance(job_id).no_op is True

    def test_cancel_pending_job(self, db, config, scripted_adapter, simple_catalog):
        adapter = scripted_adapter()
        engine = _engine(db, adapter, simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        engine.request_cancel(job_id)
        result = engine.advance(job_id)

        assert result.status == "failed"
        assert result.error == "cancelled"
        assert dict(adapter.calls) == {}

    def test_counter_mismatch_halts_job(self, db, config, scripted_adapter, simple_catalog):
        adapter = scripted_adapter()
        engine = _engine(db, adapter, simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]
        engine.advance(job_id)

        with db.get_session() as session:
            session.get(AnalysisJob, UUID(job_id)).completed_units = 5

        result = engine.advance(job_id)
        record = _job(db, job_id)

        assert result.status == "failed"
        assert record.last_error.startswith("data integrity")
        assert record.processed_unit_ids == ["t1", "t2"]
        assert adapter.calls["t3"] == 0

    def test_changed_table_set_halts_job(self, db, config, scripted_adapter, simple_catalog):
        engine = _engine(db, scripted_adapter(), simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        with db.get_session() as session:
            session.get(AnalysisJob, UUID(job_id)).table_ids = ["t1", "t2"]

        result = engine.advance(job_id)

        assert result.status == "failed"
        assert "table set yields 2 units" in result.error


# ── Tests: Single writer ──────────────────────────────────────────────────


class TestSingleWriter:

    def test_held_lock_returns_busy(self, db, config, scripted_adapter, simple_catalog):
        engine = _engine(db, scripted_adapter(), simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]
        lock = engine.processor._lock_for(job_id)

        lock.acquire()
        try:
            result = engine.advance(job_id)
            assert engine.get_job_status(job_id)["busy"] is True
        finally:
            lock.release()

        assert result.busy is True
        assert _job(db, job_id).status == "pending"

    def test_concurrent_advance_is_rejected(self, db, config, scripted_adapter, simple_catalog):
        entered = threading.Event()
        release = threading.Event()

        class BlockingAdapter(scripted_adapter):
            def describe_table(self, table):
                entered.set()
                release.wait(timeout=5)
                return super().describe_table(table)

        engine = _engine(db, BlockingAdapter(), simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        results = []
        worker = threading.Thread(target=lambda: results.append(engine.advance(job_id)))
        worker.start()
        assert entered.wait(timeout=5)

        second = engine.advance(job_id)
        release.set()
        worker.join(timeout=10)

        assert second.busy is True
        assert results[0].succeeded == ["t1", "t2"]
        record = _job(db, job_id)
        assert record.completed_units == 2
        _assert_invariants(record)

    def test_lock_dropped_once_job_is_terminal(self, db, config, scripted_adapter, simple_catalog):
        engine = _engine(db, scripted_adapter(), simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        engine.advance(job_id)
        assert job_id in engine.processor._locks

        _drain(engine, job_id)

        assert job_id not in engine.processor._locks
        assert engine.get_job_status(job_id)["busy"] is False


# ── Tests: Crash and resume ───────────────────────────────────────────────


class CrashingJobStore(JobStore):
    """Fails the save of one batch, once."""

    def __init__(self, crash_on_batch):
        self.crash_on_batch = crash_on_batch
        self.crashed = False

    def save(self, session, record):
        if not self.crashed and record.batch_index == self.crash_on_batch:
            self.crashed = True
            raise RuntimeError("connection lost")
        super().save(session, record)


def _candidate_set(db, database_id):
    with db.get_session() as session:
        rows = session.query(ForeignKeyCandidate).filter_by(database_id=database_id).all()
        return {(r.dedupe_key, r.confidence, r.reasoning, r.relationship_kind) for r in rows}


class TestCrashResume:

    def test_resume_matches_uninterrupted_run(self, db, config, heuristic_adapter, shop_catalog):
        clean = _engine(db, heuristic_adapter, shop_catalog, config)
        clean_id = clean.start_job("clean", "join_detection")["job_id"]
        _drain(clean, clean_id)

        store = CrashingJobStore(crash_on_batch=3)
        processor = BatchProcessor(db, heuristic_adapter, shop_catalog, config=config, job_store=store)
        crashy = AnalysisEngine(db, heuristic_adapter, shop_catalog, config=config, processor=processor)
        crashy_id = crashy.start_job("crashy", "join_detection")["job_id"]

        crashy.advance(crashy_id)
        crashy.advance(crashy_id)
        aborted = crashy.advance(crashy_id)
        after_crash = _job(db, crashy_id)

        assert aborted.error is not None
        assert "connection lost" in after_crash.last_error
        assert after_crash.batch_index == 2
        assert after_crash.completed_units == 4
        assert after_crash.status == "running"

        _drain(crashy, crashy_id)
        clean_record, crashy_record = _job(db, clean_id), _job(db, crashy_id)

        assert crashy_record.status == clean_record.status == "completed"
        assert crashy_record.total_units == 10
        assert crashy_record.completed_units == 10
        assert crashy_record.result == clean_record.result
        assert _candidate_set(db, "crashy") == _candidate_set(db, "clean")
        _assert_invariants(crashy_record)


# ── Tests: Outputs ────────────────────────────────────────────────────────


class TestJobOutputs:

    def test_join_candidates_written_per_batch(self, db, config, heuristic_adapter, shop_catalog):
        engine = _engine(db, heuristic_adapter, shop_catalog, config)
        job_id = engine.start_job("db1", "join_detection")["job_id"]

        engine.advance(job_id)
        record = _job(db, job_id)
        with db.get_session() as session:
            stored = session.query(ForeignKeyCandidate).count()
            questions = session.query(SmeQuestion).count()

        assert record.status == "running"
        assert stored == len(record.result["candidates"]) > 0
        assert questions == 0

    def test_join_questions_on_completion(self, db, config, heuristic_adapter, shop_catalog):
        engine = _engine(db, heuristic_adapter, shop_catalog, config)
        job_id = engine.start_job("db1", "join_detection")["job_id"]

        results = _drain(engine, job_id)
        relationships = {r["source_table"] + "." + r["source_column"] + "->" + r["target_table"]: r
                         for r in engine.get_relationships("db1")}
        questions = engine.get_questions("db1", category="relationship")

        assert results[-1].questions_created > 0
        fk = relationships["orders.customer_id->customers"]
        assert fk["confidence"] == pytest.approx(0.73)
        assert fk["validated"] is False
        assert "order_items.product_id->products" in relationships
        assert any("orders.customer_id" in q["question_text"] and q["priority"] == "medium"
                   for q in questions)

    def test_ai_context_questions_on_completion(self, db, config, scripted_adapter, simple_catalog):
        adapter = scripted_adapter(confidence=0.3, enums={"t1": {"id": ["1", "2"]}})
        engine = _engine(db, adapter, simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context", table_ids=["t1"])["job_id"]

        result = engine.advance(job_id)
        questions = engine.get_questions("db1")

        assert result.status == "completed"
        assert result.questions_created == 2
        assert {q["category"] for q in questions} == {"table", "column"}

    def test_statistical_job_writes_catalog(self, db, config, scripted_adapter, simple_catalog):
        engine = _engine(db, scripted_adapter(), simple_catalog, config)
        job_id = engine.start_job("db1", "statistical", table_ids=["t1", "t2"])["job_id"]

        engine.advance(job_id)

        assert len(simple_catalog.applied) == 1
        database_id, profile = simple_catalog.applied[0]
        assert database_id == "db1"
        assert sorted(profile["tables"]) == ["t1", "t2"]
        assert simple_catalog.ai_applied == []

    def test_ai_context_job_writes_catalog(self, db, config, scripted_adapter, simple_catalog):
        engine = _engine(db, scripted_adapter(), simple_catalog, config)
        job_id = engine.start_job("db1", "ai_context", table_ids=["t1", "t2"])["job_id"]

        engine.advance(job_id)

        assert simple_catalog.applied == []
        assert len(simple_catalog.ai_applied) == 1
        database_id, context = simple_catalog.ai_applied[0]
        assert database_id == "db1"
        assert context["tables"]["t1"]["description"] == "Holds table_1 records"

    def test_column_questions_skip_temporal_and_near_unique(self, db, config, scripted_adapter, make_catalog):
        orders = TableSpec(table_id="t1", name="orders", row_count=1000, columns=[
            ColumnSpec(column_id="col-status", name="status", data_type="VARCHAR(20)", cardinality=4),
            ColumnSpec(column_id="col-ref", name="reference", data_type="VARCHAR(40)", cardinality=990),
            ColumnSpec(column_id="col-shipped", name="shipped_at", data_type="VARCHAR(30)", cardinality=3),
            ColumnSpec(column_id="col-day", name="order_day", data_type="DATE", cardinality=5),
        ])
        adapter = scripted_adapter(enums={"t1": {
            "status": ["new", "paid"],
            "reference": ["A-1", "A-2"],
            "shipped_at": ["2024-01-01"],
            "order_day": ["2024-01-01"],
        }})
        engine = _engine(db, adapter, make_catalog([orders]), config)
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        engine.advance(job_id)
        questions = engine.get_questions("db1", category="column")

        assert [(q["table_id"], q["column_id"]) for q in questions] == [("t1", "col-status")]

    def test_schema_job_collects_structure(self, db, config, scripted_adapter, simple_catalog):
        engine = _engine(db, scripted_adapter(), simple_catalog, config)
        job_id = engine.start_job("db1", "schema", table_ids=["t1"])["job_id"]

        engine.advance(job_id)
        result = engine.get_job_result(job_id)

        assert result["tables"]["t1"]["primary_key"] == ["id"]
