"""Tests for the AnalysisEngine public API.

Tests cover:
- Job creation and validation
- run_until_settled and max_batches
- Status, overview and active-job listing
- Question answering and progress
- Relationship validation
"""

import pytest
from uuid import uuid4

from schemaloom.core.analysis.engine import AnalysisEngine
from schemaloom.core.analysis.models import (
    CandidateNotFoundError,
    JobNotFoundError,
    QuestionNotFoundError,
)


@pytest.fixture
def engine(db, config, scripted_adapter, simple_catalog):
    return AnalysisEngine(db, scripted_adapter(confidence=0.3), simple_catalog, config=config)


@pytest.fixture
def join_engine(db, config, heuristic_adapter, shop_catalog):
    return AnalysisEngine(db, heuristic_adapter, shop_catalog, config=config)


# ── Tests: Jobs ───────────────────────────────────────────────────────────


class TestStartJob:

    def test_defaults_to_catalog_tables(self, engine):
        job = engine.start_job("db1", "ai_context")

        assert job["status"] == "pending"
        assert job["total_units"] == 5
        assert job["batch_size"] == 2
        assert job["progress"] == 0

    def test_join_counts_pairs(self, engine):
        job = engine.start_job("db1", "join_detection", table_ids=["t3", "t1", "t2", "t1"])
        assert job["total_units"] == 3

    def test_unknown_type_rejected(self, engine):
        with pytest.raises(ValueError):
            engine.start_job("db1", "lineage")

    def test_bad_batch_size_rejected(self, engine):
        with pytest.raises(ValueError):
            engine.start_job("db1", "ai_context", batch_size=-1)


class TestRunUntilSettled:

    def test_runs_to_completion(self, engine):
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        status = engine.run_until_settled(job_id)

        assert status["status"] == "completed"
        assert status["completed_units"] == 5
        assert status["busy"] is False

    def test_max_batches(self, engine):
        job_id = engine.start_job("db1", "ai_context")["job_id"]

        status = engine.run_until_settled(job_id, max_batches=1)

        assert status["status"] == "running"
        assert status["completed_units"] == 2


class TestJobQueries:

    def test_status_of_unknown_job(self, engine):
        with pytest.raises(JobNotFoundError):
            engine.get_job_status(str(uuid4()))
        with pytest.raises(JobNotFoundError):
            engine.request_cancel("not-a-uuid")

    def test_overview_holds_latest_per_type(self, engine):
        older = engine.start_job("db1", "ai_context", table_ids=["t1"])
        newer = engine.start_job("db1", "ai_context", table_ids=["t2"])
        engine.start_job("db2", "schema")

        overview = engine.get_job_overview("db1")

        assert set(overview) == {"schema", "statistical", "ai_context", "join_detection"}
        assert overview["ai_context"]["job_id"] in (older["job_id"], newer["job_id"])
        assert overview["schema"] is None
        assert len(engine.list_jobs("db1")) == 2

    def test_active_ids_exclude_terminal(self, engine):
        done = engine.start_job("db1", "ai_context", table_ids=["t1"])["job_id"]
        engine.run_until_settled(done)
        active = engine.start_job("db1", "ai_context")["job_id"]

        assert engine.list_active_job_ids() == [active]


# ── Tests: Questions ──────────────────────────────────────────────────────


class TestQuestions:

    def test_answer_updates_progress(self, engine):
        job_id = engine.start_job("db1", "ai_context", table_ids=["t1", "t2"])["job_id"]
        engine.run_until_settled(job_id)

        questions = engine.get_questions("db1")
        assert len(questions) == 2
        assert engine.get_progress("db1")["percentage"] == 0.0

        answered = engine.answer_question(questions[0]["question_id"], "Reference data")

        assert answered["is_answered"] is True
        assert answered["response"] == "Reference data"
        assert engine.get_progress("db1")["percentage"] == 50.0
        assert len(engine.get_questions("db1", answered=False)) == 1

    def test_answer_unknown_question(self, engine):
        with pytest.raises(QuestionNotFoundError):
            engine.answer_question(str(uuid4()), "yes")

    def test_progress_without_questions(self, engine):
        assert engine.get_progress("empty-db")["percentage"] == 100.0


# ── Tests: Relationships ──────────────────────────────────────────────────


class TestRelationships:

    def test_validate_candidate(self, join_engine):
        job_id = join_engine.start_job("db1", "join_detection")["job_id"]
        join_engine.run_until_settled(job_id)
        candidates = join_engine.get_relationships("db1")
        target = next(c for c in candidates if c["source_column"] == "customer_id")

        validated = join_engine.validate_relationship(target["candidate_id"])

        assert validated["validated"] is True
        assert validated["validated_at"] is not None
        assert all(c["confidence"] >= 0.7 for c in join_engine.get_relationships("db1", min_confidence=0.7))

    def test_validate_unknown_candidate(self, join_engine):
        with pytest.raises(CandidateNotFoundError):
            join_engine.validate_relationship(str(uuid4()))
