"""
SQLAlchemy ORM Models for SchemaLoom

Schema analysis models:
- CatalogTable, CatalogColumn: tables/columns selected for analysis
- AnalysisJob: resumable batch job, one per (database, job type) attempt
- ForeignKeyCandidate: discovered column-to-column relationship hypotheses
- SmeQuestion: human review queue (permanent audit trail)
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, Column, Float, ForeignKey, Index, Integer, String, Text,
    TIMESTAMP, TypeDecorator, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PostgreSQL_UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import JSON

Base = declarative_base()


# UUID type that works with both PostgreSQL and SQLite
class UUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL's UUID type when available, otherwise stores as String(36).
    """
    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PostgreSQL_UUID(as_uuid=True))
        else:
            return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        elif dialect.name == 'postgresql':
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        else:
            if isinstance(value, uuid.UUID):
                return str(value)
            else:
                return str(uuid.UUID(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        elif isinstance(value, uuid.UUID):
            return value
        else:
            return uuid.UUID(value)


class JSONType(TypeDecorator):
    """JSONB on PostgreSQL, generic JSON elsewhere."""
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


# =============================================================================
# Catalog Models
# =============================================================================

class CatalogTable(Base):
    """A table of an analyzed database, as known to the catalog."""
    __tablename__ = "catalog_tables"
    __table_args__ = (
        UniqueConstraint('database_id', 'schema_name', 'name', name='uq_catalog_table_name'),
        Index('idx_catalog_tables_database', 'database_id'),
    )

    table_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    database_id = Column(String(100), nullable=False)
    schema_name = Column(String(255), nullable=False, default='public')
    name = Column(String(255), nullable=False)
    row_count = Column(Integer, nullable=True)
    is_selected = Column(Boolean, default=True, nullable=False)
    ai_description = Column(Text, nullable=True)
    business_purpose = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    columns = relationship(
        "CatalogColumn", back_populates="table",
        cascade="all, delete-orphan", order_by="CatalogColumn.ordinal",
    )

    def __repr__(self):
        return f"<CatalogTable(table_id={self.table_id}, name='{self.schema_name}.{self.name}')>"


class CatalogColumn(Base):
    """A column of a catalog table, with whatever statistics are known."""
    __tablename__ = "catalog_columns"
    __table_args__ = (
        UniqueConstraint('table_id', 'name', name='uq_catalog_column_name'),
    )

    column_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    table_id = Column(UUID(), ForeignKey("catalog_tables.table_id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    data_type = Column(String(100), nullable=False)
    ordinal = Column(Integer, default=0, nullable=False)
    is_nullable = Column(Boolean, default=True, nullable=False)
    is_unique = Column(Boolean, default=False, nullable=False)
    is_primary_key = Column(Boolean, default=False, nullable=False)
    cardinality = Column(Integer, nullable=True)
    null_percentage = Column(Float, nullable=True)
    distinct_values = Column(JSONType, nullable=True)
    ai_description = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

    table = relationship("CatalogTable", back_populates="columns")

    def __repr__(self):
        return f"<CatalogColumn(column_id={self.column_id}, name='{self.name}', type='{self.data_type}')>"


# =============================================================================
# Analysis Pipeline Models
# =============================================================================

class AnalysisJob(Base):
    """Resumable batch analysis job.

    Resumption is keyed by processed_unit_ids, never by the counters:
    next_index is always re-derivable from the persisted unit sets.
    """
    __tablename__ = "analysis_jobs"
    __table_args__ = (
        Index('idx_analysis_jobs_database_type', 'database_id', 'job_type'),
        Index('idx_analysis_jobs_status_created', 'status', 'created_at'),
    )

    job_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    database_id = Column(String(100), nullable=False)
    job_type = Column(String(30), nullable=False)        # schema|statistical|ai_context|join_detection
    status = Column(String(20), default='pending', nullable=False)  # pending|running|completed|failed
    progress = Column(Integer, default=0, nullable=False)  # derived, 0..100

    # Target table set (ordering of work units is derived from it)
    table_ids = Column(JSONType, nullable=False, default=list)

    # Batch bookkeeping
    total_units = Column(Integer, default=0, nullable=False)
    completed_units = Column(Integer, default=0, nullable=False)
    batch_size = Column(Integer, default=5, nullable=False)
    processed_unit_ids = Column(JSONType, nullable=False, default=list)
    failed_unit_ids = Column(JSONType, nullable=False, default=list)
    next_index = Column(Integer, default=0, nullable=False)
    batch_index = Column(Integer, default=0, nullable=False)
    failed_batch_streak = Column(Integer, default=0, nullable=False)
    cancel_requested = Column(Boolean, default=False, nullable=False)

    # Accumulated result (shape depends on job_type) and errors
    result = Column(JSONType, nullable=True)
    last_error = Column(Text, nullable=True)
    unit_errors = Column(JSONType, nullable=True)   # {unit_id: message}

    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    started_at = Column(TIMESTAMP, nullable=True)
    completed_at = Column(TIMESTAMP, nullable=True)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return (
            f"<AnalysisJob(job_id={self.job_id}, type='{self.job_type}', "
            f"status='{self.status}', {self.completed_units}/{self.total_units})>"
        )


class ForeignKeyCandidate(Base):
    """Directed relationship hypothesis between two columns.

    Upsert on (database_id, dedupe_key). ``validated`` is only ever set by a
    human; discovery never touches it.
    """
    __tablename__ = "foreign_key_candidates"
    __table_args__ = (
        UniqueConstraint('database_id', 'dedupe_key', name='uq_fk_candidate_pair'),
        Index('idx_fk_candidates_source', 'database_id', 'source_table_id'),
    )

    candidate_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    database_id = Column(String(100), nullable=False)
    job_id = Column(UUID(), ForeignKey("analysis_jobs.job_id", ondelete="SET NULL"), nullable=True)
    dedupe_key = Column(String(1024), nullable=False)

    source_table_id = Column(String(100), nullable=False)
    source_table = Column(String(255), nullable=False)
    source_column_id = Column(String(100), nullable=True)
    source_column = Column(String(255), nullable=False)
    target_table_id = Column(String(100), nullable=False)
    target_table = Column(String(255), nullable=False)
    target_column_id = Column(String(100), nullable=True)
    target_column = Column(String(255), nullable=False)

    confidence = Column(Float, nullable=False, default=0.0)
    relationship_kind = Column(String(20), nullable=True)
    reasoning = Column(Text, nullable=True)
    discovery_source = Column(String(20), nullable=False, default='heuristic')  # catalog|heuristic|llm

    validated = Column(Boolean, default=False, nullable=False)
    validated_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return (
            f"<ForeignKeyCandidate({self.source_table}.{self.source_column} -> "
            f"{self.target_table}.{self.target_column}, confidence={self.confidence:.2f})>"
        )


class SmeQuestion(Base):
    """A single point of ambiguity awaiting a subject-matter expert.

    Upsert on (database_id, dedupe_key). Never auto-deleted.
    """
    __tablename__ = "sme_questions"
    __table_args__ = (
        UniqueConstraint('database_id', 'dedupe_key', name='uq_sme_question_key'),
        Index('idx_sme_questions_database_category', 'database_id', 'category'),
    )

    question_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    database_id = Column(String(100), nullable=False)
    job_id = Column(UUID(), ForeignKey("analysis_jobs.job_id", ondelete="SET NULL"), nullable=True)
    dedupe_key = Column(String(1024), nullable=False)

    table_id = Column(String(100), nullable=True)
    column_id = Column(String(100), nullable=True)
    category = Column(String(20), nullable=False)       # table|column|relationship|ambiguity
    question_text = Column(Text, nullable=False)
    options = Column(JSONType, nullable=True)
    response = Column(Text, nullable=True)
    is_answered = Column(Boolean, default=False, nullable=False)
    priority = Column(String(10), default='medium', nullable=False)  # high|medium|low

    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    answered_at = Column(TIMESTAMP, nullable=True)

    def __repr__(self):
        return f"<SmeQuestion(question_id={self.question_id}, category='{self.category}', answered={self.is_answered})>"
