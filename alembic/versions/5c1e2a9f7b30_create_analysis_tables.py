"""create catalog, analysis job, candidate and question tables

Revision ID: 5c1e2a9f7b30
Revises:
Create Date: 2026-10-17 09:12:04.118530

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from schemaloom.core.db.models import JSONType, UUID

# revision identifiers, used by Alembic.
revision: str = '5c1e2a9f7b30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 1. Catalog
    op.create_table('catalog_tables',
        sa.Column('table_id', UUID(), nullable=False),
        sa.Column('database_id', sa.String(length=100), nullable=False),
        sa.Column('schema_name', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('row_count', sa.Integer(), nullable=True),
        sa.Column('is_selected', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('table_id'),
        sa.UniqueConstraint('database_id', 'schema_name', 'name', name='uq_catalog_table_name'),
    )
    op.create_index('idx_catalog_tables_database', 'catalog_tables', ['database_id'])

    op.create_table('catalog_columns',
        sa.Column('column_id', UUID(), nullable=False),
        sa.Column('table_id', UUID(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('data_type', sa.String(length=100), nullable=False),
        sa.Column('ordinal', sa.Integer(), server_default='0', nullable=False),
        sa.Column('is_nullable', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('is_unique', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('is_primary_key', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('cardinality', sa.Integer(), nullable=True),
        sa.Column('null_percentage', sa.Float(), nullable=True),
        sa.Column('distinct_values', JSONType(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['table_id'], ['catalog_tables.table_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('column_id'),
        sa.UniqueConstraint('table_id', 'name', name='uq_catalog_column_name'),
    )

    # 2. Analysis jobs
    op.create_table('analysis_jobs',
        sa.Column('job_id', UUID(), nullable=False),
        sa.Column('database_id', sa.String(length=100), nullable=False),
        sa.Column('job_type', sa.String(length=30), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
        sa.Column('progress', sa.Integer(), server_default='0', nullable=False),
        sa.Column('table_ids', JSONType(), nullable=False),
        sa.Column('total_units', sa.Integer(), server_default='0', nullable=False),
        sa.Column('completed_units', sa.Integer(), server_default='0', nullable=False),
        sa.Column('batch_size', sa.Integer(), server_default='5', nullable=False),
        sa.Column('processed_unit_ids', JSONType(), nullable=False),
        sa.Column('failed_unit_ids', JSONType(), nullable=False),
        sa.Column('next_index', sa.Integer(), server_default='0', nullable=False),
        sa.Column('batch_index', sa.Integer(), server_default='0', nullable=False),
        sa.Column('failed_batch_streak', sa.Integer(), server_default='0', nullable=False),
        sa.Column('cancel_requested', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('result', JSONType(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('unit_errors', JSONType(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.func.now(), nullable=False),
        sa.Column('started_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('job_id'),
    )
    op.create_index('idx_analysis_jobs_database_type', 'analysis_jobs', ['database_id', 'job_type'])
    op.create_index('idx_analysis_jobs_status_created', 'analysis_jobs', ['status', 'created_at'])

    # 3. Relationship candidates
    op.create_table('foreign_key_candidates',
        sa.Column('candidate_id', UUID(), nullable=False),
        sa.Column('database_id', sa.String(length=100), nullable=False),
        sa.Column('job_id', UUID(), nullable=True),
        sa.Column('dedupe_key', sa.String(length=1024), nullable=False),
        sa.Column('source_table_id', sa.String(length=100), nullable=False),
        sa.Column('source_table', sa.String(length=255), nullable=False),
        sa.Column('source_column_id', sa.String(length=100), nullable=True),
        sa.Column('source_column', sa.String(length=255), nullable=False),
        sa.Column('target_table_id', sa.String(length=100), nullable=False),
        sa.Column('target_table', sa.String(length=255), nullable=False),
        sa.Column('target_column_id', sa.String(length=100), nullable=True),
        sa.Column('target_column', sa.String(length=255), nullable=False),
        sa.Column('confidence', sa.Float(), server_default='0', nullable=False),
        sa.Column('relationship_kind', sa.String(length=20), nullable=True),
        sa.Column('reasoning', sa.Text(), nullable=True),
        sa.Column('discovery_source', sa.String(length=20), server_default='heuristic', nullable=False),
        sa.Column('validated', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('validated_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['job_id'], ['analysis_jobs.job_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('candidate_id'),
        sa.UniqueConstraint('database_id', 'dedupe_key', name='uq_fk_candidate_pair'),
    )
    op.create_index('idx_fk_candidates_source', 'foreign_key_candidates', ['database_id', 'source_table_id'])

    # 4. SME questions
    op.create_table('sme_questions',
        sa.Column('question_id', UUID(), nullable=False),
        sa.Column('database_id', sa.String(length=100), nullable=False),
        sa.Column('job_id', UUID(), nullable=True),
        sa.Column('dedupe_key', sa.String(length=1024), nullable=False),
        sa.Column('table_id', sa.String(length=100), nullable=True),
        sa.Column('column_id', sa.String(length=100), nullable=True),
        sa.Column('category', sa.String(length=20), nullable=False),
        sa.Column('question_text', sa.Text(), nullable=False),
        sa.Column('options', JSONType(), nullable=True),
        sa.Column('response', sa.Text(), nullable=True),
        sa.Column('is_answered', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('priority', sa.String(length=10), server_default='medium', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.func.now(), nullable=False),
        sa.Column('answered_at', sa.TIMESTAMP(), nullable=True),
        sa.ForeignKeyConstraint(['job_id'], ['analysis_jobs.job_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('question_id'),
        sa.UniqueConstraint('database_id', 'dedupe_key', name='uq_sme_question_key'),
    )
    op.create_index('idx_sme_questions_database_category', 'sme_questions', ['database_id', 'category'])


def downgrade() -> None:
    op.drop_index('idx_sme_questions_database_category', table_name='sme_questions')
    op.drop_table('sme_questions')
    op.drop_index('idx_fk_candidates_source', table_name='foreign_key_candidates')
    op.drop_table('foreign_key_candidates')
    op.drop_index('idx_analysis_jobs_status_created', table_name='analysis_jobs')
    op.drop_index('idx_analysis_jobs_database_type', table_name='analysis_jobs')
    op.drop_table('analysis_jobs')
    op.drop_table('catalog_columns')
    op.drop_index('idx_catalog_tables_database', table_name='catalog_tables')
    op.drop_table('catalog_tables')
