"""add ai context to catalog tables and columns

Revision ID: 8d4f6b2a1e93
Revises: 5c1e2a9f7b30
Create Date: 2026-10-18 14:37:51.602214

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8d4f6b2a1e93'
down_revision: Union[str, None] = '5c1e2a9f7b30'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column('catalog_tables', sa.Column('ai_description', sa.Text(), nullable=True))
    op.add_column('catalog_tables', sa.Column('business_purpose', sa.Text(), nullable=True))
    op.add_column('catalog_columns', sa.Column('ai_description', sa.Text(), nullable=True))


def downgrade() -> None:
    op.drop_column('catalog_columns', 'ai_description')
    op.drop_column('catalog_tables', 'business_purpose')
    op.drop_column('catalog_tables', 'ai_description')
