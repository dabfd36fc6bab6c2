"""add point_awards ledger

Revision ID: c93f1b6e4a27
Revises: a41c7e2d9b10
Create Date: 2026-10-12 16:40:00
"""

from alembic import op
import sqlalchemy as sa

revision = 'c93f1b6e4a27'
down_revision = 'a41c7e2d9b10'
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create point_awards with one row per report."""
    op.create_table(
        'point_awards',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column(
            'report_id',
            sa.Integer,
            sa.ForeignKey('reports.id'),
            nullable=False,
            unique=True,
        ),
        sa.Column('user_id', sa.Integer, nullable=False),
        sa.Column('amount', sa.Integer, nullable=False),
        sa.Column('created_at', sa.DateTime),
    )
    op.create_index('ix_point_awards_user_id', 'point_awards', ['user_id'])


def downgrade() -> None:
    """Drop point_awards."""
    op.drop_index('ix_point_awards_user_id', table_name='point_awards')
    op.drop_table('point_awards')
