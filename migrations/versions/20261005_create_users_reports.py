"""create users and reports tables

Revision ID: a41c7e2d9b10
Revises:
Create Date: 2026-10-05 10:12:00
"""

from alembic import op
import sqlalchemy as sa

revision = 'a41c7e2d9b10'
down_revision = None
branch_labels = None
depends_on = None

report_status = sa.Enum(
    'pending', 'investigating', 'resolved', 'verified', name='report_status'
)


def upgrade() -> None:
    """Create users and reports."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('username', sa.String(64), nullable=False, unique=True),
        sa.Column('points', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime),
        sa.CheckConstraint('points >= 0', name='ck_users_points_non_negative'),
    )
    op.create_table(
        'reports',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('username', sa.String(64), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('location', sa.String(255), nullable=False),
        sa.Column('category', sa.String(64), nullable=False),
        sa.Column('image_ref', sa.String, nullable=False),
        sa.Column('label', sa.String(32), nullable=False),
        sa.Column('annotation', sa.String(32), nullable=False),
        sa.Column('classifier_raw', sa.Text),
        sa.Column('points', sa.Integer, nullable=False),
        sa.Column('status', report_status, nullable=False, server_default='pending'),
        sa.Column('votes', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_reports_user_created', 'reports', ['user_id', 'created_at'])
    op.create_index('ix_reports_status', 'reports', ['status'])


def downgrade() -> None:
    """Drop reports and users."""
    op.drop_index('ix_reports_status', table_name='reports')
    op.drop_index('ix_reports_user_created', table_name='reports')
    op.drop_table('reports')
    op.drop_table('users')
    report_status.drop(op.get_bind(), checkfirst=True)
