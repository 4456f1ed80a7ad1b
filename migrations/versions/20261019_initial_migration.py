"""Initial migration: reports, cheaters, appeals

Revision ID: 20261019
Revises:
Create Date: 2026-10-19 10:00:00

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '20261019'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Create reports table
    op.create_table('reports',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('username', sa.String(length=64), nullable=False),
    sa.Column('evidence', sa.Text(), nullable=False),
    sa.Column('status', sa.String(length=16), nullable=False),
    sa.Column('reported_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('info', sa.JSON(), nullable=True),
    sa.Column('moved_to_pending_by', sa.String(length=64), nullable=True),
    sa.Column('moved_to_pending_at', sa.DateTime(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_reports_username_status', 'reports', ['username', 'status'], unique=False)
    op.create_index('idx_reports_status_reported_at', 'reports', ['status', 'reported_at'], unique=False)

    # Create cheaters table
    op.create_table('cheaters',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('username', sa.String(length=64), nullable=False),
    sa.Column('evidence', sa.Text(), nullable=False),
    sa.Column('admin_note', sa.Text(), nullable=True),
    sa.Column('reported_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('accepted_by', sa.String(length=64), nullable=False),
    sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('marked_for_deletion', sa.Boolean(), nullable=False),
    sa.Column('deletion_reason', sa.String(length=32), nullable=True),
    sa.Column('deletion_timestamp', sa.DateTime(timezone=True), nullable=True),
    sa.Column('last_modified', sa.DateTime(timezone=True), nullable=False),
    sa.Column('info', sa.JSON(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_cheaters_username', 'cheaters', ['username'], unique=False)
    op.create_index('idx_cheaters_last_modified', 'cheaters', ['last_modified'], unique=False)
    # One active record per username; tombstones may repeat
    op.create_index(
        'uq_cheaters_active_username',
        'cheaters',
        ['username'],
        unique=True,
        postgresql_where=sa.text('marked_for_deletion = false'),
        sqlite_where=sa.text('marked_for_deletion = 0'),
    )

    # Create appeals table
    op.create_table('appeals',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('username', sa.String(length=64), nullable=False),
    sa.Column('message', sa.Text(), nullable=False),
    sa.Column('status', sa.String(length=16), nullable=False),
    sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('last_modified', sa.DateTime(timezone=True), nullable=False),
    sa.Column('declined_by', sa.String(length=64), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('username', name='uq_appeals_username')
    )
    op.create_index('idx_appeals_status_submitted_at', 'appeals', ['status', 'submitted_at'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_appeals_status_submitted_at', table_name='appeals')
    op.drop_table('appeals')
    op.drop_index('uq_cheaters_active_username', table_name='cheaters')
    op.drop_index('idx_cheaters_last_modified', table_name='cheaters')
    op.drop_index('idx_cheaters_username', table_name='cheaters')
    op.drop_table('cheaters')
    op.drop_index('idx_reports_status_reported_at', table_name='reports')
    op.drop_index('idx_reports_username_status', table_name='reports')
    op.drop_table('reports')
