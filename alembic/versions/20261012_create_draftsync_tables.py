"""Create Documents, DocumentSnapshots and AnalyticsJobs tables

Documents carry the persisted editor state and the content fingerprint
used for autosave conflict detection. DocumentSnapshots hold the durable
autosave history. AnalyticsJobs is the deferred analytics queue with its
dequeue index and retry-budget CHECK constraint.

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-12 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1b2c3d4e5f6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create document, snapshot and analytics job tables."""
    # ========================================================================
    # 1. Documents
    # ========================================================================
    op.create_table(
        'Documents',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=False, server_default='Untitled'),
        sa.Column('html', sa.Text(), nullable=False, server_default=''),
        sa.Column('structure', sa.JSON(), nullable=True),
        sa.Column('word_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('content_fingerprint', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_Documents_user_id'), 'Documents', ['user_id'], unique=False)

    # ========================================================================
    # 2. DocumentSnapshots
    # ========================================================================
    op.create_table(
        'DocumentSnapshots',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('document_id', sa.Uuid(), nullable=False),
        sa.Column('source', sa.String(length=20), nullable=False, server_default='autosave'),
        sa.Column('label', sa.String(length=255), nullable=True),
        sa.Column('fingerprint', sa.String(length=64), nullable=False),
        sa.Column('word_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('scene_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('html', sa.Text(), nullable=False, server_default=''),
        sa.Column('structure', sa.JSON(), nullable=True),
        sa.Column('anchor_ids', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['document_id'], ['Documents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        op.f('ix_DocumentSnapshots_document_id'), 'DocumentSnapshots', ['document_id'], unique=False
    )
    op.create_index(
        'ix_document_snapshots_document_created',
        'DocumentSnapshots',
        ['document_id', 'created_at'],
        unique=False,
    )

    # ========================================================================
    # 3. AnalyticsJobs
    # ========================================================================
    op.create_table(
        'AnalyticsJobs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('document_id', sa.Uuid(), nullable=False),
        sa.Column('job_type', sa.String(length=50), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='queued'),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('input', sa.JSON(), nullable=False),
        sa.Column('output', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('scheduled_for', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.CheckConstraint('attempts <= max_attempts', name='ck_analytics_jobs_attempts'),
        sa.CheckConstraint('priority >= 0 AND priority <= 3', name='ck_analytics_jobs_priority'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_AnalyticsJobs_user_id'), 'AnalyticsJobs', ['user_id'], unique=False)
    op.create_index(
        'ix_analytics_jobs_dequeue', 'AnalyticsJobs', ['status', 'priority', 'created_at'], unique=False
    )
    op.create_index(
        'ix_analytics_jobs_document', 'AnalyticsJobs', ['document_id', 'created_at'], unique=False
    )


def downgrade() -> None:
    """Drop analytics job, snapshot and document tables."""
    op.drop_index('ix_analytics_jobs_document', table_name='AnalyticsJobs')
    op.drop_index('ix_analytics_jobs_dequeue', table_name='AnalyticsJobs')
    op.drop_index(op.f('ix_AnalyticsJobs_user_id'), table_name='AnalyticsJobs')
    op.drop_table('AnalyticsJobs')

    op.drop_index('ix_document_snapshots_document_created', table_name='DocumentSnapshots')
    op.drop_index(op.f('ix_DocumentSnapshots_document_id'), table_name='DocumentSnapshots')
    op.drop_table('DocumentSnapshots')

    op.drop_index(op.f('ix_Documents_user_id'), table_name='Documents')
    op.drop_table('Documents')
