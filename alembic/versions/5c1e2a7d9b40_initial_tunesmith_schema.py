"""Initial Tunesmith schema

Revision ID: 5c1e2a7d9b40
Revises:
Create Date: 2026-10-19 13:50:12.418233

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB


# revision identifiers, used by Alembic.
revision: str = '5c1e2a7d9b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create tracks table
    op.create_table(
        'tracks',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('audio_url', sa.Text, nullable=True),
        sa.Column('duration', sa.Float, nullable=True),
        sa.Column('lyrics', sa.Text, nullable=True),
        sa.Column('image_url', sa.Text, nullable=True),
        sa.Column('external_task_id', sa.String(255), nullable=True),
        sa.Column('source_index', sa.Integer, nullable=True),
        sa.Column('variant_group_id', UUID(as_uuid=True), nullable=True),
        sa.Column('variant_number', sa.Integer, nullable=True),
        sa.Column('is_master_variant', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('storage_status', sa.String(20), nullable=False, server_default='external'),
        sa.Column('is_deleted', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('metadata', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.TIMESTAMP, nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.TIMESTAMP, nullable=False, server_default=sa.text('now()')),
        sa.UniqueConstraint('external_task_id', 'source_index', name='uq_tracks_task_source')
    )

    # Create generation_tasks table
    op.create_table(
        'generation_tasks',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('service', sa.String(20), nullable=False),
        sa.Column('external_task_id', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('progress', sa.Integer, nullable=False, server_default='0'),
        sa.Column('prompt', sa.Text, nullable=False),
        sa.Column('result_url', sa.Text, nullable=True),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('failure_reason', sa.String(20), nullable=True),
        sa.Column('track_id', UUID(as_uuid=True), sa.ForeignKey('tracks.id', ondelete='SET NULL'), nullable=True),
        sa.Column('metadata', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.TIMESTAMP, nullable=False, server_default=sa.text('now()')),
        sa.Column('started_at', sa.TIMESTAMP, nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP, nullable=True),
        sa.Column('updated_at', sa.TIMESTAMP, nullable=False, server_default=sa.text('now()'))
    )

    # Create track_stems table
    op.create_table(
        'track_stems',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('track_id', UUID(as_uuid=True), sa.ForeignKey('tracks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('variant_number', sa.Integer, nullable=False, server_default='1'),
        sa.Column('separation_mode', sa.String(20), nullable=False, server_default='simple'),
        sa.Column('stem_type', sa.String(50), nullable=False),
        sa.Column('stem_name', sa.String(255), nullable=False),
        sa.Column('stem_url', sa.Text, nullable=False),
        sa.Column('file_size', sa.Integer, nullable=True),
        sa.Column('duration', sa.Float, nullable=True),
        sa.Column('metadata', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.TIMESTAMP, nullable=False, server_default=sa.text('now()')),
        sa.UniqueConstraint('track_id', 'variant_number', 'stem_type', name='uq_track_stems_variant_type')
    )

    # Create stem_separation_jobs table
    op.create_table(
        'stem_separation_jobs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('track_id', UUID(as_uuid=True), sa.ForeignKey('tracks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('variant_number', sa.Integer, nullable=False, server_default='1'),
        sa.Column('service', sa.String(20), nullable=False),
        sa.Column('external_task_id', sa.String(255), nullable=True),
        sa.Column('separation_mode', sa.String(20), nullable=False, server_default='simple'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('result', JSONB, nullable=True),
        sa.Column('created_at', sa.TIMESTAMP, nullable=False, server_default=sa.text('now()')),
        sa.Column('completed_at', sa.TIMESTAMP, nullable=True)
    )

    # Create indexes
    op.create_index('ix_generation_tasks_user_id', 'generation_tasks', ['user_id', 'created_at'])
    op.create_index('ix_generation_tasks_status', 'generation_tasks', ['status'])
    op.create_index('ix_generation_tasks_external', 'generation_tasks', ['service', 'external_task_id'])
    op.create_index('ix_tracks_user_id', 'tracks', ['user_id', 'created_at'])
    op.create_index('ix_tracks_variant_group', 'tracks', ['variant_group_id'])
    op.create_index('ix_tracks_storage_status', 'tracks', ['storage_status'])
    op.create_index('ix_track_stems_track_id', 'track_stems', ['track_id'])
    op.create_index('ix_stem_jobs_track_id', 'stem_separation_jobs', ['track_id'])


def downgrade() -> None:
    # Drop indexes
    op.drop_index('ix_stem_jobs_track_id')
    op.drop_index('ix_track_stems_track_id')
    op.drop_index('ix_tracks_storage_status')
    op.drop_index('ix_tracks_variant_group')
    op.drop_index('ix_tracks_user_id')
    op.drop_index('ix_generation_tasks_external')
    op.drop_index('ix_generation_tasks_status')
    op.drop_index('ix_generation_tasks_user_id')

    # Drop tables
    op.drop_table('stem_separation_jobs')
    op.drop_table('track_stems')
    op.drop_table('generation_tasks')
    op.drop_table('tracks')
