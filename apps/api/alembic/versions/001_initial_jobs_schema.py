"""initial schema: trainers, clients, questionnaires, scans, plans, workouts, jobs

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        'trainer',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('email', sa.Text(), nullable=False, unique=True),
        sa.Column('display_name', sa.Text(), nullable=True),
        sa.Column('role', sa.Text(), nullable=False, server_default='trainer'),
    )

    op.create_table(
        'client',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('trainer.id'), nullable=True),
        sa.Column('first_name', sa.Text(), nullable=False),
        sa.Column('last_name', sa.Text(), nullable=False),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False, server_default='active'),
    )

    op.create_table(
        'questionnaire',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('client.id'), nullable=False),
        sa.Column('responses', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('notes', sa.Text(), nullable=True),
    )
    op.create_index('ix_questionnaire_client_id', 'questionnaire', ['client_id'])
    op.create_index('ix_questionnaire_created_at', 'questionnaire', ['created_at'])

    op.create_table(
        'inbody_scan',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('client.id'), nullable=False),
        sa.Column('uploaded_by', sa.Integer(), sa.ForeignKey('trainer.id'), nullable=True),
        sa.Column('file_path', sa.Text(), nullable=False),
        sa.Column('file_name', sa.Text(), nullable=True),
        sa.Column('file_size_bytes', sa.Integer(), nullable=True),
        sa.Column('mime_type', sa.Text(), nullable=True),
        sa.Column('extraction_status', sa.Text(), nullable=False, server_default='pending'),
        sa.Column('extraction_raw_response', sa.Text(), nullable=True),
        sa.Column('scan_date', sa.Date(), nullable=True),
        sa.Column('weight_lbs', sa.Float(), nullable=True),
        sa.Column('smm_lbs', sa.Float(), nullable=True),
        sa.Column('body_fat_mass_lbs', sa.Float(), nullable=True),
        sa.Column('bmi', sa.Float(), nullable=True),
        sa.Column('percent_body_fat', sa.Float(), nullable=True),
        sa.Column('segment_analysis', postgresql.JSONB(), nullable=True),
        sa.Column('verified_by', sa.Integer(), sa.ForeignKey('trainer.id'), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_inbody_scan_client_id', 'inbody_scan', ['client_id'])
    op.create_index('ix_inbody_scan_created_at', 'inbody_scan', ['created_at'])
    op.create_index('ix_inbody_scan_extraction_status', 'inbody_scan', ['extraction_status'])

    op.create_table(
        'recommendation',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('client.id'), nullable=False),
        sa.Column('questionnaire_id', sa.Integer(), sa.ForeignKey('questionnaire.id'), nullable=True),
        sa.Column('inbody_scan_id', sa.Integer(), sa.ForeignKey('inbody_scan.id'), nullable=True),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('trainer.id'), nullable=True),
        sa.Column('status', sa.Text(), nullable=False, server_default='draft'),
        sa.Column('current_week', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('client_type', sa.Text(), nullable=True),
        sa.Column('sessions_per_week', sa.Integer(), nullable=True),
        sa.Column('session_length_minutes', sa.Integer(), nullable=True),
        sa.Column('training_style', sa.Text(), nullable=True),
        sa.Column('plan_structure', postgresql.JSONB(), nullable=True),
        sa.Column('ai_reasoning', sa.Text(), nullable=True),
    )
    op.create_index('ix_recommendation_client_id', 'recommendation', ['client_id'])
    op.create_index('ix_recommendation_questionnaire_id', 'recommendation', ['questionnaire_id'])

    op.create_table(
        'workout',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column('recommendation_id', sa.Integer(), sa.ForeignKey('recommendation.id'), nullable=False),
        sa.Column('week_number', sa.Integer(), nullable=False),
        sa.Column('session_number', sa.Integer(), nullable=False),
        sa.Column('workout_name', sa.Text(), nullable=True),
        sa.Column('workout_data', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('workout_reasoning', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False, server_default='scheduled'),
        sa.Column('performance_notes', postgresql.JSONB(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('recommendation_id', 'week_number', 'session_number', name='uq_workout_rec_week_session'),
    )
    op.create_index('ix_workout_recommendation_id', 'workout', ['recommendation_id'])
    op.create_index('ix_workout_rec_week', 'workout', ['recommendation_id', 'week_number'])

    op.create_table(
        'job',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('kind', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False, server_default='pending'),
        sa.Column('current_step', sa.Text(), nullable=True),
        sa.Column('owner_id', sa.Integer(), nullable=False),
        sa.Column('week_number', sa.Integer(), nullable=True),
        sa.Column('owner_key', sa.Text(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('client.id'), nullable=True),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('trainer.id'), nullable=True),
        sa.Column('result_reference', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('cancel_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name='ck_job_status',
        ),
        sa.CheckConstraint(
            "kind IN ('recommendation', 'week-generation', 'scan-extraction')",
            name='ck_job_kind',
        ),
    )
    op.create_index('ix_job_kind', 'job', ['kind'])
    op.create_index('ix_job_status', 'job', ['status'])
    op.create_index('ix_job_client_id', 'job', ['client_id'])
    op.create_index('ix_job_created_at', 'job', ['created_at'])
    op.create_index('ix_job_kind_owner', 'job', ['kind', 'owner_id'])
    # At most one pending/processing job per owner and kind.
    op.create_index(
        'uq_job_active_owner',
        'job',
        ['kind', 'owner_key'],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'processing')"),
    )


def downgrade() -> None:
    op.drop_index('uq_job_active_owner', table_name='job')
    op.drop_index('ix_job_kind_owner', table_name='job')
    op.drop_index('ix_job_created_at', table_name='job')
    op.drop_index('ix_job_client_id', table_name='job')
    op.drop_index('ix_job_status', table_name='job')
    op.drop_index('ix_job_kind', table_name='job')
    op.drop_table('job')

    op.drop_index('ix_workout_rec_week', table_name='workout')
    op.drop_index('ix_workout_recommendation_id', table_name='workout')
    op.drop_table('workout')

    op.drop_index('ix_recommendation_questionnaire_id', table_name='recommendation')
    op.drop_index('ix_recommendation_client_id', table_name='recommendation')
    op.drop_table('recommendation')

    op.drop_index('ix_inbody_scan_extraction_status', table_name='inbody_scan')
    op.drop_index('ix_inbody_scan_created_at', table_name='inbody_scan')
    op.drop_index('ix_inbody_scan_client_id', table_name='inbody_scan')
    op.drop_table('inbody_scan')

    op.drop_index('ix_questionnaire_created_at', table_name='questionnaire')
    op.drop_index('ix_questionnaire_client_id', table_name='questionnaire')
    op.drop_table('questionnaire')

    op.drop_table('client')
    op.drop_table('trainer')
