"""initial schema - drip sequences, steps and jobs

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create drip_sequences table (one per tenant/pipeline/stage)
    op.create_table(
        'drip_sequences',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tenant_id', sa.String(36), nullable=False, index=True),
        sa.Column('pipeline_id', sa.String(64), nullable=False),
        sa.Column('stage_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.UniqueConstraint('tenant_id', 'pipeline_id', 'stage_id', name='uq_drip_sequences_stage'),
    )

    # Create drip_steps table (enums as VARCHAR)
    op.create_table(
        'drip_steps',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('sequence_id', sa.String(36), sa.ForeignKey('drip_sequences.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('delay_type', sa.String(20), nullable=False),
        sa.Column('delay_value', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delay_unit', sa.String(20), nullable=False, server_default='minutes'),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('email_subject', sa.Text(), nullable=True),
        sa.Column('email_body', sa.Text(), nullable=True),
        sa.Column('sms_body', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.UniqueConstraint('sequence_id', 'position', name='uq_drip_steps_position'),
    )

    # Create drip_jobs table (content snapshot per deal and step)
    op.create_table(
        'drip_jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tenant_id', sa.String(36), nullable=False, index=True),
        sa.Column('deal_id', sa.String(36), nullable=False, index=True),
        sa.Column('sequence_id', sa.String(36), sa.ForeignKey('drip_sequences.id', ondelete='SET NULL'), nullable=True),
        sa.Column('step_id', sa.String(36), sa.ForeignKey('drip_steps.id', ondelete='SET NULL'), nullable=True),
        sa.Column('stage_id', sa.String(64), nullable=False),
        sa.Column('stage_entry_key', sa.String(128), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('email_subject', sa.Text(), nullable=True),
        sa.Column('email_body', sa.Text(), nullable=True),
        sa.Column('sms_body', sa.Text(), nullable=True),
        sa.Column('recipient_email', sa.String(255), nullable=True),
        sa.Column('recipient_phone', sa.String(32), nullable=True),
        sa.Column('due_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('claim_token', sa.String(36), nullable=True, index=True),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('delivery_detail', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.UniqueConstraint('deal_id', 'step_id', 'stage_entry_key', name='uq_drip_jobs_stage_entry'),
    )

    # At most one pending/claimed job per (deal, step)
    op.create_index(
        'uq_drip_jobs_live_step',
        'drip_jobs',
        ['deal_id', 'step_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'claimed')"),
    )
    # Dispatcher claim scan
    op.create_index('ix_drip_jobs_status_due_at', 'drip_jobs', ['status', 'due_at'])


def downgrade() -> None:
    op.drop_index('ix_drip_jobs_status_due_at', table_name='drip_jobs')
    op.drop_index('uq_drip_jobs_live_step', table_name='drip_jobs')
    op.drop_table('drip_jobs')
    op.drop_table('drip_steps')
    op.drop_table('drip_sequences')
