"""initial_schema

Revision ID: 4c1e9a2b7d10
Revises:
Create Date: 2026-10-18 09:12:44.518203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4c1e9a2b7d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _enum(name, *values):
    return sa.Enum(*values, name=name, native_enum=False)


def upgrade() -> None:
    op.create_table(
        'user',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('full_name', sa.String(length=150), nullable=False),
        sa.Column('phone', sa.String(length=20), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('occupation', sa.String(length=100), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('is_admin', sa.Boolean(), nullable=False),
        sa.Column('status', _enum('userstatus', 'active', 'suspended', 'opted_out', 'deleted'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_phone', 'user', ['phone'], unique=True)
    op.create_index('ix_user_email', 'user', ['email'], unique=True)

    op.create_table(
        'contribution_cycle',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('registration_deadline', sa.DateTime(), nullable=False),
        sa.Column('number_picking_start_date', sa.DateTime(), nullable=True),
        sa.Column('status', _enum('cyclestatus', 'upcoming', 'active', 'completed', 'cancelled'), nullable=False),
        sa.Column('total_slots', sa.Integer(), nullable=False),
        sa.Column('payment_deadline_day', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.CheckConstraint('total_slots BETWEEN 10 AND 100', name='ck_cycle_total_slots'),
        sa.CheckConstraint('payment_deadline_day BETWEEN 1 AND 31', name='ck_cycle_payment_deadline_day'),
        sa.ForeignKeyConstraint(['created_by'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_contribution_cycle_status', 'contribution_cycle', ['status'])

    op.create_table(
        'participation',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('cycle_id', sa.Uuid(), nullable=False),
        sa.Column('contribution_mode', _enum('contributionmode', 'PACK_20K', 'PACK_50K', 'PACK_100K'), nullable=False),
        sa.Column('monthly_amount', sa.Integer(), nullable=False),
        sa.Column('total_payout', sa.Integer(), nullable=False),
        sa.Column('fine_amount', sa.Integer(), nullable=False),
        sa.Column('picked_number', sa.Integer(), nullable=True),
        sa.Column('has_opted_out', sa.Boolean(), nullable=False),
        sa.Column('registered_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['user.id']),
        sa.ForeignKeyConstraint(['cycle_id'], ['contribution_cycle.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'cycle_id', name='uq_participation_user_cycle'),
        sa.UniqueConstraint('cycle_id', 'picked_number', name='uq_participation_cycle_number'),
    )
    op.create_index('ix_participation_user_id', 'participation', ['user_id'])
    op.create_index('ix_participation_cycle_id', 'participation', ['cycle_id'])

    op.create_table(
        'bank_details',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('participation_id', sa.Uuid(), nullable=False),
        sa.Column('bank_name', sa.String(length=100), nullable=False),
        sa.Column('account_number', sa.String(length=10), nullable=False),
        sa.Column('account_name', sa.String(length=150), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['participation_id'], ['participation.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_bank_details_participation_id', 'bank_details', ['participation_id'], unique=True)

    op.create_table(
        'payment',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('participation_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('cycle_id', sa.Uuid(), nullable=False),
        sa.Column('month_number', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('status', _enum('paymentstatus', 'pending', 'paid', 'waived'), nullable=False),
        sa.Column('paid_amount', sa.Integer(), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('has_fine', sa.Boolean(), nullable=False),
        sa.Column('fine_amount', sa.Integer(), nullable=False),
        sa.Column('fine_paid', sa.Boolean(), nullable=False),
        sa.Column('proof_of_payment', sa.String(length=500), nullable=True),
        sa.Column('proof_uploaded_at', sa.DateTime(), nullable=True),
        sa.Column('verified_by', sa.Uuid(), nullable=True),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['participation_id'], ['participation.id']),
        sa.ForeignKeyConstraint(['user_id'], ['user.id']),
        sa.ForeignKeyConstraint(['cycle_id'], ['contribution_cycle.id']),
        sa.ForeignKeyConstraint(['verified_by'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('participation_id', 'month_number', name='uq_payment_participation_month'),
    )
    op.create_index('ix_payment_participation_id', 'payment', ['participation_id'])
    op.create_index('ix_payment_user_id', 'payment', ['user_id'])
    op.create_index('ix_payment_cycle_id', 'payment', ['cycle_id'])
    op.create_index('ix_payment_due_date', 'payment', ['due_date'])
    op.create_index('ix_payment_status', 'payment', ['status'])

    op.create_table(
        'payout',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('participation_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('cycle_id', sa.Uuid(), nullable=False),
        sa.Column('scheduled_month', sa.Integer(), nullable=False),
        sa.Column('scheduled_date', sa.Date(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('status', _enum('payoutstatus', 'pending', 'paid', 'waived'), nullable=False),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('transfer_reference', sa.String(length=100), nullable=True),
        sa.Column('processed_by', sa.Uuid(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['participation_id'], ['participation.id']),
        sa.ForeignKeyConstraint(['user_id'], ['user.id']),
        sa.ForeignKeyConstraint(['cycle_id'], ['contribution_cycle.id']),
        sa.ForeignKeyConstraint(['processed_by'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payout_participation_id', 'payout', ['participation_id'])
    op.create_index('ix_payout_user_id', 'payout', ['user_id'])
    op.create_index('ix_payout_cycle_id', 'payout', ['cycle_id'])
    op.create_index('ix_payout_scheduled_date', 'payout', ['scheduled_date'])
    op.create_index('ix_payout_status', 'payout', ['status'])
    op.create_index(
        'uq_payout_live_participation', 'payout', ['participation_id'], unique=True,
        postgresql_where=sa.text("status <> 'waived'"),
        sqlite_where=sa.text("status <> 'waived'"),
    )

    op.create_table(
        'opt_out_request',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('cycle_id', sa.Uuid(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('total_paid', sa.Integer(), nullable=False),
        sa.Column('penalty_amount', sa.Integer(), nullable=False),
        sa.Column('refund_amount', sa.Integer(), nullable=False),
        sa.Column('status', _enum('optoutstatus', 'pending_approval', 'approved', 'rejected'), nullable=False),
        sa.Column('requested_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('reviewed_by', sa.Uuid(), nullable=True),
        sa.Column('review_notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['user.id']),
        sa.ForeignKeyConstraint(['cycle_id'], ['contribution_cycle.id']),
        sa.ForeignKeyConstraint(['reviewed_by'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_opt_out_request_user_id', 'opt_out_request', ['user_id'])
    op.create_index('ix_opt_out_request_cycle_id', 'opt_out_request', ['cycle_id'])
    op.create_index('ix_opt_out_request_status', 'opt_out_request', ['status'])
    op.create_index(
        'uq_opt_out_pending_user_cycle', 'opt_out_request', ['user_id', 'cycle_id'], unique=True,
        postgresql_where=sa.text("status = 'pending_approval'"),
        sqlite_where=sa.text("status = 'pending_approval'"),
    )

    op.create_table(
        'system_settings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('opt_out_penalty_percent', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_by', sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(['updated_by'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'number_settings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('total_numbers', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'number_pick',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('number', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_number_pick_user_id', 'number_pick', ['user_id'], unique=True)
    op.create_index('ix_number_pick_number', 'number_pick', ['number'], unique=True)


def downgrade() -> None:
    op.drop_table('number_pick')
    op.drop_table('number_settings')
    op.drop_table('system_settings')
    op.drop_index('uq_opt_out_pending_user_cycle', table_name='opt_out_request')
    op.drop_table('opt_out_request')
    op.drop_index('uq_payout_live_participation', table_name='payout')
    op.drop_table('payout')
    op.drop_table('payment')
    op.drop_table('bank_details')
    op.drop_table('participation')
    op.drop_table('contribution_cycle')
    op.drop_table('user')
