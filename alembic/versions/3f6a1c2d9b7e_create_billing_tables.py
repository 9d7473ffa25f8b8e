"""Create billing tables

Revision ID: 3f6a1c2d9b7e
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f6a1c2d9b7e'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(with_updated: bool = True):
    columns = [
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]
    if with_updated:
        columns.append(
            sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True)
        )
    return columns


def upgrade() -> None:
    """Upgrade schema."""

    op.create_table('service_accounts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_number', sa.String(length=50), nullable=False),
        sa.Column('account_name', sa.String(length=255), nullable=False),
        sa.Column('provider', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('is_auto_registered', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_number'),
    )

    op.create_table('bills',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('service_account_id', sa.Uuid(), nullable=True),
        sa.Column('invoice_number', sa.String(length=100), nullable=False),
        sa.Column('account_number', sa.String(length=50), nullable=False),
        sa.Column('billing_period_start', sa.Date(), nullable=False),
        sa.Column('billing_period_end', sa.Date(), nullable=False),
        sa.Column('bill_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('current_charges', sa.Numeric(12, 2), nullable=False),
        sa.Column('outstanding_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('gst_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_due', sa.Numeric(12, 2), nullable=False),
        sa.Column('discounts', sa.Numeric(12, 2), nullable=False),
        sa.Column('file_path', sa.String(), nullable=True),
        sa.Column('file_name', sa.String(length=255), nullable=True),
        sa.Column('file_hash', sa.String(length=64), nullable=True),
        sa.Column('file_size_bytes', sa.Integer(), nullable=True),
        sa.Column('processing_status', sa.String(length=30), nullable=False),
        sa.Column('requires_review', sa.Boolean(), nullable=False),
        sa.Column('is_verified', sa.Boolean(), nullable=False),
        sa.Column('extraction_confidence', sa.Numeric(5, 2), nullable=True),
        sa.Column('extracted_data', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.Column('processed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['service_account_id'], ['service_accounts.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_number'),
    )
    op.create_index('ix_bills_service_account_id', 'bills', ['service_account_id'])
    op.create_index('ix_bills_account_number', 'bills', ['account_number'])
    op.create_index('ix_bills_file_name', 'bills', ['file_name'])
    op.create_index('ix_bills_file_hash', 'bills', ['file_hash'])

    op.create_table('line_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('bill_id', sa.Uuid(), nullable=False),
        sa.Column('service_number', sa.String(length=50), nullable=False),
        sa.Column('service_type', sa.String(length=100), nullable=True),
        sa.Column('package_name', sa.String(length=255), nullable=True),
        sa.Column('subscription_charge', sa.Numeric(12, 2), nullable=False),
        sa.Column('usage_charges', sa.Numeric(12, 2), nullable=False),
        sa.Column('other_charges', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_charge', sa.Numeric(12, 2), nullable=False),
        sa.Column('usage_details', sa.JSON(), nullable=True),
        sa.Column('service_period_start', sa.Date(), nullable=True),
        sa.Column('service_period_end', sa.Date(), nullable=True),
        *_timestamps(with_updated=False),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_line_items_bill_id', 'line_items', ['bill_id'])
    op.create_index('ix_line_items_service_number', 'line_items', ['service_number'])

    op.create_table('service_numbers',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('service_number', sa.String(length=50), nullable=False),
        sa.Column('service_account_id', sa.Uuid(), nullable=False),
        sa.Column('package_name', sa.String(length=255), nullable=True),
        sa.Column('division_name', sa.String(length=255), nullable=True),
        sa.Column('first_seen_bill_id', sa.Uuid(), nullable=True),
        sa.Column('first_seen_date', sa.Date(), nullable=True),
        sa.Column('last_seen_bill_id', sa.Uuid(), nullable=True),
        sa.Column('last_seen_date', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['service_account_id'], ['service_accounts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['first_seen_bill_id'], ['bills.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['last_seen_bill_id'], ['bills.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('service_number', 'service_account_id', name='uq_service_numbers_number_account'),
    )
    op.create_index('ix_service_numbers_service_number', 'service_numbers', ['service_number'])
    op.create_index('ix_service_numbers_service_account_id', 'service_numbers', ['service_account_id'])

    op.create_table('service_number_monthly_charges',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('service_number_id', sa.Uuid(), nullable=False),
        sa.Column('service_number', sa.String(length=50), nullable=False),
        sa.Column('bill_id', sa.Uuid(), nullable=False),
        sa.Column('line_item_id', sa.Uuid(), nullable=True),
        sa.Column('billing_period_start', sa.Date(), nullable=False),
        sa.Column('billing_period_end', sa.Date(), nullable=False),
        sa.Column('bill_date', sa.Date(), nullable=False),
        sa.Column('subscription_charge', sa.Numeric(12, 2), nullable=False),
        sa.Column('usage_charges', sa.Numeric(12, 2), nullable=False),
        sa.Column('other_charges', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_charge', sa.Numeric(12, 2), nullable=False),
        sa.Column('package_name', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['service_number_id'], ['service_numbers.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['line_item_id'], ['line_items.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('service_number', 'bill_id', name='uq_monthly_charges_number_bill'),
    )
    op.create_index(
        'ix_service_number_monthly_charges_service_number_id',
        'service_number_monthly_charges', ['service_number_id'],
    )
    op.create_index(
        'ix_service_number_monthly_charges_service_number',
        'service_number_monthly_charges', ['service_number'],
    )
    op.create_index(
        'ix_service_number_monthly_charges_bill_id',
        'service_number_monthly_charges', ['bill_id'],
    )

    op.create_table('alerts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('bill_id', sa.Uuid(), nullable=False),
        sa.Column('service_account_id', sa.Uuid(), nullable=True),
        sa.Column('previous_bill_id', sa.Uuid(), nullable=True),
        sa.Column('alert_type', sa.String(length=30), nullable=False),
        sa.Column('severity', sa.String(length=20), nullable=False),
        sa.Column('current_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('previous_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('percentage_increase', sa.Numeric(8, 2), nullable=True),
        sa.Column('threshold_exceeded', sa.Numeric(8, 2), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('acknowledged_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('acknowledged_by', sa.String(length=255), nullable=True),
        sa.Column('resolved_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('resolved_by', sa.String(length=255), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['service_account_id'], ['service_accounts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['previous_bill_id'], ['bills.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('bill_id', 'alert_type', 'previous_bill_id', name='uq_alerts_bill_type_previous'),
    )
    op.create_index('ix_alerts_bill_id', 'alerts', ['bill_id'])
    op.create_index('ix_alerts_service_account_id', 'alerts', ['service_account_id'])

    op.create_table('ingestion_jobs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=False),
        sa.Column('file_hash', sa.String(length=64), nullable=True),
        sa.Column('file_path', sa.String(), nullable=True),
        sa.Column('state', sa.String(length=30), nullable=False),
        sa.Column('skip_duplicate_check', sa.Boolean(), nullable=False),
        sa.Column('cancel_requested', sa.Boolean(), nullable=False),
        sa.Column('bill_id', sa.Uuid(), nullable=True),
        sa.Column('error_kind', sa.String(length=50), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('result', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('ingestion_jobs')
    op.drop_table('alerts')
    op.drop_table('service_number_monthly_charges')
    op.drop_table('service_numbers')
    op.drop_table('line_items')
    op.drop_table('bills')
    op.drop_table('service_accounts')
