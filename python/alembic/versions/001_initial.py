"""Initial schema - Baseline migration

Revision ID: 001_initial
Revises:
Create Date: 2024-12-01 00:00:00.000000

Creates the officers, query_requests and credit_transactions tables with
the constraints that keep every stored balance reconcilable. Generic types
are used throughout so the migration runs on PostgreSQL and SQLite alike.
For existing databases, use `alembic stamp 001_initial` to mark as applied.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

OFFICER_STATUS = ('Active', 'Suspended', 'Inactive')
CREDIT_ACTION = ('Renewal', 'Top-up', 'Deduction', 'Refund', 'Adjustment')
QUERY_TYPE = ('OSINT', 'PRO')
QUERY_STATUS = ('Pending', 'Processing', 'Success', 'Failed')
QUERY_PLATFORM = ('telegram', 'whatsapp', 'api')

ENUM_TYPES = ('query_platform', 'query_status', 'query_type', 'credit_action', 'officer_status')


def upgrade() -> None:
    """Create initial database schema."""

    # Create officers table
    op.create_table(
        'officers',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('mobile', sa.String(30), nullable=False),
        sa.Column('telegram_id', sa.String(100)),
        sa.Column('whatsapp_id', sa.String(100)),
        sa.Column('email', sa.String(200)),
        sa.Column('department', sa.String(200)),
        sa.Column('rank', sa.String(100)),
        sa.Column('badge_number', sa.String(50)),
        sa.Column('status', sa.Enum(*OFFICER_STATUS, name='officer_status'),
                  nullable=False, server_default='Active'),
        sa.Column('credits_remaining', sa.Integer, nullable=False, server_default='0'),
        sa.Column('total_credits', sa.Integer, nullable=False, server_default='0'),
        sa.Column('total_queries', sa.Integer, nullable=False, server_default='0'),
        sa.Column('pro_access_enabled', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('rate_limit_per_hour', sa.Integer, nullable=False, server_default='100'),
        sa.Column('registered_on', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('last_active', sa.DateTime(timezone=True)),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.CheckConstraint('credits_remaining >= 0', name='ck_officer_credits_non_negative'),
        sa.CheckConstraint('total_credits >= 0', name='ck_officer_total_non_negative'),
        sa.CheckConstraint('total_queries >= 0', name='ck_officer_queries_non_negative')
    )

    # Create query_requests table
    op.create_table(
        'query_requests',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('officer_id', sa.Uuid,
                  sa.ForeignKey('officers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.Enum(*QUERY_TYPE, name='query_type'), nullable=False),
        sa.Column('input', sa.String(500), nullable=False),
        sa.Column('source', sa.String(100), nullable=False),
        sa.Column('result_summary', sa.Text),
        sa.Column('credits_used', sa.Integer, nullable=False, server_default='0'),
        sa.Column('status', sa.Enum(*QUERY_STATUS, name='query_status'),
                  nullable=False, server_default='Pending'),
        sa.Column('response_time_ms', sa.Integer),
        sa.Column('error_message', sa.Text),
        sa.Column('session_id', sa.String(100)),
        sa.Column('platform', sa.Enum(*QUERY_PLATFORM, name='query_platform')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.CheckConstraint('credits_used >= 0', name='ck_query_credits_non_negative')
    )

    # Create credit_transactions table (append-only)
    op.create_table(
        'credit_transactions',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('officer_id', sa.Uuid,
                  sa.ForeignKey('officers.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('sequence', sa.Integer, nullable=False),
        sa.Column('action', sa.Enum(*CREDIT_ACTION, name='credit_action'), nullable=False),
        sa.Column('credits', sa.Integer, nullable=False),
        sa.Column('previous_balance', sa.Integer, nullable=False),
        sa.Column('new_balance', sa.Integer, nullable=False),
        sa.Column('payment_mode', sa.String(50)),
        sa.Column('payment_reference', sa.String(100)),
        sa.Column('remarks', sa.Text),
        sa.Column('processed_by', sa.String(100)),
        sa.Column('query_id', sa.Uuid,
                  sa.ForeignKey('query_requests.id', ondelete='RESTRICT')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.UniqueConstraint('officer_id', 'sequence', name='uq_transaction_officer_sequence'),
        sa.UniqueConstraint('query_id', name='uq_transaction_query'),
        sa.CheckConstraint('sequence >= 1', name='ck_transaction_sequence_positive'),
        sa.CheckConstraint('credits <> 0', name='ck_transaction_credits_non_zero'),
        sa.CheckConstraint('new_balance >= 0', name='ck_transaction_balance_non_negative'),
        sa.CheckConstraint('new_balance = previous_balance + credits',
                           name='ck_transaction_balance_arithmetic')
    )

    # Create indexes
    op.create_index('ix_officers_name', 'officers', ['name'])
    op.create_index('ix_officers_mobile', 'officers', ['mobile'])
    op.create_index('ix_officers_status', 'officers', ['status'])
    op.create_index('ix_officer_status_created', 'officers', ['status', 'created_at'])

    op.create_index('ix_query_requests_officer_id', 'query_requests', ['officer_id'])
    op.create_index('ix_query_requests_type', 'query_requests', ['type'])
    op.create_index('ix_query_requests_status', 'query_requests', ['status'])
    op.create_index('ix_query_requests_created_at', 'query_requests', ['created_at'])
    op.create_index('ix_query_officer_status', 'query_requests', ['officer_id', 'status'])

    op.create_index('ix_credit_transactions_officer_id', 'credit_transactions', ['officer_id'])
    op.create_index('ix_credit_transactions_action', 'credit_transactions', ['action'])
    op.create_index('ix_transaction_officer_created', 'credit_transactions',
                    ['officer_id', 'created_at'])


def downgrade() -> None:
    """Drop all tables and types."""
    # Drop tables in reverse order
    op.drop_table('credit_transactions')
    op.drop_table('query_requests')
    op.drop_table('officers')

    # Named enum types only exist on PostgreSQL
    if op.get_bind().dialect.name == 'postgresql':
        for type_name in ENUM_TYPES:
            op.execute(f'DROP TYPE IF EXISTS {type_name}')
