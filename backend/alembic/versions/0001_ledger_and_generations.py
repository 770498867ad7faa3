"""ledger and generation tables

Revision ID: 0001_ledger_and_generations
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


revision: str = '0001_ledger_and_generations'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('accounts',
    sa.Column('user_id', sa.String(length=255), nullable=False),
    sa.Column('balance', sa.BigInteger(), nullable=False, server_default='0'),
    sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    sa.CheckConstraint('balance >= 0', name='ck_accounts_balance_non_negative'),
    sa.PrimaryKeyConstraint('user_id')
    )

    op.create_table('generations',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('user_id', sa.String(length=255), nullable=False),
    sa.Column('type', sa.String(length=20), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('prompt', sa.Text(), nullable=True),
    sa.Column('model', sa.String(length=100), nullable=True),
    sa.Column('credits_used', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('provider', sa.String(length=50), nullable=True),
    sa.Column('external_job_id', sa.String(length=255), nullable=True),
    sa.Column('result_url', sa.String(length=1000), nullable=True),
    sa.Column('error_code', sa.String(length=50), nullable=True),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('metadata', sa.JSON(), nullable=True),
    sa.Column('completed_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_generations_user_created', 'generations', ['user_id', 'created_at'])
    op.create_index('idx_generations_status', 'generations', ['status'])

    op.create_table('credit_transactions',
    sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
    sa.Column('user_id', sa.String(length=255), nullable=False),
    sa.Column('kind', sa.String(length=20), nullable=False),
    sa.Column('amount', sa.BigInteger(), nullable=False),
    sa.Column('description', sa.String(length=500), nullable=False),
    sa.Column('generation_id', sa.Uuid(), nullable=True),
    sa.Column('payment_id', sa.String(length=255), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.CheckConstraint(
        "(kind = 'usage' AND amount < 0) OR (kind <> 'usage' AND amount > 0)",
        name='ck_credit_transactions_amount_sign',
    ),
    sa.ForeignKeyConstraint(['user_id'], ['accounts.user_id']),
    sa.ForeignKeyConstraint(['generation_id'], ['generations.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('generation_id', 'kind', name='uq_credit_transactions_generation_kind')
    )
    op.create_index('idx_credit_transactions_user_created', 'credit_transactions', ['user_id', 'created_at'])

    op.create_table('generation_events',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('generation_id', sa.Uuid(), nullable=False),
    sa.Column('event_type', sa.String(length=50), nullable=False),
    sa.Column('external_status', sa.String(length=50), nullable=True),
    sa.Column('response_data', sa.JSON(), nullable=True),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['generation_id'], ['generations.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_generation_events_generation_id', 'generation_events', ['generation_id'])


def downgrade() -> None:
    op.drop_index('ix_generation_events_generation_id', table_name='generation_events')
    op.drop_table('generation_events')
    op.drop_index('idx_credit_transactions_user_created', table_name='credit_transactions')
    op.drop_table('credit_transactions')
    op.drop_index('idx_generations_status', table_name='generations')
    op.drop_index('idx_generations_user_created', table_name='generations')
    op.drop_table('generations')
    op.drop_table('accounts')
