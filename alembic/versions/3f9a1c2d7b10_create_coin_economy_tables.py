"""create_coin_economy_tables

Revision ID: 3f9a1c2d7b10
Revises:
Create Date: 2026-01-05 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f9a1c2d7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Create accounts table (one per Pi identity)
    op.create_table(
        'accounts',
        sa.Column('uid', sa.String(length=128), nullable=False, comment='Pi Platform user uid'),
        sa.Column('username', sa.String(length=64), nullable=False, comment='Pi username'),
        sa.Column('coins', sa.Integer(), nullable=False, server_default='0', comment='Current coin balance'),
        sa.Column('free_skips_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('free_hints_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('free_restarts_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('monthly_coins_earned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('monthly_login_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('monthly_levels_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('monthly_skips_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('monthly_hints_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('monthly_restarts_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('monthly_ads_watched', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('monthly_valid_invites', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('monthly_win_streak', sa.Integer(), nullable=False, server_default='0', comment='Levels completed in a row without a skip'),
        sa.Column('monthly_best_win_streak', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('monthly_key', sa.String(length=7), nullable=True, comment='Calendar month of the counters (YYYY-MM)'),
        sa.Column('monthly_final_rate', sa.Integer(), nullable=False, server_default='50', comment='Derived payout percentage (0-100)'),
        sa.Column('monthly_rate_breakdown', sa.JSON().with_variant(postgresql.JSONB(), 'postgresql'), nullable=True, comment='Serialized RateBreakdown (points per factor)'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('coins >= 0', name='ck_accounts_coins_non_negative'),
        sa.CheckConstraint('free_skips_used >= 0', name='ck_accounts_free_skips'),
        sa.CheckConstraint('free_hints_used >= 0', name='ck_accounts_free_hints'),
        sa.CheckConstraint('free_restarts_used >= 0', name='ck_accounts_free_restarts'),
        sa.CheckConstraint('monthly_final_rate >= 0 AND monthly_final_rate <= 100', name='ck_accounts_rate_range'),
        sa.PrimaryKeyConstraint('uid')
    )
    op.create_index(op.f('ix_accounts_username'), 'accounts', ['username'], unique=True)

    # Create reward_claims table (idempotency ledger)
    op.create_table(
        'reward_claims',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('uid', sa.String(length=128), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False, comment='RewardType value'),
        sa.Column('nonce', sa.String(length=255), nullable=False, comment='Idempotency key (daily:{uid}:{date}, level:{uid}:{n}, client ad nonce, ...)'),
        sa.Column('amount', sa.Integer(), nullable=False, comment='Signed coin delta applied'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['uid'], ['accounts.uid'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('nonce')
    )
    op.create_index(op.f('ix_reward_claims_uid'), 'reward_claims', ['uid'], unique=False)
    op.create_index(op.f('ix_reward_claims_created_at'), 'reward_claims', ['created_at'], unique=False)
    op.create_index('ix_reward_claims_uid_type_created', 'reward_claims', ['uid', 'type', 'created_at'], unique=False)

    # Create level_rewards table (once-only level bonus marker)
    op.create_table(
        'level_rewards',
        sa.Column('uid', sa.String(length=128), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('claim_nonce', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['uid'], ['accounts.uid'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('uid', 'level')
    )

    # Create referrals table (one inviter per invitee)
    op.create_table(
        'referrals',
        sa.Column('invitee_uid', sa.String(length=128), nullable=False),
        sa.Column('inviter_uid', sa.String(length=128), nullable=False),
        sa.Column('claim_nonce', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['invitee_uid'], ['accounts.uid'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['inviter_uid'], ['accounts.uid'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('invitee_uid')
    )
    op.create_index(op.f('ix_referrals_inviter_uid'), 'referrals', ['inviter_uid'], unique=False)

    # Create coin_transactions table (coin ledger)
    op.create_table(
        'coin_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('uid', sa.String(length=128), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False, comment='CoinReason value'),
        sa.Column('amount', sa.Integer(), nullable=False, comment='Applied delta (after clamping)'),
        sa.Column('balance_before', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('reference', sa.String(length=255), nullable=True, comment='Claim nonce or month tag'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['uid'], ['accounts.uid'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_coin_transactions_uid'), 'coin_transactions', ['uid'], unique=False)
    op.create_index(op.f('ix_coin_transactions_reason'), 'coin_transactions', ['reason'], unique=False)
    op.create_index(op.f('ix_coin_transactions_created_at'), 'coin_transactions', ['created_at'], unique=False)

    # Create monthly_payouts table (month close snapshots)
    op.create_table(
        'monthly_payouts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('uid', sa.String(length=128), nullable=False),
        sa.Column('month', sa.String(length=7), nullable=False),
        sa.Column('coins_collected', sa.Integer(), nullable=False),
        sa.Column('final_rate', sa.Integer(), nullable=False, comment='Payout rate at snapshot time'),
        sa.Column('pi_amount_equivalent', sa.Numeric(precision=20, scale=7), nullable=True, comment='Filled by the payout pipeline'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('txid', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['uid'], ['accounts.uid'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('uid', 'month', name='uq_monthly_payouts_uid_month')
    )
    op.create_index(op.f('ix_monthly_payouts_uid'), 'monthly_payouts', ['uid'], unique=False)
    op.create_index(op.f('ix_monthly_payouts_month'), 'monthly_payouts', ['month'], unique=False)
    op.create_index(op.f('ix_monthly_payouts_status'), 'monthly_payouts', ['status'], unique=False)

    # Create user_sessions table (online heartbeat)
    op.create_table(
        'user_sessions',
        sa.Column('uid', sa.String(length=128), nullable=False),
        sa.Column('session_id', sa.String(length=128), nullable=False, server_default='auto'),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip', sa.String(length=64), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_seen_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['uid'], ['accounts.uid'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('uid')
    )
    op.create_index(op.f('ix_user_sessions_last_seen_at'), 'user_sessions', ['last_seen_at'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_user_sessions_last_seen_at'), table_name='user_sessions')
    op.drop_table('user_sessions')

    op.drop_index(op.f('ix_monthly_payouts_status'), table_name='monthly_payouts')
    op.drop_index(op.f('ix_monthly_payouts_month'), table_name='monthly_payouts')
    op.drop_index(op.f('ix_monthly_payouts_uid'), table_name='monthly_payouts')
    op.drop_table('monthly_payouts')

    op.drop_index(op.f('ix_coin_transactions_created_at'), table_name='coin_transactions')
    op.drop_index(op.f('ix_coin_transactions_reason'), table_name='coin_transactions')
    op.drop_index(op.f('ix_coin_transactions_uid'), table_name='coin_transactions')
    op.drop_table('coin_transactions')

    op.drop_index(op.f('ix_referrals_inviter_uid'), table_name='referrals')
    op.drop_table('referrals')

    op.drop_table('level_rewards')

    op.drop_index('ix_reward_claims_uid_type_created', table_name='reward_claims')
    op.drop_index(op.f('ix_reward_claims_created_at'), table_name='reward_claims')
    op.drop_index(op.f('ix_reward_claims_uid'), table_name='reward_claims')
    op.drop_table('reward_claims')

    op.drop_index(op.f('ix_accounts_username'), table_name='accounts')
    op.drop_table('accounts')
