"""initial affiliate schema: users, affiliates, deposits, commissions, referral clicks, withdrawals

Revision ID: initial_affiliate_schema
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = 'initial_affiliate_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('fullname', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('is_verified', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('known_devices', sa.JSON(), nullable=False),
        sa.Column('coupon_code', sa.String(50), nullable=True),
        sa.Column('available_balance', sa.DECIMAL(14, 2), server_default='0', nullable=False),
        sa.Column('first_deposit', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )
    op.create_index('ix_users_coupon_code', 'users', ['coupon_code'])

    op.create_table(
        'affiliates',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('firstname', sa.String(100), nullable=False),
        sa.Column('lastname', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(20), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('is_verified', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('known_devices', sa.JSON(), nullable=False),
        sa.Column('affiliate_code', sa.String(20), nullable=False),
        sa.Column('referral_link', sa.String(500), nullable=False),
        sa.Column('coupon_code', sa.String(20), nullable=True),
        sa.Column('total_earned', sa.DECIMAL(14, 2), server_default='0', nullable=False),
        sa.Column('acc_balance', sa.DECIMAL(14, 2), server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.UniqueConstraint('phone'),
        sa.UniqueConstraint('affiliate_code'),
    )

    op.create_table(
        'deposits',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('amount', sa.DECIMAL(14, 2), nullable=False),
        sa.Column('reference', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('credited', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reference'),
    )
    op.create_index('ix_deposits_user_id', 'deposits', ['user_id'])

    op.create_table(
        'commissions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('affiliate_id', sa.Integer(), sa.ForeignKey('affiliates.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('deposit_id', sa.Integer(), sa.ForeignKey('deposits.id'), nullable=False),
        sa.Column('commission_amount', sa.DECIMAL(14, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('deposit_id'),
    )
    op.create_index('ix_commissions_affiliate_id', 'commissions', ['affiliate_id'])
    op.create_index('ix_commissions_user_id', 'commissions', ['user_id'])

    op.create_table(
        'referral_clicks',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('affiliate_id', sa.Integer(), sa.ForeignKey('affiliates.id'), nullable=False),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_referral_clicks_affiliate_id', 'referral_clicks', ['affiliate_id'])

    op.create_table(
        'affiliate_withdrawals',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('affiliate_id', sa.Integer(), sa.ForeignKey('affiliates.id'), nullable=False),
        sa.Column('amount', sa.DECIMAL(14, 2), nullable=False),
        sa.Column('bank_account', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_affiliate_withdrawals_affiliate_id', 'affiliate_withdrawals', ['affiliate_id'])
    op.create_index('ix_affiliate_withdrawals_status', 'affiliate_withdrawals', ['status'])


def downgrade() -> None:
    op.drop_index('ix_affiliate_withdrawals_status', table_name='affiliate_withdrawals')
    op.drop_index('ix_affiliate_withdrawals_affiliate_id', table_name='affiliate_withdrawals')
    op.drop_table('affiliate_withdrawals')
    op.drop_index('ix_referral_clicks_affiliate_id', table_name='referral_clicks')
    op.drop_table('referral_clicks')
    op.drop_index('ix_commissions_user_id', table_name='commissions')
    op.drop_index('ix_commissions_affiliate_id', table_name='commissions')
    op.drop_table('commissions')
    op.drop_index('ix_deposits_user_id', table_name='deposits')
    op.drop_table('deposits')
    op.drop_table('affiliates')
    op.drop_index('ix_users_coupon_code', table_name='users')
    op.drop_table('users')
