"""create coupon tables

Revision ID: a1c0e5d2f001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'a1c0e5d2f001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'coupon_tokens',
        sa.Column('token', sa.String(length=12), primary_key=True),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('issued_for', sa.Text(), nullable=True),
        sa.Column('kiosk_id', sa.Text(), nullable=True),
        sa.Column('phone', sa.Text(), nullable=True),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("status IN ('issued','used')", name='coupon_tokens_status_check'),
        sa.CheckConstraint('length(token) = 12', name='coupon_tokens_token_length_check'),
    )
    op.create_index('ix_coupon_tokens_status_expires', 'coupon_tokens', ['status', 'expires_at'])
    op.create_index('ix_coupon_tokens_phone', 'coupon_tokens', ['phone'])
    op.create_index('ix_coupon_tokens_created', 'coupon_tokens', [sa.text('created_at DESC')])

    op.create_table(
        'coupon_wallets',
        sa.Column('phone', sa.Text(), primary_key=True),
        sa.Column('coupon_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_earned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_redeemed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_refunded', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('opted_in_marketing', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_message_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('coupon_count >= 0', name='coupon_wallets_count_nonneg_chk'),
        sa.CheckConstraint(
            'coupon_count = total_earned - total_redeemed + total_refunded',
            name='coupon_wallets_balance_chk',
        ),
    )

    op.create_table(
        'coupon_redemptions',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('phone', sa.Text(), nullable=False),
        sa.Column('coupons_used', sa.Integer(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notified_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending','completed','rejected')",
            name='coupon_redemptions_status_check',
        ),
        sa.CheckConstraint('coupons_used > 0', name='coupon_redemptions_coupons_used_chk'),
    )
    op.create_index(
        'uq_coupon_redemptions_pending_phone',
        'coupon_redemptions',
        ['phone'],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )
    op.create_index(
        'ix_coupon_redemptions_status_created',
        'coupon_redemptions',
        ['status', sa.text('created_at DESC')],
    )

    op.create_table(
        'coupon_events',
        sa.Column('id', sa.BigInteger().with_variant(sa.Integer(), 'sqlite'), primary_key=True, autoincrement=True),
        sa.Column('phone', sa.Text(), nullable=True),
        sa.Column('event', sa.Text(), nullable=False),
        sa.Column('token', sa.Text(), nullable=True),
        sa.Column('details', sa.JSON().with_variant(postgresql.JSONB(), 'postgresql'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_coupon_events_phone_created', 'coupon_events', ['phone', sa.text('created_at DESC')])
    op.create_index('ix_coupon_events_token', 'coupon_events', ['token'])
    op.create_index('ix_coupon_events_event', 'coupon_events', ['event'])

    op.create_table(
        'coupon_rate_limits',
        sa.Column('phone', sa.Text(), primary_key=True),
        sa.Column('endpoint', sa.Text(), primary_key=True),
        sa.Column('count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reset_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_coupon_rate_limits_reset_at', 'coupon_rate_limits', ['reset_at'])


def downgrade() -> None:
    op.drop_index('ix_coupon_rate_limits_reset_at', table_name='coupon_rate_limits')
    op.drop_table('coupon_rate_limits')

    op.drop_index('ix_coupon_events_event', table_name='coupon_events')
    op.drop_index('ix_coupon_events_token', table_name='coupon_events')
    op.drop_index('ix_coupon_events_phone_created', table_name='coupon_events')
    op.drop_table('coupon_events')

    op.drop_index('ix_coupon_redemptions_status_created', table_name='coupon_redemptions')
    op.drop_index('uq_coupon_redemptions_pending_phone', table_name='coupon_redemptions')
    op.drop_table('coupon_redemptions')

    op.drop_table('coupon_wallets')

    op.drop_index('ix_coupon_tokens_created', table_name='coupon_tokens')
    op.drop_index('ix_coupon_tokens_phone', table_name='coupon_tokens')
    op.drop_index('ix_coupon_tokens_status_expires', table_name='coupon_tokens')
    op.drop_table('coupon_tokens')
