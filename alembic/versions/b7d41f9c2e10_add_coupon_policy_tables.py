"""add coupon settings and reward tiers

Revision ID: b7d41f9c2e10
Revises: a1c0e5d2f001
Create Date: 2026-10-19 14:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'b7d41f9c2e10'
down_revision: Union[str, None] = 'a1c0e5d2f001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'coupon_settings',
        sa.Column('key', sa.Text(), primary_key=True),
        sa.Column('value', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('updated_by', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'coupon_reward_tiers',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('name_tr', sa.Text(), nullable=False),
        sa.Column('coupons_required', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('description_tr', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            'coupons_required BETWEEN 1 AND 100',
            name='coupon_reward_tiers_coupons_required_chk',
        ),
    )
    op.create_index('ix_coupon_reward_tiers_active_sort', 'coupon_reward_tiers', ['is_active', 'sort_order'])

    op.execute("""
        INSERT INTO coupon_reward_tiers
            (name, name_tr, coupons_required, description, description_tr, is_active, sort_order, created_at, updated_at)
        VALUES
            ('Free Massage', 'Ücretsiz Masaj', 4, 'One complimentary massage session', 'Bir seans ücretsiz masaj',
             TRUE, 1, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
    """)


def downgrade() -> None:
    op.drop_index('ix_coupon_reward_tiers_active_sort', table_name='coupon_reward_tiers')
    op.drop_table('coupon_reward_tiers')
    op.drop_table('coupon_settings')
