# spa_coupons/models/coupon_policy.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from spa_coupons.core.db import Base, utcnow


class CouponSetting(Base):
    """Admin overrides of the env-configured policy, one row per key."""

    __tablename__ = "coupon_settings"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    updated_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class CouponRewardTier(Base):
    __tablename__ = "coupon_reward_tiers"
    __table_args__ = (
        CheckConstraint(
            "coupons_required BETWEEN 1 AND 100",
            name="coupon_reward_tiers_coupons_required_chk",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(Text, nullable=False)
    name_tr: Mapped[str] = mapped_column(Text, nullable=False)
    coupons_required: Mapped[int] = mapped_column(Integer, nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    description_tr: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


Index("ix_coupon_reward_tiers_active_sort", CouponRewardTier.is_active, CouponRewardTier.sort_order)
