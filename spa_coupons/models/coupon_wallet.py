from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from spa_coupons.core.db import Base, utcnow


class CouponWallet(Base):
    __tablename__ = "coupon_wallets"
    __table_args__ = (
        CheckConstraint("coupon_count >= 0", name="coupon_wallets_count_nonneg_chk"),
        CheckConstraint(
            "coupon_count = total_earned - total_redeemed + total_refunded",
            name="coupon_wallets_balance_chk",
        ),
    )

    phone: Mapped[str] = mapped_column(Text, primary_key=True)

    coupon_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_redeemed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_refunded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    opted_in_marketing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
