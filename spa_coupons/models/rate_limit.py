from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from spa_coupons.core.db import Base


class CouponRateLimit(Base):
    __tablename__ = "coupon_rate_limits"

    phone: Mapped[str] = mapped_column(Text, primary_key=True)
    endpoint: Mapped[str] = mapped_column(Text, primary_key=True)

    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reset_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


Index("ix_coupon_rate_limits_reset_at", CouponRateLimit.reset_at)
