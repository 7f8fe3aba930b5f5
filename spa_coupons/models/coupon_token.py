# spa_coupons/models/coupon_token.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from spa_coupons.core.db import Base, utcnow

TOKEN_STATUS_ISSUED = "issued"
TOKEN_STATUS_USED = "used"


class CouponToken(Base):
    __tablename__ = "coupon_tokens"
    __table_args__ = (
        CheckConstraint("status IN ('issued','used')", name="coupon_tokens_status_check"),
        CheckConstraint("length(token) = 12", name="coupon_tokens_token_length_check"),
    )

    token: Mapped[str] = mapped_column(String(12), primary_key=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=TOKEN_STATUS_ISSUED)

    issued_for: Mapped[str | None] = mapped_column(Text, nullable=True)
    kiosk_id: Mapped[str | None] = mapped_column(Text, nullable=True)

    # set exactly once, when the token is consumed
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


Index("ix_coupon_tokens_status_expires", CouponToken.status, CouponToken.expires_at)
Index("ix_coupon_tokens_phone", CouponToken.phone)
Index("ix_coupon_tokens_created", CouponToken.created_at.desc())
