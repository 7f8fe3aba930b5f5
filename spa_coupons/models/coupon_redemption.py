from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from spa_coupons.core.db import Base, utcnow

REDEMPTION_PENDING = "pending"
REDEMPTION_COMPLETED = "completed"
REDEMPTION_REJECTED = "rejected"


class CouponRedemption(Base):
    __tablename__ = "coupon_redemptions"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','completed','rejected')",
            name="coupon_redemptions_status_check",
        ),
        CheckConstraint("coupons_used > 0", name="coupon_redemptions_coupons_used_chk"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    phone: Mapped[str] = mapped_column(Text, nullable=False)

    coupons_used: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=REDEMPTION_PENDING)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# one pending redemption per phone
Index(
    "uq_coupon_redemptions_pending_phone",
    CouponRedemption.phone,
    unique=True,
    postgresql_where=text("status = 'pending'"),
    sqlite_where=text("status = 'pending'"),
)
Index("ix_coupon_redemptions_status_created", CouponRedemption.status, CouponRedemption.created_at.desc())
