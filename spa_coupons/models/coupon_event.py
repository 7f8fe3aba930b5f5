# spa_coupons/models/coupon_event.py
from __future__ import annotations

from sqlalchemy import JSON, BigInteger, Column, DateTime, Index, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB

from spa_coupons.core.db import Base, utcnow


class CouponEvent(Base):
    __tablename__ = "coupon_events"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)

    phone = Column(Text, nullable=True)
    event = Column(Text, nullable=False)  # CouponEventType value
    token = Column(Text, nullable=True)

    details = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


Index("ix_coupon_events_phone_created", CouponEvent.phone, CouponEvent.created_at.desc())
Index("ix_coupon_events_token", CouponEvent.token)
Index("ix_coupon_events_event", CouponEvent.event)
