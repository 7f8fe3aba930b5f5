# spa_coupons/services/event_log.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from spa_coupons.core.db import as_utc, utcnow
from spa_coupons.models.coupon_event import CouponEvent
from spa_coupons.services.phone import mask_phone, mask_token


class CouponEventType(str, Enum):
    ISSUED = "issued"
    COUPON_AWARDED = "coupon_awarded"
    REDEMPTION_ATTEMPT = "redemption_attempt"
    REDEMPTION_GRANTED = "redemption_granted"
    REDEMPTION_BLOCKED = "redemption_blocked"
    REDEMPTION_COMPLETED = "redemption_completed"
    REDEMPTION_REJECTED = "redemption_rejected"
    OPTED_OUT = "opted_out"
    HOUSEKEEPING = "housekeeping"
    POLICY_UPDATED = "policy_updated"


@dataclass(frozen=True)
class CouponEventRecord:
    id: int
    event: CouponEventType
    created_at: datetime
    phone: str | None = None
    token: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: CouponEvent) -> "CouponEventRecord":
        return cls(
            id=int(row.id),
            event=CouponEventType(row.event),
            created_at=as_utc(row.created_at),
            phone=row.phone,
            token=row.token,
            details=dict(row.details or {}),
        )


def _mask_details(details: dict | None) -> dict:
    masked = dict(details or {})
    if masked.get("phone"):
        masked["phone"] = mask_phone(masked["phone"])
    if masked.get("token"):
        masked["token"] = mask_token(masked["token"])
    return masked


async def log_event(
    db: AsyncSession,
    *,
    event: CouponEventType,
    phone: str | None = None,
    token: str | None = None,
    details: dict | None = None,
    now: datetime | None = None,
) -> CouponEvent:
    """
    Stage an audit row in the caller's transaction.

    Events commit (or roll back) together with the state change they describe.
    Phone/token values repeated inside `details` are masked before storage.
    """
    e = CouponEvent(
        phone=phone,
        event=CouponEventType(event).value,
        token=token,
        details=_mask_details(details),
        created_at=now or utcnow(),
    )
    db.add(e)
    return e


def _ordered(stmt):
    return stmt.order_by(CouponEvent.created_at.desc(), CouponEvent.id.desc())


async def events_for_phone(db: AsyncSession, phone: str, *, limit: int = 100) -> list[CouponEventRecord]:
    res = await db.execute(_ordered(select(CouponEvent).where(CouponEvent.phone == phone)).limit(int(limit)))
    return [CouponEventRecord.from_row(r) for r in res.scalars().all()]


async def events_for_token(db: AsyncSession, token: str) -> list[CouponEventRecord]:
    res = await db.execute(_ordered(select(CouponEvent).where(CouponEvent.token == token)))
    return [CouponEventRecord.from_row(r) for r in res.scalars().all()]


async def recent_events(
    db: AsyncSession,
    *,
    limit: int = 50,
    event: CouponEventType | None = None,
) -> list[CouponEventRecord]:
    stmt = select(CouponEvent)
    if event is not None:
        stmt = stmt.where(CouponEvent.event == CouponEventType(event).value)
    res = await db.execute(_ordered(stmt).limit(int(limit)))
    return [CouponEventRecord.from_row(r) for r in res.scalars().all()]


async def event_counts(
    db: AsyncSession,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, int]:
    stmt = select(CouponEvent.event, func.count(CouponEvent.id)).group_by(CouponEvent.event)
    if start is not None:
        stmt = stmt.where(CouponEvent.created_at >= start)
    if end is not None:
        stmt = stmt.where(CouponEvent.created_at <= end)

    res = await db.execute(stmt)
    return {str(r[0]): int(r[1]) for r in res.all()}
