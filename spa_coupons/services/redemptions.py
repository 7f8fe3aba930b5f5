from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from spa_coupons.core.db import utcnow
from spa_coupons.models.coupon_redemption import (
    REDEMPTION_COMPLETED,
    REDEMPTION_PENDING,
    REDEMPTION_REJECTED,
    CouponRedemption,
)
from spa_coupons.services import wallet as wallet_service
from spa_coupons.services.errors import InsufficientCoupons, NoteRequired, RedemptionNotFound

REDEMPTION_STATUSES = (REDEMPTION_PENDING, REDEMPTION_COMPLETED, REDEMPTION_REJECTED)
AUTO_EXPIRE_NOTE = "Auto-expired after {days} days"


@dataclass(frozen=True)
class ClaimResult:
    redemption: CouponRedemption
    created: bool
    balance: int


async def get_redemption(db: AsyncSession, redemption_id: str) -> CouponRedemption | None:
    res = await db.execute(
        select(CouponRedemption)
        .where(CouponRedemption.id == redemption_id)
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def pending_for_phone(db: AsyncSession, phone: str) -> CouponRedemption | None:
    res = await db.execute(
        select(CouponRedemption)
        .where(CouponRedemption.phone == phone, CouponRedemption.status == REDEMPTION_PENDING)
        .order_by(CouponRedemption.created_at.desc())
        .limit(1)
    )
    return res.scalar_one_or_none()


async def claim(
    db: AsyncSession,
    *,
    phone: str,
    bundle_size: int,
    now: datetime | None = None,
) -> ClaimResult:
    """
    Spend one bundle of coupons on a new pending redemption.

    The wallet row is locked first, which serialises claims for the phone:
    an existing pending redemption is handed back untouched, otherwise the
    balance is checked, debited and the redemption inserted.
    """
    now = now or utcnow()
    wallet = await wallet_service.get_or_create(db, phone, lock=True)

    existing = await pending_for_phone(db, phone)
    if existing is not None:
        return ClaimResult(redemption=existing, created=False, balance=int(wallet.coupon_count))

    balance = int(wallet.coupon_count)
    if balance < bundle_size:
        raise InsufficientCoupons(balance=balance, needed=bundle_size - balance, threshold=bundle_size)

    wallet = await wallet_service.debit(db, phone, bundle_size, now=now)

    redemption = CouponRedemption(
        id=str(uuid4()),
        phone=phone,
        coupons_used=int(bundle_size),
        status=REDEMPTION_PENDING,
        created_at=now,
    )
    db.add(redemption)
    await db.flush()

    return ClaimResult(redemption=redemption, created=True, balance=int(wallet.coupon_count))


async def _lock_pending(db: AsyncSession, redemption_id: str) -> CouponRedemption:
    res = await db.execute(
        select(CouponRedemption)
        .where(CouponRedemption.id == redemption_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    redemption = res.scalar_one_or_none()
    if redemption is None or redemption.status != REDEMPTION_PENDING:
        raise RedemptionNotFound()
    return redemption


async def _transition(db: AsyncSession, redemption_id: str, **values) -> None:
    # guarded so that only a still-pending row can move to a terminal state
    res = await db.execute(
        update(CouponRedemption)
        .where(CouponRedemption.id == redemption_id, CouponRedemption.status == REDEMPTION_PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise RedemptionNotFound()


async def complete(db: AsyncSession, *, redemption_id: str, now: datetime | None = None) -> CouponRedemption:
    now = now or utcnow()
    await _lock_pending(db, redemption_id)
    await _transition(db, redemption_id, status=REDEMPTION_COMPLETED, completed_at=now)
    return await get_redemption(db, redemption_id)


async def reject(
    db: AsyncSession,
    *,
    redemption_id: str,
    note: str,
    now: datetime | None = None,
) -> CouponRedemption:
    clean_note = (note or "").strip()
    if not clean_note:
        raise NoteRequired()

    now = now or utcnow()
    redemption = await _lock_pending(db, redemption_id)
    await _transition(db, redemption_id, status=REDEMPTION_REJECTED, rejected_at=now, note=clean_note)
    await wallet_service.refund(db, redemption.phone, redemption.coupons_used, now=now)
    return await get_redemption(db, redemption_id)


async def list_redemptions(
    db: AsyncSession,
    *,
    status: str | None = None,
    phone: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[CouponRedemption]:
    stmt = select(CouponRedemption).order_by(CouponRedemption.created_at.desc(), CouponRedemption.id)
    if status:
        stmt = stmt.where(CouponRedemption.status == status)
    if phone:
        stmt = stmt.where(CouponRedemption.phone == phone)

    res = await db.execute(stmt.limit(int(limit)).offset(int(offset)))
    return list(res.scalars().all())


async def expire_stale_pending(
    db: AsyncSession,
    *,
    created_before: datetime,
    max_age_days: int,
    now: datetime | None = None,
) -> list[CouponRedemption]:
    """Reject and refund pending redemptions nobody acted on in time."""
    now = now or utcnow()
    res = await db.execute(
        select(CouponRedemption.id).where(
            CouponRedemption.status == REDEMPTION_PENDING,
            CouponRedemption.created_at < created_before,
        )
    )
    expired: list[CouponRedemption] = []
    for redemption_id in res.scalars().all():
        try:
            expired.append(
                await reject(
                    db,
                    redemption_id=redemption_id,
                    note=AUTO_EXPIRE_NOTE.format(days=max_age_days),
                    now=now,
                )
            )
        except RedemptionNotFound:
            # completed or rejected by staff since the scan
            continue
    return expired
