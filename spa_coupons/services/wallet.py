from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from spa_coupons.core.db import insert_if_absent, utcnow
from spa_coupons.models.coupon_wallet import CouponWallet
from spa_coupons.services.errors import InsufficientCoupons


def remaining_to_free(balance: int, bundle_size: int) -> int:
    """Coupons still missing for the next free session (display only)."""
    return max(0, int(bundle_size) - int(balance))


def _check_amount(amount: int) -> int:
    amount = int(amount)
    if amount <= 0:
        raise ValueError("Amount must be positive.")
    return amount


async def get_wallet(db: AsyncSession, phone: str) -> CouponWallet | None:
    res = await db.execute(
        select(CouponWallet).where(CouponWallet.phone == phone).execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def get_or_create(db: AsyncSession, phone: str, *, lock: bool = False) -> CouponWallet:
    """
    Wallets are created lazily. With lock=True the row is held FOR UPDATE
    until the surrounding transaction ends.
    """
    await insert_if_absent(
        db,
        CouponWallet,
        index_elements=["phone"],
        values={
            "phone": phone,
            "coupon_count": 0,
            "total_earned": 0,
            "total_redeemed": 0,
            "total_refunded": 0,
            "opted_in_marketing": False,
            "updated_at": utcnow(),
        },
    )

    stmt = select(CouponWallet).where(CouponWallet.phone == phone).execution_options(populate_existing=True)
    if lock:
        stmt = stmt.with_for_update()
    res = await db.execute(stmt)
    return res.scalar_one()


async def credit(db: AsyncSession, phone: str, amount: int = 1, *, now: datetime | None = None) -> CouponWallet:
    amount = _check_amount(amount)
    now = now or utcnow()

    await get_or_create(db, phone)
    await db.execute(
        update(CouponWallet)
        .where(CouponWallet.phone == phone)
        .values(
            coupon_count=CouponWallet.coupon_count + amount,
            total_earned=CouponWallet.total_earned + amount,
            last_message_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return await get_wallet(db, phone)


async def debit(db: AsyncSession, phone: str, amount: int, *, now: datetime | None = None) -> CouponWallet:
    """
    Check and decrement in one statement: the UPDATE only matches while the
    balance covers `amount`, so two debits can never take the wallet below zero.
    """
    amount = _check_amount(amount)
    now = now or utcnow()

    res = await db.execute(
        update(CouponWallet)
        .where(CouponWallet.phone == phone, CouponWallet.coupon_count >= amount)
        .values(
            coupon_count=CouponWallet.coupon_count - amount,
            total_redeemed=CouponWallet.total_redeemed + amount,
            last_message_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        wallet = await get_wallet(db, phone)
        balance = int(wallet.coupon_count) if wallet else 0
        raise InsufficientCoupons(balance=balance, needed=amount - balance, threshold=amount)

    return await get_wallet(db, phone)


async def refund(db: AsyncSession, phone: str, amount: int, *, now: datetime | None = None) -> CouponWallet:
    """Give back coupons of a rejected redemption; lifetime totals stay monotonic."""
    amount = _check_amount(amount)
    now = now or utcnow()

    await get_or_create(db, phone)
    await db.execute(
        update(CouponWallet)
        .where(CouponWallet.phone == phone)
        .values(
            coupon_count=CouponWallet.coupon_count + amount,
            total_refunded=CouponWallet.total_refunded + amount,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return await get_wallet(db, phone)


async def opt_out(db: AsyncSession, phone: str, *, now: datetime | None = None) -> CouponWallet:
    now = now or utcnow()

    await get_or_create(db, phone)
    await db.execute(
        update(CouponWallet)
        .where(CouponWallet.phone == phone)
        .values(opted_in_marketing=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return await get_wallet(db, phone)
