# spa_coupons/services/tokens.py
from __future__ import annotations

import re
import secrets
import string
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from urllib.parse import quote

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from spa_coupons.core.db import as_utc, utcnow
from spa_coupons.models.coupon_token import TOKEN_STATUS_ISSUED, TOKEN_STATUS_USED, CouponToken
from spa_coupons.services import wallet as wallet_service
from spa_coupons.services.errors import ExpiredToken, InvalidToken, TokenGenerationError, TokenUsedByOther

TOKEN_ALPHABET = string.ascii_uppercase + string.digits
TOKEN_LENGTH = 12
_TOKEN_RE = re.compile(r"^[A-Z0-9]{12}$")
_NON_DIGITS = re.compile(r"\D")


def generate_token() -> str:
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))


def normalize_token(token: str | None) -> str:
    return (token or "").strip().upper()


def is_valid_format(token: str | None) -> bool:
    return bool(token) and bool(_TOKEN_RE.match(token))


def whatsapp_link(token: str, whatsapp_number: str) -> tuple[str, str]:
    """Deep link that pre-fills `KUPON <token>` in a chat with the spa's number."""
    wa_text = f"KUPON {token}"
    number = _NON_DIGITS.sub("", whatsapp_number or "")
    return f"https://wa.me/{number}?text={quote(wa_text)}", wa_text


@dataclass(frozen=True)
class IssuedToken:
    token: str
    wa_url: str
    wa_text: str
    expires_at: datetime
    created_at: datetime
    kiosk_id: str | None = None
    issued_for: str | None = None


@dataclass(frozen=True)
class ConsumeResult:
    token: str
    phone: str
    balance: int
    credited: bool


async def issue_token(
    db: AsyncSession,
    *,
    kiosk_id: str | None,
    issued_for: str | None,
    ttl: timedelta,
    whatsapp_number: str,
    max_attempts: int = 3,
    now: datetime | None = None,
    generator: Callable[[], str] = generate_token,
) -> IssuedToken:
    now = now or utcnow()

    code = None
    for _ in range(max_attempts):
        candidate = generator()
        res = await db.execute(select(CouponToken.token).where(CouponToken.token == candidate))
        if res.scalar_one_or_none() is None:
            code = candidate
            break

    if code is None:
        raise TokenGenerationError(f"Failed to generate unique token after {max_attempts} attempts")

    expires_at = now + ttl
    db.add(
        CouponToken(
            token=code,
            status=TOKEN_STATUS_ISSUED,
            kiosk_id=kiosk_id,
            issued_for=issued_for,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
    )
    await db.flush()

    wa_url, wa_text = whatsapp_link(code, whatsapp_number)
    return IssuedToken(
        token=code,
        wa_url=wa_url,
        wa_text=wa_text,
        expires_at=expires_at,
        created_at=now,
        kiosk_id=kiosk_id,
        issued_for=issued_for,
    )


async def _lock_token(db: AsyncSession, code: str) -> CouponToken | None:
    res = await db.execute(
        select(CouponToken)
        .where(CouponToken.token == code)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def _replay(db: AsyncSession, row: CouponToken, phone: str) -> ConsumeResult:
    # already used: same phone is a retried delivery, anyone else is reuse
    if row.phone != phone:
        raise TokenUsedByOther()
    wallet = await wallet_service.get_or_create(db, phone)
    return ConsumeResult(token=row.token, phone=phone, balance=int(wallet.coupon_count), credited=False)


async def validate_and_consume(
    db: AsyncSession,
    *,
    token: str,
    phone: str,
    credit_amount: int = 1,
    now: datetime | None = None,
) -> ConsumeResult:
    """
    Mark the token used and credit the wallet in the caller's transaction.

    Replays by the same phone return the current balance with credited=False.
    """
    now = now or utcnow()
    code = normalize_token(token)
    if not is_valid_format(code):
        raise InvalidToken()

    row = await _lock_token(db, code)
    if row is None:
        raise InvalidToken()

    if row.status == TOKEN_STATUS_USED:
        return await _replay(db, row, phone)

    if as_utc(row.expires_at) <= now:
        raise ExpiredToken()

    res = await db.execute(
        update(CouponToken)
        .where(CouponToken.token == code, CouponToken.status == TOKEN_STATUS_ISSUED)
        .values(status=TOKEN_STATUS_USED, phone=phone, used_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        # a concurrent consumer got there first
        row = await _lock_token(db, code)
        return await _replay(db, row, phone)

    wallet = await wallet_service.credit(db, phone, credit_amount, now=now)
    return ConsumeResult(token=code, phone=phone, balance=int(wallet.coupon_count), credited=True)


async def get_token(db: AsyncSession, token: str) -> CouponToken | None:
    res = await db.execute(
        select(CouponToken)
        .where(CouponToken.token == normalize_token(token))
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def recent_tokens(db: AsyncSession, *, limit: int = 10) -> list[CouponToken]:
    res = await db.execute(select(CouponToken).order_by(CouponToken.created_at.desc()).limit(int(limit)))
    return list(res.scalars().all())


async def cleanup_tokens(
    db: AsyncSession,
    *,
    expired_before: datetime,
    used_before: datetime,
) -> tuple[int, int]:
    """
    Delete issued tokens that expired before `expired_before` and used tokens
    consumed before `used_before`. Returns (deleted_expired, deleted_used).
    """
    res_expired = await db.execute(
        delete(CouponToken).where(
            CouponToken.status == TOKEN_STATUS_ISSUED,
            CouponToken.expires_at < expired_before,
        )
    )
    res_used = await db.execute(
        delete(CouponToken).where(
            CouponToken.status == TOKEN_STATUS_USED,
            CouponToken.used_at < used_before,
        )
    )
    return int(res_expired.rowcount or 0), int(res_used.rowcount or 0)
