from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from spa_coupons.core.db import as_utc, insert_if_absent, utcnow
from spa_coupons.core.logging import get_logger
from spa_coupons.models.rate_limit import CouponRateLimit
from spa_coupons.services.phone import mask_phone

logger = get_logger(__name__)

ENDPOINT_CONSUME = "consume"
ENDPOINT_CLAIM = "claim"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    reset_at: datetime
    retry_after: int = 0


def next_reset_at(now: datetime, window: timedelta, reset_timezone: str | None = None) -> datetime:
    """
    End of the window that starts at `now`.

    With `reset_timezone` set the window ends at the next local midnight of that
    zone (DST-aware), otherwise `window` after `now`.
    """
    if reset_timezone:
        tz = ZoneInfo(reset_timezone)
        local_today = now.astimezone(tz).date()
        midnight = datetime.combine(local_today + timedelta(days=1), time.min, tzinfo=tz)
        return midnight.astimezone(timezone.utc)
    return now + window


async def check_and_increment(
    db: AsyncSession,
    *,
    phone: str,
    endpoint: str,
    limit: int,
    window: timedelta,
    reset_timezone: str | None = None,
    now: datetime | None = None,
) -> RateLimitDecision:
    """
    Fixed-window counter for (phone, endpoint).

    The counter row is created if missing and then locked FOR UPDATE, so the
    check and the increment happen under the same row lock. Caller commits.
    """
    now = now or utcnow()
    fresh_reset = next_reset_at(now, window, reset_timezone)

    await insert_if_absent(
        db,
        CouponRateLimit,
        index_elements=["phone", "endpoint"],
        values={"phone": phone, "endpoint": endpoint, "count": 0, "reset_at": fresh_reset},
    )

    res = await db.execute(
        select(CouponRateLimit)
        .where(CouponRateLimit.phone == phone, CouponRateLimit.endpoint == endpoint)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    row = res.scalar_one()
    reset_at = as_utc(row.reset_at)

    if reset_at <= now:
        row.count = 1
        row.reset_at = fresh_reset
        await db.flush()
        return RateLimitDecision(allowed=True, count=1, reset_at=fresh_reset)

    if row.count < limit:
        row.count = row.count + 1
        await db.flush()
        return RateLimitDecision(allowed=True, count=row.count, reset_at=reset_at)

    retry_after = max(1, math.ceil((reset_at - now).total_seconds()))
    return RateLimitDecision(allowed=False, count=row.count, reset_at=reset_at, retry_after=retry_after)


async def get_counter(db: AsyncSession, *, phone: str, endpoint: str) -> CouponRateLimit | None:
    res = await db.execute(
        select(CouponRateLimit).where(CouponRateLimit.phone == phone, CouponRateLimit.endpoint == endpoint)
    )
    return res.scalar_one_or_none()


async def sweep_expired(db: AsyncSession, *, now: datetime | None = None) -> int:
    """Storage hygiene only; stale rows are already reset on read."""
    now = now or utcnow()
    res = await db.execute(delete(CouponRateLimit).where(CouponRateLimit.reset_at <= now))
    return int(res.rowcount or 0)


class AbuseTracker:
    """
    Counts rate-limit rejections per (phone, endpoint) in this process and
    warns when one key keeps hammering a closed window.
    """

    def __init__(self, threshold: int = 50, window: timedelta = timedelta(hours=1)):
        self.threshold = threshold
        self.window = window
        self._hits: dict[tuple[str, str], tuple[int, datetime]] = {}

    def _prune(self, now: datetime) -> None:
        lapsed = [key for key, (_, start) in self._hits.items() if now - start > self.window]
        for key in lapsed:
            del self._hits[key]

    def record(self, phone: str, endpoint: str, *, now: datetime | None = None) -> int:
        now = now or utcnow()
        self._prune(now)
        key = (phone, endpoint)
        count, window_start = self._hits.get(key, (0, now))
        count += 1
        self._hits[key] = (count, window_start)

        if count == self.threshold or (count > self.threshold and count % 10 == 0):
            logger.warning(
                "Rate limit abuse detected phone=%s endpoint=%s rejections=%d since=%s",
                mask_phone(phone),
                endpoint,
                count,
                window_start.isoformat(),
            )
        return count

    def offenders(self, *, now: datetime | None = None) -> list[dict]:
        self._prune(now or utcnow())
        return [
            {"phone": mask_phone(phone), "endpoint": endpoint, "count": count, "windowStart": start}
            for (phone, endpoint), (count, start) in self._hits.items()
            if count >= self.threshold
        ]

    def __len__(self) -> int:
        return len(self._hits)

    def clear(self) -> None:
        self._hits.clear()
