# spa_coupons/services/policy.py
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from spa_coupons.core.db import insert_if_absent, utcnow
from spa_coupons.models.coupon_policy import CouponRewardTier, CouponSetting
from spa_coupons.services.errors import InvalidPolicySetting, LastRewardTier, RewardTierNotFound

SETTING_BUNDLE_SIZE = "default_redemption_threshold"
SETTING_TOKEN_TTL_MINUTES = "token_ttl_minutes"
SETTING_CONSUME_LIMIT = "max_coupons_per_day"

# key -> (min, max, description)
SETTING_BOUNDS = {
    SETTING_BUNDLE_SIZE: (1, 100, "Coupons needed for the default redemption"),
    SETTING_TOKEN_TTL_MINUTES: (1, 7 * 24 * 60, "Minutes until an issued token expires"),
    SETTING_CONSUME_LIMIT: (1, 50, "Coupons a customer can earn per rate-limit window"),
}

TIER_COUPONS_MIN = 1
TIER_COUPONS_MAX = 100

_TIER_FIELDS = ("name", "name_tr", "coupons_required", "description", "description_tr", "is_active", "sort_order")


@dataclass(frozen=True)
class NextReward:
    needed: int
    tier_id: int
    name: str
    name_tr: str
    coupons_required: int


# -------------------------
# Settings
# -------------------------
async def get_settings(db: AsyncSession) -> dict[str, int]:
    res = await db.execute(select(CouponSetting.key, CouponSetting.value))
    return {k: int(v) for k, v in res.all()}


async def effective_policy(db: AsyncSession, base):
    """`base` (a CouponPolicy) with any stored admin overrides applied."""
    stored = await get_settings(db)
    changes = {}
    if SETTING_BUNDLE_SIZE in stored:
        changes["bundle_size"] = stored[SETTING_BUNDLE_SIZE]
    if SETTING_TOKEN_TTL_MINUTES in stored:
        changes["token_ttl"] = timedelta(minutes=stored[SETTING_TOKEN_TTL_MINUTES])
    if SETTING_CONSUME_LIMIT in stored:
        changes["consume_limit"] = stored[SETTING_CONSUME_LIMIT]
    return dataclasses.replace(base, **changes) if changes else base


def _check_setting(key: str, value: int) -> int:
    if key not in SETTING_BOUNDS:
        raise InvalidPolicySetting(f"Unknown setting: {key}", key=key)
    lo, hi, _ = SETTING_BOUNDS[key]
    value = int(value)
    if not lo <= value <= hi:
        raise InvalidPolicySetting(f"{key} must be between {lo} and {hi}", key=key, min=lo, max=hi)
    return value


async def update_settings(
    db: AsyncSession,
    values: dict[str, int],
    *,
    actor: str | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    """Validate every value first, then upsert them together."""
    now = now or utcnow()
    checked = {key: _check_setting(key, value) for key, value in values.items()}

    for key, value in checked.items():
        await insert_if_absent(
            db,
            CouponSetting,
            index_elements=["key"],
            values={
                "key": key,
                "value": value,
                "description": SETTING_BOUNDS[key][2],
                "updated_by": actor,
                "updated_at": now,
            },
        )
        await db.execute(
            update(CouponSetting)
            .where(CouponSetting.key == key)
            .values(value=value, updated_by=actor, updated_at=now)
            .execution_options(synchronize_session=False)
        )
    return checked


# -------------------------
# Reward tiers
# -------------------------
async def list_tiers(db: AsyncSession, *, active_only: bool = False) -> list[CouponRewardTier]:
    stmt = select(CouponRewardTier).order_by(
        CouponRewardTier.sort_order, CouponRewardTier.coupons_required, CouponRewardTier.id
    )
    if active_only:
        stmt = stmt.where(CouponRewardTier.is_active.is_(True))
    res = await db.execute(stmt.execution_options(populate_existing=True))
    return list(res.scalars().all())


async def get_tier(db: AsyncSession, tier_id: int) -> CouponRewardTier | None:
    res = await db.execute(
        select(CouponRewardTier)
        .where(CouponRewardTier.id == int(tier_id))
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


def _check_coupons_required(value: int) -> int:
    value = int(value)
    if not TIER_COUPONS_MIN <= value <= TIER_COUPONS_MAX:
        raise InvalidPolicySetting(
            f"couponsRequired must be between {TIER_COUPONS_MIN} and {TIER_COUPONS_MAX}",
            key="coupons_required",
            min=TIER_COUPONS_MIN,
            max=TIER_COUPONS_MAX,
        )
    return value


async def create_tier(
    db: AsyncSession,
    *,
    name: str,
    name_tr: str,
    coupons_required: int,
    description: str | None = None,
    description_tr: str | None = None,
    is_active: bool = True,
    sort_order: int = 0,
    now: datetime | None = None,
) -> CouponRewardTier:
    now = now or utcnow()
    tier = CouponRewardTier(
        name=name,
        name_tr=name_tr,
        coupons_required=_check_coupons_required(coupons_required),
        description=description,
        description_tr=description_tr,
        is_active=bool(is_active),
        sort_order=int(sort_order),
        created_at=now,
        updated_at=now,
    )
    db.add(tier)
    await db.flush()
    return tier


async def update_tier(
    db: AsyncSession,
    tier_id: int,
    changes: dict,
    *,
    now: datetime | None = None,
) -> CouponRewardTier:
    now = now or utcnow()
    values = {k: v for k, v in changes.items() if k in _TIER_FIELDS}
    if "coupons_required" in values:
        values["coupons_required"] = _check_coupons_required(values["coupons_required"])

    res = await db.execute(
        update(CouponRewardTier)
        .where(CouponRewardTier.id == int(tier_id))
        .values(updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise RewardTierNotFound()
    return await get_tier(db, tier_id)


async def delete_tier(db: AsyncSession, tier_id: int) -> None:
    if await get_tier(db, tier_id) is None:
        raise RewardTierNotFound()

    res = await db.execute(select(func.count(CouponRewardTier.id)))
    if int(res.scalar_one()) <= 1:
        raise LastRewardTier()

    await db.execute(delete(CouponRewardTier).where(CouponRewardTier.id == int(tier_id)))


async def resolve_requirement(
    db: AsyncSession,
    *,
    tier_id: int | None,
    default_bundle: int,
) -> tuple[int, CouponRewardTier | None]:
    """Coupons a claim costs: the default bundle, or the chosen active tier's price."""
    if tier_id is None:
        return int(default_bundle), None

    tier = await get_tier(db, tier_id)
    if tier is None or not tier.is_active:
        raise RewardTierNotFound()
    return int(tier.coupons_required), tier


def remaining_for_next_reward(balance: int, tiers: list[CouponRewardTier]) -> NextReward | None:
    """
    The cheapest active tier still out of reach and how many coupons it needs.
    Once every tier is affordable the cheapest one is reported with needed=0.
    """
    active = [t for t in tiers if t.is_active]
    if not active:
        return None

    ahead = sorted((t for t in active if t.coupons_required > balance), key=lambda t: t.coupons_required)
    if ahead:
        tier, needed = ahead[0], ahead[0].coupons_required - int(balance)
    else:
        tier, needed = min(active, key=lambda t: t.coupons_required), 0

    return NextReward(
        needed=needed,
        tier_id=tier.id,
        name=tier.name,
        name_tr=tier.name_tr,
        coupons_required=tier.coupons_required,
    )
