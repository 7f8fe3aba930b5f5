# spa_coupons/routers/admin_policy.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from spa_coupons.core.deps import get_coupon_service, require_admin
from spa_coupons.schemas.coupons import (
    AdminPolicyResponse,
    OkResponse,
    PolicySettingsUpdate,
    RewardTierCreate,
    RewardTierOut,
    RewardTierUpdate,
)
from spa_coupons.services.coupons import CouponService

router = APIRouter(prefix="/api/admin/policy", tags=["Admin - Policy"])

# columns that cannot be cleared
_REQUIRED_TIER_FIELDS = {"name", "name_tr", "coupons_required", "is_active", "sort_order"}


@router.get("", response_model=AdminPolicyResponse)
async def get_policy(
    include_inactive: bool = Query(default=True),
    service: CouponService = Depends(get_coupon_service),
    admin: str = Depends(require_admin),
):
    snapshot = await service.get_policy(include_inactive=include_inactive)
    return AdminPolicyResponse.from_snapshot(snapshot, overrides=snapshot.overrides)


@router.put("/settings", response_model=AdminPolicyResponse)
async def update_settings(
    body: PolicySettingsUpdate,
    service: CouponService = Depends(get_coupon_service),
    admin: str = Depends(require_admin),
):
    values = body.model_dump(exclude_none=True)
    snapshot = (await service.update_policy_settings(values, actor=admin)).unwrap()
    return AdminPolicyResponse.from_snapshot(snapshot, overrides=snapshot.overrides)


@router.post("/tiers", response_model=RewardTierOut, status_code=201)
async def create_tier(
    body: RewardTierCreate,
    service: CouponService = Depends(get_coupon_service),
    admin: str = Depends(require_admin),
):
    return (await service.create_reward_tier(body.model_dump(), actor=admin)).unwrap()


@router.put("/tiers/{tier_id}", response_model=RewardTierOut)
async def update_tier(
    tier_id: int,
    body: RewardTierUpdate,
    service: CouponService = Depends(get_coupon_service),
    admin: str = Depends(require_admin),
):
    changes = {
        k: v
        for k, v in body.model_dump(exclude_unset=True).items()
        if v is not None or k not in _REQUIRED_TIER_FIELDS
    }
    return (await service.update_reward_tier(tier_id, changes, actor=admin)).unwrap()


@router.delete("/tiers/{tier_id}", response_model=OkResponse)
async def delete_tier(
    tier_id: int,
    service: CouponService = Depends(get_coupon_service),
    admin: str = Depends(require_admin),
):
    (await service.delete_reward_tier(tier_id, actor=admin)).unwrap()
    return OkResponse()
