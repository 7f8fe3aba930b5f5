# spa_coupons/schemas/coupons.py
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from spa_coupons.core.db import as_utc
from spa_coupons.services.event_log import CouponEventType


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class TimestampedOut(CamelModel):
    # SQLite returns naive datetimes; everything is stored as UTC
    @field_validator("*", mode="after")
    @classmethod
    def _utc(cls, v):
        if isinstance(v, datetime):
            return as_utc(v)
        return v


# -------------------------
# Integration
# -------------------------
class ConsumeRequest(CamelModel):
    phone: str = Field(min_length=1, max_length=32)
    token: str = Field(min_length=1, max_length=64)


class NextRewardOut(CamelModel):
    needed: int
    tier_id: int
    name: str
    name_tr: str
    coupons_required: int


class ConsumeResponse(CamelModel):
    ok: bool = True
    balance: int
    remaining_to_free: int
    credited: bool
    next_reward: NextRewardOut | None = None


class PhoneRequest(CamelModel):
    phone: str = Field(min_length=1, max_length=32)


class ClaimRequest(PhoneRequest):
    tier_id: int | None = Field(default=None, ge=1)


class ClaimResponse(CamelModel):
    ok: bool = True
    redemption_id: str
    created: bool
    balance: int
    coupons_used: int
    reward_name: str | None = None


class OkResponse(CamelModel):
    ok: bool = True


class RewardTierOut(TimestampedOut):
    id: int
    name: str
    name_tr: str
    coupons_required: int
    description: str | None
    description_tr: str | None
    is_active: bool
    sort_order: int
    created_at: datetime
    updated_at: datetime


class PolicyResponse(CamelModel):
    bundle_size: int
    credit_amount: int
    token_ttl_minutes: int
    consume_rate_limit: int
    claim_rate_limit: int
    rate_limit_window_seconds: int
    rate_limit_reset_timezone: str | None
    reward_tiers: list[RewardTierOut] = []

    @classmethod
    def from_snapshot(cls, snapshot, **extra):
        p = snapshot.policy
        return cls(
            bundle_size=p.bundle_size,
            credit_amount=p.credit_amount,
            token_ttl_minutes=int(p.token_ttl.total_seconds() // 60),
            consume_rate_limit=p.consume_limit,
            claim_rate_limit=p.claim_limit,
            rate_limit_window_seconds=int(p.rate_limit_window.total_seconds()),
            rate_limit_reset_timezone=p.rate_limit_reset_timezone,
            reward_tiers=[RewardTierOut.model_validate(t) for t in snapshot.tiers],
            **extra,
        )


class HealthResponse(CamelModel):
    ok: bool
    database: bool
    webhook: bool | None = None


# -------------------------
# Admin policy
# -------------------------
class PolicySettingsUpdate(CamelModel):
    default_redemption_threshold: int | None = Field(default=None, ge=1, le=100)
    token_ttl_minutes: int | None = Field(default=None, ge=1, le=7 * 24 * 60)
    max_coupons_per_day: int | None = Field(default=None, ge=1, le=50)


class AdminPolicyResponse(PolicyResponse):
    overrides: dict[str, int] = {}


class RewardTierCreate(CamelModel):
    name: str = Field(min_length=1, max_length=120)
    name_tr: str = Field(min_length=1, max_length=120)
    coupons_required: int = Field(ge=1, le=100)
    description: str | None = Field(default=None, max_length=500)
    description_tr: str | None = Field(default=None, max_length=500)
    is_active: bool = True
    sort_order: int = 0


class RewardTierUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    name_tr: str | None = Field(default=None, min_length=1, max_length=120)
    coupons_required: int | None = Field(default=None, ge=1, le=100)
    description: str | None = Field(default=None, max_length=500)
    description_tr: str | None = Field(default=None, max_length=500)
    is_active: bool | None = None
    sort_order: int | None = None


# -------------------------
# Wallet / tokens / redemptions
# -------------------------
class WalletOut(TimestampedOut):
    phone: str
    coupon_count: int
    total_earned: int
    total_redeemed: int
    total_refunded: int
    opted_in_marketing: bool
    last_message_at: datetime | None
    updated_at: datetime


class IssueRequest(CamelModel):
    kiosk_id: str | None = Field(default=None, max_length=64)
    issued_for: str | None = Field(default=None, max_length=128)


class IssueResponse(TimestampedOut):
    token: str
    wa_url: str
    wa_text: str
    expires_at: datetime


class TokenOut(TimestampedOut):
    token: str
    status: str
    kiosk_id: str | None
    issued_for: str | None
    phone: str | None
    used_at: datetime | None
    expires_at: datetime
    created_at: datetime


class RedemptionOut(TimestampedOut):
    id: str
    phone: str
    coupons_used: int
    status: str
    note: str | None
    created_at: datetime
    completed_at: datetime | None
    rejected_at: datetime | None
    notified_at: datetime | None


class RejectRequest(CamelModel):
    note: str | None = Field(default=None, max_length=500)


# -------------------------
# Events
# -------------------------
class EventOut(TimestampedOut):
    id: int
    event: CouponEventType
    phone: str | None
    token: str | None
    details: dict[str, Any]
    created_at: datetime
