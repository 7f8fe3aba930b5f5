# spa_coupons/routers/admin_coupons.py
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from spa_coupons.core.deps import get_coupon_service, require_admin
from spa_coupons.models.coupon_redemption import REDEMPTION_COMPLETED, REDEMPTION_PENDING, REDEMPTION_REJECTED
from spa_coupons.schemas.coupons import (
    EventOut,
    IssueRequest,
    IssueResponse,
    OkResponse,
    RedemptionOut,
    RejectRequest,
    TokenOut,
    WalletOut,
)
from spa_coupons.services.coupons import CouponService
from spa_coupons.services.event_log import CouponEventType

router = APIRouter(prefix="/api/admin/coupons", tags=["Admin - Coupons"])

_STATUS_PATTERN = f"^({REDEMPTION_PENDING}|{REDEMPTION_COMPLETED}|{REDEMPTION_REJECTED})$"


@router.post("/issue", response_model=IssueResponse, status_code=201)
async def issue_token(
    body: IssueRequest | None = None,
    service: CouponService = Depends(get_coupon_service),
    admin: str = Depends(require_admin),
):
    body = body or IssueRequest()
    return (await service.issue(kiosk_id=body.kiosk_id, issued_for=body.issued_for)).unwrap()


@router.get("/tokens/recent", response_model=list[TokenOut])
async def recent_tokens(
    limit: int = Query(default=10, ge=1, le=100),
    service: CouponService = Depends(get_coupon_service),
    admin: str = Depends(require_admin),
):
    return await service.recent_tokens(limit=limit)


@router.get("/wallet/{phone}", response_model=WalletOut)
async def get_wallet(
    phone: str,
    service: CouponService = Depends(get_coupon_service),
    admin: str = Depends(require_admin),
):
    return (await service.get_wallet(phone)).unwrap()


@router.get("/redemptions", response_model=list[RedemptionOut])
async def list_redemptions(
    status: str | None = Query(default=None, pattern=_STATUS_PATTERN),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    service: CouponService = Depends(get_coupon_service),
    admin: str = Depends(require_admin),
):
    return await service.list_redemptions(status=status, limit=limit, offset=offset)


@router.post("/redemptions/{redemption_id}/complete", response_model=OkResponse)
async def complete_redemption(
    redemption_id: str,
    service: CouponService = Depends(get_coupon_service),
    admin: str = Depends(require_admin),
):
    (await service.complete(redemption_id, actor=admin)).unwrap()
    return OkResponse()


@router.post("/redemptions/{redemption_id}/reject", response_model=OkResponse)
async def reject_redemption(
    redemption_id: str,
    body: RejectRequest,
    service: CouponService = Depends(get_coupon_service),
    admin: str = Depends(require_admin),
):
    (await service.reject(redemption_id, body.note or "", actor=admin)).unwrap()
    return OkResponse()


@router.get("/events", response_model=list[EventOut])
async def recent_events(
    limit: int = Query(default=50, ge=1, le=500),
    event: CouponEventType | None = Query(default=None),
    service: CouponService = Depends(get_coupon_service),
    admin: str = Depends(require_admin),
):
    return await service.recent_events(limit=limit, event=event)


@router.get("/events/counts", response_model=dict[str, int])
async def event_counts(
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    service: CouponService = Depends(get_coupon_service),
    admin: str = Depends(require_admin),
):
    return await service.event_counts(start=start, end=end)


@router.get("/events/phone/{phone}", response_model=list[EventOut])
async def events_for_phone(
    phone: str,
    limit: int = Query(default=100, ge=1, le=500),
    service: CouponService = Depends(get_coupon_service),
    admin: str = Depends(require_admin),
):
    return (await service.events_for_phone(phone, limit=limit)).unwrap()


@router.get("/events/token/{token}", response_model=list[EventOut])
async def events_for_token(
    token: str,
    service: CouponService = Depends(get_coupon_service),
    admin: str = Depends(require_admin),
):
    return await service.events_for_token(token)
