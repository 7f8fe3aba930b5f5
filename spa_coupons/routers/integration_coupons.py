# spa_coupons/routers/integration_coupons.py
from __future__ import annotations

import httpx
from fastapi import APIRouter, Depends

from spa_coupons.core.config import settings
from spa_coupons.core.db import check_db_connection
from spa_coupons.core.deps import get_coupon_service, require_api_key
from spa_coupons.core.logging import get_logger
from spa_coupons.schemas.coupons import (
    ClaimRequest,
    ClaimResponse,
    ConsumeRequest,
    ConsumeResponse,
    HealthResponse,
    NextRewardOut,
    OkResponse,
    PhoneRequest,
    PolicyResponse,
    WalletOut,
)
from spa_coupons.services.coupons import CouponService

logger = get_logger(__name__)

router = APIRouter(prefix="/api/integrations/coupons", tags=["Integrations - Coupons"])


@router.post("/consume", response_model=ConsumeResponse)
async def consume(
    body: ConsumeRequest,
    service: CouponService = Depends(get_coupon_service),
    caller: str = Depends(require_api_key),
):
    result = (await service.consume(body.phone, body.token)).unwrap()
    return ConsumeResponse(
        balance=result.balance,
        remaining_to_free=result.remaining_to_free,
        credited=result.credited,
        next_reward=NextRewardOut.model_validate(result.next_reward) if result.next_reward else None,
    )


@router.post("/claim", response_model=ClaimResponse)
async def claim(
    body: ClaimRequest,
    service: CouponService = Depends(get_coupon_service),
    caller: str = Depends(require_api_key),
):
    result = (await service.claim(body.phone, body.tier_id)).unwrap()
    return ClaimResponse(
        redemption_id=result.redemption_id,
        created=result.created,
        balance=result.balance,
        coupons_used=result.coupons_used,
        reward_name=result.reward_name,
    )


@router.get("/wallet/{phone}", response_model=WalletOut)
async def get_wallet(
    phone: str,
    service: CouponService = Depends(get_coupon_service),
    caller: str = Depends(require_api_key),
):
    return (await service.get_wallet(phone)).unwrap()


@router.post("/opt-out", response_model=OkResponse)
async def opt_out(
    body: PhoneRequest,
    service: CouponService = Depends(get_coupon_service),
    caller: str = Depends(require_api_key),
):
    (await service.opt_out(body.phone)).unwrap()
    return OkResponse()


@router.get("/policy", response_model=PolicyResponse)
async def get_policy(
    service: CouponService = Depends(get_coupon_service),
    caller: str = Depends(require_api_key),
):
    return PolicyResponse.from_snapshot(await service.get_policy())


async def _webhook_reachable(url: str) -> bool:
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            r = await client.head(url)
        return r.status_code < 500
    except httpx.HTTPError as e:
        logger.warning("Automation webhook unreachable: %s", e)
        return False


@router.get("/health", response_model=HealthResponse)
async def health(
    service: CouponService = Depends(get_coupon_service),
    caller: str = Depends(require_api_key),
):
    database = await check_db_connection(service.session_factory)
    webhook = await _webhook_reachable(settings.N8N_WEBHOOK_URL) if settings.N8N_WEBHOOK_URL else None
    return HealthResponse(ok=database and webhook is not False, database=database, webhook=webhook)
