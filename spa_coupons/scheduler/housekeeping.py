"""Hourly coupon housekeeping job."""
import asyncio

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from spa_coupons.core.config import settings
from spa_coupons.core.logging import get_logger
from spa_coupons.services.coupons import CouponPolicy, CouponService

logger = get_logger(__name__)


async def _run_once():
    # each run gets its own event loop, so no pooled connections survive it
    engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    try:
        factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
        service = CouponService(factory, CouponPolicy.from_settings(settings))
        return await service.run_housekeeping()
    finally:
        await engine.dispose()


def housekeeping():
    """
    Expired/used token cleanup, stale pending redemption expiry and rate-limit
    sweep. Failures are logged and retried on the next run.
    """
    try:
        return asyncio.run(_run_once())
    except Exception:
        logger.exception("Coupon housekeeping failed")
        return None
