from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from spa_coupons.core.db import get_db
from spa_coupons.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
        database = True
    except SQLAlchemyError as e:
        logger.warning("Health check database error: %s", e)
        database = False
    return {"status": "ok" if database else "degraded", "database": database}
