from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

# IMPORTANT:
# This imports ALL models so SQLAlchemy registers tables correctly
import spa_coupons.models  # noqa: F401
from spa_coupons.core.config import settings
from spa_coupons.core.db import Base, engine
from spa_coupons.core.logging import get_logger, setup_logging
from spa_coupons.routers.admin_coupons import router as admin_coupons_router
from spa_coupons.routers.admin_policy import router as admin_policy_router
from spa_coupons.routers.auth import router as auth_router
from spa_coupons.routers.health import router as health_router
from spa_coupons.routers.integration_coupons import router as integration_coupons_router
from spa_coupons.services.errors import CouponError, TokenGenerationError

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.DEBUG)
    if settings.AUTO_CREATE_TABLES:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created from metadata")
    logger.info("Spa coupons API started")
    yield
    await engine.dispose()
    logger.info("Spa coupons API stopped")


app = FastAPI(title="Spa Coupons", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CouponError)
async def coupon_error_handler(request: Request, exc: CouponError):
    headers = None
    retry_after = exc.details.get("retryAfter")
    if retry_after is not None:
        headers = {"Retry-After": str(retry_after)}
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()}, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")}
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": {"code": "VALIDATION_ERROR", "message": "Request validation failed", "errors": errors}},
    )


def _internal_error() -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "INTERNAL_ERROR", "message": "Internal server error"}},
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return _internal_error()


@app.exception_handler(TokenGenerationError)
async def token_generation_error_handler(request: Request, exc: TokenGenerationError):
    logger.error("Token generation failed on %s %s: %s", request.method, request.url.path, exc)
    return _internal_error()


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return _internal_error()


# Auth
app.include_router(auth_router)

# Coupons
app.include_router(integration_coupons_router)
app.include_router(admin_coupons_router)
app.include_router(admin_policy_router)

app.include_router(health_router)
