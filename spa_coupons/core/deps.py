from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer, OAuth2PasswordBearer

from spa_coupons.core.config import settings
from spa_coupons.core.db import AsyncSessionLocal
from spa_coupons.core.security import TokenError, api_key_matches, decode_token
from spa_coupons.services.coupons import CouponPolicy, CouponService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
bearer_scheme = HTTPBearer(auto_error=False)


def require_admin(token: str = Depends(oauth2_scheme)) -> str:
    """Returns the admin username carried by the access token."""
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    try:
        payload = decode_token(token)
    except TokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Not an access token")
    if payload.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin only")

    username = payload.get("sub")
    if not username:
        raise HTTPException(status_code=401, detail="Token missing subject")
    return str(username)


def require_api_key(
    api_key: str | None = Depends(api_key_header),
    bearer: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    candidate = api_key or (bearer.credentials if bearer else None)
    if not api_key_matches(candidate):
        raise HTTPException(status_code=401, detail="Invalid API key")
    # only the last four characters ever reach the logs
    return f"key:****{candidate[-4:]}"


@lru_cache
def get_coupon_service() -> CouponService:
    return CouponService(AsyncSessionLocal, CouponPolicy.from_settings(settings))
