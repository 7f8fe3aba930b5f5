import os

# settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["INTEGRATION_API_KEY"] = "test-api-key"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["N8N_WEBHOOK_URL"] = ""

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

import spa_coupons.models  # noqa: E402,F401
from spa_coupons.core.config import settings  # noqa: E402
from spa_coupons.core.db import Base, get_db  # noqa: E402
from spa_coupons.core.deps import get_coupon_service  # noqa: E402
from spa_coupons.core.security import hash_password  # noqa: E402
from spa_coupons.main import app  # noqa: E402
from spa_coupons.services.coupons import CouponPolicy, CouponService  # noqa: E402

PHONE = "+905551234567"
OTHER_PHONE = "+905559876543"
API_KEY = "test-api-key"
ADMIN_PASSWORD = "s3cret-pass"


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'coupons.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def policy():
    return CouponPolicy(whatsapp_number="+90 555 000 00 00")


@pytest.fixture
def service(session_factory, policy):
    return CouponService(session_factory, policy)


@pytest.fixture(scope="session")
def admin_password_hash():
    return hash_password(ADMIN_PASSWORD)


@pytest.fixture
async def client(service, session_factory, admin_password_hash, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_PASSWORD_HASH", admin_password_hash)

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_coupon_service] = lambda: service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def api_headers():
    return {"X-API-Key": API_KEY}


@pytest.fixture
async def admin_headers(client):
    r = await client.post("/auth/login", data={"username": "admin", "password": ADMIN_PASSWORD})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}
