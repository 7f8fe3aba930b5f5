from httpx import ASGITransport, AsyncClient

from spa_coupons.core.security import create_access_token
from spa_coupons.main import app
from spa_coupons.services.errors import TokenGenerationError

from tests.conftest import PHONE

INTEGRATION = "/api/integrations/coupons"
ADMIN = "/api/admin/coupons"
POLICY = "/api/admin/policy"


async def _issue(client, admin_headers, **body):
    r = await client.post(f"{ADMIN}/issue", json=body or {"kioskId": "kiosk-1"}, headers=admin_headers)
    assert r.status_code == 201, r.text
    return r.json()


async def _consume(client, api_headers, token, phone=PHONE):
    return await client.post(f"{INTEGRATION}/consume", json={"phone": phone, "token": token}, headers=api_headers)


async def test_login_rejects_bad_password(client):
    r = await client.post("/auth/login", data={"username": "admin", "password": "wrong"})
    assert r.status_code == 401


async def test_admin_routes_require_admin_token(client, api_headers):
    assert (await client.post(f"{ADMIN}/issue", json={})).status_code == 401

    seller = create_access_token(username="kiosk", role="seller")
    r = await client.post(f"{ADMIN}/issue", json={}, headers={"Authorization": f"Bearer {seller}"})
    assert r.status_code == 403


async def test_integration_routes_require_api_key(client):
    r = await client.post(f"{INTEGRATION}/consume", json={"phone": PHONE, "token": "ABCDEFGHIJKL"})
    assert r.status_code == 401

    r = await client.get(f"{INTEGRATION}/policy", headers={"X-API-Key": "nope"})
    assert r.status_code == 401


async def test_bearer_api_key_is_accepted(client):
    r = await client.get(f"{INTEGRATION}/policy", headers={"Authorization": "Bearer test-api-key"})
    assert r.status_code == 200
    assert r.json() == {
        "bundleSize": 4,
        "creditAmount": 1,
        "tokenTtlMinutes": 30,
        "consumeRateLimit": 10,
        "claimRateLimit": 5,
        "rateLimitWindowSeconds": 86400,
        "rateLimitResetTimezone": None,
        "rewardTiers": [],
    }


async def test_issue_returns_whatsapp_link(client, admin_headers):
    body = await _issue(client, admin_headers, kioskId="kiosk-1", issuedFor="Ayse")

    assert len(body["token"]) == 12
    assert body["waText"] == f"KUPON {body['token']}"
    assert body["waUrl"].endswith(f"KUPON%20{body['token']}")
    assert body["expiresAt"]


async def test_issue_without_body(client, admin_headers):
    r = await client.post(f"{ADMIN}/issue", headers=admin_headers)
    assert r.status_code == 201


async def test_consume_and_claim_flow(client, admin_headers, api_headers):
    tokens = [(await _issue(client, admin_headers))["token"] for _ in range(4)]

    for i, token in enumerate(tokens, start=1):
        r = await _consume(client, api_headers, token)
        assert r.status_code == 200, r.text
        assert r.json() == {
            "ok": True,
            "balance": i,
            "remainingToFree": 4 - i,
            "credited": True,
            "nextReward": None,
        }

    r = await client.post(f"{INTEGRATION}/claim", json={"phone": PHONE}, headers=api_headers)
    assert r.status_code == 200
    redemption_id = r.json()["redemptionId"]
    assert r.json()["ok"] is True
    assert r.json()["couponsUsed"] == 4
    assert r.json()["rewardName"] is None

    r = await client.get(f"{ADMIN}/redemptions", params={"status": "pending"}, headers=admin_headers)
    assert [x["id"] for x in r.json()] == [redemption_id]
    assert r.json()[0]["couponsUsed"] == 4
    assert r.json()[0]["notifiedAt"] is None

    r = await client.post(f"{ADMIN}/redemptions/{redemption_id}/complete", headers=admin_headers)
    assert r.json() == {"ok": True}

    r = await client.post(f"{ADMIN}/redemptions/{redemption_id}/complete", headers=admin_headers)
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "NOT_FOUND"

    r = await client.get(f"{INTEGRATION}/wallet/{PHONE}", headers=api_headers)
    assert r.json()["couponCount"] == 0
    assert r.json()["totalEarned"] == 4
    assert r.json()["totalRedeemed"] == 4


async def test_consume_errors(client, admin_headers, api_headers):
    r = await _consume(client, api_headers, "ZZZZZZZZZZZZ")
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "INVALID_TOKEN"

    r = await _consume(client, api_headers, "ABCDEFGHIJKL", phone="garbage")
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "INVALID_PHONE"

    token = (await _issue(client, admin_headers))["token"]
    assert (await _consume(client, api_headers, token)).status_code == 200
    r = await _consume(client, api_headers, token, phone="+905559876543")
    assert r.json()["error"]["code"] == "TOKEN_USED_BY_OTHER"


async def test_rate_limit_sets_retry_after(client, admin_headers, api_headers):
    tokens = [(await _issue(client, admin_headers))["token"] for _ in range(11)]
    for token in tokens[:10]:
        assert (await _consume(client, api_headers, token)).status_code == 200

    r = await _consume(client, api_headers, tokens[10])

    assert r.status_code == 429
    assert r.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"
    assert int(r.headers["Retry-After"]) == r.json()["error"]["retryAfter"] > 0


async def test_claim_insufficient(client, admin_headers, api_headers):
    for _ in range(2):
        token = (await _issue(client, admin_headers))["token"]
        await _consume(client, api_headers, token)

    r = await client.post(f"{INTEGRATION}/claim", json={"phone": PHONE}, headers=api_headers)

    assert r.status_code == 400
    error = r.json()["error"]
    assert (error["code"], error["balance"], error["needed"], error["threshold"]) == (
        "INSUFFICIENT_COUPONS",
        2,
        2,
        4,
    )


async def test_reject_with_note(client, admin_headers, api_headers):
    for _ in range(4):
        token = (await _issue(client, admin_headers))["token"]
        await _consume(client, api_headers, token)
    redemption_id = (
        await client.post(f"{INTEGRATION}/claim", json={"phone": PHONE}, headers=api_headers)
    ).json()["redemptionId"]

    r = await client.post(f"{ADMIN}/redemptions/{redemption_id}/reject", json={}, headers=admin_headers)
    assert r.json()["error"]["code"] == "NOTE_REQUIRED"

    r = await client.post(
        f"{ADMIN}/redemptions/{redemption_id}/reject", json={"note": "no show"}, headers=admin_headers
    )
    assert r.json() == {"ok": True}

    r = await client.get(f"{ADMIN}/wallet/{PHONE}", headers=admin_headers)
    assert r.json()["couponCount"] == 4
    assert r.json()["totalRefunded"] == 4


async def test_wallet_not_found(client, api_headers):
    r = await client.get(f"{INTEGRATION}/wallet/+905550000001", headers=api_headers)
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "WALLET_NOT_FOUND"


async def test_opt_out(client, api_headers):
    r = await client.post(f"{INTEGRATION}/opt-out", json={"phone": PHONE}, headers=api_headers)
    assert r.json() == {"ok": True}


async def test_validation_error_shape(client, api_headers):
    r = await client.post(f"{INTEGRATION}/consume", json={"phone": PHONE}, headers=api_headers)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_event_endpoints(client, admin_headers, api_headers):
    token = (await _issue(client, admin_headers))["token"]
    await _consume(client, api_headers, token)

    r = await client.get(f"{ADMIN}/events", params={"limit": 10}, headers=admin_headers)
    assert [e["event"] for e in r.json()] == ["coupon_awarded", "issued"]

    r = await client.get(f"{ADMIN}/events/counts", headers=admin_headers)
    assert r.json() == {"issued": 1, "coupon_awarded": 1}

    r = await client.get(f"{ADMIN}/events/phone/05551234567", headers=admin_headers)
    assert [e["event"] for e in r.json()] == ["coupon_awarded"]
    assert r.json()[0]["details"]["newBalance"] == 1

    r = await client.get(f"{ADMIN}/events/token/{token}", headers=admin_headers)
    assert [e["event"] for e in r.json()] == ["coupon_awarded", "issued"]

    r = await client.get(f"{ADMIN}/tokens/recent", headers=admin_headers)
    assert r.json()[0]["token"] == token
    assert r.json()[0]["status"] == "used"
    assert r.json()[0]["phone"] == PHONE


async def test_health(client, api_headers):
    r = await client.get(f"{INTEGRATION}/health", headers=api_headers)
    assert r.json() == {"ok": True, "database": True, "webhook": None}

    r = await client.get("/health")
    assert r.json() == {"status": "ok", "database": True}


async def test_token_generation_failure_has_error_body(client, admin_headers, service, monkeypatch):
    async def _exhausted(*args, **kwargs):
        raise TokenGenerationError("could not generate a unique token")

    monkeypatch.setattr(service, "issue", _exhausted)

    r = await client.post(f"{ADMIN}/issue", json={}, headers=admin_headers)
    assert r.status_code == 500
    assert r.json() == {"error": {"code": "INTERNAL_ERROR", "message": "Internal server error"}}


async def test_unexpected_error_has_error_body(client, admin_headers, service, monkeypatch):
    async def _broken(*args, **kwargs):
        raise ValueError("unexpected")

    monkeypatch.setattr(service, "recent_tokens", _broken)

    # the server error middleware re-raises after sending the 500
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        r = await c.get(f"{ADMIN}/tokens/recent", headers=admin_headers)

    assert r.status_code == 500
    assert r.json() == {"error": {"code": "INTERNAL_ERROR", "message": "Internal server error"}}


async def test_admin_policy_requires_admin(client, api_headers):
    assert (await client.get(POLICY)).status_code == 401
    assert (await client.get(POLICY, headers=api_headers)).status_code == 401
    assert (await client.post(f"{POLICY}/tiers", json={})).status_code == 401


async def test_admin_policy_settings_override_env(client, admin_headers, api_headers):
    r = await client.put(
        f"{POLICY}/settings",
        json={"defaultRedemptionThreshold": 3, "tokenTtlMinutes": 60},
        headers=admin_headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["bundleSize"] == 3
    assert r.json()["tokenTtlMinutes"] == 60
    assert r.json()["overrides"] == {"default_redemption_threshold": 3, "token_ttl_minutes": 60}

    r = await client.get(f"{INTEGRATION}/policy", headers=api_headers)
    assert r.json()["bundleSize"] == 3
    assert r.json()["consumeRateLimit"] == 10

    r = await client.put(f"{POLICY}/settings", json={"maxCouponsPerDay": 0}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_admin_reward_tier_crud(client, admin_headers, api_headers):
    r = await client.post(
        f"{POLICY}/tiers",
        json={"name": "Free Massage", "nameTr": "Ücretsiz Masaj", "couponsRequired": 4, "sortOrder": 1},
        headers=admin_headers,
    )
    assert r.status_code == 201, r.text
    massage = r.json()
    assert massage["isActive"] is True

    r = await client.post(
        f"{POLICY}/tiers",
        json={"name": "Hammam", "nameTr": "Hamam", "couponsRequired": 8, "sortOrder": 2},
        headers=admin_headers,
    )
    hammam = r.json()

    r = await client.put(f"{POLICY}/tiers/{hammam['id']}", json={"isActive": False}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["isActive"] is False
    assert r.json()["couponsRequired"] == 8

    r = await client.get(f"{INTEGRATION}/policy", headers=api_headers)
    assert [t["name"] for t in r.json()["rewardTiers"]] == ["Free Massage"]

    r = await client.get(POLICY, headers=admin_headers)
    assert [t["name"] for t in r.json()["rewardTiers"]] == ["Free Massage", "Hammam"]

    r = await client.put(f"{POLICY}/tiers/999", json={"name": "Ghost"}, headers=admin_headers)
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "TIER_NOT_FOUND"

    r = await client.delete(f"{POLICY}/tiers/{hammam['id']}", headers=admin_headers)
    assert r.json() == {"ok": True}

    r = await client.delete(f"{POLICY}/tiers/{massage['id']}", headers=admin_headers)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "LAST_REWARD_TIER"


async def test_claim_chosen_tier(client, admin_headers, api_headers):
    r = await client.post(
        f"{POLICY}/tiers",
        json={"name": "Foot Massage", "nameTr": "Ayak Masajı", "couponsRequired": 2},
        headers=admin_headers,
    )
    tier_id = r.json()["id"]

    for _ in range(3):
        token = (await _issue(client, admin_headers))["token"]
        r = await _consume(client, api_headers, token)
    assert r.json()["nextReward"] == {
        "needed": 0,
        "tierId": tier_id,
        "name": "Foot Massage",
        "nameTr": "Ayak Masajı",
        "couponsRequired": 2,
    }

    r = await client.post(f"{INTEGRATION}/claim", json={"phone": PHONE, "tierId": 999}, headers=api_headers)
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "TIER_NOT_FOUND"

    r = await client.post(f"{INTEGRATION}/claim", json={"phone": PHONE, "tierId": tier_id}, headers=api_headers)
    assert r.status_code == 200, r.text
    assert r.json()["couponsUsed"] == 2
    assert r.json()["rewardName"] == "Foot Massage"
    assert r.json()["balance"] == 1
