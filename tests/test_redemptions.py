from datetime import timedelta

import pytest

from spa_coupons.core.db import utcnow
from spa_coupons.services import redemptions
from spa_coupons.services import wallet as wallet_service
from spa_coupons.services.errors import InsufficientCoupons, NoteRequired, RedemptionNotFound

from tests.conftest import OTHER_PHONE, PHONE


async def _wallet_with(db, phone, coupons):
    if coupons:
        await wallet_service.credit(db, phone, coupons)


async def test_claim_debits_bundle_and_creates_pending(db):
    await _wallet_with(db, PHONE, 4)

    result = await redemptions.claim(db, phone=PHONE, bundle_size=4)

    assert result.created is True
    assert result.balance == 0
    assert result.redemption.status == "pending"
    assert result.redemption.coupons_used == 4
    w = await wallet_service.get_wallet(db, PHONE)
    assert w.coupon_count == 0
    assert w.total_redeemed == 4


async def test_duplicate_claim_returns_existing_pending(db):
    await _wallet_with(db, PHONE, 8)
    first = await redemptions.claim(db, phone=PHONE, bundle_size=4)

    second = await redemptions.claim(db, phone=PHONE, bundle_size=4)

    assert second.created is False
    assert second.redemption.id == first.redemption.id
    w = await wallet_service.get_wallet(db, PHONE)
    assert w.coupon_count == 4


async def test_claim_with_too_few_coupons(db):
    await _wallet_with(db, PHONE, 2)

    with pytest.raises(InsufficientCoupons) as exc:
        await redemptions.claim(db, phone=PHONE, bundle_size=4)

    assert (exc.value.balance, exc.value.needed, exc.value.threshold) == (2, 2, 4)
    assert await redemptions.pending_for_phone(db, PHONE) is None


async def test_complete_is_terminal(db):
    await _wallet_with(db, PHONE, 4)
    claimed = await redemptions.claim(db, phone=PHONE, bundle_size=4)

    done = await redemptions.complete(db, redemption_id=claimed.redemption.id)

    assert done.status == "completed"
    assert done.completed_at is not None
    with pytest.raises(RedemptionNotFound):
        await redemptions.complete(db, redemption_id=claimed.redemption.id)
    with pytest.raises(RedemptionNotFound):
        await redemptions.reject(db, redemption_id=claimed.redemption.id, note="too late")
    w = await wallet_service.get_wallet(db, PHONE)
    assert w.coupon_count == 0


async def test_reject_refunds_exactly_coupons_used(db):
    await _wallet_with(db, PHONE, 5)
    claimed = await redemptions.claim(db, phone=PHONE, bundle_size=4)

    rejected = await redemptions.reject(db, redemption_id=claimed.redemption.id, note="  no show  ")

    assert rejected.status == "rejected"
    assert rejected.note == "no show"
    assert rejected.rejected_at is not None
    w = await wallet_service.get_wallet(db, PHONE)
    assert w.coupon_count == 5
    assert w.total_refunded == 4

    with pytest.raises(RedemptionNotFound):
        await redemptions.reject(db, redemption_id=claimed.redemption.id, note="again")
    w = await wallet_service.get_wallet(db, PHONE)
    assert w.coupon_count == 5


async def test_reject_requires_note(db):
    await _wallet_with(db, PHONE, 4)
    claimed = await redemptions.claim(db, phone=PHONE, bundle_size=4)

    with pytest.raises(NoteRequired):
        await redemptions.reject(db, redemption_id=claimed.redemption.id, note="   ")


async def test_unknown_redemption(db):
    with pytest.raises(RedemptionNotFound):
        await redemptions.complete(db, redemption_id="does-not-exist")


async def test_new_claim_allowed_after_completion(db):
    await _wallet_with(db, PHONE, 8)
    first = await redemptions.claim(db, phone=PHONE, bundle_size=4)
    await redemptions.complete(db, redemption_id=first.redemption.id)

    second = await redemptions.claim(db, phone=PHONE, bundle_size=4)

    assert second.created is True
    assert second.redemption.id != first.redemption.id


async def test_list_redemptions_filters(db):
    await _wallet_with(db, PHONE, 4)
    await _wallet_with(db, OTHER_PHONE, 4)
    a = await redemptions.claim(db, phone=PHONE, bundle_size=4)
    await redemptions.claim(db, phone=OTHER_PHONE, bundle_size=4)
    await redemptions.complete(db, redemption_id=a.redemption.id)

    pending = await redemptions.list_redemptions(db, status="pending")
    completed = await redemptions.list_redemptions(db, status="completed")
    everything = await redemptions.list_redemptions(db)

    assert [r.phone for r in pending] == [OTHER_PHONE]
    assert [r.id for r in completed] == [a.redemption.id]
    assert len(everything) == 2
    assert await redemptions.list_redemptions(db, limit=1, offset=1) != []
    assert await redemptions.list_redemptions(db, limit=1, offset=2) == []


async def test_expire_stale_pending_refunds(db):
    now = utcnow()
    await _wallet_with(db, PHONE, 4)
    await _wallet_with(db, OTHER_PHONE, 4)
    stale = await redemptions.claim(db, phone=PHONE, bundle_size=4, now=now - timedelta(days=31))
    fresh = await redemptions.claim(db, phone=OTHER_PHONE, bundle_size=4, now=now)

    expired = await redemptions.expire_stale_pending(
        db, created_before=now - timedelta(days=30), max_age_days=30, now=now
    )

    assert [r.id for r in expired] == [stale.redemption.id]
    assert expired[0].note == "Auto-expired after 30 days"
    assert (await wallet_service.get_wallet(db, PHONE)).coupon_count == 4
    assert (await redemptions.get_redemption(db, fresh.redemption.id)).status == "pending"
