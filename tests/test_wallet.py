import pytest

from spa_coupons.services import wallet as wallet_service
from spa_coupons.services.errors import InsufficientCoupons

from tests.conftest import PHONE


@pytest.mark.parametrize("balance,expected", [(0, 4), (1, 3), (3, 1), (4, 0), (9, 0)])
def test_remaining_to_free(balance, expected):
    assert wallet_service.remaining_to_free(balance, 4) == expected


async def test_get_or_create_is_lazy_and_idempotent(db):
    assert await wallet_service.get_wallet(db, PHONE) is None

    first = await wallet_service.get_or_create(db, PHONE)
    second = await wallet_service.get_or_create(db, PHONE, lock=True)

    assert first.phone == second.phone == PHONE
    assert second.coupon_count == 0
    assert second.opted_in_marketing is False


async def test_credit_then_debit(db):
    for _ in range(5):
        await wallet_service.credit(db, PHONE)

    w = await wallet_service.debit(db, PHONE, 4)

    assert w.coupon_count == 1
    assert w.total_earned == 5
    assert w.total_redeemed == 4
    assert w.last_message_at is not None


async def test_debit_never_goes_negative(db):
    await wallet_service.credit(db, PHONE, 2)

    with pytest.raises(InsufficientCoupons) as exc:
        await wallet_service.debit(db, PHONE, 4)

    assert exc.value.to_dict()["balance"] == 2
    assert exc.value.needed == 2
    assert exc.value.threshold == 4
    w = await wallet_service.get_wallet(db, PHONE)
    assert w.coupon_count == 2
    assert w.total_redeemed == 0


async def test_debit_unknown_wallet(db):
    with pytest.raises(InsufficientCoupons) as exc:
        await wallet_service.debit(db, PHONE, 4)
    assert exc.value.balance == 0


async def test_refund_keeps_lifetime_totals_monotonic(db):
    await wallet_service.credit(db, PHONE, 4)
    await wallet_service.debit(db, PHONE, 4)

    w = await wallet_service.refund(db, PHONE, 4)

    assert w.coupon_count == 4
    assert w.total_redeemed == 4
    assert w.total_refunded == 4


@pytest.mark.parametrize("amount", [0, -1])
async def test_amount_must_be_positive(db, amount):
    with pytest.raises(ValueError):
        await wallet_service.credit(db, PHONE, amount)


async def test_opt_out(db):
    w = await wallet_service.opt_out(db, PHONE)
    assert w.opted_in_marketing is False
    assert w.coupon_count == 0
