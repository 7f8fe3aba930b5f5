import pytest

from spa_coupons.services.errors import InvalidPhone
from spa_coupons.services.phone import mask_phone, mask_token, normalize_phone


@pytest.mark.parametrize(
    "raw",
    [
        "+905551234567",
        "905551234567",
        "05551234567",
        "5551234567",
        "+90 555 123 45 67",
        " 0555-123-45-67 ",
    ],
)
def test_turkish_inputs_normalize_to_e164(raw):
    assert normalize_phone(raw) == "+905551234567"


def test_foreign_number_with_plus_is_kept():
    assert normalize_phone("+44 20 7946 0958") == "+442079460958"


def test_other_default_country_code():
    assert normalize_phone("0612345678", default_country_code="31") == "+31612345678"


@pytest.mark.parametrize("raw", ["", "   ", "abc", "+90555123", "+9055512345678", "1234567890123456"])
def test_garbage_is_rejected(raw):
    with pytest.raises(InvalidPhone) as exc:
        normalize_phone(raw)
    assert exc.value.code == "INVALID_PHONE"


def test_mask_phone_keeps_last_four():
    assert mask_phone("+905551234567") == "*********4567"
    assert mask_phone(None) == ""


def test_mask_token():
    assert mask_token("ABC123DEF456") == "ABC1****F456"
    assert mask_token("ABC") == "ABC"
