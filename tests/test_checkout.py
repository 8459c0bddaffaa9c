from decimal import Decimal

import pytest

from kokaa_payments.checkout import CheckoutError, points_earned, quote, subtotal


def test_subtotal_sums_price_times_quantity():
    assert subtotal([("20.00", 2), (Decimal("9.99"), 3)]) == Decimal("69.97")


def test_quote_without_discount_in_eur():
    q = quote([("20.00", 2)])
    assert q.subtotal == Decimal("40.00")
    assert q.wheel_discount == Decimal("0.00")
    assert q.amount_eur == Decimal("40.00")
    assert q.display_total == Decimal("40.00")
    assert q.points_earned == 400


def test_wheel_discount_then_usd_display():
    q = quote([("100.00", 1)], discount_percentage=20, currency="USD")
    assert q.wheel_discount == Decimal("20.00")
    assert q.subtotal_after_wheel == Decimal("80.00")
    assert q.display_total == Decimal("86.40")
    # the provider is still charged in EUR
    assert q.amount_eur == Decimal("80.00")


def test_full_wheel_discount_never_goes_negative():
    q = quote([("15.00", 1)], discount_percentage=100)
    assert q.amount_eur == Decimal("0.00")
    assert q.points_earned == 0


def test_points_discount_is_capped_at_remaining_total():
    q = quote([("5.00", 1)], points_redeemed=1000)
    assert q.points_discount == Decimal("5.00")
    assert q.amount_eur == Decimal("0.00")


def test_points_discount_applies_after_wheel():
    q = quote([("50.00", 2)], discount_percentage=10, points_redeemed=250)
    assert q.subtotal_after_wheel == Decimal("90.00")
    assert q.points_discount == Decimal("2.50")
    assert q.amount_eur == Decimal("87.50")


def test_points_earned_floors():
    assert points_earned(Decimal("12.349"), 10) == 123
    assert points_earned(Decimal("0.09"), 10) == 0


@pytest.mark.parametrize("kwargs", [
    {"currency": "JPY"},
    {"discount_percentage": 120},
    {"points_redeemed": -1},
])
def test_quote_rejects_invalid_input(kwargs):
    with pytest.raises(CheckoutError):
        quote([("10.00", 1)], **kwargs)


def test_quote_rejects_non_positive_quantity():
    with pytest.raises(CheckoutError):
        quote([("10.00", 0)])
