from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

CENT = Decimal("0.01")
POINT_VALUE_EUR = Decimal("0.01")

# EUR is the settlement currency; other rates only drive the displayed total
EXCHANGE_RATES = {
    "EUR": Decimal("1"),
    "USD": Decimal("1.08"),
    "GBP": Decimal("0.86"),
    "CHF": Decimal("0.94"),
}


class CheckoutError(ValueError):
    pass


@dataclass
class Quote:
    subtotal: Decimal
    wheel_discount: Decimal
    subtotal_after_wheel: Decimal
    points_discount: Decimal
    amount_eur: Decimal
    display_currency: str
    exchange_rate: Decimal
    display_total: Decimal
    points_earned: int


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def subtotal(lines: Iterable) -> Decimal:
    """Sum of price * quantity over (price, quantity) pairs."""
    total = Decimal("0.00")
    for price, quantity in lines:
        if quantity <= 0:
            raise CheckoutError("Quantity must be positive")
        if Decimal(str(price)) < 0:
            raise CheckoutError("Price cannot be negative")
        total += Decimal(str(price)) * quantity
    return total


def points_earned(amount_eur: Decimal, points_per_euro: int) -> int:
    return int((Decimal(amount_eur) * points_per_euro).to_integral_value(rounding=ROUND_DOWN))


def quote(
    lines: Iterable,
    discount_percentage: Optional[int] = None,
    currency: str = "EUR",
    points_redeemed: int = 0,
    points_per_euro: int = 10,
) -> Quote:
    """Price a cart: wheel discount, then points, then display conversion.

    The provider is always charged ``amount_eur``; ``display_total`` is
    informational.
    """
    currency = currency.upper()
    if currency not in EXCHANGE_RATES:
        raise CheckoutError(f"Unsupported currency {currency}")
    if discount_percentage is not None and not 0 <= discount_percentage <= 100:
        raise CheckoutError("Discount percentage must be between 0 and 100")
    if points_redeemed < 0:
        raise CheckoutError("Redeemed points cannot be negative")

    gross = subtotal(lines)
    wheel = gross * Decimal(discount_percentage or 0) / 100
    after_wheel = max(Decimal("0"), gross - wheel)
    points_discount = min(POINT_VALUE_EUR * points_redeemed, after_wheel)
    amount = after_wheel - points_discount
    rate = EXCHANGE_RATES[currency]

    return Quote(
        subtotal=money(gross),
        wheel_discount=money(wheel),
        subtotal_after_wheel=money(after_wheel),
        points_discount=money(points_discount),
        amount_eur=money(amount),
        display_currency=currency,
        exchange_rate=rate,
        display_total=money(amount * rate),
        points_earned=points_earned(money(amount), points_per_euro),
    )
