from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kokaa_payments import mypos
from kokaa_payments.checkout import CheckoutError, Quote, money, quote
from kokaa_payments.config import Settings
from kokaa_payments.logger import get_logger
from kokaa_payments.models import Deal, LoyaltyAccount, PaymentOrder, WheelSpin
from kokaa_payments.schemas import InitiatePaymentRequest
from kokaa_payments.viva_wallet import VivaWalletClient

logger = get_logger(__name__)

PROVIDERS = ("mypos", "viva_wallet")


class DuplicateOrderError(Exception):
    pass


def available_wheel_spin(db: Session, user_id: str, wheel_spin_id: str) -> Optional[WheelSpin]:
    return (
        db.query(WheelSpin)
        .filter(
            WheelSpin.id == wheel_spin_id,
            WheelSpin.user_id == user_id,
            WheelSpin.is_redeemed.is_(False),
            WheelSpin.reserved_order_id.is_(None),
            WheelSpin.expires_at > datetime.now(timezone.utc),
        )
        .first()
    )


def price_order(
    db: Session,
    user_id: str,
    order_items,
    currency: str,
    wheel_spin_id: Optional[str],
    points_redeemed: int,
    settings: Settings,
) -> Tuple[Quote, Optional[WheelSpin]]:
    """Quote an order from catalogue prices and the user's own discounts and points."""
    lines = []
    for item in order_items:
        deal = db.get(Deal, item.deal_id)
        if not deal or not deal.is_active:
            raise CheckoutError(f"Deal {item.deal_id} is not available")
        if money(item.price) != money(deal.deal_price):
            raise CheckoutError(
                f"Price {money(item.price)} for deal {deal.id} does not match {money(deal.deal_price)}"
            )
        lines.append((deal.deal_price, item.quantity))

    spin = None
    if wheel_spin_id:
        spin = available_wheel_spin(db, user_id, wheel_spin_id)
        if not spin:
            raise CheckoutError("Wheel discount is not available")

    if points_redeemed:
        account = db.query(LoyaltyAccount).filter_by(user_id=user_id).first()
        if not account or account.points_balance < points_redeemed:
            raise CheckoutError("Not enough loyalty points")

    result = quote(
        lines,
        discount_percentage=spin.discount_percentage if spin else None,
        currency=currency,
        points_redeemed=points_redeemed,
        points_per_euro=settings.points_per_euro,
    )
    return result, spin


def initiate_payment(
    db: Session,
    req: InitiatePaymentRequest,
    user_id: str,
    provider: str,
    settings: Settings,
    viva_client: Optional[VivaWalletClient] = None,
) -> dict:
    """
    Price, hand off to the provider and persist a pending PaymentOrder.

    Nothing is persisted unless the provider step (signing for myPOS,
    order creation for Viva Wallet) succeeded, and no checkout target is
    returned unless the order row committed.
    """
    if provider not in PROVIDERS:
        raise ValueError(f"Unknown payment provider {provider}")

    if db.query(PaymentOrder).filter_by(order_id=req.order_id).first():
        raise DuplicateOrderError(f"Order {req.order_id} already exists")

    if req.currency.upper() != "EUR":
        raise CheckoutError("Payments are settled in EUR")

    priced, spin = price_order(
        db, user_id, req.order_items, "EUR", req.wheel_spin_id, req.points_redeemed, settings
    )
    if money(req.amount) != priced.amount_eur:
        raise CheckoutError(
            f"Amount {money(req.amount)} does not match order total {priced.amount_eur}"
        )

    provider_reference = None
    if provider == "mypos":
        params = mypos.signed_purchase_params(req, settings)
        response = {"success": True, "checkoutUrl": settings.mypos.checkout_url, "params": params}
    else:
        client = viva_client or VivaWalletClient(
            settings.viva_wallet, payment_timeout=settings.payment_timeout_seconds
        )
        provider_reference = client.create_order(req, user_id)
        response = {
            "success": True,
            "checkoutUrl": client.checkout_url(provider_reference),
            "orderCode": provider_reference,
        }

    order = PaymentOrder(
        order_id=req.order_id,
        user_id=user_id,
        amount=priced.amount_eur,
        currency="EUR",
        status="pending",
        payment_method=provider,
        customer_info=req.customer_info.model_dump(mode="json", by_alias=True),
        order_items=[item.model_dump(mode="json", by_alias=True) for item in req.order_items],
        provider_reference=provider_reference,
        wheel_spin_id=spin.id if spin else None,
        points_redeemed=req.points_redeemed,
    )
    db.add(order)

    if spin:
        # Reservation only; redemption is confirmed by settlement
        reserved = (
            db.query(WheelSpin)
            .filter(
                WheelSpin.id == spin.id,
                WheelSpin.is_redeemed.is_(False),
                WheelSpin.reserved_order_id.is_(None),
            )
            .update({"reserved_order_id": req.order_id}, synchronize_session=False)
        )
        if reserved != 1:
            db.rollback()
            raise CheckoutError("Wheel discount is already in use")

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateOrderError(f"Order {req.order_id} already exists")

    logger.info(
        f"Payment order {req.order_id} created for user {user_id} "
        f"({provider}, {priced.amount_eur} EUR)"
    )
    return response
