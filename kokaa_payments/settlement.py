"""Webhook settlement: the only path that mutates financial state.

A payment order leaves ``pending`` exactly once, through a conditional
UPDATE. The transition and its fan-out (purchases, stock, loyalty, wheel
discount, cart) share one transaction, so a replayed notification finds
no pending row and changes nothing.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from kokaa_payments import mypos
from kokaa_payments.checkout import POINT_VALUE_EUR, money, points_earned
from kokaa_payments.config import Settings
from kokaa_payments.logger import get_logger
from kokaa_payments.models import (
    CartItem, Deal, LoyaltyAccount, LoyaltyTransaction, PaymentOrder, Purchase, WheelSpin,
)
from kokaa_payments.viva_wallet import STATUS_MAP, VivaWalletClient

logger = get_logger(__name__)

TERMINAL_STATUSES = ("completed", "failed", "cancelled")


def _transition(db: Session, order: PaymentOrder, status: str, transaction_id: str, payload: dict) -> bool:
    rows = (
        db.query(PaymentOrder)
        .filter(PaymentOrder.id == order.id, PaymentOrder.status == "pending")
        .update(
            {
                "status": status,
                "transaction_id": transaction_id,
                "payment_response": payload,
                "updated_at": datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )
    )
    return rows == 1


def _move_stock(db: Session, deal_id: str, quantity: int) -> bool:
    result = db.execute(
        update(Deal)
        .where(Deal.id == deal_id, Deal.stock_quantity >= quantity)
        .values(
            stock_quantity=Deal.stock_quantity - quantity,
            sold_quantity=Deal.sold_quantity + quantity,
        )
    )
    return result.rowcount == 1


def _record_purchases(db: Session, order: PaymentOrder):
    for item in order.order_items:
        quantity = int(item["quantity"])
        moved = _move_stock(db, item["dealId"], quantity)
        if not moved:
            logger.error(
                f"Order {order.order_id}: insufficient stock for deal {item['dealId']} "
                f"(qty {quantity}), purchase recorded as oversold"
            )
        db.add(
            Purchase(
                user_id=order.user_id,
                deal_id=item["dealId"],
                quantity=quantity,
                purchase_price=Decimal(str(item["price"])),
                status="confirmed" if moved else "oversold",
                payment_order_id=order.id,
            )
        )


def _apply_loyalty(db: Session, order: PaymentOrder, points_per_euro: int):
    account = db.query(LoyaltyAccount).filter_by(user_id=order.user_id).first()
    if not account:
        account = LoyaltyAccount(
            user_id=order.user_id,
            points_balance=0,
            lifetime_points_earned=0,
            lifetime_points_spent=0,
        )
        db.add(account)
        db.flush()

    redeemed = order.points_redeemed or 0
    if redeemed:
        spent = db.execute(
            update(LoyaltyAccount)
            .where(LoyaltyAccount.id == account.id, LoyaltyAccount.points_balance >= redeemed)
            .values(
                points_balance=LoyaltyAccount.points_balance - redeemed,
                lifetime_points_spent=LoyaltyAccount.lifetime_points_spent + redeemed,
            )
        ).rowcount
        if spent:
            db.add(LoyaltyTransaction(
                user_id=order.user_id,
                account_id=account.id,
                transaction_type="redeem",
                points_amount=-redeemed,
                description=f"Redeemed {redeemed} points for €{money(POINT_VALUE_EUR * redeemed)} discount",
                payment_order_id=order.id,
            ))
        else:
            logger.error(f"Order {order.order_id}: balance below {redeemed} redeemed points")

    earned = points_earned(order.amount, points_per_euro)
    if earned:
        db.execute(
            update(LoyaltyAccount)
            .where(LoyaltyAccount.id == account.id)
            .values(
                points_balance=LoyaltyAccount.points_balance + earned,
                lifetime_points_earned=LoyaltyAccount.lifetime_points_earned + earned,
            )
        )
        db.add(LoyaltyTransaction(
            user_id=order.user_id,
            account_id=account.id,
            transaction_type="earn",
            points_amount=earned,
            description=f"Earned {earned} points from purchase of €{money(order.amount)}",
            payment_order_id=order.id,
        ))


def _redeem_wheel_spin(db: Session, order: PaymentOrder):
    if not order.wheel_spin_id:
        return
    db.query(WheelSpin).filter(
        WheelSpin.id == order.wheel_spin_id,
        WheelSpin.reserved_order_id == order.order_id,
    ).update({"is_redeemed": True}, synchronize_session=False)


def release_wheel_spin(db: Session, order: PaymentOrder):
    if not order.wheel_spin_id:
        return
    db.query(WheelSpin).filter(
        WheelSpin.id == order.wheel_spin_id,
        WheelSpin.reserved_order_id == order.order_id,
        WheelSpin.is_redeemed.is_(False),
    ).update({"reserved_order_id": None}, synchronize_session=False)


def settle(
    db: Session,
    order: PaymentOrder,
    status: str,
    transaction_id: str,
    payload: dict,
    settings: Settings,
) -> bool:
    """Move ``order`` out of pending and apply the consequences.

    Returns False when the order was already terminal (replay). Any error
    rolls the whole settlement back and propagates.
    """
    if status not in TERMINAL_STATUSES:
        raise ValueError(f"Not a terminal status: {status}")

    try:
        if not _transition(db, order, status, transaction_id, payload):
            db.rollback()
            current = db.query(PaymentOrder.status).filter(PaymentOrder.id == order.id).scalar()
            if status == "completed" and current in ("failed", "cancelled"):
                logger.error(
                    f"Captured payment {transaction_id} for order {order.order_id} arrived after it "
                    f"was {current}, needs refund or reconciliation"
                )
            else:
                logger.info(f"Order {order.order_id} already settled, ignoring {status} notification")
            return False

        if status == "completed":
            _record_purchases(db, order)
            _redeem_wheel_spin(db, order)
            _apply_loyalty(db, order, settings.points_per_euro)
            db.query(CartItem).filter_by(user_id=order.user_id).delete(synchronize_session=False)
        else:
            release_wheel_spin(db, order)

        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Order {order.order_id} updated to {status}")
    return True


def handle_mypos_notification(db: Session, params: dict, settings: Settings) -> bool:
    """Verify and apply a myPOS IPC notification. Returns True if state changed."""
    if not params.get(mypos.SIGNATURE_FIELD):
        logger.warning("myPOS notification without signature rejected")
        return False
    if not mypos.verify_notification(params, settings):
        logger.warning(f"myPOS notification for {params.get('OrderID')} has an invalid signature")
        return False

    order = _find_order(db, order_id=params.get("OrderID"), payment_method="mypos")
    if not order:
        return False

    status = mypos.notification_status(params)
    if status == "completed" and params.get("Amount") and money(params["Amount"]) != money(order.amount):
        logger.error(
            f"myPOS amount {params['Amount']} does not match order {order.order_id} ({order.amount})"
        )
        return False

    return settle(db, order, status, params.get("IPC_Trnref") or order.order_id, params, settings)


def handle_viva_wallet_notification(
    db: Session, payload: dict, settings: Settings, client: VivaWalletClient
) -> bool:
    """Apply a Viva Wallet event after confirming it against the provider's own record."""
    data = payload.get("EventData") or payload
    order_code = data.get("OrderCode")
    transaction_id = data.get("TransactionId")
    if not order_code or not transaction_id:
        logger.warning("Viva Wallet notification without OrderCode/TransactionId")
        return False

    order = _find_order(db, provider_reference=str(order_code), payment_method="viva_wallet")
    if not order:
        return False

    transaction = client.get_transaction(str(transaction_id))
    if str(transaction.get("orderCode")) != str(order_code):
        logger.warning(f"Viva Wallet transaction {transaction_id} does not belong to order {order_code}")
        return False

    status = STATUS_MAP.get(transaction.get("statusId"))
    if status is None:
        logger.info(f"Viva Wallet order {order_code} still in status {transaction.get('statusId')}")
        return False
    if status == "completed" and money(transaction.get("amount", 0)) != money(order.amount):
        logger.error(
            f"Viva Wallet amount {transaction.get('amount')} does not match order {order.order_id}"
        )
        return False

    return settle(db, order, status, str(transaction_id), payload, settings)


def _find_order(db: Session, payment_method: str, order_id: Optional[str] = None,
                provider_reference: Optional[str] = None) -> Optional[PaymentOrder]:
    if not (order_id or provider_reference):
        logger.warning("Notification does not identify a payment order")
        return None
    query = db.query(PaymentOrder).filter(PaymentOrder.payment_method == payment_method)
    if order_id is not None:
        query = query.filter(PaymentOrder.order_id == order_id)
    else:
        query = query.filter(PaymentOrder.provider_reference == provider_reference)
    order = query.first()
    if not order:
        logger.warning(f"Payment order not found: {order_id or provider_reference}")
    return order
