from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from kokaa_payments.config import Settings, get_settings
from kokaa_payments.database import SessionLocal
from kokaa_payments.logger import get_logger
from kokaa_payments.models import PaymentOrder
from kokaa_payments.settlement import settle

logger = get_logger(__name__)


def expiry_windows(settings: Settings) -> dict:
    # Viva closes its checkout after paymentTimeout; myPOS sessions carry no timeout
    return {
        "viva_wallet": settings.payment_timeout_seconds,
        "mypos": settings.mypos_order_ttl_seconds,
    }


def expire_pending_orders(db: Session, settings: Settings) -> int:
    """Cancel pending orders past their provider's window and free their wheel discounts."""
    now = datetime.now(timezone.utc)
    stale = (
        db.query(PaymentOrder)
        .filter(
            PaymentOrder.status == "pending",
            or_(*(
                and_(
                    PaymentOrder.payment_method == method,
                    PaymentOrder.created_at < now - timedelta(seconds=seconds),
                )
                for method, seconds in expiry_windows(settings).items()
            )),
        )
        .all()
    )
    logger.info(f"Found {len(stale)} pending payment orders to expire")

    expired = 0
    for order in stale:
        try:
            if settle(db, order, "cancelled", order.order_id, {"reason": "expired"}, settings):
                expired += 1
        except Exception as e:
            logger.error(f"Failed to expire payment order {order.order_id}: {e}")
    return expired


if __name__ == "__main__":
    db = SessionLocal()
    try:
        expire_pending_orders(db, get_settings())
    finally:
        db.close()
