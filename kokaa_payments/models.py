from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String,
)

from kokaa_payments.database import Base


def _now():
    return datetime.now(timezone.utc)


class Deal(Base):
    __tablename__ = "deals"

    id = Column(String(36), primary_key=True)
    title = Column(String, nullable=False, default="")
    deal_price = Column(Numeric(10, 2), nullable=False)
    stock_quantity = Column(Integer, nullable=False, default=0)
    sold_quantity = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)
    deal_id = Column(String(36), ForeignKey("deals.id"), nullable=False)
    quantity = Column(Integer, nullable=False)


class PaymentOrder(Base):
    __tablename__ = "payment_orders"

    id = Column(Integer, primary_key=True)
    order_id = Column(String, unique=True, index=True, nullable=False)  # client-generated
    user_id = Column(String(36), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)                      # always EUR
    currency = Column(String(3), nullable=False, default="EUR")
    status = Column(String, nullable=False, default="pending")           # pending | completed | failed | cancelled
    payment_method = Column(String, nullable=False)                      # mypos | viva_wallet
    customer_info = Column(JSON, nullable=False)
    order_items = Column(JSON, nullable=False)
    provider_reference = Column(String, index=True)                      # Viva Wallet orderCode
    wheel_spin_id = Column(String(36))
    points_redeemed = Column(Integer, nullable=False, default=0)
    transaction_id = Column(String)
    payment_response = Column(JSON)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)


class Purchase(Base):
    __tablename__ = "purchases"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)
    deal_id = Column(String(36), ForeignKey("deals.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    purchase_price = Column(Numeric(10, 2), nullable=False)
    status = Column(String, nullable=False, default="confirmed")         # confirmed | oversold
    payment_order_id = Column(Integer, ForeignKey("payment_orders.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)


class LoyaltyAccount(Base):
    __tablename__ = "loyalty_accounts"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(36), unique=True, nullable=False)
    points_balance = Column(Integer, nullable=False, default=0)
    lifetime_points_earned = Column(Integer, nullable=False, default=0)
    lifetime_points_spent = Column(Integer, nullable=False, default=0)


class LoyaltyTransaction(Base):
    __tablename__ = "loyalty_transactions"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("loyalty_accounts.id"), nullable=False)
    transaction_type = Column(String, nullable=False)                    # earn | redeem
    points_amount = Column(Integer, nullable=False)
    description = Column(String, nullable=False, default="")
    payment_order_id = Column(Integer, ForeignKey("payment_orders.id"))
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)


class WheelSpin(Base):
    __tablename__ = "wheel_spins"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)
    discount_percentage = Column(Integer, nullable=False)
    is_redeemed = Column(Boolean, nullable=False, default=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    reserved_order_id = Column(String)                                   # PaymentOrder.order_id holding it
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
