from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class OrderItem(CamelModel):
    deal_id: str = Field(alias="dealId")
    name: str = "Product"
    quantity: int = Field(gt=0)
    price: Decimal = Field(ge=0)


class CustomerInfo(CamelModel):
    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    email: str
    phone: str = ""
    address: str = ""
    city: str = ""
    zip_code: str = Field("", alias="zipCode")
    country: str = "CY"
    return_url: str = Field(alias="returnUrl")


class InitiatePaymentRequest(CamelModel):
    order_id: str = Field(alias="orderId", min_length=1, max_length=64)
    amount: Decimal = Field(ge=0)
    currency: str = Field("EUR", min_length=3, max_length=3)
    order_items: List[OrderItem] = Field(alias="orderItems", min_length=1)
    customer_info: CustomerInfo = Field(alias="customerInfo")
    wheel_spin_id: Optional[str] = Field(None, alias="wheelSpinId")
    points_redeemed: int = Field(0, alias="pointsRedeemed", ge=0)


class QuoteRequest(CamelModel):
    order_items: List[OrderItem] = Field(alias="orderItems", min_length=1)
    currency: str = "EUR"
    wheel_spin_id: Optional[str] = Field(None, alias="wheelSpinId")
    points_redeemed: int = Field(0, alias="pointsRedeemed", ge=0)


class QuoteResponse(BaseModel):
    subtotal: Decimal
    wheel_discount: Decimal
    subtotal_after_wheel: Decimal
    points_discount: Decimal
    amount_eur: Decimal
    display_currency: str
    exchange_rate: Decimal
    display_total: Decimal
    points_earned: int


class PaymentOrderOut(BaseModel):
    order_id: str
    status: str
    amount: Decimal
    currency: str
    payment_method: str
    transaction_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
