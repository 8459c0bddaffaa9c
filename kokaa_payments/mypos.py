from decimal import Decimal
from typing import Dict

from kokaa_payments.checkout import money, subtotal
from kokaa_payments.config import Settings
from kokaa_payments.schemas import InitiatePaymentRequest
from kokaa_payments.signing import SIGNATURE_FIELD, sign, verify

IPC_VERSION = "1.4"
PURCHASE_OK = "IPCPurchaseOK"
PURCHASE_NOTIFY = "IPCPurchaseNotify"
PURCHASE_CANCEL = "IPCPurchaseCancel"


def _fmt(value) -> str:
    return f"{money(value):.2f}"


def build_purchase_params(req: InitiatePaymentRequest, settings: Settings) -> Dict[str, str]:
    """IPCPurchase parameter map, unsigned."""
    cfg = settings.mypos
    customer = req.customer_info
    params = {
        "IPCmethod": "IPCPurchase",
        "IPCVersion": IPC_VERSION,
        "IPCLanguage": "en",
        "SID": cfg.sid,
        "WalletNumber": cfg.wallet_number,
        "KeyIndex": str(cfg.key_index),
        "Amount": _fmt(req.amount),
        "Currency": req.currency,
        "OrderID": req.order_id,
        "URL_OK": f"{customer.return_url}?status=success",
        "URL_Cancel": f"{customer.return_url}?status=cancelled",
        "URL_Notify": settings.mypos_notify_url,
        "CustomerFirstName": customer.first_name,
        "CustomerLastName": customer.last_name,
        "CustomerEmail": customer.email,
        "CustomerPhone": customer.phone,
        "CustomerAddress": customer.address,
        "CustomerCity": customer.city,
        "CustomerZIPCode": customer.zip_code,
        "CustomerCountry": customer.country or "CY",
        "Note": f"Order #{req.order_id}",
    }
    lines = [(item.name, item.quantity, item.price) for item in req.order_items]

    # Cart lines add up to Amount; discounts go on one negative line
    discount = money(subtotal((price, quantity) for _, quantity, price in lines)) - money(req.amount)
    if discount > 0:
        lines.append(("Discount", 1, -discount))

    params["CartItems"] = str(len(lines))
    for i, (name, quantity, price) in enumerate(lines, start=1):
        params[f"Article_{i}"] = name
        params[f"Quantity_{i}"] = str(quantity)
        params[f"Price_{i}"] = _fmt(price)
        params[f"Amount_{i}"] = _fmt(Decimal(price) * quantity)
        params[f"Currency_{i}"] = req.currency
    return params


def signed_purchase_params(req: InitiatePaymentRequest, settings: Settings) -> Dict[str, str]:
    params = build_purchase_params(req, settings)
    params[SIGNATURE_FIELD] = sign(params, settings.mypos.private_key_pem)
    return params


def verify_notification(params: Dict[str, str], settings: Settings) -> bool:
    signature = params.get(SIGNATURE_FIELD)
    if not signature:
        return False
    return verify(params, signature, settings.mypos.public_certificate_pem)


def notification_status(params: Dict[str, str]) -> str:
    method = params.get("IPCmethod")
    if method in (PURCHASE_OK, PURCHASE_NOTIFY):
        return "completed"
    if method == PURCHASE_CANCEL:
        return "cancelled"
    return "failed"
