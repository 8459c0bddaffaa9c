import json
from dataclasses import asdict
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kokaa_payments.auth import verify_token
from kokaa_payments.checkout import CheckoutError
from kokaa_payments.config import Settings, get_settings
from kokaa_payments.database import get_db
from kokaa_payments.logger import get_logger
from kokaa_payments.models import PaymentOrder
from kokaa_payments.payment_service import DuplicateOrderError, initiate_payment, price_order
from kokaa_payments.schemas import InitiatePaymentRequest, PaymentOrderOut, QuoteRequest, QuoteResponse
from kokaa_payments.settlement import handle_mypos_notification, handle_viva_wallet_notification
from kokaa_payments.signing import SigningError
from kokaa_payments.viva_wallet import ProviderError, VivaWalletClient

logger = get_logger(__name__)

router = APIRouter()


def get_viva_client(settings: Settings = Depends(get_settings)) -> VivaWalletClient:
    return VivaWalletClient(settings.viva_wallet, payment_timeout=settings.payment_timeout_seconds)


def _initiate(provider, request, user_id, db, settings, viva_client=None):
    try:
        return initiate_payment(db, request, user_id, provider, settings, viva_client)
    except CheckoutError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DuplicateOrderError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SigningError as e:
        logger.error(f"Signing failed for order {request.order_id}: {e}")
        raise HTTPException(status_code=500, detail="Payment signature could not be created")
    except ProviderError as e:
        logger.error(f"Provider failure for order {request.order_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    except SQLAlchemyError as e:
        logger.error(f"Could not persist payment order {request.order_id}: {e}")
        raise HTTPException(status_code=500, detail="Payment order could not be saved")


@router.post("/functions/v1/mypos-initiate-payment")
def mypos_initiate_payment(
    request: InitiatePaymentRequest,
    user_id: str = Depends(verify_token),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return _initiate("mypos", request, user_id, db, settings)


@router.post("/functions/v1/viva-wallet-initiate-payment")
def viva_wallet_initiate_payment(
    request: InitiatePaymentRequest,
    user_id: str = Depends(verify_token),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    viva_client: VivaWalletClient = Depends(get_viva_client),
):
    return _initiate("viva_wallet", request, user_id, db, settings, viva_client)


async def _read_params(request: Request) -> dict:
    body = await request.body()
    if "application/x-www-form-urlencoded" in request.headers.get("content-type", ""):
        return dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True))
    return json.loads(body or b"{}")


@router.post("/functions/v1/mypos-webhook", response_class=PlainTextResponse)
async def mypos_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    # myPOS resends until it gets "OK"
    try:
        params = await _read_params(request)
        handle_mypos_notification(db, {k: str(v) for k, v in params.items()}, settings)
    except Exception:
        logger.exception("myPOS webhook error")
    return "OK"


@router.get("/functions/v1/viva-wallet-webhook")
def viva_wallet_webhook_key(settings: Settings = Depends(get_settings)):
    return {"Key": settings.viva_wallet.webhook_key}


@router.post("/functions/v1/viva-wallet-webhook", response_class=PlainTextResponse)
async def viva_wallet_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    viva_client: VivaWalletClient = Depends(get_viva_client),
):
    try:
        payload = json.loads(await request.body() or b"{}")
        handle_viva_wallet_notification(db, payload, settings, viva_client)
    except Exception:
        logger.exception("Viva Wallet webhook error")
    return "OK"


@router.post("/checkout/quote", response_model=QuoteResponse)
def checkout_quote(
    request: QuoteRequest,
    user_id: str = Depends(verify_token),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    try:
        result, _ = price_order(
            db, user_id, request.order_items, request.currency,
            request.wheel_spin_id, request.points_redeemed, settings,
        )
    except CheckoutError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return asdict(result)


@router.get("/payment-orders/{order_id}", response_model=PaymentOrderOut)
def get_payment_order(
    order_id: str,
    user_id: str = Depends(verify_token),
    db: Session = Depends(get_db),
):
    order = db.query(PaymentOrder).filter_by(order_id=order_id).first()
    if not order or order.user_id != user_id:
        raise HTTPException(status_code=404, detail="Payment order not found")
    return order
