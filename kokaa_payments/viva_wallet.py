from decimal import Decimal

import requests
from requests import RequestException
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from kokaa_payments.config import VivaWalletSettings
from kokaa_payments.logger import get_logger
from kokaa_payments.schemas import InitiatePaymentRequest

logger = get_logger(__name__)

# Viva transaction StatusId -> payment order status
STATUS_MAP = {
    "F": "completed",
    "E": "failed",
    "C": "cancelled",
    "X": "cancelled",
}


class ProviderError(Exception):
    pass


def http_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    )


class VivaWalletClient:
    def __init__(self, settings: VivaWalletSettings, payment_timeout: int = 1800):
        self.settings = settings
        self.timeout = settings.timeout
        self.payment_timeout = payment_timeout

    @http_retry()
    def get_access_token(self) -> str:
        url = f"{self.settings.accounts_url.rstrip('/')}/connect/token"
        logger.info(f"VivaWallet POST {url}")
        resp = requests.post(
            url,
            auth=(self.settings.client_id, self.settings.client_secret),
            data={"grant_type": "client_credentials"},
            timeout=self.timeout,
        )
        if not resp.ok:
            raise ProviderError(f"Failed to get access token: {resp.status_code}")
        return resp.json()["access_token"]

    @http_retry()
    def _post_order(self, token: str, payload: dict) -> dict:
        url = f"{self.settings.api_url.rstrip('/')}/checkout/v2/orders"
        logger.info(f"VivaWallet POST {url} merchantTrns={payload['merchantTrns']}")
        resp = requests.post(
            url,
            json=payload,
            headers={"Authorization": f"Bearer {token}"},
            timeout=self.timeout,
        )
        if not resp.ok:
            raise ProviderError(f"Failed to create order: {resp.status_code} - {resp.text}")
        return resp.json()

    def create_order(self, req: InitiatePaymentRequest, user_id: str) -> str:
        """Create a Smart Checkout order and return its orderCode."""
        customer = req.customer_info
        payload = {
            "amount": int((Decimal(req.amount) * 100).quantize(Decimal("1"))),
            "customerTrns": f"Order #{req.order_id}",
            "customer": {
                "email": customer.email,
                "fullName": f"{customer.first_name} {customer.last_name}",
                "phone": customer.phone,
                "countryCode": customer.country or "CY",
                "requestLang": "en-GB",
            },
            "paymentTimeout": self.payment_timeout,
            "preauth": False,
            "allowRecurring": False,
            "maxInstallments": 0,
            "paymentNotification": True,
            "disableExactAmount": False,
            "disableCash": True,
            "disableWallet": False,
            "sourceCode": self.settings.source_code,
            "merchantTrns": req.order_id,
            "tags": [f"orderId:{req.order_id}", f"userId:{user_id}"],
            "successUrl": f"{customer.return_url}?status=success",
            "failureUrl": f"{customer.return_url}?status=failed",
        }
        try:
            data = self._post_order(self.get_access_token(), payload)
        except RequestException as e:
            raise ProviderError(f"Viva Wallet unreachable: {e}") from e
        return str(data["orderCode"])

    def checkout_url(self, order_code: str) -> str:
        return f"{self.settings.checkout_url}?ref={order_code}"

    @http_retry()
    def _get_transaction(self, token: str, transaction_id: str) -> dict:
        url = f"{self.settings.api_url.rstrip('/')}/checkout/v2/transactions/{transaction_id}"
        logger.info(f"VivaWallet GET {url}")
        resp = requests.get(url, headers={"Authorization": f"Bearer {token}"}, timeout=self.timeout)
        if not resp.ok:
            raise ProviderError(f"Transaction lookup failed: {resp.status_code}")
        return resp.json()

    def get_transaction(self, transaction_id: str) -> dict:
        """Authoritative transaction record, used to confirm webhook claims."""
        try:
            return self._get_transaction(self.get_access_token(), transaction_id)
        except RequestException as e:
            raise ProviderError(f"Viva Wallet unreachable: {e}") from e
