import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

# Force-load .env (reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


class MyPOSSettings(BaseModel):
    checkout_url: str = "https://www.mypos.com/vmp/checkout-test"
    sid: str = "000000000000010"
    wallet_number: str = "61938166610"
    key_index: int = 1
    private_key_pem: str = ""       # PKCS#1 "BEGIN RSA PRIVATE KEY"
    public_certificate_pem: str = ""


class VivaWalletSettings(BaseModel):
    api_url: str = "https://api.vivapayments.com"
    accounts_url: str = "https://accounts.vivapayments.com"
    checkout_url: str = "https://www.vivapayments.com/web/checkout"
    client_id: str = ""
    client_secret: str = ""
    source_code: str = "8339"
    webhook_key: str = ""
    timeout: float = 10.0


class Settings(BaseModel):
    database_url: str = "sqlite:///./kokaa.db"
    jwt_secret: str = ""
    public_base_url: str = "http://localhost:8000"
    points_per_euro: int = 10
    payment_timeout_seconds: int = 1800
    mypos_order_ttl_seconds: int = 86400
    log_level: str = "INFO"
    mypos: MyPOSSettings = MyPOSSettings()
    viva_wallet: VivaWalletSettings = VivaWalletSettings()

    @property
    def mypos_notify_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/functions/v1/mypos-webhook"


def _read_pem(value: str | None, path: str | None) -> str:
    # PEMs come either inline (with literal \n) or from a file
    if path:
        return Path(path).read_text()
    return (value or "").replace("\\n", "\n")


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./kokaa.db"),
        jwt_secret=os.getenv("JWT_SECRET", ""),
        public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:8000"),
        points_per_euro=int(os.getenv("POINTS_PER_EURO", "10")),
        payment_timeout_seconds=int(os.getenv("PAYMENT_TIMEOUT_SECONDS", "1800")),
        mypos_order_ttl_seconds=int(os.getenv("MYPOS_ORDER_TTL_SECONDS", "86400")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        mypos=MyPOSSettings(
            checkout_url=os.getenv("MYPOS_CHECKOUT_URL", MyPOSSettings().checkout_url),
            sid=os.getenv("MYPOS_SID", MyPOSSettings().sid),
            wallet_number=os.getenv("MYPOS_WALLET_NUMBER", MyPOSSettings().wallet_number),
            key_index=int(os.getenv("MYPOS_KEY_INDEX", "1")),
            private_key_pem=_read_pem(
                os.getenv("MYPOS_PRIVATE_KEY"), os.getenv("MYPOS_PRIVATE_KEY_FILE")
            ),
            public_certificate_pem=_read_pem(
                os.getenv("MYPOS_PUBLIC_CERT"), os.getenv("MYPOS_PUBLIC_CERT_FILE")
            ),
        ),
        viva_wallet=VivaWalletSettings(
            api_url=os.getenv("VIVA_WALLET_API_URL", VivaWalletSettings().api_url),
            accounts_url=os.getenv("VIVA_WALLET_ACCOUNTS_URL", VivaWalletSettings().accounts_url),
            checkout_url=os.getenv("VIVA_WALLET_CHECKOUT_URL", VivaWalletSettings().checkout_url),
            client_id=os.getenv("VIVA_WALLET_CLIENT_ID", ""),
            client_secret=os.getenv("VIVA_WALLET_CLIENT_SECRET", ""),
            source_code=os.getenv("VIVA_WALLET_SOURCE_CODE", "8339"),
            webhook_key=os.getenv("VIVA_WALLET_WEBHOOK_KEY", ""),
        ),
    )


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, loaded once. Override in tests via dependency_overrides."""
    return load_settings()
