# backend/pasal/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the process unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///pasal.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    CORS_ALLOWED_ORIGINS = _env_list(
        "CORS_ALLOWED_ORIGINS",
        ["http://localhost:3000", "http://127.0.0.1:3000"],
    )

    # Storefront money rules (all amounts in paisa, 100 paisa = 1 NPR)
    CURRENCY = "NPR"
    SHIPPING_FEE_PAISA = _env_int("SHIPPING_FEE_PAISA", 10_000)
    LOW_STOCK_THRESHOLD = 10
    REVIEW_MODERATION = _env_bool("REVIEW_MODERATION", False)

    # eSewa ePay v2 (UAT defaults)
    ESEWA_PRODUCT_CODE = os.environ.get("ESEWA_PRODUCT_CODE", "EPAYTEST")
    ESEWA_SECRET_KEY = os.environ.get("ESEWA_SECRET_KEY", "8gBm/:&EnhH.1/q")
    ESEWA_FORM_URL = os.environ.get(
        "ESEWA_FORM_URL", "https://rc-epay.esewa.com.np/api/epay/main/v2/form"
    )
    ESEWA_STATUS_URL = os.environ.get(
        "ESEWA_STATUS_URL", "https://rc.esewa.com.np/api/epay/transaction/status/"
    )

    # Khalti ePayment (sandbox defaults)
    KHALTI_SECRET_KEY = os.environ.get("KHALTI_SECRET_KEY", "")
    KHALTI_BASE_URL = os.environ.get("KHALTI_BASE_URL", "https://dev.khalti.com/api/v2")

    WEBSITE_URL = os.environ.get("WEBSITE_URL", "http://localhost:3000")
    PAYMENT_SUCCESS_URL = os.environ.get(
        "PAYMENT_SUCCESS_URL", "http://localhost:3000/checkout/success"
    )
    PAYMENT_FAILURE_URL = os.environ.get(
        "PAYMENT_FAILURE_URL", "http://localhost:3000/checkout/failure"
    )

    # Ask the gateway to confirm a returned transaction before marking it paid
    PAYMENT_VERIFY_WITH_GATEWAY = _env_bool("PAYMENT_VERIFY_WITH_GATEWAY", True)
    PAYMENT_HTTP_TIMEOUT = _env_int("PAYMENT_HTTP_TIMEOUT", 10)
    # httpx transport override; tests plug an httpx.MockTransport in here
    PAYMENT_HTTP_TRANSPORT = None
    PENDING_PAYMENT_TTL_MINUTES = _env_int("PENDING_PAYMENT_TTL_MINUTES", 60)

    ANALYTICS_MAX_WORKERS = _env_int("ANALYTICS_MAX_WORKERS", 6)

    # Shared secret for the OAuth sign-in bridge; endpoint disabled when unset
    OAUTH_BRIDGE_SECRET = os.environ.get("OAUTH_BRIDGE_SECRET")
