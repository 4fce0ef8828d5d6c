# Overview: eSewa and Khalti adapters; decode gateway return parameters, sign redirect forms, call gateway APIs.

"""
Payment Gateway Adapters

Both Nepali wallets hand control back with a plain browser redirect whose
query string carries the outcome. This module turns those provider-specific
parameters into one NormalizedPayment shape and, when asked, confirms the
result with the gateway's own API before anything is marked paid.

ESEWA (ePay v2):
- Success redirect carries ?data=<base64 JSON> with transaction_code,
  status, total_amount (rupees), transaction_uuid (our reference),
  product_code, signed_field_names and signature (HMAC-SHA256, base64)
- Legacy redirect carries oid (our reference), amt (rupees), refId
- Status API: GET ESEWA_STATUS_URL?product_code&total_amount&transaction_uuid

KHALTI (ePayment):
- Return carries pidx, transaction_id (or txnId/tidx), amount (paisa),
  status ("Completed", "User canceled", ...), purchase_order_id (our reference)
- Initiate API: POST {KHALTI_BASE_URL}/epayment/initiate/
- Lookup API:   POST {KHALTI_BASE_URL}/epayment/lookup/
- Auth header:  Authorization: Key <secret>

All money leaving this module is integer paisa.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

import httpx
from flask import current_app


PROVIDER_ESEWA = "esewa"
PROVIDER_KHALTI = "khalti"
KNOWN_PROVIDERS = (PROVIDER_ESEWA, PROVIDER_KHALTI)

STATUS_COMPLETED = "completed"
STATUS_PENDING = "pending"
STATUS_CANCELED = "canceled"
STATUS_FAILED = "failed"

# Failure categories surfaced to the shopper
CATEGORY_NETWORK = "network"
CATEGORY_SESSION_EXPIRED = "session_expired"
CATEGORY_INVALID_REQUEST = "invalid_request"
CATEGORY_SERVER_ERROR = "server_error"

ESEWA_SIGNED_FIELDS = "total_amount,transaction_uuid,product_code"


class GatewayError(Exception):
    """Raised when a gateway payload or API call cannot be trusted or completed."""

    def __init__(self, message: str, category: str = CATEGORY_INVALID_REQUEST):
        super().__init__(message)
        self.category = category


@dataclass(frozen=True)
class NormalizedPayment:
    """Provider-independent view of one gateway return."""
    transaction_id: str | None
    provider: str | None
    amount_paisa: int | None
    ref_id: str | None
    status: str
    reference: str | None = None
    gateway_token: str | None = None
    raw: dict = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "provider": self.provider,
            "amount_paisa": self.amount_paisa,
            "ref_id": self.ref_id,
            "status": self.status,
            "reference": self.reference,
            "gateway_token": self.gateway_token,
        }


# =============================================================================
# AMOUNTS
# =============================================================================

def _to_decimal(value) -> Decimal:
    try:
        amount = Decimal(str(value).replace(",", "").strip())
    except InvalidOperation:
        raise GatewayError("Payment amount is not a number")
    # NaN and Infinity parse as Decimals but are not amounts
    if not amount.is_finite():
        raise GatewayError("Payment amount is not a number")
    if amount < 0:
        raise GatewayError("Payment amount is negative")
    return amount


def rupees_to_paisa(value) -> int:
    """'1,100.5' / 1100.5 / '1100' (rupees) -> 110050 paisa."""
    if value is None or value == "":
        raise GatewayError("Payment amount missing")
    try:
        return int((_to_decimal(value) * 100).quantize(Decimal("1")))
    except InvalidOperation:
        raise GatewayError("Payment amount is out of range")


def paisa_to_rupees(paisa: int) -> str:
    """110000 -> '1100', 110050 -> '1100.50'."""
    if paisa % 100 == 0:
        return str(paisa // 100)
    return f"{paisa // 100}.{paisa % 100:02d}"


def _parse_paisa(value) -> int | None:
    if value is None or value == "":
        return None
    return int(_to_decimal(value))


# =============================================================================
# ESEWA
# =============================================================================

def esewa_signature(message: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def _signed_message(payload: dict, signed_field_names: str) -> str:
    names = [n.strip() for n in signed_field_names.split(",") if n.strip()]
    return ",".join(f"{name}={payload.get(name, '')}" for name in names)


def verify_esewa_signature(payload: dict, secret: str) -> bool:
    signed_field_names = payload.get("signed_field_names")
    signature = payload.get("signature")
    if not signed_field_names or not signature:
        return False
    expected = esewa_signature(_signed_message(payload, signed_field_names), secret)
    return hmac.compare_digest(expected, str(signature))


def esewa_form(reference: str, amount_paisa: int) -> dict:
    """Signed form fields for the ePay v2 redirect-out (POST to ESEWA_FORM_URL)."""
    config = current_app.config
    fields = {
        "amount": paisa_to_rupees(amount_paisa),
        "tax_amount": "0",
        "product_service_charge": "0",
        "product_delivery_charge": "0",
        "total_amount": paisa_to_rupees(amount_paisa),
        "transaction_uuid": reference,
        "product_code": config["ESEWA_PRODUCT_CODE"],
        "success_url": config["PAYMENT_SUCCESS_URL"],
        "failure_url": config["PAYMENT_FAILURE_URL"],
        "signed_field_names": ESEWA_SIGNED_FIELDS,
    }
    fields["signature"] = esewa_signature(
        _signed_message(fields, ESEWA_SIGNED_FIELDS), config["ESEWA_SECRET_KEY"]
    )
    return {"action": config["ESEWA_FORM_URL"], "method": "POST", "fields": fields}


def _decode_esewa_blob(data: str) -> dict:
    # eSewa sends standard base64; tolerate stripped padding and url-safe alphabet
    padded = data.strip() + "=" * (-len(data.strip()) % 4)
    try:
        decoded = base64.b64decode(padded.replace("-", "+").replace("_", "/"), validate=True)
        payload = json.loads(decoded.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise GatewayError("Could not decode eSewa payment data")
    if not isinstance(payload, dict):
        raise GatewayError("Could not decode eSewa payment data")
    return payload


def _esewa_status(raw_status: str | None) -> str:
    status = (raw_status or "").strip().upper()
    if status == "COMPLETE":
        return STATUS_COMPLETED
    if status in ("PENDING", "AMBIGUOUS"):
        return STATUS_PENDING
    if status == "CANCELED":
        return STATUS_CANCELED
    return STATUS_FAILED


def decode_esewa(params: dict, *, secret: str | None = None) -> NormalizedPayment:
    """
    Decode an eSewa return (v2 base64 blob or legacy oid/amt/refId).

    v2 payloads must carry a valid signature when a secret is configured.
    """
    if params.get("data"):
        payload = _decode_esewa_blob(params["data"])
        if secret and not verify_esewa_signature(payload, secret):
            raise GatewayError("Payment verification failed: eSewa signature mismatch")
        transaction_code = payload.get("transaction_code") or None
        return NormalizedPayment(
            transaction_id=transaction_code,
            provider=PROVIDER_ESEWA,
            amount_paisa=rupees_to_paisa(payload.get("total_amount")),
            ref_id=payload.get("ref_id") or transaction_code,
            status=_esewa_status(payload.get("status")),
            reference=payload.get("transaction_uuid") or None,
            raw=payload,
        )

    reference = params.get("oid") or params.get("transaction_uuid")
    ref_id = params.get("refId") or params.get("ref_id")
    amount = params.get("amt") or params.get("total_amount")
    if not (reference or ref_id):
        raise GatewayError("Missing eSewa payment parameters")
    return NormalizedPayment(
        transaction_id=ref_id or None,
        provider=PROVIDER_ESEWA,
        amount_paisa=rupees_to_paisa(amount) if amount not in (None, "") else None,
        ref_id=ref_id or None,
        # Legacy success redirects are only issued for completed payments
        status=STATUS_COMPLETED if ref_id else STATUS_PENDING,
        reference=reference or None,
        raw=dict(params),
    )


# =============================================================================
# KHALTI
# =============================================================================

def _khalti_status(raw_status: str | None) -> str:
    status = (raw_status or "").strip().lower()
    if status == "completed":
        return STATUS_COMPLETED
    if status in ("pending", "initiated"):
        return STATUS_PENDING
    if status in ("user canceled", "user cancelled", "canceled", "cancelled"):
        return STATUS_CANCELED
    return STATUS_FAILED


def decode_khalti(params: dict) -> NormalizedPayment:
    pidx = params.get("pidx") or None
    transaction_id = (
        params.get("transaction_id")
        or params.get("txnId")
        or params.get("tidx")
        or params.get("refId")
        or None
    )
    if not (pidx or transaction_id):
        raise GatewayError("Missing Khalti payment parameters")

    raw_status = params.get("status")
    if raw_status is None:
        # Older return links omit status and only send the identifiers on success
        status = STATUS_COMPLETED if transaction_id else STATUS_PENDING
    else:
        status = _khalti_status(raw_status)

    return NormalizedPayment(
        transaction_id=transaction_id,
        provider=PROVIDER_KHALTI,
        amount_paisa=_parse_paisa(params.get("amount") or params.get("total_amount") or params.get("amt")),
        ref_id=params.get("refId") or transaction_id,
        status=status,
        reference=params.get("purchase_order_id") or None,
        gateway_token=pidx,
        raw=dict(params),
    )


def decode_return(provider: str | None, params: dict) -> NormalizedPayment:
    """Dispatch on provider; unknown providers fail closed."""
    if provider == PROVIDER_ESEWA:
        return decode_esewa(params, secret=current_app.config.get("ESEWA_SECRET_KEY"))
    if provider == PROVIDER_KHALTI:
        return decode_khalti(params)
    raise GatewayError("Payment verification failed: unknown payment provider")


# =============================================================================
# GATEWAY API CALLS
# =============================================================================

def _http_client() -> httpx.Client:
    return httpx.Client(
        timeout=current_app.config["PAYMENT_HTTP_TIMEOUT"],
        transport=current_app.config.get("PAYMENT_HTTP_TRANSPORT"),
    )


def _send(method: str, url: str, **kwargs) -> dict:
    try:
        with _http_client() as client:
            response = client.request(method, url, **kwargs)
    except httpx.TimeoutException:
        current_app.logger.warning("Payment gateway timed out: %s %s", method, url)
        raise GatewayError("Payment gateway did not respond in time", CATEGORY_NETWORK)
    except httpx.TransportError:
        current_app.logger.warning("Payment gateway unreachable: %s %s", method, url, exc_info=True)
        raise GatewayError("Could not reach the payment gateway", CATEGORY_NETWORK)

    if response.status_code >= 500:
        current_app.logger.warning("Payment gateway error %s from %s", response.status_code, url)
        raise GatewayError("Payment gateway error", CATEGORY_SERVER_ERROR)
    try:
        body = response.json()
    except ValueError:
        raise GatewayError("Payment gateway returned an unreadable response", CATEGORY_SERVER_ERROR)
    if response.status_code >= 400:
        detail = body.get("detail") if isinstance(body, dict) else None
        current_app.logger.warning("Payment gateway rejected request (%s): %s", response.status_code, body)
        raise GatewayError(detail or "Payment gateway rejected the request", CATEGORY_INVALID_REQUEST)
    return body if isinstance(body, dict) else {}


def _khalti_headers() -> dict:
    return {"Authorization": f"Key {current_app.config['KHALTI_SECRET_KEY']}"}


def khalti_initiate(
    *,
    reference: str,
    amount_paisa: int,
    order_name: str,
    customer: dict | None = None,
) -> dict:
    """Start a Khalti ePayment; returns {'pidx', 'payment_url', ...}."""
    config = current_app.config
    payload = {
        "return_url": config["PAYMENT_SUCCESS_URL"],
        "website_url": config["WEBSITE_URL"],
        "amount": amount_paisa,
        "purchase_order_id": reference,
        "purchase_order_name": order_name[:100],
    }
    if customer:
        payload["customer_info"] = {k: v for k, v in customer.items() if v}
    body = _send("POST", f"{config['KHALTI_BASE_URL'].rstrip('/')}/epayment/initiate/", json=payload, headers=_khalti_headers())
    if not body.get("pidx") or not body.get("payment_url"):
        raise GatewayError("Khalti did not return a payment link", CATEGORY_SERVER_ERROR)
    return body


def verify_with_gateway(payment: NormalizedPayment, expected_reference: str | None = None) -> NormalizedPayment:
    """
    Ask the gateway whether the transaction really completed.

    Returns the payment (amount taken from the gateway when it reports one).
    Raises GatewayError when the gateway does not confirm completion.
    """
    config = current_app.config

    if payment.provider == PROVIDER_KHALTI:
        if not payment.gateway_token:
            raise GatewayError("Payment verification failed: missing pidx")
        body = _send(
            "POST",
            f"{config['KHALTI_BASE_URL'].rstrip('/')}/epayment/lookup/",
            json={"pidx": payment.gateway_token},
            headers=_khalti_headers(),
        )
        if _khalti_status(body.get("status")) != STATUS_COMPLETED:
            raise GatewayError(f"Khalti reports payment status {body.get('status')!r}")
        amount = _parse_paisa(body.get("total_amount"))
        return NormalizedPayment(
            transaction_id=body.get("transaction_id") or payment.transaction_id,
            provider=PROVIDER_KHALTI,
            amount_paisa=amount if amount is not None else payment.amount_paisa,
            ref_id=payment.ref_id,
            status=STATUS_COMPLETED,
            reference=payment.reference,
            gateway_token=payment.gateway_token,
            raw=payment.raw,
        )

    if payment.provider == PROVIDER_ESEWA:
        reference = payment.reference or expected_reference
        if not reference or payment.amount_paisa is None:
            raise GatewayError("Payment verification failed: missing eSewa reference")
        body = _send(
            "GET",
            config["ESEWA_STATUS_URL"],
            params={
                "product_code": config["ESEWA_PRODUCT_CODE"],
                "total_amount": paisa_to_rupees(payment.amount_paisa),
                "transaction_uuid": reference,
            },
        )
        if _esewa_status(body.get("status")) != STATUS_COMPLETED:
            raise GatewayError(f"eSewa reports payment status {body.get('status')!r}")
        # The status API's ref_id keys the payment; the redirect's refId is
        # chosen by whoever sends it
        gateway_ref = body.get("ref_id") or None
        if gateway_ref and payment.transaction_id and gateway_ref != payment.transaction_id:
            current_app.logger.warning(
                "eSewa return for %s claimed refId %s; status API reports %s",
                reference, payment.transaction_id, gateway_ref,
            )
        return NormalizedPayment(
            transaction_id=gateway_ref or payment.transaction_id,
            provider=PROVIDER_ESEWA,
            amount_paisa=payment.amount_paisa,
            ref_id=gateway_ref or payment.ref_id,
            status=STATUS_COMPLETED,
            reference=reference,
            raw=payment.raw,
        )

    raise GatewayError("Payment verification failed: unknown payment provider")
