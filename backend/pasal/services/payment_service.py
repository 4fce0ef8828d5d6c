# Overview: Service-layer operations for gateway payments; initiation, return reconciliation and idempotent completion.

"""
Gateway Payment Service (eSewa / Khalti)

FLOW:
1. initiate_payment prices the cart exactly like cash on delivery, stores
   the result as a PendingPayment keyed by a fresh server reference and
   returns redirect instructions (signed eSewa form / Khalti payment URL).
   The snapshot is also returned so a browser may keep a copy under the
   session-storage key "orderData".
2. The shopper pays off-site and the gateway redirects back with query
   parameters (or an error code).
3. handle_gateway_return:
   a. known error codes short-circuit with a specific message
   b. the provider payload is decoded to a NormalizedPayment
   c. the order snapshot is resolved: server PendingPayment first, then the
      browser's orderData copy, then a degraded rebuild from the stored cart
      (no shipping, no discount)
   d. a missing transaction id or unknown provider fails closed
   e. complete_payment persists the paid order
   f. the outcome tells the client whether to clear cart and pending state

IDEMPOTENCE: a PendingPayment settles at most one order; once completed,
any further return for its reference reports that order as a duplicate,
whatever transaction id it carries. Without a pending record,
complete_payment is keyed by (provider, transaction id). No second order is
created and discount usage is not bumped again. The unique constraint on
orders backs this up when two completions race.

AMOUNT CHECKS: a gateway amount that disagrees with a server-held snapshot
is rejected. Against a browser-supplied snapshot the mismatch is logged and
flagged in the payment metadata.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Discount, Order, PendingPayment
from ..validation import NotFoundError, ValidationError
from pasal.time_utils import utcnow
from . import address_service, discount_service, gateways, order_service
from .concurrency import lock_for_update, run_with_retry
from .gateways import (
    CATEGORY_INVALID_REQUEST,
    CATEGORY_NETWORK,
    CATEGORY_SERVER_ERROR,
    CATEGORY_SESSION_EXPIRED,
    KNOWN_PROVIDERS,
    PROVIDER_ESEWA,
    PROVIDER_KHALTI,
    STATUS_CANCELED,
    STATUS_COMPLETED,
    GatewayError,
    NormalizedPayment,
)


class PaymentError(Exception):
    """Raised for payment operation errors."""

    def __init__(self, message: str, category: str = CATEGORY_INVALID_REQUEST):
        super().__init__(message)
        self.category = category


# =============================================================================
# CONSTANTS
# =============================================================================

PENDING_STATUS_PENDING = "pending"
PENDING_STATUS_COMPLETED = "completed"
PENDING_STATUS_FAILED = "failed"
PENDING_STATUS_EXPIRED = "expired"

PROVIDER_LABELS = {PROVIDER_ESEWA: "eSewa", PROVIDER_KHALTI: "Khalti"}

RETURN_ERROR_MESSAGES = {
    "user_canceled": "Payment was cancelled. Your cart is still saved, so you can try again.",
    "payment_cancelled": "Payment was cancelled. Your cart is still saved, so you can try again.",
    "timeout": "The payment session timed out before it was completed. Please try again.",
    "invalid_amount": "The paid amount does not match your order total. Please try again or contact support.",
    "payment_failed": "The payment could not be completed. Please try again or choose another payment method.",
}
GENERIC_RETURN_ERROR = "Payment was not completed. Please try again."
VERIFICATION_FAILED = "Payment verification failed"

CATEGORY_MESSAGES = {
    CATEGORY_NETWORK: "We could not reach the payment provider. Please check your connection and try again.",
    CATEGORY_SESSION_EXPIRED: "Your checkout session has expired. Please return to your cart and try again.",
    CATEGORY_INVALID_REQUEST: "The payment request was invalid. Please try again.",
    CATEGORY_SERVER_ERROR: "Something went wrong while confirming your payment. Please try again shortly.",
}

SOURCE_SERVER = "server"
SOURCE_CLIENT = "client"
SOURCE_RECONSTRUCTED = "reconstructed"


@dataclass
class PaymentOutcome:
    success: bool
    message: str
    category: str | None = None
    order: Order | None = None
    payment: NormalizedPayment | None = None
    duplicate: bool = False
    reconstructed: bool = False
    clear_cart: bool = False
    clear_pending: bool = True

    @property
    def http_status(self) -> int:
        if self.success:
            return 200
        if self.category in (CATEGORY_NETWORK, CATEGORY_SERVER_ERROR):
            return 502
        if self.category == CATEGORY_SESSION_EXPIRED:
            return 410
        return 400

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "category": self.category,
            "order": self.order.to_dict() if self.order else None,
            "order_number": self.order.order_number if self.order else None,
            "payment": self.payment.to_dict() if self.payment else None,
            "duplicate": self.duplicate,
            "reconstructed": self.reconstructed,
            "clear_cart": self.clear_cart,
            "clear_pending": self.clear_pending,
        }


def _failure(message: str, category: str | None, **kwargs) -> PaymentOutcome:
    return PaymentOutcome(success=False, message=message, category=category, clear_pending=True, **kwargs)


# =============================================================================
# INITIATION
# =============================================================================

def generate_reference() -> str:
    """Server reference echoed back by the gateway (eSewa transaction_uuid, Khalti purchase_order_id)."""
    return f"PAY-{uuid.uuid4().hex[:24].upper()}"


def initiate_payment(
    user_id: int,
    *,
    provider: str,
    address_id,
    items,
    discount_code: str | None = None,
    customer: dict | None = None,
) -> dict:
    """
    Price the cart, persist a PendingPayment and build the redirect-out.

    Raises:
        PaymentError: unknown provider or gateway refused to start a payment
        OrderError / DiscountError / NotFoundError: cart could not be priced
    """
    if provider not in KNOWN_PROVIDERS:
        raise PaymentError(f"Unsupported payment provider: {provider}")

    snapshot = order_service.build_snapshot(
        user_id,
        address_id=address_id,
        payment_method=provider,
        items=items,
        discount_code=discount_code,
    )
    now = utcnow()
    ttl = timedelta(minutes=current_app.config["PENDING_PAYMENT_TTL_MINUTES"])
    reference = generate_reference()

    pending = PendingPayment(
        reference=reference,
        user_id=user_id,
        provider=provider,
        amount_paisa=snapshot["total_paisa"],
        snapshot=snapshot,
        status=PENDING_STATUS_PENDING,
        created_at=now,
        expires_at=now + ttl,
    )
    db.session.add(pending)

    try:
        if provider == PROVIDER_ESEWA:
            redirect = gateways.esewa_form(reference, snapshot["total_paisa"])
        else:
            names = [line["name"] for line in snapshot["items"]]
            body = gateways.khalti_initiate(
                reference=reference,
                amount_paisa=snapshot["total_paisa"],
                order_name=", ".join(names) or "Order",
                customer=customer,
            )
            pending.gateway_token = body["pidx"]
            redirect = {"action": body["payment_url"], "method": "GET", "pidx": body["pidx"]}
    except GatewayError as exc:
        db.session.rollback()
        raise PaymentError(str(exc), exc.category)

    db.session.commit()
    current_app.logger.info(
        "Payment %s initiated via %s for user %s (%s paisa)",
        reference, provider, user_id, snapshot["total_paisa"],
    )
    return {
        "reference": reference,
        "provider": provider,
        "amount_paisa": snapshot["total_paisa"],
        "expires_at": pending.to_dict()["expires_at"],
        "redirect": redirect,
        "order_data": {**snapshot, "reference": reference},
    }


# =============================================================================
# SNAPSHOT RESOLUTION
# =============================================================================

def _find_pending(user_id: int, provider: str | None, reference: str | None, gateway_token: str | None) -> PendingPayment | None:
    q = db.session.query(PendingPayment).filter_by(user_id=user_id)
    if provider:
        q = q.filter_by(provider=provider)
    if reference:
        found = q.filter_by(reference=reference).first()
        if found:
            return found
    if gateway_token:
        return q.filter_by(gateway_token=gateway_token).first()
    return None


def _references_from_params(provider: str | None, params: dict) -> tuple[str | None, str | None]:
    """Best-effort (reference, gateway_token) from raw params, without trusting them."""
    if provider == PROVIDER_KHALTI:
        return params.get("purchase_order_id"), params.get("pidx")
    if provider == PROVIDER_ESEWA:
        if params.get("data"):
            try:
                payment = gateways.decode_esewa({"data": params["data"]})
            except GatewayError:
                return None, None
            return payment.reference, None
        return params.get("oid") or params.get("transaction_uuid"), None
    return None, None


def _mark_pending_failed(pending: PendingPayment | None, reason: str) -> None:
    if pending is None or pending.status != PENDING_STATUS_PENDING:
        return
    pending.status = PENDING_STATUS_FAILED
    pending.failure_reason = reason[:255]
    db.session.commit()


def _sanitize_client_snapshot(user_id: int, provider: str, order_data: dict) -> dict:
    """
    Re-price a browser-held orderData copy.

    Items are taken as submitted (that is what the shopper agreed to pay);
    subtotal, shipping, discount and total are recomputed here.
    """
    if not isinstance(order_data, dict):
        raise ValidationError("order_data must be an object")
    lines = order_service.normalize_items(order_data.get("items"))
    address = address_service.get_address(user_id, order_data.get("address_id"))

    discount = None
    code = (order_data.get("discount") or {}).get("code") if isinstance(order_data.get("discount"), dict) else None
    shipping = int(current_app.config["SHIPPING_FEE_PAISA"])
    totals = order_service.compute_totals(lines, shipping)
    if code:
        record = db.session.query(Discount).filter_by(code=discount_service.normalize_code(code)).first()
        if record:
            amount = discount_service.compute_discount_amount(record, totals["subtotal_paisa"])
            totals = order_service.compute_totals(lines, shipping, amount)
            discount = {"discount_id": record.id, "code": record.code, "amount_paisa": totals["discount_amount_paisa"]}

    return {
        "address_id": address.id,
        "shipping_address": address.to_shipping_snapshot(),
        "payment_method": provider,
        "items": lines,
        "subtotal_paisa": totals["subtotal_paisa"],
        "shipping_paisa": totals["shipping_paisa"],
        "discount": discount,
        "total_paisa": totals["total_paisa"],
        "order_id": order_data.get("order_id"),
    }


def reconstruct_from_cart(user_id: int, provider: str, cart_snapshot: dict | None) -> dict | None:
    """
    Degraded fallback when no order snapshot survived the redirect.

    Uses the stored cart items and selected address only: shipping and
    discount are dropped, so total == subtotal. Returns None when even
    that is not possible.
    """
    if not isinstance(cart_snapshot, dict):
        return None
    try:
        lines = order_service.normalize_items(cart_snapshot.get("items"))
    except ValidationError:
        return None

    shipping_address = None
    address_id = cart_snapshot.get("address_id")
    selected = cart_snapshot.get("selected_address")
    if address_id is None and isinstance(selected, dict):
        address_id = selected.get("id")
    if address_id is not None:
        try:
            address = address_service.get_address(user_id, int(address_id))
            shipping_address = address.to_shipping_snapshot()
        except (NotFoundError, TypeError, ValueError):
            shipping_address = None
    if shipping_address is None and isinstance(selected, dict) and selected.get("full_name"):
        shipping_address = {
            "full_name": selected.get("full_name"),
            "address": selected.get("address") or "",
            "city": selected.get("district") or selected.get("city") or "",
            "province": selected.get("province") or "",
            "postal_code": selected.get("postal_code") or "",
            "phone": selected.get("phone") or "",
        }
    if shipping_address is None:
        return None

    totals = order_service.compute_totals(lines, 0)
    return {
        "address_id": address_id,
        "shipping_address": shipping_address,
        "payment_method": provider,
        "items": lines,
        "subtotal_paisa": totals["subtotal_paisa"],
        "shipping_paisa": 0,
        "discount": None,
        "total_paisa": totals["total_paisa"],
    }


# =============================================================================
# COMPLETION
# =============================================================================

def find_order_by_transaction(provider: str, transaction_id: str) -> Order | None:
    return db.session.query(Order).filter_by(
        payment_provider=provider, payment_transaction_id=transaction_id
    ).first()


def _settled_order(user_id: int, pending: PendingPayment | None) -> Order | None:
    if pending is None or pending.status != PENDING_STATUS_COMPLETED or not pending.order_id:
        return None
    return db.session.query(Order).filter_by(id=pending.order_id, user_id=user_id).first()


def _close_pending(pending: PendingPayment | None, order: Order) -> None:
    if pending is None:
        return
    pending.status = PENDING_STATUS_COMPLETED
    pending.order_id = order.id
    pending.completed_at = pending.completed_at or utcnow()


def complete_payment(
    user_id: int,
    order_data: dict,
    payment: NormalizedPayment,
    *,
    pending: PendingPayment | None = None,
    source: str = SOURCE_SERVER,
) -> tuple[Order, bool]:
    """
    Persist a confirmed gateway payment. Idempotent per transaction.

    Create-or-update: when order_data names an existing unpaid order of the
    user it is marked paid, otherwise a new order is created from the
    snapshot. Returns (order, duplicate).

    Raises:
        PaymentError: unverifiable payment, foreign transaction, amount mismatch
        NotFoundError: order_data.order_id does not exist for this user
    """
    if not payment.transaction_id or payment.provider not in KNOWN_PROVIDERS:
        raise PaymentError(VERIFICATION_FAILED)
    if payment.status != STATUS_COMPLETED:
        raise PaymentError(RETURN_ERROR_MESSAGES["payment_failed"], "payment_failed")

    existing = find_order_by_transaction(payment.provider, payment.transaction_id)
    if existing:
        if existing.user_id != user_id:
            current_app.logger.warning(
                "Transaction %s/%s replayed by user %s but belongs to user %s",
                payment.provider, payment.transaction_id, user_id, existing.user_id,
            )
            raise PaymentError(VERIFICATION_FAILED)
        if pending is not None and pending.status != PENDING_STATUS_COMPLETED:
            _close_pending(pending, existing)
            db.session.commit()
        return existing, True

    order_id = order_data.get("order_id")
    target = None
    if order_id:
        target = db.session.query(Order).filter_by(id=order_id, user_id=user_id).first()
        if not target:
            raise NotFoundError("Order not found")
        if target.payment_status == order_service.PAYMENT_PAID:
            raise PaymentError("This order has already been paid")

    expected_total = target.total_paisa if target else order_data["total_paisa"]
    amount_enforced = target is not None or source == SOURCE_SERVER
    mismatch = payment.amount_paisa is not None and payment.amount_paisa != expected_total
    if mismatch:
        if amount_enforced:
            current_app.logger.warning(
                "Rejecting %s transaction %s: paid %s paisa, expected %s",
                payment.provider, payment.transaction_id, payment.amount_paisa, expected_total,
            )
            _mark_pending_failed(pending, "invalid_amount")
            raise PaymentError(RETURN_ERROR_MESSAGES["invalid_amount"], "invalid_amount")
        current_app.logger.warning(
            "%s transaction %s amount %s differs from client snapshot total %s",
            payment.provider, payment.transaction_id, payment.amount_paisa, expected_total,
        )

    label = PROVIDER_LABELS[payment.provider]
    metadata = {
        "refId": payment.ref_id,
        "reference": payment.reference,
        "pidx": payment.gateway_token,
        "snapshot_source": source,
        "reconstructed": source == SOURCE_RECONSTRUCTED,
        "amount_mismatch": mismatch,
    }

    def _op():
        if pending is not None:
            locked = lock_for_update(
                db.session.query(PendingPayment)
                .filter_by(id=pending.id)
                .populate_existing()
            ).first()
            settled = _settled_order(user_id, locked)
            if settled is not None:
                # Lost the race to a completion of the same reference
                db.session.rollback()
                return settled, True

        if target is not None:
            order = lock_for_update(db.session.query(Order).filter_by(id=target.id)).first()
        else:
            order = order_service.persist_order(user_id, order_data, strict_stock=False)

        order.status = order_service.ORDER_PROCESSING
        order.payment_status = order_service.PAYMENT_PAID
        order.payment_provider = payment.provider
        order.payment_transaction_id = payment.transaction_id
        order.payment_amount_paisa = payment.amount_paisa if payment.amount_paisa is not None else expected_total
        order.payment_currency = current_app.config["CURRENCY"]
        order.payment_state = "completed"
        order.payment_reference_id = payment.ref_id
        order.payment_metadata = metadata
        order.paid_at = utcnow()
        order_service.append_timeline(
            order, order_service.ORDER_PROCESSING, f"Payment confirmed via {label}", actor_user_id=user_id
        )
        db.session.flush()
        _close_pending(pending, order)
        db.session.commit()
        return order, False

    try:
        order, duplicate = run_with_retry(_op)
    except IntegrityError:
        # A concurrent completion for the same transaction won the race
        db.session.rollback()
        winner = find_order_by_transaction(payment.provider, payment.transaction_id)
        if winner is None or winner.user_id != user_id:
            raise
        return winner, True

    if duplicate:
        return order, True
    if target is None:
        # A pre-existing order already counted its code at checkout
        discount_service.record_usage_best_effort(order.discount_id)
    current_app.logger.info(
        "Order %s paid via %s (txn %s, source %s)",
        order.order_number, payment.provider, payment.transaction_id, source,
    )
    return order, False


# =============================================================================
# RETURN HANDLING
# =============================================================================

def handle_gateway_return(
    user_id: int,
    provider: str | None,
    params: dict,
    *,
    order_data: dict | None = None,
    cart_snapshot: dict | None = None,
) -> PaymentOutcome:
    """
    Reconcile a gateway redirect with the pending order. Never raises for
    payment-level problems; every failure comes back as a categorized
    PaymentOutcome with clear_pending=True.
    """
    params = {k: v for k, v in (params or {}).items() if v is not None}

    # (a) explicit gateway error codes: no reconciliation attempted
    error_code = params.get("error")
    if error_code:
        reference, token = _references_from_params(provider, params)
        _mark_pending_failed(_find_pending(user_id, provider, reference, token), error_code)
        message = RETURN_ERROR_MESSAGES.get(error_code) or params.get("message") or GENERIC_RETURN_ERROR
        return _failure(message, error_code)

    # (b) decode
    try:
        payment = gateways.decode_return(provider, params)
    except GatewayError as exc:
        current_app.logger.warning("Undecodable %s return for user %s: %s", provider, user_id, exc)
        reference, token = _references_from_params(provider, params)
        _mark_pending_failed(_find_pending(user_id, provider, reference, token), exc.category)
        message = str(exc)
        if not message.startswith(VERIFICATION_FAILED):
            message = f"{VERIFICATION_FAILED}: {message}"
        return _failure(message, exc.category)

    pending = _find_pending(user_id, payment.provider, payment.reference, payment.gateway_token)

    if payment.status != STATUS_COMPLETED:
        code = "user_canceled" if payment.status == STATUS_CANCELED else "payment_failed"
        _mark_pending_failed(pending, code)
        return _failure(RETURN_ERROR_MESSAGES[code], code, payment=payment)

    # (d) fail closed before touching any snapshot
    if not payment.transaction_id or payment.provider not in KNOWN_PROVIDERS:
        return _failure(VERIFICATION_FAILED, CATEGORY_INVALID_REQUEST, payment=payment)

    # A reference that already produced an order is never paid twice, whatever
    # transaction id the replay carries
    settled = _settled_order(user_id, pending)
    if settled is not None:
        if settled.payment_transaction_id != payment.transaction_id:
            current_app.logger.warning(
                "Pending payment %s already settled by txn %s; ignoring replay with txn %s",
                pending.reference, settled.payment_transaction_id, payment.transaction_id,
            )
        return PaymentOutcome(
            success=True, message="Payment already processed", order=settled,
            payment=payment, duplicate=True, clear_cart=True,
        )

    # (c) snapshot resolution
    try:
        if pending is not None:
            snapshot, source = dict(pending.snapshot), SOURCE_SERVER
            if pending.status == PENDING_STATUS_EXPIRED:
                current_app.logger.info("Completing expired pending payment %s", pending.reference)
        elif order_data:
            snapshot, source = _sanitize_client_snapshot(user_id, payment.provider, order_data), SOURCE_CLIENT
        else:
            snapshot = reconstruct_from_cart(user_id, payment.provider, cart_snapshot)
            source = SOURCE_RECONSTRUCTED
            if snapshot is None:
                duplicate = find_order_by_transaction(payment.provider, payment.transaction_id)
                if duplicate is not None and duplicate.user_id == user_id:
                    return PaymentOutcome(
                        success=True, message="Payment already processed", order=duplicate,
                        payment=payment, duplicate=True, clear_cart=True,
                    )
                return _failure(CATEGORY_MESSAGES[CATEGORY_SESSION_EXPIRED], CATEGORY_SESSION_EXPIRED, payment=payment)
    except (ValidationError, NotFoundError) as exc:
        return _failure(str(exc), CATEGORY_INVALID_REQUEST, payment=payment)

    if current_app.config["PAYMENT_VERIFY_WITH_GATEWAY"]:
        try:
            payment = gateways.verify_with_gateway(
                payment, expected_reference=pending.reference if pending else None
            )
        except GatewayError as exc:
            current_app.logger.warning(
                "Gateway verification failed for %s txn %s: %s",
                payment.provider, payment.transaction_id, exc,
            )
            if exc.category == CATEGORY_INVALID_REQUEST:
                return _failure(f"{VERIFICATION_FAILED}: {exc}", CATEGORY_INVALID_REQUEST, payment=payment)
            return _failure(CATEGORY_MESSAGES[exc.category], exc.category, payment=payment)

    # (e) completion
    try:
        order, duplicate = complete_payment(user_id, snapshot, payment, pending=pending, source=source)
    except PaymentError as exc:
        return _failure(str(exc), exc.category, payment=payment)
    except (ValidationError, NotFoundError) as exc:
        db.session.rollback()
        return _failure(str(exc), CATEGORY_INVALID_REQUEST, payment=payment)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to persist %s payment %s", payment.provider, payment.transaction_id)
        return _failure(CATEGORY_MESSAGES[CATEGORY_SERVER_ERROR], CATEGORY_SERVER_ERROR, payment=payment)

    # (f)
    return PaymentOutcome(
        success=True,
        message="Payment already processed" if duplicate else "Payment successful",
        order=order,
        payment=payment,
        duplicate=duplicate,
        reconstructed=source == SOURCE_RECONSTRUCTED,
        clear_cart=True,
        clear_pending=True,
    )


def complete_from_client(user_id: int, order_data: dict | None, payment_details: dict | None) -> PaymentOutcome:
    """
    Completion endpoint for clients that already decoded the gateway return.

    The client-reported payment is only a pointer: it is matched against the
    server PendingPayment and confirmed with the gateway when verification
    is enabled.
    """
    if not isinstance(payment_details, dict):
        return _failure("payment_details is required", CATEGORY_INVALID_REQUEST)

    provider = payment_details.get("provider")
    try:
        amount = payment_details.get("amount_paisa")
        payment = NormalizedPayment(
            transaction_id=payment_details.get("transaction_id") or None,
            provider=provider if provider in KNOWN_PROVIDERS else None,
            amount_paisa=int(amount) if amount not in (None, "") else None,
            ref_id=payment_details.get("ref_id") or None,
            status=STATUS_COMPLETED if (payment_details.get("status") or "completed").lower() in ("completed", "complete") else "failed",
            reference=payment_details.get("reference") or (order_data or {}).get("reference"),
            gateway_token=payment_details.get("pidx"),
            raw=dict(payment_details),
        )
    except (TypeError, ValueError, OverflowError):
        return _failure(VERIFICATION_FAILED, CATEGORY_INVALID_REQUEST)

    if not payment.transaction_id or payment.provider is None:
        return _failure(VERIFICATION_FAILED, CATEGORY_INVALID_REQUEST, payment=payment)

    params = {
        PROVIDER_KHALTI: {
            "pidx": payment.gateway_token,
            "transaction_id": payment.transaction_id,
            "amount": payment.amount_paisa,
            "purchase_order_id": payment.reference,
            "status": "Completed" if payment.is_completed else "Failed",
        },
        PROVIDER_ESEWA: {
            "oid": payment.reference,
            "refId": payment.transaction_id,
            "amt": gateways.paisa_to_rupees(payment.amount_paisa) if payment.amount_paisa is not None else None,
        },
    }[payment.provider]
    return handle_gateway_return(user_id, payment.provider, params, order_data=order_data)


# =============================================================================
# MAINTENANCE
# =============================================================================

def expire_pending_payments(now=None) -> int:
    """Mark abandoned pending payments past their expiry. Returns count."""
    now = now or utcnow()
    count = db.session.query(PendingPayment).filter(
        PendingPayment.status == PENDING_STATUS_PENDING,
        PendingPayment.expires_at < now,
    ).update({"status": PENDING_STATUS_EXPIRED}, synchronize_session=False)
    db.session.commit()
    return count


def get_pending_payment(user_id: int, reference: str) -> PendingPayment:
    pending = db.session.query(PendingPayment).filter_by(user_id=user_id, reference=reference).first()
    if not pending:
        raise NotFoundError("Pending payment not found")
    return pending
