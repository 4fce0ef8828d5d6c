# Overview: Flask API routes for eSewa and Khalti payments; parses input and returns JSON responses.

"""
Gateway payment routes.

The storefront redirects the shopper to the gateway with the data returned
by /initiate. After payment the gateway sends the browser back to the
storefront, which forwards the query string to the matching /return route.

Every return route answers with the same outcome envelope:
    {success, message, category, order, order_number, clear_cart, clear_pending, ...}
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth
from ..services import payment_service
from ..services.gateways import CATEGORY_SERVER_ERROR, PROVIDER_ESEWA, PROVIDER_KHALTI
from ..validation import NotFoundError, ValidationError


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _outcome_response(outcome):
    return jsonify(outcome.to_dict()), outcome.http_status


def _server_error():
    return jsonify({
        "success": False,
        "message": payment_service.CATEGORY_MESSAGES[CATEGORY_SERVER_ERROR],
        "category": CATEGORY_SERVER_ERROR,
        "clear_cart": False,
        "clear_pending": True,
    }), 500


@payments_bp.post("/initiate")
@require_auth
def initiate_payment():
    """
    Request body:
    {
        "provider": "esewa" | "khalti",
        "address_id": 3,
        "items": [{"product_id": 1, "name": "Pashmina Shawl", "price_paisa": 100000, "quantity": 2}],
        "discount_code": "SAVE20"
    }

    Response: reference, amount_paisa, expires_at, redirect (form fields or
    payment URL) and order_data (the priced snapshot).
    """
    try:
        data = request.get_json() or {}
        user = g.current_user
        result = payment_service.initiate_payment(
            user.id,
            provider=(data.get("provider") or "").strip().lower(),
            address_id=data.get("address_id"),
            items=data.get("items"),
            discount_code=data.get("discount_code"),
            customer={"name": user.name, "email": user.email, "phone": user.phone},
        )
        return jsonify(result), 201
    except payment_service.PaymentError as e:
        status = 502 if e.category in ("network", CATEGORY_SERVER_ERROR) else 400
        return jsonify({"error": str(e), "category": e.category}), status
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to initiate payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/esewa/return")
@require_auth
def esewa_return():
    """Query string as sent by eSewa: data=<base64> (v2) or oid/amt/refId (legacy), or error=<code>."""
    try:
        outcome = payment_service.handle_gateway_return(
            g.current_user.id, PROVIDER_ESEWA, request.args.to_dict()
        )
        return _outcome_response(outcome)
    except Exception:
        current_app.logger.exception("Failed to process eSewa return")
        return _server_error()


@payments_bp.get("/khalti/return")
@require_auth
def khalti_return():
    """Query string as sent by Khalti: pidx, status, transaction_id, amount, purchase_order_id."""
    try:
        outcome = payment_service.handle_gateway_return(
            g.current_user.id, PROVIDER_KHALTI, request.args.to_dict()
        )
        return _outcome_response(outcome)
    except Exception:
        current_app.logger.exception("Failed to process Khalti return")
        return _server_error()


@payments_bp.post("/return")
@require_auth
def gateway_return():
    """
    Return handling for clients that still hold their own copies.

    Request body:
    {
        "provider": "esewa" | "khalti",
        "params": {...gateway query string...},
        "order_data": {...session-storage orderData...},
        "cart_snapshot": {"items": [...], "address_id": 3}
    }
    """
    try:
        data = request.get_json() or {}
        params = data.get("params") if isinstance(data.get("params"), dict) else {}
        outcome = payment_service.handle_gateway_return(
            g.current_user.id,
            (data.get("provider") or "").strip().lower() or None,
            params,
            order_data=data.get("order_data") if isinstance(data.get("order_data"), dict) else None,
            cart_snapshot=data.get("cart_snapshot") if isinstance(data.get("cart_snapshot"), dict) else None,
        )
        return _outcome_response(outcome)
    except Exception:
        current_app.logger.exception("Failed to process payment return")
        return _server_error()


@payments_bp.post("/complete")
@require_auth
def complete_payment():
    """Request body: {"order_data": {...}, "payment_details": {provider, transaction_id, amount_paisa, ...}}."""
    try:
        data = request.get_json() or {}
        order_data = data.get("order_data") if isinstance(data.get("order_data"), dict) else None
        outcome = payment_service.complete_from_client(g.current_user.id, order_data, data.get("payment_details"))
        return _outcome_response(outcome)
    except Exception:
        current_app.logger.exception("Failed to complete payment")
        return _server_error()


@payments_bp.get("/pending/<reference>")
@require_auth
def get_pending_payment(reference: str):
    try:
        pending = payment_service.get_pending_payment(g.current_user.id, reference)
        return jsonify({"pending_payment": pending.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
