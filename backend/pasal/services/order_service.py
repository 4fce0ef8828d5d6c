# Overview: Service-layer operations for orders; checkout snapshots, persistence, customer and admin order management.

"""
Order Service

WHY snapshots: item names, unit prices and images are copied from the cart
as submitted and are not re-read from the catalog at write time. The
product must still exist and have stock, which is checked and decremented
in the same transaction as the order insert.

TOTALS (integer paisa, exact):
    total = subtotal + shipping - discount_amount
Shipping is a flat fee from SHIPPING_FEE_PAISA. The discount is always
recomputed server-side from the submitted code; a client-sent amount is
never trusted.

DISCOUNT USAGE: incremented after the order commits, best-effort. A failure
there is logged and the order stands.
"""

from __future__ import annotations

import secrets
import string
import time

from flask import current_app
from sqlalchemy import or_, update

from ..extensions import db
from ..models import Order, OrderItem, OrderTimelineEntry, Product, ProductVariant, User
from ..validation import NotFoundError, ValidationError, require_positive_int
from pasal.time_utils import parse_iso_datetime, utcnow
from . import address_service, discount_service
from .concurrency import lock_for_update, run_with_retry
from .pagination import paginate_query


class OrderError(ValidationError):
    """Raised for order business rule violations (400)."""
    pass


# =============================================================================
# STATUS CONSTANTS
# =============================================================================

ORDER_PENDING = "pending"
ORDER_PROCESSING = "processing"
ORDER_SHIPPED = "shipped"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"
ORDER_HANDOVER = "handover_to_courier"

VALID_ORDER_STATUSES = (
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
    ORDER_HANDOVER,
)

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
VALID_PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_FAILED)

METHOD_COD = "cod"
METHOD_ESEWA = "esewa"
METHOD_KHALTI = "khalti"
VALID_PAYMENT_METHODS = (METHOD_COD, METHOD_ESEWA, METHOD_KHALTI)

STATUS_DESCRIPTIONS = {
    ORDER_PENDING: "Order placed",
    ORDER_PROCESSING: "Order is being processed",
    ORDER_SHIPPED: "Order has been shipped",
    ORDER_HANDOVER: "Order handed over to courier",
    ORDER_DELIVERED: "Order delivered",
    ORDER_CANCELLED: "Order cancelled",
}

_ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number() -> str:
    """ORD-<epoch ms>-<5 random base36 chars>, e.g. ORD-1717000000000-K3Z9Q."""
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(5))
    return f"ORD-{millis}-{suffix}"


# =============================================================================
# CHECKOUT SNAPSHOT
# =============================================================================

def normalize_items(items) -> list[dict]:
    """
    Validate submitted cart lines.

    Every line needs a product_id plus positive integer price_paisa and
    quantity. Returns clean dicts in submission order.
    """
    if not isinstance(items, list) or not items:
        raise OrderError("Order must contain at least one item")

    lines = []
    for index, raw in enumerate(items, start=1):
        if not isinstance(raw, dict):
            raise OrderError(f"Item {index} is malformed")
        try:
            product_id = require_positive_int(raw.get("product_id"), "product_id")
            price = require_positive_int(raw.get("price_paisa"), "price_paisa")
            quantity = require_positive_int(raw.get("quantity"), "quantity")
            variant_id = raw.get("variant_id")
            if variant_id not in (None, ""):
                variant_id = require_positive_int(variant_id, "variant_id")
            else:
                variant_id = None
        except ValidationError as exc:
            raise OrderError(f"Item {index}: {exc}")
        lines.append({
            "product_id": product_id,
            "variant_id": variant_id,
            "name": str(raw.get("name") or "").strip()[:200],
            "price_paisa": price,
            "quantity": quantity,
            "image": raw.get("image"),
        })
    return lines


def _check_stock(lines: list[dict]) -> dict[int, Product]:
    ids = {line["product_id"] for line in lines}
    products = {p.id: p for p in db.session.query(Product).filter(Product.id.in_(ids)).all()}
    wanted: dict[int, int] = {}
    for line in lines:
        wanted[line["product_id"]] = wanted.get(line["product_id"], 0) + line["quantity"]

    for product_id, quantity in wanted.items():
        product = products.get(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        if product.stock < quantity:
            raise OrderError(
                f"Insufficient stock for {product.name}. Available: {product.stock}, Requested: {quantity}"
            )

    variant_ids = {line["variant_id"] for line in lines if line.get("variant_id")}
    if variant_ids:
        owners = dict(
            db.session.query(ProductVariant.id, ProductVariant.product_id)
            .filter(ProductVariant.id.in_(variant_ids))
            .all()
        )
        for line in lines:
            variant_id = line.get("variant_id")
            if variant_id and owners.get(variant_id) != line["product_id"]:
                raise OrderError(f"Variant {variant_id} is not available for product {line['product_id']}")
    return products


def compute_totals(lines: list[dict], shipping_paisa: int, discount_paisa: int = 0) -> dict:
    subtotal = sum(line["price_paisa"] * line["quantity"] for line in lines)
    discount_paisa = max(0, min(discount_paisa, subtotal))
    return {
        "subtotal_paisa": subtotal,
        "shipping_paisa": shipping_paisa,
        "discount_amount_paisa": discount_paisa,
        "total_paisa": subtotal + shipping_paisa - discount_paisa,
    }


def build_snapshot(
    user_id: int,
    *,
    address_id,
    payment_method: str,
    items,
    discount_code: str | None = None,
) -> dict:
    """
    Price a cart for checkout.

    The returned dict is JSON-safe; it is what gets persisted as an order,
    or stored on a PendingPayment while the shopper is at the gateway.
    """
    if payment_method not in VALID_PAYMENT_METHODS:
        raise OrderError(f"payment_method must be one of {', '.join(VALID_PAYMENT_METHODS)}")
    if not address_id:
        raise OrderError("address_id is required")

    address = address_service.get_address(user_id, require_positive_int(address_id, "address_id"))
    lines = normalize_items(items)
    products = _check_stock(lines)

    for line in lines:
        product = products[line["product_id"]]
        if not line["name"]:
            line["name"] = product.name
        if not line["image"] and product.images:
            line["image"] = product.images[0]

    shipping = int(current_app.config["SHIPPING_FEE_PAISA"])
    totals = compute_totals(lines, shipping)

    discount = None
    if discount_code:
        quote = discount_service.validate_discount(discount_code, totals["subtotal_paisa"], lines)
        totals = compute_totals(lines, shipping, quote.amount_paisa)
        discount = {
            "discount_id": quote.discount.id,
            "code": quote.discount.code,
            "amount_paisa": totals["discount_amount_paisa"],
        }

    return {
        "address_id": address.id,
        "shipping_address": address.to_shipping_snapshot(),
        "payment_method": payment_method,
        "items": lines,
        "subtotal_paisa": totals["subtotal_paisa"],
        "shipping_paisa": totals["shipping_paisa"],
        "discount": discount,
        "total_paisa": totals["total_paisa"],
    }


# =============================================================================
# PERSISTENCE
# =============================================================================

def append_timeline(order: Order, status: str, description: str, actor_user_id: int | None = None) -> OrderTimelineEntry:
    entry = OrderTimelineEntry(
        order=order,
        status=status,
        description=description,
        actor_user_id=actor_user_id,
        created_at=utcnow(),
    )
    db.session.add(entry)
    return entry


def _decrement_stock(lines: list[dict], *, strict: bool) -> None:
    """
    Take stock for each line with a guarded UPDATE (stock >= qty).

    strict=False is used once money has already been captured by a gateway:
    the order must be recorded, so an oversell is logged instead of raised.
    """
    for line in lines:
        product_id = line.get("product_id")
        if not product_id:
            continue
        result = db.session.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= line["quantity"])
            .values(stock=Product.stock - line["quantity"])
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            continue
        if strict:
            raise OrderError(f"Insufficient stock for {line.get('name') or product_id}")
        current_app.logger.warning(
            "Stock not decremented for product %s (qty %s): insufficient stock",
            product_id, line["quantity"],
        )


def _restock(order: Order) -> None:
    for item in order.items:
        if item.product_id:
            db.session.execute(
                update(Product)
                .where(Product.id == item.product_id)
                .values(stock=Product.stock + item.quantity)
                .execution_options(synchronize_session=False)
            )


def persist_order(
    user_id: int,
    snapshot: dict,
    *,
    status: str = ORDER_PENDING,
    payment_status: str = PAYMENT_PENDING,
    description: str = "Order placed",
    strict_stock: bool = True,
) -> Order:
    """Insert an order and its lines from a snapshot. Does not commit."""
    discount = snapshot.get("discount") or {}
    lines = snapshot["items"]

    order = Order(
        order_number=generate_order_number(),
        user_id=user_id,
        status=status,
        payment_method=snapshot["payment_method"],
        payment_status=payment_status,
        subtotal_paisa=snapshot["subtotal_paisa"],
        shipping_paisa=snapshot["shipping_paisa"],
        discount_id=discount.get("discount_id"),
        discount_code=discount.get("code"),
        discount_amount_paisa=discount.get("amount_paisa", 0),
        total_paisa=snapshot["total_paisa"],
        shipping_address=snapshot.get("shipping_address") or {},
        notes=snapshot.get("notes"),
    )
    for line in lines:
        order.items.append(OrderItem(
            product_id=line.get("product_id"),
            variant_id=line.get("variant_id"),
            name=line.get("name") or "Item",
            price_paisa=line["price_paisa"],
            quantity=line["quantity"],
            line_total_paisa=line["price_paisa"] * line["quantity"],
            image=line.get("image"),
        ))
    db.session.add(order)
    append_timeline(order, status, description, actor_user_id=user_id)
    _decrement_stock(lines, strict=strict_stock)
    db.session.flush()
    return order


def create_order(
    user_id: int,
    *,
    address_id,
    payment_method: str = METHOD_COD,
    items,
    discount_code: str | None = None,
    notes: str | None = None,
) -> Order:
    """
    Synchronous checkout (cash on delivery).

    Creates a pending/pending order with one timeline entry. Either the
    whole order (lines, stock) commits or nothing does; the discount usage
    bump happens afterwards and cannot undo the order.
    """
    snapshot = build_snapshot(
        user_id,
        address_id=address_id,
        payment_method=payment_method,
        items=items,
        discount_code=discount_code,
    )
    if notes:
        snapshot["notes"] = str(notes)[:1000]

    def _op():
        order = persist_order(user_id, snapshot)
        db.session.commit()
        return order

    order = run_with_retry(_op)

    if order.discount_id:
        discount_service.record_usage_best_effort(order.discount_id)

    current_app.logger.info("Order %s created for user %s (%s)", order.order_number, user_id, payment_method)
    return order


# =============================================================================
# CUSTOMER QUERIES
# =============================================================================

def get_user_order(user_id: int, order_id: int) -> Order:
    order = db.session.query(Order).filter_by(id=order_id, user_id=user_id).first()
    if not order:
        raise NotFoundError("Order not found")
    return order


def list_user_orders(user_id: int, status: str | None = None, page: int = 1, per_page: int = 10) -> dict:
    query = db.session.query(Order).filter(Order.user_id == user_id)
    if status:
        query = query.filter(Order.status == status)
    query = query.order_by(Order.created_at.desc(), Order.id.desc())
    return paginate_query(query, page=page, per_page=per_page, serialize=lambda o: o.to_dict())


def cancel_user_order(user_id: int, order_id: int, reason: str | None = None) -> Order:
    """Shoppers may cancel while the order is still pending and unpaid."""
    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id, user_id=user_id)).first()
        if not order:
            raise NotFoundError("Order not found")
        if order.status != ORDER_PENDING or order.payment_status == PAYMENT_PAID:
            raise OrderError("Only pending, unpaid orders can be cancelled")
        order.status = ORDER_CANCELLED
        _restock(order)
        append_timeline(order, ORDER_CANCELLED, reason or "Order cancelled by customer", actor_user_id=user_id)
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# ADMIN
# =============================================================================

def list_orders(
    *,
    status: str | None = None,
    payment_status: str | None = None,
    payment_method: str | None = None,
    search: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    page: int = 1,
    per_page: int = 20,
) -> dict:
    query = db.session.query(Order).join(User, User.id == Order.user_id)
    if status:
        query = query.filter(Order.status == status)
    if payment_status:
        query = query.filter(Order.payment_status == payment_status)
    if payment_method:
        query = query.filter(Order.payment_method == payment_method)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            Order.order_number.ilike(like),
            User.name.ilike(like),
            User.email.ilike(like),
        ))
    try:
        start = parse_iso_datetime(date_from)
        end = parse_iso_datetime(date_to)
    except ValueError:
        raise ValidationError("date_from/date_to must be ISO-8601 dates")
    if start:
        query = query.filter(Order.created_at >= start)
    if end:
        query = query.filter(Order.created_at <= end)

    query = query.order_by(Order.created_at.desc(), Order.id.desc())

    def _row(order: Order) -> dict:
        data = order.to_dict(include_items=False)
        data["customer"] = {"id": order.user.id, "name": order.user.name, "email": order.user.email}
        data["item_count"] = sum(i.quantity for i in order.items)
        return data

    return paginate_query(query, page=page, per_page=per_page, serialize=_row)


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    return order


def update_order_status(
    order_id: int,
    *,
    status: str,
    actor_user_id: int,
    tracking_number: str | None = None,
    note: str | None = None,
) -> Order:
    """
    Admin status change. Always appends a timeline entry.

    Cancelling returns stock. Delivering a COD order marks it paid, since the
    courier collected the cash.
    """
    if status not in VALID_ORDER_STATUSES:
        raise OrderError(f"Invalid status. Must be one of: {', '.join(VALID_ORDER_STATUSES)}")

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError("Order not found")
        if order.status == ORDER_CANCELLED and status != ORDER_CANCELLED:
            raise OrderError("Cancelled orders cannot be reopened")

        if status == ORDER_CANCELLED and order.status != ORDER_CANCELLED:
            _restock(order)
        if status == ORDER_DELIVERED and order.payment_method == METHOD_COD:
            order.payment_status = PAYMENT_PAID
            order.paid_at = order.paid_at or utcnow()

        order.status = status
        if tracking_number:
            order.tracking_number = tracking_number.strip()[:64]

        description = (note or "").strip() or STATUS_DESCRIPTIONS[status]
        append_timeline(order, status, description, actor_user_id=actor_user_id)
        db.session.commit()
        return order

    return run_with_retry(_op)
