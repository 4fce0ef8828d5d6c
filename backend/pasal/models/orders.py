from __future__ import annotations

from ..extensions import db
from pasal.time_utils import to_utc_z, utcnow


class Order(db.Model):
    """
    Customer order document.

    INVARIANTS:
    - total_paisa = subtotal_paisa + shipping_paisa - discount_amount_paisa
    - discount_amount_paisa >= 0
    - timeline is append-only; its newest entry carries the current status
    - orders are never hard-deleted (cancellation is a status)

    WHY (payment_provider, payment_transaction_id) is unique: a gateway
    redirect can be replayed (refresh, double submit, racing tabs). The
    constraint guarantees one paid order per gateway transaction even when
    two completions race past the application-level duplicate check.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("payment_provider", "payment_transaction_id", name="uq_orders_payment_txn"),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(40), nullable=False, unique=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(32), nullable=False, default="pending", index=True)
    payment_method = db.Column(db.String(16), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    # Totals (all amounts in paisa)
    subtotal_paisa = db.Column(db.Integer, nullable=False)
    shipping_paisa = db.Column(db.Integer, nullable=False, default=0)
    discount_id = db.Column(db.Integer, db.ForeignKey("discounts.id"), nullable=True)
    discount_code = db.Column(db.String(32), nullable=True)
    discount_amount_paisa = db.Column(db.Integer, nullable=False, default=0)
    total_paisa = db.Column(db.Integer, nullable=False)

    # Snapshot of the delivery address at checkout time
    shipping_address = db.Column(db.JSON, nullable=False, default=dict)

    # Gateway payment details (NULL for unpaid COD orders)
    payment_provider = db.Column(db.String(16), nullable=True)
    payment_transaction_id = db.Column(db.String(128), nullable=True)
    payment_amount_paisa = db.Column(db.Integer, nullable=True)
    payment_currency = db.Column(db.String(3), nullable=True)
    payment_state = db.Column(db.String(16), nullable=True)
    payment_reference_id = db.Column(db.String(128), nullable=True)
    payment_metadata = db.Column(db.JSON, nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    tracking_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("orders", lazy=True))
    discount = db.relationship("Discount")
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    timeline = db.relationship(
        "OrderTimelineEntry",
        backref="order",
        lazy=True,
        order_by="OrderTimelineEntry.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def payment_details(self) -> dict | None:
        if not self.payment_transaction_id:
            return None
        return {
            "transaction_id": self.payment_transaction_id,
            "provider": self.payment_provider,
            "amount_paisa": self.payment_amount_paisa,
            "currency": self.payment_currency,
            "status": self.payment_state,
            "reference_id": self.payment_reference_id,
            "metadata": self.payment_metadata or {},
            "paid_at": to_utc_z(self.paid_at),
        }

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "status": self.status,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "payment_details": self.payment_details(),
            "subtotal_paisa": self.subtotal_paisa,
            "shipping_paisa": self.shipping_paisa,
            "discount": (
                {
                    "discount_id": self.discount_id,
                    "code": self.discount_code,
                    "amount_paisa": self.discount_amount_paisa,
                }
                if self.discount_code
                else None
            ),
            "total_paisa": self.total_paisa,
            "shipping_address": dict(self.shipping_address or {}),
            "tracking_number": self.tracking_number,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["timeline"] = [entry.to_dict() for entry in self.timeline]
        return data


class OrderItem(db.Model):
    """Line snapshot; name, price and image are copied at checkout time."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    name = db.Column(db.String(200), nullable=False)
    price_paisa = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    line_total_paisa = db.Column(db.Integer, nullable=False)
    image = db.Column(db.String(500), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "name": self.name,
            "price_paisa": self.price_paisa,
            "quantity": self.quantity,
            "line_total_paisa": self.line_total_paisa,
            "image": self.image,
        }


class OrderTimelineEntry(db.Model):
    """Append-only order history. Rows are inserted, never updated."""
    __tablename__ = "order_timeline"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(32), nullable=False)
    description = db.Column(db.String(500), nullable=False)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "description": self.description,
            "actor_user_id": self.actor_user_id,
            "timestamp": to_utc_z(self.created_at),
        }


class PendingPayment(db.Model):
    """
    Server-held checkout snapshot created before redirecting to a gateway.

    WHY: the gateway round trip is a plain browser redirect. Keeping the
    priced snapshot here, keyed by a reference we generate and the gateway
    echoes back (eSewa transaction_uuid, Khalti purchase_order_id), means the
    return leg never has to trust item prices supplied by the browser.
    """
    __tablename__ = "pending_payments"
    __table_args__ = (
        db.Index("ix_pending_payments_status_expires", "status", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reference = db.Column(db.String(64), nullable=False, unique=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    provider = db.Column(db.String(16), nullable=False)

    # Khalti pidx (unknown until the initiate call returns)
    gateway_token = db.Column(db.String(128), nullable=True, index=True)

    amount_paisa = db.Column(db.Integer, nullable=False)
    snapshot = db.Column(db.JSON, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending")  # pending, completed, failed, expired
    failure_reason = db.Column(db.String(255), nullable=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "provider": self.provider,
            "gateway_token": self.gateway_token,
            "amount_paisa": self.amount_paisa,
            "status": self.status,
            "failure_reason": self.failure_reason,
            "order_id": self.order_id,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
        }
