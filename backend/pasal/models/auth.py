from __future__ import annotations

from ..extensions import db
from pasal.time_utils import to_utc_z, utcnow


ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLE_SUPERADMIN = "superadmin"
VALID_ROLES = (ROLE_USER, ROLE_ADMIN, ROLE_SUPERADMIN)
ADMIN_ROLES = (ROLE_ADMIN, ROLE_SUPERADMIN)

PROVIDER_CREDENTIALS = "credentials"
PROVIDER_GOOGLE = "google"
PROVIDER_FACEBOOK = "facebook"
VALID_PROVIDERS = (PROVIDER_CREDENTIALS, PROVIDER_GOOGLE, PROVIDER_FACEBOOK)

# Storefront notification switches and their defaults for new accounts
DEFAULT_NOTIFICATION_PREFERENCES = {
    "email": True,
    "marketing": False,
    "order_updates": True,
    "new_products": False,
    "wishlist_reminders": True,
    "price_drop_alerts": False,
    "stock_alerts": True,
    "review_reminders": True,
}


def _default_notification_preferences() -> dict:
    return dict(DEFAULT_NOTIFICATION_PREFERENCES)


class User(db.Model):
    """
    Storefront shopper or back-office account.

    The role is chosen when the account is created (signup, OAuth first
    sign-in, the admin CLI or /api/admin/users). Afterwards only a superadmin
    changes it, through user_admin_service. Re-authenticating through an OAuth
    provider merges provider fields but never touches the role.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_provider", "provider", "provider_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)

    # Bcrypt hashed password; NULL for OAuth-only accounts
    password_hash = db.Column(db.String(255), nullable=True)

    image = db.Column(db.String(500), nullable=True)
    phone = db.Column(db.String(20), nullable=True)

    role = db.Column(db.String(16), nullable=False, default=ROLE_USER, index=True)
    provider = db.Column(db.String(16), nullable=False, default=PROVIDER_CREDENTIALS)
    provider_id = db.Column(db.String(255), nullable=True)
    email_verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notification_preferences = db.Column(
        db.JSON, nullable=False, default=_default_notification_preferences
    )
    vendor_profile = db.Column(db.JSON, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    addresses = db.relationship(
        "Address",
        backref="user",
        lazy=True,
        order_by="Address.id",
        cascade="all, delete-orphan",
    )

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "image": self.image,
            "phone": self.phone,
            "role": self.role,
            "provider": self.provider,
            "email_verified_at": to_utc_z(self.email_verified_at),
            "notification_preferences": dict(self.notification_preferences or {}),
            "vendor_profile": self.vendor_profile,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "last_login_at": to_utc_z(self.last_login_at),
        }


class Address(db.Model):
    """
    Saved delivery address.

    INVARIANT: at most one row per user has is_default = True. Writers go
    through address_service, which locks the owning user row first.
    """
    __tablename__ = "addresses"
    __table_args__ = (
        db.Index("ix_addresses_user_default", "user_id", "is_default"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    full_name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(10), nullable=False)
    alternate_phone = db.Column(db.String(10), nullable=True)
    address = db.Column(db.String(500), nullable=True)
    locality = db.Column(db.String(100), nullable=True)
    district = db.Column(db.String(100), nullable=True)
    province = db.Column(db.String(100), nullable=True)
    postal_code = db.Column(db.String(5), nullable=True)
    landmark = db.Column(db.String(200), nullable=True)
    address_type = db.Column(db.String(16), nullable=False, default="home")
    lat = db.Column(db.Float, nullable=True)
    lng = db.Column(db.Float, nullable=True)
    delivery_instructions = db.Column(db.String(500), nullable=True)

    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_shipping_snapshot(self) -> dict:
        """Copy stored on the order so later address edits do not rewrite history."""
        return {
            "full_name": self.full_name,
            "address": self.address or self.locality or "",
            "city": self.district or self.locality or "",
            "province": self.province or "",
            "postal_code": self.postal_code or "",
            "phone": self.phone,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "phone": self.phone,
            "alternate_phone": self.alternate_phone,
            "address": self.address,
            "locality": self.locality,
            "district": self.district,
            "province": self.province,
            "postal_code": self.postal_code,
            "landmark": self.landmark,
            "address_type": self.address_type,
            "coordinates": (
                {"lat": self.lat, "lng": self.lng}
                if self.lat is not None and self.lng is not None
                else None
            ),
            "delivery_instructions": self.delivery_instructions,
            "is_default": self.is_default,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SessionToken(db.Model):
    """
    Secure session token management.

    WHY: Stateless auth tokens with timeout and revocation support.
    Tokens are cryptographically secure random strings (32 bytes = 64 hex chars).

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - 24-hour absolute timeout
    - 2-hour idle timeout
    - Revocable on logout
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)  # IPv6 max length

    user = db.relationship("User", backref=db.backref("sessions", lazy=True, cascade="all, delete-orphan"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
