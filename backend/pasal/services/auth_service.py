# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every account action must be attributable. Uses bcrypt for secure
password hashing and validates password strength.

ACCOUNT SOURCES:
- Credentials signup (register_user) always creates role "user"
- OAuth sign-in (oauth_sign_in) creates role "user" on first sight and
  merges provider fields into an existing account on later sign-ins
- Back-office accounts are created with the CLI (create_user with a role)

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower, digit and special char required
- Session tokens managed separately (see session_service.py)
- An existing account's role is never changed by signing in again
"""

import bcrypt
import re

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User
from ..models.auth import ROLE_USER, VALID_ROLES, PROVIDER_CREDENTIALS, VALID_PROVIDERS
from ..validation import ValidationError, ConflictError, NotFoundError
from pasal.time_utils import utcnow


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str | None) -> bool:
    """
    Verify password against bcrypt hash.

    OAuth-only accounts have no hash and never match.
    """
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def normalize_email(email: str | None) -> str:
    value = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(value):
        raise ValidationError("A valid email address is required")
    return value


def _normalize_name(name: str | None) -> str:
    value = (name or "").strip()
    if len(value) < 2:
        raise ValidationError("Name must be at least 2 characters")
    if len(value) > 100:
        raise ValidationError("Name cannot exceed 100 characters")
    return value


def create_user(
    name: str,
    email: str,
    password: str,
    role: str = ROLE_USER,
) -> User:
    """
    Create a credentials account with a bcrypt password hash.

    Raises:
        ValidationError: bad name/email/role
        PasswordValidationError: weak password
        ConflictError: email already registered
    """
    if role not in VALID_ROLES:
        raise ValidationError(f"role must be one of {', '.join(VALID_ROLES)}")

    email = normalize_email(email)
    name = _normalize_name(name)
    password_hash = hash_password(password)

    if db.session.query(User).filter_by(email=email).first():
        raise ConflictError("User already exists")

    user = User(
        name=name,
        email=email,
        password_hash=password_hash,
        role=role,
        provider=PROVIDER_CREDENTIALS,
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("User already exists")
    return user


def register_user(name: str, email: str, password: str) -> User:
    """Storefront self-registration. Always creates a shopper account."""
    return create_user(name=name, email=email, password=password, role=ROLE_USER)


def authenticate(email: str, password: str) -> User | None:
    """
    Authenticate a credentials account.

    Returns User if credentials valid and account active, None otherwise.
    """
    try:
        email = normalize_email(email)
    except ValidationError:
        return None

    user = db.session.query(User).filter_by(email=email).first()
    if not user or not user.is_active:
        return None

    if not verify_password(password, user.password_hash):
        return None

    return user


def oauth_sign_in(
    *,
    provider: str,
    provider_id: str,
    email: str,
    name: str | None = None,
    image: str | None = None,
) -> tuple[User, bool]:
    """
    Find-or-create the account behind an OAuth sign-in.

    Lookup order: (provider, provider_id), then email. A new account gets
    role "user". For an existing account the role is left exactly as stored;
    only missing provider fields and profile image are filled in.

    Returns (user, created).
    """
    if provider not in VALID_PROVIDERS or provider == PROVIDER_CREDENTIALS:
        raise ValidationError("Unsupported OAuth provider")
    if not provider_id:
        raise ValidationError("provider_id is required")
    email = normalize_email(email)

    user = db.session.query(User).filter_by(provider=provider, provider_id=str(provider_id)).first()
    if user is None:
        user = db.session.query(User).filter_by(email=email).first()

    now = utcnow()

    if user is None:
        user = User(
            name=(name or email.split("@")[0]).strip()[:100],
            email=email,
            image=image,
            role=ROLE_USER,
            provider=provider,
            provider_id=str(provider_id),
            email_verified_at=now,
        )
        db.session.add(user)
        db.session.commit()
        return user, True

    if not user.is_active:
        raise ValidationError("User account is deactivated")

    # Merge provider details; role deliberately untouched
    if not user.provider_id:
        user.provider = provider
        user.provider_id = str(provider_id)
    if image and not user.image:
        user.image = image
    if user.email_verified_at is None:
        user.email_verified_at = now
    db.session.commit()
    return user, False


def change_password(user_id: int, current_password: str, new_password: str) -> None:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    if user.password_hash and not verify_password(current_password or "", user.password_hash):
        raise ValidationError("Current password is incorrect")
    user.password_hash = hash_password(new_password)
    db.session.commit()
