# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .models.auth import ADMIN_ROLES
from .services import session_service


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid session token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.session_context: The full SessionContext object

    Routes pass g.current_user.id into services explicitly; services never
    look the session up themselves.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Unauthorized"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Unauthorized"}), 401

        g.current_user = context.user
        g.session_context = context
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """
    Require one of the given roles. Must be stacked under @require_auth.

    Insufficient role is reported as 401, like a missing session.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None or user.role not in roles:
                return jsonify({"error": "Unauthorized"}), 401
            return f(*args, **kwargs)

        return decorated_function
    return decorator


require_admin = require_role(*ADMIN_ROLES)
