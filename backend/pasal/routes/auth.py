# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/pasal/routes/auth.py
"""
Authentication API routes

- Credentials signup always creates a shopper ("user") account
- Login issues an opaque bearer token (see session_service)
- OAuth providers are handled by the frontend's auth layer; it calls
  /api/auth/oauth server-to-server with the shared bridge secret to
  find-or-create the account and obtain a session token
"""

import hmac

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..services.auth_service import PasswordValidationError
from ..validation import ConflictError, NotFoundError, ValidationError
from ..decorators import require_auth, bearer_token


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _issue_session(user):
    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    return session, token


@auth_bp.post("/register")
def register_route():
    """
    Create a shopper account.

    Request body: {"name", "email", "password"}
    Role is always "user"; any role in the body is ignored.
    """
    try:
        data = request.get_json() or {}
        name = data.get("name")
        email = data.get("email")
        password = data.get("password")

        if not all([name, email, password]):
            return jsonify({"error": "Missing required fields"}), 400

        user = auth_service.register_user(name=name, email=email, password=password)
        current_app.logger.info("Registered user %s", user.id)
        return jsonify({"message": "User registered successfully", "user": user.to_dict()}), 201

    except PasswordValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to register user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Authenticate with email + password and create a session token.

    Token must be sent as "Authorization: Bearer <token>" afterwards.
    """
    try:
        data = request.get_json() or {}
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        user = auth_service.authenticate(email, password)
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = _issue_session(user)
        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "message": "Login successful",
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/oauth")
def oauth_route():
    """
    Find-or-create the account behind an OAuth sign-in.

    Request body: {"provider", "provider_id", "email", "name", "image"}
    Header: X-Auth-Bridge-Secret

    SECURITY: only the frontend's auth layer knows the bridge secret. The
    endpoint is disabled when OAUTH_BRIDGE_SECRET is not configured. An
    existing account's role is never changed here.
    """
    try:
        expected = current_app.config.get("OAUTH_BRIDGE_SECRET")
        if not expected:
            return jsonify({"error": "Not found"}), 404

        supplied = request.headers.get("X-Auth-Bridge-Secret") or ""
        if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
            return jsonify({"error": "Unauthorized"}), 401

        data = request.get_json() or {}
        user, created = auth_service.oauth_sign_in(
            provider=data.get("provider"),
            provider_id=data.get("provider_id"),
            email=data.get("email"),
            name=data.get("name"),
            image=data.get("image"),
        )
        session, token = _issue_session(user)
        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "created": created,
            "message": "Login successful",
        }), 201 if created else 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to complete OAuth sign-in")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke session token (logout).

    WHY: Explicit logout prevents token reuse.
    """
    try:
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authorization header required"}), 401

        if not session_service.revoke_session(token, reason="User logout"):
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@auth_bp.post("/validate")
def validate_route():
    """Validate a session token; lets the frontend drop stale tokens early."""
    try:
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authorization header required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"user": context.user.to_dict(), "message": "Token valid"}), 200

    except Exception:
        current_app.logger.exception("Failed to validate session")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/change-password")
@require_auth
def change_password_route():
    """
    Request body: {"current_password", "new_password"}

    All other sessions of the user are revoked on success.
    """
    try:
        data = request.get_json() or {}
        new_password = data.get("new_password")
        if not new_password:
            return jsonify({"error": "new_password is required"}), 400

        auth_service.change_password(g.current_user.id, data.get("current_password"), new_password)
        session_service.revoke_all_user_sessions(g.current_user.id, reason="Password changed")
        session, token = _issue_session(g.current_user)
        return jsonify({"message": "Password changed successfully", "token": token, "session": session.to_dict()}), 200

    except (PasswordValidationError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to change password")
        return jsonify({"error": "Internal server error"}), 500
