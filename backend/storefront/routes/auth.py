# Overview: Flask API routes for user auth; parses input and returns JSON responses.

# backend/storefront/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Account lockout after repeated failed password checks (Account Guard)
- Session management with hashed, expiring bearer tokens
- Password reset/change revoke outstanding sessions
- Admin deactivation revokes every session of the account
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import auth_service
from ..services import session_service
from ..services import account_guard_service
from ..errors import AccountNotFoundError, StorefrontError
from ..decorators import require_admin, require_auth


auth_bp = Blueprint("users", __name__, url_prefix="/api/users")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Returns user info and session token on success.
    Token must be included in Authorization header for protected routes.

    Failure statuses:
    - 404 unknown email
    - 423 account locked (details: lock_until, memo)
    - 403 account inactive
    - 401 wrong password (details: login_attempts, remaining_attempts)
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required", "code": "VALIDATION_ERROR", "details": {}}), 400

        user, token = auth_service.login(
            email,
            password,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        response = {"token": token, "user": user.to_dict()}
        if user.memo:
            response["memo"] = user.memo
        return jsonify(response), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Login failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the current session token."""
    try:
        session_service.revoke_session(g.session_token, reason="User logout")
        return jsonify({"message": "Logged out"}), 200

    except Exception:
        current_app.logger.exception("Logout failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@auth_bp.get("/lockout-status/<string:email>")
def lockout_status_route(email: str):
    """Lockout status for the login screen (attempts, remaining, lock expiry)."""
    try:
        user = auth_service.find_user_by_email(email)
        if user is None:
            raise AccountNotFoundError("No account is registered with this email address")

        return jsonify(account_guard_service.lockout_status(user)), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load lockout status")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/reset-password")
def reset_password_route():
    """
    Self-service reset by email + name + phone.

    Returns the generated password once; the account is unlocked and every
    session revoked.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        name = data.get("name")
        phone = data.get("phone")

        if not all([email, name, phone]):
            return jsonify({"error": "email, name and phone required", "code": "VALIDATION_ERROR", "details": {}}), 400

        new_password = auth_service.reset_password(email, name, phone)

        return jsonify({
            "message": "Password has been reset. Please change it after logging in.",
            "new_password": new_password,
        }), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Password reset failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/me/password")
@require_auth
def change_password_route():
    """Change own password. Other sessions are revoked; this one stays valid."""
    try:
        data = request.get_json(silent=True) or {}
        current_password = data.get("currentPassword", data.get("current_password"))
        new_password = data.get("newPassword", data.get("new_password"))

        if not all([current_password, new_password]):
            return jsonify({
                "error": "currentPassword and newPassword required",
                "code": "VALIDATION_ERROR",
                "details": {},
            }), 400

        auth_service.change_password(
            g.current_user.id,
            current_password,
            new_password,
            keep_token=g.session_token,
        )

        return jsonify({"message": "Password changed"}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Password change failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("")
def signup_route():
    """
    Self-service registration. New accounts are always customers.

    Returns 201 with the created user; log in separately for a token.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")
        name = data.get("name")
        phone = data.get("phone")

        if not all([email, password, name]) or not isinstance(name, str):
            return jsonify({"error": "email, password and name required", "code": "VALIDATION_ERROR", "details": {}}), 400
        if phone is not None and not isinstance(phone, str):
            return jsonify({"error": "phone must be a string", "code": "VALIDATION_ERROR", "details": {}}), 400

        user = auth_service.create_user(email, password, name, phone=phone)
        return jsonify({"user": user.to_dict()}), 201

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Signup failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.patch("/<int:user_id>")
@require_auth
@require_admin
def update_user_route(user_id: int):
    """Admin account edit: name, phone, role, isActive, memo."""
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.update_user(user_id, data, acting_user_id=g.current_user.id)
        return jsonify({"user": user.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update user %s", user_id)
        return jsonify({"error": "Internal server error"}), 500
