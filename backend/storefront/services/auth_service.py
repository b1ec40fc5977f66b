# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Login is the entry point the Account Guard protects. Passwords are
bcrypt-hashed; the login flow consults the guard before and after the
password check so a locked account rejects even the right password.

LOGIN OUTCOMES:
- unknown email        -> AccountNotFoundError (404)
- locked               -> AccountLockedError (423, lock_until + memo)
- inactive             -> AccountInactiveError (403, memo)
- wrong password       -> InvalidCredentialsError (401, attempts + remaining)
                          or AccountLockedError if this failure locked it
- success              -> counters reset, opaque session token issued
"""

import secrets
import string

import bcrypt
from flask import current_app

from ..extensions import db
from ..errors import (
    AccountInactiveError,
    AccountLockedError,
    AccountNotFoundError,
    ConflictError,
    InvalidCredentialsError,
    NotFoundError,
    ValidationError,
)
from ..models import User
from storefront.time_utils import to_utc_z
from . import account_guard_service, session_service


PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 20

RESET_MEMO = "Password was reset. Please change it after logging in."

VALID_ROLES = ("customer", "admin")


def validate_password(password: str) -> None:
    """User-chosen passwords: 8-20 characters."""
    if not isinstance(password, str) or len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if len(password) > PASSWORD_MAX_LENGTH:
        raise ValidationError(f"Password must be at most {PASSWORD_MAX_LENGTH} characters long")


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=int(current_app.config.get("BCRYPT_ROUNDS", 12)))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. A malformed stored hash is a failed
    check, not a server error.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def generate_random_password(length: int = 8) -> str:
    """Letters + digits, at least one of each."""
    alphabet = string.ascii_letters + string.digits
    while True:
        candidate = "".join(secrets.choice(alphabet) for _ in range(length))
        if any(c.isalpha() for c in candidate) and any(c.isdigit() for c in candidate):
            return candidate


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def find_user_by_email(email: str) -> User | None:
    return db.session.query(User).filter_by(email=normalize_email(email)).first()


def create_user(
    email: str,
    password: str,
    name: str,
    phone: str | None = None,
    role: str = "customer",
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises ValidationError for a bad password/role and ConflictError when the
    email is already registered.
    """
    validate_password(password)
    if role not in VALID_ROLES:
        raise ValidationError(f"Invalid role: {role}. Must be one of {list(VALID_ROLES)}")

    email = normalize_email(email)
    if not email or "@" not in email:
        raise ValidationError("A valid email address is required")

    if find_user_by_email(email):
        raise ConflictError("Email is already registered", details={"email": email})

    user = User(
        email=email,
        password_hash=hash_password(password),
        name=name.strip(),
        phone=phone.strip() if phone else None,
        role=role,
        is_active=True,
        login_attempts=0,
    )
    db.session.add(user)
    db.session.commit()
    return user


def _locked_error(user: User, message: str) -> AccountLockedError:
    details = {
        "locked": True,
        "lock_until": to_utc_z(user.lock_until),
        "login_attempts": user.login_attempts,
    }
    if user.memo:
        details["memo"] = user.memo
    return AccountLockedError(message, details=details)


def authenticate(email: str, password: str) -> User:
    """
    Run the guarded password check. Returns the user on success.

    Does not issue a session; see login().
    """
    user = find_user_by_email(email)
    if user is None:
        max_attempts = account_guard_service.max_failed_attempts()
        raise AccountNotFoundError(
            "No account is registered with this email address",
            details={"login_attempts": 0, "remaining_attempts": max_attempts},
        )

    if account_guard_service.is_locked(user):
        raise _locked_error(user, "Account is locked")

    if not user.is_active:
        details = {"memo": user.memo} if user.memo else {}
        raise AccountInactiveError("Account is inactive", details=details)

    if not verify_password(password, user.password_hash):
        user = account_guard_service.record_failure(user.id)
        max_attempts = account_guard_service.max_failed_attempts()

        if account_guard_service.is_locked(user):
            raise _locked_error(
                user,
                f"Account locked after {max_attempts} failed login attempts",
            )

        raise InvalidCredentialsError(
            f"Incorrect password ({user.login_attempts}/{max_attempts})",
            details={
                "login_attempts": user.login_attempts,
                "remaining_attempts": max(0, max_attempts - user.login_attempts),
            },
        )

    return account_guard_service.record_success(user.id)


def login(
    email: str,
    password: str,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[User, str]:
    """Authenticate and issue a session. Returns (user, plaintext_token)."""
    user = authenticate(email, password)
    _session, token = session_service.create_session(
        user_id=user.id,
        user_agent=user_agent,
        ip_address=ip_address,
    )
    return user, token


def reset_password(email: str, name: str, phone: str) -> str:
    """
    Self-service password reset by email + name + phone.

    Clears the lockout and sets the "password was reset" memo.
    Returns the generated plaintext password.
    """
    user = db.session.query(User).filter_by(
        email=normalize_email(email),
        name=(name or "").strip(),
        phone=(phone or "").strip(),
    ).first()

    if user is None:
        raise NotFoundError("No user matches the information provided")

    if not user.is_active:
        raise AccountInactiveError("Account is inactive")

    new_password = generate_random_password()

    user.password_hash = hash_password(new_password)
    user.login_attempts = 0
    user.lock_until = None
    user.memo = RESET_MEMO

    session_service.revoke_all_user_sessions(user.id, reason="Password reset", commit=False)
    db.session.commit()

    return new_password


def change_password(
    user_id: int,
    current_password: str,
    new_password: str,
    *,
    keep_token: str | None = None,
) -> User:
    """
    Change password after verifying the current one.

    Clears reset/lockout memos and revokes every other session.
    """
    user = db.session.query(User).filter_by(id=user_id).first()
    if user is None:
        raise NotFoundError("User not found")

    if not verify_password(current_password or "", user.password_hash):
        raise InvalidCredentialsError("Current password is incorrect")

    validate_password(new_password)

    user.password_hash = hash_password(new_password)
    if user.memo and (RESET_MEMO in user.memo or account_guard_service.LOCKOUT_MEMO in user.memo):
        user.memo = None

    session_service.revoke_all_user_sessions(
        user.id,
        reason="Password changed",
        keep_token=keep_token,
        commit=False,
    )
    db.session.commit()
    return user


# Fields an admin may change on an account; request key -> (attribute, type)
ADMIN_EDITABLE_FIELDS = {
    "name": ("name", str),
    "phone": ("phone", str),
    "role": ("role", str),
    "isActive": ("is_active", bool),
    "memo": ("memo", str),
}


def update_user(user_id: int, changes: dict, *, acting_user_id: int | None = None) -> User:
    """
    Admin edit of an account (name, phone, role, active flag, memo).

    Deactivating an account revokes all of its sessions in the same commit.
    An admin cannot deactivate or demote their own account.
    """
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("No changes supplied")

    user = db.session.query(User).filter_by(id=user_id).first()
    if user is None:
        raise NotFoundError("User not found", details={"user_id": user_id})

    updates = {}
    for key, (attr, expected) in ADMIN_EDITABLE_FIELDS.items():
        snake = "is_active" if key == "isActive" else key
        if key not in changes and snake not in changes:
            continue
        value = changes[key] if key in changes else changes[snake]
        if value is not None and not isinstance(value, expected):
            raise ValidationError(f"{key} must be a {expected.__name__}")
        updates[attr] = value.strip() if isinstance(value, str) else value

    if not updates:
        raise ValidationError(
            "No editable fields supplied",
            details={"allowed": list(ADMIN_EDITABLE_FIELDS)},
        )
    if "role" in updates and updates["role"] not in VALID_ROLES:
        raise ValidationError(f"Invalid role: {updates['role']}. Must be one of {list(VALID_ROLES)}")
    if "name" in updates and not updates["name"]:
        raise ValidationError("name cannot be empty")
    if "is_active" in updates and updates["is_active"] is None:
        raise ValidationError("isActive must be a bool")

    if acting_user_id == user.id and (
        updates.get("is_active") is False or updates.get("role", user.role) != user.role
    ):
        raise ValidationError("You cannot deactivate or change the role of your own account")

    deactivated = user.is_active and updates.get("is_active") is False
    for attr, value in updates.items():
        setattr(user, attr, value)

    if deactivated:
        session_service.revoke_all_user_sessions(user.id, reason="Account deactivated", commit=False)

    db.session.commit()
    current_app.logger.info("User %s updated by %s: %s", user.id, acting_user_id, sorted(updates))
    return user
