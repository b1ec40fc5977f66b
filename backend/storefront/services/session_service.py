# Overview: Service-layer operations for session tokens; issue, verify and revoke.

"""
Session Tokens

The order and cart endpoints only ever see a verified User: the bearer token
is looked up by its SHA-256 digest, checked against the absolute and idle
lifetimes, and refreshed on use. The plaintext token exists only in the login
response.

Lifetimes come from SESSION_LIFETIME_HOURS and SESSION_IDLE_MINUTES.
Sessions die on logout, on password reset/change, or when the owning account
is deactivated.
"""

import hashlib
import secrets
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from storefront.time_utils import utcnow


DEFAULT_LIFETIME_HOURS = 24
DEFAULT_IDLE_MINUTES = 120
DEFAULT_RETENTION_DAYS = 30

TOKEN_BYTES = 32


def lifetime() -> timedelta:
    return timedelta(hours=int(current_app.config.get("SESSION_LIFETIME_HOURS", DEFAULT_LIFETIME_HOURS)))


def idle_timeout() -> timedelta:
    return timedelta(minutes=int(current_app.config.get("SESSION_IDLE_MINUTES", DEFAULT_IDLE_MINUTES)))


def hash_token(token: str) -> str:
    # Tokens are high-entropy, so a plain digest is enough (no bcrypt)
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _find_live(token: str) -> SessionToken | None:
    if not token:
        return None
    return db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Issue a session for user_id.

    Returns (session_row, plaintext_token); only the digest is persisted.
    """
    if db.session.get(User, user_id) is None:
        raise ValueError(f"User {user_id} does not exist")

    token = secrets.token_hex(TOKEN_BYTES)
    issued_at = utcnow()

    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(token),
        created_at=issued_at,
        last_used_at=issued_at,
        expires_at=issued_at + lifetime(),
        user_agent=(user_agent or "")[:512] or None,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()

    return session, token


def validate_session(token: str) -> User | None:
    """
    Resolve a bearer token to its active User, or None.

    An idle session, or one whose account was deactivated, is revoked on the
    spot so it cannot come back once the clock or the account changes.
    """
    session = _find_live(token)
    if session is None:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None

    if now - session.last_used_at > idle_timeout():
        _revoke(session, "Idle timeout")
        db.session.commit()
        return None

    user = session.user
    if user is None or not user.is_active:
        _revoke(session, "Account deactivated")
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()
    return user


def revoke_session(token: str, reason: str = "User logout") -> bool:
    session = _find_live(token)
    if session is None:
        return False

    _revoke(session, reason)
    db.session.commit()
    return True


def revoke_all_user_sessions(
    user_id: int,
    reason: str,
    *,
    keep_token: str | None = None,
    commit: bool = True,
) -> int:
    """
    Revoke every live session of user_id except keep_token's.

    commit=False lets a password reset revoke inside its own transaction.
    """
    query = db.session.query(SessionToken).filter_by(user_id=user_id, is_revoked=False)
    if keep_token:
        query = query.filter(SessionToken.token_hash != hash_token(keep_token))

    sessions = query.all()
    for session in sessions:
        _revoke(session, reason)

    if commit:
        db.session.commit()
    return len(sessions)


def cleanup_expired_sessions() -> int:
    """Delete dead sessions (expired or revoked) older than SESSION_RETENTION_DAYS."""
    now = utcnow()
    retention = int(current_app.config.get("SESSION_RETENTION_DAYS", DEFAULT_RETENTION_DAYS))

    deleted = db.session.query(SessionToken).filter(
        db.or_(
            SessionToken.expires_at < now,
            SessionToken.is_revoked.is_(True),
        ),
        SessionToken.created_at < now - timedelta(days=retention),
    ).delete(synchronize_session=False)

    db.session.commit()
    return deleted
