# Overview: Service-layer operations for login lockout; failure counting and unlock.

"""
Account Guard (login lockout)

WHY: Prevent brute-force password attacks by limiting consecutive failed
logins per account. After too many failures the account is locked for a
fixed window, regardless of whether later attempts use the right password.

RULES:
- Each failed password check increments User.login_attempts
- Reaching LOGIN_MAX_FAILED_ATTEMPTS sets lock_until = now + lockout window
  and attaches an advisory memo
- While locked, further failures do not change anything
- A lock whose lock_until is in the past counts as unlocked; the next
  failure restarts the count at 1
- A successful login resets the counter and clears the lock
"""

from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import User
from storefront.time_utils import utcnow, to_utc_z
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry


# Defaults; the app config (LOGIN_MAX_FAILED_ATTEMPTS / LOGIN_LOCKOUT_MINUTES) wins
MAX_FAILED_ATTEMPTS = 5
LOCKOUT_DURATION = timedelta(hours=2)

LOCKOUT_MEMO = "Too many failed password attempts / reset your password at login."


def max_failed_attempts() -> int:
    return int(current_app.config.get("LOGIN_MAX_FAILED_ATTEMPTS", MAX_FAILED_ATTEMPTS))


def lockout_duration() -> timedelta:
    minutes = current_app.config.get("LOGIN_LOCKOUT_MINUTES")
    if minutes is None:
        return LOCKOUT_DURATION
    return timedelta(minutes=int(minutes))


def is_locked(user: User) -> bool:
    return user.lock_until is not None and user.lock_until > utcnow()


def _load_user_locked(user_id: int) -> User:
    user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
    if user is None:
        raise ValueError("User not found")
    return user


def record_failure(user_id: int) -> User:
    """
    Record a failed password check and return the refreshed user.

    The read-modify-write runs as a writer (BEGIN IMMEDIATE on SQLite, row
    lock elsewhere) so parallel failures are serialized and each one counts.
    """
    def _op():
        begin_write_transaction()
        user = _load_user_locked(user_id)
        now = utcnow()

        if user.lock_until is not None and user.lock_until <= now:
            # Lock expired naturally: start a fresh count
            user.login_attempts = 1
            user.lock_until = None
        elif user.lock_until is None:
            user.login_attempts = (user.login_attempts or 0) + 1
            if user.login_attempts >= max_failed_attempts():
                user.lock_until = now + lockout_duration()
                if not user.memo or LOCKOUT_MEMO not in user.memo:
                    user.memo = LOCKOUT_MEMO
                current_app.logger.warning(
                    "Account %s locked until %s after %s failed logins",
                    user.id,
                    to_utc_z(user.lock_until),
                    user.login_attempts,
                )
        # else: lock already in effect, nothing changes

        db.session.commit()
        return user

    return run_with_retry(_op)


def _reset_counter(user_id: int, *, login: bool) -> User:
    def _op():
        begin_write_transaction()
        user = _load_user_locked(user_id)
        user.login_attempts = 0
        user.lock_until = None
        if login:
            user.last_login_at = utcnow()
        db.session.commit()
        return user

    return run_with_retry(_op)


def record_success(user_id: int) -> User:
    return _reset_counter(user_id, login=True)


def unlock(user_id: int) -> User:
    """Administrative unlock (CLI); leaves the memo alone."""
    return _reset_counter(user_id, login=False)


def lockout_status(user: User) -> dict:
    """
    Lockout status for display on the login screen.

    Returns dict with:
    - locked: bool
    - login_attempts: int (0 when an old lock has expired)
    - max_attempts: int
    - remaining_attempts: int
    - lock_until: ISO string | None
    """
    locked = is_locked(user)
    attempts = user.login_attempts or 0
    if user.lock_until is not None and not locked:
        attempts = 0
    max_attempts = max_failed_attempts()

    return {
        "locked": locked,
        "login_attempts": attempts,
        "max_attempts": max_attempts,
        "remaining_attempts": 0 if locked else max(0, max_attempts - attempts),
        "lock_until": to_utc_z(user.lock_until) if locked else None,
    }
