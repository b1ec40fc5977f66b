# Overview: Pytest coverage for login, lockout, sessions and password maintenance.

"""
Account Guard Tests

Verifies:
- Wrong passwords count up and report remaining attempts
- The 5th failure locks the account; even the right password gets 423
- An expired lock lets the right password in and resets the counter
- An expired lock restarts the count at 1 on the next failure
- Unknown / inactive accounts
- Reset and change password clear the lock and revoke sessions
- Parallel failures are all counted
- Signup and admin account edits (deactivation revokes sessions)
"""

import threading
from datetime import timedelta

import pytest

from storefront.errors import AccountLockedError, InvalidCredentialsError
from storefront.extensions import db
from storefront.models import SessionToken, User
from storefront.services import account_guard_service, auth_service, session_service
from storefront.time_utils import utcnow

from conftest import PASSWORD, auth_headers, get_auth_token


def login(client, email, password):
    return client.post('/api/users/login', json={"email": email, "password": password})


def reload_user(db_session, user_id):
    db_session.expire_all()
    return db_session.get(User, user_id)


class TestLockout:

    def test_wrong_password_reports_remaining(self, client, db_session, customer):
        resp = login(client, customer.email, "wrong-password")

        assert resp.status_code == 401
        assert resp.json["code"] == "INVALID_CREDENTIALS"
        assert resp.json["details"] == {"login_attempts": 1, "remaining_attempts": 4}

    def test_fifth_failure_locks_and_correct_password_is_refused(self, client, db_session, customer):
        for _ in range(4):
            assert login(client, customer.email, "wrong-password").status_code == 401

        fifth = login(client, customer.email, "wrong-password")
        assert fifth.status_code == 423
        assert fifth.json["code"] == "ACCOUNT_LOCKED"
        assert fifth.json["details"]["lock_until"] is not None
        assert fifth.json["details"]["memo"] == account_guard_service.LOCKOUT_MEMO

        sixth = login(client, customer.email, PASSWORD)
        assert sixth.status_code == 423

        user = reload_user(db_session, customer.id)
        assert user.login_attempts == 5
        assert user.lock_until > utcnow() + timedelta(minutes=119)

    def test_failures_while_locked_change_nothing(self, client, db_session, customer):
        for _ in range(5):
            login(client, customer.email, "wrong-password")
        lock_until = reload_user(db_session, customer.id).lock_until

        login(client, customer.email, "wrong-password")

        user = reload_user(db_session, customer.id)
        assert user.login_attempts == 5
        assert user.lock_until == lock_until

    def test_expired_lock_allows_login_and_resets(self, client, db_session, customer):
        for _ in range(5):
            login(client, customer.email, "wrong-password")

        user = reload_user(db_session, customer.id)
        user.lock_until = utcnow() - timedelta(seconds=1)
        db_session.commit()

        resp = login(client, customer.email, PASSWORD)

        assert resp.status_code == 200
        assert resp.json["token"]
        user = reload_user(db_session, customer.id)
        assert user.login_attempts == 0
        assert user.lock_until is None
        assert user.last_login_at is not None

    def test_expired_lock_restarts_count(self, db_session, customer):
        user = reload_user(db_session, customer.id)
        user.login_attempts = 5
        user.lock_until = utcnow() - timedelta(minutes=1)
        db_session.commit()

        with pytest.raises(InvalidCredentialsError) as exc_info:
            auth_service.authenticate(customer.email, "wrong-password")

        assert exc_info.value.details["login_attempts"] == 1
        user = reload_user(db_session, customer.id)
        assert user.lock_until is None

    def test_success_resets_counter(self, client, db_session, customer):
        login(client, customer.email, "wrong-password")
        login(client, customer.email, "wrong-password")

        assert login(client, customer.email, PASSWORD).status_code == 200
        assert reload_user(db_session, customer.id).login_attempts == 0

    def test_threshold_comes_from_config(self, app, db_session, customer):
        app.config["LOGIN_MAX_FAILED_ATTEMPTS"] = 2
        try:
            with pytest.raises(InvalidCredentialsError):
                auth_service.authenticate(customer.email, "wrong-password")
            with pytest.raises(AccountLockedError):
                auth_service.authenticate(customer.email, "wrong-password")
        finally:
            app.config["LOGIN_MAX_FAILED_ATTEMPTS"] = 5

    def test_lockout_status_endpoint(self, client, db_session, customer):
        login(client, customer.email, "wrong-password")

        resp = client.get(f'/api/users/lockout-status/{customer.email}')

        assert resp.status_code == 200
        assert resp.json["locked"] is False
        assert resp.json["login_attempts"] == 1
        assert resp.json["remaining_attempts"] == 4

        assert client.get('/api/users/lockout-status/nobody@example.com').status_code == 404

    def test_cli_style_unlock(self, client, db_session, customer):
        for _ in range(5):
            login(client, customer.email, "wrong-password")

        account_guard_service.unlock(customer.id)

        assert login(client, customer.email, PASSWORD).status_code == 200


class TestLoginOutcomes:

    def test_unknown_email(self, client, db_session):
        resp = login(client, "ghost@example.com", PASSWORD)

        assert resp.status_code == 404
        assert resp.json["code"] == "ACCOUNT_NOT_FOUND"

    def test_inactive_account(self, client, db_session, customer):
        customer.is_active = False
        db_session.commit()

        resp = login(client, customer.email, PASSWORD)

        assert resp.status_code == 403
        assert resp.json["code"] == "ACCOUNT_INACTIVE"

    def test_missing_fields(self, client, db_session):
        assert client.post('/api/users/login', json={"email": "a@b.c"}).status_code == 400

    def test_email_is_case_insensitive(self, client, db_session, customer):
        assert login(client, customer.email.upper(), PASSWORD).status_code == 200

    def test_logout_revokes_token(self, client, db_session, customer):
        headers = auth_headers(get_auth_token(client, customer.email))

        assert client.post('/api/users/logout', headers=headers).status_code == 200
        assert client.get('/api/users/me', headers=headers).status_code == 401


class TestSessions:

    def test_idle_session_is_rejected(self, db_session, customer):
        session, token = session_service.create_session(customer.id)
        session.last_used_at = utcnow() - session_service.idle_timeout() - timedelta(minutes=1)
        db_session.commit()

        assert session_service.validate_session(token) is None
        db_session.expire_all()
        assert db_session.get(SessionToken, session.id).is_revoked is True

    def test_expired_session_is_rejected(self, db_session, customer):
        session, token = session_service.create_session(customer.id)
        session.expires_at = utcnow() - timedelta(seconds=1)
        db_session.commit()

        assert session_service.validate_session(token) is None

    def test_deactivated_user_session_is_rejected(self, db_session, customer):
        _session, token = session_service.create_session(customer.id)
        customer.is_active = False
        db_session.commit()

        assert session_service.validate_session(token) is None


class TestPasswordMaintenance:

    def test_reset_password_unlocks_and_revokes(self, client, db_session, customer):
        old_headers = auth_headers(get_auth_token(client, customer.email))
        for _ in range(5):
            login(client, customer.email, "wrong-password")

        resp = client.post('/api/users/reset-password', json={
            "email": customer.email,
            "name": "Kim Minji",
            "phone": "010-1111-2222",
        })

        assert resp.status_code == 200
        new_password = resp.json["new_password"]
        assert len(new_password) == 8

        user = reload_user(db_session, customer.id)
        assert user.lock_until is None
        assert user.login_attempts == 0
        assert user.memo == auth_service.RESET_MEMO

        assert client.get('/api/users/me', headers=old_headers).status_code == 401
        assert login(client, customer.email, new_password).status_code == 200

    def test_reset_password_requires_matching_identity(self, client, db_session, customer):
        resp = client.post('/api/users/reset-password', json={
            "email": customer.email,
            "name": "Somebody Else",
            "phone": "010-1111-2222",
        })
        assert resp.status_code == 404

    def test_change_password(self, client, db_session, customer):
        token = get_auth_token(client, customer.email)
        other_token = get_auth_token(client, customer.email)
        headers = auth_headers(token)

        resp = client.post('/api/users/me/password', json={
            "currentPassword": PASSWORD,
            "newPassword": "NewPassword9",
        }, headers=headers)

        assert resp.status_code == 200
        assert client.get('/api/users/me', headers=headers).status_code == 200
        assert client.get('/api/users/me', headers=auth_headers(other_token)).status_code == 401
        assert login(client, customer.email, "NewPassword9").status_code == 200

    def test_change_password_wrong_current(self, client, db_session, customer):
        headers = auth_headers(get_auth_token(client, customer.email))

        resp = client.post('/api/users/me/password', json={
            "currentPassword": "not-it",
            "newPassword": "NewPassword9",
        }, headers=headers)

        assert resp.status_code == 401

    def test_change_password_too_short(self, client, db_session, customer):
        headers = auth_headers(get_auth_token(client, customer.email))

        resp = client.post('/api/users/me/password', json={
            "currentPassword": PASSWORD,
            "newPassword": "short",
        }, headers=headers)

        assert resp.status_code == 400


class TestParallelFailures:

    THREADS = 12

    def _seed_user(self, app):
        with app.app_context():
            user = User(
                email="target@example.com",
                password_hash=auth_service.hash_password(PASSWORD),
                name="Target",
            )
            db.session.add(user)
            db.session.commit()
            return user.id

    def _fail_in_parallel(self, app, user_id):
        barrier = threading.Barrier(self.THREADS)
        errors = []
        lock = threading.Lock()

        def fail():
            with app.app_context():
                barrier.wait()
                try:
                    account_guard_service.record_failure(user_id)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=fail) for _ in range(self.THREADS)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)
        return errors

    def test_every_parallel_failure_is_counted(self, file_app):
        file_app.config["LOGIN_MAX_FAILED_ATTEMPTS"] = 100
        user_id = self._seed_user(file_app)

        errors = self._fail_in_parallel(file_app, user_id)

        assert errors == []
        with file_app.app_context():
            user = db.session.get(User, user_id)
            assert user.login_attempts == self.THREADS
            assert user.lock_until is None

    def test_parallel_failures_still_lock_at_threshold(self, file_app):
        user_id = self._seed_user(file_app)

        errors = self._fail_in_parallel(file_app, user_id)

        assert errors == []
        with file_app.app_context():
            user = db.session.get(User, user_id)
            assert user.login_attempts == 5
            assert user.lock_until is not None


class TestAccounts:

    def test_signup_creates_customer(self, client, db_session):
        resp = client.post('/api/users', json={
            "email": "New@Example.com",
            "password": "Password123",
            "name": "Park Jisoo",
            "phone": "010-5555-6666",
            "role": "admin",
        })

        assert resp.status_code == 201
        assert resp.json["user"]["email"] == "new@example.com"
        assert resp.json["user"]["role"] == "customer"
        assert login(client, "new@example.com", "Password123").status_code == 200

    def test_signup_duplicate_email(self, client, db_session, customer):
        resp = client.post('/api/users', json={
            "email": customer.email,
            "password": "Password123",
            "name": "Copy",
        })

        assert resp.status_code == 409

    def test_signup_requires_fields(self, client, db_session):
        resp = client.post('/api/users', json={"email": "x@example.com", "password": "Password123"})
        assert resp.status_code == 400

    def test_admin_deactivation_blocks_login_and_revokes_sessions(self, client, db_session, customer, admin_headers):
        customer_headers = auth_headers(get_auth_token(client, customer.email))

        resp = client.patch(f'/api/users/{customer.id}', json={"isActive": False}, headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json["user"]["is_active"] is False
        assert client.get('/api/users/me', headers=customer_headers).status_code == 401

        blocked = login(client, customer.email, PASSWORD)
        assert blocked.status_code == 403
        assert blocked.json["code"] == "ACCOUNT_INACTIVE"

    def test_admin_can_change_role(self, client, db_session, customer, admin_headers):
        resp = client.patch(f'/api/users/{customer.id}', json={"role": "admin"}, headers=admin_headers)

        assert resp.status_code == 200
        assert reload_user(db_session, customer.id).role == "admin"

    def test_admin_edit_rejects_bad_values(self, client, db_session, customer, admin_headers):
        assert client.patch(f'/api/users/{customer.id}', json={"role": "owner"}, headers=admin_headers).status_code == 400
        assert client.patch(f'/api/users/{customer.id}', json={"isActive": "no"}, headers=admin_headers).status_code == 400
        assert client.patch(f'/api/users/{customer.id}', json={}, headers=admin_headers).status_code == 400
        assert client.patch('/api/users/99999', json={"name": "X"}, headers=admin_headers).status_code == 404

    def test_admin_cannot_deactivate_self(self, client, db_session, admin, admin_headers):
        resp = client.patch(f'/api/users/{admin.id}', json={"isActive": False}, headers=admin_headers)
        assert resp.status_code == 400

    def test_customer_cannot_edit_accounts(self, client, db_session, customer, other_customer):
        headers = auth_headers(get_auth_token(client, customer.email))

        resp = client.patch(f'/api/users/{other_customer.id}', json={"isActive": False}, headers=headers)

        assert resp.status_code == 403
