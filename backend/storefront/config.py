# backend/storefront/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storefront.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storefront.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # bcrypt cost factor (tests lower it)
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Flat shipping fee added to every order (integer currency units)
    SHIPPING_FEE = int(os.environ.get("SHIPPING_FEE", "3000"))

    # Account lockout
    LOGIN_MAX_FAILED_ATTEMPTS = int(os.environ.get("LOGIN_MAX_FAILED_ATTEMPTS", "5"))
    LOGIN_LOCKOUT_MINUTES = int(os.environ.get("LOGIN_LOCKOUT_MINUTES", "120"))

    # Payment gateway (Iamport / PortOne). Verification is skipped in favour of
    # PAYMENT_FALLBACK_MODE when the key or secret is missing.
    IAMPORT_API_KEY = os.environ.get("IAMPORT_API_KEY")
    IAMPORT_API_SECRET = os.environ.get("IAMPORT_API_SECRETKEY") or os.environ.get("IAMPORT_API_SECRET")
    IAMPORT_BASE_URL = os.environ.get("IAMPORT_BASE_URL", "https://api.iamport.kr")
    PAYMENT_GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("PAYMENT_GATEWAY_TIMEOUT_SECONDS", "10"))

    # "client-reported" trusts the caller's payment status/amount, "deny" rejects
    # every checkout until a gateway is configured.
    PAYMENT_FALLBACK_MODE = os.environ.get("PAYMENT_FALLBACK_MODE", "client-reported")

    # Bearer sessions
    SESSION_LIFETIME_HOURS = int(os.environ.get("SESSION_LIFETIME_HOURS", "24"))
    SESSION_IDLE_MINUTES = int(os.environ.get("SESSION_IDLE_MINUTES", "120"))
    SESSION_RETENTION_DAYS = int(os.environ.get("SESSION_RETENTION_DAYS", "30"))
