# Overview: Service-layer operations for payment verification against the payment gateway.

"""
Payment Verification Service

WHY: Payment must be confirmed before an order is fulfilled. The amount the
gateway actually captured is compared with the amount the server computed
from the cart, never with the amount the client claims.

IMPLEMENTATIONS:
- GatewayPaymentVerifier: asks the Iamport/PortOne REST API. Strongest trust.
- ClientReportedPaymentVerifier: trusts the client's payment status/amount.
  WEAKER TRUST BOUNDARY; only for environments without gateway credentials.
- DenyingPaymentVerifier: rejects every payment (no gateway, no fallback).

build_payment_verifier() picks one from configuration at app start-up.

Every gateway HTTP call carries a timeout. A timeout, transport error,
gateway error code, non-"paid" status or amount mismatch all surface as
PaymentVerificationFailedError with the underlying reason in details.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

from ..errors import (
    AmountMismatchError,
    PaymentNotCompletedError,
    PaymentVerificationFailedError,
)


# Gateway and server amounts may differ by rounding of at most one unit
AMOUNT_TOLERANCE = 1

FALLBACK_CLIENT_REPORTED = "client-reported"
FALLBACK_DENY = "deny"


@dataclass
class VerifiedPayment:
    """Outcome of a successful verification."""
    status: str
    amount: int
    transaction_id: str | None
    verified_by: str
    gateway_status: str | None = None
    paid_at: datetime | None = None


def amounts_match(actual, expected: int) -> bool:
    try:
        return abs(float(actual) - float(expected)) <= AMOUNT_TOLERANCE
    except (TypeError, ValueError):
        return False


def _gateway_paid_at(value) -> datetime | None:
    """Gateway paid_at is a unix timestamp; anything else is ignored (checkout falls back)."""
    if not value or isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


class PaymentVerifier:
    """Interface: confirm that `payment` settles `expected_amount`."""

    name = "abstract"

    def verify(self, payment: dict, expected_amount: int) -> VerifiedPayment:
        raise NotImplementedError


class GatewayPaymentVerifier(PaymentVerifier):
    """
    Iamport (PortOne v1) verification.

    Flow:
    1. POST {base_url}/users/getToken {imp_key, imp_secret} -> access_token
    2. GET  {base_url}/payments/{imp_uid} with Authorization: access_token
    3. status must be "paid" and amount within AMOUNT_TOLERANCE of expected

    The transport argument exists so tests can plug in httpx.MockTransport.
    """

    name = "gateway"

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        *,
        base_url: str = "https://api.iamport.kr",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
        )

    @staticmethod
    def _unwrap(response: httpx.Response, action: str) -> dict:
        try:
            body = response.json()
        except ValueError:
            raise PaymentVerificationFailedError(
                f"Payment gateway returned an invalid response while {action}",
                details={"reason": "invalid_json", "http_status": response.status_code},
            )

        if not isinstance(body, dict):
            raise PaymentVerificationFailedError(
                f"Payment gateway returned an unexpected response while {action}",
                details={"reason": "invalid_response", "http_status": response.status_code},
            )

        if response.status_code >= 400 or body.get("code") != 0:
            raise PaymentVerificationFailedError(
                body.get("message") or f"Payment gateway error while {action}",
                details={
                    "reason": "gateway_error",
                    "http_status": response.status_code,
                    "gateway_code": body.get("code"),
                    "gateway_message": body.get("message"),
                },
            )
        data = body.get("response") or {}
        if not isinstance(data, dict):
            raise PaymentVerificationFailedError(
                f"Payment gateway returned an unexpected response while {action}",
                details={"reason": "invalid_response", "http_status": response.status_code},
            )
        return data

    def get_access_token(self, client: httpx.Client) -> str:
        response = client.post(
            "/users/getToken",
            json={"imp_key": self.api_key, "imp_secret": self.api_secret},
        )
        data = self._unwrap(response, "issuing an access token")
        token = data.get("access_token")
        if not token:
            raise PaymentVerificationFailedError(
                "Payment gateway did not return an access token",
                details={"reason": "missing_access_token"},
            )
        return token

    def get_payment(self, imp_uid: str) -> dict:
        with self._client() as client:
            token = self.get_access_token(client)
            response = client.get(f"/payments/{imp_uid}", headers={"Authorization": token})
            return self._unwrap(response, "looking up the payment")

    def verify(self, payment: dict, expected_amount: int) -> VerifiedPayment:
        transaction_id = payment.get("transaction_id")
        if not transaction_id:
            raise PaymentVerificationFailedError(
                "Payment transaction id is required for gateway verification",
                details={"reason": "missing_transaction_id"},
            )

        try:
            gateway_payment = self.get_payment(transaction_id)
        except httpx.TimeoutException as exc:
            raise PaymentVerificationFailedError(
                "Payment gateway timed out",
                details={"reason": "timeout", "error": str(exc), "transaction_id": transaction_id},
            ) from exc
        except httpx.HTTPError as exc:
            raise PaymentVerificationFailedError(
                "Payment gateway is unreachable",
                details={"reason": "transport_error", "error": str(exc), "transaction_id": transaction_id},
            ) from exc

        status = gateway_payment.get("status")
        if status != "paid":
            raise PaymentVerificationFailedError(
                f"Payment is not paid (status: {status})",
                details={"reason": "not_paid", "gateway_status": status, "transaction_id": transaction_id},
            )

        paid_amount = gateway_payment.get("amount") or 0
        if not amounts_match(paid_amount, expected_amount):
            raise PaymentVerificationFailedError(
                f"Paid amount does not match order amount (paid: {paid_amount}, order: {expected_amount})",
                details={
                    "reason": "amount_mismatch",
                    "paid_amount": paid_amount,
                    "expected_amount": expected_amount,
                    "transaction_id": transaction_id,
                },
            )

        return VerifiedPayment(
            status="completed",
            amount=expected_amount,
            transaction_id=transaction_id,
            verified_by=self.name,
            gateway_status=status,
            paid_at=_gateway_paid_at(gateway_payment.get("paid_at")),
        )


class ClientReportedPaymentVerifier(PaymentVerifier):
    """
    Trust the client's payment.status / payment.amount.

    SECURITY: weaker than gateway verification; a client can claim any
    status. Kept for environments where gateway credentials are absent.
    """

    name = "client-reported"

    def verify(self, payment: dict, expected_amount: int) -> VerifiedPayment:
        if payment.get("status") != "completed":
            raise PaymentNotCompletedError(
                "Payment has not been completed",
                details={"payment_status": payment.get("status")},
            )

        amount = payment.get("amount")
        if amount is not None and not amounts_match(amount, expected_amount):
            raise AmountMismatchError(
                f"Payment amount does not match order amount (paid: {amount}, order: {expected_amount})",
                details={"paid_amount": amount, "expected_amount": expected_amount},
            )

        return VerifiedPayment(
            status="completed",
            amount=expected_amount,
            transaction_id=payment.get("transaction_id"),
            verified_by=self.name,
        )


class DenyingPaymentVerifier(PaymentVerifier):
    """Deny-by-default: no gateway configured and client trust disabled."""

    name = "deny"

    def verify(self, payment: dict, expected_amount: int) -> VerifiedPayment:
        raise PaymentVerificationFailedError(
            "Payment verification is not available",
            details={"reason": "verifier_not_configured"},
        )


def build_payment_verifier(config) -> PaymentVerifier:
    """Select the verifier for an app config mapping."""
    api_key = config.get("IAMPORT_API_KEY")
    api_secret = config.get("IAMPORT_API_SECRET")
    if api_key and api_secret:
        return GatewayPaymentVerifier(
            api_key,
            api_secret,
            base_url=config.get("IAMPORT_BASE_URL", "https://api.iamport.kr"),
            timeout=float(config.get("PAYMENT_GATEWAY_TIMEOUT_SECONDS", 10)),
        )

    mode = config.get("PAYMENT_FALLBACK_MODE", FALLBACK_CLIENT_REPORTED)
    if mode == FALLBACK_DENY:
        return DenyingPaymentVerifier()
    if mode == FALLBACK_CLIENT_REPORTED:
        return ClientReportedPaymentVerifier()
    raise ValueError(f"Unknown PAYMENT_FALLBACK_MODE: {mode!r}")
