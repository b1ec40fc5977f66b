# Overview: Business-rule exception taxonomy shared by services and routes.

"""
Storefront error taxonomy.

Every business-rule failure raised by a service is a StorefrontError. Routes
translate it into a JSON body and its status_code; anything that is not a
StorefrontError is unexpected and becomes a logged 500.

The details dict carries the structured context a caller needs to react
(current stock, remaining login attempts, lock expiry, existing order).
"""

from __future__ import annotations


class StorefrontError(Exception):
    """Base class for typed, non-fatal business failures."""
    status_code = 400
    code = "ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


# =============================================================================
# 400 - VALIDATION
# =============================================================================

class ValidationError(StorefrontError):
    """400-level input problem."""
    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    code = "INVALID_QUANTITY"


class EmptyCartError(ValidationError):
    code = "EMPTY_CART"


class OutOfStockError(ValidationError):
    code = "OUT_OF_STOCK"


class PaymentNotCompletedError(ValidationError):
    code = "PAYMENT_NOT_COMPLETED"


class AmountMismatchError(ValidationError):
    code = "AMOUNT_MISMATCH"


class CancellationNotAllowedError(ValidationError):
    code = "CANCELLATION_NOT_ALLOWED"


class InvalidStatusTransitionError(ValidationError):
    code = "INVALID_STATUS_TRANSITION"


class InsufficientStockError(StorefrontError):
    """Requested quantity exceeds stock. details always carry the current stock."""
    status_code = 400
    code = "INSUFFICIENT_STOCK"


class PaymentVerificationFailedError(StorefrontError):
    """Gateway could not confirm the payment (error, timeout, mismatch, not paid)."""
    status_code = 400
    code = "PAYMENT_VERIFICATION_FAILED"


# =============================================================================
# 401 / 403 / 404
# =============================================================================

class AuthenticationError(StorefrontError):
    status_code = 401
    code = "AUTHENTICATION_FAILED"


class InvalidCredentialsError(AuthenticationError):
    code = "INVALID_CREDENTIALS"


class ForbiddenError(StorefrontError):
    status_code = 403
    code = "FORBIDDEN"


class AccountInactiveError(ForbiddenError):
    code = "ACCOUNT_INACTIVE"


class NotFoundError(StorefrontError):
    status_code = 404
    code = "NOT_FOUND"


class AccountNotFoundError(NotFoundError):
    code = "ACCOUNT_NOT_FOUND"


# =============================================================================
# 409 / 423
# =============================================================================

class ConflictError(StorefrontError):
    """409-level business rule conflict (e.g., duplicate transaction id)."""
    status_code = 409
    code = "CONFLICT"


class DuplicateOrderError(ConflictError):
    """An order already exists for this payment transaction id."""
    code = "DUPLICATE_REQUEST"


class CartChangedError(ConflictError):
    code = "CART_CHANGED"


class LockedError(StorefrontError):
    status_code = 423
    code = "LOCKED"


class AccountLockedError(LockedError):
    code = "ACCOUNT_LOCKED"
