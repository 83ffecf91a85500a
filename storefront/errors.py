"""Error taxonomy shared by every handler.

Each error carries the HTTP status it maps to and a stable ``kind``. The
``message`` is always safe to show to a client; driver or library text only
ever travels in ``detail``.
"""
from __future__ import annotations

from typing import Any, Optional


class StorefrontError(Exception):
    status_code = 500
    kind = "internal"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, detail: Any = None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    def to_error(self) -> dict:
        error: dict = {"kind": self.kind}
        reason = getattr(self, "reason", None)
        if reason:
            error["reason"] = reason
        if self.detail is not None:
            error["detail"] = self.detail
        return error


# 400
class ValidationError(StorefrontError):
    status_code = 400
    kind = "validation"
    default_message = "invalid request"


class InvalidCredentials(ValidationError):
    default_message = "invalid email or password"


# 401
class AuthError(StorefrontError):
    status_code = 401
    kind = "auth"
    reason = "unauthorized"
    default_message = "invalid token"


class MissingToken(AuthError):
    reason = "missing_token"
    default_message = "authorization token is missing"


class MalformedToken(AuthError):
    reason = "malformed_token"
    default_message = "authorization token is malformed"


class BadSignature(AuthError):
    reason = "bad_signature"
    default_message = "authorization token signature is invalid"


class TokenExpired(AuthError):
    reason = "token_expired"
    default_message = "authorization token has expired"


class WrongTokenType(AuthError):
    reason = "wrong_token_type"
    default_message = "wrong kind of token for this operation"


class UnknownSubject(AuthError):
    reason = "unknown_subject"
    default_message = "token subject no longer exists"


# 404
class NotFoundError(StorefrontError):
    status_code = 404
    kind = "not_found"
    default_message = "not found"


class UserNotFound(NotFoundError):
    default_message = "Email does not exist"


class ProductNotFound(NotFoundError):
    default_message = "Product not found"

    def __init__(self, product_id: int, message: Optional[str] = None):
        self.product_id = product_id
        super().__init__(message, detail={"product_id": product_id})


class CartLineNotFound(NotFoundError):
    default_message = "Product is not in your cart"

    def __init__(self, product_id: int, message: Optional[str] = None):
        self.product_id = product_id
        super().__init__(message, detail={"product_id": product_id})


class CartEmpty(NotFoundError):
    default_message = "Your cart is empty"


class OrderNotFound(NotFoundError):
    default_message = "Order not found"


# 400 (stock / cart state)
class ConflictError(StorefrontError):
    status_code = 400
    kind = "conflict"
    default_message = "request conflicts with current state"


class EmptyCart(ConflictError):
    default_message = "Cart is empty"


class CartChanged(ConflictError):
    default_message = "Cart changed while the order was being placed"


class InsufficientStock(ConflictError):
    default_message = "Product out of stock"

    def __init__(self, product_id: int, requested: int, available: int, message: Optional[str] = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            message,
            detail={"product_id": product_id, "requested": requested, "available": available},
        )


# 500
class InternalError(StorefrontError):
    pass


class ConfigurationError(InternalError):
    default_message = "Server is misconfigured"


class CredentialStoreError(InternalError):
    default_message = "Stored credential could not be verified"
