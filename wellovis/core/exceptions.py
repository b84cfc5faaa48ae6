"""Domain exceptions raised by the service layer.

Each exception carries the HTTP status the API layer answers with, so route
handlers can let them propagate to the handler registered in ``main``.
"""

from __future__ import annotations


class DomainError(ValueError):
    """Business rule violation."""

    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFoundError(DomainError):
    status_code = 404


class ConflictError(DomainError):
    status_code = 409


class PermissionDeniedError(DomainError):
    status_code = 403


class PaymentRequiredError(DomainError):
    """Raised when a tenant subscription no longer grants access."""

    status_code = 402


class InsufficientFundsError(ConflictError):
    """Raised when a wallet cannot cover a transfer."""


class InvalidSignatureError(DomainError):
    """Raised when a webhook payload fails signature verification."""


__all__ = [
    "ConflictError",
    "DomainError",
    "InsufficientFundsError",
    "InvalidSignatureError",
    "NotFoundError",
    "PaymentRequiredError",
    "PermissionDeniedError",
]
