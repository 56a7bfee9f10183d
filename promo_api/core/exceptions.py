# promo_api/core/exceptions.py
from __future__ import annotations

from typing import Any, Dict, Optional


class BaseAPIException(Exception):
    """Base exception for all API errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }


class AuthenticationError(BaseAPIException):
    """Authentication failed."""
    def __init__(self, message: str = "Authentication failed", **kwargs):
        super().__init__(message, status_code=401, **kwargs)


class NotFoundError(BaseAPIException):
    """Resource not found."""
    def __init__(self, message: str = "Resource not found", **kwargs):
        super().__init__(message, status_code=404, **kwargs)


class ValidationError(BaseAPIException):
    """Bad or empty promotion-type set, unknown type, or other bad input. Never retried."""
    def __init__(self, message: str = "Validation error", **kwargs):
        super().__init__(message, status_code=422, **kwargs)


class RateLimitError(BaseAPIException):
    """Rate limit exceeded."""
    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[int] = None, **kwargs):
        super().__init__(message, status_code=429, **kwargs)
        self.retry_after = retry_after


class StorageError(BaseAPIException):
    """Read/write/connection failure against the promotion store.

    Retryable by the caller with backoff. Never converted into an empty result.
    """

    retryable = True

    def __init__(self, message: str = "Storage error", **kwargs):
        super().__init__(message, status_code=503, **kwargs)


class StorageTimeoutError(StorageError):
    """A storage call exceeded its caller-supplied timeout."""
    def __init__(self, message: str = "Storage call timed out", **kwargs):
        super().__init__(message, **kwargs)


class PaymentVerificationError(BaseAPIException):
    """A payment notification failed signature or amount checks; activation must not run."""
    def __init__(self, message: str = "Payment verification failed", **kwargs):
        super().__init__(message, status_code=400, **kwargs)


class ServiceUnavailableError(BaseAPIException):
    """A supporting service (Redis) is unreachable."""

    retryable = True

    def __init__(self, message: str = "Service unavailable", **kwargs):
        super().__init__(message, status_code=503, **kwargs)
