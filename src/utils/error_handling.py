"""Custom exceptions and helpers for consistent error responses."""

import json
from typing import Any, Dict


class AppError(Exception):
    """Base class for application errors."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(AppError):
    """Raised when a requested resource is missing."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)


class ValidationError(AppError):
    """Raised when input validation fails."""

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, status_code=422)


class DecodeError(AppError):
    """Payload could not be decoded into an event envelope. Never retried."""

    def __init__(self, message: str = "Malformed event envelope"):
        super().__init__(message, status_code=400)


class UnresolvedIdentityError(AppError):
    """Event carries no usable customer id or email. Never retried."""

    def __init__(self, message: str = "Event must have customer_id or email"):
        super().__init__(message, status_code=422)


class TransientStoreError(AppError):
    """Datastore failed mid-event; the broker is expected to redeliver."""

    def __init__(self, message: str = "Datastore unavailable"):
        super().__init__(message, status_code=503)


class ConfigurationError(AppError):
    """Unrecoverable configuration problem, e.g. an invalid subject pattern."""

    def __init__(self, message: str = "Invalid configuration"):
        super().__init__(message, status_code=500)


def to_response(error: AppError) -> Dict[str, Any]:
    """Convert an AppError into a Lambda proxy integration response."""
    return {
        "statusCode": error.status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps({"message": str(error), "status": "error"}),
    }
