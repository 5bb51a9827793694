"""
Error taxonomy for the context server.

Each error carries the numeric code that ends up in the error envelope.
BroadcastDeliveryError is never surfaced to a caller.
"""

from typing import Any, Optional


class ContextServiceError(Exception):
    """Base class for errors that map onto an error envelope."""

    status_code = 500

    def __init__(self, message: str, detail: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ContextValidationError(ContextServiceError):
    status_code = 400


class MissingTokenError(ContextServiceError):
    status_code = 401


class NotFoundError(ContextServiceError):
    status_code = 404


class ConflictError(ContextServiceError):
    status_code = 409


class UnsupportedMediaError(ContextServiceError):
    status_code = 415


class StorageError(ContextServiceError):
    status_code = 500


class BroadcastDeliveryError(Exception):
    """A write to one subscriber failed; the subscriber is dropped."""
