"""
Custom Exceptions for Subscribe & Save

Hierarchical exception classes for proper error handling across layers.
Domain code raises these; services turn the user-facing ones into
ActionResult failures and the API maps the rest to status codes.
"""

from typing import Optional, Dict, Any


class SubscribeSaveError(Exception):
    """Base exception for all Subscribe & Save errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class ValidationError(SubscribeSaveError):
    """Raised when input validation fails."""
    pass


class OwnershipError(SubscribeSaveError):
    """Raised when the acting identity does not own the subscription."""
    pass


class StateConflictError(SubscribeSaveError):
    """Raised when an operation is not allowed from the current status."""

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        details = {}
        if current_status:
            details["current_status"] = current_status
        if operation:
            details["operation"] = operation
        super().__init__(message, details)


class DatabaseError(SubscribeSaveError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


class NotFoundError(DatabaseError):
    """Raised when a requested resource is not found."""
    pass


class ConfigurationError(SubscribeSaveError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)
