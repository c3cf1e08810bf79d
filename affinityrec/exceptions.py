"""Custom exceptions for AffinityRec.

Defines specific exception types for better error handling and reporting.
Each exception carries the HTTP status code the API layer responds with.
"""

from typing import Any, Dict, Optional


class AffinityRecError(Exception):
    """Base exception for AffinityRec errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize exception.

        Args:
            message: Human-readable error message
            status_code: HTTP status code for API responses
            details: Additional error details for debugging
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class InvalidFeedbackError(AffinityRecError):
    """Raised when feedback input fails validation."""

    def __init__(self, field: str, value: Any, reason: str):
        message = f"Invalid feedback field '{field}': {reason}"
        super().__init__(
            message=message,
            status_code=422,
            details={"field": field, "value": repr(value), "reason": reason},
        )
        self.field = field


class ItemNotFoundError(AffinityRecError):
    """Raised when feedback references an item missing from the catalog."""

    def __init__(self, item_id: str):
        message = f"Item '{item_id}' not found in catalog."
        super().__init__(
            message=message,
            status_code=404,
            details={"item_id": item_id},
        )


class AffinityStoreError(AffinityRecError):
    """Raised when the affinity store cannot serve a request."""

    def __init__(self, operation: str, error: Optional[Exception] = None):
        message = f"Affinity store unavailable during '{operation}'"
        details: Dict[str, Any] = {"operation": operation}
        if error is not None:
            message = f"{message}: {error}"
            details["error"] = str(error)
            details["error_type"] = type(error).__name__
        super().__init__(message=message, status_code=503, details=details)


class RecommendationTimeoutError(AffinityRecError):
    """Raised when strategy scoring does not finish before the deadline."""

    def __init__(self, user_id: str, timeout_seconds: float):
        message = (
            f"Recommendation scoring for user {user_id} exceeded "
            f"{timeout_seconds:.2f}s deadline"
        )
        super().__init__(
            message=message,
            status_code=504,
            details={"user_id": user_id, "timeout_seconds": timeout_seconds},
        )
