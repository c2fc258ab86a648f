"""Custom exceptions for StoreRec.

Defines specific exception types for better error handling and reporting.
Each carries the HTTP status code the API responds with.
"""

from typing import Any, Dict, Iterable, Optional


class StoreRecException(Exception):
    """Base exception for StoreRec errors."""

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


class InvalidAlgorithmError(StoreRecException):
    """Raised when an algorithm name is not one of the supported values."""

    def __init__(self, algorithm: Any, allowed: Iterable[str] = ()):
        allowed = list(allowed)
        message = f"Unknown recommendation algorithm '{algorithm}'"
        if allowed:
            message += f". Expected one of: {', '.join(allowed)}"
        super().__init__(
            message=message,
            status_code=400,
            details={"algorithm": str(algorithm), "allowed": allowed},
        )


class InsufficientDataError(StoreRecException):
    """Raised by a scorer that lacks the history it needs.

    Internal only: the scoring engine catches it and falls back to trending.
    """

    def __init__(self, algorithm: str, user_id: str, reason: str):
        message = f"Not enough data for {algorithm} recommendations for user {user_id}: {reason}"
        super().__init__(
            message=message,
            status_code=500,
            details={"algorithm": algorithm, "user_id": user_id, "reason": reason},
        )


class DataSourceUnavailableError(StoreRecException):
    """Raised when the interaction or catalog source cannot be reached."""

    def __init__(self, operation: str, error: Exception):
        message = f"Interaction data source unavailable during '{operation}': {str(error)}"
        super().__init__(
            message=message,
            status_code=503,
            details={
                "operation": operation,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )


class CacheUnavailableError(StoreRecException):
    """Raised when the recommendation cache store cannot be reached."""

    def __init__(self, operation: str, error: Exception):
        message = f"Recommendation cache unavailable during '{operation}': {str(error)}"
        super().__init__(
            message=message,
            status_code=503,
            details={
                "operation": operation,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )
