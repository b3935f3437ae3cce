"""
LocalBlob Exception Hierarchy

Error kinds shared by every layer of the storage engine. Each concrete error
carries a machine-readable code, an HTTP-equivalent status and a kind so that
callers can branch on the kind without inspecting status codes.

Author: LocalBlob Team
Date: 2026-10-17
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Error taxonomy surfaced to callers."""
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    PRECONDITION_FAILED = "precondition_failed"
    AUTHORIZATION_FAILED = "authorization_failed"
    INVALID_ARGUMENT = "invalid_argument"
    TRANSIENT = "transient"


class BlobStorageError(Exception):
    """
    Base exception for all LocalBlob errors.
    
    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., 'BlobNotFound')
        details: Additional context (resource names, expected/actual values)
    """
    
    error_code: str = "InternalError"
    status_code: int = 500
    kind: ErrorKind = ErrorKind.TRANSIENT
    
    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.error_code
        self.details = details or {}
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for API responses."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            }
        }


# ========== Kind Base Classes ==========

class ResourceNotFoundError(BlobStorageError):
    """A container, blob, snapshot or copy operation does not exist."""
    error_code = "ResourceNotFound"
    status_code = 404
    kind = ErrorKind.NOT_FOUND


class ResourceConflictError(BlobStorageError):
    """The resource is in a state that conflicts with the request."""
    error_code = "ResourceConflict"
    status_code = 409
    kind = ErrorKind.CONFLICT


class PreconditionFailedError(BlobStorageError):
    """
    An access condition was not met.
    
    The expected and actual values are kept in ``details`` so the caller can
    retry with corrected arguments.
    """
    error_code = "ConditionNotMet"
    status_code = 412
    kind = ErrorKind.PRECONDITION_FAILED
    
    def __init__(
        self,
        message: str,
        expected: Any = None,
        actual: Any = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = dict(details or {})
        if expected is not None:
            details["expected"] = expected
        if actual is not None:
            details["actual"] = actual
        super().__init__(message, error_code=error_code, details=details)


class AuthorizationFailedError(BlobStorageError):
    """The request's credentials do not authorize the operation."""
    error_code = "AuthorizationFailure"
    status_code = 403
    kind = ErrorKind.AUTHORIZATION_FAILED


class InvalidArgumentError(BlobStorageError):
    """A request argument is malformed or out of range."""
    error_code = "InvalidInput"
    status_code = 400
    kind = ErrorKind.INVALID_ARGUMENT


class TransientError(BlobStorageError):
    """A temporary failure; the request may succeed if retried."""
    error_code = "ServiceUnavailable"
    status_code = 503
    kind = ErrorKind.TRANSIENT


class ServerBusyError(TransientError):
    """The service is throttling requests."""
    error_code = "ServerBusy"
    status_code = 503


class OperationTimeoutError(TransientError):
    """The operation did not complete within the caller's timeout."""
    error_code = "OperationTimedOut"
    status_code = 500
    
    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(
            f"Operation '{operation}' timed out after {timeout_seconds}s",
            details={"operation": operation, "timeout_seconds": timeout_seconds},
        )


def is_transient_error(error: Exception) -> bool:
    """
    Determine if an error is transient and may succeed on retry.
    
    Args:
        error: Exception to check
        
    Returns:
        True if error is transient
    """
    return isinstance(error, BlobStorageError) and error.kind == ErrorKind.TRANSIENT
