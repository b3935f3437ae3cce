"""
Shared access signature exceptions for LocalBlob.

Author: LocalBlob Team
Date: 2026-10-17
"""

from localblob.exceptions import AuthorizationFailedError


class SASValidationError(AuthorizationFailedError):
    """Base exception for SAS validation failures."""
    
    error_code = "AuthenticationFailed"
    decision = "bad_signature"


class SASBadSignatureError(SASValidationError):
    """Raised when the token is malformed or its signature does not verify."""
    
    def __init__(self, message: str = "Signature did not match"):
        super().__init__(message)


class SASExpiredError(SASValidationError):
    """Raised when the token is used at or after its expiry time."""
    decision = "expired"
    
    def __init__(self, message: str = "Signed expiry time has passed"):
        super().__init__(message)


class SASNotYetValidError(SASValidationError):
    """Raised when the token is used before its start time."""
    decision = "not_yet_valid"
    
    def __init__(self, message: str = "Signed start time is in the future"):
        super().__init__(message)


class SASPermissionDeniedError(SASValidationError):
    """Raised when the token does not grant the operation on the resource."""
    error_code = "AuthorizationPermissionMismatch"
    decision = "permission_denied"
    
    def __init__(self, message: str = "This request is not authorized to perform this operation"):
        super().__init__(message)


class SASPolicyRevokedError(SASValidationError):
    """Raised when the stored access policy a token refers to no longer exists."""
    decision = "policy_revoked"
    
    def __init__(self, message: str = "Stored access policy referenced by the signature no longer exists"):
        super().__init__(message)
