"""
LocalBlob Authorization Module.

Shared access signature generation and validation, and the stored access
policies tokens may be bound to.

Author: LocalBlob Team
Date: 2026-10-17
"""

from localblob.auth.exceptions import (
    SASBadSignatureError,
    SASExpiredError,
    SASNotYetValidError,
    SASPermissionDeniedError,
    SASPolicyRevokedError,
    SASValidationError,
)
from localblob.auth.sas import (
    SASDecision,
    SASGenerator,
    SASPermissions,
    SASResource,
    SASScope,
    SASToken,
    SASValidator,
    SharedKeySigner,
    StoredAccessPolicy,
    parse_sas_token,
)

__all__ = [
    # Exceptions
    "SASBadSignatureError",
    "SASExpiredError",
    "SASNotYetValidError",
    "SASPermissionDeniedError",
    "SASPolicyRevokedError",
    "SASValidationError",
    # Tokens
    "SASDecision",
    "SASGenerator",
    "SASPermissions",
    "SASResource",
    "SASScope",
    "SASToken",
    "SASValidator",
    "SharedKeySigner",
    "StoredAccessPolicy",
    "parse_sas_token",
]
