"""
Blob Storage Exceptions

Error types raised by the object store, lease manager, listing engine and
copy manager. Each class pins an error code and inherits its kind and status
from the shared hierarchy in :mod:`localblob.exceptions`.

Author: LocalBlob Team
Date: 2026-10-17
"""

from typing import Any, Optional

from localblob.exceptions import (
    InvalidArgumentError,
    PreconditionFailedError,
    ResourceConflictError,
    ResourceNotFoundError,
)


# ========== Not Found ==========

class ContainerNotFoundError(ResourceNotFoundError):
    """Raised when a container is not found."""
    error_code = "ContainerNotFound"
    
    def __init__(self, container_name: str):
        super().__init__(
            f"Container '{container_name}' not found",
            details={"container": container_name},
        )


class BlobNotFoundError(ResourceNotFoundError):
    """Raised when a blob is not found."""
    error_code = "BlobNotFound"
    
    def __init__(self, container_name: str, blob_name: str):
        super().__init__(
            f"Blob '{blob_name}' not found in container '{container_name}'",
            details={"container": container_name, "blob": blob_name},
        )


class SnapshotNotFoundError(ResourceNotFoundError):
    """Raised when a snapshot is not found."""
    error_code = "SnapshotNotFound"
    
    def __init__(self, container_name: str, blob_name: str, snapshot_id: str):
        super().__init__(
            f"Snapshot '{snapshot_id}' for blob '{blob_name}' not found",
            details={"container": container_name, "blob": blob_name, "snapshot": snapshot_id},
        )


class PolicyNotFoundError(ResourceNotFoundError):
    """Raised when a stored access policy does not exist on the container."""
    error_code = "PolicyNotFound"
    
    def __init__(self, container_name: str, policy_id: str):
        super().__init__(
            f"Stored access policy '{policy_id}' not found on container '{container_name}'",
            details={"container": container_name, "policy_id": policy_id},
        )


class CopyNotFoundError(ResourceNotFoundError):
    """Raised when a copy ID is unknown."""
    error_code = "CopyIdNotFound"
    
    def __init__(self, copy_id: str):
        super().__init__(f"Copy operation '{copy_id}' not found", details={"copy_id": copy_id})


# ========== Conflict ==========

class ContainerAlreadyExistsError(ResourceConflictError):
    """Raised when attempting to create a container that already exists."""
    error_code = "ContainerAlreadyExists"
    
    def __init__(self, container_name: str):
        super().__init__(
            f"Container '{container_name}' already exists",
            details={"container": container_name},
        )


class BlobAlreadyExistsError(ResourceConflictError):
    """Raised when an upload must not overwrite an existing blob."""
    error_code = "BlobAlreadyExists"
    
    def __init__(self, container_name: str, blob_name: str):
        super().__init__(
            f"Blob '{blob_name}' already exists in container '{container_name}'",
            details={"container": container_name, "blob": blob_name},
        )


class SnapshotsPresentError(ResourceConflictError):
    """Raised when deleting a blob that still has snapshots without a cascade option."""
    error_code = "SnapshotsPresent"
    
    def __init__(self, container_name: str, blob_name: str, count: int):
        super().__init__(
            f"Blob '{blob_name}' has {count} snapshot(s); specify how snapshots are deleted",
            details={"container": container_name, "blob": blob_name, "snapshot_count": count},
        )


class InvalidBlobTypeError(ResourceConflictError):
    """Raised when an operation does not apply to the blob's type."""
    error_code = "InvalidBlobType"
    
    def __init__(self, blob_name: str, expected: str, actual: str):
        super().__init__(
            f"Blob '{blob_name}' is a {actual}; operation requires a {expected}",
            details={"blob": blob_name, "expected": expected, "actual": actual},
        )


class LeaseAlreadyPresentError(ResourceConflictError):
    """Raised when attempting to acquire a lease on an already leased resource."""
    error_code = "LeaseAlreadyPresent"


class LeaseIsBreakingError(ResourceConflictError):
    """Raised when a lease operation is not allowed while the lease is breaking."""
    error_code = "LeaseIsBreaking"


class LeaseIsBrokenError(ResourceConflictError):
    """Raised when a broken lease is renewed or changed."""
    error_code = "LeaseIsBroken"


class NoPendingCopyOperationError(ResourceConflictError):
    """Raised when aborting a copy that is no longer pending."""
    error_code = "NoPendingCopyOperation"


# ========== Precondition Failed ==========

class LeaseIdMissingError(PreconditionFailedError):
    """Raised when lease ID is required but not provided."""
    error_code = "LeaseIdMissing"
    
    def __init__(self, resource: str):
        super().__init__(
            f"There is currently a lease on '{resource}' and no lease ID was specified",
            details={"resource": resource},
        )


class LeaseIdMismatchError(PreconditionFailedError):
    """Raised when provided lease ID doesn't match the active lease."""
    error_code = "LeaseIdMismatch"
    
    def __init__(self, resource: str, provided: str):
        # The active ID is never echoed back
        super().__init__(
            f"The lease ID specified did not match the lease ID for '{resource}'",
            actual=provided,
            details={"resource": resource},
        )


class LeaseNotPresentError(PreconditionFailedError):
    """Raised when a lease ID is presented but no lease is active."""
    error_code = "LeaseNotPresent"
    
    def __init__(self, resource: str, state: Optional[str] = None):
        super().__init__(
            f"There is currently no active lease on '{resource}'",
            actual=state,
            details={"resource": resource},
        )


class InvalidLeaseDurationError(PreconditionFailedError):
    """Raised when a lease duration is outside 15-60 seconds and not infinite."""
    error_code = "InvalidLeaseDuration"
    
    def __init__(self, duration: Any):
        super().__init__(
            "Lease duration must be 15-60 seconds, or -1 (or 0) for infinite",
            expected="15..60 or -1",
            actual=duration,
        )


class ConditionNotMetError(PreconditionFailedError):
    """Raised when an ETag or modification-time condition is not satisfied."""
    error_code = "ConditionNotMet"


class AppendPositionConditionNotMetError(PreconditionFailedError):
    """Raised when an append block does not start at the expected offset."""
    error_code = "AppendPositionConditionNotMet"


# ========== Invalid Argument ==========

class InvalidContainerNameError(InvalidArgumentError):
    """Raised when a container name is invalid."""
    error_code = "InvalidResourceName"


class InvalidBlobNameError(InvalidArgumentError):
    """Raised when a blob name is invalid."""
    error_code = "InvalidResourceName"


class InvalidMetadataError(InvalidArgumentError):
    """Raised when a metadata key is not a valid identifier."""
    error_code = "InvalidMetadata"


class InvalidBlockIdError(InvalidArgumentError):
    """Raised when a block ID is invalid."""
    error_code = "InvalidBlockId"


class InvalidBlockListError(InvalidArgumentError):
    """Raised when a committed block list references unknown blocks."""
    error_code = "InvalidBlockList"


class InvalidPageRangeError(InvalidArgumentError):
    """Raised when a page range is misaligned or out of bounds."""
    error_code = "InvalidPageRange"


class Md5MismatchError(InvalidArgumentError):
    """Raised when supplied content MD5 does not match the content."""
    error_code = "Md5Mismatch"


class InvalidBreakPeriodError(InvalidArgumentError):
    """Raised when a break period is outside 0-60 seconds."""
    error_code = "InvalidHeaderValue"


class InvalidQueryParameterError(InvalidArgumentError):
    """Raised when listing arguments or continuation tokens are invalid."""
    error_code = "InvalidQueryParameterValue"
