"""
Blob Storage Models

Pydantic models for containers, blobs, snapshots, leases, block lists, page
ranges and service properties.

Author: LocalBlob Team
Date: 2026-10-17
"""

import base64
import binascii
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from localblob.auth.sas import StoredAccessPolicy

from .exceptions import (
    ConditionNotMetError,
    InvalidBlobNameError,
    InvalidBlockIdError,
    InvalidContainerNameError,
    InvalidMetadataError,
)

PAGE_SIZE = 512
INFINITE_LEASE_DURATION = -1


class PublicAccessLevel(str, Enum):
    """Container public access levels."""
    PRIVATE = "private"
    BLOB = "blob"
    CONTAINER = "container"


class LeaseStatus(str, Enum):
    """Lease status."""
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class LeaseState(str, Enum):
    """Lease state."""
    AVAILABLE = "available"
    LEASED = "leased"
    EXPIRED = "expired"
    BREAKING = "breaking"
    BROKEN = "broken"


class LeaseDurationType(str, Enum):
    """Lease duration class."""
    INFINITE = "infinite"
    FIXED = "fixed"


class BlobType(str, Enum):
    """Blob type."""
    BLOCK_BLOB = "BlockBlob"
    APPEND_BLOB = "AppendBlob"
    PAGE_BLOB = "PageBlob"


class BlockListType(str, Enum):
    """Where a committed block list entry is looked up."""
    COMMITTED = "Committed"
    UNCOMMITTED = "Uncommitted"
    LATEST = "Latest"


class BlockListFilter(str, Enum):
    """Which blocks Get Block List returns."""
    ALL = "all"
    COMMITTED = "committed"
    UNCOMMITTED = "uncommitted"


class DeleteSnapshotsOption(str, Enum):
    """How a blob delete treats the blob's snapshots."""
    INCLUDE = "include"
    ONLY = "only"


class CopyStatus(str, Enum):
    """Copy operation status."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    ABORTED = "aborted"


class ContainerNameValidator:
    """
    Validates container names.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens only
    - Must start and end with letter or number
    - No consecutive hyphens
    """

    PATTERN = re.compile(r'^[a-z0-9]([a-z0-9-]*[a-z0-9])?$')
    MIN_LENGTH = 3
    MAX_LENGTH = 63

    @classmethod
    def validate(cls, name: str) -> tuple[bool, Optional[str]]:
        """
        Validate container name.

        Args:
            name: Container name to validate

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not name:
            return False, "Container name cannot be empty"

        if len(name) < cls.MIN_LENGTH:
            return False, f"Container name must be at least {cls.MIN_LENGTH} characters"

        if len(name) > cls.MAX_LENGTH:
            return False, f"Container name must be at most {cls.MAX_LENGTH} characters"

        if not cls.PATTERN.match(name):
            return False, "Container name must contain only lowercase letters, numbers, and hyphens, and must start/end with letter or number"

        if '--' in name:
            return False, "Container name cannot contain consecutive hyphens"

        return True, None

    @classmethod
    def validate_raise(cls, name: str) -> None:
        """Validate container name and raise InvalidContainerNameError if invalid."""
        is_valid, error = cls.validate(name)
        if not is_valid:
            raise InvalidContainerNameError(error, details={"container": name})


class BlobNameValidator:
    """Blob names are 1-1024 characters with no control characters."""

    MAX_LENGTH = 1024
    CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f]')

    @classmethod
    def validate_raise(cls, name: str) -> None:
        if not name:
            raise InvalidBlobNameError("Blob name cannot be empty")
        if len(name) > cls.MAX_LENGTH:
            raise InvalidBlobNameError(
                f"Blob name must be at most {cls.MAX_LENGTH} characters",
                details={"length": len(name)},
            )
        if cls.CONTROL_CHARS.search(name):
            raise InvalidBlobNameError("Blob name cannot contain control characters")


_METADATA_KEY = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


def validate_metadata(metadata: Optional[Dict[str, str]]) -> Dict[str, str]:
    """
    Check metadata keys are identifiers and return a copy with string values.

    Raises:
        InvalidMetadataError: If a key is not a valid identifier
    """
    result: Dict[str, str] = {}
    for key, value in (metadata or {}).items():
        if not isinstance(key, str) or not _METADATA_KEY.match(key):
            raise InvalidMetadataError(
                f"Metadata key '{key}' is not a valid identifier",
                details={"key": key},
            )
        result[key] = str(value)
    return result


class Lease(BaseModel):
    """
    Persisted lease record for one container or blob.

    ``state`` is the last state written by an explicit transition. Expiry and
    the end of a break period are derived from the clock by
    :meth:`effective_state`; nothing runs in the background.
    """

    lease_id: Optional[str] = None
    state: LeaseState = LeaseState.AVAILABLE
    duration: Optional[int] = Field(default=None, description="Seconds, or -1 for infinite")
    acquired_time: Optional[datetime] = None
    expiration_time: Optional[datetime] = None
    break_time: Optional[datetime] = None

    def effective_state(self, now: datetime) -> LeaseState:
        """State as of ``now``."""
        if (self.state == LeaseState.LEASED and self.expiration_time is not None
                and now >= self.expiration_time):
            return LeaseState.EXPIRED
        if (self.state == LeaseState.BREAKING and self.break_time is not None
                and now >= self.break_time):
            return LeaseState.BROKEN
        return self.state

    def is_active(self, now: datetime) -> bool:
        """Whether writes must present this lease's ID."""
        return self.effective_state(now) in (LeaseState.LEASED, LeaseState.BREAKING)

    def status(self, now: datetime) -> LeaseStatus:
        return LeaseStatus.LOCKED if self.is_active(now) else LeaseStatus.UNLOCKED

    def duration_type(self, now: datetime) -> Optional[LeaseDurationType]:
        if self.effective_state(now) != LeaseState.LEASED:
            return None
        if self.duration == INFINITE_LEASE_DURATION:
            return LeaseDurationType.INFINITE
        return LeaseDurationType.FIXED

    def remaining_seconds(self, now: datetime) -> int:
        """Whole seconds until the lease expires or finishes breaking."""
        if self.state == LeaseState.BREAKING and self.break_time is not None:
            end = self.break_time
        elif self.state == LeaseState.LEASED and self.expiration_time is not None:
            end = self.expiration_time
        else:
            return 0
        return max(0, int((end - now).total_seconds()))


class AccessConditions(BaseModel):
    """
    Conditions a mutating request must satisfy.

    The lease ID is checked by the lease manager; ETag and time conditions
    are checked here.
    """
    lease_id: Optional[str] = Field(default=None, description="Active lease ID")
    if_match: Optional[str] = Field(default=None, description="ETag to match, or '*'")
    if_none_match: Optional[str] = Field(default=None, description="ETag to not match, or '*'")
    if_modified_since: Optional[datetime] = Field(default=None, description="Modified since timestamp")
    if_unmodified_since: Optional[datetime] = Field(default=None, description="Unmodified since timestamp")

    def check(self, etag: Optional[str], last_modified: Optional[datetime]) -> None:
        """
        Check conditions against the resource's current version.

        Args:
            etag: Current ETag, or None if the resource does not exist
            last_modified: Current last modified time

        Raises:
            ConditionNotMetError: If any condition fails
        """
        if self.if_match is not None:
            if etag is None or (self.if_match != "*" and _strip_quotes(self.if_match) != etag):
                raise ConditionNotMetError(
                    "If-Match condition not met",
                    expected=_strip_quotes(self.if_match),
                    actual=etag,
                )

        if self.if_none_match is not None and etag is not None:
            if self.if_none_match == "*" or _strip_quotes(self.if_none_match) == etag:
                raise ConditionNotMetError(
                    "If-None-Match condition not met",
                    expected=f"not {_strip_quotes(self.if_none_match)}",
                    actual=etag,
                )

        if last_modified is not None:
            if self.if_modified_since and last_modified <= self.if_modified_since:
                raise ConditionNotMetError(
                    "Resource not modified since the given time",
                    expected=f"> {self.if_modified_since.isoformat()}",
                    actual=last_modified.isoformat(),
                )
            if self.if_unmodified_since and last_modified > self.if_unmodified_since:
                raise ConditionNotMetError(
                    "Resource modified since the given time",
                    expected=f"<= {self.if_unmodified_since.isoformat()}",
                    actual=last_modified.isoformat(),
                )


def _strip_quotes(etag: str) -> str:
    return etag.strip('"')


# ============================================================================
# Container Models
# ============================================================================


class ContainerProperties(BaseModel):
    """Container properties, including the lease view as of the last read."""

    etag: str = Field(description="Entity tag for the container")
    last_modified: datetime = Field(description="Last modified timestamp")
    creation_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    lease_status: LeaseStatus = Field(default=LeaseStatus.UNLOCKED)
    lease_state: LeaseState = Field(default=LeaseState.AVAILABLE)
    lease_duration: Optional[LeaseDurationType] = Field(default=None)
    public_access: PublicAccessLevel = Field(default=PublicAccessLevel.PRIVATE)
    has_stored_access_policies: bool = Field(default=False)


class Container(BaseModel):
    """A namespace holding blobs."""

    name: str = Field(description="Container name")
    metadata: Dict[str, str] = Field(default_factory=dict)
    properties: ContainerProperties
    lease: Lease = Field(default_factory=Lease)
    access_policies: Dict[str, StoredAccessPolicy] = Field(default_factory=dict)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        ContainerNameValidator.validate_raise(v)
        return v


class ContainerItem(BaseModel):
    """Container entry in a listing."""

    name: str
    properties: ContainerProperties
    metadata: Optional[Dict[str, str]] = None


# ============================================================================
# Blob Models
# ============================================================================


class Block(BaseModel):
    """
    Block in a block blob.

    Represents a staged or committed block with its ID and content.
    """

    block_id: str = Field(description="Base64-encoded block ID")
    size: int = Field(description="Block size in bytes")
    content: bytes = Field(description="Block content")
    staged_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator('block_id')
    @classmethod
    def validate_block_id(cls, v: str) -> str:
        decode_block_id(v)
        return v


def decode_block_id(block_id: str) -> bytes:
    """
    Decode a base64 block ID.

    Raises:
        InvalidBlockIdError: If the ID is not base64 or exceeds 64 bytes
    """
    try:
        decoded = base64.b64decode(block_id, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidBlockIdError(f"Invalid base64 block ID: {block_id}") from exc
    if not decoded:
        raise InvalidBlockIdError("Block ID cannot be empty")
    if len(decoded) > 64:
        raise InvalidBlockIdError("Block ID must be at most 64 bytes before encoding")
    return decoded


class BlockInfo(BaseModel):
    """Block entry returned by Get Block List."""
    block_id: str
    size: int


class BlockList(BaseModel):
    """Committed and uncommitted blocks of a block blob."""
    committed: List[BlockInfo] = Field(default_factory=list)
    uncommitted: List[BlockInfo] = Field(default_factory=list)


class PageRange(BaseModel):
    """Inclusive byte range of written pages."""
    start: int
    end: int


class ContentSettings(BaseModel):
    """HTTP content headers stored with a blob."""
    content_type: str = Field(default="application/octet-stream")
    content_encoding: Optional[str] = None
    content_language: Optional[str] = None
    content_md5: Optional[str] = None
    cache_control: Optional[str] = None
    content_disposition: Optional[str] = None


class BlobProperties(BaseModel):
    """
    Blob properties.

    Includes content properties, ETag, timestamps, lease view, snapshot and
    copy state.
    """

    etag: str = Field(description="Entity tag for the blob")
    last_modified: datetime = Field(description="Last modified timestamp")
    creation_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    content_length: int = Field(description="Blob size in bytes")
    content_type: str = Field(default="application/octet-stream")
    content_encoding: Optional[str] = Field(default=None)
    content_language: Optional[str] = Field(default=None)
    content_md5: Optional[str] = Field(default=None)
    cache_control: Optional[str] = Field(default=None)
    content_disposition: Optional[str] = Field(default=None)
    blob_type: BlobType = Field(default=BlobType.BLOCK_BLOB)
    lease_status: LeaseStatus = Field(default=LeaseStatus.UNLOCKED)
    lease_state: LeaseState = Field(default=LeaseState.AVAILABLE)
    lease_duration: Optional[LeaseDurationType] = Field(default=None)
    committed_block_count: Optional[int] = Field(default=None, description="Append blobs only")
    is_snapshot: bool = Field(default=False)
    snapshot_time: Optional[datetime] = Field(default=None)
    copy_id: Optional[str] = Field(default=None)
    copy_status: Optional[CopyStatus] = Field(default=None)
    copy_source: Optional[str] = Field(default=None)
    copy_progress: Optional[str] = Field(default=None)
    copy_completion_time: Optional[datetime] = Field(default=None)
    copy_status_description: Optional[str] = Field(default=None)

    @property
    def content_settings(self) -> ContentSettings:
        return ContentSettings(
            content_type=self.content_type,
            content_encoding=self.content_encoding,
            content_language=self.content_language,
            content_md5=self.content_md5,
            cache_control=self.cache_control,
            content_disposition=self.content_disposition,
        )


class Blob(BaseModel):
    """
    A named binary object in a container.

    Block and append blobs keep their bytes in ``content``. Page blobs are
    sparse: only written 512-byte pages are kept in ``pages``, keyed by page
    index, and ``properties.content_length`` is the fixed blob size.
    """

    name: str = Field(description="Blob name")
    container_name: str = Field(description="Parent container name")
    content: bytes = Field(default=b"", description="Blob content")
    metadata: Dict[str, str] = Field(default_factory=dict)
    properties: BlobProperties
    snapshot_id: Optional[str] = Field(default=None)
    committed_blocks: List[Block] = Field(default_factory=list)
    pages: Dict[int, bytes] = Field(default_factory=dict)
    lease: Lease = Field(default_factory=Lease)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def read(self) -> bytes:
        """Full content, materializing page blobs."""
        if self.properties.blob_type == BlobType.PAGE_BLOB:
            return self.read_range(0, self.properties.content_length)
        return self.content

    def read_range(self, offset: int, length: int) -> bytes:
        """Read ``length`` bytes at ``offset``; unwritten pages read as zeros."""
        if self.properties.blob_type != BlobType.PAGE_BLOB:
            return self.content[offset:offset + length]
        end = min(offset + length, self.properties.content_length)
        buffer = bytearray(max(0, end - offset))
        first_page = offset // PAGE_SIZE
        last_page = (end - 1) // PAGE_SIZE if end > offset else first_page - 1
        for index in range(first_page, last_page + 1):
            page = self.pages.get(index)
            if page is None:
                continue
            page_start = index * PAGE_SIZE
            lo = max(offset, page_start)
            hi = min(end, page_start + PAGE_SIZE)
            buffer[lo - offset:hi - offset] = page[lo - page_start:hi - page_start]
        return bytes(buffer)

    def to_item(self) -> "BlobItem":
        return BlobItem(
            name=self.name,
            snapshot_id=self.snapshot_id,
            properties=self.properties.model_copy(),
            metadata=dict(self.metadata),
        )


class BlobItem(BaseModel):
    """Blob entry in a listing (no content)."""

    name: str
    snapshot_id: Optional[str] = None
    properties: BlobProperties
    metadata: Dict[str, str] = Field(default_factory=dict)


class BlobPrefix(BaseModel):
    """Virtual directory entry in a hierarchical listing."""

    name: str


class BlobDownload(BaseModel):
    """Content and properties returned by a read."""

    content: bytes
    properties: BlobProperties
    metadata: Dict[str, str] = Field(default_factory=dict)

    @property
    def etag(self) -> str:
        return self.properties.etag


# ============================================================================
# Service Properties
# ============================================================================


class RetentionPolicy(BaseModel):
    enabled: bool = False
    days: Optional[int] = Field(default=None, ge=1, le=365)


class AnalyticsLogging(BaseModel):
    version: str = "1.0"
    read: bool = False
    write: bool = False
    delete: bool = False
    retention_policy: RetentionPolicy = Field(default_factory=RetentionPolicy)


class Metrics(BaseModel):
    version: str = "1.0"
    enabled: bool = False
    include_apis: Optional[bool] = None
    retention_policy: RetentionPolicy = Field(default_factory=RetentionPolicy)


class CorsRule(BaseModel):
    allowed_origins: str
    allowed_methods: str
    allowed_headers: str = ""
    exposed_headers: str = ""
    max_age_in_seconds: int = Field(default=0, ge=0)


class ServiceProperties(BaseModel):
    """
    Account-level blob service settings.

    Stored and returned as set; nothing in LocalBlob acts on the analytics
    settings.
    """
    logging: AnalyticsLogging = Field(default_factory=AnalyticsLogging)
    hour_metrics: Metrics = Field(default_factory=Metrics)
    minute_metrics: Metrics = Field(default_factory=Metrics)
    cors: List[CorsRule] = Field(default_factory=list, max_length=5)
    default_service_version: Optional[str] = None

