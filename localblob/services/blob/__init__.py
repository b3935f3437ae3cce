"""
LocalBlob Blob Storage Service

Containers, block, append and page blobs, snapshots, leases, listings,
copies and shared access signatures.

Author: LocalBlob Team
Date: 2026-10-17
"""

from .backend import BlobService
from .copy import CopyManager, CopyOperation
from .listing import ListPage
from .models import (
    AccessConditions,
    Blob,
    BlobDownload,
    BlobItem,
    BlobPrefix,
    BlobProperties,
    BlobType,
    BlockList,
    BlockListFilter,
    BlockListType,
    Container,
    ContainerItem,
    ContainerProperties,
    ContentSettings,
    CopyStatus,
    DeleteSnapshotsOption,
    LeaseDurationType,
    LeaseState,
    LeaseStatus,
    PageRange,
    PublicAccessLevel,
    ServiceProperties,
)
from .store import BlobStore, BlockReference

__all__ = [
    "AccessConditions",
    "Blob",
    "BlobDownload",
    "BlobItem",
    "BlobPrefix",
    "BlobProperties",
    "BlobService",
    "BlobStore",
    "BlobType",
    "BlockList",
    "BlockListFilter",
    "BlockListType",
    "BlockReference",
    "Container",
    "ContainerItem",
    "ContainerProperties",
    "ContentSettings",
    "CopyManager",
    "CopyOperation",
    "CopyStatus",
    "DeleteSnapshotsOption",
    "LeaseDurationType",
    "LeaseState",
    "LeaseStatus",
    "ListPage",
    "PageRange",
    "PublicAccessLevel",
    "ServiceProperties",
]
