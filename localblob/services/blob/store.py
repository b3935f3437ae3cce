"""
Blob Object Store

In-memory storage for containers, blobs, snapshots, staged blocks and page
blobs.

All state lives behind one ``asyncio.Lock``. Each mutation runs its checks
(existence, lease, access conditions) and its state change inside a single
lock section with no ``await`` in between, so a mutation either happens
completely or not at all, and cancellation can only land before the lock is
held. Callers always receive deep copies; nothing they hold can change stored
state.

Author: LocalBlob Team
Date: 2026-10-17
"""

import asyncio
import base64
import hashlib
import logging
import uuid
from datetime import timedelta
from typing import Dict, List, Optional, Sequence, Tuple, Union

from localblob.auth.sas import StoredAccessPolicy
from localblob.core.clock import Clock, utc_now
from localblob.core.config_manager import StorageConfig

from . import listing
from .exceptions import (
    AppendPositionConditionNotMetError,
    BlobAlreadyExistsError,
    BlobNotFoundError,
    ContainerAlreadyExistsError,
    ContainerNotFoundError,
    InvalidBlobTypeError,
    InvalidBlockIdError,
    InvalidBlockListError,
    InvalidPageRangeError,
    InvalidQueryParameterError,
    LeaseNotPresentError,
    Md5MismatchError,
    SnapshotNotFoundError,
    SnapshotsPresentError,
)
from .leases import LeaseManager
from .models import (
    PAGE_SIZE,
    AccessConditions,
    Blob,
    BlobDownload,
    BlobNameValidator,
    BlobPrefix,
    BlobProperties,
    BlobType,
    Block,
    BlockInfo,
    BlockList,
    BlockListFilter,
    BlockListType,
    Container,
    ContainerItem,
    ContainerNameValidator,
    ContainerProperties,
    ContentSettings,
    CopyStatus,
    DeleteSnapshotsOption,
    PageRange,
    PublicAccessLevel,
    decode_block_id,
    validate_metadata,
)
from .snapshots import SnapshotIdGenerator, capture_snapshot

logger = logging.getLogger(__name__)

MAX_STORED_ACCESS_POLICIES = 5

BlockReference = Union[str, Tuple[str, BlockListType]]


def compute_content_md5(content: bytes) -> str:
    """Base64 MD5 of ``content``, as stored in ``content_md5``."""
    return base64.b64encode(hashlib.md5(content).digest()).decode("ascii")


class BlobStore:
    """
    In-memory object store for containers and blobs.

    Thread-safe using asyncio locks.
    """

    def __init__(
        self,
        clock: Clock = utc_now,
        config: Optional[StorageConfig] = None,
        lease_manager: Optional[LeaseManager] = None,
    ):
        self._clock = clock
        self._config = config or StorageConfig()
        self.leases = lease_manager or LeaseManager(clock)
        self._snapshot_ids = SnapshotIdGenerator(clock)
        self._containers: Dict[str, Container] = {}
        self._blobs: Dict[str, Dict[str, Blob]] = {}  # container -> {blob -> Blob}
        self._snapshots: Dict[str, Dict[str, Dict[str, Blob]]] = {}  # container -> {blob -> {snapshot_id -> Blob}}
        self._staged: Dict[str, Dict[str, Dict[str, Block]]] = {}  # container -> {blob -> {block_id -> Block}}
        self._lock = asyncio.Lock()

    @property
    def config(self) -> StorageConfig:
        return self._config

    # ========================================================================
    # Internal helpers (call with the lock held)
    # ========================================================================

    def _generate_etag(self) -> str:
        """Generate a unique ETag."""
        return hashlib.md5(uuid.uuid4().bytes).hexdigest()

    def _touch(self, properties: Union[BlobProperties, ContainerProperties]) -> None:
        properties.etag = self._generate_etag()
        properties.last_modified = self._clock()

    def _container(self, name: str) -> Container:
        container = self._containers.get(name)
        if container is None:
            raise ContainerNotFoundError(name)
        return container

    def _blob(self, container_name: str, blob_name: str) -> Blob:
        self._container(container_name)
        blob = self._blobs[container_name].get(blob_name)
        if blob is None:
            raise BlobNotFoundError(container_name, blob_name)
        return blob

    def _blob_or_snapshot(self, container_name: str, blob_name: str, snapshot_id: Optional[str]) -> Blob:
        if snapshot_id is None:
            return self._blob(container_name, blob_name)
        self._container(container_name)
        snapshot = self._snapshots[container_name].get(blob_name, {}).get(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(container_name, blob_name, snapshot_id)
        return snapshot

    def _container_view(self, container: Container) -> Container:
        view = container.model_copy(deep=True)
        now = self._clock()
        view.properties.lease_status = container.lease.status(now)
        view.properties.lease_state = container.lease.effective_state(now)
        view.properties.lease_duration = container.lease.duration_type(now)
        view.properties.has_stored_access_policies = bool(container.access_policies)
        return view

    def _blob_view(self, blob: Blob) -> Blob:
        view = blob.model_copy(deep=True)
        if blob.snapshot_id is None:
            now = self._clock()
            view.properties.lease_status = blob.lease.status(now)
            view.properties.lease_state = blob.lease.effective_state(now)
            view.properties.lease_duration = blob.lease.duration_type(now)
        return view

    def _check_container_write(self, container: Container, conditions: Optional[AccessConditions]) -> None:
        conditions = conditions or AccessConditions()
        self.leases.check_write(container.lease, container.name, conditions.lease_id)
        conditions.check(container.properties.etag, container.properties.last_modified)

    def _check_blob_write(
        self,
        container_name: str,
        blob_name: str,
        existing: Optional[Blob],
        conditions: Optional[AccessConditions],
    ) -> None:
        """Lease and ETag checks for a write that may create the blob."""
        conditions = conditions or AccessConditions()
        path = f"{container_name}/{blob_name}"
        if existing is None:
            if conditions.lease_id:
                raise LeaseNotPresentError(path)
            conditions.check(None, None)
            return
        self.leases.check_write(existing.lease, path, conditions.lease_id)
        conditions.check(existing.properties.etag, existing.properties.last_modified)

    def _new_blob(
        self,
        container_name: str,
        blob_name: str,
        existing: Optional[Blob],
        blob_type: BlobType,
        content_settings: Optional[ContentSettings],
        metadata: Optional[Dict[str, str]],
        content_length: int,
    ) -> Blob:
        """
        Build the replacement record for a whole-blob write.

        Creation time and lease carry over from an existing blob of the same
        name; everything else, including copy state, is replaced.
        """
        now = self._clock()
        settings = content_settings or ContentSettings()
        properties = BlobProperties(
            etag=self._generate_etag(),
            last_modified=now,
            creation_time=existing.properties.creation_time if existing else now,
            content_length=content_length,
            blob_type=blob_type,
            **settings.model_dump(),
        )
        blob = Blob(
            name=blob_name,
            container_name=container_name,
            metadata=dict(metadata or {}),
            properties=properties,
        )
        if existing is not None:
            blob.lease = existing.lease
        return blob

    def _install(self, blob: Blob) -> None:
        self._blobs[blob.container_name][blob.name] = blob
        self._staged[blob.container_name].pop(blob.name, None)

    def _typed_blob(self, container_name: str, blob_name: str, expected: BlobType) -> Blob:
        blob = self._blob(container_name, blob_name)
        if blob.properties.blob_type != expected:
            raise InvalidBlobTypeError(blob_name, expected.value, blob.properties.blob_type.value)
        return blob

    # ========================================================================
    # Container Operations
    # ========================================================================

    async def create_container(
        self,
        name: str,
        metadata: Optional[Dict[str, str]] = None,
        public_access: PublicAccessLevel = PublicAccessLevel.PRIVATE,
    ) -> Container:
        """
        Create a new container.

        Args:
            name: Container name
            metadata: Optional metadata key-value pairs
            public_access: Public access level

        Returns:
            Created container

        Raises:
            InvalidContainerNameError: If name is invalid
            InvalidMetadataError: If a metadata key is invalid
            ContainerAlreadyExistsError: If container already exists
        """
        ContainerNameValidator.validate_raise(name)
        metadata = validate_metadata(metadata)

        async with self._lock:
            if name in self._containers:
                raise ContainerAlreadyExistsError(name)

            now = self._clock()
            container = Container(
                name=name,
                metadata=metadata,
                properties=ContainerProperties(
                    etag=self._generate_etag(),
                    last_modified=now,
                    creation_time=now,
                    public_access=public_access,
                ),
            )
            self._containers[name] = container
            self._blobs[name] = {}
            self._snapshots[name] = {}
            self._staged[name] = {}

            logger.debug(f"Created container {name}")
            return self._container_view(container)

    async def get_container(self, name: str) -> Container:
        """
        Get container by name.

        Raises:
            ContainerNotFoundError: If container not found
        """
        async with self._lock:
            return self._container_view(self._container(name))

    async def get_container_properties(self, name: str) -> ContainerProperties:
        container = await self.get_container(name)
        return container.properties

    async def container_exists(self, name: str) -> bool:
        async with self._lock:
            return name in self._containers

    async def set_container_metadata(
        self,
        name: str,
        metadata: Dict[str, str],
        conditions: Optional[AccessConditions] = None,
    ) -> Container:
        """
        Replace container metadata.

        Raises:
            ContainerNotFoundError: If container not found
            LeaseIdMissingError: If the container is leased and no ID was given
            ConditionNotMetError: If an ETag or time condition fails
        """
        metadata = validate_metadata(metadata)

        async with self._lock:
            container = self._container(name)
            self._check_container_write(container, conditions)

            container.metadata = metadata
            self._touch(container.properties)

            logger.debug(f"Set metadata on container {name}")
            return self._container_view(container)

    async def set_container_public_access(
        self,
        name: str,
        public_access: PublicAccessLevel,
        conditions: Optional[AccessConditions] = None,
    ) -> Container:
        async with self._lock:
            container = self._container(name)
            self._check_container_write(container, conditions)

            container.properties.public_access = PublicAccessLevel(public_access)
            self._touch(container.properties)

            logger.debug(f"Set public access on container {name} to {public_access}")
            return self._container_view(container)

    async def set_container_access_policy(
        self,
        name: str,
        policies: Sequence[StoredAccessPolicy],
        public_access: Optional[PublicAccessLevel] = None,
        conditions: Optional[AccessConditions] = None,
    ) -> Container:
        """
        Replace the container's stored access policies.

        Policies not in ``policies`` are removed, which revokes every SAS
        bound to them.

        Args:
            name: Container name
            policies: Up to five policies with unique IDs
            public_access: Optionally set the public access level too
            conditions: Lease and ETag conditions

        Raises:
            InvalidQueryParameterError: If more than five policies or duplicate IDs
            ContainerNotFoundError: If container not found
        """
        if len(policies) > MAX_STORED_ACCESS_POLICIES:
            raise InvalidQueryParameterError(
                f"At most {MAX_STORED_ACCESS_POLICIES} stored access policies are allowed",
                details={"count": len(policies)},
            )
        by_id = {policy.id: policy.model_copy() for policy in policies}
        if len(by_id) != len(policies):
            raise InvalidQueryParameterError("Stored access policy IDs must be unique")

        async with self._lock:
            container = self._container(name)
            self._check_container_write(container, conditions)

            container.access_policies = by_id
            if public_access is not None:
                container.properties.public_access = PublicAccessLevel(public_access)
            self._touch(container.properties)

            logger.debug(f"Set {len(by_id)} access policies on container {name}")
            return self._container_view(container)

    async def get_container_access_policy(
        self,
        name: str,
    ) -> Tuple[PublicAccessLevel, List[StoredAccessPolicy]]:
        async with self._lock:
            container = self._container(name)
            return (
                container.properties.public_access,
                [policy.model_copy() for policy in container.access_policies.values()],
            )

    def lookup_access_policy(self, container_name: str, policy_id: str) -> Optional[StoredAccessPolicy]:
        """Resolve a stored policy for SAS validation; None if it is gone."""
        container = self._containers.get(container_name)
        if container is None:
            return None
        policy = container.access_policies.get(policy_id)
        return policy.model_copy() if policy else None

    async def delete_container(
        self,
        name: str,
        conditions: Optional[AccessConditions] = None,
    ) -> None:
        """
        Delete a container and everything in it.

        Raises:
            ContainerNotFoundError: If container not found
            LeaseIdMissingError: If the container is leased and no ID was given
            LeaseIdMismatchError: If the lease ID does not match
        """
        async with self._lock:
            container = self._container(name)
            self._check_container_write(container, conditions)

            blob_count = len(self._blobs[name])
            del self._containers[name]
            del self._blobs[name]
            del self._snapshots[name]
            del self._staged[name]

            logger.debug(f"Deleted container {name} ({blob_count} blobs)")

    async def list_containers(
        self,
        prefix: Optional[str] = None,
        include_metadata: bool = False,
        page_size: Optional[int] = None,
        continuation_token: Optional[str] = None,
    ) -> listing.ListPage:
        """
        List one page of containers, in name order.

        Raises:
            InvalidQueryParameterError: If page size or token are invalid
        """
        prefix = prefix or ""
        page_size = listing.validate_page_size(page_size, self._config.max_page_size)

        async with self._lock:
            entries = listing.container_entries(self._containers, prefix)
            page, token = listing.paginate(
                entries, page_size, continuation_token, listing.KIND_CONTAINERS, prefix,
            )
            items = []
            for container in page:
                view = self._container_view(container)
                items.append(ContainerItem(
                    name=view.name,
                    properties=view.properties,
                    metadata=view.metadata if include_metadata else None,
                ))
            return listing.ListPage(items=items, continuation_token=token, prefix=prefix)

    # ========================================================================
    # Blob Operations
    # ========================================================================

    async def put_blob(
        self,
        container_name: str,
        blob_name: str,
        content: bytes,
        content_settings: Optional[ContentSettings] = None,
        metadata: Optional[Dict[str, str]] = None,
        conditions: Optional[AccessConditions] = None,
        overwrite: bool = True,
    ) -> BlobProperties:
        """
        Upload a block blob with its whole content.

        Replaces any existing blob of the same name (of any type), its
        committed block list and its uncommitted blocks.

        Args:
            container_name: Container name
            blob_name: Blob name
            content: Blob content bytes
            content_settings: Content type and other HTTP headers
            metadata: Optional metadata
            conditions: Lease and ETag conditions
            overwrite: When False, fail if the blob already exists

        Returns:
            Properties of the stored blob, including its new ETag

        Raises:
            ContainerNotFoundError: If container not found
            BlobAlreadyExistsError: If overwrite is False and the blob exists
            Md5MismatchError: If a supplied MD5 does not match the content
            LeaseIdMissingError: If lease ID required but not provided
            LeaseIdMismatchError: If lease ID doesn't match
        """
        BlobNameValidator.validate_raise(blob_name)
        metadata = validate_metadata(metadata)
        settings = (content_settings or ContentSettings()).model_copy()
        computed_md5 = compute_content_md5(content)
        if settings.content_md5 is not None and settings.content_md5 != computed_md5:
            raise Md5MismatchError(
                "The MD5 value specified did not match the content",
                details={"expected": settings.content_md5, "actual": computed_md5},
            )
        settings.content_md5 = computed_md5

        async with self._lock:
            self._container(container_name)
            existing = self._blobs[container_name].get(blob_name)
            if existing is not None and not overwrite:
                raise BlobAlreadyExistsError(container_name, blob_name)
            self._check_blob_write(container_name, blob_name, existing, conditions)

            blob = self._new_blob(
                container_name, blob_name, existing, BlobType.BLOCK_BLOB,
                settings, metadata, len(content),
            )
            blob.content = bytes(content)
            self._install(blob)

            logger.debug(f"Put blob {container_name}/{blob_name} ({len(content)} bytes)")
            return blob.properties.model_copy()

    async def get_blob(
        self,
        container_name: str,
        blob_name: str,
        snapshot_id: Optional[str] = None,
        lease_id: Optional[str] = None,
    ) -> Blob:
        """
        Get a blob, or one of its snapshots.

        Args:
            container_name: Container name
            blob_name: Blob name
            snapshot_id: Snapshot to read instead of the base blob
            lease_id: If given, must match the active lease

        Raises:
            ContainerNotFoundError: If container not found
            BlobNotFoundError: If blob not found
            SnapshotNotFoundError: If the snapshot does not exist
        """
        async with self._lock:
            blob = self._blob_or_snapshot(container_name, blob_name, snapshot_id)
            if snapshot_id is None:
                self.leases.check_read(blob.lease, f"{container_name}/{blob_name}", lease_id)
            return self._blob_view(blob)

    async def download_blob(
        self,
        container_name: str,
        blob_name: str,
        snapshot_id: Optional[str] = None,
        offset: Optional[int] = None,
        length: Optional[int] = None,
        lease_id: Optional[str] = None,
    ) -> BlobDownload:
        """
        Read blob content (optionally a byte range) with its properties.

        Page blobs read unwritten pages as zeros.

        Raises:
            InvalidPageRangeError: If the range is negative or starts past the end
        """
        if (offset is not None and offset < 0) or (length is not None and length < 0):
            raise InvalidPageRangeError("Range offset and length must be non-negative")

        blob = await self.get_blob(container_name, blob_name, snapshot_id, lease_id)
        size = blob.properties.content_length
        start = offset or 0
        if offset is not None and size > 0 and start >= size:
            raise InvalidPageRangeError(
                "The range specified is invalid for the current size of the resource",
                details={"offset": start, "size": size},
            )
        if offset is None and length is None:
            content = blob.read()
        else:
            content = blob.read_range(start, size - start if length is None else length)
        return BlobDownload(content=content, properties=blob.properties, metadata=blob.metadata)

    async def get_blob_properties(
        self,
        container_name: str,
        blob_name: str,
        snapshot_id: Optional[str] = None,
        lease_id: Optional[str] = None,
    ) -> BlobProperties:
        blob = await self.get_blob(container_name, blob_name, snapshot_id, lease_id)
        return blob.properties

    async def blob_exists(
        self,
        container_name: str,
        blob_name: str,
        snapshot_id: Optional[str] = None,
    ) -> bool:
        """Check whether a committed blob (or snapshot) exists."""
        async with self._lock:
            if container_name not in self._containers:
                return False
            if snapshot_id is None:
                return blob_name in self._blobs[container_name]
            return snapshot_id in self._snapshots[container_name].get(blob_name, {})

    async def set_blob_metadata(
        self,
        container_name: str,
        blob_name: str,
        metadata: Dict[str, str],
        conditions: Optional[AccessConditions] = None,
    ) -> BlobProperties:
        """
        Replace blob metadata.

        Raises:
            ContainerNotFoundError: If container not found
            BlobNotFoundError: If blob not found
            LeaseIdMissingError: If lease ID required but not provided
            LeaseIdMismatchError: If lease ID doesn't match
            ConditionNotMetError: If an ETag or time condition fails
        """
        metadata = validate_metadata(metadata)

        async with self._lock:
            blob = self._blob(container_name, blob_name)
            self._check_blob_write(container_name, blob_name, blob, conditions)

            blob.metadata = metadata
            self._touch(blob.properties)

            logger.debug(f"Set metadata on blob {container_name}/{blob_name}")
            return self._blob_view(blob).properties

    async def set_blob_properties(
        self,
        container_name: str,
        blob_name: str,
        content_settings: ContentSettings,
        conditions: Optional[AccessConditions] = None,
    ) -> BlobProperties:
        """Replace the blob's HTTP content settings; unset fields are cleared."""
        async with self._lock:
            blob = self._blob(container_name, blob_name)
            self._check_blob_write(container_name, blob_name, blob, conditions)

            for field_name, value in content_settings.model_dump().items():
                setattr(blob.properties, field_name, value)
            self._touch(blob.properties)

            logger.debug(f"Set properties on blob {container_name}/{blob_name}")
            return self._blob_view(blob).properties

    async def delete_blob(
        self,
        container_name: str,
        blob_name: str,
        delete_snapshots: Optional[DeleteSnapshotsOption] = None,
        conditions: Optional[AccessConditions] = None,
        snapshot_id: Optional[str] = None,
    ) -> None:
        """
        Delete a blob, its snapshots, or one snapshot.

        Args:
            container_name: Container name
            blob_name: Blob name
            delete_snapshots: None to delete a blob without snapshots,
                ``only`` to delete just the snapshots, ``include`` for both
            conditions: Lease and ETag conditions for the base blob
            snapshot_id: Delete only this snapshot

        Raises:
            ContainerNotFoundError: If container not found
            BlobNotFoundError: If blob not found
            SnapshotNotFoundError: If the snapshot does not exist
            SnapshotsPresentError: If snapshots exist and no option was given
            LeaseIdMissingError: If the blob is leased and no ID was given
        """
        if snapshot_id is not None and delete_snapshots is not None:
            raise InvalidQueryParameterError(
                "delete_snapshots cannot be combined with a snapshot ID",
                details={"snapshot_id": snapshot_id},
            )

        async with self._lock:
            if snapshot_id is not None:
                self._blob_or_snapshot(container_name, blob_name, snapshot_id)
                del self._snapshots[container_name][blob_name][snapshot_id]
                if not self._snapshots[container_name][blob_name]:
                    del self._snapshots[container_name][blob_name]
                logger.debug(f"Deleted snapshot {snapshot_id} of {container_name}/{blob_name}")
                return

            blob = self._blob(container_name, blob_name)
            self._check_blob_write(container_name, blob_name, blob, conditions)

            snapshots = self._snapshots[container_name].get(blob_name, {})
            if snapshots and delete_snapshots is None:
                raise SnapshotsPresentError(container_name, blob_name, len(snapshots))

            self._snapshots[container_name].pop(blob_name, None)
            if delete_snapshots == DeleteSnapshotsOption.ONLY:
                logger.debug(f"Deleted {len(snapshots)} snapshots of {container_name}/{blob_name}")
                return

            del self._blobs[container_name][blob_name]
            self._staged[container_name].pop(blob_name, None)
            logger.debug(f"Deleted blob {container_name}/{blob_name}")

    async def list_blobs_flat(
        self,
        container_name: str,
        prefix: Optional[str] = None,
        include_snapshots: bool = False,
        include_metadata: bool = False,
        page_size: Optional[int] = None,
        continuation_token: Optional[str] = None,
    ) -> listing.ListPage:
        """
        List one page of blobs whose names start with ``prefix``.

        Snapshots, when included, follow their base blob in creation order.

        Raises:
            ContainerNotFoundError: If container not found
            InvalidQueryParameterError: If page size or token are invalid
        """
        prefix = prefix or ""
        page_size = listing.validate_page_size(page_size, self._config.max_page_size)

        async with self._lock:
            self._container(container_name)
            entries = listing.flat_entries(
                self._blobs[container_name],
                self._snapshots[container_name],
                prefix,
                include_snapshots,
            )
            page, token = listing.paginate(
                entries, page_size, continuation_token, listing.KIND_FLAT, prefix,
            )
            items = [self._listing_item(blob, include_metadata) for blob in page]
            return listing.ListPage(items=items, continuation_token=token, prefix=prefix)

    async def list_blobs_hierarchical(
        self,
        container_name: str,
        delimiter: str = "/",
        prefix: Optional[str] = None,
        include_metadata: bool = False,
        page_size: Optional[int] = None,
        continuation_token: Optional[str] = None,
    ) -> listing.ListPage:
        """
        List one level of the virtual directory tree under ``prefix``.

        Returns:
            Page of :class:`BlobItem` and :class:`BlobPrefix` entries

        Raises:
            ContainerNotFoundError: If container not found
            InvalidQueryParameterError: If delimiter, page size or token are invalid
        """
        prefix = prefix or ""
        page_size = listing.validate_page_size(page_size, self._config.max_page_size)

        async with self._lock:
            self._container(container_name)
            entries = listing.hierarchy_entries(self._blobs[container_name], prefix, delimiter)
            page, token = listing.paginate(
                entries, page_size, continuation_token, listing.KIND_HIERARCHY, prefix, delimiter,
            )
            items = [
                entry if isinstance(entry, BlobPrefix) else self._listing_item(entry, include_metadata)
                for entry in page
            ]
            return listing.ListPage(
                items=items, continuation_token=token, prefix=prefix, delimiter=delimiter,
            )

    def _listing_item(self, blob: Blob, include_metadata: bool):
        item = self._blob_view(blob).to_item()
        if not include_metadata:
            item.metadata = {}
        return item

    # ========================================================================
    # Snapshot Operations
    # ========================================================================

    async def create_snapshot(
        self,
        container_name: str,
        blob_name: str,
        metadata: Optional[Dict[str, str]] = None,
        lease_id: Optional[str] = None,
    ) -> Blob:
        """
        Capture a read-only, point-in-time copy of a blob.

        Args:
            container_name: Container name
            blob_name: Blob name
            metadata: Metadata for the snapshot; the blob's own when None
            lease_id: Not required, but must match the active lease if given

        Returns:
            The snapshot

        Raises:
            ContainerNotFoundError: If container not found
            BlobNotFoundError: If blob not found
        """
        if metadata is not None:
            metadata = validate_metadata(metadata)

        async with self._lock:
            blob = self._blob(container_name, blob_name)
            self.leases.check_read(blob.lease, f"{container_name}/{blob_name}", lease_id)

            snapshot = capture_snapshot(blob, self._snapshot_ids.next_id(), metadata)
            self._snapshots[container_name].setdefault(blob_name, {})[snapshot.snapshot_id] = snapshot

            logger.debug(f"Created snapshot {snapshot.snapshot_id} of {container_name}/{blob_name}")
            return self._blob_view(snapshot)

    async def list_snapshots(self, container_name: str, blob_name: str) -> List[str]:
        """Snapshot IDs of a blob, in creation order."""
        async with self._lock:
            self._blob(container_name, blob_name)
            return sorted(self._snapshots[container_name].get(blob_name, {}))

    # ========================================================================
    # Block Blob Operations
    # ========================================================================

    def _purge_stale_blocks(self, container_name: str, blob_name: str) -> Dict[str, Block]:
        staged = self._staged[container_name].get(blob_name, {})
        cutoff = self._clock() - timedelta(seconds=self._config.uncommitted_block_retention_seconds)
        stale = [block_id for block_id, block in staged.items() if block.staged_time < cutoff]
        for block_id in stale:
            del staged[block_id]
        if stale:
            logger.debug(f"Purged {len(stale)} expired uncommitted blocks of {container_name}/{blob_name}")
        return staged

    async def stage_block(
        self,
        container_name: str,
        blob_name: str,
        block_id: str,
        content: bytes,
        lease_id: Optional[str] = None,
    ) -> None:
        """
        Stage a block for a block blob.

        The block stays invisible until committed. Staging the same ID again
        replaces the earlier block.

        Args:
            container_name: Container name
            blob_name: Blob name
            block_id: Base64-encoded block ID
            content: Block content
            lease_id: Required when the blob is leased

        Raises:
            ContainerNotFoundError: If container not found
            InvalidBlockIdError: If the ID is invalid or its length differs
                from the blob's other block IDs
        """
        BlobNameValidator.validate_raise(blob_name)
        id_length = len(decode_block_id(block_id))

        async with self._lock:
            self._container(container_name)
            existing = self._blobs[container_name].get(blob_name)
            if existing is not None:
                if existing.properties.blob_type != BlobType.BLOCK_BLOB:
                    raise InvalidBlobTypeError(
                        blob_name, BlobType.BLOCK_BLOB.value, existing.properties.blob_type.value,
                    )
                self.leases.check_write(existing.lease, f"{container_name}/{blob_name}", lease_id)

            block = Block(
                block_id=block_id,
                size=len(content),
                content=bytes(content),
                staged_time=self._clock(),
            )
            staged = self._purge_stale_blocks(container_name, blob_name)
            committed = existing.committed_blocks if existing else []
            for other in list(staged.values()) + committed:
                if len(decode_block_id(other.block_id)) != id_length:
                    raise InvalidBlockIdError(
                        "All block IDs of a blob must have the same length",
                        details={"block_id": block_id},
                    )

            staged.pop(block_id, None)
            staged[block_id] = block
            self._staged[container_name][blob_name] = staged

            logger.debug(f"Staged block {block_id} for {container_name}/{blob_name} ({len(content)} bytes)")

    async def get_block_list(
        self,
        container_name: str,
        blob_name: str,
        block_list_filter: BlockListFilter = BlockListFilter.ALL,
        snapshot_id: Optional[str] = None,
    ) -> BlockList:
        """
        Get the committed and/or uncommitted block lists.

        Works for a blob that only has staged blocks so far.

        Raises:
            ContainerNotFoundError: If container not found
            BlobNotFoundError: If there is neither a blob nor staged blocks
        """
        async with self._lock:
            self._container(container_name)
            if snapshot_id is not None:
                blob = self._blob_or_snapshot(container_name, blob_name, snapshot_id)
                staged: Dict[str, Block] = {}
            else:
                blob = self._blobs[container_name].get(blob_name)
                staged = self._purge_stale_blocks(container_name, blob_name)
                if blob is None and not staged:
                    raise BlobNotFoundError(container_name, blob_name)

            result = BlockList()
            if block_list_filter in (BlockListFilter.ALL, BlockListFilter.COMMITTED) and blob is not None:
                result.committed = [
                    BlockInfo(block_id=block.block_id, size=block.size) for block in blob.committed_blocks
                ]
            if block_list_filter in (BlockListFilter.ALL, BlockListFilter.UNCOMMITTED):
                result.uncommitted = [
                    BlockInfo(block_id=block.block_id, size=block.size) for block in staged.values()
                ]
            return result

    async def commit_block_list(
        self,
        container_name: str,
        blob_name: str,
        blocks: Sequence[BlockReference],
        content_settings: Optional[ContentSettings] = None,
        metadata: Optional[Dict[str, str]] = None,
        conditions: Optional[AccessConditions] = None,
    ) -> BlobProperties:
        """
        Commit blocks to create or update a block blob.

        Readers see either the previous content or the new content, never a
        mix. Uncommitted blocks not named in the list are discarded.

        Args:
            container_name: Container name
            blob_name: Blob name
            blocks: Block IDs (looked up as ``Latest``) or
                ``(block_id, BlockListType)`` pairs, in content order
            content_settings: Content type and other HTTP headers
            metadata: Optional metadata
            conditions: Lease and ETag conditions

        Returns:
            Properties of the committed blob

        Raises:
            ContainerNotFoundError: If container not found
            InvalidBlockListError: If a block cannot be found where the list says
            LeaseIdMissingError: If blob is leased and lease_id not provided
            LeaseIdMismatchError: If lease_id doesn't match active lease
        """
        BlobNameValidator.validate_raise(blob_name)
        metadata = validate_metadata(metadata)
        references = [
            (ref, BlockListType.LATEST) if isinstance(ref, str) else (ref[0], BlockListType(ref[1]))
            for ref in blocks
        ]

        async with self._lock:
            self._container(container_name)
            existing = self._blobs[container_name].get(blob_name)
            if existing is not None and existing.properties.blob_type != BlobType.BLOCK_BLOB:
                raise InvalidBlobTypeError(
                    blob_name, BlobType.BLOCK_BLOB.value, existing.properties.blob_type.value,
                )
            self._check_blob_write(container_name, blob_name, existing, conditions)

            staged = self._purge_stale_blocks(container_name, blob_name)
            committed = {block.block_id: block for block in existing.committed_blocks} if existing else {}

            final_blocks: List[Block] = []
            for block_id, list_type in references:
                block = None
                if list_type == BlockListType.COMMITTED:
                    block = committed.get(block_id)
                elif list_type == BlockListType.UNCOMMITTED:
                    block = staged.get(block_id)
                else:
                    block = staged.get(block_id) or committed.get(block_id)
                if block is None:
                    raise InvalidBlockListError(
                        f"Block '{block_id}' not found in the {list_type.value} block list",
                        details={"block_id": block_id, "list": list_type.value},
                    )
                final_blocks.append(block)

            content = b"".join(block.content for block in final_blocks)
            blob = self._new_blob(
                container_name, blob_name, existing, BlobType.BLOCK_BLOB,
                content_settings, metadata, len(content),
            )
            blob.content = content
            blob.committed_blocks = [block.model_copy() for block in final_blocks]
            self._install(blob)

            logger.debug(
                f"Committed {len(final_blocks)} blocks to {container_name}/{blob_name} ({len(content)} bytes)"
            )
            return blob.properties.model_copy()

    # ========================================================================
    # Append Blob Operations
    # ========================================================================

    async def create_append_blob(
        self,
        container_name: str,
        blob_name: str,
        content_settings: Optional[ContentSettings] = None,
        metadata: Optional[Dict[str, str]] = None,
        conditions: Optional[AccessConditions] = None,
    ) -> BlobProperties:
        """Create (or reset) an empty append blob."""
        BlobNameValidator.validate_raise(blob_name)
        metadata = validate_metadata(metadata)

        async with self._lock:
            self._container(container_name)
            existing = self._blobs[container_name].get(blob_name)
            self._check_blob_write(container_name, blob_name, existing, conditions)

            blob = self._new_blob(
                container_name, blob_name, existing, BlobType.APPEND_BLOB,
                content_settings, metadata, 0,
            )
            blob.properties.committed_block_count = 0
            self._install(blob)

            logger.debug(f"Created append blob {container_name}/{blob_name}")
            return blob.properties.model_copy()

    async def append_block(
        self,
        container_name: str,
        blob_name: str,
        data: bytes,
        append_position: Optional[int] = None,
        conditions: Optional[AccessConditions] = None,
    ) -> BlobProperties:
        """
        Append a block to the end of an append blob.

        Args:
            append_position: If given, the blob's current length must equal it

        Raises:
            InvalidBlobTypeError: If the blob is not an append blob
            AppendPositionConditionNotMetError: If the position does not match
        """
        async with self._lock:
            blob = self._typed_blob(container_name, blob_name, BlobType.APPEND_BLOB)
            self._check_blob_write(container_name, blob_name, blob, conditions)

            current = len(blob.content)
            if append_position is not None and append_position != current:
                raise AppendPositionConditionNotMetError(
                    "The append position condition specified was not met",
                    expected=append_position,
                    actual=current,
                )

            blob.content = blob.content + bytes(data)
            blob.properties.content_length = len(blob.content)
            blob.properties.committed_block_count = (blob.properties.committed_block_count or 0) + 1
            self._touch(blob.properties)

            logger.debug(f"Appended {len(data)} bytes to {container_name}/{blob_name} at {current}")
            return blob.properties.model_copy()

    # ========================================================================
    # Page Blob Operations
    # ========================================================================

    @staticmethod
    def _check_page_range(offset: int, length: int, size: int) -> None:
        if offset < 0 or length <= 0 or offset % PAGE_SIZE or length % PAGE_SIZE:
            raise InvalidPageRangeError(
                f"Page ranges must be {PAGE_SIZE}-byte aligned and non-empty",
                details={"offset": offset, "length": length},
            )
        if offset + length > size:
            raise InvalidPageRangeError(
                "Page range exceeds the blob size",
                details={"offset": offset, "length": length, "size": size},
            )

    async def create_page_blob(
        self,
        container_name: str,
        blob_name: str,
        size: int,
        content_settings: Optional[ContentSettings] = None,
        metadata: Optional[Dict[str, str]] = None,
        conditions: Optional[AccessConditions] = None,
    ) -> BlobProperties:
        """
        Create (or reset) a page blob of fixed ``size`` with no pages written.

        Raises:
            InvalidPageRangeError: If size is negative or not a multiple of 512
        """
        BlobNameValidator.validate_raise(blob_name)
        metadata = validate_metadata(metadata)
        if size < 0 or size % PAGE_SIZE:
            raise InvalidPageRangeError(
                f"Page blob size must be a multiple of {PAGE_SIZE}",
                details={"size": size},
            )

        async with self._lock:
            self._container(container_name)
            existing = self._blobs[container_name].get(blob_name)
            self._check_blob_write(container_name, blob_name, existing, conditions)

            blob = self._new_blob(
                container_name, blob_name, existing, BlobType.PAGE_BLOB,
                content_settings, metadata, size,
            )
            self._install(blob)

            logger.debug(f"Created page blob {container_name}/{blob_name} ({size} bytes)")
            return blob.properties.model_copy()

    async def write_pages(
        self,
        container_name: str,
        blob_name: str,
        offset: int,
        data: bytes,
        conditions: Optional[AccessConditions] = None,
    ) -> BlobProperties:
        """
        Write whole pages at ``offset``.

        Raises:
            InvalidBlobTypeError: If the blob is not a page blob
            InvalidPageRangeError: If misaligned or past the blob size
        """
        async with self._lock:
            blob = self._typed_blob(container_name, blob_name, BlobType.PAGE_BLOB)
            self._check_page_range(offset, len(data), blob.properties.content_length)
            self._check_blob_write(container_name, blob_name, blob, conditions)

            first_page = offset // PAGE_SIZE
            for i in range(len(data) // PAGE_SIZE):
                blob.pages[first_page + i] = bytes(data[i * PAGE_SIZE:(i + 1) * PAGE_SIZE])
            self._touch(blob.properties)

            logger.debug(f"Wrote {len(data)} bytes of pages to {container_name}/{blob_name} at {offset}")
            return blob.properties.model_copy()

    async def clear_pages(
        self,
        container_name: str,
        blob_name: str,
        offset: int,
        length: int,
        conditions: Optional[AccessConditions] = None,
    ) -> BlobProperties:
        """Clear pages so they read as zeros and leave the valid ranges."""
        async with self._lock:
            blob = self._typed_blob(container_name, blob_name, BlobType.PAGE_BLOB)
            self._check_page_range(offset, length, blob.properties.content_length)
            self._check_blob_write(container_name, blob_name, blob, conditions)

            first_page = offset // PAGE_SIZE
            for index in range(first_page, first_page + length // PAGE_SIZE):
                blob.pages.pop(index, None)
            self._touch(blob.properties)

            logger.debug(f"Cleared {length} bytes of pages in {container_name}/{blob_name} at {offset}")
            return blob.properties.model_copy()

    async def resize_page_blob(
        self,
        container_name: str,
        blob_name: str,
        size: int,
        conditions: Optional[AccessConditions] = None,
    ) -> BlobProperties:
        """Change a page blob's size; pages past the new end are dropped."""
        if size < 0 or size % PAGE_SIZE:
            raise InvalidPageRangeError(
                f"Page blob size must be a multiple of {PAGE_SIZE}",
                details={"size": size},
            )

        async with self._lock:
            blob = self._typed_blob(container_name, blob_name, BlobType.PAGE_BLOB)
            self._check_blob_write(container_name, blob_name, blob, conditions)

            last_page = size // PAGE_SIZE
            blob.pages = {index: page for index, page in blob.pages.items() if index < last_page}
            blob.properties.content_length = size
            self._touch(blob.properties)
            return blob.properties.model_copy()

    async def get_page_ranges(
        self,
        container_name: str,
        blob_name: str,
        snapshot_id: Optional[str] = None,
    ) -> List[PageRange]:
        """
        Valid (written) ranges of a page blob, merged and in order.

        Ranges are inclusive: a single page at offset 0 is ``(0, 511)``.
        """
        async with self._lock:
            blob = self._blob_or_snapshot(container_name, blob_name, snapshot_id)
            if blob.properties.blob_type != BlobType.PAGE_BLOB:
                raise InvalidBlobTypeError(
                    blob_name, BlobType.PAGE_BLOB.value, blob.properties.blob_type.value,
                )

            ranges: List[PageRange] = []
            for index in sorted(blob.pages):
                start = index * PAGE_SIZE
                if ranges and ranges[-1].end + 1 == start:
                    ranges[-1].end = start + PAGE_SIZE - 1
                else:
                    ranges.append(PageRange(start=start, end=start + PAGE_SIZE - 1))
            return ranges

    # ========================================================================
    # Lease Operations
    # ========================================================================

    def _lease_holder(self, container_name: str, blob_name: Optional[str]) -> Tuple[Union[Container, Blob], str]:
        if blob_name is None:
            return self._container(container_name), container_name
        return self._blob(container_name, blob_name), f"{container_name}/{blob_name}"

    async def acquire_lease(
        self,
        container_name: str,
        duration: int,
        proposed_lease_id: Optional[str] = None,
        blob_name: Optional[str] = None,
    ) -> str:
        """
        Acquire a lease on a container, or on a blob when ``blob_name`` is given.

        Returns:
            The active lease ID

        Raises:
            InvalidLeaseDurationError: If duration is invalid
            LeaseAlreadyPresentError: If already leased under another ID
        """
        async with self._lock:
            holder, path = self._lease_holder(container_name, blob_name)
            holder.lease = self.leases.acquire(holder.lease, path, duration, proposed_lease_id)
            return holder.lease.lease_id

    async def renew_lease(
        self,
        container_name: str,
        lease_id: str,
        blob_name: Optional[str] = None,
    ) -> str:
        async with self._lock:
            holder, path = self._lease_holder(container_name, blob_name)
            holder.lease = self.leases.renew(holder.lease, path, lease_id)
            return holder.lease.lease_id

    async def change_lease(
        self,
        container_name: str,
        lease_id: str,
        proposed_lease_id: str,
        blob_name: Optional[str] = None,
    ) -> str:
        async with self._lock:
            holder, path = self._lease_holder(container_name, blob_name)
            holder.lease = self.leases.change(holder.lease, path, lease_id, proposed_lease_id)
            return holder.lease.lease_id

    async def release_lease(
        self,
        container_name: str,
        lease_id: str,
        blob_name: Optional[str] = None,
    ) -> None:
        async with self._lock:
            holder, path = self._lease_holder(container_name, blob_name)
            holder.lease = self.leases.release(holder.lease, path, lease_id)

    async def break_lease(
        self,
        container_name: str,
        break_period: Optional[int] = None,
        blob_name: Optional[str] = None,
    ) -> int:
        """
        Break a lease.

        Returns:
            Seconds until the lease is broken (0 when broken immediately)
        """
        async with self._lock:
            holder, path = self._lease_holder(container_name, blob_name)
            holder.lease, remaining = self.leases.break_lease(holder.lease, path, break_period)
            return remaining

    # ========================================================================
    # Copy Support
    # ========================================================================

    async def read_for_copy(
        self,
        container_name: str,
        blob_name: str,
        snapshot_id: Optional[str] = None,
        lease_id: Optional[str] = None,
    ) -> Blob:
        """Capture the copy source as of now."""
        return await self.get_blob(container_name, blob_name, snapshot_id, lease_id)

    async def check_copy_destination(
        self,
        container_name: str,
        blob_name: str,
        conditions: Optional[AccessConditions] = None,
    ) -> None:
        """Fail fast if the destination could not be written right now."""
        BlobNameValidator.validate_raise(blob_name)
        async with self._lock:
            self._container(container_name)
            existing = self._blobs[container_name].get(blob_name)
            self._check_blob_write(container_name, blob_name, existing, conditions)

    async def complete_copy(
        self,
        container_name: str,
        blob_name: str,
        source: Blob,
        content: bytes,
        copy_properties: Dict[str, object],
        metadata: Optional[Dict[str, str]] = None,
        conditions: Optional[AccessConditions] = None,
    ) -> BlobProperties:
        """
        Swap copied content into the destination in one step.

        Args:
            container_name: Destination container
            blob_name: Destination blob
            source: Source blob as captured when the copy started
            content: Copied bytes (ignored for page blobs, whose pages are copied)
            copy_properties: ``copy_*`` property values to record
            metadata: Destination metadata; the source's when None
            conditions: Destination lease and ETag conditions, re-checked here

        Raises:
            ContainerNotFoundError: If the destination container is gone
            LeaseIdMissingError: If the destination became leased
        """
        async with self._lock:
            self._container(container_name)
            existing = self._blobs[container_name].get(blob_name)
            self._check_blob_write(container_name, blob_name, existing, conditions)

            blob = self._new_blob(
                container_name,
                blob_name,
                existing,
                source.properties.blob_type,
                source.properties.content_settings,
                source.metadata if metadata is None else metadata,
                source.properties.content_length,
            )
            if source.properties.blob_type == BlobType.PAGE_BLOB:
                blob.pages = dict(source.pages)
            else:
                blob.content = content
                blob.committed_blocks = [block.model_copy() for block in source.committed_blocks]
                blob.properties.committed_block_count = source.properties.committed_block_count
            for key, value in copy_properties.items():
                setattr(blob.properties, key, value)
            blob.properties.copy_status = CopyStatus.SUCCESS
            self._install(blob)
            return blob.properties.model_copy()

    async def reset(self) -> None:
        """Reset store state (for testing)."""
        async with self._lock:
            self._containers.clear()
            self._blobs.clear()
            self._snapshots.clear()
            self._staged.clear()
