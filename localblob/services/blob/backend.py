"""
Blob Service

Public entry point of LocalBlob. ``BlobService`` composes the object store,
lease manager, listing engine, copy manager and SAS validator behind one
async API.

Every operation accepts two keyword arguments:

* ``sas_token``: when given, the request is authorized against it before any
  storage is touched; when omitted the caller is treated as holding the
  account key.
* ``timeout``: seconds before the operation is cancelled with
  ``OperationTimeoutError``. Mutations commit inside a single lock section,
  so a cancelled operation has either fully happened or not at all.

Idempotent reads, and writes guarded by ``if_match``, are retried with
backoff on transient errors.

Author: LocalBlob Team
Date: 2026-10-17
"""

import logging
import uuid
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from localblob.auth.exceptions import SASPermissionDeniedError
from localblob.auth.sas import (
    SASDecision,
    SASGenerator,
    SASPermissions,
    SASResource,
    SASScope,
    SASValidator,
    SharedKeySigner,
    StoredAccessPolicy,
)
from localblob.core.clock import Clock, utc_now
from localblob.core.config_manager import LocalBlobConfig
from localblob.core.logging_config import clear_correlation_id, correlation_id, set_correlation_id
from localblob.exceptions import InvalidArgumentError, ResourceNotFoundError

from .copy import CopyManager, CopyOperation
from .exceptions import (
    ContainerAlreadyExistsError,
    CopyNotFoundError,
    InvalidQueryParameterError,
    PolicyNotFoundError,
)
from .listing import ListPage
from .models import (
    AccessConditions,
    BlobDownload,
    BlobProperties,
    BlockList,
    BlockListFilter,
    Container,
    ContainerProperties,
    ContentSettings,
    DeleteSnapshotsOption,
    PageRange,
    PublicAccessLevel,
    ServiceProperties,
)
from .resilience import FaultInjector, call_with_faults, with_retry, run_with_timeout
from .store import BlobStore, BlockReference

logger = logging.getLogger(__name__)

T = TypeVar("T")

READ = SASPermissions.READ
WRITE = SASPermissions.WRITE
CREATE_OR_WRITE = SASPermissions.CREATE | SASPermissions.WRITE
DELETE = SASPermissions.DELETE
LIST = SASPermissions.LIST
KEY_ONLY = SASPermissions.NONE


def _is_conditional(conditions: Optional[AccessConditions]) -> bool:
    return conditions is not None and conditions.if_match is not None


class BlobService:
    """
    In-process blob storage service.

    Example::

        service = BlobService()
        await service.create_container("photos")
        props = await service.upload_blob("photos", "cat.jpg", data)
        download = await service.download_blob("photos", "cat.jpg")
    """

    def __init__(self, config: Optional[LocalBlobConfig] = None, clock: Clock = utc_now):
        self.config = config or LocalBlobConfig()
        self._clock = clock
        self.store = BlobStore(clock=clock, config=self.config.storage)
        self.copies = CopyManager(self.store, clock=clock)
        signer = SharedKeySigner(self.config.account.name, self.config.account.key)
        self.sas_generator = SASGenerator(signer, self.config.account.sas_version)
        self.sas_validator = SASValidator(signer)
        self.faults = FaultInjector(self.config.fault_injection)
        self._service_properties = ServiceProperties()

    @property
    def account_name(self) -> str:
        return self.config.account.name

    async def close(self) -> None:
        """Abort pending copies."""
        await self.copies.close()

    # ========================================================================
    # Request pipeline
    # ========================================================================

    def _authorize(
        self,
        sas_token: Optional[str],
        resource: SASResource,
        permission: SASPermissions,
    ) -> None:
        if sas_token is None:
            return
        self.sas_validator.validate(
            sas_token,
            resource,
            permission,
            now=self._clock(),
            policy_lookup=self.store.lookup_access_policy,
        )

    async def _execute(
        self,
        name: str,
        operation: Callable[[], Awaitable[T]],
        *,
        resource: SASResource,
        permission: SASPermissions,
        sas_token: Optional[str],
        timeout: Optional[float],
        retry: bool = False,
    ) -> T:
        """Authorize, then run ``operation`` with fault injection, retry and timeout."""
        owns_correlation = correlation_id.get() is None
        if owns_correlation:
            set_correlation_id(str(uuid.uuid4()))
        try:
            self._authorize(sas_token, resource, permission)

            async def attempt() -> T:
                return await call_with_faults(operation, self.faults, name)

            async def run() -> T:
                if retry:
                    return await with_retry(attempt, self.config.retry, name)
                return await attempt()

            return await run_with_timeout(run, timeout, name)
        finally:
            if owns_correlation:
                clear_correlation_id()

    async def _creation_conditions(
        self,
        sas_token: Optional[str],
        container_name: str,
        blob_name: str,
        conditions: Optional[AccessConditions],
    ) -> Optional[AccessConditions]:
        """
        Authorize a write that may create or overwrite a blob.

        A token holding only Create may create new blobs but not overwrite
        existing ones; the returned conditions make the store enforce that
        atomically.
        """
        resource = SASResource.for_blob(container_name, blob_name)
        self._authorize(sas_token, resource, CREATE_OR_WRITE)
        if sas_token is None:
            return conditions
        decision = self.sas_validator.evaluate(
            sas_token, resource, WRITE, now=self._clock(), policy_lookup=self.store.lookup_access_policy,
        )
        if decision == SASDecision.OK:
            return conditions
        if await self.store.blob_exists(container_name, blob_name):
            raise SASPermissionDeniedError("A token with Create permission cannot overwrite an existing blob")
        merged = (conditions or AccessConditions()).model_copy()
        merged.if_none_match = "*"
        return merged

    # ========================================================================
    # Service Operations
    # ========================================================================

    async def get_service_properties(self, *, sas_token: Optional[str] = None,
                                     timeout: Optional[float] = None) -> ServiceProperties:
        async def op() -> ServiceProperties:
            return self._service_properties.model_copy(deep=True)
        return await self._execute(
            "get_service_properties", op, resource=SASResource.account(), permission=KEY_ONLY,
            sas_token=sas_token, timeout=timeout, retry=True,
        )

    async def set_service_properties(self, properties: ServiceProperties, *, sas_token: Optional[str] = None,
                                     timeout: Optional[float] = None) -> None:
        """Store logging, metrics, CORS and default version settings as given."""
        async def op() -> None:
            self._service_properties = ServiceProperties.model_validate(properties.model_dump())
            logger.debug("Service properties updated")
        await self._execute(
            "set_service_properties", op, resource=SASResource.account(), permission=KEY_ONLY,
            sas_token=sas_token, timeout=timeout,
        )

    async def get_account_info(self, *, sas_token: Optional[str] = None,
                               timeout: Optional[float] = None) -> Dict[str, str]:
        async def op() -> Dict[str, str]:
            return {
                "account_name": self.account_name,
                "sku_name": "Standard_LRS",
                "account_kind": "StorageV2",
            }
        return await self._execute(
            "get_account_info", op, resource=SASResource.account(), permission=READ,
            sas_token=sas_token, timeout=timeout, retry=True,
        )

    # ========================================================================
    # Container Operations
    # ========================================================================

    async def create_container(
        self,
        name: str,
        metadata: Optional[Dict[str, str]] = None,
        public_access: PublicAccessLevel = PublicAccessLevel.PRIVATE,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Container:
        """
        Create a container.

        Raises:
            InvalidContainerNameError: If name is invalid
            ContainerAlreadyExistsError: If the container exists
        """
        return await self._execute(
            "create_container",
            lambda: self.store.create_container(name, metadata, public_access),
            resource=SASResource.account(), permission=CREATE_OR_WRITE,
            sas_token=sas_token, timeout=timeout,
        )

    async def delete_container(
        self,
        name: str,
        conditions: Optional[AccessConditions] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Delete a container and every blob and snapshot in it.

        Raises:
            ContainerNotFoundError: If the container does not exist
            LeaseIdMissingError: If the container is leased and no ID was given
        """
        await self._execute(
            "delete_container",
            lambda: self.store.delete_container(name, conditions),
            resource=SASResource.account(), permission=DELETE,
            sas_token=sas_token, timeout=timeout,
        )

    async def create_container_if_not_exists(
        self,
        name: str,
        metadata: Optional[Dict[str, str]] = None,
        public_access: PublicAccessLevel = PublicAccessLevel.PRIVATE,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Create a container unless one with this name already exists.

        Returns:
            True if the container was created, False if it already existed
        """
        try:
            await self.create_container(name, metadata, public_access, sas_token=sas_token, timeout=timeout)
        except ContainerAlreadyExistsError:
            logger.debug(f"Container '{name}' already exists")
            return False
        return True

    async def delete_container_if_exists(
        self,
        name: str,
        conditions: Optional[AccessConditions] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Delete a container unless it is already gone.

        Returns:
            True if the container was deleted, False if it did not exist
        """
        try:
            await self.delete_container(name, conditions, sas_token=sas_token, timeout=timeout)
        except ResourceNotFoundError:
            logger.debug(f"Container '{name}' does not exist")
            return False
        return True

    async def get_container_properties(self, name: str, *, sas_token: Optional[str] = None,
                                       timeout: Optional[float] = None) -> ContainerProperties:
        return await self._execute(
            "get_container_properties",
            lambda: self.store.get_container_properties(name),
            resource=SASResource.for_container(name), permission=READ,
            sas_token=sas_token, timeout=timeout, retry=True,
        )

    async def get_container(self, name: str, *, sas_token: Optional[str] = None,
                            timeout: Optional[float] = None) -> Container:
        """Container with metadata, properties and current lease view."""
        return await self._execute(
            "get_container",
            lambda: self.store.get_container(name),
            resource=SASResource.for_container(name), permission=READ,
            sas_token=sas_token, timeout=timeout, retry=True,
        )

    async def container_exists(self, name: str, *, sas_token: Optional[str] = None,
                               timeout: Optional[float] = None) -> bool:
        return await self._execute(
            "container_exists",
            lambda: self.store.container_exists(name),
            resource=SASResource.for_container(name), permission=READ,
            sas_token=sas_token, timeout=timeout, retry=True,
        )

    async def set_container_metadata(
        self,
        name: str,
        metadata: Dict[str, str],
        conditions: Optional[AccessConditions] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Container:
        return await self._execute(
            "set_container_metadata",
            lambda: self.store.set_container_metadata(name, metadata, conditions),
            resource=SASResource.account(), permission=WRITE,
            sas_token=sas_token, timeout=timeout, retry=_is_conditional(conditions),
        )

    async def set_container_public_access(
        self,
        name: str,
        public_access: PublicAccessLevel,
        conditions: Optional[AccessConditions] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Container:
        return await self._execute(
            "set_container_public_access",
            lambda: self.store.set_container_public_access(name, public_access, conditions),
            resource=SASResource.account(), permission=WRITE,
            sas_token=sas_token, timeout=timeout, retry=_is_conditional(conditions),
        )

    async def set_container_access_policy(
        self,
        name: str,
        policies: Sequence[StoredAccessPolicy],
        public_access: Optional[PublicAccessLevel] = None,
        conditions: Optional[AccessConditions] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Container:
        """
        Replace the container's stored access policies.

        Only the account key holder may manage policies, so any SAS is
        rejected.
        """
        return await self._execute(
            "set_container_access_policy",
            lambda: self.store.set_container_access_policy(name, policies, public_access, conditions),
            resource=SASResource.for_container(name), permission=KEY_ONLY,
            sas_token=sas_token, timeout=timeout, retry=_is_conditional(conditions),
        )

    async def get_container_access_policy(
        self,
        name: str,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Tuple[PublicAccessLevel, List[StoredAccessPolicy]]:
        return await self._execute(
            "get_container_access_policy",
            lambda: self.store.get_container_access_policy(name),
            resource=SASResource.for_container(name), permission=KEY_ONLY,
            sas_token=sas_token, timeout=timeout, retry=True,
        )

    async def list_containers(
        self,
        prefix: Optional[str] = None,
        include_metadata: bool = False,
        page_size: Optional[int] = None,
        continuation_token: Optional[str] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ListPage:
        """One page of containers; pass the page's token back for the next."""
        return await self._execute(
            "list_containers",
            lambda: self.store.list_containers(prefix, include_metadata, page_size, continuation_token),
            resource=SASResource.account(), permission=LIST,
            sas_token=sas_token, timeout=timeout, retry=True,
        )

    async def iter_container_pages(
        self,
        prefix: Optional[str] = None,
        include_metadata: bool = False,
        page_size: Optional[int] = None,
        *,
        sas_token: Optional[str] = None,
    ) -> AsyncIterator[ListPage]:
        """Yield container pages until the listing is exhausted."""
        token = None
        while True:
            page = await self.list_containers(
                prefix, include_metadata, page_size, token, sas_token=sas_token,
            )
            yield page
            token = page.continuation_token
            if token is None:
                return

    # ========================================================================
    # Lease Operations
    # ========================================================================

    async def _lease_call(self, name: str, operation: Callable[[], Awaitable[T]], container_name: str,
                          blob_name: Optional[str], sas_token: Optional[str], timeout: Optional[float]) -> T:
        resource = (SASResource.for_container(container_name) if blob_name is None
                    else SASResource.for_blob(container_name, blob_name))
        return await self._execute(
            name, operation, resource=resource, permission=WRITE, sas_token=sas_token, timeout=timeout,
        )

    async def acquire_container_lease(self, name: str, duration: int = -1, proposed_lease_id: Optional[str] = None,
                                      *, sas_token: Optional[str] = None, timeout: Optional[float] = None) -> str:
        """
        Acquire a lease on a container.

        Args:
            name: Container name
            duration: 15-60 seconds, or -1 (or 0) for infinite
            proposed_lease_id: Optional lease ID to use

        Returns:
            Lease ID
        """
        return await self._lease_call(
            "acquire_container_lease",
            lambda: self.store.acquire_lease(name, duration, proposed_lease_id),
            name, None, sas_token, timeout,
        )

    async def renew_container_lease(self, name: str, lease_id: str, *, sas_token: Optional[str] = None,
                                    timeout: Optional[float] = None) -> str:
        return await self._lease_call(
            "renew_container_lease", lambda: self.store.renew_lease(name, lease_id),
            name, None, sas_token, timeout,
        )

    async def change_container_lease(self, name: str, lease_id: str, proposed_lease_id: str, *,
                                     sas_token: Optional[str] = None, timeout: Optional[float] = None) -> str:
        return await self._lease_call(
            "change_container_lease", lambda: self.store.change_lease(name, lease_id, proposed_lease_id),
            name, None, sas_token, timeout,
        )

    async def release_container_lease(self, name: str, lease_id: str, *, sas_token: Optional[str] = None,
                                      timeout: Optional[float] = None) -> None:
        await self._lease_call(
            "release_container_lease", lambda: self.store.release_lease(name, lease_id),
            name, None, sas_token, timeout,
        )

    async def break_container_lease(self, name: str, break_period: Optional[int] = None, *,
                                    sas_token: Optional[str] = None, timeout: Optional[float] = None) -> int:
        """Break a container lease; returns seconds until it is broken."""
        return await self._lease_call(
            "break_container_lease", lambda: self.store.break_lease(name, break_period),
            name, None, sas_token, timeout,
        )

    async def acquire_blob_lease(self, container_name: str, blob_name: str, duration: int = -1,
                                 proposed_lease_id: Optional[str] = None, *, sas_token: Optional[str] = None,
                                 timeout: Optional[float] = None) -> str:
        return await self._lease_call(
            "acquire_blob_lease",
            lambda: self.store.acquire_lease(container_name, duration, proposed_lease_id, blob_name=blob_name),
            container_name, blob_name, sas_token, timeout,
        )

    async def renew_blob_lease(self, container_name: str, blob_name: str, lease_id: str, *,
                               sas_token: Optional[str] = None, timeout: Optional[float] = None) -> str:
        return await self._lease_call(
            "renew_blob_lease",
            lambda: self.store.renew_lease(container_name, lease_id, blob_name=blob_name),
            container_name, blob_name, sas_token, timeout,
        )

    async def change_blob_lease(self, container_name: str, blob_name: str, lease_id: str, proposed_lease_id: str,
                                *, sas_token: Optional[str] = None, timeout: Optional[float] = None) -> str:
        return await self._lease_call(
            "change_blob_lease",
            lambda: self.store.change_lease(container_name, lease_id, proposed_lease_id, blob_name=blob_name),
            container_name, blob_name, sas_token, timeout,
        )

    async def release_blob_lease(self, container_name: str, blob_name: str, lease_id: str, *,
                                 sas_token: Optional[str] = None, timeout: Optional[float] = None) -> None:
        await self._lease_call(
            "release_blob_lease",
            lambda: self.store.release_lease(container_name, lease_id, blob_name=blob_name),
            container_name, blob_name, sas_token, timeout,
        )

    async def break_blob_lease(self, container_name: str, blob_name: str, break_period: Optional[int] = None,
                               *, sas_token: Optional[str] = None, timeout: Optional[float] = None) -> int:
        return await self._lease_call(
            "break_blob_lease",
            lambda: self.store.break_lease(container_name, break_period, blob_name=blob_name),
            container_name, blob_name, sas_token, timeout,
        )

    # ========================================================================
    # Blob Operations
    # ========================================================================

    async def upload_blob(
        self,
        container_name: str,
        blob_name: str,
        data: bytes,
        content_settings: Optional[ContentSettings] = None,
        metadata: Optional[Dict[str, str]] = None,
        conditions: Optional[AccessConditions] = None,
        overwrite: bool = True,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> BlobProperties:
        """
        Upload whole content as a block blob.

        Returns:
            Properties of the stored blob, including its new ETag

        Raises:
            ContainerNotFoundError: If the container does not exist
            BlobAlreadyExistsError: If overwrite is False and the blob exists
            LeaseIdMissingError: If the blob is leased and no ID was given
            ConditionNotMetError: If an ETag condition fails
        """
        conditions = await self._creation_conditions(sas_token, container_name, blob_name, conditions)
        return await self._execute(
            "upload_blob",
            lambda: self.store.put_blob(
                container_name, blob_name, data, content_settings, metadata, conditions, overwrite,
            ),
            resource=SASResource.for_blob(container_name, blob_name), permission=CREATE_OR_WRITE,
            sas_token=sas_token, timeout=timeout, retry=_is_conditional(conditions),
        )

    async def download_blob(
        self,
        container_name: str,
        blob_name: str,
        snapshot_id: Optional[str] = None,
        offset: Optional[int] = None,
        length: Optional[int] = None,
        lease_id: Optional[str] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> BlobDownload:
        """
        Read a blob, or one of its snapshots, optionally a byte range.

        Raises:
            ContainerNotFoundError: If the container does not exist
            BlobNotFoundError: If the blob does not exist
            SnapshotNotFoundError: If the snapshot does not exist
        """
        return await self._execute(
            "download_blob",
            lambda: self.store.download_blob(container_name, blob_name, snapshot_id, offset, length, lease_id),
            resource=SASResource.for_blob(container_name, blob_name), permission=READ,
            sas_token=sas_token, timeout=timeout, retry=True,
        )

    async def get_blob_properties(
        self,
        container_name: str,
        blob_name: str,
        snapshot_id: Optional[str] = None,
        lease_id: Optional[str] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> BlobProperties:
        return await self._execute(
            "get_blob_properties",
            lambda: self.store.get_blob_properties(container_name, blob_name, snapshot_id, lease_id),
            resource=SASResource.for_blob(container_name, blob_name), permission=READ,
            sas_token=sas_token, timeout=timeout, retry=True,
        )

    async def get_blob_metadata(
        self,
        container_name: str,
        blob_name: str,
        snapshot_id: Optional[str] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, str]:
        async def op() -> Dict[str, str]:
            blob = await self.store.get_blob(container_name, blob_name, snapshot_id)
            return blob.metadata
        return await self._execute(
            "get_blob_metadata", op,
            resource=SASResource.for_blob(container_name, blob_name), permission=READ,
            sas_token=sas_token, timeout=timeout, retry=True,
        )

    async def blob_exists(
        self,
        container_name: str,
        blob_name: str,
        snapshot_id: Optional[str] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        return await self._execute(
            "blob_exists",
            lambda: self.store.blob_exists(container_name, blob_name, snapshot_id),
            resource=SASResource.for_blob(container_name, blob_name), permission=READ,
            sas_token=sas_token, timeout=timeout, retry=True,
        )

    async def set_blob_metadata(
        self,
        container_name: str,
        blob_name: str,
        metadata: Dict[str, str],
        conditions: Optional[AccessConditions] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> BlobProperties:
        return await self._execute(
            "set_blob_metadata",
            lambda: self.store.set_blob_metadata(container_name, blob_name, metadata, conditions),
            resource=SASResource.for_blob(container_name, blob_name), permission=WRITE,
            sas_token=sas_token, timeout=timeout, retry=_is_conditional(conditions),
        )

    async def set_blob_properties(
        self,
        container_name: str,
        blob_name: str,
        content_settings: ContentSettings,
        conditions: Optional[AccessConditions] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> BlobProperties:
        return await self._execute(
            "set_blob_properties",
            lambda: self.store.set_blob_properties(container_name, blob_name, content_settings, conditions),
            resource=SASResource.for_blob(container_name, blob_name), permission=WRITE,
            sas_token=sas_token, timeout=timeout, retry=_is_conditional(conditions),
        )

    async def delete_blob(
        self,
        container_name: str,
        blob_name: str,
        delete_snapshots: Optional[DeleteSnapshotsOption] = None,
        conditions: Optional[AccessConditions] = None,
        snapshot_id: Optional[str] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Delete a blob, its snapshots (``delete_snapshots``), or one snapshot.

        Raises:
            BlobNotFoundError: If the blob does not exist
            SnapshotsPresentError: If snapshots exist and no option was given
            LeaseIdMissingError: If the blob is leased and no ID was given
        """
        await self._execute(
            "delete_blob",
            lambda: self.store.delete_blob(container_name, blob_name, delete_snapshots, conditions, snapshot_id),
            resource=SASResource.for_blob(container_name, blob_name), permission=DELETE,
            sas_token=sas_token, timeout=timeout,
        )

    async def delete_blob_if_exists(
        self,
        container_name: str,
        blob_name: str,
        delete_snapshots: Optional[DeleteSnapshotsOption] = None,
        conditions: Optional[AccessConditions] = None,
        snapshot_id: Optional[str] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Delete a blob unless it (or its container) is already gone.

        Returns:
            True if the blob was deleted, False if it did not exist

        Raises:
            SnapshotsPresentError: If snapshots exist and no option was given
            LeaseIdMissingError: If the blob is leased and no ID was given
        """
        try:
            await self.delete_blob(
                container_name, blob_name, delete_snapshots, conditions, snapshot_id,
                sas_token=sas_token, timeout=timeout,
            )
        except ResourceNotFoundError as e:
            logger.debug(f"Blob '{container_name}/{blob_name}' not deleted: {e.error_code}")
            return False
        return True

    async def list_blobs(
        self,
        container_name: str,
        prefix: Optional[str] = None,
        include_snapshots: bool = False,
        include_metadata: bool = False,
        page_size: Optional[int] = None,
        continuation_token: Optional[str] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ListPage:
        """
        One page of a flat listing, in name order.

        Raises:
            ContainerNotFoundError: If the container does not exist
            InvalidQueryParameterError: If page size or token are invalid
        """
        return await self._execute(
            "list_blobs",
            lambda: self.store.list_blobs_flat(
                container_name, prefix, include_snapshots, include_metadata, page_size, continuation_token,
            ),
            resource=SASResource.for_container(container_name), permission=LIST,
            sas_token=sas_token, timeout=timeout, retry=True,
        )

    async def list_blobs_hierarchical(
        self,
        container_name: str,
        delimiter: str = "/",
        prefix: Optional[str] = None,
        include_metadata: bool = False,
        page_size: Optional[int] = None,
        continuation_token: Optional[str] = None,
        include_snapshots: bool = False,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ListPage:
        """
        One page of one virtual-directory level under ``prefix``.

        Deeper levels are listed by calling again with a returned prefix.

        Raises:
            InvalidQueryParameterError: If snapshots are requested, which a
                hierarchical listing cannot include
        """
        if include_snapshots:
            raise InvalidQueryParameterError(
                "Snapshots cannot be included in a hierarchical listing",
                details={"delimiter": delimiter},
            )
        return await self._execute(
            "list_blobs_hierarchical",
            lambda: self.store.list_blobs_hierarchical(
                container_name, delimiter, prefix, include_metadata, page_size, continuation_token,
            ),
            resource=SASResource.for_container(container_name), permission=LIST,
            sas_token=sas_token, timeout=timeout, retry=True,
        )

    async def iter_blob_pages(
        self,
        container_name: str,
        prefix: Optional[str] = None,
        delimiter: Optional[str] = None,
        include_snapshots: bool = False,
        include_metadata: bool = False,
        page_size: Optional[int] = None,
        *,
        sas_token: Optional[str] = None,
    ) -> AsyncIterator[ListPage]:
        """Yield flat (or, with ``delimiter``, hierarchical) pages until exhausted."""
        token = None
        while True:
            if delimiter is None:
                page = await self.list_blobs(
                    container_name, prefix, include_snapshots, include_metadata, page_size, token,
                    sas_token=sas_token,
                )
            else:
                page = await self.list_blobs_hierarchical(
                    container_name, delimiter, prefix, include_metadata, page_size, token, include_snapshots,
                    sas_token=sas_token,
                )
            yield page
            token = page.continuation_token
            if token is None:
                return

    # ========================================================================
    # Block Blob Operations
    # ========================================================================

    async def stage_block(
        self,
        container_name: str,
        blob_name: str,
        block_id: str,
        data: bytes,
        lease_id: Optional[str] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        await self._execute(
            "stage_block",
            lambda: self.store.stage_block(container_name, blob_name, block_id, data, lease_id),
            resource=SASResource.for_blob(container_name, blob_name), permission=CREATE_OR_WRITE,
            sas_token=sas_token, timeout=timeout,
        )

    async def commit_block_list(
        self,
        container_name: str,
        blob_name: str,
        blocks: Sequence[BlockReference],
        content_settings: Optional[ContentSettings] = None,
        metadata: Optional[Dict[str, str]] = None,
        conditions: Optional[AccessConditions] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> BlobProperties:
        """
        Commit staged and/or committed blocks as the blob's new content.

        Raises:
            InvalidBlockListError: If a listed block cannot be found
        """
        conditions = await self._creation_conditions(sas_token, container_name, blob_name, conditions)
        return await self._execute(
            "commit_block_list",
            lambda: self.store.commit_block_list(
                container_name, blob_name, blocks, content_settings, metadata, conditions,
            ),
            resource=SASResource.for_blob(container_name, blob_name), permission=CREATE_OR_WRITE,
            sas_token=sas_token, timeout=timeout, retry=_is_conditional(conditions),
        )

    async def get_block_list(
        self,
        container_name: str,
        blob_name: str,
        block_list_filter: BlockListFilter = BlockListFilter.ALL,
        snapshot_id: Optional[str] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> BlockList:
        return await self._execute(
            "get_block_list",
            lambda: self.store.get_block_list(container_name, blob_name, block_list_filter, snapshot_id),
            resource=SASResource.for_blob(container_name, blob_name), permission=READ,
            sas_token=sas_token, timeout=timeout, retry=True,
        )

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
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> BlobProperties:
        conditions = await self._creation_conditions(sas_token, container_name, blob_name, conditions)
        return await self._execute(
            "create_append_blob",
            lambda: self.store.create_append_blob(container_name, blob_name, content_settings, metadata, conditions),
            resource=SASResource.for_blob(container_name, blob_name), permission=CREATE_OR_WRITE,
            sas_token=sas_token, timeout=timeout,
        )

    async def append_block(
        self,
        container_name: str,
        blob_name: str,
        data: bytes,
        append_position: Optional[int] = None,
        conditions: Optional[AccessConditions] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> BlobProperties:
        """Append ``data``; with ``append_position`` the append only lands at that offset."""
        return await self._execute(
            "append_block",
            lambda: self.store.append_block(container_name, blob_name, data, append_position, conditions),
            resource=SASResource.for_blob(container_name, blob_name), permission=WRITE,
            sas_token=sas_token, timeout=timeout,
        )

    # ========================================================================
    # Page Blob Operations
    # ========================================================================

    async def create_page_blob(
        self,
        container_name: str,
        blob_name: str,
        size: int,
        content_settings: Optional[ContentSettings] = None,
        metadata: Optional[Dict[str, str]] = None,
        conditions: Optional[AccessConditions] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> BlobProperties:
        conditions = await self._creation_conditions(sas_token, container_name, blob_name, conditions)
        return await self._execute(
            "create_page_blob",
            lambda: self.store.create_page_blob(
                container_name, blob_name, size, content_settings, metadata, conditions,
            ),
            resource=SASResource.for_blob(container_name, blob_name), permission=CREATE_OR_WRITE,
            sas_token=sas_token, timeout=timeout,
        )

    async def write_pages(
        self,
        container_name: str,
        blob_name: str,
        offset: int,
        data: bytes,
        conditions: Optional[AccessConditions] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> BlobProperties:
        return await self._execute(
            "write_pages",
            lambda: self.store.write_pages(container_name, blob_name, offset, data, conditions),
            resource=SASResource.for_blob(container_name, blob_name), permission=WRITE,
            sas_token=sas_token, timeout=timeout, retry=_is_conditional(conditions),
        )

    async def clear_pages(
        self,
        container_name: str,
        blob_name: str,
        offset: int,
        length: int,
        conditions: Optional[AccessConditions] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> BlobProperties:
        return await self._execute(
            "clear_pages",
            lambda: self.store.clear_pages(container_name, blob_name, offset, length, conditions),
            resource=SASResource.for_blob(container_name, blob_name), permission=WRITE,
            sas_token=sas_token, timeout=timeout, retry=_is_conditional(conditions),
        )

    async def resize_page_blob(
        self,
        container_name: str,
        blob_name: str,
        size: int,
        conditions: Optional[AccessConditions] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> BlobProperties:
        return await self._execute(
            "resize_page_blob",
            lambda: self.store.resize_page_blob(container_name, blob_name, size, conditions),
            resource=SASResource.for_blob(container_name, blob_name), permission=WRITE,
            sas_token=sas_token, timeout=timeout, retry=_is_conditional(conditions),
        )

    async def read_pages(
        self,
        container_name: str,
        blob_name: str,
        offset: int = 0,
        length: Optional[int] = None,
        snapshot_id: Optional[str] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> bytes:
        """Read a byte range; unwritten pages come back as zeros."""
        download = await self.download_blob(
            container_name, blob_name, snapshot_id, offset, length, sas_token=sas_token, timeout=timeout,
        )
        return download.content

    async def get_page_ranges(
        self,
        container_name: str,
        blob_name: str,
        snapshot_id: Optional[str] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> List[PageRange]:
        return await self._execute(
            "get_page_ranges",
            lambda: self.store.get_page_ranges(container_name, blob_name, snapshot_id),
            resource=SASResource.for_blob(container_name, blob_name), permission=READ,
            sas_token=sas_token, timeout=timeout, retry=True,
        )

    # ========================================================================
    # Snapshot Operations
    # ========================================================================

    async def create_snapshot(
        self,
        container_name: str,
        blob_name: str,
        metadata: Optional[Dict[str, str]] = None,
        lease_id: Optional[str] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Tuple[str, str]:
        """
        Snapshot a blob.

        Returns:
            Tuple of (snapshot ID, ETag)
        """
        async def op() -> Tuple[str, str]:
            snapshot = await self.store.create_snapshot(container_name, blob_name, metadata, lease_id)
            return snapshot.snapshot_id, snapshot.properties.etag
        return await self._execute(
            "create_snapshot", op,
            resource=SASResource.for_blob(container_name, blob_name), permission=CREATE_OR_WRITE,
            sas_token=sas_token, timeout=timeout,
        )

    async def list_snapshots(
        self,
        container_name: str,
        blob_name: str,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> List[str]:
        """Snapshot IDs of a blob, oldest first."""
        return await self._execute(
            "list_snapshots",
            lambda: self.store.list_snapshots(container_name, blob_name),
            resource=SASResource.for_blob(container_name, blob_name), permission=READ,
            sas_token=sas_token, timeout=timeout, retry=True,
        )

    async def get_snapshot(
        self,
        container_name: str,
        blob_name: str,
        snapshot_id: str,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> BlobDownload:
        """Content, metadata and properties captured by one snapshot."""
        return await self.download_blob(
            container_name, blob_name, snapshot_id, sas_token=sas_token, timeout=timeout,
        )

    async def delete_snapshot(
        self,
        container_name: str,
        blob_name: str,
        snapshot_id: str,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        await self.delete_blob(
            container_name, blob_name, snapshot_id=snapshot_id, sas_token=sas_token, timeout=timeout,
        )

    async def promote_snapshot(
        self,
        container_name: str,
        blob_name: str,
        snapshot_id: str,
        target_blob: str,
        target_container: Optional[str] = None,
        conditions: Optional[AccessConditions] = None,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CopyOperation:
        """
        Copy a snapshot's content and metadata into a writable blob.

        The target may be the snapshot's own base blob, which restores it.
        """
        return await self.start_copy(
            container_name, blob_name, target_container or container_name, target_blob,
            source_snapshot_id=snapshot_id, conditions=conditions, sas_token=sas_token, timeout=timeout,
        )

    # ========================================================================
    # Copy Operations
    # ========================================================================

    async def start_copy(
        self,
        source_container: str,
        source_blob: str,
        destination_container: str,
        destination_blob: str,
        source_snapshot_id: Optional[str] = None,
        source_lease_id: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        conditions: Optional[AccessConditions] = None,
        *,
        sas_token: Optional[str] = None,
        source_sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CopyOperation:
        """
        Start an asynchronous copy; poll or wait on the returned copy ID.

        Args:
            source_sas_token: Token authorizing the source read; defaults to
                ``sas_token``

        Returns:
            Pending copy operation
        """
        self._authorize(
            source_sas_token or sas_token, SASResource.for_blob(source_container, source_blob), READ,
        )
        conditions = await self._creation_conditions(sas_token, destination_container, destination_blob, conditions)
        return await self._execute(
            "start_copy",
            lambda: self.copies.start_copy(
                source_container, source_blob, destination_container, destination_blob,
                source_snapshot_id, source_lease_id, metadata, conditions,
            ),
            resource=SASResource.for_blob(destination_container, destination_blob),
            permission=CREATE_OR_WRITE, sas_token=sas_token, timeout=timeout,
        )

    async def _copy_for(self, container_name: str, blob_name: str, copy_id: str) -> CopyOperation:
        operation = await self.copies.get_copy_status(copy_id)
        if (operation.destination_container, operation.destination_blob) != (container_name, blob_name):
            raise CopyNotFoundError(copy_id)
        return operation

    async def get_copy_status(
        self,
        container_name: str,
        blob_name: str,
        copy_id: str,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CopyOperation:
        return await self._execute(
            "get_copy_status",
            lambda: self._copy_for(container_name, blob_name, copy_id),
            resource=SASResource.for_blob(container_name, blob_name), permission=READ,
            sas_token=sas_token, timeout=timeout, retry=True,
        )

    async def wait_for_copy(
        self,
        container_name: str,
        blob_name: str,
        copy_id: str,
        wait_timeout: Optional[float] = None,
        *,
        sas_token: Optional[str] = None,
    ) -> CopyOperation:
        """
        Wait until the copy completes, fails or is aborted.

        Raises:
            CopyNotFoundError: If the destination has no copy with this ID
            OperationTimeoutError: If ``wait_timeout`` elapses first; the
                copy keeps running
        """
        async def op() -> CopyOperation:
            await self._copy_for(container_name, blob_name, copy_id)
            return await self.copies.wait_for_copy(copy_id, wait_timeout)
        return await self._execute(
            "wait_for_copy", op,
            resource=SASResource.for_blob(container_name, blob_name), permission=READ,
            sas_token=sas_token, timeout=None,
        )

    async def abort_copy(
        self,
        container_name: str,
        blob_name: str,
        copy_id: str,
        *,
        sas_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CopyOperation:
        """
        Abort a pending copy; the destination is left as it was.

        Raises:
            NoPendingCopyOperationError: If the copy is no longer pending
        """
        async def op() -> CopyOperation:
            await self._copy_for(container_name, blob_name, copy_id)
            return await self.copies.abort_copy(copy_id)
        return await self._execute(
            "abort_copy", op,
            resource=SASResource.for_blob(container_name, blob_name), permission=WRITE,
            sas_token=sas_token, timeout=timeout,
        )

    # ========================================================================
    # Shared Access Signatures
    # ========================================================================

    async def generate_sas(
        self,
        resource: SASResource,
        permissions: Optional[SASPermissions] = None,
        expiry: Optional[datetime] = None,
        start: Optional[datetime] = None,
        policy_id: Optional[str] = None,
    ) -> str:
        """
        Issue a SAS signed with the account key.

        Args:
            resource: Account, container or blob scope
            permissions: Permission bits, unless taken from the policy
            expiry: End of validity, unless taken from the policy
            start: Optional start of validity
            policy_id: Bind the token to this stored access policy

        Raises:
            ContainerNotFoundError: If the policy's container does not exist
            PolicyNotFoundError: If the stored policy does not exist
            InvalidArgumentError: If required fields are missing or doubled
        """
        policy = None
        if policy_id is not None:
            if resource.scope == SASScope.ACCOUNT:
                raise InvalidArgumentError("Account SAS cannot reference a stored access policy")
            await self.store.get_container_properties(resource.container)
            policy = self.store.lookup_access_policy(resource.container, policy_id)
            if policy is None:
                raise PolicyNotFoundError(resource.container, policy_id)
        token = self.sas_generator.generate(resource, permissions, expiry, start, policy)
        logger.debug(f"Issued SAS for {resource.canonical(self.account_name)}")
        return token

    def validate_sas(
        self,
        token: str,
        resource: SASResource,
        permission: SASPermissions,
        now: Optional[datetime] = None,
    ) -> SASDecision:
        """Decide whether ``token`` grants ``permission`` on ``resource`` now."""
        return self.sas_validator.evaluate(
            token,
            resource,
            permission,
            now=now or self._clock(),
            policy_lookup=self.store.lookup_access_policy,
        )

    def describe(self) -> Dict[str, Any]:
        """Summary of the service configuration, for diagnostics."""
        return {
            "account_name": self.account_name,
            "max_page_size": self.config.storage.max_page_size,
            "retry_attempts": self.config.retry.max_attempts,
            "fault_injection": self.faults.enabled,
        }
