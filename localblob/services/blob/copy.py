"""
Blob Copy Manager

Asynchronous blob-to-blob copies, including promotion of a snapshot to a
writable blob.

``start_copy`` captures the source as of the call, returns a pending
:class:`CopyOperation` immediately and runs the transfer as an asyncio task.
The task reads the captured content in chunks, reporting progress, and then
swaps the result into the destination in a single store operation. Until that
swap the destination is untouched, so aborting a pending copy never exposes
partial content.

Author: LocalBlob Team
Date: 2026-10-17
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from localblob.core.clock import Clock, utc_now
from localblob.exceptions import BlobStorageError, OperationTimeoutError

from .exceptions import CopyNotFoundError, NoPendingCopyOperationError
from .models import AccessConditions, Blob, CopyStatus, validate_metadata
from .store import BlobStore

logger = logging.getLogger(__name__)


@dataclass
class CopyOperation:
    """Status of one copy, shared between the caller and the copy task."""

    copy_id: str
    source: str
    destination_container: str
    destination_blob: str
    status: CopyStatus = CopyStatus.PENDING
    bytes_copied: int = 0
    total_bytes: int = 0
    started_time: Optional[datetime] = None
    completion_time: Optional[datetime] = None
    status_description: Optional[str] = None
    _task: Optional["asyncio.Task[None]"] = field(default=None, repr=False, compare=False)

    @property
    def progress(self) -> str:
        return f"{self.bytes_copied}/{self.total_bytes}"

    @property
    def is_pending(self) -> bool:
        return self.status == CopyStatus.PENDING

    def detach(self) -> "CopyOperation":
        """Detached copy of the current status."""
        return CopyOperation(
            copy_id=self.copy_id,
            source=self.source,
            destination_container=self.destination_container,
            destination_blob=self.destination_blob,
            status=self.status,
            bytes_copied=self.bytes_copied,
            total_bytes=self.total_bytes,
            started_time=self.started_time,
            completion_time=self.completion_time,
            status_description=self.status_description,
        )


def format_copy_source(container_name: str, blob_name: str, snapshot_id: Optional[str] = None) -> str:
    source = f"/{container_name}/{blob_name}"
    return f"{source}?snapshot={snapshot_id}" if snapshot_id else source


class CopyManager:
    """Runs and tracks copy operations against a :class:`BlobStore`."""

    def __init__(self, store: BlobStore, chunk_size: Optional[int] = None, clock: Clock = utc_now):
        self._store = store
        self._chunk_size = chunk_size or store.config.copy_chunk_size
        self._clock = clock
        self._operations: Dict[str, CopyOperation] = {}

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
    ) -> CopyOperation:
        """
        Start copying a blob (or snapshot) to a destination blob.

        Args:
            source_container: Source container name
            source_blob: Source blob name
            destination_container: Destination container (may equal the source's)
            destination_blob: Destination blob name
            source_snapshot_id: Copy this snapshot of the source
            source_lease_id: Must match the source's lease when given
            metadata: Destination metadata; the source's when None
            conditions: Destination lease and ETag conditions

        Returns:
            Pending copy operation

        Raises:
            BlobNotFoundError: If the source does not exist
            ContainerNotFoundError: If either container does not exist
            LeaseIdMissingError: If the destination is leased and no ID was given
        """
        if metadata is not None:
            metadata = validate_metadata(metadata)

        source = await self._store.read_for_copy(
            source_container, source_blob, source_snapshot_id, source_lease_id,
        )
        await self._store.check_copy_destination(destination_container, destination_blob, conditions)

        operation = CopyOperation(
            copy_id=str(uuid.uuid4()),
            source=format_copy_source(source_container, source_blob, source_snapshot_id),
            destination_container=destination_container,
            destination_blob=destination_blob,
            total_bytes=source.properties.content_length,
            started_time=self._clock(),
        )
        self._operations[operation.copy_id] = operation
        operation._task = asyncio.create_task(self._run(operation, source, metadata, conditions))

        logger.info(
            f"Copy {operation.copy_id} started: {operation.source} -> "
            f"{destination_container}/{destination_blob} ({operation.total_bytes} bytes)"
        )
        return operation.detach()

    async def _run(
        self,
        operation: CopyOperation,
        source: Blob,
        metadata: Optional[Dict[str, str]],
        conditions: Optional[AccessConditions],
    ) -> None:
        try:
            await self._transfer(operation, source, metadata, conditions)
        except BlobStorageError as e:
            self._fail(operation, f"{e.error_code}: {e.message}")
            logger.warning(f"Copy {operation.copy_id} failed: {operation.status_description}")
        except Exception as e:
            self._fail(operation, f"InternalError: {type(e).__name__}: {e}")
            logger.exception(f"Copy {operation.copy_id} failed unexpectedly")
        finally:
            # Terminal copies keep only their status, not the task and its captured source
            if not operation.is_pending:
                operation._task = None

    async def _transfer(
        self,
        operation: CopyOperation,
        source: Blob,
        metadata: Optional[Dict[str, str]],
        conditions: Optional[AccessConditions],
    ) -> None:
        content = source.read()
        buffer = bytearray()
        for offset in range(0, len(content), self._chunk_size):
            buffer += content[offset:offset + self._chunk_size]
            operation.bytes_copied = len(buffer)
            await asyncio.sleep(0)

        completion_time = self._clock()
        await self._store.complete_copy(
            operation.destination_container,
            operation.destination_blob,
            source,
            bytes(buffer),
            {
                "copy_id": operation.copy_id,
                "copy_source": operation.source,
                "copy_progress": f"{operation.total_bytes}/{operation.total_bytes}",
                "copy_completion_time": completion_time,
            },
            metadata=metadata,
            conditions=conditions,
        )

        operation.bytes_copied = operation.total_bytes
        operation.status = CopyStatus.SUCCESS
        operation.completion_time = completion_time
        logger.info(f"Copy {operation.copy_id} completed ({operation.total_bytes} bytes)")

    def _fail(self, operation: CopyOperation, description: str) -> None:
        operation.status = CopyStatus.FAILED
        operation.status_description = description
        operation.completion_time = self._clock()

    def _operation(self, copy_id: str) -> CopyOperation:
        operation = self._operations.get(copy_id)
        if operation is None:
            raise CopyNotFoundError(copy_id)
        return operation

    async def get_copy_status(self, copy_id: str) -> CopyOperation:
        """
        Raises:
            CopyNotFoundError: If no copy has this ID
        """
        return self._operation(copy_id).detach()

    async def wait_for_copy(self, copy_id: str, timeout: Optional[float] = None) -> CopyOperation:
        """
        Wait until the copy leaves ``pending``.

        Raises:
            CopyNotFoundError: If no copy has this ID
            OperationTimeoutError: If ``timeout`` elapses first; the copy
                keeps running
        """
        operation = self._operation(copy_id)
        task = operation._task
        if task is not None and not task.done():
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                raise OperationTimeoutError("wait_for_copy", timeout)
        return operation.detach()

    async def abort_copy(self, copy_id: str) -> CopyOperation:
        """
        Abort a pending copy, leaving the destination as it was.

        Raises:
            CopyNotFoundError: If no copy has this ID
            NoPendingCopyOperationError: If the copy already finished
        """
        operation = self._operation(copy_id)
        if not operation.is_pending:
            raise NoPendingCopyOperationError(
                f"Copy '{copy_id}' is {operation.status.value}, not pending",
                details={"copy_id": copy_id, "status": operation.status.value},
            )

        operation.status = CopyStatus.ABORTED
        operation.completion_time = self._clock()
        operation.status_description = "Aborted by caller"
        task = operation._task
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            operation._task = None

        logger.info(f"Copy {copy_id} aborted")
        return operation.detach()

    async def close(self) -> None:
        """Abort every pending copy."""
        for copy_id, operation in list(self._operations.items()):
            if operation.is_pending:
                await self.abort_copy(copy_id)
