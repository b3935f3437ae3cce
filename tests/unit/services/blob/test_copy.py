"""
Unit tests for asynchronous blob copies.

Tests copy completion, copy properties, snapshot promotion, aborts,
failures and wait timeouts.

Author: LocalBlob Team
Date: 2026-10-17
"""

import pytest

from localblob.exceptions import ErrorKind, OperationTimeoutError
from localblob.services.blob.copy import CopyManager, format_copy_source
from localblob.services.blob.exceptions import (
    BlobNotFoundError,
    CopyNotFoundError,
    LeaseIdMissingError,
    NoPendingCopyOperationError,
)
from localblob.services.blob.models import PAGE_SIZE, AccessConditions, BlobType, CopyStatus


@pytest.fixture
async def copy_store(store):
    await store.create_container("source")
    await store.create_container("target")
    await store.put_blob("source", "data.bin", b"0123456789" * 10, metadata={"origin": "source"})
    return store


@pytest.fixture
def copies(copy_store):
    return CopyManager(copy_store, chunk_size=16)


class TestCopyOperations:
    """Test copy lifecycle."""

    @pytest.mark.asyncio
    async def test_copy_completes(self, copy_store, copies):
        """Test that a copy lands content, metadata and copy properties."""
        operation = await copies.start_copy("source", "data.bin", "target", "copy.bin")

        assert operation.status == CopyStatus.PENDING
        assert operation.total_bytes == 100
        assert operation.source == "/source/data.bin"

        done = await copies.wait_for_copy(operation.copy_id, timeout=5)
        assert done.status == CopyStatus.SUCCESS
        assert done.progress == "100/100"

        download = await copy_store.download_blob("target", "copy.bin")
        assert download.content == b"0123456789" * 10
        assert download.metadata == {"origin": "source"}
        assert download.properties.copy_id == operation.copy_id
        assert download.properties.copy_status == CopyStatus.SUCCESS
        assert download.properties.copy_source == "/source/data.bin"

    @pytest.mark.asyncio
    async def test_copy_captures_source_at_start(self, copy_store, copies):
        """Test that writes to the source after the start are not copied."""
        operation = await copies.start_copy("source", "data.bin", "target", "copy.bin")
        await copy_store.put_blob("source", "data.bin", b"changed")

        await copies.wait_for_copy(operation.copy_id, timeout=5)
        download = await copy_store.download_blob("target", "copy.bin")
        assert download.content == b"0123456789" * 10

    @pytest.mark.asyncio
    async def test_copy_with_metadata(self, copy_store, copies):
        operation = await copies.start_copy(
            "source", "data.bin", "target", "copy.bin", metadata={"origin": "override"},
        )
        await copies.wait_for_copy(operation.copy_id, timeout=5)

        blob = await copy_store.get_blob("target", "copy.bin")
        assert blob.metadata == {"origin": "override"}

    @pytest.mark.asyncio
    async def test_copy_page_blob(self, copy_store, copies):
        await copy_store.create_page_blob("source", "disk.vhd", 2 * PAGE_SIZE)
        await copy_store.write_pages("source", "disk.vhd", PAGE_SIZE, b"p" * PAGE_SIZE)

        operation = await copies.start_copy("source", "disk.vhd", "target", "disk.vhd")
        await copies.wait_for_copy(operation.copy_id, timeout=5)

        blob = await copy_store.get_blob("target", "disk.vhd")
        assert blob.properties.blob_type == BlobType.PAGE_BLOB
        ranges = await copy_store.get_page_ranges("target", "disk.vhd")
        assert [(r.start, r.end) for r in ranges] == [(PAGE_SIZE, 2 * PAGE_SIZE - 1)]

    @pytest.mark.asyncio
    async def test_copy_from_snapshot(self, copy_store, copies):
        """Test promoting a snapshot back over its base blob."""
        snapshot = await copy_store.create_snapshot("source", "data.bin")
        await copy_store.put_blob("source", "data.bin", b"newer")

        operation = await copies.start_copy(
            "source", "data.bin", "source", "data.bin", source_snapshot_id=snapshot.snapshot_id,
        )
        assert operation.source == format_copy_source("source", "data.bin", snapshot.snapshot_id)
        await copies.wait_for_copy(operation.copy_id, timeout=5)

        download = await copy_store.download_blob("source", "data.bin")
        assert download.content == b"0123456789" * 10
        assert not download.properties.is_snapshot

    @pytest.mark.asyncio
    async def test_missing_source(self, copies):
        with pytest.raises(BlobNotFoundError):
            await copies.start_copy("source", "missing.bin", "target", "copy.bin")

    @pytest.mark.asyncio
    async def test_leased_destination(self, copy_store, copies):
        """Test that a leased destination needs its lease ID up front."""
        await copy_store.put_blob("target", "copy.bin", b"old")
        lease_id = await copy_store.acquire_lease("target", -1, blob_name="copy.bin")

        with pytest.raises(LeaseIdMissingError):
            await copies.start_copy("source", "data.bin", "target", "copy.bin")

        operation = await copies.start_copy(
            "source", "data.bin", "target", "copy.bin", conditions=AccessConditions(lease_id=lease_id),
        )
        done = await copies.wait_for_copy(operation.copy_id, timeout=5)
        assert done.status == CopyStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_destination_leased_during_copy(self, copy_store, copies):
        """Test that the copy fails if the destination becomes leased."""
        operation = await copies.start_copy("source", "data.bin", "target", "copy.bin")
        await copy_store.put_blob("target", "copy.bin", b"old")
        await copy_store.acquire_lease("target", -1, blob_name="copy.bin")

        done = await copies.wait_for_copy(operation.copy_id, timeout=5)

        assert done.status == CopyStatus.FAILED
        assert "LeaseIdMissing" in done.status_description
        download = await copy_store.download_blob("target", "copy.bin")
        assert download.content == b"old"

    @pytest.mark.asyncio
    async def test_wait_timeout(self, copy_store):
        """Test that waiting past the timeout raises a typed error and leaves the copy running."""
        await copy_store.put_blob("source", "large.bin", b"x" * 100_000)
        copies = CopyManager(copy_store, chunk_size=1)
        operation = await copies.start_copy("source", "large.bin", "target", "large.bin")

        with pytest.raises(OperationTimeoutError) as exc_info:
            await copies.wait_for_copy(operation.copy_id, timeout=0.0001)

        assert exc_info.value.kind == ErrorKind.TRANSIENT
        assert exc_info.value.details["operation"] == "wait_for_copy"
        status = await copies.get_copy_status(operation.copy_id)
        assert status.status == CopyStatus.PENDING

        await copies.abort_copy(operation.copy_id)
        assert not await copy_store.blob_exists("target", "large.bin")

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_copy(self, copy_store, copies, monkeypatch):
        """Test that a non-storage error inside the copy task marks the copy failed."""
        async def broken_complete_copy(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(copy_store, "complete_copy", broken_complete_copy)
        operation = await copies.start_copy("source", "data.bin", "target", "copy.bin")

        done = await copies.wait_for_copy(operation.copy_id, timeout=5)

        assert done.status == CopyStatus.FAILED
        assert "RuntimeError" in done.status_description
        assert done.completion_time is not None
        assert not await copy_store.blob_exists("target", "copy.bin")
        with pytest.raises(NoPendingCopyOperationError):
            await copies.abort_copy(operation.copy_id)

    @pytest.mark.asyncio
    async def test_finished_copy_releases_task(self, copy_store, copies):
        succeeded = await copies.start_copy("source", "data.bin", "target", "copy.bin")
        failed = await copies.start_copy("source", "data.bin", "target", "leased.bin")
        await copy_store.put_blob("target", "leased.bin", b"old")
        await copy_store.acquire_lease("target", -1, blob_name="leased.bin")

        await copies.wait_for_copy(succeeded.copy_id, timeout=5)
        await copies.wait_for_copy(failed.copy_id, timeout=5)

        assert copies._operations[succeeded.copy_id]._task is None
        assert copies._operations[failed.copy_id]._task is None


class TestAbortCopy:
    """Test aborting copies."""

    @pytest.mark.asyncio
    async def test_abort_pending_copy(self, copy_store, copies):
        """Test that an aborted copy leaves the destination untouched."""
        await copy_store.put_blob("target", "copy.bin", b"original")
        operation = await copies.start_copy("source", "data.bin", "target", "copy.bin")

        aborted = await copies.abort_copy(operation.copy_id)

        assert aborted.status == CopyStatus.ABORTED
        status = await copies.get_copy_status(operation.copy_id)
        assert status.status == CopyStatus.ABORTED
        download = await copy_store.download_blob("target", "copy.bin")
        assert download.content == b"original"

    @pytest.mark.asyncio
    async def test_abort_new_destination(self, copy_store, copies):
        operation = await copies.start_copy("source", "data.bin", "target", "fresh.bin")
        await copies.abort_copy(operation.copy_id)

        assert not await copy_store.blob_exists("target", "fresh.bin")

    @pytest.mark.asyncio
    async def test_abort_finished_copy(self, copies):
        operation = await copies.start_copy("source", "data.bin", "target", "copy.bin")
        await copies.wait_for_copy(operation.copy_id, timeout=5)

        with pytest.raises(NoPendingCopyOperationError):
            await copies.abort_copy(operation.copy_id)

    @pytest.mark.asyncio
    async def test_unknown_copy_id(self, copies):
        with pytest.raises(CopyNotFoundError):
            await copies.get_copy_status("no-such-copy")
        with pytest.raises(CopyNotFoundError):
            await copies.abort_copy("no-such-copy")

    @pytest.mark.asyncio
    async def test_close_aborts_pending(self, copy_store, copies):
        operation = await copies.start_copy("source", "data.bin", "target", "copy.bin")
        await copies.close()

        status = await copies.get_copy_status(operation.copy_id)
        assert status.status == CopyStatus.ABORTED

    @pytest.mark.asyncio
    async def test_abort_releases_task(self, copies):
        operation = await copies.start_copy("source", "data.bin", "target", "copy.bin")
        await copies.abort_copy(operation.copy_id)

        assert copies._operations[operation.copy_id]._task is None
