"""
Unit tests for Blob Storage leases.

Tests lease acquisition, renewal, release, break, and change operations
for both containers and blobs, and lease enforcement on writes.

Author: LocalBlob Team
Date: 2026-10-17
"""

import pytest

from localblob.services.blob.exceptions import (
    InvalidBreakPeriodError,
    InvalidLeaseDurationError,
    LeaseAlreadyPresentError,
    LeaseIdMismatchError,
    LeaseIdMissingError,
    LeaseIsBreakingError,
    LeaseIsBrokenError,
    LeaseNotPresentError,
)
from localblob.services.blob.leases import LeaseManager
from localblob.services.blob.models import (
    AccessConditions,
    Lease,
    LeaseDurationType,
    LeaseState,
    LeaseStatus,
)


@pytest.fixture
async def leased_store(store):
    """Store with a container and a blob in it."""
    await store.create_container("test-container")
    await store.put_blob("test-container", "test-blob", b"test content")
    return store


class TestLeaseManager:
    """Test lease transitions on bare records."""

    def test_normalize_duration(self):
        assert LeaseManager.normalize_duration(-1) == -1
        assert LeaseManager.normalize_duration(0) == -1
        assert LeaseManager.normalize_duration(15) == 15
        assert LeaseManager.normalize_duration(60) == 60

    def test_invalid_duration(self):
        for duration in (10, 61, None):
            with pytest.raises(InvalidLeaseDurationError):
                LeaseManager.normalize_duration(duration)

    def test_acquire_uses_id_factory(self, clock):
        manager = LeaseManager(clock, id_factory=lambda: "generated-id")
        lease = manager.acquire(Lease(), "c/b", 30)

        assert lease.lease_id == "generated-id"
        assert lease.state == LeaseState.LEASED
        assert lease.expiration_time is not None

    def test_transitions_return_new_records(self, clock):
        manager = LeaseManager(clock)
        original = manager.acquire(Lease(), "c/b", -1, "id-1")
        changed = manager.change(original, "c/b", "id-1", "id-2")

        assert original.lease_id == "id-1"
        assert changed.lease_id == "id-2"


class TestContainerLeaseAcquire:
    """Test container lease acquisition."""

    @pytest.mark.asyncio
    async def test_acquire_container_lease_finite_duration(self, leased_store):
        """Test acquiring a finite duration container lease."""
        lease_id = await leased_store.acquire_lease("test-container", 30)

        assert lease_id
        container = await leased_store.get_container("test-container")
        assert container.properties.lease_status == LeaseStatus.LOCKED
        assert container.properties.lease_state == LeaseState.LEASED
        assert container.properties.lease_duration == LeaseDurationType.FIXED

    @pytest.mark.asyncio
    async def test_acquire_with_proposed_id(self, leased_store):
        """Test acquiring a container lease with proposed lease ID."""
        lease_id = await leased_store.acquire_lease("test-container", -1, "my-custom-lease-id")
        assert lease_id == "my-custom-lease-id"

        container = await leased_store.get_container("test-container")
        assert container.properties.lease_duration == LeaseDurationType.INFINITE

    @pytest.mark.asyncio
    async def test_acquire_already_leased(self, leased_store):
        """Test acquiring a lease on already leased container."""
        await leased_store.acquire_lease("test-container", 30)

        with pytest.raises(LeaseAlreadyPresentError) as exc_info:
            await leased_store.acquire_lease("test-container", 30)
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_reacquire_with_same_id(self, leased_store):
        """Test that re-acquiring with the active ID succeeds."""
        await leased_store.acquire_lease("test-container", 30, "same-id")
        assert await leased_store.acquire_lease("test-container", 45, "same-id") == "same-id"

    @pytest.mark.asyncio
    async def test_acquire_invalid_duration(self, leased_store):
        with pytest.raises(InvalidLeaseDurationError):
            await leased_store.acquire_lease("test-container", 10)

    @pytest.mark.asyncio
    async def test_acquire_after_expiry(self, leased_store, clock):
        """Test that an expired lease can be taken by a new holder."""
        await leased_store.acquire_lease("test-container", 15, "first")
        clock.advance(15)

        container = await leased_store.get_container("test-container")
        assert container.properties.lease_state == LeaseState.EXPIRED
        assert container.properties.lease_status == LeaseStatus.UNLOCKED

        assert await leased_store.acquire_lease("test-container", 15, "second") == "second"


class TestLeaseLifecycle:
    """Test renew, change, release and break."""

    @pytest.mark.asyncio
    async def test_acquire_release_acquire(self, leased_store):
        """Test that a released lease can be acquired again."""
        first = await leased_store.acquire_lease("test-container", 30, blob_name="test-blob")
        await leased_store.release_lease("test-container", first, blob_name="test-blob")

        blob = await leased_store.get_blob("test-container", "test-blob")
        assert blob.properties.lease_state == LeaseState.AVAILABLE

        second = await leased_store.acquire_lease("test-container", 30, blob_name="test-blob")
        assert second != first

    @pytest.mark.asyncio
    async def test_renew_restarts_duration(self, leased_store, clock):
        lease_id = await leased_store.acquire_lease("test-container", 20)
        clock.advance(15)
        await leased_store.renew_lease("test-container", lease_id)
        clock.advance(15)

        container = await leased_store.get_container("test-container")
        assert container.properties.lease_state == LeaseState.LEASED

    @pytest.mark.asyncio
    async def test_renew_after_expiry(self, leased_store, clock):
        """Test that an expired lease can be renewed by its holder."""
        lease_id = await leased_store.acquire_lease("test-container", 15)
        clock.advance(20)

        assert await leased_store.renew_lease("test-container", lease_id) == lease_id
        container = await leased_store.get_container("test-container")
        assert container.properties.lease_state == LeaseState.LEASED

    @pytest.mark.asyncio
    async def test_renew_wrong_id(self, leased_store):
        await leased_store.acquire_lease("test-container", 30)
        with pytest.raises(LeaseIdMismatchError):
            await leased_store.renew_lease("test-container", "wrong-id")

    @pytest.mark.asyncio
    async def test_renew_without_lease(self, leased_store):
        with pytest.raises(LeaseNotPresentError):
            await leased_store.renew_lease("test-container", "any-id")

    @pytest.mark.asyncio
    async def test_change_lease(self, leased_store):
        lease_id = await leased_store.acquire_lease("test-container", 30)
        new_id = await leased_store.change_lease("test-container", lease_id, "new-id")
        assert new_id == "new-id"

        # Retrying the change with the new ID is accepted
        assert await leased_store.change_lease("test-container", lease_id, "new-id") == "new-id"

        with pytest.raises(LeaseIdMismatchError):
            await leased_store.release_lease("test-container", lease_id)
        await leased_store.release_lease("test-container", "new-id")

    @pytest.mark.asyncio
    async def test_release_wrong_id(self, leased_store):
        await leased_store.acquire_lease("test-container", 30)
        with pytest.raises(LeaseIdMismatchError):
            await leased_store.release_lease("test-container", "wrong-id")

    @pytest.mark.asyncio
    async def test_break_immediately(self, leased_store):
        """Test that a zero break period lets writes proceed without the ID."""
        await leased_store.acquire_lease("test-container", -1, blob_name="test-blob")

        with pytest.raises(LeaseIdMissingError):
            await leased_store.delete_blob("test-container", "test-blob")

        remaining = await leased_store.break_lease("test-container", 0, blob_name="test-blob")
        assert remaining == 0

        blob = await leased_store.get_blob("test-container", "test-blob")
        assert blob.properties.lease_state == LeaseState.BROKEN
        await leased_store.delete_blob("test-container", "test-blob")

    @pytest.mark.asyncio
    async def test_break_period(self, leased_store, clock):
        """Test a breaking lease still guards writes until the period ends."""
        lease_id = await leased_store.acquire_lease("test-container", -1, blob_name="test-blob")
        remaining = await leased_store.break_lease("test-container", 10, blob_name="test-blob")
        assert remaining == 10

        blob = await leased_store.get_blob("test-container", "test-blob")
        assert blob.properties.lease_state == LeaseState.BREAKING
        with pytest.raises(LeaseIsBreakingError):
            await leased_store.renew_lease("test-container", lease_id, blob_name="test-blob")
        with pytest.raises(LeaseIsBreakingError):
            await leased_store.acquire_lease("test-container", 30, blob_name="test-blob")
        await leased_store.set_blob_metadata(
            "test-container", "test-blob", {"a": "1"}, AccessConditions(lease_id=lease_id),
        )

        clock.advance(10)
        blob = await leased_store.get_blob("test-container", "test-blob")
        assert blob.properties.lease_state == LeaseState.BROKEN
        with pytest.raises(LeaseIsBrokenError):
            await leased_store.renew_lease("test-container", lease_id, blob_name="test-blob")
        await leased_store.acquire_lease("test-container", 30, blob_name="test-blob")

    @pytest.mark.asyncio
    async def test_break_cannot_extend_fixed_lease(self, leased_store):
        await leased_store.acquire_lease("test-container", 20)
        assert await leased_store.break_lease("test-container", 60) == 20

    @pytest.mark.asyncio
    async def test_break_default_period(self, leased_store):
        """Test that an omitted period breaks infinite leases at once."""
        await leased_store.acquire_lease("test-container", -1)
        assert await leased_store.break_lease("test-container") == 0

    @pytest.mark.asyncio
    async def test_break_invalid_period(self, leased_store):
        await leased_store.acquire_lease("test-container", -1)
        with pytest.raises(InvalidBreakPeriodError):
            await leased_store.break_lease("test-container", 61)

    @pytest.mark.asyncio
    async def test_break_without_lease(self, leased_store):
        with pytest.raises(LeaseNotPresentError):
            await leased_store.break_lease("test-container")


class TestLeaseEnforcement:
    """Test that leases guard writes."""

    @pytest.mark.asyncio
    async def test_write_needs_lease_id(self, leased_store):
        lease_id = await leased_store.acquire_lease("test-container", 30, blob_name="test-blob")

        with pytest.raises(LeaseIdMissingError) as exc_info:
            await leased_store.put_blob("test-container", "test-blob", b"new")
        assert exc_info.value.status_code == 412

        with pytest.raises(LeaseIdMismatchError):
            await leased_store.put_blob(
                "test-container", "test-blob", b"new", conditions=AccessConditions(lease_id="wrong"),
            )

        await leased_store.put_blob(
            "test-container", "test-blob", b"new", conditions=AccessConditions(lease_id=lease_id),
        )

    @pytest.mark.asyncio
    async def test_overwrite_keeps_lease(self, leased_store):
        lease_id = await leased_store.acquire_lease("test-container", 30, blob_name="test-blob")
        await leased_store.put_blob(
            "test-container", "test-blob", b"new", conditions=AccessConditions(lease_id=lease_id),
        )

        blob = await leased_store.get_blob("test-container", "test-blob")
        assert blob.properties.lease_state == LeaseState.LEASED

    @pytest.mark.asyncio
    async def test_reads_need_no_lease(self, leased_store):
        await leased_store.acquire_lease("test-container", 30, blob_name="test-blob")
        download = await leased_store.download_blob("test-container", "test-blob")
        assert download.content == b"test content"

        with pytest.raises(LeaseIdMismatchError):
            await leased_store.download_blob("test-container", "test-blob", lease_id="wrong")

    @pytest.mark.asyncio
    async def test_lease_does_not_change_etag(self, leased_store):
        before = await leased_store.get_blob_properties("test-container", "test-blob")
        lease_id = await leased_store.acquire_lease("test-container", 30, blob_name="test-blob")
        await leased_store.release_lease("test-container", lease_id, blob_name="test-blob")

        after = await leased_store.get_blob_properties("test-container", "test-blob")
        assert after.etag == before.etag

    @pytest.mark.asyncio
    async def test_leased_container_delete(self, leased_store):
        lease_id = await leased_store.acquire_lease("test-container", 30)

        with pytest.raises(LeaseIdMissingError):
            await leased_store.delete_container("test-container")
        await leased_store.delete_container("test-container", AccessConditions(lease_id=lease_id))

    @pytest.mark.asyncio
    async def test_expired_lease_frees_writes(self, leased_store, clock):
        await leased_store.acquire_lease("test-container", 15, blob_name="test-blob")
        clock.advance(16)

        await leased_store.put_blob("test-container", "test-blob", b"free")
