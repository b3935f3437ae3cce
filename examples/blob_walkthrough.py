"""
LocalBlob - Python Example

Walks through containers, uploads, hierarchical listing, snapshots, leases
and shared access signatures against an in-process BlobService.

Requirements:
    pip install -e .

Usage:
    python examples/blob_walkthrough.py
"""

import asyncio
import base64
from datetime import datetime, timedelta, timezone

from localblob import BlobService
from localblob.auth import SASPermissions, SASResource, SASValidationError, StoredAccessPolicy
from localblob.core import setup_logging
from localblob.exceptions import BlobStorageError
from localblob.services.blob import AccessConditions, BlockListType, ContentSettings, DeleteSnapshotsOption


def block_id(n: int) -> str:
    return base64.b64encode(f"block-{n:04d}".encode()).decode()


async def container_example(service: BlobService):
    """
    Demonstrates container and blob basics:
    - Create a container with metadata
    - Upload whole blobs and a block-staged blob
    - List flat and by virtual directory
    """
    print("\n=== Container Example ===\n")

    await service.create_container("reports", metadata={"team": "finance"})
    print("✓ Created container 'reports'")

    for name in ["2026/q1/summary.txt", "2026/q2/summary.txt", "readme.txt"]:
        await service.upload_blob(
            "reports", name, f"contents of {name}".encode(),
            content_settings=ContentSettings(content_type="text/plain"),
        )
    print("✓ Uploaded 3 blobs")

    for n, chunk in enumerate([b"alpha,", b"beta,", b"gamma"]):
        await service.stage_block("reports", "2026/data.csv", block_id(n), chunk)
    props = await service.commit_block_list(
        "reports", "2026/data.csv", [(block_id(n), BlockListType.UNCOMMITTED) for n in range(3)],
    )
    print(f"✓ Committed 3 blocks, ETag {props.etag}")

    print("\nTop level:")
    async for page in service.iter_blob_pages("reports", delimiter="/"):
        for item in page.items:
            print(f"  {item.name}")

    print("\nUnder 2026/:")
    page = await service.list_blobs_hierarchical("reports", prefix="2026/")
    for prefix in page.prefixes:
        print(f"  [dir]  {prefix.name}")
    for blob in page.blobs:
        print(f"  [blob] {blob.name} ({blob.properties.content_length} bytes)")


async def snapshot_example(service: BlobService):
    """
    Demonstrates snapshots:
    - Snapshot a blob, then overwrite it
    - Read the snapshot back
    - Restore the snapshot over the base blob
    """
    print("\n=== Snapshot Example ===\n")

    snapshot_id, _ = await service.create_snapshot("reports", "readme.txt")
    print(f"✓ Snapshot {snapshot_id}")

    await service.upload_blob("reports", "readme.txt", b"rewritten")
    old = await service.get_snapshot("reports", "readme.txt", snapshot_id)
    print(f"  Snapshot content: {old.content.decode()}")

    operation = await service.promote_snapshot("reports", "readme.txt", snapshot_id, "readme.txt")
    done = await service.wait_for_copy("reports", "readme.txt", operation.copy_id, wait_timeout=5)
    current = await service.download_blob("reports", "readme.txt")
    print(f"✓ Restored ({done.status.value}): {current.content.decode()}")

    try:
        await service.delete_blob("reports", "readme.txt")
    except BlobStorageError as e:
        print(f"✗ Delete refused: {e.error_code}")
    await service.delete_blob("reports", "readme.txt", delete_snapshots=DeleteSnapshotsOption.INCLUDE)
    print("✓ Deleted blob with its snapshots")


async def lease_example(service: BlobService):
    """
    Demonstrates leases:
    - Acquire an infinite lease
    - Writes without the lease ID are rejected
    - Break the lease
    """
    print("\n=== Lease Example ===\n")

    lease_id = await service.acquire_blob_lease("reports", "2026/data.csv")
    print(f"✓ Acquired lease {lease_id}")

    try:
        await service.set_blob_metadata("reports", "2026/data.csv", {"state": "draft"})
    except BlobStorageError as e:
        print(f"✗ Write without lease ID: {e.error_code}")

    await service.set_blob_metadata(
        "reports", "2026/data.csv", {"state": "final"}, AccessConditions(lease_id=lease_id),
    )
    print("✓ Write with lease ID succeeded")

    await service.break_blob_lease("reports", "2026/data.csv", 0)
    props = await service.get_blob_properties("reports", "2026/data.csv")
    print(f"✓ Lease broken, state: {props.lease_state.value}")


async def sas_example(service: BlobService):
    """
    Demonstrates shared access signatures:
    - Ad-hoc read/list token scoped to a container
    - Token bound to a stored access policy, then revoked
    """
    print("\n=== SAS Example ===\n")

    expiry = datetime.now(timezone.utc) + timedelta(hours=1)
    token = await service.generate_sas(
        SASResource.for_container("reports"), SASPermissions.READ | SASPermissions.LIST, expiry=expiry,
    )
    page = await service.list_blobs("reports", sas_token=token)
    print(f"✓ Listed {len(page)} blobs with a read/list token")

    try:
        await service.delete_blob("reports", "2026/q1/summary.txt", sas_token=token)
    except SASValidationError as e:
        print(f"✗ Delete with read/list token: {e.error_code}")

    policy = StoredAccessPolicy(id="auditors", permission="r", expiry=expiry)
    await service.set_container_access_policy("reports", [policy])
    policy_token = await service.generate_sas(SASResource.for_container("reports"), policy_id="auditors")
    await service.download_blob("reports", "2026/q1/summary.txt", sas_token=policy_token)
    print("✓ Read with policy-bound token")

    await service.set_container_access_policy("reports", [])
    try:
        await service.download_blob("reports", "2026/q1/summary.txt", sas_token=policy_token)
    except SASValidationError as e:
        print(f"✗ After revoking the policy: {e.decision}")


async def main():
    setup_logging(level="WARNING", format_type="text")
    service = BlobService()
    try:
        await container_example(service)
        await snapshot_example(service)
        await lease_example(service)
        await sas_example(service)
    finally:
        await service.close()


if __name__ == "__main__":
    asyncio.run(main())
