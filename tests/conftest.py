"""
Shared fixtures for LocalBlob tests.

Author: LocalBlob Team
Date: 2026-10-17
"""

from datetime import datetime, timezone

import pytest

from localblob.core.clock import ManualClock
from localblob.services.blob.backend import BlobService
from localblob.services.blob.store import BlobStore

START_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    """Clock that only moves when a test advances it."""
    return ManualClock(START_TIME)


@pytest.fixture
def store(clock):
    """Empty object store on the manual clock."""
    return BlobStore(clock=clock)


@pytest.fixture
async def service(clock):
    """Blob service on the manual clock; pending copies are aborted afterwards."""
    service = BlobService(clock=clock)
    yield service
    await service.close()
