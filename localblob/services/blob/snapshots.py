"""
Blob Snapshots

Snapshot identifiers and capture of point-in-time, read-only blob copies.

A snapshot ID is the creation time rendered as an ISO-8601 UTC timestamp with
seven fractional digits, for example ``2026-10-17T09:30:00.1234567Z``. IDs
issued by one generator strictly increase, even when the clock stalls or
steps backwards, so they sort in creation order and never collide.

Author: LocalBlob Team
Date: 2026-10-17
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from localblob.core.clock import Clock, utc_now

from .models import Blob, Lease

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_TICKS_PER_SECOND = 10_000_000


def _to_ticks(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - _EPOCH
    return (delta.days * 86400 + delta.seconds) * _TICKS_PER_SECOND + delta.microseconds * 10


def format_snapshot_id(ticks: int) -> str:
    """Render 100ns ticks since the epoch as a snapshot ID."""
    seconds, fraction = divmod(ticks, _TICKS_PER_SECOND)
    moment = _EPOCH + timedelta(seconds=seconds)
    return f"{moment.strftime('%Y-%m-%dT%H:%M:%S')}.{fraction:07d}Z"


def parse_snapshot_id(snapshot_id: str) -> datetime:
    """
    Parse a snapshot ID back to a datetime (truncated to microseconds).

    Raises:
        ValueError: If the ID is not a snapshot timestamp
    """
    if not snapshot_id.endswith("Z") or "." not in snapshot_id:
        raise ValueError(f"Invalid snapshot ID: {snapshot_id}")
    whole, fraction = snapshot_id[:-1].split(".", 1)
    if len(fraction) != 7 or not fraction.isdigit():
        raise ValueError(f"Invalid snapshot ID: {snapshot_id}")
    base = datetime.strptime(whole, "%Y-%m-%dT%H:%M:%S").replace(tzinfo=timezone.utc)
    return base + timedelta(microseconds=int(fraction) // 10)


class SnapshotIdGenerator:
    """Issues strictly increasing snapshot IDs."""

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._last_ticks = 0

    def next_id(self) -> str:
        ticks = _to_ticks(self._clock())
        if ticks <= self._last_ticks:
            ticks = self._last_ticks + 1
        self._last_ticks = ticks
        return format_snapshot_id(ticks)


def capture_snapshot(
    blob: Blob,
    snapshot_id: str,
    metadata: Optional[Dict[str, str]] = None,
) -> Blob:
    """
    Build the immutable copy of ``blob`` stored under ``snapshot_id``.

    Content, content properties, committed blocks and pages are copied as of
    now. Metadata is the supplied map, or the base blob's when none is given.
    Snapshots carry no lease and keep the base blob's ETag and last-modified
    time.
    """
    snapshot = blob.model_copy(deep=True)
    snapshot.snapshot_id = snapshot_id
    snapshot.lease = Lease()
    if metadata is not None:
        snapshot.metadata = dict(metadata)
    snapshot.properties.is_snapshot = True
    snapshot.properties.snapshot_time = parse_snapshot_id(snapshot_id)
    return snapshot
