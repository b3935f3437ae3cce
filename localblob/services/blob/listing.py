"""
Listing Engine

Ordering, virtual-directory grouping and pagination for container and blob
listings. Functions here work on a point-in-time view of the key space that
the store captures inside its lock, so each page reflects a single consistent
state.

Virtual directories are never stored; they are derived from blob names on
every hierarchical listing.

Continuation tokens are URL-safe base64 JSON holding the listing kind, the
prefix and delimiter the token was issued for, and the sort key of the last
entry returned. Resuming seeks to the first key strictly after that one, so
pages neither skip nor repeat entries while the key space is quiescent.

Author: LocalBlob Team
Date: 2026-10-17
"""

import base64
import binascii
import json
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, TypeVar

from .exceptions import InvalidQueryParameterError
from .models import Blob, BlobItem, BlobPrefix, Container

KIND_CONTAINERS = "containers"
KIND_FLAT = "flat"
KIND_HIERARCHY = "hierarchy"

BASE_RANK = 0
SNAPSHOT_RANK = 1

# (name, rank, snapshot_id): base blobs sort before their snapshots, which
# sort by ID and therefore by creation time
SortKey = Tuple[str, int, str]

T = TypeVar("T")


@dataclass
class ListPage:
    """One page of a listing."""

    items: List[Any] = field(default_factory=list)
    continuation_token: Optional[str] = None
    prefix: str = ""
    delimiter: Optional[str] = None

    @property
    def is_last(self) -> bool:
        return self.continuation_token is None

    @property
    def blobs(self) -> List[BlobItem]:
        return [item for item in self.items if isinstance(item, BlobItem)]

    @property
    def prefixes(self) -> List[BlobPrefix]:
        return [item for item in self.items if isinstance(item, BlobPrefix)]

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class ListingCursor:
    """Decoded continuation token."""

    kind: str
    prefix: str
    delimiter: Optional[str]
    marker: SortKey

    def encode(self) -> str:
        payload = {
            "k": self.kind,
            "p": self.prefix,
            "d": self.delimiter,
            "m": list(self.marker),
        }
        raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii")

    @classmethod
    def decode(cls, token: str) -> "ListingCursor":
        """
        Decode a continuation token.

        Raises:
            InvalidQueryParameterError: If the token is malformed
        """
        try:
            payload = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
            name, rank, snapshot_id = payload["m"]
            return cls(
                kind=str(payload["k"]),
                prefix=str(payload["p"]),
                delimiter=payload["d"],
                marker=(str(name), int(rank), str(snapshot_id)),
            )
        except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as exc:
            raise InvalidQueryParameterError(
                "Continuation token is not valid",
                details={"continuation_token": token},
            ) from exc


def validate_page_size(page_size: Optional[int], max_page_size: int) -> int:
    """
    Resolve and validate a requested page size.

    Raises:
        InvalidQueryParameterError: If not within 1..max_page_size
    """
    if page_size is None:
        return max_page_size
    if not 1 <= page_size <= max_page_size:
        raise InvalidQueryParameterError(
            f"Page size must be between 1 and {max_page_size}",
            details={"page_size": page_size},
        )
    return page_size


def container_entries(
    containers: Mapping[str, Container],
    prefix: str = "",
) -> List[Tuple[SortKey, Container]]:
    """Containers whose name starts with ``prefix``, in name order."""
    return sorted(
        ((name, BASE_RANK, ""), container)
        for name, container in containers.items()
        if name.startswith(prefix)
    )


def flat_entries(
    blobs: Mapping[str, Blob],
    snapshots: Mapping[str, Mapping[str, Blob]],
    prefix: str = "",
    include_snapshots: bool = False,
) -> List[Tuple[SortKey, Blob]]:
    """Blobs (and optionally their snapshots) under ``prefix``, in key order."""
    entries: List[Tuple[SortKey, Blob]] = []
    for name, blob in blobs.items():
        if not name.startswith(prefix):
            continue
        entries.append(((name, BASE_RANK, ""), blob))
        if include_snapshots:
            for snapshot_id, snapshot in snapshots.get(name, {}).items():
                entries.append(((name, SNAPSHOT_RANK, snapshot_id), snapshot))
    entries.sort(key=lambda entry: entry[0])
    return entries


def hierarchy_entries(
    blobs: Mapping[str, Blob],
    prefix: str,
    delimiter: str,
) -> List[Tuple[SortKey, Any]]:
    """
    One level of the virtual directory tree under ``prefix``.

    Names with ``delimiter`` after the prefix collapse into one
    :class:`BlobPrefix` ending at the first occurrence; the rest are blobs.
    """
    if not delimiter:
        raise InvalidQueryParameterError("Delimiter cannot be empty for a hierarchical listing")

    directories: Dict[str, BlobPrefix] = {}
    entries: List[Tuple[SortKey, Any]] = []
    for name, blob in blobs.items():
        if not name.startswith(prefix):
            continue
        rest = name[len(prefix):]
        index = rest.find(delimiter)
        if index >= 0:
            directory = prefix + rest[:index + len(delimiter)]
            if directory not in directories:
                directories[directory] = BlobPrefix(name=directory)
                entries.append(((directory, BASE_RANK, ""), directories[directory]))
        else:
            entries.append(((name, BASE_RANK, ""), blob))
    entries.sort(key=lambda entry: entry[0])
    return entries


def paginate(
    entries: List[Tuple[SortKey, T]],
    page_size: int,
    continuation_token: Optional[str],
    kind: str,
    prefix: str = "",
    delimiter: Optional[str] = None,
) -> Tuple[List[T], Optional[str]]:
    """
    Cut one page out of sorted ``entries``.

    Returns:
        Tuple of (page entries, continuation token or None on the last page)

    Raises:
        InvalidQueryParameterError: If the token is malformed or was issued
            for a different listing
    """
    start = 0
    if continuation_token:
        cursor = ListingCursor.decode(continuation_token)
        if (cursor.kind, cursor.prefix, cursor.delimiter) != (kind, prefix, delimiter):
            raise InvalidQueryParameterError(
                "Continuation token does not belong to this listing",
                details={"kind": kind, "prefix": prefix, "delimiter": delimiter},
            )
        keys = [key for key, _ in entries]
        start = bisect_right(keys, cursor.marker)

    window = entries[start:start + page_size]
    token = None
    if start + page_size < len(entries):
        token = ListingCursor(kind, prefix, delimiter, window[-1][0]).encode()
    return [value for _, value in window], token
