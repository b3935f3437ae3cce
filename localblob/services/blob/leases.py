"""
Lease Manager

Explicit finite-state machine for container and blob leases.

States and transitions::

    Available --acquire--> Leased --release--> Available
    Leased --renew/change--> Leased
    Leased --(clock passes expiry)--> Expired --acquire/renew--> Leased
    Leased --break(n>0)--> Breaking --(clock passes break time)--> Broken
    Leased/Breaking --break(0)--> Broken --acquire--> Leased

Every transition builds a new :class:`Lease` record from the current one; the
caller swaps it into the resource in the same critical section as its other
checks. ``Expired`` and ``Broken`` reached by the passage of time are derived
at read time from ``(state, expiration_time, break_time, now)``.

Author: LocalBlob Team
Date: 2026-10-17
"""

import logging
import uuid
from datetime import timedelta
from typing import Callable, Optional, Tuple

from localblob.core.clock import Clock, utc_now

from .exceptions import (
    InvalidBreakPeriodError,
    InvalidLeaseDurationError,
    LeaseAlreadyPresentError,
    LeaseIdMismatchError,
    LeaseIdMissingError,
    LeaseIsBreakingError,
    LeaseIsBrokenError,
    LeaseNotPresentError,
)
from .models import INFINITE_LEASE_DURATION, Lease, LeaseState

logger = logging.getLogger(__name__)

MIN_LEASE_DURATION = 15
MAX_LEASE_DURATION = 60
MAX_BREAK_PERIOD = 60


class LeaseManager:
    """Applies lease transitions to lease records."""

    def __init__(self, clock: Clock = utc_now, id_factory: Optional[Callable[[], str]] = None):
        self._clock = clock
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    @staticmethod
    def normalize_duration(duration: Optional[int]) -> int:
        """
        Validate a requested lease duration.

        Returns:
            Duration in seconds, or -1 for an infinite lease

        Raises:
            InvalidLeaseDurationError: If outside 15-60 and not infinite
        """
        if duration in (INFINITE_LEASE_DURATION, 0):
            return INFINITE_LEASE_DURATION
        if duration is None or not MIN_LEASE_DURATION <= duration <= MAX_LEASE_DURATION:
            raise InvalidLeaseDurationError(duration)
        return duration

    def _leased(self, lease_id: str, duration: int) -> Lease:
        now = self._clock()
        return Lease(
            lease_id=lease_id,
            state=LeaseState.LEASED,
            duration=duration,
            acquired_time=now,
            expiration_time=None if duration == INFINITE_LEASE_DURATION else now + timedelta(seconds=duration),
        )

    def acquire(
        self,
        lease: Lease,
        resource: str,
        duration: int,
        proposed_lease_id: Optional[str] = None,
    ) -> Lease:
        """
        Acquire a lease.

        Args:
            lease: Current lease record
            resource: Resource path, for errors and logs
            duration: 15-60 seconds, or -1/0 for infinite
            proposed_lease_id: Optional caller-chosen lease ID

        Returns:
            New lease record in the ``Leased`` state

        Raises:
            InvalidLeaseDurationError: If duration is invalid
            LeaseAlreadyPresentError: If leased under a different ID
            LeaseIsBreakingError: If the current lease is breaking
        """
        duration = self.normalize_duration(duration)
        state = lease.effective_state(self._clock())

        if state == LeaseState.LEASED:
            if proposed_lease_id is None or proposed_lease_id != lease.lease_id:
                raise LeaseAlreadyPresentError(
                    f"There is already a lease present on '{resource}'",
                    details={"resource": resource},
                )
        elif state == LeaseState.BREAKING:
            raise LeaseIsBreakingError(
                f"The lease on '{resource}' is breaking and cannot be acquired",
                details={"resource": resource},
            )

        new_lease = self._leased(proposed_lease_id or self._id_factory(), duration)
        logger.info(f"Lease acquired on {resource} (duration={duration})")
        return new_lease

    def renew(self, lease: Lease, resource: str, lease_id: str) -> Lease:
        """
        Renew a lease for its original duration, counted from now.

        Succeeds from ``Expired`` as long as no other lease was acquired since.

        Raises:
            LeaseNotPresentError: If no lease was ever acquired
            LeaseIsBreakingError: If the lease is breaking
            LeaseIsBrokenError: If the lease is broken
            LeaseIdMismatchError: If the ID does not match
        """
        state = lease.effective_state(self._clock())

        if state == LeaseState.AVAILABLE:
            raise LeaseNotPresentError(resource, state.value)
        if state == LeaseState.BREAKING:
            raise LeaseIsBreakingError(
                f"The lease on '{resource}' is breaking and cannot be renewed",
                details={"resource": resource},
            )
        if state == LeaseState.BROKEN:
            raise LeaseIsBrokenError(
                f"The lease on '{resource}' is broken and cannot be renewed",
                details={"resource": resource},
            )
        if lease_id != lease.lease_id:
            raise LeaseIdMismatchError(resource, lease_id)

        logger.debug(f"Lease renewed on {resource}")
        return self._leased(lease.lease_id, lease.duration)

    def change(self, lease: Lease, resource: str, lease_id: str, proposed_lease_id: str) -> Lease:
        """
        Swap the active lease ID.

        Presenting the proposed ID as the current one is accepted, so a
        retried change is idempotent.

        Raises:
            LeaseNotPresentError: If the lease is not active
            LeaseIsBreakingError: If the lease is breaking
            LeaseIsBrokenError: If the lease is broken
            LeaseIdMismatchError: If neither ID matches
        """
        state = lease.effective_state(self._clock())

        if state in (LeaseState.AVAILABLE, LeaseState.EXPIRED):
            raise LeaseNotPresentError(resource, state.value)
        if state == LeaseState.BREAKING:
            raise LeaseIsBreakingError(
                f"The lease on '{resource}' is breaking and its ID cannot be changed",
                details={"resource": resource},
            )
        if state == LeaseState.BROKEN:
            raise LeaseIsBrokenError(
                f"The lease on '{resource}' is broken and its ID cannot be changed",
                details={"resource": resource},
            )
        if lease.lease_id == proposed_lease_id:
            return lease.model_copy()
        if lease.lease_id != lease_id:
            raise LeaseIdMismatchError(resource, lease_id)

        logger.info(f"Lease ID changed on {resource}")
        return lease.model_copy(update={"lease_id": proposed_lease_id})

    def release(self, lease: Lease, resource: str, lease_id: str) -> Lease:
        """
        Release a lease, making the resource available immediately.

        Raises:
            LeaseNotPresentError: If no lease exists
            LeaseIdMismatchError: If the ID does not match
        """
        state = lease.effective_state(self._clock())

        if state == LeaseState.AVAILABLE:
            raise LeaseNotPresentError(resource, state.value)
        if lease_id != lease.lease_id:
            raise LeaseIdMismatchError(resource, lease_id)

        logger.info(f"Lease released on {resource}")
        return Lease()

    def break_lease(
        self,
        lease: Lease,
        resource: str,
        break_period: Optional[int] = None,
    ) -> Tuple[Lease, int]:
        """
        Break a lease. No lease ID is required.

        Args:
            lease: Current lease record
            resource: Resource path
            break_period: Seconds (0-60) before the lease is broken. When
                omitted the lease breaks when it would have expired, which is
                immediately for infinite leases.

        Returns:
            Tuple of (new lease record, seconds until broken)

        Raises:
            InvalidBreakPeriodError: If break period is outside 0-60
            LeaseNotPresentError: If there is no lease to break
        """
        if break_period is not None and not 0 <= break_period <= MAX_BREAK_PERIOD:
            raise InvalidBreakPeriodError(
                f"Break period must be 0-{MAX_BREAK_PERIOD} seconds",
                details={"break_period": break_period},
            )

        now = self._clock()
        state = lease.effective_state(now)

        if state in (LeaseState.AVAILABLE, LeaseState.EXPIRED):
            raise LeaseNotPresentError(resource, state.value)

        if state == LeaseState.BROKEN:
            return lease.model_copy(update={"state": LeaseState.BROKEN}), 0

        infinite = state == LeaseState.LEASED and lease.expiration_time is None
        remaining = lease.remaining_seconds(now)
        if break_period is not None:
            # A break can only bring the end forward
            remaining = break_period if infinite else min(break_period, remaining)

        if remaining == 0:
            logger.info(f"Lease broken on {resource}")
            return lease.model_copy(update={"state": LeaseState.BROKEN, "break_time": now}), 0

        logger.info(f"Lease breaking on {resource} ({remaining}s)")
        return lease.model_copy(update={
            "state": LeaseState.BREAKING,
            "break_time": now + timedelta(seconds=remaining),
        }), remaining

    def check_write(self, lease: Lease, resource: str, lease_id: Optional[str]) -> None:
        """
        Enforce the lease on a mutating operation.

        Raises:
            LeaseIdMissingError: If leased (or breaking) and no ID was given
            LeaseIdMismatchError: If the ID does not match the active lease
            LeaseNotPresentError: If an ID was given but no lease is active
        """
        now = self._clock()
        if lease.is_active(now):
            if not lease_id:
                raise LeaseIdMissingError(resource)
            if lease_id != lease.lease_id:
                raise LeaseIdMismatchError(resource, lease_id)
        elif lease_id:
            raise LeaseNotPresentError(resource, lease.effective_state(now).value)

    def check_read(self, lease: Lease, resource: str, lease_id: Optional[str]) -> None:
        """Reads need no lease, but a presented lease ID must be the active one."""
        if lease_id:
            self.check_write(lease, resource, lease_id)
