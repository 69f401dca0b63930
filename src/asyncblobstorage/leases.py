"""In-process lease bookkeeping shared by the reference backends.

Leases are tracked per backend instance and are not visible to other
processes.
"""

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from .errors import LeaseConflictError, PreconditionFailedError
from .models import LeaseState

LeaseKey = tuple[str, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Lease:
    lease_id: str
    duration: timedelta | None  # None means infinite
    expires_at: datetime | None
    break_at: datetime | None = None


class LeaseTable:
    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._leases: dict[LeaseKey, _Lease] = {}

    def state(self, key: LeaseKey) -> LeaseState:
        lease = self._leases.get(key)
        if lease is None:
            return LeaseState.AVAILABLE
        now = self._clock()
        if lease.break_at is not None:
            return LeaseState.BROKEN if now >= lease.break_at else LeaseState.BREAKING
        if lease.expires_at is not None and now >= lease.expires_at:
            return LeaseState.EXPIRED
        return LeaseState.LEASED

    def is_active(self, key: LeaseKey) -> bool:
        return self.state(key) in (LeaseState.LEASED, LeaseState.BREAKING)

    def acquire(
        self,
        key: LeaseKey,
        duration: timedelta | None,
        proposed_lease_id: str | None = None,
    ) -> str:
        if duration is not None and duration.total_seconds() <= 0:
            raise ValueError("Lease duration must be positive, or None for an infinite lease")
        state = self.state(key)
        current = self._leases.get(key)
        if state == LeaseState.BREAKING or (
            state == LeaseState.LEASED
            and (proposed_lease_id is None or proposed_lease_id != current.lease_id)
        ):
            raise LeaseConflictError(f"There is already an active lease on {key[1]}")
        lease_id = proposed_lease_id or str(uuid.uuid4())
        now = self._clock()
        self._leases[key] = _Lease(
            lease_id=lease_id,
            duration=duration,
            expires_at=None if duration is None else now + duration,
        )
        return lease_id

    def renew(self, key: LeaseKey, lease_id: str) -> str:
        lease = self._require(key, lease_id)
        if self.state(key) in (LeaseState.BREAKING, LeaseState.BROKEN):
            raise LeaseConflictError(f"The lease on {key[1]} is broken and cannot be renewed")
        now = self._clock()
        lease.expires_at = None if lease.duration is None else now + lease.duration
        return lease.lease_id

    def release(self, key: LeaseKey, lease_id: str) -> str:
        lease = self._require(key, lease_id)
        del self._leases[key]
        return lease.lease_id

    def break_lease(self, key: LeaseKey, break_period: timedelta | None = None) -> tuple[str, int]:
        """Break the lease on ``key``. Returns the lease id and the seconds left."""
        if break_period is not None and break_period.total_seconds() < 0:
            raise ValueError("Break period must not be negative")
        state = self.state(key)
        if state in (LeaseState.AVAILABLE, LeaseState.EXPIRED, LeaseState.BROKEN):
            raise LeaseConflictError(f"There is no active lease on {key[1]} to break")
        lease = self._leases[key]
        now = self._clock()
        if state == LeaseState.BREAKING:
            # A second break may only shorten the break period
            if break_period is not None and now + break_period < lease.break_at:
                lease.break_at = now + break_period
        else:
            period = break_period or timedelta(0)
            if lease.expires_at is not None:
                period = min(period, lease.expires_at - now)
            lease.break_at = now + period
        remaining = lease.break_at - now
        return lease.lease_id, max(0, math.ceil(remaining.total_seconds()))

    def check_write(self, key: LeaseKey, lease_id: str | None) -> None:
        """Raise PreconditionFailedError unless ``lease_id`` satisfies the lease on ``key``."""
        if self.is_active(key):
            current = self._leases[key].lease_id
            if lease_id is None:
                raise PreconditionFailedError(
                    f"There is currently a lease on {key[1]} and no lease id was specified"
                )
            if lease_id != current:
                raise PreconditionFailedError(f"The lease id specified did not match the lease on {key[1]}")
        elif lease_id is not None:
            raise PreconditionFailedError(f"There is currently no lease on {key[1]}")

    def forget(self, key: LeaseKey) -> None:
        self._leases.pop(key, None)

    def forget_container(self, container_id: str) -> None:
        for key in [k for k in self._leases if k[0] == container_id]:
            del self._leases[key]

    def _require(self, key: LeaseKey, lease_id: str) -> _Lease:
        lease = self._leases.get(key)
        if lease is None:
            raise LeaseConflictError(f"There is no lease on {key[1]}")
        if lease.lease_id != lease_id:
            raise LeaseConflictError(f"The lease id specified did not match the lease on {key[1]}")
        return lease
