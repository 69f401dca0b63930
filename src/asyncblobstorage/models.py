from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class LeaseState(Enum):
    AVAILABLE = "available"
    LEASED = "leased"
    BREAKING = "breaking"
    BROKEN = "broken"
    EXPIRED = "expired"


@dataclass(frozen=True)
class LeaseInfo:
    """Result of a lease operation.

    Attributes:
        lease_id: Identifier of the lease.
        lease_time: Approximate seconds left in the lease; only set by break_lease.
        last_modified: Last-modified time of the blob.
        etag: Current ETag of the blob.
    """

    lease_id: str
    lease_time: int | None
    last_modified: datetime
    etag: str


@dataclass(frozen=True)
class BlobProperties:
    name: str
    etag: str
    last_modified: datetime
    size: int
    content_md5: str | None = None
    version_id: str | None = None
    lease_state: LeaseState = LeaseState.AVAILABLE
    metadata: dict[str, str] = field(default_factory=dict)
