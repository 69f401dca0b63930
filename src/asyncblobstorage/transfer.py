"""Per-call transfer configuration: chunking, progress and checksum validation."""

import hashlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterator, Mapping

from .conditions import RequestConditions
from .errors import IntegrityError, UnsupportedError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 4 * 1024 * 1024

ProgressCallback = Callable[[int], None]


class ChecksumAlgorithm(Enum):
    NONE = "none"  # No checksum is computed or validated
    AUTO = "auto"  # Backend picks its preferred algorithm
    MD5 = "md5"
    STORAGE_CRC64 = "storage_crc64"


@dataclass(frozen=True)
class TransferConfig:
    """Chunking knobs. Absent values mean the backend default."""

    max_chunk_size: int | None = None
    max_concurrency: int | None = None
    initial_chunk_size: int | None = None

    def __post_init__(self) -> None:
        for name in ("max_chunk_size", "max_concurrency", "initial_chunk_size"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")


@dataclass(frozen=True)
class ChecksumConfig:
    """
    Checksum algorithm selection.

    When ``auto_validate`` is False the caller is responsible for validating
    the body. Operations that always validate ignore the flag.
    """

    algorithm: ChecksumAlgorithm = ChecksumAlgorithm.AUTO
    auto_validate: bool = True


@dataclass(frozen=True)
class UploadConfig:
    metadata: Mapping[str, str] | None = None
    tags: Mapping[str, str] | None = None
    conditions: RequestConditions | None = None
    progress: ProgressCallback | None = None
    transfer: TransferConfig = field(default_factory=TransferConfig)
    checksum: ChecksumConfig = field(default_factory=ChecksumConfig)


@dataclass(frozen=True)
class DownloadConfig:
    conditions: RequestConditions | None = None
    progress: ProgressCallback | None = None
    transfer: TransferConfig = field(default_factory=TransferConfig)
    checksum: ChecksumConfig = field(default_factory=ChecksumConfig)


class ProgressTracker:
    """Reports cumulative byte counts to a progress callback.

    Reports are monotonically non-decreasing; ``finish`` guarantees a final
    report equal to the total, even for empty bodies.
    """

    def __init__(self, callback: ProgressCallback | None) -> None:
        self._callback = callback
        self._reported = -1
        self.transferred = 0

    def advance(self, nbytes: int) -> None:
        self.transferred += nbytes
        self._report()

    def finish(self) -> None:
        if self._reported != self.transferred:
            self._report()

    def _report(self) -> None:
        if self._callback is None or self.transferred <= self._reported:
            return
        self._reported = self.transferred
        self._callback(self.transferred)


def iter_chunks(data: bytes, transfer: TransferConfig | None = None) -> Iterator[bytes]:
    """Split a body into transfer-sized chunks.

    The first chunk uses ``initial_chunk_size`` when set; the rest use
    ``max_chunk_size`` (or the default).
    """
    transfer = transfer or TransferConfig()
    chunk_size = transfer.max_chunk_size or DEFAULT_CHUNK_SIZE
    first = transfer.initial_chunk_size or chunk_size
    view = memoryview(data)
    if len(view) == 0:
        return
    yield bytes(view[:first])
    for offset in range(first, len(view), chunk_size):
        yield bytes(view[offset : offset + chunk_size])


def compute_checksum(data: bytes, algorithm: ChecksumAlgorithm) -> str | None:
    """Return the hex checksum of ``data``, or None for ChecksumAlgorithm.NONE."""
    if algorithm == ChecksumAlgorithm.NONE:
        return None
    if algorithm in (ChecksumAlgorithm.AUTO, ChecksumAlgorithm.MD5):
        return hashlib.md5(data).hexdigest()
    raise UnsupportedError(f"Checksum algorithm {algorithm.value} is not supported by this backend")


def validate_checksum(
    data: bytes,
    expected: str | None,
    checksum: ChecksumConfig,
    always: bool = False,
    what: str = "blob",
) -> None:
    """
    Compare ``data`` against a stored checksum.
    Raises IntegrityError on mismatch. ``always=True`` ignores auto_validate.
    """
    if not (checksum.auto_validate or always):
        return
    algorithm = checksum.algorithm
    if algorithm == ChecksumAlgorithm.NONE:
        if not always:
            return
        algorithm = ChecksumAlgorithm.AUTO
    if expected is None:
        return
    actual = compute_checksum(data, algorithm)
    if actual != expected:
        logger.warning("Checksum mismatch for %s: expected=%s actual=%s", what, expected, actual)
        raise IntegrityError(
            f"Checksum mismatch for {what}", expected=expected, actual=actual
        )
