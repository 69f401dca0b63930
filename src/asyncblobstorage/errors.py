class StorageError(Exception):
    """Base class for every error raised by asyncblobstorage.

    Attributes:
        code: Short machine-readable error code (e.g. "BlobNotFound").
        message: Human-readable error description.
    """

    code = "StorageError"
    retryable = False

    def __init__(self, message: str = "", code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


# -- Local errors, raised before any backend call ------------------------------


class InvalidStateError(StorageError):
    """Raised when a context has no live container or blob id."""

    code = "InvalidState"


class RebindError(InvalidStateError):
    """Raised when a blob id is bound to a context that already had one."""

    code = "Rebind"


# -- Backend errors ------------------------------------------------------------


class NotFoundError(StorageError):
    """The container or blob does not exist."""

    code = "NotFound"


class ContainerNotFoundError(NotFoundError):
    """Raised when a requested container does not exist."""

    code = "ContainerNotFound"


class BlobNotFoundError(NotFoundError):
    """Raised when a requested blob does not exist."""

    code = "BlobNotFound"


class AlreadyExistsError(StorageError):
    """The resource already exists and the request did not allow replacing it."""

    code = "AlreadyExists"


class BlobAlreadyExistsError(AlreadyExistsError):
    code = "BlobAlreadyExists"


class BlobNameConflictError(AlreadyExistsError):
    """The blob name clashes with an existing blob used as a directory, or the reverse."""

    code = "BlobNameConflict"


class PreconditionFailedError(StorageError):
    """Raised when a conditional request (ETag, time, lease or tags) fails.

    Callers should refresh the ETag or lease and may retry.
    """

    code = "PreconditionFailed"


class LeaseConflictError(PreconditionFailedError):
    """The lease state does not permit the requested lease operation."""

    code = "LeaseConflict"


class UnsupportedError(StorageError):
    """The backend lacks the requested capability. Retrying will not help."""

    code = "Unsupported"


class UnauthorizedError(StorageError):
    code = "Unauthorized"


class TransientError(StorageError):
    """A failure that is safe to retry with backoff."""

    code = "TransientFailure"
    retryable = True


class ProviderError(StorageError):
    """Opaque provider-specific failure. The native error is chained as __cause__."""

    code = "ProviderFailure"


class IntegrityError(StorageError):
    """Raised when a transferred body does not match its checksum."""

    code = "IntegrityFailure"

    def __init__(self, message: str = "", expected: str | None = None, actual: str | None = None) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual
