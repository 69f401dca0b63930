import logging
from enum import Enum

from .errors import InvalidStateError, RebindError
from .storage_protocols import AsyncStorageClient

logger = logging.getLogger(__name__)


class ContextState(Enum):
    LIVE = "live"  # Container bound, no blob yet
    LIVE_WITH_BLOB = "live_with_blob"  # Container and blob bound
    CONTAINER_DELETED = "container_deleted"  # Terminal
    BLOB_DELETED = "blob_deleted"  # Terminal for blob scope; container still usable


class CloudStorageContext:
    """
    A container (and optionally one blob) bound to a storage client.

    The context does not own the client; closing the client is the
    caller's job. Deletes move the context into a terminal state; to target
    another container or blob, create a new context.

    The context does no locking. Concurrent use of one context while a
    delete is in flight must be serialized by the caller.
    """

    def __init__(
        self,
        client: AsyncStorageClient,
        container_id: str,
        blob_id: str | None = None,
    ) -> None:
        self._client = client
        self._container_id = container_id
        self._blob_id: str | None = None
        self._state = ContextState.LIVE
        if blob_id is not None:
            self.with_blob(blob_id)

    @property
    def client(self) -> AsyncStorageClient:
        return self._client

    @property
    def container_id(self) -> str:
        return self._container_id

    @property
    def blob_id(self) -> str | None:
        return self._blob_id

    @property
    def state(self) -> ContextState:
        return self._state

    @property
    def container_deleted(self) -> bool:
        return self._state == ContextState.CONTAINER_DELETED

    @property
    def blob_deleted(self) -> bool:
        return self._state == ContextState.BLOB_DELETED

    def ensure_container_id(self) -> str:
        """Return the container id, or raise InvalidStateError if it is missing or deleted."""
        if self._state == ContextState.CONTAINER_DELETED or not (self._container_id or "").strip():
            raise InvalidStateError(
                "Unknown or missing container id, or container was deleted and is no longer available."
            )
        return self._container_id

    def ensure_blob_id(self) -> str:
        """Return the blob id, or raise InvalidStateError if it is missing or deleted."""
        if self._state != ContextState.LIVE_WITH_BLOB or not (self._blob_id or "").strip():
            raise InvalidStateError(
                "Unknown or missing blob id, or blob was deleted and is no longer available."
            )
        return self._blob_id

    def with_blob(self, blob_id: str) -> "CloudStorageContext":
        """Bind a blob id to this context. Can only be done once."""
        self.ensure_container_id()
        if self._state != ContextState.LIVE:
            bound = self._blob_id if self._blob_id else "(deleted)"
            raise RebindError(f"Blob id {bound} already in use.")
        if not (blob_id or "").strip():
            raise InvalidStateError("blob_id must be a non-empty string")
        self._blob_id = blob_id
        self._state = ContextState.LIVE_WITH_BLOB
        return self

    def on_blob_deleted(self) -> None:
        if self._state != ContextState.LIVE_WITH_BLOB:
            raise InvalidStateError(f"Cannot mark blob deleted from state {self._state.value}")
        logger.debug("Context for %s/%s moved to blob_deleted", self._container_id, self._blob_id)
        self._blob_id = ""
        self._state = ContextState.BLOB_DELETED

    def on_container_deleted(self) -> None:
        if self._state == ContextState.CONTAINER_DELETED:
            raise InvalidStateError("Container already marked deleted")
        logger.debug("Context for %s moved to container_deleted", self._container_id)
        self._container_id = ""
        if self._blob_id is not None:
            self._blob_id = ""
        self._state = ContextState.CONTAINER_DELETED

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(container_id={self._container_id!r}, "
            f"blob_id={self._blob_id!r}, state={self._state.value})"
        )
