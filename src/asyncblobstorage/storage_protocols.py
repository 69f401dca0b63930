from datetime import timedelta
from os import PathLike
from typing import Any, AsyncIterable, BinaryIO, Callable, Mapping, Protocol, TypeVar, Union

from .conditions import BlobConditions, RequestConditions
from .models import BlobProperties, LeaseInfo
from .transfer import DownloadConfig, UploadConfig

TClient = TypeVar("TClient")

StrPath = Union[str, PathLike]


class AsyncReader(Protocol):
    async def read(self, n: int = -1) -> bytes: ...


StreamSource = Union[BinaryIO, AsyncReader, AsyncIterable[bytes]]


class AsyncStorageClient(Protocol):
    """
    Protocol for a storage backend.

    Every blob operation takes the container id and blob id explicitly.
    Backends translate native failures into the errors in ``errors.py``;
    ``exists`` and ``container_exists`` never raise for absence.

    Cancellation follows asyncio: cancelling the awaiting task aborts the
    call.
    """

    # Declares whether set_metadata creates a new version without the tags
    # of the previous one. Backends without versioning keep tags.
    drops_tags_on_new_version: bool

    @property
    def account_name(self) -> str:
        """Name of the storage account this client is bound to."""
        ...

    async def using_client(
        self, client_type: type[TClient], callback: Callable[[TClient], Any]
    ) -> Any:
        """
        Run ``callback`` against the backend's native client.
        Raises UnsupportedError if the native client is not a ``client_type``.
        The callback may be sync or async; its result is returned.
        """
        ...

    async def close(self) -> None:
        """Close any resources/connections."""
        ...

    # -- Containers ----------------------------------------------------------

    async def create_container_if_absent(self, container_id: str) -> None:
        """Create the container; no error if it already exists."""
        ...

    async def delete_container(self, container_id: str) -> None:
        """Delete the container and everything in it."""
        ...

    async def container_exists(self, container_id: str) -> bool: ...

    async def list_blobs(self, container_id: str, prefix: str = "") -> list[str]:
        """List blob names in container."""
        ...

    async def delete_blobs(self, container_id: str, prefix: str) -> None:
        """Delete every blob (and its versions) whose name starts with ``prefix``."""
        ...

    # -- Blobs ---------------------------------------------------------------

    async def upload_from_path(
        self,
        container_id: str,
        blob_id: str,
        source_path: StrPath,
        overwrite: bool = False,
        metadata: Mapping[str, str] | None = None,
        config: UploadConfig | None = None,
    ) -> str | None:
        """Upload a local file. Returns the new version id, if versioning is enabled."""
        ...

    async def upload_content(
        self,
        container_id: str,
        blob_id: str,
        content: str | bytes,
        overwrite: bool = False,
        metadata: Mapping[str, str] | None = None,
        config: UploadConfig | None = None,
    ) -> str | None:
        """Upload text (UTF-8 encoded) or bytes."""
        ...

    async def upload_stream(
        self,
        container_id: str,
        blob_id: str,
        stream: StreamSource,
        overwrite: bool = False,
        metadata: Mapping[str, str] | None = None,
        config: UploadConfig | None = None,
    ) -> str | None:
        """Upload from a binary file object, an async reader or an async iterable of bytes."""
        ...

    async def download_to_path(
        self,
        container_id: str,
        blob_id: str,
        destination_path: StrPath,
        config: DownloadConfig | None = None,
    ) -> None:
        """Download to a local file. The checksum is always validated."""
        ...

    async def download_content(
        self,
        container_id: str,
        blob_id: str,
        config: DownloadConfig | None = None,
    ) -> bytes: ...

    async def get_properties(self, container_id: str, blob_id: str) -> BlobProperties: ...

    async def get_metadata(self, container_id: str, blob_id: str) -> dict[str, str]: ...

    async def set_metadata(
        self,
        container_id: str,
        blob_id: str,
        metadata: Mapping[str, str],
        conditions: RequestConditions | None = None,
    ) -> str | None:
        """Replace all metadata. Returns the new version id, if versioning is enabled."""
        ...

    async def get_tags(self, container_id: str, blob_id: str) -> dict[str, str]: ...

    async def set_tags(
        self,
        container_id: str,
        blob_id: str,
        tags: Mapping[str, str],
        conditions: RequestConditions | None = None,
    ) -> None:
        """Replace the tag set."""
        ...

    async def exists(self, container_id: str, blob_id: str) -> bool: ...

    async def delete_blob(
        self,
        container_id: str,
        blob_id: str,
        conditions: RequestConditions | None = None,
    ) -> None:
        """Delete one blob and its versions."""
        ...

    # -- Leases --------------------------------------------------------------

    async def acquire_lease(
        self,
        container_id: str,
        blob_id: str,
        duration: timedelta | None,
        conditions: BlobConditions | None = None,
        proposed_lease_id: str | None = None,
    ) -> LeaseInfo:
        """Acquire a lease; ``duration=None`` requests an infinite lease."""
        ...

    async def renew_lease(
        self,
        container_id: str,
        blob_id: str,
        lease_id: str,
        conditions: BlobConditions | None = None,
    ) -> LeaseInfo: ...

    async def release_lease(self, container_id: str, blob_id: str, lease_id: str) -> LeaseInfo: ...

    async def break_lease(
        self,
        container_id: str,
        blob_id: str,
        break_period: timedelta | None = None,
        conditions: BlobConditions | None = None,
    ) -> LeaseInfo:
        """Break the lease; the result's ``lease_time`` holds the seconds left."""
        ...
