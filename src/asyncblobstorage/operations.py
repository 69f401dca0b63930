"""Operation façade: storage operations as methods on a bound context.

Each method validates the context, delegates to the client with the bound
container/blob id, and drives the state transition after a successful
delete. A delete that fails or is cancelled leaves the state unchanged.
"""

import logging
from dataclasses import replace
from datetime import timedelta
from typing import Mapping

from .conditions import BlobConditions, RequestConditions
from .context import CloudStorageContext
from .models import BlobProperties, LeaseInfo
from .storage_protocols import AsyncStorageClient, StrPath, StreamSource
from .transfer import DownloadConfig, UploadConfig

logger = logging.getLogger(__name__)


class StorageHandle(CloudStorageContext):
    """A :class:`CloudStorageContext` with the storage operations attached."""

    def with_blob(self, blob_id: str) -> "StorageHandle":
        super().with_blob(blob_id)
        return self

    def _ids(self) -> tuple[str, str]:
        return self.ensure_container_id(), self.ensure_blob_id()

    # -- Container scope -----------------------------------------------------

    async def create_if_absent(self) -> None:
        await self.client.create_container_if_absent(self.ensure_container_id())

    async def delete_container(self) -> None:
        container_id = self.ensure_container_id()
        await self.client.delete_container(container_id)
        logger.info(
            "Deleted container %s",
            container_id,
            extra={"container": container_id, "operation": "delete_container"},
        )
        self.on_container_deleted()

    async def container_exists(self) -> bool:
        return await self.client.container_exists(self.ensure_container_id())

    async def list_blobs(self, prefix: str = "") -> list[str]:
        return await self.client.list_blobs(self.ensure_container_id(), prefix)

    async def delete_blobs(self, prefix: str) -> None:
        await self.client.delete_blobs(self.ensure_container_id(), prefix)

    # -- Blob scope ----------------------------------------------------------

    async def upload_from_path(
        self,
        source_path: StrPath,
        overwrite: bool = False,
        metadata: Mapping[str, str] | None = None,
        config: UploadConfig | None = None,
    ) -> str | None:
        container_id, blob_id = self._ids()
        return await self.client.upload_from_path(
            container_id, blob_id, source_path, overwrite, metadata, config
        )

    async def upload_content(
        self,
        content: str | bytes,
        overwrite: bool = False,
        metadata: Mapping[str, str] | None = None,
        config: UploadConfig | None = None,
    ) -> str | None:
        container_id, blob_id = self._ids()
        return await self.client.upload_content(
            container_id, blob_id, content, overwrite, metadata, config
        )

    async def upload_stream(
        self,
        stream: StreamSource,
        overwrite: bool = False,
        metadata: Mapping[str, str] | None = None,
        config: UploadConfig | None = None,
    ) -> str | None:
        container_id, blob_id = self._ids()
        return await self.client.upload_stream(
            container_id, blob_id, stream, overwrite, metadata, config
        )

    async def download_to_path(
        self, destination_path: StrPath, config: DownloadConfig | None = None
    ) -> None:
        container_id, blob_id = self._ids()
        if config is not None and not config.checksum.auto_validate:
            logger.debug("download_to_path always validates; ignoring auto_validate=False")
            config = replace(config, checksum=replace(config.checksum, auto_validate=True))
        await self.client.download_to_path(container_id, blob_id, destination_path, config)

    async def download_content(self, config: DownloadConfig | None = None) -> bytes:
        container_id, blob_id = self._ids()
        return await self.client.download_content(container_id, blob_id, config)

    async def get_properties(self) -> BlobProperties:
        return await self.client.get_properties(*self._ids())

    async def get_metadata(self) -> dict[str, str]:
        return await self.client.get_metadata(*self._ids())

    async def set_metadata(
        self,
        metadata: Mapping[str, str],
        conditions: RequestConditions | None = None,
    ) -> str | None:
        container_id, blob_id = self._ids()
        return await self.client.set_metadata(container_id, blob_id, metadata, conditions)

    async def get_tags(self) -> dict[str, str]:
        return await self.client.get_tags(*self._ids())

    async def set_tags(
        self,
        tags: Mapping[str, str],
        conditions: RequestConditions | None = None,
    ) -> None:
        container_id, blob_id = self._ids()
        await self.client.set_tags(container_id, blob_id, tags, conditions)

    async def exists(self) -> bool:
        return await self.client.exists(*self._ids())

    async def delete_blob(self, conditions: RequestConditions | None = None) -> None:
        container_id, blob_id = self._ids()
        await self.client.delete_blob(container_id, blob_id, conditions)
        logger.debug(
            "Deleted blob %s/%s",
            container_id,
            blob_id,
            extra={"container": container_id, "blob": blob_id, "operation": "delete_blob"},
        )
        self.on_blob_deleted()

    # -- Leases --------------------------------------------------------------

    async def acquire_lease(
        self,
        duration: timedelta | None,
        conditions: BlobConditions | None = None,
        proposed_lease_id: str | None = None,
    ) -> LeaseInfo:
        container_id, blob_id = self._ids()
        return await self.client.acquire_lease(
            container_id, blob_id, duration, conditions, proposed_lease_id
        )

    async def renew_lease(
        self, lease_id: str, conditions: BlobConditions | None = None
    ) -> LeaseInfo:
        container_id, blob_id = self._ids()
        return await self.client.renew_lease(container_id, blob_id, lease_id, conditions)

    async def release_lease(self, lease_id: str) -> LeaseInfo:
        container_id, blob_id = self._ids()
        return await self.client.release_lease(container_id, blob_id, lease_id)

    async def break_lease(
        self,
        break_period: timedelta | None = None,
        conditions: BlobConditions | None = None,
    ) -> LeaseInfo:
        container_id, blob_id = self._ids()
        return await self.client.break_lease(container_id, blob_id, break_period, conditions)


def bind(client: AsyncStorageClient, container_id: str) -> StorageHandle:
    """Create a handle for ``container_id`` on ``client``."""
    return StorageHandle(client, container_id)


use_container = bind
