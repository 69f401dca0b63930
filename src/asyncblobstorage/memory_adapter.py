"""In-memory storage client.

All containers, blobs and previous versions are held in Python
dictionaries on a :class:`MemoryStore`, which is also the native client
handed to ``using_client`` callbacks. With ``versioning=True`` every upload
and metadata update creates a new version; the previous one is kept in
``MemoryStore.versions`` until the blob is deleted.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from .base_adapter import BaseStorageClient, BlobRecord
from .leases import utcnow
from .transfer import ProgressTracker, TransferConfig, iter_chunks


@dataclass
class StoredBlob:
    data: bytes
    record: BlobRecord


@dataclass
class MemoryStore:
    """Backing state of a MemoryStorageClient."""

    # container -> blob name -> current blob
    containers: dict[str, dict[str, StoredBlob]] = field(default_factory=dict)
    # (container, blob name) -> previous versions, oldest first
    versions: dict[tuple[str, str], list[StoredBlob]] = field(default_factory=dict)

    def total_size(self) -> int:
        return sum(b.record.size for blobs in self.containers.values() for b in blobs.values())


class MemoryStorageClient(BaseStorageClient):
    """Storage client that holds everything in memory.

    Calling ``set_metadata`` on a versioned client creates a new version
    that does not carry the previous version's tags.
    """

    drops_tags_on_new_version = True

    def __init__(
        self,
        account_name: str = "memory",
        versioning: bool = False,
        leasing: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(account_name, versioning=versioning, leasing=leasing, clock=clock)
        self._store_state = MemoryStore()

    def _native_client(self) -> MemoryStore:
        return self._store_state

    async def _create_container(self, container_id: str) -> None:
        self._store_state.containers[container_id] = {}

    async def _delete_container(self, container_id: str) -> None:
        blobs = self._store_state.containers.pop(container_id)
        for name in blobs:
            self._store_state.versions.pop((container_id, name), None)

    async def _container_exists(self, container_id: str) -> bool:
        return container_id in self._store_state.containers

    async def _list_names(self, container_id: str) -> list[str]:
        return list(self._store_state.containers[container_id])

    async def _load(self, container_id: str, blob_id: str) -> BlobRecord | None:
        stored = self._store_state.containers[container_id].get(blob_id)
        return stored.record if stored else None

    async def _read(self, container_id: str, blob_id: str) -> bytes:
        return self._store_state.containers[container_id][blob_id].data

    async def _store(
        self,
        container_id: str,
        blob_id: str,
        record: BlobRecord,
        data: bytes | None = None,
        transfer: TransferConfig | None = None,
        progress: ProgressTracker | None = None,
        verify: Callable[[bytes], None] | None = None,
    ) -> None:
        blobs = self._store_state.containers[container_id]
        previous = blobs.get(blob_id)
        if data is None:
            data = previous.data
        else:
            # Chunked copy; nothing is visible until the last chunk lands
            buffer = bytearray()
            for chunk in iter_chunks(data, transfer):
                buffer.extend(chunk)
                if progress is not None:
                    progress.advance(len(chunk))
                await asyncio.sleep(0)
            data = bytes(buffer)
            if verify is not None:
                verify(data)
        if (
            previous is not None
            and record.version_id is not None
            and record.version_id != previous.record.version_id
        ):
            self._store_state.versions.setdefault((container_id, blob_id), []).append(previous)
        blobs[blob_id] = StoredBlob(data=data, record=record)

    async def _remove(self, container_id: str, blob_id: str) -> None:
        del self._store_state.containers[container_id][blob_id]
        self._store_state.versions.pop((container_id, blob_id), None)
