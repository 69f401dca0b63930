"""Shared contract logic for the reference storage clients.

``BaseStorageClient`` implements the full ``AsyncStorageClient`` contract
(overwrite rules, conditions, leases, checksum validation, chunked
transfer with progress) on top of a handful of storage primitives that
each adapter provides.
"""

import asyncio
import hashlib
import inspect
import logging
import os
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from functools import partial
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Mapping

from .conditions import BlobConditions, RequestConditions, check_conditions
from .errors import (
    BlobAlreadyExistsError,
    BlobNotFoundError,
    ContainerNotFoundError,
    PreconditionFailedError,
    UnsupportedError,
)
from .leases import LeaseTable, utcnow
from .models import BlobProperties, LeaseInfo
from .storage_protocols import StrPath, StreamSource
from .transfer import (
    DEFAULT_CHUNK_SIZE,
    ChecksumConfig,
    DownloadConfig,
    ProgressTracker,
    TransferConfig,
    UploadConfig,
    compute_checksum,
    iter_chunks,
    validate_checksum,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlobRecord:
    """Stored properties of one blob (everything except the content)."""

    etag: str
    last_modified: datetime
    size: int
    content_md5: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)
    version_id: str | None = None


def new_etag() -> str:
    return f'"0x{uuid.uuid4().hex[:16].upper()}"'


class BaseStorageClient(ABC):
    """Base for storage clients. Subclasses provide the storage primitives."""

    drops_tags_on_new_version = False

    def __init__(
        self,
        account_name: str,
        versioning: bool = False,
        leasing: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._account_name = account_name
        self.versioning = versioning
        self.leasing = leasing
        self._clock = clock
        self._leases = LeaseTable(clock)
        self._lock = asyncio.Lock()

    @property
    def account_name(self) -> str:
        return self._account_name

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        pass

    # -- Primitives ------------------------------------------------------------

    @abstractmethod
    def _native_client(self) -> Any:
        raise NotImplementedError

    @abstractmethod
    async def _create_container(self, container_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _delete_container(self, container_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _container_exists(self, container_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def _list_names(self, container_id: str) -> list[str]:
        raise NotImplementedError

    @abstractmethod
    async def _load(self, container_id: str, blob_id: str) -> BlobRecord | None:
        """Return the blob's record, or None if the blob does not exist."""
        raise NotImplementedError

    @abstractmethod
    async def _read(self, container_id: str, blob_id: str) -> bytes:
        raise NotImplementedError

    @abstractmethod
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
        """Persist ``record``; when ``data`` is given, replace the content too.

        ``verify`` is called with the content as stored, before it becomes
        visible, and may raise IntegrityError to abort the write.
        """
        raise NotImplementedError

    @abstractmethod
    async def _remove(self, container_id: str, blob_id: str) -> None:
        raise NotImplementedError

    # -- Helpers ---------------------------------------------------------------

    def _new_version_id(self) -> str | None:
        if not self.versioning:
            return None
        return self._clock().strftime("%Y-%m-%dT%H:%M:%S.%fZ") + "-" + uuid.uuid4().hex[:8]

    async def _require_container(self, container_id: str) -> None:
        if not await self._container_exists(container_id):
            raise ContainerNotFoundError(f"Container '{container_id}' not found")

    async def _require_blob(self, container_id: str, blob_id: str) -> BlobRecord:
        await self._require_container(container_id)
        record = await self._load(container_id, blob_id)
        if record is None:
            raise BlobNotFoundError(f"Blob '{blob_id}' not found")
        return record

    def _check_leasing(self) -> None:
        if not self.leasing:
            raise UnsupportedError(f"{type(self).__name__} does not support leases")

    def _check_write(
        self,
        container_id: str,
        blob_id: str,
        record: BlobRecord | None,
        conditions: RequestConditions | None,
    ) -> None:
        check_conditions(
            conditions,
            exists=record is not None,
            etag=record.etag if record else None,
            last_modified=record.last_modified if record else None,
            tags=record.tags if record else None,
        )
        lease_id = conditions.lease_id if conditions else None
        if self.leasing:
            self._leases.check_write((container_id, blob_id), lease_id)
        elif lease_id is not None:
            raise UnsupportedError(f"{type(self).__name__} does not support leases")

    def _check_read(
        self,
        container_id: str,
        blob_id: str,
        record: BlobRecord,
        conditions: RequestConditions | None,
    ) -> None:
        check_conditions(
            conditions,
            exists=True,
            etag=record.etag,
            last_modified=record.last_modified,
            tags=record.tags,
        )
        lease_id = conditions.lease_id if conditions else None
        if lease_id is not None:
            self._check_leasing()
            self._leases.check_write((container_id, blob_id), lease_id)

    def _lease_info(self, lease_id: str, record: BlobRecord, lease_time: int | None = None) -> LeaseInfo:
        return LeaseInfo(
            lease_id=lease_id,
            lease_time=lease_time,
            last_modified=record.last_modified,
            etag=record.etag,
        )

    # -- Escape hatch ----------------------------------------------------------

    async def using_client(self, client_type: type, callback: Callable[[Any], Any]) -> Any:
        native = self._native_client()
        if not isinstance(native, client_type):
            raise UnsupportedError(
                f"{type(self).__name__} native client is {type(native).__name__}, "
                f"not {client_type.__name__}"
            )
        result = callback(native)
        if inspect.isawaitable(result):
            result = await result
        return result

    # -- Containers ------------------------------------------------------------

    async def create_container_if_absent(self, container_id: str) -> None:
        async with self._lock:
            if await self._container_exists(container_id):
                return
            await self._create_container(container_id)
        logger.info("Created container %s", container_id)

    async def delete_container(self, container_id: str) -> None:
        async with self._lock:
            await self._require_container(container_id)
            await self._delete_container(container_id)
            self._leases.forget_container(container_id)

    async def container_exists(self, container_id: str) -> bool:
        return await self._container_exists(container_id)

    async def list_blobs(self, container_id: str, prefix: str = "") -> list[str]:
        await self._require_container(container_id)
        return sorted(n for n in await self._list_names(container_id) if n.startswith(prefix))

    async def delete_blobs(self, container_id: str, prefix: str) -> None:
        async with self._lock:
            await self._require_container(container_id)
            names = [n for n in await self._list_names(container_id) if n.startswith(prefix)]
            leased = [n for n in names if self._leases.is_active((container_id, n))]
            if leased:
                raise PreconditionFailedError(
                    f"Blobs under prefix '{prefix}' hold active leases: {', '.join(sorted(leased))}"
                )
            for name in names:
                await self._remove(container_id, name)
                self._leases.forget((container_id, name))
        logger.debug("Deleted %d blobs with prefix '%s' from %s", len(names), prefix, container_id)

    # -- Uploads ---------------------------------------------------------------

    async def upload_from_path(
        self,
        container_id: str,
        blob_id: str,
        source_path: StrPath,
        overwrite: bool = False,
        metadata: Mapping[str, str] | None = None,
        config: UploadConfig | None = None,
    ) -> str | None:
        config = self._upload_config(metadata, config)
        data = await asyncio.to_thread(Path(source_path).read_bytes)
        return await self._upload(container_id, blob_id, data, overwrite, config)

    async def upload_content(
        self,
        container_id: str,
        blob_id: str,
        content: str | bytes,
        overwrite: bool = False,
        metadata: Mapping[str, str] | None = None,
        config: UploadConfig | None = None,
    ) -> str | None:
        config = self._upload_config(metadata, config)
        data = content.encode("utf-8") if isinstance(content, str) else bytes(content)
        return await self._upload(container_id, blob_id, data, overwrite, config)

    async def upload_stream(
        self,
        container_id: str,
        blob_id: str,
        stream: StreamSource,
        overwrite: bool = False,
        metadata: Mapping[str, str] | None = None,
        config: UploadConfig | None = None,
    ) -> str | None:
        config = self._upload_config(metadata, config)
        chunk_size = config.transfer.max_chunk_size or DEFAULT_CHUNK_SIZE
        buffer = bytearray()
        read = getattr(stream, "read", None)
        if read is not None:
            # File objects and async readers (asyncio.StreamReader, aiofiles)
            while True:
                chunk = read(chunk_size)
                if inspect.isawaitable(chunk):
                    chunk = await chunk
                if not chunk:
                    break
                buffer.extend(chunk)
                await asyncio.sleep(0)
        else:
            async for chunk in stream:
                buffer.extend(chunk)
        return await self._upload(container_id, blob_id, bytes(buffer), overwrite, config)

    @staticmethod
    def _upload_config(metadata: Mapping[str, str] | None, config: UploadConfig | None) -> UploadConfig:
        config = config or UploadConfig()
        if metadata is not None:
            if config.metadata is not None:
                raise ValueError("Pass metadata either directly or through UploadConfig, not both")
            config = replace(config, metadata=metadata)
        return config

    async def _upload(
        self,
        container_id: str,
        blob_id: str,
        data: bytes,
        overwrite: bool,
        config: UploadConfig,
    ) -> str | None:
        # Raises UnsupportedError before anything is written
        expected = compute_checksum(data, config.checksum.algorithm)
        tracker = ProgressTracker(config.progress)
        started = time.perf_counter()
        async with self._lock:
            await self._require_container(container_id)
            current = await self._load(container_id, blob_id)
            if current is not None and not overwrite:
                raise BlobAlreadyExistsError(f"Blob '{blob_id}' already exists")
            self._check_write(container_id, blob_id, current, config.conditions)
            record = BlobRecord(
                etag=new_etag(),
                last_modified=self._clock(),
                size=len(data),
                content_md5=hashlib.md5(data).hexdigest(),
                metadata=dict(config.metadata or {}),
                tags=dict(config.tags or {}),
                version_id=self._new_version_id(),
            )
            verify = None
            if config.checksum.auto_validate and expected is not None:
                verify = partial(
                    validate_checksum,
                    expected=expected,
                    checksum=config.checksum,
                    what=f"{container_id}/{blob_id}",
                )
            await self._store(container_id, blob_id, record, data, config.transfer, tracker, verify)
        tracker.finish()
        logger.debug(
            "Uploaded %s/%s (%d bytes, version=%s)",
            container_id,
            blob_id,
            len(data),
            record.version_id,
            extra={
                "container": container_id,
                "blob": blob_id,
                "operation": "upload",
                "duration_ms": round((time.perf_counter() - started) * 1000, 3),
            },
        )
        return record.version_id

    # -- Downloads -------------------------------------------------------------

    async def _fetch(
        self,
        container_id: str,
        blob_id: str,
        config: DownloadConfig,
        always_validate: bool,
    ) -> bytes:
        record = await self._require_blob(container_id, blob_id)
        self._check_read(container_id, blob_id, record, config.conditions)
        data = await self._read(container_id, blob_id)
        validate_checksum(
            data,
            record.content_md5,
            config.checksum,
            always=always_validate,
            what=f"{container_id}/{blob_id}",
        )
        return data

    async def download_content(
        self,
        container_id: str,
        blob_id: str,
        config: DownloadConfig | None = None,
    ) -> bytes:
        config = config or DownloadConfig()
        data = await self._fetch(container_id, blob_id, config, always_validate=False)
        tracker = ProgressTracker(config.progress)
        for chunk in iter_chunks(data, config.transfer):
            tracker.advance(len(chunk))
            await asyncio.sleep(0)
        tracker.finish()
        return data

    async def download_to_path(
        self,
        container_id: str,
        blob_id: str,
        destination_path: StrPath,
        config: DownloadConfig | None = None,
    ) -> None:
        config = config or DownloadConfig()
        if not config.checksum.auto_validate:
            config = replace(config, checksum=ChecksumConfig(config.checksum.algorithm, True))
        data = await self._fetch(container_id, blob_id, config, always_validate=True)

        destination = Path(destination_path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        tmp = destination.with_name(f"{destination.name}.tmp.{uuid.uuid4().hex[:8]}")
        tracker = ProgressTracker(config.progress)
        committed = False
        try:
            with open(tmp, "wb") as fh:
                for chunk in iter_chunks(data, config.transfer):
                    fh.write(chunk)
                    tracker.advance(len(chunk))
                    await asyncio.sleep(0)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, destination)
            committed = True
        finally:
            if not committed:
                tmp.unlink(missing_ok=True)
        tracker.finish()

    # -- Properties, metadata and tags -----------------------------------------

    async def get_properties(self, container_id: str, blob_id: str) -> BlobProperties:
        record = await self._require_blob(container_id, blob_id)
        return BlobProperties(
            name=blob_id,
            etag=record.etag,
            last_modified=record.last_modified,
            size=record.size,
            content_md5=record.content_md5,
            version_id=record.version_id,
            lease_state=self._leases.state((container_id, blob_id)),
            metadata=dict(record.metadata),
        )

    async def get_metadata(self, container_id: str, blob_id: str) -> dict[str, str]:
        record = await self._require_blob(container_id, blob_id)
        return dict(record.metadata)

    async def set_metadata(
        self,
        container_id: str,
        blob_id: str,
        metadata: Mapping[str, str],
        conditions: RequestConditions | None = None,
    ) -> str | None:
        async with self._lock:
            record = await self._require_blob(container_id, blob_id)
            self._check_write(container_id, blob_id, record, conditions)
            version_id = self._new_version_id()
            tags = record.tags
            if version_id is not None and self.drops_tags_on_new_version:
                tags = {}
            updated = replace(
                record,
                etag=new_etag(),
                last_modified=self._clock(),
                metadata=dict(metadata),
                tags=tags,
                version_id=version_id if version_id is not None else record.version_id,
            )
            await self._store(container_id, blob_id, updated)
        return version_id

    async def get_tags(self, container_id: str, blob_id: str) -> dict[str, str]:
        record = await self._require_blob(container_id, blob_id)
        return dict(record.tags)

    async def set_tags(
        self,
        container_id: str,
        blob_id: str,
        tags: Mapping[str, str],
        conditions: RequestConditions | None = None,
    ) -> None:
        async with self._lock:
            record = await self._require_blob(container_id, blob_id)
            self._check_write(container_id, blob_id, record, conditions)
            # Tags are not part of the blob's content or properties: ETag stays
            await self._store(container_id, blob_id, replace(record, tags=dict(tags)))

    async def exists(self, container_id: str, blob_id: str) -> bool:
        if not await self._container_exists(container_id):
            return False
        return await self._load(container_id, blob_id) is not None

    async def delete_blob(
        self,
        container_id: str,
        blob_id: str,
        conditions: RequestConditions | None = None,
    ) -> None:
        async with self._lock:
            record = await self._require_blob(container_id, blob_id)
            self._check_write(container_id, blob_id, record, conditions)
            await self._remove(container_id, blob_id)
            self._leases.forget((container_id, blob_id))

    # -- Leases ----------------------------------------------------------------

    async def acquire_lease(
        self,
        container_id: str,
        blob_id: str,
        duration: timedelta | None,
        conditions: BlobConditions | None = None,
        proposed_lease_id: str | None = None,
    ) -> LeaseInfo:
        self._check_leasing()
        async with self._lock:
            record = await self._require_blob(container_id, blob_id)
            check_conditions(conditions, exists=True, etag=record.etag, last_modified=record.last_modified)
            lease_id = self._leases.acquire((container_id, blob_id), duration, proposed_lease_id)
        logger.debug("Acquired lease %s on %s/%s", lease_id, container_id, blob_id)
        return self._lease_info(lease_id, record)

    async def renew_lease(
        self,
        container_id: str,
        blob_id: str,
        lease_id: str,
        conditions: BlobConditions | None = None,
    ) -> LeaseInfo:
        self._check_leasing()
        async with self._lock:
            record = await self._require_blob(container_id, blob_id)
            check_conditions(conditions, exists=True, etag=record.etag, last_modified=record.last_modified)
            self._leases.renew((container_id, blob_id), lease_id)
        return self._lease_info(lease_id, record)

    async def release_lease(self, container_id: str, blob_id: str, lease_id: str) -> LeaseInfo:
        self._check_leasing()
        async with self._lock:
            record = await self._require_blob(container_id, blob_id)
            self._leases.release((container_id, blob_id), lease_id)
        return self._lease_info(lease_id, record)

    async def break_lease(
        self,
        container_id: str,
        blob_id: str,
        break_period: timedelta | None = None,
        conditions: BlobConditions | None = None,
    ) -> LeaseInfo:
        self._check_leasing()
        async with self._lock:
            record = await self._require_blob(container_id, blob_id)
            check_conditions(conditions, exists=True, etag=record.etag, last_modified=record.last_modified)
            lease_id, remaining = self._leases.break_lease((container_id, blob_id), break_period)
        logger.debug("Broke lease %s on %s/%s (%ds left)", lease_id, container_id, blob_id, remaining)
        return self._lease_info(lease_id, record, lease_time=remaining)

