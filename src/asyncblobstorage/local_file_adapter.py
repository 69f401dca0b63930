"""Local filesystem storage client.

Layout under the base path::

    {base}/{container}/{blob}                      blob content
    {base}/{container}/.blobprops/{blob}.json      etag, metadata, tags, ...

Writes go through a temp file that is fsync'd and renamed into place, so a
cancelled or failed upload never leaves partial content behind. Leases are
tracked in memory and only seen by this client instance. Versioning is not
supported: uploads and metadata updates return None.

Blob names map straight onto paths, so a blob cannot also be a "directory"
of other blobs: with `a` stored, uploading `a/1` raises
BlobNameConflictError, and so does uploading `a` while `a/1` exists.
"""

import asyncio
import hashlib
import logging
import os
import re
import shutil
import uuid
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from .base_adapter import BaseStorageClient, BlobRecord
from .errors import BlobNameConflictError, ProviderError, UnauthorizedError
from .leases import utcnow
from .serializers import JSONSerializer
from .transfer import ProgressTracker, TransferConfig, iter_chunks

logger = logging.getLogger(__name__)

PROPS_DIR = ".blobprops"

_TEMP_RE = re.compile(r"\.tmp\.[0-9a-f]{8}$")


def _ensure_within(base: Path, target: Path, strict: bool = True) -> Path:
    """
    Resolve target path and ensure it is inside base path.
    strict=True will fail if the target does not exist (good for read/delete).
    strict=False allows non-existing targets (good for upload); existing
    components, including symlinks, are still resolved.
    """
    base_resolved = base.resolve(strict=True)
    target_resolved = target.resolve(strict=strict)
    if not target_resolved.is_relative_to(base_resolved):
        raise ValueError(
            f"Path {target_resolved} escapes base directory {base_resolved}"
        )
    return target_resolved


# Global lock registry for concurrency safety
_lock_registry: dict[str, asyncio.Lock] = {}


def _get_global_lock(path: Path) -> asyncio.Lock:
    key = str(path.resolve())
    if key not in _lock_registry:
        _lock_registry[key] = asyncio.Lock()
    return _lock_registry[key]


@contextmanager
def _os_errors(what: str):
    """Translate filesystem failures into storage errors."""
    try:
        yield
    except PermissionError as e:
        raise UnauthorizedError(f"Permission denied for {what}") from e
    except OSError as e:
        raise ProviderError(f"Filesystem error for {what}: {e}") from e


def _write_atomic(path: Path, data: bytes) -> None:
    tmp = path.with_name(f"{path.name}.tmp.{uuid.uuid4().hex[:8]}")
    try:
        with open(tmp, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)


class LocalFileAdapter(BaseStorageClient):
    """Local filesystem storage client."""

    def __init__(
        self,
        base_path: str | os.PathLike,
        account_name: str = "local",
        leasing: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(account_name, versioning=False, leasing=leasing, clock=clock)
        self._base_path = Path(base_path).resolve()
        self._base_path.mkdir(parents=True, exist_ok=True)
        self._serializer = JSONSerializer()

    @property
    def base_path(self) -> Path:
        return self._base_path

    def _native_client(self) -> Path:
        return self._base_path

    # -- Paths -----------------------------------------------------------------

    def _container_path(self, container_id: str) -> Path:
        if not container_id.strip() or "/" in container_id:
            raise ValueError(f"Invalid container name: {container_id!r}")
        return _ensure_within(self._base_path, self._base_path / container_id, strict=False)

    def _blob_path(self, container_id: str, blob_id: str) -> Path:
        if blob_id == PROPS_DIR or blob_id.startswith(PROPS_DIR + "/"):
            raise ValueError(f"Blob names under '{PROPS_DIR}/' are reserved")
        container_path = self._container_path(container_id)
        return _ensure_within(container_path, container_path / blob_id, strict=False)

    def _props_path(self, container_id: str, blob_id: str) -> Path:
        container_path = self._container_path(container_id)
        props_root = container_path / PROPS_DIR
        return props_root / self._serializer.file_name(blob_id)

    # -- Primitives ------------------------------------------------------------

    async def _create_container(self, container_id: str) -> None:
        with _os_errors(f"container '{container_id}'"):
            self._container_path(container_id).mkdir(parents=True, exist_ok=True)

    async def _delete_container(self, container_id: str) -> None:
        path = self._container_path(container_id)
        with _os_errors(f"container '{container_id}'"):
            await asyncio.to_thread(shutil.rmtree, path)

    async def _container_exists(self, container_id: str) -> bool:
        return self._container_path(container_id).is_dir()

    async def _list_names(self, container_id: str) -> list[str]:
        container_path = self._container_path(container_id)
        names: list[str] = []
        for path in container_path.rglob("*"):
            rel = path.relative_to(container_path)
            if rel.parts[0] == PROPS_DIR or not path.is_file() or _TEMP_RE.search(path.name):
                continue
            # Strict resolve to catch symlink escapes
            _ensure_within(container_path, path, strict=True)
            names.append(rel.as_posix())
        return names

    async def _load(self, container_id: str, blob_id: str) -> BlobRecord | None:
        blob_path = self._blob_path(container_id, blob_id)
        if not blob_path.is_file():
            return None
        container_path = self._container_path(container_id)
        _ensure_within(container_path, blob_path, strict=True)
        props_path = self._props_path(container_id, blob_id)
        with _os_errors(f"blob '{blob_id}'"):
            if props_path.is_file():
                raw = props_path.read_bytes()
                try:
                    return BlobRecord(**self._serializer.deserialize(raw))
                except (ValueError, TypeError) as e:
                    raise ProviderError(f"Corrupt property file for blob '{blob_id}'") from e
            # A file placed into the container by hand: derive its properties
            stat = blob_path.stat()
            content_md5 = hashlib.md5(blob_path.read_bytes()).hexdigest()
        return BlobRecord(
            etag=f'"{content_md5}"',
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            size=stat.st_size,
            content_md5=content_md5,
        )

    async def _read(self, container_id: str, blob_id: str) -> bytes:
        blob_path = self._blob_path(container_id, blob_id)
        _ensure_within(self._container_path(container_id), blob_path, strict=True)
        async with _get_global_lock(blob_path):
            with _os_errors(f"blob '{blob_id}'"):
                return blob_path.read_bytes()

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
        blob_path = self._blob_path(container_id, blob_id)
        props_path = self._props_path(container_id, blob_id)
        async with _get_global_lock(blob_path):
            with _os_errors(f"blob '{blob_id}'"):
                if data is not None:
                    self._check_name_conflict(container_id, blob_id, blob_path)
                    blob_path.parent.mkdir(parents=True, exist_ok=True)
                    await self._write_content(blob_path, data, transfer, progress, verify)
                props_path.parent.mkdir(parents=True, exist_ok=True)
                _write_atomic(props_path, self._serializer.serialize(asdict(record)))

    def _check_name_conflict(self, container_id: str, blob_id: str, blob_path: Path) -> None:
        if blob_path.is_dir():
            raise BlobNameConflictError(
                f"Blob '{blob_id}' clashes with existing blobs under '{blob_id}/'"
            )
        container_path = self._container_path(container_id)
        for parent in blob_path.parents:
            if parent == container_path or not parent.is_relative_to(container_path):
                break
            if parent.exists() and not parent.is_dir():
                existing = parent.relative_to(container_path).as_posix()
                raise BlobNameConflictError(
                    f"Blob '{blob_id}' clashes with existing blob '{existing}'"
                )

    async def _write_content(
        self,
        blob_path: Path,
        data: bytes,
        transfer: TransferConfig | None,
        progress: ProgressTracker | None,
        verify: Callable[[bytes], None] | None,
    ) -> None:
        tmp = blob_path.with_name(f"{blob_path.name}.tmp.{uuid.uuid4().hex[:8]}")
        try:
            with open(tmp, "wb") as fh:
                for chunk in iter_chunks(data, transfer):
                    fh.write(chunk)
                    if progress is not None:
                        progress.advance(len(chunk))
                    await asyncio.sleep(0)
                fh.flush()
                os.fsync(fh.fileno())
            if verify is not None:
                verify(tmp.read_bytes())
            os.replace(tmp, blob_path)
        finally:
            tmp.unlink(missing_ok=True)

    async def _remove(self, container_id: str, blob_id: str) -> None:
        container_path = self._container_path(container_id)
        blob_path = self._blob_path(container_id, blob_id)
        _ensure_within(container_path, blob_path, strict=True)
        props_path = self._props_path(container_id, blob_id)
        async with _get_global_lock(blob_path):
            with _os_errors(f"blob '{blob_id}'"):
                blob_path.unlink()
                props_path.unlink(missing_ok=True)
                self._prune_empty_dirs(blob_path.parent, container_path)
                self._prune_empty_dirs(props_path.parent, container_path / PROPS_DIR)
        logger.debug("Removed %s", blob_path)

    @staticmethod
    def _prune_empty_dirs(directory: Path, stop: Path) -> None:
        while directory != stop and directory.is_relative_to(stop):
            try:
                directory.rmdir()
            except OSError:
                break
            directory = directory.parent
