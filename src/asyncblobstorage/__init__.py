"""
asyncblobstorage
================

Provider-agnostic async abstraction over blob storage: containers, blobs,
conditional requests, metadata and tags, leases and chunked transfer.

Main entry points:
- bind / use_container: create a StorageHandle for a container
- StorageHandle: container/blob operations on a bound context
- AsyncStorageClient: the protocol a backend implements
- MemoryStorageClient, LocalFileAdapter: reference backends
- BlobConditions, RequestConditions: conditional-request predicates
- UploadConfig, DownloadConfig, TransferConfig, ChecksumConfig: per-call options

Example:
    from asyncblobstorage import LocalFileAdapter, bind

    async with LocalFileAdapter("./data") as client:
        handle = bind(client, "reports")
        await handle.create_if_absent()
        await handle.with_blob("2024/q1.csv").upload_content("a,b\\n1,2\\n", overwrite=True)
"""

from .conditions import BlobConditions, RequestConditions, TagQuery
from .context import CloudStorageContext, ContextState
from .errors import (
    AlreadyExistsError,
    BlobAlreadyExistsError,
    BlobNameConflictError,
    BlobNotFoundError,
    ContainerNotFoundError,
    IntegrityError,
    InvalidStateError,
    LeaseConflictError,
    NotFoundError,
    PreconditionFailedError,
    ProviderError,
    RebindError,
    StorageError,
    TransientError,
    UnauthorizedError,
    UnsupportedError,
)
from .models import BlobProperties, LeaseInfo, LeaseState
from .operations import StorageHandle, bind, use_container
from .storage_protocols import AsyncStorageClient
from .transfer import (
    ChecksumAlgorithm,
    ChecksumConfig,
    DownloadConfig,
    ProgressCallback,
    TransferConfig,
    UploadConfig,
)

from .base_adapter import BaseStorageClient
from .memory_adapter import MemoryStorageClient, MemoryStore
from .local_file_adapter import LocalFileAdapter

from .config import StorageSettings, create_storage_client, load_settings, settings_from_env
from .logging_config import configure_logging

import importlib.metadata

try:
    __version__ = importlib.metadata.version(__name__)
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "bind",
    "use_container",
    "StorageHandle",
    "CloudStorageContext",
    "ContextState",
    "AsyncStorageClient",
    "BaseStorageClient",
    "MemoryStorageClient",
    "MemoryStore",
    "LocalFileAdapter",
    "BlobConditions",
    "RequestConditions",
    "TagQuery",
    "BlobProperties",
    "LeaseInfo",
    "LeaseState",
    "ChecksumAlgorithm",
    "ChecksumConfig",
    "DownloadConfig",
    "ProgressCallback",
    "TransferConfig",
    "UploadConfig",
    "StorageError",
    "InvalidStateError",
    "RebindError",
    "NotFoundError",
    "ContainerNotFoundError",
    "BlobNotFoundError",
    "AlreadyExistsError",
    "BlobAlreadyExistsError",
    "BlobNameConflictError",
    "PreconditionFailedError",
    "LeaseConflictError",
    "UnsupportedError",
    "UnauthorizedError",
    "TransientError",
    "ProviderError",
    "IntegrityError",
    "StorageSettings",
    "create_storage_client",
    "load_settings",
    "settings_from_env",
    "configure_logging",
]
