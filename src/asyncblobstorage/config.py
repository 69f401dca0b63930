"""Configuration loading and Pydantic models for asyncblobstorage.

Settings come from a YAML file (``load_settings``) or from ``ABS_*``
environment variables (``settings_from_env``, which reads a ``.env`` file
first). ``create_storage_client`` turns settings into a storage client.
"""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .base_adapter import BaseStorageClient
from .local_file_adapter import LocalFileAdapter
from .logging_config import configure_logging
from .memory_adapter import MemoryStorageClient
from .transfer import ChecksumAlgorithm, ChecksumConfig, DownloadConfig, TransferConfig, UploadConfig

ENV_PREFIX = "ABS_"


class LocalBackendSettings(BaseModel):
    """Filesystem backend configuration."""

    root_dir: str = "./data/blobs"


class MemoryBackendSettings(BaseModel):
    """In-memory backend configuration."""

    versioning: bool = False


class TransferSettings(BaseModel):
    """Default chunking applied when a call passes no TransferConfig."""

    max_chunk_size: int | None = Field(default=None, gt=0)
    max_concurrency: int | None = Field(default=None, gt=0)
    initial_chunk_size: int | None = Field(default=None, gt=0)

    def to_config(self) -> TransferConfig:
        return TransferConfig(
            max_chunk_size=self.max_chunk_size,
            max_concurrency=self.max_concurrency,
            initial_chunk_size=self.initial_chunk_size,
        )


class ChecksumSettings(BaseModel):
    algorithm: ChecksumAlgorithm = ChecksumAlgorithm.AUTO
    auto_validate: bool = True

    def to_config(self) -> ChecksumConfig:
        return ChecksumConfig(algorithm=self.algorithm, auto_validate=self.auto_validate)


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: Literal["text", "json"] = "text"


class StorageSettings(BaseModel):
    """Top-level asyncblobstorage configuration."""

    backend: Literal["memory", "local"] = "local"
    account_name: str | None = None
    leasing: bool = True
    local: LocalBackendSettings = Field(default_factory=LocalBackendSettings)
    memory: MemoryBackendSettings = Field(default_factory=MemoryBackendSettings)
    transfer: TransferSettings = Field(default_factory=TransferSettings)
    checksum: ChecksumSettings = Field(default_factory=ChecksumSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def upload_config(self, **overrides: Any) -> UploadConfig:
        """An UploadConfig carrying the configured transfer and checksum defaults."""
        overrides.setdefault("transfer", self.transfer.to_config())
        overrides.setdefault("checksum", self.checksum.to_config())
        return UploadConfig(**overrides)

    def download_config(self, **overrides: Any) -> DownloadConfig:
        overrides.setdefault("transfer", self.transfer.to_config())
        overrides.setdefault("checksum", self.checksum.to_config())
        return DownloadConfig(**overrides)


def load_settings(path: str | Path) -> StorageSettings:
    """Load StorageSettings from a YAML file.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If a value has the wrong type or range.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}
    return StorageSettings.model_validate(raw)


def _env(name: str) -> str | None:
    value = os.environ.get(ENV_PREFIX + name)
    return value if value not in (None, "") else None


def settings_from_env(dotenv_path: str | Path | None = None) -> StorageSettings:
    """Build StorageSettings from ABS_* environment variables.

    A ``.env`` file is loaded first; variables already set in the
    environment win over it.
    """
    load_dotenv(dotenv_path)
    raw: dict[str, Any] = {}
    sections: dict[str, dict[str, Any]] = {
        "local": {},
        "memory": {},
        "transfer": {},
        "checksum": {},
        "logging": {},
    }
    for key, env_name in (
        ("backend", "BACKEND"),
        ("account_name", "ACCOUNT_NAME"),
        ("leasing", "LEASING"),
    ):
        if (value := _env(env_name)) is not None:
            raw[key] = value
    for section, key, env_name in (
        ("local", "root_dir", "LOCAL_ROOT"),
        ("memory", "versioning", "MEMORY_VERSIONING"),
        ("transfer", "max_chunk_size", "MAX_CHUNK_SIZE"),
        ("transfer", "max_concurrency", "MAX_CONCURRENCY"),
        ("transfer", "initial_chunk_size", "INITIAL_CHUNK_SIZE"),
        ("checksum", "algorithm", "CHECKSUM_ALGORITHM"),
        ("checksum", "auto_validate", "CHECKSUM_AUTO_VALIDATE"),
        ("logging", "level", "LOG_LEVEL"),
        ("logging", "format", "LOG_FORMAT"),
    ):
        if (value := _env(env_name)) is not None:
            sections[section][key] = value
    raw.update({name: values for name, values in sections.items() if values})
    return StorageSettings.model_validate(raw)


def create_storage_client(settings: StorageSettings, setup_logging: bool = False) -> BaseStorageClient:
    """Instantiate the backend named by ``settings.backend``."""
    if setup_logging:
        configure_logging(settings.logging.level, settings.logging.format)
    if settings.backend == "memory":
        return MemoryStorageClient(
            account_name=settings.account_name or "memory",
            versioning=settings.memory.versioning,
            leasing=settings.leasing,
        )
    return LocalFileAdapter(
        settings.local.root_dir,
        account_name=settings.account_name or "local",
        leasing=settings.leasing,
    )
