import json
import logging

import pytest
from pydantic import ValidationError

from asyncblobstorage import (
    ChecksumAlgorithm,
    LocalFileAdapter,
    MemoryStorageClient,
    StorageSettings,
    configure_logging,
    create_storage_client,
    load_settings,
    settings_from_env,
)
from asyncblobstorage.logging_config import JSONFormatter

ENV_NAMES = (
    "BACKEND",
    "ACCOUNT_NAME",
    "LEASING",
    "LOCAL_ROOT",
    "MEMORY_VERSIONING",
    "MAX_CHUNK_SIZE",
    "MAX_CONCURRENCY",
    "INITIAL_CHUNK_SIZE",
    "CHECKSUM_ALGORITHM",
    "CHECKSUM_AUTO_VALIDATE",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Clear ABS_* variables and undo anything a .env file sets during the test."""
    for name in ENV_NAMES:
        monkeypatch.setenv(f"ABS_{name}", "")
        monkeypatch.delenv(f"ABS_{name}")
    return monkeypatch


@pytest.fixture
def package_logger():
    logger = logging.getLogger("asyncblobstorage")
    handlers, level = logger.handlers[:], logger.level
    yield logger
    logger.handlers[:] = handlers
    logger.setLevel(level)


class TestSettings:
    def test_defaults(self):
        settings = StorageSettings()
        assert settings.backend == "local"
        assert settings.leasing is True
        assert settings.local.root_dir == "./data/blobs"
        assert settings.checksum.algorithm == ChecksumAlgorithm.AUTO
        assert settings.logging.format == "text"

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "storage.yaml"
        path.write_text(
            "backend: memory\n"
            "account_name: acct\n"
            "memory:\n"
            "  versioning: true\n"
            "transfer:\n"
            "  max_chunk_size: 1024\n"
            "checksum:\n"
            "  algorithm: md5\n"
            "  auto_validate: false\n"
        )
        settings = load_settings(path)
        assert settings.backend == "memory"
        assert settings.account_name == "acct"
        assert settings.memory.versioning is True
        assert settings.transfer.max_chunk_size == 1024
        assert settings.checksum.algorithm == ChecksumAlgorithm.MD5
        assert settings.checksum.auto_validate is False

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_settings(path) == StorageSettings()

    @pytest.mark.parametrize(
        "content",
        ["backend: s3\n", "transfer:\n  max_chunk_size: 0\n", "logging:\n  format: xml\n"],
    )
    def test_invalid_values(self, tmp_path, content):
        path = tmp_path / "bad.yaml"
        path.write_text(content)
        with pytest.raises(ValidationError):
            load_settings(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "absent.yaml")

    def test_call_configs_carry_defaults(self):
        settings = StorageSettings.model_validate(
            {"transfer": {"max_chunk_size": 2048}, "checksum": {"auto_validate": False}}
        )
        upload = settings.upload_config(metadata={"a": "1"})
        assert upload.transfer.max_chunk_size == 2048
        assert upload.checksum.auto_validate is False
        assert upload.metadata == {"a": "1"}

        download = settings.download_config()
        assert download.transfer.max_chunk_size == 2048


class TestEnvironment:
    def test_from_env(self, clean_env, tmp_path):
        clean_env.setenv("ABS_BACKEND", "memory")
        clean_env.setenv("ABS_MEMORY_VERSIONING", "true")
        clean_env.setenv("ABS_MAX_CHUNK_SIZE", "4096")
        clean_env.setenv("ABS_CHECKSUM_ALGORITHM", "none")
        clean_env.setenv("ABS_LEASING", "false")
        settings = settings_from_env(tmp_path / "missing.env")

        assert settings.backend == "memory"
        assert settings.memory.versioning is True
        assert settings.transfer.max_chunk_size == 4096
        assert settings.checksum.algorithm == ChecksumAlgorithm.NONE
        assert settings.leasing is False

    def test_dotenv_file_and_precedence(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("ABS_BACKEND=local\nABS_LOCAL_ROOT=/srv/blobs\nABS_LOG_FORMAT=json\n")
        clean_env.setenv("ABS_BACKEND", "memory")

        settings = settings_from_env(env_file)
        assert settings.backend == "memory"
        assert settings.local.root_dir == "/srv/blobs"
        assert settings.logging.format == "json"

    def test_empty_values_are_ignored(self, clean_env, tmp_path):
        clean_env.setenv("ABS_ACCOUNT_NAME", "")
        assert settings_from_env(tmp_path / "missing.env").account_name is None


class TestFactory:
    def test_memory_client(self):
        settings = StorageSettings.model_validate(
            {"backend": "memory", "account_name": "acct", "memory": {"versioning": True}}
        )
        client = create_storage_client(settings)
        assert isinstance(client, MemoryStorageClient)
        assert client.account_name == "acct"
        assert client.versioning is True

    def test_local_client(self, tmp_path):
        settings = StorageSettings.model_validate(
            {"local": {"root_dir": str(tmp_path / "root")}, "leasing": False}
        )
        client = create_storage_client(settings)
        assert isinstance(client, LocalFileAdapter)
        assert client.account_name == "local"
        assert client.base_path == (tmp_path / "root").resolve()
        assert client.leasing is False

    def test_sets_up_logging(self, package_logger):
        settings = StorageSettings.model_validate(
            {"backend": "memory", "logging": {"level": "DEBUG", "format": "json"}}
        )
        create_storage_client(settings, setup_logging=True)
        assert package_logger.level == logging.DEBUG
        assert isinstance(package_logger.handlers[-1].formatter, JSONFormatter)


class TestLogging:
    def test_json_formatter_includes_extras(self):
        record = logging.LogRecord("asyncblobstorage.x", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        record.container = "photos"
        record.blob = "cat.png"
        record.duration_ms = 1.5
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "hello world"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "asyncblobstorage.x"
        assert entry["container"] == "photos"
        assert entry["blob"] == "cat.png"
        assert entry["duration_ms"] == 1.5
        assert "operation" not in entry

    def test_configure_logging_replaces_handlers(self, package_logger, capsys):
        configure_logging("INFO", "json")
        configure_logging("INFO", "json")
        assert len(package_logger.handlers) == 1

        logging.getLogger("asyncblobstorage.operations").info(
            "Deleted container %s", "photos", extra={"container": "photos", "operation": "delete_container"}
        )
        line = capsys.readouterr().err.strip().splitlines()[-1]
        entry = json.loads(line)
        assert entry["operation"] == "delete_container"
        assert entry["container"] == "photos"

    def test_text_format(self, package_logger):
        configure_logging("warning")
        assert package_logger.level == logging.WARNING
        assert not isinstance(package_logger.handlers[0].formatter, JSONFormatter)
