import asyncio
import io
from pathlib import Path

import pytest

from asyncblobstorage import (
    BaseStorageClient,
    BlobAlreadyExistsError,
    BlobNotFoundError,
    ContainerNotFoundError,
    ContextState,
    DownloadConfig,
    InvalidStateError,
    LocalFileAdapter,
    MemoryStorageClient,
    TransferConfig,
    UnsupportedError,
    UploadConfig,
    bind,
)

from conftest import unique_name


# ---------------------------
# Containers
# ---------------------------


@pytest.mark.asyncio
async def test_create_container_is_idempotent(client):
    handle = bind(client, unique_name("idem"))
    await handle.create_if_absent()
    await handle.create_if_absent()
    assert await handle.container_exists()
    await client.close()


@pytest.mark.asyncio
async def test_delete_missing_container(client):
    handle = bind(client, unique_name("missing"))
    with pytest.raises(ContainerNotFoundError):
        await handle.delete_container()
    assert handle.state == ContextState.LIVE


@pytest.mark.asyncio
async def test_delete_container_is_terminal(client, container):
    handle = bind(client, container).with_blob("a.txt")
    await handle.upload_content("x")
    await handle.delete_container()

    assert handle.state == ContextState.CONTAINER_DELETED
    with pytest.raises(InvalidStateError):
        await handle.create_if_absent()
    with pytest.raises(InvalidStateError):
        await handle.exists()

    fresh = bind(client, container)
    assert not await fresh.container_exists()
    assert not await fresh.with_blob("a.txt").exists()


@pytest.mark.asyncio
async def test_upload_into_missing_container(client):
    handle = bind(client, unique_name("nocontainer")).with_blob("a.txt")
    with pytest.raises(ContainerNotFoundError):
        await handle.upload_content("x")


# ---------------------------
# Uploads and downloads
# ---------------------------


@pytest.mark.asyncio
async def test_upload_content_and_download(client, container):
    handle = bind(client, container).with_blob("greeting.txt")
    version = await handle.upload_content("hello wörld")
    assert version is None
    assert await handle.download_content() == "hello wörld".encode("utf-8")


@pytest.mark.asyncio
async def test_upload_from_path_and_download_to_path(client, container, tmp_path):
    source = tmp_path / "source.bin"
    source.write_bytes(b"\x00\x01" * 1000)
    handle = bind(client, container).with_blob("nested/dir/file.bin")
    await handle.upload_from_path(source)

    destination = tmp_path / "out" / "file.bin"
    await handle.download_to_path(destination)
    assert destination.read_bytes() == source.read_bytes()
    assert [p.name for p in destination.parent.iterdir()] == ["file.bin"]


@pytest.mark.asyncio
async def test_upload_stream_from_file_object(client, container):
    handle = bind(client, container).with_blob("stream.bin")
    payload = bytes(range(256)) * 40
    await handle.upload_stream(
        io.BytesIO(payload), config=UploadConfig(transfer=TransferConfig(max_chunk_size=1000))
    )
    assert await handle.download_content() == payload


@pytest.mark.asyncio
async def test_upload_stream_from_async_iterable(client, container):
    async def chunks():
        for part in (b"alpha-", b"beta-", b"gamma"):
            await asyncio.sleep(0)
            yield part

    handle = bind(client, container).with_blob("async.bin")
    await handle.upload_stream(chunks())
    assert await handle.download_content() == b"alpha-beta-gamma"


@pytest.mark.asyncio
async def test_upload_stream_from_stream_reader(client, container):
    reader = asyncio.StreamReader()
    reader.feed_data(b"hello ")
    reader.feed_data(b"world")
    reader.feed_eof()

    handle = bind(client, container).with_blob("reader.bin")
    await handle.upload_stream(
        reader, config=UploadConfig(transfer=TransferConfig(max_chunk_size=4))
    )
    assert await handle.download_content() == b"hello world"


@pytest.mark.asyncio
async def test_upload_stream_from_async_read_method(client, container):
    class AsyncFile:
        def __init__(self, data: bytes) -> None:
            self._buffer = io.BytesIO(data)

        async def read(self, n: int = -1) -> bytes:
            await asyncio.sleep(0)
            return self._buffer.read(n)

    payload = b"0123456789" * 500
    handle = bind(client, container).with_blob("aiofile.bin")
    await handle.upload_stream(AsyncFile(payload))
    assert await handle.download_content() == payload


@pytest.mark.asyncio
async def test_upload_without_overwrite_fails_and_changes_nothing(client, container):
    handle = bind(client, container).with_blob("keep.txt")
    await handle.upload_content("original", metadata={"owner": "a"})
    before = await handle.get_properties()

    with pytest.raises(BlobAlreadyExistsError):
        await handle.upload_content("replacement", overwrite=False, metadata={"owner": "b"})

    after = await handle.get_properties()
    assert await handle.download_content() == b"original"
    assert await handle.get_metadata() == {"owner": "a"}
    assert after.etag == before.etag


@pytest.mark.asyncio
async def test_overwrite_replaces_all_metadata(client, container):
    handle = bind(client, container).with_blob("meta.txt")
    await handle.upload_content("v1", metadata={"A": "1"})
    await handle.upload_content("v2", overwrite=True, metadata={"B": "2"})
    assert await handle.get_metadata() == {"B": "2"}
    assert await handle.download_content() == b"v2"


@pytest.mark.asyncio
async def test_overwrite_replaces_tags(client, container):
    handle = bind(client, container).with_blob("tags.txt")
    await handle.upload_content("v1", config=UploadConfig(tags={"stage": "raw"}))
    await handle.upload_content("v2", overwrite=True)
    assert await handle.get_tags() == {}


@pytest.mark.asyncio
async def test_metadata_passed_twice_is_rejected(client, container):
    handle = bind(client, container).with_blob("twice.txt")
    with pytest.raises(ValueError):
        await handle.upload_content("x", metadata={"a": "1"}, config=UploadConfig(metadata={"b": "2"}))
    assert not await handle.exists()


@pytest.mark.asyncio
async def test_download_missing_blob(client, container, tmp_path):
    handle = bind(client, container).with_blob("nope.txt")
    with pytest.raises(BlobNotFoundError):
        await handle.download_to_path(tmp_path / "nope.txt")
    assert not (tmp_path / "nope.txt").exists()


@pytest.mark.asyncio
async def test_download_honours_chunking(client, container):
    handle = bind(client, container).with_blob("chunked.bin")
    await handle.upload_content(b"x" * 10_000)
    data = await handle.download_content(
        DownloadConfig(transfer=TransferConfig(max_chunk_size=1024, initial_chunk_size=100))
    )
    assert data == b"x" * 10_000


# ---------------------------
# Metadata, tags and properties
# ---------------------------


@pytest.mark.asyncio
async def test_get_metadata_of_missing_blob(client, container):
    with pytest.raises(BlobNotFoundError):
        await bind(client, container).with_blob("ghost").get_metadata()


@pytest.mark.asyncio
async def test_metadata_defaults_to_empty(client, container):
    handle = bind(client, container).with_blob("plain.txt")
    await handle.upload_content("x")
    assert await handle.get_metadata() == {}


@pytest.mark.asyncio
async def test_set_metadata_replaces_and_changes_etag(client, container):
    handle = bind(client, container).with_blob("props.txt")
    await handle.upload_content("x", metadata={"a": "1", "b": "2"})
    etag = (await handle.get_properties()).etag

    version = await handle.set_metadata({"c": "3"})
    assert version is None
    assert await handle.get_metadata() == {"c": "3"}
    assert (await handle.get_properties()).etag != etag
    assert await handle.download_content() == b"x"


@pytest.mark.asyncio
async def test_set_tags_replaces_tag_set(client, container):
    handle = bind(client, container).with_blob("tagged.txt")
    await handle.upload_content("x", config=UploadConfig(tags={"a": "1", "b": "2"}))
    await handle.set_tags({"c": "3"})
    assert await handle.get_tags() == {"c": "3"}


@pytest.mark.asyncio
async def test_tags_kept_by_set_metadata_without_versioning(client, container):
    assert client.versioning is False
    handle = bind(client, container).with_blob("keep-tags.txt")
    await handle.upload_content("x", config=UploadConfig(tags={"t": "1"}))
    await handle.set_metadata({"m": "1"})
    assert await handle.get_tags() == {"t": "1"}


@pytest.mark.asyncio
async def test_properties(client, container, clock):
    handle = bind(client, container).with_blob("p.bin")
    await handle.upload_content(b"12345", metadata={"k": "v"})
    props = await handle.get_properties()
    assert props.name == "p.bin"
    assert props.size == 5
    assert props.last_modified == clock.now
    assert props.content_md5 == "827ccb0eea8a706c4c34a16891f84e7b"
    assert props.metadata == {"k": "v"}
    assert props.etag


# ---------------------------
# Exists and deletes
# ---------------------------


@pytest.mark.asyncio
async def test_exists_never_raises_for_absence(client, container):
    assert not await bind(client, container).with_blob("nothing").exists()
    assert not await bind(client, unique_name("no-container")).with_blob("nothing").exists()


@pytest.mark.asyncio
async def test_delete_blob_transitions_handle(client, container):
    handle = bind(client, container).with_blob("doomed.txt")
    await handle.upload_content("bye")
    assert await handle.exists()

    await handle.delete_blob()
    assert handle.state == ContextState.BLOB_DELETED
    assert not await bind(client, container).with_blob("doomed.txt").exists()

    with pytest.raises(InvalidStateError):
        await handle.download_content()
    # container scope is still usable
    assert await handle.list_blobs() == []


@pytest.mark.asyncio
async def test_delete_missing_blob(client, container):
    handle = bind(client, container).with_blob("never.txt")
    with pytest.raises(BlobNotFoundError):
        await handle.delete_blob()
    assert handle.state == ContextState.LIVE_WITH_BLOB


@pytest.mark.asyncio
async def test_delete_blobs_by_prefix(client, container):
    for name in ("a/1", "a/2", "b/1", "ab"):
        await bind(client, container).with_blob(name).upload_content(name)

    handle = bind(client, container)
    await handle.delete_blobs("a/")
    assert await handle.list_blobs() == ["ab", "b/1"]


@pytest.mark.asyncio
async def test_delete_blobs_prefix_is_not_a_glob(client, container):
    for name in ("a*", "a1", "a?"):
        await bind(client, container).with_blob(name).upload_content(name)
    handle = bind(client, container)
    await handle.delete_blobs("a*")
    assert await handle.list_blobs() == ["a1", "a?"]


@pytest.mark.asyncio
async def test_list_blobs_with_prefix(client, container):
    for name in ("a1.txt", "a2.txt", "b1.txt"):
        await bind(client, container).with_blob(name).upload_content(b"x")
    names = await bind(client, container).list_blobs(prefix="a")
    assert names == ["a1.txt", "a2.txt"]


# ---------------------------
# Cancellation
# ---------------------------


@pytest.mark.asyncio
async def test_cancelled_upload_leaves_no_blob(client, container):
    handle = bind(client, container).with_blob("big.bin")
    task = asyncio.create_task(
        handle.upload_content(
            b"z" * 50_000, config=UploadConfig(transfer=TransferConfig(max_chunk_size=10))
        )
    )
    for _ in range(20):
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert not await bind(client, container).with_blob("big.bin").exists()


@pytest.mark.asyncio
async def test_cancelled_delete_keeps_handle_state(client, container):
    handle = bind(client, container).with_blob("stay.txt")
    await handle.upload_content("x")
    # Hold the client's lock so the delete cannot reach the backend
    async with client._lock:
        task = asyncio.create_task(handle.delete_blob())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
    assert handle.state == ContextState.LIVE_WITH_BLOB
    assert await handle.exists()


# ---------------------------
# Backend contract
# ---------------------------


def test_backend_must_implement_every_primitive():
    class Partial(BaseStorageClient):
        def _native_client(self):
            return None

        async def _create_container(self, container_id):
            pass

    with pytest.raises(TypeError):
        Partial("partial")


@pytest.mark.asyncio
async def test_memory_backend_keeps_nested_names_apart():
    client = MemoryStorageClient()
    await bind(client, "c").create_if_absent()
    await bind(client, "c").with_blob("a").upload_content("file")
    await bind(client, "c").with_blob("a/1").upload_content("nested")
    assert await bind(client, "c").list_blobs() == ["a", "a/1"]


# ---------------------------
# Escape hatch
# ---------------------------


@pytest.mark.asyncio
async def test_using_client_wrong_type(client):
    with pytest.raises(UnsupportedError):
        await client.using_client(int, lambda native: native)


@pytest.mark.asyncio
@pytest.mark.local
async def test_using_client_local_returns_value(client, container):
    if not isinstance(client, LocalFileAdapter):
        pytest.skip("Native Path client only applies to LocalFileAdapter")

    async def count_entries(root: Path) -> int:
        return sum(1 for _ in root.iterdir())

    assert await client.using_client(Path, count_entries) == 1
