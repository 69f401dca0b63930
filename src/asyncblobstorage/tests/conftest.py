import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from asyncblobstorage import LocalFileAdapter, MemoryStorageClient, bind


def unique_name(suffix: str) -> str:
    return f"test-{suffix}-{uuid.uuid4().hex[:8]}"


class FakeClock:
    """Manually advanced UTC clock for lease and timestamp tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


# ---------------------------
# Parametrize backends
# ---------------------------
@pytest.fixture(
    params=[
        pytest.param("memory", marks=pytest.mark.memory),
        pytest.param("local", marks=pytest.mark.local),
    ]
)
def client(request, tmp_path, clock):
    """Fixture that provides either the in-memory or the local filesystem client."""
    if request.param == "memory":
        return MemoryStorageClient(clock=clock)
    # tmp_path is auto-cleaned by pytest
    return LocalFileAdapter(str(tmp_path / "storage"), clock=clock)


@pytest_asyncio.fixture
async def container(client):
    """A freshly created container; yields its name."""
    name = unique_name("container")
    await bind(client, name).create_if_absent()
    yield name
    await client.close()
