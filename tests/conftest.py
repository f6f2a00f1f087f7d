import pytest

from .fakes import FakePoller, FakeStore, RecordingBroadcaster


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def poller() -> FakePoller:
    return FakePoller()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()
