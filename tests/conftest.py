import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from fsbatch.session import Session
from fsbatch.storage.local import LocalStorage

QUOTA_BYTES = 4 * 1024 * 1024


class FakeTransport:
    def __init__(self, status: int = 200, body: bytes = b"", error: Exception | None = None):
        self.status = status
        self.body = body
        self.error = error
        self.calls: list[str] = []

    async def get(self, url: str) -> tuple[int, bytes]:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        return self.status, self.body


class AsyncContextManager:
    def __init__(self, mock_obj):
        self.mock_obj = mock_obj

    async def __aenter__(self):
        return self.mock_obj

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass


@pytest.fixture
def temp_data_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def local_storage(temp_data_dir):
    return LocalStorage(temp_data_dir)


@pytest.fixture
def transport():
    return FakeTransport(body=b"remote content")


@pytest_asyncio.fixture
async def session(local_storage, transport):
    session = await Session.connect(
        local_storage, persistent=True, quota_bytes=QUOTA_BYTES, transport=transport
    )
    yield session
    await local_storage.close()


@pytest.fixture
def root_dir(temp_data_dir):
    return temp_data_dir / "persistent"
