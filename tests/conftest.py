"""
Shared fixtures for the streaming gateway tests.

Every test runs against a temporary media store and an in-memory catalog;
the auth and content services are replaced by fakes so nothing leaves the
process.
"""

import asyncio
from pathlib import Path
from typing import Optional

import pytest
from dotenv import load_dotenv

from streamgate.access_policy import AccessPolicy
from streamgate.entitlements import EntitlementContext
from streamgate.handlers import StreamingGateway
from streamgate.repository import InMemoryMediaRepository
from streamgate.schemas import MediaObject, MediaStatus, MediaType, Requester
from streamgate.storage import LocalFileStore
from streamgate.usage import MemoryPlayCounter, UsageRecorder
from streamgate.utils.crypto_utils import TokenCodec
from streamgate.utils.http_utils import RangeStreamer

# Load .env file from project root
project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env")

SECRET = "test-secret"
NOW = 1_700_000_000


def pytest_configure(config):
    """Configure pytest-asyncio mode."""
    config.addinivalue_line("markers", "asyncio: mark test as async")


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeOracle:
    """Grants access to the user ids in ``granted`` and records every call."""

    def __init__(self, granted=(), delay: float = 0, error: Optional[Exception] = None):
        self.granted = set(granted)
        self.delay = delay
        self.error = error
        self.calls: list[tuple[int, EntitlementContext]] = []

    async def has_access(self, user_id: int, context: EntitlementContext) -> bool:
        self.calls.append((user_id, context))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return user_id in self.granted


class FakeAuthenticator:
    """Maps bearer tokens straight to requesters."""

    def __init__(self, users: Optional[dict] = None):
        self.users = users or {}

    async def authenticate(self, bearer_token: Optional[str]) -> Optional[Requester]:
        if bearer_token in self.users:
            return Requester(self.users[bearer_token], bearer_token)
        return None


def make_media(media_id: int = 1, **overrides) -> MediaObject:
    values = {
        "media_id": media_id,
        "file_path": f"uploads/{media_id}.mp4",
        "file_type": MediaType.VIDEO,
        "mime_type": "video/mp4",
        "status": MediaStatus.READY,
        "is_public": False,
        "is_active": True,
        "uploaded_by": 100,
    }
    values.update(overrides)
    return MediaObject(**values)


def pattern_bytes(size: int) -> bytes:
    return bytes(i % 251 for i in range(size))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def codec(clock):
    return TokenCodec(SECRET, clock=clock)


@pytest.fixture
def oracle():
    return FakeOracle(granted={200})


@pytest.fixture
def media_root(tmp_path):
    return tmp_path / "storage"


@pytest.fixture
def store(media_root):
    media_root.mkdir(parents=True, exist_ok=True)
    return LocalFileStore(str(media_root), public_base_url="http://testserver")


@pytest.fixture
def write_file(media_root):
    """Write bytes under the media root and return them."""

    def _write(relative_path: str, data: bytes) -> bytes:
        target = media_root / relative_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return data

    return _write


@pytest.fixture
def repository():
    return InMemoryMediaRepository()


@pytest.fixture
def counter():
    return MemoryPlayCounter()


@pytest.fixture
def usage(counter):
    return UsageRecorder(counter)


@pytest.fixture
def gateway(repository, store, codec, oracle, usage):
    return StreamingGateway(
        repository=repository,
        store=store,
        policy=AccessPolicy(codec, oracle, entitlement_timeout=1.0),
        streamer=RangeStreamer(chunk_size=4096, enable_progress=False),
        usage=usage,
        codec=codec,
        token_ttl=3600,
        manifest_ttl=7200,
        public_base_url="http://testserver",
    )
