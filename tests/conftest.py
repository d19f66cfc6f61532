import asyncio
import io
from collections import defaultdict
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from PIL import Image
from sqlalchemy.ext.asyncio import create_async_engine

from patchd.client import PatchdClient
from patchd.database import create_session_factory
from patchd.gateway.storage import extract_storage_path, public_url_for
from patchd.models import Base, Theme

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
STORAGE_BASE_URL = "https://storage.test"
BUCKET = "patchd-storage"


class FrozenClock:
    """Injectable clock that only moves when a test advances it."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakePubSub:
    def __init__(self, redis: "FakeRedis"):
        self._redis = redis
        self._queue: asyncio.Queue = asyncio.Queue()
        self.channels: set[str] = set()
        self.closed = False

    async def subscribe(self, *channels: str) -> None:
        for channel in channels:
            self.channels.add(channel)
            self._redis._subscribers[channel].add(self)
            await self._queue.put({"type": "subscribe", "channel": channel, "data": 1})

    async def unsubscribe(self, *channels: str) -> None:
        for channel in channels or tuple(self.channels):
            self.channels.discard(channel)
            self._redis._subscribers[channel].discard(self)

    async def listen(self):
        while True:
            message = await self._queue.get()
            if message is None:
                return
            yield message

    async def aclose(self) -> None:
        await self.unsubscribe()
        self.closed = True
        await self._queue.put(None)


class FakeRedis:
    """In-memory Redis mock for testing, including pub/sub."""

    def __init__(self):
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}
        self._subscribers: defaultdict[str, set[FakePubSub]] = defaultdict(set)
        self.published: list[tuple[str, str]] = []

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self._store[key] = str(value)
        if ex:
            self._ttls[key] = ex

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        subscribers = list(self._subscribers[channel])
        for pubsub in subscribers:
            await pubsub._queue.put({"type": "message", "channel": channel, "data": message})
        return len(subscribers)

    def pubsub(self) -> FakePubSub:
        return FakePubSub(self)

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers[channel])

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass


class MemoryStorage:
    """In-memory object storage with the public URL layout of the real bucket."""

    def __init__(self, bucket: str = BUCKET, base_url: str = STORAGE_BASE_URL):
        self.bucket = bucket
        self.base_url = base_url
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.fail_removals = False
        self.fail_listing: set[str] = set()

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        self.objects[path] = data
        self.content_types[path] = content_type

    async def remove(self, paths: list[str]) -> None:
        if self.fail_removals:
            raise OSError("storage unavailable")
        for path in paths:
            self.objects.pop(path, None)

    async def list(self, folder: str) -> list[str]:
        if folder in self.fail_listing:
            raise OSError(f"cannot list {folder}")
        prefix = folder.rstrip("/") + "/"
        return [
            path[len(prefix):]
            for path in self.objects
            if path.startswith(prefix) and "/" not in path[len(prefix):]
        ]

    def public_url(self, path: str) -> str:
        return public_url_for(self.base_url, self.bucket, path)

    def transport(self) -> httpx.MockTransport:
        """Serve stored objects over HTTP at their public URLs."""

        def handler(request: httpx.Request) -> httpx.Response:
            path = extract_storage_path(str(request.url), self.bucket)
            if path is None or path not in self.objects:
                return httpx.Response(404)
            return httpx.Response(200, content=self.objects[path])

        return httpx.MockTransport(handler)


def make_png(color: str = "red", size: tuple[int, int] = (8, 8)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/patchd.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
async def make_client(session_factory, fake_redis, storage, clock):
    """Build a client sharing the backend with every other client in the test."""
    clients: list[PatchdClient] = []

    def factory() -> PatchdClient:
        client = PatchdClient(
            session_factory,
            fake_redis,
            storage,
            clock=clock,
            http_client=httpx.AsyncClient(transport=storage.transport()),
        )
        clients.append(client)
        return client

    yield factory
    for client in clients:
        await client.aclose()


@pytest.fixture
async def signed_in(make_client):
    """Factory for a client signed in as a freshly registered user."""
    async def factory(username: str) -> PatchdClient:
        client = make_client()
        await client.users.sign_up(f"{username}@example.com", "correct-horse", username)
        await client.users.sign_in(f"{username}@example.com", "correct-horse")
        return client

    return factory


@pytest.fixture
async def alice(signed_in) -> PatchdClient:
    return await signed_in("alice")


@pytest.fixture
async def bob(signed_in) -> PatchdClient:
    return await signed_in("bob")


@pytest.fixture
async def carol(signed_in) -> PatchdClient:
    return await signed_in("carol")


@pytest.fixture
async def themes(session_factory) -> list[Theme]:
    async with session_factory() as db:
        rows = [
            Theme(text="Summer vibes", category="seasons", is_active=True),
            Theme(text="Breakfast", category="food", is_active=True),
            Theme(text="Retired theme", category="general", is_active=False),
        ]
        db.add_all(rows)
        await db.commit()
    return rows
