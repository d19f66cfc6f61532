import pytest

from patchd.client import PatchdClient
from patchd.config import Settings


@pytest.mark.asyncio
async def test_services_share_one_gateway_and_cache(alice):
    assert alice.sessions.gateway is alice.gateway
    assert alice.social.sessions is alice.sessions
    assert alice.sessions.caches is alice.users.caches
    assert alice.reconciler.tasks is alice.tasks


@pytest.mark.asyncio
async def test_start_without_session_schedules_nothing(make_client):
    client = make_client()
    await client.start()
    assert len(client.tasks) == 0


@pytest.mark.asyncio
async def test_async_context_manager(make_client, fake_redis):
    async with make_client() as client:
        assert client.redis is fake_redis
    assert len(client.tasks) == 0


@pytest.mark.asyncio
async def test_from_settings_builds_client():
    config = Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        REDIS_URL="redis://localhost:6379/9",
        STORAGE_BUCKET="test-bucket",
        IMAGE_FORMAT="webp",
    )
    client = PatchdClient.from_settings(config)
    try:
        assert client.gateway.storage.bucket == "test-bucket"
        assert client.gateway.storage.extension == "webp"
        assert client.engine is not None
    finally:
        await client.aclose()
