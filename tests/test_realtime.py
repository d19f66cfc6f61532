import asyncio

import pytest

from patchd.errors import TransportError
from patchd.gateway.realtime import photo_channel


@pytest.fixture
async def collage(alice, bob):
    created = await alice.sessions.create_collage("Picnic", 1800)
    await bob.sessions.join_collage(created.id)
    return created


async def next_update(updates: asyncio.Queue, timeout: float = 2.0):
    return await asyncio.wait_for(updates.get(), timeout)


@pytest.mark.asyncio
async def test_change_delivers_full_ordered_list(alice, bob, collage, clock):
    first = await alice.photos.add_photo(collage.id, "https://example.test/a.png", 0, 0)
    clock.advance(1)
    updates: asyncio.Queue = asyncio.Queue()

    async with alice.realtime.subscribe(collage.id, updates.put) as subscription:
        await subscription.wait_ready()
        second = await bob.photos.add_photo(collage.id, "https://example.test/b.png", 0, 0)

        photos = await next_update(updates)
        assert [p.id for p in photos] == [first.id, second.id]

        await bob.photos.update_photo_transform(second.id, 1, 2, 3, 4)
        photos = await next_update(updates)
        assert photos[1].rotation == 3

        await bob.photos.delete_photo(second.id)
        photos = await next_update(updates)
        assert [p.id for p in photos] == [first.id]


@pytest.mark.asyncio
async def test_sync_callback_supported(alice, collage):
    received = []
    done = asyncio.Event()

    def on_change(photos):
        received.append(photos)
        done.set()

    subscription = alice.realtime.subscribe(collage.id, on_change)
    await subscription.wait_ready()
    await alice.photos.add_photo(collage.id, "https://example.test/a.png", 0, 0)
    await asyncio.wait_for(done.wait(), 2.0)
    await subscription.aclose()

    assert len(received[0]) == 1


@pytest.mark.asyncio
async def test_other_collages_do_not_notify(alice, collage):
    other = await alice.sessions.create_collage("Elsewhere", 1800)
    updates: asyncio.Queue = asyncio.Queue()

    async with alice.realtime.subscribe(collage.id, updates.put) as subscription:
        await subscription.wait_ready()
        await alice.photos.add_photo(other.id, "https://example.test/a.png", 0, 0)
        await alice.photos.add_photo(collage.id, "https://example.test/b.png", 0, 0)

        photos = await next_update(updates)
        assert [p.collage_id for p in photos] == [collage.id]
        assert updates.empty()


@pytest.mark.asyncio
async def test_cancel_stops_callbacks_and_releases_channel(alice, collage, fake_redis):
    updates: asyncio.Queue = asyncio.Queue()
    subscription = alice.realtime.subscribe(collage.id, updates.put)
    await subscription.wait_ready()
    assert fake_redis.subscriber_count(photo_channel(collage.id)) == 1

    await subscription.aclose()
    await alice.photos.add_photo(collage.id, "https://example.test/a.png", 0, 0)
    await asyncio.sleep(0.05)

    assert not subscription.active
    assert updates.empty()
    assert fake_redis.subscriber_count(photo_channel(collage.id)) == 0


@pytest.mark.asyncio
async def test_two_subscriptions_each_refetch(alice, bob, collage):
    alice_updates: asyncio.Queue = asyncio.Queue()
    bob_updates: asyncio.Queue = asyncio.Queue()

    async with alice.realtime.subscribe(collage.id, alice_updates.put) as a, \
            bob.realtime.subscribe(collage.id, bob_updates.put) as b:
        await a.wait_ready()
        await b.wait_ready()
        await alice.photos.add_photo(collage.id, "https://example.test/a.png", 0, 0)

        assert len(await next_update(alice_updates)) == 1
        assert len(await next_update(bob_updates)) == 1


@pytest.mark.asyncio
async def test_refetch_error_keeps_subscription_alive(alice, collage, monkeypatch):
    updates: asyncio.Queue = asyncio.Queue()
    original = alice.gateway.tables.list_photos
    calls = 0

    async def flaky_list_photos(collage_id):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise TransportError("offline")
        return await original(collage_id)

    monkeypatch.setattr(alice.gateway.tables, "list_photos", flaky_list_photos)

    async with alice.realtime.subscribe(collage.id, updates.put) as subscription:
        await subscription.wait_ready()
        await alice.photos.add_photo(collage.id, "https://example.test/a.png", 0, 0)
        await alice.photos.add_photo(collage.id, "https://example.test/b.png", 0, 0)

        photos = await next_update(updates)
        assert len(photos) == 2
        assert subscription.active


@pytest.mark.asyncio
async def test_callback_error_keeps_subscription_alive(alice, collage):
    updates: asyncio.Queue = asyncio.Queue()
    calls = 0

    async def on_change(photos):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("view went away")
        await updates.put(photos)

    async with alice.realtime.subscribe(collage.id, on_change) as subscription:
        await subscription.wait_ready()
        await alice.photos.add_photo(collage.id, "https://example.test/a.png", 0, 0)
        await alice.photos.add_photo(collage.id, "https://example.test/b.png", 0, 0)

        assert len(await next_update(updates)) == 2


@pytest.mark.asyncio
async def test_client_close_cancels_subscriptions(make_client, alice, collage):
    client = make_client()
    client.gateway.auth.session = alice.gateway.auth.session
    subscription = client.realtime.subscribe(collage.id, lambda photos: None)
    await subscription.wait_ready()

    await client.aclose()

    assert not subscription.active
