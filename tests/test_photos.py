import uuid

import pytest

from conftest import make_png
from patchd.errors import (
    ErrorKind,
    ExpiredError,
    NotFoundError,
    NothingToPasteError,
    UnauthorizedError,
    ValidationError,
)


@pytest.fixture
async def collage(alice, bob):
    created = await alice.sessions.create_collage("Picnic", 1800)
    await bob.sessions.join_collage(created.id)
    return created


@pytest.mark.asyncio
async def test_add_photo_baseline_transform(alice, collage):
    photo = await alice.photos.add_photo(collage.id, "https://example.test/a.png", 12.5, 40)

    assert photo.position_x == 12.5
    assert photo.position_y == 40
    assert photo.rotation == 0
    assert photo.scale == 1
    assert photo.user_id == alice.gateway.auth.current_user_id()


@pytest.mark.asyncio
async def test_add_photo_to_expired_collage(alice, collage, clock):
    clock.advance(1800)
    with pytest.raises(ExpiredError):
        await alice.photos.add_photo(collage.id, "https://example.test/a.png", 0, 0)


@pytest.mark.asyncio
async def test_upload_cutout_transcodes(make_client, alice, storage):
    client = make_client()
    client.gateway.auth.session = alice.gateway.auth.session
    client.gateway.storage.image_format = "JPEG"

    url = await client.photos.upload_cutout(make_png())
    path = client.gateway.storage.path_from_url(url, "collage-photos")

    assert path.endswith(".jpg")
    assert storage.content_types[path] == "image/jpeg"


@pytest.mark.asyncio
async def test_paste_nothing(alice, collage):
    for empty in (None, b"", bytearray()):
        with pytest.raises(NothingToPasteError) as exc_info:
            await alice.photos.add_photo_from_paste(collage.id, empty, 0, 0)
        assert exc_info.value.kind is ErrorKind.INVALID
        assert "clipboard" in exc_info.value.message


@pytest.mark.asyncio
async def test_paste_image_bytes(alice, collage, storage):
    photo = await alice.photos.add_photo_from_paste(collage.id, bytearray(make_png()), 5, 5)
    assert alice.gateway.storage.path_from_url(photo.image_url, "collage-photos") in storage.objects


@pytest.mark.asyncio
async def test_paste_garbage(alice, collage):
    with pytest.raises(ValidationError):
        await alice.photos.add_photo_from_paste(collage.id, b"\x00\x01 not an image", 0, 0)


@pytest.mark.asyncio
async def test_add_sticker_requires_reachable_object(alice, collage, storage):
    with pytest.raises(NotFoundError):
        await alice.photos.add_sticker(collage.id, storage.public_url("Stickers/Food/missing.png"), 0, 0)


@pytest.mark.asyncio
async def test_update_transform_round_trip(alice, collage):
    user = await alice.users.get_current_user()
    photo = await alice.photos.add_photo(collage.id, "https://example.test/a.png", 0, 0)

    await alice.photos.update_photo_transform(photo.id, 10, 20, 45, 1.5)

    session = await alice.sessions.fetch_session(collage.id, user)
    stored = session.photos[0]
    assert (stored.position_x, stored.position_y, stored.rotation, stored.scale) == (10, 20, 45, 1.5)


@pytest.mark.asyncio
async def test_update_transform_unknown_photo(alice):
    with pytest.raises(NotFoundError):
        await alice.photos.update_photo_transform(uuid.uuid4(), 0, 0, 0, 1)


@pytest.mark.asyncio
async def test_delete_own_photo(alice, collage, storage):
    photo = await alice.photos.add_photo_from_image(collage.id, make_png(), 0, 0)
    path = alice.gateway.storage.path_from_url(photo.image_url)

    await alice.photos.delete_photo(photo.id)

    assert await alice.gateway.tables.list_photos(collage.id) == []
    assert path not in storage.objects


@pytest.mark.asyncio
async def test_delete_someone_elses_photo(alice, bob, collage):
    photo = await alice.photos.add_photo(collage.id, "https://example.test/a.png", 0, 0)

    with pytest.raises(UnauthorizedError):
        await bob.photos.delete_photo(photo.id)
    assert len(await bob.gateway.tables.list_photos(collage.id)) == 1


@pytest.mark.asyncio
async def test_delete_survives_storage_failure(alice, collage, storage):
    photo = await alice.photos.add_photo_from_image(collage.id, make_png(), 0, 0)
    storage.fail_removals = True

    await alice.photos.delete_photo(photo.id)
    assert await alice.gateway.tables.list_photos(collage.id) == []


@pytest.mark.asyncio
async def test_party_mode_blurs_other_members(alice, bob, clock):
    created = await alice.sessions.create_collage("Party", 1800, is_party_mode=True)
    await bob.sessions.join_collage(created.id)
    mine = await alice.photos.add_photo(created.id, "https://example.test/a.png", 0, 0)
    clock.advance(1)
    theirs = await bob.photos.add_photo(created.id, "https://example.test/b.png", 0, 0)

    alice_user = await alice.users.get_current_user()
    session = await alice.sessions.fetch_session(created.id, alice_user)

    assert not session.is_photo_blurred(mine, alice_user.id, clock())
    assert session.is_photo_blurred(theirs, alice_user.id, clock())
    # Revealed once the collage ends
    assert not session.is_photo_blurred(theirs, alice_user.id, created.expires_at)


@pytest.mark.asyncio
async def test_no_blur_outside_party_mode(alice, bob, collage, clock):
    theirs = await bob.photos.add_photo(collage.id, "https://example.test/b.png", 0, 0)
    alice_user = await alice.users.get_current_user()
    session = await alice.sessions.fetch_session(collage.id, alice_user)
    assert not session.is_photo_blurred(theirs, alice_user.id, clock())
