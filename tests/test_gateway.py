import uuid

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import IntegrityError, NoResultFound

from conftest import make_png
from patchd.errors import ConflictError, ErrorKind, NotFoundError, TransportError
from patchd.gateway.errors import backend_errors
from patchd.gateway.realtime import PhotoChannels, photo_channel
from patchd.gateway.storage import extract_storage_path, public_url_for, transcode_image


@pytest.mark.asyncio
async def test_backend_errors_translation():
    with pytest.raises(NotFoundError):
        async with backend_errors("fetch"):
            raise NoResultFound()
    with pytest.raises(ConflictError):
        async with backend_errors("insert"):
            raise IntegrityError("INSERT", {}, Exception("duplicate"))
    with pytest.raises(TransportError) as exc_info:
        async with backend_errors("publish"):
            raise RedisConnectionError("down")
    assert exc_info.value.kind is ErrorKind.TRANSPORT
    with pytest.raises(TransportError):
        async with backend_errors("download"):
            raise httpx.ConnectError("refused")


@pytest.mark.asyncio
async def test_backend_errors_passes_domain_errors_through():
    with pytest.raises(NotFoundError) as exc_info:
        async with backend_errors("fetch"):
            raise NotFoundError("Invalid invite code")
    assert exc_info.value.message == "Invalid invite code"


def test_public_url_round_trip():
    url = public_url_for("https://cdn.test/", "patchd-storage", "collage-photos/a b.png")
    assert url == "https://cdn.test/patchd-storage/collage-photos/a b.png"
    assert extract_storage_path(url, "patchd-storage") == "collage-photos/a b.png"
    assert extract_storage_path(
        "https://cdn.test/patchd-storage/collage-photos/a%20b.png", "patchd-storage"
    ) == "collage-photos/a b.png"


def test_extract_storage_path_outside_bucket():
    assert extract_storage_path("https://elsewhere.test/img.png", "patchd-storage") is None
    assert extract_storage_path("https://cdn.test/patchd-storage/", "patchd-storage") is None


@pytest.mark.asyncio
async def test_path_from_url_respects_folder(alice, storage):
    url = storage.public_url("Stickers/Food/taco.png")
    assert alice.gateway.storage.path_from_url(url) == "Stickers/Food/taco.png"
    assert alice.gateway.storage.path_from_url(url, "collage-photos") is None


def test_transcode_to_jpeg_drops_alpha():
    data = transcode_image(make_png(), "JPEG")
    assert data[:2] == b"\xff\xd8"


def test_transcode_rejects_unknown_format():
    with pytest.raises(ValueError):
        transcode_image(make_png(), "BMP")


@pytest.mark.asyncio
async def test_download_missing_object(alice, storage):
    with pytest.raises(NotFoundError):
        await alice.gateway.storage.download(storage.public_url("nowhere.png"))


@pytest.mark.asyncio
async def test_publish_is_best_effort():
    class BrokenRedis:
        async def publish(self, channel, message):
            raise RedisConnectionError("down")

    # Must not raise: the row write already happened
    await PhotoChannels(BrokenRedis()).publish(uuid.uuid4(), "insert")


@pytest.mark.asyncio
async def test_photo_writes_are_announced(alice, fake_redis):
    created = await alice.sessions.create_collage("Picnic", 1800)
    photo = await alice.photos.add_photo(created.id, "https://example.test/a.png", 0, 0)

    channel, message = fake_redis.published[-1]
    assert channel == photo_channel(created.id)
    assert str(photo.id) in message
    assert '"insert"' in message


@pytest.mark.asyncio
async def test_get_invite_code_unknown(alice):
    with pytest.raises(NotFoundError) as exc_info:
        await alice.gateway.tables.get_collage_by_invite_code("NOPE2345")
    assert exc_info.value.message == "Invalid invite code"
