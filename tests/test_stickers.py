import pytest

from conftest import make_png
from patchd.schemas.sticker import StickerCategory, StickerItem
from patchd.services.sticker_service import category_folder, sort_categories


def _category(name, count):
    return StickerCategory(
        name=name,
        folder=category_folder(name),
        stickers=[StickerItem(url=f"https://x/{name}/{i}.png", category=name) for i in range(count)],
    )


def test_category_folders():
    assert category_folder("General") == "Stickers/_General"
    assert category_folder("Food") == "Stickers/Food"


def test_sort_food_first_then_count_then_name():
    categories = [
        _category("Travel", 3),
        _category("Animals", 3),
        _category("Food", 1),
        _category("Nature", 5),
    ]
    assert [c.name for c in sort_categories(categories)] == ["Food", "Nature", "Animals", "Travel"]


async def _put(storage, path):
    await storage.upload(path, make_png(), "image/png")


@pytest.mark.asyncio
async def test_load_sticker_categories(alice, storage):
    await _put(storage, "Stickers/Animals/cat.png")
    await _put(storage, "Stickers/Animals/dog.PNG")
    await _put(storage, "Stickers/Animals/notes.txt")
    await _put(storage, "Stickers/_General/star.png")
    await _put(storage, "Stickers/_General/heart.png")
    await _put(storage, "Stickers/_General/moon.png")
    await _put(storage, "Stickers/Urban/nested/skip.png")

    categories = await alice.stickers.load_sticker_categories()

    assert [c.name for c in categories] == ["Food", "General", "Animals"]
    assert categories[0].stickers == []
    animals = categories[2]
    assert [s.url for s in animals.stickers] == [
        storage.public_url("Stickers/Animals/cat.png"),
        storage.public_url("Stickers/Animals/dog.PNG"),
    ]
    assert {s.category for s in animals.stickers} == {"Animals"}


@pytest.mark.asyncio
async def test_food_kept_when_listing_fails(alice, storage):
    storage.fail_listing.add("Stickers/Food")
    await _put(storage, "Stickers/Travel/plane.png")

    categories = await alice.stickers.load_sticker_categories()

    assert [c.name for c in categories] == ["Food", "Travel"]
    assert categories[0].stickers == []


@pytest.mark.asyncio
async def test_sticker_can_be_added_to_collage(alice, storage):
    await _put(storage, "Stickers/Food/taco.png")
    created = await alice.sessions.create_collage("Lunch", 1800)
    categories = await alice.stickers.load_sticker_categories()
    taco = categories[0].stickers[0]

    photo = await alice.photos.add_sticker(created.id, taco.url, 10, 10)

    assert photo.image_url == taco.url
