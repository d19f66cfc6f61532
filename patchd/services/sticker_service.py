import asyncio
import logging

from patchd.errors import PatchdError
from patchd.gateway import RemoteGateway
from patchd.schemas.sticker import StickerCategory, StickerItem

logger = logging.getLogger(__name__)

STICKER_ROOT = "Stickers"
PINNED_CATEGORY = "Food"
CATEGORY_NAMES = [
    "Animals",
    "Creative",
    "Education",
    "Entertainment",
    "Fitness",
    "Food",
    "General",
    "Home",
    "Lifestyle",
    "Memories",
    "Nature",
    "Social",
    "Travel",
    "Urban",
]


def category_folder(name: str) -> str:
    # General lives in an underscored folder so it sorts first in the bucket browser
    if name == "General":
        return f"{STICKER_ROOT}/_General"
    return f"{STICKER_ROOT}/{name}"


def sort_categories(categories: list[StickerCategory]) -> list[StickerCategory]:
    """Food first, then by sticker count descending, then by name."""
    return sorted(
        categories,
        key=lambda c: (c.name != PINNED_CATEGORY, -len(c.stickers), c.name),
    )


class StickerService:
    def __init__(self, gateway: RemoteGateway):
        self.gateway = gateway

    async def _load_category(self, name: str) -> StickerCategory:
        folder = category_folder(name)
        category = StickerCategory(name=name, folder=folder)
        try:
            files = await self.gateway.storage.list_files(folder)
        except PatchdError as exc:
            logger.warning("Could not list stickers in %s: %s", folder, exc)
            return category

        category.stickers = [
            StickerItem(url=self.gateway.storage.public_url(f"{folder}/{f}"), category=name)
            for f in sorted(files)
            if f.lower().endswith(".png")
        ]
        return category

    async def load_sticker_categories(self) -> list[StickerCategory]:
        categories = await asyncio.gather(*(self._load_category(n) for n in CATEGORY_NAMES))
        kept = [c for c in categories if c.stickers or c.name == PINNED_CATEGORY]
        logger.info(
            "Loaded %d sticker categories (%d stickers)",
            len(kept),
            sum(len(c.stickers) for c in kept),
        )
        return sort_categories(kept)
