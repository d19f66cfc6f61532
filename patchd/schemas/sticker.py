from pydantic import BaseModel


class StickerItem(BaseModel):
    url: str
    category: str


class StickerCategory(BaseModel):
    name: str
    folder: str
    stickers: list[StickerItem] = []
