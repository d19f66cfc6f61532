import logging
import uuid

from PIL import Image

from patchd.errors import ExpiredError, NothingToPasteError, UnauthorizedError
from patchd.gateway import RemoteGateway
from patchd.schemas.photo import PhotoRead

logger = logging.getLogger(__name__)

CUTOUT_FOLDER = "collage-photos"


class PhotoService:
    def __init__(self, gateway: RemoteGateway):
        self.gateway = gateway

    async def upload_cutout(self, image: bytes | Image.Image) -> str:
        filename = f"{uuid.uuid4()}.{self.gateway.storage.extension}"
        return await self.gateway.storage.upload_image(image, CUTOUT_FOLDER, filename)

    async def add_photo(
        self, collage_id: uuid.UUID, image_url: str, position_x: float, position_y: float
    ) -> PhotoRead:
        """Place an already-stored image on the canvas at its baseline transform."""
        user_id = self.gateway.auth.current_user_id()
        collage = await self.gateway.tables.get_collage(collage_id)
        if collage.is_expired(self.gateway.clock()):
            raise ExpiredError("This collage has expired")

        return await self.gateway.tables.insert_photo(
            collage_id=collage_id,
            user_id=user_id,
            image_url=image_url,
            position_x=position_x,
            position_y=position_y,
        )

    async def add_photo_from_image(
        self,
        collage_id: uuid.UUID,
        image: bytes | Image.Image,
        position_x: float,
        position_y: float,
    ) -> PhotoRead:
        image_url = await self.upload_cutout(image)
        return await self.add_photo(collage_id, image_url, position_x, position_y)

    async def add_photo_from_paste(
        self,
        collage_id: uuid.UUID,
        paste: bytes | Image.Image | None,
        position_x: float,
        position_y: float,
    ) -> PhotoRead:
        """Add clipboard content, which may be an image or raw encoded image bytes."""
        if paste is None or (isinstance(paste, (bytes, bytearray)) and not paste):
            raise NothingToPasteError()
        if isinstance(paste, bytearray):
            paste = bytes(paste)
        return await self.add_photo_from_image(collage_id, paste, position_x, position_y)

    async def add_sticker(
        self, collage_id: uuid.UUID, sticker_url: str, position_x: float, position_y: float
    ) -> PhotoRead:
        # Make sure the sticker is reachable before pinning its URL on the canvas
        await self.gateway.storage.download(sticker_url)
        return await self.add_photo(collage_id, sticker_url, position_x, position_y)

    async def update_photo_transform(
        self,
        photo_id: uuid.UUID,
        position_x: float,
        position_y: float,
        rotation: float,
        scale: float,
    ) -> PhotoRead:
        """Commit a transform as given: position in canvas units, rotation in degrees."""
        return await self.gateway.tables.update_photo_transform(
            photo_id,
            position_x=position_x,
            position_y=position_y,
            rotation=rotation,
            scale=scale,
        )

    async def delete_photo(self, photo_id: uuid.UUID) -> PhotoRead:
        """Delete a photo row and then its stored object; only the owner may delete."""
        actor_id = self.gateway.auth.current_user_id()
        photo = await self.gateway.tables.get_photo(photo_id)
        if photo.user_id != actor_id:
            raise UnauthorizedError("Only the photo's owner can delete it")

        deleted = await self.gateway.tables.delete_photo(photo_id)

        # Stickers point at shared library objects and are never removed
        path = self.gateway.storage.path_from_url(deleted.image_url, CUTOUT_FOLDER)
        if path is not None:
            try:
                await self.gateway.storage.remove(path)
            except Exception as exc:
                logger.warning("Failed to remove stored photo %s: %s", path, exc)
        return deleted
