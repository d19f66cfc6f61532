import uuid

from pydantic import BaseModel

from patchd.schemas.types import UTCDateTime


class PhotoRead(BaseModel):
    id: uuid.UUID
    collage_id: uuid.UUID
    user_id: uuid.UUID
    image_url: str
    position_x: float
    position_y: float
    rotation: float  # degrees
    scale: float
    created_at: UTCDateTime
    updated_at: UTCDateTime

    model_config = {"from_attributes": True}


class PhotoChange(BaseModel):
    """Payload pushed on the per-collage photo channel."""

    collage_id: uuid.UUID
    event: str  # insert, update, delete
    photo_id: uuid.UUID | None = None
