import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from patchd.schemas.photo import PhotoRead
from patchd.schemas.types import UTCDateTime
from patchd.schemas.user import UserRead


class ThemeRead(BaseModel):
    id: uuid.UUID
    text: str
    category: str
    is_active: bool

    model_config = {"from_attributes": True}


class CollageRead(BaseModel):
    id: uuid.UUID
    theme: str
    created_by: uuid.UUID
    invite_code: str
    starts_at: UTCDateTime
    expires_at: UTCDateTime
    background_url: str | None = None
    preview_url: str | None = None
    is_party_mode: bool = False
    created_at: UTCDateTime
    updated_at: UTCDateTime

    model_config = {"from_attributes": True}

    def is_active(self, now: datetime) -> bool:
        # Strictly greater: a collage exactly at its deadline is already over
        return self.expires_at > now

    def is_expired(self, now: datetime) -> bool:
        return not self.is_active(now)


class CollageCreate(BaseModel):
    theme: str = Field(min_length=1, max_length=255)
    duration_seconds: int = Field(gt=0)
    is_party_mode: bool = False


class CollageSession(BaseModel):
    """Collage joined with its creator, members and canvas photos."""

    id: uuid.UUID
    collage: CollageRead
    creator: UserRead
    members: list[UserRead] = []
    photos: list[PhotoRead] = []

    @property
    def theme(self) -> str:
        return self.collage.theme

    @property
    def invite_code(self) -> str:
        return self.collage.invite_code

    @property
    def expires_at(self) -> datetime:
        return self.collage.expires_at

    @property
    def preview_url(self) -> str:
        return self.collage.preview_url or ""

    def is_active(self, now: datetime) -> bool:
        return self.collage.is_active(now)

    def is_photo_blurred(self, photo: PhotoRead, viewer_id: uuid.UUID, now: datetime) -> bool:
        """Party mode hides other members' photos until the collage is revealed."""
        return (
            self.collage.is_party_mode
            and self.collage.is_active(now)
            and photo.user_id != viewer_id
        )


class SessionPartition(BaseModel):
    active: list[CollageSession] = []
    expired: list[CollageSession] = []


class CleanupReport(BaseModel):
    succeeded: int = 0
    failed: int = 0
    photos_deleted: int = 0
