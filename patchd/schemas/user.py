import uuid

from pydantic import BaseModel, Field

from patchd.schemas.types import UTCDateTime

USERNAME_PATTERN = r"^[A-Za-z0-9_.]+$"


class UserRead(BaseModel):
    id: uuid.UUID
    email: str
    username: str
    avatar_url: str | None = None
    created_at: UTCDateTime
    updated_at: UTCDateTime | None = None

    model_config = {"from_attributes": True}


class UsernameUpdate(BaseModel):
    username: str = Field(min_length=3, max_length=30, pattern=USERNAME_PATTERN)


class SignUpRequest(BaseModel):
    email: str = Field(max_length=255)
    password: str = Field(min_length=6, max_length=128)
    username: str = Field(min_length=3, max_length=30, pattern=USERNAME_PATTERN)
