import uuid

from pydantic import BaseModel

from patchd.schemas.types import UTCDateTime


class AuthSession(BaseModel):
    user_id: uuid.UUID
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: UTCDateTime
