import uuid
from typing import Literal

from pydantic import BaseModel

from patchd.schemas.collage import CollageRead
from patchd.schemas.types import UTCDateTime
from patchd.schemas.user import UserRead

RequestStatus = Literal["pending", "accepted", "rejected"]


class FriendshipRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    friend_id: uuid.UUID
    status: RequestStatus
    created_at: UTCDateTime
    updated_at: UTCDateTime

    model_config = {"from_attributes": True}

    def other(self, user_id: uuid.UUID) -> uuid.UUID:
        return self.friend_id if self.user_id == user_id else self.user_id


class FriendRequest(BaseModel):
    friendship: FriendshipRead
    user: UserRead


class CollageInviteRead(BaseModel):
    id: uuid.UUID
    collage_id: uuid.UUID
    sender_id: uuid.UUID
    receiver_id: uuid.UUID
    status: RequestStatus
    created_at: UTCDateTime
    updated_at: UTCDateTime

    model_config = {"from_attributes": True}


class PendingCollageInvite(BaseModel):
    invite: CollageInviteRead
    collage: CollageRead
    sender: UserRead
