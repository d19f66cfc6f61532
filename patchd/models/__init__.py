from patchd.models.base import Base
from patchd.models.collage import Collage
from patchd.models.collage_invite import CollageInvite
from patchd.models.collage_member import CollageMember
from patchd.models.friendship import Friendship
from patchd.models.photo import Photo
from patchd.models.theme import Theme
from patchd.models.user import User

__all__ = [
    "Base",
    "Collage",
    "CollageInvite",
    "CollageMember",
    "Friendship",
    "Photo",
    "Theme",
    "User",
]
