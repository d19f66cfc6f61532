import logging
import uuid

from pydantic import ValidationError as PydanticValidationError

from patchd.cache import CacheManager
from patchd.errors import ValidationError
from patchd.gateway import RemoteGateway
from patchd.schemas.user import SignUpRequest, UsernameUpdate, UserRead

logger = logging.getLogger(__name__)

AVATAR_FOLDER = "avatars"


def _first_error(exc: PydanticValidationError) -> str:
    error = exc.errors()[0]
    field = ".".join(str(p) for p in error.get("loc", ()))
    return f"{field}: {error.get('msg', 'invalid value')}"


class UserService:
    def __init__(self, gateway: RemoteGateway, caches: CacheManager):
        self.gateway = gateway
        self.caches = caches

    async def sign_up(self, email: str, password: str, username: str) -> UserRead:
        try:
            data = SignUpRequest(email=email, password=password, username=username)
        except PydanticValidationError as exc:
            raise ValidationError(_first_error(exc)) from exc
        return await self.gateway.auth.sign_up(data.email, data.password, data.username)

    async def sign_in(self, email: str, password: str) -> UserRead:
        # A new identity never inherits the previous one's cached data
        await self.caches.clear()
        await self.gateway.auth.sign_in(email, password)
        return await self.get_current_user()

    async def sign_out(self) -> None:
        try:
            await self.gateway.auth.sign_out()
        finally:
            await self.caches.clear()

    async def get_current_user(self) -> UserRead:
        return await self.fetch_user(self.gateway.auth.current_user_id())

    async def fetch_user(self, user_id: uuid.UUID) -> UserRead:
        return await self.caches.users.get_or_fetch(
            user_id, lambda: self.gateway.tables.get_user(user_id)
        )

    async def fetch_users(self, user_ids: list[uuid.UUID]) -> list[UserRead]:
        """Users in ``user_ids`` order, fetching every uncached id in one query."""

        async def fetch_missing(missing: list[uuid.UUID]) -> dict[uuid.UUID, UserRead]:
            users = await self.gateway.tables.get_users(missing)
            return {u.id: u for u in users}

        return await self.caches.users.get_many_or_fetch(user_ids, fetch_missing)

    async def fetch_collage_members(self, collage_id: uuid.UUID) -> list[UserRead]:
        user_ids = await self.gateway.tables.list_member_user_ids(collage_id)
        if not user_ids:
            return []
        return await self.fetch_users(user_ids)

    async def search_users(self, query: str) -> list[UserRead]:
        query = query.strip()
        if not query:
            return []
        me = self.gateway.auth.current_user_id()
        return await self.gateway.tables.search_users(query, exclude_id=me)

    async def update_username(self, username: str) -> UserRead:
        try:
            data = UsernameUpdate(username=username)
        except PydanticValidationError as exc:
            raise ValidationError(_first_error(exc)) from exc

        user_id = self.gateway.auth.current_user_id()
        updated = await self.gateway.tables.update_user(user_id, username=data.username)
        await self.caches.invalidate_user(user_id)
        return updated

    async def upload_avatar(self, image) -> UserRead:
        """Store a new avatar image and point the current user at it."""
        user_id = self.gateway.auth.current_user_id()
        now = self.gateway.clock()
        filename = f"{user_id}_{int(now.timestamp())}.{self.gateway.storage.extension}"
        avatar_url = await self.gateway.storage.upload_image(image, AVATAR_FOLDER, filename)

        updated = await self.gateway.tables.update_user(user_id, avatar_url=avatar_url)
        await self.caches.invalidate_user(user_id)
        logger.info("Updated avatar for user %s", user_id)
        return updated
