"""CRUD access to the backend tables.

Every method opens its own session, so concurrent callers never share
transaction state. Writes capture one timestamp per call and stamp every
"last modified" column with it.
"""
import logging
import uuid
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from patchd.clock import Clock, utcnow
from patchd.errors import NotFoundError, ValidationError
from patchd.gateway.errors import backend_errors
from patchd.gateway.realtime import PhotoChannels
from patchd.models.collage import Collage
from patchd.models.collage_invite import CollageInvite
from patchd.models.collage_member import CollageMember
from patchd.models.friendship import Friendship, pair_key
from patchd.models.photo import Photo
from patchd.models.theme import Theme
from patchd.models.user import User
from patchd.schemas.collage import CollageRead, ThemeRead
from patchd.schemas.photo import PhotoRead
from patchd.schemas.social import CollageInviteRead, FriendshipRead
from patchd.schemas.user import UserRead

logger = logging.getLogger(__name__)


class TableGateway:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        channels: PhotoChannels | None = None,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self.channels = channels
        self.clock = clock

    # ── Users ────────────────────────────────────────────────────────

    async def get_user(self, user_id: uuid.UUID) -> UserRead:
        async with backend_errors(f"fetch user {user_id}"):
            async with self._session_factory() as db:
                result = await db.execute(select(User).where(User.id == user_id))
                return UserRead.model_validate(result.scalar_one())

    async def get_users(self, user_ids: Iterable[uuid.UUID]) -> list[UserRead]:
        ids = list(user_ids)
        if not ids:
            return []
        async with backend_errors("fetch users"):
            async with self._session_factory() as db:
                result = await db.execute(select(User).where(User.id.in_(ids)))
                return [UserRead.model_validate(u) for u in result.scalars().all()]

    async def search_users(
        self, query: str, exclude_id: uuid.UUID | None = None, limit: int = 20
    ) -> list[UserRead]:
        pattern = f"%{query.strip().lower()}%"
        stmt = select(User).where(func.lower(User.username).like(pattern))
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        stmt = stmt.order_by(User.username.asc()).limit(limit)
        async with backend_errors("search users"):
            async with self._session_factory() as db:
                result = await db.execute(stmt)
                return [UserRead.model_validate(u) for u in result.scalars().all()]

    async def update_user(self, user_id: uuid.UUID, **fields) -> UserRead:
        now = self.clock()
        async with backend_errors(f"update user {user_id}"):
            async with self._session_factory() as db:
                result = await db.execute(select(User).where(User.id == user_id))
                user = result.scalar_one()
                for key, value in fields.items():
                    setattr(user, key, value)
                user.updated_at = now
                await db.commit()
                return UserRead.model_validate(user)

    # ── Themes ───────────────────────────────────────────────────────

    async def list_active_themes(self) -> list[ThemeRead]:
        async with backend_errors("fetch themes"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Theme).where(Theme.is_active.is_(True))
                )
                return [ThemeRead.model_validate(t) for t in result.scalars().all()]

    # ── Collages ─────────────────────────────────────────────────────

    async def get_collage(self, collage_id: uuid.UUID) -> CollageRead:
        async with backend_errors(f"fetch collage {collage_id}"):
            async with self._session_factory() as db:
                result = await db.execute(select(Collage).where(Collage.id == collage_id))
                return CollageRead.model_validate(result.scalar_one())

    async def get_collage_by_invite_code(self, invite_code: str) -> CollageRead:
        async with backend_errors("fetch collage by invite code"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Collage).where(Collage.invite_code == invite_code)
                )
                collage = result.scalars().first()
        if collage is None:
            raise NotFoundError("Invalid invite code")
        return CollageRead.model_validate(collage)

    async def invite_code_exists(self, invite_code: str) -> bool:
        async with backend_errors("check invite code"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Collage.id).where(Collage.invite_code == invite_code)
                )
                return result.first() is not None

    async def list_collages(
        self,
        collage_ids: Iterable[uuid.UUID] | None = None,
        *,
        expires_after: datetime | None = None,
        expired_by: datetime | None = None,
    ) -> list[CollageRead]:
        stmt = select(Collage)
        if collage_ids is not None:
            ids = list(collage_ids)
            if not ids:
                return []
            stmt = stmt.where(Collage.id.in_(ids))
        if expires_after is not None:
            stmt = stmt.where(Collage.expires_at > expires_after)
        if expired_by is not None:
            stmt = stmt.where(Collage.expires_at <= expired_by)
        stmt = stmt.order_by(Collage.expires_at.asc())
        async with backend_errors("fetch collages"):
            async with self._session_factory() as db:
                result = await db.execute(stmt)
                return [CollageRead.model_validate(c) for c in result.scalars().all()]

    async def get_expired_collage(self, collage_id: uuid.UUID) -> CollageRead:
        """Re-read a collage with the expiry predicate evaluated by the store."""
        now = self.clock()
        async with backend_errors(f"verify expiry of collage {collage_id}"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Collage).where(
                        Collage.id == collage_id, Collage.expires_at <= now
                    )
                )
                collage = result.scalar_one_or_none()
                if collage is None:
                    exists = await db.execute(
                        select(Collage.id).where(Collage.id == collage_id)
                    )
                    if exists.first() is None:
                        raise NotFoundError(f"Collage {collage_id} not found")
                    raise ValidationError("Cannot clean up an active collage")
                return CollageRead.model_validate(collage)

    async def insert_collage(
        self,
        *,
        theme: str,
        created_by: uuid.UUID,
        invite_code: str,
        starts_at: datetime,
        expires_at: datetime,
        is_party_mode: bool = False,
    ) -> CollageRead:
        now = self.clock()
        async with backend_errors("create collage"):
            async with self._session_factory() as db:
                collage = Collage(
                    id=uuid.uuid4(),
                    theme=theme,
                    created_by=created_by,
                    invite_code=invite_code,
                    starts_at=starts_at,
                    expires_at=expires_at,
                    background_url="",
                    is_party_mode=is_party_mode,
                    created_at=now,
                    updated_at=now,
                )
                db.add(collage)
                await db.commit()
                return CollageRead.model_validate(collage)

    async def update_collage_preview(self, collage_id: uuid.UUID, preview_url: str) -> CollageRead:
        now = self.clock()
        async with backend_errors(f"update preview of collage {collage_id}"):
            async with self._session_factory() as db:
                result = await db.execute(select(Collage).where(Collage.id == collage_id))
                collage = result.scalar_one()
                collage.preview_url = preview_url
                collage.updated_at = now
                await db.commit()
                return CollageRead.model_validate(collage)

    # ── Memberships ──────────────────────────────────────────────────

    async def list_membership_collage_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        async with backend_errors(f"fetch memberships of {user_id}"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(CollageMember.collage_id)
                    .where(CollageMember.user_id == user_id)
                    .order_by(CollageMember.joined_at.asc())
                )
                return [row[0] for row in result.all()]

    async def list_member_user_ids(self, collage_id: uuid.UUID) -> list[uuid.UUID]:
        async with backend_errors(f"fetch members of {collage_id}"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(CollageMember.user_id)
                    .where(CollageMember.collage_id == collage_id)
                    .order_by(CollageMember.joined_at.asc())
                )
                return [row[0] for row in result.all()]

    async def is_member(self, collage_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        async with backend_errors("check membership"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(CollageMember.id).where(
                        CollageMember.collage_id == collage_id,
                        CollageMember.user_id == user_id,
                    )
                )
                return result.first() is not None

    async def insert_membership(self, collage_id: uuid.UUID, user_id: uuid.UUID) -> None:
        now = self.clock()
        async with backend_errors(f"join collage {collage_id}"):
            async with self._session_factory() as db:
                db.add(CollageMember(collage_id=collage_id, user_id=user_id, joined_at=now))
                await db.commit()

    # ── Photos ───────────────────────────────────────────────────────

    async def list_photos(self, collage_id: uuid.UUID) -> list[PhotoRead]:
        """Photos in canvas layering order: later additions render on top."""
        async with backend_errors(f"fetch photos of {collage_id}"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Photo)
                    .where(Photo.collage_id == collage_id)
                    .order_by(Photo.created_at.asc(), Photo.id.asc())
                )
                return [PhotoRead.model_validate(p) for p in result.scalars().all()]

    async def get_photo(self, photo_id: uuid.UUID) -> PhotoRead:
        async with backend_errors(f"fetch photo {photo_id}"):
            async with self._session_factory() as db:
                result = await db.execute(select(Photo).where(Photo.id == photo_id))
                return PhotoRead.model_validate(result.scalar_one())

    async def insert_photo(
        self,
        *,
        collage_id: uuid.UUID,
        user_id: uuid.UUID,
        image_url: str,
        position_x: float,
        position_y: float,
    ) -> PhotoRead:
        now = self.clock()
        async with backend_errors(f"add photo to {collage_id}"):
            async with self._session_factory() as db:
                photo = Photo(
                    id=uuid.uuid4(),
                    collage_id=collage_id,
                    user_id=user_id,
                    image_url=image_url,
                    position_x=position_x,
                    position_y=position_y,
                    rotation=0.0,
                    scale=1.0,
                    created_at=now,
                    updated_at=now,
                )
                db.add(photo)
                await db.commit()
                created = PhotoRead.model_validate(photo)
        await self._announce(collage_id, "insert", created.id)
        return created

    async def update_photo_transform(
        self,
        photo_id: uuid.UUID,
        *,
        position_x: float,
        position_y: float,
        rotation: float,
        scale: float,
    ) -> PhotoRead:
        now = self.clock()
        async with backend_errors(f"update photo {photo_id}"):
            async with self._session_factory() as db:
                result = await db.execute(select(Photo).where(Photo.id == photo_id))
                photo = result.scalar_one()
                photo.position_x = position_x
                photo.position_y = position_y
                photo.rotation = rotation
                photo.scale = scale
                photo.updated_at = now
                await db.commit()
                updated = PhotoRead.model_validate(photo)
        await self._announce(updated.collage_id, "update", updated.id)
        return updated

    async def delete_photo(self, photo_id: uuid.UUID) -> PhotoRead:
        async with backend_errors(f"delete photo {photo_id}"):
            async with self._session_factory() as db:
                result = await db.execute(select(Photo).where(Photo.id == photo_id))
                photo = result.scalar_one()
                deleted = PhotoRead.model_validate(photo)
                await db.delete(photo)
                await db.commit()
        await self._announce(deleted.collage_id, "delete", deleted.id)
        return deleted

    async def delete_photos_for_collage(self, collage_id: uuid.UUID) -> int:
        async with backend_errors(f"delete photos of {collage_id}"):
            async with self._session_factory() as db:
                result = await db.execute(
                    delete(Photo).where(Photo.collage_id == collage_id)
                )
                await db.commit()
                count = result.rowcount or 0
        if count:
            await self._announce(collage_id, "delete")
        return count

    async def _announce(
        self, collage_id: uuid.UUID, event: str, photo_id: uuid.UUID | None = None
    ) -> None:
        if self.channels is not None:
            await self.channels.publish(collage_id, event, photo_id)

    # ── Friendships ──────────────────────────────────────────────────

    async def get_friendship(self, friendship_id: uuid.UUID) -> FriendshipRead:
        async with backend_errors(f"fetch friendship {friendship_id}"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Friendship).where(Friendship.id == friendship_id)
                )
                return FriendshipRead.model_validate(result.scalar_one())

    async def get_friendship_between(
        self, user_a: uuid.UUID, user_b: uuid.UUID
    ) -> FriendshipRead | None:
        async with backend_errors("fetch friendship"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Friendship).where(Friendship.pair_key == pair_key(user_a, user_b))
                )
                friendship = result.scalar_one_or_none()
        return FriendshipRead.model_validate(friendship) if friendship else None

    async def list_friendships(
        self, user_id: uuid.UUID, status: str | None = None
    ) -> list[FriendshipRead]:
        stmt = select(Friendship).where(
            or_(Friendship.user_id == user_id, Friendship.friend_id == user_id)
        )
        if status is not None:
            stmt = stmt.where(Friendship.status == status)
        stmt = stmt.order_by(Friendship.updated_at.desc())
        async with backend_errors(f"fetch friendships of {user_id}"):
            async with self._session_factory() as db:
                result = await db.execute(stmt)
                return [FriendshipRead.model_validate(f) for f in result.scalars().all()]

    async def insert_friendship(
        self, user_id: uuid.UUID, friend_id: uuid.UUID, status: str = "pending"
    ) -> FriendshipRead:
        now = self.clock()
        async with backend_errors("create friendship"):
            async with self._session_factory() as db:
                friendship = Friendship(
                    id=uuid.uuid4(),
                    user_id=user_id,
                    friend_id=friend_id,
                    pair_key=pair_key(user_id, friend_id),
                    status=status,
                    created_at=now,
                    updated_at=now,
                )
                db.add(friendship)
                await db.commit()
                return FriendshipRead.model_validate(friendship)

    async def update_friendship(self, friendship_id: uuid.UUID, **fields) -> FriendshipRead:
        now = self.clock()
        async with backend_errors(f"update friendship {friendship_id}"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Friendship).where(Friendship.id == friendship_id)
                )
                friendship = result.scalar_one()
                for key, value in fields.items():
                    setattr(friendship, key, value)
                friendship.updated_at = now
                await db.commit()
                return FriendshipRead.model_validate(friendship)

    # ── Collage invites ──────────────────────────────────────────────

    async def get_invite(self, invite_id: uuid.UUID) -> CollageInviteRead:
        async with backend_errors(f"fetch invite {invite_id}"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(CollageInvite).where(CollageInvite.id == invite_id)
                )
                return CollageInviteRead.model_validate(result.scalar_one())

    async def get_invite_for(
        self, collage_id: uuid.UUID, receiver_id: uuid.UUID
    ) -> CollageInviteRead | None:
        async with backend_errors("fetch invite"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(CollageInvite).where(
                        CollageInvite.collage_id == collage_id,
                        CollageInvite.receiver_id == receiver_id,
                    )
                )
                invite = result.scalar_one_or_none()
        return CollageInviteRead.model_validate(invite) if invite else None

    async def list_invites_for_receiver(
        self, receiver_id: uuid.UUID, status: str = "pending"
    ) -> list[CollageInviteRead]:
        async with backend_errors(f"fetch invites of {receiver_id}"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(CollageInvite)
                    .where(
                        CollageInvite.receiver_id == receiver_id,
                        CollageInvite.status == status,
                    )
                    .order_by(CollageInvite.created_at.desc())
                )
                return [CollageInviteRead.model_validate(i) for i in result.scalars().all()]

    async def insert_invite(
        self, collage_id: uuid.UUID, sender_id: uuid.UUID, receiver_id: uuid.UUID
    ) -> CollageInviteRead:
        now = self.clock()
        async with backend_errors("create collage invite"):
            async with self._session_factory() as db:
                invite = CollageInvite(
                    id=uuid.uuid4(),
                    collage_id=collage_id,
                    sender_id=sender_id,
                    receiver_id=receiver_id,
                    status="pending",
                    created_at=now,
                    updated_at=now,
                )
                db.add(invite)
                await db.commit()
                return CollageInviteRead.model_validate(invite)

    async def update_invite(self, invite_id: uuid.UUID, **fields) -> CollageInviteRead:
        now = self.clock()
        async with backend_errors(f"update invite {invite_id}"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(CollageInvite).where(CollageInvite.id == invite_id)
                )
                invite = result.scalar_one()
                for key, value in fields.items():
                    setattr(invite, key, value)
                invite.updated_at = now
                await db.commit()
                return CollageInviteRead.model_validate(invite)
