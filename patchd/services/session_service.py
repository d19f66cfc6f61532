"""Composite collage sessions: collage + creator + members + photos."""
import asyncio
import logging
import random
import secrets
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from pydantic import ValidationError as PydanticValidationError

from patchd.cache import CacheManager
from patchd.config import settings
from patchd.errors import ConflictError, ExpiredError, NotFoundError, PatchdError, ValidationError
from patchd.gateway import RemoteGateway
from patchd.schemas.collage import CollageCreate, CollageRead, CollageSession, SessionPartition
from patchd.schemas.photo import PhotoRead
from patchd.schemas.user import UserRead
from patchd.services.lifecycle_service import LifecycleReconciler
from patchd.services.user_service import UserService

logger = logging.getLogger(__name__)

# 32 symbols, no 0/O or 1/I look-alikes
INVITE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_invite_code(length: int | None = None) -> str:
    length = length or settings.INVITE_CODE_LENGTH
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(length))


def normalize_invite_code(code: str) -> str:
    return code.strip().upper()


class SessionAssembler:
    def __init__(
        self,
        gateway: RemoteGateway,
        caches: CacheManager,
        users: UserService,
        reconciler: LifecycleReconciler,
    ):
        self.gateway = gateway
        self.caches = caches
        self.users = users
        self.reconciler = reconciler
        # Held only while a join for the pair is running or waiting
        self._join_locks: dict[tuple[uuid.UUID, uuid.UUID], asyncio.Lock] = {}
        self._join_users: dict[tuple[uuid.UUID, uuid.UUID], int] = {}

    # ── Reads ────────────────────────────────────────────────────────

    async def fetch_memberships(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        return await self.caches.memberships.get_or_fetch(
            user_id, lambda: self.gateway.tables.list_membership_collage_ids(user_id)
        )

    async def fetch_photos(self, collage_id: uuid.UUID) -> list[PhotoRead]:
        return await self.gateway.tables.list_photos(collage_id)

    async def fetch_session(
        self, collage_id: uuid.UUID, requesting_user: UserRead, now: datetime | None = None
    ) -> CollageSession:
        collage = await self.gateway.tables.get_collage(collage_id)
        return await self._assemble(collage, requesting_user, now)

    async def _assemble(
        self, collage: CollageRead, requesting_user: UserRead, now: datetime | None = None
    ) -> CollageSession:
        members = await self.users.fetch_collage_members(collage.id)
        # Membership rows and created_by can disagree under races
        creator = next((m for m in members if m.id == collage.created_by), requesting_user)

        if collage.is_expired(now or self.gateway.clock()):
            self.reconciler.schedule_cleanup(collage.id)
            photos = []
        else:
            photos = await self.fetch_photos(collage.id)

        return CollageSession(
            id=collage.id,
            collage=collage,
            creator=creator,
            members=members,
            photos=photos,
        )

    async def fetch_all_sessions_for_user(self, user: UserRead) -> SessionPartition:
        """Fetch every collage the user belongs to, split into active and expired.

        One task per collage and no global cap, which is only reasonable
        because membership lists stay small.
        """
        memberships = await self.fetch_memberships(user.id)
        if not memberships:
            return SessionPartition()

        # One instant decides both photo loading and the partition
        now = self.gateway.clock()
        results = await asyncio.gather(
            *(self._fetch_session_or_none(cid, user, now) for cid in memberships)
        )

        partition = SessionPartition()
        for session in results:
            if session is None:
                continue
            if session.is_active(now):
                partition.active.append(session)
            else:
                partition.expired.append(session)
        return partition

    async def _fetch_session_or_none(
        self, collage_id: uuid.UUID, user: UserRead, now: datetime
    ) -> CollageSession | None:
        try:
            return await self.fetch_session(collage_id, user, now)
        except PatchdError as exc:
            logger.warning("Error fetching collage %s: %s", collage_id, exc)
            return None

    async def fetch_active_sessions(self, user: UserRead) -> list[CollageSession]:
        """Lighter refresh: only collages the store reports as unexpired."""
        memberships = await self.fetch_memberships(user.id)
        if not memberships:
            return []

        collages = await self.gateway.tables.list_collages(
            memberships, expires_after=self.gateway.clock()
        )
        sessions = []
        for collage in collages:
            try:
                sessions.append(await self._assemble(collage, user))
            except PatchdError as exc:
                logger.warning("Error fetching collage %s: %s", collage.id, exc)
        return sessions

    # ── Themes ───────────────────────────────────────────────────────

    async def fetch_random_theme(self) -> str:
        themes = await self.gateway.tables.list_active_themes()
        if not themes:
            raise NotFoundError("No active themes found")
        return random.choice(themes).text

    # ── Writes ───────────────────────────────────────────────────────

    async def _unique_invite_code(self) -> str:
        for _ in range(settings.INVITE_CODE_ATTEMPTS):
            code = generate_invite_code()
            if not await self.gateway.tables.invite_code_exists(code):
                return code
            logger.info("Invite code collision, regenerating")
        raise ConflictError("Could not allocate a unique invite code")

    async def create_collage(
        self, theme: str, duration_seconds: int | None = None, is_party_mode: bool = False
    ) -> CollageSession:
        if duration_seconds is None:
            duration_seconds = settings.DEFAULT_COLLAGE_DURATION_SECONDS
        try:
            data = CollageCreate(
                theme=theme.strip(),
                duration_seconds=duration_seconds,
                is_party_mode=is_party_mode,
            )
        except PydanticValidationError as exc:
            raise ValidationError("A collage needs a theme and a positive duration") from exc

        user = await self.users.get_current_user()
        now = self.gateway.clock()
        collage = await self.gateway.tables.insert_collage(
            theme=data.theme,
            created_by=user.id,
            invite_code=await self._unique_invite_code(),
            starts_at=now,
            expires_at=now + timedelta(seconds=data.duration_seconds),
            is_party_mode=data.is_party_mode,
        )
        await self.join_collage(collage.id, user.id)
        logger.info("Created collage %s (%s)", collage.id, collage.invite_code)

        members = await self.users.fetch_collage_members(collage.id)
        return CollageSession(
            id=collage.id, collage=collage, creator=user, members=members, photos=[]
        )

    @asynccontextmanager
    async def _join_lock(self, key: tuple[uuid.UUID, uuid.UUID]):
        lock = self._join_locks.setdefault(key, asyncio.Lock())
        self._join_users[key] = self._join_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._join_users[key] -= 1
            if not self._join_users[key]:
                del self._join_users[key]
                del self._join_locks[key]

    async def join_collage(self, collage_id: uuid.UUID, user_id: uuid.UUID | None = None) -> bool:
        """Add a membership row; returns False when the user already belongs."""
        user_id = user_id or self.gateway.auth.current_user_id()

        async with self._join_lock((collage_id, user_id)):
            if await self.gateway.tables.is_member(collage_id, user_id):
                return False
            try:
                await self.gateway.tables.insert_membership(collage_id, user_id)
            except ConflictError:
                # Another device won the race, the membership exists either way
                return False
            finally:
                await self.caches.invalidate_memberships(user_id)
        return True

    async def join_by_invite_code(self, invite_code: str) -> CollageSession:
        user = await self.users.get_current_user()
        collage = await self.gateway.tables.get_collage_by_invite_code(
            normalize_invite_code(invite_code)
        )
        if collage.is_expired(self.gateway.clock()):
            self.reconciler.schedule_cleanup(collage.id)
            raise ExpiredError("This collage has expired")

        await self.join_collage(collage.id, user.id)
        return await self.fetch_session(collage.id, user)

    async def upload_collage_preview(self, collage_id: uuid.UUID, image) -> CollageRead:
        filename = f"{collage_id}.{self.gateway.storage.extension}"
        preview_url = await self.gateway.storage.upload_image(image, "collage-previews", filename)
        return await self.gateway.tables.update_collage_preview(collage_id, preview_url)
