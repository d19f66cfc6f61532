"""Friendships and collage invites.

Friendship status is symmetric: a pair has at most one record whichever
user sent the request, and a rejected request is reopened in place.
"""
import logging
import uuid

from patchd.cache import CacheManager, friendship_key
from patchd.errors import ConflictError, ExpiredError, UnauthorizedError, ValidationError
from patchd.gateway import RemoteGateway
from patchd.schemas.collage import CollageSession
from patchd.schemas.social import (
    CollageInviteRead,
    FriendRequest,
    FriendshipRead,
    PendingCollageInvite,
)
from patchd.schemas.user import UserRead
from patchd.services.session_service import SessionAssembler
from patchd.services.user_service import UserService

logger = logging.getLogger(__name__)


class SocialService:
    def __init__(
        self,
        gateway: RemoteGateway,
        caches: CacheManager,
        users: UserService,
        sessions: SessionAssembler,
    ):
        self.gateway = gateway
        self.caches = caches
        self.users = users
        self.sessions = sessions

    # ── Friendships ──────────────────────────────────────────────────

    async def send_friend_request(self, friend_id: uuid.UUID) -> FriendshipRead:
        user_id = self.gateway.auth.current_user_id()
        if friend_id == user_id:
            raise ValidationError("Cannot send a friend request to yourself")
        await self.users.fetch_user(friend_id)

        existing = await self.gateway.tables.get_friendship_between(user_id, friend_id)
        try:
            if existing is None:
                friendship = await self.gateway.tables.insert_friendship(user_id, friend_id)
            elif existing.status == "rejected":
                # Reopen the pair's single record, now pointing from the new sender
                friendship = await self.gateway.tables.update_friendship(
                    existing.id, status="pending", user_id=user_id, friend_id=friend_id
                )
            elif existing.status == "accepted":
                raise ConflictError("You are already friends")
            elif existing.user_id == user_id:
                return existing
            else:
                raise ConflictError("This user already sent you a friend request")
        finally:
            await self.caches.invalidate_friendship(user_id, friend_id)

        logger.info("Friend request %s -> %s", user_id, friend_id)
        return friendship

    async def _respond_to_request(self, friendship_id: uuid.UUID, status: str) -> FriendshipRead:
        user_id = self.gateway.auth.current_user_id()
        friendship = await self.gateway.tables.get_friendship(friendship_id)
        if friendship.friend_id != user_id:
            raise UnauthorizedError("Only the receiver can answer a friend request")
        if friendship.status != "pending":
            raise ConflictError(f"Friend request is already {friendship.status}")

        try:
            return await self.gateway.tables.update_friendship(friendship_id, status=status)
        finally:
            await self.caches.invalidate_friendship(friendship.user_id, friendship.friend_id)

    async def accept_friend_request(self, friendship_id: uuid.UUID) -> FriendshipRead:
        return await self._respond_to_request(friendship_id, "accepted")

    async def reject_friend_request(self, friendship_id: uuid.UUID) -> FriendshipRead:
        return await self._respond_to_request(friendship_id, "rejected")

    async def check_friendship_status(
        self, other_id: uuid.UUID, user_id: uuid.UUID | None = None
    ) -> str | None:
        """Status of the pair regardless of who sent the request, or None."""
        user_id = user_id or self.gateway.auth.current_user_id()
        friendship = await self.caches.friendships.get_or_fetch(
            friendship_key(user_id, other_id),
            lambda: self.gateway.tables.get_friendship_between(user_id, other_id),
        )
        return friendship.status if friendship else None

    async def _friendships(self, user_id: uuid.UUID) -> list[FriendshipRead]:
        return await self.caches.friend_lists.get_or_fetch(
            user_id, lambda: self.gateway.tables.list_friendships(user_id)
        )

    async def fetch_friends(self) -> list[UserRead]:
        user_id = self.gateway.auth.current_user_id()
        accepted = [f for f in await self._friendships(user_id) if f.status == "accepted"]
        return await self.users.fetch_users([f.other(user_id) for f in accepted])

    async def _requests(self, incoming: bool) -> list[FriendRequest]:
        user_id = self.gateway.auth.current_user_id()
        pending = [
            f
            for f in await self._friendships(user_id)
            if f.status == "pending" and (f.friend_id == user_id) == incoming
        ]
        users = {u.id: u for u in await self.users.fetch_users([f.other(user_id) for f in pending])}
        return [
            FriendRequest(friendship=f, user=users[f.other(user_id)])
            for f in pending
            if f.other(user_id) in users
        ]

    async def fetch_pending_requests(self) -> list[FriendRequest]:
        """Incoming requests waiting for the current user's answer."""
        return await self._requests(incoming=True)

    async def fetch_sent_requests(self) -> list[FriendRequest]:
        return await self._requests(incoming=False)

    async def pending_request_count(self) -> int:
        return len(await self.fetch_pending_requests())

    # ── Collage invites ──────────────────────────────────────────────

    async def send_collage_invite(
        self, collage_id: uuid.UUID, receiver_id: uuid.UUID
    ) -> CollageInviteRead:
        sender_id = self.gateway.auth.current_user_id()
        if receiver_id == sender_id:
            raise ValidationError("Cannot invite yourself")

        collage = await self.gateway.tables.get_collage(collage_id)
        if collage.is_expired(self.gateway.clock()):
            raise ExpiredError("This collage has expired")
        if not await self.gateway.tables.is_member(collage_id, sender_id):
            raise UnauthorizedError("Only members can invite to a collage")
        if await self.gateway.tables.is_member(collage_id, receiver_id):
            raise ConflictError("This user is already a member")
        await self.users.fetch_user(receiver_id)

        existing = await self.gateway.tables.get_invite_for(collage_id, receiver_id)
        try:
            if existing is None:
                invite = await self.gateway.tables.insert_invite(collage_id, sender_id, receiver_id)
            elif existing.status == "pending":
                return existing
            else:
                invite = await self.gateway.tables.update_invite(
                    existing.id, status="pending", sender_id=sender_id
                )
        finally:
            await self.caches.invalidate_invites(receiver_id)

        logger.info("Collage invite %s: %s -> %s", collage_id, sender_id, receiver_id)
        return invite

    async def _pending_invite_for_me(self, invite_id: uuid.UUID) -> CollageInviteRead:
        user_id = self.gateway.auth.current_user_id()
        invite = await self.gateway.tables.get_invite(invite_id)
        if invite.receiver_id != user_id:
            raise UnauthorizedError("This invite was sent to someone else")
        if invite.status != "pending":
            raise ConflictError(f"Invite is already {invite.status}")
        return invite

    async def accept_collage_invite(self, invite_id: uuid.UUID) -> CollageSession:
        invite = await self._pending_invite_for_me(invite_id)
        collage = await self.gateway.tables.get_collage(invite.collage_id)
        if collage.is_expired(self.gateway.clock()):
            raise ExpiredError("This collage has expired")

        try:
            await self.sessions.join_collage(invite.collage_id, invite.receiver_id)
            await self.gateway.tables.update_invite(invite_id, status="accepted")
        finally:
            await self.caches.invalidate_invites(invite.receiver_id)

        user = await self.users.fetch_user(invite.receiver_id)
        return await self.sessions.fetch_session(invite.collage_id, user)

    async def reject_collage_invite(self, invite_id: uuid.UUID) -> CollageInviteRead:
        invite = await self._pending_invite_for_me(invite_id)
        try:
            return await self.gateway.tables.update_invite(invite_id, status="rejected")
        finally:
            await self.caches.invalidate_invites(invite.receiver_id)

    async def fetch_pending_collage_invites(self) -> list[PendingCollageInvite]:
        """Pending invites for unexpired collages, with their collage and sender."""
        user_id = self.gateway.auth.current_user_id()
        invites = await self.caches.invites.get_or_fetch(
            user_id, lambda: self.gateway.tables.list_invites_for_receiver(user_id)
        )
        if not invites:
            return []

        collages = {
            c.id: c
            for c in await self.gateway.tables.list_collages(
                {i.collage_id for i in invites}, expires_after=self.gateway.clock()
            )
        }
        senders = {u.id: u for u in await self.users.fetch_users([i.sender_id for i in invites])}

        pending = []
        for invite in invites:
            collage = collages.get(invite.collage_id)
            sender = senders.get(invite.sender_id)
            if collage is None or sender is None:
                continue
            pending.append(PendingCollageInvite(invite=invite, collage=collage, sender=sender))
        return pending
