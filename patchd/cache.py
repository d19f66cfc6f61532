"""Read-through, write-invalidate entity caches.

The cache never has authority over the backend: it only avoids repeated reads
within a signed-in session. Entries are replaced on invalidation, never
patched in place, and fetch failures are never stored.
"""
import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Hashable, Iterable
from typing import Generic, TypeVar

from patchd.schemas.social import CollageInviteRead, FriendshipRead
from patchd.schemas.user import UserRead

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()


class EntityCache(Generic[K, V]):
    """Keyed cache guarded by an asyncio lock.

    A fetch started before an invalidation of the same key (or before
    ``invalidate_all``) does not store its result, so a read issued after a
    write the cache observed never sees the pre-write record. Version
    counters are only kept for keys with a fetch in flight.
    """

    def __init__(self, name: str):
        self.name = name
        self._entries: dict[K, V] = {}
        self._key_versions: dict[K, int] = {}
        self._in_flight: dict[K, int] = {}
        self._generation = 0
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: K) -> bool:
        return key in self._entries

    def _begin_fetch(self, key: K) -> tuple[int, int]:
        self._in_flight[key] = self._in_flight.get(key, 0) + 1
        return (self._generation, self._key_versions.get(key, 0))

    def _end_fetch(self, key: K) -> None:
        remaining = self._in_flight.pop(key, 1) - 1
        if remaining:
            self._in_flight[key] = remaining
        else:
            self._key_versions.pop(key, None)

    def _is_current(self, key: K, stamp: tuple[int, int]) -> bool:
        return stamp == (self._generation, self._key_versions.get(key, 0))

    async def get(self, key: K, default: V | None = None) -> V | None:
        async with self._lock:
            return self._entries.get(key, default)

    async def get_or_fetch(self, key: K, fetch: Callable[[], Awaitable[V]]) -> V:
        async with self._lock:
            cached = self._entries.get(key, _MISSING)
            if cached is not _MISSING:
                return cached
            stamp = self._begin_fetch(key)

        try:
            value = await fetch()
        except BaseException:
            async with self._lock:
                self._end_fetch(key)
            raise

        async with self._lock:
            stored = self._is_current(key, stamp)
            if stored:
                self._entries[key] = value
            self._end_fetch(key)
        if not stored:
            logger.debug("Discarding stale %s fetch for %s", self.name, key)
        return value

    async def get_many_or_fetch(
        self,
        keys: Iterable[K],
        fetch_missing: Callable[[list[K]], Awaitable[dict[K, V]]],
    ) -> list[V]:
        """Resolve ``keys`` in order, fetching all uncached keys with one call.

        Keys the fetch does not return are skipped in the result.
        """
        keys = list(keys)
        async with self._lock:
            found = {k: self._entries[k] for k in keys if k in self._entries}
            missing = list(dict.fromkeys(k for k in keys if k not in found))
            stamps = {k: self._begin_fetch(k) for k in missing}

        if missing:
            try:
                fetched = await fetch_missing(missing)
                async with self._lock:
                    for key, value in fetched.items():
                        if key in stamps and self._is_current(key, stamps[key]):
                            self._entries[key] = value
            finally:
                async with self._lock:
                    for key in missing:
                        self._end_fetch(key)
            found.update(fetched)

        return [found[k] for k in keys if k in found]

    async def invalidate(self, *keys: K) -> None:
        async with self._lock:
            for key in keys:
                self._entries.pop(key, None)
                if key in self._in_flight:
                    self._key_versions[key] = self._key_versions.get(key, 0) + 1

    async def invalidate_all(self) -> None:
        async with self._lock:
            self._entries.clear()
            self._key_versions.clear()
            self._generation += 1


def friendship_key(user_a: uuid.UUID, user_b: uuid.UUID) -> frozenset[uuid.UUID]:
    return frozenset((user_a, user_b))


class CacheManager:
    """All per-session caches plus the invalidation rules that span them."""

    def __init__(self):
        self.users: EntityCache[uuid.UUID, UserRead] = EntityCache("users")
        # user id -> collage ids the user belongs to
        self.memberships: EntityCache[uuid.UUID, list[uuid.UUID]] = EntityCache("memberships")
        # unordered user pair -> friendship (None when the pair has no record)
        self.friendships: EntityCache[frozenset[uuid.UUID], FriendshipRead | None] = (
            EntityCache("friendships")
        )
        # user id -> every friendship record involving the user
        self.friend_lists: EntityCache[uuid.UUID, list[FriendshipRead]] = (
            EntityCache("friend_lists")
        )
        # receiver id -> pending collage invites
        self.invites: EntityCache[uuid.UUID, list[CollageInviteRead]] = EntityCache("invites")

    def _all(self) -> list[EntityCache]:
        return [self.users, self.memberships, self.friendships, self.friend_lists, self.invites]

    async def invalidate_user(self, user_id: uuid.UUID) -> None:
        await self.users.invalidate(user_id)

    async def invalidate_memberships(self, *user_ids: uuid.UUID) -> None:
        await self.memberships.invalidate(*user_ids)

    async def invalidate_friendship(self, user_a: uuid.UUID, user_b: uuid.UUID) -> None:
        """Drop both directions of a pair and both users' aggregate lists."""
        await self.friendships.invalidate(friendship_key(user_a, user_b))
        await self.friend_lists.invalidate(user_a, user_b)

    async def invalidate_invites(self, *user_ids: uuid.UUID) -> None:
        await self.invites.invalidate(*user_ids)

    async def clear(self) -> None:
        for cache in self._all():
            await cache.invalidate_all()
        logger.info("Cleared all entity caches")
