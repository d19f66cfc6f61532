"""Server-push primitive: per-collage photo change channels over redis pub/sub."""
import json
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from redis.exceptions import RedisError

from patchd.gateway.errors import backend_errors
from patchd.schemas.photo import PhotoChange

logger = logging.getLogger(__name__)


def photo_channel(collage_id: uuid.UUID) -> str:
    return f"photos:{collage_id}"


class PhotoChannels:
    def __init__(self, redis_client):
        self.redis = redis_client

    async def publish(
        self, collage_id: uuid.UUID, event: str, photo_id: uuid.UUID | None = None
    ) -> None:
        """Announce a photo-set mutation. Best effort: the row write already succeeded."""
        change = PhotoChange(collage_id=collage_id, event=event, photo_id=photo_id)
        try:
            await self.redis.publish(photo_channel(collage_id), change.model_dump_json())
        except (RedisError, OSError) as exc:
            logger.warning(
                "Failed to publish %s for collage %s: %s", event, collage_id, exc
            )

    @asynccontextmanager
    async def listen(self, collage_id: uuid.UUID) -> AsyncIterator[AsyncIterator[PhotoChange]]:
        """Open one channel filtered to ``collage_id``; released on exit."""
        channel = photo_channel(collage_id)
        pubsub = self.redis.pubsub()
        async with backend_errors(f"subscribe {channel}"):
            await pubsub.subscribe(channel)
        try:
            yield self._changes(pubsub)
        finally:
            try:
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()
            except (RedisError, OSError) as exc:
                logger.warning("Failed to release channel %s: %s", channel, exc)

    async def _changes(self, pubsub) -> AsyncIterator[PhotoChange]:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            data = message["data"]
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            try:
                yield PhotoChange.model_validate(json.loads(data))
            except ValueError:
                logger.warning("Ignoring malformed photo change: %r", data)
