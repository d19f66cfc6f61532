"""Remote data gateway: the only component that talks to the backend."""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from patchd.clock import Clock, utcnow
from patchd.gateway.auth import AuthGateway
from patchd.gateway.realtime import PhotoChannels
from patchd.gateway.storage import ObjectStorage, StorageGateway
from patchd.gateway.tables import TableGateway


class RemoteGateway:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis_client,
        storage: ObjectStorage,
        clock: Clock = utcnow,
        http_client=None,
        image_format: str | None = None,
    ):
        self.clock = clock
        self.channels = PhotoChannels(redis_client)
        self.tables = TableGateway(session_factory, channels=self.channels, clock=clock)
        self.storage = StorageGateway(storage, http_client=http_client, image_format=image_format)
        self.auth = AuthGateway(session_factory, redis_client, clock=clock)


__all__ = ["RemoteGateway"]
